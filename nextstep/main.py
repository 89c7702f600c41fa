"""
Main entry point for nextstep.
"""

import argparse
import json
import logging
import os
import sys
from typing import Any, Dict

from pydantic import BaseModel

from nextstep.agents import EnforcementPolicyStore
from nextstep.config import Config, load_environment
from nextstep.errors import GitCommandError
from nextstep.integrations import get_git_client, get_github_client, get_graphql_client
from nextstep.logging_config import configure_logging, get_logger
from nextstep.models.actions import DecisionRejected, ResolutionResult
from nextstep.orchestrator import WorkflowOrchestrator

logger = get_logger(__name__)


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="nextstep - decide the single next development action for this repository"
    )

    parser.add_argument(
        "--config",
        help="Path to config.yaml (default: ./config.yaml)",
    )

    parser.add_argument(
        "--repo-path",
        default=".",
        help="Working copy to inspect (default: current directory)",
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("next", help="Resolve the next action")

    decide = subparsers.add_parser("decide", help="Resume a pending decision")
    decide.add_argument("--decision-id", required=True, help="Id returned with the pending decision")
    decide.add_argument("--choice", required=True, help="Issue number of the selected candidate")
    decide.add_argument("--reasoning", help="Why this candidate was chosen")

    state = subparsers.add_parser("state", help="Inspect or maintain the workflow state")
    state.add_argument("action", choices=["get", "reset", "validate"])

    policy = subparsers.add_parser("policy", help="Set the enforcement mode of an action type")
    policy.add_argument("action_type", help="e.g. create_pr_when_commits_exist")
    policy.add_argument("mode", choices=["auto", "suggest", "warn"])

    return parser.parse_args(argv)


def emit(payload: Any) -> None:
    """Print a result model (or mapping) as JSON on stdout."""
    if isinstance(payload, BaseModel):
        data: Dict[str, Any] = payload.model_dump(mode="json", exclude_none=True)
    else:
        data = payload
    print(json.dumps(data, indent=2))


def state_file_path(config: Config, git_client) -> str:
    """Resolve the state file against the repository root."""
    if os.path.isabs(config.state_file):
        return config.state_file
    try:
        root = git_client.repo_root()
    except GitCommandError as e:
        logger.warning("repo_root_unavailable", error=str(e))
        root = git_client.repo_path
    return os.path.join(root, config.state_file)


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)

    load_environment()
    configure_logging(debug=args.debug)

    logger.info("nextstep_starting", command=args.command, repo_path=args.repo_path)

    try:
        config = Config(args.config)
        logger.info("config_loaded", path=config.path)
        if config.development_mode and not args.debug:
            logging.getLogger().setLevel(logging.DEBUG)
    except Exception as e:
        logger.error("config_load_failed", error=str(e))
        emit({"error": {"kind": "configuration_error", "message": str(e)}})
        sys.exit(1)

    git_client = get_git_client(args.repo_path)
    store = EnforcementPolicyStore(state_file_path(config, git_client))

    if args.command == "policy":
        store.set_policy(args.action_type, args.mode)
        emit(store.load().to_document())
        sys.exit(0)

    try:
        token = config.github_token
    except ValueError as e:
        logger.error("github_token_missing")
        emit({"error": {"kind": "configuration_error", "message": str(e)}})
        sys.exit(1)

    github_client = get_github_client(token=token, api_url=config.github_api_url)
    graphql_client = get_graphql_client(token=token, url=config.github_graphql_url)
    orchestrator = WorkflowOrchestrator(config, github_client, graphql_client, git_client, store)

    try:
        if args.command == "next":
            result = orchestrator.next_action()
            emit(result)
            failed = isinstance(result, ResolutionResult) and not result.ok
        elif args.command == "decide":
            result = orchestrator.decide(args.decision_id, args.choice, args.reasoning)
            emit(result)
            failed = isinstance(result, DecisionRejected)
        else:
            result = orchestrator.workflow_state(args.action)
            if args.action == "validate":
                emit(result)
            else:
                emit(result.to_document())
            failed = False
    except KeyboardInterrupt:
        logger.info("nextstep_interrupted")
        sys.exit(130)
    finally:
        graphql_client.close()

    logger.info("nextstep_complete", command=args.command, success=not failed)
    sys.exit(1 if failed else 0)


if __name__ == "__main__":
    main()
