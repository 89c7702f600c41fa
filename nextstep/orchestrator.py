"""
LangGraph-based orchestrator for nextstep.

One resolution is a small StateGraph: configuration check, snapshot
collection, required-action registration and the resolver cascade. When the
cascade asks for auto-enforcement the graph executes the actions, collects a
fresh snapshot and resolves again with enforcement skipped.
"""

import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Literal, Optional, Union

from langgraph.graph import END, START, StateGraph
from typing_extensions import TypedDict

from nextstep.agents import (
    DecisionProtocol,
    EnforcementAgent,
    EnforcementPolicyStore,
    PriorityResolverAgent,
    StateAggregatorAgent,
)
from nextstep.agents.resolver import ResolverOutcome
from nextstep.config import Config
from nextstep.errors import InvariantViolation
from nextstep.logging_config import get_logger
from nextstep.models.actions import (
    DecisionApplied,
    DecisionRejected,
    ResolutionError,
    ResolutionResult,
)
from nextstep.models.state import WorkflowSnapshot
from nextstep.models.workflow import StateValidation, WorkflowState, utcnow

logger = get_logger(__name__)


class ResolutionState(TypedDict, total=False):
    """Values passed between graph nodes."""
    config_request: Any
    snapshot: WorkflowSnapshot
    resolution: ResolverOutcome
    enforced: bool
    automatic_actions: List[str]
    issues_found: List[str]
    registered: List[str]


class WorkflowOrchestrator:
    """Entry point for resolutions, decision resumption and state maintenance."""

    def __init__(self, config: Config, github_client, graphql_client, git_client,
                 store: EnforcementPolicyStore, clock: Callable[[], datetime] = utcnow):
        """
        Initialize the orchestrator.

        Args:
            config: Application configuration
            github_client: GitHub REST client
            graphql_client: GitHub GraphQL client
            git_client: Local git client
            store: Enforcement-policy store for this working copy
            clock: Returns the current UTC time
        """
        self.config = config
        self.store = store
        self.aggregator = StateAggregatorAgent(config, github_client, graphql_client, git_client, store)
        self.resolver = PriorityResolverAgent(config, clock=clock)
        self.enforcer = EnforcementAgent(store, github_client, config, repo_ref=self.aggregator.repo)
        self.decisions = DecisionProtocol(
            config, self.aggregator, github_client, graphql_client, git_client, store, clock=clock
        )
        self.workflow = self._build_workflow()

    # Graph nodes

    def _config_check_node(self, state: ResolutionState) -> Dict[str, Any]:
        if self.config.is_complete:
            return {"config_request": None}
        logger.info("configuration_incomplete", missing=self.config.missing_fields())
        return {"config_request": self.config.config_request()}

    def _collect_node(self, state: ResolutionState) -> Dict[str, Any]:
        logger.info("langgraph_node_start", node="collect")
        start_time = time.time()
        snapshot = self.aggregator.collect()
        logger.info("langgraph_node_complete", node="collect", duration=time.time() - start_time)
        return {"snapshot": snapshot}

    def _register_node(self, state: ResolutionState) -> Dict[str, Any]:
        snapshot = state["snapshot"]
        added = self.enforcer.register(snapshot)
        if added:
            # Registration changed the store; the snapshot must see it
            snapshot = snapshot.model_copy(update={"required_actions": self.store.get_required_actions()})
        return {"snapshot": snapshot, "registered": added}

    def _resolve_node(self, state: ResolutionState) -> Dict[str, Any]:
        logger.info("langgraph_node_start", node="resolve", enforced=state.get("enforced", False))
        resolution = self.resolver.resolve(state["snapshot"], skip_enforcement=state.get("enforced", False))
        return {"resolution": resolution}

    def _enforce_node(self, state: ResolutionState) -> Dict[str, Any]:
        logger.info("langgraph_node_start", node="enforce")
        taken, issues = self.enforcer.execute(state["resolution"].outcome.actions, state["snapshot"])
        return {
            "enforced": True,
            "automatic_actions": state.get("automatic_actions", []) + taken,
            "issues_found": state.get("issues_found", []) + issues,
        }

    # Routing

    @staticmethod
    def _after_config_check(state: ResolutionState) -> Literal["collect", "done"]:
        return "done" if state.get("config_request") is not None else "collect"

    @staticmethod
    def _after_resolve(state: ResolutionState) -> Literal["enforce", "done"]:
        resolution = state["resolution"]
        if resolution.needs_enforcement and not state.get("enforced"):
            return "enforce"
        return "done"

    def _build_workflow(self):
        """Build the resolution graph."""
        workflow = StateGraph(ResolutionState)

        workflow.add_node("config_check", self._config_check_node)
        workflow.add_node("collect", self._collect_node)
        workflow.add_node("register", self._register_node)
        workflow.add_node("resolve", self._resolve_node)
        workflow.add_node("enforce", self._enforce_node)

        workflow.add_edge(START, "config_check")
        workflow.add_conditional_edges(
            "config_check",
            self._after_config_check,
            {"collect": "collect", "done": END},
        )
        workflow.add_edge("collect", "register")
        workflow.add_edge("register", "resolve")
        workflow.add_conditional_edges(
            "resolve",
            self._after_resolve,
            {"enforce": "enforce", "done": END},
        )
        # Facts changed: collect again, then resolve with enforcement skipped
        workflow.add_edge("enforce", "collect")

        compiled = workflow.compile()
        logger.info("langgraph_workflow_built", nodes=len(workflow.nodes))
        return compiled

    # Public operations

    def next_action(self) -> ResolutionResult:
        """
        Resolve the single next action.

        Returns:
            ResolutionResult with exactly one outcome, or a structured error
        """
        start_time = time.time()
        try:
            final = self.workflow.invoke({"enforced": False, "automatic_actions": [], "issues_found": []})
        except InvariantViolation as e:
            logger.error("invariant_violation", error=str(e))
            return ResolutionResult(error=ResolutionError(kind="invariant_violation", message=str(e)))
        except Exception as e:
            logger.error("resolution_failed", error=str(e), exc_info=True)
            return ResolutionResult(error=ResolutionError(kind="unexpected_error", message=str(e)))

        if final.get("config_request") is not None:
            return ResolutionResult(outcome=final["config_request"])

        resolution = final["resolution"]
        snapshot = final["snapshot"]
        result = ResolutionResult(
            outcome=resolution.outcome,
            automatic_actions=final.get("automatic_actions", []),
            issues_found=final.get("issues_found", []) + snapshot.degradations + resolution.issues_found,
            suggested_actions=resolution.suggested_actions,
            context=dict(resolution.context, rule=resolution.rule),
        )
        logger.info(
            "resolution_complete",
            rule=resolution.rule,
            action=result.outcome.action,
            automatic_actions=len(result.automatic_actions),
            issues=len(result.issues_found),
            duration=time.time() - start_time,
        )
        return result

    def decide(self, decision_id: str, selected_choice: Union[int, str],
               reasoning: Optional[str] = None) -> Union[DecisionApplied, DecisionRejected]:
        """Resume a pending decision with the selector's choice."""
        return self.decisions.resume(decision_id, selected_choice, reasoning)

    def workflow_state(self, action: str = "get") -> Union[WorkflowState, StateValidation]:
        """
        Inspect or maintain the enforcement-policy store.

        Args:
            action: "get", "reset" or "validate"
        """
        if action == "get":
            return self.store.load()
        if action == "reset":
            return self.store.reset()
        if action == "validate":
            return self.store.validate()
        raise ValueError(f"Unknown workflow state action: {action}")
