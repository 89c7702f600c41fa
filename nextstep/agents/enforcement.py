"""
Enforcement-Policy Store and the agent that applies `auto` actions.

The store is the only mutable state shared between resolutions. Every
operation loads the document, applies one transition and writes it back
atomically; reading never writes.
"""

import json
import os
import tempfile
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError
import structlog

from nextstep.config import Config
from nextstep.models.state import WorkflowSnapshot
from nextstep.models.workflow import (
    CREATE_PR_WHEN_COMMITS_EXIST,
    REQUEST_REVIEW_WHEN_PR_READY,
    STATE_VERSION,
    Enforcement,
    Phase,
    StateValidation,
    WorkflowAction,
    WorkflowState,
    utcnow,
)
from nextstep.parsing import issue_number_from_branch

logger = structlog.get_logger()

MAX_RESOLVED_DECISIONS = 100


class EnforcementPolicyStore:
    """Durable record of required actions and per-type enforcement modes."""

    def __init__(self, path: str, clock: Callable = utcnow):
        """
        Args:
            path: JSON document location (one per working copy)
            clock: Returns the current UTC time; injectable for tests
        """
        self.path = path
        self.clock = clock

    def load(self) -> WorkflowState:
        """Read the document; missing, corrupt or incompatible files yield defaults."""
        if not os.path.exists(self.path):
            return WorkflowState()
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("workflow_state_unreadable", path=self.path, error=str(e))
            return WorkflowState()

        if not isinstance(data, dict) or data.get("version", STATE_VERSION) != STATE_VERSION:
            logger.warning("workflow_state_version_mismatch", path=self.path)
            return WorkflowState()
        try:
            return WorkflowState.model_validate(data)
        except ValidationError as e:
            logger.warning("workflow_state_invalid", path=self.path, error=str(e))
            return WorkflowState()

    def save(self, state: WorkflowState) -> None:
        """Write the document atomically (temp file then rename)."""
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=".nextstep-", suffix=".json", dir=directory)
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(state.to_document(), f, indent=2)
                f.write("\n")
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def add_required_action(self, action_type: str, context: Optional[Dict[str, Any]] = None) -> bool:
        """
        Add a pending action of `action_type`.

        Returns:
            False when one of that type is already pending (no-op)
        """
        state = self.load()
        if any(a.type == action_type for a in state.required_actions):
            return False
        action = WorkflowAction(
            type=action_type,
            enforcement=state.policy_for(action_type),
            created_at=self.clock(),
            context=context or {},
        )
        state.required_actions.append(action)
        self.save(state)
        logger.info("required_action_added", action_type=action_type, enforcement=action.enforcement)
        return True

    def _finish(self, action_type: str, status: str, reason: Optional[str] = None) -> Optional[WorkflowAction]:
        state = self.load()
        for index, action in enumerate(state.required_actions):
            if action.type == action_type:
                finished = action.model_copy(update={
                    "status": status,
                    "completed_at": self.clock(),
                    "failure_reason": reason,
                })
                del state.required_actions[index]
                state.completed_actions.append(finished)
                self.save(state)
                return finished
        return None

    def complete_action(self, action_type: str) -> Optional[WorkflowAction]:
        """Move a pending action to the completed log, stamped with the completion time."""
        finished = self._finish(action_type, "completed")
        if finished:
            logger.info("required_action_completed", action_type=action_type)
        return finished

    def fail_action(self, action_type: str, reason: str) -> Optional[WorkflowAction]:
        """Move a pending action to the completed log as failed."""
        finished = self._finish(action_type, "failed", reason)
        if finished:
            logger.warning("required_action_failed", action_type=action_type, reason=reason)
        return finished

    def get_required_actions(self, enforcement: Optional[Enforcement] = None) -> List[WorkflowAction]:
        return self.load().pending(enforcement)

    def set_policy(self, action_type: str, mode: Enforcement) -> None:
        state = self.load()
        state.enforcement_policies[action_type] = mode
        self.save(state)
        logger.info("enforcement_policy_set", action_type=action_type, mode=mode)

    def update_context(
        self,
        current_issue: Optional[int] = None,
        current_branch: Optional[str] = None,
        phase: Optional[Phase] = None,
    ) -> WorkflowState:
        state = self.load()
        if current_issue is not None:
            state.current_issue = current_issue
        if current_branch is not None:
            state.current_branch = current_branch
        if phase is not None:
            state.phase = phase
        self.save(state)
        return state

    def is_decision_resolved(self, decision_id: str) -> bool:
        return decision_id in self.load().resolved_decisions

    def mark_decision_resolved(self, decision_id: str) -> None:
        state = self.load()
        if decision_id not in state.resolved_decisions:
            state.resolved_decisions.append(decision_id)
            state.resolved_decisions = state.resolved_decisions[-MAX_RESOLVED_DECISIONS:]
            self.save(state)

    def reset(self) -> WorkflowState:
        state = WorkflowState()
        self.save(state)
        logger.info("workflow_state_reset", path=self.path)
        return state

    def validate(self) -> StateValidation:
        """Report inconsistencies without changing anything."""
        state = self.load()
        issues, recommendations = [], []

        if state.current_issue and not state.current_branch:
            issues.append("Current issue is set but no current branch specified")
            recommendations.append("Resume the issue decision or reset the workflow state")
        if state.current_branch and not state.current_issue:
            issues.append("Current branch is set but no current issue specified")
            recommendations.append("Extract the issue number from the branch name or reset the workflow state")

        pending = state.pending()
        if pending:
            issues.append(f"{len(pending)} pending required action(s)")
            recommendations.append("Complete pending actions or reset the workflow state")

        if state.phase == "implementation" and not state.current_issue:
            recommendations.append("Select an issue before continuing implementation")

        return StateValidation(is_valid=not issues, issues=issues, recommendations=recommendations)


class EnforcementAgent:
    """Registers required actions from fresh facts and executes `auto` ones."""

    def __init__(self, store: EnforcementPolicyStore, github_client, config: Config, repo_ref: Callable):
        """
        Args:
            store: Policy store
            github_client: GitHub REST client
            config: Application configuration
            repo_ref: Returns the PyGithub repository object
        """
        self.store = store
        self.github_client = github_client
        self.config = config
        self.repo_ref = repo_ref

    def register(self, snapshot: WorkflowSnapshot) -> List[str]:
        """
        Add required actions implied by the snapshot.

        Pending actions whose condition no longer holds are completed first,
        so a stale action never blocks the same type for a later branch or PR.

        Returns:
            Descriptions of actions that were newly added
        """
        self._retire_stale(snapshot)

        added = []
        repo_state = snapshot.repository
        branch = repo_state.current_branch

        if (
            repo_state.available
            and branch
            and not repo_state.on_default_branch
            and repo_state.branch_merged is False
            and repo_state.ahead > 0
            and snapshot.existing_pr is None
        ):
            if self.store.add_required_action(CREATE_PR_WHEN_COMMITS_EXIST, {"branch": branch}):
                added.append(f"Branch '{branch}' has {repo_state.ahead} commit(s) without a PR")

        for pr in snapshot.own_pull_requests():
            if self._needs_bot_rereview(pr):
                context = {"pr_number": pr.number}
                if self.store.add_required_action(REQUEST_REVIEW_WHEN_PR_READY, context):
                    added.append(f"PR #{pr.number} has new commits since the bot's last review")
                break

        return added

    def _retire_stale(self, snapshot: WorkflowSnapshot) -> None:
        for action in self.store.get_required_actions():
            if action.type == CREATE_PR_WHEN_COMMITS_EXIST:
                stale = self._pr_action_stale(action, snapshot)
            elif action.type == REQUEST_REVIEW_WHEN_PR_READY:
                stale = self._review_action_stale(action, snapshot)
            else:
                continue
            if stale:
                logger.info("required_action_retired", action_type=action.type, context=action.context)
                self.store.complete_action(action.type)

    def _pr_action_stale(self, action: WorkflowAction, snapshot: WorkflowSnapshot) -> bool:
        branch = action.context.get("branch")
        repo_state = snapshot.repository
        if repo_state.available and branch != repo_state.current_branch:
            return True
        if repo_state.branch_merged is True:
            return True
        return snapshot.pull_requests_available and any(
            pr.head_branch == branch for pr in snapshot.pull_requests
        )

    def _review_action_stale(self, action: WorkflowAction, snapshot: WorkflowSnapshot) -> bool:
        if not snapshot.pull_requests_available:
            return False
        number = action.context.get("pr_number")
        pr = next((p for p in snapshot.pull_requests if p.number == number), None)
        if pr is None:
            return True
        # Unknown review or commit facts keep the action pending
        if not pr.reviews.available or pr.last_commit_at is None:
            return False
        return not self._needs_bot_rereview(pr)

    def _needs_bot_rereview(self, pr) -> bool:
        # Best effort: compares the bot's latest review with the latest commit
        bot_reviews = [
            review for review in pr.reviews.reviews
            if review.reviewer in self.config.bot_reviewers
        ]
        if not bot_reviews or pr.last_commit_at is None:
            return False
        latest = max(review.submitted_at for review in bot_reviews)
        return pr.last_commit_at > latest

    def execute(self, actions: List[WorkflowAction], snapshot: WorkflowSnapshot) -> Tuple[List[str], List[str]]:
        """
        Perform `auto` actions.

        Returns:
            (automatic actions taken, issues found)
        """
        taken, issues = [], []
        for action in actions:
            if action.enforcement != "auto":
                continue
            try:
                if action.type == CREATE_PR_WHEN_COMMITS_EXIST:
                    taken.append(self._create_pr(action, snapshot))
                elif action.type == REQUEST_REVIEW_WHEN_PR_READY:
                    taken.append(self._request_review(action))
                else:
                    # Nothing to execute for this type here; leave it pending
                    continue
                self.store.complete_action(action.type)
            except Exception as e:
                logger.error("auto_action_failed", action_type=action.type, error=str(e))
                self.store.fail_action(action.type, str(e))
                issues.append(f"Automatic action '{action.type}' failed: {e}")
        return taken, issues

    def _create_pr(self, action: WorkflowAction, snapshot: WorkflowSnapshot) -> str:
        branch = action.context.get("branch") or snapshot.repository.current_branch
        existing = snapshot.existing_pr
        if existing is not None and existing.head_branch == branch:
            return f"PR #{existing.number} already exists for '{branch}'"

        issue_number = issue_number_from_branch(branch)
        if issue_number is not None:
            title = f"Work on #{issue_number}"
            body = f"Closes #{issue_number}"
        else:
            title = f"Changes from {branch}"
            body = f"Automatically opened for branch `{branch}`."

        pr = self.github_client.create_pull_request(
            repo=self.repo_ref(),
            title=title,
            body=body,
            head=branch,
            base=snapshot.repository.default_branch,
        )
        self.store.update_context(current_branch=branch, phase="pr_created")
        return f"Created PR #{pr.number} for branch '{branch}'"

    def _request_review(self, action: WorkflowAction) -> str:
        number = action.context["pr_number"]
        # Review requests take the login without the app suffix
        reviewers = []
        for login in self.config.bot_reviewers:
            name = login[:-len("[bot]")] if login.endswith("[bot]") else login
            if name and name not in reviewers:
                reviewers.append(name)
        if not reviewers:
            raise ValueError("No reviewers configured under workflow.bot_reviewers")
        self.github_client.request_reviewers(self.repo_ref(), number, reviewers)
        return f"Requested re-review on PR #{number} from {', '.join(reviewers)}"
