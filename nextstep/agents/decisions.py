"""
Deferred-Decision Protocol.

When several candidates qualify as the next issue, the resolver hands the
choice to an external selector as a PendingDecision. Decision ids are
self-describing, so resuming needs no stored candidate list: the candidates
are re-derived from fresh facts and the selection is checked against them.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Union

import structlog

from nextstep.config import Config
from nextstep.errors import (
    ConfigurationIncomplete,
    DecisionNotFound,
    InvalidChoice,
    ProviderUnavailable,
)
from nextstep.models.actions import (
    Choice,
    DecisionApplied,
    DecisionContext,
    DecisionRejected,
    ExistingPR,
    PendingDecision,
)
from nextstep.models.state import ProjectItem, SubIssue, WorkflowSnapshot
from nextstep.models.workflow import ASSIGN_ISSUE_ON_STATUS_CHANGE, utcnow
from nextstep.parsing import branch_name_for_issue

logger = structlog.get_logger()

DECISION_ID_PATTERN = re.compile(r"^(?:epic-(?P<epic>\d+)|board)-next-issue-(?P<issued>\d+)$")

# Tolerated clock skew for ids issued by another process
FUTURE_SKEW = timedelta(minutes=5)


@dataclass(frozen=True)
class DecisionRef:
    """Parsed decision id."""
    epic_number: Optional[int]
    issued_at_ms: int

    @property
    def scope(self) -> str:
        return "epic" if self.epic_number is not None else "board"


@dataclass
class _Selection:
    ref: DecisionRef
    number: int
    chosen: Union[SubIssue, ProjectItem]
    actor: str
    board_items: List[ProjectItem]


def _millis(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def make_decision_id(epic_number: Optional[int], now: datetime) -> str:
    if epic_number is not None:
        return f"epic-{epic_number}-next-issue-{_millis(now)}"
    return f"board-next-issue-{_millis(now)}"


def parse_decision_id(decision_id: str) -> Optional[DecisionRef]:
    """
    Parse `epic-<n>-next-issue-<ms>` or `board-next-issue-<ms>`.

    Returns:
        DecisionRef, or None when the id does not follow the grammar
    """
    match = DECISION_ID_PATTERN.match(decision_id or "")
    if not match:
        return None
    epic = match.group("epic")
    return DecisionRef(
        epic_number=int(epic) if epic is not None else None,
        issued_at_ms=int(match.group("issued")),
    )


def _decision_context(prompt: str, snapshot: WorkflowSnapshot) -> DecisionContext:
    existing = snapshot.existing_pr
    return DecisionContext(
        prompt=prompt,
        current_branch=snapshot.repository.current_branch,
        existing_pr=ExistingPR(number=existing.number, title=existing.title) if existing else None,
    )


def epic_decision(epic: ProjectItem, open_sub_issues: List[SubIssue],
                  snapshot: WorkflowSnapshot, now: datetime) -> PendingDecision:
    """Pending choice among the open sub-issues of an epic."""
    choices = [
        Choice(
            id=issue.number,
            title=issue.title,
            description=f"Sub-issue #{issue.number} of epic #{epic.number}",
            metadata={"labels": issue.labels, "assignees": issue.assignees},
        )
        for issue in open_sub_issues
    ]
    prompt = (
        f"Epic #{epic.number} '{epic.title}' has {len(choices)} open sub-issues. "
        "Select the one to work on next, considering dependencies and priority."
    )
    return PendingDecision(
        decision_id=make_decision_id(epic.number, now),
        choices=choices,
        decision_context=_decision_context(prompt, snapshot),
        epic_number=epic.number,
        epic_title=epic.title,
    )


def board_decision(candidates: List[ProjectItem], snapshot: WorkflowSnapshot,
                   now: datetime) -> PendingDecision:
    """Pending choice among the to-do items of the project board."""
    choices = [
        Choice(
            id=item.number,
            title=item.title,
            description=(item.body or "")[:200],
            metadata={"labels": item.labels, "status": item.status},
        )
        for item in candidates
    ]
    prompt = (
        f"{len(choices)} issues are ready to start on the project board. "
        "Select the one to work on next."
    )
    return PendingDecision(
        decision_id=make_decision_id(None, now),
        decision_type="prioritize_work",
        choices=choices,
        decision_context=_decision_context(prompt, snapshot),
    )


class DecisionProtocol:
    """Validates and applies the selector's answer to a PendingDecision."""

    def __init__(self, config: Config, aggregator, github_client, graphql_client,
                 git_client, store, clock: Callable[[], datetime] = utcnow):
        self.config = config
        self.aggregator = aggregator
        self.github_client = github_client
        self.graphql_client = graphql_client
        self.git_client = git_client
        self.store = store
        self.clock = clock

    def resume(self, decision_id: str, selected_choice: Union[int, str],
               reasoning: Optional[str] = None) -> Union[DecisionApplied, DecisionRejected]:
        """
        Apply a selection.

        Args:
            decision_id: Id returned with the PendingDecision
            selected_choice: Issue number of the chosen candidate
            reasoning: Free-text rationale from the selector

        Returns:
            DecisionApplied with the effects performed, or DecisionRejected
            when nothing was changed
        """
        try:
            selection = self._select(decision_id, selected_choice)
        except ConfigurationIncomplete as e:
            return self._reject(decision_id, "configuration_incomplete", str(e), e.missing_fields)
        except DecisionNotFound as e:
            return self._reject(decision_id, "decision_not_found", str(e))
        except InvalidChoice as e:
            return self._reject(decision_id, "invalid_choice", str(e))
        except ProviderUnavailable as e:
            return self._reject(decision_id, "provider_unavailable", e.as_note())

        ref, number, chosen = selection.ref, selection.number, selection.chosen
        actor, board_items = selection.actor, selection.board_items

        logger.info("decision_resuming", decision_id=decision_id, issue=number, scope=ref.scope)
        result = DecisionApplied(
            decision_id=decision_id,
            selected_choice=number,
            reasoning=reasoning,
            issue_number=number,
            title=chosen.title,
            epic_number=ref.epic_number,
            branch_name=branch_name_for_issue(number, chosen.title, self.config.branch_prefix),
        )

        self._assign(result, actor, chosen.assignees)
        item = next((i for i in board_items if i.number == number), None)
        self._set_in_progress(result, item)
        self._prepare_branch(result)

        self.store.mark_decision_resolved(decision_id)
        self.store.update_context(
            current_issue=number,
            current_branch=result.branch_name,
            phase="implementation",
        )
        logger.info(
            "decision_applied",
            decision_id=decision_id,
            issue=number,
            assigned=result.assigned,
            status_updated=result.status_updated,
            branch=result.branch_name,
        )
        return result

    @staticmethod
    def _reject(decision_id: str, reason: str, message: str,
                missing: Optional[List[str]] = None) -> DecisionRejected:
        logger.warning("decision_rejected", decision_id=decision_id, reason=reason, message=message)
        return DecisionRejected(
            decision_id=decision_id or "",
            reason=reason,
            message=message,
            missing_fields=missing or [],
        )

    def _select(self, decision_id: str, selected_choice: Union[int, str]) -> "_Selection":
        """
        Validate the id and choice against freshly derived candidates.

        Raises:
            ConfigurationIncomplete, DecisionNotFound, InvalidChoice,
            ProviderUnavailable
        """
        missing = self.config.missing_fields()
        if missing:
            raise ConfigurationIncomplete(missing)

        ref = parse_decision_id(decision_id)
        if ref is None:
            raise DecisionNotFound(f"Malformed decision id '{decision_id}'")
        if ref.issued_at_ms > _millis(self.clock() + FUTURE_SKEW):
            raise DecisionNotFound(f"Decision '{decision_id}' was issued in the future")
        if self.store.is_decision_resolved(decision_id):
            raise DecisionNotFound(f"Decision '{decision_id}' was already resolved")

        try:
            number = int(selected_choice)
        except (TypeError, ValueError):
            raise InvalidChoice(f"Choice '{selected_choice}' is not an issue number")

        actor = self.aggregator.fetch_actor()
        board_items = self.aggregator.fetch_board_items()
        if ref.epic_number is not None:
            candidates = [
                issue for issue in self.aggregator.fetch_epic_sub_issues(ref.epic_number)
                if issue.is_open
            ]
        else:
            candidates = self.aggregator.todo_candidates(board_items)

        chosen = next((c for c in candidates if c.number == number), None)
        if chosen is None:
            valid = ", ".join(f"#{c.number}" for c in candidates) or "none"
            raise InvalidChoice(f"#{number} is not a candidate (valid: {valid})")

        return _Selection(ref=ref, number=number, chosen=chosen, actor=actor, board_items=board_items)

    def _assign(self, result: DecisionApplied, actor: str, assignees: List[str]) -> None:
        if actor in assignees:
            return
        if self.store.load().policy_for(ASSIGN_ISSUE_ON_STATUS_CHANGE) != "auto":
            result.suggested_actions.append(f"Assign issue #{result.issue_number} to {actor}")
            return
        try:
            self.github_client.assign_issue(self.aggregator.repo(), result.issue_number, actor)
            result.assigned = True
            result.automatic_actions.append(f"Assigned #{result.issue_number} to {actor}")
        except Exception as e:
            logger.error("assign_failed", issue=result.issue_number, error=str(e))
            result.issues_found.append(f"Could not assign #{result.issue_number}: {e}")

    def _set_in_progress(self, result: DecisionApplied, item: Optional[ProjectItem]) -> None:
        if item is None or not item.item_id:
            result.issues_found.append(
                f"Issue #{result.issue_number} is not on the project board; status not updated"
            )
            return
        if item.status == self.config.in_progress_status:
            return
        try:
            self.graphql_client.update_item_status(
                self.config.project_id,
                item.item_id,
                self.config.status_field_id,
                self.config.status_option_id("in_progress"),
            )
            result.status_updated = True
            result.automatic_actions.append(
                f"Moved #{result.issue_number} to '{self.config.in_progress_status}'"
            )
        except Exception as e:
            logger.error("status_update_failed", issue=result.issue_number, error=str(e))
            result.issues_found.append(f"Could not update board status of #{result.issue_number}: {e}")

    def _prepare_branch(self, result: DecisionApplied) -> None:
        branch = result.branch_name
        try:
            repo_state = self.aggregator.fetch_repository_state()
        except ProviderUnavailable as e:
            result.issues_found.append(e.as_note())
            result.suggested_actions.append(f"git checkout -b {branch}")
            return

        if repo_state.current_branch == branch:
            return
        if repo_state.has_uncommitted_changes:
            result.issues_found.append("Working tree has uncommitted changes; branch not switched")
            result.suggested_actions.append(f"Commit or stash your changes, then: git checkout -b {branch}")
            return

        try:
            if self.git_client.branch_exists(branch):
                self.git_client.checkout(branch)
                result.branch_switched = True
                result.automatic_actions.append(f"Switched to existing branch '{branch}'")
            else:
                self.git_client.create_branch(branch, start_point=repo_state.default_branch)
                result.branch_created = True
                result.automatic_actions.append(f"Created branch '{branch}'")
        except Exception as e:
            logger.error("branch_preparation_failed", branch=branch, error=str(e))
            result.issues_found.append(f"Could not prepare branch '{branch}': {e}")
