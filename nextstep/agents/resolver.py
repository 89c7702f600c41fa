"""
Priority Resolver.

Pure decision cascade over a WorkflowSnapshot. Rules are evaluated in a
fixed order and the first match produces the single recommended action.
Nothing here performs I/O: auto-enforced actions are returned as an
EnforcementRequired marker for the orchestrator to carry out.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

import structlog

from nextstep.agents.decisions import board_decision, epic_decision
from nextstep.agents.merge_readiness import evaluate
from nextstep.config import Config
from nextstep.errors import InvariantViolation
from nextstep.models.actions import (
    AddressPRFeedback,
    CompleteEpic,
    EpicAnalysis,
    FixCIFailures,
    MergeBlocked,
    MergePR,
    ReviewPR,
    SelectWork,
    StartNewWork,
    SubIssueRef,
    TodosComplete,
    WaitForReview,
    WorkOnTodo,
)
from nextstep.models.state import PullRequestFacts, WorkflowSnapshot
from nextstep.models.workflow import (
    ASSIGN_ISSUE_ON_STATUS_CHANGE,
    CREATE_PR_WHEN_COMMITS_EXIST,
    REQUEST_REVIEW_WHEN_PR_READY,
    WorkflowAction,
    utcnow,
)
from nextstep.parsing import branch_name_for_issue, parse_checklist

logger = structlog.get_logger()

RULES = (
    "ci_failures",
    "enforcement",
    "branch_merged",
    "pr_feedback",
    "awaiting_review",
    "approved_pr",
    "review_requested",
    "open_prs",
    "epic",
    "new_work",
    "in_progress",
)

# Rules that need to know who the actor is
ACTOR_RULES = ("pr_feedback", "awaiting_review", "approved_pr", "review_requested")


@dataclass
class EnforcementRequired:
    """Auto-enforced actions that must be executed before re-resolving."""
    actions: List[WorkflowAction]


@dataclass
class ResolverOutcome:
    """Result of one pass of the cascade."""
    rule: Optional[str] = None
    outcome: Any = None
    suggested_actions: List[str] = field(default_factory=list)
    issues_found: List[str] = field(default_factory=list)
    context: Dict[str, Any] = field(default_factory=dict)

    @property
    def needs_enforcement(self) -> bool:
        return isinstance(self.outcome, EnforcementRequired)


def describe_required_action(action: WorkflowAction) -> str:
    """Human-readable summary of a pending required action."""
    if action.type == CREATE_PR_WHEN_COMMITS_EXIST:
        branch = action.context.get("branch", "the current branch")
        return f"Create a pull request for '{branch}'"
    if action.type == REQUEST_REVIEW_WHEN_PR_READY:
        return f"Request a re-review on PR #{action.context.get('pr_number', '?')}"
    if action.type == ASSIGN_ISSUE_ON_STATUS_CHANGE:
        return "Assign the in-progress issue to yourself"
    return action.type.replace("_", " ")


class PriorityResolverAgent:
    """Chooses the single next action for a snapshot."""

    def __init__(self, config: Config, clock: Callable[[], datetime] = utcnow):
        """
        Initialize the resolver.

        Args:
            config: Application configuration
            clock: Returns the current UTC time; only used to stamp decision ids
        """
        self.config = config
        self.clock = clock

    def resolve(self, snapshot: WorkflowSnapshot, skip_enforcement: bool = False) -> ResolverOutcome:
        """
        Run the cascade.

        Args:
            snapshot: Facts gathered by the aggregator
            skip_enforcement: Ignore pending auto actions (already executed)

        Returns:
            ResolverOutcome carrying a NextAction, a PendingDecision or an
            EnforcementRequired marker

        Raises:
            InvariantViolation: When the snapshot is internally inconsistent
        """
        resolution = ResolverOutcome(context=self._context(snapshot))
        self._advisories(snapshot, resolution)
        now = self.clock()

        for rule in RULES:
            if rule == "enforcement" and skip_enforcement:
                continue
            if rule in ACTOR_RULES and not snapshot.actor:
                continue
            outcome = getattr(self, f"_rule_{rule}")(snapshot, resolution, now)
            if outcome is not None:
                resolution.rule = rule
                resolution.outcome = outcome
                logger.info(
                    "rule_matched",
                    rule=rule,
                    action=getattr(outcome, "action", "enforcement_required"),
                )
                return resolution

        raise InvariantViolation("No resolution rule matched the snapshot")

    def _context(self, snapshot: WorkflowSnapshot) -> Dict[str, Any]:
        existing = snapshot.existing_pr
        return {
            "actor": snapshot.actor,
            "current_branch": snapshot.repository.current_branch,
            "default_branch": snapshot.repository.default_branch,
            "has_uncommitted_changes": snapshot.repository.has_uncommitted_changes,
            "open_pull_requests": len(snapshot.pull_requests),
            "existing_pr": existing.number if existing else None,
            "degraded": bool(snapshot.degradations),
        }

    def _advisories(self, snapshot: WorkflowSnapshot, resolution: ResolverOutcome) -> None:
        for action in snapshot.required_actions:
            if action.status != "pending":
                continue
            if action.enforcement == "suggest":
                resolution.suggested_actions.append(describe_required_action(action))
            elif action.enforcement == "warn":
                resolution.issues_found.append(f"Required action pending: {describe_required_action(action)}")

    # Rules, in cascade order

    def _rule_ci_failures(self, snapshot, resolution, now):
        failing = [pr for pr in snapshot.pull_requests if pr.has_failing_checks]
        if not failing:
            return None
        pr = min(failing, key=lambda p: p.number)
        if len(failing) > 1:
            others = ", ".join(f"#{p.number}" for p in failing if p is not pr)
            resolution.issues_found.append(f"CI is also failing on {others}")
        names = pr.checks.failed_check_names
        resolution.context["checks"] = pr.checks.counts()
        return FixCIFailures(
            pr_number=pr.number,
            title=pr.title,
            pr_url=pr.url,
            failed_checks=names,
            suggestion=f"Fix the failing checks on PR #{pr.number}: {', '.join(names)}",
        )

    def _rule_enforcement(self, snapshot, resolution, now):
        auto = [a for a in snapshot.required_actions if a.status == "pending" and a.enforcement == "auto"]
        if not auto:
            return None
        return EnforcementRequired(actions=auto)

    def _rule_branch_merged(self, snapshot, resolution, now):
        repo = snapshot.repository
        if repo.branch_merged is not True or repo.on_default_branch:
            return None
        default = repo.default_branch
        if repo.has_uncommitted_changes:
            resolution.suggested_actions.append("Commit or stash your uncommitted changes first")
        resolution.suggested_actions.append(f"git checkout {default} && git pull origin {default}")
        return SelectWork(
            reason=f"Branch '{repo.current_branch}' has been merged",
            switch_to_branch=default,
            project_url=snapshot.project_url,
            has_uncommitted_changes=repo.has_uncommitted_changes,
            suggestion=f"Switch back to '{default}' and pick the next issue",
        )

    def _rule_pr_feedback(self, snapshot, resolution, now):
        with_feedback = [
            pr for pr in snapshot.own_pull_requests()
            if pr.reviews.available
            and pr.reviews.review_status in ("changes_requested", "has_comments")
        ]
        if not with_feedback:
            return None
        pr = min(
            with_feedback,
            key=lambda p: (0 if p.reviews.review_status == "changes_requested" else 1, p.number),
        )
        status = pr.reviews.review_status
        reviewers = sorted(
            reviewer for reviewer, review in pr.reviews.latest_reviews().items()
            if review.state in ("changes_requested", "commented")
        )
        if status == "changes_requested":
            suggestion = f"Address the requested changes on PR #{pr.number}"
        else:
            suggestion = f"Resolve {pr.reviews.unresolved_count} review comment(s) on PR #{pr.number}"
        return AddressPRFeedback(
            pr_number=pr.number,
            title=pr.title,
            pr_url=pr.url,
            review_status=status,
            unresolved_comments=pr.reviews.unresolved_count,
            reviewers=reviewers,
            suggestion=suggestion,
        )

    def _rule_awaiting_review(self, snapshot, resolution, now):
        waiting = [
            pr for pr in snapshot.own_pull_requests()
            if pr.reviews.available and pr.reviews.review_status == "pending_review"
        ]
        if not waiting:
            return None
        pr = waiting[0]
        has_bot_review = any(r.reviewer in self.config.bot_reviewers for r in pr.reviews.reviews)
        if not pr.requested_reviewers and not pr.reviews.reviews:
            resolution.suggested_actions.append(f"Request a review on PR #{pr.number}")
        return WaitForReview(
            pr_number=pr.number,
            title=pr.title,
            pr_url=pr.url,
            has_bot_review=has_bot_review,
            suggestion=f"PR #{pr.number} is waiting for review",
        )

    def _rule_approved_pr(self, snapshot, resolution, now):
        approved = [
            pr for pr in snapshot.own_pull_requests()
            if pr.reviews.available and pr.reviews.review_status == "approved"
        ]
        if not approved:
            return None
        pr = approved[0]
        readiness = evaluate(pr)
        if readiness.is_merge_ready:
            return MergePR(
                pr_number=pr.number,
                title=pr.title,
                pr_url=pr.url,
                suggestion=f"PR #{pr.number} is approved and ready to merge",
            )
        return MergeBlocked(
            pr_number=pr.number,
            title=pr.title,
            pr_url=pr.url,
            blocking_reasons=readiness.blocking_reasons,
            suggestion=f"PR #{pr.number} is approved but cannot be merged yet",
        )

    def _needs_review(self, pr: PullRequestFacts, actor: str) -> Tuple[bool, bool]:
        """(needs review, is a re-review) for another author's PR."""
        mine = pr.reviews.latest_by(actor)
        if mine is None:
            return True, False
        changed_at = pr.last_commit_at or pr.updated_at
        if changed_at is not None and changed_at > mine.submitted_at:
            return True, True
        return False, False

    def _rule_review_requested(self, snapshot, resolution, now):
        for pr in snapshot.others_pull_requests():
            if not pr.reviews.available:
                continue
            needed, re_review = self._needs_review(pr, snapshot.actor)
            if not needed:
                continue
            verb = "Re-review" if re_review else "Review"
            return ReviewPR(
                pr_number=pr.number,
                title=pr.title,
                pr_url=pr.url,
                author=pr.author,
                re_review=re_review,
                suggestion=f"{verb} PR #{pr.number} by {pr.author}",
            )
        return None

    def _rule_open_prs(self, snapshot, resolution, now):
        working_draft = snapshot.existing_pr if snapshot.in_progress_issues else None
        if working_draft is not None and not (working_draft.is_draft and working_draft.author == snapshot.actor):
            working_draft = None
        blocking = [pr for pr in snapshot.pull_requests if pr is not working_draft]
        if not blocking:
            return None
        count = len(blocking)
        for pr in blocking:
            label = " (draft)" if pr.is_draft else ""
            resolution.suggested_actions.append(f"Resolve PR #{pr.number}{label}: {pr.title}")
        return SelectWork(
            reason=f"{count} open pull request(s) must be resolved before starting new work",
            project_url=snapshot.project_url,
            blocked_by_open_prs=True,
            open_pr_count=count,
            has_uncommitted_changes=snapshot.repository.has_uncommitted_changes,
            suggestion="Finish or close the open pull requests first",
        )

    def _rule_epic(self, snapshot, resolution, now):
        if not snapshot.in_progress_epics or snapshot.in_progress_issues:
            return None
        epic = snapshot.in_progress_epics[0]
        if epic.sub_issues is None:
            raise InvariantViolation(f"Sub-issues of epic #{epic.number} were not loaded")

        open_issues = sorted(epic.open_sub_issues, key=lambda issue: issue.number)
        if not open_issues:
            return CompleteEpic(
                epic_number=epic.number,
                epic_title=epic.title,
                suggestion=f"All sub-issues of epic #{epic.number} are closed; close the epic",
            )
        if len(open_issues) == 1:
            issue = open_issues[0]
            ref = SubIssueRef(number=issue.number, title=issue.title, status=issue.state)
            return EpicAnalysis(
                epic_number=epic.number,
                epic_title=epic.title,
                next_issue=ref,
                sub_issues=[ref],
                suggestion=f"Continue epic #{epic.number} with #{issue.number}",
            )
        return epic_decision(epic, open_issues, snapshot, now)

    def _rule_new_work(self, snapshot, resolution, now):
        if snapshot.in_progress_issues:
            return None
        candidates = sorted(snapshot.todo_candidates, key=lambda item: item.number)
        if not candidates:
            return SelectWork(
                reason="Nothing is in progress and no issues are ready to start",
                project_url=snapshot.project_url,
                has_uncommitted_changes=snapshot.repository.has_uncommitted_changes,
                suggestion="Pick or create an issue on the project board",
            )
        if len(candidates) == 1:
            item = candidates[0]
            branch = branch_name_for_issue(item.number, item.title, self.config.branch_prefix)
            resolution.suggested_actions.append(f"git checkout -b {branch}")
            return StartNewWork(
                issue_number=item.number,
                title=item.title,
                suggested_branch=branch,
                suggestion=f"Start issue #{item.number}: {item.title}",
            )
        return board_decision(candidates, snapshot, now)

    def _rule_in_progress(self, snapshot, resolution, now):
        if not snapshot.in_progress_issues:
            return None
        issue = snapshot.in_progress_issues[0]
        todos = parse_checklist(issue.body)
        completed = sum(1 for todo in todos if todo.checked)

        remaining = next((todo for todo in todos if not todo.checked), None)
        if remaining is not None:
            return WorkOnTodo(
                issue_number=issue.number,
                title=issue.title,
                status=issue.status or self.config.in_progress_status,
                todo_item=remaining.text,
                todo_index=remaining.index,
                total_todos=len(todos),
                completed_todos=completed,
                suggestion=f"Next on #{issue.number}: {remaining.text}",
            )

        existing = snapshot.existing_pr
        if existing is not None:
            return TodosComplete(
                issue_number=issue.number,
                title=issue.title,
                total_todos=len(todos),
                next_step="check_pr_status",
                existing_pr_number=existing.number,
                suggestion=f"All tasks done; check the status of PR #{existing.number}",
            )
        return TodosComplete(
            issue_number=issue.number,
            title=issue.title,
            total_todos=len(todos),
            next_step="create_pr",
            suggestion=f"All tasks done; open a pull request for #{issue.number}",
        )
