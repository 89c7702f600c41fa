"""
Canonical facts gathered for a single resolution.

Everything here is ephemeral: it is rebuilt from the data providers on every
call and never persisted.
"""

from typing import Dict, List, Literal, Optional
from datetime import datetime
from pydantic import BaseModel, Field

from nextstep.models.workflow import WorkflowAction


PASSING_CONCLUSIONS = ("success", "neutral", "skipped")

ReviewStatus = Literal["changes_requested", "has_comments", "approved", "pending_review"]


class RepositoryState(BaseModel):
    """Local working-copy state."""
    current_branch: Optional[str] = None
    default_branch: str = "main"
    is_clean: bool = True
    uncommitted_files: List[str] = Field(default_factory=list)
    untracked_files: List[str] = Field(default_factory=list)
    ahead: int = 0
    behind: int = 0
    branch_merged: Optional[bool] = None  # None when it could not be determined
    available: bool = True

    @property
    def has_uncommitted_changes(self) -> bool:
        return not self.is_clean

    @property
    def on_default_branch(self) -> bool:
        return self.current_branch == self.default_branch


class CheckRun(BaseModel):
    """A single CI check run on a PR head commit."""
    name: str
    status: Literal["queued", "in_progress", "completed"] = "completed"
    conclusion: Optional[str] = None
    url: Optional[str] = None

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"

    @property
    def is_failed(self) -> bool:
        return self.is_completed and self.conclusion not in PASSING_CONCLUSIONS


class CheckStatus(BaseModel):
    """Check runs for one PR, with aggregate counts."""
    runs: List[CheckRun] = Field(default_factory=list)
    available: bool = True

    @property
    def total(self) -> int:
        return len(self.runs) if self.available else 0

    @property
    def passed(self) -> int:
        if not self.available:
            return 0
        return sum(1 for run in self.runs if run.is_completed and not run.is_failed)

    @property
    def failed(self) -> int:
        if not self.available:
            return 0
        return sum(1 for run in self.runs if run.is_failed)

    @property
    def pending(self) -> int:
        if not self.available:
            return 0
        return sum(1 for run in self.runs if not run.is_completed)

    @property
    def failed_check_names(self) -> List[str]:
        return [run.name for run in self.runs if run.is_failed] if self.available else []

    def counts(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "passed": self.passed,
            "failed": self.failed,
            "pending": self.pending,
        }


class ReviewComment(BaseModel):
    """Inline comment attached to a review."""
    id: int
    path: Optional[str] = None
    line: Optional[int] = None
    body: str = ""
    is_resolved: bool = False


class Review(BaseModel):
    """A submitted review."""
    reviewer: str
    state: Literal["approved", "changes_requested", "commented", "dismissed"]
    submitted_at: datetime
    comments: List[ReviewComment] = Field(default_factory=list)

    @property
    def unresolved_comments(self) -> int:
        return sum(1 for comment in self.comments if not comment.is_resolved)


class ThreadSummary(BaseModel):
    """Review-thread resolution counts for a PR."""
    total: int = 0
    resolved: int = 0
    resolved_comment_ids: List[int] = Field(default_factory=list)

    @property
    def unresolved(self) -> int:
        return self.total - self.resolved


class ReviewState(BaseModel):
    """Reviews and comment threads for one PR."""
    reviews: List[Review] = Field(default_factory=list)
    threads: ThreadSummary = Field(default_factory=ThreadSummary)
    available: bool = True

    def latest_reviews(self) -> Dict[str, Review]:
        """Only the most recent review of each reviewer counts."""
        latest: Dict[str, Review] = {}
        for review in self.reviews:
            if review.state == "dismissed":
                continue
            existing = latest.get(review.reviewer)
            if existing is None or review.submitted_at > existing.submitted_at:
                latest[review.reviewer] = review
        return latest

    def latest_by(self, reviewer: str) -> Optional[Review]:
        return self.latest_reviews().get(reviewer)

    @property
    def has_approvals(self) -> bool:
        return any(r.state == "approved" for r in self.latest_reviews().values())

    @property
    def has_changes_requested(self) -> bool:
        return any(r.state == "changes_requested" for r in self.latest_reviews().values())

    def mark_resolved_comments(self) -> None:
        """Flag inline comments that belong to a resolved thread."""
        resolved = set(self.threads.resolved_comment_ids)
        for review in self.reviews:
            for comment in review.comments:
                if comment.id in resolved:
                    comment.is_resolved = True

    @property
    def unresolved_count(self) -> int:
        # Thread resolution is authoritative once threads were fetched
        if self.threads.total:
            return self.threads.unresolved
        return sum(r.unresolved_comments for r in self.latest_reviews().values())

    @property
    def has_unresolved_comments(self) -> bool:
        return self.unresolved_count > 0

    @property
    def review_status(self) -> ReviewStatus:
        if self.has_changes_requested:
            return "changes_requested"
        if self.has_unresolved_comments:
            return "has_comments"
        if self.has_approvals:
            return "approved"
        return "pending_review"


class PullRequestFacts(BaseModel):
    """Everything known about one open PR."""
    number: int
    title: str
    author: str
    url: Optional[str] = None
    head_branch: str
    base_branch: str = "main"
    head_sha: Optional[str] = None
    is_draft: bool = False
    updated_at: Optional[datetime] = None
    last_commit_at: Optional[datetime] = None
    mergeable: Optional[bool] = None
    mergeable_state: str = "unknown"
    checks: CheckStatus = Field(default_factory=CheckStatus)
    reviews: ReviewState = Field(default_factory=ReviewState)
    requested_reviewers: List[str] = Field(default_factory=list)

    @property
    def has_failing_checks(self) -> bool:
        return self.checks.failed > 0


class MergeReadiness(BaseModel):
    """Derived merge verdict for a PR."""
    ci_status: Literal["success", "failure", "pending", "unknown"]
    mergeable: bool
    mergeable_state: str
    has_approvals: bool
    has_unresolved_comments: bool
    review_status: ReviewStatus
    blocking_reasons: List[str] = Field(default_factory=list)
    is_merge_ready: bool = False


class SubIssue(BaseModel):
    """Issue linked under an epic."""
    number: int
    title: str
    state: Literal["open", "closed"] = "open"
    labels: List[str] = Field(default_factory=list)
    assignees: List[str] = Field(default_factory=list)

    @property
    def is_open(self) -> bool:
        return self.state == "open"


class ProjectItem(BaseModel):
    """Issue or epic on the project board."""
    item_id: Optional[str] = None
    number: int
    title: str
    body: str = ""
    state: Literal["open", "closed"] = "open"
    labels: List[str] = Field(default_factory=list)
    assignees: List[str] = Field(default_factory=list)
    status: Optional[str] = None
    epic_label: str = "epic"
    sub_issues: Optional[List[SubIssue]] = None  # None until loaded

    @property
    def is_epic(self) -> bool:
        return self.epic_label in self.labels

    @property
    def open_sub_issues(self) -> List[SubIssue]:
        return [issue for issue in (self.sub_issues or []) if issue.is_open]


class WorkflowSnapshot(BaseModel):
    """
    Consistent set of facts consumed by the resolver.

    Lists are kept in ascending number order so the resolver never depends
    on provider ordering.
    """
    actor: Optional[str] = None
    repository: RepositoryState = Field(default_factory=RepositoryState)
    pull_requests: List[PullRequestFacts] = Field(default_factory=list)
    pull_requests_available: bool = True
    in_progress_issues: List[ProjectItem] = Field(default_factory=list)
    in_progress_epics: List[ProjectItem] = Field(default_factory=list)
    todo_candidates: List[ProjectItem] = Field(default_factory=list)
    required_actions: List[WorkflowAction] = Field(default_factory=list)
    degradations: List[str] = Field(default_factory=list)
    project_url: Optional[str] = None

    @property
    def existing_pr(self) -> Optional[PullRequestFacts]:
        branch = self.repository.current_branch
        if not branch:
            return None
        for pr in self.pull_requests:
            if pr.head_branch == branch:
                return pr
        return None

    def own_pull_requests(self) -> List[PullRequestFacts]:
        if not self.actor:
            return []
        return [pr for pr in self.pull_requests if pr.author == self.actor and not pr.is_draft]

    def others_pull_requests(self) -> List[PullRequestFacts]:
        if not self.actor:
            return []
        return [pr for pr in self.pull_requests if pr.author != self.actor and not pr.is_draft]

