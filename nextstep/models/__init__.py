"""Models package for the workflow decision core."""

from nextstep.models.state import (
    RepositoryState,
    CheckRun,
    CheckStatus,
    ReviewComment,
    Review,
    ThreadSummary,
    ReviewState,
    PullRequestFacts,
    MergeReadiness,
    SubIssue,
    ProjectItem,
    WorkflowSnapshot,
)
from nextstep.models.workflow import (
    WorkflowAction,
    WorkflowState,
    StateValidation,
    DEFAULT_POLICIES,
    CREATE_PR_WHEN_COMMITS_EXIST,
    ASSIGN_ISSUE_ON_STATUS_CHANGE,
    REQUEST_REVIEW_WHEN_PR_READY,
)
from nextstep.models.actions import (
    NextAction,
    Outcome,
    FixCIFailures,
    AddressPRFeedback,
    WaitForReview,
    MergePR,
    MergeBlocked,
    ReviewPR,
    SelectWork,
    CompleteEpic,
    EpicAnalysis,
    SubIssueRef,
    StartNewWork,
    WorkOnTodo,
    TodosComplete,
    Choice,
    ExistingPR,
    DecisionContext,
    PendingDecision,
    ConfigRequest,
    ResolutionError,
    ResolutionResult,
    DecisionApplied,
    DecisionRejected,
)

__all__ = [
    "RepositoryState",
    "CheckRun",
    "CheckStatus",
    "ReviewComment",
    "Review",
    "ThreadSummary",
    "ReviewState",
    "PullRequestFacts",
    "MergeReadiness",
    "SubIssue",
    "ProjectItem",
    "WorkflowSnapshot",
    "WorkflowAction",
    "WorkflowState",
    "StateValidation",
    "DEFAULT_POLICIES",
    "CREATE_PR_WHEN_COMMITS_EXIST",
    "ASSIGN_ISSUE_ON_STATUS_CHANGE",
    "REQUEST_REVIEW_WHEN_PR_READY",
    "NextAction",
    "Outcome",
    "FixCIFailures",
    "AddressPRFeedback",
    "WaitForReview",
    "MergePR",
    "MergeBlocked",
    "ReviewPR",
    "SelectWork",
    "CompleteEpic",
    "EpicAnalysis",
    "SubIssueRef",
    "StartNewWork",
    "WorkOnTodo",
    "TodosComplete",
    "Choice",
    "ExistingPR",
    "DecisionContext",
    "PendingDecision",
    "ConfigRequest",
    "ResolutionError",
    "ResolutionResult",
    "DecisionApplied",
    "DecisionRejected",
]
