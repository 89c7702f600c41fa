"""
Resolver outputs.

`NextAction` is a discriminated union keyed on `action`: each kind carries
only the fields it needs. A resolution produces exactly one of a
`NextAction`, a `PendingDecision` or a `ConfigRequest`.
"""

from typing import Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, Field
from typing_extensions import Annotated


Priority = Literal["urgent", "high", "medium", "low"]
Category = Literal["immediate", "next_logical", "optional"]


class _Action(BaseModel):
    priority: Priority = "medium"
    category: Category = "next_logical"
    suggestion: str = ""


class FixCIFailures(_Action):
    action: Literal["fix_ci_failures"] = "fix_ci_failures"
    priority: Priority = "urgent"
    category: Category = "immediate"
    pr_number: int
    title: str
    pr_url: Optional[str] = None
    failed_checks: List[str]


class AddressPRFeedback(_Action):
    action: Literal["address_pr_feedback"] = "address_pr_feedback"
    priority: Priority = "high"
    category: Category = "immediate"
    pr_number: int
    title: str
    pr_url: Optional[str] = None
    review_status: Literal["changes_requested", "has_comments"]
    unresolved_comments: int = 0
    reviewers: List[str] = Field(default_factory=list)


class WaitForReview(_Action):
    action: Literal["wait_for_review"] = "wait_for_review"
    priority: Priority = "low"
    category: Category = "next_logical"
    pr_number: int
    title: str
    pr_url: Optional[str] = None
    has_bot_review: bool = False


class MergePR(_Action):
    action: Literal["merge_pr"] = "merge_pr"
    priority: Priority = "high"
    category: Category = "immediate"
    pr_number: int
    title: str
    pr_url: Optional[str] = None


class MergeBlocked(_Action):
    action: Literal["merge_blocked"] = "merge_blocked"
    priority: Priority = "high"
    category: Category = "immediate"
    pr_number: int
    title: str
    pr_url: Optional[str] = None
    blocking_reasons: List[str]


class ReviewPR(_Action):
    action: Literal["review_pr"] = "review_pr"
    priority: Priority = "medium"
    category: Category = "next_logical"
    pr_number: int
    title: str
    pr_url: Optional[str] = None
    author: str
    re_review: bool = False


class SelectWork(_Action):
    action: Literal["select_work"] = "select_work"
    reason: str
    project_url: Optional[str] = None
    switch_to_branch: Optional[str] = None
    blocked_by_open_prs: bool = False
    open_pr_count: int = 0
    has_uncommitted_changes: bool = False


class CompleteEpic(_Action):
    action: Literal["complete_epic"] = "complete_epic"
    epic_number: int
    epic_title: str


class SubIssueRef(BaseModel):
    number: int
    title: str
    status: str


class EpicAnalysis(_Action):
    action: Literal["epic_analysis"] = "epic_analysis"
    priority: Priority = "high"
    epic_number: int
    epic_title: str
    next_issue: SubIssueRef
    sub_issues: List[SubIssueRef]


class StartNewWork(_Action):
    action: Literal["start_new_work"] = "start_new_work"
    priority: Priority = "high"
    issue_number: int
    title: str
    suggested_branch: str


class WorkOnTodo(_Action):
    action: Literal["work_on_todo"] = "work_on_todo"
    priority: Priority = "high"
    category: Category = "immediate"
    issue_number: int
    title: str
    status: str = "In Progress"
    todo_item: str
    todo_index: int
    total_todos: int
    completed_todos: int


class TodosComplete(_Action):
    action: Literal["todos_complete"] = "todos_complete"
    priority: Priority = "high"
    issue_number: int
    title: str
    total_todos: int
    next_step: Literal["create_pr", "check_pr_status"]
    existing_pr_number: Optional[int] = None


NextAction = Annotated[
    Union[
        FixCIFailures,
        AddressPRFeedback,
        WaitForReview,
        MergePR,
        MergeBlocked,
        ReviewPR,
        SelectWork,
        CompleteEpic,
        EpicAnalysis,
        StartNewWork,
        WorkOnTodo,
        TodosComplete,
    ],
    Field(discriminator="action"),
]


class Choice(BaseModel):
    """One option of a pending decision."""
    id: int
    title: str
    description: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ExistingPR(BaseModel):
    number: int
    title: str


class DecisionContext(BaseModel):
    prompt: str
    current_branch: Optional[str] = None
    existing_pr: Optional[ExistingPR] = None


class PendingDecision(BaseModel):
    """A choice the resolver defers to an external selector."""
    action: Literal["requires_llm_decision"] = "requires_llm_decision"
    priority: Priority = "high"
    category: Category = "immediate"
    decision_id: str
    decision_type: Literal["select_next_issue", "prioritize_work"] = "select_next_issue"
    choices: List[Choice]
    decision_context: DecisionContext
    epic_number: Optional[int] = None
    epic_title: Optional[str] = None


class ConfigRequest(BaseModel):
    """Returned instead of any action when required settings are missing."""
    action: Literal["requires_config"] = "requires_config"
    priority: Priority = "urgent"
    category: Category = "immediate"
    missing_fields: List[str]
    suggestions: List[str] = Field(default_factory=list)


Outcome = Annotated[
    Union[
        FixCIFailures,
        AddressPRFeedback,
        WaitForReview,
        MergePR,
        MergeBlocked,
        ReviewPR,
        SelectWork,
        CompleteEpic,
        EpicAnalysis,
        StartNewWork,
        WorkOnTodo,
        TodosComplete,
        PendingDecision,
        ConfigRequest,
    ],
    Field(discriminator="action"),
]


class ResolutionError(BaseModel):
    kind: Literal["invariant_violation", "unexpected_error"]
    message: str


class ResolutionResult(BaseModel):
    """Envelope returned by a resolution call."""
    outcome: Optional[Outcome] = None
    error: Optional[ResolutionError] = None
    automatic_actions: List[str] = Field(default_factory=list)
    issues_found: List[str] = Field(default_factory=list)
    suggested_actions: List[str] = Field(default_factory=list)
    context: Dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.error is None and self.outcome is not None


class DecisionApplied(BaseModel):
    """Effects performed when a decision is resumed."""
    status: Literal["applied"] = "applied"
    decision_id: str
    selected_choice: int
    reasoning: Optional[str] = None
    issue_number: int
    title: str
    epic_number: Optional[int] = None
    assigned: bool = False
    status_updated: bool = False
    branch_name: str
    branch_created: bool = False
    branch_switched: bool = False
    automatic_actions: List[str] = Field(default_factory=list)
    issues_found: List[str] = Field(default_factory=list)
    suggested_actions: List[str] = Field(default_factory=list)


class DecisionRejected(BaseModel):
    """Typed rejection of a resumption; nothing was mutated."""
    status: Literal["rejected"] = "rejected"
    decision_id: str
    reason: Literal[
        "decision_not_found",
        "invalid_choice",
        "configuration_incomplete",
        "provider_unavailable",
    ]
    message: str
    missing_fields: List[str] = Field(default_factory=list)
