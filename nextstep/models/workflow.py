"""
Persisted workflow state: required actions and enforcement policies.

Serialized as a camelCase JSON document, one per working copy.
"""

from typing import Any, Dict, List, Literal, Optional
from datetime import datetime, timezone
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


Enforcement = Literal["auto", "suggest", "warn"]
ActionStatus = Literal["pending", "completed", "failed"]
Phase = Literal["ready", "implementation", "pr_created", "under_review", "merge_ready"]

CREATE_PR_WHEN_COMMITS_EXIST = "create_pr_when_commits_exist"
ASSIGN_ISSUE_ON_STATUS_CHANGE = "assign_issue_on_status_change"
REQUEST_REVIEW_WHEN_PR_READY = "request_review_when_pr_ready"

DEFAULT_POLICIES: Dict[str, Enforcement] = {
    CREATE_PR_WHEN_COMMITS_EXIST: "auto",
    ASSIGN_ISSUE_ON_STATUS_CHANGE: "auto",
    REQUEST_REVIEW_WHEN_PR_READY: "suggest",
}

STATE_VERSION = 1


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class WorkflowAction(_CamelModel):
    """A required step and its enforcement mode."""
    type: str
    status: ActionStatus = "pending"
    enforcement: Enforcement = "suggest"
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)


class WorkflowState(_CamelModel):
    """The single mutable record shared across resolutions."""
    version: int = STATE_VERSION
    current_issue: Optional[int] = None
    current_branch: Optional[str] = None
    phase: Phase = "ready"
    required_actions: List[WorkflowAction] = Field(default_factory=list)
    completed_actions: List[WorkflowAction] = Field(default_factory=list)
    enforcement_policies: Dict[str, Enforcement] = Field(
        default_factory=lambda: dict(DEFAULT_POLICIES)
    )
    resolved_decisions: List[str] = Field(default_factory=list)

    def policy_for(self, action_type: str) -> Enforcement:
        return self.enforcement_policies.get(action_type, "suggest")

    def pending(self, enforcement: Optional[Enforcement] = None) -> List[WorkflowAction]:
        actions = [a for a in self.required_actions if a.status == "pending"]
        if enforcement is None:
            return actions
        return [a for a in actions if a.enforcement == enforcement]

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class StateValidation(BaseModel):
    """Consistency report for the persisted workflow state."""
    is_valid: bool
    issues: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
