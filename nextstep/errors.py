"""
Error taxonomy.

Provider adapters raise their own errors; the aggregator turns them into
`ProviderUnavailable`, and the orchestrator turns everything else into
fields of the result so callers always get something inspectable.
"""

from typing import List, Optional


class WorkflowError(Exception):
    """Base class for decision-core errors."""


class ProviderUnavailable(WorkflowError):
    """A data provider could not be reached or returned malformed data."""

    def __init__(self, provider: str, fact: str, detail: Optional[str] = None):
        self.provider = provider
        self.fact = fact
        self.detail = detail
        super().__init__(self.as_note())

    def as_note(self) -> str:
        note = f"{self.provider} unavailable while fetching {self.fact}; treated as unknown"
        if self.detail:
            note += f" ({self.detail})"
        return note


class ConfigurationIncomplete(WorkflowError):
    """Required configuration fields are missing."""

    def __init__(self, missing_fields: List[str]):
        self.missing_fields = list(missing_fields)
        super().__init__(f"Missing configuration: {', '.join(self.missing_fields)}")


class DecisionNotFound(WorkflowError):
    """The decision id is malformed, unknown or already consumed."""


class InvalidChoice(WorkflowError):
    """The selected choice was not among the offered candidates."""


class InvariantViolation(WorkflowError):
    """Facts contradict an assumption of the cascade; fatal to one resolution."""


class GraphQLError(WorkflowError):
    """The GraphQL endpoint returned errors or an unusable payload."""


class GitCommandError(WorkflowError):
    """A local git command failed."""

    def __init__(self, args: List[str], returncode: int, stderr: str = ""):
        self.command = list(args)
        self.returncode = returncode
        self.stderr = stderr.strip()
        super().__init__(f"git {' '.join(self.command)} failed ({returncode}): {self.stderr}")
