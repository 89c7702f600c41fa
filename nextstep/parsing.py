"""
Pure text parsers: issue checklists and branch names.
"""

import re
from dataclasses import dataclass
from typing import List, Optional


CHECKED_PATTERN = re.compile(r"^\s*[-*]\s+\[[xX]\]\s+(.+)$")
UNCHECKED_PATTERN = re.compile(r"^\s*[-*]\s+\[\s*\]\s+(.+)$")

# "-<digits>" followed by a non-digit or the end of the name
BRANCH_ISSUE_PATTERN = re.compile(r"-(\d+)(?=\D|$)")


@dataclass(frozen=True)
class TodoItem:
    """A checklist line from an issue body."""
    text: str
    checked: bool
    index: int


def parse_checklist(body: Optional[str]) -> List[TodoItem]:
    """
    Parse markdown checklist items in source order.

    Args:
        body: Issue description (may be empty)

    Returns:
        Checklist items; `index` counts checklist lines only
    """
    todos: List[TodoItem] = []
    for line in (body or "").splitlines():
        checked = CHECKED_PATTERN.match(line)
        unchecked = None if checked else UNCHECKED_PATTERN.match(line)
        match = checked or unchecked
        if match:
            todos.append(TodoItem(text=match.group(1).strip(), checked=bool(checked), index=len(todos)))
    return todos


def issue_number_from_branch(branch: Optional[str]) -> Optional[int]:
    """
    Extract the issue number encoded at the end of a branch name.

    `feature/login-form-42` yields 42. When several groups match, the last
    one wins, so `feature/oauth2-fix-7` yields 7. Returns None on no match.
    """
    if not branch:
        return None
    matches = BRANCH_ISSUE_PATTERN.findall(branch)
    if not matches:
        return None
    return int(matches[-1])


def slugify(text: str, max_length: int = 50) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return slug[:max_length].strip("-")


def branch_name_for_issue(number: int, title: str, prefix: str = "feature/") -> str:
    """Branch name used when starting work on an issue."""
    slug = slugify(title)
    if not slug:
        return f"{prefix}issue-{number}"
    return f"{prefix}{slug}-{number}"
