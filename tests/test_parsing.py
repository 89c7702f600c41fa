"""
Tests for checklist and branch-name parsing.
"""

from builders import NOW
from nextstep.agents.decisions import make_decision_id, parse_decision_id
from nextstep.parsing import (
    branch_name_for_issue,
    issue_number_from_branch,
    parse_checklist,
    slugify,
)


def test_checklist_in_source_order():
    body = """Some context.

- [x] Write schema
* [ ] Add endpoint
- [X] Update docs
- plain bullet
"""
    todos = parse_checklist(body)

    assert [(t.text, t.checked, t.index) for t in todos] == [
        ("Write schema", True, 0),
        ("Add endpoint", False, 1),
        ("Update docs", True, 2),
    ]


def test_empty_body_has_no_checklist():
    assert parse_checklist("") == []
    assert parse_checklist(None) == []


def test_issue_number_from_branch():
    assert issue_number_from_branch("feature/login-form-42") == 42
    assert issue_number_from_branch("fix/oauth2-timeout-7") == 7
    assert issue_number_from_branch("feature/issue-12-followup") == 12
    assert issue_number_from_branch("main") is None
    assert issue_number_from_branch("release/v2") is None
    assert issue_number_from_branch(None) is None


def test_last_number_group_wins():
    assert issue_number_from_branch("feature/part-3-of-issue-88") == 88


def test_branch_name_for_issue():
    assert branch_name_for_issue(21, "Add login form") == "feature/add-login-form-21"
    assert branch_name_for_issue(5, "Fix: crash on *empty* cart!") == "feature/fix-crash-on-empty-cart-5"
    assert branch_name_for_issue(9, "???") == "feature/issue-9"
    assert branch_name_for_issue(9, "Docs", prefix="chore/") == "chore/docs-9"


def test_branch_name_round_trips_issue_number():
    branch = branch_name_for_issue(314, "Handle 404 pages")
    assert issue_number_from_branch(branch) == 314


def test_slug_is_bounded():
    slug = slugify("word " * 40)
    assert len(slug) <= 50
    assert not slug.endswith("-")


def test_decision_ids():
    epic = parse_decision_id(make_decision_id(40, NOW))
    assert epic.epic_number == 40
    assert epic.scope == "epic"
    assert epic.issued_at_ms == int(NOW.timestamp() * 1000)

    board = parse_decision_id("board-next-issue-1700000000000")
    assert board.epic_number is None
    assert board.scope == "board"

    assert parse_decision_id("epic-x-next-issue-1") is None
    assert parse_decision_id("next-issue-1") is None
    assert parse_decision_id("") is None
