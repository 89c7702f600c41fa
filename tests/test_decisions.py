"""
Tests for resuming deferred decisions.
"""

from datetime import timedelta

import pytest

from builders import (
    ACTOR,
    NOW,
    FakeGitClient,
    FakeGitHubClient,
    FakeGraphQLClient,
    fixed_clock,
    make_config,
    make_item,
    make_sub_issue,
)
from nextstep.agents import DecisionProtocol, EnforcementPolicyStore, StateAggregatorAgent
from nextstep.agents.decisions import make_decision_id
from nextstep.config import Config
from nextstep.models.workflow import ASSIGN_ISSUE_ON_STATUS_CHANGE

BOARD_ID = make_decision_id(None, NOW)
EPIC_ID = make_decision_id(40, NOW)


def board_items():
    return [
        make_item(17, status="In Progress", assignees=[ACTOR]),
        make_item(21, title="Add search"),
        make_item(22, title="Export CSV"),
    ]


class Harness:
    def __init__(self, tmp_path, config=None, github=None, graphql=None, git=None):
        self.config = config or make_config()
        self.github = github or FakeGitHubClient()
        self.graphql = graphql or FakeGraphQLClient(items=board_items())
        self.git = git or FakeGitClient()
        self.store = EnforcementPolicyStore(str(tmp_path / "state.json"), clock=fixed_clock)
        aggregator = StateAggregatorAgent(self.config, self.github, self.graphql, self.git, self.store)
        self.protocol = DecisionProtocol(
            self.config, aggregator, self.github, self.graphql, self.git, self.store, clock=fixed_clock
        )

    def resume(self, decision_id, choice, reasoning=None):
        return self.protocol.resume(decision_id, choice, reasoning)


@pytest.fixture
def harness(tmp_path):
    return Harness(tmp_path)


def test_board_decision_applies_all_effects(harness):
    result = harness.resume(BOARD_ID, 21, reasoning="Unblocks the release")

    assert result.status == "applied"
    assert result.issue_number == 21
    assert result.reasoning == "Unblocks the release"
    assert result.assigned is True
    assert harness.github.assigned == [(21, ACTOR)]
    assert result.status_updated is True
    assert harness.graphql.status_updates == [("PVT_project", "PVTI_21", "PVTSSF_status", "opt-progress")]
    assert result.branch_name == "feature/add-search-21"
    assert result.branch_created is True
    assert harness.git.created == [("feature/add-search-21", "main")]
    assert result.issues_found == []

    state = harness.store.load()
    assert state.current_issue == 21
    assert state.current_branch == "feature/add-search-21"
    assert state.phase == "implementation"
    assert BOARD_ID in state.resolved_decisions


def test_choice_may_be_given_as_text(harness):
    assert harness.resume(BOARD_ID, "22").issue_number == 22


def test_existing_branch_is_switched_to(tmp_path):
    harness = Harness(tmp_path, git=FakeGitClient(branches=("main", "feature/add-search-21")))

    result = harness.resume(BOARD_ID, 21)

    assert result.branch_switched is True
    assert result.branch_created is False
    assert harness.git.checked_out == ["feature/add-search-21"]


def test_decision_is_consumed_once(harness):
    assert harness.resume(BOARD_ID, 21).status == "applied"

    second = harness.resume(BOARD_ID, 22)

    assert second.status == "rejected"
    assert second.reason == "decision_not_found"
    assert harness.github.assigned == [(21, ACTOR)]


def test_incomplete_configuration_rejected(tmp_path):
    harness = Harness(tmp_path, config=Config(data={"github": {"owner": "acme", "repo": "widgets"}}))

    result = harness.resume(BOARD_ID, 21)

    assert result.reason == "configuration_incomplete"
    assert "github.project.number" in result.missing_fields
    assert harness.github.assigned == []


@pytest.mark.parametrize("decision_id", [
    "not-a-decision",
    "epic-next-issue-1",
    make_decision_id(None, NOW + timedelta(days=1)),
])
def test_unknown_ids_rejected(harness, decision_id):
    result = harness.resume(decision_id, 21)

    assert result.reason == "decision_not_found"
    assert harness.store.load().resolved_decisions == []


def test_choice_outside_candidates_rejected(harness):
    result = harness.resume(BOARD_ID, 17)

    assert result.reason == "invalid_choice"
    assert "#21" in result.message
    assert harness.github.assigned == []
    assert harness.graphql.status_updates == []
    assert harness.git.created == []


def test_non_numeric_choice_rejected(harness):
    assert harness.resume(BOARD_ID, "first").reason == "invalid_choice"


def test_provider_failure_rejected_without_changes(tmp_path):
    harness = Harness(tmp_path, graphql=FakeGraphQLClient(fail={"get_project_items"}))

    result = harness.resume(BOARD_ID, 21)

    assert result.reason == "provider_unavailable"
    assert harness.store.load().resolved_decisions == []


def test_epic_decision_uses_open_sub_issues(tmp_path):
    graphql = FakeGraphQLClient(
        items=board_items(),
        sub_issues={40: [make_sub_issue(41), make_sub_issue(42, state="closed")]},
    )
    harness = Harness(tmp_path, graphql=graphql)

    assert harness.resume(EPIC_ID, 42).reason == "invalid_choice"

    result = harness.resume(EPIC_ID, 41)
    assert result.status == "applied"
    assert result.epic_number == 40
    assert result.status_updated is False
    assert any("not on the project board" in issue for issue in result.issues_found)


def test_epic_sub_issues_fall_back_to_search(tmp_path):
    github = FakeGitHubClient(sub_issue_search=[make_sub_issue(43)])
    harness = Harness(tmp_path, github=github, graphql=FakeGraphQLClient(items=board_items()))

    result = harness.resume(EPIC_ID, 43)

    assert result.status == "applied"
    assert result.issue_number == 43


def test_dirty_tree_skips_branch_preparation(tmp_path):
    harness = Harness(tmp_path, git=FakeGitClient(clean=False))

    result = harness.resume(BOARD_ID, 21)

    assert result.status == "applied"
    assert result.branch_created is False
    assert harness.git.created == []
    assert any("uncommitted" in issue for issue in result.issues_found)


def test_assignment_suggested_when_policy_is_not_auto(harness):
    harness.store.set_policy(ASSIGN_ISSUE_ON_STATUS_CHANGE, "suggest")

    result = harness.resume(BOARD_ID, 21)

    assert result.assigned is False
    assert harness.github.assigned == []
    assert f"Assign issue #21 to {ACTOR}" in result.suggested_actions


def test_effect_failure_does_not_abort_others(tmp_path):
    harness = Harness(tmp_path, github=FakeGitHubClient(fail={"assign_issue"}))

    result = harness.resume(BOARD_ID, 21)

    assert result.assigned is False
    assert result.status_updated is True
    assert result.branch_created is True
    assert any("Could not assign" in issue for issue in result.issues_found)
