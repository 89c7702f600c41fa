"""
Tests for the enforcement-policy store and the enforcement agent.
"""

import json
import os

import pytest

from builders import (
    NOW,
    FakeGitHubClient,
    fixed_clock,
    make_config,
    make_pr,
    make_snapshot,
    review,
)
from nextstep.agents.enforcement import EnforcementAgent, EnforcementPolicyStore
from nextstep.models.workflow import (
    ASSIGN_ISSUE_ON_STATUS_CHANGE,
    CREATE_PR_WHEN_COMMITS_EXIST,
    REQUEST_REVIEW_WHEN_PR_READY,
)


@pytest.fixture
def store(tmp_path):
    return EnforcementPolicyStore(str(tmp_path / ".nextstep-state.json"), clock=fixed_clock)


def test_missing_file_loads_defaults(store):
    state = store.load()

    assert state.phase == "ready"
    assert state.required_actions == []
    assert state.policy_for(CREATE_PR_WHEN_COMMITS_EXIST) == "auto"
    assert state.policy_for(ASSIGN_ISSUE_ON_STATUS_CHANGE) == "auto"
    assert state.policy_for(REQUEST_REVIEW_WHEN_PR_READY) == "suggest"


def test_reading_does_not_write(store):
    store.load()
    store.get_required_actions()
    store.validate()

    assert not os.path.exists(store.path)


def test_add_required_action_is_idempotent_per_type(store):
    assert store.add_required_action(CREATE_PR_WHEN_COMMITS_EXIST, {"branch": "feature/a-1"}) is True
    assert store.add_required_action(CREATE_PR_WHEN_COMMITS_EXIST, {"branch": "feature/b-2"}) is False

    pending = store.get_required_actions()
    assert len(pending) == 1
    assert pending[0].enforcement == "auto"
    assert pending[0].context == {"branch": "feature/a-1"}
    assert pending[0].created_at == NOW


def test_complete_moves_action_to_log(store):
    store.add_required_action(CREATE_PR_WHEN_COMMITS_EXIST)

    finished = store.complete_action(CREATE_PR_WHEN_COMMITS_EXIST)

    state = store.load()
    assert finished.status == "completed"
    assert state.required_actions == []
    assert state.completed_actions[0].completed_at == NOW


def test_fail_records_reason(store):
    store.add_required_action(REQUEST_REVIEW_WHEN_PR_READY)

    store.fail_action(REQUEST_REVIEW_WHEN_PR_READY, "422 Unprocessable Entity")

    done = store.load().completed_actions[0]
    assert done.status == "failed"
    assert done.failure_reason == "422 Unprocessable Entity"


def test_completing_unknown_action_is_noop(store):
    assert store.complete_action("nothing_pending") is None


def test_policy_applies_to_new_actions(store):
    store.set_policy(CREATE_PR_WHEN_COMMITS_EXIST, "warn")
    store.add_required_action(CREATE_PR_WHEN_COMMITS_EXIST)

    assert store.get_required_actions("warn")[0].type == CREATE_PR_WHEN_COMMITS_EXIST
    assert store.get_required_actions("auto") == []


def test_document_is_camel_case_json(store):
    store.update_context(current_issue=17, current_branch="feature/orders-17", phase="implementation")

    with open(store.path) as f:
        document = json.load(f)

    assert document["version"] == 1
    assert document["currentIssue"] == 17
    assert document["currentBranch"] == "feature/orders-17"
    assert "enforcementPolicies" in document


def test_corrupt_file_loads_defaults(store):
    with open(store.path, "w") as f:
        f.write("{not json")

    assert store.load().required_actions == []


def test_incompatible_version_loads_defaults(store):
    with open(store.path, "w") as f:
        json.dump({"version": 99, "currentIssue": 5}, f)

    assert store.load().current_issue is None


def test_resolved_decisions(store):
    assert store.is_decision_resolved("board-next-issue-1") is False
    store.mark_decision_resolved("board-next-issue-1")
    assert store.is_decision_resolved("board-next-issue-1") is True


def test_validate_reports_inconsistencies(store):
    store.update_context(current_issue=17)
    store.add_required_action(CREATE_PR_WHEN_COMMITS_EXIST)

    report = store.validate()

    assert report.is_valid is False
    assert len(report.issues) == 2


def test_reset_clears_everything(store):
    store.update_context(current_issue=17, current_branch="feature/x-17")
    store.reset()

    state = store.load()
    assert state.current_issue is None
    assert store.validate().is_valid is True


# Agent


def make_agent(store, github=None):
    github = github or FakeGitHubClient()
    return EnforcementAgent(store, github, make_config(), repo_ref=lambda: "repo"), github


def test_register_commits_without_pr(store):
    agent, _ = make_agent(store)
    snapshot = make_snapshot(branch="feature/orders-17", ahead=2, merged=False)

    added = agent.register(snapshot)

    assert len(added) == 1
    assert store.get_required_actions()[0].context == {"branch": "feature/orders-17"}


def test_register_skips_when_merge_status_unknown(store):
    agent, _ = make_agent(store)

    assert agent.register(make_snapshot(branch="feature/orders-17", ahead=2, merged=None)) == []


def test_register_skips_when_pr_exists(store):
    agent, _ = make_agent(store)
    snapshot = make_snapshot(
        branch="feature/orders-17",
        ahead=2,
        pull_requests=[make_pr(30, branch="feature/orders-17")],
    )

    assert agent.register(snapshot) == []


def test_register_bot_rereview_after_new_commits(store):
    agent, _ = make_agent(store)
    bot = "copilot-pull-request-reviewer[bot]"
    pr = make_pr(30, reviews=[review(bot, "commented", hours_ago=6)], last_commit_hours_ago=1)

    agent.register(make_snapshot(pull_requests=[pr]))

    action = store.get_required_actions()[0]
    assert action.type == REQUEST_REVIEW_WHEN_PR_READY
    assert action.enforcement == "suggest"
    assert action.context == {"pr_number": 30}


def test_suggested_pr_action_retired_after_switching_branches(store):
    agent, _ = make_agent(store)
    store.set_policy(CREATE_PR_WHEN_COMMITS_EXIST, "suggest")
    agent.register(make_snapshot(branch="feature/a-1", ahead=2))

    added = agent.register(make_snapshot(
        branch="feature/b-2",
        ahead=1,
        pull_requests=[make_pr(9, branch="feature/a-1")],
    ))

    pending = store.get_required_actions()
    assert len(added) == 1
    assert [a.context for a in pending] == [{"branch": "feature/b-2"}]
    assert store.load().completed_actions[0].context == {"branch": "feature/a-1"}


def test_pr_action_retired_once_pr_is_open(store):
    agent, _ = make_agent(store)
    store.set_policy(CREATE_PR_WHEN_COMMITS_EXIST, "suggest")
    agent.register(make_snapshot(branch="feature/a-1", ahead=2))

    agent.register(make_snapshot(
        branch="feature/a-1",
        ahead=2,
        pull_requests=[make_pr(9, branch="feature/a-1")],
    ))

    assert store.get_required_actions() == []
    assert store.validate().is_valid is True


def test_pr_action_kept_while_pull_requests_unknown(store):
    agent, _ = make_agent(store)
    agent.register(make_snapshot(branch="feature/a-1", ahead=2))

    agent.register(make_snapshot(branch="feature/a-1", ahead=2, merged=None, pull_requests_available=False))

    assert len(store.get_required_actions()) == 1


def test_review_action_retired_after_bot_rereview(store):
    agent, _ = make_agent(store)
    bot = "copilot-pull-request-reviewer[bot]"
    agent.register(make_snapshot(pull_requests=[
        make_pr(30, reviews=[review(bot, "commented", hours_ago=6)], last_commit_hours_ago=1),
    ]))

    agent.register(make_snapshot(pull_requests=[
        make_pr(30, reviews=[
            review(bot, "commented", hours_ago=6),
            review(bot, "commented", hours_ago=0.5),
        ], last_commit_hours_ago=1),
    ]))

    assert store.get_required_actions() == []
    assert store.load().completed_actions[0].type == REQUEST_REVIEW_WHEN_PR_READY


def test_review_action_retired_when_pr_is_gone(store):
    agent, _ = make_agent(store)
    store.add_required_action(REQUEST_REVIEW_WHEN_PR_READY, {"pr_number": 30})

    agent.register(make_snapshot(pull_requests=[make_pr(31)]))

    assert store.get_required_actions() == []


def test_execute_creates_pr_and_completes(store):
    agent, github = make_agent(store)
    store.add_required_action(CREATE_PR_WHEN_COMMITS_EXIST, {"branch": "feature/orders-17"})
    snapshot = make_snapshot(branch="feature/orders-17", ahead=1)

    taken, issues = agent.execute(store.get_required_actions(), snapshot)

    assert issues == []
    assert taken == ["Created PR #100 for branch 'feature/orders-17'"]
    assert github.created_prs[0].title == "Work on #17"
    assert github.created_prs[0].base == "main"
    assert store.get_required_actions() == []
    assert store.load().phase == "pr_created"


def test_execute_failure_is_recorded(store):
    agent, _ = make_agent(store, FakeGitHubClient(fail={"create_pull_request"}))
    store.add_required_action(CREATE_PR_WHEN_COMMITS_EXIST, {"branch": "feature/orders-17"})

    taken, issues = agent.execute(store.get_required_actions(), make_snapshot(branch="feature/orders-17"))

    assert taken == []
    assert len(issues) == 1
    assert store.load().completed_actions[0].status == "failed"


def test_execute_ignores_non_auto_actions(store):
    agent, github = make_agent(store)
    store.add_required_action(REQUEST_REVIEW_WHEN_PR_READY, {"pr_number": 30})

    taken, issues = agent.execute(store.get_required_actions(), make_snapshot())

    assert (taken, issues) == ([], [])
    assert github.review_requests == []
    assert len(store.get_required_actions()) == 1


def test_execute_requests_human_named_bot_reviewers(store):
    agent, github = make_agent(store)
    store.set_policy(REQUEST_REVIEW_WHEN_PR_READY, "auto")
    store.add_required_action(REQUEST_REVIEW_WHEN_PR_READY, {"pr_number": 30})

    agent.execute(store.get_required_actions(), make_snapshot())

    assert github.review_requests == [(30, ["copilot-pull-request-reviewer"])]


def test_execute_strips_app_suffix_from_bot_only_reviewers(store):
    github = FakeGitHubClient()
    agent = EnforcementAgent(store, github, make_config(bot_reviewers=["reviewbot[bot]"]), repo_ref=lambda: "repo")
    store.set_policy(REQUEST_REVIEW_WHEN_PR_READY, "auto")
    store.add_required_action(REQUEST_REVIEW_WHEN_PR_READY, {"pr_number": 30})

    taken, _ = agent.execute(store.get_required_actions(), make_snapshot())

    assert github.review_requests == [(30, ["reviewbot"])]
    assert taken == ["Requested re-review on PR #30 from reviewbot"]


def test_execute_fails_review_request_without_reviewers(store):
    github = FakeGitHubClient()
    agent = EnforcementAgent(store, github, make_config(bot_reviewers=[]), repo_ref=lambda: "repo")
    store.set_policy(REQUEST_REVIEW_WHEN_PR_READY, "auto")
    store.add_required_action(REQUEST_REVIEW_WHEN_PR_READY, {"pr_number": 30})

    taken, issues = agent.execute(store.get_required_actions(), make_snapshot())

    assert taken == []
    assert github.review_requests == []
    assert len(issues) == 1
    assert store.load().completed_actions[0].status == "failed"
