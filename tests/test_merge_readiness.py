"""
Tests for the merge-readiness evaluator.
"""

from builders import checks, make_pr, review
from nextstep.agents.merge_readiness import ci_conclusion, evaluate
from nextstep.models.state import CheckRun, CheckStatus, ThreadSummary


def test_ready_when_everything_passes():
    verdict = evaluate(make_pr(1, reviews=[review("bob", "approved")]))

    assert verdict.is_merge_ready is True
    assert verdict.blocking_reasons == []
    assert verdict.ci_status == "success"
    assert verdict.review_status == "approved"


def test_no_check_runs_counts_as_success():
    assert ci_conclusion(CheckStatus(runs=[])) == "success"


def test_neutral_and_skipped_conclusions_pass():
    status = CheckStatus(runs=[
        CheckRun(name="docs", conclusion="skipped"),
        CheckRun(name="optional", conclusion="neutral"),
    ])
    assert ci_conclusion(status) == "success"


def test_failure_outranks_pending():
    status = CheckStatus(runs=[
        CheckRun(name="slow", status="queued"),
        CheckRun(name="lint", conclusion="failure"),
    ])
    assert ci_conclusion(status) == "failure"


def test_unavailable_checks_are_unknown_and_block():
    verdict = evaluate(make_pr(1, reviews=[review("bob", "approved")], ci=CheckStatus(available=False)))

    assert verdict.ci_status == "unknown"
    assert verdict.is_merge_ready is False
    assert any("unknown" in reason for reason in verdict.blocking_reasons)


def test_collects_every_blocking_reason_in_order():
    pr = make_pr(
        1,
        ci=checks(failed=["unit"]),
        mergeable=False,
        mergeable_state="dirty",
        reviews=[review("bob", "commented", unresolved=2)],
    )

    verdict = evaluate(pr)

    assert verdict.is_merge_ready is False
    assert verdict.blocking_reasons == [
        "CI checks failing: unit",
        "PR is not mergeable",
        "Merge conflicts with the base branch must be resolved",
        "No approving review",
        "2 unresolved review comment(s)",
    ]


def test_unresolved_threads_block_an_approved_pr():
    pr = make_pr(1, reviews=[review("bob", "approved")], threads=ThreadSummary(total=3, resolved=2))

    verdict = evaluate(pr)

    assert verdict.has_unresolved_comments is True
    assert verdict.is_merge_ready is False


def test_unknown_mergeability_blocks():
    verdict = evaluate(make_pr(1, reviews=[review("bob", "approved")], mergeable=None, mergeable_state="unknown"))

    assert verdict.mergeable is False
    assert "Mergeability not yet computed by the host" in verdict.blocking_reasons
    assert verdict.is_merge_ready is False


def test_latest_review_per_reviewer_counts():
    pr = make_pr(1, reviews=[
        review("bob", "changes_requested", hours_ago=5),
        review("bob", "approved", hours_ago=1),
    ])

    verdict = evaluate(pr)

    assert verdict.review_status == "approved"
    assert verdict.is_merge_ready is True


def test_missing_review_data_is_never_approval():
    verdict = evaluate(make_pr(1, reviews_available=False))

    assert verdict.has_approvals is False
    assert verdict.is_merge_ready is False
    assert "Review data unavailable: approval status unknown" in verdict.blocking_reasons


def test_resolved_thread_does_not_block_an_approved_pr():
    pr = make_pr(
        4,
        reviews=[review("bob", "approved", unresolved=1)],
        threads=ThreadSummary(total=1, resolved=1),
    )

    verdict = evaluate(pr)

    assert verdict.review_status == "approved"
    assert verdict.has_unresolved_comments is False
    assert verdict.blocking_reasons == []
    assert verdict.is_merge_ready is True
