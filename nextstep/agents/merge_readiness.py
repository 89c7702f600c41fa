"""
Merge-Readiness Evaluator.

Pure and total: combines CI, host mergeability and reviews into one verdict,
collecting every blocking reason instead of stopping at the first.
"""

from typing import List

from nextstep.models.state import CheckStatus, MergeReadiness, PullRequestFacts

MERGEABLE_STATE_REASONS = {
    "behind": "Branch is behind the base branch and needs to be updated",
    "dirty": "Merge conflicts with the base branch must be resolved",
    "conflicting": "Merge conflicts with the base branch must be resolved",
    "blocked": "Merging is blocked by branch protection rules",
    "unstable": "Some non-required status checks are failing",
    "draft": "PR is still a draft",
    "unknown": "Host has not determined the mergeable state yet",
}


def ci_conclusion(checks: CheckStatus) -> str:
    """
    Overall CI state across all check runs.

    Returns:
        "unknown" when checks could not be fetched, "failure" if any completed
        run did not pass, "pending" if any run is still going, else "success"
    """
    if not checks.available:
        return "unknown"
    if any(run.is_failed for run in checks.runs):
        return "failure"
    if any(not run.is_completed for run in checks.runs):
        return "pending"
    return "success"


def _ci_reasons(status: str, checks: CheckStatus) -> List[str]:
    if status == "failure":
        return [f"CI checks failing: {', '.join(checks.failed_check_names)}"]
    if status == "pending":
        return [f"CI checks still running ({checks.pending} pending)"]
    if status == "unknown":
        return ["CI status unknown: check runs could not be retrieved"]
    return []


def evaluate(pr: PullRequestFacts) -> MergeReadiness:
    """
    Evaluate whether a PR can be merged.

    Args:
        pr: Aggregated facts for one PR

    Returns:
        MergeReadiness; never raises
    """
    try:
        return _evaluate(pr)
    except Exception as e:  # unexpected input: not ready
        return MergeReadiness(
            ci_status="unknown",
            mergeable=False,
            mergeable_state="unknown",
            has_approvals=False,
            has_unresolved_comments=False,
            review_status="pending_review",
            blocking_reasons=[f"Merge readiness could not be evaluated: {e}"],
            is_merge_ready=False,
        )


def _evaluate(pr: PullRequestFacts) -> MergeReadiness:
    reasons: List[str] = []

    ci_status = ci_conclusion(pr.checks)
    reasons.extend(_ci_reasons(ci_status, pr.checks))

    mergeable = pr.mergeable is True
    if pr.mergeable is None:
        reasons.append("Mergeability not yet computed by the host")
    elif not pr.mergeable:
        reasons.append("PR is not mergeable")

    state = (pr.mergeable_state or "unknown").lower()
    if state != "clean":
        reasons.append(MERGEABLE_STATE_REASONS.get(state, f"Mergeable state is '{state}'"))

    reviews = pr.reviews
    has_approvals = reviews.available and reviews.has_approvals
    if not reviews.available:
        reasons.append("Review data unavailable: approval status unknown")
    elif not has_approvals:
        reasons.append("No approving review")

    has_unresolved = reviews.available and reviews.has_unresolved_comments
    if has_unresolved:
        reasons.append(f"{reviews.unresolved_count} unresolved review comment(s)")

    is_ready = (
        has_approvals
        and reviews.available
        and not has_unresolved
        and mergeable
        and ci_status == "success"
        and state == "clean"
    )

    return MergeReadiness(
        ci_status=ci_status,
        mergeable=mergeable,
        mergeable_state=state,
        has_approvals=has_approvals,
        has_unresolved_comments=has_unresolved,
        review_status=reviews.review_status if reviews.available else "pending_review",
        blocking_reasons=reasons,
        is_merge_ready=is_ready,
    )
