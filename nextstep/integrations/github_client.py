"""
GitHub REST client: pull requests, checks, reviews and issue assignment.

Methods return canonical models where possible and raise GithubException on
provider failure; deciding what a failure means is left to the caller.
"""

from typing import List

from github import Github, GithubException, Auth
from github.Repository import Repository
from github.PullRequest import PullRequest
import structlog

from nextstep.models.state import CheckRun, Review, ReviewComment, SubIssue

logger = structlog.get_logger()

CHECK_STATUSES = ("queued", "in_progress", "completed")

REVIEW_STATES = {
    "APPROVED": "approved",
    "CHANGES_REQUESTED": "changes_requested",
    "COMMENTED": "commented",
    "DISMISSED": "dismissed",
}


class GitHubClient:
    """Client for GitHub API operations."""

    def __init__(self, token: str, api_url: str = "https://api.github.com"):
        """
        Initialize GitHub client.

        Args:
            token: GitHub Personal Access Token or App token
            api_url: GitHub API base URL (for Enterprise)
        """
        self.token = token
        self.api_url = api_url

        auth = Auth.Token(token)
        if api_url == "https://api.github.com":
            self.client = Github(auth=auth)
        else:
            self.client = Github(base_url=api_url, auth=auth)

    def get_current_user(self) -> str:
        """Login of the authenticated actor."""
        login = self.client.get_user().login
        logger.info("github_actor_identified", actor=login)
        return login

    def get_repository(self, owner: str, name: str) -> Repository:
        """Get repository object."""
        try:
            repo = self.client.get_repo(f"{owner}/{name}")
            logger.debug("repository_fetched", repo=f"{owner}/{name}")
            return repo
        except GithubException as e:
            logger.error("failed_to_fetch_repository", repo=f"{owner}/{name}", error=str(e))
            raise

    def list_open_pull_requests(self, repo: Repository) -> List[PullRequest]:
        """Open PRs ordered by number."""
        pulls = list(repo.get_pulls(state="open", sort="created", direction="asc"))
        return sorted(pulls, key=lambda pr: pr.number)

    def get_pull_request(self, repo: Repository, number: int) -> PullRequest:
        """Full PR detail, including the host-computed mergeability."""
        return repo.get_pull(number)

    def get_check_runs(self, repo: Repository, sha: str) -> List[CheckRun]:
        """Check runs for a commit."""
        runs = []
        for run in repo.get_commit(sha).get_check_runs():
            runs.append(CheckRun(
                name=run.name,
                status=run.status if run.status in CHECK_STATUSES else "queued",
                conclusion=run.conclusion,
                url=run.html_url,
            ))
        return runs

    def get_reviews(self, pr: PullRequest) -> List[Review]:
        """
        Submitted reviews with their inline comments.

        Pending reviews (not yet submitted) are skipped.
        """
        comments_by_review = {}
        for comment in pr.get_review_comments():
            review_id = comment.pull_request_review_id
            if review_id is None:
                continue
            comments_by_review.setdefault(review_id, []).append(ReviewComment(
                id=comment.id,
                path=comment.path,
                line=comment.line or comment.original_line,
                body=comment.body or "",
            ))

        reviews = []
        for review in pr.get_reviews():
            state = REVIEW_STATES.get(review.state)
            if state is None or review.submitted_at is None or review.user is None:
                continue
            reviews.append(Review(
                reviewer=review.user.login,
                state=state,
                submitted_at=review.submitted_at,
                comments=comments_by_review.get(review.id, []),
            ))
        return reviews

    def get_last_commit_date(self, pr: PullRequest):
        """Committer date of the PR's most recent commit, or None."""
        commits = pr.get_commits()
        if commits.totalCount == 0:
            return None
        last = commits[commits.totalCount - 1]
        return last.commit.committer.date

    def get_requested_reviewers(self, pr: PullRequest) -> List[str]:
        users, _teams = pr.get_review_requests()
        return [user.login for user in users]

    def is_branch_merged(self, repo: Repository, owner: str, branch: str) -> bool:
        """True when a closed PR from `branch` was merged (squash merges included)."""
        for pr in repo.get_pulls(state="closed", head=f"{owner}:{branch}"):
            if pr.merged:
                return True
        return False

    def assign_issue(self, repo: Repository, number: int, login: str) -> None:
        """Add `login` to the issue's assignees."""
        try:
            repo.get_issue(number).add_to_assignees(login)
            logger.info("issue_assigned", issue=number, assignee=login)
        except GithubException as e:
            logger.error("failed_to_assign_issue", issue=number, error=str(e))
            raise

    def search_issues_mentioning(self, owner: str, name: str, number: int) -> List[SubIssue]:
        """Open issues whose body references `#number`."""
        query = f'repo:{owner}/{name} is:issue is:open "#{number}" in:body'
        found = []
        for issue in self.client.search_issues(query):
            if issue.number == number:
                continue
            found.append(SubIssue(
                number=issue.number,
                title=issue.title,
                state="open" if issue.state == "open" else "closed",
                labels=[label.name for label in issue.labels],
                assignees=[assignee.login for assignee in issue.assignees],
            ))
        return sorted(found, key=lambda issue: issue.number)

    def create_pull_request(
        self,
        repo: Repository,
        title: str,
        body: str,
        head: str,
        base: str = "main",
    ) -> PullRequest:
        """
        Create a pull request.

        Args:
            repo: Repository object
            title: PR title
            body: PR description
            head: Head branch
            base: Base branch

        Returns:
            PullRequest object
        """
        try:
            pr = repo.create_pull(
                title=title,
                body=body,
                head=head,
                base=base,
            )
            logger.info("pull_request_created", pr_number=pr.number, url=pr.html_url)
            return pr
        except GithubException as e:
            logger.error("failed_to_create_pr", head=head, base=base, error=str(e))
            raise

    def request_reviewers(self, repo: Repository, number: int, reviewers: List[str]) -> None:
        """Request (or re-request) reviews on a PR."""
        try:
            repo.get_pull(number).create_review_request(reviewers=reviewers)
            logger.info("review_requested", pr_number=number, reviewers=reviewers)
        except GithubException as e:
            logger.error("failed_to_request_review", pr_number=number, error=str(e))
            raise


def get_github_client(token: str, api_url: str = "https://api.github.com") -> GitHubClient:
    """Create a new GitHub client."""
    return GitHubClient(token=token, api_url=api_url)
