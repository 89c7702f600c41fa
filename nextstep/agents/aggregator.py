"""
State Aggregator.

Gathers git, PR, CI, review and project-board facts into a WorkflowSnapshot.
Read-only. Provider failures become ProviderUnavailable notes and the fact
is left unknown, never filled with a favorable default.
"""

import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from typing import List, Optional, Tuple

import httpx
from github import GithubException
import structlog

from nextstep.config import Config
from nextstep.errors import GitCommandError, GraphQLError, ProviderUnavailable
from nextstep.models.state import (
    CheckStatus,
    ProjectItem,
    PullRequestFacts,
    RepositoryState,
    ReviewState,
    SubIssue,
    WorkflowSnapshot,
)

logger = structlog.get_logger()

# OSError covers the transport errors raised under PyGithub (requests)
PROVIDER_ERRORS = (
    GithubException,
    GraphQLError,
    GitCommandError,
    httpx.HTTPError,
    OSError,
    KeyError,
    TypeError,
    ValueError,
)


@contextmanager
def provider_guard(provider: str, fact: str):
    """Convert provider errors raised inside the block into ProviderUnavailable."""
    try:
        yield
    except PROVIDER_ERRORS as e:
        logger.warning("provider_unavailable", provider=provider, fact=fact, error=str(e))
        raise ProviderUnavailable(provider, fact, str(e)) from e


class StateAggregatorAgent:
    """Builds the snapshot consumed by the resolver."""

    def __init__(self, config: Config, github_client, graphql_client, git_client, store=None):
        """
        Initialize the aggregator.

        Args:
            config: Application configuration
            github_client: GitHub REST client
            graphql_client: GitHub GraphQL client
            git_client: Local git client
            store: Enforcement-policy store, read for pending actions
        """
        self.config = config
        self.github_client = github_client
        self.graphql_client = graphql_client
        self.git_client = git_client
        self.store = store
        self._repo = None
        self._repo_name: Optional[Tuple[str, str]] = None

    # Identity and repository

    def repository_name(self) -> Tuple[str, str]:
        """(owner, name) from configuration, else from the origin remote."""
        if self._repo_name is None:
            if self.config.repo_owner and self.config.repo_name:
                self._repo_name = (self.config.repo_owner, self.config.repo_name)
            else:
                with provider_guard("git", "remote repository"):
                    self._repo_name = self.git_client.remote_repository()
        return self._repo_name

    def repo(self):
        """PyGithub repository object, fetched once per aggregator."""
        if self._repo is None:
            owner, name = self.repository_name()
            with provider_guard("github", "repository"):
                self._repo = self.github_client.get_repository(owner, name)
        return self._repo

    def fetch_actor(self) -> str:
        with provider_guard("github", "current actor"):
            return self.github_client.get_current_user()

    def fetch_repository_state(self) -> RepositoryState:
        with provider_guard("git", "working tree state"):
            return self.git_client.repository_state(self.config.default_branch)

    def fetch_branch_merged(self, branch: str) -> bool:
        owner, _name = self.repository_name()
        with provider_guard("github", f"merge status of '{branch}'"):
            return self.github_client.is_branch_merged(self.repo(), owner, branch)

    # Pull requests

    def fetch_pull_requests(self) -> Tuple[List[PullRequestFacts], List[str]]:
        """
        Open PRs with checks and reviews attached.

        Returns:
            (PRs ordered by number, degradation notes)
        """
        repo = self.repo()
        with provider_guard("github", "open pull requests"):
            pulls = self.github_client.list_open_pull_requests(repo)

        if not pulls:
            return [], []

        workers = max(1, min(self.config.max_workers, len(pulls)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(lambda pull: self._pull_request_facts(repo, pull), pulls))

        facts = sorted((f for f, _ in results), key=lambda pr: pr.number)
        notes = [note for _, pr_notes in results for note in pr_notes]
        return facts, notes

    def _pull_request_facts(self, repo, pull) -> Tuple[PullRequestFacts, List[str]]:
        owner, name = self.repository_name()
        notes: List[str] = []
        number = pull.number

        facts = PullRequestFacts(
            number=number,
            title=pull.title,
            author=pull.user.login if pull.user else "",
            url=pull.html_url,
            head_branch=pull.head.ref,
            base_branch=pull.base.ref,
            head_sha=pull.head.sha,
            is_draft=bool(pull.draft),
            updated_at=pull.updated_at,
        )

        try:
            with provider_guard("github", f"mergeability of PR #{number}"):
                detail = self.github_client.get_pull_request(repo, number)
                facts.mergeable = detail.mergeable
                facts.mergeable_state = detail.mergeable_state or "unknown"
        except ProviderUnavailable as e:
            notes.append(e.as_note())

        try:
            with provider_guard("github", f"check runs of PR #{number}"):
                facts.checks = CheckStatus(runs=self.github_client.get_check_runs(repo, pull.head.sha))
        except ProviderUnavailable as e:
            facts.checks = CheckStatus(available=False)
            notes.append(e.as_note())

        try:
            with provider_guard("github", f"reviews of PR #{number}"):
                reviews = self.github_client.get_reviews(pull)
            with provider_guard("github-graphql", f"review threads of PR #{number}"):
                threads = self.graphql_client.get_review_threads(owner, name, number)
            facts.reviews = ReviewState(reviews=reviews, threads=threads)
            facts.reviews.mark_resolved_comments()
        except ProviderUnavailable as e:
            facts.reviews = ReviewState(available=False)
            notes.append(e.as_note())

        try:
            with provider_guard("github", f"commits of PR #{number}"):
                facts.last_commit_at = self.github_client.get_last_commit_date(pull)
                facts.requested_reviewers = self.github_client.get_requested_reviewers(pull)
        except ProviderUnavailable as e:
            notes.append(e.as_note())

        return facts, notes

    # Project board

    def fetch_board_items(self) -> List[ProjectItem]:
        """Every issue item on the configured project board."""
        owner = self.config.project_owner or self.repository_name()[0]
        with provider_guard("github-graphql", "project board items"):
            items = self.graphql_client.get_project_items(
                owner,
                self.config.project_number,
                owner_type=self.config.project_owner_type,
                status_field=self.config.status_field_name,
                epic_label=self.config.epic_label,
            )
        return sorted(items, key=lambda item: item.number)

    def partition_in_progress(self, items: List[ProjectItem], actor: str) -> Tuple[List[ProjectItem], List[ProjectItem]]:
        """(issues, epics) assigned to `actor` with the in-progress status."""
        in_progress = [
            item for item in items
            if item.state == "open"
            and actor in item.assignees
            and item.status == self.config.in_progress_status
        ]
        issues = [item for item in in_progress if not item.is_epic]
        epics = [item for item in in_progress if item.is_epic]
        return issues, epics

    def todo_candidates(self, items: List[ProjectItem]) -> List[ProjectItem]:
        """Open, unassigned, non-epic items in the to-do column."""
        return [
            item for item in items
            if item.state == "open"
            and not item.is_epic
            and not item.assignees
            and item.status == self.config.todo_status
        ]

    def fetch_epic_sub_issues(self, epic_number: int) -> List[SubIssue]:
        """
        Sub-issues of an epic.

        Falls back to searching for open issues that mention the epic when the
        sub-issue connection is unavailable.
        """
        owner, name = self.repository_name()
        try:
            with provider_guard("github-graphql", f"sub-issues of epic #{epic_number}"):
                return self.graphql_client.get_sub_issues(owner, name, epic_number)
        except ProviderUnavailable:
            logger.info("sub_issue_search_fallback", epic=epic_number)

        with provider_guard("github", f"issues referencing epic #{epic_number}"):
            return self.github_client.search_issues_mentioning(owner, name, epic_number)

    # Snapshot

    def collect(self) -> WorkflowSnapshot:
        """
        Gather a consistent snapshot.

        Returns:
            WorkflowSnapshot; facts that could not be fetched are marked
            unknown and described in `degradations`
        """
        start_time = time.time()
        notes: List[str] = []
        snapshot = WorkflowSnapshot(project_url=self.config.project_url)

        try:
            snapshot.actor = self.fetch_actor()
        except ProviderUnavailable as e:
            notes.append(e.as_note())

        try:
            snapshot.repository = self.fetch_repository_state()
        except ProviderUnavailable as e:
            snapshot.repository = RepositoryState(
                default_branch=self.config.default_branch,
                available=False,
            )
            notes.append(e.as_note())

        branch = snapshot.repository.current_branch
        if branch and not snapshot.repository.on_default_branch:
            try:
                snapshot.repository.branch_merged = self.fetch_branch_merged(branch)
            except ProviderUnavailable as e:
                notes.append(e.as_note())
        elif branch:
            snapshot.repository.branch_merged = False

        try:
            snapshot.pull_requests, pr_notes = self.fetch_pull_requests()
            notes.extend(pr_notes)
        except ProviderUnavailable as e:
            snapshot.pull_requests_available = False
            notes.append(e.as_note())

        if snapshot.actor and self.config.project_number is not None:
            try:
                items = self.fetch_board_items()
                issues, epics = self.partition_in_progress(items, snapshot.actor)
                snapshot.in_progress_issues = issues
                snapshot.in_progress_epics = epics
                snapshot.todo_candidates = self.todo_candidates(items)
            except ProviderUnavailable as e:
                notes.append(e.as_note())

        if snapshot.in_progress_epics and not snapshot.in_progress_issues:
            epic = snapshot.in_progress_epics[0]
            try:
                epic.sub_issues = self.fetch_epic_sub_issues(epic.number)
            except ProviderUnavailable as e:
                notes.append(e.as_note())

        if self.store is not None:
            snapshot.required_actions = self.store.get_required_actions()

        snapshot.degradations = notes
        logger.info(
            "snapshot_collected",
            actor=snapshot.actor,
            branch=branch,
            open_prs=len(snapshot.pull_requests),
            in_progress_issues=len(snapshot.in_progress_issues),
            in_progress_epics=len(snapshot.in_progress_epics),
            degradations=len(notes),
            duration=time.time() - start_time,
        )
        return snapshot
