"""
Local git client for working-copy state and branch preparation.
"""

import re
import subprocess
from typing import List, Optional, Tuple

import structlog

from nextstep.errors import GitCommandError
from nextstep.models.state import RepositoryState

logger = structlog.get_logger()

REMOTE_PATTERN = re.compile(r"github\.com[:/]([^/]+)/([^/]+?)(?:\.git)?/?$")


class GitClient:
    """Runs git in one working copy."""

    def __init__(self, repo_path: str = ".", git_path: str = "git"):
        self.repo_path = repo_path
        self.git_path = git_path

    def _run(self, args: List[str], check: bool = True) -> subprocess.CompletedProcess:
        cmd = [self.git_path, "-C", self.repo_path, *args]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as e:
            raise GitCommandError(args, -1, str(e))
        if check and result.returncode != 0:
            raise GitCommandError(args, result.returncode, result.stderr)
        return result

    def repo_root(self) -> str:
        return self._run(["rev-parse", "--show-toplevel"]).stdout.strip()

    def current_branch(self) -> Optional[str]:
        """Branch name, or None on a detached HEAD."""
        return self._run(["branch", "--show-current"]).stdout.strip() or None

    def status_porcelain(self) -> Tuple[List[str], List[str]]:
        """Changed tracked paths and untracked paths."""
        changed, untracked = [], []
        for line in self._run(["status", "--porcelain"]).stdout.splitlines():
            if len(line) < 4:
                continue
            code, path = line[:2], line[3:]
            if " -> " in path:
                path = path.split(" -> ", 1)[1]
            if code == "??":
                untracked.append(path)
            else:
                changed.append(path)
        return changed, untracked

    def ahead_behind(self, default_branch: str = "main") -> Tuple[int, int]:
        """Commits ahead of / behind origin/<default_branch>."""
        upstream = f"origin/{default_branch}"
        ahead = self._run(["rev-list", "--count", f"{upstream}..HEAD"]).stdout.strip()
        behind = self._run(["rev-list", "--count", f"HEAD..{upstream}"]).stdout.strip()
        return int(ahead or 0), int(behind or 0)

    def repository_state(self, default_branch: str = "main") -> RepositoryState:
        """
        Snapshot of the working copy.

        The merged flag is filled in by the aggregator from the code host.
        """
        branch = self.current_branch()
        changed, untracked = self.status_porcelain()
        try:
            ahead, behind = self.ahead_behind(default_branch)
        except GitCommandError as e:
            # No remote tracking ref yet: counts are unknown, report zero
            logger.warning("ahead_behind_unavailable", error=str(e))
            ahead, behind = 0, 0
        return RepositoryState(
            current_branch=branch,
            default_branch=default_branch,
            is_clean=not changed and not untracked,
            uncommitted_files=changed,
            untracked_files=untracked,
            ahead=ahead,
            behind=behind,
        )

    def remote_repository(self, remote: str = "origin") -> Tuple[str, str]:
        """(owner, name) parsed from the GitHub remote URL."""
        url = self._run(["remote", "get-url", remote]).stdout.strip()
        match = REMOTE_PATTERN.search(url)
        if not match:
            raise GitCommandError(["remote", "get-url", remote], 0, f"not a GitHub remote: {url}")
        return match.group(1), match.group(2)

    def branch_exists(self, branch: str) -> bool:
        return self._run(["rev-parse", "--verify", "--quiet", f"refs/heads/{branch}"], check=False).returncode == 0

    def checkout(self, branch: str) -> None:
        self._run(["checkout", branch])
        logger.info("branch_switched", branch=branch)

    def create_branch(self, branch: str, start_point: Optional[str] = None) -> None:
        args = ["checkout", "-b", branch]
        if start_point:
            args.append(start_point)
        self._run(args)
        logger.info("branch_created", branch=branch, start_point=start_point)


def get_git_client(repo_path: str = ".") -> GitClient:
    """Create a new git client."""
    return GitClient(repo_path=repo_path)
