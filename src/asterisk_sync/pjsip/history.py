"""Git history for configuration files.

Every persisted write of a managed configuration file can be committed
to a git repository rooted at the file's directory.
"""
import logging
import subprocess
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class GitError(Exception):
    """A git command failed."""
    pass


@dataclass
class CommitInfo:
    """Information about a git commit."""
    hash: str
    short_hash: str
    author: str
    date: datetime
    message: str


class ConfigHistory:
    """
    Commits configuration changes to a local git repository.

    Only the files passed to ``commit`` are staged, so the repository can
    live in a directory holding other, unmanaged configuration.
    """

    def __init__(self, repo_path: Path, author: str = "asterisk-sync"):
        self.repo_path = Path(repo_path)
        self.author = author

    def _run_git(self, *args: str, check: bool = True) -> subprocess.CompletedProcess:
        """Run a git command in the repo directory."""
        cmd = ["git", "-C", str(self.repo_path)] + list(args)
        logger.debug(f"Running: {' '.join(cmd)}")

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, check=False)
        except FileNotFoundError as e:
            raise GitError("git executable not found") from e

        if check and result.returncode != 0:
            raise GitError(f"git {args[0]} failed: {result.stderr.strip()}")
        return result

    def is_initialized(self) -> bool:
        return (self.repo_path / ".git").exists()

    def init(self) -> bool:
        """
        Initialize the repository if needed.

        Returns:
            True if newly initialized, False if it already existed
        """
        if self.is_initialized():
            return False

        self.repo_path.mkdir(parents=True, exist_ok=True)
        self._run_git("init")
        self._run_git("config", "user.name", self.author)
        self._run_git("config", "user.email", f"{self.author}@localhost")

        gitignore = self.repo_path / ".gitignore"
        if not gitignore.exists():
            gitignore.write_text("*.lock\n*.tmp\n")
        self._run_git("add", ".gitignore")
        self._run_git("commit", "-m", "Initial configuration history", "--allow-empty")

        logger.info(f"Initialized configuration history at {self.repo_path}")
        return True

    def commit(self, message: str, files: list[str]) -> Optional[str]:
        """
        Stage ``files`` and commit them.

        Returns:
            Commit hash, or None if nothing changed
        """
        self.init()

        for f in files:
            self._run_git("add", "--", f)

        result = self._run_git("diff", "--cached", "--quiet", check=False)
        if result.returncode == 0:
            logger.debug("No configuration changes to commit")
            return None

        self._run_git("commit", "-m", message)
        commit_hash = self._run_git("rev-parse", "HEAD").stdout.strip()
        logger.info(f"Committed {commit_hash[:8]} - {message.splitlines()[0]}")
        return commit_hash

    def get_history(self, file_path: Optional[str] = None, limit: int = 20) -> list[CommitInfo]:
        """Recent commits, newest first."""
        if not self.is_initialized():
            return []

        args = ["log", "--format=%H|%h|%an|%aI|%s", f"-n{limit}"]
        if file_path:
            args.extend(["--", file_path])

        result = self._run_git(*args, check=False)
        if result.returncode != 0:
            return []

        commits = []
        for line in result.stdout.strip().split("\n"):
            parts = line.split("|", 4)
            if len(parts) < 5:
                continue
            try:
                commits.append(CommitInfo(
                    hash=parts[0],
                    short_hash=parts[1],
                    author=parts[2],
                    date=datetime.fromisoformat(parts[3]),
                    message=parts[4],
                ))
            except ValueError as e:
                logger.warning(f"Failed to parse commit: {e}")
        return commits
