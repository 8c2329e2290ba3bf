"""Reading and writing the PJSIP configuration file.

Writers hold an exclusive advisory lock on ``<file>.lock`` for the whole
parse, mutate, persist cycle. Writes go to a temporary file that replaces
the target atomically, keeping the original permissions.
"""
import fcntl
import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from .errors import ConfigWriteError
from .history import ConfigHistory, GitError
from .model import ConfigDocument, parse_bytes

logger = logging.getLogger(__name__)

DEFAULT_HEADER = [
    "; PJSIP configuration",
    "; Sections for managed extensions and trunks are maintained by asterisk-sync",
    "",
]


class PjsipConfigFile:
    """One PJSIP configuration file on disk."""

    def __init__(self, path: Path, history: Optional[ConfigHistory] = None):
        self.path = Path(path)
        self.history = history

    @property
    def lock_path(self) -> Path:
        return self.path.with_name(self.path.name + ".lock")

    @contextmanager
    def locked(self) -> Iterator["PjsipConfigFile"]:
        """Hold an exclusive lock for a read-modify-write cycle."""
        try:
            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
            handle = open(self.lock_path, "a")
        except OSError as e:
            raise ConfigWriteError(f"Cannot open lock file {self.lock_path}: {e}") from e

        with handle:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
            try:
                yield self
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)

    def exists(self) -> bool:
        return self.path.exists()

    def read_text(self) -> str:
        if not self.path.exists():
            return ""
        return self.path.read_bytes().decode("utf-8", errors="replace")

    def load(self) -> ConfigDocument:
        """Parse the file, or start a new document if it does not exist."""
        if not self.path.exists():
            logger.info(f"{self.path} does not exist, starting a new document")
            return ConfigDocument(header=list(DEFAULT_HEADER))
        return parse_bytes(self.path.read_bytes())

    def save(self, doc: ConfigDocument, message: Optional[str] = None) -> None:
        """Write the document atomically and record it in history.

        Raises:
            ConfigWriteError: the file could not be written
        """
        data = doc.render().encode("utf-8")
        directory = self.path.parent
        tmp_name = None
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=directory)
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            if self.path.exists():
                os.chmod(tmp_name, self.path.stat().st_mode & 0o7777)
            else:
                os.chmod(tmp_name, 0o644)
            os.replace(tmp_name, self.path)
            tmp_name = None
        except OSError as e:
            raise ConfigWriteError(f"Cannot write {self.path}: {e}") from e
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)

        logger.debug(f"Wrote {len(data)} bytes to {self.path}")

        if self.history is not None:
            try:
                relative = os.path.relpath(self.path, self.history.repo_path)
                self.history.commit(message or f"Update {self.path.name}", [relative])
            except GitError as e:
                logger.warning(f"Configuration written but history commit failed: {e}")
