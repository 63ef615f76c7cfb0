"""File-backed session storage.

One JSON file per session in a shared directory:
    <directory>/sqltunnel_session_<session-id>.json
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import sys
import tempfile
import time
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import IO

from .base import ProbabilisticCleanup, SessionState, SessionStorage, is_valid_session_id

logger = logging.getLogger(__name__)

FILE_PREFIX = "sqltunnel_session_"


@contextlib.contextmanager
def _exclusive_lock(handle: IO[str]) -> Iterator[None]:
    """Hold an exclusive advisory lock on an open file."""
    if sys.platform == "win32":
        import msvcrt

        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_LOCK, 1)
        try:
            yield
        finally:
            handle.seek(0)
            msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)
    else:
        import fcntl

        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


class FileSessionStorage(SessionStorage):
    """Stores each session as a small JSON file.

    Writes hold an exclusive lock around truncate+write so concurrent
    requests on the same session never interleave partial writes.
    """

    def __init__(
        self,
        directory: str | Path | None = None,
        lifetime: int = 3600,
        cleanup_probability: float = 0.01,
        *,
        rand: Callable[[], float] | None = None,
    ):
        self.directory = Path(directory) if directory else Path(tempfile.gettempdir())
        self.directory.mkdir(parents=True, exist_ok=True)
        self.lifetime = lifetime
        self._sweeper = ProbabilisticCleanup(cleanup_probability, rand)

    def _session_path(self, session_id: str) -> Path:
        if not is_valid_session_id(session_id):
            raise ValueError(f"Invalid session_id: {session_id!r}")
        return self.directory / f"{FILE_PREFIX}{session_id}.json"

    def _is_expired(self, path: Path, now: float | None = None) -> bool:
        now = time.time() if now is None else now
        return path.stat().st_mtime < now - self.lifetime

    def get(self, session_id: str) -> SessionState:
        path = self._session_path(session_id)
        try:
            if self._is_expired(path):
                return SessionState()
            content = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return SessionState()

        try:
            return SessionState.from_dict(json.loads(content))
        except json.JSONDecodeError:
            logger.warning(f"Unreadable session file for {session_id}, treating as empty")
            return SessionState()

    def save(self, session_id: str, state: SessionState) -> None:
        path = self._session_path(session_id)
        fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o600)
        with os.fdopen(fd, "r+", encoding="utf-8") as handle, _exclusive_lock(handle):
            handle.seek(0)
            handle.truncate()
            handle.write(json.dumps(state.to_dict()))
            handle.flush()

    def delete(self, session_id: str) -> None:
        path = self._session_path(session_id)
        with contextlib.suppress(FileNotFoundError):
            path.unlink()
            logger.debug(f"Deleted session file {path.name}")

    def cleanup(self) -> int:
        if not self._sweeper.should_sweep():
            return 0
        return self.sweep()

    def sweep(self) -> int:
        """Delete every session file older than the lifetime."""
        now = time.time()
        removed = 0
        for path in self.directory.glob(f"{FILE_PREFIX}*.json"):
            try:
                if self._is_expired(path, now):
                    path.unlink()
                    removed += 1
            except FileNotFoundError:
                # Removed by a concurrent sweep
                continue
            except OSError as e:
                logger.error(f"Failed to remove session file {path.name}: {e}")

        if removed:
            logger.info(f"Removed {removed} expired session files")
        return removed
