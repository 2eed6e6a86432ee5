"""Append-only log of flagged content."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from modgate.core.errors import LogWriteFailure
from modgate.util.logger import logger


class ReadWriteLock:
    """Many readers or one writer. No upgrade/downgrade."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class FlagLog:
    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = ReadWriteLock()

    def append(self, text: str) -> None:
        with self._lock.write_locked():
            try:
                if self.path.parent != Path("."):
                    self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as handle:
                    handle.write(f"{text}\n")
            except OSError as exc:
                raise LogWriteFailure(f"flag log write failed path={self.path}: {exc}") from exc

    def record(self, text: str) -> bool:
        """Append a flagged entry; write failures are logged and never raised."""
        logger.warning("flagged content=%s", text)
        try:
            self.append(text)
        except LogWriteFailure as exc:
            logger.error("flag log write error: %s", exc)
            return False
        return True

    def read_all(self) -> str:
        with self._lock.read_locked():
            return self.path.read_text(encoding="utf-8")
