"""Session files and their background writer.

Session output is appended in batches by a single daemon thread fed from a
bounded queue. When the queue is saturated the newest batch is dropped and
counted; the caller never blocks.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from flowlog.utils.time_provider import TimeProvider, get_default_time_provider

from .context import sanitize_for_path

if TYPE_CHECKING:
    from .metrics import PipelineMetricsExporter

logger = logging.getLogger(__name__)

SESSIONS_DIR = "sessions"
SECONDS_PER_DAY = 86400


@dataclass
class SessionDescriptor:
    """Where one command's session log goes and how it is batched.

    ``batch_size`` and ``flush_interval_ms`` are updated in place on tier
    transitions.
    """

    session_id: str
    command: str
    file_path: Path
    batch_size: int
    flush_interval_ms: int


def build_session_path(
    base_dir: str | Path,
    command: str,
    session_id: str,
    time_provider: TimeProvider | None = None,
) -> Path:
    """``<base>/sessions/<command>/<YYYY-MM-DD>_<command>-session_<last6>.log``"""
    provider = time_provider or get_default_time_provider()
    safe_command = sanitize_for_path(command)
    day = datetime.fromtimestamp(provider.now()).strftime("%Y-%m-%d")
    suffix = sanitize_for_path(session_id[-6:])
    return (
        Path(base_dir)
        / SESSIONS_DIR
        / safe_command
        / f"{day}_{safe_command}-session_{suffix}.log"
    )


@dataclass(frozen=True)
class SessionFileInfo:
    path: Path
    command: str
    size_bytes: int
    modified: float


def iter_session_files(base_dir: str | Path, command: str | None = None) -> Iterator[SessionFileInfo]:
    root = Path(base_dir) / SESSIONS_DIR
    if command is not None:
        root = root / sanitize_for_path(command)
    if not root.is_dir():
        return
    for path in sorted(root.rglob("*.log")):
        try:
            stat = path.stat()
        except FileNotFoundError:
            continue
        yield SessionFileInfo(
            path=path,
            command=path.parent.name,
            size_bytes=stat.st_size,
            modified=stat.st_mtime,
        )


def cleanup_old_sessions(
    base_dir: str | Path,
    max_age_days: float,
    time_provider: TimeProvider | None = None,
) -> int:
    """Delete session files older than ``max_age_days``.

    Files that disappear while the sweep runs are ignored.

    Returns:
        Number of files deleted
    """
    provider = time_provider or get_default_time_provider()
    cutoff = provider.now() - max_age_days * SECONDS_PER_DAY
    deleted = 0
    for info in list(iter_session_files(base_dir)):
        if info.modified >= cutoff:
            continue
        try:
            info.path.unlink()
        except FileNotFoundError:
            continue
        deleted += 1
    if deleted:
        logger.debug("Removed %d session files older than %s days", deleted, max_age_days)
    return deleted


ErrorCallback = Callable[[BaseException], None]


class SessionWriter:
    """Appends batches of lines to one session file on a daemon thread.

    Example:
        >>> writer = SessionWriter(Path("/tmp/session.log"))
        >>> writer.submit(['{"message": "hello"}'])
        True
        >>> writer.drain()
    """

    def __init__(
        self,
        path: Path,
        queue_size: int = 64,
        on_error: ErrorCallback | None = None,
        metrics: PipelineMetricsExporter | None = None,
    ) -> None:
        if queue_size <= 0:
            raise ValueError("queue_size must be positive")
        self.path = Path(path)
        self._queue: queue.Queue[list[str] | None] = queue.Queue(maxsize=queue_size)
        self._on_error = on_error
        self._metrics = metrics
        self._worker: threading.Thread | None = None
        self._start_lock = threading.Lock()
        self._closed = False

        self.batches_written = 0
        self.batches_dropped = 0
        self.batches_failed = 0
        self.batches_discarded = 0
        self.lines_written = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def submit(self, lines: list[str]) -> bool:
        """Queue a batch for appending without waiting for it.

        Returns:
            False if the writer is closed or the queue is saturated
        """
        if self._closed or not lines:
            return False
        self._ensure_worker()
        try:
            self._queue.put_nowait(list(lines))
        except queue.Full:
            self.batches_dropped += 1
            self._record("dropped")
            return False
        return True

    def drain(self) -> None:
        """Block until every submitted batch has been processed."""
        if self._worker is not None:
            self._queue.join()

    def discard_pending(self) -> int:
        """Throw away queued batches that have not been written yet."""
        discarded = 0
        while True:
            try:
                batch = self._queue.get_nowait()
            except queue.Empty:
                break
            if batch is not None:
                discarded += 1
            self._queue.task_done()
        self.batches_discarded += discarded
        self._record("discarded", discarded)
        return discarded

    def close(self, wait: bool = True) -> None:
        """Stop accepting batches and stop the worker.

        With ``wait`` the queued batches are written first; otherwise they are
        discarded.
        """
        if self._closed:
            return
        self._closed = True
        if self._worker is None:
            return
        if not wait:
            self.discard_pending()
        self._queue.put(None)
        if wait:
            self._worker.join()

    def _ensure_worker(self) -> None:
        if self._worker is not None:
            return
        with self._start_lock:
            if self._worker is None:
                self._worker = threading.Thread(
                    target=self._run,
                    name=f"flowlog-session-{self.path.stem}",
                    daemon=True,
                )
                self._worker.start()

    def _run(self) -> None:
        while True:
            batch = self._queue.get()
            try:
                if batch is None:
                    return
                self._append(batch)
            finally:
                self._queue.task_done()

    def _append(self, batch: list[str]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write("\n".join(batch) + "\n")
        except (OSError, ValueError) as exc:
            self.batches_failed += 1
            self._record("failed")
            if self._on_error is not None:
                self._on_error(exc)
            return
        self.batches_written += 1
        self.lines_written += len(batch)
        self._record("written")

    def _record(self, outcome: str, count: int = 1) -> None:
        if self._metrics is not None:
            self._metrics.record_session_batch(outcome, count)
