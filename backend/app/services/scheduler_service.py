from __future__ import annotations

import errno
import logging
import os
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any
from uuid import uuid4

from structlog.contextvars import bind_contextvars, reset_contextvars

from backend.app.services.ingestion_pipeline import IngestionPipeline, PipelineRunResult
from backend.app.telemetry import TelemetryClient

LOGGER = logging.getLogger("playlist_autofill.scheduler")

try:
    import fcntl
except ImportError:  # pragma: no cover - non-POSIX fallback
    fcntl = None


class SchedulerService:
    """
    Background thread that runs the ingestion pipeline every poll interval.

    A process-wide `fcntl` lock keeps a second app process from running the same
    schedule. The pipeline is rebuilt for every tick so settings changes and
    token rotations are picked up.
    """

    def __init__(
        self,
        pipeline_factory: Callable[[], IngestionPipeline],
        poll_interval_seconds: int,
        *,
        telemetry: TelemetryClient | None = None,
        lock_path: Path | None = None,
    ) -> None:
        self._pipeline_factory = pipeline_factory
        self._poll_interval_seconds = max(1, poll_interval_seconds)
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock_path = lock_path
        self._lock_file: Any | None = None
        self._lock_acquired = False
        self._last_result: PipelineRunResult | None = None

    @property
    def last_result(self) -> PipelineRunResult | None:
        return self._last_result

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return

        if not self._try_acquire_process_lock():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="playlist-autofill-scheduler")
        self._thread.daemon = True
        self._thread.start()
        LOGGER.info(
            "scheduler started poll_interval_seconds=%s",
            self._poll_interval_seconds,
        )

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=3)
            self._thread = None
        self._release_process_lock()

    def run_once(self) -> PipelineRunResult | None:
        tick_id = uuid4().hex
        tick_tokens = bind_contextvars(scheduler_tick_id=tick_id, scheduler_tick_type="ingestion")
        try:
            with self._telemetry.span("scheduler.tick", tick_id=tick_id) as finish:
                try:
                    result = self._pipeline_factory().run()
                except Exception:
                    LOGGER.exception("scheduled ingestion tick crashed tick_id=%s", tick_id)
                    finish.update(outcome="crashed")
                    return None
                finish.update(status_code=result.status_code, added_count=result.added_count)
        finally:
            reset_contextvars(**tick_tokens)

        self._last_result = result
        if not result.ok:
            LOGGER.warning("scheduled ingestion tick failed message=%s", result.message)
        return result

    def _try_acquire_process_lock(self) -> bool:
        if self._lock_path is None:
            return True

        if fcntl is None:
            LOGGER.warning(
                "scheduler single-instance lock unavailable on this platform; starting scheduler"
            )
            return True

        lock_path = self._lock_path
        lock_file: Any | None = None
        try:
            lock_path.parent.mkdir(parents=True, exist_ok=True)
            lock_file = lock_path.open("a+", encoding="utf-8")
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as exc:
            if lock_file is not None:
                try:
                    lock_file.close()
                except OSError:
                    pass
            if exc.errno in (errno.EACCES, errno.EAGAIN):
                LOGGER.info(
                    "scheduler start skipped; lock held by another process path=%s",
                    lock_path,
                )
                return False
            LOGGER.warning(
                "scheduler lock acquisition failed path=%s; starting scheduler anyway",
                lock_path,
                exc_info=True,
            )
            return True

        try:
            lock_file.seek(0)
            lock_file.truncate()
            lock_file.write(f"{os.getpid()}\n")
            lock_file.flush()
        except OSError:
            LOGGER.debug("scheduler lock pid write failed path=%s", lock_path, exc_info=True)

        self._lock_file = lock_file
        self._lock_acquired = True
        return True

    def _release_process_lock(self) -> None:
        lock_file = self._lock_file
        if lock_file is None:
            self._lock_acquired = False
            return

        try:
            if self._lock_acquired and fcntl is not None:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
        except OSError:
            LOGGER.debug("scheduler lock release failed path=%s", self._lock_path, exc_info=True)
        finally:
            try:
                lock_file.close()
            except OSError:
                pass
            self._lock_file = None
            self._lock_acquired = False

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.run_once()
            self._stop_event.wait(self._poll_interval_seconds)
