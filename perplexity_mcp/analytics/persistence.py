"""
Snapshot file ownership for the analytics store.

The manager loads the snapshot at startup, saves it on a fixed interval from a
background task, merges imported snapshots, and flushes once more at shutdown.
Every I/O failure is logged and swallowed; telemetry must never take the
server down.
"""

from __future__ import annotations

import asyncio
import hmac
import logging
import os
from enum import Enum
from pathlib import Path
from threading import Lock
from typing import Any, Optional

from perplexity_mcp.analytics.codec import (
    AnalyticsError,
    SnapshotFormatError,
    decode_import_payload,
    dumps_snapshot,
    loads_snapshot,
)
from perplexity_mcp.analytics.store import AnalyticsSnapshot, AnalyticsStore

logger = logging.getLogger(__name__)

DEFAULT_SAVE_INTERVAL = 60.0


class ImportUnauthorizedError(AnalyticsError):
    """Raised when an import presents the wrong credential."""


class LoadOutcome(str, Enum):
    RESTORED = "restored"
    INITIALIZED = "initialized"
    FAILED = "failed"


class AnalyticsPersistence:
    """Owns the snapshot file of a single ``AnalyticsStore``."""

    def __init__(
        self,
        store: AnalyticsStore,
        path: str | os.PathLike[str],
        *,
        save_interval: float = DEFAULT_SAVE_INTERVAL,
        import_key: Optional[str] = None,
    ) -> None:
        self.store = store
        self.path = Path(path)
        self.save_interval = save_interval
        self.import_key = import_key
        self._write_lock = Lock()
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _ensure_dir(self) -> None:
        directory = self.path.parent
        if directory.is_dir():
            return
        try:
            directory.mkdir(parents=True, exist_ok=True)
            logger.info("Created analytics data directory %s", directory)
        except OSError as exc:
            logger.warning("Failed to create analytics directory %s: %s", directory, exc)

    def load(self) -> LoadOutcome:
        """
        Seed the store from the snapshot file.

        A missing file is written immediately so a fresh deployment has a
        snapshot on disk. An unreadable or corrupt file leaves the defaults in
        place and is not overwritten until the next save.
        """
        self._ensure_dir()
        if not self.path.exists():
            logger.info("No analytics file at %s, starting fresh", self.path)
            self.save()
            return LoadOutcome.INITIALIZED

        try:
            snapshot = loads_snapshot(self.path.read_bytes())
        except (OSError, SnapshotFormatError) as exc:
            logger.warning(
                "Failed to load analytics from %s: %s",
                self.path,
                exc,
                extra={"error": str(exc)},
            )
            return LoadOutcome.FAILED

        self.store.restore(snapshot)
        logger.info(
            "Loaded analytics from %s total_requests=%s total_tool_calls=%s",
            self.path,
            snapshot.total_requests,
            snapshot.total_tool_calls,
        )
        return LoadOutcome.RESTORED

    def save(self) -> bool:
        """Write the current snapshot atomically. Returns False when the write failed."""
        with self._write_lock:
            # Snapshot under the write lock so the newest state is always written last.
            payload = dumps_snapshot(self.store.snapshot())
            self._ensure_dir()
            tmp_path = self.path.with_name(self.path.name + ".tmp")
            try:
                tmp_path.write_text(payload, encoding="utf-8")
                os.replace(tmp_path, self.path)
            except OSError as exc:
                logger.warning(
                    "Failed to save analytics to %s: %s",
                    self.path,
                    exc,
                    extra={"error": str(exc)},
                )
                return False
        return True

    def start(self) -> None:
        """Schedule periodic saves on the running event loop."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run_periodic(), name="analytics-periodic-save")

    async def _run_periodic(self) -> None:
        while True:
            await asyncio.sleep(self.save_interval)
            await asyncio.to_thread(self.save)

    async def stop(self) -> bool:
        """Cancel the periodic task and flush one final snapshot."""
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            # wait() does not re-raise the task's cancellation; a cancel aimed at stop() still propagates.
            await asyncio.wait([task])
        saved = self.save()
        if saved:
            logger.info("Analytics saved to %s", self.path)
        return saved

    def check_credential(self, credential: Optional[str]) -> None:
        if not self.import_key:
            return
        presented = (credential or "").encode("utf-8")
        if not hmac.compare_digest(presented, self.import_key.encode("utf-8")):
            raise ImportUnauthorizedError("Invalid import key")

    def import_snapshot(self, payload: Any, credential: Optional[str] = None) -> AnalyticsSnapshot:
        """
        Merge a foreign snapshot into the live store and persist it.

        The credential is checked and the payload fully decoded before the
        store is touched, so a rejected import never leaves a partial merge.

        Raises:
            ImportUnauthorizedError: The import key does not match.
            SnapshotFormatError: The payload is not a valid snapshot or report.
        """
        self.check_credential(credential)
        foreign = decode_import_payload(payload)
        self.store.merge(foreign)
        self.save()
        merged = self.store.snapshot()
        logger.info(
            "Imported analytics total_requests=%s total_tool_calls=%s",
            merged.total_requests,
            merged.total_tool_calls,
        )
        return merged
