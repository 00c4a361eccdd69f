"""Backup coordinator — snapshot the local store and upload it to the archive.

Unattended backups triggered by mutations are handed to a ``BackupWorker``:
one daemon thread draining a queue, so every background attempt runs in one
place and can be observed or waited on.
"""

import logging
import queue
import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable

from acctctl.config import BACKUP_HISTORY_SIZE
from acctctl.core import snapshot_codec
from acctctl.core.client_registry import ArchiveClientRegistry
from acctctl.core.errors import AcctctlError, EmptyDataset, OperationResult
from acctctl.core.local_store import LocalStore
from acctctl.core.models import StorageType

logger = logging.getLogger(__name__)

_STOP = object()


class BackupState(Enum):
    IDLE = "idle"
    BUILDING_SNAPSHOT = "building_snapshot"
    UPLOADING = "uploading"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class BackupAttempt:
    """One run of ``backup_now``, manual or unattended."""

    trigger: str
    started_at: datetime
    storage: StorageType = StorageType.WEBDAV
    state: BackupState = BackupState.BUILDING_SNAPSHOT
    file_name: str | None = None
    error: str | None = None


# ------------------------------------------------------------------
# Worker
# ------------------------------------------------------------------

class BackupWorker:
    """Runs queued backup jobs one at a time on a daemon thread.

    Once ``stop()`` has been called, new jobs are refused until the thread
    has finished the queue and exited; the next ``submit()`` starts a fresh
    thread.
    """

    def __init__(self, handler: Callable[[Any], Any], name: str = "acctctl-backup") -> None:
        self._handler = handler
        self._name = name
        self._queue: queue.Queue = queue.Queue()
        self._thread: threading.Thread | None = None
        self._stopping = False
        self._lock = threading.Lock()

    @property
    def pending(self) -> int:
        """Jobs submitted but not yet finished."""
        return self._queue.unfinished_tasks

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def submit(self, job: Any) -> bool:
        """Queue *job*.  Returns False if the worker is shutting down."""
        with self._lock:
            if self._stopping:
                logger.warning("Backup worker is stopping; refused job %r", job)
                return False
            if not self.is_running():
                self._thread = threading.Thread(target=self._loop, name=self._name, daemon=True)
                self._thread.start()
            self._queue.put(job)
        return True

    def drain(self, timeout: float | None = None) -> bool:
        """Block until every submitted job has finished.

        Returns False if *timeout* expires first.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._queue.all_tasks_done:
            while self._queue.unfinished_tasks:
                if deadline is None:
                    self._queue.all_tasks_done.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._queue.all_tasks_done.wait(remaining)
        return True

    def stop(self, timeout: float | None = None) -> None:
        """Finish queued jobs, then stop the thread."""
        with self._lock:
            thread = self._thread
            if thread is None or not thread.is_alive() or self._stopping:
                return
            self._stopping = True
            self._queue.put(_STOP)
        thread.join(timeout)

    def _loop(self) -> None:
        while True:
            job = self._queue.get()
            try:
                if job is _STOP:
                    with self._lock:
                        self._stopping = False
                        self._thread = None
                    return
                self._handler(job)
            except Exception:
                logger.exception("Unattended backup job %r crashed", job)
            finally:
                self._queue.task_done()


# ------------------------------------------------------------------
# Coordinator
# ------------------------------------------------------------------

class BackupCoordinator:
    """Builds snapshots from the local store and uploads them."""

    def __init__(
        self,
        store: LocalStore,
        registry: ArchiveClientRegistry,
        *,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._store = store
        self._registry = registry
        self._clock = clock
        self._state = BackupState.IDLE
        self._state_lock = threading.Lock()
        self._history: deque[BackupAttempt] = deque(maxlen=BACKUP_HISTORY_SIZE)
        self.worker = BackupWorker(self._run_unattended)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> BackupState:
        return self._state

    @property
    def history(self) -> list[BackupAttempt]:
        """Recent attempts, oldest first."""
        with self._state_lock:
            return list(self._history)

    def _set_state(self, state: BackupState, attempt: BackupAttempt) -> None:
        with self._state_lock:
            self._state = state
            attempt.state = state

    # ------------------------------------------------------------------
    # Explicit backup
    # ------------------------------------------------------------------

    def backup_now(
        self, trigger: str = "manual", storage: StorageType = StorageType.WEBDAV
    ) -> OperationResult:
        """Upload a snapshot of every account to *storage*.

        Returns an ``OperationResult`` holding the archived file name, or
        the typed failure (``NoRemoteConfigured``, ``EmptyDataset``, or a
        ``RemoteArchiveError``).
        """
        attempt = BackupAttempt(trigger=trigger, started_at=self._clock(), storage=storage)
        with self._state_lock:
            self._history.append(attempt)
        try:
            file_name = self._run(attempt)
        except AcctctlError as exc:
            self._finish(attempt, BackupState.FAILED, error=str(exc))
            logger.error("Backup (%s, %s) failed: %s", trigger, storage.value, exc)
            return OperationResult.failed(exc)
        except Exception as exc:
            self._finish(attempt, BackupState.FAILED, error=str(exc))
            raise

        self._finish(attempt, BackupState.SUCCESS, file_name=file_name)
        logger.info("Backup (%s) uploaded %s to %s", trigger, file_name, storage.value)
        return OperationResult.ok(file_name)

    def _finish(
        self,
        attempt: BackupAttempt,
        outcome: BackupState,
        *,
        file_name: str | None = None,
        error: str | None = None,
    ) -> None:
        with self._state_lock:
            attempt.state = outcome
            attempt.file_name = file_name
            attempt.error = error
            self._state = BackupState.IDLE

    def _run(self, attempt: BackupAttempt) -> str:
        target = self._registry.target(self._store, attempt.storage)

        self._set_state(BackupState.BUILDING_SNAPSHOT, attempt)
        # Read accounts and zones as one consistent view
        with self._store.write_lock:
            accounts = self._store.list_accounts()
            if not accounts:
                raise EmptyDataset()
            zones = {a.local_id: self._store.list_zones_by_account(a.local_id) for a in accounts}
        data = snapshot_codec.encode(accounts, zones)
        file_name = snapshot_codec.backup_file_name(self._clock())

        self._set_state(BackupState.UPLOADING, attempt)
        target.archive.upload(target.file_path(file_name), data)
        return file_name

    # ------------------------------------------------------------------
    # Unattended backup
    # ------------------------------------------------------------------

    def _auto_targets(self) -> list[StorageType]:
        targets = []
        remote = self._store.get_remote_config()
        if remote is not None and remote.auto_backup:
            targets.append(StorageType.WEBDAV)
        r2 = self._store.get_r2_backup_config()
        if r2 is not None and r2.auto_backup:
            targets.append(StorageType.R2)
        return targets

    def on_mutation(self, event: str) -> bool:
        """Queue a backup to every target with auto-backup on.

        Never raises.  Returns True if at least one job was queued.
        """
        try:
            targets = self._auto_targets()
            if not targets:
                logger.debug("Auto-backup disabled; ignoring '%s'", event)
                return False
            queued = [self.worker.submit((event, storage)) for storage in targets]
        except Exception:
            logger.exception("Could not schedule auto-backup for '%s'", event)
            return False
        logger.debug("Queued %d auto-backup job(s) for '%s'", sum(queued), event)
        return any(queued)

    def _run_unattended(self, job: tuple[str, StorageType]) -> None:
        event, storage = job
        result = self.backup_now(trigger=f"auto:{event}", storage=storage)
        if result.succeeded:
            logger.info("Auto-backup after '%s' stored %s on %s", event, result.value, storage.value)
        else:
            logger.warning("Auto-backup after '%s' to %s failed: %s", event, storage.value, result.error)
