"""Snapshot stores: the durable side of a mutation unit.

A store hands out the last committed :class:`Snapshot` and accepts a new one
only when the caller proves it started from the current revision. That
compare-and-swap is what keeps two processes sharing one workbook from
silently overwriting each other. The workbook store holds a lock file
across the check and the write.
"""

from __future__ import annotations

import os
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from . import data_manager, log
from .constants import EXPECTED_SCHEMA_VERSION
from .errors import ConflictError
from .models import Snapshot

LOCK_TIMEOUT_SECONDS = 10.0
LOCK_POLL_SECONDS = 0.05


class SnapshotStore:
    """Base class for snapshot persistence backends."""

    schema_version: str = EXPECTED_SCHEMA_VERSION

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def load(self) -> Snapshot:
        raise NotImplementedError

    def _write(self, snapshot: Snapshot) -> None:
        raise NotImplementedError

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        """Hold the backend-wide lock between the revision check and the write."""
        yield

    def current_revision(self) -> int:
        return self.load().revision

    def commit(self, snapshot: Snapshot, *, expected_revision: int) -> Snapshot:
        """Durably replace the stored snapshot in one write.

        Args:
            snapshot (Snapshot): Working copy to persist. Its revision is
                ignored and replaced by ``expected_revision + 1``.
            expected_revision (int): Revision the caller's copy was taken from.

        Returns:
            Snapshot: The committed snapshot carrying its new revision.

        Raises:
            ConflictError: If the stored revision moved since the copy was
                taken.
        """

        with self._lock, self._exclusive():
            stored = self.current_revision()
            if stored != expected_revision:
                log.warning(
                    "Commit rejected: expected revision %d but store is at %d",
                    expected_revision,
                    stored,
                )
                raise ConflictError(
                    f"Snapshot changed underneath (expected revision {expected_revision}, found {stored})"
                )
            snapshot.revision = expected_revision + 1
            self._write(snapshot)
        log.debug("Committed snapshot revision %d", snapshot.revision)
        return snapshot

    def replace(self, snapshot: Snapshot) -> Snapshot:
        """Overwrite the stored snapshot unconditionally.

        Used when adopting the remote authority's state; the incoming revision
        is kept unless it is behind the local one.
        """

        with self._lock, self._exclusive():
            snapshot.revision = max(snapshot.revision, self.current_revision() + 1)
            self._write(snapshot)
        log.info("Replaced stored snapshot (revision %d)", snapshot.revision)
        return snapshot


class InMemorySnapshotStore(SnapshotStore):
    """Process-local store, used by tests and by callers without a workbook."""

    def __init__(self, snapshot: Optional[Snapshot] = None) -> None:
        super().__init__()
        self._snapshot = (snapshot or Snapshot()).copy()

    def load(self) -> Snapshot:
        return self._snapshot.copy()

    def current_revision(self) -> int:
        return self._snapshot.revision

    def _write(self, snapshot: Snapshot) -> None:
        self._snapshot = snapshot.copy()


class WorkbookSnapshotStore(SnapshotStore):
    """Store backed by the openpyxl ledger workbook on disk.

    Every commit rewrites the whole workbook through
    :func:`data_manager.save_workbook`, which replaces the file atomically.
    Other processes are kept out of the check-and-write window by a lock file
    created next to the workbook.
    """

    def __init__(self, data_file: Path, *, lock_timeout: float = LOCK_TIMEOUT_SECONDS) -> None:
        super().__init__()
        self.data_file = Path(data_file).expanduser().resolve()
        self.lock_file = self.data_file.with_name(f".{self.data_file.name}.lock")
        self.lock_timeout = lock_timeout
        workbook = data_manager.open_workbook(self.data_file)
        self.schema_version = data_manager.read_schema_version(workbook) or EXPECTED_SCHEMA_VERSION

    def load(self) -> Snapshot:
        workbook = data_manager.open_workbook(self.data_file)
        return data_manager.read_snapshot(workbook)

    def current_revision(self) -> int:
        workbook = data_manager.open_workbook(self.data_file)
        value = data_manager.read_meta(workbook).get(data_manager.META_REVISION)
        return int(value or 0)

    def _write(self, snapshot: Snapshot) -> None:
        workbook = data_manager.open_workbook(self.data_file)
        data_manager.write_snapshot(workbook, snapshot, schema_version=self.schema_version)
        data_manager.save_workbook(workbook, self.data_file)
        log.info("Persisted workbook '%s' at revision %d", self.data_file, snapshot.revision)

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        """Create the lock file exclusively, waiting up to ``lock_timeout``.

        Raises:
            ConflictError: If another process kept the lock past the timeout.
        """

        deadline = time.monotonic() + self.lock_timeout
        while True:
            try:
                fd = os.open(self.lock_file, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
                break
            except FileExistsError:
                if time.monotonic() >= deadline:
                    log.error("Workbook lock '%s' still held after %.1fs", self.lock_file, self.lock_timeout)
                    raise ConflictError(f"Workbook is locked by another process: {self.lock_file}") from None
                time.sleep(LOCK_POLL_SECONDS)
        try:
            os.write(fd, str(os.getpid()).encode("ascii"))
        finally:
            os.close(fd)
        try:
            yield
        finally:
            self.lock_file.unlink(missing_ok=True)
