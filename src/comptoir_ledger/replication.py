"""Best-effort replication of committed snapshots to a remote authority.

:class:`RemoteClient` speaks the remote's small HTTP surface through httpx.
:class:`Replicator` sits between the mutation units and that client: commits
post the newest snapshot to an outbound queue and return immediately, a
worker thread coalesces bursts, pushes with bounded retry and keeps
retrying a failed payload on an interval. Failures never reach the caller
that mutated state; they are logged and exposed through
:class:`ReplicationHealth`.
"""

from __future__ import annotations

import queue
import threading
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

import httpx

from . import log
from .errors import ReplicationError
from .models import Snapshot
from .wire import snapshot_from_wire, snapshot_to_wire


@dataclass(frozen=True)
class ReplicationHealth:
    """Observable state of the outbound replication channel."""

    last_error: Optional[str]
    last_success_at: Optional[datetime]
    consecutive_failures: int
    pending: bool


class RemoteClient:
    """Thin httpx wrapper around the remote snapshot endpoints.

    Args:
        base_url (str): Root URL of the remote, e.g. ``http://host:4000``.
        timeout (float): Per-request timeout in seconds.
        transport (httpx.BaseTransport | None): Optional transport override,
            used by tests to plug in :class:`httpx.MockTransport`.
    """

    def __init__(self, base_url: str, *, timeout: float = 10.0, transport: Optional[httpx.BaseTransport] = None) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.Client(base_url=self.base_url, timeout=timeout, transport=transport)

    def __enter__(self) -> "RemoteClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, *, json: Any = None) -> httpx.Response:
        try:
            response = self._client.request(method, path, json=json)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ReplicationError(
                f"{method} {path} failed with HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ReplicationError(f"{method} {path} failed: {exc}") from exc
        return response

    def fetch_snapshot(self) -> Optional[Snapshot]:
        """Return the remote snapshot, or ``None`` when the remote holds none."""

        payload = self._request("GET", "/api/db").json()
        if payload is None:
            return None
        return snapshot_from_wire(payload)

    def replace_snapshot(self, payload: Mapping[str, Any]) -> None:
        self._request("POST", "/api/db", json=dict(payload))

    def download_backup(self) -> Dict[str, Any]:
        """Return the raw backup document held by the remote.

        Raises:
            ReplicationError: When the remote has no data (HTTP 404) or is
                unreachable.
        """

        return self._request("GET", "/api/backup").json()

    def restore_backup(self, payload: Mapping[str, Any]) -> None:
        self._request("POST", "/api/restore", json=dict(payload))

    def check_health(self) -> bool:
        """Return ``True`` when the remote answers ``{"ok": true}``."""

        try:
            data = self._request("GET", "/health").json()
        except (ReplicationError, ValueError) as exc:
            log.warning("Remote health check failed: %s", exc)
            return False
        return isinstance(data, Mapping) and data.get("ok") is True


def push_with_retry(
    func: Callable[[], None],
    *,
    attempts: int = 3,
    backoff_base: float = 0.1,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """Call ``func`` until it succeeds, backing off exponentially between tries.

    Raises:
        ReplicationError: The error of the last attempt once ``attempts`` are
            exhausted.
    """

    for attempt in range(attempts):
        try:
            func()
            return
        except ReplicationError as exc:
            if attempt >= attempts - 1:
                raise
            log.debug("Replication attempt %d failed (%s); retrying", attempt + 1, exc)
            sleep(backoff_base * (2 ** attempt))


_WAKE = object()
_STOP = object()


class Replicator:
    """Outbound queue plus worker that replicates committed snapshots.

    Args:
        client (RemoteClient): Remote endpoint.
        debounce (float): Seconds to wait for further schedules before
            pushing; a burst collapses into one push of the newest snapshot.
        max_attempts (int): Tries per push before it counts as failed.
        backoff_base (float): Base delay of the exponential backoff.
        retry_interval (float): Delay before a failed payload is pushed again.
        autostart (bool): Start the worker thread immediately. Tests pass
            ``False`` and drive pushes with :meth:`flush`.
    """

    def __init__(
        self,
        client: RemoteClient,
        *,
        debounce: float = 1.0,
        max_attempts: int = 3,
        backoff_base: float = 0.1,
        retry_interval: float = 30.0,
        autostart: bool = True,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = client
        self.debounce = debounce
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.retry_interval = retry_interval
        self._sleep = sleep
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._state_lock = threading.Lock()
        self._push_lock = threading.Lock()
        self._sequence = 0
        self._latest: Optional[Tuple[int, Dict[str, Any]]] = None
        self._pushed_sequence = 0
        self._last_error: Optional[str] = None
        self._last_success_at: Optional[datetime] = None
        self._consecutive_failures = 0
        self._thread: Optional[threading.Thread] = None
        if autostart:
            self.start()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._run, name="comptoir-replicator", daemon=True)
        self._thread.start()

    def schedule(self, snapshot: Snapshot) -> None:
        """Queue ``snapshot`` for replication and return immediately."""

        payload = snapshot_to_wire(snapshot)
        with self._state_lock:
            self._sequence += 1
            self._latest = (self._sequence, payload)
        self._queue.put(_WAKE)
        log.debug("Scheduled snapshot revision %d for replication", snapshot.revision)

    def health(self) -> ReplicationHealth:
        with self._state_lock:
            return ReplicationHealth(
                last_error=self._last_error,
                last_success_at=self._last_success_at,
                consecutive_failures=self._consecutive_failures,
                pending=self._latest is not None and self._latest[0] > self._pushed_sequence,
            )

    def flush(self) -> bool:
        """Push pending work synchronously.

        Returns:
            bool: ``True`` when nothing is left pending afterwards.
        """

        self._push_latest()
        return not self.health().pending

    def close(self, *, flush: bool = True) -> None:
        """Stop the worker, optionally pushing whatever is still pending."""

        if self._thread is not None:
            self._queue.put(_STOP)
            self._thread.join()
            self._thread = None
        if flush:
            self.flush()

    def _push_latest(self) -> None:
        with self._push_lock:
            with self._state_lock:
                latest = self._latest
                if latest is None or latest[0] <= self._pushed_sequence:
                    return
            sequence, payload = latest
            try:
                push_with_retry(
                    lambda: self.client.replace_snapshot(payload),
                    attempts=self.max_attempts,
                    backoff_base=self.backoff_base,
                    sleep=self._sleep,
                )
            except ReplicationError as exc:
                with self._state_lock:
                    self._last_error = str(exc)
                    self._consecutive_failures += 1
                    failures = self._consecutive_failures
                log.error("Replication failed after %d attempt(s): %s (failures=%d)", self.max_attempts, exc, failures)
                return
            with self._state_lock:
                self._pushed_sequence = max(self._pushed_sequence, sequence)
                self._last_success_at = datetime.now(UTC)
                self._last_error = None
                self._consecutive_failures = 0
            log.info("Replicated snapshot to '%s'", self.client.base_url)

    def _run(self) -> None:
        while True:
            timeout = self.retry_interval if self.health().pending else None
            try:
                item = self._queue.get(timeout=timeout)
            except queue.Empty:
                item = _WAKE
            if item is _STOP:
                return
            stop = self._coalesce()
            self._push_latest()
            if stop:
                return

    def _coalesce(self) -> bool:
        """Absorb schedules arriving within the debounce window."""

        deadline = time.monotonic() + self.debounce
        absorbed = 0
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            try:
                item = self._queue.get(timeout=remaining)
            except queue.Empty:
                break
            if item is _STOP:
                return True
            absorbed += 1
        if absorbed:
            log.debug("Coalesced %d extra schedule(s) into one push", absorbed)
        return False


class NullReplicator:
    """Stand-in used when no remote is configured; replication is a no-op."""

    client = None

    def schedule(self, snapshot: Snapshot) -> None:
        log.debug("No remote configured; snapshot revision %d kept local", snapshot.revision)

    def flush(self) -> bool:
        return True

    def health(self) -> ReplicationHealth:
        return ReplicationHealth(last_error=None, last_success_at=None, consecutive_failures=0, pending=False)

    def close(self, *, flush: bool = True) -> None:
        return None
