"""Credential lifecycle management.

Fetches instance credentials on start, serves the current snapshot to any
number of readers and refreshes it on a timer shortly before expiry.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from imds_credentials.config import Config, get_config
from imds_credentials.metadata import MetadataFetcher
from imds_credentials.models.credentials import (
    CredentialSnapshot,
    ManagerState,
    ManagerStatus,
)
from imds_credentials.utils.backoff import refresh_delay, retry_delay
from imds_credentials.utils.errors import (
    CredentialsUnavailable,
    InitializationError,
    describe_error,
)

logger = logging.getLogger(__name__)


TimerFactory = Callable[[float, Callable[..., Any], list], Any]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialManager:
    """Owns the current credential snapshot and its refresh timer.

    One refresh runs at a time and at most one timer is pending. Readers
    get the last committed snapshot without waiting on a refresh.
    """

    def __init__(
        self,
        config: Config | None = None,
        fetcher: MetadataFetcher | None = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
        timer_factory: TimerFactory = threading.Timer,
    ) -> None:
        self._config = config or get_config()
        self._owns_fetcher = fetcher is None
        self._fetcher = fetcher or MetadataFetcher(self._config)
        self._clock = clock
        self._timer_factory = timer_factory

        self._lock = threading.Lock()
        self._refresh_lock = threading.Lock()
        self._state = ManagerState.CREATED
        self._snapshot: CredentialSnapshot | None = None
        self._timer: Any = None
        self._generation = 0
        self._next_refresh_at: datetime | None = None
        self._failures = 0
        self._last_error: dict[str, Any] | None = None

    @property
    def state(self) -> ManagerState:
        return self._state

    @property
    def safety_margin(self) -> timedelta:
        return timedelta(seconds=self._config.settings.safety_margin)

    # ── Lifecycle ─────────────────────────────────────────────────────

    def start(self) -> CredentialSnapshot:
        """Fetch the first snapshot and arm the refresh timer.

        Raises:
            InitializationError: The initial fetch sequence failed. The
                manager is left in the FAILED state with no snapshot.
        """
        with self._lock:
            if self._state not in (ManagerState.CREATED, ManagerState.FAILED):
                raise RuntimeError(f"Cannot start a manager in state '{self._state.value}'")
            self._state = ManagerState.INITIALIZING

        with self._refresh_lock:
            try:
                snapshot = self._fetch_snapshot()
            except Exception as e:
                with self._lock:
                    if self._state is ManagerState.INITIALIZING:
                        self._state = ManagerState.FAILED
                    self._last_error = describe_error(e)
                logger.error(f"Initial credential fetch failed: {e}")
                raise InitializationError(e) from e

            with self._lock:
                if self._state is not ManagerState.INITIALIZING:
                    # stop() was called while the first fetch was in flight
                    raise InitializationError(RuntimeError("Manager stopped during start"))
                self._commit(snapshot)
                self._state = ManagerState.READY

        logger.info(
            f"Loaded credentials for role '{snapshot.role_name}' in {snapshot.region}, "
            f"expiring at {snapshot.expires_at.isoformat()}"
        )
        return snapshot

    def stop(self) -> None:
        """Cancel the pending timer and release the metadata client."""
        with self._lock:
            if self._state is ManagerState.STOPPED:
                return
            self._state = ManagerState.STOPPED
            self._cancel_timer()

        if self._owns_fetcher:
            self._fetcher.close()
        logger.info("Credential manager stopped")

    def __enter__(self) -> CredentialManager:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    # ── Read path ─────────────────────────────────────────────────────

    def get_snapshot(self) -> CredentialSnapshot:
        """Return the last committed snapshot.

        Never blocks on an in-flight refresh.

        Raises:
            CredentialsUnavailable: start() has not succeeded.
        """
        snapshot = self._snapshot
        if snapshot is None:
            raise CredentialsUnavailable("Credentials have not been loaded; call start() first")
        return snapshot

    def get_status(self) -> ManagerStatus:
        """Report state, expiry and the last refresh error."""
        now = self._clock()
        with self._lock:
            snapshot = self._snapshot
            status = ManagerStatus(
                state=self._state,
                has_snapshot=snapshot is not None,
                is_stale=True,
                next_refresh_at=self._next_refresh_at,
                consecutive_failures=self._failures,
                last_error=self._last_error,
            )

        if snapshot is None:
            return status

        remaining = snapshot.seconds_remaining(now)
        return status.model_copy(
            update={
                "is_stale": remaining <= self.safety_margin.total_seconds(),
                "expires_at": snapshot.expires_at,
                "seconds_remaining": max(int(remaining), 0),
                "snapshot_age": snapshot.age(now).total_seconds(),
            }
        )

    # ── Refresh ───────────────────────────────────────────────────────

    def refresh(self) -> bool:
        """Run one fetch cycle and reschedule.

        On failure the current snapshot is kept and a retry is scheduled.
        Returns True when a new snapshot was committed.
        """
        return self._refresh()

    def _refresh(self, generation: int | None = None) -> bool:
        with self._refresh_lock:
            with self._lock:
                if generation is not None and generation != self._generation:
                    # Superseded while waiting for the refresh lock
                    return False
                if self._state is not ManagerState.READY:
                    logger.debug(f"Skipping refresh in state '{self._state.value}'")
                    return False
                self._state = ManagerState.REFRESHING

            try:
                snapshot = self._fetch_snapshot()
            except Exception as e:
                self._handle_refresh_failure(e)
                return False

            with self._lock:
                if self._state is ManagerState.STOPPED:
                    return False
                self._commit(snapshot)
                self._state = ManagerState.READY

        logger.info(f"Refreshed credentials, now expiring at {snapshot.expires_at.isoformat()}")
        return True

    def _handle_refresh_failure(self, error: Exception) -> None:
        with self._lock:
            self._failures += 1
            self._last_error = describe_error(error)
            if self._state is ManagerState.STOPPED:
                return
            settings = self._config.settings
            delay = retry_delay(
                self._failures,
                settings.retry_delay,
                settings.max_retry_delay,
                settings.min_refresh_delay,
            )
            self._arm(delay)
            self._state = ManagerState.READY
            failures = self._failures

        logger.warning(
            f"Credential refresh failed ({failures} in a row): {error}. "
            f"Keeping current credentials, retrying in {delay:.0f}s"
        )

    def _fetch_snapshot(self) -> CredentialSnapshot:
        """Role, credentials, region; in that order."""
        role_name = self._fetcher.fetch_role_name()
        credentials = self._fetcher.fetch_credentials(role_name)
        region = self._fetcher.fetch_region()
        return CredentialSnapshot.from_parts(role_name, credentials, region, self._clock())

    # ── Timer ─────────────────────────────────────────────────────────
    # Callers of the helpers below hold self._lock.

    def _commit(self, snapshot: CredentialSnapshot) -> None:
        self._snapshot = snapshot
        self._failures = 0
        self._last_error = None

        settings = self._config.settings
        now = self._clock()
        delay = refresh_delay(
            snapshot.expires_at, now, self.safety_margin, settings.min_refresh_delay
        )
        if snapshot.seconds_remaining(now) <= settings.safety_margin:
            logger.warning(
                f"Credentials expire at {snapshot.expires_at.isoformat()}, inside the "
                f"{settings.safety_margin}s safety margin; refreshing in {delay:.0f}s"
            )
        self._arm(delay)

    def _arm(self, delay: float) -> None:
        self._cancel_timer()
        self._generation += 1
        self._next_refresh_at = self._clock() + timedelta(seconds=delay)
        timer = self._timer_factory(delay, self._on_timer, [self._generation])
        timer.daemon = True
        timer.start()
        self._timer = timer
        logger.debug(f"Next credential refresh in {delay:.1f}s (generation {self._generation})")

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._next_refresh_at = None

    def _on_timer(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                # Superseded by a newer timer
                return
            self._timer = None
        self._refresh(generation)
