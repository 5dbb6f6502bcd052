"""
Location Tracker Module - UniMark Geofenced Attendance System

Wraps a device location provider so that acquiring a fix never blocks the
caller indefinitely and never surfaces a raw platform error.

A provider is any zero-argument callable returning a ``LocationFix`` or a
``Coordinate``. It may block; it may raise (permission denied, hardware
error). Acquisition runs on a worker thread with a bounded timeout, and any
failure falls back to the last known fix. "No fix yet" and "permission
denied" look the same to callers: ``current_location()`` returns None.

Features:
- Bounded first-fix acquisition
- Last-known-location fallback on timeout or provider error
- Staleness tracking and on-demand refresh
- Periodic background watch on a daemon thread
"""

from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Union
import logging
import threading

from unimark.modules.geo_verifier import Coordinate


class LocationPermissionDenied(Exception):
    """Raised by providers when the user refuses location access."""


@dataclass(frozen=True)
class LocationFix:
    """A single location reading from the device."""
    coordinate: Coordinate
    timestamp: datetime
    accuracy_meters: Optional[float] = None


LocationProvider = Callable[[], Union[LocationFix, Coordinate]]


class LocationTracker:
    """
    Keeps the most recent device location available to check-in and
    session creation.
    """

    def __init__(self, provider: LocationProvider, first_fix_timeout: float = 10,
                 max_age: float = 30, clock: Callable[[], datetime] = None):
        """
        Initialize the tracker.

        Args:
            provider: Callable returning the current LocationFix or Coordinate
            first_fix_timeout (float): Seconds to wait for a single reading
            max_age (float): Seconds after which a fix counts as stale
            clock: Callable returning the current UTC time
        """
        self.provider = provider
        self.first_fix_timeout = first_fix_timeout
        self.max_age = timedelta(seconds=max_age)
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = logging.getLogger(__name__)

        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='location')
        self._pending = None
        self._last_fix: Optional[LocationFix] = None
        self._permission_granted = False
        self._last_error: Optional[str] = None

        self._watch_thread: Optional[threading.Thread] = None
        self._watch_stop = threading.Event()

    def _normalize(self, reading) -> LocationFix:
        if isinstance(reading, LocationFix):
            return reading
        if isinstance(reading, Coordinate):
            return LocationFix(coordinate=reading, timestamp=self.clock())
        raise TypeError(f"Location provider returned {type(reading).__name__}")

    def acquire(self, timeout: Optional[float] = None) -> Optional[Coordinate]:
        """
        Request a fresh fix, waiting at most ``timeout`` seconds.

        A reading still in flight from an earlier timed-out request is reused
        rather than starting another one.

        Returns:
            Coordinate: The newest known location, or None if none was ever obtained
        """
        timeout = self.first_fix_timeout if timeout is None else timeout

        with self._lock:
            if self._pending is None or self._pending.done():
                self._pending = self._executor.submit(self.provider)
            pending = self._pending

        try:
            fix = self._normalize(pending.result(timeout=timeout))
        except FutureTimeoutError:
            self._record_error(f"Location request timed out after {timeout}s")
        except LocationPermissionDenied as e:
            with self._lock:
                self._permission_granted = False
            self._record_error(f"Location permission denied: {e}")
        except Exception as e:
            self._record_error(f"Failed to get location: {e}")
        else:
            with self._lock:
                if self._last_fix is None or fix.timestamp >= self._last_fix.timestamp:
                    self._last_fix = fix
                self._permission_granted = True
                self._last_error = None
            self.logger.debug(f"Location fix acquired: {fix.coordinate.to_dict()}")

        return self.current_location()

    def _record_error(self, message: str) -> None:
        with self._lock:
            self._last_error = message
            has_fix = self._last_fix is not None
        if has_fix:
            self.logger.warning(f"{message}; keeping last known location")
        else:
            self.logger.warning(message)

    def current_location(self) -> Optional[Coordinate]:
        with self._lock:
            return self._last_fix.coordinate if self._last_fix else None

    @property
    def last_fix(self) -> Optional[LocationFix]:
        with self._lock:
            return self._last_fix

    def is_stale(self, now: Optional[datetime] = None) -> bool:
        fix = self.last_fix
        if fix is None:
            return True
        now = now or self.clock()
        return now - fix.timestamp > self.max_age

    def refresh_if_stale(self, now: Optional[datetime] = None,
                         timeout: Optional[float] = None) -> Optional[Coordinate]:
        if self.is_stale(now):
            return self.acquire(timeout)
        return self.current_location()

    def start_watch(self, interval: Optional[float] = None) -> None:
        """
        Re-issue acquisition every ``interval`` seconds (default: max age) until stopped.
        """
        interval = self.max_age.total_seconds() if interval is None else interval
        if self._watch_thread is not None and self._watch_thread.is_alive():
            return

        self._watch_stop.clear()

        def watch():
            while not self._watch_stop.is_set():
                self.acquire()
                self._watch_stop.wait(interval)

        self._watch_thread = threading.Thread(target=watch, name='location-watch', daemon=True)
        self._watch_thread.start()
        self.logger.info(f"Location watch started (every {interval}s)")

    def stop_watch(self) -> None:
        self._watch_stop.set()
        if self._watch_thread is not None:
            self._watch_thread.join(timeout=self.first_fix_timeout + 1)
            self._watch_thread = None
            self.logger.info("Location watch stopped")

    def status(self) -> Dict[str, Any]:
        with self._lock:
            fix = self._last_fix
            return {
                'permission_granted': self._permission_granted,
                'has_location': fix is not None,
                'location': fix.coordinate.to_dict() if fix else None,
                'accuracy_meters': fix.accuracy_meters if fix else None,
                'timestamp': fix.timestamp.isoformat() if fix else None,
                'error': self._last_error
            }

    def shutdown(self) -> None:
        self.stop_watch()
        self._executor.shutdown(wait=False)
