"""
Age-based expiry of saved URLs.

The user picks an auto-delete period; a sweep drops every URL whose
``savedAt`` (or its group's, if the record has none) is older than
``now - period`` from the domain groups, removing groups that empty.
Projects are left alone.

``ExpirationScheduler.start()`` runs the sweep on a daemon thread at a
fixed interval. Each sweep is one read-modify-write, so a tab saved
while a sweep is running is either seen by it or survives it.
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from .errors import ValidationError
from .groups import detach_url_ids
from .mutator import Mutator, StateView
from .settings import user_settings
from .urls import records_by_id

logger = logging.getLogger(__name__)

SECOND_MS = 1000
MINUTE_MS = 60 * SECOND_MS
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS


class AutoDeletePeriod(str, Enum):
    NEVER = "never"
    SECONDS_30 = "30s"
    MINUTE_1 = "1m"
    HOUR_1 = "1h"
    DAY_1 = "1d"
    DAYS_7 = "7d"
    DAYS_14 = "14d"
    DAYS_30 = "30d"
    DAYS_180 = "180d"
    DAYS_365 = "365d"


PERIOD_MS: dict[AutoDeletePeriod, Optional[int]] = {
    AutoDeletePeriod.NEVER: None,
    AutoDeletePeriod.SECONDS_30: 30 * SECOND_MS,
    AutoDeletePeriod.MINUTE_1: MINUTE_MS,
    AutoDeletePeriod.HOUR_1: HOUR_MS,
    AutoDeletePeriod.DAY_1: DAY_MS,
    AutoDeletePeriod.DAYS_7: 7 * DAY_MS,
    AutoDeletePeriod.DAYS_14: 14 * DAY_MS,
    AutoDeletePeriod.DAYS_30: 30 * DAY_MS,
    AutoDeletePeriod.DAYS_180: 180 * DAY_MS,
    AutoDeletePeriod.DAYS_365: 365 * DAY_MS,
}

# Spellings written by older settings pages
LEGACY_SPELLINGS = {
    "30sec": AutoDeletePeriod.SECONDS_30,
    "1min": AutoDeletePeriod.MINUTE_1,
    "1hour": AutoDeletePeriod.HOUR_1,
    "1day": AutoDeletePeriod.DAY_1,
    "7days": AutoDeletePeriod.DAYS_7,
    "14days": AutoDeletePeriod.DAYS_14,
    "30days": AutoDeletePeriod.DAYS_30,
    "180days": AutoDeletePeriod.DAYS_180,
    "365days": AutoDeletePeriod.DAYS_365,
}


def parse_period(value: Union[str, AutoDeletePeriod, None]) -> AutoDeletePeriod:
    """
    Raises:
        ValidationError: Not a known period
    """
    if isinstance(value, AutoDeletePeriod):
        return value
    if value is None or value == "":
        return AutoDeletePeriod.NEVER
    if value in LEGACY_SPELLINGS:
        return LEGACY_SPELLINGS[value]
    try:
        return AutoDeletePeriod(value)
    except ValueError:
        raise ValidationError(f"Unknown auto-delete period: {value!r}") from None


def expiration_ms(period: Union[str, AutoDeletePeriod]) -> Optional[int]:
    """Period length in milliseconds; None for ``never``."""
    return PERIOD_MS[parse_period(period)]


def is_period_shortening(current: Union[str, AutoDeletePeriod], new: Union[str, AutoDeletePeriod]) -> bool:
    """
    Whether switching from ``current`` to ``new`` shortens the period.

    Leaving ``never`` always counts as shortening; switching to it never does.
    """
    current_p, new_p = parse_period(current), parse_period(new)
    if current_p is AutoDeletePeriod.NEVER:
        return True
    if new_p is AutoDeletePeriod.NEVER:
        return False
    return PERIOD_MS[new_p] < PERIOD_MS[current_p]


@dataclass
class SweepResult:
    urls_removed: int = 0
    groups_removed: int = 0
    period: AutoDeletePeriod = AutoDeletePeriod.NEVER


def expire(view: StateView, period: Optional[AutoDeletePeriod] = None) -> SweepResult:
    """Drop expired URLs from the domain groups in ``view``."""
    if period is None:
        raw = user_settings(view).get("autoDeletePeriod")
        try:
            period = parse_period(raw)
        except ValidationError:
            logger.warning("Ignoring unknown auto-delete period %r", raw)
            period = AutoDeletePeriod.NEVER
    result = SweepResult(period=period)
    ttl = PERIOD_MS[period]
    if ttl is None:
        return result

    cutoff = view.now - ttl
    records = records_by_id(view)
    for group in list(view.groups()):
        expired = []
        for url_id in group.url_ids:
            record = records.get(url_id)
            saved_at = record.saved_at if record and record.saved_at else group.saved_at
            if saved_at is None:
                saved_at = view.now
            if saved_at < cutoff:
                expired.append(url_id)
        if not expired:
            continue
        emptied = len(expired) == len(group.url_ids)
        detach_url_ids(view, group, expired)
        result.urls_removed += len(expired)
        if emptied:
            result.groups_removed += 1
            logger.info("Expired every URL of %s; group removed", group.domain)
        else:
            logger.info("Expired %d URL(s) from %s", len(expired), group.domain)
    return result


class ExpirationScheduler:
    """
    Periodic expiration sweep.

    Args:
        mutator: Store access
        interval_seconds: Time between sweeps when started
    """

    def __init__(self, mutator: Mutator, interval_seconds: float = 30.0):
        self._mutator = mutator
        self._interval = interval_seconds
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def sweep(self, period: Union[str, AutoDeletePeriod, None] = None) -> SweepResult:
        """
        Run one sweep.

        Args:
            period: Override the stored auto-delete period
        """
        override = parse_period(period) if period is not None else None
        result = self._mutator.mutate(lambda view: expire(view, override), name="expiration_sweep")
        if result.urls_removed:
            logger.info(
                "Expiration sweep (%s): removed %d URL(s), %d group(s)",
                result.period.value, result.urls_removed, result.groups_removed,
            )
        else:
            logger.debug("Expiration sweep (%s): nothing expired", result.period.value)
        return result

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start sweeping in the background. Does nothing if already running."""
        with self._lock:
            if self.running:
                return
            self._stop.clear()
            self._thread = threading.Thread(
                target=self._run, name="tabstash-expiration", daemon=True,
            )
            self._thread.start()
        logger.debug("Expiration scheduler started (every %.1fs)", self._interval)

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Stop the background sweep and wait for an in-flight sweep to finish."""
        with self._lock:
            thread = self._thread
            self._thread = None
            self._stop.set()
        if thread is not None:
            thread.join(timeout)
            logger.debug("Expiration scheduler stopped")

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self.sweep()
            except Exception as e:
                # Retried wholesale on the next tick
                logger.warning("Expiration sweep failed: %s", e)
