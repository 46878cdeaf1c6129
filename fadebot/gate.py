from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from fadebot.config import Settings
from fadebot.domain import utcnow
from fadebot.logging_setup import get_logger
from fadebot.store.base import SessionStore


def is_active_window(now: datetime, night_start: int, night_end: int) -> bool:
    """True when ``now.hour`` falls in the nocturnal band.

    A band whose start is after its end wraps midnight (21 -> 6). A band with
    start <= end is read as a same-day range ``[start, end)``.
    """
    hour = now.hour
    if night_start > night_end:
        return hour >= night_start or hour < night_end
    return night_start <= hour < night_end


def cooldown_elapsed(last_selected_at: datetime | None, now: datetime, cooldown_days: float) -> bool:
    if last_selected_at is None:
        return True
    return now - last_selected_at >= timedelta(days=cooldown_days)


class SelectionGate:
    """Decides whether a new selection may happen right now for a scope.

    Only new selections are gated; inbound replies are always processed.
    """

    def __init__(
        self,
        store: SessionStore,
        settings: Settings,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.settings = settings
        self._clock = clock or utcnow
        self._tz = ZoneInfo(settings.ACTIVITY_TIMEZONE)
        self._logger = get_logger(self.__class__.__name__)

    def is_active_window(self, now: datetime | None = None) -> bool:
        if self.settings.TESTING_MODE:
            return True
        local = (now or self._clock()).astimezone(self._tz)
        active = is_active_window(local, self.settings.NIGHT_START_HOUR, self.settings.NIGHT_END_HOUR)
        self._logger.debug("Current hour: %d, in activity window: %s", local.hour, active)
        return active

    def can_select(self, scope_id: str) -> bool:
        if self.settings.TESTING_MODE:
            return True
        latest = self.store.latest_for_scope(scope_id)
        if latest is None:
            self._logger.debug("No previous selection in scope %s", scope_id)
            return True
        now = self._clock()
        allowed = cooldown_elapsed(latest.created_at, now, self.settings.COOLDOWN_DAYS)
        self._logger.debug(
            "Last selection in scope %s: %.1f days ago, can select: %s",
            scope_id,
            (now - latest.created_at).total_seconds() / 86400,
            allowed,
        )
        return allowed
