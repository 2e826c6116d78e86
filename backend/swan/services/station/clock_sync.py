from typing import NamedTuple, Optional

from .records import TimerReason

TICK_UNIT_MS = 60000


class SyncResult(NamedTuple):
    value: int
    reason: Optional[TimerReason]
    units_passed: int

    @property
    def adjusted(self) -> bool:
        return self.reason is TimerReason.TIME_SYNC


def reconcile_elapsed(last_update, current_value, now, tick_unit_ms=TICK_UNIT_MS, grace_units=0):
    """Collapse the ticks missed since ``last_update`` into one jump.

    Returns the value the record should hold now. When more than
    ``grace_units`` whole units have passed the value drops by that many
    units (never below 1, failure is left to the tick) and the result is
    tagged ``time_sync``; otherwise the value comes back unchanged.
    Pure: the caller decides whether to persist.
    """
    units_passed = max(0, (int(now) - int(last_update)) // int(tick_unit_ms))
    if units_passed > grace_units:
        return SyncResult(max(1, int(current_value) - units_passed), TimerReason.TIME_SYNC, units_passed)
    return SyncResult(int(current_value), None, units_passed)
