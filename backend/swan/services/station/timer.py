"""Shared countdown.

Every peer ticks the same record once a minute. Nothing stops two peers from
ticking in the same minute; a double decrement or a skipped one is repaired
by the elapsed-time reconciliation and by the health check instead of by
a lock shared between peers.
"""

from enum import Enum
from typing import Optional

from .catalog import SECRET_CODE, TIMER_CRITICAL_WINDOW, TIMER_DEFAULT
from .clock_sync import TICK_UNIT_MS, reconcile_elapsed
from .context import synchronized
from .records import Invalid, TimerReason, TimerState, parse_timer

HEALTH_STALE_MS = 120000


class TimerPhase(str, Enum):
    RUNNING = 'running'
    CRITICAL_WINDOW = 'critical_window'
    FAILED = 'failed'


class CodeResult(str, Enum):
    ACCEPTED = 'accepted'
    REJECTED = 'rejected'
    LOCKED = 'locked'
    EMPTY = 'empty'


def phase_for(value: int) -> TimerPhase:
    if value <= 0:
        return TimerPhase.FAILED
    if value <= TIMER_CRITICAL_WINDOW:
        return TimerPhase.CRITICAL_WINDOW
    return TimerPhase.RUNNING


class TimerEngine:
    TICK_JOB = 'timer-tick'
    HEALTH_JOB = 'timer-health'
    RECOVERY_JOB = 'timer-recovery'

    def __init__(self, ctx):
        self.ctx = ctx
        self.ref = ctx.root.get('timer')
        self.stats_ref = ctx.root.get('stats')
        self.current: Optional[TimerState] = None
        self.system_failure_active = False
        self._subscription = None

    @property
    def phase(self) -> Optional[TimerPhase]:
        return phase_for(self.current.value) if self.current else None

    @property
    def recovery_delay(self) -> int:
        return self.ctx.int_setting('FAILURE_RECOVERY_SEC', 10)

    # lifecycle
    def start(self, schedule: bool = True) -> None:
        self.sync_on_join()
        self._subscription = self.ref.on(self._on_change)
        if schedule:
            scheduler = self.ctx.scheduler
            scheduler.every(self.TICK_JOB, self.ctx.int_setting('TIMER_TICK_SEC', 60), self.tick)
            scheduler.every(self.HEALTH_JOB, self.ctx.int_setting('TIMER_HEALTH_CHECK_SEC', 120), self.health_check)

    def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.off()
            self._subscription = None
        for job in (self.TICK_JOB, self.HEALTH_JOB, self.RECOVERY_JOB):
            self.ctx.scheduler.cancel(job)

    @synchronized
    def sync_on_join(self) -> Optional[int]:
        """Create the record on a read miss, or catch up on ticks missed while away."""
        state = parse_timer(self.ref.once())
        if isinstance(state, Invalid):
            self.ctx.logger.info(f"[timer-init] {state.reason}, writing default")
            return self._write(TIMER_DEFAULT, TimerReason.TIMER_RESET)
        if state.value == 0:
            return None
        result = reconcile_elapsed(state.last_update, state.value, self.ctx.now(), TICK_UNIT_MS)
        if result.adjusted:
            self.ctx.logger.info(f"[timer-sync] missed={result.units_passed} value={state.value}->{result.value}")
            return self._write(result.value, TimerReason.TIME_SYNC)
        return None

    # writes
    def _write(self, value: int, reason: TimerReason, updated_by: str = 'System') -> int:
        state = TimerState(value=value, last_update=self.ctx.now(), updated_by=updated_by, reason=reason)
        self.ref.put(state.to_record(), self.ctx.ack('timer-write'))
        return value

    def _bump_stat(self, name: str) -> None:
        raw = self.stats_ref.once() or {}
        current = raw.get(name)
        count = current if isinstance(current, int) and not isinstance(current, bool) else 0
        self.stats_ref.put({name: count + 1}, self.ctx.ack('stats-write'))

    # transitions
    @synchronized
    def tick(self) -> Optional[int]:
        state = parse_timer(self.ref.once())
        if isinstance(state, Invalid):
            self.ctx.log(f"Invalid timer data ({state.reason}), resetting", 'warning')
            return self._write(TIMER_DEFAULT, TimerReason.TIMER_RESET)
        if state.value == 0:
            self.ctx.logger.debug("[timer-tick] timer failed, waiting for recovery")
            return None

        grace = self.ctx.int_setting('TIMER_SYNC_GRACE_UNITS', 2)
        result = reconcile_elapsed(state.last_update, state.value, self.ctx.now(), TICK_UNIT_MS, grace)
        if result.adjusted:
            self.ctx.logger.info(f"[timer-sync] missed={result.units_passed} value={state.value}->{result.value}")
            return self._write(result.value, TimerReason.TIME_SYNC)

        if state.value > 1:
            self.ctx.logger.info(f"[timer-tick] value={state.value - 1}")
            return self._write(state.value - 1, TimerReason.TIMER_TICK)

        self.trigger_failure()
        return 0

    @synchronized
    def submit_code(self, code, identity) -> CodeResult:
        """Check a code entry from an authenticated operator.

        Wrong codes, including values that are not strings at all, are logged
        and otherwise ignored.
        """
        if isinstance(code, str):
            code = code.strip()
        if not code:
            return CodeResult.EMPTY
        alias = identity.alias

        state = parse_timer(self.ref.once())
        if isinstance(state, Invalid) or state.value > TIMER_CRITICAL_WINDOW:
            self.ctx.log("Code input locked until last 4 minutes", 'warning')
            return CodeResult.LOCKED

        self.ctx.log(f"Code attempt by {alias}", 'info')
        if not isinstance(code, str) or code != self.ctx.setting('TIMER_SECRET_CODE', SECRET_CODE):
            self.ctx.log(f"Unknown command: {code}", 'warning')
            return CodeResult.REJECTED

        self._write(TIMER_DEFAULT, TimerReason.CODE_CORRECT, alias)
        self._clear_failure()
        self._bump_stat('resets')
        self.ctx.log(f"{alias}: valid code entered. Timer reset to {TIMER_DEFAULT} minutes", 'success')
        self.ctx.signals.code_accepted.send(self, identity=identity)
        return CodeResult.ACCEPTED

    @synchronized
    def reset(self, identity=None) -> int:
        alias = identity.alias if identity else 'System'
        self._clear_failure()
        self.ctx.log(f"Timer reset to {TIMER_DEFAULT} minutes", 'info')
        return self._write(TIMER_DEFAULT, TimerReason.MANUAL_RESET, alias)

    @synchronized
    def trigger_failure(self) -> bool:
        """Drop the timer to zero once; repeated calls are no-ops until recovery."""
        if self.system_failure_active:
            self.ctx.logger.info("[timer-failure-skip] failure already active")
            return False
        self.system_failure_active = True
        self._write(0, TimerReason.SYSTEM_FAILURE)
        self._bump_stat('failures')
        self.ctx.log("SYSTEM FAILURE TRIGGERED!", 'error')
        delay = self.recovery_delay
        if delay > 0:
            self.ctx.scheduler.after(self.RECOVERY_JOB, delay, self.recover)
        return True

    @synchronized
    def recover(self) -> bool:
        if not self.system_failure_active:
            return False
        state = parse_timer(self.ref.once())
        if not isinstance(state, Invalid) and state.value > 0:
            # someone entered the code first
            self.system_failure_active = False
            return False
        self.system_failure_active = False
        self._write(TIMER_DEFAULT, TimerReason.TIMER_RESET)
        self.ctx.log("Station systems recovered. Countdown restarted", 'info')
        return True

    def _clear_failure(self) -> None:
        self.system_failure_active = False
        self.ctx.scheduler.cancel(self.RECOVERY_JOB)

    @synchronized
    def health_check(self) -> Optional[TimerReason]:
        """Repair a record left invalid or stale by a peer that stopped ticking."""
        state = parse_timer(self.ref.once())
        if isinstance(state, Invalid):
            self.ctx.log("WARNING: Timer system may be corrupted. Resetting.", 'warning')
            self._write(TIMER_DEFAULT, TimerReason.HEALTH_CHECK)
            return TimerReason.HEALTH_CHECK

        now = self.ctx.now()
        age = now - state.last_update
        if age <= HEALTH_STALE_MS:
            return None

        if state.value == 0:
            delay_ms = self.recovery_delay * 1000
            if delay_ms <= 0 or age <= max(delay_ms, HEALTH_STALE_MS):
                return None
            self.ctx.log("Overdue recovery after system failure", 'warning')
            self._clear_failure()
            self._write(TIMER_DEFAULT, TimerReason.HEALTH_CHECK)
            return TimerReason.HEALTH_CHECK

        result = reconcile_elapsed(state.last_update, state.value, now, TICK_UNIT_MS)
        self.ctx.logger.warning(f"[timer-health] stale by {age}ms, value={state.value}->{result.value}")
        self._write(result.value, TimerReason.HEALTH_CHECK)
        return TimerReason.HEALTH_CHECK

    # replication
    @synchronized
    def _on_change(self, raw, key) -> None:
        state = parse_timer(raw)
        if isinstance(state, Invalid):
            self.ctx.logger.warning(f"[timer-invalid] {state.reason}")
            return
        previous = self.current
        self.current = state
        phase = phase_for(state.value)
        self.ctx.signals.timer_changed.send(self, timer=state, phase=phase)

        changed = previous is None or previous.value != state.value
        if changed:
            message = f"Timer updated to: {state.value} by {state.updated_by}"
            if state.reason:
                message += f" ({state.reason.value})"
            self.ctx.log(message, 'info')

        if phase is TimerPhase.CRITICAL_WINDOW and changed:
            self.ctx.log("WARNING: System failure imminent!", 'warning')
        elif phase is TimerPhase.FAILED:
            # adopt a failure another peer triggered; that peer owns recovery
            self.system_failure_active = True
        elif phase is TimerPhase.RUNNING and self.system_failure_active:
            self._clear_failure()
