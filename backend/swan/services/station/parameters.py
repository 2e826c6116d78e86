"""Station parameter simulation: drift, coupling, random events and task effects.

Every write path goes through ``_write``, which clamps each field to its range
before anything reaches the store.
"""

from typing import Dict, List, Optional

from .catalog import (
    CATEGORY_EFFECTS,
    INTERDEPENDENCIES,
    PARAMETER_FIELDS,
    RANDOM_EVENTS,
    SAFE_BANDS,
    TASK_EFFECTS,
    VOLATILITY,
)
from .context import synchronized
from .records import Invalid, StationParameters, parse_parameters
from .scoring import balance_bonus

OUTCOME_EFFECT_KEYS = {'completed': 'success', 'failed': 'failure'}


class ParameterEngine:
    DRIFT_JOB = 'parameter-drift'
    EVENT_JOB = 'random-event'

    def __init__(self, ctx):
        self.ctx = ctx
        self.ref = ctx.root.get('stationParameters')
        self.raised_alerts = set()
        self._subscription = None

    @property
    def current(self) -> StationParameters:
        if self.ctx.parameters is None:
            self.load()
        return self.ctx.parameters

    def start(self, schedule: bool = True) -> None:
        self.load()
        self._subscription = self.ref.on(self._on_change)
        if schedule:
            scheduler = self.ctx.scheduler
            scheduler.every(self.DRIFT_JOB, self.ctx.int_setting('PARAMETER_DRIFT_SEC', 20), self.drift)
            scheduler.every(self.EVENT_JOB, self.ctx.int_setting('RANDOM_EVENT_CHECK_SEC', 180), self.maybe_random_event)

    def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.off()
            self._subscription = None
        for job in (self.DRIFT_JOB, self.EVENT_JOB):
            self.ctx.scheduler.cancel(job)

    @synchronized
    def load(self) -> StationParameters:
        params = parse_parameters(self.ref.once())
        if isinstance(params, Invalid):
            self.ctx.logger.info(f"[params-init] {params.reason}, writing defaults")
            return self._write(StationParameters())
        if params.repaired:
            self.ctx.logger.warning("[params-repair] out-of-range or missing fields corrected")
            return self._write(params)
        self.ctx.parameters = params
        return params

    @synchronized
    def _write(self, params: StationParameters, **changes) -> StationParameters:
        params = params.with_values({}, last_update=self.ctx.now(), **changes)
        self.ctx.parameters = params
        self.ref.put(params.to_record(), self.ctx.ack('params-write'))
        self.check_alerts(params)
        return params

    def _shifted(self, deltas: Dict[str, float]) -> Dict[str, float]:
        values = self.current.values()
        for name, delta in deltas.items():
            if name in values:
                values[name] += delta
        return values

    # simulation
    @staticmethod
    def apply_interdependencies(values: Dict[str, float]) -> Dict[str, float]:
        """One layer of influence, every delta computed from the incoming snapshot."""
        snapshot = dict(values)
        result = dict(values)
        for source, targets in INTERDEPENDENCIES.items():
            for target, factor in targets.items():
                result[target] += factor * 0.01 * snapshot[source]
        return result

    @synchronized
    def drift(self) -> StationParameters:
        rng = self.ctx.rng
        values = self.current.values()
        for name in PARAMETER_FIELDS:
            values[name] += rng.uniform(-VOLATILITY[name], VOLATILITY[name])
        values = self.apply_interdependencies(values)
        return self._write(self.current.with_values(values))

    @synchronized
    def maybe_random_event(self) -> Optional[StationParameters]:
        if self.ctx.rng.random() >= self.ctx.float_setting('RANDOM_EVENT_CHANCE', 0.3):
            return None
        return self.apply_random_event(self.ctx.rng.choice(sorted(RANDOM_EVENTS)))

    @synchronized
    def apply_random_event(self, name: str) -> StationParameters:
        event = RANDOM_EVENTS[name]
        params = self._write(self.current.with_values(self._shifted(event['effects'])), last_event=name)
        spawn = self.ctx.rng.random() < self.ctx.float_setting('EVENT_EMERGENCY_CHANCE', 0.5)
        self.ctx.log(f"STATION EVENT: {name}. {event['description']}", 'warning')
        self.ctx.signals.station_event.send(
            self, event=name, description=event['description'], spawn_emergency=spawn,
        )
        return params

    @synchronized
    def apply_task_effect(self, task, outcome: str) -> Optional[StationParameters]:
        key = OUTCOME_EFFECT_KEYS.get(outcome)
        effects = TASK_EFFECTS.get(task.name) or CATEGORY_EFFECTS.get(task.type)
        if key is None or not effects:
            return None
        deltas = effects.get(key, {})
        self.ctx.logger.info(f"[params-effect] task={task.name} outcome={outcome} deltas={deltas}")
        return self._write(self.current.with_values(self._shifted(deltas)))

    @synchronized
    def reset(self) -> StationParameters:
        self.raised_alerts.clear()
        return self._write(StationParameters())

    @synchronized
    def calculate_balance_bonus(self) -> int:
        return balance_bonus(self.current)

    @synchronized
    def check_alerts(self, params: StationParameters) -> List[str]:
        """Raise each out-of-band field once; a field re-arms after it recovers."""
        raised = []
        for name in PARAMETER_FIELDS:
            low, high = SAFE_BANDS[name]
            value = params[name]
            if low <= value <= high:
                self.raised_alerts.discard(name)
                continue
            if name in self.raised_alerts:
                continue
            self.raised_alerts.add(name)
            raised.append(name)
            self.ctx.log(f"ALERT: {name} outside safe range ({value:.2f})", 'error')
            self.ctx.signals.parameter_alert.send(self, parameter=name, value=value)
        return raised

    # replication
    @synchronized
    def _on_change(self, raw, key) -> None:
        params = parse_parameters(raw)
        if isinstance(params, Invalid):
            self.ctx.logger.warning(f"[params-invalid] {params.reason}")
            return
        self.ctx.parameters = params
        self.ctx.signals.parameters_changed.send(self, params=params)
