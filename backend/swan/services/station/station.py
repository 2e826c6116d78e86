import time
from typing import Optional

from .catalog import EMERGENCY, REPUTATION_GAIN, REPUTATION_LOSS, TIMER_DEFAULT
from .challenges import ChallengeEngine
from .context import StationContext, synchronized
from .parameters import ParameterEngine
from .presence import Presence
from .scheduler import StationScheduler
from .scoring import CODE_RESET_POINTS, task_points
from .tasks import TaskEngine
from .timer import TimerEngine, phase_for


class Station:
    """One peer: a context, its engines and the wiring between them.

    Engines never call each other. Anything that crosses engines goes out as a
    domain signal and is answered here.
    """

    POLL_JOB = 'store-poll'

    def __init__(self, store, config=None, clock=None, rng=None, logger=None, spawn=None,
                 namespace='swan', sleep=time.sleep):
        scheduler = StationScheduler(spawn=spawn, logger=logger)
        self.ctx = StationContext(store, config, clock, rng, logger, scheduler, namespace)
        self.sleep = sleep
        self.timer = TimerEngine(self.ctx)
        self.tasks = TaskEngine(self.ctx)
        self.parameters = ParameterEngine(self.ctx)
        self.presence = Presence(self.ctx)
        self.challenges = ChallengeEngine(self.ctx)
        self.running = False
        self.scheduling = False
        self._receivers = []

    @property
    def signals(self):
        return self.ctx.signals

    @property
    def store(self):
        return self.ctx.store

    @synchronized
    def start(self, schedule: bool = True) -> None:
        if self.running:
            self.ctx.logger.info("[station] already running, restarting")
            self.stop()
        ctx = self.ctx
        ctx.connect_store(
            retries=ctx.int_setting('STORE_INIT_RETRIES', 3),
            backoff=ctx.float_setting('STORE_INIT_BACKOFF_SEC', 1.0),
            sleep=self.sleep,
        )
        self._wire()
        self.parameters.start(schedule)
        self.timer.start(schedule)
        self.tasks.start(schedule)
        self.challenges.start(schedule)
        if schedule and ctx.store.needs_polling:
            ctx.scheduler.every(self.POLL_JOB, ctx.float_setting('STORE_POLL_SEC', 1.0), ctx.store.poll)
        self.running = True
        self.scheduling = schedule
        ctx.logger.info(f"[station] started schedule={schedule}")

    @synchronized
    def stop(self) -> int:
        drained = self.ctx.scheduler.shutdown()
        self.timer.stop()
        self.tasks.stop()
        self.challenges.stop()
        self.parameters.stop()
        self.presence.stop()
        for signal, receiver in self._receivers:
            signal.disconnect(receiver)
        self._receivers = []
        self.ctx.reset_readiness()
        self.running = False
        self.ctx.logger.info(f"[station] stopped, drained {drained} jobs")
        return drained

    # wiring
    def _wire(self) -> None:
        signals = self.ctx.signals
        for signal, receiver in (
            (signals.task_resolved, self._on_task_resolved),
            (signals.station_event, self._on_station_event),
            (signals.parameter_alert, self._on_parameter_alert),
            (signals.code_accepted, self._on_code_accepted),
            (signals.challenge_resolved, self._on_challenge_resolved),
        ):
            signal.connect(receiver, weak=False)
            self._receivers.append((signal, receiver))

    def _on_task_resolved(self, sender, task=None, outcome=None, **extra):
        self.parameters.apply_task_effect(task, outcome)
        if outcome != 'completed':
            return
        identity = self.ctx.local_identities.get(task.assigned_to)
        if identity is not None:
            self.presence.award_points(identity, task_points(task) + self.parameters.calculate_balance_bonus())

    def _on_station_event(self, sender, event=None, spawn_emergency=False, **extra):
        if spawn_emergency:
            self.tasks.generate(EMERGENCY, trigger_event=event)

    def _on_parameter_alert(self, sender, parameter=None, value=None, **extra):
        self.tasks.generate(EMERGENCY, trigger_event=f"{parameter} alert")

    def _on_code_accepted(self, sender, identity=None, **extra):
        if identity is not None:
            self.presence.award_points(identity, CODE_RESET_POINTS)

    def _on_challenge_resolved(self, sender, challenge=None, identity=None, **extra):
        if challenge.result == 'victory':
            self.presence.award_points(identity, challenge.points_reward)
            self.presence.adjust_reputation(identity, REPUTATION_GAIN)
            self.ctx.log(
                f"Challenge victory! +{challenge.points_reward} points, +{REPUTATION_GAIN} reputation", 'success',
            )
        else:
            self.presence.adjust_reputation(identity, -REPUTATION_LOSS)
            self.ctx.log(f"Challenge defeat! -{REPUTATION_LOSS} reputation", 'error')

    # read model for the host
    @synchronized
    def state(self) -> dict:
        timer = self.timer.current
        value = timer.value if timer else TIMER_DEFAULT
        params = self.ctx.parameters
        return {
            'connection': self.ctx.connection,
            'timer': timer.to_record() if timer else None,
            'phase': phase_for(value).value,
            'systemFailure': self.timer.system_failure_active,
            'parameters': params.to_record() if params else None,
            'balanceBonus': self.parameters.calculate_balance_bonus() if params else 0,
            'tasks': self.tasks.summary(),
            'operatorsOnline': len(self.presence.online()),
        }

    def wait_ready(self, timeout: Optional[float] = None) -> bool:
        return self.ctx.wait_ready(timeout)
