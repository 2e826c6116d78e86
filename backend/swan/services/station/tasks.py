"""Station task lifecycle.

GENERATED -> ACTIVE -> ASSIGNED -> EXECUTING -> COMPLETED | FAILED
(an expired task fails). Writes only touch the fields a transition changes,
so a slow peer rewriting an assignment can never un-set a terminal flag
another peer already wrote.
"""

import uuid
from collections import OrderedDict
from typing import Dict, List, Optional

from .catalog import DEFAULT_CATEGORY_WEIGHTS, EMERGENCY, CRITICAL, MAINTENANCE, TASK_CATALOG, TASK_CATEGORIES
from .context import synchronized
from .errors import (
    AlreadyAssigned,
    NotAssignedToYou,
    StillExecuting,
    TaskAlreadyResolved,
    TaskExpired,
    TaskLimitExceeded,
    TaskNotFound,
)
from .reconcile import Decision, dedupe_tasks, merge_task
from .records import Invalid, Task, parse_task
from .scoring import TARGET_PREFIX, roll_task_success

ASSIGNMENT_FIELDS = ('assignedTo', 'assignedAt', 'executionStartTime', 'executionEndTime')


class TaskEngine:
    GENERATE_JOB = 'task-generate'
    SWEEP_JOB = 'task-expiry'
    DEDUPE_JOB = 'task-dedupe'

    def __init__(self, ctx):
        self.ctx = ctx
        self.ref = ctx.root.get('tasks')
        self.active: Dict[str, Task] = OrderedDict()
        self.resolved: Dict[str, Task] = OrderedDict()
        self._subscription = None

    # settings
    @property
    def max_active(self) -> int:
        return self.ctx.int_setting('MAX_ACTIVE_TASKS', 3)

    @property
    def max_per_operator(self) -> int:
        return self.ctx.int_setting('MAX_TASKS_PER_OPERATOR', 3)

    @property
    def execution_delay_ms(self) -> int:
        return self.ctx.int_setting('EXECUTION_DELAY_PER_DIFFICULTY_MS', 30000)

    # lifecycle
    def start(self, schedule: bool = True) -> None:
        self.load()
        self._subscription = self.ref.map().on(self._on_remote)
        if schedule:
            scheduler = self.ctx.scheduler
            scheduler.every(self.GENERATE_JOB, self.ctx.int_setting('TASK_GENERATION_SEC', 30), self.generate)
            scheduler.every(self.SWEEP_JOB, self.ctx.int_setting('TASK_EXPIRY_SWEEP_SEC', 30), self.sweep_expired)
            scheduler.every(self.DEDUPE_JOB, self.ctx.int_setting('TASK_DEDUPE_SEC', 60), self.dedupe)

    def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.off()
            self._subscription = None
        for job in (self.GENERATE_JOB, self.SWEEP_JOB, self.DEDUPE_JOB):
            self.ctx.scheduler.cancel(job)

    @synchronized
    def load(self) -> int:
        """Rebuild the active cache from the store."""
        now = self.ctx.now()
        loaded = []
        for key, raw in self.ref.map().once().items():
            task = parse_task(raw, key)
            if isinstance(task, Invalid):
                self.ctx.logger.warning(f"[task-load] skipping corrupted task {key}: {task.reason}")
                continue
            if task.is_active(now):
                loaded.append(task)
        kept, removed = dedupe_tasks(loaded)
        for task in removed:
            self.ctx.logger.info(f"[task-load] removing duplicate task {task.id} ({task.name})")
        self.active = OrderedDict((task.id, task) for task in kept)
        self.ctx.logger.info(f"[task-load] loaded {len(self.active)} active tasks")
        return len(self.active)

    # queries
    @synchronized
    def count_active(self) -> int:
        now = self.ctx.now()
        return sum(1 for task in self.active.values() if task.is_active(now))

    @synchronized
    def tasks_for(self, alias: str) -> List[Task]:
        return [task for task in self.active.values() if task.assigned_to == alias and not task.is_terminal]

    @synchronized
    def get(self, task_id: str) -> Optional[Task]:
        return self.active.get(task_id) or self.resolved.get(task_id)

    @synchronized
    def history(self, kind: str = 'all') -> List[Task]:
        tasks = list(reversed(self.resolved.values()))
        if kind == 'completed':
            return [task for task in tasks if task.completed]
        if kind == 'failed':
            return [task for task in tasks if task.failed]
        return tasks

    @synchronized
    def summary(self) -> dict:
        completed = sum(1 for task in self.resolved.values() if task.completed)
        failed = sum(1 for task in self.resolved.values() if task.failed)
        finished = completed + failed
        params = self.ctx.parameters
        return {
            'activeTasks': self.count_active(),
            'completed': completed,
            'failed': failed,
            'successRate': round(100 * completed / finished) if finished else 0,
            'lastEvent': params.last_event if params is not None else None,
        }

    # generation
    def _choose_category(self) -> str:
        weights = self.ctx.setting('TASK_CATEGORY_WEIGHTS', DEFAULT_CATEGORY_WEIGHTS)
        return self.ctx.rng.choices(TASK_CATEGORIES, weights=[weights.get(c, 0) for c in TASK_CATEGORIES])[0]

    def generate_parameters(self, category: str, entry: dict) -> Dict[str, float]:
        rng = self.ctx.rng
        params = {
            'temperature': round(rng.random() * 100, 2),
            'pressure': round(rng.random() * 50, 2),
            'flowRate': round(rng.random() * 200, 2),
            'efficiency': round(rng.random() * 100, 2),
        }
        if category == EMERGENCY:
            params['criticalLevel'] = round(rng.random() * 10, 2)
            params['containmentRequired'] = 1 if rng.random() > 0.5 else 0
        elif category == CRITICAL:
            params['stabilityIndex'] = round(rng.random() * 100, 2)
            params['driftMargin'] = round(rng.random() * 20, 2)
        elif category == MAINTENANCE:
            params['wearLevel'] = round(rng.random() * 100, 2)
            params['optimizationTarget'] = round(rng.random() * 100, 2)
        for name, value in entry.get('targets', {}).items():
            params[TARGET_PREFIX + name] = value
        return params

    @synchronized
    def generate(self, category: Optional[str] = None, forced: bool = False, trigger_event: Optional[str] = None) -> Optional[Task]:
        active = self.count_active()
        if active >= self.max_active:
            self.ctx.logger.info(f"[task-generate] skipped, {active} active tasks")
            return None
        category = category or self._choose_category()
        key = self.ctx.rng.choice(sorted(TASK_CATALOG[category]))
        entry = TASK_CATALOG[category][key]
        now = self.ctx.now()
        task = Task(
            id=str(uuid.UUID(int=self.ctx.rng.getrandbits(128), version=4)),
            type=category,
            name=entry['name'],
            difficulty=entry['difficulty'],
            time_limit=entry['timeLimit'],
            created_at=now,
            expires_at=now + entry['timeLimit'],
            parameters=self.generate_parameters(category, entry),
            forced=forced,
            trigger_event=trigger_event,
        )
        self.active[task.id] = task
        self.ref.get(task.id).put(task.to_record(), self.ctx.ack('task-write'))
        self.ctx.signals.task_changed.send(self, task=task)
        self.ctx.signals.task_notification.send(self, task=task, outcome='new')
        suffix = f" ({trigger_event})" if trigger_event else ''
        self.ctx.log(f"New task: {task.name}{suffix}", 'warning' if category == EMERGENCY else 'info')
        return task

    @synchronized
    def force_new_task(self) -> Optional[Task]:
        task = self.generate(forced=True)
        if task is None:
            self.ctx.log("Maximum active tasks reached", 'warning')
        else:
            self.ctx.log("Forced new task generation", 'info')
        return task

    # operator actions
    def _require(self, task_id: str) -> Task:
        task = self.get(task_id)
        if task is None:
            raise TaskNotFound(f"Task {task_id} not found", task_id)
        if task.is_terminal:
            raise TaskAlreadyResolved(f'Task "{task.name}" is already {task.outcome}', task_id)
        return task

    @synchronized
    def accept(self, task_id: str, identity) -> Task:
        task = self._require(task_id)
        now = self.ctx.now()
        if now >= task.expires_at:
            self._expire(task)
            raise TaskExpired(f'Task "{task.name}" has expired', task_id)
        if task.assigned_to:
            raise AlreadyAssigned(f'Task "{task.name}" is already assigned to {task.assigned_to}', task_id)
        if len(self.tasks_for(identity.alias)) >= self.max_per_operator:
            raise TaskLimitExceeded(f"You already hold {self.max_per_operator} tasks", task_id)

        accepted = task.copy(
            assigned_to=identity.alias,
            assigned_at=now,
            execution_start_time=now,
            execution_end_time=now + task.difficulty * self.execution_delay_ms,
        )
        self.ctx.claim_identity(identity)
        self.active[task_id] = accepted
        self._persist(accepted, ASSIGNMENT_FIELDS)
        self.ctx.signals.task_changed.send(self, task=accepted)
        self.ctx.log(f'Task "{accepted.name}" accepted by {identity.alias}', 'success')
        return accepted

    @synchronized
    def complete(self, task_id: str, identity) -> Task:
        task = self._require(task_id)
        now = self.ctx.now()
        if task.assigned_to != identity.alias:
            raise NotAssignedToYou("You can only complete tasks assigned to you", task_id)
        if task.execution_end_time is not None and now < task.execution_end_time:
            remaining = task.execution_end_time - now
            raise StillExecuting(f'Task "{task.name}" still executing ({remaining // 1000}s left)', task_id, remaining)
        if now >= task.expires_at:
            self._expire(task)
            raise TaskExpired(f'Task "{task.name}" has expired', task_id)

        success, probability = roll_task_success(task, self.ctx.parameters, self.ctx.rng)
        resolved = task.copy(completed=success, failed=not success)
        # cache the terminal copy first so the store echo is recognised as ours
        self.active[task_id] = resolved
        self._persist(resolved, ('completed',) if success else ('failed',))
        outcome = resolved.outcome
        self.ctx.logger.info(f"[task-complete] task={task_id} p={probability:.2f} outcome={outcome}")
        self.ctx.signals.task_resolved.send(self, task=resolved, outcome=outcome)
        self._finish(resolved, outcome)
        if success:
            self.ctx.log(f'Task "{resolved.name}" completed successfully!', 'success')
        else:
            self.ctx.log(f'Task "{resolved.name}" failed!', 'error')
        return resolved

    # maintenance passes
    @synchronized
    def sweep_expired(self) -> List[Task]:
        now = self.ctx.now()
        expired = [task for task in list(self.active.values()) if not task.is_terminal and now >= task.expires_at]
        return [self._expire(task) for task in expired]

    @synchronized
    def dedupe(self) -> int:
        kept, removed = dedupe_tasks(self.active.values())
        if removed:
            self.active = OrderedDict((task.id, task) for task in kept)
            for task in removed:
                self.ctx.logger.info(f"[task-dedupe] removed duplicate {task.id} ({task.name})")
        return len(removed)

    def _expire(self, task: Task) -> Task:
        failed = task.copy(failed=True, completed=False)
        self.active[task.id] = failed
        self._persist(failed, ('failed',))
        self._finish(failed, 'expired')
        self.ctx.log(f'Task "{task.name}" expired!', 'error')
        return failed

    def _persist(self, task: Task, fields) -> None:
        record = task.to_record()
        self.ref.get(task.id).put({name: record[name] for name in fields}, self.ctx.ack('task-write'))

    @synchronized
    def _finish(self, task: Task, outcome: str) -> None:
        self.active.pop(task.id, None)
        self.resolved[task.id] = task
        limit = self.ctx.int_setting('TASK_HISTORY_LIMIT', 200)
        while len(self.resolved) > limit:
            self.resolved.popitem(last=False)
        self.ctx.signals.task_changed.send(self, task=task)
        self.ctx.signals.task_notification.send(self, task=task, outcome=outcome)

    # replication
    @synchronized
    def _on_remote(self, raw, key) -> None:
        incoming = parse_task(raw, key)
        if isinstance(incoming, Invalid):
            self.ctx.logger.debug(f"[task-sync] ignoring {key}: {incoming.reason}")
            return
        local = self.active.get(incoming.id) or self.resolved.get(incoming.id)

        if local is None:
            if not incoming.is_active(self.ctx.now()):
                return
            if any(task.dedupe_key == incoming.dedupe_key for task in self.active.values()):
                self.ctx.logger.info(f"[task-sync] duplicate of an active task: {incoming.id}")
                return
            self.active[incoming.id] = incoming
            self.ctx.signals.task_changed.send(self, task=incoming)
            self.ctx.signals.task_notification.send(self, task=incoming, outcome='new')
            self.ctx.logger.info(f"[task-sync] new task received: {incoming.name}")
            return

        decision, why = merge_task(local, incoming, self.ctx.is_local)
        if decision is Decision.DISCARD:
            self.ctx.logger.info(f"[task-guard] discarded update for {incoming.id}: {why}")
            return
        if incoming.is_terminal:
            if local.is_terminal:
                return
            self._finish(incoming, incoming.outcome)
            return
        if incoming != local:
            self.active[incoming.id] = incoming
            self.ctx.signals.task_changed.send(self, task=incoming)
