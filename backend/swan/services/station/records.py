"""Typed records for everything the station keeps in the replicated store.

Store payloads are untrusted: any peer can write any field, and replicas may
hand over half-merged nodes. Each ``parse_*`` function turns a raw payload
into a dataclass, or into ``Invalid`` with the reason it was rejected. Nothing
past this module touches raw payloads.
"""

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional, Union

from .catalog import (
    CHALLENGE_TYPES,
    DEFAULT_PARAMETERS,
    MAX_REPUTATION,
    PARAMETER_FIELDS,
    PARAMETER_RANGES,
    STARTING_REPUTATION,
    TASK_CATEGORIES,
    TIMER_DEFAULT,
)


class TimerReason(str, Enum):
    TIMER_TICK = 'timer_tick'
    TIME_SYNC = 'time_sync'
    CODE_CORRECT = 'code_correct'
    MANUAL_RESET = 'manual_reset'
    SYSTEM_FAILURE = 'system_failure'
    HEALTH_CHECK = 'health_check'
    TIMER_RESET = 'timer_reset'


@dataclass(frozen=True)
class Invalid:
    reason: str

    def __bool__(self):
        return False


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


def _timestamp(value: Any) -> Optional[int]:
    number = _number(value)
    return int(number) if number is not None else None


def _clamp(name: str, value: float) -> float:
    low, high = PARAMETER_RANGES[name]
    return min(high, max(low, value))


@dataclass
class TimerState:
    value: int
    last_update: int
    updated_by: str = 'System'
    reason: Optional[TimerReason] = None

    def to_record(self) -> Dict[str, Any]:
        return {
            'value': self.value,
            'lastUpdate': self.last_update,
            'updatedBy': self.updated_by,
            'reason': self.reason.value if self.reason else None,
        }


def parse_timer(raw: Any) -> Union[TimerState, Invalid]:
    if not isinstance(raw, dict):
        return Invalid('timer record missing')
    value = _number(raw.get('value'))
    if value is None:
        return Invalid('timer value is not numeric')
    if value < 0 or value > TIMER_DEFAULT:
        return Invalid(f'timer value {value} out of range')
    last_update = _timestamp(raw.get('lastUpdate'))
    if last_update is None:
        return Invalid('timer lastUpdate missing')
    try:
        reason = TimerReason(raw.get('reason'))
    except ValueError:
        reason = None
    updated_by = raw.get('updatedBy')
    return TimerState(
        value=int(value),
        last_update=last_update,
        updated_by=updated_by if isinstance(updated_by, str) and updated_by else 'System',
        reason=reason,
    )


@dataclass
class Task:
    id: str
    type: str
    name: str
    difficulty: int
    time_limit: int
    created_at: int
    expires_at: int
    assigned_to: Optional[str] = None
    assigned_at: Optional[int] = None
    execution_start_time: Optional[int] = None
    execution_end_time: Optional[int] = None
    completed: bool = False
    failed: bool = False
    parameters: Dict[str, float] = field(default_factory=dict)
    forced: bool = False
    trigger_event: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.completed or self.failed

    def is_active(self, now: int) -> bool:
        return not self.is_terminal and now < self.expires_at

    @property
    def dedupe_key(self):
        return (self.name, self.type, self.created_at)

    @property
    def outcome(self) -> Optional[str]:
        if self.completed:
            return 'completed'
        if self.failed:
            return 'failed'
        return None

    def copy(self, **changes) -> 'Task':
        changes.setdefault('parameters', dict(self.parameters))
        return replace(self, **changes)

    def to_record(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'type': self.type,
            'name': self.name,
            'difficulty': self.difficulty,
            'timeLimit': self.time_limit,
            'createdAt': self.created_at,
            'expiresAt': self.expires_at,
            'assignedTo': self.assigned_to,
            'assignedAt': self.assigned_at,
            'executionStartTime': self.execution_start_time,
            'executionEndTime': self.execution_end_time,
            'completed': self.completed,
            'failed': self.failed,
            'parameters': dict(self.parameters),
            'forced': self.forced,
            'triggerEvent': self.trigger_event,
        }


def parse_task(raw: Any, key: Optional[str] = None) -> Union[Task, Invalid]:
    if not isinstance(raw, dict):
        return Invalid('task record missing')
    task_id = raw.get('id') or key
    if not isinstance(task_id, str) or not task_id:
        return Invalid('task id missing')
    name = raw.get('name')
    if not isinstance(name, str) or not name:
        return Invalid(f'task {task_id} has no name')
    task_type = raw.get('type')
    if task_type not in TASK_CATEGORIES:
        return Invalid(f'task {task_id} has unknown type {task_type!r}')
    expires_at = _timestamp(raw.get('expiresAt'))
    if expires_at is None:
        return Invalid(f'task {task_id} has no expiresAt')

    difficulty = _number(raw.get('difficulty'))
    difficulty = int(min(10, max(1, difficulty))) if difficulty is not None else 1
    time_limit = _timestamp(raw.get('timeLimit')) or 300000
    created_at = _timestamp(raw.get('createdAt'))
    if created_at is None:
        created_at = expires_at - time_limit

    assigned_to = raw.get('assignedTo')
    if not isinstance(assigned_to, str) or not assigned_to:
        assigned_to = None

    parameters = {}
    raw_params = raw.get('parameters')
    if isinstance(raw_params, dict):
        for name_, value in raw_params.items():
            if isinstance(value, bool):
                parameters[str(name_)] = int(value)
            elif _number(value) is not None:
                parameters[str(name_)] = value

    completed = raw.get('completed') is True
    failed = raw.get('failed') is True
    if completed and failed:
        # both flags set by racing peers; failure is the conservative outcome
        completed = False

    trigger_event = raw.get('triggerEvent')
    return Task(
        id=task_id,
        type=task_type,
        name=name,
        difficulty=difficulty,
        time_limit=time_limit,
        created_at=created_at,
        expires_at=expires_at,
        assigned_to=assigned_to,
        assigned_at=_timestamp(raw.get('assignedAt')) if assigned_to else None,
        execution_start_time=_timestamp(raw.get('executionStartTime')),
        execution_end_time=_timestamp(raw.get('executionEndTime')),
        completed=completed,
        failed=failed,
        parameters=parameters,
        forced=raw.get('forced') is True,
        trigger_event=trigger_event if isinstance(trigger_event, str) else None,
    )


@dataclass
class StationParameters:
    levels: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_PARAMETERS))
    last_update: Optional[int] = None
    last_event: Optional[str] = None
    repaired: bool = field(default=False, compare=False)

    def __getitem__(self, name: str) -> float:
        return self.levels[name]

    def values(self) -> Dict[str, float]:
        return {name: self.levels[name] for name in PARAMETER_FIELDS}

    def with_values(self, values: Dict[str, float], **changes) -> 'StationParameters':
        """Return a copy carrying ``values``, clamped to each field's range."""
        merged = self.values()
        merged.update(values)
        clamped = {name: _clamp(name, merged[name]) for name in PARAMETER_FIELDS}
        return replace(self, levels=clamped, repaired=False, **changes)

    def clamped(self) -> 'StationParameters':
        return self.with_values({})

    def to_record(self) -> Dict[str, Any]:
        record = {name: round(value, 4) for name, value in self.values().items()}
        record['lastUpdate'] = self.last_update
        record['lastEvent'] = self.last_event
        return record


def parse_parameters(raw: Any) -> Union[StationParameters, Invalid]:
    """Normalize a parameter snapshot.

    Missing or non-numeric fields fall back to their defaults and the result
    is flagged ``repaired`` so the caller writes the corrected snapshot back.
    """
    if not isinstance(raw, dict):
        return Invalid('station parameters missing')
    values = {}
    repaired = False
    for name in PARAMETER_FIELDS:
        value = _number(raw.get(name))
        if value is None:
            value = DEFAULT_PARAMETERS[name]
            repaired = True
        clamped = _clamp(name, float(value))
        if clamped != value:
            repaired = True
        values[name] = clamped
    last_event = raw.get('lastEvent')
    return StationParameters(
        levels=values,
        last_update=_timestamp(raw.get('lastUpdate')),
        last_event=last_event if isinstance(last_event, str) else None,
        repaired=repaired,
    )


@dataclass
class Operator:
    name: str
    pub: str
    last_seen: int
    points: int = 0
    reputation: int = STARTING_REPUTATION

    def to_record(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'pub': self.pub,
            'lastSeen': self.last_seen,
            'points': self.points,
            'reputation': self.reputation,
        }


def parse_operator(raw: Any, key: Optional[str] = None) -> Union[Operator, Invalid]:
    if not isinstance(raw, dict):
        return Invalid('operator record missing')
    pub = raw.get('pub') or key
    name = raw.get('name')
    if not isinstance(pub, str) or not pub or not isinstance(name, str) or not name:
        return Invalid('operator record incomplete')
    points = _number(raw.get('points'))
    reputation = _number(raw.get('reputation'))
    return Operator(
        name=name,
        pub=pub,
        last_seen=_timestamp(raw.get('lastSeen')) or 0,
        points=int(points) if points is not None else 0,
        reputation=int(min(MAX_REPUTATION, max(0, reputation))) if reputation is not None else STARTING_REPUTATION,
    )


class ChallengeStatus(str, Enum):
    PENDING = 'pending'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    EXPIRED = 'expired'


@dataclass
class Challenge:
    id: str
    initiator: str
    initiator_pub: str
    target: str
    target_pub: str
    type: str
    status: ChallengeStatus
    created_at: int
    expires_at: int
    completed_at: Optional[int] = None
    result: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.status is ChallengeStatus.PENDING

    @property
    def points_reward(self) -> int:
        return CHALLENGE_TYPES[self.type]['pointsReward']

    def copy(self, **changes) -> 'Challenge':
        return replace(self, **changes)

    def to_record(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'initiator': self.initiator,
            'initiatorPub': self.initiator_pub,
            'target': self.target,
            'targetPub': self.target_pub,
            'type': self.type,
            'status': self.status.value,
            'createdAt': self.created_at,
            'expiresAt': self.expires_at,
            'completedAt': self.completed_at,
            'result': self.result,
        }


def parse_challenge(raw: Any, key: Optional[str] = None) -> Union[Challenge, Invalid]:
    if not isinstance(raw, dict):
        return Invalid('challenge record missing')
    challenge_id = raw.get('id') or key
    if not isinstance(challenge_id, str) or not challenge_id:
        return Invalid('challenge id missing')
    for name in ('initiator', 'initiatorPub', 'target', 'targetPub'):
        if not isinstance(raw.get(name), str) or not raw.get(name):
            return Invalid(f'challenge {challenge_id} has no {name}')
    kind = raw.get('type')
    if kind not in CHALLENGE_TYPES:
        return Invalid(f'challenge {challenge_id} has unknown type {kind!r}')
    try:
        status = ChallengeStatus(raw.get('status'))
    except ValueError:
        return Invalid(f'challenge {challenge_id} has unknown status {raw.get("status")!r}')
    created_at = _timestamp(raw.get('createdAt'))
    expires_at = _timestamp(raw.get('expiresAt'))
    if created_at is None or expires_at is None:
        return Invalid(f'challenge {challenge_id} has no timestamps')
    result = raw.get('result')
    if status is ChallengeStatus.COMPLETED and result not in ('victory', 'defeat'):
        return Invalid(f'challenge {challenge_id} completed without a result')
    return Challenge(
        id=challenge_id,
        initiator=raw['initiator'],
        initiator_pub=raw['initiatorPub'],
        target=raw['target'],
        target_pub=raw['targetPub'],
        type=kind,
        status=status,
        created_at=created_at,
        expires_at=expires_at,
        completed_at=_timestamp(raw.get('completedAt')),
        result=result if result in ('victory', 'defeat') else None,
    )
