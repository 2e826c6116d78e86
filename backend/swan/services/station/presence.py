from enum import Enum
from typing import Dict, List, Optional

from .catalog import MAX_REPUTATION, STARTING_REPUTATION
from .context import synchronized
from .records import Invalid, Operator, parse_operator

RECENT_WINDOW_MS = 300000


class OperatorStatus(str, Enum):
    ONLINE = 'ONLINE'
    RECENT = 'RECENT'
    OFFLINE = 'OFFLINE'


class Presence:
    """Operator records: heartbeat, online filter, points and reputation."""

    HEARTBEAT_JOB = 'presence-heartbeat'

    def __init__(self, ctx):
        self.ctx = ctx
        self.ref = ctx.root.get('operators')
        self.registered: Dict[str, tuple] = {}

    @property
    def online_window_ms(self) -> int:
        return self.ctx.int_setting('ONLINE_WINDOW_MS', 120000)

    @synchronized
    def register(self, identity, name: Optional[str] = None, schedule: bool = True) -> Operator:
        name = name or identity.alias
        self.registered[identity.pub] = (identity, name)
        self.ctx.claim_identity(identity)
        self._touch(identity, name)
        if schedule:
            self.ctx.scheduler.every(
                self.HEARTBEAT_JOB, self.ctx.int_setting('PRESENCE_HEARTBEAT_SEC', 10), self.heartbeat,
            )
        self.ctx.logger.info(f"[presence] registered {name} ({identity.pub[:8]})")
        return self.get(identity.pub)

    @synchronized
    def unregister(self, identity) -> None:
        self.registered.pop(identity.pub, None)
        if not self.registered:
            self.ctx.scheduler.cancel(self.HEARTBEAT_JOB)

    @synchronized
    def stop(self) -> None:
        self.registered.clear()
        self.ctx.scheduler.cancel(self.HEARTBEAT_JOB)

    def _touch(self, identity, name: str) -> None:
        # points and reputation are left out so a heartbeat never overwrites an award
        self.ref.get(identity.pub).put(
            {'name': name, 'pub': identity.pub, 'lastSeen': self.ctx.now()},
            self.ctx.ack('presence-write'),
        )

    @synchronized
    def heartbeat(self, identity=None) -> int:
        if identity is not None:
            entry = self.registered.get(identity.pub)
            targets = [entry if entry else (identity, identity.alias)]
        else:
            targets = list(self.registered.values())
        for ident, name in targets:
            self._touch(ident, name)
        return len(targets)

    def get(self, pub: str) -> Optional[Operator]:
        operator = parse_operator(self.ref.get(pub).once(), pub)
        return None if isinstance(operator, Invalid) else operator

    def operators(self) -> List[Operator]:
        found = []
        for key, raw in self.ref.map().once().items():
            operator = parse_operator(raw, key)
            if isinstance(operator, Invalid):
                self.ctx.logger.debug(f"[presence] skipping {key}: {operator.reason}")
                continue
            found.append(operator)
        return sorted(found, key=lambda op: op.last_seen, reverse=True)

    def status(self, operator: Operator, now: Optional[int] = None) -> OperatorStatus:
        age = (now if now is not None else self.ctx.now()) - operator.last_seen
        if age < self.online_window_ms:
            return OperatorStatus.ONLINE
        if age < RECENT_WINDOW_MS:
            return OperatorStatus.RECENT
        return OperatorStatus.OFFLINE

    def online(self) -> List[Operator]:
        now = self.ctx.now()
        return [op for op in self.operators() if self.status(op, now) is OperatorStatus.ONLINE]

    @synchronized
    def award_points(self, identity, points: int) -> int:
        """Add ``points`` to an operator. Best effort under concurrent awards."""
        current = self.get(identity.pub)
        total = (current.points if current else 0) + int(points)
        record = {'pub': identity.pub, 'points': total}
        if current is None:
            record.update(name=identity.alias, lastSeen=self.ctx.now())
        self.ref.get(identity.pub).put(record, self.ctx.ack('presence-write'))
        self.ctx.logger.info(f"[presence] +{points} points for {identity.alias} (total {total})")
        return total

    @synchronized
    def adjust_reputation(self, identity, delta: int) -> int:
        """Shift an operator's reputation by ``delta``, held to [0, MAX_REPUTATION]."""
        current = self.get(identity.pub)
        base = current.reputation if current else STARTING_REPUTATION
        reputation = min(MAX_REPUTATION, max(0, base + int(delta)))
        record = {'pub': identity.pub, 'reputation': reputation}
        if current is None:
            record.update(name=identity.alias, lastSeen=self.ctx.now())
        self.ref.get(identity.pub).put(record, self.ctx.ack('presence-write'))
        self.ctx.logger.info(f"[presence] reputation {base}->{reputation} for {identity.alias}")
        return reputation

    def to_dict(self, operator: Operator, now: Optional[int] = None) -> dict:
        data = operator.to_record()
        data['status'] = self.status(operator, now).value
        return data
