"""Operator-vs-operator challenges.

An operator with enough points and reputation challenges another operator,
then has five minutes to execute the challenge before it expires. Executing
rolls the outcome; the coordinator turns a victory into points and
reputation, and a defeat into lost reputation. Each initiator and each target
then sits out a cooldown.

Challenge records live under ``challenges/<id>`` so every peer sees the same
history; cooldowns are derived from that history rather than stored.
"""

import uuid
from typing import List, Optional

from .catalog import (
    CHALLENGE_COOLDOWN_MS,
    CHALLENGE_MIN_POINTS,
    CHALLENGE_TYPES,
    CHALLENGE_WINDOW_MS,
    STARTING_REPUTATION,
)
from .context import synchronized
from .errors import (
    ChallengeConflict,
    ChallengeCooldown,
    ChallengeError,
    ChallengeExpired,
    ChallengeNotAllowed,
    ChallengeNotFound,
)
from .records import Challenge, ChallengeStatus, Invalid, parse_challenge, parse_operator
from .scoring import roll_challenge


class ChallengeEngine:
    SWEEP_JOB = 'challenge-expiry'

    def __init__(self, ctx):
        self.ctx = ctx
        self.ref = ctx.root.get('challenges')
        self.operators_ref = ctx.root.get('operators')
        self._subscription = None

    @property
    def cooldown_ms(self) -> int:
        return self.ctx.int_setting('CHALLENGE_COOLDOWN_MS', CHALLENGE_COOLDOWN_MS)

    @property
    def window_ms(self) -> int:
        return self.ctx.int_setting('CHALLENGE_WINDOW_MS', CHALLENGE_WINDOW_MS)

    def start(self, schedule: bool = True) -> None:
        self._subscription = self.ref.map().on(self._on_change)
        if schedule:
            self.ctx.scheduler.every(
                self.SWEEP_JOB, self.ctx.int_setting('CHALLENGE_EXPIRY_SWEEP_SEC', 30), self.sweep_expired,
            )

    def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.off()
            self._subscription = None
        self.ctx.scheduler.cancel(self.SWEEP_JOB)

    # queries
    def all(self) -> List[Challenge]:
        found = []
        for key, raw in self.ref.map().once().items():
            challenge = parse_challenge(raw, key)
            if isinstance(challenge, Invalid):
                self.ctx.logger.debug(f"[challenge] skipping {key}: {challenge.reason}")
                continue
            found.append(challenge)
        return sorted(found, key=lambda c: (c.created_at, c.id))

    def get(self, challenge_id: str) -> Optional[Challenge]:
        challenge = parse_challenge(self.ref.get(challenge_id).once(), challenge_id)
        return None if isinstance(challenge, Invalid) else challenge

    def pending_for(self, pub: str) -> Optional[Challenge]:
        now = self.ctx.now()
        for challenge in self.all():
            if challenge.initiator_pub == pub and challenge.is_pending and now < challenge.expires_at:
                return challenge
        return None

    def history(self, pub: Optional[str] = None) -> List[Challenge]:
        """Executed challenges, newest first, optionally only those ``pub`` took part in."""
        done = [c for c in self.all() if c.status is ChallengeStatus.COMPLETED]
        if pub is not None:
            done = [c for c in done if pub in (c.initiator_pub, c.target_pub)]
        return sorted(done, key=lambda c: c.completed_at or 0, reverse=True)

    def _cooldown_end(self, challenges, now) -> int:
        ends = [c.completed_at + self.cooldown_ms for c in challenges if c.completed_at is not None]
        end = max(ends, default=0)
        return end if end > now else 0

    def cooldown_status(self, pub: str) -> dict:
        now = self.ctx.now()
        end = self._cooldown_end([c for c in self.history() if c.initiator_pub == pub], now)
        return {'active': bool(end), 'endTime': end, 'remaining': max(0, end - now)}

    def target_cooldown_remaining(self, pub: str) -> int:
        now = self.ctx.now()
        end = self._cooldown_end([c for c in self.history() if c.target_pub == pub], now)
        return max(0, end - now)

    def stats(self, identity) -> dict:
        mine = [c for c in self.history() if c.initiator_pub == identity.pub]
        victories = [c for c in mine if c.result == 'victory']
        operator = self._operator(identity.pub)
        return {
            'total': len(mine),
            'victories': len(victories),
            'defeats': len(mine) - len(victories),
            'winRate': round(100 * len(victories) / len(mine)) if mine else 0,
            'totalPoints': sum(c.points_reward for c in victories),
            'reputation': operator.reputation if operator else STARTING_REPUTATION,
        }

    def _operator(self, pub: str):
        operator = parse_operator(self.operators_ref.get(pub).once(), pub)
        return None if isinstance(operator, Invalid) else operator

    # operator actions
    @synchronized
    def initiate(self, identity, target_pub: str, kind: str = 'standard') -> Challenge:
        if kind not in CHALLENGE_TYPES:
            raise ChallengeError(f"Unknown challenge type: {kind}")
        if target_pub == identity.pub:
            raise ChallengeNotAllowed("You cannot challenge yourself")
        target = self._operator(target_pub)
        if target is None:
            raise ChallengeNotFound("Target operator not found")

        me = self._operator(identity.pub)
        points = me.points if me else 0
        reputation = me.reputation if me else STARTING_REPUTATION
        if points < CHALLENGE_MIN_POINTS:
            raise ChallengeNotAllowed(f"Need at least {CHALLENGE_MIN_POINTS} points to initiate a challenge")
        cost = CHALLENGE_TYPES[kind]['reputationCost']
        if reputation < cost:
            raise ChallengeNotAllowed(f"Need at least {cost} reputation to initiate a {kind} challenge")

        cooldown = self.cooldown_status(identity.pub)
        if cooldown['active']:
            raise ChallengeCooldown(
                f"Challenge cooldown active. Wait {-(-cooldown['remaining'] // 1000)}s before next challenge.",
                remaining_ms=cooldown['remaining'],
            )
        if self.pending_for(identity.pub) is not None:
            raise ChallengeConflict("Challenge already in progress. Complete the current challenge first.")
        remaining = self.target_cooldown_remaining(target_pub)
        if remaining:
            raise ChallengeCooldown("Target operator is on cooldown", remaining_ms=remaining)

        now = self.ctx.now()
        challenge = Challenge(
            id=str(uuid.UUID(int=self.ctx.rng.getrandbits(128), version=4)),
            initiator=identity.alias,
            initiator_pub=identity.pub,
            target=target.name,
            target_pub=target.pub,
            type=kind,
            status=ChallengeStatus.PENDING,
            created_at=now,
            expires_at=now + self.window_ms,
        )
        self.ref.get(challenge.id).put(challenge.to_record(), self.ctx.ack('challenge-write'))
        if self.ctx.now() - target.last_seen >= self.ctx.int_setting('ONLINE_WINDOW_MS', 120000):
            self.ctx.log(f"Challenging offline operator {target.name}", 'info')
        self.ctx.log(f"{identity.alias} challenged {target.name} ({CHALLENGE_TYPES[kind]['name']})", 'info')
        return challenge

    def _require_pending(self, challenge_id: str, identity) -> Challenge:
        challenge = self.get(challenge_id)
        if challenge is None:
            raise ChallengeNotFound(f"Challenge {challenge_id} not found", challenge_id)
        if challenge.initiator_pub != identity.pub:
            raise ChallengeNotAllowed("Only the initiator can act on this challenge", challenge_id)
        if not challenge.is_pending:
            raise ChallengeConflict(f"Challenge is already {challenge.status.value}", challenge_id)
        if self.ctx.now() >= challenge.expires_at:
            self._close(challenge, ChallengeStatus.EXPIRED)
            raise ChallengeExpired("Challenge expired", challenge_id)
        return challenge

    @synchronized
    def execute(self, challenge_id: str, identity) -> Challenge:
        challenge = self._require_pending(challenge_id, identity)
        me = self._operator(identity.pub)
        reputation = me.reputation if me else STARTING_REPUTATION
        victory, chance = roll_challenge(challenge.type, reputation, self.ctx.rng)
        done = challenge.copy(
            status=ChallengeStatus.COMPLETED,
            completed_at=self.ctx.now(),
            result='victory' if victory else 'defeat',
        )
        self.ref.get(done.id).put(
            {'status': done.status.value, 'completedAt': done.completed_at, 'result': done.result},
            self.ctx.ack('challenge-write'),
        )
        self.ctx.logger.info(f"[challenge-execute] id={done.id} p={chance:.2f} result={done.result}")
        self.ctx.signals.challenge_resolved.send(self, challenge=done, identity=identity)
        return done

    @synchronized
    def cancel(self, challenge_id: str, identity) -> Challenge:
        challenge = self._require_pending(challenge_id, identity)
        cancelled = self._close(challenge, ChallengeStatus.CANCELLED)
        self.ctx.log("Challenge cancelled", 'info')
        return cancelled

    @synchronized
    def sweep_expired(self) -> List[Challenge]:
        now = self.ctx.now()
        expired = [c for c in self.all() if c.is_pending and now >= c.expires_at]
        for challenge in expired:
            self._close(challenge, ChallengeStatus.EXPIRED)
            self.ctx.log(f"Challenge by {challenge.initiator} against {challenge.target} expired", 'warning')
        return expired

    def _close(self, challenge: Challenge, status: ChallengeStatus) -> Challenge:
        closed = challenge.copy(status=status)
        self.ref.get(closed.id).put({'status': status.value}, self.ctx.ack('challenge-write'))
        return closed

    # replication
    def _on_change(self, raw, key) -> None:
        challenge = parse_challenge(raw, key)
        if isinstance(challenge, Invalid):
            self.ctx.logger.debug(f"[challenge-sync] ignoring {key}: {challenge.reason}")
            return
        self.ctx.signals.challenge_changed.send(self, challenge=challenge)
