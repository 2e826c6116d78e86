"""Rules for folding concurrent writes from other peers into local caches.

The store already merges field by field, last write wins. These rules sit on
top of it where last-write-wins alone would lose something that matters:
terminal task outcomes and a claim this peer just made on a task.
"""

from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from .records import Task


class Decision(str, Enum):
    ACCEPT = 'accept'
    DISCARD = 'discard'


def merge_task(local: Optional[Task], incoming: Task, is_local) -> Tuple[Decision, str]:
    """Decide whether ``incoming`` replaces the cached ``local`` copy.

    ``is_local(alias)`` tells whether an identity made its claim through
    this peer. The assignment guard is best effort: two peers that both claim
    inside one sync interval can each keep believing they hold the task.
    """
    if local is None:
        return Decision.ACCEPT, 'new'
    if local.is_terminal:
        if incoming.is_terminal:
            return Decision.ACCEPT, 'terminal'
        return Decision.DISCARD, 'local copy already resolved'
    if incoming.is_terminal:
        return Decision.ACCEPT, 'resolved remotely'

    if local.assigned_to and local.assigned_at is not None and is_local(local.assigned_to):
        if incoming.assigned_to is None:
            return Decision.DISCARD, 'incoming update drops a local claim'
        incoming_at = incoming.assigned_at if incoming.assigned_at is not None else 0
        if incoming_at < local.assigned_at:
            return Decision.DISCARD, 'incoming assignment older than local claim'
    return Decision.ACCEPT, 'newer'


def _survivor(candidates: List[Task]) -> Task:
    assigned = [t for t in candidates if t.assigned_to]
    pool = assigned or candidates
    return min(pool, key=lambda t: t.id)


def dedupe_tasks(tasks: Iterable[Task]) -> Tuple[List[Task], List[Task]]:
    """Collapse duplicates by id, then by (name, type, createdAt).

    Returns ``(kept, removed)``; order of first appearance is preserved.
    """
    by_id: Dict[str, List[Task]] = {}
    for task in tasks:
        by_id.setdefault(task.id, []).append(task)
    unique = [_survivor(group) for group in by_id.values()]
    removed = [t for group in by_id.values() for t in group if t is not _survivor(group)]

    by_key: Dict[tuple, List[Task]] = {}
    for task in unique:
        by_key.setdefault(task.dedupe_key, []).append(task)
    kept = []
    for task in unique:
        group = by_key[task.dedupe_key]
        if task is _survivor(group):
            kept.append(task)
        else:
            removed.append(task)
    return kept, removed
