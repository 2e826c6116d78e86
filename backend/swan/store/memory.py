from collections import deque
from typing import Any, Deque, Dict, List, Optional, Tuple

from .base import Path, ReplicatedStore, incoming_wins


class MemoryStore(ReplicatedStore):
    """In-process replica.

    Replicas can be linked to each other to form a mesh. Local writes are
    visible to local subscribers right away and are queued for every linked
    peer; with ``auto_flush`` off they stay queued until ``flush()`` so tests
    can interleave writes from several peers before they replicate.
    """

    def __init__(self, clock=None, auto_flush: bool = True, name: str = 'memory'):
        super().__init__(clock)
        self.name = name
        self.auto_flush = auto_flush
        self._nodes: Dict[Path, Dict[str, Tuple[Any, int]]] = {}
        self._peers: List['MemoryStore'] = []
        self._outbox: Deque[Tuple['MemoryStore', Path, Dict[str, Tuple[Any, int]]]] = deque()

    def read(self, path: Path) -> Optional[Dict[str, Any]]:
        with self._lock:
            node = self._nodes.get(path)
            if node is None:
                return None
            return {field: value for field, (value, _state) in node.items()}

    def children(self, path: Path) -> Dict[str, Dict[str, Any]]:
        depth = len(path) + 1
        with self._lock:
            keys = [p for p in self._nodes if len(p) == depth and p[:-1] == path]
        return {p[-1]: self.read(p) for p in keys}

    def state_of(self, path: Path, field: str) -> Optional[int]:
        with self._lock:
            entry = self._nodes.get(path, {}).get(field)
            return entry[1] if entry else None

    def _max_state(self, path: Path) -> int:
        with self._lock:
            node = self._nodes.get(path)
            return max((state for _value, state in node.values()), default=0) if node else 0

    def _apply(self, path: Path, fields: Dict[str, Tuple[Any, int]]) -> bool:
        changed = False
        with self._lock:
            node = self._nodes.setdefault(path, {})
            for field, (value, state) in fields.items():
                current = node.get(field)
                cur_value, cur_state = (current if current else (None, None))
                if incoming_wins(state, value, cur_state, cur_value):
                    if current is None or current != (value, state):
                        node[field] = (value, state)
                        changed = True
        return changed

    def _after_local_write(self, path, stamped):
        with self._lock:
            for peer in self._peers:
                self._outbox.append((peer, path, dict(stamped)))
        if self.auto_flush:
            self.flush()

    # replication
    def link(self, other: 'MemoryStore') -> None:
        """Connect two replicas both ways and exchange what each already holds."""
        if other is self or other in self._peers:
            return
        self._peers.append(other)
        other._peers.append(self)
        for path, fields in self.snapshot().items():
            other.receive(path, fields)
        for path, fields in other.snapshot().items():
            self.receive(path, fields)

    def snapshot(self) -> Dict[Path, Dict[str, Tuple[Any, int]]]:
        with self._lock:
            return {path: dict(node) for path, node in self._nodes.items()}

    def receive(self, path: Path, fields: Dict[str, Tuple[Any, int]]) -> bool:
        changed = self._apply(path, fields)
        if changed:
            self.notify(path)
        return changed

    def pending(self) -> int:
        with self._lock:
            return len(self._outbox)

    def flush(self) -> int:
        delivered = 0
        while True:
            with self._lock:
                if not self._outbox:
                    break
                peer, path, fields = self._outbox.popleft()
            peer.receive(path, fields)
            delivered += 1
        return delivered

    def drop_pending(self) -> int:
        """Discard queued replication messages, simulating a lost connection."""
        with self._lock:
            dropped = len(self._outbox)
            self._outbox.clear()
        return dropped
