"""Replicated key/value graph interface consumed by the station engines.

A store is a tree of nodes addressed by paths (``swan/tasks/<id>``). Each node
holds a flat mapping of fields. Every field carries the state of the write
that produced it (the writer's millisecond clock, pushed past anything the
node already holds) and merges last-write-wins, so two replicas that have
seen the same writes converge regardless of delivery order.

Engines only ever see the primitives below:

- ``store.get(key)`` / ``ref.get(key)`` navigate to a node
- ``ref.put(fields, ack=None)`` merge-write fields, ``ack({'err': ...})``
- ``ref.once(cb=None)`` read the locally known value
- ``ref.on(cb)`` subscribe; called with the current value, then on every change
- ``ref.map().on(cb)`` / ``ref.map().once(cb)`` iterate children ``cb(value, key)``
"""

import json
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

Path = Tuple[str, ...]
Callback = Callable[[Optional[Dict[str, Any]], str], None]
Ack = Callable[[Dict[str, Any]], None]


def now_ms() -> int:
    return int(time.time() * 1000)


def path_str(path: Path) -> str:
    return '/'.join(path)


def _lexical(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)


def incoming_wins(in_state: int, in_value: Any, cur_state: Optional[int], cur_value: Any) -> bool:
    """Last-write-wins for a single field.

    Equal states fall back to a lexical comparison of the encoded values so
    every replica picks the same winner.
    """
    if cur_state is None:
        return True
    if in_state != cur_state:
        return in_state > cur_state
    return _lexical(in_value) > _lexical(cur_value)


class Subscription:
    """Handle returned by ``on``; call ``off()`` to stop receiving updates."""

    def __init__(self, store: 'ReplicatedStore', path: Path, callback: Callback, children: bool):
        self.store = store
        self.path = path
        self.callback = callback
        self.children = children
        self.active = True

    def off(self) -> None:
        if self.active:
            self.active = False
            self.store.unsubscribe(self)


class Ref:
    def __init__(self, store: 'ReplicatedStore', path: Path):
        self.store = store
        self.path = path

    @property
    def key(self) -> str:
        return self.path[-1]

    def get(self, key: str) -> 'Ref':
        return Ref(self.store, self.path + (str(key),))

    def put(self, value: Dict[str, Any], ack: Optional[Ack] = None) -> None:
        if not isinstance(value, dict):
            raise TypeError(f"put expects a mapping of fields, got {type(value).__name__}")
        self.store.write(self.path, value, ack)

    def once(self, callback: Optional[Callback] = None) -> Optional[Dict[str, Any]]:
        value = self.store.read(self.path)
        if callback is not None:
            callback(value, self.key)
        return value

    def on(self, callback: Callback) -> Subscription:
        return self.store.subscribe(self.path, callback, children=False)

    def map(self) -> 'MapRef':
        return MapRef(self)

    def __repr__(self) -> str:
        return f"<Ref {path_str(self.path)}>"


class MapRef:
    """Iteration over the children of a node."""

    def __init__(self, parent: Ref):
        self.parent = parent

    def once(self, callback: Optional[Callback] = None) -> Dict[str, Dict[str, Any]]:
        children = self.parent.store.children(self.parent.path)
        if callback is not None:
            for key, value in children.items():
                callback(value, key)
        return children

    def on(self, callback: Callback) -> Subscription:
        return self.parent.store.subscribe(self.parent.path, callback, children=True)


class ReplicatedStore:
    """Base class for store replicas.

    Subclasses implement ``read``, ``children`` and ``_apply``; this class owns
    subscription bookkeeping and callback dispatch. Callbacks always run outside
    the replica lock so they may write back into the store.
    """

    #: replicas that learn about remote writes by polling set this
    needs_polling = False

    def __init__(self, clock: Optional[Callable[[], int]] = None):
        self.clock = clock or now_ms
        self._lock = threading.RLock()
        self._subscriptions: List[Subscription] = []
        self.write_error: Optional[str] = None

    # navigation
    def get(self, key: str) -> Ref:
        return Ref(self, (str(key),))

    # primitives for subclasses
    def read(self, path: Path) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def children(self, path: Path) -> Dict[str, Dict[str, Any]]:
        raise NotImplementedError

    def _apply(self, path: Path, fields: Dict[str, Tuple[Any, int]]) -> bool:
        """Merge stamped fields into ``path``; return True when anything changed."""
        raise NotImplementedError

    def _max_state(self, path: Path) -> int:
        """Highest field state this replica holds for ``path`` (0 when empty)."""
        raise NotImplementedError

    def ping(self) -> bool:
        self.read(('__ping__',))
        return True

    def poll(self) -> int:
        return 0

    # writes
    def write(self, path: Path, value: Dict[str, Any], ack: Optional[Ack] = None) -> None:
        if self.write_error:
            if ack is not None:
                ack({'err': self.write_error})
            return
        with self._lock:
            # a local write always supersedes what this replica has already seen
            state = max(int(self.clock()), self._max_state(path) + 1)
            stamped = {field: (field_value, state) for field, field_value in value.items()}
            changed = self._apply(path, stamped)
        if changed:
            self._after_local_write(path, stamped)
            self.notify(path)
        if ack is not None:
            ack({'err': None, 'ok': 1})

    def _after_local_write(self, path: Path, stamped: Dict[str, Tuple[Any, int]]) -> None:
        pass

    # subscriptions
    def subscribe(self, path: Path, callback: Callback, children: bool = False) -> Subscription:
        sub = Subscription(self, path, callback, children)
        with self._lock:
            self._subscriptions.append(sub)
        if children:
            for key, value in self.children(path).items():
                if sub.active:
                    callback(value, key)
        else:
            current = self.read(path)
            if current is not None:
                callback(current, path[-1])
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            if sub in self._subscriptions:
                self._subscriptions.remove(sub)

    def subscription_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def notify(self, path: Path) -> None:
        value = self.read(path)
        parent = path[:-1]
        with self._lock:
            targets = [
                s for s in self._subscriptions
                if (not s.children and s.path == path) or (s.children and s.path == parent)
            ]
        for sub in targets:
            if sub.active:
                sub.callback(value, path[-1])
