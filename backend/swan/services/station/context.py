import functools
import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional

from swan.store import ReplicatedStore, now_ms

from .errors import StoreUnavailable
from .events import StationSignals
from .scheduler import StationScheduler

SEVERITY_LEVELS = {
    'debug': logging.DEBUG,
    'info': logging.INFO,
    'success': logging.INFO,
    'warning': logging.WARNING,
    'error': logging.ERROR,
}


def synchronized(method):
    """Run an engine method while holding its station's lock."""
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self.ctx.lock:
            return method(self, *args, **kwargs)
    return wrapper


@dataclass(frozen=True)
class Identity:
    """Stable operator identity handed out by the identity provider."""
    alias: str
    pub: str


class StationContext:
    """Everything one peer's engines share.

    Owned by a single ``Station`` and injected into each engine in place of
    module-level state. The caches hung off it (``parameters``,
    ``local_identities``) are peer-local scratch state and can always be
    rebuilt from the store.
    """

    def __init__(
        self,
        store: ReplicatedStore,
        config: Optional[Mapping] = None,
        clock: Optional[Callable[[], int]] = None,
        rng: Optional[random.Random] = None,
        logger: Optional[logging.Logger] = None,
        scheduler: Optional[StationScheduler] = None,
        namespace: str = 'swan',
    ):
        self.store = store
        self.config = config if config is not None else {}
        self.clock = clock or now_ms
        self.rng = rng or random.Random()
        self.logger = logger or logging.getLogger('swan.station')
        self.scheduler = scheduler or StationScheduler(logger=self.logger)
        # one lock per peer; scheduled jobs take it too
        self.lock = self.scheduler.guard
        self.signals = StationSignals()
        self.root = store.get(namespace)
        self.local_identities: Dict[str, Identity] = {}
        self.parameters = None
        self.connection = 'pending'
        self._ready = threading.Event()

    def now(self) -> int:
        return int(self.clock())

    # configuration
    def setting(self, key, default):
        value = self.config.get(key, default)
        return default if value is None else value

    def int_setting(self, key, default) -> int:
        return int(self.setting(key, default))

    def float_setting(self, key, default) -> float:
        return float(self.setting(key, default))

    # logging
    def log(self, message: str, severity: str = 'info') -> None:
        """Log ``message`` and forward it to the ``log`` sink for operators."""
        self.logger.log(SEVERITY_LEVELS.get(severity, logging.INFO), message)
        self.signals.log.send(self, message=message, severity=severity)

    def ack(self, tag: str):
        """Build a store ack callback that reports failed writes.

        Failed writes are not retried here; the next periodic pass rewrites
        whatever is still wrong.
        """
        def _ack(result):
            if result.get('err'):
                self.logger.error(f"[{tag}] write failed: {result['err']}")
        return _ack

    # identities acting through this peer
    def claim_identity(self, identity: Identity) -> None:
        self.local_identities[identity.alias] = identity

    def release_identity(self, alias: str) -> None:
        self.local_identities.pop(alias, None)

    def is_local(self, alias: Optional[str]) -> bool:
        return bool(alias) and alias in self.local_identities

    # readiness
    def connect_store(self, retries: int = 3, backoff: float = 1.0, sleep: Callable[[float], None] = time.sleep) -> None:
        """Check the store with at most ``retries`` attempts and doubling backoff."""
        delay = backoff
        last_error = None
        for attempt in range(1, retries + 1):
            try:
                self.store.ping()
            except Exception as exc:
                last_error = exc
                self.logger.warning(f"[store-check] attempt={attempt}/{retries} failed: {exc}")
                if attempt < retries:
                    sleep(delay)
                    delay *= 2
                continue
            self.connection = 'connected'
            self._ready.set()
            return
        self.connection = 'error'
        raise StoreUnavailable(f"store unavailable after {retries} attempts: {last_error}")

    def wait_ready(self, timeout: Optional[float] = None) -> bool:
        return self._ready.wait(timeout)

    @property
    def ready(self) -> bool:
        return self._ready.is_set()

    def reset_readiness(self) -> None:
        self._ready.clear()
        self.connection = 'pending'
