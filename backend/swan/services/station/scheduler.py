import logging
import threading
from typing import Callable, Dict, Optional


def _spawn_thread(target, *args):
    thread = threading.Thread(target=target, args=args, daemon=True)
    thread.start()
    return thread


class _Handle:
    __slots__ = ('key', 'interval', 'repeat', 'stop')

    def __init__(self, key: str, interval: float, repeat: bool):
        self.key = key
        self.interval = interval
        self.repeat = repeat
        self.stop = threading.Event()


class StationScheduler:
    """Registry of periodic and one-shot jobs for one peer.

    - Ensures a single job per key; scheduling a live key is a no-op
    - Runs jobs through ``spawn`` (Socket.IO background tasks in the app,
      daemon threads otherwise)
    - Runs every job while holding ``guard``, so jobs and request handlers
      never touch the engines at the same time
    - ``shutdown()`` cancels every handle so a re-initialised peer never
      ends up with duplicate timers
    """

    def __init__(self, spawn: Optional[Callable] = None, logger: Optional[logging.Logger] = None,
                 guard: Optional[threading.RLock] = None):
        self.spawn = spawn or _spawn_thread
        self.guard = guard or threading.RLock()
        self.logger = logger or logging.getLogger('swan.station')
        self._handles: Dict[str, _Handle] = {}
        self._lock = threading.Lock()

    def every(self, key: str, interval: float, fn: Callable[[], None]) -> bool:
        return self._schedule(key, interval, fn, repeat=True)

    def after(self, key: str, delay: float, fn: Callable[[], None]) -> bool:
        return self._schedule(key, delay, fn, repeat=False)

    def _schedule(self, key, interval, fn, repeat):
        with self._lock:
            if key in self._handles:
                self.logger.info(f"[timer-skip] job={key} already scheduled")
                return False
            handle = _Handle(key, float(interval), repeat)
            self._handles[key] = handle
        self.logger.info(f"[timer-set] job={key} interval={interval}s repeat={repeat}")
        self.spawn(self._worker, handle, fn)
        return True

    def _worker(self, handle: _Handle, fn):
        while not handle.stop.wait(handle.interval):
            with self.guard:
                # cancelled while waiting for the lock
                if handle.stop.is_set():
                    break
                try:
                    fn()
                except Exception:
                    # periodic passes are self-correcting; the next run retries
                    self.logger.exception(f"[timer-error] job={handle.key}")
            if not handle.repeat:
                break
        with self._lock:
            if self._handles.get(handle.key) is handle:
                del self._handles[handle.key]

    def cancel(self, key: str) -> bool:
        with self._lock:
            handle = self._handles.pop(key, None)
        if handle is None:
            return False
        handle.stop.set()
        self.logger.info(f"[timer-cancel] job={key}")
        return True

    def is_scheduled(self, key: str) -> bool:
        with self._lock:
            return key in self._handles

    def active_keys(self):
        with self._lock:
            return sorted(self._handles)

    def shutdown(self) -> int:
        with self._lock:
            handles = list(self._handles.values())
            self._handles.clear()
        for handle in handles:
            handle.stop.set()
        if handles:
            self.logger.info(f"[timer-drain] cancelled={len(handles)}")
        return len(handles)
