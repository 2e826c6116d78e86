"""Station domain services: the countdown and everything operators do around it.

Everything here runs against the replicated store interface in
``swan.store`` and an explicit ``StationContext``, so HTTP routes, socket
handlers and tests all drive the same ``Station`` without touching
transport concerns.
"""

from .context import Identity, StationContext
from .errors import ChallengeError, StationError, StoreUnavailable, TaskError
from .station import Station

__all__ = ['ChallengeError', 'Identity', 'Station', 'StationContext', 'StationError', 'StoreUnavailable', 'TaskError']
