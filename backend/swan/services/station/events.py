"""Signals published by the station engines.

Each context owns its own set of ``blinker`` signals, so several peers can
live in one process (tests do this) without hearing each other.

Sinks for the host application:

- ``log``                ``(message, severity)``
- ``timer_changed``      ``(timer, phase)``
- ``task_changed``       ``(task)``
- ``parameters_changed`` ``(params)``
- ``task_notification``  ``(task, outcome)``
- ``challenge_changed``  ``(challenge)``

Domain events, consumed by the coordinator to chain engines together:

- ``task_resolved``      ``(task, outcome)``
- ``station_event``      ``(event, description, spawn_emergency)``
- ``parameter_alert``    ``(parameter, value)``
- ``code_accepted``      ``(identity)``
- ``challenge_resolved`` ``(challenge, identity)``
"""

from blinker import Signal

SINKS = ('log', 'timer_changed', 'task_changed', 'parameters_changed', 'task_notification', 'challenge_changed')
DOMAIN_EVENTS = ('task_resolved', 'station_event', 'parameter_alert', 'code_accepted', 'challenge_resolved')


class StationSignals:
    def __init__(self):
        for name in SINKS + DOMAIN_EVENTS:
            setattr(self, name, Signal(name))
