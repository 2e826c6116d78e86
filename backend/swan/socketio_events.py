from flask_socketio import join_room, leave_room, emit
from swan import socketio
from flask import current_app, request
from flask_login import current_user
from swan.services.station.errors import StationError
from typing import Dict
from swan.main import identity_for

STATION_ROOM = 'station'
NAMESPACE = '/ws'

_sid_to_pub: Dict[str, str] = {}


def _station():
    return current_app.extensions['station']


def _identity():
    if current_user and current_user.is_authenticated:
        return identity_for(current_user)
    return None


def _get_sid() -> str:
    return request.sid  # type: ignore


def handle_connect(auth=None):
    emit('connected', {'message': 'Connected to /ws'})


def handle_disconnect(reason=None):
    # stop the heartbeat once the operator's last socket is gone
    pub = _sid_to_pub.pop(_get_sid(), None)
    if not pub or pub in _sid_to_pub.values():
        return
    station = _station()
    with station.ctx.lock:
        entry = station.presence.registered.get(pub)
        if entry:
            station.presence.unregister(entry[0])


def handle_join_station(data=None):
    join_room(STATION_ROOM)
    station = _station()
    identity = _identity()
    if identity is not None:
        _sid_to_pub[_get_sid()] = identity.pub
        station.presence.register(identity, (data or {}).get('name'), schedule=station.scheduling)
    emit('joined', {'room': STATION_ROOM, 'state': station.state()})


def handle_leave_station(data=None):
    leave_room(STATION_ROOM)
    _sid_to_pub.pop(_get_sid(), None)
    emit('left', {'room': STATION_ROOM})


def handle_submit_code(data):
    identity = _identity()
    if identity is None:
        emit('error', {'message': 'login required', 'status': 401})
        return
    code = (data or {}).get('code')
    result = _station().timer.submit_code(code, identity)
    emit('code_result', {'result': result.value})


def _task_action(data, action, reply):
    task_id = (data or {}).get('task_id')
    identity = _identity()
    if not task_id:
        emit('error', {'message': 'task_id is required'})
        return
    if identity is None:
        emit('error', {'message': 'login required', 'status': 401})
        return
    try:
        task = action(task_id, identity)
    except StationError as exc:
        current_app.logger.warning(f"[socket-task] {type(exc).__name__}: {exc}")
        emit('error', {'message': str(exc), 'status': exc.status, 'task_id': task_id})
        return
    emit(reply, {'task': task.to_record(), 'outcome': task.outcome})


def handle_accept_task(data):
    _task_action(data, _station().tasks.accept, 'task_accepted')


def handle_complete_task(data):
    _task_action(data, _station().tasks.complete, 'task_completed')


def handle_ping(data):
    emit('pong', data or {})


def relay_station_signals(station) -> None:
    """Forward the station's sinks to every client in the station room."""
    signals = station.signals

    def _emit(event, payload):
        socketio.emit(event, payload, to=STATION_ROOM, namespace=NAMESPACE)

    def on_log(sender, message=None, severity='info', **extra):
        _emit('log', {'message': message, 'severity': severity})

    def on_timer(sender, timer=None, phase=None, **extra):
        _emit('timer_update', {'timer': timer.to_record(), 'phase': phase.value})

    def on_task(sender, task=None, **extra):
        _emit('task_update', {'task': task.to_record()})

    def on_parameters(sender, params=None, **extra):
        _emit('parameters_update', {'parameters': params.to_record()})

    def on_notification(sender, task=None, outcome=None, **extra):
        _emit('task_notification', {'task': task.to_record(), 'outcome': outcome})

    def on_challenge(sender, challenge=None, **extra):
        _emit('challenge_update', {'challenge': challenge.to_record()})

    signals.log.connect(on_log, weak=False)
    signals.timer_changed.connect(on_timer, weak=False)
    signals.task_changed.connect(on_task, weak=False)
    signals.parameters_changed.connect(on_parameters, weak=False)
    signals.task_notification.connect(on_notification, weak=False)
    signals.challenge_changed.connect(on_challenge, weak=False)


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    handlers = {
        'connect': handle_connect,
        'disconnect': handle_disconnect,
        'join_station': handle_join_station,
        'leave_station': handle_leave_station,
        'submit_code': handle_submit_code,
        'accept_task': handle_accept_task,
        'complete_task': handle_complete_task,
        'ping': handle_ping,
    }
    for event, handler in handlers.items():
        socketio.on_event(event, handler, namespace=NAMESPACE)

    if testing:
        # Test-only mirror on default namespace
        for event, handler in handlers.items():
            socketio.on_event(event, handler, namespace='/')
