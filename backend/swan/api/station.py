from flask import Blueprint, jsonify, request, current_app
from flask_login import login_required

from swan.main import current_identity
from swan.services.station.catalog import TIMER_CRITICAL_WINDOW, describe_task
from swan.services.station.errors import StationError
from swan.services.station.timer import CodeResult


station_api = Blueprint('station', __name__)

CODE_ERRORS = {
    CodeResult.EMPTY: 'code is required',
    CodeResult.LOCKED: f'Code input locked until last {TIMER_CRITICAL_WINDOW} minutes',
    CodeResult.REJECTED: 'Unknown command',
}


def _station():
    return current_app.extensions['station']


def _task_dict(task):
    data = task.to_record()
    data['description'] = describe_task(task.name)
    return data


@station_api.errorhandler(StationError)
def handle_station_error(exc):
    current_app.logger.warning(f"[station-error] {type(exc).__name__}: {exc}")
    payload = {'error': str(exc)}
    remaining = getattr(exc, 'remaining_ms', None)
    if remaining is not None:
        payload['remainingMs'] = remaining
    return jsonify(payload), exc.status


@station_api.route('/state', methods=['GET'])
def get_state():
    return jsonify(_station().state())


@station_api.route('/code', methods=['POST'])
@login_required
def submit_code():
    data = request.get_json(silent=True) or {}
    station = _station()
    result = station.timer.submit_code(data.get('code'), current_identity())
    if result is CodeResult.ACCEPTED:
        timer = station.timer.current
        return jsonify({'success': True, 'result': result.value, 'timer': timer.to_record() if timer else None})
    return jsonify({'success': False, 'result': result.value, 'error': CODE_ERRORS[result]}), 400


@station_api.route('/timer/reset', methods=['POST'])
@login_required
def reset_timer():
    value = _station().timer.reset(current_identity())
    return jsonify({'success': True, 'value': value})


@station_api.route('/tasks', methods=['GET'])
def list_tasks():
    tasks = _station().tasks
    active = [_task_dict(t) for t in tasks.active.values() if not t.is_terminal]
    return jsonify({'tasks': active, 'summary': tasks.summary()})


@station_api.route('/tasks/history', methods=['GET'])
def task_history():
    kind = request.args.get('kind', 'all')
    if kind not in ('all', 'completed', 'failed'):
        return jsonify({'error': 'kind must be one of all, completed, failed'}), 400
    limit = max(1, request.args.get('limit', type=int) or 50)
    history = _station().tasks.history(kind)[:limit]
    return jsonify({'kind': kind, 'tasks': [_task_dict(t) for t in history]})


@station_api.route('/tasks/force', methods=['POST'])
@login_required
def force_task():
    task = _station().tasks.force_new_task()
    if task is None:
        return jsonify({'error': 'Maximum active tasks reached'}), 409
    return jsonify({'task': _task_dict(task)}), 201


@station_api.route('/tasks/<task_id>/accept', methods=['POST'])
@login_required
def accept_task(task_id):
    task = _station().tasks.accept(task_id, current_identity())
    return jsonify({'task': _task_dict(task)})


@station_api.route('/tasks/<task_id>/complete', methods=['POST'])
@login_required
def complete_task(task_id):
    task = _station().tasks.complete(task_id, current_identity())
    return jsonify({'task': _task_dict(task), 'outcome': task.outcome})


@station_api.route('/parameters', methods=['GET'])
def get_parameters():
    engine = _station().parameters
    return jsonify({
        'parameters': engine.current.to_record(),
        'balanceBonus': engine.calculate_balance_bonus(),
    })


@station_api.route('/operators', methods=['GET'])
def list_operators():
    presence = _station().presence
    operators = presence.operators()
    now = presence.ctx.now()
    return jsonify({
        'operators': [presence.to_dict(op, now) for op in operators],
        'online': len(presence.online()),
    })


@station_api.route('/operators/heartbeat', methods=['POST'])
@login_required
def operator_heartbeat():
    station = _station()
    identity = current_identity()
    with station.ctx.lock:
        if identity.pub not in station.presence.registered:
            station.presence.register(identity, schedule=station.scheduling)
        else:
            station.presence.heartbeat(identity)
        operator = station.presence.get(identity.pub)
    return jsonify({'success': True, 'operator': station.presence.to_dict(operator) if operator else None})


@station_api.route('/challenges', methods=['POST'])
@login_required
def initiate_challenge():
    data = request.get_json(silent=True) or {}
    target = data.get('target')
    if not isinstance(target, str) or not target:
        return jsonify({'error': 'target is required'}), 400
    challenge = _station().challenges.initiate(current_identity(), target, data.get('type') or 'standard')
    return jsonify({'challenge': challenge.to_record()}), 201


@station_api.route('/challenges/<challenge_id>/execute', methods=['POST'])
@login_required
def execute_challenge(challenge_id):
    challenge = _station().challenges.execute(challenge_id, current_identity())
    return jsonify({'challenge': challenge.to_record(), 'result': challenge.result})


@station_api.route('/challenges/<challenge_id>/cancel', methods=['POST'])
@login_required
def cancel_challenge(challenge_id):
    challenge = _station().challenges.cancel(challenge_id, current_identity())
    return jsonify({'challenge': challenge.to_record()})


@station_api.route('/challenges/history', methods=['GET'])
@login_required
def challenge_history():
    limit = max(1, request.args.get('limit', type=int) or 50)
    history = _station().challenges.history(current_identity().pub)[:limit]
    return jsonify({'challenges': [c.to_record() for c in history]})


@station_api.route('/challenges/stats', methods=['GET'])
@login_required
def challenge_stats():
    challenges = _station().challenges
    identity = current_identity()
    pending = challenges.pending_for(identity.pub)
    return jsonify({
        'stats': challenges.stats(identity),
        'cooldown': challenges.cooldown_status(identity.pub),
        'pending': pending.to_record() if pending else None,
    })
