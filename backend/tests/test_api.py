from swan.services.station import Identity
from swan.services.station.catalog import SECRET_CODE
from swan.store import now_ms


def _station(flask_app):
    return flask_app.extensions['station']


def _set_timer(flask_app, value):
    _station(flask_app).timer.ref.put({'value': value, 'lastUpdate': now_ms(), 'updatedBy': 'System'})


def test_state(client):
    res = client.get('/api/station/state')
    assert res.status_code == 200
    state = res.get_json()
    assert state['connection'] == 'connected'
    assert state['timer']['value'] == 108
    assert state['phase'] == 'running'
    assert state['balanceBonus'] == 9


def test_register_login_logout(client):
    res = client.post('/register', json={'username': 'operator1', 'password': 'password'})
    assert res.status_code == 201
    user = res.get_json()['user']
    assert user['alias'] == 'operator1'
    assert user['pub']

    assert client.get('/check_login').status_code == 200
    assert client.post('/logout').get_json()['success'] is True
    assert client.get('/check_login').status_code == 401

    res = client.post('/login', json={'username': 'operator1', 'password': 'nope'})
    assert res.status_code == 401
    res = client.post('/login', json={'username': 'operator1', 'password': 'password'})
    assert res.get_json()['success'] is True


def test_duplicate_registration(client, login):
    login('operator1')
    res = client.post('/register', json={'username': 'operator1', 'password': 'other'})
    assert res.status_code == 400


def test_login_shows_operator_online(client, login):
    user = login('operator1')
    data = client.get('/api/station/operators').get_json()
    assert data['online'] == 1
    operator = data['operators'][0]
    assert operator['pub'] == user['pub']
    assert operator['name'] == 'operator1'
    assert operator['status'] == 'ONLINE'


def test_code_locked_outside_critical_window(client, login):
    login('operator1')
    res = client.post('/api/station/code', json={'code': SECRET_CODE})
    assert res.status_code == 400
    assert res.get_json()['result'] == 'locked'


def test_code_resets_timer_in_critical_window(flask_app, client, login):
    login('operator1')
    _set_timer(flask_app, 3)
    res = client.post('/api/station/code', json={'code': SECRET_CODE})
    assert res.status_code == 200
    data = res.get_json()
    assert data['result'] == 'accepted'
    assert data['timer']['value'] == 108
    assert data['timer']['reason'] == 'code_correct'
    assert data['timer']['updatedBy'] == 'operator1'


def test_wrong_code_leaves_timer(flask_app, client, login):
    login('operator1')
    _set_timer(flask_app, 3)
    res = client.post('/api/station/code', json={'code': '1 2 3'})
    assert res.status_code == 400
    assert res.get_json()['result'] == 'rejected'
    assert _station(flask_app).timer.current.value == 3


def test_task_routes_require_login(client):
    assert client.post('/api/station/tasks/force').status_code == 401
    assert client.post('/api/station/tasks/abc/accept').status_code == 401
    assert client.post('/api/station/timer/reset').status_code == 401
    assert client.post('/api/station/code', json={'code': SECRET_CODE}).status_code == 401


def test_task_lifecycle_over_http(client, login):
    login('operator1')
    res = client.post('/api/station/tasks/force')
    assert res.status_code == 201
    task = res.get_json()['task']
    assert task['forced'] is True
    assert task['description']

    listed = client.get('/api/station/tasks').get_json()
    assert [t['id'] for t in listed['tasks']] == [task['id']]
    assert listed['summary']['activeTasks'] == 1

    res = client.post(f"/api/station/tasks/{task['id']}/accept")
    assert res.status_code == 200
    assert res.get_json()['task']['assignedTo'] == 'operator1'

    res = client.post(f"/api/station/tasks/{task['id']}/complete")
    assert res.status_code == 425
    assert res.get_json()['remainingMs'] > 0

    res = client.post(f"/api/station/tasks/{task['id']}/accept")
    assert res.status_code == 409
    assert 'already assigned' in res.get_json()['error']


def test_force_at_capacity(client, login):
    login('operator1')
    for _ in range(3):
        assert client.post('/api/station/tasks/force').status_code == 201
    res = client.post('/api/station/tasks/force')
    assert res.status_code == 409
    assert res.get_json()['error'] == 'Maximum active tasks reached'


def test_unknown_task_is_404(client, login):
    login('operator1')
    res = client.post('/api/station/tasks/missing/accept')
    assert res.status_code == 404
    assert 'not found' in res.get_json()['error']


def test_history(client):
    res = client.get('/api/station/tasks/history?kind=completed')
    assert res.status_code == 200
    assert res.get_json() == {'kind': 'completed', 'tasks': []}
    assert client.get('/api/station/tasks/history?kind=bogus').status_code == 400


def test_parameters(client):
    data = client.get('/api/station/parameters').get_json()
    assert data['balanceBonus'] == 9
    assert data['parameters']['pressure'] == 1013.0


def test_manual_reset_and_heartbeat(flask_app, client, login):
    login('operator1')
    _set_timer(flask_app, 40)
    res = client.post('/api/station/timer/reset')
    assert res.get_json() == {'success': True, 'value': 108}

    res = client.post('/api/station/operators/heartbeat')
    assert res.status_code == 200
    assert res.get_json()['operator']['status'] == 'ONLINE'


def test_code_must_be_a_string(flask_app, client, login):
    login('operator1')
    _set_timer(flask_app, 3)
    res = client.post('/api/station/code', json={'code': 42})
    assert res.status_code == 400
    assert res.get_json()['result'] == 'rejected'
    res = client.post('/api/station/code', json={'code': 0})
    assert res.status_code == 400
    assert res.get_json()['result'] == 'empty'
    assert _station(flask_app).timer.current.value == 3


def test_anonymous_code_cannot_reset_timer(flask_app, client):
    _set_timer(flask_app, 3)
    res = client.post('/api/station/code', json={'code': SECRET_CODE})
    assert res.status_code == 401
    assert _station(flask_app).timer.current.value == 3


def test_history_limit_is_at_least_one(flask_app, client):
    tasks = _station(flask_app).tasks
    for _ in range(2):
        tasks._finish(tasks.force_new_task(), 'expired')
    res = client.get('/api/station/tasks/history?limit=-5')
    assert len(res.get_json()['tasks']) == 1
    res = client.get('/api/station/tasks/history?limit=0')
    assert len(res.get_json()['tasks']) == 2


def _second_operator(flask_app, username='operator2'):
    other = flask_app.test_client()
    res = other.post('/register', json={'username': username, 'password': 'password'})
    assert res.status_code == 201
    return res.get_json()['user']


def test_challenge_lifecycle_over_http(flask_app, client, login):
    target = _second_operator(flask_app)
    user = login('operator1')

    res = client.post('/api/station/challenges', json={'target': target['pub']})
    assert res.status_code == 403
    assert 'points' in res.get_json()['error']

    _station(flask_app).presence.award_points(Identity(alias='operator1', pub=user['pub']), 10)
    res = client.post('/api/station/challenges', json={'target': target['pub'], 'type': 'standard'})
    assert res.status_code == 201
    challenge = res.get_json()['challenge']
    assert challenge['status'] == 'pending'
    assert challenge['target'] == 'operator2'

    assert client.post('/api/station/challenges', json={'target': target['pub']}).status_code == 409
    stats = client.get('/api/station/challenges/stats').get_json()
    assert stats['pending']['id'] == challenge['id']

    res = client.post(f"/api/station/challenges/{challenge['id']}/execute")
    assert res.status_code == 200
    assert res.get_json()['result'] in ('victory', 'defeat')

    res = client.post('/api/station/challenges', json={'target': target['pub']})
    assert res.status_code == 429
    assert res.get_json()['remainingMs'] > 0

    stats = client.get('/api/station/challenges/stats').get_json()
    assert stats['stats']['total'] == 1
    assert stats['cooldown']['active'] is True
    assert stats['pending'] is None
    history = client.get('/api/station/challenges/history?limit=-1').get_json()['challenges']
    assert [c['id'] for c in history] == [challenge['id']]


def test_challenge_request_validation(flask_app, client, login):
    user = login('operator1')
    assert client.post('/api/station/challenges', json={}).status_code == 400
    assert client.post('/api/station/challenges', json={'target': user['pub']}).status_code == 403
    assert client.post('/api/station/challenges', json={'target': 'nobody'}).status_code == 404
    assert client.post('/api/station/challenges/missing/execute').status_code == 404
    res = client.post('/api/station/challenges', json={'target': 'nobody', 'type': 'legendary'})
    assert res.status_code == 400


def test_challenge_routes_require_login(client):
    assert client.post('/api/station/challenges', json={'target': 'x'}).status_code == 401
    assert client.get('/api/station/challenges/stats').status_code == 401
    assert client.post('/api/station/challenges/abc/cancel').status_code == 401
