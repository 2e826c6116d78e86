import threading

import pytest

from swan.services.station import tasks as tasks_module
from swan.services.station.catalog import DEFAULT_PARAMETERS, TASK_CATALOG
from swan.services.station.errors import (
    AlreadyAssigned,
    NotAssignedToYou,
    StillExecuting,
    TaskAlreadyResolved,
    TaskExpired,
    TaskLimitExceeded,
    TaskNotFound,
)
from swan.store import MemoryStore


def _seed_task(station, clock, task_id='task-1', name='TEMPERATURE CONTROL', task_type='CRITICAL',
               difficulty=5, time_limit=300000, created_at=None, **extra):
    created_at = clock.now if created_at is None else created_at
    record = {
        'id': task_id,
        'type': task_type,
        'name': name,
        'difficulty': difficulty,
        'timeLimit': time_limit,
        'createdAt': created_at,
        'expiresAt': created_at + time_limit,
        'assignedTo': None,
        'assignedAt': None,
        'executionStartTime': None,
        'executionEndTime': None,
        'completed': False,
        'failed': False,
        'parameters': {'temperature': 40.0, 'target.temperature': 21.0},
        'forced': False,
    }
    record.update(extra)
    station.tasks.ref.get(task_id).put(record)
    return task_id


def _force_roll(monkeypatch, success):
    monkeypatch.setattr(
        tasks_module, 'roll_task_success',
        lambda task, params, rng: (success, 0.9 if success else 0.1),
    )


def _notifications(station):
    seen = []
    station.signals.task_notification.connect(
        lambda sender, task=None, outcome=None: seen.append((task.id, outcome)), weak=False,
    )
    return seen


def test_generate_writes_and_caches_task(station, clock):
    notes = _notifications(station)
    task = station.tasks.generate('MAINTENANCE')
    assert task.id in station.tasks.active
    assert task.type == 'MAINTENANCE'
    assert task.name in {entry['name'] for entry in TASK_CATALOG['MAINTENANCE'].values()}
    assert task.expires_at == clock.now + task.time_limit
    record = station.tasks.ref.get(task.id).once()
    assert record['name'] == task.name
    assert record['completed'] is False
    assert notes == [(task.id, 'new')]


def test_generated_parameters_carry_catalog_targets(station):
    task = station.tasks.generate('CRITICAL')
    entry = next(e for e in TASK_CATALOG['CRITICAL'].values() if e['name'] == task.name)
    for name, value in entry['targets'].items():
        assert task.parameters['target.' + name] == value
    assert 'stabilityIndex' in task.parameters


def test_generate_refuses_at_capacity(station):
    for _ in range(3):
        assert station.tasks.generate() is not None
    assert station.tasks.generate() is None
    assert station.tasks.count_active() == 3


def test_force_new_task_warns_at_capacity(station, captured_logs):
    for _ in range(3):
        station.tasks.generate()
    assert station.tasks.force_new_task() is None
    assert ('Maximum active tasks reached', 'warning') in captured_logs


def test_force_new_task_marks_forced(station):
    task = station.tasks.force_new_task()
    assert task.forced
    assert station.tasks.ref.get(task.id).once()['forced'] is True


def test_category_weights_are_configurable(make_station):
    station = make_station(config={
        'MAX_ACTIVE_TASKS': 50,
        'TASK_CATEGORY_WEIGHTS': {'EMERGENCY': 0, 'CRITICAL': 0, 'MAINTENANCE': 1},
    })
    types = {station.tasks.generate().type for _ in range(20)}
    assert types == {'MAINTENANCE'}


def test_accept_opens_execution_window(station, clock, alice):
    task_id = _seed_task(station, clock)
    task = station.tasks.accept(task_id, alice)
    assert task.assigned_to == 'alice'
    assert task.assigned_at == clock.now
    assert task.execution_end_time == clock.now + 5 * 30000
    assert station.ctx.is_local('alice')
    record = station.tasks.ref.get(task_id).once()
    assert record['assignedTo'] == 'alice'
    assert record['executionEndTime'] == clock.now + 150000


def test_complete_while_executing_is_refused(station, clock, alice):
    task_id = _seed_task(station, clock)
    station.tasks.accept(task_id, alice)
    clock.advance(10000)
    with pytest.raises(StillExecuting) as exc_info:
        station.tasks.complete(task_id, alice)
    assert exc_info.value.remaining_ms == 140000
    assert station.tasks.active[task_id].completed is False


def test_successful_completion_applies_effects_and_points(station, clock, alice, monkeypatch):
    _force_roll(monkeypatch, True)
    task_id = _seed_task(station, clock)
    station.tasks.accept(task_id, alice)
    clock.advance(150000)
    task = station.tasks.complete(task_id, alice)

    assert task.completed and not task.failed
    assert task_id not in station.tasks.active
    assert station.tasks.history('completed')[0].id == task_id
    assert station.tasks.ref.get(task_id).once()['completed'] is True
    # TEMPERATURE CONTROL success cools the station by 5 degrees
    assert station.ctx.parameters['temperature'] == pytest.approx(DEFAULT_PARAMETERS['temperature'] - 5)
    # difficulty 5 * 10, plus 5 fields in band + 1
    assert station.presence.get(alice.pub).points == 56


def test_failed_completion_applies_failure_effects(station, clock, alice, monkeypatch):
    _force_roll(monkeypatch, False)
    task_id = _seed_task(station, clock)
    station.tasks.accept(task_id, alice)
    clock.advance(150000)
    task = station.tasks.complete(task_id, alice)

    assert task.failed and not task.completed
    assert station.tasks.ref.get(task_id).once()['failed'] is True
    assert station.ctx.parameters['temperature'] == pytest.approx(DEFAULT_PARAMETERS['temperature'] + 6)
    assert station.presence.get(alice.pub) is None


def test_completion_notifies_once(station, clock, alice, monkeypatch):
    _force_roll(monkeypatch, True)
    task_id = _seed_task(station, clock)
    station.tasks.accept(task_id, alice)
    clock.advance(150000)
    notes = _notifications(station)
    station.tasks.complete(task_id, alice)
    assert notes == [(task_id, 'completed')]


def test_complete_by_other_operator_is_refused(station, clock, alice, bob):
    task_id = _seed_task(station, clock)
    station.tasks.accept(task_id, alice)
    clock.advance(150000)
    with pytest.raises(NotAssignedToYou):
        station.tasks.complete(task_id, bob)


def test_accept_already_assigned(station, clock, alice, bob):
    task_id = _seed_task(station, clock)
    station.tasks.accept(task_id, alice)
    with pytest.raises(AlreadyAssigned):
        station.tasks.accept(task_id, bob)
    assert station.tasks.active[task_id].assigned_to == 'alice'


def test_accept_over_operator_limit(make_station, clock, alice):
    station = make_station(config={'MAX_TASKS_PER_OPERATOR': 1})
    first = _seed_task(station, clock, task_id='task-1')
    second = _seed_task(station, clock, task_id='task-2', name='PRESSURE REGULATION', difficulty=6)
    station.tasks.accept(first, alice)
    with pytest.raises(TaskLimitExceeded):
        station.tasks.accept(second, alice)
    assert station.tasks.active[second].assigned_to is None


def test_unknown_task(station, alice):
    with pytest.raises(TaskNotFound):
        station.tasks.accept('missing', alice)
    with pytest.raises(TaskNotFound):
        station.tasks.complete('missing', alice)


def test_accept_expired_task_fails_it(station, clock, alice):
    task_id = _seed_task(station, clock, time_limit=1000)
    clock.advance(2000)
    with pytest.raises(TaskExpired):
        station.tasks.accept(task_id, alice)
    assert station.tasks.ref.get(task_id).once()['failed'] is True
    assert station.tasks.history('failed')[0].id == task_id


def test_complete_after_expiry_fails_task(station, clock, alice):
    task_id = _seed_task(station, clock, name='ROUTINE CHECK', task_type='MAINTENANCE',
                         difficulty=1, time_limit=40000)
    station.tasks.accept(task_id, alice)
    clock.advance(45000)
    with pytest.raises(TaskExpired):
        station.tasks.complete(task_id, alice)
    assert station.tasks.get(task_id).failed


def test_resolved_task_cannot_be_touched_again(station, clock, alice, bob, monkeypatch):
    _force_roll(monkeypatch, True)
    task_id = _seed_task(station, clock)
    station.tasks.accept(task_id, alice)
    clock.advance(150000)
    station.tasks.complete(task_id, alice)

    with pytest.raises(TaskAlreadyResolved):
        station.tasks.accept(task_id, bob)
    with pytest.raises(TaskAlreadyResolved):
        station.tasks.complete(task_id, alice)
    assert station.tasks.sweep_expired() == []
    assert station.tasks.get(task_id).completed


def test_remote_reopen_of_resolved_task_is_ignored(station, clock, alice, monkeypatch):
    _force_roll(monkeypatch, True)
    task_id = _seed_task(station, clock)
    station.tasks.accept(task_id, alice)
    clock.advance(150000)
    station.tasks.complete(task_id, alice)

    station.tasks.ref.get(task_id).put({'completed': False, 'assignedTo': 'mallory'})
    task = station.tasks.get(task_id)
    assert task.completed
    assert task.assigned_to == 'alice'
    assert task_id not in station.tasks.active


def test_sweep_expires_without_parameter_effects(station, clock):
    expiring = _seed_task(station, clock, task_id='task-1', time_limit=1000)
    keeping = _seed_task(station, clock, task_id='task-2', name='PRESSURE REGULATION', difficulty=6)
    before = station.ctx.parameters.values()
    clock.advance(5000)
    expired = station.tasks.sweep_expired()
    assert [task.id for task in expired] == [expiring]
    assert station.tasks.ref.get(expiring).once()['failed'] is True
    assert keeping in station.tasks.active
    assert station.ctx.parameters.values() == before


def test_load_drops_duplicates_and_resolved(make_station, clock):
    store = MemoryStore(clock=clock)
    tasks_ref = store.get('swan').get('tasks')
    base = {
        'type': 'CRITICAL', 'name': 'PRESSURE REGULATION', 'difficulty': 6, 'timeLimit': 300000,
        'createdAt': clock.now, 'expiresAt': clock.now + 300000, 'completed': False, 'failed': False,
    }
    tasks_ref.get('b-task').put(dict(base, id='b-task'))
    tasks_ref.get('a-task').put(dict(base, id='a-task'))
    tasks_ref.get('done').put(dict(base, id='done', createdAt=clock.now - 1, completed=True))
    tasks_ref.get('broken').put({'id': 'broken', 'type': 'NOPE'})

    station = make_station(store=store)
    assert list(station.tasks.active) == ['a-task']


def test_dedupe_keeps_assigned_copy(station, clock, alice):
    first = _seed_task(station, clock, task_id='task-1')
    station.tasks.accept(first, alice)
    duplicate = station.tasks.active[first].copy(id='task-0', assigned_to=None, assigned_at=None)
    station.tasks.active['task-0'] = duplicate
    assert station.tasks.dedupe() == 1
    assert list(station.tasks.active) == [first]


def test_history_and_summary(station, clock, alice, monkeypatch):
    _force_roll(monkeypatch, True)
    done = _seed_task(station, clock, task_id='task-1')
    _seed_task(station, clock, task_id='task-2', name='PRESSURE REGULATION', difficulty=6, time_limit=1000)
    station.tasks.accept(done, alice)
    clock.advance(150000)
    station.tasks.complete(done, alice)
    station.tasks.sweep_expired()

    assert [t.id for t in station.tasks.history('completed')] == ['task-1']
    assert [t.id for t in station.tasks.history('failed')] == ['task-2']
    assert len(station.tasks.history()) == 2
    summary = station.tasks.summary()
    assert summary['completed'] == 1
    assert summary['failed'] == 1
    assert summary['successRate'] == 50
    assert summary['activeTasks'] == 0


def test_peers_share_task_lifecycle(make_station, clock, alice, monkeypatch):
    _force_roll(monkeypatch, True)
    store_a, store_b = MemoryStore(clock=clock, name='a'), MemoryStore(clock=clock, name='b')
    store_a.link(store_b)
    peer_a = make_station(store=store_a)
    peer_b = make_station(store=store_b, seed=11)
    notes_b = _notifications(peer_b)

    task = peer_a.tasks.generate('CRITICAL')
    assert task.id in peer_b.tasks.active
    assert (task.id, 'new') in notes_b

    peer_a.tasks.accept(task.id, alice)
    assert peer_b.tasks.active[task.id].assigned_to == 'alice'

    clock.advance(task.difficulty * 30000)
    peer_a.tasks.complete(task.id, alice)
    assert task.id not in peer_b.tasks.active
    assert peer_b.tasks.get(task.id).completed
    assert (task.id, 'completed') in notes_b


def test_local_claim_survives_stale_remote_updates(make_station, clock, alice):
    store_a, store_b = MemoryStore(clock=clock, name='a'), MemoryStore(clock=clock, name='b')
    store_a.link(store_b)
    peer_a = make_station(store=store_a)
    make_station(store=store_b, seed=11)
    task_id = _seed_task(peer_a, clock)
    peer_a.tasks.accept(task_id, alice)

    remote = store_b.get('swan').get('tasks').get(task_id)
    remote.put({'assignedTo': None, 'assignedAt': None})
    assert peer_a.tasks.active[task_id].assigned_to == 'alice'

    remote.put({'assignedTo': 'bob', 'assignedAt': clock.now - 1000})
    task = peer_a.tasks.active[task_id]
    assert task.assigned_to == 'alice'
    assert task.assigned_at == clock.now


def test_complete_at_exact_expiry_fails_task(station, clock, alice):
    task_id = _seed_task(station, clock, name='ROUTINE CHECK', task_type='MAINTENANCE',
                         difficulty=1, time_limit=40000)
    station.tasks.accept(task_id, alice)
    clock.advance(40000)
    with pytest.raises(TaskExpired):
        station.tasks.complete(task_id, alice)
    assert station.tasks.get(task_id).failed


def test_background_passes_and_operator_writes_share_the_station(make_station):
    station = make_station(config={'MAX_ACTIVE_TASKS': 50})
    errors = []
    writing = threading.Event()

    def operators():
        try:
            for _ in range(300):
                task = station.tasks.generate()
                if task is not None:
                    station.tasks._finish(task, 'expired')
        except Exception as exc:
            errors.append(exc)
        finally:
            writing.set()

    def maintenance():
        try:
            while not writing.is_set():
                station.tasks.count_active()
                station.tasks.dedupe()
                station.tasks.summary()
                station.tasks.history()
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=operators), threading.Thread(target=maintenance)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(30)
    assert errors == []
    assert station.tasks.count_active() == 0
    assert len(station.tasks.history()) == 200
