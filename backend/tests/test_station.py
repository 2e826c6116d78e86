import pytest

from swan.services.station import StoreUnavailable
from swan.store import MemoryStore

PERIODIC_JOBS = [
    'challenge-expiry',
    'parameter-drift',
    'random-event',
    'task-dedupe',
    'task-expiry',
    'task-generate',
    'timer-health',
    'timer-tick',
]


class UnreachableStore(MemoryStore):
    def ping(self):
        raise ConnectionError('no route to relay')


class PolledStore(MemoryStore):
    needs_polling = True


def test_start_schedules_every_periodic_job(make_station):
    station = make_station(start=False)
    station.start(schedule=True)
    assert station.ctx.scheduler.active_keys() == PERIODIC_JOBS
    assert station.wait_ready(0)
    assert station.ctx.connection == 'connected'


def test_restart_does_not_duplicate_jobs_or_subscriptions(make_station):
    station = make_station(start=False)
    station.start(schedule=True)
    subscriptions = station.store.subscription_count()
    spawned = len(station.ctx.scheduler.spawn.calls)

    station.start(schedule=True)
    assert station.ctx.scheduler.active_keys() == PERIODIC_JOBS
    assert station.store.subscription_count() == subscriptions
    assert len(station.ctx.scheduler.spawn.calls) == 2 * spawned


def test_stop_releases_everything(make_station, alice):
    station = make_station(start=False)
    station.start(schedule=True)
    station.presence.register(alice)
    assert station.stop() == len(PERIODIC_JOBS) + 1
    assert station.store.subscription_count() == 0
    assert station.ctx.scheduler.active_keys() == []
    assert not station.ctx.ready
    assert not station.running


def test_polling_store_gets_poll_job(make_station, clock):
    station = make_station(store=PolledStore(clock=clock), start=False)
    station.start(schedule=True)
    assert station.ctx.scheduler.is_scheduled('store-poll')


def test_unreachable_store_gives_up_after_retries(make_station, clock):
    station = make_station(store=UnreachableStore(clock=clock), start=False)
    waits = []
    station.sleep = waits.append
    with pytest.raises(StoreUnavailable):
        station.start()
    assert waits == [1.0, 2.0]
    assert station.ctx.connection == 'error'
    assert not station.wait_ready(0)
    assert not station.running


def test_station_event_spawns_tagged_emergency(station):
    station.signals.station_event.send(None, event='SOLAR FLARE', description='', spawn_emergency=True)
    tasks = list(station.tasks.active.values())
    assert len(tasks) == 1
    assert tasks[0].type == 'EMERGENCY'
    assert tasks[0].trigger_event == 'SOLAR FLARE'


def test_engines_stop_reacting_after_stop(station):
    station.stop()
    station.signals.station_event.send(None, event='SOLAR FLARE', description='', spawn_emergency=True)
    assert station.tasks.active == {}


def test_state_snapshot(station):
    state = station.state()
    assert state['connection'] == 'connected'
    assert state['timer']['value'] == 108
    assert state['phase'] == 'running'
    assert state['systemFailure'] is False
    assert state['balanceBonus'] == 9
    assert state['tasks']['activeTasks'] == 0
    assert state['operatorsOnline'] == 0
