from swan.services.station.presence import OperatorStatus


def test_register_writes_operator_and_heartbeat_job(station, clock, alice):
    operator = station.presence.register(alice, 'Alice')
    assert operator.name == 'Alice'
    assert operator.pub == alice.pub
    assert operator.last_seen == clock.now
    assert station.ctx.scheduler.is_scheduled('presence-heartbeat')
    assert station.ctx.is_local('alice')


def test_register_without_schedule(station, alice):
    station.presence.register(alice, schedule=False)
    assert not station.ctx.scheduler.is_scheduled('presence-heartbeat')


def test_heartbeat_refreshes_last_seen_and_keeps_points(station, clock, alice):
    station.presence.register(alice)
    station.presence.award_points(alice, 30)
    clock.advance(10000)
    assert station.presence.heartbeat() == 1
    operator = station.presence.get(alice.pub)
    assert operator.last_seen == clock.now
    assert operator.points == 30


def test_points_accumulate(station, alice):
    assert station.presence.award_points(alice, 10) == 10
    assert station.presence.award_points(alice, 50) == 60
    assert station.presence.get(alice.pub).name == 'alice'


def test_status_tiers(station, clock, alice):
    station.presence.register(alice)
    operator = station.presence.get(alice.pub)
    assert station.presence.status(operator, clock.now + 119999) is OperatorStatus.ONLINE
    assert station.presence.status(operator, clock.now + 120000) is OperatorStatus.RECENT
    assert station.presence.status(operator, clock.now + 300000) is OperatorStatus.OFFLINE


def test_online_filters_stale_operators(station, clock, alice, bob):
    station.presence.register(bob, schedule=False)
    clock.advance(200000)
    station.presence.register(alice, schedule=False)
    assert [op.name for op in station.presence.operators()] == ['alice', 'bob']
    assert [op.name for op in station.presence.online()] == ['alice']


def test_unregister_last_operator_stops_heartbeat(station, alice, bob):
    station.presence.register(alice)
    station.presence.register(bob)
    station.presence.unregister(alice)
    assert station.ctx.scheduler.is_scheduled('presence-heartbeat')
    station.presence.unregister(bob)
    assert not station.ctx.scheduler.is_scheduled('presence-heartbeat')


def test_corrupt_operator_records_are_skipped(station, alice):
    station.presence.register(alice, schedule=False)
    station.presence.ref.get('junk').put({'lastSeen': 'yesterday'})
    assert [op.pub for op in station.presence.operators()] == [alice.pub]
