import os
import sys
import random
import pytest

# Ensure the backend root (containing the `swan` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from swan import create_app, db, socketio
from swan.services.station import Identity, Station
from swan.store import MemoryStore

T0 = 1_700_000_000_000


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    WTF_CSRF_ENABLED = False
    STORE_BACKEND = 'memory'
    STATION_AUTOSTART = True
    STATION_SCHEDULE = False
    STORE_INIT_BACKOFF_SEC = 0


class FakeClock:
    """Millisecond clock the tests move by hand."""

    def __init__(self, start=T0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms
        return self.now


class RecordingSpawner:
    """Stands in for a background-task spawner; jobs are recorded, never run."""

    def __init__(self):
        self.calls = []

    def __call__(self, target, *args):
        self.calls.append((target, args))


STATION_CONFIG = {
    'FAILURE_RECOVERY_SEC': 10,
    'TIMER_SYNC_GRACE_UNITS': 2,
    'MAX_ACTIVE_TASKS': 3,
    'MAX_TASKS_PER_OPERATOR': 3,
    'RANDOM_EVENT_CHANCE': 0.3,
    'EVENT_EMERGENCY_CHANCE': 0.5,
}


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def make_station(clock):
    """Build peers that share ``clock``; every peer is stopped at teardown."""
    built = []

    def _make(store=None, seed=7, config=None, start=True):
        store = store if store is not None else MemoryStore(clock=clock)
        settings = dict(STATION_CONFIG)
        settings.update(config or {})
        station = Station(
            store,
            config=settings,
            clock=clock,
            rng=random.Random(seed),
            spawn=RecordingSpawner(),
            sleep=lambda seconds: None,
        )
        if start:
            station.start(schedule=False)
        built.append(station)
        return station

    yield _make
    for station in built:
        if station.running:
            station.stop()


@pytest.fixture()
def station(make_station):
    return make_station()


@pytest.fixture()
def alice():
    return Identity(alias='alice', pub='pub-alice')


@pytest.fixture()
def bob():
    return Identity(alias='bob', pub='pub-bob')


@pytest.fixture()
def captured_logs(station):
    """(message, severity) pairs sent to the station's ``log`` sink."""
    entries = []

    def _record(sender, message=None, severity=None, **extra):
        entries.append((message, severity))

    station.signals.log.connect(_record, weak=False)
    yield entries
    station.signals.log.disconnect(_record)


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import swan.models  # noqa: F401
        db.create_all()
        yield application
        application.extensions['station'].stop()
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def login(client):
    """Register (and log in) an operator through the auth routes."""
    def _login(username='operator1', password='password'):
        res = client.post('/register', json={'username': username, 'password': password})
        assert res.status_code == 201
        return res.get_json()['user']
    return _login


@pytest.fixture()
def sio_client(flask_app, client):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=client,
        namespace='/ws'
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass
