from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_bcrypt import Bcrypt
from flask_login import LoginManager, user_logged_in, user_logged_out
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
bcrypt = Bcrypt()
login_manager = LoginManager()
migrate = Migrate()
allowed_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:5174",
    "http://127.0.0.1:5174",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)


def build_store(flask_app):
    """Pick the replica named by STORE_BACKEND ('sql' or 'memory')."""
    from swan.store import MemoryStore, SqlStore
    backend = (flask_app.config.get('STORE_BACKEND') or 'sql').lower()
    if backend == 'memory':
        return MemoryStore(name=flask_app.name)
    if backend == 'sql':
        return SqlStore(flask_app, retention_sec=float(flask_app.config.get('STORE_CHANGE_RETENTION_SEC', 300)))
    raise ValueError(f"Unknown STORE_BACKEND: {backend}")


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    db.init_app(flask_app)
    bcrypt.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from swan.main import main
    flask_app.register_blueprint(main)

    from swan.api.station import station_api
    flask_app.register_blueprint(station_api, url_prefix='/api/station')

    from swan.socketio_events import register_socketio_handlers, relay_station_signals
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    from swan.models import User

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    # One peer per process
    from swan.services.station import Station, StoreUnavailable
    station = Station(
        build_store(flask_app),
        config=flask_app.config,
        logger=flask_app.logger,
        spawn=socketio.start_background_task,
    )
    flask_app.extensions['station'] = station
    relay_station_signals(station)

    from swan.main import identity_for

    def _on_login(sender, user, **extra):
        station.presence.register(identity_for(user), schedule=station.scheduling)

    def _on_logout(sender, user, **extra):
        if user is None or not getattr(user, 'is_authenticated', False):
            return
        identity = identity_for(user)
        station.presence.unregister(identity)
        station.ctx.release_identity(identity.alias)

    user_logged_in.connect(_on_login, flask_app, weak=False)
    user_logged_out.connect(_on_logout, flask_app, weak=False)

    if flask_app.config.get('STATION_AUTOSTART', True):
        try:
            station.start(schedule=flask_app.config.get('STATION_SCHEDULE', True))
        except StoreUnavailable as exc:
            flask_app.logger.error(f"[station] not started: {exc}")

    @click.command('station-reset')
    def station_reset_command():
        """Drops, recreates, and seeds the database, then writes fresh station records."""
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            # Seed operators
            users = ['operator1', 'operator2', 'operator3']
            for u in users:
                user = User(username=u)
                user.set_password('password')
                db.session.add(user)

            db.session.commit()

        station.start(schedule=False)
        station.timer.reset()
        station.parameters.reset()
        station.stop()
        print('Station has been reset and seeded!')

    flask_app.cli.add_command(station_reset_command)

    return flask_app
