import json
import uuid
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from .base import Path, ReplicatedStore, incoming_wins, path_str


class SqlStore(ReplicatedStore):
    """Replica backed by the application database.

    Every process pointed at the same database shares one graph. Fields are
    merged last-write-wins on the row; each accepted write appends to the
    ``store_change`` feed, which other processes pick up in ``poll()`` to fire
    their own subscriptions. Feed rows older than ``retention_sec`` are pruned
    on every poll; the newest row always stays so change ids keep growing.
    """

    needs_polling = True

    def __init__(self, app, clock=None, retention_sec: float = 300.0):
        super().__init__(clock)
        self.app = app
        self.retention_sec = retention_sec
        self.origin = uuid.uuid4().hex
        self._last_change_id = None

    def _db(self):
        from swan import db
        return db

    def read(self, path: Path) -> Optional[Dict[str, Any]]:
        from swan.models import StoreNode
        with self.app.app_context():
            rows = StoreNode.query.filter_by(path=path_str(path)).all()
            if not rows:
                return None
            return {row.field: json.loads(row.value) if row.value is not None else None for row in rows}

    def children(self, path: Path) -> Dict[str, Dict[str, Any]]:
        from swan.models import StoreNode
        with self.app.app_context():
            rows = StoreNode.query.filter_by(parent=path_str(path)).order_by(StoreNode.id).all()
            result: Dict[str, Dict[str, Any]] = {}
            for row in rows:
                key = row.path.rsplit('/', 1)[-1]
                result.setdefault(key, {})[row.field] = json.loads(row.value) if row.value is not None else None
            return result

    def _max_state(self, path: Path) -> int:
        from swan.models import StoreNode
        db = self._db()
        with self.app.app_context():
            latest = db.session.query(db.func.max(StoreNode.state)).filter(StoreNode.path == path_str(path)).scalar()
        return int(latest or 0)

    def _apply(self, path: Path, fields: Dict[str, Tuple[Any, int]]) -> bool:
        from swan.models import StoreNode, StoreChange
        db = self._db()
        key = path_str(path)
        changed = False
        with self._lock, self.app.app_context():
            try:
                existing = {row.field: row for row in StoreNode.query.filter_by(path=key).all()}
                for field, (value, state) in fields.items():
                    row = existing.get(field)
                    if row is None:
                        db.session.add(StoreNode(
                            path=key,
                            parent=path_str(path[:-1]),
                            field=field,
                            value=json.dumps(value),
                            state=state,
                        ))
                        changed = True
                        continue
                    current = json.loads(row.value) if row.value is not None else None
                    if incoming_wins(state, value, row.state, current):
                        row.value = json.dumps(value)
                        row.state = state
                        db.session.add(row)
                        changed = True
                if changed:
                    db.session.add(StoreChange(path=key, origin=self.origin, created_at=self.clock() / 1000.0))
                db.session.commit()
            except SQLAlchemyError:
                db.session.rollback()
                raise
        return changed

    def write(self, path, value, ack=None):
        try:
            super().write(path, value, ack)
        except SQLAlchemyError as exc:
            self.app.logger.error(f"[store-write-failed] path={path_str(path)} err={exc}")
            if ack is not None:
                ack({'err': str(exc)})

    def ping(self) -> bool:
        from swan.models import StoreChange
        with self.app.app_context():
            StoreChange.query.order_by(StoreChange.id.desc()).first()
        return True

    def prune(self) -> int:
        """Delete feed rows older than the retention window, keeping the newest."""
        from swan.models import StoreChange
        db = self._db()
        cutoff = self.clock() / 1000.0 - self.retention_sec
        with self.app.app_context():
            latest = db.session.query(db.func.max(StoreChange.id)).scalar()
            if latest is None:
                return 0
            try:
                deleted = (
                    StoreChange.query.filter(StoreChange.created_at < cutoff, StoreChange.id < latest)
                    .delete(synchronize_session=False)
                )
                db.session.commit()
            except SQLAlchemyError:
                db.session.rollback()
                raise
        if deleted:
            self.app.logger.info(f"[store-prune] removed {deleted} change rows")
        return deleted

    def poll(self) -> int:
        """Fire subscriptions for writes other processes made since the last poll."""
        from swan.models import StoreChange
        self.prune()
        with self.app.app_context():
            if self._last_change_id is None:
                latest = StoreChange.query.order_by(StoreChange.id.desc()).first()
                self._last_change_id = latest.id if latest else 0
                return 0
            changes = (
                StoreChange.query.filter(StoreChange.id > self._last_change_id)
                .order_by(StoreChange.id)
                .all()
            )
            if not changes:
                return 0
            self._last_change_id = changes[-1].id
            paths = []
            for change in changes:
                if change.origin == self.origin:
                    continue
                if change.path not in paths:
                    paths.append(change.path)
        for key in paths:
            self.notify(tuple(key.split('/')))
        return len(paths)
