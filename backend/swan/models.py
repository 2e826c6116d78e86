from swan import db, bcrypt
from flask_login import UserMixin
import secrets
import time


def generate_pub_key(length=32):
    """Generate the stable public key that identifies an operator in the store."""
    while True:
        pub = secrets.token_hex(length)
        if not User.query.filter_by(pub=pub).first():
            return pub


class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)
    pub = db.Column(db.String(128), unique=True, nullable=False, index=True)
    created_at = db.Column(db.Float, default=time.time)

    def __init__(self, **kwargs):
        super(User, self).__init__(**kwargs)
        if not self.pub:
            self.pub = generate_pub_key()

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        return bcrypt.check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'alias': self.username,
            'pub': self.pub,
        }


class StoreNode(db.Model):
    """One field of one node of the replicated graph."""
    __tablename__ = 'store_node'
    __table_args__ = (
        db.UniqueConstraint('path', 'field', name='uq_store_node_path_field'),
    )
    id = db.Column(db.Integer, primary_key=True)
    path = db.Column(db.String(255), nullable=False, index=True)
    parent = db.Column(db.String(255), nullable=False, index=True)
    field = db.Column(db.String(128), nullable=False)
    value = db.Column(db.Text, nullable=True)  # JSON-encoded
    state = db.Column(db.BigInteger, nullable=False)  # writer clock, ms

    def to_dict(self):
        return {
            'path': self.path,
            'field': self.field,
            'value': self.value,
            'state': self.state,
        }


class StoreChange(db.Model):
    """Append-only change feed that lets other processes notice writes."""
    __tablename__ = 'store_change'
    id = db.Column(db.Integer, primary_key=True)
    path = db.Column(db.String(255), nullable=False)
    origin = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.Float, default=time.time)
