from datetime import datetime
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


class Server(db.Model):
    __tablename__ = 'servers'

    id = db.Column(db.Integer, primary_key=True)
    server_id = db.Column(db.String(50), unique=True, nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    name_ref = db.Column(db.String(63), unique=True, nullable=False, index=True)  # DNS label, e.g. 'alpha'

    # Provider-assigned identifiers
    compute_ref = db.Column(db.String(64), nullable=True)
    network_address = db.Column(db.String(64), nullable=True)
    dns_record_ids = db.Column(db.JSON, nullable=False, default=list)

    status = db.Column(db.String(20), nullable=False, default='Stopped')
    transition_started_at = db.Column(db.DateTime, nullable=True)
    last_action = db.Column(db.String(20), nullable=True)
    last_error = db.Column(db.String(50), nullable=True)

    # Idle shutdown: minutes empty before an automatic stop, 0 disables
    auto_stop_timeout = db.Column(db.Integer, nullable=False, default=0)
    last_empty_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            'server_id': self.server_id,
            'name': self.name,
            'name_ref': self.name_ref,
            'compute_ref': self.compute_ref,
            'network_address': self.network_address,
            'dns_record_ids': list(self.dns_record_ids or []),
            'status': self.status,
            'last_action': self.last_action,
            'last_error': self.last_error,
            'transition_started_at': self.transition_started_at.isoformat() if self.transition_started_at else None,
            'auto_stop_timeout': self.auto_stop_timeout or 0,
            'last_empty_at': self.last_empty_at.isoformat() if self.last_empty_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
