"""
Status Store: the single source of truth for a server's lifecycle state and
its provider-assigned identifiers.

Reads hand out `ServerRecord` snapshots rather than live ORM objects so that
callers running on worker threads never hold on to a session-bound row.
"""
import uuid
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from .models import db, Server

logger = logging.getLogger(__name__)

MUTABLE_FIELDS = {
    'name',
    'compute_ref',
    'network_address',
    'dns_record_ids',
    'status',
    'transition_started_at',
    'last_action',
    'last_error',
    'auto_stop_timeout',
    'last_empty_at',
}


@dataclass(frozen=True)
class ServerRecord:
    server_id: str
    name: str
    name_ref: str
    status: str
    compute_ref: Optional[str] = None
    network_address: Optional[str] = None
    dns_record_ids: List[str] = field(default_factory=list)
    transition_started_at: Optional[datetime] = None
    last_action: Optional[str] = None
    last_error: Optional[str] = None
    auto_stop_timeout: int = 0
    last_empty_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, server: Server) -> "ServerRecord":
        return cls(
            server_id=server.server_id,
            name=server.name,
            name_ref=server.name_ref,
            status=server.status,
            compute_ref=server.compute_ref,
            network_address=server.network_address,
            dns_record_ids=list(server.dns_record_ids or []),
            transition_started_at=server.transition_started_at,
            last_action=server.last_action,
            last_error=server.last_error,
            auto_stop_timeout=server.auto_stop_timeout or 0,
            last_empty_at=server.last_empty_at,
        )


class ServerStore:
    """Reads and writes one `servers` row per instance."""

    def create(self, name: str, name_ref: str, auto_stop_timeout: int = 0) -> Server:
        server = Server(
            server_id=f"s_{uuid.uuid4().hex[:12]}",
            name=name,
            name_ref=name_ref,
            status='Stopped',
            dns_record_ids=[],
            auto_stop_timeout=auto_stop_timeout,
        )
        db.session.add(server)
        db.session.commit()
        return server

    def get(self, server_id: str) -> Optional[ServerRecord]:
        server = self._query(server_id).first()
        return ServerRecord.from_model(server) if server else None

    def get_model(self, server_id: str) -> Optional[Server]:
        return self._query(server_id).first()

    def name_ref_taken(self, name_ref: str) -> bool:
        return Server.query.filter_by(name_ref=name_ref).first() is not None

    def list(self, status: str = None, limit: int = 50, offset: int = 0) -> List[Server]:
        query = Server.query
        if status:
            query = query.filter_by(status=status)
        query = query.order_by(Server.created_at.desc())
        return query.offset(offset).limit(limit).all()

    def list_stuck(self, statuses: Iterable[str], started_before: datetime) -> List[ServerRecord]:
        """Servers sitting in one of `statuses` since before `started_before`."""
        rows = Server.query.filter(
            Server.status.in_(list(statuses)),
            Server.transition_started_at.isnot(None),
            Server.transition_started_at < started_before,
        ).all()
        return [ServerRecord.from_model(s) for s in rows]

    def list_idle(self) -> List[ServerRecord]:
        """Running servers with auto-stop enabled that are currently empty."""
        rows = Server.query.filter(
            Server.status == 'Running',
            Server.auto_stop_timeout > 0,
            Server.last_empty_at.isnot(None),
        ).all()
        return [ServerRecord.from_model(s) for s in rows]

    def update(self, server_id: str, **fields) -> bool:
        """Write fields on the row. Returns False when the row does not exist."""
        return self._write(self._query(server_id), fields)

    def record_players(self, server_id: str, player_count: int, now: datetime = None) -> bool:
        """
        Track when a server became empty.

        The first report of zero players stamps last_empty_at; later empty
        reports keep the original stamp. Any player clears it.
        Returns False when the row does not exist.
        """
        server = self.get_model(server_id)
        if server is None:
            return False
        if player_count > 0:
            if server.last_empty_at is None:
                return True
            return self.update(server_id, last_empty_at=None)
        if server.last_empty_at is not None:
            return True
        return self.update(server_id, last_empty_at=now or datetime.utcnow())

    def claim(self, server_id: str, expected_status: str, new_status: str, **fields) -> bool:
        """
        Atomically move status from `expected_status` to `new_status`.

        This is the single-writer guard: a second action that read the same
        status loses the compare-and-set and gets False back.
        """
        query = self._query(server_id).filter(Server.status == expected_status)
        return self._write(query, dict(fields, status=new_status))

    def delete(self, server_id: str) -> bool:
        try:
            count = self._query(server_id).delete(synchronize_session=False)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise
        return count == 1

    def _query(self, server_id: str):
        return Server.query.filter(Server.server_id == server_id)

    def _write(self, query, fields: dict) -> bool:
        unknown = set(fields) - MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        values = dict(fields, updated_at=datetime.utcnow())
        if 'dns_record_ids' in values:
            values['dns_record_ids'] = list(values['dns_record_ids'] or [])

        try:
            count = query.update(values, synchronize_session=False)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise
        return count == 1
