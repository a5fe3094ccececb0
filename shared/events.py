from enum import Enum
from dataclasses import dataclass
from datetime import datetime
import json


class EventType(str, Enum):
    # Lifecycle
    SERVER_REGISTERED = "server.registered"
    SERVER_DELETED = "server.deleted"

    # State changes
    STATE_CHANGED = "state.changed"

    # Actions
    ACTION_REQUESTED = "action.requested"
    ACTION_COMPLETED = "action.completed"
    ACTION_FAILED = "action.failed"

    # Cleanup
    DNS_CLEANUP_PARTIAL = "cleanup.dns_partial"


@dataclass
class Event:
    type: EventType
    server_id: str
    timestamp: str = None
    data: dict = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.utcnow().isoformat() + "Z"
        if self.data is None:
            self.data = {}

    def to_dict(self) -> dict:
        return {
            "type": self.type.value if isinstance(self.type, EventType) else self.type,
            "server_id": self.server_id,
            "timestamp": self.timestamp,
            "data": self.data
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict) -> "Event":
        return cls(
            type=EventType(data["type"]) if data["type"] in [e.value for e in EventType] else data["type"],
            server_id=data["server_id"],
            timestamp=data.get("timestamp"),
            data=data.get("data", {})
        )

    @classmethod
    def from_json(cls, json_str: str) -> "Event":
        return cls.from_dict(json.loads(json_str))


def state_changed_event(server_id: str, from_state: str, to_state: str) -> Event:
    return Event(
        type=EventType.STATE_CHANGED,
        server_id=server_id,
        data={
            "from_state": from_state,
            "to_state": to_state
        }
    )


def action_completed_event(server_id: str, action: str, status: str) -> Event:
    return Event(
        type=EventType.ACTION_COMPLETED,
        server_id=server_id,
        data={
            "action": action,
            "status": status
        }
    )


def action_failed_event(server_id: str, action: str, code: str, detail: str) -> Event:
    return Event(
        type=EventType.ACTION_FAILED,
        server_id=server_id,
        data={
            "action": action,
            "error": code,
            "detail": detail
        }
    )


def server_deleted_event(server_id: str) -> Event:
    return Event(type=EventType.SERVER_DELETED, server_id=server_id)


def dns_cleanup_partial_event(server_id: str, cleanup: dict) -> Event:
    return Event(
        type=EventType.DNS_CLEANUP_PARTIAL,
        server_id=server_id,
        data=cleanup
    )


def server_registered_event(server_id: str, name: str, name_ref: str) -> Event:
    return Event(
        type=EventType.SERVER_REGISTERED,
        server_id=server_id,
        data={
            "name": name,
            "name_ref": name_ref
        }
    )


def action_requested_event(server_id: str, action: str, from_state: str) -> Event:
    return Event(
        type=EventType.ACTION_REQUESTED,
        server_id=server_id,
        data={
            "action": action,
            "from_state": from_state
        }
    )
