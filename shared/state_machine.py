from enum import Enum
from typing import Optional, List
from dataclasses import dataclass


class ServerState(str, Enum):
    STOPPED = "Stopped"
    INITIALIZING = "Initializing"
    STARTING = "Starting"
    RUNNING = "Running"
    RESTARTING = "Restarting"
    STOPPING = "Stopping"


class ServerAction(str, Enum):
    START = "start"
    RESTART = "restart"
    STOP = "stop"
    DELETE = "delete"
    KILL = "kill"


TRANSITIONAL_STATES = frozenset({
    ServerState.INITIALIZING,
    ServerState.STARTING,
    ServerState.RESTARTING,
    ServerState.STOPPING,
})

# Always allowed, whatever the current state
FORCE_ACTIONS = frozenset({ServerAction.DELETE, ServerAction.KILL})


class TransitionError(Exception):
    def __init__(self, from_state: str, to_state: str, reason: str = None):
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason or f"Cannot transition from {from_state} to {to_state}"
        super().__init__(self.reason)


@dataclass
class Transition:
    from_state: ServerState
    to_state: ServerState
    action: str


class ServerStateMachine:
    TRANSITIONS = [
        Transition(ServerState.STOPPED, ServerState.STARTING, "start"),
        Transition(ServerState.STOPPED, ServerState.INITIALIZING, "provision"),
        Transition(ServerState.STOPPED, ServerState.STOPPING, "stop"),
        Transition(ServerState.RUNNING, ServerState.STOPPING, "stop"),
        Transition(ServerState.RUNNING, ServerState.RESTARTING, "restart"),
        Transition(ServerState.INITIALIZING, ServerState.STARTING, "provisioned"),
        Transition(ServerState.STARTING, ServerState.RUNNING, "converge"),
        Transition(ServerState.RESTARTING, ServerState.RUNNING, "converge"),
        Transition(ServerState.STOPPING, ServerState.STOPPED, "converge"),
    ]

    ALLOWED_ACTIONS = {
        ServerState.STOPPED: ["start", "stop", "delete", "kill"],
        ServerState.RUNNING: ["stop", "restart", "delete", "kill"],
        ServerState.INITIALIZING: ["delete", "kill"],
        ServerState.STARTING: ["delete", "kill"],
        ServerState.RESTARTING: ["delete", "kill"],
        ServerState.STOPPING: ["delete", "kill"],
    }

    def __init__(self, initial_state: ServerState = ServerState.STOPPED):
        self._state = initial_state
        self._history: List[tuple] = []

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def is_transitional(self) -> bool:
        return self._state in TRANSITIONAL_STATES

    @property
    def allowed_actions(self) -> List[str]:
        return self.ALLOWED_ACTIONS.get(self._state, [])

    def can_transition(self, action: str) -> bool:
        return self._find(action) is not None

    def can_perform(self, action: str) -> bool:
        return action in self.allowed_actions

    def next_state(self, action: str) -> Optional[ServerState]:
        t = self._find(action)
        return t.to_state if t else None

    def transition(self, action: str) -> ServerState:
        t = self._find(action)
        if t is None:
            raise TransitionError(
                self._state.value,
                "unknown",
                f"No valid transition for action '{action}' from state '{self._state.value}'"
            )

        old_state = self._state
        self._state = t.to_state
        self._history.append((old_state, action, self._state))
        return self._state

    def set_state(self, state: ServerState):
        self._state = state

    def get_history(self) -> List[tuple]:
        return self._history.copy()

    def _find(self, action: str) -> Optional[Transition]:
        for t in self.TRANSITIONS:
            if t.from_state == self._state and t.action == action:
                return t
        return None

    @classmethod
    def from_state_string(cls, state_str: str) -> "ServerStateMachine":
        try:
            state = ServerState(state_str)
        except ValueError:
            state = ServerState.STOPPED
        return cls(initial_state=state)


def is_transitional(state_str: str) -> bool:
    try:
        return ServerState(state_str) in TRANSITIONAL_STATES
    except ValueError:
        return False


def parse_action(action: str) -> Optional[ServerAction]:
    try:
        return ServerAction((action or "").strip().lower())
    except ValueError:
        return None
