"""
Action Orchestrator.

Drives a server through start, restart, stop, kill and delete by calling the
compute, DNS and storage providers in order, polling where the provider is
asynchronous, and keeping the status record in a well-defined state when a
step fails.

An action runs in two parts:

    begin()   validate against the state machine and claim the server by
              moving it to a transitional status (compare-and-set)
    execute() do the provider work and write the final status

The claimed transitional status doubles as an advisory lock: any other
start, stop or restart for the same server is rejected until it resolves.
delete and kill are always accepted.
"""
import time
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from shared.state_machine import (
    ServerStateMachine,
    ServerState,
    ServerAction,
    TransitionError,
    TRANSITIONAL_STATES,
    FORCE_ACTIONS,
    is_transitional,
    parse_action,
)
from shared.retry import RetryPolicy, retry_call, wait_for_state
from shared.events import (
    state_changed_event,
    action_requested_event,
    action_completed_event,
    action_failed_event,
    server_deleted_event,
    dns_cleanup_partial_event,
)
from .config import OrchestratorConfig
from .dns_records import DNSCleanupResult, DNSRecordManager
from .errors import (
    ActionError,
    NotFound,
    InvalidTransition,
    NotProvisioned,
    ProviderCallFailed,
    ConvergenceTimeout,
    PartialCleanupFailure,
    RecordStoreError,
)
from .providers.base import ProviderError
from .server_store import ServerStore, ServerRecord

logger = logging.getLogger(__name__)

DELETED = 'deleted'


@dataclass(frozen=True)
class ActionTicket:
    """A validated, claimed action waiting to be executed."""
    server: ServerRecord
    action: ServerAction
    previous_status: str
    claimed_status: ServerState
    cold_start: bool = False

    @property
    def server_id(self) -> str:
        return self.server.server_id


@dataclass
class ActionResult:
    server_id: str
    action: str
    status: str
    warnings: List[str] = field(default_factory=list)
    dns_cleanup: Optional[DNSCleanupResult] = None
    storage_objects_deleted: int = 0

    def to_dict(self) -> dict:
        data = {
            'ok': True,
            'server_id': self.server_id,
            'action': self.action,
            'status': self.status,
            'warnings': list(self.warnings),
        }
        if self.dns_cleanup is not None:
            data['dns_cleanup'] = self.dns_cleanup.to_dict()
        if self.action == ServerAction.DELETE.value:
            data['storage_objects_deleted'] = self.storage_objects_deleted
        return data


class ActionOrchestrator:
    def __init__(
        self,
        store: ServerStore,
        compute,
        dns_records: DNSRecordManager,
        storage,
        provisioner=None,
        events=None,
        cfg: OrchestratorConfig = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.store = store
        self.compute = compute
        self.dns_records = dns_records
        self.storage = storage
        self.provisioner = provisioner
        self.events = events
        self.cfg = cfg or OrchestratorConfig()
        self._sleep = sleep

    # ==================== Entry points ====================

    def perform_action(self, server_id: str, action: str) -> ActionResult:
        """Validate, claim and run an action to completion."""
        return self.execute(self.begin(server_id, action))

    def begin(self, server_id: str, action: str) -> ActionTicket:
        """Validate the action and claim the server for it.

        Raises:
            InvalidTransition: unknown action, illegal for the current
                status, or another action is already in flight.
            NotFound: no such server.
            NotProvisioned: restart/stop without a compute resource, or a
                cold start with no provisioner configured.
        """
        parsed = parse_action(action)
        if parsed is None:
            raise InvalidTransition(f"Unknown action '{action}'")

        server = self.store.get(server_id)
        if server is None:
            raise NotFound(f"Server {server_id} not found")

        if parsed in (ServerAction.RESTART, ServerAction.STOP) and not server.compute_ref:
            raise NotProvisioned(
                f"Server {server_id} has no compute resource to {parsed.value}",
                status=server.status
            )

        if parsed in FORCE_ACTIONS:
            return self._force_claim(server, parsed)

        sm = ServerStateMachine.from_state_string(server.status)
        if not sm.can_perform(parsed.value):
            raise InvalidTransition(
                f"Cannot {parsed.value} a server in {server.status} state",
                status=server.status
            )

        cold_start = parsed == ServerAction.START and not server.compute_ref
        if cold_start and self.provisioner is None:
            raise NotProvisioned(
                f"Server {server_id} has no compute resource and provisioning is not configured",
                status=server.status
            )

        try:
            claimed = sm.transition('provision' if cold_start else parsed.value)
        except TransitionError as e:
            raise InvalidTransition(str(e), status=server.status)

        claimed_ok = self.store.claim(
            server_id,
            server.status,
            claimed.value,
            transition_started_at=datetime.utcnow(),
            last_action=parsed.value,
            last_error=None,
            last_empty_at=None,
        )
        if not claimed_ok:
            current = self.store.get(server_id)
            if current is None:
                raise NotFound(f"Server {server_id} not found")
            raise InvalidTransition(
                f"Server {server_id} is {current.status}; another action is in progress",
                status=current.status
            )

        self._emit(action_requested_event(server_id, parsed.value, server.status))
        self._emit_state(server_id, server.status, claimed.value)
        logger.info(f"[{server_id}] {parsed.value} accepted: {server.status} -> {claimed.value}")
        return ActionTicket(server, parsed, server.status, claimed, cold_start)

    def execute(self, ticket: ActionTicket) -> ActionResult:
        """Run the provider steps for a claimed action."""
        handlers = {
            ServerAction.START: self._start,
            ServerAction.RESTART: self._restart,
            ServerAction.STOP: self._stop,
            ServerAction.KILL: self._kill,
            ServerAction.DELETE: self._delete,
        }

        try:
            result = handlers[ticket.action](ticket)
        except ConvergenceTimeout as e:
            self._record_timeout(ticket, e)
            raise
        except ActionError as e:
            self._settle_failure(ticket, e)
            raise
        except Exception as e:
            logger.exception(f"[{ticket.server_id}] {ticket.action.value} crashed")
            self._settle_failure(ticket, ActionError(str(e)))
            raise

        self._emit(action_completed_event(ticket.server_id, ticket.action.value, result.status))
        logger.info(f"[{ticket.server_id}] {ticket.action.value} completed with status {result.status}")
        return result

    def reconcile_status(self, server_id: str, max_attempts: int = None) -> ServerRecord:
        """
        Resolve a Starting/Restarting server against the compute provider.

        Writes Running once the provider reports running, Stopped if the
        resource is gone or still off at the end of the bound. Anything else
        is returned as stored.
        """
        server = self.store.get(server_id)
        if server is None:
            raise NotFound(f"Server {server_id} not found")

        if server.status not in (ServerState.STARTING.value, ServerState.RESTARTING.value) or not server.compute_ref:
            return server

        policy = self.cfg.converge_poll
        if max_attempts is not None:
            policy = RetryPolicy(max_attempts, policy.delay)

        self._converge(server_id, server.compute_ref, ServerState(server.status), policy, settle_off=True)
        return self.store.get(server_id) or server

    def kill_stuck_servers(self, now: datetime = None) -> List[str]:
        """Kill every server stuck in a transitional status past the limit."""
        now = now or datetime.utcnow()
        cutoff = now - timedelta(minutes=self.cfg.stuck_after_minutes)
        stuck = self.store.list_stuck([s.value for s in TRANSITIONAL_STATES], cutoff)

        killed = []
        for server in stuck:
            logger.warning(
                f"[{server.server_id}] stuck in {server.status} since "
                f"{server.transition_started_at}, killing"
            )
            try:
                self.perform_action(server.server_id, ServerAction.KILL.value)
            except ActionError as e:
                logger.error(f"[{server.server_id}] failed to kill stuck server: {e.code}: {e.detail}")
                continue
            killed.append(server.server_id)
        return killed

    def auto_stop_idle_servers(self, now: datetime = None) -> List[str]:
        """Stop every Running server that has been empty for its auto_stop_timeout."""
        now = now or datetime.utcnow()

        stopped = []
        for server in self.store.list_idle():
            empty_minutes = (now - server.last_empty_at).total_seconds() / 60
            if empty_minutes < server.auto_stop_timeout:
                continue
            logger.info(
                f"[{server.server_id}] empty for {empty_minutes:.1f}m "
                f"(limit {server.auto_stop_timeout}m), stopping"
            )
            try:
                self.perform_action(server.server_id, ServerAction.STOP.value)
            except ActionError as e:
                logger.error(f"[{server.server_id}] failed to auto-stop idle server: {e.code}: {e.detail}")
                continue
            stopped.append(server.server_id)
        return stopped

    # ==================== Actions ====================

    def _start(self, ticket: ActionTicket) -> ActionResult:
        if ticket.cold_start:
            return self._provision_and_start(ticket)

        ref = ticket.server.compute_ref
        self._provider_step(lambda: self.compute.power_on(ref), 'compute_start_failed', f"power on {ref}")
        status = self._converge_or_timeout(ticket, ref, ServerState.STARTING)
        return ActionResult(ticket.server_id, ticket.action.value, status)

    def _restart(self, ticket: ActionTicket) -> ActionResult:
        ref = ticket.server.compute_ref
        self._provider_step(lambda: self.compute.reboot(ref), 'compute_restart_failed', f"reboot {ref}")
        status = self._converge_or_timeout(ticket, ref, ServerState.RESTARTING)
        return ActionResult(ticket.server_id, ticket.action.value, status)

    def _stop(self, ticket: ActionTicket) -> ActionResult:
        return self._decommission(ticket, graceful=True)

    def _kill(self, ticket: ActionTicket) -> ActionResult:
        return self._decommission(ticket, graceful=False)

    def _decommission(self, ticket: ActionTicket, graceful: bool) -> ActionResult:
        """Tear the compute resource down and leave the server Stopped."""
        self._teardown_compute(ticket, graceful)
        cleanup = self._cleanup_dns(ticket)
        sleeper_record = self.dns_records.point_at_sleeper(ticket.server.name_ref)
        if sleeper_record:
            logger.info(f"[{ticket.server_id}] sleeper record {sleeper_record}")

        status = self._settle(
            ticket.server_id,
            ServerState.STOPPING,
            ServerState.STOPPED,
            compute_ref=None,
            network_address=None,
            dns_record_ids=[],
            last_empty_at=None,
        )
        warnings = [] if cleanup.complete else ['dns_cleanup_partial']
        return ActionResult(ticket.server_id, ticket.action.value, status, warnings, cleanup)

    def _delete(self, ticket: ActionTicket) -> ActionResult:
        server_id = ticket.server_id
        self._teardown_compute(ticket, graceful=True)
        cleanup = self._cleanup_dns(ticket)

        prefix = f"{self.cfg.storage_prefix}{server_id}/"
        keys = self._provider_step(
            lambda: self.storage.list_by_prefix(prefix),
            'storage_cleanup_failed',
            f"list objects under {prefix}",
            error_cls=PartialCleanupFailure
        )
        removed = 0
        if keys:
            removed = self._provider_step(
                lambda: self.storage.delete_batch(keys),
                'storage_cleanup_failed',
                f"delete {len(keys)} objects under {prefix}",
                error_cls=PartialCleanupFailure
            )

        try:
            existed = self.store.delete(server_id)
        except SQLAlchemyError as e:
            raise RecordStoreError(f"Failed to delete server record: {e}")
        if not existed:
            logger.warning(f"[{server_id}] record already removed")

        self._emit(server_deleted_event(server_id))
        warnings = [] if cleanup.complete else ['dns_cleanup_partial']
        return ActionResult(server_id, ticket.action.value, DELETED, warnings, cleanup, removed)

    def _provision_and_start(self, ticket: ActionTicket) -> ActionResult:
        server_id = ticket.server_id
        try:
            provisioned = self.provisioner.provision(ticket.server)
        except ProviderError as e:
            raise ProviderCallFailed(f"Provisioning failed: {e}", code='compute_create_failed')

        claimed = self.store.claim(
            server_id,
            ServerState.INITIALIZING.value,
            ServerState.STARTING.value,
            compute_ref=provisioned.compute_ref,
            network_address=provisioned.network_address,
            dns_record_ids=provisioned.dns_record_ids,
        )
        if not claimed:
            # Killed or deleted while provisioning; do not leak the new server
            logger.warning(f"[{server_id}] superseded during provisioning, removing {provisioned.compute_ref}")
            # By id and address only; a kill may already have pointed the name at the sleeper
            cleanup = self.dns_records.cleanup(None, provisioned.dns_record_ids, provisioned.network_address)
            if not cleanup.complete:
                logger.warning(f"[{server_id}] records left after superseded provisioning: {cleanup.to_dict()}")
            self._provider_step(
                lambda: self.compute.delete(provisioned.compute_ref),
                'compute_delete_failed',
                f"delete compute {provisioned.compute_ref}"
            )
            raise InvalidTransition(f"Server {server_id} changed state during provisioning")

        self._emit_state(server_id, ServerState.INITIALIZING.value, ServerState.STARTING.value)
        status = self._converge_or_timeout(ticket, provisioned.compute_ref, ServerState.STARTING)
        return ActionResult(server_id, ticket.action.value, status)

    # ==================== Steps ====================

    def _teardown_compute(self, ticket: ActionTicket, graceful: bool):
        """Power off (unless forced) and delete the compute resource, if any."""
        ref = ticket.server.compute_ref
        if not ref:
            return

        if graceful:
            self._power_off(ref)
        else:
            logger.info(f"[{ticket.server_id}] forced teardown, skipping graceful shutdown of {ref}")

        existed = self._provider_step(
            lambda: self.compute.delete(ref),
            'compute_delete_failed',
            f"delete compute {ref}"
        )
        if not existed:
            logger.info(f"[{ticket.server_id}] compute {ref} was already deleted")

        self.store.update(ticket.server_id, compute_ref=None, network_address=None)

    def _power_off(self, ref: str):
        current = self._provider_step(lambda: self.compute.get(ref), 'compute_stop_failed', f"read compute {ref}")
        if current is None or current.is_powered_off:
            return

        self._provider_step(lambda: self.compute.power_off(ref), 'compute_stop_failed', f"shut down {ref}")
        reached, _ = wait_for_state(
            lambda: self.compute.get(ref),
            lambda s: s is None or s.is_powered_off,
            self.cfg.power_off_poll,
            tolerate=(ProviderError,),
            description=f"compute {ref} power-off",
            sleep=self._sleep
        )
        if not reached:
            logger.warning(
                f"Compute {ref} did not report off after {self.cfg.power_off_poll.max_attempts} polls, "
                f"deleting anyway"
            )

    def _cleanup_dns(self, ticket: ActionTicket) -> DNSCleanupResult:
        server = ticket.server
        cleanup = self.dns_records.cleanup(server.name_ref, server.dns_record_ids, server.network_address)
        # Keep only what is still out there, so a retry has less to do
        self.store.update(server.server_id, dns_record_ids=cleanup.failed_ids)
        if not cleanup.complete:
            self._emit(dns_cleanup_partial_event(server.server_id, cleanup.to_dict()))
        return cleanup

    def _converge_or_timeout(self, ticket: ActionTicket, ref: str, transitional: ServerState) -> str:
        status = self._converge(ticket.server_id, ref, transitional, self.cfg.converge_poll)
        if status is None:
            raise ConvergenceTimeout(
                f"Compute {ref} did not report running after "
                f"{self.cfg.converge_poll.max_attempts} polls",
                status=transitional.value
            )
        return status

    def _converge(
        self,
        server_id: str,
        ref: str,
        transitional: ServerState,
        policy: RetryPolicy,
        settle_off: bool = False
    ) -> Optional[str]:
        """Poll until running (or gone). Returns the written status, None on timeout."""
        reached, observed = wait_for_state(
            lambda: self.compute.get(ref),
            lambda s: s is None or s.is_running,
            policy,
            tolerate=(ProviderError,),
            description=f"compute {ref}",
            sleep=self._sleep
        )

        if reached and observed is None:
            logger.warning(f"[{server_id}] compute {ref} disappeared while {transitional.value}")
            return self._settle(
                server_id, transitional, ServerState.STOPPED,
                compute_ref=None, network_address=None, dns_record_ids=[]
            )
        if reached:
            fields = {'network_address': observed.ipv4} if observed.ipv4 else {}
            return self._settle(server_id, transitional, ServerState.RUNNING, **fields)
        if settle_off and observed is not None and observed.is_powered_off:
            return self._settle(server_id, transitional, ServerState.STOPPED)
        return None

    def _provider_step(self, fn, code: str, description: str, error_cls=ProviderCallFailed):
        try:
            return retry_call(
                fn,
                self.cfg.provider_retry,
                retry_on=(ProviderError,),
                description=description,
                sleep=self._sleep
            )
        except ProviderError as e:
            raise error_cls(f"Failed to {description}: {e}", code=code)

    # ==================== Status bookkeeping ====================

    def _force_claim(self, server: ServerRecord, action: ServerAction) -> ActionTicket:
        updated = self.store.update(
            server.server_id,
            status=ServerState.STOPPING.value,
            transition_started_at=datetime.utcnow(),
            last_action=action.value,
            last_error=None,
        )
        if not updated:
            raise NotFound(f"Server {server.server_id} not found")

        self._emit(action_requested_event(server.server_id, action.value, server.status))
        self._emit_state(server.server_id, server.status, ServerState.STOPPING.value)
        logger.info(f"[{server.server_id}] {action.value} accepted from {server.status}")
        return ActionTicket(server, action, server.status, ServerState.STOPPING)

    def _settle(self, server_id: str, from_state: ServerState, to_state: ServerState, **fields) -> str:
        """Move out of a transitional status, unless someone else already did."""
        if to_state not in TRANSITIONAL_STATES:
            fields.setdefault('transition_started_at', None)

        if self.store.claim(server_id, from_state.value, to_state.value, **fields):
            self._emit_state(server_id, from_state.value, to_state.value)
            return to_state.value

        current = self.store.get(server_id)
        if current is None:
            return DELETED
        logger.warning(f"[{server_id}] expected {from_state.value} but found {current.status}, leaving it")
        return current.status

    def _settle_failure(self, ticket: ActionTicket, error: ActionError):
        """Put the record back into a stable status after a failed action."""
        current = self.store.get(ticket.server_id)
        if current is None:
            error.status = DELETED
            return

        settled = ticket.previous_status if current.compute_ref else ServerState.STOPPED.value
        fields = {'last_error': error.code}
        if not is_transitional(settled):
            fields['transition_started_at'] = None

        if self.store.claim(ticket.server_id, ticket.claimed_status.value, settled, **fields):
            self._emit_state(ticket.server_id, ticket.claimed_status.value, settled)
        else:
            self.store.update(ticket.server_id, last_error=error.code)
            settled = current.status

        error.status = settled
        self._emit(action_failed_event(ticket.server_id, ticket.action.value, error.code, error.detail))
        logger.error(
            f"[{ticket.server_id}] {ticket.action.value} failed ({error.code}): {error.detail}; "
            f"status is {settled}"
        )

    def _record_timeout(self, ticket: ActionTicket, error: ConvergenceTimeout):
        self.store.update(ticket.server_id, last_error=error.code)
        self._emit(action_failed_event(ticket.server_id, ticket.action.value, error.code, error.detail))
        logger.warning(f"[{ticket.server_id}] {error.detail}; left in {error.status}")

    def _emit_state(self, server_id: str, from_state: str, to_state: str):
        self._emit(state_changed_event(server_id, from_state, to_state))

    def _emit(self, event):
        if self.events:
            self.events.publish_server_event(event.server_id, event)
