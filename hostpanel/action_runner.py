import logging
from threading import Thread

from flask import current_app

from .action_orchestrator import ActionOrchestrator, ActionTicket
from .errors import ActionError

logger = logging.getLogger(__name__)


class ActionRunner:
    """
    Runs actions off the request thread.

    Validation and the status claim happen synchronously so the caller gets
    conflicts straight away; the provider work then runs on a daemon thread
    with its own app context, one thread per action.
    """

    def __init__(self, orchestrator: ActionOrchestrator):
        self.orchestrator = orchestrator

    def submit(self, server_id: str, action: str) -> ActionTicket:
        ticket = self.orchestrator.begin(server_id, action)
        app = current_app._get_current_object()

        thread = Thread(
            target=self._run,
            args=(app, ticket),
            name=f"action-{ticket.action.value}-{server_id}",
            daemon=True
        )
        thread.start()
        return ticket

    def _run(self, app, ticket: ActionTicket):
        with app.app_context():
            try:
                self.orchestrator.execute(ticket)
            except ActionError as e:
                logger.warning(f"[{ticket.server_id}] background {ticket.action.value} failed: {e.code}: {e.detail}")
            except Exception:
                logger.exception(f"[{ticket.server_id}] background {ticket.action.value} crashed")
