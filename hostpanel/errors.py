"""
Errors raised by the action orchestrator.

Every error carries a stable `code` the dashboard can branch on, a
human-readable `detail`, and the status the server record was left in.
Raw provider payloads never cross this boundary.
"""
from typing import Optional


class ActionError(Exception):
    code = 'action_failed'
    http_status = 500

    def __init__(self, detail: str, code: str = None, status: Optional[str] = None):
        self.detail = detail
        if code:
            self.code = code
        self.status = status
        super().__init__(detail)

    def to_dict(self) -> dict:
        return {
            'error': self.code,
            'detail': self.detail,
            'status': self.status,
        }


class NotFound(ActionError):
    code = 'not_found'
    http_status = 404


class InvalidTransition(ActionError):
    code = 'invalid_transition'
    http_status = 409


class NotProvisioned(ActionError):
    code = 'not_provisioned'
    http_status = 400


class ProviderCallFailed(ActionError):
    """A provider step failed after its bounded retries.

    `code` names the step, e.g. compute_stop_failed or compute_delete_failed.
    """
    code = 'provider_call_failed'
    http_status = 502


class ConvergenceTimeout(ActionError):
    code = 'convergence_timeout'
    http_status = 504


class PartialCleanupFailure(ActionError):
    code = 'storage_cleanup_failed'
    http_status = 502


class RecordStoreError(ActionError):
    code = 'record_delete_failed'
    http_status = 500
