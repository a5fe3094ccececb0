"""
Hetzner Cloud compute client.

Only the calls the action orchestrator needs: create, delete, the three
power actions, and a status read.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional

from .base import HTTPProviderClient, ProviderError

logger = logging.getLogger(__name__)

POWERED_OFF = 'off'
RUNNING = 'running'


@dataclass(frozen=True)
class ComputeServer:
    compute_id: str
    name: str
    status: str
    ipv4: Optional[str] = None

    @property
    def is_powered_off(self) -> bool:
        return self.status == POWERED_OFF

    @property
    def is_running(self) -> bool:
        return self.status == RUNNING

    @classmethod
    def from_api(cls, data: dict) -> "ComputeServer":
        public_net = data.get('public_net') or {}
        ipv4 = (public_net.get('ipv4') or {}).get('ip')
        return cls(
            compute_id=str(data['id']),
            name=data.get('name', ''),
            status=data.get('status', 'unknown'),
            ipv4=ipv4,
        )


class HetznerComputeClient(HTTPProviderClient):
    provider_name = 'compute'

    @classmethod
    def from_config(cls, cfg, session=None) -> "HetznerComputeClient":
        return cls(
            cfg.api_base,
            cfg.token,
            read_timeout=cfg.read_timeout,
            action_timeout=cfg.action_timeout,
            session=session,
        )

    def create(
        self,
        name: str,
        server_type: str,
        image: str,
        location: str,
        ssh_keys: List[str] = None,
        user_data: str = ''
    ) -> ComputeServer:
        payload = {
            'name': name,
            'server_type': server_type,
            'image': image,
            'location': location,
            'ssh_keys': ssh_keys or [],
        }
        if user_data:
            payload['user_data'] = user_data

        body = self._request('POST', '/servers', timeout=self.action_timeout, json=payload)
        if not body.get('server'):
            raise ProviderError(self.provider_name, f"create {name} returned no server")
        server = ComputeServer.from_api(body['server'])
        logger.info(f"Created compute server {server.compute_id} ({name})")
        return server

    def get(self, compute_id: str) -> Optional[ComputeServer]:
        """Current state of the server, or None if it no longer exists."""
        body = self._request('GET', f'/servers/{compute_id}', allow_404=True)
        if body is None:
            return None
        return ComputeServer.from_api(body['server'])

    def delete(self, compute_id: str) -> bool:
        """Delete the server. Returns False if it was already gone."""
        body = self._request('DELETE', f'/servers/{compute_id}', timeout=self.action_timeout, allow_404=True)
        return body is not None

    def power_on(self, compute_id: str) -> Optional[dict]:
        return self._action(compute_id, 'poweron')

    def power_off(self, compute_id: str) -> Optional[dict]:
        """Graceful ACPI shutdown."""
        return self._action(compute_id, 'shutdown')

    def reboot(self, compute_id: str) -> Optional[dict]:
        return self._action(compute_id, 'reboot')

    def _action(self, compute_id: str, action: str) -> Optional[dict]:
        # A 404 means the server is gone, so the action is moot
        body = self._request(
            'POST',
            f'/servers/{compute_id}/actions/{action}',
            timeout=self.action_timeout,
            allow_404=True
        )
        if body is None:
            logger.warning(f"Compute server {compute_id} not found, '{action}' skipped")
            return None
        return body.get('action')
