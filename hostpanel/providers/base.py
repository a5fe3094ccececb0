import logging
from typing import Optional

import requests

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """A provider call failed: transport error, timeout, or non-2xx response."""

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None):
        self.provider = provider
        self.status_code = status_code
        super().__init__(f"[{provider}] {message}")


class HTTPProviderClient:
    """
    Thin JSON-over-HTTPS client with bearer authentication.

    No retries happen here; callers decide whether a step is worth retrying.
    """
    provider_name = 'provider'

    def __init__(
        self,
        base_url: str,
        token: str,
        read_timeout: float = 5.0,
        action_timeout: float = 30.0,
        session: requests.Session = None
    ):
        self.base_url = base_url.rstrip('/')
        self.read_timeout = read_timeout
        self.action_timeout = action_timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            'Authorization': f'Bearer {token}',
            'Content-Type': 'application/json',
        })

    def _request(
        self,
        method: str,
        path: str,
        timeout: float = None,
        allow_404: bool = False,
        **kwargs
    ) -> Optional[dict]:
        """
        Perform a request and decode the JSON body.

        Returns:
            The decoded body ({} when empty), or None for a 404 when
            allow_404 is set.
        """
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.request(method, url, timeout=timeout or self.read_timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            raise ProviderError(self.provider_name, f"{method} {path} failed: {e}") from e

        if resp.status_code == 404 and allow_404:
            logger.info(f"{self.provider_name}: {method} {path} returned 404")
            return None

        if not resp.ok:
            raise ProviderError(
                self.provider_name,
                f"{method} {path} returned {resp.status_code}: {resp.text[:500]}",
                status_code=resp.status_code
            )

        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError:
            return {}
