import logging
from dataclasses import dataclass
from typing import List, Optional

from .base import HTTPProviderClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DNSRecord:
    record_id: str
    record_type: str
    name: str
    content: Optional[str] = None

    @classmethod
    def from_api(cls, data: dict) -> "DNSRecord":
        return cls(
            record_id=str(data['id']),
            record_type=data.get('type', ''),
            name=data.get('name', ''),
            content=data.get('content'),
        )


class CloudflareDNSClient(HTTPProviderClient):
    """Cloudflare DNS records within a single zone."""
    provider_name = 'dns'

    def __init__(self, base_url: str, token: str, zone_id: str, **kwargs):
        super().__init__(base_url, token, **kwargs)
        self.zone_id = zone_id

    @classmethod
    def from_config(cls, cfg, session=None) -> "CloudflareDNSClient":
        return cls(
            cfg.api_base,
            cfg.token,
            cfg.zone_id,
            read_timeout=cfg.read_timeout,
            action_timeout=cfg.action_timeout,
            session=session,
        )

    @property
    def _records_path(self) -> str:
        return f'/zones/{self.zone_id}/dns_records'

    def list_by_type_and_name(self, record_type: str, name: str) -> List[DNSRecord]:
        return self._list({'type': record_type, 'name': name})

    def list_by_type_and_content(self, record_type: str, content: str) -> List[DNSRecord]:
        return self._list({'type': record_type, 'content': content})

    def delete_by_id(self, record_id: str) -> bool:
        """Delete one record. Returns False if it was already gone."""
        body = self._request(
            'DELETE',
            f'{self._records_path}/{record_id}',
            timeout=self.action_timeout,
            allow_404=True
        )
        return body is not None

    def create_record(
        self,
        record_type: str,
        name: str,
        content: str = None,
        data: dict = None,
        ttl: int = 1,
        proxied: bool = False
    ) -> DNSRecord:
        payload = {'type': record_type, 'name': name, 'ttl': ttl, 'proxied': proxied}
        if content is not None:
            payload['content'] = content
        if data is not None:
            payload['data'] = data

        body = self._request('POST', self._records_path, timeout=self.action_timeout, json=payload)
        record = DNSRecord.from_api(body['result'])
        logger.info(f"Created {record_type} record {record.record_id} for {name}")
        return record

    def _list(self, params: dict) -> List[DNSRecord]:
        body = self._request('GET', self._records_path, params=params)
        return [DNSRecord.from_api(r) for r in body.get('result') or []]
