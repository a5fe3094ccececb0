"""
DNS record bookkeeping for game servers.

Each server owns up to three records derived from its name:

    {name}{suffix}                      A    -> server address
    {name}-api{suffix}                  A    -> server address
    {label}._tcp.{name}{suffix}         SRV  -> {name}{suffix}:{port}

The ids stored on the server row are not trusted to be complete (a crash
between record creation and the row update loses them), so cleanup also
searches the provider by name, and by address as a last resort.
"""
import re
import time
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Tuple

from shared.retry import RetryPolicy, retry_call
from .providers.base import ProviderError

logger = logging.getLogger(__name__)

NAME_PATTERN = re.compile(r'^[a-zA-Z0-9-]+$')


@dataclass
class DNSCleanupResult:
    deleted_ids: List[str] = field(default_factory=list)
    failed_ids: List[str] = field(default_factory=list)
    fallback_matches_found: int = 0
    failed_lookups: List[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failed_ids and not self.failed_lookups

    def to_dict(self) -> dict:
        return {
            'deleted_ids': list(self.deleted_ids),
            'failed_ids': list(self.failed_ids),
            'fallback_matches_found': self.fallback_matches_found,
            'failed_lookups': list(self.failed_lookups),
            'complete': self.complete,
        }


class DNSRecordManager:
    def __init__(
        self,
        dns,
        domain_suffix: str,
        service_label: str = '_minecraft',
        game_port: int = 25565,
        sleeper_ip: Optional[str] = None,
        retry_policy: RetryPolicy = RetryPolicy(3, 2.0),
        sleep: Callable[[float], None] = time.sleep
    ):
        self.dns = dns
        self.domain_suffix = domain_suffix if domain_suffix.startswith('.') else f'.{domain_suffix}'
        self.service_label = service_label
        self.game_port = game_port
        self.sleeper_ip = sleeper_ip
        self.retry_policy = retry_policy
        self._sleep = sleep

    # ==================== Names ====================

    def normalize_name(self, name_ref: Optional[str]) -> Optional[str]:
        """Bare DNS label for name_ref, or None when it cannot be used."""
        if not name_ref or not isinstance(name_ref, str):
            return None
        name = name_ref
        if name.endswith(self.domain_suffix):
            name = name[:-len(self.domain_suffix)]
        if not NAME_PATTERN.match(name):
            return None
        return name

    def root_name(self, name: str) -> str:
        return f"{name}{self.domain_suffix}"

    def record_shapes(self, name: str) -> List[Tuple[str, str]]:
        """The (type, name) pairs a server with this label may own."""
        return [
            ('A', self.root_name(name)),
            ('A', f"{name}-api{self.domain_suffix}"),
            ('SRV', f"{self.service_label}._tcp.{name}{self.domain_suffix}"),
        ]

    # ==================== Cleanup ====================

    def cleanup(
        self,
        name_ref: Optional[str],
        record_ids: Iterable[str] = (),
        network_address: Optional[str] = None
    ) -> DNSCleanupResult:
        """
        Delete every record belonging to a server.

        1. Delete the stored ids, each with bounded retry.
        2. Look up each derived record shape by type and name and delete
           whatever phase 1 did not already remove.
        3. With no usable name and nothing deleted by id, delete A records
           pointing at network_address.

        Never raises on provider errors; the result says what was cleaned.
        """
        result = DNSCleanupResult()
        known_ids = [str(r) for r in record_ids if r]
        name = self.normalize_name(name_ref)

        for record_id in known_ids:
            self._delete(record_id, result)

        if name:
            for record_type, record_name in self.record_shapes(name):
                matches = self._lookup(
                    lambda: self.dns.list_by_type_and_name(record_type, record_name),
                    f"{record_type} {record_name}",
                    result
                )
                self._delete_matches(matches, known_ids, result)
        elif not result.deleted_ids and network_address:
            logger.warning(
                f"No usable DNS name ({name_ref!r}) or record ids, "
                f"falling back to A records pointing at {network_address}"
            )
            matches = self._lookup(
                lambda: self.dns.list_by_type_and_content('A', network_address),
                f"A -> {network_address}",
                result
            )
            self._delete_matches(matches, known_ids, result)
        elif not known_ids:
            logger.warning(f"Nothing to clean up for DNS name {name_ref!r}")

        if result.complete:
            logger.info(f"DNS cleanup for {name_ref!r} removed {len(result.deleted_ids)} record(s)")
        else:
            logger.warning(f"DNS cleanup for {name_ref!r} incomplete: {result.to_dict()}")
        return result

    def _lookup(self, fn, description: str, result: DNSCleanupResult) -> list:
        try:
            return retry_call(
                fn,
                self.retry_policy,
                retry_on=(ProviderError,),
                description=f"DNS lookup {description}",
                sleep=self._sleep
            )
        except ProviderError:
            result.failed_lookups.append(description)
            return []

    def _delete_matches(self, matches, known_ids: List[str], result: DNSCleanupResult):
        for record in matches:
            if record.record_id in result.deleted_ids:
                continue
            if record.record_id not in known_ids:
                result.fallback_matches_found += 1
            self._delete(record.record_id, result)

    def _delete(self, record_id: str, result: DNSCleanupResult):
        try:
            retry_call(
                lambda: self.dns.delete_by_id(record_id),
                self.retry_policy,
                retry_on=(ProviderError,),
                description=f"DNS delete {record_id}",
                sleep=self._sleep
            )
        except ProviderError:
            if record_id not in result.failed_ids:
                result.failed_ids.append(record_id)
            return

        if record_id in result.failed_ids:
            result.failed_ids.remove(record_id)
        result.deleted_ids.append(record_id)

    # ==================== Creation ====================

    def create_server_records(self, name_ref: str, address: str) -> List[str]:
        """
        Create the A, -api A and SRV records for a freshly provisioned server.

        Best-effort: a failed record is logged and skipped, since cleanup
        finds unrecorded records by name later.
        """
        name = self.normalize_name(name_ref)
        if not name or not address:
            logger.warning(f"Skipping DNS records for {name_ref!r} (address {address!r})")
            return []

        root = self.root_name(name)
        specs = [
            ('A', root, {'content': address}),
            ('A', f"{name}-api{self.domain_suffix}", {'content': address}),
            ('SRV', f"{self.service_label}._tcp.{root}", {'data': {
                'service': self.service_label,
                'proto': '_tcp',
                'name': root,
                'priority': 0,
                'weight': 5,
                'port': self.game_port,
                'target': f"{root}.",
            }}),
        ]

        record_ids = []
        for record_type, record_name, kwargs in specs:
            try:
                record = self.dns.create_record(record_type, record_name, **kwargs)
            except ProviderError as e:
                logger.error(f"Failed to create {record_type} record {record_name}: {e}")
                continue
            record_ids.append(record.record_id)
        return record_ids

    def point_at_sleeper(self, name_ref: str) -> Optional[str]:
        """Point the root A record of a stopped server at the sleeper proxy."""
        name = self.normalize_name(name_ref)
        if not self.sleeper_ip or not name:
            return None
        try:
            record = self.dns.create_record('A', self.root_name(name), content=self.sleeper_ip, ttl=60)
        except ProviderError as e:
            logger.error(f"Failed to point {self.root_name(name)} at sleeper proxy: {e}")
            return None
        logger.info(f"Pointed {self.root_name(name)} at sleeper proxy {self.sleeper_ip}")
        return record.record_id
