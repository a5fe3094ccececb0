import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .config import ComputeConfig
from .dns_records import DNSRecordManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProvisionedServer:
    compute_ref: str
    network_address: Optional[str]
    dns_record_ids: List[str] = field(default_factory=list)


class ComputeProvisioner:
    """
    Cold start: create a compute server for a record that has none, then
    publish its DNS records.

    Compute errors propagate as ProviderError. DNS creation is best-effort.
    """

    def __init__(self, compute, dns_records: DNSRecordManager, cfg: ComputeConfig, name_prefix: str = ''):
        self.compute = compute
        self.dns_records = dns_records
        self.cfg = cfg
        self.name_prefix = name_prefix

    def provision(self, server) -> ProvisionedServer:
        created = self.compute.create(
            name=f"{self.name_prefix}{server.name_ref}",
            server_type=self.cfg.server_type,
            image=self.cfg.image,
            location=self.cfg.location,
            ssh_keys=self.cfg.ssh_keys,
            user_data=self.cfg.user_data,
        )
        logger.info(f"Provisioned compute {created.compute_id} for {server.server_id} at {created.ipv4}")

        record_ids = []
        if created.ipv4:
            # Clear leftovers (e.g. the sleeper redirect) before publishing
            self.dns_records.cleanup(server.name_ref)
            record_ids = self.dns_records.create_server_records(server.name_ref, created.ipv4)

        return ProvisionedServer(
            compute_ref=created.compute_id,
            network_address=created.ipv4,
            dns_record_ids=record_ids,
        )
