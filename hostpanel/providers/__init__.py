from .base import ProviderError, HTTPProviderClient
from .compute import ComputeServer, HetznerComputeClient
from .dns import DNSRecord, CloudflareDNSClient
from .storage import S3StorageClient

__all__ = [
    'ProviderError',
    'HTTPProviderClient',
    'ComputeServer',
    'HetznerComputeClient',
    'DNSRecord',
    'CloudflareDNSClient',
    'S3StorageClient',
]
