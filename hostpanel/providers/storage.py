import logging
from typing import List

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .base import ProviderError

logger = logging.getLogger(__name__)

# DeleteObjects accepts at most this many keys per request
DELETE_BATCH_SIZE = 1000


class S3StorageClient:
    """S3-compatible object storage for server world data."""
    provider_name = 'storage'

    def __init__(self, cfg, client=None):
        self.cfg = cfg
        self.bucket = cfg.bucket
        self._client = client

    @property
    def client(self):
        """Lazy-load the boto3 client."""
        if self._client is None:
            self._client = boto3.client(
                's3',
                endpoint_url=self.cfg.endpoint_url,
                region_name=self.cfg.region,
                aws_access_key_id=self.cfg.access_key_id,
                aws_secret_access_key=self.cfg.secret_access_key,
                config=BotoConfig(
                    s3={'addressing_style': 'path'},
                    connect_timeout=self.cfg.read_timeout,
                    read_timeout=self.cfg.action_timeout,
                    retries={'max_attempts': 1},
                ),
            )
        return self._client

    def list_by_prefix(self, prefix: str) -> List[str]:
        """Every object key under prefix, following continuation tokens."""
        keys = []
        kwargs = {'Bucket': self.bucket, 'Prefix': prefix}

        while True:
            try:
                page = self.client.list_objects_v2(**kwargs)
            except (ClientError, BotoCoreError) as e:
                raise ProviderError(self.provider_name, f"list {prefix} failed: {e}") from e

            keys.extend(obj['Key'] for obj in page.get('Contents') or [])

            token = page.get('NextContinuationToken')
            if not page.get('IsTruncated') or not token:
                break
            kwargs['ContinuationToken'] = token

        return keys

    def delete_batch(self, keys: List[str]) -> int:
        """Delete keys in batches. Returns the number of keys deleted."""
        deleted = 0
        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            chunk = keys[start:start + DELETE_BATCH_SIZE]
            try:
                resp = self.client.delete_objects(
                    Bucket=self.bucket,
                    Delete={'Objects': [{'Key': k} for k in chunk], 'Quiet': True},
                )
            except (ClientError, BotoCoreError) as e:
                raise ProviderError(self.provider_name, f"delete of {len(chunk)} objects failed: {e}") from e

            errors = resp.get('Errors') or []
            if errors:
                failed = ', '.join(err.get('Key', '?') for err in errors[:5])
                raise ProviderError(self.provider_name, f"{len(errors)} objects not deleted: {failed}")
            deleted += len(chunk)

        logger.info(f"Deleted {deleted} objects from bucket {self.bucket}")
        return deleted
