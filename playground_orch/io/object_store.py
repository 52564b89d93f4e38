from __future__ import annotations

import logging
from typing import Any, BinaryIO, Union

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from playground_orch.config import StoreConfig
from playground_orch.errors import ObjectNotFound, ObjectStoreUnavailable

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


class ObjectStore:
    """
    Key/blob store on an S3-compatible bucket (AWS S3 or MinIO).

    Keys are flat strings; inputs live under the correlation key and results
    under "<key>_result".
    """

    def __init__(self, bucket: str, client: Any = None):
        """
        Args:
            bucket: Bucket holding inputs, results and housekeeping artifacts
            client: boto3 S3 client; use ObjectStore.from_config to build one
        """
        self.bucket = bucket
        self.s3 = client if client is not None else boto3.client("s3")

    @classmethod
    def from_config(cls, cfg: StoreConfig) -> "ObjectStore":
        client_kwargs = {
            "service_name": "s3",
            "region_name": cfg.region,
            # MinIO needs path-style addressing
            "config": Config(signature_version="s3v4", s3={"addressing_style": "path"}),
        }
        if cfg.endpoint_url:
            client_kwargs["endpoint_url"] = cfg.endpoint_url
        if cfg.access_key and cfg.secret_key:
            client_kwargs["aws_access_key_id"] = cfg.access_key
            client_kwargs["aws_secret_access_key"] = cfg.secret_key

        logger.info("Object store client created", extra={"bucket": cfg.bucket, "endpoint": cfg.endpoint_url})
        return cls(cfg.bucket, boto3.client(**client_kwargs))

    def ensure_bucket(self) -> None:
        """Create the bucket if it does not exist yet."""
        try:
            self.s3.head_bucket(Bucket=self.bucket)
            return
        except ClientError as e:
            if e.response["Error"]["Code"] not in _NOT_FOUND_CODES | {"NoSuchBucket"}:
                raise ObjectStoreUnavailable(f"Failed to check bucket {self.bucket}: {e}") from e
        except BotoCoreError as e:
            raise ObjectStoreUnavailable(f"Failed to check bucket {self.bucket}: {e}") from e

        try:
            self.s3.create_bucket(Bucket=self.bucket)
            logger.info(f"Created bucket {self.bucket}")
        except ClientError as e:
            if e.response["Error"]["Code"] in ("BucketAlreadyOwnedByYou", "BucketAlreadyExists"):
                return
            raise ObjectStoreUnavailable(f"Failed to create bucket {self.bucket}: {e}") from e

    def put(self, key: str, data: Union[bytes, BinaryIO]) -> None:
        body = data.read() if hasattr(data, "read") else data
        try:
            self.s3.put_object(Bucket=self.bucket, Key=key, Body=body)
        except (ClientError, BotoCoreError) as e:
            raise ObjectStoreUnavailable(f"Failed to put s3://{self.bucket}/{key}: {e}") from e

    def get(self, key: str) -> bytes:
        """
        Raises:
            ObjectNotFound: Nothing stored under key
            ObjectStoreUnavailable: Any other S3 / transport error
        """
        try:
            response = self.s3.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except ClientError as e:
            if e.response["Error"]["Code"] in _NOT_FOUND_CODES:
                raise ObjectNotFound(key) from e
            raise ObjectStoreUnavailable(f"Failed to get s3://{self.bucket}/{key}: {e}") from e
        except BotoCoreError as e:
            raise ObjectStoreUnavailable(f"Failed to get s3://{self.bucket}/{key}: {e}") from e

    def exists(self, key: str) -> bool:
        try:
            self.s3.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            if e.response["Error"]["Code"] in _NOT_FOUND_CODES:
                return False
            raise ObjectStoreUnavailable(f"Failed to check s3://{self.bucket}/{key}: {e}") from e
        except BotoCoreError as e:
            raise ObjectStoreUnavailable(f"Failed to check s3://{self.bucket}/{key}: {e}") from e

