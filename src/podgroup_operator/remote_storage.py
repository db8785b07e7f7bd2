"""
Remote storage clients - list and fetch application packages.

Providers register a factory under a provider name. Callers only use the
RemoteStorageClient interface; the bootstrap image and command let a replica
sync packages from the provider in an init container before it starts.
"""

import logging
import os
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .errors import ConfigurationError, NotFoundError, TransientError

logger = logging.getLogger(__name__)


@dataclass
class PackageEntry:
    """One package object in remote storage."""

    key: str
    etag: str = ""
    size: int = 0
    last_modified: Optional[datetime] = None


class RemoteStorageClient(ABC):
    """Capability for enumerating and fetching packages from an object store."""

    @abstractmethod
    def list_packages(self, prefix: Optional[str] = None) -> List[PackageEntry]:
        """List packages one level below prefix."""
        pass

    @abstractmethod
    def download(self, remote_key: str, local_path: str) -> None:
        """Download remote_key to local_path."""
        pass

    @abstractmethod
    def get_bootstrap_image(self) -> str:
        """Image of the init container that materializes packages."""
        pass

    @abstractmethod
    def get_bootstrap_command(
        self, endpoint: str, bucket: str, path: str, destination: str
    ) -> List[str]:
        """Arguments for the init container syncing bucket/path into destination."""
        pass


# Provider name -> factory(**settings) -> RemoteStorageClient
STORAGE_PROVIDERS: Dict[str, Callable[..., RemoteStorageClient]] = {}


def register_provider(name: str, factory: Callable[..., RemoteStorageClient]) -> None:
    """Register a storage provider factory."""
    if name in STORAGE_PROVIDERS:
        logger.warning(f"Overwriting existing storage provider: {name}")
    STORAGE_PROVIDERS[name] = factory


def get_storage_client(provider: str, **settings) -> RemoteStorageClient:
    """Build a client for a registered provider."""
    try:
        factory = STORAGE_PROVIDERS[provider]
    except KeyError:
        raise ConfigurationError(
            f"Unknown storage provider '{provider}'. "
            f"Registered: {', '.join(sorted(STORAGE_PROVIDERS)) or 'none'}"
        )
    return factory(**settings)


# Extracts the region from an AWS S3 endpoint
REGION_PATTERN = re.compile(r".*.s3[-.](?P<region>.*)\.amazonaws\.com")


def get_region(endpoint):
    """Region encoded in an AWS S3 endpoint, or None."""
    match = REGION_PATTERN.match(endpoint or "")
    return match.group("region") if match else None


class AWSS3Client(RemoteStorageClient):
    """Remote storage client for AWS S3."""

    MAX_KEYS = 4000

    def __init__(
        self,
        bucket,
        prefix="",
        endpoint="",
        region=None,
        access_key_id=None,
        secret_access_key=None,
        client=None,
    ):
        self.bucket = bucket
        self.prefix = prefix
        self.endpoint = endpoint
        self.region = region or get_region(endpoint)
        if client is None:
            client = boto3.client(
                "s3",
                region_name=self.region,
                endpoint_url=endpoint or None,
                aws_access_key_id=access_key_id or os.getenv("AWS_ACCESS_KEY_ID"),
                aws_secret_access_key=secret_access_key or os.getenv("AWS_SECRET_ACCESS_KEY"),
            )
        self.client = client

    def list_packages(self, prefix=None):
        prefix = self.prefix if prefix is None else prefix
        logger.info(f"Listing packages in s3://{self.bucket}/{prefix}")
        try:
            resp = self.client.list_objects_v2(
                Bucket=self.bucket,
                Prefix=prefix,
                StartAfter=prefix,  # exclude the directory itself
                MaxKeys=self.MAX_KEYS,
                Delimiter="/",  # one level only
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Unable to list bucket {self.bucket}: {e}")
            raise TransientError(f"Listing s3://{self.bucket}/{prefix} failed: {e}")

        contents = resp.get("Contents")
        if not contents:
            raise NotFoundError(f"Empty objects list in bucket {self.bucket}/{prefix}")

        return [
            PackageEntry(
                key=item["Key"],
                etag=item.get("ETag", "").strip('"'),
                size=item.get("Size", 0),
                last_modified=item.get("LastModified"),
            )
            for item in contents
        ]

    def download(self, remote_key, local_path):
        try:
            self.client.download_file(self.bucket, remote_key, local_path)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey"):
                raise NotFoundError(f"s3://{self.bucket}/{remote_key} does not exist")
            logger.error(f"Unable to download {remote_key}: {e}")
            raise TransientError(f"Download of s3://{self.bucket}/{remote_key} failed: {e}")
        except BotoCoreError as e:
            logger.error(f"Unable to download {remote_key}: {e}")
            raise TransientError(f"Download of s3://{self.bucket}/{remote_key} failed: {e}")
        logger.info(f"Downloaded s3://{self.bucket}/{remote_key} to {local_path}")

    def get_bootstrap_image(self):
        return "amazon/aws-cli"

    def get_bootstrap_command(self, endpoint, bucket, path, destination):
        source = "/".join(p.strip("/") for p in (bucket, path) if p.strip("/")) + "/"
        target = destination.rstrip("/") + "/"
        command = ["s3", "sync", f"s3://{source}", target]
        if endpoint:
            command.insert(0, f"--endpoint-url={endpoint}")
        return command


register_provider("aws", AWSS3Client)
