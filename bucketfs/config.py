"""Configuration for bucket access.

Provides the ``S3FSConfig`` dataclass, the ``connect_fs`` factory, and the
helpers that turn a configuration into a boto3 S3 client.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import ProfileNotFound

logger = logging.getLogger(__name__)

#: Smallest part the object store accepts for a non-final multipart part.
MIN_PART_SIZE = 5 * 1024 * 1024


@dataclass
class S3FSConfig:
    """Configuration for an S3-backed filesystem.

    Attributes:
        bucket: Bucket name.
        prefix: Key prefix all paths live under ("" uses the bucket root).
        region: Region name, e.g. "us-east-1".
        endpoint_url: Custom service URL. Overrides the region endpoint.
        access_key: Access key id.
        secret_access_key: Secret access key.
        instance_role: Instance role name. Overrides the access key and
            secret; credentials come from the instance metadata service.
        profile: Named credentials profile to resolve keys from.
        make_public: Write objects with the public-read canned ACL.
        reduced_redundancy: Write objects with the reduced redundancy
            storage class.
        encrypted: Request AES256 server-side encryption on every write.
        part_size: Multipart part size in bytes.
        use_path_style: Address the bucket with path-style URLs.
    """

    bucket: str = ""
    prefix: str = ""
    region: str | None = None
    endpoint_url: str | None = None
    access_key: str | None = None
    secret_access_key: str | None = None
    instance_role: str | None = None
    profile: str | None = None
    make_public: bool = False
    reduced_redundancy: bool = False
    encrypted: bool = False
    part_size: int = MIN_PART_SIZE
    use_path_style: bool = False

    @property
    def key_prefix(self) -> str:
        """Prefix normalized to be empty or end with a single separator."""
        prefix = (self.prefix or "").strip("/")
        return prefix + "/" if prefix else ""

    @property
    def acl(self) -> str | None:
        return "public-read" if self.make_public else None

    @property
    def storage_class(self) -> str:
        return "REDUCED_REDUNDANCY" if self.reduced_redundancy else "STANDARD"

    @property
    def server_side_encryption(self) -> str | None:
        return "AES256" if self.encrypted else None

    def write_args(self) -> dict[str, str]:
        """Keyword arguments passed through to every PUT-type call."""
        args = {"StorageClass": self.storage_class}
        if self.acl:
            args["ACL"] = self.acl
        if self.server_side_encryption:
            args["ServerSideEncryption"] = self.server_side_encryption
        return args


def connect_fs(bucket: str = "", **kwargs: Any) -> S3FSConfig:
    """Configure bucket access.

    Args:
        bucket: Bucket name. Required.
        **kwargs: Any other ``S3FSConfig`` field.

    Returns:
        S3FSConfig for ``BucketFS``.

    Raises:
        ValueError: If arguments are unknown or inconsistent.

    Examples:
        >>> config = connect_fs(bucket="packages", prefix="feeds/nuget")
        >>> config.key_prefix
        'feeds/nuget/'
    """
    known = {f.name for f in fields(S3FSConfig)}
    unexpected = sorted(set(kwargs) - known)
    if unexpected:
        raise ValueError(f"Unexpected arguments for S3 fs: {unexpected}")

    if not bucket:
        raise ValueError("S3 filesystem requires 'bucket' parameter")

    config = S3FSConfig(bucket=bucket, **kwargs)

    if config.part_size < 1:
        raise ValueError(f"part_size must be positive, got {config.part_size}")
    if bool(config.access_key) != bool(config.secret_access_key):
        raise ValueError("'access_key' and 'secret_access_key' must be given together")

    return config


def resolve_credentials(profile: str) -> tuple[str, str, str | None]:
    """Resolve the access key, secret and session token of a named profile.

    Raises:
        LookupError: If the profile yields no credentials.
    """
    try:
        credentials = boto3.Session(profile_name=profile).get_credentials()
    except ProfileNotFound as e:
        raise LookupError(f"No credentials found for profile: {profile}") from e
    if credentials is None:
        raise LookupError(f"No credentials found for profile: {profile}")
    frozen = credentials.get_frozen_credentials()
    return frozen.access_key, frozen.secret_key, frozen.token


def create_client(config: S3FSConfig) -> Any:
    """Build a boto3 S3 client for ``config``.

    An instance role wins over explicit keys, and explicit keys win over a
    named profile. A custom endpoint overrides the region.
    """
    boto_config = Config(
        s3={"addressing_style": "path" if config.use_path_style else "auto"},
    )
    kwargs: dict[str, Any] = {"config": boto_config}

    if config.endpoint_url:
        kwargs["endpoint_url"] = config.endpoint_url
    elif config.region:
        kwargs["region_name"] = config.region

    if config.instance_role:
        # The default chain falls through to the instance metadata service.
        session = boto3.Session()
    elif config.access_key:
        session = boto3.Session(
            aws_access_key_id=config.access_key,
            aws_secret_access_key=config.secret_access_key,
        )
    elif config.profile:
        access_key, secret_key, token = resolve_credentials(config.profile)
        session = boto3.Session(
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            aws_session_token=token,
        )
    else:
        session = boto3.Session()

    logger.info(f"Creating S3 client for bucket {config.bucket}")
    return session.client("s3", **kwargs)
