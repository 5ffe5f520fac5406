from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urlparse, urlunparse

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from app.core.errors import DependencyFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class S3Config:
    # INTERNAL: reachable from containers (minio:9000 or host.docker.internal:9000)
    endpoint_url_internal: str
    # PUBLIC: reachable from the browser (usually http://localhost:9000)
    endpoint_url_public: str

    access_key: str
    secret_key: str
    region: str

    bucket_uploads: str
    bucket_exports: str
    presign_expires_s: int = 600


def parse_s3_uri(uri: str) -> tuple[str, str] | None:
    """
    s3://bucket/key -> (bucket, key); None for anything else.
    """
    if not uri or not uri.startswith("s3://"):
        return None
    _, _, rest = uri.partition("s3://")
    bucket, _, key = rest.partition("/")
    if not bucket or not key:
        return None
    return bucket, key


class S3Client:
    """BlobStore adapter for receipts, deliverable files and finance exports.

    Every remote call is made once; failures surface as DependencyFailure and
    the retry decision is left to the caller.
    """

    def __init__(self, cfg: S3Config) -> None:
        self.cfg = cfg
        self._client_internal = self._make_client(cfg.endpoint_url_internal)

    def _make_client(self, endpoint_url: str):
        # addressing_style=path is required for MinIO (/bucket/key)
        return boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=self.cfg.access_key,
            aws_secret_access_key=self.cfg.secret_key,
            region_name=self.cfg.region,
            config=BotoConfig(
                signature_version="s3v4",
                s3={"addressing_style": "path"},
                retries={"max_attempts": 1},
            ),
        )

    def _rewrite_to_public(self, presigned_url: str) -> str:
        """
        The signature covers path and query only when the host matches, so the
        URL is signed against the INTERNAL endpoint and then scheme+host:port
        are swapped for the PUBLIC endpoint.
        """
        u = urlparse(presigned_url)
        pub = urlparse(self.cfg.endpoint_url_public)

        scheme = pub.scheme or u.scheme
        netloc = pub.netloc or u.netloc

        return urlunparse((scheme, netloc, u.path, u.params, u.query, u.fragment))

    # ---------- Buckets ----------
    def ensure_bucket(self, bucket: str) -> None:
        try:
            self._client_internal.head_bucket(Bucket=bucket)
            return
        except ClientError:
            # MinIO answers 404/NoSuchBucket/NotFound (sometimes 400) for a missing bucket
            pass
        except BotoCoreError as e:
            logger.error("Blob store unreachable while checking bucket %s", bucket)
            raise DependencyFailure("Blob store is unavailable") from e

        try:
            self._client_internal.create_bucket(Bucket=bucket)
        except ClientError as e:
            # bucket may already exist (race)
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code not in ("BucketAlreadyOwnedByYou", "BucketAlreadyExists"):
                raise DependencyFailure("Blob store rejected bucket creation") from e
        except BotoCoreError as e:
            raise DependencyFailure("Blob store is unavailable") from e

    # ---------- PUT/HEAD ----------
    def put_bytes(
        self, *, bucket: str, key: str, data: bytes, content_type: str
    ) -> str:
        self.ensure_bucket(bucket)
        try:
            self._client_internal.put_object(
                Bucket=bucket,
                Key=key,
                Body=data,
                ContentType=content_type or "application/octet-stream",
            )
        except (ClientError, BotoCoreError) as e:
            logger.error("Blob store write failed for %s/%s", bucket, key)
            raise DependencyFailure("Failed to store file") from e
        return f"s3://{bucket}/{key}"

    def object_exists(self, bucket: str, key: str) -> bool:
        try:
            self._client_internal.head_object(Bucket=bucket, Key=key)
            return True
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in ("404", "NoSuchKey", "NotFound"):
                return False
            raise DependencyFailure("Blob store lookup failed") from e
        except BotoCoreError as e:
            raise DependencyFailure("Blob store is unavailable") from e

    # ---------- Presign ----------
    def presign_put(self, *, bucket: str, key: str, content_type: str) -> str:
        params: dict[str, Any] = {
            "Bucket": bucket,
            "Key": key,
            "ContentType": content_type or "application/octet-stream",
        }
        try:
            url = self._client_internal.generate_presigned_url(
                ClientMethod="put_object",
                Params=params,
                ExpiresIn=int(self.cfg.presign_expires_s),
            )
        except (ClientError, BotoCoreError) as e:
            raise DependencyFailure("Failed to presign upload") from e
        return self._rewrite_to_public(url)

    def presign_get(self, *, bucket: str, key: str) -> str:
        try:
            url = self._client_internal.generate_presigned_url(
                ClientMethod="get_object",
                Params={"Bucket": bucket, "Key": key},
                ExpiresIn=int(self.cfg.presign_expires_s),
            )
        except (ClientError, BotoCoreError) as e:
            raise DependencyFailure("Failed to presign download") from e
        return self._rewrite_to_public(url)

    def download_url(self, uri: str) -> Optional[str]:
        """
        Resolve a stored file reference to something a browser can open:
        s3:// references get a presigned GET, plain URLs pass through.
        """
        parsed = parse_s3_uri(uri)
        if parsed is None:
            return uri or None
        bucket, key = parsed
        return self.presign_get(bucket=bucket, key=key)
