from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Optional, Tuple
from uuid import uuid4

import boto3
from botocore.exceptions import ClientError
from cryptography.fernet import Fernet, InvalidToken

from .models import KeeperStats


class OptimisticLockError(Exception):
    """Raised when an ETag precondition fails during a conditional write."""


def _to_fernet(key: str | bytes) -> Fernet:
    """Build a Fernet from a URL-safe base64 32-byte key (str or bytes)."""
    return Fernet(key.encode("utf-8") if isinstance(key, str) else key)


def _dump_stats_json(stats: KeeperStats) -> bytes:
    return json.dumps(stats.model_dump(), separators=(",", ":"), sort_keys=True).encode("utf-8")


def _load_stats_json(data: bytes) -> KeeperStats:
    return KeeperStats.model_validate(json.loads(data.decode("utf-8")))


@dataclass
class S3ObjectRef:
    bucket: str
    key: str


class S3StatsStore:
    """
    S3-backed persistence for `KeeperStats`, encrypted at rest with Fernet.

    - `read()` returns `(stats, etag)`; a missing object yields
      `(KeeperStats.empty(), None)`.
    - `write(stats, if_match=None)` returns the new ETag. With `if_match`, the
      write goes to a temporary key and is copied over the destination with an
      If-Match precondition, so a concurrent writer raises OptimisticLockError.
    """

    def __init__(
        self,
        *,
        s3: Optional[object] = None,
        bucket: str,
        key: str,
        fernet_key: str | bytes,
        region_name: Optional[str] = None,
    ) -> None:
        self._s3 = s3 or boto3.client("s3", region_name=region_name)
        self._obj = S3ObjectRef(bucket=bucket, key=key)
        self._fernet = _to_fernet(fernet_key)

    @property
    def location(self) -> str:
        return f"s3://{self._obj.bucket}/{self._obj.key}"

    def read(self) -> Tuple[KeeperStats, Optional[str]]:
        """Read and decrypt the stats object.

        Raises ValueError on a bad token or invalid JSON, ClientError for
        other S3 failures.
        """
        try:
            resp = self._s3.get_object(Bucket=self._obj.bucket, Key=self._obj.key)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("NoSuchKey", "404"):
                return (KeeperStats.empty(), None)
            raise

        body = resp["Body"].read()
        etag = resp.get("ETag")
        try:
            decrypted = self._fernet.decrypt(body)
        except InvalidToken as ex:
            raise ValueError("Failed to decrypt keeper stats: invalid Fernet token") from ex
        try:
            stats = _load_stats_json(decrypted)
        except Exception as ex:
            raise ValueError("Failed to parse decrypted keeper stats JSON") from ex
        return (stats, etag)

    def write(self, stats: KeeperStats, *, if_match: Optional[str] = None) -> str:
        ciphertext = self._fernet.encrypt(_dump_stats_json(stats))

        if if_match is None:
            resp = self._s3.put_object(
                Bucket=self._obj.bucket,
                Key=self._obj.key,
                Body=ciphertext,
                ContentType="application/octet-stream",
            )
            return str(resp.get("ETag"))

        # PutObject has no If-Match; stage under a temp key and copy conditionally
        temp_key = f"{self._obj.key}.tmp-{uuid4().hex}"
        self._s3.put_object(
            Bucket=self._obj.bucket,
            Key=temp_key,
            Body=ciphertext,
            ContentType="application/octet-stream",
        )
        try:
            resp = self._s3.copy_object(
                Bucket=self._obj.bucket,
                Key=self._obj.key,
                CopySource={"Bucket": self._obj.bucket, "Key": temp_key},
                IfMatch=if_match,
                MetadataDirective="COPY",
            )
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("PreconditionFailed", "412"):
                raise OptimisticLockError(f"ETag mismatch for {self.location}") from e
            raise
        finally:
            try:
                self._s3.delete_object(Bucket=self._obj.bucket, Key=temp_key)
            except ClientError:
                pass

        return str(resp.get("ETag"))


__all__ = ["OptimisticLockError", "S3StatsStore"]
