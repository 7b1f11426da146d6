# checkin/object_store.py
"""
Thin wrapper around the R2 (S3 API) bucket operations the app needs:

  list(container, prefix)              -> file names directly under prefix
  public_url(container, path)          -> public CDN URL
  upload(container, path, data, type)  -> put one object

boto3/botocore errors are not translated; callers report them as-is.
"""
from __future__ import annotations

import logging
from typing import Any, Mapping, Optional
from urllib.parse import quote

import boto3

log = logging.getLogger(__name__)

DEFAULT_CACHE_CONTROL = "public, max-age=31536000, immutable"


class ObjectStoreError(Exception):
    """Raised when the object store is used without being configured."""


class R2ObjectStore:
    def __init__(
        self,
        *,
        endpoint: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        region: str = "auto",
        public_base: str | None = None,
        client: Any = None,
    ) -> None:
        self.public_base = (public_base or "").rstrip("/")
        if client is None and endpoint and access_key_id and secret_access_key:
            client = boto3.client(
                "s3",
                region_name=region,
                endpoint_url=endpoint,
                aws_access_key_id=access_key_id,
                aws_secret_access_key=secret_access_key,
            )
        self._client = client

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "R2ObjectStore":
        store = cls(
            endpoint=config.get("R2_ENDPOINT"),
            access_key_id=config.get("R2_ACCESS_KEY_ID"),
            secret_access_key=config.get("R2_SECRET_ACCESS_KEY"),
            region=config.get("R2_REGION") or "auto",
            public_base=config.get("R2_PUBLIC_BASE"),
        )
        if not store.enabled:
            log.warning("R2 is not configured; lesson listing and uploads are disabled.")
        return store

    @property
    def enabled(self) -> bool:
        return self._client is not None

    def _require_client(self):
        if self._client is None:
            raise ObjectStoreError("object store is not configured (R2_ENDPOINT / R2 keys missing)")
        return self._client

    def list(self, container: str, prefix: str = "", *, limit: int = 1000) -> list[str]:
        """Names directly under `prefix` (no recursion), with the prefix stripped."""
        client = self._require_client()
        paginator = client.get_paginator("list_objects_v2")
        pages = paginator.paginate(
            Bucket=container,
            Prefix=prefix,
            Delimiter="/",
            PaginationConfig={"MaxItems": limit},
        )
        names: list[str] = []
        for page in pages:
            for obj in page.get("Contents") or []:
                name = obj["Key"][len(prefix):]
                if name:
                    names.append(name)
        log.debug("Listed %d objects in %s/%s", len(names), container, prefix)
        return names

    def public_url(self, container: str, path: str) -> str:
        if not self.public_base:
            raise ObjectStoreError("R2_PUBLIC_BASE is not set; cannot build public URLs")
        key = quote(path.lstrip("/"), safe="/")
        return f"{self.public_base}/{container}/{key}"

    def upload(
        self,
        container: str,
        path: str,
        data: bytes,
        content_type: str,
        *,
        cache_control: Optional[str] = None,
    ) -> None:
        client = self._require_client()
        client.put_object(
            Bucket=container,
            Key=path,
            Body=data,
            ContentType=content_type or "application/octet-stream",
            CacheControl=cache_control or DEFAULT_CACHE_CONTROL,
        )
        log.info("Uploaded %s/%s (%d bytes, %s)", container, path, len(data), content_type)
