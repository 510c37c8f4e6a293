"""Blob storage for sitemap pages (local directory + S3-compatible)."""

from __future__ import annotations

import io
import logging
import os
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import urlparse


logger = logging.getLogger("sitemaps.pages.store")

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


class PageStore(Protocol):
    def read_bytes_if_exists(self, key: str) -> bytes | None:
        ...

    def write_bytes(self, key: str, data: bytes, *, content_type: str = "application/xml") -> str:
        ...

    def size(self, key: str) -> int | None:
        ...

    def delete(self, key: str) -> None:
        ...


class LocalPageStore:
    def __init__(self, root: Path) -> None:
        self.root = root

    def _full_path(self, key: str) -> Path:
        return self.root / key.lstrip("/")

    def read_bytes_if_exists(self, key: str) -> bytes | None:
        path = self._full_path(key)
        if not path.exists():
            return None
        return path.read_bytes()

    def write_bytes(self, key: str, data: bytes, *, content_type: str = "application/xml") -> str:
        path = self._full_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        tmp_path.write_bytes(data)
        os.replace(tmp_path, path)
        return str(path)

    def size(self, key: str) -> int | None:
        path = self._full_path(key)
        if not path.exists():
            return None
        return path.stat().st_size

    def delete(self, key: str) -> None:
        path = self._full_path(key)
        if path.exists():
            path.unlink()


class S3PageStore:
    def __init__(
        self,
        bucket: str,
        prefix: str = "",
        *,
        endpoint_url: str | None = None,
        region_name: str | None = None,
        path_style: bool | None = None,
    ) -> None:
        import boto3
        from botocore.config import Config

        self.bucket = bucket
        self.prefix = prefix.strip("/")
        client_kwargs: dict[str, Any] = {"endpoint_url": endpoint_url, "region_name": region_name}
        if path_style:
            client_kwargs["config"] = Config(s3={"addressing_style": "path"})
        self._client = boto3.client("s3", **client_kwargs)

    def _key(self, key: str) -> str:
        relative = key.lstrip("/")
        if not self.prefix:
            return relative
        return f"{self.prefix}/{relative}"

    def read_bytes_if_exists(self, key: str) -> bytes | None:
        from botocore.exceptions import ClientError

        s3_key = self._key(key)
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=s3_key)
        except ClientError as exc:
            if _error_code(exc) in _NOT_FOUND_CODES:
                return None
            raise
        return response["Body"].read()

    def write_bytes(self, key: str, data: bytes, *, content_type: str = "application/xml") -> str:
        s3_key = self._key(key)
        extra_args = {"ContentType": content_type}
        if key.endswith(".gz"):
            extra_args["ContentEncoding"] = "gzip"
        # upload_fileobj switches to multipart for large pages
        self._client.upload_fileobj(io.BytesIO(data), self.bucket, s3_key, ExtraArgs=extra_args)
        logger.info("Page store wrote bucket=%s key=%s bytes=%s", self.bucket, s3_key, len(data))
        return f"s3://{self.bucket}/{s3_key}"

    def size(self, key: str) -> int | None:
        from botocore.exceptions import ClientError

        try:
            response = self._client.head_object(Bucket=self.bucket, Key=self._key(key))
        except ClientError as exc:
            if _error_code(exc) in _NOT_FOUND_CODES:
                return None
            raise
        return int(response.get("ContentLength") or 0)

    def delete(self, key: str) -> None:
        self._client.delete_object(Bucket=self.bucket, Key=self._key(key))


def build_page_store(
    root: str,
    *,
    endpoint_url: str | None = None,
    region_name: str | None = None,
    path_style: bool | None = None,
) -> PageStore:
    if root.startswith("s3://"):
        parsed = urlparse(root)
        bucket = parsed.netloc
        prefix = parsed.path.lstrip("/")
        if not bucket:
            raise ValueError("S3 page_store_root missing bucket")
        return S3PageStore(
            bucket=bucket,
            prefix=prefix,
            endpoint_url=endpoint_url,
            region_name=region_name,
            path_style=path_style if path_style is not None else bool(endpoint_url),
        )
    return LocalPageStore(Path(root))


def _error_code(exc: Exception) -> str:
    response = getattr(exc, "response", None) or {}
    return str((response.get("Error") or {}).get("Code") or "")
