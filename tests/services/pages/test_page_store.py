from __future__ import annotations

from pathlib import Path

from botocore.exceptions import ClientError
import pytest

from sitemaps.pages import LocalPageStore, S3PageStore, build_page_store


class _FakeS3Client:
    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.uploads: list[dict[str, object]] = []

    def get_object(self, *, Bucket: str, Key: str):  # type: ignore[no-untyped-def]
        if Key not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject")
        return {"Body": _Body(self.objects[Key])}

    def head_object(self, *, Bucket: str, Key: str):  # type: ignore[no-untyped-def]
        if Key == "sitemaps/forbidden.xml":
            raise ClientError({"Error": {"Code": "403", "Message": "denied"}}, "HeadObject")
        if Key not in self.objects:
            raise ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, "HeadObject")
        return {"ContentLength": len(self.objects[Key])}

    def upload_fileobj(self, fileobj, bucket, key, ExtraArgs=None):  # type: ignore[no-untyped-def]
        self.objects[key] = fileobj.read()
        self.uploads.append({"bucket": bucket, "key": key, "extra": ExtraArgs})

    def delete_object(self, *, Bucket: str, Key: str):  # type: ignore[no-untyped-def]
        self.objects.pop(Key, None)


class _Body:
    def __init__(self, data: bytes) -> None:
        self._data = data

    def read(self) -> bytes:
        return self._data


def test_local_store_round_trip(tmp_path: Path) -> None:
    store = LocalPageStore(tmp_path)
    assert store.read_bytes_if_exists("sitemaps/widget/p1.xml") is None
    assert store.size("sitemaps/widget/p1.xml") is None
    store.write_bytes("sitemaps/widget/p1.xml", b"<urlset/>")
    assert store.read_bytes_if_exists("sitemaps/widget/p1.xml") == b"<urlset/>"
    assert store.size("sitemaps/widget/p1.xml") == 9
    store.delete("sitemaps/widget/p1.xml")
    assert store.read_bytes_if_exists("sitemaps/widget/p1.xml") is None


def test_s3_store_prefixes_keys_and_maps_not_found() -> None:
    store = S3PageStore("bucket", "site", region_name="us-east-1")
    fake = _FakeS3Client()
    store._client = fake  # type: ignore[attr-defined]

    assert store.read_bytes_if_exists("sitemaps/widget/p1.xml.gz") is None
    location = store.write_bytes("sitemaps/widget/p1.xml.gz", b"\x1f\x8bdata")
    assert location == "s3://bucket/site/sitemaps/widget/p1.xml.gz"
    assert fake.uploads[0]["extra"] == {"ContentType": "application/xml", "ContentEncoding": "gzip"}
    assert store.read_bytes_if_exists("sitemaps/widget/p1.xml.gz") == b"\x1f\x8bdata"
    assert store.size("sitemaps/widget/p1.xml.gz") == 6
    assert store.size("sitemaps/widget/missing.xml") is None


def test_s3_store_propagates_other_errors() -> None:
    store = S3PageStore("bucket", region_name="us-east-1")
    store._client = _FakeS3Client()  # type: ignore[attr-defined]
    with pytest.raises(ClientError):
        store.size("sitemaps/forbidden.xml")


def test_build_page_store_selects_backend(tmp_path: Path) -> None:
    assert isinstance(build_page_store(str(tmp_path)), LocalPageStore)
    s3_store = build_page_store("s3://bucket/prefix", region_name="us-east-1")
    assert isinstance(s3_store, S3PageStore)
    assert s3_store.bucket == "bucket"
    assert s3_store.prefix == "prefix"
