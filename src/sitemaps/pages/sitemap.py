"""Bounded sitemap and sitemap-index documents (XML via ElementTree)."""

from __future__ import annotations

import gzip
import re
from typing import Any, Mapping
import xml.etree.ElementTree as ET

from sitemaps.errors import SitemapsError


SITEMAP_NS = "http://www.sitemaps.org/schemas/sitemap/0.9"
DEFAULT_LIMIT_COUNT = 50000
DEFAULT_LIMIT_BYTES = 50 * 1024 * 1024

_GZIP_MAGIC = b"\x1f\x8b"
_INVISIBLE_CHARS = re.compile(r"[\u0000-\u0008\u000b\u000c\u000e-\u001f\u007f-\u009f\u200b-\u200f\u2028-\u202f\u2060-\u206f\ufeff]")


class SitemapWriteWouldOverflow(SitemapsError):
    def __init__(self, filename: str, reason: str) -> None:
        super().__init__("SITEMAP_WRITE_WOULD_OVERFLOW", f"{filename}:{reason}")
        self.filename = filename
        self.reason = reason


class SitemapPageMalformed(SitemapsError):
    def __init__(self, filename: str, detail: str) -> None:
        super().__init__("SITEMAP_PAGE_MALFORMED", f"{filename}:{detail}")
        self.filename = filename


class _BoundedDocument:
    root_tag = ""
    entry_tag = ""
    # (item key, xml tag), the first pair is required
    fields: tuple[tuple[str, str], ...] = ()

    def __init__(
        self,
        filename_root: str,
        *,
        compress: bool = False,
        limit_count: int = DEFAULT_LIMIT_COUNT,
        limit_bytes: int = DEFAULT_LIMIT_BYTES,
    ) -> None:
        self.filename_root = filename_root
        self.compress = compress
        self.limit_count = limit_count
        self.limit_bytes = limit_bytes
        self._header = (
            '<?xml version="1.0" encoding="UTF-8"?>\n'
            f'<{self.root_tag} xmlns="{SITEMAP_NS}">\n'
        ).encode("utf-8")
        self._footer = f"</{self.root_tag}>\n".encode("utf-8")
        self._items: list[dict[str, Any]] = []
        self._entries: list[bytes] = []
        self._entry_bytes = 0
        self._ended = False

    @property
    def filename(self) -> str:
        return f"{self.filename_root}.xml.gz" if self.compress else f"{self.filename_root}.xml"

    @property
    def count(self) -> int:
        return len(self._items)

    @property
    def size_bytes(self) -> int:
        """Uncompressed size of the rendered document."""
        return len(self._header) + self._entry_bytes + len(self._footer)

    @property
    def full(self) -> bool:
        return self.count >= self.limit_count or self.size_bytes >= self.limit_bytes

    @property
    def items(self) -> list[dict[str, Any]]:
        return [dict(item) for item in self._items]

    def write(
        self,
        item: Mapping[str, Any],
        *,
        disregard_byte_limit: bool = False,
        disregard_count_limit: bool = False,
    ) -> None:
        if self._ended:
            raise RuntimeError(f"SITEMAP_DOCUMENT_ENDED:{self.filename}")
        key, _ = self.fields[0]
        if not item.get(key):
            raise ValueError(f"SITEMAP_ITEM_MISSING_{key.upper()}")
        entry = self._render(item)
        if not disregard_count_limit and self.count + 1 > self.limit_count:
            raise SitemapWriteWouldOverflow(self.filename, "count")
        if not disregard_byte_limit and self.size_bytes + len(entry) > self.limit_bytes:
            raise SitemapWriteWouldOverflow(self.filename, "bytes")
        self._items.append(dict(item))
        self._entries.append(entry)
        self._entry_bytes += len(entry)

    def end(self) -> None:
        self._ended = True

    def to_bytes(self) -> bytes:
        body = self._header + b"".join(self._entries) + self._footer
        if self.compress:
            return gzip.compress(body, mtime=0)
        return body

    @classmethod
    def from_bytes(
        cls,
        data: bytes,
        filename_root: str,
        *,
        compress: bool = False,
        limit_count: int = DEFAULT_LIMIT_COUNT,
        limit_bytes: int = DEFAULT_LIMIT_BYTES,
    ):
        document = cls(filename_root, compress=compress, limit_count=limit_count, limit_bytes=limit_bytes)
        try:
            if data[:2] == _GZIP_MAGIC:
                data = gzip.decompress(data)
            root = ET.fromstring(data)
        except (ET.ParseError, OSError, EOFError) as exc:
            raise SitemapPageMalformed(document.filename, str(exc)[:256]) from exc
        if _local_name(root.tag) != cls.root_tag:
            raise SitemapPageMalformed(document.filename, f"root={_local_name(root.tag)}")
        tag_to_key = {tag: key for key, tag in cls.fields}
        for element in root:
            if _local_name(element.tag) != cls.entry_tag:
                continue
            item: dict[str, Any] = {}
            for child in element:
                key = tag_to_key.get(_local_name(child.tag))
                if key is not None and child.text is not None:
                    item[key] = child.text.strip()
            if not item.get(cls.fields[0][0]):
                raise SitemapPageMalformed(document.filename, f"{cls.entry_tag} without {cls.fields[0][1]}")
            document.write(item, disregard_byte_limit=True, disregard_count_limit=True)
        return document

    def _render(self, item: Mapping[str, Any]) -> bytes:
        element = ET.Element(self.entry_tag)
        for key, tag in self.fields:
            value = item.get(key)
            if value is None or value == "":
                continue
            child = ET.SubElement(element, tag)
            child.text = str(value)
        return ET.tostring(element, encoding="unicode").encode("utf-8") + b"\n"


class SitemapPage(_BoundedDocument):
    root_tag = "urlset"
    entry_tag = "url"
    fields = (("url", "loc"), ("lastmod", "lastmod"), ("changefreq", "changefreq"), ("priority", "priority"))


class SitemapIndex(_BoundedDocument):
    root_tag = "sitemapindex"
    entry_tag = "sitemap"
    fields = (("url", "loc"), ("lastmod", "lastmod"))


def scrub_invisible_chars(value: Any) -> tuple[Any, int]:
    """Strip invisible characters from every string in a nested payload; returns (clean, scrub count)."""
    if isinstance(value, str):
        cleaned, count = _INVISIBLE_CHARS.subn("", value)
        return cleaned, 1 if count else 0
    if isinstance(value, Mapping):
        total = 0
        result: dict[str, Any] = {}
        for key, inner in value.items():
            result[key], scrubbed = scrub_invisible_chars(inner)
            total += scrubbed
        return result, total
    if isinstance(value, list):
        total = 0
        items = []
        for inner in value:
            cleaned, scrubbed = scrub_invisible_chars(inner)
            items.append(cleaned)
            total += scrubbed
        return items, total
    return value, 0


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1] if "}" in tag else tag
