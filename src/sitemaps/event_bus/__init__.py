"""Stream decoding and publishing."""

from pathlib import Path

from sitemaps.config import SitemapsConfig

from .kinesis import KinesisStreamPublisher, build_kinesis_publisher
from .publisher import FileStreamPublisher, StreamEntry, StreamPublisher
from .records import DecodedBatch, StreamRecord, decode_stream_records, is_kinesis_event, parse_shard_id
from .stream_writer import StreamWriter


def build_stream_publisher(config: SitemapsConfig) -> StreamPublisher:
    if config.stream_kind == "file":
        return FileStreamPublisher(Path(config.stream_root))
    return build_kinesis_publisher(region=config.region, endpoint_url=config.endpoint_url)


__all__ = [
    "DecodedBatch",
    "FileStreamPublisher",
    "KinesisStreamPublisher",
    "StreamEntry",
    "StreamPublisher",
    "StreamRecord",
    "StreamWriter",
    "build_kinesis_publisher",
    "build_stream_publisher",
    "decode_stream_records",
    "is_kinesis_event",
    "parse_shard_id",
]
