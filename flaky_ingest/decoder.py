"""Gzip payload decoding: decompress, enforce the size ceiling, emit raw or JSON records."""

import gzip
import json
import logging
import zlib
from datetime import datetime, timezone

from flaky_ingest.sink import OutputSink

logger = logging.getLogger(__name__)

MAX_PAYLOAD_SIZE = 5 * 1024 * 1024

GZIP_MAGIC = b"\x1f\x8b"
GZIP_HEADER_SIZE = 10
DEFLATE_METHOD = 8

# Header flag bits (RFC 1952)
FHCRC = 0x02
FEXTRA = 0x04
FNAME = 0x08
FCOMMENT = 0x10
FRESERVED = 0xE0


class PayloadError(Exception):
    """Terminal failure for one request, mapped to a single HTTP status."""

    status = 500


class GzipHeaderError(PayloadError):
    status = 400


class DecompressionError(PayloadError):
    status = 500


class PayloadTooLarge(PayloadError):
    status = 413

    def __init__(self, size: int, limit: int):
        super().__init__(f"payload size {size} exceeds the maximum allowed size of {limit}")
        self.size = size
        self.limit = limit


class RecordDecodeError(PayloadError):
    status = 400

    def __init__(self, reason: str, body: bytes):
        super().__init__(reason)
        self.body = body


class _ReplayReader:
    """File-like reader that serves already-consumed header bytes before the rest of the body."""

    def __init__(self, head: bytes, stream):
        self._head = head
        self._stream = stream

    def read(self, size: int = -1) -> bytes:
        if not self._head:
            return self._stream.read(size)
        if size is None or size < 0:
            data, self._head = self._head + self._stream.read(), b""
            return data
        data, self._head = self._head[:size], self._head[size:]
        if len(data) < size:
            data += self._stream.read(size - len(data))
        return data


def _read_exact(stream, size: int, what: str) -> bytes:
    data = b""
    while len(data) < size:
        chunk = stream.read(size - len(data))
        if not chunk:
            raise GzipHeaderError(f"gzip header truncated in {what}")
        data += chunk
    return data


def _read_zero_terminated(stream, what: str) -> bytes:
    data = b""
    while True:
        byte = stream.read(1)
        if not byte:
            raise GzipHeaderError(f"gzip header truncated in {what}")
        data += byte
        if byte == b"\x00":
            return data


def open_gzip(stream) -> gzip.GzipFile:
    """Validate the whole gzip member header and return a streaming decompressor.

    The fixed part and any optional FEXTRA, FNAME, FCOMMENT and FHCRC fields
    are read here; a short or malformed header raises GzipHeaderError
    without reading any compressed data.
    """
    head = _read_exact(stream, GZIP_HEADER_SIZE, "fixed fields")
    if head[:2] != GZIP_MAGIC:
        raise GzipHeaderError("invalid gzip header magic")
    if head[2] != DEFLATE_METHOD:
        raise GzipHeaderError(f"unsupported gzip compression method {head[2]}")

    flags = head[3]
    if flags & FRESERVED:
        raise GzipHeaderError(f"reserved gzip header flags set: {flags:#04x}")
    if flags & FEXTRA:
        extra_len = _read_exact(stream, 2, "extra field length")
        head += extra_len
        head += _read_exact(stream, int.from_bytes(extra_len, "little"), "extra field")
    if flags & FNAME:
        head += _read_zero_terminated(stream, "file name")
    if flags & FCOMMENT:
        head += _read_zero_terminated(stream, "comment")
    if flags & FHCRC:
        head += _read_exact(stream, 2, "header checksum")

    return gzip.GzipFile(fileobj=_ReplayReader(head, stream), mode="rb")


def read_limited(reader, limit: int = MAX_PAYLOAD_SIZE) -> bytes:
    """Read at most limit + 1 decompressed bytes; more than limit is PayloadTooLarge."""
    try:
        data = reader.read(limit + 1)
    except (OSError, EOFError, zlib.error) as exc:
        raise DecompressionError(f"failed to read gzip request: {exc}") from exc
    if len(data) > limit:
        raise PayloadTooLarge(len(data), limit)
    return data


def _reject_constant(name: str):
    raise ValueError(f"invalid JSON value {name}")


def decode_records(data: bytes) -> list[dict]:
    """Decode a JSON array of objects. A JSON null decodes to no records."""
    try:
        payload = json.loads(data, parse_constant=_reject_constant)
    except (ValueError, RecursionError) as exc:
        raise RecordDecodeError(str(exc), data) from exc

    if payload is None:
        return []
    if not isinstance(payload, list):
        raise RecordDecodeError(
            f"expected a JSON array of objects, got {type(payload).__name__}", data
        )

    records = []
    for index, item in enumerate(payload):
        if item is None:
            item = {}
        elif not isinstance(item, dict):
            raise RecordDecodeError(
                f"element {index} is {type(item).__name__}, expected an object", data
            )
        records.append(item)
    return records


def render_record(record: dict) -> str:
    return json.dumps(record, separators=(",", ":"), ensure_ascii=False)


def ingest_timestamp(now: datetime | None = None) -> str:
    """Local ingestion time, ISO-8601 with microseconds; UTC is written as Z."""
    if now is None:
        now = datetime.now(timezone.utc).astimezone()
    stamp = now.isoformat(timespec="microseconds")
    if stamp.endswith("+00:00"):
        stamp = stamp[:-6] + "Z"
    return stamp


class PayloadDecoder:
    """Turns a gzip request body into sink writes.

    In raw mode the whole decompressed blob is one line; otherwise the body
    is a JSON array and every record becomes its own line, in array order.
    """

    def __init__(
        self,
        sink: OutputSink,
        parse_json: bool = True,
        show_timestamp: bool = False,
        max_payload_size: int = MAX_PAYLOAD_SIZE,
    ):
        self._sink = sink
        self._parse_json = parse_json
        self._show_timestamp = show_timestamp
        self._max_payload_size = max_payload_size

    def process(self, stream) -> int:
        """Decode one request body and return the number of lines emitted.

        Raises a PayloadError subclass on any failure; nothing is emitted then.
        """
        reader = open_gzip(stream)
        data = read_limited(reader, self._max_payload_size)

        prefix = ingest_timestamp() + ": " if self._show_timestamp else ""

        if not self._parse_json:
            self._sink.write(prefix.encode() + data + b"\n")
            return 1

        records = decode_records(data)
        for record in records:
            self._sink.write((prefix + render_record(record) + "\n").encode())
        return len(records)
