"""Metadata frame decoding and data frame size validation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

from ..errors import MalformedFrame, SizeMismatch
from .codec import Buffer, decode_uint

PAGE_SIZE = 65536
METADATA_FRAME_SIZE = 6

# Read request for the device log registers (0x00F3 .. 0x00F5).
POLL_REQUEST = bytes((0x02, 0x00, 0xF3, 0x00, 0xF5, 0x00))


@dataclass(frozen=True, slots=True)
class MetadataFrame:
    register_a: int
    register_b: int
    page_count: int

    @property
    def expected_data_length(self) -> int:
        return self.page_count * PAGE_SIZE


@dataclass(frozen=True, slots=True)
class FrameBatch:
    """A validated (metadata, data) pair collected during one poll cycle."""

    metadata: MetadataFrame
    data: bytes
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def page_count(self) -> int:
        return self.metadata.page_count


def decode_metadata(frame: Buffer) -> MetadataFrame:
    """Decode the three little-endian u16 fields of a metadata frame.

    The page count is device-reported and is not bounded here; see
    :func:`validate_data_frame`.
    """

    if len(frame) < METADATA_FRAME_SIZE:
        raise MalformedFrame(
            f"Metadata frame is {len(frame)} bytes, expected at least {METADATA_FRAME_SIZE}"
        )
    return MetadataFrame(
        register_a=decode_uint(frame, 0, 2),
        register_b=decode_uint(frame, 2, 2),
        page_count=decode_uint(frame, 4, 2),
    )


def validate_data_frame(metadata: MetadataFrame, data: Buffer, *, max_pages: int) -> None:
    if metadata.page_count > max_pages:
        raise SizeMismatch(
            f"Device reported {metadata.page_count} pages, limit is {max_pages}"
        )
    if len(data) != metadata.expected_data_length:
        raise SizeMismatch(
            f"Data frame is {len(data)} bytes, metadata declares "
            f"{metadata.page_count} pages ({metadata.expected_data_length} bytes)"
        )
