"""Vallox binary protocol: wire codec, frames and log records."""

from .codec import checksum_16, decode_int, decode_int16_le, decode_uint
from .frames import (
    METADATA_FRAME_SIZE,
    PAGE_SIZE,
    POLL_REQUEST,
    FrameBatch,
    MetadataFrame,
    decode_metadata,
    validate_data_frame,
)
from .records import (
    RECORD_SIZE,
    RECORDS_PER_PAGE,
    TERMINATOR,
    decode_record,
    extract_records,
    iter_records,
    kind_for_code,
)

__all__ = [
    "FrameBatch",
    "METADATA_FRAME_SIZE",
    "MetadataFrame",
    "PAGE_SIZE",
    "POLL_REQUEST",
    "RECORDS_PER_PAGE",
    "RECORD_SIZE",
    "TERMINATOR",
    "checksum_16",
    "decode_int",
    "decode_int16_le",
    "decode_metadata",
    "decode_record",
    "decode_uint",
    "extract_records",
    "iter_records",
    "kind_for_code",
    "validate_data_frame",
]
