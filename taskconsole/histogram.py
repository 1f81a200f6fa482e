"""HDR histograms of durations and their V2 wire encoding."""

from __future__ import annotations

import math
import struct
import zlib
from dataclasses import dataclass
from typing import Optional

_V2_COOKIE = 0x1C849303
_V2_COMPRESSED_COOKIE = 0x1C849304
_HEADER = struct.Struct(">IIIIQQd")
_U64_MAX = (1 << 64) - 1


class HistogramError(ValueError):
    """Raised for invalid histogram parameters or undecodable data."""


class Histogram:
    """A high-dynamic-range histogram of non-negative integer values."""

    def __init__(self, lowest: int = 1, highest: int = (1 << 63) - 1, sigfig: int = 3) -> None:
        if lowest < 1:
            raise HistogramError("lowest discernible value must be >= 1")
        if not 0 <= sigfig <= 5:
            raise HistogramError("significant figures must be between 0 and 5")
        if highest < 2 * lowest:
            raise HistogramError("highest trackable value must be >= 2 * lowest")
        self.lowest = lowest
        self.highest = highest
        self.sigfig = sigfig

        largest_single_unit = 2 * 10**sigfig
        sub_bucket_count_magnitude = (largest_single_unit - 1).bit_length()
        self._half_mag = max(sub_bucket_count_magnitude, 1) - 1
        self._unit_mag = lowest.bit_length() - 1
        if self._unit_mag + self._half_mag + 1 > 63:
            raise HistogramError("cannot represent sigfig worth of values beyond lowest")
        self._sub_bucket_count = 1 << (self._half_mag + 1)
        self._half_count = self._sub_bucket_count // 2
        self._sub_bucket_mask = (self._sub_bucket_count - 1) << self._unit_mag
        self._lz_base = 64 - self._unit_mag - self._half_mag - 1
        bucket_count = self._buckets_needed(highest)
        self._counts = [0] * ((bucket_count + 1) * self._half_count)
        self._total = 0

    def _buckets_needed(self, value: int) -> int:
        smallest_untrackable = self._sub_bucket_count << self._unit_mag
        buckets = 1
        while smallest_untrackable <= value:
            if smallest_untrackable > _U64_MAX // 2:
                return buckets + 1
            smallest_untrackable <<= 1
            buckets += 1
        return buckets

    def _bucket_index(self, value: int) -> int:
        leading_zeros = 64 - (value | self._sub_bucket_mask).bit_length()
        return self._lz_base - leading_zeros

    def _index_for(self, value: int) -> int:
        bucket = self._bucket_index(value)
        sub_bucket = value >> (bucket + self._unit_mag)
        return ((bucket + 1) << self._half_mag) + (sub_bucket - self._half_count)

    def _value_for(self, index: int) -> int:
        bucket = (index >> self._half_mag) - 1
        sub_bucket = (index & (self._half_count - 1)) + self._half_count
        if bucket < 0:
            sub_bucket -= self._half_count
            bucket = 0
        return sub_bucket << (bucket + self._unit_mag)

    def _lowest_equivalent(self, value: int) -> int:
        bucket = self._bucket_index(value)
        sub_bucket = value >> (bucket + self._unit_mag)
        return sub_bucket << (bucket + self._unit_mag)

    def _equivalent_range(self, value: int) -> int:
        bucket = self._bucket_index(value)
        sub_bucket = value >> (bucket + self._unit_mag)
        if sub_bucket >= self._sub_bucket_count:
            bucket += 1
        return 1 << (self._unit_mag + bucket)

    def _highest_equivalent(self, value: int) -> int:
        return self._lowest_equivalent(value) + self._equivalent_range(value) - 1

    def record(self, value: int, count: int = 1) -> None:
        """Record ``value`` ``count`` times."""
        if value < 0 or value > _U64_MAX:
            raise HistogramError(f"value {value} out of range")
        if count < 0:
            raise HistogramError("count must be non-negative")
        index = self._index_for(value)
        if index >= len(self._counts):
            raise HistogramError(f"value {value} exceeds the trackable range")
        self._counts[index] += count
        self._total += count

    @property
    def total_count(self) -> int:
        return self._total

    @property
    def min(self) -> int:
        index = next((i for i, count in enumerate(self._counts) if count), None)
        if index is None:
            return 0
        return self._lowest_equivalent(self._value_for(index))

    @property
    def max(self) -> int:
        index = self._last_nonzero()
        if index < 0:
            return 0
        return self._highest_equivalent(self._value_for(index))

    def _last_nonzero(self) -> int:
        for index in range(len(self._counts) - 1, -1, -1):
            if self._counts[index]:
                return index
        return -1

    def value_at_quantile(self, quantile: float) -> int:
        """Return the value below which ``quantile`` of recorded values fall."""
        quantile = min(max(quantile, 0.0), 1.0)
        if self._total == 0:
            return 0
        target = max(math.ceil(quantile * self._total), 1)
        running = 0
        for index, count in enumerate(self._counts):
            running += count
            if running >= target:
                value = self._value_for(index)
                if quantile == 0.0:
                    return self._lowest_equivalent(value)
                return self._highest_equivalent(value)
        return 0

    def serialize(self) -> bytes:
        """Encode the histogram in the uncompressed V2 format."""
        payload = bytearray()
        end = self._last_nonzero() + 1
        index = 0
        while index < end:
            count = self._counts[index]
            if count:
                _write_varint(payload, _zigzag_encode(count))
                index += 1
                continue
            run_end = index
            while run_end < end and self._counts[run_end] == 0:
                run_end += 1
            run = run_end - index
            _write_varint(payload, _zigzag_encode(-run if run > 1 else 0))
            index = run_end
        header = _HEADER.pack(
            _V2_COOKIE, len(payload), 0, self.sigfig, self.lowest, self.highest, 1.0
        )
        return header + bytes(payload)


def _zigzag_encode(value: int) -> int:
    return value << 1 if value >= 0 else ((-value) << 1) - 1


def _zigzag_decode(value: int) -> int:
    return (value >> 1) ^ -(value & 1)


def _write_varint(out: bytearray, value: int) -> None:
    for _ in range(8):
        if value < 0x80:
            out.append(value)
            return
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    out.append(value & 0xFF)


def _read_varint(buf: bytes, pos: int) -> tuple[int, int]:
    result = 0
    for shift in range(0, 56, 7):
        if pos >= len(buf):
            raise HistogramError("truncated varint")
        byte = buf[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result, pos
    if pos >= len(buf):
        raise HistogramError("truncated varint")
    result |= buf[pos] << 56
    return result, pos + 1


def _decode_v2(data: bytes) -> Histogram:
    if len(data) < _HEADER.size:
        raise HistogramError("histogram header is truncated")
    cookie, payload_len, offset, sigfig, lowest, highest, _ratio = _HEADER.unpack_from(data)
    if cookie != _V2_COOKIE:
        raise HistogramError(f"unknown histogram cookie {cookie:#x}")
    if offset != 0:
        raise HistogramError("normalizing index offsets are not supported")
    payload = data[_HEADER.size:_HEADER.size + payload_len]
    if len(payload) != payload_len:
        raise HistogramError("histogram payload is truncated")
    hist = Histogram(lowest, highest, sigfig)
    index = 0
    pos = 0
    while pos < len(payload):
        raw, pos = _read_varint(payload, pos)
        count = _zigzag_decode(raw)
        if count < 0:
            index += -count
            continue
        if index >= len(hist._counts):
            raise HistogramError("encoded count index exceeds histogram range")
        hist._counts[index] = count
        hist._total += count
        index += 1
    return hist


def _decode(data: bytes) -> Histogram:
    if len(data) < 8:
        raise HistogramError("histogram data is truncated")
    (cookie,) = struct.unpack_from(">I", data)
    if cookie != _V2_COMPRESSED_COOKIE:
        return _decode_v2(data)
    (length,) = struct.unpack_from(">I", data, 4)
    body = data[8:8 + length]
    if len(body) != length:
        raise HistogramError("compressed histogram is truncated")
    try:
        inner = zlib.decompress(body)
    except zlib.error as exc:
        raise HistogramError(f"cannot decompress histogram: {exc}") from exc
    return _decode_v2(inner)


def deserialize_histogram(data: bytes) -> Optional[Histogram]:
    """Decode a V2 (optionally compressed) histogram, or ``None`` if invalid."""
    try:
        return _decode(bytes(data))
    except HistogramError:
        return None


@dataclass
class DurationHistogram:
    """A histogram of nanosecond durations with outlier information."""

    histogram: Histogram
    high_outliers: int = 0
    highest_outlier: Optional[int] = None

    @staticmethod
    def from_poll_durations(proto) -> Optional["DurationHistogram"]:
        """Build from either raw legacy histogram bytes or a histogram message."""
        if isinstance(proto, (bytes, bytearray, memoryview)):
            histogram = deserialize_histogram(proto)
            if histogram is None:
                return None
            return DurationHistogram(histogram)
        return DurationHistogram.from_proto(proto)

    @staticmethod
    def from_proto(proto) -> Optional["DurationHistogram"]:
        """Build from a message with ``raw_histogram``, ``high_outliers`` and ``highest_outlier``."""
        histogram = deserialize_histogram(proto.raw_histogram)
        if histogram is None:
            return None
        return DurationHistogram(histogram, proto.high_outliers, proto.highest_outlier)