"""Codec-aware splitting of media frames into clear and encrypted sections."""

from __future__ import annotations

import enum
from dataclasses import dataclass

__all__ = [
    "H26X_NALU_LONG_START_CODE",
    "Codec",
    "MalformedFrameError",
    "UnencryptedRange",
    "FrameSplit",
    "bytes_covering_h264_pps",
    "find_next_h26x_nalu",
    "process_frame_opus",
    "process_frame_vp8",
    "process_frame_vp9",
    "process_frame_h264",
    "process_frame_h265",
    "process_frame_av1",
    "validate_encrypted_frame",
]

H26X_NALU_LONG_START_CODE = b"\x00\x00\x00\x01"
_H26X_NALU_SHORT_START_SEQUENCE_SIZE = 3

_EMULATION_PREVENTION_BYTE = 0x03

_VP8_KEY_FRAME_UNENCRYPTED_BYTES = 10
_VP8_DELTA_FRAME_UNENCRYPTED_BYTES = 1

_H264_NAL_HEADER_TYPE_MASK = 0x1F
_H264_NAL_TYPE_SLICE = 1
_H264_NAL_TYPE_IDR = 5
_H264_NAL_UNIT_HEADER_SIZE = 1

_H265_NAL_HEADER_TYPE_MASK = 0x7E
_H265_NAL_TYPE_VCL_CUTOFF = 32
_H265_NAL_UNIT_HEADER_SIZE = 2

_AV1_OBU_HAS_EXTENSION_MASK = 0b0000_0100
_AV1_OBU_HAS_SIZE_MASK = 0b0000_0010
_AV1_OBU_TYPE_MASK = 0b0111_1000
_AV1_DROPPED_OBU_TYPES = frozenset({2, 8, 15})  # temporal delimiter, tile list, padding
_AV1_OBU_EXTENSION_SIZE_BYTES = 1

_LEB128_MAX_SIZE = 10
_U64 = 0xFFFFFFFFFFFFFFFF


class Codec(enum.Enum):
    UNKNOWN = "unknown"
    OPUS = "opus"
    VP8 = "vp8"
    VP9 = "vp9"
    H264 = "h264"
    H265 = "h265"
    AV1 = "av1"


class MalformedFrameError(ValueError):
    """Raised when a frame cannot be parsed for its codec."""


@dataclass(frozen=True)
class UnencryptedRange:
    """A run of clear bytes at an offset in the rebuilt frame."""

    offset: int
    size: int

    @property
    def end(self) -> int:
        return self.offset + self.size


class FrameSplit:
    """Collects the clear and to-be-encrypted parts of a frame in order."""

    def __init__(self, codec: Codec = Codec.UNKNOWN) -> None:
        self.codec = codec
        self._unencrypted = bytearray()
        self._encrypted = bytearray()
        self._ranges: list[UnencryptedRange] = []

    @property
    def unencrypted_bytes(self) -> bytes:
        return bytes(self._unencrypted)

    @property
    def encrypted_bytes(self) -> bytes:
        return bytes(self._encrypted)

    @property
    def unencrypted_ranges(self) -> tuple[UnencryptedRange, ...]:
        return tuple(self._ranges)

    @property
    def size(self) -> int:
        """Total number of bytes added so far."""
        return len(self._unencrypted) + len(self._encrypted)

    def add_unencrypted(self, data: bytes) -> None:
        data = bytes(data)
        if not data:
            return
        offset = self.size
        if self._ranges and self._ranges[-1].end == offset:
            last = self._ranges[-1]
            self._ranges[-1] = UnencryptedRange(last.offset, last.size + len(data))
        else:
            self._ranges.append(UnencryptedRange(offset, len(data)))
        self._unencrypted.extend(data)

    def add_encrypted(self, data: bytes) -> None:
        self._encrypted.extend(bytes(data))


def bytes_covering_h264_pps(payload: bytes) -> int:
    """Number of slice payload bytes that cover first_mb, sps_id and pps_id.

    The three leading values are exponential-Golomb coded; emulation
    prevention bytes are skipped.
    """
    payload = bytes(payload)
    total_bits = len(payload) * 8
    bit_pos = 0
    zero_bits = 0
    parsed = 0

    while bit_pos < total_bits and parsed < 3:
        bit_index = bit_pos % 8
        byte_index = bit_pos // 8
        byte = payload[byte_index]

        if (
            bit_index == 0
            and byte_index >= 2
            and byte == _EMULATION_PREVENTION_BYTE
            and payload[byte_index - 1] == 0
            and payload[byte_index - 2] == 0
        ):
            bit_pos += 8
            continue

        if byte & (1 << (7 - bit_index)) == 0:
            zero_bits += 1
            bit_pos += 1
            if zero_bits >= 32:
                raise MalformedFrameError(
                    "unexpectedly large exponential golomb encoded value"
                )
        else:
            parsed += 1
            bit_pos += 1 + zero_bits
            zero_bits = 0

    return bit_pos // 8 + 1


def find_next_h26x_nalu(buffer: bytes, start: int = 0) -> tuple[int, int] | None:
    """Find the next NAL unit; return ``(nal_start_index, start_code_size)`` or None."""
    size = len(buffer)
    if size < _H26X_NALU_SHORT_START_SEQUENCE_SIZE:
        return None

    i = start
    while i < size - _H26X_NALU_SHORT_START_SEQUENCE_SIZE:
        third = buffer[i + 2]
        if third > 1:
            i += _H26X_NALU_SHORT_START_SEQUENCE_SIZE
        elif third == 1:
            if buffer[i + 1] == 0 and buffer[i] == 0:
                nal_start = i + _H26X_NALU_SHORT_START_SEQUENCE_SIZE
                if i >= 1 and buffer[i - 1] == 0:
                    return nal_start, 4
                return nal_start, 3
            i += _H26X_NALU_SHORT_START_SEQUENCE_SIZE
        else:
            i += 1
    return None


def process_frame_opus(split: FrameSplit, frame: bytes) -> None:
    split.add_encrypted(frame)


def process_frame_vp8(split: FrameSplit, frame: bytes) -> None:
    """Keep the VP8 payload header clear: ten bytes for key frames, one otherwise."""
    frame = bytes(frame)
    if not frame:
        raise MalformedFrameError("VP8 frame is empty")
    if frame[0] & 0x01 == 0:
        header_size = _VP8_KEY_FRAME_UNENCRYPTED_BYTES
    else:
        header_size = _VP8_DELTA_FRAME_UNENCRYPTED_BYTES
    split.add_unencrypted(frame[:header_size])
    split.add_encrypted(frame[header_size:])


def process_frame_vp9(split: FrameSplit, frame: bytes) -> None:
    split.add_encrypted(frame)


def _iter_nal_units(frame: bytes):
    """Yield ``(nal_start, next_nal_boundary)`` for every NAL unit in the frame."""
    current = find_next_h26x_nalu(frame)
    while current is not None and current[0] < len(frame) - 1:
        nal_start = current[0]
        following = find_next_h26x_nalu(frame, nal_start)
        boundary = following[0] - following[1] if following is not None else len(frame)
        yield nal_start, boundary
        current = following


def process_frame_h264(split: FrameSplit, frame: bytes) -> None:
    """Keep start codes, non-slice NAL units and slice headers up to pps_id clear."""
    frame = bytes(frame)
    if len(frame) < _H26X_NALU_SHORT_START_SEQUENCE_SIZE + _H264_NAL_UNIT_HEADER_SIZE:
        raise MalformedFrameError("H264 frame is too small to contain a NAL unit")

    for nal_start, boundary in _iter_nal_units(frame):
        nal_type = frame[nal_start] & _H264_NAL_HEADER_TYPE_MASK
        split.add_unencrypted(H26X_NALU_LONG_START_CODE)

        if nal_type in (_H264_NAL_TYPE_SLICE, _H264_NAL_TYPE_IDR):
            payload_start = nal_start + _H264_NAL_UNIT_HEADER_SIZE
            pps_bytes = bytes_covering_h264_pps(frame[payload_start:])
            clear_end = payload_start + pps_bytes
            split.add_unencrypted(frame[nal_start:clear_end])
            split.add_encrypted(frame[clear_end:boundary])
        else:
            split.add_unencrypted(frame[nal_start:boundary])


def process_frame_h265(split: FrameSplit, frame: bytes) -> None:
    """Keep start codes, NAL headers and non-VCL NAL units clear."""
    frame = bytes(frame)
    if len(frame) < _H26X_NALU_SHORT_START_SEQUENCE_SIZE + _H265_NAL_UNIT_HEADER_SIZE:
        raise MalformedFrameError("H265 frame is too small to contain a NAL unit")

    for nal_start, boundary in _iter_nal_units(frame):
        nal_type = (frame[nal_start] & _H265_NAL_HEADER_TYPE_MASK) >> 1
        split.add_unencrypted(H26X_NALU_LONG_START_CODE)

        if nal_type < _H265_NAL_TYPE_VCL_CUTOFF:
            header_end = nal_start + _H265_NAL_UNIT_HEADER_SIZE
            split.add_unencrypted(frame[nal_start:header_end])
            split.add_encrypted(frame[header_end:boundary])
        else:
            split.add_unencrypted(frame[nal_start:boundary])


def _read_leb128(data: bytes, pos: int) -> tuple[int, int]:
    value = 0
    for n in range(_LEB128_MAX_SIZE):
        if pos + n >= len(data):
            break
        byte = data[pos + n]
        value |= (byte & 0x7F) << (7 * n)
        if not byte & 0x80:
            return value & _U64, pos + n + 1
    raise MalformedFrameError("Malformed AV1 frame: invalid LEB128 size")


def _write_leb128(value: int) -> bytes:
    out = bytearray()
    while value >= 0x80:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    out.append(value)
    return bytes(out)


def process_frame_av1(split: FrameSplit, frame: bytes) -> None:
    """Keep OBU headers and sizes clear, encrypt OBU payloads, drop ignorable OBUs."""
    frame = bytes(frame)
    i = 0
    while i < len(frame):
        header_index = i
        header = frame[header_index]
        i += 1

        has_extension = bool(header & _AV1_OBU_HAS_EXTENSION_MASK)
        has_size = bool(header & _AV1_OBU_HAS_SIZE_MASK)
        obu_type = (header & _AV1_OBU_TYPE_MASK) >> 3

        if has_extension:
            i += _AV1_OBU_EXTENSION_SIZE_BYTES

        if i >= len(frame):
            raise MalformedFrameError("Malformed AV1 frame: header overflows frame")

        if has_size:
            payload_size, i = _read_leb128(frame, i)
        else:
            payload_size = len(frame) - i

        payload_index = i
        if i + payload_size > len(frame):
            raise MalformedFrameError("Malformed AV1 frame: payload overflows frame")
        i += payload_size

        if obu_type in _AV1_DROPPED_OBU_TYPES:
            continue

        # The last OBU drops its size field so data can be appended to the frame.
        rewritten_without_size = i == len(frame) and has_size
        if rewritten_without_size:
            header &= ~_AV1_OBU_HAS_SIZE_MASK & 0xFF

        split.add_unencrypted(bytes([header]))
        if has_extension:
            split.add_unencrypted(
                frame[header_index + 1 : header_index + 1 + _AV1_OBU_EXTENSION_SIZE_BYTES]
            )
        if has_size and not rewritten_without_size:
            # Re-encode minimally: some encoders pad LEB128 sizes.
            split.add_unencrypted(_write_leb128(payload_size))
        split.add_encrypted(frame[payload_index:i])


def validate_encrypted_frame(split: FrameSplit, frame: bytes) -> bool:
    """Check that no H26x start code appears across the encrypted sections."""
    if split.codec not in (Codec.H264, Codec.H265):
        return True

    frame = bytes(frame)
    padding = _H26X_NALU_SHORT_START_SEQUENCE_SIZE - 1
    encrypted_start = 0

    for rng in split.unencrypted_ranges:
        if encrypted_start == rng.offset:
            encrypted_start += rng.size
            continue
        start = encrypted_start - min(encrypted_start, padding)
        end = min(rng.offset + padding, len(frame))
        if find_next_h26x_nalu(frame[start:end]) is not None:
            return False
        encrypted_start = rng.end

    if encrypted_start == len(frame):
        return True

    start = encrypted_start - min(encrypted_start, padding)
    return find_next_h26x_nalu(frame[start:]) is None