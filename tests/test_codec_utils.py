import pytest

from framecrypt.codec_utils import (
    H26X_NALU_LONG_START_CODE,
    Codec,
    FrameSplit,
    MalformedFrameError,
    UnencryptedRange,
    bytes_covering_h264_pps,
    find_next_h26x_nalu,
    process_frame_av1,
    process_frame_h264,
    process_frame_h265,
    process_frame_opus,
    process_frame_vp8,
    process_frame_vp9,
)
from framecrypt.codec_utils import validate_encrypted_frame


def test_frame_split_merges_adjacent_unencrypted_runs():
    split = FrameSplit(Codec.H264)
    split.add_unencrypted(b"ab")
    split.add_unencrypted(b"cd")
    split.add_encrypted(b"xyz")
    split.add_unencrypted(b"e")
    assert split.unencrypted_ranges == (
        UnencryptedRange(0, len(b"abcd")),
        UnencryptedRange(len(b"abcdxyz"), len(b"e")),
    )
    assert split.unencrypted_bytes == b"abcde"
    assert split.encrypted_bytes == b"xyz"
    assert split.size == len(b"abcdxyze")


def test_frame_split_ignores_empty_unencrypted():
    split = FrameSplit()
    split.add_unencrypted(b"")
    assert split.unencrypted_ranges == ()


@pytest.mark.parametrize("process", [process_frame_opus, process_frame_vp9])
def test_fully_encrypted_codecs(process):
    frame = b"\x01\x02\x03\x04\x05"
    split = FrameSplit()
    process(split, frame)
    assert split.encrypted_bytes == frame
    assert split.unencrypted_ranges == ()


def test_vp8_key_frame_keeps_ten_bytes_clear():
    frame = bytes(range(0, 40, 2))  # first byte has the key-frame bit cleared
    split = FrameSplit(Codec.VP8)
    process_frame_vp8(split, frame)
    assert split.unencrypted_bytes == frame[:10]
    assert split.encrypted_bytes == frame[10:]


def test_vp8_delta_frame_keeps_one_byte_clear():
    frame = b"\x01" + bytes(range(20))
    split = FrameSplit(Codec.VP8)
    process_frame_vp8(split, frame)
    assert split.unencrypted_bytes == frame[:1]
    assert split.encrypted_bytes == frame[1:]


def test_vp8_empty_frame_is_malformed():
    with pytest.raises(MalformedFrameError):
        process_frame_vp8(FrameSplit(Codec.VP8), b"")


@pytest.mark.parametrize("start_code", [b"\x00\x00\x01", b"\x00\x00\x00\x01"])
def test_find_next_nalu_reports_start_code_size(start_code):
    buffer = start_code + b"\x65\xaa\xbb"
    assert find_next_h26x_nalu(buffer) == (len(start_code), len(start_code))


def test_find_next_nalu_none_without_start_code():
    assert find_next_h26x_nalu(b"\x11\x22\x33\x44\x55\x66") is None
    assert find_next_h26x_nalu(b"\x00\x00") is None


def test_find_next_nalu_respects_search_start():
    buffer = b"\x00\x00\x01\x67\x42\x00\x00\x01\x65\xaa"
    first = find_next_h26x_nalu(buffer)
    second = find_next_h26x_nalu(buffer, first[0])
    assert second[0] == buffer.index(b"\x65")


def test_bytes_covering_pps_skips_emulation_prevention():
    plain = b"\x00\x00\x80\xff\xff"
    escaped = b"\x00\x00\x03\x80\xff\xff"
    assert bytes_covering_h264_pps(escaped) == bytes_covering_h264_pps(plain) + 1


def test_bytes_covering_pps_too_many_zeros():
    with pytest.raises(MalformedFrameError):
        bytes_covering_h264_pps(b"\x00" * 5)


def test_h264_splits_parameter_sets_and_slice():
    sps = b"\x67\x42\x00\x1f"
    idr_payload = b"\x88\x84\x00\x33\xff"
    frame = b"\x00\x00\x01" + sps + H26X_NALU_LONG_START_CODE + b"\x65" + idr_payload
    pps_bytes = bytes_covering_h264_pps(idr_payload)
    assert pps_bytes == 2

    split = FrameSplit(Codec.H264)
    process_frame_h264(split, frame)

    assert split.unencrypted_bytes == (
        H26X_NALU_LONG_START_CODE
        + sps
        + H26X_NALU_LONG_START_CODE
        + b"\x65"
        + idr_payload[:pps_bytes]
    )
    assert split.encrypted_bytes == idr_payload[pps_bytes:]
    assert split.unencrypted_ranges == (
        UnencryptedRange(0, len(split.unencrypted_bytes)),
    )


def test_h264_too_small():
    with pytest.raises(MalformedFrameError):
        process_frame_h264(FrameSplit(Codec.H264), b"\x00\x00\x01")


def test_h265_encrypts_only_vcl_payload():
    vps = b"\x40\x01\x0c\x0f"
    vcl_header = b"\x02\x01"
    vcl_payload = b"\xaa\xbb\xcc"
    frame = (
        H26X_NALU_LONG_START_CODE + vps + H26X_NALU_LONG_START_CODE + vcl_header + vcl_payload
    )
    split = FrameSplit(Codec.H265)
    process_frame_h265(split, frame)
    assert split.unencrypted_bytes == (
        H26X_NALU_LONG_START_CODE + vps + H26X_NALU_LONG_START_CODE + vcl_header
    )
    assert split.encrypted_bytes == vcl_payload


def test_h265_too_small():
    with pytest.raises(MalformedFrameError):
        process_frame_h265(FrameSplit(Codec.H265), b"\x00\x00\x01\x40")


def test_av1_drops_temporal_delimiter_and_strips_last_size():
    temporal_delimiter = b"\x12\x00"
    sequence_header = b"\x0a\x02\xaa\xbb"
    frame_obu = b"\x32\x03\x01\x02\x03"
    split = FrameSplit(Codec.AV1)
    process_frame_av1(split, temporal_delimiter + sequence_header + frame_obu)
    assert split.unencrypted_bytes == bytes([0x0A, 0x02, 0x32 & ~0x02])
    assert split.encrypted_bytes == b"\xaa\xbb\x01\x02\x03"


def test_av1_padded_leb128_is_rewritten_minimally():
    padded = b"\x0a\x82\x00\xaa\xbb"
    minimal = b"\x0a\x02\xaa\xbb"
    tail = b"\x32\x01\x09"
    split_padded = FrameSplit(Codec.AV1)
    split_minimal = FrameSplit(Codec.AV1)
    process_frame_av1(split_padded, padded + tail)
    process_frame_av1(split_minimal, minimal + tail)
    assert split_padded.unencrypted_bytes == split_minimal.unencrypted_bytes
    assert split_padded.encrypted_bytes == split_minimal.encrypted_bytes


def test_av1_extension_byte_is_clear():
    frame = b"\x0e\x20\x02\xaa\xbb"
    split = FrameSplit(Codec.AV1)
    process_frame_av1(split, frame)
    assert split.unencrypted_bytes[1:] == b"\x20"
    assert split.encrypted_bytes == b"\xaa\xbb"


@pytest.mark.parametrize(
    "frame",
    [b"\x0a", b"\x0a\x05\xaa", b"\x0a\x80"],
)
def test_av1_malformed(frame):
    with pytest.raises(MalformedFrameError):
        process_frame_av1(FrameSplit(Codec.AV1), frame)


def _split_with(codec, clear, ciphertext):
    split = FrameSplit(codec)
    split.add_unencrypted(clear)
    split.add_encrypted(ciphertext)
    return split


def test_validate_accepts_clean_ciphertext():
    clear = H26X_NALU_LONG_START_CODE + b"\x65"
    ciphertext = b"\x11" * 8
    split = _split_with(Codec.H264, clear, ciphertext)
    assert validate_encrypted_frame(split, clear + ciphertext + b"\x22" * 4) is True


def test_validate_rejects_start_code_in_ciphertext():
    clear = H26X_NALU_LONG_START_CODE + b"\x65"
    ciphertext = b"\x11\x11\x00\x00\x01\x11\x11\x11"
    split = _split_with(Codec.H264, clear, ciphertext)
    assert validate_encrypted_frame(split, clear + ciphertext + b"\x22" * 4) is False


def test_validate_checks_section_between_clear_ranges():
    split = FrameSplit(Codec.H265)
    first = H26X_NALU_LONG_START_CODE + b"\x02\x01"
    bad = b"\x11\x00\x00\x01\x11"
    second = H26X_NALU_LONG_START_CODE + b"\x40\x01"
    split.add_unencrypted(first)
    split.add_encrypted(bad)
    split.add_unencrypted(second)
    assert validate_encrypted_frame(split, first + bad + second) is False


def test_validate_ignores_other_codecs():
    clear = b"\x10"
    ciphertext = b"\x11\x11\x00\x00\x01\x11\x11\x11"
    split = _split_with(Codec.VP8, clear, ciphertext)
    assert validate_encrypted_frame(split, clear + ciphertext) is True