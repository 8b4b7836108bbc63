"""Tests for CRC-16 calculation."""

from epos2_mcp.utils.crc import crc16_ccitt, frame_crc


def _word_crc(words: list[int]) -> int:
    """Reference word-by-word CRC with a trailing zero word, as the
    controller firmware documentation describes it."""
    crc = 0
    for c in words + [0]:
        shifter = 0x8000
        while shifter:
            carry = crc & 0x8000
            crc = (crc << 1) & 0xFFFF
            if c & shifter:
                crc += 1
            if carry:
                crc ^= 0x1021
            shifter >>= 1
    return crc


def test_crc16_empty():
    """CRC of empty data is the initial value."""
    assert crc16_ccitt(b"") == 0x0000


def test_crc16_check_value():
    """Standard CRC-16/XMODEM check value."""
    assert crc16_ccitt(b"123456789") == 0x31C3


def test_frame_crc_matches_word_algorithm():
    words = [0x6040, 0x0500, 0x0006, 0x0000]
    expected = _word_crc([(0x11 << 8) | 3] + words)
    assert frame_crc(0x11, 3, words) == expected


def test_frame_crc_matches_word_algorithm_read():
    words = [0x6041, 0x0100]
    expected = _word_crc([(0x10 << 8) | 1] + words)
    assert frame_crc(0x10, 1, words) == expected


def test_frame_crc_deterministic():
    """Same input should always produce same output."""
    words = (0x2062, 0x0100, 0x1234, 0xFFFF)
    assert frame_crc(0x11, 3, words) == frame_crc(0x11, 3, words)


def test_frame_crc_range():
    result = frame_crc(0xFF, 0xFF, [0xFFFF] * 256)
    assert 0 <= result <= 0xFFFF


def test_frame_crc_sensitive_to_each_field():
    base = frame_crc(0x11, 1, [0x6040, 0x0100])
    assert frame_crc(0x10, 1, [0x6040, 0x0100]) != base
    assert frame_crc(0x11, 2, [0x6040, 0x0100]) != base
    assert frame_crc(0x11, 1, [0x6040, 0x0101]) != base
