"""Opcode constants and object dictionary command builders.

Every command is a WriteObject or ReadObject frame addressing an entry of
the controller's object dictionary. Data layout::

    word 1: object index
    word 2: node id (high byte, filled in at send time) | subindex (low byte)
    word 3: value bits 0-15      (WriteObject only)
    word 4: value bits 16-31     (WriteObject only)
"""

from __future__ import annotations

from enum import IntEnum

from .framing import Frame


class Opcode(IntEnum):
    """Request opcodes."""

    RESPONSE = 0x00
    READ_OBJECT = 0x10
    WRITE_OBJECT = 0x11


class ObjectIndex(IntEnum):
    """Object dictionary entries used by the command catalog."""

    CURRENT_SETTING_VALUE = 0x2030
    POSITION_SETTING_VALUE = 0x2062
    VELOCITY_SETTING_VALUE = 0x206B
    CONTROLWORD = 0x6040
    STATUSWORD = 0x6041
    MODES_OF_OPERATION = 0x6060
    MAX_FOLLOWING_ERROR = 0x6065
    PROFILE_VELOCITY = 0x6081


class OperationMode(IntEnum):
    """Values of the Modes of Operation object."""

    PROFILE_POSITION = 1
    PROFILE_VELOCITY = 3
    HOMING = 6
    POSITION = -1
    VELOCITY = -2
    CURRENT = -3


# Controlword values written by the enable/disable sequences
CONTROLWORD_SHUTDOWN = 0x0006
CONTROLWORD_SWITCH_ON_ENABLE = 0x000F
CONTROLWORD_ENABLE_HALT = 0x010F

DEFAULT_MAX_FOLLOWING_ERROR = 20000

OBJECT_WIDTHS = (8, 16, 32)


def _value_words(value: int, bits: int = 32) -> tuple[int, int]:
    """Split a signed or unsigned value into (low word, high word)."""
    if bits not in OBJECT_WIDTHS:
        raise ValueError(f"Object width must be 8, 16 or 32 bits, got {bits}")
    lo_bound = -(1 << (bits - 1))
    hi_bound = (1 << bits) - 1
    if not lo_bound <= value <= hi_bound:
        raise ValueError(f"Value {value} does not fit in {bits} bits")
    raw = value & ((1 << bits) - 1)
    return raw & 0xFFFF, (raw >> 16) & 0xFFFF


def build_write_object(
    index: int, subindex: int, value: int, bits: int = 32
) -> Frame:
    """Build a WriteObject frame.

    Args:
        index: Object index (0-0xFFFF).
        subindex: Object subindex (0-255).
        value: Value to write; negative values are sent as two's complement.
        bits: Width of the object (8, 16 or 32).
    """
    if not 0 <= index <= 0xFFFF:
        raise ValueError(f"Object index must be 0-0xFFFF, got {index}")
    if not 0 <= subindex <= 0xFF:
        raise ValueError(f"Subindex must be 0-255, got {subindex}")
    lo, hi = _value_words(value, bits)
    return Frame(Opcode.WRITE_OBJECT, (index, subindex, lo, hi))


def build_read_object(index: int, subindex: int = 0) -> Frame:
    """Build a ReadObject frame."""
    if not 0 <= index <= 0xFFFF:
        raise ValueError(f"Object index must be 0-0xFFFF, got {index}")
    if not 0 <= subindex <= 0xFF:
        raise ValueError(f"Subindex must be 0-255, got {subindex}")
    return Frame(Opcode.READ_OBJECT, (index, subindex))


def build_set_mode(mode: OperationMode) -> Frame:
    """Build a Modes of Operation write."""
    return build_write_object(ObjectIndex.MODES_OF_OPERATION, 0, mode, bits=8)


def build_enable_sequence() -> list[Frame]:
    """Controlword writes taking the drive from shutdown to operation enabled.

    The frames must be sent in order, with a short pause between them.
    """
    return [
        build_write_object(ObjectIndex.CONTROLWORD, 0, CONTROLWORD_SHUTDOWN, bits=16),
        build_write_object(
            ObjectIndex.CONTROLWORD, 0, CONTROLWORD_SWITCH_ON_ENABLE, bits=16
        ),
        build_write_object(ObjectIndex.CONTROLWORD, 0, CONTROLWORD_ENABLE_HALT, bits=16),
    ]


def build_disable() -> Frame:
    """Build the controlword write that disables operation."""
    return build_write_object(ObjectIndex.CONTROLWORD, 0, CONTROLWORD_SHUTDOWN, bits=16)


def build_homing_mode() -> Frame:
    return build_set_mode(OperationMode.HOMING)


def build_profile_position_mode(profile_velocity: int) -> list[Frame]:
    """Set the profile velocity, then switch to Profile Position mode.

    Args:
        profile_velocity: Profile velocity in rpm (0-0xFFFFFFFF).
    """
    if profile_velocity < 0:
        raise ValueError(f"Profile velocity must be positive, got {profile_velocity}")
    return [
        build_write_object(ObjectIndex.PROFILE_VELOCITY, 0, profile_velocity),
        build_set_mode(OperationMode.PROFILE_POSITION),
    ]


def build_position_mode() -> Frame:
    return build_set_mode(OperationMode.POSITION)


def build_velocity_mode() -> Frame:
    return build_set_mode(OperationMode.VELOCITY)


def build_current_mode() -> Frame:
    return build_set_mode(OperationMode.CURRENT)


def build_max_following_error(value: int = DEFAULT_MAX_FOLLOWING_ERROR) -> Frame:
    """Build a Max Following Error write (quadcounts)."""
    if value < 0:
        raise ValueError(f"Max following error must be positive, got {value}")
    return build_write_object(ObjectIndex.MAX_FOLLOWING_ERROR, 0, value)


def build_target_position(position: int) -> Frame:
    """Build a Position Mode setting value write (quadcounts, int32)."""
    return build_write_object(ObjectIndex.POSITION_SETTING_VALUE, 0, round(position))


def build_target_velocity(velocity: int) -> Frame:
    """Build a Velocity Mode setting value write (rpm, int32)."""
    return build_write_object(ObjectIndex.VELOCITY_SETTING_VALUE, 0, round(velocity))


def build_target_current(current_ma: int) -> Frame:
    """Build a Current Mode setting value write (mA, int16)."""
    current_ma = round(current_ma)
    if not -0x8000 <= current_ma <= 0x7FFF:
        raise ValueError(f"Current must fit in int16, got {current_ma}")
    return build_write_object(
        ObjectIndex.CURRENT_SETTING_VALUE, 0, current_ma, bits=16
    )


def build_read_statusword() -> Frame:
    return build_read_object(ObjectIndex.STATUSWORD)
