# codec.py
#
# Conversion between payload bytes and the 4-bit symbols carried by the
# tones. Each byte becomes two symbols (high nibble first). Symbols are
# grouped in blocks protected by a Reed-Solomon code over GF(16), and the
# blocks are interleaved so that a burst of lost audio turns into isolated
# errors spread over many blocks.
#
# Reed-Solomon comes from reedsolo, configured with 4-bit symbols. The
# checksums are crcmod presets.

import functools
import math
import threading
from dataclasses import dataclass

import crcmod.predefined
import numpy as np
from reedsolo import RSCodec, ReedSolomonError

from .config import (
    CRC_BYTE_LENGTH,
    DEFAULT_ECC_LEVEL,
    HEADER_ECC_SYMBOLS,
    HEADER_SIZE,
    HEADER_SYMBOLS,
    MAX_PAYLOAD_LENGTH,
    EccLevel,
    get_ecc_symbols,
    get_total_symbols,
)

GF16_PRIMITIVE = 0x13    # x^4 + x + 1
GF16_EXPONENT = 4
GF16_FIRST_ROOT = 1


class FrameDecodeError(Exception):
    """Symbols could not be turned back into a payload."""


class UncorrectableBlockError(FrameDecodeError):
    """A block holds more symbol errors than its parity can fix."""


class IntegrityCheckError(FrameDecodeError):
    """Checksum mismatch after error correction."""


class HeaderChecksumError(IntegrityCheckError):
    """The header checksum does not match, usually a false trigger."""


class ErrorCounter:
    """Thread safe counter of symbols fixed by Reed-Solomon."""

    def __init__(self, value=0):
        self._value = value
        self._lock = threading.Lock()

    def add(self, amount):
        with self._lock:
            self._value += amount
            return self._value

    def set(self, value):
        with self._lock:
            self._value = value

    @property
    def value(self):
        with self._lock:
            return self._value


# --- Checksums ---

_crc8_maxim = crcmod.predefined.mkCrcFun("crc-8-maxim")
_crc16_arc = crcmod.predefined.mkCrcFun("crc-16")


def crc8(data):
    """8-bit checksum (Dallas/Maxim polynomial) of a byte sequence."""
    return _crc8_maxim(bytes(data))


def crc16(data):
    """16-bit checksum (CRC-16/ARC) of a byte sequence."""
    return _crc16_arc(bytes(data))


# --- Interleaving ---

def _interleave_order(length, block_size):
    return np.concatenate(
        [np.arange(j, length, block_size) for j in range(block_size)]
    ).astype(np.intp)


def interleave_symbols(symbols, block_size):
    """Group the symbols sharing the same offset in their block.

    Output is the same length as the input, any length is accepted.
    """
    symbols = np.asarray(symbols)
    if len(symbols) == 0 or block_size <= 1:
        return symbols.copy()
    return symbols[_interleave_order(len(symbols), block_size)]


def deinterleave_symbols(symbols, block_size):
    """Inverse of interleave_symbols(). Must use the same block size."""
    symbols = np.asarray(symbols)
    if len(symbols) == 0 or block_size <= 1:
        return symbols.copy()
    output = np.empty_like(symbols)
    output[_interleave_order(len(symbols), block_size)] = symbols
    return output


# --- Reed-Solomon blocks ---

@functools.lru_cache(maxsize=None)
def _make_rsc(block_size, ecc_symbols) -> RSCodec:
    return RSCodec(
        ecc_symbols,
        nsize=block_size,
        fcr=GF16_FIRST_ROOT,
        prim=GF16_PRIMITIVE,
        c_exp=GF16_EXPONENT,
    )


def number_of_symbols(length, block_size, ecc_symbols, crc):
    """Symbols needed to carry length bytes (plus the optional CRC16)."""
    data_symbols = (length + (CRC_BYTE_LENGTH if crc else 0)) * 2
    blocks = math.ceil(data_symbols / (block_size - ecc_symbols))
    return blocks * ecc_symbols + data_symbols


def payload_to_symbols(payload, block_size, ecc_symbols, add_crc):
    """Bytes to interleaved, Reed-Solomon protected symbols (uint8 array)."""
    payload = bytes(payload)
    if add_crc:
        payload += crc16(payload).to_bytes(CRC_BYTE_LENGTH, "big")
    block_byte_size = (block_size - ecc_symbols) // 2
    rsc = _make_rsc(block_size, ecc_symbols)

    symbols = bytearray()
    for offset in range(0, len(payload), block_byte_size):
        block = bytearray()
        for byte in payload[offset:offset + block_byte_size]:
            block.append(byte >> 4)
            block.append(byte & 0x0F)
        symbols.extend(rsc.encode(block))
    return interleave_symbols(np.frombuffer(bytes(symbols), dtype=np.uint8), block_size)


def symbols_to_payload(symbols, block_size, ecc_symbols, has_crc, error_counter=None):
    """Interleaved symbols back to bytes.

    Raises UncorrectableBlockError when a block cannot be fixed and
    IntegrityCheckError when the trailing CRC16 does not match.
    """
    symbols = deinterleave_symbols(np.asarray(symbols, dtype=np.uint8), block_size)
    rsc = _make_rsc(block_size, ecc_symbols)

    data = bytearray()
    for block_id, offset in enumerate(range(0, len(symbols), block_size)):
        block = bytearray(symbols[offset:offset + block_size].tobytes())
        if len(block) <= ecc_symbols:
            raise UncorrectableBlockError(
                f"Block {block_id} is truncated: {len(block)} symbols for {ecc_symbols} parity symbols"
            )
        try:
            decoded, _, errata_pos = rsc.decode(block)
        except ReedSolomonError as e:
            raise UncorrectableBlockError(f"Block {block_id}: {e}") from e
        if error_counter is not None:
            error_counter.add(len(errata_pos))
        data.extend(decoded)

    payload = bytes((data[i] << 4) | (data[i + 1] & 0x0F) for i in range(0, len(data) - 1, 2))
    if has_crc:
        if len(payload) < CRC_BYTE_LENGTH:
            raise IntegrityCheckError("Payload too short to hold its CRC")
        payload, stored_crc = payload[:-CRC_BYTE_LENGTH], int.from_bytes(payload[-CRC_BYTE_LENGTH:], "big")
        if crc16(payload) != stored_crc:
            raise IntegrityCheckError("CRC check failed")
    return payload


def encode_symbols(payload, ecc_level=DEFAULT_ECC_LEVEL, add_crc=True):
    return payload_to_symbols(payload, get_total_symbols(ecc_level), get_ecc_symbols(ecc_level), add_crc)


def decode_symbols(symbols, ecc_level=DEFAULT_ECC_LEVEL, has_crc=True, error_counter=None):
    return symbols_to_payload(symbols, get_total_symbols(ecc_level), get_ecc_symbols(ecc_level),
                              has_crc, error_counter)


# --- Header ---

@dataclass(frozen=True)
class Header:
    """First 3 bytes of a message: payload length, ECC level, CRC flag.

    Layout:
      [0] payload length
      [1] bits 0-1: ECC level, bit 3: payload carries a CRC16
      [2] crc8 of bytes 0 and 1
    """

    length: int
    ecc_level: EccLevel = DEFAULT_ECC_LEVEL
    crc: bool = True

    def __post_init__(self):
        if not 0 <= self.length <= MAX_PAYLOAD_LENGTH:
            raise ValueError(f"Payload length must be in 0..{MAX_PAYLOAD_LENGTH}, got {self.length}")
        object.__setattr__(self, "ecc_level", EccLevel(self.ecc_level))

    @property
    def block_symbols_size(self):
        return get_total_symbols(self.ecc_level)

    @property
    def block_ecc_symbols(self):
        return get_ecc_symbols(self.ecc_level)

    @property
    def payload_symbols_size(self):
        return self.block_symbols_size - self.block_ecc_symbols

    @property
    def payload_byte_size(self):
        return self.payload_symbols_size // 2

    @property
    def number_of_blocks(self):
        crc_length = CRC_BYTE_LENGTH if self.crc else 0
        return math.ceil((self.length + crc_length) * 2 / self.payload_symbols_size)

    @property
    def number_of_symbols(self):
        return number_of_symbols(self.length, self.block_symbols_size, self.block_ecc_symbols, self.crc)

    def encode(self) -> bytes:
        flags = int(self.ecc_level) & 0x03
        if self.crc:
            flags |= 0x01 << 3
        return bytes([self.length, flags, crc8([self.length, flags])])

    @classmethod
    def decode(cls, data) -> "Header":
        """Parse 3 header bytes. Raises HeaderChecksumError on a bad checksum."""
        if len(data) < HEADER_SIZE:
            raise HeaderChecksumError(f"Header too short: {len(data)} < {HEADER_SIZE}")
        if crc8(data[:2]) != data[2]:
            raise HeaderChecksumError(
                f"Bad header checksum: {data[2]:#04x} (expected {crc8(data[:2]):#04x})"
            )
        return cls(length=data[0], ecc_level=EccLevel(data[1] & 0x03), crc=bool((data[1] >> 3) & 0x01))

    def to_symbols(self):
        return payload_to_symbols(self.encode(), HEADER_SYMBOLS, HEADER_ECC_SYMBOLS, False)

    @classmethod
    def from_symbols(cls, symbols, error_counter=None) -> "Header":
        data = symbols_to_payload(symbols, HEADER_SYMBOLS, HEADER_ECC_SYMBOLS, False, error_counter)
        return cls.decode(data)
