"""Tonewaves - data over sound with dual-tone bursts.

Public API:
    Modem(configuration=None)
        .set_payload(payload, ecc_level, add_crc) -> number of samples
        .get_samples(samples, power)              -> samples (added to)
        .push_samples(samples)                    -> True once a payload is decoded
"""

from .codec import (
    FrameDecodeError,
    HeaderChecksumError,
    IntegrityCheckError,
    UncorrectableBlockError,
)
from .config import Configuration, EccLevel
from .modem import DecoderState, Modem

__version__ = "0.1.0"
__all__ = [
    "Configuration",
    "DecoderState",
    "EccLevel",
    "FrameDecodeError",
    "HeaderChecksumError",
    "IntegrityCheckError",
    "Modem",
    "UncorrectableBlockError",
]
