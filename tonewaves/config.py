# config.py
#
# Protocol parameters of the dual-tone modem. Everything the modem needs
# (tone table, analysis window sizes, timing in samples, ECC block layout)
# is derived once from the values below.

import math
from dataclasses import dataclass
from enum import IntEnum

import numpy as np

# --- Configuration ---
SAMPLE_RATE = 44100             # Samples per second
WORD_TIME = 0.06                # Duration of one dual-tone burst (60ms)
WORD_SILENCE_TIME = 0.01        # Silence before each burst (10ms)
GATE_TIME = 0.12                # Duration of each of the two gate tones (120ms)
FIRST_FREQUENCY = 1720.0        # Lowest tone of group A (Hz)
FREQUENCY_MULTIPLIER = 1.0472941228206267  # Ratio between two consecutive tones
TRIGGER_SNR = 15.0              # Gate level over background noise to trigger (dB)
TUKEY_ALPHA = 0.5               # Taper ratio of the word window
# Analysis windows must resolve each tone from the next one; the limit
# frequency sits at this fraction of the interval between two tones.
WINDOW_WIDTH = 0.65

NUM_FREQUENCIES = 32            # Two groups of 16 tones
FREQUENCY_ROOT = 16             # First tone of group B
MAX_PAYLOAD_LENGTH = 0xFF
CRC_BYTE_LENGTH = 2

# Header: 3 bytes, 6 data symbols + 2 parity symbols in a single block
HEADER_SIZE = 3
HEADER_ECC_SYMBOLS = 2
HEADER_SYMBOLS = HEADER_SIZE * 2 + HEADER_ECC_SYMBOLS


class EccLevel(IntEnum):
    """Error correction levels, from lowest to highest redundancy."""
    L = 0
    M = 1
    Q = 2
    H = 3


# (symbols per block, parity symbols per block) for each level
ECC_SYMBOLS = {
    EccLevel.L: (14, 2),
    EccLevel.M: (14, 4),
    EccLevel.Q: (12, 6),
    EccLevel.H: (10, 6),
}
DEFAULT_ECC_LEVEL = EccLevel.Q


def get_total_symbols(ecc_level):
    return ECC_SYMBOLS[EccLevel(ecc_level)][0]


def get_ecc_symbols(ecc_level):
    return ECC_SYMBOLS[EccLevel(ecc_level)][1]


def compute_minimum_window_size(sample_rate, target_frequency, closest_frequency):
    """Smallest analysis window able to tell target_frequency from closest_frequency.

    The bin width must be at most half the distance between the two
    frequencies, and the window never holds less than five periods of
    the target.
    """
    max_bin_size = abs(closest_frequency - target_frequency) / 2.0
    window_size = int(math.ceil(sample_rate / max_bin_size))
    return max(window_size, int(math.ceil(sample_rate * 5 / target_frequency)))


@dataclass(frozen=True)
class Configuration:
    """Immutable set of modem parameters."""

    sample_rate: float = SAMPLE_RATE
    word_time: float = WORD_TIME
    word_silence_time: float = WORD_SILENCE_TIME
    gate_time: float = GATE_TIME
    first_frequency: float = FIRST_FREQUENCY
    frequency_multiplier: float = FREQUENCY_MULTIPLIER
    trigger_snr: float = TRIGGER_SNR

    def __post_init__(self):
        for name in ("sample_rate", "word_time", "gate_time", "first_frequency"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        if self.word_silence_time < 0:
            raise ValueError(f"word_silence_time must not be negative, got {self.word_silence_time}")
        if self.frequency_multiplier <= 1:
            raise ValueError(f"frequency_multiplier must be greater than 1, got {self.frequency_multiplier}")
        highest = self.first_frequency * self.frequency_multiplier ** NUM_FREQUENCIES
        if highest >= self.sample_rate / 2:
            raise ValueError(
                f"Tone table reaches {highest:.0f} Hz, above the Nyquist frequency "
                f"of {self.sample_rate / 2:.0f} Hz"
            )

    @property
    def word_length(self) -> int:
        return int(self.sample_rate * self.word_time)

    @property
    def gate_length(self) -> int:
        return int(self.sample_rate * self.gate_time)

    @property
    def word_silence_length(self) -> int:
        return int(self.sample_rate * self.word_silence_time)

    def compute_frequencies(self, count=NUM_FREQUENCIES, offset=0.0) -> np.ndarray:
        """Tone table; a fractional offset gives the leakage limit of each tone."""
        exponents = np.arange(count, dtype=np.float64) + offset
        return self.first_frequency * np.power(self.frequency_multiplier, exponents)

    def compute_window_sizes(self) -> list:
        """Goertzel window of each tone, never longer than a word."""
        frequencies = self.compute_frequencies()
        limits = self.compute_frequencies(offset=WINDOW_WIDTH)
        return [
            min(self.word_length, compute_minimum_window_size(self.sample_rate, f, limit))
            for f, limit in zip(frequencies, limits)
        ]

    def message_length(self, number_of_symbols: int) -> int:
        """Number of samples of a message carrying number_of_symbols (header included)."""
        words = number_of_symbols // 2
        return 2 * self.gate_length + words * (self.word_silence_length + self.word_length)
