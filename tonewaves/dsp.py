# dsp.py
#
# Streaming DSP building blocks: a phase-continuous tone generator for the
# transmit side and a generalized Goertzel filter for the receive side.
# Both keep a sample counter so that a burst can be produced or analysed
# over any number of successive buffers.

import cmath
import math

import numpy as np
from scipy.signal import lfilter

from .windows import hann

# Below this many samples the plain recurrence loop is faster than lfilter.
_SHORT_RUN = 16
# Level floor, keeps digital silence finite in decibels.
MIN_RMS = 1e-12


def to_decibels(rms):
    """Convert an RMS value (or array of values) to decibels."""
    return 20 * np.log10(np.maximum(rms, MIN_RMS))


class ToneGenerator:
    """Unit amplitude sine wave, resumable across calls."""

    def __init__(self, frequency, sample_rate):
        self.frequency = frequency
        self.sample_rate = sample_rate
        self.index = 0

    def reset(self):
        self.index = 0

    def generate(self, count):
        """Return the next count samples of the tone."""
        t = (self.index + np.arange(count, dtype=np.float64)) / self.sample_rate
        self.index += count
        return np.sin(2 * np.pi * self.frequency * t)


class GoertzelAnalyzer:
    """Energy of a single frequency over a fixed length window.

    Samples are fed with process_samples() in as many calls as needed; only
    the two recurrence terms are kept, never the samples themselves. The
    frequency does not have to fall on an integer DFT bin.
    """

    def __init__(self, sample_rate, frequency, window_size, hann_window=False):
        if window_size <= 0:
            raise ValueError(f"window_size must be positive, got {window_size}")
        self.sample_rate = sample_rate
        self.frequency = frequency
        self.window_size = int(window_size)
        self.hann_window = hann_window
        self.pik_term = 2 * math.pi * frequency / sample_rate
        self.cos_pik_term2 = 2.0 * math.cos(self.pik_term)
        self._denominator = np.array([1.0, -self.cos_pik_term2, 1.0])
        self.reset()

    def reset(self):
        self.s1 = 0.0
        self.s2 = 0.0
        self.processed_samples = 0

    @property
    def is_complete(self):
        return self.processed_samples >= self.window_size

    @property
    def remaining_samples(self):
        return self.window_size - self.processed_samples

    def process_samples(self, samples, start=0, end=None):
        """Feed samples[start:end], truncated to what is left of the window.

        Returns the number of samples consumed.
        """
        if end is None:
            end = len(samples)
        end = min(end, start + self.remaining_samples)
        if end <= start:
            return 0
        x = np.asarray(samples[start:end], dtype=np.float64)
        if self.hann_window:
            x = x * hann(self.window_size, self.processed_samples, len(x))

        if len(x) < _SHORT_RUN:
            s1, s2 = self.s1, self.s2
            c = self.cos_pik_term2
            for value in x.tolist():
                s1, s2 = value + c * s1 - s2, s1
        else:
            # Direct form II transposed state equivalent to (s1, s2)
            zi = np.array([self.cos_pik_term2 * self.s1 - self.s2, -self.s1])
            y, _ = lfilter([1.0], self._denominator, x, zi=zi)
            s1, s2 = y[-1], y[-2]
        self.s1 = float(s1)
        self.s2 = float(s2)
        self.processed_samples += len(x)
        return len(x)

    def compute_rms(self):
        """RMS level of the frequency over the window, then reset the analyzer."""
        # Last iteration replaced by a complex multiplication that also
        # corrects the phase for non-integer frequencies.
        y = (self.s1 - self.s2 * cmath.exp(-1j * self.pik_term)) \
            * cmath.exp(-1j * self.pik_term * (self.window_size - 1))
        self.reset()
        return math.sqrt(2 * abs(y) ** 2) / self.window_size
