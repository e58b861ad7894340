# windows.py
#
# Amplitude shaping windows. Every function takes the offset of the first
# requested coefficient inside the window, so a window can be applied over
# several successive audio buffers without keeping any state.

import math

import numpy as np


def _indices(window_length, offset, count):
    if count is None:
        count = window_length - offset
    return np.arange(offset, offset + max(0, count), dtype=np.float64)


def hann(window_length, offset=0, count=None):
    """Hann coefficients offset..offset+count-1 of a window_length window.

    Coefficients past the end of the window are zero.
    """
    i = _indices(window_length, offset, count)
    if window_length < 2:
        return np.where(i < window_length, 1.0, 0.0)
    coefficients = 0.5 - 0.5 * np.cos(2 * np.pi * i / (window_length - 1))
    coefficients[i >= window_length] = 0.0
    return coefficients


def tukey(window_length, alpha, offset=0, count=None):
    """Tukey (tapered cosine) coefficients, flat in the middle of the window."""
    i = _indices(window_length, offset, count)
    coefficients = np.ones_like(i)
    if alpha <= 0 or window_length < 2:
        coefficients[i >= window_length] = 0.0
        return coefficients
    begin_flat = int(math.floor(alpha * (window_length - 1) / 2.0))
    end_flat = window_length - begin_flat

    rising = i <= begin_flat
    coefficients[rising] = 0.5 * (1 + np.cos(np.pi * (-1 + 2.0 * i[rising] / alpha / (window_length - 1))))
    falling = (i >= end_flat - 1) & (i < window_length)
    coefficients[falling] = 0.5 * (1 + np.cos(np.pi * (-2.0 / alpha + 1 + 2.0 * i[falling] / alpha / (window_length - 1))))
    coefficients[i >= window_length] = 0.0
    return coefficients


def apply_hann(signal, window_length, offset=0):
    """Multiply signal in place by the Hann window, starting at offset."""
    signal *= hann(window_length, offset, len(signal))
    return signal
