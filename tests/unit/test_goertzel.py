import math

import numpy as np
import pytest

from tonewaves.dsp import MIN_RMS, GoertzelAnalyzer, ToneGenerator, to_decibels

SAMPLE_RATE = 44100


def sine(frequency, count, amplitude=1.0, sample_rate=SAMPLE_RATE):
    return amplitude * np.sin(2 * np.pi * frequency * np.arange(count) / sample_rate)


class TestGoertzelAnalyzer:
    """Test cases for the streaming Goertzel filter."""

    def test_pure_tone_rms(self):
        """A unit sine over whole periods has an RMS of 1/sqrt(2)."""
        analyzer = GoertzelAnalyzer(SAMPLE_RATE, 1000, 4410)
        analyzer.process_samples(sine(1000, 4410))
        assert analyzer.compute_rms() == pytest.approx(1 / math.sqrt(2), rel=1e-3)

    def test_non_integer_bin(self):
        """The frequency does not have to fall on a DFT bin."""
        analyzer = GoertzelAnalyzer(SAMPLE_RATE, 1720.5, 2646)
        analyzer.process_samples(sine(1720.5, 2646, 0.5))
        assert analyzer.compute_rms() == pytest.approx(0.5 / math.sqrt(2), rel=0.02)

    def test_rejects_other_frequency(self):
        analyzer = GoertzelAnalyzer(SAMPLE_RATE, 1720, 2000, hann_window=True)
        analyzer.process_samples(sine(1720 * 1.0472941228206267 ** 2, 2000))
        assert to_decibels(analyzer.compute_rms()) < -40

    @pytest.mark.parametrize("hann_window", [False, True])
    def test_chunking_invariance(self, hann_window):
        """Feeding the window in pieces gives the same result as in one go."""
        rng = np.random.default_rng(0)
        signal = sine(2500, 3000) + 0.1 * rng.standard_normal(3000)

        whole = GoertzelAnalyzer(SAMPLE_RATE, 2500, 3000, hann_window)
        whole.process_samples(signal)
        expected = whole.compute_rms()

        pieces = GoertzelAnalyzer(SAMPLE_RATE, 2500, 3000, hann_window)
        cursor = 0
        for size in [1, 2, 7, 15, 16, 17, 100, 1000]:
            pieces.process_samples(signal, cursor, cursor + size)
            cursor += size
        pieces.process_samples(signal, cursor)
        assert pieces.is_complete
        assert pieces.compute_rms() == pytest.approx(expected, rel=1e-9)

    def test_extra_samples_ignored(self):
        analyzer = GoertzelAnalyzer(SAMPLE_RATE, 1000, 100)
        assert analyzer.process_samples(np.ones(150)) == 100
        assert analyzer.is_complete
        assert analyzer.remaining_samples == 0
        assert analyzer.process_samples(np.ones(10)) == 0

    def test_start_end_range(self):
        analyzer = GoertzelAnalyzer(SAMPLE_RATE, 1000, 100)
        assert analyzer.process_samples(np.ones(150), 120) == 30
        assert analyzer.processed_samples == 30
        assert analyzer.process_samples(np.ones(150), 10, 5) == 0

    def test_compute_rms_resets(self):
        analyzer = GoertzelAnalyzer(SAMPLE_RATE, 1000, 441)
        analyzer.process_samples(sine(1000, 441))
        analyzer.compute_rms()
        assert analyzer.processed_samples == 0
        assert analyzer.s1 == 0.0 and analyzer.s2 == 0.0
        analyzer.process_samples(np.zeros(441))
        assert analyzer.compute_rms() == 0.0

    def test_invalid_window(self):
        with pytest.raises(ValueError):
            GoertzelAnalyzer(SAMPLE_RATE, 1000, 0)


class TestToneGenerator:
    """Test cases for the resumable tone generator."""

    def test_matches_direct_sine(self):
        generator = ToneGenerator(440, SAMPLE_RATE)
        assert np.allclose(generator.generate(1000), sine(440, 1000))

    def test_phase_continues(self):
        generator = ToneGenerator(440, SAMPLE_RATE)
        pieces = np.concatenate([generator.generate(n) for n in (1, 99, 400)])
        assert np.allclose(pieces, sine(440, 500))

    def test_reset(self):
        generator = ToneGenerator(440, SAMPLE_RATE)
        first = generator.generate(50)
        generator.reset()
        assert np.allclose(generator.generate(50), first)


class TestDecibels:
    """Test cases for level conversion."""

    def test_unit_rms(self):
        assert to_decibels(1.0) == pytest.approx(0.0)
        assert to_decibels(0.1) == pytest.approx(-20.0)

    def test_silence_is_finite(self):
        level = to_decibels(0.0)
        assert np.isfinite(level)
        assert level == pytest.approx(20 * math.log10(MIN_RMS))

    def test_arrays(self):
        levels = to_decibels(np.array([1.0, 0.01, 0.0]))
        assert levels.shape == (3,)
        assert np.all(np.isfinite(levels))
