# trigger.py
#
# Detection of the two gate tones that open every message. The level of
# both gate frequencies is tracked on half-overlapping windows; a message
# starts when the second gate peaks well above the background noise while
# the first gate was loud exactly one gate length before.

import collections
import logging

import numpy as np

from .dsp import GoertzelAnalyzer, to_decibels

_logger = logging.getLogger(__name__)

BACKGROUND_QUANTILE = 0.5


class P2Median:
    """Streaming quantile estimate without storing the observations.

    P-square algorithm (R. Jain and I. Chlamtac, CACM 1985) with five
    markers: minimum, quantile/2, quantile, (1+quantile)/2, maximum.
    """

    def __init__(self, quantile=BACKGROUND_QUANTILE):
        if not 0 <= quantile <= 1:
            raise ValueError(f"quantile must be in [0, 1], got {quantile}")
        self.quantile = quantile
        self.dn = [0.0, quantile / 2.0, quantile, (1.0 + quantile) / 2.0, 1.0]
        self.reset()

    def reset(self):
        self.count = 0
        self.q = [0.0] * 5
        self.n = [0] * 5
        self.desired = [4 * dn + 1 for dn in self.dn]

    def _parabolic(self, i, d):
        q, n = self.q, self.n
        return q[i] + d / (n[i + 1] - n[i - 1]) * (
            (n[i] - n[i - 1] + d) * (q[i + 1] - q[i]) / (n[i + 1] - n[i])
            + (n[i + 1] - n[i] - d) * (q[i] - q[i - 1]) / (n[i] - n[i - 1])
        )

    def _linear(self, i, d):
        return self.q[i] + d * (self.q[i + d] - self.q[i]) / (self.n[i + d] - self.n[i])

    def add(self, value):
        q, n = self.q, self.n
        if self.count < 5:
            q[self.count] = value
            self.count += 1
            if self.count == 5:
                q.sort()
                self.n = [1, 2, 3, 4, 5]
            return
        self.count += 1

        if value < q[0]:
            q[0] = value
            k = 1
        elif value >= q[4]:
            q[4] = value
            k = 4
        else:
            k = next(i for i in range(1, 5) if value < q[i])

        for i in range(5):
            if i >= k:
                n[i] += 1
            self.desired[i] += self.dn[i]

        for i in range(1, 4):
            d = self.desired[i] - n[i]
            if (d >= 1.0 and n[i + 1] - n[i] > 1) or (d <= -1.0 and n[i - 1] - n[i] < -1):
                sign = 1 if d > 0 else -1
                candidate = self._parabolic(i, sign)
                if q[i - 1] < candidate < q[i + 1]:
                    q[i] = candidate
                else:
                    q[i] = self._linear(i, sign)
                n[i] += sign

    def result(self):
        if self.count == 0:
            return 0.0
        if self.count < 5:
            return float(np.quantile(self.q[:self.count], self.quantile))
        return self.q[2]


class PeakFinder:
    """Find local maxima in a stream of values.

    A peak is reported once the values rose for at least min_increase_count
    steps and then fell for min_decrease_count steps.
    """

    def __init__(self, min_increase_count=1, min_decrease_count=1):
        self.min_increase_count = min_increase_count
        self.min_decrease_count = min_decrease_count
        self.reset()

    def reset(self):
        self.increase = True
        self.old_value = float("-inf")
        self.old_index = 0
        self.added = False
        self.last_peak_value = 0.0
        self.last_peak_index = 0
        self.increase_count = 0
        self.decrease_count = 0

    def add(self, index, value):
        """Push a value, return True when a peak has just been confirmed."""
        found = False
        diff = value - self.old_value
        if diff <= 0 and self.increase:
            if self.increase_count >= self.min_increase_count:
                self.last_peak_index = self.old_index
                self.last_peak_value = self.old_value
                self.added = True
                if self.min_decrease_count <= 1:
                    found = True
        elif diff > 0 and not self.increase:
            # Went up again too early, not a peak
            if self.added and self.decrease_count < self.min_decrease_count:
                self.last_peak_index = 0
                self.added = False
        self.increase = diff > 0
        if self.increase:
            self.increase_count += 1
            self.decrease_count = 0
        else:
            self.decrease_count += 1
            if self.decrease_count >= self.min_decrease_count and self.added:
                self.added = False
                found = True
            self.increase_count = 0
        self.old_value = value
        self.old_index = index
        return found


def find_peak_location(p0, p1, p2, p1_location, window_length):
    """Refine a peak position with a parabola through three points."""
    denominator = 2.0 * (2.0 * p1 - p2 - p0)
    if denominator == 0:
        return p1_location
    location = (p2 - p0) / denominator
    return p1_location + int(location * window_length)


class TriggerAnalyzer:
    """Locate the end of the gate tones in a stream of samples.

    Two banks of Goertzel analyzers run on the gate frequencies, the second
    one delayed by half a window, so that levels are available every half
    window. Once triggered, first_tone_location holds the index (counted
    from the last reset) of the first sample after the second gate.
    """

    def __init__(self, sample_rate, gate_length, gate_frequencies, trigger_snr):
        self.sample_rate = sample_rate
        self.gate_length = gate_length
        self.frequencies = list(gate_frequencies)
        self.trigger_snr = trigger_snr
        self.window_analyze = gate_length // 3
        self.window_analyze -= self.window_analyze % 2
        if self.window_analyze < 2:
            raise ValueError(f"gate_length {gate_length} is too short to be detected")
        self.window_offset = self.window_analyze // 2
        self.frequency_analyzers_alpha = [
            GoertzelAnalyzer(sample_rate, f, self.window_analyze, hann_window=True) for f in self.frequencies
        ]
        self.frequency_analyzers_beta = [
            GoertzelAnalyzer(sample_rate, f, self.window_analyze, hann_window=True) for f in self.frequencies
        ]
        history_length = (gate_length * 3) // self.window_offset
        self.spl_history = [collections.deque(maxlen=history_length) for _ in self.frequencies]
        self.background_noise_evaluator = P2Median(BACKGROUND_QUANTILE)
        slope_windows = max(1, gate_length // self.window_offset // 2 - 1)
        self.peak_finder = PeakFinder(slope_windows, slope_windows)
        self.trigger_callback = None
        self.level_callback = None
        self.reset()

    def reset(self):
        self.first_tone_location = -1
        self.total_processed = 0
        self.processed_window_alpha = 0
        self.processed_window_beta = 0
        self.peak_finder.reset()
        for analyzer in self.frequency_analyzers_alpha + self.frequency_analyzers_beta:
            analyzer.reset()
        for history in self.spl_history:
            history.clear()

    @property
    def triggered(self):
        return self.first_tone_location >= 0

    @property
    def maximum_window_length(self):
        """Samples that can be pushed before the next window completes."""
        alpha = self.window_analyze - self.processed_window_alpha
        if self.total_processed < self.window_offset:
            beta = self.window_offset - self.total_processed
        else:
            beta = self.window_analyze - self.processed_window_beta
        return min(alpha, beta)

    def process_samples(self, samples):
        """Analyse a chunk of samples of any length.

        The chunk is cut at window boundaries so that levels are recorded
        in time order whatever the chunk size.
        """
        samples = np.asarray(samples, dtype=np.float64)
        end_of_chunk = self.total_processed + len(samples)
        cursor = 0
        while not self.triggered and cursor < len(samples):
            length = min(len(samples) - cursor, self.maximum_window_length)
            window = samples[cursor:cursor + length]
            beta_started = self.total_processed >= self.window_offset
            # Windows never straddle two slices, a completed one ends here
            self.total_processed += length
            self.processed_window_alpha = self._process_bank(
                window, self.processed_window_alpha, self.frequency_analyzers_alpha
            )
            if beta_started and not self.triggered:
                self.processed_window_beta = self._process_bank(
                    window, self.processed_window_beta, self.frequency_analyzers_beta
                )
            cursor += length
        self.total_processed = end_of_chunk

    def _process_bank(self, window, window_processed, analyzers):
        for analyzer in analyzers:
            analyzer.process_samples(window)
        window_processed += len(window)
        if window_processed < self.window_analyze:
            return window_processed
        levels = [float(to_decibels(analyzer.compute_rms())) for analyzer in analyzers]
        self._add_levels(self.total_processed - self.window_analyze, levels)
        return 0

    def _add_levels(self, location, levels):
        for history, level in zip(self.spl_history, levels):
            history.append(level)
        if self.level_callback is not None:
            self.level_callback(location, levels)
        self.background_noise_evaluator.add(levels[1])
        if self.peak_finder.add(location, levels[1]):
            self._check_peak(location)

    def _check_peak(self, location):
        element_index = self.peak_finder.last_peak_index
        element_value = self.peak_finder.last_peak_value
        background = self.background_noise_evaluator.result()
        threshold = element_value - self.trigger_snr
        if element_value <= background + self.trigger_snr:
            return
        first_gate, second_gate = self.spl_history
        peak_index = len(second_gate) - 1 - (location // self.window_offset - element_index // self.window_offset)
        if not 0 <= peak_index < len(first_gate) or first_gate[peak_index] >= threshold:
            return
        first_peak_index = peak_index - self.gate_length // self.window_offset
        if not 0 <= first_peak_index < len(first_gate):
            return
        if first_gate[first_peak_index] > threshold and second_gate[first_peak_index] < threshold:
            if 0 < peak_index < len(second_gate) - 1:
                peak_location = find_peak_location(
                    second_gate[peak_index - 1], second_gate[peak_index], second_gate[peak_index + 1],
                    element_index, self.window_offset,
                )
            else:
                peak_location = element_index
            self.first_tone_location = peak_location + self.gate_length // 2 + self.window_offset
            _logger.debug(
                f"Gate detected: peak {element_value:.1f} dB over {background:.1f} dB background, "
                f"first tone at sample {self.first_tone_location}"
            )
            if self.trigger_callback is not None:
                self.trigger_callback(self.first_tone_location)
