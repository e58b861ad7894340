import os
import time

import numpy as np
import psutil
import pytest

from tonewaves import EccLevel, Modem
from tonewaves.codec import decode_symbols, encode_symbols
from tonewaves.dsp import GoertzelAnalyzer


def push_in_windows(modem, samples):
    decoded = []
    cursor = 0
    while cursor < len(samples):
        length = min(len(samples) - cursor, modem.maximum_window_length)
        if modem.push_samples(samples[cursor:cursor + length]):
            decoded.append(modem.payload)
        cursor += length
    return decoded


class TestPerformance:
    """Performance and reliability test cases."""

    def get_memory_usage(self):
        """Get current memory usage in MB."""
        process = psutil.Process(os.getpid())
        return process.memory_info().rss / 1024 / 1024

    def test_audio_generation_performance(self):
        """Test audio generation performance."""
        test_cases = [
            ("Short", b"Hi"),
            ("Medium", b"Hello World!"),
            ("Long", b"A" * 255),
        ]

        for name, payload in test_cases:
            initial_memory = self.get_memory_usage()

            start_time = time.time()
            modem = Modem()
            length = modem.set_payload(payload, EccLevel.L)
            audio = modem.get_samples(np.zeros(length))
            generation_time = time.time() - start_time

            memory_used = self.get_memory_usage() - initial_memory

            assert generation_time < 2.0
            assert memory_used < 100
            assert len(audio) == length

    def test_codec_performance(self):
        """Encoding and decoding the largest payload at every level."""
        payload = bytes(range(255))
        start_time = time.time()
        for ecc_level in EccLevel:
            assert decode_symbols(encode_symbols(payload, ecc_level), ecc_level) == payload
        assert time.time() - start_time < 10.0

    def test_goertzel_throughput(self):
        """A second of audio through 32 analyzers must take well under a second."""
        samples = np.random.default_rng(0).standard_normal(44100)
        analyzers = [GoertzelAnalyzer(44100, 1720 + 100 * i, 2646, hann_window=True) for i in range(32)]
        start_time = time.time()
        for offset in range(0, len(samples), 2646):
            for analyzer in analyzers:
                analyzer.process_samples(samples, offset, offset + 2646)
                analyzer.compute_rms()
        assert time.time() - start_time < 1.0

    @pytest.mark.slow
    def test_decoding_faster_than_real_time(self):
        """Decoding the largest message takes less time than playing it."""
        modem = Modem()
        length = modem.set_payload(bytes(255), EccLevel.L)
        samples = np.zeros(length + 20000)
        modem.get_samples(samples[10000:10000 + length])
        duration = len(samples) / modem.configuration.sample_rate

        receiver = Modem()
        start_time = time.time()
        assert push_in_windows(receiver, samples) == [bytes(255)]
        assert time.time() - start_time < duration

    def test_listening_memory_is_bounded(self):
        """Waiting for a trigger on a long stream does not grow memory."""
        receiver = Modem()
        chunk = np.random.default_rng(1).uniform(-0.01, 0.01, 4410)
        receiver.push_samples(chunk)
        initial_memory = self.get_memory_usage()
        for _ in range(200):
            receiver.push_samples(chunk)
        assert self.get_memory_usage() - initial_memory < 20
        assert receiver.pushed_samples == 201 * 4410

    def test_listening_keeps_up_with_real_time(self):
        """Waiting for a trigger costs far less than the duration of the audio."""
        receiver = Modem()
        rng = np.random.default_rng(2)
        window = receiver.maximum_window_length
        chunks = [rng.standard_normal(window) * 0.1 for _ in range(500)]
        duration = 500 * window / receiver.configuration.sample_rate

        start_time = time.process_time()
        for chunk in chunks:
            receiver.push_samples(chunk)
        cpu_time_used = time.process_time() - start_time

        assert cpu_time_used < duration / 2
