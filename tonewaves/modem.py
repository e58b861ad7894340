# modem.py
#
# Dual-tone acoustic modem. A message is made of two gate tones followed by
# one burst per pair of symbols: the first symbol selects a tone of group A
# (tones 0-15), the second a tone of group B (tones 16-31). The first 8
# symbols carry the header, the rest the Reed-Solomon protected payload.
#
# Sending: set_payload() then get_samples() until the message is complete.
# Receiving: push_samples() with audio chunks of any size, the payload is
# available once it returns True.

import enum
import logging
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from .codec import (
    ErrorCounter,
    FrameDecodeError,
    Header,
    encode_symbols,
    symbols_to_payload,
)
from .config import (
    DEFAULT_ECC_LEVEL,
    FREQUENCY_ROOT,
    HEADER_SYMBOLS,
    MAX_PAYLOAD_LENGTH,
    TUKEY_ALPHA,
    Configuration,
)
from .dsp import GoertzelAnalyzer, ToneGenerator, to_decibels
from .trigger import TriggerAnalyzer
from .windows import hann, tukey

_logger = logging.getLogger(__name__)


class DecoderState(enum.Enum):
    WAITING_TRIGGER = "waiting_trigger"
    PARSING_SYMBOLS = "parsing_symbols"


@dataclass
class DecoderSession:
    """Everything known about the message being received."""

    first_tone_sample_index: int
    symbols: np.ndarray
    analyzers: List[GoertzelAnalyzer]
    # Start of each analysis window, relative to the start of the word
    window_offsets: List[int]
    word_index: int = 0
    header: Optional[Header] = None

    @property
    def complete(self):
        return self.word_index * 2 >= len(self.symbols)


class Modem:
    """Encode payloads into audio samples and decode them back from a stream."""

    def __init__(self, configuration: Optional[Configuration] = None):
        self._configuration = configuration or Configuration()
        cfg = self._configuration
        self._frequencies = cfg.compute_frequencies()
        self._gate_tones = (FREQUENCY_ROOT, FREQUENCY_ROOT + 2)
        self._gate_frequencies = tuple(self._frequencies[tone] for tone in self._gate_tones)

        # Receiving side
        self._window_sizes = cfg.compute_window_sizes()
        self._trigger = TriggerAnalyzer(cfg.sample_rate, cfg.gate_length, self._gate_frequencies, cfg.trigger_snr)
        self._error_counter = ErrorCounter()
        self._session: Optional[DecoderSession] = None
        self._payload: Optional[bytes] = None
        self._pushed_samples = 0
        self._trigger_origin = 0
        self._message_sample_index = -1
        self._trigger_callback = None

        # Sending side
        self._symbols_to_deliver: Optional[np.ndarray] = None
        self._offset = 0
        self._tone_generators = [ToneGenerator(f, cfg.sample_rate) for f in self._frequencies]

    # --- Properties ---

    @property
    def configuration(self) -> Configuration:
        return self._configuration

    @property
    def frequencies(self) -> np.ndarray:
        return self._frequencies.copy()

    @property
    def state(self) -> DecoderState:
        if self._session is None:
            return DecoderState.WAITING_TRIGGER
        return DecoderState.PARSING_SYMBOLS

    @property
    def payload(self) -> Optional[bytes]:
        """Last decoded payload, None until a message has been received."""
        return self._payload

    @property
    def fixed_errors(self) -> int:
        """Symbols corrected by Reed-Solomon in the last received message."""
        return self._error_counter.value

    @property
    def pushed_samples(self) -> int:
        return self._pushed_samples

    @property
    def message_sample_index(self) -> int:
        """Index of the first sample of the last detected message, -1 if none."""
        return self._message_sample_index

    @property
    def maximum_window_length(self) -> int:
        """Largest chunk worth pushing before something can be decided."""
        if self._session is None:
            return self._trigger.maximum_window_length
        tone_location = self._tone_location(self._session)
        return max(1, tone_location + self._configuration.word_length - self._pushed_samples)

    @staticmethod
    def max_payload_length() -> int:
        return MAX_PAYLOAD_LENGTH

    def set_trigger_callback(self, callback):
        """callback(sample_index) is called when the gate tones are detected."""
        self._trigger_callback = callback

    def set_level_callback(self, callback):
        """callback(sample_index, levels) receives the gate levels in dB."""
        if callback is None:
            self._trigger.level_callback = None
            return

        def forward(location, levels):
            callback(self._trigger_origin + location, levels)

        self._trigger.level_callback = forward

    # --- Sending ---

    def set_payload(self, payload, ecc_level=DEFAULT_ECC_LEVEL, add_crc=True) -> int:
        """Prepare a message, return its length in samples."""
        payload = bytes(payload)
        header = Header(len(payload), ecc_level, add_crc)
        self._symbols_to_deliver = np.concatenate([header.to_symbols(), encode_symbols(payload, ecc_level, add_crc)])
        self._offset = 0
        for generator in self._tone_generators:
            generator.reset()
        _logger.debug(
            f"Message of {len(payload)} bytes, ECC {header.ecc_level.name}, "
            f"{len(self._symbols_to_deliver)} symbols"
        )
        return self._configuration.message_length(len(self._symbols_to_deliver))

    def get_samples(self, samples, power=1.0):
        """Add the next len(samples) samples of the message to samples.

        The buffer is added to, never overwritten, so the message can be
        mixed with other signals. Past the end of the message nothing is
        added.
        """
        if self._symbols_to_deliver is None:
            raise RuntimeError("set_payload() must be called before get_samples()")
        cfg = self._configuration
        start = self._offset
        end = start + len(samples)
        gate = cfg.gate_length
        for index, tone in enumerate(self._gate_tones):
            self._add_tone(samples, start, end, index * gate, gate, tone, power, None)

        word_period = cfg.word_silence_length + cfg.word_length
        first_word = max(0, (start - 2 * gate) // word_period)
        for word in range(first_word, len(self._symbols_to_deliver) // 2):
            word_start = 2 * gate + word * word_period + cfg.word_silence_length
            if word_start >= end:
                break
            for symbol, root in zip(self._symbols_to_deliver[word * 2:word * 2 + 2], (0, FREQUENCY_ROOT)):
                self._add_tone(
                    samples, start, end, word_start, cfg.word_length, root + int(symbol), power / 2, TUKEY_ALPHA
                )
        self._offset = end
        return samples

    def _add_tone(self, samples, start, end, tone_start, tone_length, tone, power, tukey_alpha):
        lo = max(start, tone_start)
        hi = min(end, tone_start + tone_length)
        if lo >= hi:
            return
        offset = lo - tone_start
        count = hi - lo
        generator = self._tone_generators[tone]
        if offset == 0:
            generator.reset()
        wave = generator.generate(count)
        if tukey_alpha is None:
            wave *= hann(tone_length, offset, count)
        else:
            wave *= tukey(tone_length, tukey_alpha, offset, count)
        samples[lo - start:hi - start] += power * wave

    # --- Receiving ---

    def reset(self):
        """Drop the message being received and wait for the next gate tones."""
        self._session = None
        self._trigger.reset()
        self._trigger_origin = self._pushed_samples

    def push_samples(self, samples) -> bool:
        """Process a chunk of audio, return True when a payload was decoded.

        Floating point samples are expected in [-1, 1]; integer samples are
        scaled by the maximum of their type, unsigned ones centred first. Multichannel input uses the
        first channel.
        """
        samples = self._normalize(samples)
        self._pushed_samples += len(samples)
        if self._session is None:
            self._trigger.process_samples(samples)
            if not self._trigger.triggered:
                return False
            self._start_session()
        try:
            return self._analyze_symbols(samples)
        except FrameDecodeError as e:
            _logger.info(f"Message dropped at sample {self._message_sample_index}: {e}")
            self.reset()
            return False

    @staticmethod
    def _normalize(samples):
        samples = np.asarray(samples)
        if samples.ndim > 1:
            samples = samples[:, 0]
        if np.issubdtype(samples.dtype, np.integer):
            info = np.iinfo(samples.dtype)
            if info.min == 0:
                # Unsigned PCM is centred on half scale
                middle = (info.max + 1) / 2
                return (samples.astype(np.float64) - middle) / middle
            return samples.astype(np.float64) / info.max
        return samples.astype(np.float64, copy=False)

    def _start_session(self):
        cfg = self._configuration
        first_tone = self._trigger_origin + self._trigger.first_tone_location
        self._message_sample_index = first_tone - 2 * cfg.gate_length
        self._session = DecoderSession(
            first_tone_sample_index=first_tone,
            symbols=np.zeros(HEADER_SYMBOLS, dtype=np.uint8),
            analyzers=[
                GoertzelAnalyzer(cfg.sample_rate, f, size, hann_window=True)
                for f, size in zip(self._frequencies, self._window_sizes)
            ],
            # Analysis windows are centred in the word
            window_offsets=[cfg.word_length // 2 - size // 2 for size in self._window_sizes],
        )
        self._error_counter.set(0)
        self._trigger.reset()
        self._trigger_origin = self._pushed_samples
        _logger.debug(f"Gate tones detected, message starts at sample {self._message_sample_index}")
        if self._trigger_callback is not None:
            self._trigger_callback(first_tone)

    def _tone_location(self, session):
        cfg = self._configuration
        word_period = cfg.word_length + cfg.word_silence_length
        return session.first_tone_sample_index + session.word_index * word_period + cfg.word_silence_length

    def _analyze_symbols(self, samples):
        session = self._session
        chunk_length = len(samples)
        while not session.complete:
            tone_index = chunk_length - (self._pushed_samples - self._tone_location(session))
            for analyzer, window_offset in zip(session.analyzers, session.window_offsets):
                begin = max(0, tone_index + window_offset + analyzer.processed_samples)
                if begin < chunk_length:
                    analyzer.process_samples(samples, begin, chunk_length)
            if not all(analyzer.is_complete for analyzer in session.analyzers):
                return False

            levels = to_decibels(np.array([analyzer.compute_rms() for analyzer in session.analyzers]))
            session.symbols[session.word_index * 2] = np.argmax(levels[:FREQUENCY_ROOT])
            session.symbols[session.word_index * 2 + 1] = np.argmax(levels[FREQUENCY_ROOT:])
            session.word_index += 1
            if not session.complete:
                continue
            if session.header is None:
                self._read_header(session)
            if session.complete:
                return self._read_payload(session)
        return False

    def _read_header(self, session):
        cfg = self._configuration
        header = Header.from_symbols(session.symbols, self._error_counter)
        _logger.info(
            f"Header decoded: {header.length} bytes, ECC {header.ecc_level.name}, "
            f"crc {'on' if header.crc else 'off'}"
        )
        session.header = header
        session.symbols = np.zeros(header.number_of_symbols, dtype=np.uint8)
        session.word_index = 0
        session.first_tone_sample_index += (HEADER_SYMBOLS // 2) * (cfg.word_length + cfg.word_silence_length)

    def _read_payload(self, session):
        header = session.header
        self._payload = symbols_to_payload(
            session.symbols, header.block_symbols_size, header.block_ecc_symbols, header.crc, self._error_counter
        )
        _logger.info(f"Payload of {len(self._payload)} bytes received, {self.fixed_errors} symbols fixed")
        self.reset()
        return True
