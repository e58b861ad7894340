import numpy as np
import pytest
from unittest.mock import patch

import main
from tonewaves import EccLevel, Modem


class TestTextToSound:
    """Test cases for the command line sender."""

    def test_returns_float32_wave(self):
        with patch('builtins.print'):
            wave = main.text_to_sound("Hi")
        assert isinstance(wave, np.ndarray)
        assert wave.dtype == np.float32
        assert len(wave) == Modem().set_payload(b"Hi")

    def test_amplitude(self):
        with patch('builtins.print'):
            wave = main.text_to_sound("amplitude")
        assert np.max(np.abs(wave)) <= main.OUTPUT_POWER + 1e-6

    def test_unicode(self):
        with patch('builtins.print'):
            wave = main.text_to_sound("🌍 ñáéíóú")
        assert len(wave) == Modem().set_payload("🌍 ñáéíóú".encode('utf-8'))

    def test_too_long(self):
        with patch('builtins.print') as mock_print:
            wave = main.text_to_sound("A" * 300)
        assert len(wave) == 0
        assert "too long" in mock_print.call_args[0][0]

    def test_ecc_level(self):
        with patch('builtins.print'):
            low = main.text_to_sound("level", EccLevel.L)
            high = main.text_to_sound("level", EccLevel.H)
        assert len(high) > len(low)

    def test_empty_wave_not_sent(self):
        with patch('builtins.print') as mock_print, patch.object(main.sd, 'play') as mock_play:
            main.send_loop(np.array([], dtype=np.float32))
        mock_play.assert_not_called()
        mock_print.assert_called_once_with("Cannot send empty wave.")


class TestAskEccLevel:
    """Test cases for the ECC level prompt."""

    @pytest.mark.parametrize("answer, expected", [
        ("", EccLevel.Q),
        ("l", EccLevel.L),
        ("H", EccLevel.H),
        (" m ", EccLevel.M),
    ])
    def test_answers(self, answer, expected):
        with patch('builtins.input', return_value=answer):
            assert main.ask_ecc_level() == expected

    def test_unknown_answer(self):
        with patch('builtins.input', return_value="Z"), patch('builtins.print') as mock_print:
            assert main.ask_ecc_level() == EccLevel.Q
        mock_print.assert_called_once()


class TestFeedSamples:
    """Test cases for pushing recorded audio to the modem."""

    def test_decodes_recorded_audio(self):
        with patch('builtins.print'):
            wave = main.text_to_sound("hello")
        audio = np.concatenate([np.zeros(5000, dtype=np.float32), wave, np.zeros(5000, dtype=np.float32)])
        modem = Modem()
        assert main.feed_samples(modem, audio) == [b"hello"]

    def test_back_to_back_messages(self):
        """A message right after another one is not lost."""
        with patch('builtins.print'):
            first = main.text_to_sound("first")
            second = main.text_to_sound("second")
        gap = np.zeros(3000, dtype=np.float32)
        audio = np.concatenate([gap, first, gap, second, gap])
        modem = Modem()
        assert main.feed_samples(modem, audio) == [b"first", b"second"]

    def test_nothing_in_silence(self):
        assert main.feed_samples(Modem(), np.zeros(20000)) == []

    def test_print_message(self):
        modem = Modem()
        with patch('builtins.print') as mock_print:
            main.print_message(modem, "héllo".encode('utf-8'))
        mock_print.assert_any_call("Decoded Text: héllo")
