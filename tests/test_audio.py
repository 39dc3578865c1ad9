import base64

import numpy as np
import pytest
import soundfile as sf

from promptdj.audio import decode_pcm16, encode_pcm16, ensure_audio_contract, write_wav
from promptdj.errors import DecodeError
from promptdj.output import GainNode, OfflineOutput


def test_decode_interleaved_little_endian_pcm() -> None:
    raw = np.array([0, 16384, -32768, 32767], dtype="<i2").tobytes()
    buffer = decode_pcm16(raw, sample_rate=48_000, channels=2)
    assert buffer.frames == 2
    assert buffer.channels == 2
    np.testing.assert_allclose(buffer.samples[0], [0.0, 0.5])
    np.testing.assert_allclose(buffer.samples[1], [-1.0, 32767 / 32768])
    assert buffer.duration == pytest.approx(2 / 48_000)


def test_decode_accepts_base64_text() -> None:
    raw = encode_pcm16(np.zeros((10, 2), dtype=np.float32))
    buffer = decode_pcm16(base64.b64encode(raw).decode("ascii"), sample_rate=1_000)
    assert buffer.frames == 10
    assert buffer.duration == pytest.approx(0.01)


@pytest.mark.parametrize("payload", [b"", b"\x00\x01\x02", "***"])
def test_decode_rejects_malformed_chunks(payload: bytes | str) -> None:
    with pytest.raises(DecodeError):
        decode_pcm16(payload)


def test_ensure_audio_contract_expands_mono_and_clips() -> None:
    audio = ensure_audio_contract(np.array([[0.5], [2.0]]), channels=2)
    assert audio.shape == (2, 2)
    assert audio.dtype == np.float32
    assert audio[1, 0] == 1.0
    with pytest.raises(DecodeError):
        ensure_audio_contract(np.zeros((4, 3)), channels=2)


def test_gain_node_ramp_and_disconnect() -> None:
    gain = GainNode()
    assert gain.value_at(5.0) == 1.0
    gain.set_value_at(1.0, 1.0)
    gain.linear_ramp_to(0.0, 2.0)
    gain.disconnect(at=2.5)
    assert gain.value_at(0.5) == 1.0
    assert gain.value_at(1.5) == pytest.approx(0.5)
    assert gain.value_at(2.2) == 0.0
    assert not gain.is_disconnected(2.4)
    assert gain.is_disconnected(2.5)


def test_gain_prune_keeps_current_value() -> None:
    gain = GainNode()
    gain.set_value_at(0.0, 0.0)
    gain.linear_ramp_to(1.0, 1.0)
    gain.prune(0.5)
    assert gain.value_at(0.5) == pytest.approx(0.5)
    gain.prune(2.0)
    assert gain.value_at(3.0) == 1.0


def test_offline_output_mixes_and_saves(tmp_path) -> None:
    output = OfflineOutput(sample_rate=1_000)
    gain = output.create_gain()
    first = decode_pcm16(encode_pcm16(np.full((100, 2), 0.25)), sample_rate=1_000)
    second = decode_pcm16(encode_pcm16(np.full((100, 2), 0.5)), sample_rate=1_000)
    output.schedule(first, 0.1, gain)
    output.schedule(second, 0.2, gain)
    audio = output.render()
    assert audio.shape == (300, 2)
    assert (audio[:100] == 0).all()
    assert audio[150, 0] == pytest.approx(0.25, abs=1e-3)
    assert audio[250, 1] == pytest.approx(0.5, abs=1e-3)

    path = output.save(tmp_path / "render.wav")
    data, rate = sf.read(path, dtype="float32")
    assert rate == 1_000
    assert data.shape == (300, 2)


def test_write_wav_creates_parent_dirs(tmp_path) -> None:
    path = write_wav(tmp_path / "nested" / "tone.wav", np.zeros(8), sample_rate=8_000)
    assert path.exists()
