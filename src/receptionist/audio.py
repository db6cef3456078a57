"""
Audio utilities for the caller channel.

Everything on the wire is raw little-endian 16-bit PCM, mono, 16kHz:
- Browser microphone frames go to Deepgram unchanged (encoding=linear16)
- Deepgram Speak is asked for linear16/16000 directly (no resampling)
- Only OpenAI TTS needs conversion: WAV (24kHz) -> PCM16 16kHz

The caller wraps outbound PCM in a WAV container for playback, so the WAV
helpers here must round-trip sample bytes exactly.
"""

import io
import wave
from typing import Any, Optional

import numpy as np

PCM_SAMPLE_RATE = 16000
PCM_SAMPLE_WIDTH = 2  # bytes per sample (16-bit)
PCM_CHANNELS = 1


def coerce_frame(data: Any) -> Optional[bytes]:
    """
    Normalize a transport payload into bytes.

    Accepts bytes-like objects and lists of byte fragments (joined in order).
    Returns None for anything that cannot be audio.
    """
    if isinstance(data, bytes):
        return data
    if isinstance(data, (bytearray, memoryview)):
        return bytes(data)
    if isinstance(data, (list, tuple)):
        parts = [bytes(p) for p in data if isinstance(p, (bytes, bytearray, memoryview))]
        return b"".join(parts)
    return None


def get_audio_duration_ms(audio_bytes: bytes, sample_rate: int = PCM_SAMPLE_RATE) -> float:
    """
    Duration of raw PCM16 mono audio in milliseconds.
    """
    if not audio_bytes or sample_rate <= 0:
        return 0.0
    samples = len(audio_bytes) // PCM_SAMPLE_WIDTH
    return samples * 1000.0 / sample_rate


def resample_pcm16(pcm_bytes: bytes, source_rate: int, target_rate: int) -> bytes:
    """
    Resample mono PCM16 with linear interpolation.
    """
    if not pcm_bytes or source_rate == target_rate:
        return pcm_bytes
    if source_rate <= 0 or target_rate <= 0:
        raise ValueError("Sample rates must be positive")

    samples = np.frombuffer(pcm_bytes[: len(pcm_bytes) - len(pcm_bytes) % 2], dtype="<i2")
    if samples.size == 0:
        return b""

    target_len = max(1, int(round(samples.size * target_rate / source_rate)))
    src_positions = np.arange(samples.size, dtype=np.float64)
    dst_positions = np.linspace(0, samples.size - 1, num=target_len)
    resampled = np.interp(dst_positions, src_positions, samples.astype(np.float64))
    return np.clip(np.round(resampled), -32768, 32767).astype("<i2").tobytes()


def read_wav_mono_pcm16(wav_bytes: bytes) -> tuple[int, bytes]:
    """
    Read a WAV byte string and return (sample_rate, mono PCM16 bytes).

    - If input is stereo, it is downmixed to mono.
    - If sample width is not 16-bit, raises ValueError.
    """
    if not wav_bytes:
        raise ValueError("Empty WAV")

    with wave.open(io.BytesIO(wav_bytes), "rb") as wf:
        channels = wf.getnchannels()
        sample_width = wf.getsampwidth()
        sample_rate = wf.getframerate()
        frames = wf.readframes(wf.getnframes())

    if sample_width != PCM_SAMPLE_WIDTH:
        raise ValueError(f"Unsupported WAV sample width: {sample_width * 8} bits")

    if channels == 1:
        return int(sample_rate), frames

    if channels == 2:
        stereo = np.frombuffer(frames, dtype="<i2").reshape(-1, 2).astype(np.int32)
        mono = ((stereo[:, 0] + stereo[:, 1]) // 2).astype("<i2")
        return int(sample_rate), mono.tobytes()

    raise ValueError(f"Unsupported WAV channel count: {channels}")


def write_wav_mono_pcm16(pcm_bytes: bytes, sample_rate: int = PCM_SAMPLE_RATE) -> bytes:
    """Create a mono 16-bit PCM WAV byte string from PCM bytes."""
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(PCM_CHANNELS)
        wf.setsampwidth(PCM_SAMPLE_WIDTH)
        wf.setframerate(int(sample_rate))
        wf.writeframes(pcm_bytes or b"")
    return buf.getvalue()


def wav_bytes_to_pcm16(wav_bytes: bytes, target_rate: int = PCM_SAMPLE_RATE) -> bytes:
    """Decode WAV bytes into caller-ready mono PCM16 at `target_rate`."""
    sample_rate, pcm = read_wav_mono_pcm16(wav_bytes)
    return resample_pcm16(pcm, sample_rate, target_rate)
