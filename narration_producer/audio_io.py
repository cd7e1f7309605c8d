"""Clip decoding/encoding and numpy ↔ pydub conversion."""

import base64
import io
import re

import numpy as np
from pydub import AudioSegment

from narration_producer.constants import PCM_CHANNELS, PCM_SAMPLE_RATE, PCM_SAMPLE_WIDTH

DATA_URL_RE = re.compile(r"^data:([^;]+);base64,(.+)$", re.DOTALL)

RAW_PCM_TYPES = ("audio/pcm", "audio/l16", "audio/raw")

# MIME type → ffmpeg container format
MIME_FORMATS = {
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/wave": "wav",
    "audio/ogg": "ogg",
    "audio/webm": "webm",
    "audio/flac": "flac",
    "audio/aac": "aac",
    "audio/mp4": "mp4",
}


def parse_data_url(url: str | None) -> tuple[str, str] | None:
    """Split ``data:<mime>;base64,<payload>`` into (mime, payload)."""
    if not url:
        return None
    match = DATA_URL_RE.match(url)
    if not match:
        return None
    return match.group(1), match.group(2)


def _is_raw_pcm(mime_type: str) -> bool:
    base = mime_type.split(";", 1)[0].strip().lower()
    return base in RAW_PCM_TYPES


def decode_clip(data: bytes, mime_type: str | None) -> AudioSegment:
    """Decode clip bytes to an AudioSegment.

    RIFF/WAV is read directly, raw PCM as 24 kHz mono 16-bit, anything else
    through ffmpeg using the MIME type's container format.
    """
    mime = (mime_type or "").strip().lower()
    if data[:4] == b"RIFF":
        return AudioSegment.from_file(io.BytesIO(data), format="wav")
    if not mime or _is_raw_pcm(mime):
        return AudioSegment(
            data=data,
            sample_width=PCM_SAMPLE_WIDTH,
            frame_rate=PCM_SAMPLE_RATE,
            channels=PCM_CHANNELS,
        )
    fmt = MIME_FORMATS.get(mime.split(";", 1)[0].strip())
    return AudioSegment.from_file(io.BytesIO(data), format=fmt)


def decode_base64_clip(audio_data: str, mime_type: str | None) -> AudioSegment:
    return decode_clip(base64.b64decode(audio_data), mime_type)


def segment_to_array(audio: AudioSegment) -> np.ndarray:
    """AudioSegment → float32 array of shape (frames, channels) in [-1, 1]."""
    audio = audio.set_sample_width(2)
    samples = np.array(audio.get_array_of_samples(), dtype=np.float32)
    samples = samples.reshape((-1, audio.channels))
    return samples / 32768.0


def array_to_segment(samples: np.ndarray, frame_rate: int) -> AudioSegment:
    """Float (frames, channels) array → 16-bit AudioSegment, clipping out-of-range values."""
    channels = samples.shape[1] if samples.ndim > 1 else 1
    pcm = np.clip(samples * 32768.0, -32768, 32767).astype(np.int16)
    return AudioSegment(
        data=pcm.flatten().tobytes(),
        sample_width=2,
        frame_rate=frame_rate,
        channels=channels,
    )


def encode_wav(audio: AudioSegment) -> str:
    """Export an AudioSegment as base64 WAV."""
    buf = io.BytesIO()
    audio.export(buf, format="wav")
    return base64.b64encode(buf.getvalue()).decode("ascii")
