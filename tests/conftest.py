"""Shared fixtures for narration producer tests."""

import numpy as np
import pytest
from pydub import AudioSegment

from narration_producer.audio_io import encode_wav
from narration_producer.models import (
    BatchError,
    BatchProgressEvent,
    BatchResult,
    GeneratedSegment,
    ImageResult,
    MusicResult,
    ProjectSettings,
    ProjectState,
    ScriptLine,
    Section,
    TimelineItem,
)
from narration_producer.state import ProductionStore

CLIP_RATE = 24000


def silent_clip(duration_ms=100, frame_rate=CLIP_RATE):
    """Base64 WAV of silence."""
    return encode_wav(AudioSegment.silent(duration=duration_ms, frame_rate=frame_rate))


def tone_clip(duration_ms=100, frame_rate=CLIP_RATE, amplitude=0.5, freq=440.0):
    """Base64 WAV of a sine tone."""
    t = np.arange(int(frame_rate * duration_ms / 1000)) / frame_rate
    samples = (np.sin(2 * np.pi * freq * t) * amplitude * 32767).astype(np.int16)
    audio = AudioSegment(data=samples.tobytes(), sample_width=2, frame_rate=frame_rate, channels=1)
    return encode_wav(audio)


class FakeService:
    """In-memory stand-in for the generation service.

    Lines whose text is in ``fail_texts`` fail individually; ``raise_error``
    makes every batch call raise. Media kinds in ``fail_media`` raise.
    """

    def __init__(self, fail_texts=(), raise_error=None, fail_media=(), clip_ms=100):
        self.fail_texts = set(fail_texts)
        self.raise_error = raise_error
        self.fail_media = set(fail_media)
        self.clip = silent_clip(clip_ms)
        self.batches = []
        self.bgm_calls = []
        self.sfx_calls = []
        self.image_calls = []
        self.fetched = []

    async def generate_audio_batch(self, requests, **kwargs):
        self.batches.append(list(requests))
        if self.raise_error:
            raise self.raise_error
        segments, errors = [], []
        for i, request in enumerate(requests):
            if request.text in self.fail_texts:
                errors.append(BatchError(index=i, error=f"could not voice {request.text}"))
            else:
                segments.append(GeneratedSegment(
                    index=i, audio_data=self.clip, mime_type="audio/wav", speaker=request.speaker,
                ))
        return BatchResult(
            segments=segments,
            errors=errors,
            total_requested=len(requests),
            total_generated=len(segments),
        )

    async def generate_audio_batch_stream(self, requests, **kwargs):
        result = await self.generate_audio_batch(requests)
        yield BatchProgressEvent(type="start", total=len(requests))
        for seg in result.segments:
            yield BatchProgressEvent(
                type="segment", index=seg.index, total=len(requests),
                speaker=seg.speaker, audio_data=seg.audio_data, mime_type=seg.mime_type,
            )
        for err in result.errors:
            yield BatchProgressEvent(type="error", index=err.index, total=len(requests), error=err.error)
        yield BatchProgressEvent(type="done", total=len(requests))

    async def generate_bgm(self, description=None, mood=None, duration_seconds=None):
        self.bgm_calls.append((description, mood, duration_seconds))
        if "bgm" in self.fail_media:
            raise RuntimeError("music model unavailable")
        return MusicResult(audio_data=self.clip, mime_type="audio/wav", format="wav")

    async def generate_sfx(self, description, duration_seconds=None):
        self.sfx_calls.append((description, duration_seconds))
        if "sfx" in self.fail_media:
            raise RuntimeError("sfx model unavailable")
        return MusicResult(audio_data=self.clip, mime_type="audio/wav", format="wav")

    async def generate_cover_image(self, prompt, aspect_ratio="1:1"):
        self.image_calls.append((prompt, aspect_ratio))
        if "images" in self.fail_media:
            raise RuntimeError("image model unavailable")
        return ImageResult(image_data="data:image/png;base64,AAAA", mime_type="image/png")

    async def fetch_bytes(self, url):
        self.fetched.append(url)
        return AudioSegment.silent(duration=100, frame_rate=CLIP_RATE).export(format="wav").read()


def make_section(section_id="s1", name="Chapter 1", lines=(("Alice", "Hello"), ("Bob", "Hi")), sound_music=""):
    """A section with one timeline item holding the given (speaker, text) lines."""
    return Section(
        id=section_id,
        name=name,
        timeline=[TimelineItem(
            id=f"{section_id}-t1",
            lines=[ScriptLine(speaker=s, line=t) for s, t in lines],
            sound_music=sound_music,
        )],
    )


@pytest.fixture
def fake_service():
    return FakeService()


@pytest.fixture
def sample_sections():
    return [
        make_section("s1", "Opening", (("Alice", "Hello"), ("Bob", "Hi"))),
        make_section("s2", "Ending", (("Alice", "Goodbye"),)),
    ]


@pytest.fixture
def store(sample_sections):
    state = ProjectState(
        selected_template_id="podcast",
        settings=ProjectSettings(story_title="Test Story", tone_and_expression="calm"),
        script_sections=sample_sections,
    )
    return ProductionStore(state)
