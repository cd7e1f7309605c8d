"""Local generation backend: edge-tts speech with retry, procedural BGM."""

import asyncio
import base64
import logging
from typing import AsyncIterator

import edge_tts

from narration_producer.audio_io import encode_wav
from narration_producer.constants import (
    EDGE_DEFAULT_VOICE,
    TTS_RATE,
    TTS_RETRY_BASE_DELAY,
    TTS_RETRY_COUNT,
)
from narration_producer.errors import ProductionError
from narration_producer.models import (
    BatchError,
    BatchProgressEvent,
    BatchResult,
    GeneratedSegment,
    ImageResult,
    MusicResult,
    SynthesisRequest,
)
from narration_producer.music import generate_procedural_music

logger = logging.getLogger(__name__)

EDGE_MIME_TYPE = "audio/mpeg"


class EdgeTTSService:
    """Drop-in replacement for GenerationClient that runs without the remote service.

    Only system voices are supported: lines resolved to a custom reference
    clip fail individually, like any other per-line batch error.
    """

    def __init__(
        self,
        voice_map: dict[str, str] | None = None,
        default_voice: str = EDGE_DEFAULT_VOICE,
        rate: str = TTS_RATE,
        retry_count: int = TTS_RETRY_COUNT,
        retry_base_delay: float = TTS_RETRY_BASE_DELAY,
    ):
        self.voice_map = dict(voice_map or {})
        self.default_voice = default_voice
        self.rate = rate
        self.retry_count = retry_count
        self.retry_base_delay = retry_base_delay

    def edge_voice(self, voice_name: str | None) -> str:
        """Map a system voice id to an edge-tts voice."""
        if not voice_name:
            return self.default_voice
        if voice_name in self.voice_map:
            return self.voice_map[voice_name]
        if voice_name.endswith("Neural"):
            return voice_name
        return self.default_voice

    async def synthesize(self, text: str, voice: str) -> bytes:
        """Synthesize one line to MP3 bytes.

        Retries on network errors or empty output, with exponential backoff.
        """
        last_error = None
        for attempt in range(self.retry_count):
            try:
                communicate = edge_tts.Communicate(text, voice, rate=self.rate)
                chunks = []
                async for chunk in communicate.stream():
                    if chunk["type"] == "audio":
                        chunks.append(chunk["data"])
                data = b"".join(chunks)
                if data:
                    return data
                last_error = ProductionError(f"TTS produced no audio for: {text[:50]}...")
            except Exception as e:
                last_error = e

            if attempt < self.retry_count - 1:
                await asyncio.sleep(self.retry_base_delay * (2 ** attempt))

        raise last_error

    async def _generate_one(self, index: int, request: SynthesisRequest) -> GeneratedSegment:
        if request.ref_audio_data_url:
            raise ProductionError("Custom reference voices need the remote generation service")
        data = await self.synthesize(request.text, self.edge_voice(request.voice_name))
        return GeneratedSegment(
            index=index,
            audio_data=base64.b64encode(data).decode("ascii"),
            mime_type=EDGE_MIME_TYPE,
            speaker=request.speaker,
        )

    async def generate_audio_batch(self, requests: list[SynthesisRequest], **kwargs) -> BatchResult:
        result = BatchResult(total_requested=len(requests))
        for i, request in enumerate(requests):
            try:
                result.segments.append(await self._generate_one(i, request))
            except Exception as e:
                logger.warning("Line %d failed: %s", i, e)
                result.errors.append(BatchError(index=i, error=str(e)))
        result.total_generated = len(result.segments)
        return result

    async def generate_audio_batch_stream(
        self, requests: list[SynthesisRequest], **kwargs
    ) -> AsyncIterator[BatchProgressEvent]:
        total = len(requests)
        yield BatchProgressEvent(type="start", total=total)
        for i, request in enumerate(requests):
            yield BatchProgressEvent(type="progress", index=i, total=total, speaker=request.speaker)
            try:
                seg = await self._generate_one(i, request)
            except Exception as e:
                logger.warning("Line %d failed: %s", i, e)
                yield BatchProgressEvent(type="error", index=i, total=total, error=str(e))
                continue
            yield BatchProgressEvent(
                type="segment",
                index=i,
                total=total,
                speaker=seg.speaker,
                audio_data=seg.audio_data,
                mime_type=seg.mime_type,
            )
        yield BatchProgressEvent(type="done", total=total)

    async def generate_bgm(
        self,
        description: str | None = None,
        mood: str | None = None,
        duration_seconds: int | None = None,
    ) -> MusicResult:
        prompt = " ".join(p for p in (description, mood) if p)
        kwargs = {"duration_seconds": duration_seconds} if duration_seconds else {}
        audio = await asyncio.to_thread(generate_procedural_music, prompt, **kwargs)
        audio_data = await asyncio.to_thread(encode_wav, audio)
        return MusicResult(audio_data=audio_data, mime_type="audio/wav", format="wav")

    async def generate_sfx(self, description: str, duration_seconds: int | None = None) -> MusicResult:
        raise ProductionError("Sound effect generation needs the remote generation service")

    async def generate_cover_image(self, prompt: str, aspect_ratio: str = "1:1") -> ImageResult:
        raise ProductionError("Cover image generation needs the remote generation service")

    async def fetch_bytes(self, url: str) -> bytes:
        raise ProductionError(f"Cannot fetch {url} without the remote generation service")
