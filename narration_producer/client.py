"""HTTP client for the remote generation and mixing service."""

import json
import logging
from typing import AsyncIterator

import httpx

from narration_producer.constants import (
    COVER_ASPECT_RATIO,
    MIX_TIMEOUT,
    SERVICE_TIMEOUT,
)
from narration_producer.errors import NetworkFailure
from narration_producer.models import (
    AudioMixConfig,
    AudioTrack,
    BatchError,
    BatchProgressEvent,
    BatchResult,
    GeneratedSegment,
    ImageResult,
    MixResult,
    MusicResult,
    SynthesisRequest,
    SystemVoice,
)

logger = logging.getLogger(__name__)

# snake_case config field → wire name
CONFIG_WIRE_NAMES = {
    "silence_start_ms": "silenceStartMs",
    "silence_end_ms": "silenceEndMs",
    "same_speaker_gap_ms": "sameSpeakerGapMs",
    "different_speaker_gap_ms": "differentSpeakerGapMs",
    "section_gap_ms": "sectionGapMs",
    "voice_volume": "voiceVolume",
    "bgm_volume": "bgmVolume",
    "sfx_volume": "sfxVolume",
    "bgm_fade_in_ms": "bgmFadeInMs",
    "bgm_fade_out_ms": "bgmFadeOutMs",
    "normalize_audio": "normalizeAudio",
    "compress_audio": "compressAudio",
}


def _compact(payload: dict) -> dict:
    """Drop None values; the service treats missing and null the same."""
    return {k: v for k, v in payload.items() if v is not None}


def request_payload(request: SynthesisRequest) -> dict:
    return _compact({
        "text": request.text,
        "speaker": request.speaker,
        "voiceName": request.voice_name,
        "refAudioDataUrl": request.ref_audio_data_url,
    })


def track_payload(track: AudioTrack) -> dict:
    return _compact({
        "audioData": track.audio_data,
        "audioUrl": track.audio_url,
        "mimeType": track.mime_type,
        "speaker": track.speaker,
        "sectionStart": track.section_start or None,
        "pauseAfterMs": track.pause_after_ms,
        "startMs": track.start_ms,
        "volume": track.volume,
    })


def config_payload(config: AudioMixConfig) -> dict:
    return {CONFIG_WIRE_NAMES[k]: v for k, v in config.to_dict().items()}


def parse_batch_result(data: dict) -> BatchResult:
    segments = [
        GeneratedSegment(
            index=s["index"],
            audio_data=s.get("audioData") or "",
            mime_type=s.get("mimeType") or "",
            audio_url=s.get("audioUrl"),
            speaker=s.get("speaker"),
        )
        for s in data.get("segments") or []
    ]
    errors = [
        BatchError(index=e.get("index", -1), error=e.get("error") or "")
        for e in data.get("errors") or []
    ]
    return BatchResult(
        segments=segments,
        errors=errors,
        total_requested=data.get("totalRequested", len(segments) + len(errors)),
        total_generated=data.get("totalGenerated", len(segments)),
    )


def parse_progress_event(data: dict) -> BatchProgressEvent:
    return BatchProgressEvent(
        type=data.get("type", ""),
        index=data.get("index"),
        total=data.get("total"),
        speaker=data.get("speaker"),
        audio_data=data.get("audioData"),
        mime_type=data.get("mimeType"),
        audio_url=data.get("audioUrl"),
        error=data.get("error"),
    )


def _error_message(response: httpx.Response, fallback: str) -> str:
    """Pull the ``{"error": ...}`` message out of a failed response."""
    try:
        body = response.json()
    except ValueError:
        return f"{fallback} (HTTP {response.status_code})"
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return f"{fallback} (HTTP {response.status_code})"


class GenerationClient:
    """Async client for batch TTS, music, SFX, cover art, and mixing endpoints.

    Every failure (transport error, non-2xx status, undecodable body) is
    raised as NetworkFailure.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = SERVICE_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _client(self, timeout: float | None = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or self.timeout,
            transport=self.transport,
        )

    async def _post(self, path: str, payload: dict, fallback: str, timeout: float | None = None) -> dict:
        try:
            async with self._client(timeout) as client:
                response = await client.post(path, json=payload)
                if response.is_error:
                    raise NetworkFailure(_error_message(response, fallback), response.status_code)
                return response.json()
        except httpx.HTTPError as e:
            logger.error("POST %s failed: %s", path, e)
            raise NetworkFailure(f"{fallback}: {e}") from e
        except ValueError as e:
            raise NetworkFailure(f"{fallback}: invalid response body") from e

    async def generate_audio_batch(
        self,
        requests: list[SynthesisRequest],
        default_ref_audio_data_url: str | None = None,
        default_ref_text: str | None = None,
    ) -> BatchResult:
        payload = _compact({
            "segments": [request_payload(r) for r in requests],
            "defaultRefAudioDataUrl": default_ref_audio_data_url,
            "defaultRefText": default_ref_text,
        })
        data = await self._post("/audio/batch", payload, "Failed to generate audio batch")
        return parse_batch_result(data)

    async def generate_audio_batch_stream(
        self,
        requests: list[SynthesisRequest],
        default_ref_audio_data_url: str | None = None,
        default_ref_text: str | None = None,
    ) -> AsyncIterator[BatchProgressEvent]:
        """Yield progress events from the server-sent event stream.

        Lines that are not ``data: {json}`` or carry invalid JSON are skipped.
        """
        payload = _compact({
            "segments": [request_payload(r) for r in requests],
            "defaultRefAudioDataUrl": default_ref_audio_data_url,
            "defaultRefText": default_ref_text,
        })
        try:
            async with self._client() as client:
                async with client.stream("POST", "/audio/batch-stream", json=payload) as response:
                    if response.is_error:
                        await response.aread()
                        raise NetworkFailure(
                            _error_message(response, "Failed to generate audio batch"),
                            response.status_code,
                        )
                    async for line in response.aiter_lines():
                        if not line.startswith("data: "):
                            continue
                        raw = line[6:].strip()
                        if not raw:
                            continue
                        try:
                            data = json.loads(raw)
                        except json.JSONDecodeError:
                            logger.debug("Skipping malformed stream event: %s", raw[:80])
                            continue
                        yield parse_progress_event(data)
        except httpx.HTTPError as e:
            logger.error("Batch stream failed: %s", e)
            raise NetworkFailure(f"Failed to generate audio batch: {e}") from e

    async def generate_bgm(
        self,
        description: str | None = None,
        mood: str | None = None,
        duration_seconds: int | None = None,
    ) -> MusicResult:
        data = await self._post(
            "/music/bgm",
            _compact({"description": description, "mood": mood, "durationSeconds": duration_seconds}),
            "Failed to generate BGM",
        )
        return MusicResult(
            audio_data=data["audioData"],
            mime_type=data.get("mimeType", ""),
            format=data.get("format", ""),
        )

    async def generate_sfx(self, description: str, duration_seconds: int | None = None) -> MusicResult:
        data = await self._post(
            "/music/sfx",
            _compact({"description": description, "durationSeconds": duration_seconds}),
            "Failed to generate sound effect",
        )
        return MusicResult(
            audio_data=data["audioData"],
            mime_type=data.get("mimeType", ""),
            format=data.get("format", ""),
        )

    async def generate_cover_image(self, prompt: str, aspect_ratio: str = COVER_ASPECT_RATIO) -> ImageResult:
        data = await self._post(
            "/image/cover",
            {"prompt": prompt, "aspectRatio": aspect_ratio},
            "Failed to generate cover",
        )
        return ImageResult(image_data=data["imageData"], mime_type=data.get("mimeType", "image/png"))

    async def mix_audio_tracks(
        self,
        voice_tracks: list[AudioTrack],
        bgm_track: AudioTrack | None = None,
        sfx_tracks: list[AudioTrack] | None = None,
        config: AudioMixConfig | None = None,
    ) -> MixResult:
        payload = {"voiceTracks": [track_payload(t) for t in voice_tracks]}
        if bgm_track is not None:
            payload["bgmTrack"] = track_payload(bgm_track)
        if sfx_tracks:
            payload["sfxTracks"] = [track_payload(t) for t in sfx_tracks]
        if config is not None:
            payload["config"] = config_payload(config)
        data = await self._post("/mix", payload, "Failed to mix audio", timeout=MIX_TIMEOUT)
        track_count = len(voice_tracks) + (1 if bgm_track else 0) + len(sfx_tracks or [])
        return MixResult(
            audio_data=data["audioData"],
            mime_type=data.get("mimeType", ""),
            duration_ms=data.get("durationMs", 0),
            track_count=data.get("trackCount", track_count),
        )

    async def get_voices(self) -> list[SystemVoice]:
        try:
            async with self._client() as client:
                response = await client.get("/voice/voices")
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            raise NetworkFailure(f"Failed to fetch voices: {e}") from e
        return [SystemVoice(id=v["id"], name=v.get("name", v["id"])) for v in data.get("voices", [])]

    async def fetch_bytes(self, url: str) -> bytes:
        """Download a stored clip by absolute URL."""
        try:
            async with self._client() as client:
                response = await client.get(url)
                response.raise_for_status()
                return response.content
        except httpx.HTTPError as e:
            raise NetworkFailure(f"Failed to fetch {url}: {e}") from e
