"""Mix voice, background music, and sound effects into one track."""

import asyncio
import base64
import logging
from dataclasses import replace

import numpy as np
import pedalboard
from pydub import AudioSegment

from narration_producer.audio_io import (
    array_to_segment,
    decode_base64_clip,
    encode_wav,
    parse_data_url,
    segment_to_array,
)
from narration_producer.constants import (
    COMPRESSOR_ATTACK_MS,
    COMPRESSOR_RATIO,
    COMPRESSOR_RELEASE_MS,
    COMPRESSOR_THRESHOLD_DB,
    DEFAULT_MIME_TYPE,
    MSG_NO_VOICE_DATA,
    NORMALIZE_PEAK_CEILING,
    PHASE_MIXING,
    STATUS_COMPLETED,
    STATUS_PROCESSING,
)
from narration_producer.errors import NoInputData, ProductionError
from narration_producer.models import AudioMixConfig, AudioTrack, MixedAudioOutput, MixResult
from narration_producer.presets import get_audio_mix_config, preview_config
from narration_producer.state import (
    DiscardMixedOutput,
    ProductionStore,
    SetMixedOutput,
    SetMixingError,
    UpdatePhase,
)

logger = logging.getLogger(__name__)


def ms_to_frames(ms: float, frame_rate: int) -> int:
    return int(round(ms * frame_rate / 1000))


def calculate_gap(prev: AudioTrack, curr: AudioTrack, config: AudioMixConfig) -> int:
    """Silence (ms) inserted before ``curr``.

    Priority: previous track's pause override → section gap → speaker-based gap.
    """
    if prev.pause_after_ms is not None and prev.pause_after_ms > 0:
        return prev.pause_after_ms
    if curr.section_start and config.section_gap_ms > 0:
        return config.section_gap_ms
    if curr.speaker and prev.speaker and curr.speaker == prev.speaker:
        return config.same_speaker_gap_ms
    return config.different_speaker_gap_ms


def _silence(ms: int, frame_rate: int, channels: int) -> np.ndarray:
    return np.zeros((max(ms_to_frames(ms, frame_rate), 0), channels), dtype=np.float32)


def _to_array(audio: AudioSegment, frame_rate: int, channels: int) -> np.ndarray:
    return segment_to_array(audio.set_frame_rate(frame_rate).set_channels(channels))


def _decode(track: AudioTrack) -> AudioSegment:
    if not track.audio_data:
        raise ProductionError("Track has no audio data")
    return decode_base64_clip(track.audio_data, track.mime_type)


def _build_music_bed(music: np.ndarray, total_frames: int) -> np.ndarray:
    """Loop or trim music to fit a given number of frames."""
    if len(music) == 0:
        return np.zeros((total_frames, music.shape[1]), dtype=np.float32)
    reps = -(-total_frames // len(music))
    return np.tile(music, (reps, 1))[:total_frames]


def _fade_envelope(total_frames: int, fade_in: int, fade_out: int) -> np.ndarray:
    """Linear fade-in/fade-out gain curve."""
    envelope = np.ones(total_frames, dtype=np.float32)
    idx = np.arange(total_frames, dtype=np.float32)
    if fade_in > 0:
        envelope = np.minimum(envelope, idx / fade_in)
    if fade_out > 0:
        envelope = np.minimum(envelope, (total_frames - idx) / fade_out)
    return np.clip(envelope, 0.0, 1.0)


def normalize_peak(samples: np.ndarray, ceiling: float = NORMALIZE_PEAK_CEILING) -> np.ndarray:
    """Scale uniformly so the loudest sample sits at ``ceiling``."""
    peak = float(np.max(np.abs(samples))) if samples.size else 0.0
    if peak == 0:
        return samples
    return samples * (ceiling / peak)


def compress(samples: np.ndarray, frame_rate: int) -> np.ndarray:
    """Mild dynamic-range compression."""
    if samples.size == 0:
        return samples
    board = pedalboard.Pedalboard([
        pedalboard.Compressor(
            threshold_db=COMPRESSOR_THRESHOLD_DB,
            ratio=COMPRESSOR_RATIO,
            attack_ms=COMPRESSOR_ATTACK_MS,
            release_ms=COMPRESSOR_RELEASE_MS,
        ),
    ])
    # pedalboard works on (channels, frames)
    processed = board(np.ascontiguousarray(samples.T, dtype=np.float32), frame_rate)
    return processed.T


def mix(
    voice_tracks: list[AudioTrack],
    bgm_track: AudioTrack | None = None,
    sfx_tracks: list[AudioTrack] | None = None,
    config: AudioMixConfig | None = None,
) -> MixResult:
    """Assemble the final track. All tracks must carry ``audio_data``.

    The first voice clip sets the output sample rate and channel count; other
    clips are converted to match. Output is base64 WAV.

    Raises NoInputData for an empty voice track list.
    """
    if not voice_tracks:
        raise NoInputData(MSG_NO_VOICE_DATA)
    config = config or AudioMixConfig()

    clips = [_decode(t) for t in voice_tracks]
    rate = clips[0].frame_rate
    channels = clips[0].channels

    parts = [_silence(config.silence_start_ms, rate, channels)]
    pos = len(parts[0])
    section_offsets = []  # frame where each section's first clip starts

    for i, (track, clip) in enumerate(zip(voice_tracks, clips)):
        if i > 0:
            gap = _silence(calculate_gap(voice_tracks[i - 1], track, config), rate, channels)
            parts.append(gap)
            pos += len(gap)
        if i == 0 or track.section_start:
            section_offsets.append(pos)

        volume = (track.volume if track.volume is not None else 1.0) * config.voice_volume
        samples = _to_array(clip, rate, channels) * volume
        parts.append(samples)
        pos += len(samples)

    parts.append(_silence(config.silence_end_ms, rate, channels))
    timeline = np.concatenate(parts)
    total = len(timeline)

    if bgm_track is not None and total:
        music = _to_array(_decode(bgm_track), rate, channels)
        bed = _build_music_bed(music, total)
        envelope = _fade_envelope(
            total,
            ms_to_frames(config.bgm_fade_in_ms, rate),
            ms_to_frames(config.bgm_fade_out_ms, rate),
        )
        bgm_volume = (bgm_track.volume if bgm_track.volume is not None else 1.0) * config.bgm_volume
        timeline = timeline + bed * envelope[:, None] * bgm_volume

    for sfx in sfx_tracks or []:
        # Cue position is best-effort: explicit offset, else start of its section
        if sfx.start_ms is not None:
            start = ms_to_frames(sfx.start_ms, rate)
        elif sfx.section_index is not None and 0 <= sfx.section_index < len(section_offsets):
            start = section_offsets[sfx.section_index]
        else:
            start = section_offsets[0]
        if start >= total:
            continue
        effect = _to_array(_decode(sfx), rate, channels)
        end = min(start + len(effect), total)
        sfx_volume = (sfx.volume if sfx.volume is not None else 1.0) * config.sfx_volume
        timeline[start:end] += effect[: end - start] * sfx_volume

    if config.normalize_audio:
        timeline = normalize_peak(timeline)
    if config.compress_audio:
        timeline = compress(timeline, rate)

    audio = array_to_segment(timeline, rate)
    return MixResult(
        audio_data=encode_wav(audio),
        mime_type="audio/wav",
        duration_ms=int(round(len(timeline) / rate * 1000)),
        track_count=len(voice_tracks) + (1 if bgm_track else 0) + len(sfx_tracks or []),
    )


async def mix_async(
    voice_tracks: list[AudioTrack],
    bgm_track: AudioTrack | None = None,
    sfx_tracks: list[AudioTrack] | None = None,
    config: AudioMixConfig | None = None,
) -> MixResult:
    """Run ``mix`` on a worker thread."""
    return await asyncio.to_thread(mix, voice_tracks, bgm_track, sfx_tracks, config)


def preview_mix(voice_tracks: list[AudioTrack], config: AudioMixConfig | None = None) -> MixResult:
    """Voice-only mix with minimal start/end silence."""
    return mix(voice_tracks, config=preview_config(config or AudioMixConfig()))


class LocalMixer:
    """Mixes in-process. URL-only tracks are downloaded through ``fetcher`` first."""

    def __init__(self, fetcher=None):
        self.fetcher = fetcher

    async def resolve_track(self, track: AudioTrack) -> AudioTrack:
        if track.audio_data:
            return track
        if not track.audio_url:
            raise ProductionError("Track has neither audio data nor a URL")
        parsed = parse_data_url(track.audio_url)
        if parsed:
            mime, payload = parsed
            return replace(track, audio_data=payload, mime_type=mime)
        if self.fetcher is None:
            raise ProductionError(f"No fetcher available for {track.audio_url}")
        data = await self.fetcher.fetch_bytes(track.audio_url)
        return replace(track, audio_data=base64.b64encode(data).decode("ascii"))

    async def mix(
        self,
        voice_tracks: list[AudioTrack],
        bgm_track: AudioTrack | None = None,
        sfx_tracks: list[AudioTrack] | None = None,
        config: AudioMixConfig | None = None,
    ) -> MixResult:
        voices = [await self.resolve_track(t) for t in voice_tracks]

        bgm = None
        if bgm_track is not None:
            try:
                bgm = await self.resolve_track(bgm_track)
            except ProductionError as e:
                logger.warning("Skipping BGM: %s", e)

        effects = []
        for track in sfx_tracks or []:
            try:
                effects.append(await self.resolve_track(track))
            except ProductionError as e:
                logger.warning("Skipping sound effect: %s", e)

        return await mix_async(voices, bgm, effects, config)


class RemoteMixer:
    """Delegates mixing to the remote service."""

    def __init__(self, client):
        self.client = client

    async def mix(
        self,
        voice_tracks: list[AudioTrack],
        bgm_track: AudioTrack | None = None,
        sfx_tracks: list[AudioTrack] | None = None,
        config: AudioMixConfig | None = None,
    ) -> MixResult:
        return await self.client.mix_audio_tracks(voice_tracks, bgm_track, sfx_tracks, config)


class MixingPipeline:
    """Drives the mixing phase from the current production state.

    Always ends the phase ``completed``; a failed or empty mix leaves the
    reason in ``mixing_editing.error`` so mixing can be retried on its own.
    """

    def __init__(self, store: ProductionStore, mixer, config: AudioMixConfig | None = None):
        self.store = store
        self.mixer = mixer
        self.config = config

    def mix_config(self) -> AudioMixConfig:
        return self.config or get_audio_mix_config(self.store.state.selected_template_id)

    def build_voice_tracks(self) -> tuple[list[AudioTrack], list[str]]:
        """Voice tracks in script order plus the ids of sections that contributed any."""
        state = self.store.state
        statuses = state.production.voice_generation.section_status
        tracks = []
        section_ids = []
        for section in state.script_sections:
            status = statuses.get(section.id)
            if not status:
                continue
            first = True
            for seg in status.audio_segments:
                if not seg.has_audio:
                    continue
                tracks.append(AudioTrack(
                    audio_data=seg.audio_data or None,
                    audio_url=seg.audio_url,
                    mime_type=seg.mime_type or DEFAULT_MIME_TYPE,
                    speaker=seg.speaker,
                    section_start=first,
                    pause_after_ms=seg.pause_after_ms,
                    volume=1.0,
                ))
                if first:
                    section_ids.append(section.id)
                first = False
        return tracks, section_ids

    def build_bgm_track(self) -> AudioTrack | None:
        state = self.store.state
        bgm = state.production.media_production.bgm_audio
        if not state.settings.add_bgm or bgm is None:
            return None
        return AudioTrack(audio_data=bgm.audio_data, audio_url=bgm.audio_url, mime_type=bgm.mime_type)

    def build_sfx_tracks(self, section_ids: list[str]) -> list[AudioTrack]:
        state = self.store.state
        if not state.settings.add_sound_effects:
            return []
        tracks = []
        for sfx in state.production.media_production.sfx_audios:
            if not sfx.audio_data:
                continue
            index = section_ids.index(sfx.section_id) if sfx.section_id in section_ids else None
            tracks.append(AudioTrack(audio_data=sfx.audio_data, mime_type=sfx.mime_type, section_index=index))
        return tracks

    async def perform_mixing(self) -> None:
        self.store.dispatch(DiscardMixedOutput())
        try:
            self.store.dispatch(UpdatePhase(PHASE_MIXING, STATUS_PROCESSING, 10))
            config = self.mix_config()

            voice_tracks, section_ids = self.build_voice_tracks()
            if not voice_tracks:
                raise NoInputData(MSG_NO_VOICE_DATA)

            self.store.dispatch(UpdatePhase(PHASE_MIXING, STATUS_PROCESSING, 30))
            bgm_track = self.build_bgm_track()
            sfx_tracks = self.build_sfx_tracks(section_ids)

            self.store.dispatch(UpdatePhase(PHASE_MIXING, STATUS_PROCESSING, 50))
            result = await self.mixer.mix(voice_tracks, bgm_track, sfx_tracks, config)

            self.store.dispatch(UpdatePhase(PHASE_MIXING, STATUS_PROCESSING, 90))
            self.store.dispatch(SetMixedOutput(MixedAudioOutput(
                audio_data=result.audio_data,
                mime_type=result.mime_type,
                duration_ms=result.duration_ms,
            )))
            self.store.dispatch(UpdatePhase(PHASE_MIXING, STATUS_COMPLETED, 100))
        except NoInputData as e:
            logger.warning("Mixing skipped: %s", e)
            self.store.dispatch(SetMixingError(str(e)))
            self.store.dispatch(UpdatePhase(PHASE_MIXING, STATUS_COMPLETED, 100))
        except Exception as e:
            logger.error("Mixing failed", exc_info=True)
            self.store.dispatch(SetMixingError(str(e) or "Unknown error"))
            self.store.dispatch(UpdatePhase(PHASE_MIXING, STATUS_COMPLETED, 100))
