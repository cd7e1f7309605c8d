"""Tests for the mixing engine and the mixing phase."""

import asyncio
import base64
import io

import numpy as np
import pytest
from pydub import AudioSegment

from narration_producer.constants import MSG_NO_VOICE_DATA, NORMALIZE_PEAK_CEILING, STATUS_COMPLETED
from narration_producer.errors import NetworkFailure, NoInputData
from narration_producer.mixing import (
    LocalMixer,
    MixingPipeline,
    RemoteMixer,
    _build_music_bed,
    _fade_envelope,
    calculate_gap,
    compress,
    mix,
    normalize_peak,
    preview_mix,
)
from narration_producer.models import (
    AudioMixConfig,
    AudioTrack,
    BgmAudio,
    MixedAudioOutput,
    MixResult,
    ProjectSettings,
    ProjectState,
    SectionVoiceStatus,
    SfxAudio,
    VoiceAudioSegment,
)
from narration_producer.state import ProductionStore, SetMixedOutput

from conftest import FakeService, make_section, silent_clip, tone_clip

QUIET = dict(normalize_audio=False, compress_audio=False)


def _decode(result):
    return AudioSegment.from_file(io.BytesIO(base64.b64decode(result.audio_data)), format="wav")


# --- Gap selection ---

def test_gap_pause_override_wins():
    config = AudioMixConfig()
    prev = AudioTrack(speaker="A", pause_after_ms=1500)
    curr = AudioTrack(speaker="A", section_start=True)
    assert calculate_gap(prev, curr, config) == 1500


def test_gap_section_start():
    config = AudioMixConfig(section_gap_ms=2500)
    assert calculate_gap(AudioTrack(speaker="A"), AudioTrack(speaker="A", section_start=True), config) == 2500


def test_gap_section_start_disabled_falls_back_to_speaker():
    config = AudioMixConfig(section_gap_ms=0)
    assert calculate_gap(AudioTrack(speaker="A"), AudioTrack(speaker="A", section_start=True), config) == 400


def test_gap_same_and_different_speaker():
    config = AudioMixConfig()
    assert calculate_gap(AudioTrack(speaker="A"), AudioTrack(speaker="A"), config) == 400
    assert calculate_gap(AudioTrack(speaker="A"), AudioTrack(speaker="B"), config) == 800
    assert calculate_gap(AudioTrack(speaker=None), AudioTrack(speaker=None), config) == 800


def test_gap_zero_pause_is_not_an_override():
    config = AudioMixConfig()
    assert calculate_gap(AudioTrack(speaker="A", pause_after_ms=0), AudioTrack(speaker="A"), config) == 400


# --- Mixing engine ---

def test_two_speakers_total_duration():
    config = AudioMixConfig(silence_start_ms=500, silence_end_ms=1000, different_speaker_gap_ms=800, **QUIET)
    tracks = [
        AudioTrack(audio_data=silent_clip(1000), speaker="A", section_start=True),
        AudioTrack(audio_data=silent_clip(1200), speaker="B"),
    ]
    result = mix(tracks, config=config)
    assert result.duration_ms == 4500
    assert len(_decode(result)) == 4500
    assert result.track_count == 2
    assert result.mime_type == "audio/wav"


def test_section_gap_and_pause_override_in_duration():
    config = AudioMixConfig(silence_start_ms=0, silence_end_ms=0, section_gap_ms=2000, **QUIET)
    tracks = [
        AudioTrack(audio_data=silent_clip(500), speaker="A", section_start=True, pause_after_ms=1500),
        AudioTrack(audio_data=silent_clip(500), speaker="A"),
        AudioTrack(audio_data=silent_clip(500), speaker="A", section_start=True),
    ]
    assert mix(tracks, config=config).duration_ms == 500 + 1500 + 500 + 2000 + 500


def test_empty_voice_tracks_raise():
    with pytest.raises(NoInputData):
        mix([])


def test_bgm_does_not_change_duration_and_is_audible():
    config = AudioMixConfig(silence_start_ms=0, silence_end_ms=0, bgm_fade_in_ms=0, bgm_fade_out_ms=0, **QUIET)
    voice = [AudioTrack(audio_data=silent_clip(1000), speaker="A")]
    bgm = AudioTrack(audio_data=tone_clip(300))
    result = mix(voice, bgm, config=config)
    assert result.duration_ms == 1000
    assert result.track_count == 2
    assert _decode(result).max > 0


def test_sfx_mixed_at_section_start():
    config = AudioMixConfig(silence_start_ms=500, silence_end_ms=0, **QUIET)
    voice = [AudioTrack(audio_data=silent_clip(1000), speaker="A", section_start=True)]
    sfx = [AudioTrack(audio_data=tone_clip(200), section_index=0)]
    result = mix(voice, sfx_tracks=sfx, config=config)
    assert result.track_count == 2
    audio = _decode(result)
    assert audio[:400].max == 0
    assert audio[500:700].max > 0


def test_sfx_past_end_is_dropped():
    config = AudioMixConfig(silence_start_ms=0, silence_end_ms=0, **QUIET)
    voice = [AudioTrack(audio_data=silent_clip(500), speaker="A")]
    sfx = [AudioTrack(audio_data=tone_clip(200), start_ms=5000)]
    result = mix(voice, sfx_tracks=sfx, config=config)
    assert result.duration_ms == 500
    assert _decode(result).max == 0


def test_mix_converts_sample_rates():
    config = AudioMixConfig(silence_start_ms=0, silence_end_ms=0, **QUIET)
    tracks = [
        AudioTrack(audio_data=silent_clip(1000, frame_rate=24000), speaker="A"),
        AudioTrack(audio_data=silent_clip(1000, frame_rate=44100), speaker="A"),
    ]
    result = mix(tracks, config=config)
    assert _decode(result).frame_rate == 24000
    assert result.duration_ms == 2400


def test_normalize_peak():
    samples = np.array([[0.1], [-0.25], [0.2]], dtype=np.float32)
    out = normalize_peak(samples)
    assert np.isclose(np.max(np.abs(out)), NORMALIZE_PEAK_CEILING)
    silence = np.zeros((4, 1), dtype=np.float32)
    assert np.array_equal(normalize_peak(silence), silence)


def test_normalized_mix_peaks_at_ceiling():
    config = AudioMixConfig(silence_start_ms=0, silence_end_ms=0, normalize_audio=True)
    result = mix([AudioTrack(audio_data=tone_clip(500, amplitude=0.2))], config=config)
    peak = _decode(result).max / 32768
    assert abs(peak - NORMALIZE_PEAK_CEILING) < 0.01


def test_compress_keeps_shape():
    t = np.arange(24000) / 24000
    samples = (np.sin(2 * np.pi * 220 * t) * 0.9).astype(np.float32)[:, None]
    out = compress(samples, 24000)
    assert out.shape == samples.shape
    assert np.max(np.abs(out[12000:])) < np.max(np.abs(samples))


def test_music_bed_loops_and_trims():
    music = np.arange(3, dtype=np.float32)[:, None]
    bed = _build_music_bed(music, 7)
    assert bed[:, 0].tolist() == [0, 1, 2, 0, 1, 2, 0]


def test_fade_envelope():
    env = _fade_envelope(10, 4, 4)
    assert env[0] == 0
    assert env[5] == 1
    assert env[-1] < 0.5
    assert np.all(_fade_envelope(5, 0, 0) == 1)


def test_preview_mix_uses_short_silence():
    config = AudioMixConfig(silence_start_ms=2000, silence_end_ms=2000, **QUIET)
    result = preview_mix([AudioTrack(audio_data=silent_clip(500))], config)
    assert result.duration_ms == 700


# --- Mixers ---

def test_local_mixer_resolves_urls():
    config = AudioMixConfig(silence_start_ms=0, silence_end_ms=0, **QUIET)
    service = FakeService()
    tracks = [
        AudioTrack(audio_url="https://cdn.test/line.wav", speaker="A"),
        AudioTrack(audio_url=f"data:audio/wav;base64,{silent_clip(200)}", mime_type="audio/mpeg", speaker="A"),
    ]
    result = asyncio.run(LocalMixer(service).mix(tracks, config=config))
    assert service.fetched == ["https://cdn.test/line.wav"]
    assert result.duration_ms == 100 + 400 + 200


def test_local_mixer_skips_unreachable_bgm():
    config = AudioMixConfig(silence_start_ms=0, silence_end_ms=0, **QUIET)
    voice = [AudioTrack(audio_data=silent_clip(300))]
    bgm = AudioTrack(audio_url="https://cdn.test/bgm.mp3")
    result = asyncio.run(LocalMixer(None).mix(voice, bgm, config=config))
    assert result.duration_ms == 300


def test_remote_mixer_delegates():
    class Client:
        async def mix_audio_tracks(self, voice, bgm, sfx, config):
            return MixResult(audio_data="MIX", mime_type="audio/wav", duration_ms=4500, track_count=len(voice))

    result = asyncio.run(RemoteMixer(Client()).mix([AudioTrack(audio_data="A")]))
    assert result.audio_data == "MIX"


# --- Mixing phase ---

def _store(with_voice=True, settings=None):
    state = ProjectState(
        selected_template_id="podcast",
        settings=settings or ProjectSettings(),
        script_sections=[make_section("s1"), make_section("s2")],
    )
    if with_voice:
        for sid in ("s1", "s2"):
            state.production.voice_generation.section_status[sid] = SectionVoiceStatus(
                status=STATUS_COMPLETED,
                progress=100,
                audio_segments=[
                    VoiceAudioSegment(line_index=0, speaker="Alice", text="Hello", audio_data=silent_clip(300)),
                    VoiceAudioSegment(line_index=1, speaker="Bob", text="Hi", audio_data=""),
                ],
            )
    state.production.media_production.bgm_audio = BgmAudio(mime_type="audio/wav", audio_data=tone_clip(200))
    state.production.media_production.sfx_audios = [
        SfxAudio(name="Ending - SFX", prompt="door", audio_data=tone_clip(100), mime_type="audio/wav", section_id="s2"),
    ]
    return ProductionStore(state)


def test_build_voice_tracks_skips_missing_audio():
    tracks, section_ids = MixingPipeline(_store(), LocalMixer()).build_voice_tracks()
    assert len(tracks) == 2
    assert section_ids == ["s1", "s2"]
    assert all(t.section_start for t in tracks)


def test_build_sfx_tracks_section_index():
    pipeline = MixingPipeline(_store(), LocalMixer())
    assert pipeline.build_sfx_tracks(["s1", "s2"])[0].section_index == 1
    assert pipeline.build_sfx_tracks(["s1"])[0].section_index is None


def test_bgm_and_sfx_respect_settings():
    store = _store(settings=ProjectSettings(add_bgm=False, add_sound_effects=False))
    pipeline = MixingPipeline(store, LocalMixer())
    assert pipeline.build_bgm_track() is None
    assert pipeline.build_sfx_tracks(["s1", "s2"]) == []


def test_mix_config_from_template_or_override():
    store = _store()
    assert MixingPipeline(store, LocalMixer()).mix_config().compress_audio is True
    override = AudioMixConfig(compress_audio=False)
    assert MixingPipeline(store, LocalMixer(), override).mix_config() is override


def test_perform_mixing_success():
    store = _store()
    progress = []
    store.subscribe(lambda state, event: progress.append(state.production.mixing_editing.progress))
    asyncio.run(MixingPipeline(store, LocalMixer(), AudioMixConfig(**QUIET)).perform_mixing())

    mixing = store.production.mixing_editing
    assert mixing.status == STATUS_COMPLETED
    assert mixing.error is None
    assert mixing.output.duration_ms == 500 + 300 + 2000 + 300 + 1000
    assert [10, 30, 50, 90, 100] == sorted(set(p for p in progress if p))


def test_perform_mixing_without_voice_soft_completes():
    store = _store(with_voice=False)
    store.dispatch(SetMixedOutput(MixedAudioOutput("OLD", "audio/wav", 1)))
    asyncio.run(MixingPipeline(store, LocalMixer()).perform_mixing())
    mixing = store.production.mixing_editing
    assert mixing.status == STATUS_COMPLETED
    assert mixing.output is None
    assert mixing.error == MSG_NO_VOICE_DATA


def test_perform_mixing_remote_failure_soft_completes():
    class Failing:
        async def mix(self, *args):
            raise NetworkFailure("Failed to mix audio", 500)

    store = _store()
    asyncio.run(MixingPipeline(store, Failing()).perform_mixing())
    mixing = store.production.mixing_editing
    assert mixing.status == STATUS_COMPLETED
    assert mixing.progress == 100
    assert mixing.error == "Failed to mix audio"
