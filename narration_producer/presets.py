"""Audio mix presets by content type."""

from dataclasses import replace

from narration_producer.constants import PREVIEW_SILENCE_MS
from narration_producer.models import AudioMixConfig

AUDIO_MIX_PRESETS = {
    # ACX/Audible-style pacing
    "audiobook": AudioMixConfig(
        silence_start_ms=750,
        silence_end_ms=3000,
        same_speaker_gap_ms=400,
        different_speaker_gap_ms=800,
        section_gap_ms=3000,
        voice_volume=1.0,
        bgm_volume=0.08,
        sfx_volume=0.25,
        bgm_fade_in_ms=2000,
        bgm_fade_out_ms=3000,
        normalize_audio=True,
        compress_audio=False,
    ),
    "podcast": AudioMixConfig(
        silence_start_ms=500,
        silence_end_ms=1000,
        same_speaker_gap_ms=300,
        different_speaker_gap_ms=600,
        section_gap_ms=2000,
        voice_volume=1.0,
        bgm_volume=0.12,
        sfx_volume=0.35,
        bgm_fade_in_ms=1500,
        bgm_fade_out_ms=2000,
        normalize_audio=True,
        compress_audio=True,
    ),
    "educational": AudioMixConfig(
        silence_start_ms=800,
        silence_end_ms=1500,
        same_speaker_gap_ms=500,
        different_speaker_gap_ms=1000,
        section_gap_ms=2500,
        voice_volume=1.0,
        bgm_volume=0.06,
        sfx_volume=0.30,
        bgm_fade_in_ms=1000,
        bgm_fade_out_ms=1500,
        normalize_audio=True,
        compress_audio=False,
    ),
    "immersive": AudioMixConfig(
        silence_start_ms=1000,
        silence_end_ms=2000,
        same_speaker_gap_ms=350,
        different_speaker_gap_ms=700,
        section_gap_ms=3000,
        voice_volume=1.0,
        bgm_volume=0.18,
        sfx_volume=0.45,
        bgm_fade_in_ms=2500,
        bgm_fade_out_ms=3500,
        normalize_audio=True,
        compress_audio=False,
    ),
    "shortform": AudioMixConfig(
        silence_start_ms=300,
        silence_end_ms=500,
        same_speaker_gap_ms=200,
        different_speaker_gap_ms=400,
        section_gap_ms=1000,
        voice_volume=1.0,
        bgm_volume=0.10,
        sfx_volume=0.30,
        bgm_fade_in_ms=500,
        bgm_fade_out_ms=800,
        normalize_audio=True,
        compress_audio=True,
    ),
    "default": AudioMixConfig(),
}

# Template id → preset name
TEMPLATE_PRESETS = {
    "audiobook": "audiobook",
    "podcast": "podcast",
    "educational": "educational",
    "adv-unabridged-audiobook": "audiobook",
    "adv-multivoice-audiobook": "audiobook",
    "adv-immersive-audiobook": "immersive",
    "adv-solo-podcast": "podcast",
    "adv-interview-podcast": "podcast",
    "adv-daily-briefing": "shortform",
    "adv-elearning-modules": "educational",
    "adv-custom": "default",
}


def get_audio_mix_config(template_id: str | None) -> AudioMixConfig:
    """Return the mix preset for a template id (default preset if unknown)."""
    if not template_id:
        return AUDIO_MIX_PRESETS["default"]
    preset = TEMPLATE_PRESETS.get(template_id, "default")
    return AUDIO_MIX_PRESETS[preset]


def preview_config(config: AudioMixConfig) -> AudioMixConfig:
    """Same config with minimal start/end silence, for quick previews."""
    return replace(config, silence_start_ms=PREVIEW_SILENCE_MS, silence_end_ms=PREVIEW_SILENCE_MS)
