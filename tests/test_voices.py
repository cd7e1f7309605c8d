"""Tests for voice roster, speaker validation, and voice resolution."""

import pytest

from narration_producer.constants import DEFAULT_VOICE_NAME
from narration_producer.models import Character, CustomVoice, SectionVoiceStatus, SystemVoice, VoiceAudioSegment
from narration_producer.voices import (
    VoiceRoster,
    extract_characters,
    find_stale_sections,
    is_valid_speaker,
    resolve_voice,
)

from conftest import make_section


@pytest.mark.parametrize("speaker", ["Alice", "Dr. Smith", "Narrator"])
def test_valid_speakers(speaker):
    assert is_valid_speaker(speaker)


@pytest.mark.parametrize("speaker", ["", "   ", None, "SFX", "music", "[Door slams]", "(whispering)", "N/A"])
def test_invalid_speakers(speaker):
    assert not is_valid_speaker(speaker)


def test_extract_characters_in_script_order():
    sections = [
        make_section("s1", lines=(("Bob", "a"), ("SFX", "boom"), ("Alice", "b"))),
        make_section("s2", lines=(("Alice", "c"), ("Carol", "d"))),
    ]
    assert [c.name for c in extract_characters(sections, [])] == ["Bob", "Alice", "Carol"]


def test_extract_characters_drops_removed_speakers():
    existing = [Character(name="Ghost", assigned_voice_id="Puck")]
    result = extract_characters([make_section(lines=(("Alice", "x"),))], existing)
    assert [c.name for c in result] == ["Alice"]


def _roster():
    return VoiceRoster(
        custom_voices=[
            CustomVoice(id="clone-1", name="My Voice", ref_audio_data_url="data:audio/wav;base64,AAAA"),
            CustomVoice(id="clone-2", name="Sample", audio_sample_url="https://cdn/sample.wav"),
            CustomVoice(id="clone-3", name="Empty"),
        ],
        system_voices=[SystemVoice(id="Puck", name="Puck (upbeat)")],
    )


def test_resolve_custom_voice_uses_reference_audio():
    chars = [Character(name="Alice", assigned_voice_id="clone-1")]
    voice = resolve_voice("Alice", chars, _roster())
    assert voice.ref_audio_data_url == "data:audio/wav;base64,AAAA"
    assert voice.voice_name is None
    assert voice.assigned_id == "clone-1"


def test_resolve_custom_voice_falls_back_to_sample_url():
    chars = [Character(name="Alice", assigned_voice_id="clone-2")]
    assert resolve_voice("Alice", chars, _roster()).ref_audio_data_url == "https://cdn/sample.wav"


def test_resolve_custom_voice_without_audio_uses_default():
    chars = [Character(name="Alice", assigned_voice_id="clone-3")]
    voice = resolve_voice("Alice", chars, _roster())
    assert voice.voice_name == DEFAULT_VOICE_NAME
    assert voice.ref_audio_data_url is None


def test_resolve_system_voice_by_id():
    chars = [Character(name="Bob", assigned_voice_id="Puck")]
    voice = resolve_voice("Bob", chars, _roster())
    assert voice.voice_name == "Puck"


def test_resolve_unassigned_speaker():
    voice = resolve_voice("Nobody", [], _roster())
    assert voice.voice_name == DEFAULT_VOICE_NAME
    assert voice.assigned_id is None


def test_roster_from_dict():
    roster = VoiceRoster.from_dict({
        "custom_voices": [{"id": "c1", "ref_audio_data_url": "data:audio/wav;base64,AA"}],
        "system_voices": [{"id": "Kore"}],
    })
    assert roster.find_custom("c1").name == "c1"
    assert roster.find_system("Kore").name == "Kore"
    assert roster.find_system("missing") is None


def test_find_stale_sections():
    sections = [make_section("s1"), make_section("s2")]
    statuses = {
        "s1": SectionVoiceStatus(audio_segments=[
            VoiceAudioSegment(line_index=0, speaker="Alice", text="Hello", voice_id="Puck"),
        ]),
        "s2": SectionVoiceStatus(audio_segments=[
            VoiceAudioSegment(line_index=0, speaker="Alice", text="Hello", voice_id="Kore"),
        ]),
    }
    chars = [Character(name="Alice", assigned_voice_id="Kore")]
    assert find_stale_sections(sections, statuses, chars) == ["s1"]
