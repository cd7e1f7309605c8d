"""Voice roster, speaker resolution, and character extraction."""

import logging

from narration_producer.constants import DEFAULT_SPEAKER, DEFAULT_VOICE_NAME
from narration_producer.models import (
    Character,
    CustomVoice,
    ResolvedVoice,
    Section,
    SystemVoice,
)

logger = logging.getLogger(__name__)

# Script annotations that look like speakers but are not
NON_SPEAKER_LABELS = {
    "n/a",
    "none",
    "sfx",
    "sound",
    "music",
    "bgm",
    "transition",
    "sound effect",
    "sound effects",
    "audio",
    "ambience",
    "ambient",
    "[sfx]",
    "[sound]",
    "[music]",
    "[bgm]",
    "[transition]",
    "[fx]",
    "fx",
    "foley",
}


def is_valid_speaker(speaker: str | None) -> bool:
    """True if a line's speaker names a real voice, not a cue annotation."""
    if not speaker:
        return False
    name = speaker.strip()
    if not name:
        return False
    if name.lower() in NON_SPEAKER_LABELS:
        return False
    if name.startswith("[") and name.endswith("]"):
        return False
    if name.startswith("(") and name.endswith(")"):
        return False
    return True


def extract_characters(sections: list[Section], existing: list[Character]) -> list[Character]:
    """Collect unique speakers in script order.

    Existing characters keep their description, voice assignment, and tags.
    """
    by_name = {c.name: c for c in existing}
    seen = []
    for section in sections:
        for item in section.timeline:
            for line in item.lines:
                speaker = (line.speaker or "").strip()
                if is_valid_speaker(speaker) and speaker not in seen:
                    seen.append(speaker)

    characters = []
    for name in seen:
        prev = by_name.get(name)
        if prev:
            characters.append(Character(
                name=name,
                description=prev.description,
                assigned_voice_id=prev.assigned_voice_id,
                tags=list(prev.tags),
                voice_description=prev.voice_description,
            ))
        else:
            characters.append(Character(name=name))
    return characters


class VoiceRoster:
    """Read-only lookup over custom and system voices."""

    def __init__(
        self,
        custom_voices: list[CustomVoice] | None = None,
        system_voices: list[SystemVoice] | None = None,
    ):
        self.custom_voices = list(custom_voices or [])
        self.system_voices = list(system_voices or [])

    def find_custom(self, voice_id: str) -> CustomVoice | None:
        for voice in self.custom_voices:
            if voice.id == voice_id:
                return voice
        return None

    def find_system(self, voice_id: str) -> SystemVoice | None:
        for voice in self.system_voices:
            if voice.id == voice_id:
                return voice
        return None

    @classmethod
    def from_dict(cls, data: dict) -> "VoiceRoster":
        return cls(
            custom_voices=[
                CustomVoice(
                    id=v["id"],
                    name=v.get("name", v["id"]),
                    ref_audio_data_url=v.get("ref_audio_data_url"),
                    audio_sample_url=v.get("audio_sample_url"),
                )
                for v in data.get("custom_voices", [])
            ],
            system_voices=[
                SystemVoice(id=v["id"], name=v.get("name", v["id"]))
                for v in data.get("system_voices", [])
            ],
        )


def resolve_voice(
    speaker: str | None,
    characters: list[Character],
    roster: VoiceRoster,
) -> ResolvedVoice:
    """Resolve a speaker to a system voice name or a custom reference clip.

    Priority: custom voice reference audio → custom voice sample URL →
    system voice id → default voice name.
    """
    character = next((c for c in characters if c.name == speaker), None)
    assigned_id = character.assigned_voice_id if character else None

    if assigned_id:
        custom = roster.find_custom(assigned_id)
        if custom:
            ref = custom.ref_audio_data_url or custom.audio_sample_url
            if ref:
                return ResolvedVoice(assigned_id=assigned_id, voice_name=None, ref_audio_data_url=ref)
            logger.warning("Custom voice %s has no reference audio", assigned_id)

        system = roster.find_system(assigned_id)
        if system:
            return ResolvedVoice(assigned_id=assigned_id, voice_name=system.id, ref_audio_data_url=None)

    return ResolvedVoice(assigned_id=assigned_id, voice_name=DEFAULT_VOICE_NAME, ref_audio_data_url=None)


def find_stale_sections(
    sections: list[Section],
    section_status: dict,
    characters: list[Character],
) -> list[str]:
    """Section ids holding audio made with a voice other than the current assignment.

    Reassigning a voice never invalidates audio on its own; feed the result
    to a filtered voice generation run to refresh only what changed.
    """
    assignments = {c.name: c.assigned_voice_id for c in characters}
    stale = []
    for section in sections:
        status = section_status.get(section.id)
        if not status:
            continue
        for seg in status.audio_segments:
            current = assignments.get(seg.speaker or DEFAULT_SPEAKER)
            if seg.voice_id != current:
                stale.append(section.id)
                break
    return stale
