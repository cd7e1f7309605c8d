"""Data models for narration production."""

from dataclasses import asdict, dataclass, field

from narration_producer.constants import (
    DEFAULT_MIME_TYPE,
    STATUS_IDLE,
)


# --- Script model (external input) ---

@dataclass
class ScriptLine:
    speaker: str
    line: str
    pause_after_ms: int | None = None  # overrides the computed gap after this line

    @classmethod
    def from_dict(cls, data: dict) -> "ScriptLine":
        return cls(
            speaker=data.get("speaker", ""),
            line=data.get("line", ""),
            pause_after_ms=data.get("pause_after_ms"),
        )


@dataclass
class TimelineItem:
    id: str
    lines: list[ScriptLine] = field(default_factory=list)
    sound_music: str = ""  # SFX / music cue description
    time_start: str = ""
    time_end: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "TimelineItem":
        return cls(
            id=data["id"],
            lines=[ScriptLine.from_dict(line) for line in data.get("lines", [])],
            sound_music=data.get("sound_music", ""),
            time_start=data.get("time_start", ""),
            time_end=data.get("time_end", ""),
        )


@dataclass
class Section:
    id: str
    name: str
    timeline: list[TimelineItem] = field(default_factory=list)
    description: str = ""
    cover_image_description: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "Section":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            timeline=[TimelineItem.from_dict(item) for item in data.get("timeline", [])],
            description=data.get("description", ""),
            cover_image_description=data.get("cover_image_description", ""),
        )


@dataclass
class Character:
    name: str
    description: str = ""
    assigned_voice_id: str | None = None
    tags: list[str] = field(default_factory=list)
    voice_description: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "Character":
        return cls(
            name=data["name"],
            description=data.get("description", ""),
            assigned_voice_id=data.get("assigned_voice_id"),
            tags=list(data.get("tags") or []),
            voice_description=data.get("voice_description", ""),
        )


# --- Voice roster ---

@dataclass
class CustomVoice:
    id: str
    name: str
    ref_audio_data_url: str | None = None
    audio_sample_url: str | None = None


@dataclass
class SystemVoice:
    id: str
    name: str


@dataclass
class ResolvedVoice:
    assigned_id: str | None
    voice_name: str | None
    ref_audio_data_url: str | None


# --- Production state ---

@dataclass
class VoiceAudioSegment:
    line_index: int    # position in the section's flattened line list, blanks included
    speaker: str
    text: str
    audio_data: str = ""
    mime_type: str = DEFAULT_MIME_TYPE
    audio_url: str | None = None
    pause_after_ms: int | None = None
    voice_id: str | None = None

    @property
    def has_audio(self) -> bool:
        return bool(self.audio_data or self.audio_url)

    @classmethod
    def from_dict(cls, data: dict) -> "VoiceAudioSegment":
        return cls(
            line_index=data["line_index"],
            speaker=data.get("speaker", ""),
            text=data.get("text", ""),
            audio_data=data.get("audio_data") or "",
            mime_type=data.get("mime_type") or DEFAULT_MIME_TYPE,
            audio_url=data.get("audio_url"),
            pause_after_ms=data.get("pause_after_ms"),
            voice_id=data.get("voice_id"),
        )


@dataclass
class SectionVoiceStatus:
    status: str = STATUS_IDLE
    progress: int = 0
    audio_segments: list[VoiceAudioSegment] = field(default_factory=list)
    error: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "SectionVoiceStatus":
        return cls(
            status=data.get("status", STATUS_IDLE),
            progress=data.get("progress", 0),
            audio_segments=[VoiceAudioSegment.from_dict(s) for s in data.get("audio_segments", [])],
            error=data.get("error"),
        )


@dataclass
class BgmAudio:
    mime_type: str
    audio_data: str | None = None
    audio_url: str | None = None


@dataclass
class SfxAudio:
    name: str
    prompt: str
    audio_data: str
    mime_type: str
    section_id: str | None = None  # section the cue was written for


@dataclass
class MixedAudioOutput:
    audio_data: str
    mime_type: str
    duration_ms: int


@dataclass
class VoiceGenerationState:
    status: str = STATUS_IDLE
    progress: int = 0
    detail: str | None = None
    current_section_id: str | None = None
    section_status: dict[str, SectionVoiceStatus] = field(default_factory=dict)


@dataclass
class MediaProductionState:
    status: str = STATUS_IDLE
    progress: int = 0
    detail: str | None = None
    bgm_audio: BgmAudio | None = None
    sfx_audios: list[SfxAudio] = field(default_factory=list)


@dataclass
class MixingState:
    status: str = STATUS_IDLE
    progress: int = 0
    detail: str | None = None
    output: MixedAudioOutput | None = None
    error: str | None = None


@dataclass
class ProductionState:
    voice_generation: VoiceGenerationState = field(default_factory=VoiceGenerationState)
    media_production: MediaProductionState = field(default_factory=MediaProductionState)
    mixing_editing: MixingState = field(default_factory=MixingState)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ProductionState":
        voice = data.get("voice_generation", {})
        media = data.get("media_production", {})
        mixing = data.get("mixing_editing", {})
        bgm = media.get("bgm_audio")
        output = mixing.get("output")
        return cls(
            voice_generation=VoiceGenerationState(
                status=voice.get("status", STATUS_IDLE),
                progress=voice.get("progress", 0),
                detail=voice.get("detail"),
                current_section_id=voice.get("current_section_id"),
                section_status={
                    sid: SectionVoiceStatus.from_dict(s)
                    for sid, s in voice.get("section_status", {}).items()
                },
            ),
            media_production=MediaProductionState(
                status=media.get("status", STATUS_IDLE),
                progress=media.get("progress", 0),
                detail=media.get("detail"),
                bgm_audio=BgmAudio(**bgm) if bgm else None,
                sfx_audios=[SfxAudio(**s) for s in media.get("sfx_audios") or []],
            ),
            mixing_editing=MixingState(
                status=mixing.get("status", STATUS_IDLE),
                progress=mixing.get("progress", 0),
                detail=mixing.get("detail"),
                output=MixedAudioOutput(**output) if output else None,
                error=mixing.get("error"),
            ),
        )


@dataclass
class ProjectSettings:
    story_title: str = ""
    subtitle: str = ""
    tone_and_expression: str = ""
    add_bgm: bool = True
    add_sound_effects: bool = True
    has_visual_content: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "ProjectSettings":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass
class ProjectState:
    """Root aggregate for one project session."""
    selected_template_id: str | None = None
    settings: ProjectSettings = field(default_factory=ProjectSettings)
    text_content: str = ""
    uploaded_files: list = field(default_factory=list)  # never serialized
    script_sections: list[Section] = field(default_factory=list)
    characters: list[Character] = field(default_factory=list)
    production: ProductionState = field(default_factory=ProductionState)


# --- Mixing ---

@dataclass(frozen=True)
class AudioMixConfig:
    silence_start_ms: int = 500
    silence_end_ms: int = 1000
    same_speaker_gap_ms: int = 400
    different_speaker_gap_ms: int = 800
    section_gap_ms: int = 2000
    voice_volume: float = 1.0
    bgm_volume: float = 0.15
    sfx_volume: float = 0.35
    bgm_fade_in_ms: int = 1500
    bgm_fade_out_ms: int = 2000
    normalize_audio: bool = True
    compress_audio: bool = False

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict | None) -> "AudioMixConfig":
        """Build a config, filling missing keys from the defaults."""
        if not data:
            return cls()
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass
class AudioTrack:
    mime_type: str = DEFAULT_MIME_TYPE
    audio_data: str | None = None
    audio_url: str | None = None
    speaker: str | None = None
    section_start: bool = False
    pause_after_ms: int | None = None
    start_ms: int | None = None        # explicit cue position (SFX)
    section_index: int | None = None   # section the cue belongs to (SFX)
    volume: float = 1.0


# --- Service payloads ---

@dataclass
class SynthesisRequest:
    text: str
    speaker: str | None = None
    voice_name: str | None = None
    ref_audio_data_url: str | None = None


@dataclass
class GeneratedSegment:
    index: int
    audio_data: str
    mime_type: str
    audio_url: str | None = None
    speaker: str | None = None


@dataclass
class BatchError:
    index: int
    error: str


@dataclass
class BatchResult:
    segments: list[GeneratedSegment] = field(default_factory=list)
    errors: list[BatchError] = field(default_factory=list)
    total_requested: int = 0
    total_generated: int = 0


@dataclass
class BatchProgressEvent:
    type: str  # start | progress | segment | error | done
    index: int | None = None
    total: int | None = None
    speaker: str | None = None
    audio_data: str | None = None
    mime_type: str | None = None
    audio_url: str | None = None
    error: str | None = None


@dataclass
class MusicResult:
    audio_data: str
    mime_type: str
    format: str = ""


@dataclass
class ImageResult:
    image_data: str
    mime_type: str = "image/png"


@dataclass
class MixResult:
    audio_data: str
    mime_type: str
    duration_ms: int
    track_count: int


# --- Draft ---

@dataclass
class DraftSnapshot:
    step: int
    reducer_state: dict
    local_state: dict
    saved_at: float  # ms since epoch

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "DraftSnapshot":
        return cls(
            step=data["step"],
            reducer_state=data["reducer_state"],
            local_state=data.get("local_state") or {},
            saved_at=data.get("saved_at", 0),
        )
