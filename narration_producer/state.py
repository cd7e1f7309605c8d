"""Production state: events, a pure reducer, and a small dispatching store.

Every change to a ProjectState goes through ``reduce(state, event)``, which
works on a private copy and returns it. The input state is never mutated.
"""

import copy
import logging
from dataclasses import dataclass, field, replace
from typing import Callable

from narration_producer.constants import (
    PHASE_MEDIA,
    PHASE_MIXING,
    PHASE_VOICE,
    STATUS_IDLE,
    STATUS_PROCESSING,
)
from narration_producer.models import (
    BgmAudio,
    Character,
    MixedAudioOutput,
    ProductionState,
    ProjectState,
    Section,
    SectionVoiceStatus,
    SfxAudio,
    VoiceAudioSegment,
)
from narration_producer.voices import extract_characters

logger = logging.getLogger(__name__)

# Phase name → attribute on ProductionState
PHASE_ATTRS = {
    PHASE_VOICE: "voice_generation",
    PHASE_MEDIA: "media_production",
    PHASE_MIXING: "mixing_editing",
}


# --- Production events ---

@dataclass(frozen=True)
class UpdatePhase:
    phase: str
    status: str
    progress: int
    detail: str | None = None


@dataclass(frozen=True)
class UpdateSectionVoiceStatus:
    section_id: str
    status: str
    progress: int | None = None
    error: str | None = None


@dataclass(frozen=True)
class AddSectionVoiceAudio:
    section_id: str
    audio: VoiceAudioSegment


@dataclass(frozen=True)
class ReplaceSectionVoiceAudio:
    section_id: str
    audio_index: int
    audio: VoiceAudioSegment


@dataclass(frozen=True)
class ClearSectionVoice:
    section_id: str


@dataclass(frozen=True)
class SetCurrentSection:
    section_id: str | None


@dataclass(frozen=True)
class SetBgmAudio:
    audio: BgmAudio | None


@dataclass(frozen=True)
class AddSfxAudio:
    sfx: SfxAudio


@dataclass(frozen=True)
class UpdateSfxAudio:
    index: int
    sfx: SfxAudio


@dataclass(frozen=True)
class ClearMediaAudio:
    pass


@dataclass(frozen=True)
class SetMixedOutput:
    output: MixedAudioOutput


@dataclass(frozen=True)
class SetMixingError:
    error: str | None


@dataclass(frozen=True)
class DiscardMixedOutput:
    pass


@dataclass(frozen=True)
class ResetProduction:
    pass


@dataclass(frozen=True)
class RestoreDraft:
    state: ProjectState


@dataclass(frozen=True)
class ResetAll:
    pass


# --- Script editing events ---

@dataclass(frozen=True)
class SetScriptSections:
    sections: list[Section] = field(default_factory=list)


@dataclass(frozen=True)
class UpdateScriptLine:
    section_id: str
    item_id: str
    line_index: int
    field: str   # "speaker" or "line"
    value: str


@dataclass(frozen=True)
class SetLinePause:
    section_id: str
    item_id: str
    line_index: int
    pause_after_ms: int | None


@dataclass(frozen=True)
class SetCharacters:
    characters: list[Character] = field(default_factory=list)


@dataclass(frozen=True)
class AssignVoice:
    character_index: int
    voice_id: str | None


@dataclass(frozen=True)
class ExtractCharacters:
    pass


# --- Handlers (each mutates the private copy it is given) ---

def _find_item(state: ProjectState, section_id: str, item_id: str):
    for section in state.script_sections:
        if section.id != section_id:
            continue
        for item in section.timeline:
            if item.id == item_id:
                return item
    return None


def _update_phase(state: ProjectState, event: UpdatePhase) -> None:
    phase = getattr(state.production, PHASE_ATTRS[event.phase])
    # status, progress and detail always move together
    phase.status = event.status
    phase.progress = event.progress
    phase.detail = event.detail
    logger.debug("%s → %s (%d%%) %s", event.phase, event.status, event.progress, event.detail or "")


def _update_section_voice_status(state: ProjectState, event: UpdateSectionVoiceStatus) -> None:
    statuses = state.production.voice_generation.section_status
    entry = statuses.setdefault(event.section_id, SectionVoiceStatus())
    entry.status = event.status
    if event.progress is not None:
        entry.progress = event.progress
    if event.error is not None:
        entry.error = event.error


def _add_section_voice_audio(state: ProjectState, event: AddSectionVoiceAudio) -> None:
    statuses = state.production.voice_generation.section_status
    entry = statuses.setdefault(event.section_id, SectionVoiceStatus(status=STATUS_PROCESSING))
    entry.audio_segments.append(event.audio)


def _replace_section_voice_audio(state: ProjectState, event: ReplaceSectionVoiceAudio) -> None:
    entry = state.production.voice_generation.section_status.get(event.section_id)
    if entry and 0 <= event.audio_index < len(entry.audio_segments):
        entry.audio_segments[event.audio_index] = event.audio


def _clear_section_voice(state: ProjectState, event: ClearSectionVoice) -> None:
    statuses = state.production.voice_generation.section_status
    if event.section_id in statuses:
        statuses[event.section_id] = SectionVoiceStatus(status=STATUS_IDLE, progress=0, audio_segments=[])


def _set_current_section(state: ProjectState, event: SetCurrentSection) -> None:
    state.production.voice_generation.current_section_id = event.section_id


def _set_bgm_audio(state: ProjectState, event: SetBgmAudio) -> None:
    state.production.media_production.bgm_audio = event.audio


def _add_sfx_audio(state: ProjectState, event: AddSfxAudio) -> None:
    state.production.media_production.sfx_audios.append(event.sfx)


def _update_sfx_audio(state: ProjectState, event: UpdateSfxAudio) -> None:
    sfx = state.production.media_production.sfx_audios
    if 0 <= event.index < len(sfx):
        sfx[event.index] = event.sfx


def _clear_media_audio(state: ProjectState, event: ClearMediaAudio) -> None:
    state.production.media_production.bgm_audio = None
    state.production.media_production.sfx_audios = []


def _set_mixed_output(state: ProjectState, event: SetMixedOutput) -> None:
    state.production.mixing_editing.output = event.output
    state.production.mixing_editing.error = None


def _set_mixing_error(state: ProjectState, event: SetMixingError) -> None:
    state.production.mixing_editing.error = event.error


def _discard_mixed_output(state: ProjectState, event: DiscardMixedOutput) -> None:
    state.production.mixing_editing.output = None
    state.production.mixing_editing.error = None


def _reset_production(state: ProjectState, event: ResetProduction) -> None:
    state.production = ProductionState()


def _restore_draft(state: ProjectState, event: RestoreDraft) -> None:
    restored = copy.deepcopy(replace(event.state, uploaded_files=[]))
    state.selected_template_id = restored.selected_template_id
    state.settings = restored.settings
    state.text_content = restored.text_content
    state.uploaded_files = []
    state.script_sections = restored.script_sections
    state.characters = restored.characters
    state.production = restored.production


def _set_script_sections(state: ProjectState, event: SetScriptSections) -> None:
    state.script_sections = copy.deepcopy(event.sections)


def _update_script_line(state: ProjectState, event: UpdateScriptLine) -> None:
    if event.field not in ("speaker", "line"):
        raise ValueError(f"Unknown script line field: {event.field}")
    item = _find_item(state, event.section_id, event.item_id)
    if item and 0 <= event.line_index < len(item.lines):
        setattr(item.lines[event.line_index], event.field, event.value)


def _set_line_pause(state: ProjectState, event: SetLinePause) -> None:
    item = _find_item(state, event.section_id, event.item_id)
    if item and 0 <= event.line_index < len(item.lines):
        item.lines[event.line_index].pause_after_ms = event.pause_after_ms


def _set_characters(state: ProjectState, event: SetCharacters) -> None:
    state.characters = copy.deepcopy(event.characters)


def _assign_voice(state: ProjectState, event: AssignVoice) -> None:
    if 0 <= event.character_index < len(state.characters):
        state.characters[event.character_index].assigned_voice_id = event.voice_id


def _extract_characters(state: ProjectState, event: ExtractCharacters) -> None:
    state.characters = extract_characters(state.script_sections, state.characters)


HANDLERS = {
    UpdatePhase: _update_phase,
    UpdateSectionVoiceStatus: _update_section_voice_status,
    AddSectionVoiceAudio: _add_section_voice_audio,
    ReplaceSectionVoiceAudio: _replace_section_voice_audio,
    ClearSectionVoice: _clear_section_voice,
    SetCurrentSection: _set_current_section,
    SetBgmAudio: _set_bgm_audio,
    ClearMediaAudio: _clear_media_audio,
    AddSfxAudio: _add_sfx_audio,
    UpdateSfxAudio: _update_sfx_audio,
    SetMixedOutput: _set_mixed_output,
    SetMixingError: _set_mixing_error,
    DiscardMixedOutput: _discard_mixed_output,
    ResetProduction: _reset_production,
    RestoreDraft: _restore_draft,
    SetScriptSections: _set_script_sections,
    UpdateScriptLine: _update_script_line,
    SetLinePause: _set_line_pause,
    SetCharacters: _set_characters,
    AssignVoice: _assign_voice,
    ExtractCharacters: _extract_characters,
}


def reduce(state: ProjectState, event) -> ProjectState:
    """Apply one event and return the new state."""
    if isinstance(event, ResetAll):
        return ProjectState()
    handler = HANDLERS.get(type(event))
    if handler is None:
        raise TypeError(f"Unknown event: {type(event).__name__}")
    # uploaded files are carried over by reference, never copied
    new_state = copy.deepcopy(replace(state, uploaded_files=[]))
    new_state.uploaded_files = list(state.uploaded_files)
    handler(new_state, event)
    return new_state


class ProductionStore:
    """Holds the current ProjectState and notifies subscribers on each change."""

    def __init__(self, state: ProjectState | None = None):
        self._state = state if state is not None else ProjectState()
        self._subscribers: list[Callable] = []

    @property
    def state(self) -> ProjectState:
        return self._state

    @property
    def production(self) -> ProductionState:
        return self._state.production

    def section_status(self, section_id: str) -> SectionVoiceStatus | None:
        return self._state.production.voice_generation.section_status.get(section_id)

    def dispatch(self, event) -> ProjectState:
        self._state = reduce(self._state, event)
        for callback in list(self._subscribers):
            callback(self._state, event)
        return self._state

    def subscribe(self, callback: Callable) -> Callable[[], None]:
        """Register ``callback(state, event)``. Returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe
