"""Tests for the production reducer and store."""

import pytest

from narration_producer.constants import (
    PHASE_MEDIA,
    PHASE_MIXING,
    PHASE_VOICE,
    STATUS_COMPLETED,
    STATUS_ERROR,
    STATUS_IDLE,
    STATUS_PROCESSING,
)
from narration_producer.models import (
    BgmAudio,
    Character,
    MixedAudioOutput,
    ProjectState,
    SfxAudio,
    VoiceAudioSegment,
)
from narration_producer.state import (
    AddSectionVoiceAudio,
    AddSfxAudio,
    AssignVoice,
    ClearSectionVoice,
    DiscardMixedOutput,
    ExtractCharacters,
    ProductionStore,
    ReplaceSectionVoiceAudio,
    ResetAll,
    ResetProduction,
    RestoreDraft,
    SetBgmAudio,
    SetCurrentSection,
    SetLinePause,
    SetMixedOutput,
    SetMixingError,
    UpdatePhase,
    UpdateScriptLine,
    UpdateSectionVoiceStatus,
    UpdateSfxAudio,
    reduce,
)

from conftest import make_section


def _seg(i, text="x"):
    return VoiceAudioSegment(line_index=i, speaker="A", text=text, audio_data="AAA")


def _state():
    return ProjectState(script_sections=[make_section("s1")])


def test_reduce_does_not_mutate_input():
    state = _state()
    new = reduce(state, UpdatePhase(PHASE_VOICE, STATUS_PROCESSING, 10))
    assert state.production.voice_generation.status == STATUS_IDLE
    assert new.production.voice_generation.status == STATUS_PROCESSING
    assert new is not state


def test_reduce_carries_open_uploads_without_copying(tmp_path):
    with open(tmp_path / "notes.txt", "w+") as upload:
        state = ProjectState(uploaded_files=[upload], script_sections=[make_section("s1")])
        new = reduce(state, UpdatePhase(PHASE_VOICE, STATUS_PROCESSING, 10))
        assert new.uploaded_files[0] is upload
        assert new.uploaded_files is not state.uploaded_files


def test_update_phase_sets_status_progress_detail_together():
    state = reduce(_state(), UpdatePhase(PHASE_MEDIA, STATUS_PROCESSING, 40, "Generating BGM"))
    state = reduce(state, UpdatePhase(PHASE_MEDIA, STATUS_COMPLETED, 100))
    media = state.production.media_production
    assert (media.status, media.progress, media.detail) == (STATUS_COMPLETED, 100, None)


def test_update_section_status_creates_entry():
    state = reduce(_state(), UpdateSectionVoiceStatus("s1", STATUS_PROCESSING, 0))
    entry = state.production.voice_generation.section_status["s1"]
    assert entry.status == STATUS_PROCESSING
    assert entry.audio_segments == []


def test_update_section_status_keeps_progress_when_omitted():
    state = reduce(_state(), UpdateSectionVoiceStatus("s1", STATUS_PROCESSING, 60))
    state = reduce(state, UpdateSectionVoiceStatus("s1", STATUS_ERROR, error="boom"))
    entry = state.production.voice_generation.section_status["s1"]
    assert entry.progress == 60
    assert entry.error == "boom"


def test_add_section_audio_appends():
    state = reduce(_state(), AddSectionVoiceAudio("s1", _seg(0)))
    state = reduce(state, AddSectionVoiceAudio("s1", _seg(1)))
    segs = state.production.voice_generation.section_status["s1"].audio_segments
    assert [s.line_index for s in segs] == [0, 1]


def test_replace_section_audio_in_place():
    state = reduce(_state(), AddSectionVoiceAudio("s1", _seg(0, "a")))
    state = reduce(state, AddSectionVoiceAudio("s1", _seg(1, "b")))
    state = reduce(state, ReplaceSectionVoiceAudio("s1", 1, _seg(1, "b2")))
    segs = state.production.voice_generation.section_status["s1"].audio_segments
    assert [s.text for s in segs] == ["a", "b2"]


def test_replace_out_of_range_is_ignored():
    state = reduce(_state(), AddSectionVoiceAudio("s1", _seg(0)))
    state = reduce(state, ReplaceSectionVoiceAudio("s1", 5, _seg(5)))
    assert len(state.production.voice_generation.section_status["s1"].audio_segments) == 1


def test_clear_section_voice_resets_entry():
    state = reduce(_state(), UpdateSectionVoiceStatus("s1", STATUS_ERROR, 30, "bad"))
    state = reduce(state, AddSectionVoiceAudio("s1", _seg(0)))
    state = reduce(state, ClearSectionVoice("s1"))
    entry = state.production.voice_generation.section_status["s1"]
    assert (entry.status, entry.progress, entry.audio_segments, entry.error) == (STATUS_IDLE, 0, [], None)


def test_current_section():
    state = reduce(_state(), SetCurrentSection("s1"))
    assert state.production.voice_generation.current_section_id == "s1"
    state = reduce(state, SetCurrentSection(None))
    assert state.production.voice_generation.current_section_id is None


def test_media_events():
    state = reduce(_state(), SetBgmAudio(BgmAudio(mime_type="audio/wav", audio_url="http://h/bgm.wav")))
    state = reduce(state, AddSfxAudio(SfxAudio("a", "door", "AAA", "audio/wav")))
    state = reduce(state, UpdateSfxAudio(0, SfxAudio("a", "door", "BBB", "audio/wav")))
    media = state.production.media_production
    assert media.bgm_audio.audio_url == "http://h/bgm.wav"
    assert media.sfx_audios[0].audio_data == "BBB"


def test_mixed_output_clears_error():
    state = reduce(_state(), SetMixingError("No voice data available"))
    state = reduce(state, SetMixedOutput(MixedAudioOutput("AAA", "audio/wav", 4500)))
    assert state.production.mixing_editing.error is None
    state = reduce(state, DiscardMixedOutput())
    assert state.production.mixing_editing.output is None


def test_reset_production_keeps_script():
    state = reduce(_state(), UpdatePhase(PHASE_MIXING, STATUS_COMPLETED, 100))
    state = reduce(state, ResetProduction())
    assert state.production.mixing_editing.status == STATUS_IDLE
    assert state.script_sections[0].id == "s1"


def test_reset_all():
    assert reduce(_state(), ResetAll()) == ProjectState()


def test_restore_draft_drops_uploaded_files():
    draft = _state()
    draft.uploaded_files = ["big.pdf"]
    draft.production.voice_generation.status = STATUS_COMPLETED
    state = reduce(ProjectState(uploaded_files=["other.txt"]), RestoreDraft(draft))
    assert state.uploaded_files == []
    assert state.production.voice_generation.status == STATUS_COMPLETED
    assert state.script_sections[0].id == "s1"


def test_script_line_edits():
    state = reduce(_state(), UpdateScriptLine("s1", "s1-t1", 0, "line", "Hello there"))
    state = reduce(state, SetLinePause("s1", "s1-t1", 0, 1200))
    line = state.script_sections[0].timeline[0].lines[0]
    assert line.line == "Hello there"
    assert line.pause_after_ms == 1200


def test_script_line_rejects_unknown_field():
    with pytest.raises(ValueError):
        reduce(_state(), UpdateScriptLine("s1", "s1-t1", 0, "voice", "x"))


def test_extract_and_assign_characters():
    state = reduce(_state(), ExtractCharacters())
    assert [c.name for c in state.characters] == ["Alice", "Bob"]
    state = reduce(state, AssignVoice(1, "Puck"))
    assert state.characters[1].assigned_voice_id == "Puck"


def test_unknown_event_raises():
    with pytest.raises(TypeError):
        reduce(_state(), object())


def test_store_notifies_and_unsubscribes():
    store = ProductionStore(_state())
    seen = []
    unsubscribe = store.subscribe(lambda state, event: seen.append(type(event).__name__))
    store.dispatch(SetCurrentSection("s1"))
    unsubscribe()
    store.dispatch(SetCurrentSection(None))
    assert seen == ["SetCurrentSection"]
    assert store.production.voice_generation.current_section_id is None


def test_store_section_status():
    store = ProductionStore(_state())
    assert store.section_status("s1") is None
    store.dispatch(UpdateSectionVoiceStatus("s1", STATUS_PROCESSING, 0))
    assert store.section_status("s1").status == STATUS_PROCESSING


def test_characters_preserved_by_extract():
    state = _state()
    state.characters = [Character(name="Bob", assigned_voice_id="Charon", description="gruff")]
    state = reduce(state, ExtractCharacters())
    bob = next(c for c in state.characters if c.name == "Bob")
    assert bob.assigned_voice_id == "Charon"
    assert bob.description == "gruff"
