"""End-to-end production session: voice → media → mix, resumable from a draft."""

import logging

from narration_producer.constants import (
    PHASE_VOICE,
    STATUS_COMPLETED,
    STATUS_ERROR,
)
from narration_producer.draft import DraftAutosaver, DraftStore, clear_draft
from narration_producer.media_production import (
    SOURCE_GENERATE,
    SOURCE_LIBRARY,
    MediaLibrary,
    MediaProductionOrchestrator,
    MediaSelection,
    sfx_key,
)
from narration_producer.mixing import MixingPipeline
from narration_producer.models import AudioMixConfig, ProjectState
from narration_producer.state import ClearMediaAudio, ProductionStore, UpdatePhase
from narration_producer.voice_generation import VoiceSynthesisOrchestrator
from narration_producer.voices import VoiceRoster

logger = logging.getLogger(__name__)

# Wizard steps recorded in drafts
STEP_VOICE = 1
STEP_MEDIA = 2
STEP_MIXING = 3
STEP_DONE = 4


def step_for(state: ProjectState) -> int:
    """The first step whose phase has not completed."""
    production = state.production
    if production.voice_generation.status != STATUS_COMPLETED:
        return STEP_VOICE
    if production.media_production.status != STATUS_COMPLETED:
        return STEP_MEDIA
    if production.mixing_editing.output is None:
        return STEP_MIXING
    return STEP_DONE


def sections_needing_voice(state: ProjectState) -> set[str]:
    """Sections not completed, or holding segments whose audio was stripped."""
    statuses = state.production.voice_generation.section_status
    pending = set()
    for section in state.script_sections:
        status = statuses.get(section.id)
        if status is None or status.status != STATUS_COMPLETED:
            pending.add(section.id)
        elif any(not seg.has_audio for seg in status.audio_segments):
            pending.add(section.id)
    return pending


def media_missing(
    state: ProjectState,
    bgm_selection: MediaSelection | None,
    sfx_selections: dict[str, MediaSelection],
) -> bool:
    """True if selected BGM or SFX audio is absent, e.g. after a lite draft."""
    settings = state.settings
    media = state.production.media_production
    if settings.add_bgm and bgm_selection and media.bgm_audio is None:
        return True
    if not settings.add_sound_effects:
        return False
    have = {}
    for sfx in media.sfx_audios:
        have[sfx.section_id] = have.get(sfx.section_id, 0) + 1
    for section in state.script_sections:
        wanted = 0
        for item in section.timeline:
            selection = sfx_selections.get(sfx_key(section.id, item.id))
            if item.sound_music.strip() and selection and selection.source in (SOURCE_GENERATE, SOURCE_LIBRARY):
                wanted += 1
        if have.get(section.id, 0) < wanted:
            return True
    return False


class ProductionSession:
    """One active pipeline over one ProductionStore."""

    def __init__(
        self,
        store: ProductionStore,
        service,
        mixer,
        roster: VoiceRoster | None = None,
        library: MediaLibrary | None = None,
        draft_store: DraftStore | None = None,
        config: AudioMixConfig | None = None,
        use_stream: bool = False,
    ):
        self.store = store
        self.draft_store = draft_store
        title = store.state.settings.story_title
        self.voice = VoiceSynthesisOrchestrator(store, service, roster, use_stream=use_stream)
        self.media = MediaProductionOrchestrator(store, service, library, title=title)
        self.mixing = MixingPipeline(store, mixer, config)
        self.autosaver = DraftAutosaver(draft_store) if draft_store else None

    async def run(
        self,
        bgm_selection: MediaSelection | None = None,
        sfx_selections: dict[str, MediaSelection] | None = None,
        resume: bool = False,
    ) -> ProjectState:
        """Run every phase in order.

        With ``resume`` only unfinished work is redone: sections that are not
        completed (or lost their audio to a lite draft), then media if it has
        not completed or selected audio is missing, then mixing.
        """
        unsubscribe = self.autosaver.watch(self.store, step_for) if self.autosaver else None
        try:
            await self._run_voice(resume)
            if self.store.production.voice_generation.status == STATUS_ERROR:
                logger.error("Voice generation failed: %s", self.store.production.voice_generation.detail)
                return self.store.state

            media_ran = await self._run_media(bgm_selection, sfx_selections or {}, resume)

            if not resume or media_ran or self.store.production.mixing_editing.output is None:
                await self.mixing.perform_mixing()
        finally:
            if unsubscribe:
                unsubscribe()
            if self.autosaver:
                await self.autosaver.close()
        return self.store.state

    async def _run_voice(self, resume: bool) -> None:
        if not resume:
            await self.voice.perform_voice_generation()
            return
        pending = sections_needing_voice(self.store.state)
        if pending:
            await self.voice.perform_voice_generation(only_section_ids=pending)
        elif self.store.production.voice_generation.status != STATUS_COMPLETED:
            self.store.dispatch(UpdatePhase(PHASE_VOICE, STATUS_COMPLETED, 100))

    async def _run_media(
        self,
        bgm_selection: MediaSelection | None,
        sfx_selections: dict[str, MediaSelection],
        resume: bool,
    ) -> bool:
        if resume and self.store.production.media_production.status == STATUS_COMPLETED:
            if not media_missing(self.store.state, bgm_selection, sfx_selections):
                return False
            logger.info("Media audio missing from draft; regenerating")
            self.store.dispatch(ClearMediaAudio())
        await self.media.perform_media_production(bgm_selection, sfx_selections)
        return True

    def discard_draft(self) -> None:
        if self.draft_store:
            clear_draft(self.draft_store)
