"""Media production: background music, sound effects, and cover images."""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from narration_producer.audio_io import parse_data_url
from narration_producer.constants import (
    BGM_DURATION_SECONDS,
    BGM_REGEN_DURATION_SECONDS,
    BGM_REGEN_MOOD,
    COVER_ASPECT_RATIO,
    DEFAULT_MIME_TYPE,
    MEDIA_LIBRARY_CAPACITY,
    PHASE_MEDIA,
    SFX_DURATION_SECONDS,
    STATUS_COMPLETED,
    STATUS_PROCESSING,
)
from narration_producer.errors import TaskFailure
from narration_producer.models import BgmAudio, SfxAudio
from narration_producer.state import (
    AddSfxAudio,
    ProductionStore,
    SetBgmAudio,
    UpdatePhase,
    UpdateSfxAudio,
)

logger = logging.getLogger(__name__)

SOURCE_PRESET = "preset"
SOURCE_LIBRARY = "library"
SOURCE_GENERATE = "generate"


@dataclass
class MediaSelection:
    """How the user chose to fill one BGM or SFX slot."""
    source: str                     # preset | library | generate
    audio_url: str | None = None    # preset clip
    data_url: str | None = None     # library clip, usually a data: URL
    mime_type: str | None = None
    prompt: str | None = None       # generation prompt override

    @classmethod
    def from_dict(cls, data: dict) -> "MediaSelection":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass
class MediaItem:
    name: str
    type: str          # bgm | sfx | image
    mime_type: str
    data_url: str
    description: str = ""
    prompt: str = ""
    duration: int | None = None
    tags: list[str] = field(default_factory=list)
    project_ids: list[str] = field(default_factory=list)


class MediaLibrary:
    """Bounded store of generated media; the oldest item is evicted when full."""

    def __init__(self, capacity: int = MEDIA_LIBRARY_CAPACITY):
        self.capacity = capacity
        self._items: deque[MediaItem] = deque(maxlen=capacity)

    def add(self, item: MediaItem) -> None:
        self._items.append(item)

    def items(self, media_type: str | None = None) -> list[MediaItem]:
        return [i for i in self._items if media_type is None or i.type == media_type]

    def __len__(self) -> int:
        return len(self._items)


@dataclass
class MediaTask:
    type: str
    label: str
    run: Callable[[], Awaitable[None]]


def sfx_key(section_id: str, item_id: str) -> str:
    """Key of the SFX selection for one timeline item."""
    return f"{section_id}-{item_id}"


def _data_url(mime_type: str, payload: str) -> str:
    return f"data:{mime_type};base64,{payload}"


class MediaProductionOrchestrator:
    """Applies chosen media and generates the rest, one task at a time.

    A failing task is logged and skipped; the phase always ends completed.
    """

    def __init__(
        self,
        store: ProductionStore,
        service,
        library: MediaLibrary | None = None,
        title: str = "",
        project_id: str | None = None,
    ):
        self.store = store
        self.service = service
        self.library = library if library is not None else MediaLibrary()
        self.title = title
        self.project_id = project_id
        self.regenerating_id: str | None = None

    def _project_ids(self) -> list[str]:
        return [self.project_id] if self.project_id else []

    def _apply_bgm_selection(self, selection: MediaSelection) -> bool:
        """Apply a preset or library BGM. Returns False if it needs generating."""
        if selection.source == SOURCE_PRESET and selection.audio_url:
            self.store.dispatch(SetBgmAudio(BgmAudio(mime_type=DEFAULT_MIME_TYPE, audio_url=selection.audio_url)))
            return True
        if selection.source == SOURCE_LIBRARY and selection.data_url is not None:
            parsed = parse_data_url(selection.data_url)
            if parsed:
                mime, payload = parsed
                self.store.dispatch(SetBgmAudio(BgmAudio(mime_type=mime, audio_data=payload)))
            else:
                self.store.dispatch(SetBgmAudio(BgmAudio(
                    mime_type=selection.mime_type or DEFAULT_MIME_TYPE,
                    audio_url=selection.data_url,
                )))
            return True
        return False

    def _bgm_task(self, selection: MediaSelection) -> MediaTask:
        settings = self.store.state.settings
        prompt = selection.prompt or settings.tone_and_expression or "background music"

        async def run():
            result = await self.service.generate_bgm(prompt, None, BGM_DURATION_SECONDS)
            self.store.dispatch(SetBgmAudio(BgmAudio(mime_type=result.mime_type, audio_data=result.audio_data)))
            self.library.add(MediaItem(
                name=f"{self.title} - BGM",
                type="bgm",
                mime_type=result.mime_type,
                data_url=_data_url(result.mime_type, result.audio_data),
                description=prompt,
                prompt=prompt,
                duration=BGM_DURATION_SECONDS,
                tags=["generated", "bgm"],
                project_ids=self._project_ids(),
            ))

        return MediaTask("bgm", "Generating BGM", run)

    def _sfx_task(self, section, item, selection: MediaSelection) -> MediaTask:
        name = f"{section.name} - SFX"
        cue = item.sound_music

        async def run():
            result = await self.service.generate_sfx(selection.prompt or cue, SFX_DURATION_SECONDS)
            self.store.dispatch(AddSfxAudio(SfxAudio(
                name=name,
                prompt=cue,
                audio_data=result.audio_data,
                mime_type=result.mime_type,
                section_id=section.id,
            )))
            self.library.add(MediaItem(
                name=name,
                type="sfx",
                mime_type=result.mime_type,
                data_url=_data_url(result.mime_type, result.audio_data),
                description=cue,
                prompt=cue,
                duration=SFX_DURATION_SECONDS,
                tags=["generated", "sfx"],
                project_ids=self._project_ids(),
            ))

        return MediaTask("sfx", "Generating SFX", run)

    def _image_task(self, section) -> MediaTask:
        prompt = section.cover_image_description

        async def run():
            result = await self.service.generate_cover_image(prompt, COVER_ASPECT_RATIO)
            self.library.add(MediaItem(
                name=f"{section.name} - Cover",
                type="image",
                mime_type=result.mime_type or "image/png",
                data_url=result.image_data,
                description=prompt,
                prompt=prompt,
                tags=["generated", "cover"],
                project_ids=self._project_ids(),
            ))

        return MediaTask("images", "Generating Images", run)

    def build_tasks(
        self,
        bgm_selection: MediaSelection | None,
        sfx_selections: dict[str, MediaSelection],
    ) -> list[MediaTask]:
        """Apply ready media now and return the generation tasks still needed."""
        settings = self.store.state.settings
        sections = self.store.state.script_sections
        tasks = []

        if settings.add_bgm and bgm_selection:
            if not self._apply_bgm_selection(bgm_selection) and bgm_selection.source == SOURCE_GENERATE:
                tasks.append(self._bgm_task(bgm_selection))

        if settings.add_sound_effects:
            for section in sections:
                for item in section.timeline:
                    if not item.sound_music.strip():
                        continue
                    selection = sfx_selections.get(sfx_key(section.id, item.id))
                    if selection is None:
                        continue
                    if selection.source == SOURCE_LIBRARY:
                        parsed = parse_data_url(selection.data_url)
                        if parsed:
                            mime, payload = parsed
                            self.store.dispatch(AddSfxAudio(SfxAudio(
                                name=f"{section.name} - SFX",
                                prompt=item.sound_music,
                                audio_data=payload,
                                mime_type=mime,
                                section_id=section.id,
                            )))
                    elif selection.source == SOURCE_GENERATE:
                        tasks.append(self._sfx_task(section, item, selection))

        if settings.has_visual_content:
            for section in sections:
                if section.cover_image_description.strip():
                    tasks.append(self._image_task(section))

        return tasks

    async def perform_media_production(
        self,
        bgm_selection: MediaSelection | None = None,
        sfx_selections: dict[str, MediaSelection] | None = None,
    ) -> None:
        tasks = self.build_tasks(bgm_selection, sfx_selections or {})
        if not tasks:
            self.store.dispatch(UpdatePhase(PHASE_MEDIA, STATUS_COMPLETED, 100))
            return

        total = len(tasks)
        for i, task in enumerate(tasks):
            self.store.dispatch(UpdatePhase(PHASE_MEDIA, STATUS_PROCESSING, round(i / total * 100), task.label))
            try:
                await task.run()
            except Exception as e:
                failure = TaskFailure(task.type, e)
                logger.warning("%s", failure, exc_info=True)
            self.store.dispatch(UpdatePhase(PHASE_MEDIA, STATUS_PROCESSING, round((i + 1) / total * 100), task.label))

        self.store.dispatch(UpdatePhase(PHASE_MEDIA, STATUS_COMPLETED, 100))

    async def regenerate_media(self, media_type: str, index: int | None = None) -> bool:
        """Regenerate the BGM, or the SFX at ``index``, replacing it in place."""
        self.regenerating_id = "bgm" if media_type == "bgm" else f"sfx-{index}"
        try:
            if media_type == "bgm":
                tone = self.store.state.settings.tone_and_expression
                result = await self.service.generate_bgm(tone or "", BGM_REGEN_MOOD, BGM_REGEN_DURATION_SECONDS)
                self.store.dispatch(SetBgmAudio(BgmAudio(mime_type=result.mime_type, audio_data=result.audio_data)))
                self.library.add(MediaItem(
                    name=f"{self.title} - BGM",
                    type="bgm",
                    mime_type=result.mime_type,
                    data_url=_data_url(result.mime_type, result.audio_data),
                    description=tone or "Background music",
                    prompt=tone or "",
                    duration=BGM_REGEN_DURATION_SECONDS,
                    tags=["generated", "bgm"],
                    project_ids=self._project_ids(),
                ))
                return True

            if media_type == "sfx" and index is not None:
                sfx_audios = self.store.production.media_production.sfx_audios
                if not 0 <= index < len(sfx_audios):
                    return False
                current = sfx_audios[index]
                result = await self.service.generate_sfx(current.prompt, SFX_DURATION_SECONDS)
                self.store.dispatch(UpdateSfxAudio(index, SfxAudio(
                    name=current.name,
                    prompt=current.prompt,
                    audio_data=result.audio_data,
                    mime_type=result.mime_type,
                    section_id=current.section_id,
                )))
                return True
            return False
        except Exception as e:
            logger.warning("%s", TaskFailure(media_type, e), exc_info=True)
            return False
        finally:
            self.regenerating_id = None
