"""Voice synthesis orchestration: section batches, full runs, single-line regeneration."""

import asyncio
import logging
from dataclasses import dataclass

from narration_producer.constants import (
    DEFAULT_MIME_TYPE,
    DEFAULT_SPEAKER,
    MSG_ALL_SECTIONS_FAILED,
    MSG_ALL_SEGMENTS_FAILED,
    MSG_SECTIONS_FAILED,
    PHASE_VOICE,
    STATUS_COMPLETED,
    STATUS_ERROR,
    STATUS_PROCESSING,
)
from narration_producer.errors import PartialBatchFailure, TotalBatchFailure
from narration_producer.models import (
    BatchError,
    BatchResult,
    GeneratedSegment,
    ResolvedVoice,
    Section,
    SynthesisRequest,
    VoiceAudioSegment,
)
from narration_producer.state import (
    AddSectionVoiceAudio,
    ClearSectionVoice,
    ProductionStore,
    ReplaceSectionVoiceAudio,
    SetCurrentSection,
    UpdatePhase,
    UpdateSectionVoiceStatus,
)
from narration_producer.voices import VoiceRoster, resolve_voice

logger = logging.getLogger(__name__)


@dataclass
class PendingLine:
    line_index: int   # position among all lines of the section, blanks included
    speaker: str
    text: str
    pause_after_ms: int | None
    voice: ResolvedVoice

    def request(self) -> SynthesisRequest:
        return SynthesisRequest(
            text=self.text,
            speaker=self.speaker,
            voice_name=self.voice.voice_name,
            ref_audio_data_url=self.voice.ref_audio_data_url,
        )


def segment_id(section_id: str, audio_index: int) -> str:
    """Key of one audio slot in the listened-to set."""
    return f"{section_id}-{audio_index}"


def _progress(done: int, total: int) -> int:
    return int(done * 100 / total + 0.5) if total else 100


class VoiceSynthesisOrchestrator:
    """Drives speech synthesis for script sections against a generation service.

    ``service`` is anything with ``generate_audio_batch`` (and, when
    ``use_stream`` is set, ``generate_audio_batch_stream``): the remote
    GenerationClient or the local EdgeTTSService.

    Every generation call targeting a section, full or single-line, runs
    under that section's lock. Remote failures never escape; they end up
    as section or phase status strings.
    """

    def __init__(
        self,
        store: ProductionStore,
        service,
        roster: VoiceRoster | None = None,
        use_stream: bool = False,
    ):
        self.store = store
        self.service = service
        self.roster = roster or VoiceRoster()
        self.use_stream = use_stream
        self.listened: set[str] = set()
        self.regenerating_line_id: str | None = None
        self._locks: dict[str, asyncio.Lock] = {}

    def section_lock(self, section_id: str) -> asyncio.Lock:
        if section_id not in self._locks:
            self._locks[section_id] = asyncio.Lock()
        return self._locks[section_id]

    def resolve_voice(self, speaker: str | None) -> ResolvedVoice:
        return resolve_voice(speaker, self.store.state.characters, self.roster)

    def mark_listened(self, section_id: str, audio_index: int) -> None:
        self.listened.add(segment_id(section_id, audio_index))

    def pending_lines(self, section: Section) -> list[PendingLine]:
        """Non-blank lines of a section, each tagged with its flattened index."""
        pending = []
        line_index = 0
        for item in section.timeline:
            for line in item.lines:
                if line.line.strip():
                    pending.append(PendingLine(
                        line_index=line_index,
                        speaker=line.speaker or DEFAULT_SPEAKER,
                        text=line.line,
                        pause_after_ms=line.pause_after_ms,
                        voice=self.resolve_voice(line.speaker),
                    ))
                line_index += 1
        return pending

    async def _stream_batch(self, section_id: str, requests: list[SynthesisRequest]) -> BatchResult:
        result = BatchResult(total_requested=len(requests))
        total = len(requests)
        async for event in self.service.generate_audio_batch_stream(requests):
            if event.type == "segment" and event.index is not None:
                result.segments.append(GeneratedSegment(
                    index=event.index,
                    audio_data=event.audio_data or "",
                    mime_type=event.mime_type or DEFAULT_MIME_TYPE,
                    audio_url=event.audio_url,
                    speaker=event.speaker,
                ))
            elif event.type == "error":
                index = event.index if event.index is not None else -1
                result.errors.append(BatchError(index=index, error=event.error or ""))
            else:
                continue
            done = len(result.segments) + len(result.errors)
            self.store.dispatch(UpdateSectionVoiceStatus(
                section_id, STATUS_PROCESSING, _progress(min(done, total), total),
            ))
        result.total_generated = len(result.segments)
        return result

    async def _run_batch(self, section_id: str, requests: list[SynthesisRequest]) -> BatchResult:
        if self.use_stream:
            return await self._stream_batch(section_id, requests)
        return await self.service.generate_audio_batch(requests)

    async def generate_voice_for_section(self, section: Section) -> bool:
        """Synthesize every non-blank line of a section in one batch.

        Existing audio for the section is cleared first. Returns True when at
        least one line was generated (partial failures are only logged).
        """
        async with self.section_lock(section.id):
            return await self._generate_section(section)

    async def _generate_section(self, section: Section) -> bool:
        sid = section.id
        pending = self.pending_lines(section)
        self.store.dispatch(ClearSectionVoice(sid))

        if not pending:
            self.store.dispatch(UpdateSectionVoiceStatus(sid, STATUS_COMPLETED, 100))
            return True

        self.store.dispatch(UpdateSectionVoiceStatus(sid, STATUS_PROCESSING, 0))
        self.store.dispatch(SetCurrentSection(sid))

        success = False
        try:
            result = await self._run_batch(sid, [p.request() for p in pending])

            # batch indices point into the non-blank list
            for generated in sorted(result.segments, key=lambda s: s.index):
                if not 0 <= generated.index < len(pending):
                    logger.warning("Section %s: ignoring out-of-range segment %d", sid, generated.index)
                    continue
                line = pending[generated.index]
                self.store.dispatch(AddSectionVoiceAudio(sid, VoiceAudioSegment(
                    line_index=line.line_index,
                    speaker=line.speaker,
                    text=line.text,
                    audio_data=generated.audio_data,
                    mime_type=generated.mime_type or DEFAULT_MIME_TYPE,
                    audio_url=generated.audio_url,
                    pause_after_ms=line.pause_after_ms,
                    voice_id=line.voice.assigned_id,
                )))

            if result.total_generated == 0 or not result.segments:
                messages = [e.error for e in result.errors if e.error]
                raise TotalBatchFailure(
                    messages[0] if messages else MSG_ALL_SEGMENTS_FAILED,
                    result.errors,
                    len(pending),
                )

            if result.errors:
                failure = PartialBatchFailure(
                    f"{len(result.errors)}/{len(pending)} segments failed",
                    result.errors,
                    len(pending),
                )
                logger.warning("Section %s: %s", section.name or sid, failure)

            self.store.dispatch(UpdateSectionVoiceStatus(sid, STATUS_COMPLETED, 100))
            success = True
        except TotalBatchFailure as e:
            logger.warning("Section %s: no segments generated: %s", section.name or sid, e)
            self.store.dispatch(UpdateSectionVoiceStatus(sid, STATUS_ERROR, 0, str(e)))
        except Exception as e:
            logger.error("Section %s voice generation failed", section.name or sid, exc_info=True)
            self.store.dispatch(UpdateSectionVoiceStatus(sid, STATUS_ERROR, 0, str(e) or "Generation failed"))

        self.store.dispatch(SetCurrentSection(None))
        return success

    async def perform_voice_generation(self, only_section_ids: set[str] | None = None) -> None:
        """Generate all sections (or a subset) in source order.

        Sections outside ``only_section_ids`` are left untouched but still
        advance overall progress.
        """
        sections = list(self.store.state.script_sections)
        if not sections:
            self.store.dispatch(UpdatePhase(PHASE_VOICE, STATUS_COMPLETED, 100))
            return

        self.store.dispatch(UpdatePhase(PHASE_VOICE, STATUS_PROCESSING, 0))

        targeted = 0
        failed = 0
        for i, section in enumerate(sections):
            if only_section_ids is None or section.id in only_section_ids:
                targeted += 1
                if not await self.generate_voice_for_section(section):
                    failed += 1
            self.store.dispatch(UpdatePhase(
                PHASE_VOICE, STATUS_PROCESSING, _progress(i + 1, len(sections)), section.name,
            ))

        if targeted and failed == targeted:
            self.store.dispatch(UpdatePhase(PHASE_VOICE, STATUS_ERROR, 0, MSG_ALL_SECTIONS_FAILED))
        elif failed:
            self.store.dispatch(UpdatePhase(
                PHASE_VOICE, STATUS_COMPLETED, 100, MSG_SECTIONS_FAILED.format(count=failed),
            ))
        else:
            self.store.dispatch(UpdatePhase(PHASE_VOICE, STATUS_COMPLETED, 100))

    async def regenerate_section(self, section: Section) -> bool:
        """Clear and regenerate one section.

        The voice phase flips to completed once every section is completed.
        """
        ok = await self.generate_voice_for_section(section)
        sections = self.store.state.script_sections
        statuses = self.store.production.voice_generation.section_status
        if sections and all(
            statuses.get(s.id) and statuses[s.id].status == STATUS_COMPLETED for s in sections
        ):
            self.store.dispatch(UpdatePhase(PHASE_VOICE, STATUS_COMPLETED, 100))
        return ok

    async def regenerate_voice_for_line(
        self,
        _section: Section,
        section_id: str,
        audio_index: int,
        audio: VoiceAudioSegment,
    ) -> bool:
        """Regenerate one segment and replace it in place.

        The array length never changes; on success the slot's listened
        marker is cleared so reviewers hear it again.
        Returns False without synthesizing if the slot no longer holds
        ``audio.line_index`` once the section lock is acquired.
        """
        seg_id = segment_id(section_id, audio_index)
        async with self.section_lock(section_id):
            status = self.store.section_status(section_id)
            segments = status.audio_segments if status else []
            if not 0 <= audio_index < len(segments) or segments[audio_index].line_index != audio.line_index:
                logger.warning("Line %s changed before regeneration; skipping", seg_id)
                return False
            self.regenerating_line_id = seg_id
            try:
                voice = self.resolve_voice(audio.speaker)
                result = await self.service.generate_audio_batch([SynthesisRequest(
                    text=audio.text,
                    speaker=audio.speaker,
                    voice_name=voice.voice_name,
                    ref_audio_data_url=voice.ref_audio_data_url,
                )])
                if not result.segments:
                    message = result.errors[0].error if result.errors else MSG_ALL_SEGMENTS_FAILED
                    logger.warning("Line %s regeneration failed: %s", seg_id, message)
                    return False

                generated = result.segments[0]
                self.store.dispatch(ReplaceSectionVoiceAudio(section_id, audio_index, VoiceAudioSegment(
                    line_index=audio.line_index,
                    speaker=audio.speaker,
                    text=audio.text,
                    audio_data=generated.audio_data,
                    mime_type=generated.mime_type or DEFAULT_MIME_TYPE,
                    audio_url=generated.audio_url,
                    pause_after_ms=audio.pause_after_ms,
                    voice_id=voice.assigned_id,
                )))
                self.listened.discard(seg_id)
                return True
            except Exception:
                logger.error("Line %s regeneration failed", seg_id, exc_info=True)
                return False
            finally:
                self.regenerating_line_id = None
