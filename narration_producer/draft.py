"""Draft persistence: size-bounded snapshots of in-flight production state."""

import asyncio
import json
import logging
import os
import time
from dataclasses import asdict, replace

from narration_producer.constants import (
    DRAFT_AUTOSAVE_DELAY,
    DRAFT_KEY,
    DRAFT_SIZE_THRESHOLD,
    DRAFT_STORE_CAPACITY,
)
from narration_producer.errors import SerializationOverflow
from narration_producer.models import (
    Character,
    DraftSnapshot,
    ProductionState,
    ProjectSettings,
    ProjectState,
    Section,
)

logger = logging.getLogger(__name__)


class DraftStore:
    """Single-slot-per-key blob store on disk with a hard size cap."""

    def __init__(self, directory: str, capacity: int = DRAFT_STORE_CAPACITY):
        self.directory = directory
        self.capacity = capacity

    def _path(self, key: str) -> str:
        return os.path.join(self.directory, f"{key}.json")

    def put(self, key: str, blob: str) -> None:
        size = len(blob.encode("utf-8"))
        if size > self.capacity:
            raise SerializationOverflow(size, self.capacity)
        os.makedirs(self.directory, exist_ok=True)
        path = self._path(key)
        tmp = path + ".tmp"
        with open(tmp, "w") as f:
            f.write(blob)
        os.replace(tmp, path)

    def get(self, key: str) -> str | None:
        path = self._path(key)
        if not os.path.exists(path):
            return None
        with open(path) as f:
            return f.read()

    def delete(self, key: str) -> None:
        path = self._path(key)
        if os.path.exists(path):
            os.remove(path)


def state_to_dict(state: ProjectState) -> dict:
    """Serializable form of a ProjectState. Uploaded files are never included."""
    data = asdict(replace(state, uploaded_files=[]))
    del data["uploaded_files"]
    return data


def state_from_dict(data: dict) -> ProjectState:
    return ProjectState(
        selected_template_id=data.get("selected_template_id"),
        settings=ProjectSettings.from_dict(data.get("settings") or {}),
        text_content=data.get("text_content", ""),
        uploaded_files=[],
        script_sections=[Section.from_dict(s) for s in data.get("script_sections") or []],
        characters=[Character.from_dict(c) for c in data.get("characters") or []],
        production=ProductionState.from_dict(data.get("production") or {}),
    )


def build_snapshot(step: int, state: ProjectState, local_state: dict | None = None) -> DraftSnapshot:
    return DraftSnapshot(
        step=step,
        reducer_state=state_to_dict(state),
        local_state=dict(local_state or {}),
        saved_at=time.time() * 1000,
    )


def strip_heavy_payloads(snapshot: dict) -> dict:
    """Lossy copy of a serialized snapshot for drafts over the size threshold.

    Voice segments keep their metadata and ``audio_url`` but lose base64
    audio. BGM, SFX, and the mixed output are dropped.
    """
    lite = json.loads(json.dumps(snapshot))
    production = lite["reducer_state"].get("production") or {}

    voice = production.get("voice_generation") or {}
    for status in (voice.get("section_status") or {}).values():
        for seg in status.get("audio_segments") or []:
            seg["audio_data"] = ""

    media = production.get("media_production") or {}
    media["bgm_audio"] = None
    media["sfx_audios"] = []

    mixing = production.get("mixing_editing") or {}
    mixing["output"] = None
    return lite


def save_draft(
    store: DraftStore,
    step: int,
    state: ProjectState,
    local_state: dict | None = None,
    threshold: int = DRAFT_SIZE_THRESHOLD,
) -> bool:
    """Write a snapshot, stripping heavy payloads when it is too big.

    Never raises; returns False if nothing could be written.
    """
    try:
        snapshot = build_snapshot(step, state, local_state).to_dict()
        blob = json.dumps(snapshot)
    except (TypeError, ValueError) as e:
        logger.warning("Draft not saved: %s", e)
        return False
    lite = False
    if len(blob.encode("utf-8")) > threshold:
        blob = json.dumps(strip_heavy_payloads(snapshot))
        lite = True

    try:
        store.put(DRAFT_KEY, blob)
    except SerializationOverflow as e:
        if lite:
            logger.warning("Draft not saved: %s", e)
            return False
        try:
            store.put(DRAFT_KEY, json.dumps(strip_heavy_payloads(snapshot)))
        except SerializationOverflow as e2:
            logger.warning("Draft not saved: %s", e2)
            return False
        lite = True
    except OSError as e:
        logger.warning("Failed to save draft: %s", e)
        return False

    if lite:
        logger.info("Draft saved without audio payloads (over %d bytes)", threshold)
    return True


def load_draft(store: DraftStore) -> DraftSnapshot | None:
    """Read the saved draft. Returns None if missing, corrupt, or incomplete."""
    try:
        raw = store.get(DRAFT_KEY)
    except OSError as e:
        logger.warning("Failed to load draft: %s", e)
        return None
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Malformed draft in %s; ignoring", store.directory)
        return None
    if not isinstance(data, dict) or not data.get("step") or not data.get("reducer_state"):
        return None
    return DraftSnapshot.from_dict(data)


def restore_state(snapshot: DraftSnapshot) -> ProjectState:
    """Rehydrate the ProjectState held by a snapshot (uploaded files always empty)."""
    return state_from_dict(snapshot.reducer_state)


def clear_draft(store: DraftStore) -> None:
    try:
        store.delete(DRAFT_KEY)
    except OSError as e:
        logger.warning("Failed to clear draft: %s", e)


class DraftAutosaver:
    """Debounced draft writer.

    Only the latest requested snapshot is kept; writes are serialized by a
    lock, so at most one is in flight.
    """

    def __init__(self, store: DraftStore, delay: float = DRAFT_AUTOSAVE_DELAY):
        self.store = store
        self.delay = delay
        self._pending: tuple | None = None
        self._timer: asyncio.Task | None = None
        self._lock = asyncio.Lock()
        self.saves = 0

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def schedule(self, step: int, state: ProjectState, local_state: dict | None = None) -> None:
        """Queue a save; replaces any earlier pending one and restarts the delay."""
        self._pending = (step, state, local_state)
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().create_task(self._delayed_flush())

    async def _delayed_flush(self) -> None:
        await asyncio.sleep(self.delay)
        await asyncio.shield(self.flush())

    async def flush(self) -> bool:
        """Write the pending snapshot now, if there is one."""
        async with self._lock:
            pending, self._pending = self._pending, None
            if pending is None:
                return False
            step, state, local_state = pending
            ok = await asyncio.to_thread(save_draft, self.store, step, state, local_state)
            if ok:
                self.saves += 1
            return ok

    def watch(self, production_store, step_for, local_state: dict | None = None):
        """Schedule a save after every dispatch. Returns the unsubscribe function.

        ``step_for(state)`` gives the wizard step to record with each snapshot.
        """
        return production_store.subscribe(
            lambda state, event: self.schedule(step_for(state), state, local_state)
        )

    async def close(self) -> None:
        """Cancel the pending delay and write whatever is queued."""
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        await self.flush()
