import asyncio
import json
import os
from contextlib import suppress
from dataclasses import dataclass

from sqlalchemy import delete, select

from newsbrief.models import Document
from newsbrief.observability.logger import get_logger
from newsbrief.storage.schema import AppState, migrate_state

log = get_logger("state_store")

USERS_COLLECTION = "users"
BRIEFINGS_COLLECTION = "briefings"
META_COLLECTION = "meta"


@dataclass(frozen=True)
class SaveRequest:
    users: bool = True
    briefings: bool = True
    usage: bool = True
    activity: bool = True


class StateStore:
    """In-memory application state with a local JSON file and an optional document store.

    The in-memory ``state`` is the source of truth. ``save()`` never blocks: it
    enqueues a flush onto a single consumer, so writes run one at a time in the
    order they were requested. A failed flush is logged and the queue moves on.
    """

    def __init__(self, data_dir: str, session_factory=None):
        os.makedirs(data_dir, exist_ok=True)
        self.path = os.path.join(data_dir, "db.json")
        self.session_factory = session_factory
        self.state = AppState()
        self._queue: asyncio.Queue[SaveRequest] = asyncio.Queue()
        self._worker: asyncio.Task | None = None
        self._known_user_ids: set[str] = set()
        self._known_briefing_ids: set[str] = set()

    @property
    def document_store_enabled(self) -> bool:
        return self.session_factory is not None

    # ── Loading ────────────────────────────────────────────────────────────

    async def load(self) -> AppState:
        local = self._load_local()
        if not self.document_store_enabled:
            self._apply(local)
            return self.state

        try:
            remote = await self._load_documents()
        except Exception as e:
            log.error("document_store_load_failed", error=str(e))
            self._apply(local)
            return self.state

        if remote is not None:
            self._apply(remote)
            await asyncio.to_thread(self._write_local, self.state.to_json())
            log.info("state_loaded", source="documents", users=len(self.state.users))
            return self.state

        # Empty document store: seed it from the local file
        self._apply(local)
        self.save()
        log.info("state_loaded", source="local", users=len(self.state.users), seeding=True)
        return self.state

    def _apply(self, state: AppState):
        self.state = state
        self._known_user_ids = {u.id for u in state.users}
        self._known_briefing_ids = {b.doc_id for b in state.briefings}

    def _load_local(self) -> AppState:
        if not os.path.exists(self.path):
            return AppState()
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return migrate_state(json.load(f))
        except (OSError, json.JSONDecodeError) as e:
            log.warning("local_state_unreadable", path=self.path, error=str(e))
            return AppState()

    async def _load_documents(self) -> AppState | None:
        async with self.session_factory() as session:
            result = await session.execute(select(Document))
            docs = result.scalars().all()
        if not docs:
            return None

        raw = {"users": [], "briefings": []}
        for doc in docs:
            if doc.collection == USERS_COLLECTION:
                raw["users"].append(doc.data)
            elif doc.collection == BRIEFINGS_COLLECTION:
                raw["briefings"].append(doc.data)
            elif doc.collection == META_COLLECTION and doc.doc_id in ("usage", "activity"):
                raw[doc.doc_id] = doc.data
        return migrate_state(raw)

    # ── Saving ─────────────────────────────────────────────────────────────

    def save(self, *, users: bool = True, briefings: bool = True, usage: bool = True, activity: bool = True):
        """Enqueue a flush of the current state and return immediately."""
        self._queue.put_nowait(SaveRequest(users=users, briefings=briefings, usage=usage, activity=activity))
        self._ensure_worker()

    async def flush(self):
        """Wait until every queued flush has been attempted."""
        self._ensure_worker()
        if self._worker is not None:
            await self._queue.join()

    async def close(self):
        await self.flush()
        if self._worker is not None:
            self._worker.cancel()
            with suppress(asyncio.CancelledError):
                await self._worker
            self._worker = None

    def _ensure_worker(self):
        if self._worker is not None and not self._worker.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop yet: requests stay queued until one starts the worker
            return
        self._worker = loop.create_task(self._drain())

    async def _drain(self):
        while True:
            request = await self._queue.get()
            try:
                await self._run(request)
            except Exception as e:
                log.error("state_persist_failed", error=str(e), error_type=type(e).__name__)
            finally:
                self._queue.task_done()

    async def _run(self, request: SaveRequest):
        snapshot = self.state.to_json()
        await asyncio.to_thread(self._write_local, snapshot)
        if not self.document_store_enabled:
            return

        async with self.session_factory() as session:
            user_ids = briefing_ids = None
            if request.users:
                user_ids = await self._sync_collection(
                    session, USERS_COLLECTION,
                    {u["id"]: u for u in snapshot["users"]},
                    self._known_user_ids,
                )
            if request.briefings:
                briefing_ids = await self._sync_collection(
                    session, BRIEFINGS_COLLECTION,
                    {f"{b['userId'] or 'unknown'}::{b['id']}": b for b in snapshot["briefings"]},
                    self._known_briefing_ids,
                )
            if request.usage:
                await session.merge(Document(collection=META_COLLECTION, doc_id="usage", data=snapshot["usage"]))
            if request.activity:
                await session.merge(Document(collection=META_COLLECTION, doc_id="activity", data=snapshot["activity"]))
            await session.commit()

        if user_ids is not None:
            self._known_user_ids = user_ids
        if briefing_ids is not None:
            self._known_briefing_ids = briefing_ids

    async def _sync_collection(self, session, collection: str, current: dict[str, dict], known: set[str]) -> set[str]:
        for doc_id, data in current.items():
            await session.merge(Document(collection=collection, doc_id=doc_id, data=data))
        removed = known - current.keys()
        if removed:
            await session.execute(
                delete(Document).where(Document.collection == collection, Document.doc_id.in_(removed))
            )
        return set(current)

    def _write_local(self, snapshot: dict):
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(snapshot, f, ensure_ascii=False, indent=2)
        os.replace(tmp_path, self.path)
