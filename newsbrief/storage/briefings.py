from newsbrief.observability.logger import get_logger
from newsbrief.storage.audio import AudioStorage
from newsbrief.storage.schema import Briefing

log = get_logger("briefings")

DAY_MS = 24 * 60 * 60 * 1000


class BriefingRepository:
    def __init__(self, store, audio: AudioStorage):
        self.store = store
        self.audio = audio

    @property
    def _items(self) -> list[Briefing]:
        return self.store.state.briefings

    def _persist(self):
        self.store.save(users=False, briefings=True, usage=False, activity=False)

    def list_for_user(self, user_id: str) -> list[Briefing]:
        records = [b for b in self._items if b.user_id == user_id]
        return sorted(records, key=lambda b: b.created_at or 0, reverse=True)

    def get(self, user_id: str, briefing_id: str) -> Briefing | None:
        return next((b for b in self._items if b.id == briefing_id and b.user_id == user_id), None)

    def upsert(self, briefing: Briefing) -> Briefing:
        for index, existing in enumerate(self._items):
            if existing.id == briefing.id and existing.user_id == briefing.user_id:
                self._items[index] = briefing
                break
        else:
            self._items.append(briefing)
        self._persist()
        return briefing

    async def delete(self, user_id: str, briefing_id: str) -> bool:
        briefing = self.get(user_id, briefing_id)
        if briefing is None:
            return False
        self._items.remove(briefing)
        self._persist()
        await self._delete_audio([briefing])
        return True

    async def delete_for_user(self, user_id: str) -> int:
        removed = [b for b in self._items if b.user_id == user_id]
        self.store.state.briefings = [b for b in self._items if b.user_id != user_id]
        await self._delete_audio(removed)
        return len(removed)

    async def cleanup_expired(self, retention_days: int, now: int) -> int:
        """Remove briefings (and their audio) created more than ``retention_days`` ago."""
        cutoff = now - retention_days * DAY_MS
        removed = [b for b in self._items if b.created_at and b.created_at < cutoff]
        if not removed:
            return 0
        removed_ids = {b.doc_id for b in removed}
        self.store.state.briefings = [b for b in self._items if b.doc_id not in removed_ids]
        self._persist()
        await self._delete_audio(removed)
        log.info("briefings_expired", removed=len(removed), retention_days=retention_days)
        return len(removed)

    async def to_api(self, briefing: Briefing) -> dict:
        audio_url = briefing.audio_url
        if audio_url and not await self.audio.exists(audio_url):
            audio_url = None
        return {
            "id": briefing.id,
            "topics": briefing.topics,
            "voice": briefing.voice,
            "duration": briefing.duration,
            "script": briefing.script,
            "audioUrl": audio_url,
            "isDemo": briefing.is_demo,
            "date": briefing.date,
            "createdAt": briefing.created_at,
        }

    async def _delete_audio(self, briefings: list[Briefing]):
        for briefing in briefings:
            if not briefing.audio_url:
                continue
            try:
                await self.audio.delete(briefing.audio_url)
            except OSError as e:
                log.warning("audio_delete_failed", audio_url=briefing.audio_url, error=str(e))
