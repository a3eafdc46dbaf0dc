import json
import os
from unittest.mock import patch

import pytest
from sqlalchemy import select

from newsbrief.models import Document
from newsbrief.storage.schema import Briefing, User, migrate_state
from newsbrief.storage.state_store import StateStore


class TestMigrateState:
    def test_defaults_for_empty_input(self):
        state = migrate_state(None)
        assert state.users == []
        assert state.usage.totals.generate_briefing == 0
        assert state.schema_version == 1

    def test_loose_legacy_data_is_normalized(self):
        state = migrate_state({
            "users": [
                {"id": "u1", "email": "a@example.com", "createdAt": "2026-01-02T03:04:05Z"},
                {"name": "no id"},
            ],
            "briefings": [
                {"id": "b1", "userId": "u1", "topics": '["headline", "sports"]', "isDemo": 1},
                {"userId": "u1"},
            ],
            "usage": {
                "totals": {"generateBriefing": 3, "ttsCalls": "lots"},
                "byUser": {"u1": {"total": 3, "recentGenerateAt": [1, "x", 2]}},
            },
        })

        assert [u.id for u in state.users] == ["u1"]
        assert state.users[0].created_at == 1767323045000
        assert state.users[0].is_admin is False
        assert [b.id for b in state.briefings] == ["b1"]
        assert state.briefings[0].topics == ["headline", "sports"]
        assert state.briefings[0].is_demo is True
        assert state.usage.totals.generate_briefing == 3
        assert state.usage.totals.tts_calls == 0
        assert state.usage.by_user["u1"].recent_generate_at == [1, 2]

    def test_round_trips_camel_case_layout(self):
        state = migrate_state({"users": [{"id": "u1", "isAdmin": True, "lastSeenAt": 5}]})
        dumped = state.to_json()
        assert dumped["users"][0]["isAdmin"] is True
        assert dumped["users"][0]["lastSeenAt"] == 5
        assert "byUser" in dumped["usage"]


@pytest.mark.asyncio
class TestLocalPersistence:
    async def test_save_writes_db_json(self, data_dir):
        store = StateStore(data_dir)
        await store.load()
        store.state.users.append(User(id="u1", email="a@example.com"))
        store.save(users=True, briefings=False, usage=False, activity=False)
        await store.flush()

        with open(os.path.join(data_dir, "db.json"), encoding="utf-8") as f:
            saved = json.load(f)
        assert saved["users"][0]["email"] == "a@example.com"
        await store.close()

    async def test_load_reads_existing_file(self, data_dir):
        with open(os.path.join(data_dir, "db.json"), "w", encoding="utf-8") as f:
            json.dump({"users": [{"id": "u1", "name": "花子"}]}, f)

        store = StateStore(data_dir)
        await store.load()
        assert store.state.users[0].name == "花子"

    async def test_saves_run_in_order(self, data_dir):
        store = StateStore(data_dir)
        await store.load()
        seen = []

        async def fake_run(request):
            seen.append(request)

        with patch.object(store, "_run", side_effect=fake_run):
            store.save(users=True, briefings=False, usage=False, activity=False)
            store.save(users=False, briefings=True, usage=False, activity=False)
            store.save(users=False, briefings=False, usage=True, activity=False)
            await store.flush()

        assert [(r.users, r.briefings, r.usage) for r in seen] == [
            (True, False, False),
            (False, True, False),
            (False, False, True),
        ]
        await store.close()

    async def test_failed_save_does_not_stop_the_queue(self, data_dir):
        store = StateStore(data_dir)
        await store.load()
        calls = []

        async def flaky_run(request):
            calls.append(request)
            if len(calls) == 1:
                raise OSError("disk full")

        with patch.object(store, "_run", side_effect=flaky_run):
            store.save()
            store.save()
            await store.flush()

        assert len(calls) == 2
        await store.close()


@pytest.mark.asyncio
class TestDocumentStore:
    async def _documents(self, session_factory, collection):
        async with session_factory() as session:
            result = await session.execute(select(Document).where(Document.collection == collection))
            return {d.doc_id: d.data for d in result.scalars().all()}

    async def test_empty_document_store_is_seeded_from_local_file(self, data_dir, session_factory):
        with open(os.path.join(data_dir, "db.json"), "w", encoding="utf-8") as f:
            json.dump({"users": [{"id": "u1"}], "briefings": [{"id": "b1", "userId": "u1"}]}, f)

        store = StateStore(data_dir, session_factory=session_factory)
        await store.load()
        await store.flush()

        assert set(await self._documents(session_factory, "users")) == {"u1"}
        assert set(await self._documents(session_factory, "briefings")) == {"u1::b1"}
        assert "usage" in await self._documents(session_factory, "meta")
        await store.close()

    async def test_document_store_wins_over_local_file(self, data_dir, session_factory):
        async with session_factory() as session:
            session.add(Document(collection="users", doc_id="remote", data={"id": "remote", "name": "遠隔"}))
            await session.commit()
        with open(os.path.join(data_dir, "db.json"), "w", encoding="utf-8") as f:
            json.dump({"users": [{"id": "local"}]}, f)

        store = StateStore(data_dir, session_factory=session_factory)
        await store.load()
        assert [u.id for u in store.state.users] == ["remote"]

        with open(os.path.join(data_dir, "db.json"), encoding="utf-8") as f:
            assert json.load(f)["users"][0]["id"] == "remote"

    async def test_removed_documents_are_deleted(self, data_dir, session_factory):
        store = StateStore(data_dir, session_factory=session_factory)
        await store.load()
        store.state.briefings.extend([Briefing(id="b1", user_id="u1"), Briefing(id="b2", user_id="u1")])
        store.save(users=False, briefings=True, usage=False, activity=False)
        await store.flush()

        store.state.briefings = [b for b in store.state.briefings if b.id != "b1"]
        store.save(users=False, briefings=True, usage=False, activity=False)
        await store.flush()

        assert set(await self._documents(session_factory, "briefings")) == {"u1::b2"}
        await store.close()

    async def test_unflagged_collections_are_left_alone(self, data_dir, session_factory):
        store = StateStore(data_dir, session_factory=session_factory)
        await store.load()
        await store.flush()
        store.state.users.append(User(id="u1"))
        store.save(users=False, briefings=False, usage=True, activity=False)
        await store.flush()

        assert await self._documents(session_factory, "users") == {}
        await store.close()

    async def test_document_store_failure_falls_back_to_local(self, data_dir, session_factory):
        with open(os.path.join(data_dir, "db.json"), "w", encoding="utf-8") as f:
            json.dump({"users": [{"id": "local"}]}, f)

        store = StateStore(data_dir, session_factory=session_factory)
        with patch.object(store, "_load_documents", side_effect=RuntimeError("unavailable")):
            await store.load()
        assert [u.id for u in store.state.users] == ["local"]
