import asyncio

import pytest

from lifecompass.api.errors import APIError
from lifecompass.core.models import AchievementType, Mode, SyncStatus, TextValue, Theme
from lifecompass.core.sync_queue import SyncQueue


async def _signed_in(engine, user):
    engine.set_user(user)
    await engine.drain()
    return engine


class TestGuest:
    @pytest.mark.asyncio
    async def test_guest_makes_no_remote_calls(self, remote_engine, remote):
        remote_engine.start_reflection(2025, Mode.QUICK)
        remote_engine.set_response("gratitude", "friends")
        remote_engine.complete_reflection()
        await remote_engine.drain()

        assert remote.calls == []
        assert remote_engine.sync_status == SyncStatus.IDLE

    @pytest.mark.asyncio
    async def test_lifecycle_methods_are_noops(self, remote_engine):
        remote_engine.start_reflection(2025, Mode.QUICK)
        assert not await remote_engine.sync_to_cloud()
        assert not await remote_engine.load_from_cloud()


class TestSignIn:
    @pytest.mark.asyncio
    async def test_hydrates_when_nothing_local(self, remote_engine, remote, user):
        remote.add_reflection("user-1", 2024, responses={"word_of_year": TextValue("Calm")})
        remote.add_reflection("someone-else", 2024)

        await _signed_in(remote_engine, user)

        assert not remote_engine.is_guest
        assert remote.call_names() == ["get_reflections", "get_achievements"]
        assert [r.id for r in remote_engine.reflections] == ["remote-1"]
        assert remote_engine.reflections[0].responses["word_of_year"].value.text == "Calm"
        assert remote_engine.last_synced_at is not None

    @pytest.mark.asyncio
    async def test_hydration_can_be_deferred(self, remote_engine, remote, user):
        remote_engine.set_user(user, hydrate=False)
        await remote_engine.drain()
        assert remote.calls == []

    @pytest.mark.asyncio
    async def test_sign_out_stops_remote_writes(self, remote_engine, remote, user):
        await _signed_in(remote_engine, user)
        remote_engine.set_user(None)
        remote.calls.clear()

        remote_engine.start_reflection(2025, Mode.QUICK)
        await remote_engine.drain()

        assert remote_engine.is_guest
        assert remote.calls == []


class TestReconciliation:
    @pytest.mark.asyncio
    async def test_local_id_replaced_by_server_id(self, remote_engine, remote, user, snapshot_store):
        await _signed_in(remote_engine, user)
        remote.calls.clear()

        local = remote_engine.start_reflection(2025, Mode.QUICK)
        remote_engine.set_response("gratitude", "friends")
        assert remote_engine.current_reflection.local_only
        await remote_engine.drain()

        assert remote.calls == [
            ("create_reflection", "user-1", 2025, Mode.QUICK, None),
            ("save_responses", "remote-1", ("gratitude",)),
        ]
        current = remote_engine.current_reflection
        assert current.id == "remote-1" != local.id
        assert not current.local_only
        assert current.user_id == "user-1"
        assert current.synced_at is not None
        assert snapshot_store.payload["state"]["current_reflection"]["id"] == "remote-1"

    @pytest.mark.asyncio
    async def test_answers_after_reconciliation_are_upserted(self, remote_engine, remote, user):
        await _signed_in(remote_engine, user)
        remote_engine.start_reflection(2025, Mode.QUICK)
        await remote_engine.drain()
        remote.calls.clear()

        remote_engine.set_response("word_of_year", "Brave")
        await remote_engine.drain()

        assert remote.calls == [("save_response", "remote-1", "word_of_year")]
        assert remote.responses[("remote-1", "word_of_year")] == TextValue("Brave")

    @pytest.mark.asyncio
    async def test_completed_before_confirmation(self, remote_engine, remote, user):
        await _signed_in(remote_engine, user)
        remote_engine.start_reflection(2025, Mode.QUICK)
        remote_engine.set_response("word_of_year", "Brave")
        remote_engine.complete_reflection()
        await remote_engine.drain()

        assert [r.id for r in remote_engine.reflections] == ["remote-1"]
        assert remote.reflections["remote-1"].completed
        assert remote.reflections["remote-1"].progress == 100
        assert remote.responses[("remote-1", "word_of_year")] == TextValue("Brave")
        assert ("unlock_achievement", "user-1", AchievementType.FIRST_JOURNEY) in remote.calls

    @pytest.mark.asyncio
    async def test_completion_push(self, remote_engine, remote, user):
        await _signed_in(remote_engine, user)
        remote_engine.start_reflection(2025, Mode.QUICK)
        await remote_engine.drain()
        remote_engine.set_response("gratitude", "health")
        remote.calls.clear()

        remote_engine.complete_reflection()
        await remote_engine.drain()

        assert ("update_reflection", "remote-1", 100, True) in remote.calls
        assert ("save_responses", "remote-1", ("gratitude",)) in remote.calls

    @pytest.mark.asyncio
    async def test_upgrade_links_to_server_id(self, remote_engine, remote, user):
        await _signed_in(remote_engine, user)
        remote_engine.start_reflection(2025, Mode.QUICK)
        remote_engine.complete_reflection()
        await remote_engine.drain()

        remote_engine.upgrade_mode("remote-1", Mode.OK)
        await remote_engine.drain()

        assert ("create_reflection", "user-1", 2025, Mode.OK, "remote-1") in remote.calls
        assert remote_engine.current_reflection.id == "remote-2"
        assert remote_engine.current_reflection.upgraded_from == "remote-1"

    @pytest.mark.asyncio
    async def test_failure_keeps_local_state(self, remote_engine, remote, user):
        await _signed_in(remote_engine, user)
        remote.fail_on = {"create_reflection"}

        local = remote_engine.start_reflection(2025, Mode.QUICK)
        remote_engine.set_response("gratitude", "friends")
        await remote_engine.drain()

        assert remote_engine.sync_status == SyncStatus.ERROR
        assert "create_reflection failed" in remote_engine.sync.last_error
        current = remote_engine.current_reflection
        assert current.id == local.id
        assert current.local_only
        assert current.responses["gratitude"].value.text == "friends"


class TestSyncToCloud:
    @pytest.mark.asyncio
    async def test_pushes_fields_and_answers(self, remote_engine, remote, user):
        await _signed_in(remote_engine, user)
        remote_engine.start_reflection(2025, Mode.QUICK)
        remote_engine.set_response("three_words", ["calm", "bold", "kind"])
        remote_engine.set_response("word_of_year", "Brave")
        await remote_engine.drain()
        remote.calls.clear()

        assert await remote_engine.sync_to_cloud()

        assert remote.calls == [
            ("update_reflection", "remote-1", 25, False),
            ("save_responses", "remote-1", ("three_words", "word_of_year")),
        ]
        assert remote_engine.current_reflection.progress == 25
        assert remote_engine.sync_status == SyncStatus.IDLE

    @pytest.mark.asyncio
    async def test_reports_failure(self, remote_engine, remote, user):
        await _signed_in(remote_engine, user)
        remote_engine.start_reflection(2025, Mode.QUICK)
        await remote_engine.drain()
        remote.fail_on = {"save_responses"}

        assert not await remote_engine.sync_to_cloud()
        assert remote_engine.sync_status == SyncStatus.ERROR


class TestProfileAndAchievements:
    @pytest.mark.asyncio
    async def test_update_profile(self, remote_engine, remote, user):
        await _signed_in(remote_engine, user)

        profile = remote_engine.update_profile(full_name="Ada L.", theme="calm")
        await remote_engine.drain()

        assert profile.full_name == "Ada L."
        assert remote_engine.theme == Theme.CALM
        assert remote.profiles["user-1"].full_name == "Ada L."
        assert remote.profiles["user-1"].theme == Theme.CALM

    @pytest.mark.asyncio
    async def test_unlock_is_mirrored(self, remote_engine, remote, user):
        await _signed_in(remote_engine, user)
        remote_engine.unlock_achievement(AchievementType.SHARER)
        remote_engine.unlock_achievement(AchievementType.SHARER)
        await remote_engine.drain()

        assert remote.call_names().count("unlock_achievement") == 1


class TestSyncQueue:
    def test_submit_without_loop_defers_until_drain(self, clock):
        queue = SyncQueue(clock=clock)
        seen = []

        async def operation():
            seen.append("ran")

        queue.submit("deferred", operation)
        assert queue.pending == 1
        assert seen == []

        asyncio.run(queue.drain())

        assert seen == ["ran"]
        assert queue.pending == 0
        assert queue.status == SyncStatus.IDLE
        assert queue.last_synced_at == clock()

    @pytest.mark.asyncio
    async def test_run_reports_remote_failure(self, clock):
        queue = SyncQueue(clock=clock)

        async def operation():
            raise APIError("boom", 500)

        assert await queue.run("failing", operation) == (False, None)
        assert queue.status == SyncStatus.ERROR
        assert queue.last_error == "boom"
        assert queue.last_synced_at is None

    @pytest.mark.asyncio
    async def test_run_returns_result(self, clock):
        queue = SyncQueue(clock=clock)

        async def operation():
            return 42

        assert await queue.run("answer", operation) == (True, 42)
        assert queue.status == SyncStatus.IDLE

    @pytest.mark.asyncio
    async def test_unexpected_errors_propagate_from_run(self, clock):
        queue = SyncQueue(clock=clock)

        async def operation():
            raise KeyError("bug")

        with pytest.raises(KeyError):
            await queue.run("buggy", operation)
        assert queue.status == SyncStatus.ERROR

    @pytest.mark.asyncio
    async def test_background_errors_are_contained(self, clock):
        queue = SyncQueue(clock=clock)

        async def buggy():
            raise KeyError("bug")

        queue.submit("buggy", buggy)
        await queue.drain()

        assert queue.pending == 0
        assert queue.status == SyncStatus.ERROR
        assert queue.last_error == "'bug'"

    @pytest.mark.asyncio
    async def test_next_clean_batch_recovers(self, clock):
        queue = SyncQueue(clock=clock)

        async def failing():
            raise APIError("down", 503)

        async def fine():
            return None

        await queue.run("failing", failing)
        await queue.run("fine", fine)

        assert queue.status == SyncStatus.IDLE
