import json
from datetime import datetime, timezone

import httpx
import pytest

from lifecompass.api.client import SupabaseStore
from lifecompass.api.errors import (
    APIError, AuthenticationError, ConfigurationError, RateLimitError,
)
from lifecompass.core.models import (
    AchievementType, ListValue, Mode, RatingsValue, ReflectionPeriod, Response, TextValue,
)
from lifecompass.core.ports import RemoteStoreError

URL = "https://demo.supabase.co"
NOW = datetime(2025, 12, 28, 9, 0, tzinfo=timezone.utc)

REFLECTION_ROWS = [
    {"id": "r1", "user_id": "user-1", "year": 2025, "period": "year_end", "mode": "quick",
     "progress": 25, "completed": False, "started_at": "2025-12-28T09:00:00Z",
     "updated_at": "2025-12-28T10:00:00Z"},
    {"id": "r0", "user_id": "user-1", "year": 2024, "period": "mid_year", "mode": "deep",
     "progress": 100, "completed": True, "started_at": "2024-06-30T09:00:00Z",
     "completed_at": "2024-06-30T11:00:00Z", "upgraded_from": None},
]

RESPONSE_ROWS = [
    {"reflection_id": "r1", "question_id": "three_words", "value": ["calm", "bold", "kind"]},
    {"reflection_id": "r1", "question_id": "life_areas_past", "value": {"finances": 8}},
    {"reflection_id": "r0", "question_id": "word_of_year", "value": "Calm",
     "updated_at": "2024-06-30T10:00:00Z"},
]


class Recorder:
    """MockTransport handler that records requests and replays canned responses."""

    def __init__(self, responder):
        self.responder = responder
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request)


def _store(responder, access_token="user-jwt"):
    recorder = Recorder(responder)
    client = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
    return SupabaseStore(URL, "anon-key", access_token=access_token, client=client), recorder


def _body(request):
    return json.loads(request.content)


class TestConfiguration:
    def test_requires_url_and_key(self):
        with pytest.raises(ConfigurationError):
            SupabaseStore("", "anon-key")
        with pytest.raises(ConfigurationError):
            SupabaseStore.from_config({"supabase": {"url": URL, "anon_key": None}})

    @pytest.mark.asyncio
    async def test_headers(self):
        store, recorder = _store(lambda request: httpx.Response(200, json=[]))
        async with store:
            await store.get_profile("user-1")

        request = recorder.requests[0]
        assert request.url.path == "/rest/v1/profiles"
        assert request.url.params["id"] == "eq.user-1"
        assert request.headers["apikey"] == "anon-key"
        assert request.headers["authorization"] == "Bearer user-jwt"

    @pytest.mark.asyncio
    async def test_anon_key_is_fallback_bearer(self):
        store, recorder = _store(lambda request: httpx.Response(200, json=[]), access_token=None)
        async with store:
            assert await store.get_profile("user-1") is None
        assert recorder.requests[0].headers["authorization"] == "Bearer anon-key"


class TestReflections:
    @pytest.mark.asyncio
    async def test_get_reflections_nests_responses(self):
        def responder(request):
            if request.url.path.endswith("/reflections"):
                return httpx.Response(200, json=REFLECTION_ROWS)
            return httpx.Response(200, json=RESPONSE_ROWS)

        store, recorder = _store(responder)
        async with store:
            reflections = await store.get_reflections("user-1")

        first, second = recorder.requests
        assert first.url.params["user_id"] == "eq.user-1"
        assert first.url.params["order"] == "year.desc,created_at.desc"
        assert second.url.params["reflection_id"] == "in.(r1,r0)"

        assert [r.id for r in reflections] == ["r1", "r0"]
        current, older = reflections
        assert not current.local_only
        assert current.responses["three_words"].value == ListValue(("calm", "bold", "kind"))
        assert current.responses["life_areas_past"].value == RatingsValue({"finances": 8})
        assert current.synced_at == datetime(2025, 12, 28, 10, 0, tzinfo=timezone.utc)
        assert older.period == ReflectionPeriod.MID_YEAR
        assert older.completed
        assert older.responses["word_of_year"].value == TextValue("Calm")

    @pytest.mark.asyncio
    async def test_untimed_responses_take_reflection_timestamps(self):
        def responder(request):
            if request.url.path.endswith("/reflections"):
                return httpx.Response(200, json=REFLECTION_ROWS)
            return httpx.Response(200, json=[
                {"reflection_id": "r1", "question_id": "gratitude", "value": "sun"},
                {"reflection_id": "r0", "question_id": "gratitude", "value": "rain"},
            ])

        store, _ = _store(responder)
        async with store:
            current, older = await store.get_reflections("user-1")

        assert current.responses["gratitude"].updated_at == current.started_at
        assert older.responses["gratitude"].updated_at == datetime(2024, 6, 30, 11, 0, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_no_reflections_means_one_request(self):
        store, recorder = _store(lambda request: httpx.Response(200, json=[]))
        async with store:
            assert await store.get_reflections("user-1") == []
        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_malformed_response_row_is_skipped(self):
        def responder(request):
            if request.url.path.endswith("/reflections"):
                return httpx.Response(200, json=REFLECTION_ROWS[:1])
            return httpx.Response(200, json=[
                {"reflection_id": "r1", "question_id": "life_areas_past", "value": "great"},
                {"reflection_id": "r1", "question_id": "gratitude", "value": "sun"},
            ])

        store, _ = _store(responder)
        async with store:
            reflections = await store.get_reflections("user-1")
        assert list(reflections[0].responses) == ["gratitude"]

    @pytest.mark.asyncio
    async def test_create_reflection(self):
        def responder(request):
            row = dict(_body(request), id="server-1")
            return httpx.Response(201, json=[row])

        store, recorder = _store(responder)
        async with store:
            created = await store.create_reflection(
                "user-1", 2025, ReflectionPeriod.Q1, Mode.OK, upgraded_from="server-0", started_at=NOW)

        request = recorder.requests[0]
        assert request.method == "POST"
        assert request.headers["prefer"] == "return=representation"
        assert _body(request) == {
            "user_id": "user-1", "year": 2025, "period": "q1", "mode": "ok",
            "progress": 0, "completed": False, "upgraded_from": "server-0",
            "started_at": "2025-12-28T09:00:00+00:00",
        }
        assert created.id == "server-1"
        assert created.upgraded_from == "server-0"
        assert not created.local_only

    @pytest.mark.asyncio
    async def test_update_sends_only_given_fields(self):
        store, recorder = _store(lambda request: httpx.Response(204))
        async with store:
            await store.update_reflection("server-1", progress=100, completed=True)
            await store.update_reflection("server-1")

        assert len(recorder.requests) == 1
        request = recorder.requests[0]
        assert request.method == "PATCH"
        assert request.url.params["id"] == "eq.server-1"
        assert _body(request) == {"progress": 100, "completed": True}


class TestResponses:
    @pytest.mark.asyncio
    async def test_save_responses_upserts_raw_values(self):
        store, recorder = _store(lambda request: httpx.Response(201))
        responses = {
            "three_words": Response("three_words", ListValue(("a", "b", "c")), NOW),
            "word_of_year": Response("word_of_year", TextValue("Brave"), NOW),
        }
        async with store:
            await store.save_responses("server-1", responses)
            await store.save_responses("server-1", {})

        assert len(recorder.requests) == 1
        request = recorder.requests[0]
        assert request.url.params["on_conflict"] == "reflection_id,question_id"
        assert request.headers["prefer"] == "resolution=merge-duplicates"
        assert _body(request) == [
            {"reflection_id": "server-1", "question_id": "three_words", "value": ["a", "b", "c"]},
            {"reflection_id": "server-1", "question_id": "word_of_year", "value": "Brave"},
        ]

    @pytest.mark.asyncio
    async def test_save_single_response(self):
        store, recorder = _store(lambda request: httpx.Response(201))
        async with store:
            await store.save_response("server-1", "life_areas_past", RatingsValue({"finances": 9}))
        assert _body(recorder.requests[0])["value"] == {"finances": 9}


class TestAchievements:
    @pytest.mark.asyncio
    async def test_unlock_inserts(self):
        store, recorder = _store(lambda request: httpx.Response(201))
        async with store:
            assert await store.unlock_achievement("user-1", AchievementType.SHARER)
        assert _body(recorder.requests[0]) == {"user_id": "user-1", "type": "sharer"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [409, 400])
    async def test_duplicate_is_not_an_error(self, status):
        duplicate = {"code": "23505", "message": "duplicate key value violates unique constraint"}
        store, _ = _store(lambda request: httpx.Response(status, json=duplicate))
        async with store:
            assert not await store.unlock_achievement("user-1", "first_journey")

    @pytest.mark.asyncio
    async def test_other_failures_raise(self):
        store, _ = _store(lambda request: httpx.Response(500, json={"message": "down"}))
        async with store:
            with pytest.raises(APIError):
                await store.unlock_achievement("user-1", "first_journey")

    @pytest.mark.asyncio
    async def test_unknown_types_are_skipped(self):
        rows = [
            {"id": "a1", "type": "first_journey", "unlocked_at": "2025-01-01T00:00:00Z"},
            {"id": "a2", "type": "retired_badge"},
        ]
        store, _ = _store(lambda request: httpx.Response(200, json=rows))
        async with store:
            achievements = await store.get_achievements("user-1")
        assert [a.type for a in achievements] == [AchievementType.FIRST_JOURNEY]


class TestErrors:
    @pytest.mark.parametrize("error", [APIError, AuthenticationError, RateLimitError, ConfigurationError])
    def test_errors_are_remote_store_failures(self, error):
        assert issubclass(error, RemoteStoreError)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status, error", [
        (401, AuthenticationError),
        (403, AuthenticationError),
        (429, RateLimitError),
        (500, APIError),
    ])
    async def test_status_mapping(self, status, error):
        store, _ = _store(lambda request: httpx.Response(status, json={"message": "nope"}))
        async with store:
            with pytest.raises(error):
                await store.get_reflections("user-1")

    @pytest.mark.asyncio
    async def test_api_error_carries_status_and_code(self):
        body = {"code": "PGRST116", "message": "bad request"}
        store, _ = _store(lambda request: httpx.Response(400, json=body))
        async with store:
            with pytest.raises(APIError) as exc_info:
                await store.get_reflection("r1")
        assert exc_info.value.status_code == 400
        assert exc_info.value.code == "PGRST116"

    @pytest.mark.asyncio
    async def test_transport_errors_become_api_errors(self):
        def responder(request):
            raise httpx.ConnectError("connection refused", request=request)

        store, _ = _store(responder)
        async with store:
            with pytest.raises(APIError):
                await store.get_profile("user-1")

    @pytest.mark.asyncio
    async def test_timeout(self):
        def responder(request):
            raise httpx.ReadTimeout("too slow", request=request)

        store, _ = _store(responder)
        async with store:
            with pytest.raises(APIError, match="timeout"):
                await store.get_profile("user-1")

    @pytest.mark.asyncio
    async def test_connection_check(self):
        store, _ = _store(lambda request: httpx.Response(401, json={"message": "bad key"}))
        async with store:
            assert not await store.test_connection()
