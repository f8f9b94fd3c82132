# src/lifecompass/api/client.py
"""
Remote store over Supabase's PostgREST interface.

Stateless apart from the HTTP connection: every method maps to one or two
requests and raises RemoteStoreError subclasses on failure.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from ..core.models import (
    Achievement, AchievementType, Mode, Reflection, ReflectionPeriod, Response,
    ResponseValue, Theme, UserProfile,
)
from .errors import APIError, AuthenticationError, ConfigurationError, RateLimitError, RemoteStoreError
from .mapping import (
    profile_patch, reflection_insert_row, reflection_patch, response_to_row,
    row_to_achievement, row_to_profile, row_to_reflection,
)

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"


class SupabaseStore:
    def __init__(self, url: str, api_key: str, access_token: Optional[str] = None,
                 timeout: float = 30.0, client: Optional[httpx.AsyncClient] = None):
        if not url or not api_key:
            raise ConfigurationError("Supabase url and anon key are required for remote sync")

        self.base_url = f"{url.rstrip('/')}/rest/v1"
        # Row level security keys off the user's JWT; the anon key is the fallback bearer
        self.headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {access_token or api_key}",
            "Content-Type": "application/json",
        }
        self.client = client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_config(cls, config: Dict[str, Any], client: Optional[httpx.AsyncClient] = None) -> 'SupabaseStore':
        supabase = config.get('supabase', {}) or {}
        return cls(
            url=supabase.get('url'),
            api_key=supabase.get('anon_key'),
            access_token=supabase.get('access_token'),
            timeout=float(supabase.get('timeout') or 30.0),
            client=client,
        )

    # ---- transport ----

    async def _request(self, method: str, table: str, params: Optional[Dict[str, str]] = None,
                       json: Any = None, prefer: Optional[str] = None) -> Any:
        headers = dict(self.headers)
        if prefer:
            headers["Prefer"] = prefer

        try:
            response = await self.client.request(
                method, f"{self.base_url}/{table}", params=params, json=json, headers=headers)
        except httpx.TimeoutException:
            raise APIError("Request timeout")
        except httpx.RequestError as e:
            raise APIError(f"Request failed: {str(e)}")

        self._raise_for_status(response)
        if not response.content:
            return None
        return response.json()

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if response.status_code < 400:
            return

        code = None
        detail = response.text
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            code = body.get("code")
            detail = body.get("message") or detail

        if response.status_code in (401, 403):
            raise AuthenticationError(f"Not authorized: {detail}")
        if response.status_code == 429:
            raise RateLimitError("Rate limit exceeded")
        raise APIError(f"API error: {response.status_code} {detail}", response.status_code, code)

    # ---- profiles ----

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        rows = await self._request("GET", "profiles", params={"select": "*", "id": f"eq.{user_id}"})
        if not rows:
            return None
        return row_to_profile(rows[0])

    async def update_profile(self, user_id: str, full_name: Optional[str] = None,
                             theme: Optional[Theme] = None,
                             avatar_url: Optional[str] = None) -> Optional[UserProfile]:
        rows = await self._request(
            "PATCH", "profiles",
            params={"id": f"eq.{user_id}"},
            json=profile_patch(full_name=full_name, theme=theme, avatar_url=avatar_url),
            prefer="return=representation",
        )
        return row_to_profile(rows[0]) if rows else None

    # ---- reflections ----

    async def get_reflections(self, user_id: str) -> List[Reflection]:
        """All of a user's reflections with nested responses, newest year first."""
        rows = await self._request("GET", "reflections", params={
            "select": "*",
            "user_id": f"eq.{user_id}",
            "order": "year.desc,created_at.desc",
        })
        if not rows:
            return []

        ids = ",".join(str(row["id"]) for row in rows)
        response_rows = await self._request("GET", "responses", params={
            "select": "*",
            "reflection_id": f"in.({ids})",
        }) or []

        by_reflection: Dict[str, List[Dict[str, Any]]] = {}
        for response_row in response_rows:
            by_reflection.setdefault(str(response_row["reflection_id"]), []).append(response_row)

        return [row_to_reflection(row, by_reflection.get(str(row["id"]), [])) for row in rows]

    async def get_reflection(self, reflection_id: str) -> Optional[Reflection]:
        rows = await self._request("GET", "reflections", params={
            "select": "*", "id": f"eq.{reflection_id}"})
        if not rows:
            return None
        response_rows = await self._request("GET", "responses", params={
            "select": "*", "reflection_id": f"eq.{reflection_id}"}) or []
        return row_to_reflection(rows[0], response_rows)

    async def create_reflection(self, user_id: str, year: int, period: ReflectionPeriod,
                                mode: Mode, upgraded_from: Optional[str] = None,
                                started_at: Optional[datetime] = None) -> Reflection:
        rows = await self._request(
            "POST", "reflections",
            json=reflection_insert_row(user_id, year, period, mode,
                                       upgraded_from=upgraded_from, started_at=started_at),
            prefer="return=representation",
        )
        if not rows:
            raise APIError("Reflection insert returned no row")
        created = row_to_reflection(rows[0])
        logger.debug(f"Created remote reflection {created.id} for {year}/{created.period.value}")
        return created

    async def update_reflection(self, reflection_id: str, progress: Optional[int] = None,
                                completed: Optional[bool] = None,
                                completed_at: Optional[datetime] = None,
                                mode: Optional[Mode] = None) -> None:
        patch = reflection_patch(progress=progress, completed=completed,
                                 completed_at=completed_at, mode=mode)
        if not patch:
            return
        await self._request("PATCH", "reflections", params={"id": f"eq.{reflection_id}"}, json=patch)

    # ---- responses ----

    async def save_response(self, reflection_id: str, question_id: str, value: ResponseValue) -> None:
        """Upsert one answer. Safe to retry."""
        await self._request(
            "POST", "responses",
            params={"on_conflict": "reflection_id,question_id"},
            json=response_to_row(reflection_id, question_id, value),
            prefer="resolution=merge-duplicates",
        )

    async def save_responses(self, reflection_id: str, responses: Dict[str, Response]) -> None:
        """Upsert a batch of answers in one request. Safe to retry."""
        rows = [response_to_row(reflection_id, r.question_id, r.value) for r in responses.values()]
        if not rows:
            return
        await self._request(
            "POST", "responses",
            params={"on_conflict": "reflection_id,question_id"},
            json=rows,
            prefer="resolution=merge-duplicates",
        )

    # ---- achievements ----

    async def get_achievements(self, user_id: str) -> List[Achievement]:
        rows = await self._request("GET", "achievements", params={
            "select": "*", "user_id": f"eq.{user_id}"}) or []
        achievements = []
        for row in rows:
            try:
                achievements.append(row_to_achievement(row))
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping unknown achievement row: {e}")
        return achievements

    async def unlock_achievement(self, user_id: str, achievement_type: AchievementType) -> bool:
        """Insert an achievement. Returns False when it was already unlocked."""
        try:
            await self._request("POST", "achievements", json={
                "user_id": user_id,
                "type": AchievementType(achievement_type).value,
            })
        except APIError as e:
            if e.status_code == 409 or e.code == UNIQUE_VIOLATION:
                logger.debug(f"Achievement {achievement_type} already unlocked remotely")
                return False
            raise
        return True

    # ---- lifecycle ----

    async def test_connection(self) -> bool:
        """Test that the store is reachable and the key is accepted."""
        try:
            await self._request("GET", "profiles", params={"select": "id", "limit": "1"})
            return True
        except RemoteStoreError as e:
            logger.error(f"Connection test failed: {e}")
            return False

    async def close(self):
        """Close the HTTP client"""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

