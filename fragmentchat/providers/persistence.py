"""Best-effort client for the persistence gateway."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any

import httpx
from loguru import logger

from fragmentchat.session.messages import Turn, content_to_dict
from fragmentchat.session.store import ValidationError

RETRY_BACKOFF_S = 0.5


class _RetryableError(Exception):
    pass


class PersistenceClient:
    """
    Talks to ``/conversations`` over HTTP.

    Network failures, timeouts and 5xx responses are retried, then degrade
    to an empty result. Only a 400 surfaces to the caller, as ValidationError.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        retries: int = 2,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retries = retries
        self._transport = transport

    @classmethod
    def from_config(cls, config) -> PersistenceClient:
        return cls(
            base_url=config.client.base_url,
            timeout=config.client.timeout,
            retries=config.client.retries,
        )

    async def append(
        self,
        conversation_id: str,
        role: str,
        user_id: str | None = None,
        content: Any = None,
        fragment: Any = None,
        model: str | None = None,
        created_at: datetime | str | None = None,
    ) -> str | None:
        """Store a turn. Returns its id, or None if the store skipped or failed."""
        if isinstance(created_at, datetime):
            created_at = created_at.isoformat()
        body = {
            "conversationId": conversation_id,
            "userId": user_id,
            "role": role,
            "content": content,
            "fragment": fragment,
            "model": model,
            "createdAt": created_at,
        }
        body = {k: v for k, v in body.items() if v is not None}

        data = await self._request("POST", "/conversations", json=body)
        if data is None or data.get("skipped"):
            return None
        return data.get("id")

    async def query(
        self, conversation_id: str | None = None, user_id: str | None = None
    ) -> list[dict[str, Any]]:
        """Fetch stored turns oldest first. Empty when persistence is unavailable."""
        if not conversation_id and not user_id:
            raise ValidationError("Conversation ID or userId is required")

        params = {}
        if conversation_id:
            params["id"] = conversation_id
        if user_id:
            params["userId"] = user_id

        data = await self._request("GET", "/conversations", params=params)
        if data is None:
            return []
        return data.get("messages", [])

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any] | None:
        url = f"{self.base_url}{path}"
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for attempt in range(self.retries + 1):
                try:
                    response = await client.request(method, url, **kwargs)
                    if response.status_code == 400:
                        raise ValidationError(response.json().get("error", "Invalid request"))
                    if response.status_code >= 500:
                        raise _RetryableError(f"{method} {path} returned {response.status_code}")
                    response.raise_for_status()
                    return response.json()
                except ValidationError:
                    raise
                except (httpx.TransportError, _RetryableError) as e:
                    if attempt < self.retries:
                        logger.debug(f"Persistence request failed ({e}), retrying")
                        await asyncio.sleep(RETRY_BACKOFF_S * (attempt + 1))
                        continue
                    logger.warning(f"Persistence unavailable after {attempt + 1} attempt(s): {e}")
                    return None
                except (httpx.HTTPStatusError, ValueError) as e:
                    logger.warning(f"Persistence request {method} {path} failed: {e}")
                    return None
        return None


class TurnRecorder:
    """Records raw turns in the background so the chat flow never waits on storage."""

    def __init__(
        self,
        client: PersistenceClient,
        conversation_id: str,
        user_id: str | None = None,
        model: str | None = None,
    ):
        self.client = client
        self.conversation_id = conversation_id
        self.user_id = user_id
        self.model = model
        self._tasks: set[asyncio.Task] = set()

    def record(self, turn: Turn) -> asyncio.Task:
        """Schedule the turn for storage and return immediately."""
        task = asyncio.create_task(self._save(turn))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for all scheduled saves to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def _save(self, turn: Turn) -> str | None:
        try:
            return await self.client.append(
                conversation_id=self.conversation_id,
                role=turn.role.value,
                user_id=self.user_id,
                content=[content_to_dict(c) for c in turn.content],
                fragment=turn.structured_object,
                model=self.model,
            )
        except Exception as e:
            logger.warning(f"Failed to record {turn.role.value} turn: {e}")
            return None
