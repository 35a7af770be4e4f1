"""Conversation persistence: JSONL store and the gateway operations over it."""

import asyncio
import atexit
import json
import re
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from loguru import logger

ANONYMOUS_USER = "anonymous"


class PersistenceError(Exception):
    """Base class for persistence failures."""


class ValidationError(PersistenceError):
    """A required field is missing. Never retried."""


class StoreUnavailable(PersistenceError):
    """The backing store is unconfigured or unreachable. Callers degrade to a no-op."""


class UnexpectedPersistenceFailure(PersistenceError):
    """Any other storage-layer failure."""


class ConversationStore(ABC):
    """Backing store for conversation turn records."""

    @abstractmethod
    async def insert(self, record: dict[str, Any]) -> str:
        """Store one record and return its id."""

    @abstractmethod
    async def find(
        self, conversation_id: str | None = None, user_id: str | None = None
    ) -> list[dict[str, Any]]:
        """Return records matching every given filter, in insertion order."""

    def close(self) -> None:
        """Release any held resources."""


class JsonlConversationStore(ConversationStore):
    """
    Stores turns as JSONL, one file per conversation.

    Directory layout:
        root/
        └── {conversation_id}.jsonl   # one record per line, append-only
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self._lock = asyncio.Lock()

    async def insert(self, record: dict[str, Any]) -> str:
        record = {"id": uuid.uuid4().hex, **record}
        path = self._get_path(record["conversationId"])
        async with self._lock:
            await asyncio.to_thread(self._append_line, path, record)
        return record["id"]

    async def find(
        self, conversation_id: str | None = None, user_id: str | None = None
    ) -> list[dict[str, Any]]:
        if conversation_id:
            paths = [self._get_path(conversation_id)]
        else:
            paths = await asyncio.to_thread(self._list_paths)

        records = []
        for path in paths:
            for record in await asyncio.to_thread(self._read_lines, path):
                if conversation_id and record.get("conversationId") != conversation_id:
                    continue
                if user_id and record.get("userId") != user_id:
                    continue
                records.append(record)
        return records

    # ── internal helpers ────────────────────────────────────────

    def _get_path(self, conversation_id: str) -> Path:
        safe_id = re.sub(r"[^A-Za-z0-9._-]", "_", conversation_id)
        return self.root / f"{safe_id}.jsonl"

    def _ensure_root(self) -> None:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreUnavailable(f"Store directory unavailable: {self.root}: {e}") from e

    def _append_line(self, path: Path, record: dict[str, Any]) -> None:
        self._ensure_root()
        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=False) + "\n")

    def _list_paths(self) -> list[Path]:
        if not self.root.exists():
            return []
        if not self.root.is_dir():
            raise StoreUnavailable(f"Store directory unavailable: {self.root}")
        return sorted(self.root.glob("*.jsonl"))

    @staticmethod
    def _read_lines(path: Path) -> list[dict[str, Any]]:
        if not path.exists():
            return []
        records = []
        with open(path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line:
                    records.append(json.loads(line))
        return records


def _to_utc(value: datetime | str | int | float | None) -> datetime:
    """Normalize a timestamp to aware UTC. Numbers are epoch milliseconds."""
    if value is None:
        return datetime.now(timezone.utc)
    if isinstance(value, bool):
        raise ValidationError(f"Invalid createdAt: {value!r}")
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError) as e:
            raise ValidationError(f"Invalid createdAt: {value!r}") from e
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as e:
            raise ValidationError(f"Invalid createdAt: {value!r}") from e
    if not isinstance(value, datetime):
        raise ValidationError(f"Invalid createdAt: {value!r}")
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _or_none(value: Any) -> Any:
    return None if value is None or value == "" else value


def _created_at_key(record: dict[str, Any]) -> datetime:
    return _to_utc(record.get("createdAt"))


class PersistenceGateway:
    """
    The two persistence operations the chat flow depends on.

    Persistence is best-effort: with no store configured, ``query`` returns
    an empty list and ``append`` raises ``StoreUnavailable`` for the caller
    to treat as a skip.
    """

    def __init__(self, store: ConversationStore | None):
        self.store = store

    @property
    def configured(self) -> bool:
        return self.store is not None

    async def append(
        self,
        conversation_id: str | None,
        user_id: str | None,
        role: str | None,
        content: Any = None,
        fragment: Any = None,
        model: Any = None,
        created_at: datetime | str | int | float | None = None,
    ) -> str:
        """Store one raw turn and return its id."""
        if not conversation_id or not role:
            raise ValidationError("conversationId and role are required")
        if self.store is None:
            raise StoreUnavailable("No conversation store configured")

        # Ids arrive as JSON; queries always compare against strings
        conversation_id = str(conversation_id)
        record = {
            "conversationId": conversation_id,
            "userId": user_id or ANONYMOUS_USER,
            "role": role,
            "content": _or_none(content),
            "fragment": _or_none(fragment),
            "model": _or_none(model),
            "createdAt": _to_utc(created_at).isoformat(),
        }

        try:
            record_id = await self.store.insert(record)
        except PersistenceError:
            raise
        except Exception as e:
            logger.error(f"Failed to save conversation turn: {e}")
            raise UnexpectedPersistenceFailure("Failed to save conversation") from e

        logger.debug(f"Stored {role} turn {record_id} for conversation {conversation_id}")
        return record_id

    async def query(
        self, conversation_id: str | None = None, user_id: str | None = None
    ) -> list[dict[str, Any]]:
        """Return stored turns ordered by creation time, oldest first."""
        if not conversation_id and not user_id:
            raise ValidationError("Conversation ID or userId is required")
        if self.store is None:
            return []

        try:
            records = await self.store.find(conversation_id=conversation_id, user_id=user_id)
        except StoreUnavailable as e:
            logger.warning(f"Conversation store unavailable: {e}")
            return []
        except PersistenceError:
            raise
        except Exception as e:
            logger.error(f"Failed to fetch conversations: {e}")
            raise UnexpectedPersistenceFailure("Failed to fetch conversations") from e

        # sorted() is stable, so equal timestamps keep append order
        return sorted(records, key=_created_at_key)


# ── process-wide store ──────────────────────────────────────────

_store: ConversationStore | None = None
_store_initialized = False


def get_store(config=None) -> ConversationStore | None:
    """Return the process-wide store, creating it on first use.

    Returns None when no storage path is configured.
    """
    global _store, _store_initialized
    if _store_initialized:
        return _store

    if config is None:
        from fragmentchat.config.loader import load_config
        config = load_config()

    path = config.storage_path
    if path is None:
        logger.info("Conversation storage not configured; persistence disabled")
        _store = None
    else:
        _store = JsonlConversationStore(path)
        logger.info(f"Conversation store at {path}")
    _store_initialized = True
    return _store


def close_store() -> None:
    """Tear down the process-wide store. The next ``get_store`` starts fresh."""
    global _store, _store_initialized
    if _store is not None:
        _store.close()
    _store = None
    _store_initialized = False


atexit.register(close_store)
