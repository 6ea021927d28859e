"""Supabase document store - per-user whole-document slots with realtime change feeds."""

import os
from typing import Any, Callable, Optional, Protocol

from supabase import AsyncClient, acreate_client
from supabase.lib.client_options import AsyncClientOptions

from lifematrix.utils.errors import PersistenceError
from lifematrix.utils.logging import get_structured_logger, log_timing, mask_user_id, timed

logger = get_structured_logger(__name__)

TASKS_COLLECTION = "tasks"
CONTEXT_COLLECTION = "studentContext"
SETTINGS_COLLECTION = "settings"

DEFAULT_DOCUMENTS_TABLE = "user_documents"

DocumentCallback = Callable[[Optional[Any]], None]
ErrorCallback = Callable[[Exception], None]


class Subscription(Protocol):
    async def unsubscribe(self) -> None:
        ...


class DocumentStore(Protocol):
    """Whole-document write plus change subscription, keyed by (user id, collection)."""

    async def write(self, user_id: str, collection: str, content: Any) -> None:
        ...

    async def subscribe(
        self,
        user_id: str,
        collection: str,
        callback: DocumentCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        ...


# Global client instance (singleton pattern)
_client: Optional[AsyncClient] = None


async def get_supabase_client() -> AsyncClient:
    """Get or create the async Supabase client singleton."""
    global _client

    if _client is None:
        url = os.environ.get("SUPABASE_URL")
        key = os.environ.get("SUPABASE_SERVICE_ROLE_KEY")

        if not url or not key:
            raise PersistenceError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")

        options = AsyncClientOptions(
            auto_refresh_token=False,
            persist_session=False,
        )

        _client = await acreate_client(url, key, options)
        logger.info("Supabase client initialized", supabase_url=url)

    return _client


async def close_supabase_client() -> None:
    """Drop the client singleton."""
    global _client
    if _client:
        _client = None
        logger.info("Supabase client closed")


def documents_table() -> str:
    return os.environ.get("SUPABASE_DOCUMENTS_TABLE", DEFAULT_DOCUMENTS_TABLE)


def extract_change(payload: dict) -> tuple[str, dict, dict]:
    """
    Pull (event type, new record, old record) out of a postgres_changes payload.

    Realtime nests the change under "data"; plain payloads are accepted too.
    """
    data = payload.get("data", payload) if isinstance(payload, dict) else {}
    event_type = str(data.get("type") or data.get("eventType") or "").upper()
    record = data.get("record") or data.get("new") or {}
    old_record = data.get("old_record") or data.get("old") or {}
    return event_type, record, old_record


class SupabaseSubscription:
    """Handle for one realtime channel."""

    def __init__(self, client: AsyncClient, channel, user_id: str, collection: str):
        self._client = client
        self._channel = channel
        self._user_id = user_id
        self._collection = collection
        self.active = True

    async def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        try:
            await self._client.remove_channel(self._channel)
        except Exception as e:
            raise PersistenceError(f"Failed to unsubscribe from {self._collection}: {e}") from e
        logger.info(
            "Document subscription cancelled",
            user_id=mask_user_id(self._user_id),
            collection=self._collection
        )


class SupabaseDocumentStore:
    """
    DocumentStore over one Supabase table.

    Rows are (user_id, collection, content jsonb), unique on
    (user_id, collection). Delete notifications need REPLICA IDENTITY FULL
    on the table so the old row carries its owner and collection.
    """

    def __init__(self, client: Optional[AsyncClient] = None, table: Optional[str] = None):
        self._client = client
        self.table = table or documents_table()

    async def _get_client(self) -> AsyncClient:
        if self._client is None:
            self._client = await get_supabase_client()
        return self._client

    async def write(self, user_id: str, collection: str, content: Any) -> None:
        """Overwrite the whole document (upsert)."""
        client = await self._get_client()
        try:
            with log_timing("document_write", logger=logger, collection=collection):
                await client.table(self.table).upsert(
                    {"user_id": user_id, "collection": collection, "content": content},
                    on_conflict="user_id,collection",
                ).execute()
        except Exception as e:
            raise PersistenceError(f"Failed to write {collection}: {e}") from e

    @timed("document_read", logger=logger)
    async def read(self, user_id: str, collection: str) -> Optional[Any]:
        """Current document content, or None when absent."""
        client = await self._get_client()
        try:
            result = await (
                client.table(self.table)
                .select("content")
                .eq("user_id", user_id)
                .eq("collection", collection)
                .limit(1)
                .execute()
            )
        except Exception as e:
            raise PersistenceError(f"Failed to read {collection}: {e}") from e
        return result.data[0].get("content") if result.data else None

    async def subscribe(
        self,
        user_id: str,
        collection: str,
        callback: DocumentCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> SupabaseSubscription:
        """
        Deliver the current document, then every later change.

        The channel is subscribed before the current row is fetched, and
        changes arriving during the fetch are held and delivered after it,
        so no write is missed between the two. Only rows owned by user_id
        are delivered. The callback receives the full content, or None when
        the row is absent or deleted. Errors go to on_error when given.
        """
        client = await self._get_client()
        held: Optional[list] = []

        def deliver(content: Optional[Any]) -> None:
            if held is None:
                callback(content)
            else:
                held.append(content)

        def handle_change(payload: dict) -> None:
            event_type, record, old_record = extract_change(payload)
            row = old_record if event_type == "DELETE" else record
            if row.get("user_id") != user_id or row.get("collection") != collection:
                return
            deliver(None if event_type == "DELETE" else record.get("content"))

        channel = client.channel(f"{self.table}:{user_id}:{collection}")
        channel.on_postgres_changes(
            "*",
            schema="public",
            table=self.table,
            filter=f"user_id=eq.{user_id}",
            callback=handle_change,
        )
        try:
            await channel.subscribe()
        except Exception as e:
            raise PersistenceError(f"Failed to subscribe to {collection}: {e}") from e

        try:
            current = await self.read(user_id, collection)
        except PersistenceError as e:
            logger.error(
                "Initial document fetch failed",
                user_id=mask_user_id(user_id),
                collection=collection,
                error=str(e)
            )
            if on_error is None:
                await client.remove_channel(channel)
                raise
            on_error(e)
        else:
            callback(current)

        pending, held = held, None
        for content in pending:
            callback(content)

        logger.info(
            "Document subscription started",
            user_id=mask_user_id(user_id),
            collection=collection,
            held_changes=len(pending)
        )
        return SupabaseSubscription(client, channel, user_id, collection)
