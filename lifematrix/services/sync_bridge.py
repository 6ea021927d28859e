"""
Synchronization bridge between local state and the remote document store.

Each of the three per-user documents is subscribed independently; every
delivery fully replaces the matching local state (last write wins per
document). Local writes are whole-document overwrites.
"""

from typing import Any, Callable, Iterable

from pydantic import ValidationError

from lifematrix.models.context import (
    DEFAULT_SETTINGS,
    DEFAULT_STUDENT_CONTEXT,
    AppSettings,
    StudentContext,
)
from lifematrix.models.task import Task
from lifematrix.services.supabase_client import (
    CONTEXT_COLLECTION,
    SETTINGS_COLLECTION,
    TASKS_COLLECTION,
    DocumentStore,
    Subscription,
)
from lifematrix.utils.logging import get_structured_logger, mask_user_id

logger = get_structured_logger(__name__)

TASKS_SLOT = "tasks"
CONTEXT_SLOT = "context"
SETTINGS_SLOT = "settings"

SLOT_COLLECTIONS = {
    TASKS_SLOT: TASKS_COLLECTION,
    CONTEXT_SLOT: CONTEXT_COLLECTION,
    SETTINGS_SLOT: SETTINGS_COLLECTION,
}


def decode_tasks(content: Any) -> list[Task]:
    """Tasks document -> list of Task; invalid records are dropped."""
    if not isinstance(content, list):
        if content is not None:
            logger.warning("Tasks document is not a list", content_type=type(content).__name__)
        return []

    tasks = []
    for position, record in enumerate(content):
        try:
            tasks.append(Task.model_validate(record))
        except ValidationError as e:
            logger.warning(
                "Dropping invalid task record",
                position=position,
                error_count=e.error_count()
            )
    return tasks


def decode_context(content: Any) -> StudentContext:
    if not content:
        return DEFAULT_STUDENT_CONTEXT
    try:
        return StudentContext.model_validate(content)
    except ValidationError as e:
        logger.warning("Invalid student context document, using defaults", error_count=e.error_count())
        return DEFAULT_STUDENT_CONTEXT


def decode_settings(content: Any) -> AppSettings:
    if not content:
        return DEFAULT_SETTINGS
    try:
        return AppSettings.model_validate(content)
    except ValidationError as e:
        logger.warning("Invalid settings document, using defaults", error_count=e.error_count())
        return DEFAULT_SETTINGS


class SyncBridge:
    """Subscribes the tasks, context and settings documents for one user."""

    def __init__(
        self,
        user_id: str,
        store: DocumentStore,
        on_tasks: Callable[[list[Task]], None],
        on_context: Callable[[StudentContext], None],
        on_settings: Callable[[AppSettings], None],
    ):
        self.user_id = user_id
        self._store = store
        self._subscriptions: dict[str, Subscription] = {}
        self._handlers = {
            TASKS_SLOT: (decode_tasks, on_tasks),
            CONTEXT_SLOT: (decode_context, on_context),
            SETTINGS_SLOT: (decode_settings, on_settings),
        }

    @property
    def active_slots(self) -> list[str]:
        return list(self._subscriptions)

    def _deliver(self, slot: str, content: Any) -> None:
        decode, apply = self._handlers[slot]
        apply(decode(content))

    def _fail(self, slot: str, error: Exception) -> None:
        decode, apply = self._handlers[slot]
        logger.error(
            "Document subscription error, falling back to defaults",
            user_id=mask_user_id(self.user_id),
            slot=slot,
            error=str(error)
        )
        apply(decode(None))

    async def _subscribe(self, slot: str) -> None:
        subscription = await self._store.subscribe(
            self.user_id,
            SLOT_COLLECTIONS[slot],
            lambda content: self._deliver(slot, content),
            on_error=lambda error: self._fail(slot, error),
        )
        self._subscriptions[slot] = subscription

    async def start(self) -> None:
        """Subscribe all three documents; on failure the ones already open are cancelled."""
        try:
            for slot in SLOT_COLLECTIONS:
                if slot not in self._subscriptions:
                    await self._subscribe(slot)
        except Exception:
            await self.stop()
            raise
        logger.info("Sync bridge started", user_id=mask_user_id(self.user_id))

    async def cancel(self, slot: str) -> None:
        """Cancel one subscription; unknown or already cancelled slots are ignored."""
        subscription = self._subscriptions.pop(slot, None)
        if subscription is not None:
            await subscription.unsubscribe()

    async def stop(self) -> None:
        """Cancel every subscription. Safe to call more than once."""
        errors = []
        for slot in list(self._subscriptions):
            try:
                await self.cancel(slot)
            except Exception as e:
                errors.append(e)
                logger.warning("Failed to cancel subscription", slot=slot, error=str(e))
        if errors:
            raise errors[0]

    async def push_tasks(self, tasks: Iterable[Task]) -> None:
        await self._store.write(self.user_id, TASKS_COLLECTION, [t.to_document() for t in tasks])

    async def push_context(self, context: StudentContext) -> None:
        await self._store.write(self.user_id, CONTEXT_COLLECTION, context.to_document())

    async def push_settings(self, settings: AppSettings) -> None:
        await self._store.write(self.user_id, SETTINGS_COLLECTION, settings.to_document())

