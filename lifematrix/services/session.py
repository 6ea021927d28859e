"""Per-user session: wires mutation service, sync bridge and classification orchestrator."""

from typing import Union

from lifematrix.models.backup import BackupPayload
from lifematrix.models.context import (
    DEFAULT_SETTINGS,
    DEFAULT_STUDENT_CONTEXT,
    AppSettings,
    StudentContext,
)
from lifematrix.models.task import Quadrant, Task
from lifematrix.services.backup import export_backup, parse_backup
from lifematrix.services.classification_orchestrator import ClassificationOrchestrator
from lifematrix.services.supabase_client import DocumentStore
from lifematrix.services.sync_bridge import SyncBridge
from lifematrix.services.task_mutations import TaskMutationService
from lifematrix.utils.errors import PersistenceError
from lifematrix.utils.logging import correlation_context, get_structured_logger, mask_user_id

logger = get_structured_logger(__name__)


class LifeMatrixSession:
    """State and services for one signed-in user."""

    def __init__(self, user_id: str, store: DocumentStore):
        self.user_id = user_id
        self.context: StudentContext = DEFAULT_STUDENT_CONTEXT
        self.settings: AppSettings = DEFAULT_SETTINGS

        self.bridge = SyncBridge(
            user_id,
            store,
            on_tasks=self._install_tasks,
            on_context=self._install_context,
            on_settings=self._install_settings,
        )
        self.mutations = TaskMutationService(persist=self.bridge.push_tasks, coach=self._coach)
        self.orchestrator = ClassificationOrchestrator(
            self.mutations,
            get_context=lambda: self.context,
            get_settings=lambda: self.settings,
        )

    def _install_tasks(self, tasks: list[Task]) -> None:
        self.mutations.replace_all(tasks)

    def _install_context(self, context: StudentContext) -> None:
        self.context = context

    def _install_settings(self, settings: AppSettings) -> None:
        self.settings = settings

    async def _coach(self, task: Task, from_quadrant: Quadrant, to_quadrant: Quadrant) -> str:
        return await self.orchestrator.move_coaching_insight(task, from_quadrant, to_quadrant)

    async def start(self) -> None:
        with correlation_context():
            logger.info("Session starting", user_id=mask_user_id(self.user_id))
            await self.bridge.start()

    async def close(self) -> None:
        """Cancel all subscriptions (sign-out or teardown)."""
        await self.bridge.stop()
        logger.info("Session closed", user_id=mask_user_id(self.user_id))

    async def __aenter__(self) -> "LifeMatrixSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    async def _write(self, push, document, label: str) -> None:
        try:
            await push(document)
        except Exception as e:
            logger.error(
                "Failed to save document",
                user_id=mask_user_id(self.user_id),
                collection=label,
                error=str(e)
            )
            raise PersistenceError(f"Failed to save {label}. Backend error: {e}") from e

    async def update_context(self, context: StudentContext) -> StudentContext:
        """Replace the context locally, then write it."""
        self.context = context
        await self._write(self.bridge.push_context, context, "studentContext")
        return context

    async def update_settings(self, settings: AppSettings) -> AppSettings:
        """Replace the settings locally, then write them."""
        self.settings = settings
        await self._write(self.bridge.push_settings, settings, "settings")
        return settings

    def export_data(self) -> BackupPayload:
        return export_backup(self.mutations.task_list(), self.context, self.settings)

    async def import_data(self, raw: Union[str, bytes, dict]) -> BackupPayload:
        """
        Validate a backup, then write and install tasks, context and settings in order.

        A rejected payload raises ImportValidationError before anything is written.
        The writes are not atomic: when a later write fails, the documents already
        written stay written and installed, and PersistenceError is raised.
        """
        payload = parse_backup(raw)

        await self._write(self.bridge.push_tasks, payload.tasks, "tasks")
        self.mutations.replace_all(payload.tasks)

        await self._write(self.bridge.push_context, payload.student_context, "studentContext")
        self.context = payload.student_context

        await self._write(self.bridge.push_settings, payload.settings, "settings")
        self.settings = payload.settings

        logger.info(
            "Data imported",
            user_id=mask_user_id(self.user_id),
            task_count=len(payload.tasks)
        )
        return payload