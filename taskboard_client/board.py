"""
Board state management for the Task Board client.

BoardController keeps a local Board in step with the service. Moves are
applied locally first and then sent to the service; if the service rejects
the move, the board is reloaded so it reflects the stored state again.
"""

import logging
from typing import Any, List, Optional

from taskboard_client.api_client import TaskBoardAPIClient
from taskboard_shared.exceptions import TaskBoardError, ValidationError
from taskboard_shared.models import Board, Column, Task, TaskDraft, create_initial_board, is_valid_status

logger = logging.getLogger(__name__)


class BoardController:
    """Local board plus the service calls that keep it current."""

    def __init__(self, api_client: TaskBoardAPIClient):
        self.api_client = api_client
        self.board: Optional[Board] = None
        # User-defined columns only exist client side
        self._custom_columns: List[Column] = []

    async def load(self) -> Board:
        """Fetch all tasks and rebuild the board."""
        tasks = await self.api_client.get_tasks()
        self.board = create_initial_board(tasks, extra_columns=self._custom_columns)
        logger.debug(f"Board loaded with {len(tasks)} tasks")
        return self.board

    async def _ensure_loaded(self) -> Board:
        if self.board is None:
            return await self.load()
        return self.board

    async def move_task(self, task_id: str, destination: str) -> Task:
        """
        Move a task to another column.

        Args:
            task_id: Task to move
            destination: Target column id

        Returns:
            The updated task

        Raises:
            ValidationError: Unknown task or column
            TaskBoardError: The service rejected the move; the board has been
                reloaded from the service
        """
        board = await self._ensure_loaded()

        if task_id not in board.tasks:
            raise ValidationError(f"Unknown task: {task_id}", field_name='task_id')
        if board.get_column(destination) is None:
            raise ValidationError(f"Unknown column: {destination}", field_name='status')

        current = board.column_of(task_id)
        if current is not None and current.id == destination:
            return board.tasks[task_id]

        source = board.move_task(task_id, destination)
        logger.info(f"Moving task {task_id}: {source} -> {destination}")

        try:
            task = await self.api_client.update_task(task_id, status=destination)
        except TaskBoardError:
            logger.warning(f"Failed to move task {task_id}, reloading board")
            await self._reload_quietly()
            raise

        board.tasks[task.id] = task
        return task

    async def _reload_quietly(self) -> None:
        try:
            await self.load()
        except TaskBoardError as e:
            logger.error(f"Failed to reload board: {e.message}")

    async def create_task(self, draft: TaskDraft) -> Task:
        """Create a task and add it to its column."""
        board = await self._ensure_loaded()
        if board.get_column(draft.status) is None:
            raise ValidationError(f"Unknown column: {draft.status}", field_name='status')

        task = await self.api_client.create_task(draft)
        board.add_task(task)
        return task

    async def edit_task(self, task_id: str, **changes: Any) -> Task:
        """Update task fields; a status change also moves the task."""
        board = await self._ensure_loaded()
        if task_id not in board.tasks:
            raise ValidationError(f"Unknown task: {task_id}", field_name='task_id')

        status = changes.get('status')
        if status is not None and not is_valid_status(status):
            raise ValidationError(f"Invalid task status: {status}", field_name='status')

        task = await self.api_client.update_task(task_id, **changes)

        board.remove_task(task_id)
        board.add_task(task)
        return task

    async def delete_task(self, task_id: str) -> None:
        board = await self._ensure_loaded()
        await self.api_client.delete_task(task_id)
        board.remove_task(task_id)

    async def add_column(self, title: str) -> Column:
        """Add a user-defined column."""
        board = await self._ensure_loaded()
        try:
            column = board.add_column(title)
        except ValueError as e:
            raise ValidationError(str(e), field_name='title')

        self._custom_columns.append(column)
        return column
