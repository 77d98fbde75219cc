"""
HTTP API Client for the Task Board service.

This module provides the task operations used by the board: listing,
creating, updating and deleting tasks, plus a health check. Every call goes
through the request gateway, so expired access tokens are renewed
transparently.
"""

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from taskboard_client.gateway import RequestGateway
from taskboard_client.transport import HTTPTransport
from taskboard_shared.exceptions import ErrorCode, RequestFailed
from taskboard_shared.models import Task, TaskDraft, TaskPriority, format_timestamp, utc_now

logger = logging.getLogger(__name__)


TASKS_PATH = '/api/tasks'
HEALTH_PATH = '/health'

# Task fields the service accepts in an update, by keyword name
_UPDATABLE_FIELDS = {
    'title': 'title',
    'description': 'description',
    'status': 'status',
    'priority': 'priority',
    'due_date': 'dueDate',
}


class TaskBoardAPIClient:
    """
    Task operations against the Task Board service.
    """

    def __init__(self, gateway: RequestGateway, transport: Optional[HTTPTransport] = None):
        self.gateway = gateway
        self.transport = transport or gateway.transport

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.transport.close()

    def _task_path(self, task_id: str) -> str:
        return f"{TASKS_PATH}/{quote(str(task_id), safe='')}"

    def _parse_task(self, data: Any, path: str) -> Task:
        if not isinstance(data, dict):
            raise RequestFailed(
                "Malformed task in response",
                path=path,
                error_code=ErrorCode.REQUEST_INVALID_RESPONSE
            )
        try:
            return Task.from_dict(data)
        except (KeyError, ValueError) as e:
            raise RequestFailed(
                f"Malformed task in response: {e}",
                path=path,
                error_code=ErrorCode.REQUEST_INVALID_RESPONSE,
                cause=e
            )

    async def get_tasks(self) -> List[Task]:
        """
        Get all tasks of the logged-in user.

        Returns:
            List of tasks
        """
        response = await self.gateway.send('GET', TASKS_PATH)

        if not isinstance(response.data, list):
            raise RequestFailed(
                "Expected a list of tasks",
                status=response.status,
                method='GET',
                path=TASKS_PATH,
                error_code=ErrorCode.REQUEST_INVALID_RESPONSE
            )

        tasks = [self._parse_task(item, TASKS_PATH) for item in response.data]
        logger.debug(f"Fetched {len(tasks)} tasks")
        return tasks

    async def create_task(self, draft: TaskDraft) -> Task:
        """
        Create a task.

        Args:
            draft: User-supplied task fields

        Returns:
            The task as stored by the service
        """
        now = format_timestamp(utc_now())
        body = dict(draft.to_dict(), createdAt=now, updatedAt=now)

        response = await self.gateway.send('POST', TASKS_PATH, body)
        task = self._parse_task(response.data, TASKS_PATH)

        logger.info(f"Task created: {task.id}")
        return task

    async def update_task(self, task_id: str, **changes: Any) -> Task:
        """
        Update fields of a task.

        Args:
            task_id: ID of the task
            **changes: Any of title, description, status, priority, due_date

        Returns:
            The updated task
        """
        body: Dict[str, Any] = {}
        for name, value in changes.items():
            if name not in _UPDATABLE_FIELDS:
                raise ValueError(f"Unknown task field: {name}")
            if isinstance(value, TaskPriority):
                value = value.value
            body[_UPDATABLE_FIELDS[name]] = value
        body['updatedAt'] = format_timestamp(utc_now())

        path = self._task_path(task_id)
        response = await self.gateway.send('PUT', path, body)
        task = self._parse_task(response.data, path)

        logger.debug(f"Task updated: {task_id} ({', '.join(changes) or 'no fields'})")
        return task

    async def delete_task(self, task_id: str) -> None:
        """Delete a task."""
        await self.gateway.send('DELETE', self._task_path(task_id))
        logger.info(f"Task deleted: {task_id}")

    async def check_health(self) -> bool:
        """
        Check that the service is up. Does not require authentication.

        Returns:
            True if the service reports status UP
        """
        try:
            response = await self.transport.request('GET', HEALTH_PATH)
        except RequestFailed as e:
            logger.warning(f"Health check failed: {e.message}")
            return False

        return response.ok and isinstance(response.data, dict) and response.data.get('status') == 'UP'
