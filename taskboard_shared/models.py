"""
Core data models for the Task Board client.

This module defines the data structures shared by the authentication layer
and the board: token pairs, tasks, columns and the board itself.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Dict, Any, Iterable
from enum import Enum


class BaseTaskStatus(Enum):
    """Statuses backing the three default board columns."""
    TODO = "todo"
    IN_PROGRESS = "inprogress"
    DONE = "done"


class TaskPriority(Enum):
    """Task priority levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# Columns added by the user get ids of the form "custom-<n>"
CUSTOM_STATUS_PREFIX = "custom-"

VALID_STATUSES = [status.value for status in BaseTaskStatus]

DEFAULT_COLUMN_TITLES = {
    BaseTaskStatus.TODO.value: "To Do",
    BaseTaskStatus.IN_PROGRESS.value: "In Progress",
    BaseTaskStatus.DONE.value: "Done",
}


def is_valid_status(status: str) -> bool:
    """Check whether a status names a default column or a custom one."""
    if status in VALID_STATUSES:
        return True
    if status.startswith(CUSTOM_STATUS_PREFIX):
        return status[len(CUSTOM_STATUS_PREFIX):].isdigit()
    return False


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp as sent by the service (``Z`` suffix allowed)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    text = str(value)
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    return datetime.fromisoformat(text)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Format a timestamp the way the service stores it."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TokenPair:
    """
    Access and refresh token issued together by the service.

    Frozen so that a pair is always replaced as a whole, never mutated
    one token at a time.
    """
    access_token: str
    refresh_token: str

    def __post_init__(self):
        if not self.access_token:
            raise ValueError("Access token cannot be empty")
        if not self.refresh_token:
            raise ValueError("Refresh token cannot be empty")

    @classmethod
    def from_response(cls, data: Dict[str, Any]) -> 'TokenPair':
        """Build a pair from an ``{accessToken, refreshToken}`` payload."""
        return cls(
            access_token=data.get('accessToken', ''),
            refresh_token=data.get('refreshToken', '')
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            'accessToken': self.access_token,
            'refreshToken': self.refresh_token
        }

    def __repr__(self) -> str:
        return f"TokenPair(access_token={self.access_token[:8]}..., refresh_token={self.refresh_token[:8]}...)"


@dataclass
class TaskDraft:
    """Fields supplied by the user when creating a task."""
    title: str
    description: str = ""
    status: str = BaseTaskStatus.TODO.value
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: Optional[str] = None

    def __post_init__(self):
        if not self.title or not self.title.strip():
            raise ValueError("Task title cannot be empty")
        if not is_valid_status(self.status):
            raise ValueError(f"Invalid task status: {self.status}")
        if isinstance(self.priority, str):
            self.priority = TaskPriority(self.priority)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'title': self.title.strip(),
            'description': self.description,
            'status': self.status,
            'priority': self.priority.value,
        }
        if self.due_date:
            data['dueDate'] = self.due_date
        return data


@dataclass
class Task:
    """A task as persisted by the service."""
    id: str
    title: str
    status: str
    priority: TaskPriority = TaskPriority.MEDIUM
    description: str = ""
    due_date: Optional[str] = None
    user_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.id:
            raise ValueError("Task ID cannot be empty")
        if isinstance(self.priority, str):
            self.priority = TaskPriority(self.priority)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Task':
        """Build a task from the service's camelCase representation."""
        return cls(
            id=str(data['id']),
            title=data.get('title', ''),
            status=data.get('status', BaseTaskStatus.TODO.value),
            priority=TaskPriority(data.get('priority', TaskPriority.MEDIUM.value)),
            description=data.get('description', ''),
            due_date=data.get('dueDate') or None,
            user_id=data.get('userId'),
            created_at=parse_timestamp(data.get('createdAt')),
            updated_at=parse_timestamp(data.get('updatedAt'))
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'status': self.status,
            'priority': self.priority.value,
            'createdAt': format_timestamp(self.created_at),
            'updatedAt': format_timestamp(self.updated_at),
        }
        if self.due_date:
            data['dueDate'] = self.due_date
        if self.user_id:
            data['userId'] = self.user_id
        return data


@dataclass
class Column:
    """A board column; ``id`` doubles as the status of the tasks it holds."""
    id: str
    title: str
    task_ids: List[str] = field(default_factory=list)


@dataclass
class Board:
    """Columns plus an index of tasks by id."""
    columns: List[Column] = field(default_factory=list)
    tasks: Dict[str, Task] = field(default_factory=dict)

    def get_column(self, column_id: str) -> Optional[Column]:
        for column in self.columns:
            if column.id == column_id:
                return column
        return None

    def column_of(self, task_id: str) -> Optional[Column]:
        """Find the column currently holding a task."""
        for column in self.columns:
            if task_id in column.task_ids:
                return column
        return None

    def add_task(self, task: Task) -> None:
        """Index a task and append it to the column matching its status."""
        self.tasks[task.id] = task
        column = self.get_column(task.status)
        if column is not None and task.id not in column.task_ids:
            column.task_ids.append(task.id)

    def remove_task(self, task_id: str) -> Optional[Task]:
        for column in self.columns:
            if task_id in column.task_ids:
                column.task_ids.remove(task_id)
        return self.tasks.pop(task_id, None)

    def move_task(self, task_id: str, destination: str) -> str:
        """
        Move a task to another column and update its status.

        Args:
            task_id: Task to move
            destination: Target column id

        Returns:
            The id of the column the task was moved out of

        Raises:
            KeyError: If the task or the destination column does not exist
        """
        if task_id not in self.tasks:
            raise KeyError(f"Unknown task: {task_id}")

        destination_column = self.get_column(destination)
        if destination_column is None:
            raise KeyError(f"Unknown column: {destination}")

        source_column = self.column_of(task_id)
        source = source_column.id if source_column else self.tasks[task_id].status

        if source_column is not None:
            source_column.task_ids.remove(task_id)
        destination_column.task_ids.append(task_id)

        task = self.tasks[task_id]
        task.status = destination
        task.updated_at = utc_now()

        return source

    def add_column(self, title: str) -> Column:
        """Append a user-defined column with the next free ``custom-<n>`` id."""
        title = (title or "").strip()
        if not title:
            raise ValueError("Column title cannot be empty")

        used = [
            int(column.id[len(CUSTOM_STATUS_PREFIX):])
            for column in self.columns
            if column.id.startswith(CUSTOM_STATUS_PREFIX)
            and column.id[len(CUSTOM_STATUS_PREFIX):].isdigit()
        ]
        column = Column(id=f"{CUSTOM_STATUS_PREFIX}{max(used, default=0) + 1}", title=title)
        self.columns.append(column)
        return column

    def tasks_in(self, column_id: str) -> List[Task]:
        column = self.get_column(column_id)
        if column is None:
            return []
        return [self.tasks[task_id] for task_id in column.task_ids if task_id in self.tasks]


def create_initial_board(tasks: Iterable[Task], extra_columns: Optional[List[Column]] = None) -> Board:
    """
    Build a board with the three default columns and place tasks by status.

    Tasks whose status matches no column stay in the task index but are not
    shown in any column.
    """
    columns = [
        Column(id=status, title=title)
        for status, title in DEFAULT_COLUMN_TITLES.items()
    ]
    for column in extra_columns or []:
        columns.append(Column(id=column.id, title=column.title))

    board = Board(columns=columns)
    for task in tasks:
        board.add_task(task)
    return board
