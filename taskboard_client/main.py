"""
Main entry point for the Task Board client.

This module provides the ``taskboard`` command line interface: logging in and
out, showing the board and creating, moving, editing and deleting tasks.
"""

import sys
import json
import asyncio
import argparse
import getpass
import logging
from typing import Any, Optional, List

from taskboard_client.auth.session_manager import SessionManager
from taskboard_client.config import ClientConfiguration
from taskboard_shared.exceptions import SessionEndedError, TaskBoardError
from taskboard_shared.logging_config import LogFormat, LogLevel, setup_logging
from taskboard_shared.models import Board, Task, TaskDraft, TaskPriority

logger = logging.getLogger(__name__)


EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_SESSION_ENDED = 2
EXIT_INTERRUPTED = 130

# Commands that only work with a stored session
AUTHENTICATED_COMMANDS = {'board', 'add', 'move', 'edit', 'delete'}


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="taskboard",
        description="Task Board client",
        epilog="""
Examples:
  %(prog)s login --email me@example.com
  %(prog)s board
  %(prog)s add "Write report" --priority high
  %(prog)s move <task-id> done
  %(prog)s status --json
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    # Configuration options
    config_group = parser.add_argument_group('Configuration')
    config_group.add_argument("--config", type=str, metavar="FILE",
                              help="Path to configuration file")
    config_group.add_argument("--server-url", type=str, metavar="URL",
                              help="Override server URL")

    # Output format options
    output_group = parser.add_argument_group('Output')
    output_group.add_argument("--json", action="store_true",
                              help="Output results in JSON format")

    # Debug options
    debug_group = parser.add_argument_group('Debug')
    debug_group.add_argument("--debug", action="store_true",
                             help="Enable debug logging")
    debug_group.add_argument("--log-file", type=str, metavar="FILE",
                             help="Write logs to a file")

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    for name, help_text in (("login", "Log in"), ("register", "Create an account")):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("--email", type=str, required=True, help="Account email")
        sub.add_argument("--password", type=str,
                         help="Account password (prompted for when omitted)")

    subparsers.add_parser("logout", help="Log out and forget stored tokens")
    subparsers.add_parser("status", help="Show session and service status")
    subparsers.add_parser("board", help="Show the board")

    add = subparsers.add_parser("add", help="Create a task")
    add.add_argument("title", type=str)
    add.add_argument("--description", type=str, default="")
    add.add_argument("--status", type=str, default="todo", help="Column id (default: todo)")
    add.add_argument("--priority", type=str, default="medium",
                     choices=[priority.value for priority in TaskPriority])
    add.add_argument("--due", type=str, dest="due_date", metavar="DATE", help="Due date (YYYY-MM-DD)")

    move = subparsers.add_parser("move", help="Move a task to another column")
    move.add_argument("task_id", type=str)
    move.add_argument("column", type=str, help="Target column id, e.g. inprogress")

    edit = subparsers.add_parser("edit", help="Edit a task")
    edit.add_argument("task_id", type=str)
    edit.add_argument("--title", type=str)
    edit.add_argument("--description", type=str)
    edit.add_argument("--priority", type=str, choices=[priority.value for priority in TaskPriority])
    edit.add_argument("--due", type=str, dest="due_date", metavar="DATE")

    delete = subparsers.add_parser("delete", help="Delete a task")
    delete.add_argument("task_id", type=str)

    args = parser.parse_args(argv)

    if args.command == "edit" and not any(
        value is not None for value in (args.title, args.description, args.priority, args.due_date)
    ):
        parser.error("edit requires at least one of --title, --description, --priority, --due")

    return args


def configure_logging(args: argparse.Namespace, config: ClientConfiguration) -> None:
    """Set up logging from configuration and command line flags."""
    level = LogLevel.DEBUG if args.debug else LogLevel(config.get_log_level())
    log_format = LogFormat(config.get_log_format())

    setup_logging(
        log_level=level,
        log_format=log_format,
        log_file=args.log_file or config.get_log_file(),
        max_file_size=int(config.get_config('logging.max_size', 10485760)),
        backup_count=int(config.get_config('logging.backup_count', 3)),
        audit_file=config.get_audit_file()
    )


def _emit(args: argparse.Namespace, data: Any, text: str) -> None:
    if args.json:
        print(json.dumps(data, indent=2))
    else:
        print(text)


def _format_task(task: Task) -> str:
    line = f"  [{task.id}] {task.title} ({task.priority.value})"
    if task.due_date:
        line += f" due {task.due_date}"
    return line


def _format_board(board: Board) -> str:
    lines = []
    for column in board.columns:
        tasks = board.tasks_in(column.id)
        lines.append(f"{column.title} [{column.id}] ({len(tasks)})")
        lines.extend(_format_task(task) for task in tasks)
    return "\n".join(lines)


def _board_to_dict(board: Board) -> dict:
    return {
        'columns': [
            {
                'id': column.id,
                'title': column.title,
                'tasks': [task.to_dict() for task in board.tasks_in(column.id)],
            }
            for column in board.columns
        ]
    }


def _read_password(args: argparse.Namespace, confirm: bool = False) -> tuple:
    if args.password is not None:
        return args.password, args.password if confirm else None
    password = getpass.getpass("Password: ")
    confirmation = getpass.getpass("Confirm password: ") if confirm else None
    return password, confirmation


async def run_command(args: argparse.Namespace, session: SessionManager) -> int:
    """
    Execute one command against the session.

    Returns:
        Process exit code
    """
    command = args.command

    if command == "login":
        password, _ = _read_password(args)
        await session.login(args.email, password)
        _emit(args, {'authenticated': True}, "Logged in")
        return EXIT_SUCCESS

    if command == "register":
        password, confirmation = _read_password(args, confirm=True)
        await session.register(args.email, password, confirmation)
        _emit(args, {'authenticated': True}, "Account created, logged in")
        return EXIT_SUCCESS

    if command == "logout":
        session.logout()
        _emit(args, {'authenticated': False}, "Logged out")
        return EXIT_SUCCESS

    if command == "status":
        authenticated = session.load_stored_session()
        healthy = await session.api_client.check_health()
        status = {
            'server_url': session.config.get_server_url(),
            'server_up': healthy,
            'authenticated': authenticated,
            'token': session.get_token_info(),
        }
        text = (
            f"Server: {status['server_url']} ({'up' if healthy else 'unreachable'})\n"
            f"Session: {'logged in' if authenticated else 'not logged in'}"
        )
        _emit(args, status, text)
        return EXIT_SUCCESS

    if command in AUTHENTICATED_COMMANDS and not session.load_stored_session():
        print("Not logged in. Run 'taskboard login' first.", file=sys.stderr)
        return EXIT_SESSION_ENDED

    controller = session.board

    if command == "board":
        board = await controller.load()
        _emit(args, _board_to_dict(board), _format_board(board))
        return EXIT_SUCCESS

    if command == "add":
        try:
            draft = TaskDraft(
                title=args.title,
                description=args.description,
                status=args.status,
                priority=TaskPriority(args.priority),
                due_date=args.due_date
            )
        except ValueError as e:
            print(f"Invalid task: {e}", file=sys.stderr)
            return EXIT_FAILURE
        task = await controller.create_task(draft)
        _emit(args, task.to_dict(), f"Created task {task.id}")
        return EXIT_SUCCESS

    if command == "move":
        task = await controller.move_task(args.task_id, args.column)
        _emit(args, task.to_dict(), f"Moved task {task.id} to {task.status}")
        return EXIT_SUCCESS

    if command == "edit":
        changes = {
            name: getattr(args, name)
            for name in ('title', 'description', 'priority', 'due_date')
            if getattr(args, name) is not None
        }
        task = await controller.edit_task(args.task_id, **changes)
        _emit(args, task.to_dict(), f"Updated task {task.id}")
        return EXIT_SUCCESS

    if command == "delete":
        await controller.delete_task(args.task_id)
        _emit(args, {'deleted': args.task_id}, f"Deleted task {args.task_id}")
        return EXIT_SUCCESS

    logger.error(f"Unknown command: {command}")
    return EXIT_FAILURE


async def _run(args: argparse.Namespace, config: ClientConfiguration) -> int:
    async with SessionManager(config) as session:
        return await run_command(args, session)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_arguments(argv)

    try:
        config = ClientConfiguration(args.config)
        if args.server_url:
            config.set_override('server_url', args.server_url)
        configure_logging(args, config)

        return asyncio.run(_run(args, config))

    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return EXIT_INTERRUPTED
    except SessionEndedError as e:
        logger.debug(f"Session ended: {e.message}")
        print(e.user_message, file=sys.stderr)
        return EXIT_SESSION_ENDED
    except TaskBoardError as e:
        logger.debug(f"Command failed: {e.to_dict()}")
        print(f"Error: {e.user_message}", file=sys.stderr)
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
