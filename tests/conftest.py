"""
Shared fixtures for the Task Board client tests.

The stub task service is a small aiohttp application that mimics the real
service's authentication and task endpoints. It issues opaque tokens
(A1/R1, A2/R2, ...) and records every request it receives.
"""

import asyncio
from dataclasses import dataclass
from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from taskboard_client.api_client import TaskBoardAPIClient
from taskboard_client.auth.auth_client import AuthClient
from taskboard_client.auth.refresh_coordinator import RefreshCoordinator
from taskboard_client.auth.token_storage import MemoryTokenStorage
from taskboard_client.gateway import RequestGateway
from taskboard_client.transport import HTTPTransport
from taskboard_shared.models import TokenPair


@dataclass
class RecordedCall:
    method: str
    path: str
    token: Optional[str]
    body: Any = None


class StubTaskService:
    """In-process stand-in for the task service."""

    def __init__(self):
        self.url: Optional[str] = None
        self.calls: List[RecordedCall] = []

        self.users: Dict[str, str] = {}
        self.access_tokens: Dict[str, str] = {}
        self.refresh_tokens: Dict[str, str] = {}
        self.tasks: Dict[str, Dict[str, Any]] = {}

        self.refresh_delay = 0.0
        self.auth_failure_status = 401
        self.reject_access_tokens = False
        self.injected: Dict[Tuple[str, str], List[int]] = {}

        self._token_counter = 0
        self._task_counter = 0

    # Seeding helpers

    def add_user(self, email: str, password: str) -> None:
        self.users[email] = password

    def issue_pair(self, email: str) -> Tuple[str, str]:
        self._token_counter += 1
        access, refresh = f"A{self._token_counter}", f"R{self._token_counter}"
        self.access_tokens[access] = email
        self.refresh_tokens[refresh] = email
        return access, refresh

    def expire_access_tokens(self) -> None:
        self.access_tokens.clear()

    def revoke_refresh_tokens(self) -> None:
        self.refresh_tokens.clear()

    def inject(self, method: str, path: str, *statuses: int) -> None:
        """Answer the next requests to ``method path`` with the given statuses."""
        self.injected.setdefault((method, path), []).extend(statuses)

    def add_task(self, email: str, **fields: Any) -> Dict[str, Any]:
        self._task_counter += 1
        task = {
            'id': str(self._task_counter),
            'title': 'Task',
            'description': '',
            'status': 'todo',
            'priority': 'medium',
            'createdAt': '2024-01-01T00:00:00.000Z',
            'updatedAt': '2024-01-01T00:00:00.000Z',
        }
        task.update(fields)
        task['userId'] = email
        self.tasks[task['id']] = task
        return task

    # Call inspection

    def calls_to(self, path: str, method: Optional[str] = None) -> List[RecordedCall]:
        return [
            call for call in self.calls
            if call.path == path and (method is None or call.method == method)
        ]

    @property
    def refresh_count(self) -> int:
        return len(self.calls_to('/api/refresh'))

    # Application

    def make_app(self) -> web.Application:
        @web.middleware
        async def record(request: web.Request, handler):
            auth = request.headers.get('Authorization', '')
            token = auth[len('Bearer '):] if auth.startswith('Bearer ') else None
            body = None
            if request.can_read_body:
                try:
                    body = await request.json()
                except ValueError:
                    body = None
            self.calls.append(RecordedCall(request.method, request.path, token, body))

            pending = self.injected.get((request.method, request.path))
            if pending:
                status = pending.pop(0)
                return web.json_response({'error': f'Injected failure {status}'}, status=status)

            return await handler(request)

        app = web.Application(middlewares=[record])
        app.router.add_post('/api/login', self.login)
        app.router.add_post('/api/register', self.register)
        app.router.add_post('/api/refresh', self.refresh)
        app.router.add_get('/api/tasks', self.list_tasks)
        app.router.add_post('/api/tasks', self.create_task)
        app.router.add_put('/api/tasks/{task_id}', self.update_task)
        app.router.add_delete('/api/tasks/{task_id}', self.delete_task)
        app.router.add_get('/health', self.health)
        return app

    def _pair_response(self, email: str, status: int = 200) -> web.Response:
        access, refresh = self.issue_pair(email)
        return web.json_response({'accessToken': access, 'refreshToken': refresh}, status=status)

    def _user_for(self, request: web.Request) -> Optional[str]:
        if self.reject_access_tokens:
            return None
        auth = request.headers.get('Authorization', '')
        if not auth.startswith('Bearer '):
            return None
        return self.access_tokens.get(auth[len('Bearer '):])

    def _unauthorized(self) -> web.Response:
        return web.json_response({'error': 'Invalid token'}, status=self.auth_failure_status)

    async def login(self, request: web.Request) -> web.Response:
        data = await request.json()
        email, password = data.get('email'), data.get('password')
        if not email or not password:
            return web.json_response({'error': 'Email and password are required'}, status=400)
        if email not in self.users:
            return web.json_response({'error': 'User not found'}, status=400)
        if self.users[email] != password:
            return web.json_response({'error': 'Invalid password'}, status=400)
        return self._pair_response(email)

    async def register(self, request: web.Request) -> web.Response:
        data = await request.json()
        email, password = data.get('email'), data.get('password')
        if not email or not password:
            return web.json_response({'error': 'Email and password are required'}, status=400)
        if email in self.users:
            return web.json_response({'error': 'User already exists'}, status=400)
        self.users[email] = password
        return self._pair_response(email, status=201)

    async def refresh(self, request: web.Request) -> web.Response:
        data = await request.json()
        if self.refresh_delay:
            await asyncio.sleep(self.refresh_delay)

        refresh_token = data.get('refreshToken')
        if not refresh_token:
            return web.json_response({'error': 'Refresh token required'}, status=400)

        email = self.refresh_tokens.pop(refresh_token, None)
        if email is None:
            return web.json_response({'error': 'Invalid refresh token'}, status=401)
        return self._pair_response(email)

    async def list_tasks(self, request: web.Request) -> web.Response:
        user = self._user_for(request)
        if user is None:
            return self._unauthorized()
        return web.json_response([task for task in self.tasks.values() if task['userId'] == user])

    async def create_task(self, request: web.Request) -> web.Response:
        user = self._user_for(request)
        if user is None:
            return self._unauthorized()
        data = await request.json()
        if not data.get('title'):
            return web.json_response({'error': 'Title is required'}, status=400)
        return web.json_response(self.add_task(user, **data), status=201)

    async def update_task(self, request: web.Request) -> web.Response:
        user = self._user_for(request)
        if user is None:
            return self._unauthorized()
        task = self.tasks.get(request.match_info['task_id'])
        if task is None or task['userId'] != user:
            return web.json_response({'error': 'Task not found'}, status=404)
        task.update(await request.json())
        return web.json_response(task)

    async def delete_task(self, request: web.Request) -> web.Response:
        user = self._user_for(request)
        if user is None:
            return self._unauthorized()
        task = self.tasks.get(request.match_info['task_id'])
        if task is None or task['userId'] != user:
            return web.json_response({'error': 'Task not found'}, status=404)
        del self.tasks[task['id']]
        return web.json_response({'message': 'Task deleted'})

    async def health(self, request: web.Request) -> web.Response:
        return web.json_response({'status': 'UP'})


@pytest_asyncio.fixture
async def stub_service():
    """Running stub task service."""
    service = StubTaskService()
    server = TestServer(service.make_app())
    await server.start_server()
    service.url = str(server.make_url('/'))
    yield service
    await server.close()


@pytest_asyncio.fixture
async def client(stub_service):
    """Client components wired against the stub service with in-memory tokens."""
    store = MemoryTokenStorage()
    transport = HTTPTransport(stub_service.url, timeout=5)
    auth_client = AuthClient(transport, store)
    coordinator = RefreshCoordinator(auth_client, store)
    gateway = RequestGateway(transport, store, coordinator)

    session_ended = []
    coordinator.add_session_ended_callback(session_ended.append)

    yield SimpleNamespace(
        service=stub_service,
        store=store,
        transport=transport,
        auth_client=auth_client,
        coordinator=coordinator,
        gateway=gateway,
        api=TaskBoardAPIClient(gateway, transport),
        session_ended=session_ended,
    )

    await coordinator.shutdown()
    await transport.close()


@pytest.fixture
def logged_in(client):
    """Client holding the A1/R1 pair for user@example.com."""
    client.service.add_user('user@example.com', 'secret')
    access, refresh = client.service.issue_pair('user@example.com')
    client.store.save(TokenPair(access, refresh))
    return client
