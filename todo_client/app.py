"""Controller: turns user intents into store actions and gateway calls.

Mutations are optimistic. The store changes first, then the request goes
out; a server reply replaces the local copy, an offline-queued request
keeps it, and any other failure restores the previous value and records
the error.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Callable, List, Optional

from .api import ApiGateway
from .drag import DragHandler, reorder_items
from .errors import ApiError, NotFound, OfflineQueued, Unauthorized
from .local_store import StorageQuotaExceeded
from .patches import RenameTodo, SetDone, TodoPatch, patches_body
from .render import render
from .store import TodoStore

logger = logging.getLogger(__name__)


class TodoApp:
    def __init__(self, gateway: ApiGateway, store: Optional[TodoStore] = None, clock: Callable[[], float] = time.monotonic):
        self.gateway = gateway
        self.connectivity = gateway.connectivity
        self.store = store or TodoStore(gateway.local_store, gateway, gateway.connectivity)
        self.drag = DragHandler(self.handle_reorder, self.finalize_reorder, clock=clock)

    # session

    def start(self) -> bool:
        """Validate a stored token. Returns True when a session is active.

        While offline the cached session is trusted as-is.
        """
        if not self.gateway.get_token():
            if self.store.state['is_authenticated']:
                self.store.set_unauthenticated()
            return False
        if not self.connectivity.is_online():
            return bool(self.store.state['is_authenticated'])
        try:
            user = self.gateway.auth.me()
        except Unauthorized:
            self.store.set_unauthenticated()
            return False
        except ApiError as e:
            logger.info('could not validate stored token: %s', e)
            self.store.set_error(str(e))
            return bool(self.store.state['is_authenticated'])
        self.store.set_authenticated({'id': user.get('id'), 'email': user.get('email')})
        self.load()
        return True

    def login(self, email: str, password: str, register: bool = False) -> bool:
        try:
            if register:
                self.gateway.auth.register(email, password)
            resp = self.gateway.auth.login(email, password)
        except ApiError as e:
            self.store.set_error(str(e))
            return False
        self.store.set_authenticated(resp.get('user') or {'email': email})
        self.load()
        return True

    def logout(self) -> None:
        self.gateway.auth.logout()
        self.store.set_unauthenticated()

    def load(self) -> bool:
        return self.store.sync_with_server()

    def _session_expired(self) -> None:
        logger.info('server rejected the token; ending session')
        self.store.set_unauthenticated(error='Unauthorized')

    # todos

    def _temp_id(self) -> int:
        # offline-created todos get negative ids until the next sync
        ids = [t['id'] for t in self.store.state['todos'] if isinstance(t.get('id'), int)]
        return min([0, *ids]) - 1

    def add(self, name: str, group: str = 'default', priority: int = 1, category_id: Optional[int] = None,
            notes: str = '', parent_node_id: Optional[int] = None) -> Optional[dict]:
        name = (name or '').strip()
        if not name:
            self.store.set_error('Todo name is required')
            return None
        body = {
            'name': name,
            'group': group,
            'priority': priority,
            'done': False,
            'notes': notes,
            'parent_node_id': parent_node_id,
            'category_id': category_id,
        }
        now = datetime.now(timezone.utc).isoformat()
        temp_id = self._temp_id()
        local = {
            **body,
            'id': temp_id,
            'order': len(self.store.state['todos']),
            'created_at': now,
            'last_changed': now,
            'done_at': None,
        }
        self.store.add_todo(local)
        try:
            created = self.gateway.todos.create(body, temp_id=temp_id)
        except OfflineQueued:
            return local
        except Unauthorized:
            self._session_expired()
            return None
        except ApiError as e:
            self.store.remove_todo(temp_id)
            self.store.set_error(str(e))
            return None
        self.store.replace_todo(temp_id, created)
        return created

    def edit(self, todo_id: int, *patches: TodoPatch) -> Optional[dict]:
        prior = self.store.get_todo_by_id(todo_id)
        if prior is None:
            self.store.set_error('Todo not found')
            return None
        self.store.update_todo(todo_id, list(patches))
        if todo_id < 0:
            # not on the server yet: fold the change into the queued create
            try:
                self.gateway.amend_queued(todo_id, patches_body(patches))
            except StorageQuotaExceeded as e:
                self.store.replace_todo(todo_id, prior)
                self.store.set_error(f'Could not save offline change: {e}')
                return None
            return self.store.get_todo_by_id(todo_id)
        try:
            updated = self.gateway.todos.update(todo_id, patches_body(patches))
        except OfflineQueued:
            return self.store.get_todo_by_id(todo_id)
        except Unauthorized:
            self._session_expired()
            return None
        except ApiError as e:
            self.store.replace_todo(todo_id, prior)
            self.store.set_error(str(e))
            return None
        self.store.replace_todo(todo_id, updated)
        return updated

    def toggle(self, todo_id: int) -> Optional[dict]:
        todo = self.store.get_todo_by_id(todo_id)
        if todo is None:
            self.store.set_error('Todo not found')
            return None
        return self.edit(todo_id, SetDone(not todo.get('done')))

    def rename(self, todo_id: int, name: str) -> Optional[dict]:
        try:
            patch = RenameTodo(name)
        except ValueError as e:
            self.store.set_error(str(e))
            return None
        return self.edit(todo_id, patch)

    def delete(self, todo_id: int) -> bool:
        before = self.store.state['todos']
        if self.store.get_todo_by_id(todo_id) is None:
            self.store.set_error('Todo not found')
            return False
        self.store.remove_todo(todo_id)
        if todo_id < 0:
            # never reached the server; drop its queued create instead
            self.gateway.discard_queued(todo_id)
            return True
        try:
            self.gateway.todos.delete(todo_id)
        except OfflineQueued:
            return True
        except Unauthorized:
            self._session_expired()
            return False
        except NotFound as e:
            # already gone on the server; keep it gone locally
            self.store.set_error(str(e))
            return False
        except ApiError as e:
            self.store.set_todos(before)
            self.store.set_error(str(e))
            return False
        return True

    # reordering

    def handle_reorder(self, from_index: int, to_index: int) -> None:
        """Swap two todos locally. Called for every intermediate drag step."""
        try:
            todos = reorder_items(self.store.state['todos'], from_index, to_index)
        except IndexError as e:
            logger.warning('ignoring reorder: %s', e)
            return
        self.store.reorder_todos(todos)

    def finalize_reorder(self) -> bool:
        """Send the current local order. The local order is kept whatever
        the outcome."""
        order: List[int] = [t['id'] for t in self.store.state['todos'] if isinstance(t.get('id'), int) and t['id'] > 0]
        try:
            saved = self.gateway.todos.reorder(order)
        except OfflineQueued:
            return True
        except Unauthorized:
            self._session_expired()
            return False
        except ApiError as e:
            logger.warning('reorder not saved: %s', e)
            self.store.set_error(str(e))
            return False
        orders = {t['id']: t.get('order') for t in saved or []}
        self.store.set_todos(
            {**t, 'order': orders[t['id']]} if t.get('id') in orders else t
            for t in self.store.state['todos']
        )
        return True

    # connectivity

    def go_online(self) -> None:
        self.connectivity.set_online(True)

    def go_offline(self) -> None:
        self.connectivity.set_online(False)

    # view

    def status_text(self) -> str:
        return self.store.get_status_text()

    def render(self) -> str:
        return render(self.store)
