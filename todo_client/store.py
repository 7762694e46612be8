"""Client state store: the single source of truth for what the UI shows.

The store is an explicit object (one per app instance) rather than a module
global, so tests can build as many as they like. Every mutation goes
through ``set_state``, which swaps in a new state dict, persists it and
then notifies subscribers with a snapshot.
"""

import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from .errors import ApiError, NetworkError, Unauthorized
from .local_store import LocalStore, StorageQuotaExceeded, STATE_KEY
from .patches import TodoPatch, FIELD_PATCHES, apply_patches, patches_from_fields

logger = logging.getLogger(__name__)

OFFLINE_CACHED_MESSAGE = 'Offline - using cached data'
NO_SERVER_MESSAGE = 'No server configured'
DEFAULT_DONE_AGE_DAYS = 7


class TodoFilter(str, Enum):
    ALL = 'all'
    ACTIVE = 'active'
    DONE = 'done'
    SEPARATE = 'separate'


SET_KEYS = ('expanded_todos', 'selected_categories')
# never written to local storage
TRANSIENT_KEYS = ('loading', 'error')
# restored from local storage on start-up
PERSISTED_KEYS = (
    'todos', 'categories', 'filter', 'done_age_filter',
    'expanded_todos', 'selected_categories', 'user', 'is_authenticated',
)


def initial_state() -> Dict[str, Any]:
    return {
        'todos': [],
        'categories': [],
        'filter': TodoFilter.SEPARATE.value,
        'editing_todo': None,
        'done_age_filter': DEFAULT_DONE_AGE_DAYS,
        'expanded_todos': set(),
        'selected_categories': set(),
        'loading': False,
        'error': None,
        'user': None,
        'is_authenticated': False,
    }


def _parse_done_at(value) -> Optional[datetime]:
    if not value:
        return None
    s = str(value).strip()
    if s.endswith('Z'):
        s = s[:-1] + '+00:00'
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


PatchArg = Union[TodoPatch, Sequence[TodoPatch], Mapping[str, Any]]


class TodoStore:
    """Observable state container with local persistence.

    ``gateway`` (an ``ApiGateway``) is only needed for the actions that talk
    to the server: ``sync_with_server``, ``create_category`` and
    ``handle_online``. When ``connectivity`` is given the store follows its
    online/offline changes.
    """

    def __init__(self, local_store: Optional[LocalStore] = None, gateway=None, connectivity=None):
        self.local_store = local_store if local_store is not None else LocalStore()
        self.gateway = gateway
        self._state: Dict[str, Any] = initial_state()
        self._subscribers: Dict[int, Callable[[Dict[str, Any]], None]] = {}
        self._subscriber_id = 0
        self.load_from_storage()
        if connectivity is not None:
            connectivity.subscribe(self._on_connectivity)

    # state plumbing

    @property
    def state(self) -> Dict[str, Any]:
        return self.get_state()

    def get_state(self) -> Dict[str, Any]:
        snapshot = dict(self._state)
        snapshot['todos'] = list(self._state['todos'])
        snapshot['categories'] = list(self._state['categories'])
        for key in SET_KEYS:
            snapshot[key] = set(self._state[key])
        return snapshot

    def subscribe(self, callback: Callable[[Dict[str, Any]], None]) -> Callable[[], None]:
        self._subscriber_id += 1
        subscriber_id = self._subscriber_id
        self._subscribers[subscriber_id] = callback

        def unsubscribe() -> None:
            self._subscribers.pop(subscriber_id, None)

        return unsubscribe

    def _notify(self) -> None:
        for callback in list(self._subscribers.values()):
            try:
                callback(self.get_state())
            except Exception:
                logger.exception('subscriber callback error')

    def set_state(self, updates: Mapping[str, Any]) -> None:
        """Shallow-merge ``updates`` into the state.

        Set-valued keys are replaced wholesale. Unknown keys raise KeyError.
        A failure to persist is logged and otherwise ignored; the in-memory
        update always applies.
        """
        unknown = set(updates) - set(self._state)
        if unknown:
            raise KeyError(f"unknown state key(s): {', '.join(sorted(unknown))}")
        new_state = dict(self._state)
        for key, value in updates.items():
            if key in SET_KEYS:
                value = set(value or ())
            new_state[key] = value
        self._state = new_state
        self.save_to_storage()
        self._notify()

    def save_to_storage(self) -> None:
        to_store = {k: v for k, v in self._state.items() if k not in TRANSIENT_KEYS}
        for key in SET_KEYS:
            to_store[key] = list(self._state[key])
        try:
            self.local_store.set_json(STATE_KEY, to_store)
        except (StorageQuotaExceeded, sqlite3.Error, TypeError, ValueError) as e:
            logger.warning('failed to save state to storage: %s', e)

    def load_from_storage(self) -> None:
        try:
            stored = self.local_store.get_json(STATE_KEY)
        except sqlite3.Error as e:
            logger.warning('failed to load state from storage: %s', e)
            return
        if not isinstance(stored, dict):
            return
        restored = dict(self._state)
        for key in PERSISTED_KEYS:
            if stored.get(key) is None:
                continue
            value = stored[key]
            if key in SET_KEYS:
                value = set(value)
            restored[key] = value
        self._state = restored

    # authentication

    def set_authenticated(self, user: Optional[dict]) -> None:
        self.set_state({'is_authenticated': True, 'user': user, 'error': None})

    def set_unauthenticated(self, error: Optional[str] = None) -> None:
        """Full teardown of the session-bound state; ``error`` (e.g. after a
        401) is set in the same update."""
        updates = {
            'is_authenticated': False,
            'user': None,
            'todos': [],
            'categories': [],
            'editing_todo': None,
            'expanded_todos': set(),
            'selected_categories': set(),
            'loading': False,
        }
        if error is not None:
            updates['error'] = error
        self.set_state(updates)

    # todos

    def set_todos(self, todos: Iterable[dict]) -> None:
        self.set_state({'todos': list(todos)})

    def add_todo(self, todo: dict) -> None:
        """Append ``todo``; a todo with the same id is replaced in place."""
        todos = list(self._state['todos'])
        for i, existing in enumerate(todos):
            if existing.get('id') == todo.get('id'):
                todos[i] = dict(todo)
                break
        else:
            todos.append(dict(todo))
        self.set_state({'todos': todos})

    def replace_todo(self, todo_id, todo: dict) -> None:
        """Swap the todo stored under ``todo_id`` for ``todo`` (which may carry
        a different id, e.g. a server id replacing a temporary one)."""
        todos = [dict(todo) if t.get('id') == todo_id else t for t in self._state['todos']]
        self.set_state({'todos': todos})

    def update_todo(self, todo_id, patch: PatchArg) -> bool:
        """Apply a patch, a sequence of patches, or a ``{field: value}``
        mapping to one todo. Returns False when no todo has ``todo_id``."""
        if isinstance(patch, Mapping):
            patches = patches_from_fields(patch)
        elif isinstance(patch, tuple(FIELD_PATCHES.values())):
            patches = [patch]
        else:
            patches = list(patch)
        if self.get_todo_by_id(todo_id) is None:
            return False
        todos = [apply_patches(t, patches) if t.get('id') == todo_id else t for t in self._state['todos']]
        self.set_state({'todos': todos})
        return True

    def remove_todo(self, todo_id) -> None:
        todos = [t for t in self._state['todos'] if t.get('id') != todo_id]
        self.set_state({'todos': todos})

    def reorder_todos(self, new_order: Iterable[dict]) -> None:
        self.set_state({'todos': list(new_order)})

    # categories

    def set_categories(self, categories: Iterable[dict]) -> None:
        self.set_state({'categories': list(categories)})

    def add_category(self, category: dict) -> None:
        self.set_state({'categories': [*self._state['categories'], dict(category)]})

    def update_category(self, category_id, updates: Mapping[str, Any]) -> None:
        categories = [
            {**c, **updates} if c.get('id') == category_id else c
            for c in self._state['categories']
        ]
        self.set_state({'categories': categories})

    def remove_category(self, category_id) -> None:
        categories = [c for c in self._state['categories'] if c.get('id') != category_id]
        selected = set(self._state['selected_categories'])
        selected.discard(category_id)
        self.set_state({'categories': categories, 'selected_categories': selected})

    def create_category(self, name: str) -> Optional[dict]:
        """Create a category on the server and add it locally.

        Failures are recorded in ``error`` and None is returned.
        """
        if self.gateway is None:
            self.set_state({'error': NO_SERVER_MESSAGE})
            return None
        try:
            category = self.gateway.categories.create(name)
        except Unauthorized:
            self.set_unauthenticated(error='Unauthorized')
            return None
        except ApiError as e:
            logger.info('failed to create category %r: %s', name, e)
            self.set_state({'error': str(e)})
            return None
        self.add_category(category)
        return category

    # ui state

    def set_filter(self, value: Union[TodoFilter, str]) -> None:
        self.set_state({'filter': TodoFilter(value).value})

    def set_done_age_filter(self, days: int) -> None:
        days = int(days)
        if days < 0:
            raise ValueError('done age filter must be zero or more days')
        self.set_state({'done_age_filter': days})

    def set_editing_todo(self, todo: Optional[dict]) -> None:
        self.set_state({'editing_todo': todo})

    def clear_editing_todo(self) -> None:
        self.set_state({'editing_todo': None})

    def toggle_expanded_todo(self, todo_id) -> None:
        expanded = set(self._state['expanded_todos'])
        expanded.symmetric_difference_update({todo_id})
        self.set_state({'expanded_todos': expanded})

    def clear_expanded_todos(self) -> None:
        self.set_state({'expanded_todos': set()})

    def toggle_category_filter(self, category_id) -> None:
        selected = set(self._state['selected_categories'])
        selected.symmetric_difference_update({category_id})
        self.set_state({'selected_categories': selected})

    def select_only_category(self, category_id) -> None:
        self.set_state({'selected_categories': {category_id}})

    def select_all_categories(self) -> None:
        # an empty selection means "show every category"
        self.set_state({'selected_categories': set()})

    def clear_category_filters(self) -> None:
        self.set_state({'selected_categories': set()})

    def set_error(self, error: Optional[str]) -> None:
        self.set_state({'error': error})

    def clear_error(self) -> None:
        self.set_state({'error': None})

    def set_loading(self, loading: bool) -> None:
        self.set_state({'loading': bool(loading)})

    # server reconciliation

    def sync_with_server(self) -> bool:
        """Replace todos and categories with the server's copy.

        On failure the cached lists stay as they are and ``error`` explains
        why. A 401 tears the session down. Returns True on success.
        """
        if not self._state['is_authenticated'] or self.gateway is None:
            return False
        self.set_state({'loading': True})
        try:
            todos = self.gateway.todos.get_all()
            categories = self.gateway.categories.get_all()
        except Unauthorized:
            logger.info('sync rejected with 401; ending session')
            self.set_unauthenticated(error='Unauthorized')
            return False
        except NetworkError as e:
            logger.info('sync failed, keeping cached data: %s', e)
            self.set_state({'loading': False, 'error': OFFLINE_CACHED_MESSAGE})
            return False
        except ApiError as e:
            logger.warning('sync error: %s', e)
            self.set_state({'loading': False, 'error': f'Sync error: {e}'})
            return False
        if isinstance(todos, dict):
            todos = todos.get('todos', [])
        if isinstance(categories, dict):
            categories = categories.get('categories', [])
        self.set_state({
            'todos': list(todos or []),
            'categories': list(categories or []),
            'loading': False,
            'error': None,
        })
        return True

    def handle_online(self) -> List[Dict[str, Any]]:
        """Back online: replay the offline queue, then re-sync."""
        self.set_state({'error': None})
        outcomes: List[Dict[str, Any]] = []
        if self.gateway is not None:
            outcomes = self.gateway.flush_queue()
            self.sync_with_server()
        return outcomes

    def handle_offline(self) -> None:
        self.set_state({'error': OFFLINE_CACHED_MESSAGE})

    def _on_connectivity(self, online: bool) -> None:
        if online:
            self.handle_online()
        else:
            self.handle_offline()

    # getters

    def is_done_recently(self, todo: Mapping[str, Any], now: Optional[datetime] = None) -> bool:
        if not todo.get('done'):
            return False
        done_at = _parse_done_at(todo.get('done_at'))
        if done_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        try:
            cutoff = now - timedelta(days=self._state['done_age_filter'])
        except OverflowError:
            return True
        return done_at >= cutoff

    def _matches_category_filter(self, todo: Mapping[str, Any]) -> bool:
        selected = self._state['selected_categories']
        if not selected:
            return True
        category_id = todo.get('category_id')
        if category_id is None:
            return False
        return category_id in selected

    def get_filtered_todos(self, now: Optional[datetime] = None) -> List[dict]:
        """Completion filter first, then category filter."""
        todos = self._state['todos']
        mode = self._state['filter']
        if mode == TodoFilter.ACTIVE.value:
            filtered = [t for t in todos if not t.get('done')]
        elif mode == TodoFilter.DONE.value:
            filtered = [t for t in todos if self.is_done_recently(t, now)]
        elif mode == TodoFilter.SEPARATE.value:
            active = [t for t in todos if not t.get('done')]
            done = [t for t in todos if self.is_done_recently(t, now)]
            filtered = active + done
        else:
            filtered = list(todos)
        return [t for t in filtered if self._matches_category_filter(t)]

    def get_todo_by_id(self, todo_id) -> Optional[dict]:
        return next((t for t in self._state['todos'] if t.get('id') == todo_id), None)

    def get_category_by_id(self, category_id) -> Optional[dict]:
        return next((c for c in self._state['categories'] if c.get('id') == category_id), None)

    def get_active_todos_count(self) -> int:
        return sum(1 for t in self._state['todos'] if not t.get('done'))

    def get_done_todos_count(self) -> int:
        return sum(1 for t in self._state['todos'] if t.get('done'))

    def get_total_todos_count(self) -> int:
        return len(self._state['todos'])

    def get_status_text(self) -> str:
        return f'{self.get_done_todos_count()}/{self.get_total_todos_count()} completed'
