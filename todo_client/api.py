"""HTTP gateway between the client store and the todo REST API.

Every call carries the bearer token kept in the local store. Mutating calls
made while offline are appended to a durable queue and replayed by
``flush_queue`` once connectivity returns.
"""

import time
import logging
from typing import Any, Dict, List, Optional

import requests
import urllib3

from .connectivity import Connectivity
from .errors import NetworkError, OfflineQueued, Unauthorized, error_for_status
from .local_store import LocalStore, StorageQuotaExceeded, QUEUE_KEY, TOKEN_KEY

logger = logging.getLogger(__name__)

API_PREFIX = '/api'
OFFLINE_QUEUED_MESSAGE = 'Offline - queued for later'
MUTATING_METHODS = ('POST', 'PUT', 'PATCH', 'DELETE')


class ApiGateway:
    """Authenticated JSON requests with an offline replay queue.

    ``session`` is anything with a requests-style ``request`` method; tests
    pass a ``fastapi.testclient.TestClient`` so calls go straight to the app.
    """

    def __init__(
        self,
        base_url: str = '',
        local_store: Optional[LocalStore] = None,
        connectivity: Optional[Connectivity] = None,
        session=None,
        verify_ssl: bool = True,
        timeout: float = 10.0,
    ):
        self.base_url = (base_url or '').rstrip('/')
        self.local_store = local_store or LocalStore()
        self.connectivity = connectivity or Connectivity()
        if session is None:
            session = requests.Session()
            if not verify_ssl:
                # Disable SSL verification for self-signed certs
                session.verify = False
                urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
        self.session = session
        self.timeout = timeout
        self._last_cache_buster = 0

        self.auth = AuthApi(self)
        self.todos = TodosApi(self)
        self.categories = CategoriesApi(self)

    # token

    def get_token(self) -> str:
        return self.local_store.get_item(TOKEN_KEY) or ''

    def set_token(self, token: Optional[str]) -> None:
        if token:
            self.local_store.set_item(TOKEN_KEY, token)
        else:
            self.local_store.remove_item(TOKEN_KEY)

    # offline queue

    def read_queue(self) -> List[Dict[str, Any]]:
        queue = self.local_store.get_json(QUEUE_KEY, [])
        return queue if isinstance(queue, list) else []

    def enqueue(self, action: Dict[str, Any]) -> None:
        queue = self.read_queue()
        queue.append(action)
        self.local_store.set_json(QUEUE_KEY, queue)

    def discard_queued(self, temp_id: int) -> bool:
        """Drop queued requests tagged with ``temp_id`` (a create that never
        reached the server). Returns True when something was removed."""
        queue = self.read_queue()
        kept = [action for action in queue if action.get('temp_id') != temp_id]
        if len(kept) == len(queue):
            return False
        self.local_store.set_json(QUEUE_KEY, kept)
        logger.info('discarded %d queued requests for temp id %s', len(queue) - len(kept), temp_id)
        return True

    def amend_queued(self, temp_id: int, fields: Dict[str, Any]) -> bool:
        """Merge ``fields`` into the body of the queued create for ``temp_id``."""
        queue = self.read_queue()
        found = False
        for action in queue:
            if action.get('temp_id') == temp_id:
                action['body'] = {**(action.get('body') or {}), **fields}
                found = True
        if found:
            self.local_store.set_json(QUEUE_KEY, queue)
        return found

    def flush_queue(self) -> List[Dict[str, Any]]:
        """Replay every queued request once, then drop the queue.

        Returns one outcome per action in the ``Promise.allSettled`` shape:
        ``{"status": "fulfilled", "value": <http status>}`` or
        ``{"status": "rejected", "reason": <message>}``. Any HTTP response,
        error statuses included, counts as fulfilled. Nothing is re-queued.
        """
        queue = self.read_queue()
        if not queue:
            return []
        if not self.connectivity.is_online():
            logger.info('flush_queue: still offline; keeping %d queued requests', len(queue))
            return []
        outcomes: List[Dict[str, Any]] = []
        headers = self._headers()
        for action in queue:
            method = str(action.get('method') or 'GET').upper()
            url = self._url(action.get('endpoint') or '')
            try:
                resp = self.session.request(
                    method, url, json=action.get('body'), headers=headers, timeout=self.timeout
                )
                outcomes.append({'status': 'fulfilled', 'value': resp.status_code})
            except Exception as e:
                logger.warning('replay of %s %s failed: %s', method, action.get('endpoint'), e)
                outcomes.append({'status': 'rejected', 'reason': str(e)})
        self.local_store.remove_item(QUEUE_KEY)
        logger.info('flushed %d queued requests', len(queue))
        return outcomes

    # requests

    def _url(self, endpoint: str) -> str:
        return f"{self.base_url}{API_PREFIX}{endpoint}"

    def _headers(self) -> Dict[str, str]:
        headers = {'Content-Type': 'application/json'}
        token = self.get_token()
        if token:
            headers['Authorization'] = f'Bearer {token}'
        return headers

    def _next_cache_buster(self) -> int:
        # strictly increasing even when two GETs land in the same millisecond
        now_ms = time.time_ns() // 1_000_000
        self._last_cache_buster = max(now_ms, self._last_cache_buster + 1)
        return self._last_cache_buster

    def _queue_offline(self, endpoint: str, method: str, body: Any, temp_id: Optional[int] = None):
        if method not in MUTATING_METHODS:
            raise NetworkError('Offline')
        action = {'endpoint': endpoint, 'method': method, 'body': body}
        if temp_id is not None:
            # lets a later local edit or delete find this create
            action['temp_id'] = temp_id
        try:
            self.enqueue(action)
        except StorageQuotaExceeded as e:
            logger.warning('could not queue %s %s: %s', method, endpoint, e)
            raise NetworkError('Offline - request could not be queued') from e
        logger.info('queued %s %s for replay', method, endpoint)
        raise OfflineQueued(OFFLINE_QUEUED_MESSAGE)

    def request(self, endpoint: str, method: str = 'GET', body: Any = None, temp_id: Optional[int] = None) -> Any:
        """Send one request and return the decoded JSON body (None for 204).

        Raises a subclass of ``ApiError`` classified from the outcome.
        """
        method = method.upper()
        if not self.connectivity.is_online():
            self._queue_offline(endpoint, method, body, temp_id)

        headers = self._headers()
        params = None
        if method == 'GET':
            params = {'_t': self._next_cache_buster()}
            headers['Cache-Control'] = 'no-cache'
            headers['Pragma'] = 'no-cache'

        try:
            resp = self.session.request(
                method, self._url(endpoint), params=params, json=body, headers=headers, timeout=self.timeout
            )
        except requests.RequestException as e:
            if not self.connectivity.is_online():
                self._queue_offline(endpoint, method, body, temp_id)
            raise NetworkError(f'Network error: {e}') from e

        return self._handle_response(resp)

    def _handle_response(self, resp) -> Any:
        status = resp.status_code
        if status == 401:
            self.set_token(None)
            raise Unauthorized('Unauthorized', 401)
        if status >= 400:
            message = self._error_message(resp)
            logger.info('request failed: HTTP %s %s', status, message)
            raise error_for_status(status, message)
        if status == 204:
            return None
        try:
            return resp.json()
        except ValueError:
            return None

    @staticmethod
    def _error_message(resp) -> str:
        try:
            data = resp.json()
        except ValueError:
            data = None
        if isinstance(data, dict):
            detail = data.get('detail') or data.get('error')
            if detail:
                return str(detail)
        return f'HTTP {resp.status_code}'


class AuthApi:
    def __init__(self, gateway: ApiGateway):
        self.gateway = gateway

    def register(self, email: str, password: str) -> dict:
        resp = self.gateway.request('/register', 'POST', {'email': email, 'password': password})
        self.gateway.set_token(resp.get('token'))
        return resp

    def login(self, email: str, password: str) -> dict:
        resp = self.gateway.request('/login', 'POST', {'email': email, 'password': password})
        self.gateway.set_token(resp.get('token'))
        return resp

    def logout(self) -> None:
        """Best effort: the token is cleared whatever the server says."""
        try:
            if self.gateway.connectivity.is_online():
                self.gateway.request('/logout', 'POST')
        except NetworkError as e:
            logger.warning('logout request failed: %s', e)
        except Unauthorized:
            pass
        finally:
            self.gateway.set_token(None)

    def me(self) -> dict:
        return self.gateway.request('/me')


class TodosApi:
    def __init__(self, gateway: ApiGateway):
        self.gateway = gateway

    def get_all(self) -> list:
        return self.gateway.request('/todos')

    def create(self, todo: dict, temp_id: Optional[int] = None) -> dict:
        return self.gateway.request('/todos', 'POST', todo, temp_id=temp_id)

    def update(self, todo_id: int, updates: dict) -> dict:
        return self.gateway.request(f'/todos/{todo_id}', 'PUT', updates)

    def delete(self, todo_id: int) -> None:
        return self.gateway.request(f'/todos/{todo_id}', 'DELETE')

    def reorder(self, order: List[int]) -> list:
        return self.gateway.request('/todos/reorder', 'POST', {'order': list(order)})


class CategoriesApi:
    def __init__(self, gateway: ApiGateway):
        self.gateway = gateway

    def get_all(self) -> list:
        return self.gateway.request('/categories')

    def create(self, name: str) -> dict:
        return self.gateway.request('/categories', 'POST', {'name': name})

    def rename(self, category_id: int, name: str) -> dict:
        return self.gateway.request(f'/categories/{category_id}', 'PUT', {'name': name})

    def delete(self, category_id: int) -> dict:
        return self.gateway.request(f'/categories/{category_id}', 'DELETE')
