import pytest
import requests

from conftest import unique_email
from todo_client.api import ApiGateway
from todo_client.errors import (
    Conflict, NetworkError, NotFound, OfflineQueued, Unauthorized, ValidationFailed,
)
from todo_client.local_store import LocalStore, QUEUE_KEY


class RecordingSession:
    """Passes requests through to the app and remembers what was sent."""

    def __init__(self, inner):
        self.inner = inner
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        return self.inner.request(method, url, **kwargs)


class FailingSession:
    def __init__(self, on_call=None):
        self.on_call = on_call
        self.calls = 0

    def request(self, method, url, **kwargs):
        self.calls += 1
        if self.on_call:
            self.on_call()
        raise requests.ConnectionError('connection refused')


@pytest.fixture
def authed(gateway):
    gateway.auth.register(unique_email('gw'), 'pw12345')
    return gateway


def test_register_stores_token_and_me(gateway):
    email = unique_email('tok')
    resp = gateway.auth.register(email, 'pw12345')
    assert gateway.get_token() == resp['token']
    assert gateway.auth.me()['email'] == email


def test_logout_clears_token(authed):
    authed.auth.logout()
    assert authed.get_token() == ''


def test_get_sends_cache_buster_and_no_cache_headers(api_client, local_store, connectivity):
    session = RecordingSession(api_client)
    gw = ApiGateway('http://testserver', local_store, connectivity, session=session)
    gw.auth.register(unique_email('cb'), 'pw12345')
    gw.todos.get_all()
    gw.todos.get_all()

    gets = [kwargs for method, url, kwargs in session.calls if method == 'GET']
    assert len(gets) == 2
    first, second = (kw['params']['_t'] for kw in gets)
    assert second > first
    for kw in gets:
        assert kw['headers']['Cache-Control'] == 'no-cache'
        assert kw['headers']['Pragma'] == 'no-cache'
        assert kw['headers']['Authorization'].startswith('Bearer ')
    posts = [kwargs for method, url, kwargs in session.calls if method == 'POST']
    assert posts[0]['params'] is None


def test_cache_buster_strictly_increases(gateway):
    values = [gateway._next_cache_buster() for _ in range(50)]
    assert values == sorted(set(values))


def test_error_classification(authed):
    with pytest.raises(ValidationFailed):
        authed.todos.create({'name': 'x', 'priority': 9})
    with pytest.raises(NotFound):
        authed.todos.update(999999, {'name': 'y'})
    authed.categories.create('Home')
    with pytest.raises(Conflict) as exc:
        authed.categories.create('Home')
    assert exc.value.status == 409


def test_401_clears_token(authed):
    authed.set_token('not-a-token')
    with pytest.raises(Unauthorized):
        authed.todos.get_all()
    assert authed.get_token() == ''


def test_offline_mutation_is_queued(authed, connectivity):
    connectivity.set_online(False)
    with pytest.raises(OfflineQueued, match='queued for later'):
        authed.todos.create({'name': 'later'})
    assert authed.read_queue() == [{'endpoint': '/todos', 'method': 'POST', 'body': {'name': 'later'}}]


def test_offline_get_is_not_queued(authed, connectivity):
    connectivity.set_online(False)
    with pytest.raises(NetworkError) as exc:
        authed.todos.get_all()
    assert not isinstance(exc.value, OfflineQueued)
    assert authed.read_queue() == []


def test_queued_create_can_be_amended_or_discarded(authed, connectivity):
    connectivity.set_online(False)
    for temp_id, name in ((-1, 'first'), (-2, 'second')):
        with pytest.raises(OfflineQueued):
            authed.todos.create({'name': name, 'done': False}, temp_id=temp_id)
    assert [a['temp_id'] for a in authed.read_queue()] == [-1, -2]

    assert authed.amend_queued(-2, {'done': True})
    assert authed.read_queue()[1]['body'] == {'name': 'second', 'done': True}
    assert not authed.amend_queued(-9, {'done': True})

    assert authed.discard_queued(-1)
    assert not authed.discard_queued(-1)
    assert [a['body']['name'] for a in authed.read_queue()] == ['second']

    connectivity.set_online(True)
    assert authed.flush_queue() == [{'status': 'fulfilled', 'value': 201}]
    [remote] = authed.todos.get_all()
    assert remote['name'] == 'second' and remote['done'] is True


def test_flush_replays_each_request_once(authed, connectivity):
    connectivity.set_online(False)
    for name in ('one', 'two'):
        with pytest.raises(OfflineQueued):
            authed.todos.create({'name': name})

    # still offline: nothing is sent and the queue survives
    assert authed.flush_queue() == []
    assert len(authed.read_queue()) == 2

    connectivity.set_online(True)
    outcomes = authed.flush_queue()
    assert outcomes == [{'status': 'fulfilled', 'value': 201}] * 2
    assert authed.local_store.get_item(QUEUE_KEY) is None
    assert authed.flush_queue() == []
    assert sorted(t['name'] for t in authed.todos.get_all()) == ['one', 'two']


def test_flush_counts_http_errors_as_fulfilled(authed, connectivity):
    connectivity.set_online(False)
    with pytest.raises(OfflineQueued):
        authed.todos.delete(987654)
    connectivity.set_online(True)
    assert authed.flush_queue() == [{'status': 'fulfilled', 'value': 404}]
    assert authed.read_queue() == []


def test_flush_reports_transport_failures(local_store, connectivity):
    gw = ApiGateway('http://nowhere', local_store, connectivity, session=FailingSession())
    gw.enqueue({'endpoint': '/todos', 'method': 'POST', 'body': {'name': 'x'}})
    outcomes = gw.flush_queue()
    assert outcomes[0]['status'] == 'rejected'
    assert 'connection refused' in outcomes[0]['reason']
    # never re-queued
    assert gw.read_queue() == []


def test_transport_failure_while_online(local_store, connectivity):
    gw = ApiGateway('http://nowhere', local_store, connectivity, session=FailingSession())
    with pytest.raises(NetworkError) as exc:
        gw.todos.create({'name': 'x'})
    assert not isinstance(exc.value, OfflineQueued)
    assert gw.read_queue() == []


def test_transport_failure_after_going_offline_queues(local_store, connectivity):
    session = FailingSession(on_call=lambda: connectivity.set_online(False))
    gw = ApiGateway('http://nowhere', local_store, connectivity, session=session)
    with pytest.raises(OfflineQueued):
        gw.todos.update(3, {'done': True})
    assert gw.read_queue() == [{'endpoint': '/todos/3', 'method': 'PUT', 'body': {'done': True}}]


def test_queue_write_over_quota(tmp_path, connectivity):
    store = LocalStore(str(tmp_path / 'small.db'), quota_bytes=30)
    gw = ApiGateway('http://nowhere', store, connectivity, session=FailingSession())
    connectivity.set_online(False)
    with pytest.raises(NetworkError) as exc:
        gw.todos.create({'name': 'a todo whose body will not fit'})
    assert not isinstance(exc.value, OfflineQueued)
    assert gw.read_queue() == []
