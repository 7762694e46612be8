import pytest
from httpx import AsyncClient, ASGITransport

from todo_app.main import app
from todo_app.utils import parse_iso
from conftest import register

pytestmark = pytest.mark.asyncio


async def _create(ac, **fields):
    resp = await ac.post('/api/todos', json=fields)
    assert resp.status_code == 201, resp.text
    return resp.json()


async def test_create_applies_defaults(auth_client):
    todo = await _create(auth_client, name='Buy milk')
    assert todo['name'] == 'Buy milk'
    assert todo['group'] == 'default'
    assert todo['priority'] == 1
    assert todo['done'] is False
    assert todo['notes'] == ''
    assert todo['parent_node_id'] is None
    assert todo['category_id'] is None
    assert todo['done_at'] is None
    assert parse_iso(todo['created_at']) is not None
    assert todo['order'] == 0


async def test_create_appends_at_end(auth_client):
    a = await _create(auth_client, name='A')
    b = await _create(auth_client, name='B')
    c = await _create(auth_client, name='C')
    assert (a['order'], b['order'], c['order']) == (0, 1, 2)
    listed = (await auth_client.get('/api/todos')).json()
    assert [t['name'] for t in listed] == ['A', 'B', 'C']


async def test_create_requires_name(auth_client):
    r1 = await auth_client.post('/api/todos', json={})
    r2 = await auth_client.post('/api/todos', json={'name': '   '})
    assert r1.status_code == 400
    assert r2.status_code == 400


async def test_create_rejects_bad_priority(auth_client):
    for priority in (0, 6, 'high'):
        resp = await auth_client.post('/api/todos', json={'name': 'x', 'priority': priority})
        assert resp.status_code == 400


async def test_create_done_stamps_done_at(auth_client):
    todo = await _create(auth_client, name='already done', done=True)
    assert todo['done'] is True
    assert parse_iso(todo['done_at']) is not None


async def test_done_transition_sets_and_clears_done_at(auth_client):
    todo = await _create(auth_client, name='toggle me')
    r1 = await auth_client.put(f"/api/todos/{todo['id']}", json={'done': True})
    assert r1.status_code == 200
    first_done_at = r1.json()['done_at']
    assert parse_iso(first_done_at) is not None

    # no transition: done_at is kept
    r2 = await auth_client.put(f"/api/todos/{todo['id']}", json={'done': True})
    assert r2.json()['done_at'] == first_done_at

    r3 = await auth_client.put(f"/api/todos/{todo['id']}", json={'done': False})
    assert r3.json()['done'] is False
    assert r3.json()['done_at'] is None


async def test_put_is_partial(auth_client):
    todo = await _create(auth_client, name='orig', priority=3, notes='keep me', group='work')
    resp = await auth_client.put(f"/api/todos/{todo['id']}", json={'name': 'renamed'})
    assert resp.status_code == 200
    updated = resp.json()
    assert updated['name'] == 'renamed'
    assert updated['priority'] == 3
    assert updated['notes'] == 'keep me'
    assert updated['group'] == 'work'
    assert parse_iso(updated['last_changed']) >= parse_iso(todo['last_changed'])


async def test_put_null_keeps_required_fields(auth_client):
    todo = await _create(auth_client, name='stable', priority=4)
    resp = await auth_client.put(f"/api/todos/{todo['id']}", json={'name': None, 'priority': None})
    assert resp.status_code == 200
    assert resp.json()['name'] == 'stable'
    assert resp.json()['priority'] == 4


async def test_parent_reference_set_and_cleared(auth_client):
    parent = await _create(auth_client, name='parent')
    child = await _create(auth_client, name='child', parent_node_id=parent['id'])
    assert child['parent_node_id'] == parent['id']

    resp = await auth_client.put(f"/api/todos/{child['id']}", json={'parent_node_id': None})
    assert resp.json()['parent_node_id'] is None


async def test_parent_cannot_be_self(auth_client):
    todo = await _create(auth_client, name='loop')
    resp = await auth_client.put(f"/api/todos/{todo['id']}", json={'parent_node_id': todo['id']})
    assert resp.status_code == 400


async def test_missing_or_foreign_todo_is_404(auth_client):
    todo = await _create(auth_client, name='mine')

    async with AsyncClient(transport=ASGITransport(app=app), base_url='http://test') as other:
        token, _ = await register(other)
        other.headers.update({'Authorization': f'Bearer {token}'})
        assert (await other.put(f"/api/todos/{todo['id']}", json={'name': 'stolen'})).status_code == 404
        assert (await other.delete(f"/api/todos/{todo['id']}")).status_code == 404
        # foreign parent reference is a bad request, not a lookup failure
        r = await other.post('/api/todos', json={'name': 'x', 'parent_node_id': todo['id']})
        assert r.status_code == 400
        assert (await other.get('/api/todos')).json() == []

    assert (await auth_client.put('/api/todos/987654321', json={'name': 'x'})).status_code == 404


async def test_delete_returns_204_and_detaches_children(auth_client):
    parent = await _create(auth_client, name='parent')
    child = await _create(auth_client, name='child', parent_node_id=parent['id'])

    resp = await auth_client.delete(f"/api/todos/{parent['id']}")
    assert resp.status_code == 204
    assert resp.content == b''

    listed = (await auth_client.get('/api/todos')).json()
    assert [t['id'] for t in listed] == [child['id']]
    assert listed[0]['parent_node_id'] is None


async def test_todos_require_token(client):
    assert (await client.get('/api/todos')).status_code == 401
    assert (await client.post('/api/todos', json={'name': 'x'})).status_code == 401
