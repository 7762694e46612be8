import pytest
from httpx import AsyncClient, ASGITransport

from todo_app.main import app
from conftest import register

pytestmark = pytest.mark.asyncio


async def test_create_and_list_sorted_by_name(auth_client):
    for name in ('Work', 'Home', '  Errands  '):
        r = await auth_client.post('/api/categories', json={'name': name})
        assert r.status_code == 201
    listed = (await auth_client.get('/api/categories')).json()
    assert [c['name'] for c in listed] == ['Errands', 'Home', 'Work']
    assert set(listed[0]) == {'id', 'name'}


async def test_duplicate_and_blank_names(auth_client):
    assert (await auth_client.post('/api/categories', json={'name': 'Work'})).status_code == 201
    assert (await auth_client.post('/api/categories', json={'name': 'Work'})).status_code == 409
    assert (await auth_client.post('/api/categories', json={'name': ' '})).status_code == 400
    assert (await auth_client.post('/api/categories', json={})).status_code == 400


async def test_same_name_allowed_for_different_accounts(auth_client):
    assert (await auth_client.post('/api/categories', json={'name': 'Shared'})).status_code == 201
    async with AsyncClient(transport=ASGITransport(app=app), base_url='http://test') as other:
        token, _ = await register(other)
        other.headers.update({'Authorization': f'Bearer {token}'})
        assert (await other.post('/api/categories', json={'name': 'Shared'})).status_code == 201


async def test_rename(auth_client):
    work = (await auth_client.post('/api/categories', json={'name': 'Work'})).json()
    await auth_client.post('/api/categories', json={'name': 'Home'})

    r = await auth_client.put(f"/api/categories/{work['id']}", json={'name': 'Office'})
    assert r.status_code == 200
    assert r.json() == {'id': work['id'], 'name': 'Office'}

    clash = await auth_client.put(f"/api/categories/{work['id']}", json={'name': 'Home'})
    assert clash.status_code == 409
    missing = await auth_client.put('/api/categories/987654', json={'name': 'x'})
    assert missing.status_code == 404


async def test_todo_category_must_be_owned(auth_client):
    async with AsyncClient(transport=ASGITransport(app=app), base_url='http://test') as other:
        token, _ = await register(other)
        other.headers.update({'Authorization': f'Bearer {token}'})
        foreign = (await other.post('/api/categories', json={'name': 'Theirs'})).json()

    r = await auth_client.post('/api/todos', json={'name': 'x', 'category_id': foreign['id']})
    assert r.status_code == 400


async def test_delete_uncategorizes_todos(auth_client):
    work = (await auth_client.post('/api/categories', json={'name': 'Work'})).json()
    t1 = (await auth_client.post('/api/todos', json={'name': 'report', 'category_id': work['id']})).json()
    t2 = (await auth_client.post('/api/todos', json={'name': 'slides', 'category_id': work['id']})).json()
    t3 = (await auth_client.post('/api/todos', json={'name': 'walk dog'})).json()
    assert t1['category_id'] == work['id']

    r = await auth_client.delete(f"/api/categories/{work['id']}")
    assert r.status_code == 200
    assert r.json() == {'id': work['id'], 'name': 'Work', 'removed_count': 2}

    todos = {t['id']: t for t in (await auth_client.get('/api/todos')).json()}
    assert todos[t1['id']]['category_id'] is None
    assert todos[t2['id']]['category_id'] is None
    assert todos[t3['id']]['category_id'] is None
    assert (await auth_client.get('/api/categories')).json() == []
    assert (await auth_client.delete(f"/api/categories/{work['id']}")).status_code == 404
