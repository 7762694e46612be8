from typing import Optional, List, Dict, Any
import logging

from fastapi import APIRouter, Depends, HTTPException, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlmodel import select
from sqlalchemy import func
from sqlalchemy import update as sqlalchemy_update
from sqlalchemy.exc import IntegrityError

from .auth import require_login
from .db import async_session
from .models import Account, Category, TodoItem
from .utils import now_utc, iso_utc
from . import config

# All routes here live under /api and require a bearer token.
router = APIRouter(prefix='/api')
logger = logging.getLogger(__name__)


class TodoFields(BaseModel):
    """Mutable todo fields. Every field is optional so the same model serves
    as the partial patch for PUT (see ``exclude_unset``)."""
    name: Optional[str] = None
    group: Optional[str] = None
    priority: Optional[int] = Field(default=None, ge=config.MIN_PRIORITY, le=config.MAX_PRIORITY)
    done: Optional[bool] = None
    notes: Optional[str] = None
    parent_node_id: Optional[int] = None
    category_id: Optional[int] = None


class ReorderRequest(BaseModel):
    # {order: [id, ...]} is canonical; {todos: [{id, ...}, ...]} is what older
    # clients post (the whole reordered list).
    order: Optional[List[Any]] = None
    todos: Optional[List[Dict[str, Any]]] = None


class CategoryIn(BaseModel):
    name: Optional[str] = None


def serialize_todo(t: TodoItem) -> dict:
    return {
        "id": t.id,
        "name": t.name,
        "group": t.group_name,
        "order": t.sort_order,
        "priority": t.priority,
        "done": bool(t.done),
        "notes": t.notes or "",
        "parent_node_id": t.parent_node_id,
        "category_id": t.category_id,
        "created_at": iso_utc(t.created_at),
        "last_changed": iso_utc(t.last_changed),
        "done_at": iso_utc(t.done_at),
    }


def serialize_category(c: Category) -> dict:
    return {"id": c.id, "name": c.name}


async def _get_owned_todo(sess, account_id: int, todo_id: int) -> TodoItem:
    todo = await sess.get(TodoItem, todo_id)
    if not todo or todo.account_id != account_id:
        raise HTTPException(status_code=404, detail="Todo not found")
    return todo


async def _get_owned_category(sess, account_id: int, category_id: int) -> Category:
    cat = await sess.get(Category, category_id)
    if not cat or cat.account_id != account_id:
        raise HTTPException(status_code=404, detail="Category not found")
    return cat


async def _check_references(sess, account_id: int, parent_node_id: Optional[int], category_id: Optional[int], todo_id: Optional[int] = None):
    """Validate nullable foreign keys supplied by the client. Both must point
    at rows owned by the same account; a todo cannot be its own parent."""
    if parent_node_id is not None:
        if todo_id is not None and parent_node_id == todo_id:
            raise HTTPException(status_code=400, detail="A todo cannot be its own parent")
        parent = await sess.get(TodoItem, parent_node_id)
        if not parent or parent.account_id != account_id:
            raise HTTPException(status_code=400, detail="parent_node_id does not reference one of your todos")
    if category_id is not None:
        cat = await sess.get(Category, category_id)
        if not cat or cat.account_id != account_id:
            raise HTTPException(status_code=400, detail="category_id does not reference one of your categories")


async def _ordered_todos(sess, account_id: int) -> List[TodoItem]:
    q = await sess.exec(
        select(TodoItem)
        .where(TodoItem.account_id == account_id)
        .order_by(TodoItem.sort_order.asc(), TodoItem.id.asc())
    )
    return list(q.all())


@router.get('/todos')
async def list_todos(current_account: Account = Depends(require_login)):
    async with async_session() as sess:
        todos = await _ordered_todos(sess, current_account.id)
        return [serialize_todo(t) for t in todos]


@router.post('/todos', status_code=201)
async def create_todo(payload: TodoFields, current_account: Account = Depends(require_login)):
    name = (payload.name or '').strip()
    if not name:
        raise HTTPException(status_code=400, detail="Todo name is required")
    async with async_session() as sess:
        await _check_references(sess, current_account.id, payload.parent_node_id, payload.category_id)
        q = await sess.exec(select(func.max(TodoItem.sort_order)).where(TodoItem.account_id == current_account.id))
        max_order = q.first()
        now = now_utc()
        done = bool(payload.done)
        todo = TodoItem(
            account_id=current_account.id,
            name=name,
            group_name=payload.group if payload.group is not None else config.DEFAULT_GROUP,
            sort_order=0 if max_order is None else int(max_order) + 1,
            priority=payload.priority if payload.priority is not None else config.DEFAULT_PRIORITY,
            done=done,
            notes=payload.notes or "",
            parent_node_id=payload.parent_node_id,
            category_id=payload.category_id,
            created_at=now,
            last_changed=now,
            done_at=now if done else None,
        )
        sess.add(todo)
        await sess.commit()
        await sess.refresh(todo)
        logger.info('account=%s created todo id=%s order=%s', current_account.id, todo.id, todo.sort_order)
        return serialize_todo(todo)


@router.put('/todos/{todo_id}')
async def update_todo(todo_id: int, payload: TodoFields, current_account: Account = Depends(require_login)):
    """Partial update. Omitted fields keep their value; an explicit null only
    clears the nullable references (parent_node_id, category_id)."""
    fields = payload.model_dump(exclude_unset=True)
    async with async_session() as sess:
        todo = await _get_owned_todo(sess, current_account.id, todo_id)

        if fields.get('name') is not None:
            name = fields['name'].strip()
            if not name:
                raise HTTPException(status_code=400, detail="Todo name cannot be empty")
            todo.name = name
        if fields.get('group') is not None:
            todo.group_name = fields['group']
        if fields.get('priority') is not None:
            todo.priority = fields['priority']
        if fields.get('notes') is not None:
            todo.notes = fields['notes']

        if 'parent_node_id' in fields or 'category_id' in fields:
            await _check_references(
                sess,
                current_account.id,
                fields.get('parent_node_id'),
                fields.get('category_id'),
                todo_id=todo.id,
            )
            if 'parent_node_id' in fields:
                todo.parent_node_id = fields['parent_node_id']
            if 'category_id' in fields:
                todo.category_id = fields['category_id']

        now = now_utc()
        if fields.get('done') is not None:
            new_done = bool(fields['done'])
            # done_at only moves on an actual transition
            if new_done and not todo.done:
                todo.done_at = now
            elif not new_done and todo.done:
                todo.done_at = None
            todo.done = new_done

        todo.last_changed = now
        sess.add(todo)
        await sess.commit()
        await sess.refresh(todo)
        return serialize_todo(todo)


@router.delete('/todos/{todo_id}', status_code=204)
async def delete_todo(todo_id: int, current_account: Account = Depends(require_login)):
    async with async_session() as sess:
        todo = await _get_owned_todo(sess, current_account.id, todo_id)
        # detach children so no row points at the deleted id
        await sess.execute(
            sqlalchemy_update(TodoItem)
            .where(TodoItem.account_id == current_account.id)
            .where(TodoItem.parent_node_id == todo_id)
            .values(parent_node_id=None)
        )
        await sess.delete(todo)
        await sess.commit()
    logger.info('account=%s deleted todo id=%s', current_account.id, todo_id)
    return Response(status_code=204)


def _requested_ids(req: ReorderRequest) -> List[int]:
    if req.order is not None:
        raw = req.order
    elif req.todos is not None:
        raw = [t.get('id') for t in req.todos if isinstance(t, dict)]
    else:
        raise HTTPException(status_code=400, detail="order must be array of ids")
    ids: List[int] = []
    for value in raw:
        try:
            ids.append(int(value))
        except (TypeError, ValueError):
            continue
    return ids


@router.post('/todos/reorder')
async def reorder_todos(req: ReorderRequest, current_account: Account = Depends(require_login)):
    """Assign sort_order = position in the requested order.

    Unknown, foreign and duplicate ids are skipped. Todos missing from the
    request keep their relative order after the listed ones, so the account's
    sort_order is always 0..N-1 afterwards. All rows change in one commit.
    """
    ids = _requested_ids(req)
    async with async_session() as sess:
        todos = await _ordered_todos(sess, current_account.id)
        by_id = {t.id: t for t in todos}
        ordered: List[TodoItem] = []
        seen: set[int] = set()
        for tid in ids:
            t = by_id.get(tid)
            if t is None or tid in seen:
                continue
            seen.add(tid)
            ordered.append(t)
        ordered.extend(t for t in todos if t.id not in seen)
        for index, t in enumerate(ordered):
            if t.sort_order != index:
                t.sort_order = index
                sess.add(t)
        await sess.commit()
        logger.info('account=%s reordered %d todos', current_account.id, len(ordered))
        return [serialize_todo(t) for t in ordered]


@router.get('/categories')
async def list_categories(current_account: Account = Depends(require_login)):
    async with async_session() as sess:
        q = await sess.exec(
            select(Category).where(Category.account_id == current_account.id).order_by(Category.name.asc())
        )
        return [serialize_category(c) for c in q.all()]


def _category_name(payload: CategoryIn) -> str:
    name = (payload.name or '').strip()
    if not name:
        raise HTTPException(status_code=400, detail="category name required")
    return name


@router.post('/categories', status_code=201)
async def create_category(payload: CategoryIn, current_account: Account = Depends(require_login)):
    name = _category_name(payload)
    async with async_session() as sess:
        cat = Category(account_id=current_account.id, name=name)
        sess.add(cat)
        try:
            await sess.commit()
        except IntegrityError:
            await sess.rollback()
            raise HTTPException(status_code=409, detail="category already exists")
        await sess.refresh(cat)
        return JSONResponse(serialize_category(cat), status_code=201)


@router.put('/categories/{category_id}')
async def rename_category(category_id: int, payload: CategoryIn, current_account: Account = Depends(require_login)):
    name = _category_name(payload)
    async with async_session() as sess:
        cat = await _get_owned_category(sess, current_account.id, category_id)
        old_name = cat.name
        cat.name = name
        sess.add(cat)
        try:
            await sess.commit()
        except IntegrityError:
            await sess.rollback()
            raise HTTPException(status_code=409, detail="category already exists")
        logger.info('account=%s renamed category %s: %r -> %r', current_account.id, category_id, old_name, name)
        return serialize_category(cat)


@router.delete('/categories/{category_id}')
async def delete_category(category_id: int, current_account: Account = Depends(require_login)):
    """Delete a category; todos that used it become uncategorized.

    Nulling the references and removing the row share one commit.
    """
    async with async_session() as sess:
        cat = await _get_owned_category(sess, current_account.id, category_id)
        name = cat.name
        res = await sess.execute(
            sqlalchemy_update(TodoItem)
            .where(TodoItem.account_id == current_account.id)
            .where(TodoItem.category_id == category_id)
            .values(category_id=None, last_changed=now_utc())
        )
        await sess.delete(cat)
        await sess.commit()
        removed = res.rowcount or 0
    logger.info('account=%s deleted category %s (%d todos uncategorized)', current_account.id, category_id, removed)
    return {"id": category_id, "name": name, "removed_count": removed}
