#!/usr/bin/env python3
"""
Inspect the todo database from the command line.

Usage:
  todo-admin stats
  todo-admin accounts --limit 20
  todo-admin todos --account-id 3
  todo-admin categories
  todo-admin query "SELECT id, email FROM account"
  todo-admin --db ./other.db stats

Only reads. ``query`` accepts a single SELECT statement and, on SQLite, runs
it on a connection switched to ``query_only``.
"""
import argparse
import asyncio
import json
import logging
import sys
from typing import Optional

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy import func, text
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

from .db import async_session
from .models import Account, Category, TodoItem
from .utils import iso_utc

logger = logging.getLogger(__name__)


def session_factory_for(db: Optional[str]):
    """Return a session factory for ``db`` (a path or a SQLAlchemy URL), or
    the application's own factory when ``db`` is None."""
    if not db:
        return async_session
    url = db if '://' in db else f"sqlite+aiosqlite:///{db}"
    engine = create_async_engine(url, future=True, poolclass=NullPool)
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def _count(sess, model) -> int:
    q = await sess.exec(select(func.count()).select_from(model))
    return int(q.one())


async def collect_stats(session_factory=None) -> dict:
    factory = session_factory or async_session
    async with factory() as sess:
        return {
            'accounts': await _count(sess, Account),
            'todos': await _count(sess, TodoItem),
            'completed': int((await sess.exec(
                select(func.count()).select_from(TodoItem).where(TodoItem.done == True)  # noqa: E712
            )).one()),
            'categories': await _count(sess, Category),
        }


async def list_accounts(limit: int = 20, session_factory=None) -> list[dict]:
    factory = session_factory or async_session
    async with factory() as sess:
        q = await sess.exec(select(Account).order_by(Account.created_at.desc(), Account.id.desc()).limit(limit))
        return [{'id': a.id, 'email': a.email, 'created_at': iso_utc(a.created_at)} for a in q.all()]


async def list_todos(limit: int = 50, account_id: Optional[int] = None, session_factory=None) -> list[dict]:
    factory = session_factory or async_session
    async with factory() as sess:
        stmt = select(TodoItem)
        if account_id is not None:
            stmt = stmt.where(TodoItem.account_id == account_id)
        q = await sess.exec(stmt.order_by(TodoItem.created_at.desc(), TodoItem.id.desc()).limit(limit))
        return [
            {
                'id': t.id,
                'name': t.name,
                'done': bool(t.done),
                'category_id': t.category_id,
                'created_at': iso_utc(t.created_at),
                'account_id': t.account_id,
            }
            for t in q.all()
        ]


async def list_categories(session_factory=None) -> list[dict]:
    """Every category with the number of todos filed under it."""
    factory = session_factory or async_session
    async with factory() as sess:
        stmt = (
            select(Category.id, Category.account_id, Category.name, func.count(TodoItem.id))
            .outerjoin(TodoItem, TodoItem.category_id == Category.id)
            .group_by(Category.id)
            .order_by(Category.name, Category.id)
        )
        rows = (await sess.exec(stmt)).all()
        return [
            {'id': cid, 'account_id': aid, 'name': name, 'count': int(count)}
            for cid, aid, name, count in rows
        ]


async def run_select(query: str, session_factory=None) -> list[dict]:
    """Run one SELECT and return its rows as dicts.

    On SQLite the connection is switched to ``query_only`` first, so the
    statement cannot write even through a side-effecting function. The
    session is never committed.
    """
    stmt = query.strip().rstrip(';').rstrip()
    if not stmt.lower().startswith('select'):
        raise ValueError('Only SELECT queries are allowed')
    if ';' in stmt:
        raise ValueError('Only a single SELECT statement is allowed')
    factory = session_factory or async_session
    async with factory() as sess:
        conn = await sess.connection()
        if conn.dialect.name == 'sqlite':
            # engines here use NullPool, so the pragma dies with this connection
            await conn.execute(text('PRAGMA query_only = ON'))
        res = await conn.execute(text(stmt))
        return [dict(row) for row in res.mappings().all()]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='todo-admin', description='Inspect the todo database')
    parser.add_argument('--db', default=None, help='SQLite DB path or a full SQLAlchemy URL (defaults to DATABASE_URL)')
    sub = parser.add_subparsers(dest='command', required=True)
    sub.add_parser('stats', help='row counts')
    p_acc = sub.add_parser('accounts', help='most recently registered accounts')
    p_acc.add_argument('--limit', type=int, default=20)
    p_todos = sub.add_parser('todos', help='most recently created todos')
    p_todos.add_argument('--limit', type=int, default=50)
    p_todos.add_argument('--account-id', type=int, default=None)
    sub.add_parser('categories', help='categories with todo counts')
    p_query = sub.add_parser('query', help='run a read-only SELECT')
    p_query.add_argument('sql')
    return parser


async def _dispatch(args) -> object:
    factory = session_factory_for(args.db)
    if args.command == 'stats':
        return await collect_stats(factory)
    if args.command == 'accounts':
        return await list_accounts(args.limit, factory)
    if args.command == 'todos':
        return await list_todos(args.limit, args.account_id, factory)
    if args.command == 'categories':
        return await list_categories(factory)
    return await run_select(args.sql, factory)


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    try:
        result = asyncio.run(_dispatch(args))
    except ValueError as e:
        print(str(e), file=sys.stderr)
        return 2
    print(json.dumps(result, indent=2, default=str))
    return 0


if __name__ == '__main__':
    sys.exit(main())
