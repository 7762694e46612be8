from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy import text
from sqlalchemy.pool import NullPool

import os
import logging

from . import config

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./todo_app.db")

# Columns added after the first release. Older SQLite files get them via
# ALTER TABLE in init_db(); CREATE TABLE never alters an existing table.
_TODOITEM_LATE_COLUMNS = {
    'notes': "ALTER TABLE todoitem ADD COLUMN notes TEXT DEFAULT '' NOT NULL",
    'parent_node_id': "ALTER TABLE todoitem ADD COLUMN parent_node_id INTEGER REFERENCES todoitem(id)",
    'category_id': "ALTER TABLE todoitem ADD COLUMN category_id INTEGER REFERENCES category(id)",
    'last_changed': "ALTER TABLE todoitem ADD COLUMN last_changed DATETIME",
    'done_at': "ALTER TABLE todoitem ADD COLUMN done_at DATETIME",
}

_TODOITEM_INDEXES = (
    "CREATE INDEX IF NOT EXISTS ix_todoitem_parent_node_id ON todoitem(parent_node_id)",
    "CREATE INDEX IF NOT EXISTS ix_todoitem_category_id ON todoitem(category_id)",
)

# NullPool: connections are never shared between event loops, which keeps the
# engine usable from both the server loop and threaded test clients.
engine = create_async_engine(DATABASE_URL, echo=config.SQL_ECHO, future=True, poolclass=NullPool)

async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db():
    async with engine.begin() as conn:
        # create tables
        await conn.run_sync(SQLModel.metadata.create_all)
        # Bring older SQLite files up to the current todoitem shape.
        try:
            res = await conn.execute(text("PRAGMA table_info('todoitem')"))
            cols = [r[1] for r in res.fetchall()]
            for name, ddl in _TODOITEM_LATE_COLUMNS.items():
                if cols and name not in cols:
                    try:
                        await conn.execute(text(ddl))
                        logger.info('init_db: added todoitem.%s', name)
                    except Exception:
                        logger.exception('failed to add column during init_db: %s', ddl)
        except Exception:
            # PRAGMA is SQLite-only; other backends get the full schema from create_all
            logger.exception('failed to inspect todoitem columns in init_db')
        for ddl in _TODOITEM_INDEXES:
            try:
                await conn.execute(text(ddl))
            except Exception:
                logger.exception('failed to create index during init_db: %s', ddl)
