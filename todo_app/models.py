from typing import List, Optional
from datetime import datetime
from .utils import now_utc
from sqlmodel import SQLModel, Field, Relationship
from sqlalchemy import UniqueConstraint, Index


class Account(SQLModel, table=True):
    """A registered user. Owns every category and todo item it created.

    password_hash is a passlib hash of ``password + salt``; the salt is kept
    alongside so the hash scheme can be swapped without losing accounts.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, sa_column_kwargs={"unique": True})
    password_hash: str
    salt: str
    created_at: datetime | None = Field(default_factory=now_utc)

    categories: List["Category"] = Relationship(back_populates="account")


class Category(SQLModel, table=True):
    """Named grouping for todos. Names are unique per account."""
    id: Optional[int] = Field(default=None, primary_key=True)
    account_id: int = Field(foreign_key="account.id", index=True)
    name: str
    created_at: datetime | None = Field(default_factory=now_utc)

    __table_args__ = (UniqueConstraint('account_id', 'name', name='uq_category_account_name'),)

    account: Optional[Account] = Relationship(back_populates="categories")


class TodoItem(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    account_id: int = Field(foreign_key="account.id", index=True)
    name: str
    # serialized as "group"; GROUP is reserved in SQL
    group_name: str = Field(default="default")
    # Dense per-account rank. Reorder normalizes it to contiguous 0..N-1.
    sort_order: int = Field(default=0)
    # 1 (low) .. 5 (critical)
    priority: int = Field(default=1)
    done: bool = Field(default=False)
    notes: str = Field(default="")
    parent_node_id: Optional[int] = Field(default=None, foreign_key="todoitem.id", index=True)
    category_id: Optional[int] = Field(default=None, foreign_key="category.id", index=True)
    created_at: datetime | None = Field(default_factory=now_utc)
    last_changed: datetime | None = Field(default_factory=now_utc)
    # Non-null iff done; stamped on the false->true transition only.
    done_at: Optional[datetime] = None

    __table_args__ = (Index('ix_todoitem_account_order', 'account_id', 'sort_order'),)
