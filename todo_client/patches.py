"""Typed edits to a single todo.

Each variant names exactly one field, so a misspelled field is an
AttributeError at the call site rather than a silent no-op.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

MIN_PRIORITY = 1
MAX_PRIORITY = 5
PRIORITY_LABELS = {1: 'Low', 2: 'Medium', 3: 'High', 4: 'Urgent', 5: 'Critical'}


@dataclass(frozen=True)
class RenameTodo:
    name: str

    def __post_init__(self):
        if not str(self.name).strip():
            raise ValueError('todo name cannot be empty')


@dataclass(frozen=True)
class SetGroup:
    group: str


@dataclass(frozen=True)
class SetPriority:
    priority: int

    def __post_init__(self):
        if not MIN_PRIORITY <= int(self.priority) <= MAX_PRIORITY:
            raise ValueError(f'priority must be between {MIN_PRIORITY} and {MAX_PRIORITY}')


@dataclass(frozen=True)
class SetDone:
    done: bool


@dataclass(frozen=True)
class SetNotes:
    notes: str


@dataclass(frozen=True)
class SetParent:
    parent_node_id: Optional[int]


@dataclass(frozen=True)
class SetCategory:
    category_id: Optional[int]


TodoPatch = Union[RenameTodo, SetGroup, SetPriority, SetDone, SetNotes, SetParent, SetCategory]

# wire field name -> variant
FIELD_PATCHES = {
    'name': RenameTodo,
    'group': SetGroup,
    'priority': SetPriority,
    'done': SetDone,
    'notes': SetNotes,
    'parent_node_id': SetParent,
    'category_id': SetCategory,
}


def patch_fields(patch: TodoPatch) -> Dict[str, Any]:
    """The JSON body fragment a patch contributes to ``PUT /api/todos/{id}``."""
    if isinstance(patch, RenameTodo):
        return {'name': patch.name.strip()}
    if isinstance(patch, SetGroup):
        return {'group': patch.group}
    if isinstance(patch, SetPriority):
        return {'priority': int(patch.priority)}
    if isinstance(patch, SetDone):
        return {'done': bool(patch.done)}
    if isinstance(patch, SetNotes):
        return {'notes': patch.notes}
    if isinstance(patch, SetParent):
        return {'parent_node_id': patch.parent_node_id}
    if isinstance(patch, SetCategory):
        return {'category_id': patch.category_id}
    raise TypeError(f'not a todo patch: {patch!r}')


def patches_body(patches: Iterable[TodoPatch]) -> Dict[str, Any]:
    body: Dict[str, Any] = {}
    for patch in patches:
        body.update(patch_fields(patch))
    return body


def patches_from_fields(fields: Mapping[str, Any]) -> List[TodoPatch]:
    """Convert a plain ``{field: value}`` mapping, rejecting unknown names."""
    unknown = sorted(set(fields) - set(FIELD_PATCHES))
    if unknown:
        raise ValueError(f"unknown todo field(s): {', '.join(unknown)}")
    return [FIELD_PATCHES[name](value) for name, value in fields.items()]


def apply_patches(todo: Mapping[str, Any], patches: Iterable[TodoPatch], now: Optional[datetime] = None) -> Dict[str, Any]:
    """Return a copy of ``todo`` with the patches applied locally.

    Mirrors the server: ``done_at`` is stamped on a false->true transition
    and cleared on true->false; ``last_changed`` is bumped.
    """
    now = now or datetime.now(timezone.utc)
    updated = dict(todo)
    for patch in patches:
        for field, value in patch_fields(patch).items():
            if field == 'done':
                was_done = bool(updated.get('done'))
                if value and not was_done:
                    updated['done_at'] = now.isoformat()
                elif not value and was_done:
                    updated['done_at'] = None
            updated[field] = value
    updated['last_changed'] = now.isoformat()
    return updated
