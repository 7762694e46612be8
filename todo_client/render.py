"""Headless view: rebuilds the whole todo list as text on every change."""

from datetime import datetime
from typing import List, Optional

from .patches import PRIORITY_LABELS
from .store import TodoStore, TodoFilter

EMPTY_MESSAGES = {
    TodoFilter.ALL.value: 'No todos yet',
    TodoFilter.ACTIVE.value: 'No active todos',
    TodoFilter.DONE.value: 'No completed todos',
}
SEPARATOR = '-' * 40


def _category_names(store: TodoStore) -> str:
    selected = store.state['selected_categories']
    if not selected:
        return 'all'
    names = []
    for cid in selected:
        cat = store.get_category_by_id(cid)
        names.append(cat['name'] if cat else str(cid))
    return ', '.join(sorted(names))


def render_todo(store: TodoStore, todo: dict) -> List[str]:
    state = store.state
    index = next((i for i, t in enumerate(state['todos']) if t.get('id') == todo.get('id')), -1)
    mark = 'x' if todo.get('done') else ' '
    priority = todo.get('priority') or 1
    line = f"{index:>3}. [{mark}] {todo.get('name', '')}  ({PRIORITY_LABELS.get(priority, priority)})"
    category = store.get_category_by_id(todo.get('category_id'))
    if category:
        line += f"  @{category['name']}"
    editing = state['editing_todo']
    if editing and editing.get('id') == todo.get('id'):
        line += '  [editing]'
    lines = [line]
    if todo.get('id') in state['expanded_todos']:
        lines.append(f"       id: {todo.get('id')}  group: {todo.get('group', 'default')}")
        if todo.get('notes'):
            lines.append(f"       notes: {todo['notes']}")
        if todo.get('parent_node_id') is not None:
            lines.append(f"       parent: {todo['parent_node_id']}")
        if todo.get('done_at'):
            lines.append(f"       completed: {todo['done_at']}")
    return lines


def render_lines(store: TodoStore, now: Optional[datetime] = None) -> List[str]:
    """Full text view of the store; the last line is the status text."""
    state = store.state
    mode = state['filter']
    lines = [f"Filter: {mode} (done within {state['done_age_filter']} days)  Categories: {_category_names(store)}"]
    if state['error']:
        lines.append(f"! {state['error']}")
    if state['loading']:
        lines.append('Loading...')

    filtered = store.get_filtered_todos(now)
    if not filtered:
        lines.append(EMPTY_MESSAGES.get(mode, 'No todos'))
    elif mode == TodoFilter.SEPARATE.value:
        active = [t for t in filtered if not t.get('done')]
        done = [t for t in filtered if t.get('done')]
        if active:
            lines.append('Active')
            for todo in active:
                lines.extend(render_todo(store, todo))
        if active and done:
            lines.append(SEPARATOR)
        if done:
            lines.append('Completed')
            for todo in done:
                lines.extend(render_todo(store, todo))
    else:
        for todo in filtered:
            lines.extend(render_todo(store, todo))

    lines.append(store.get_status_text())
    return lines


def render(store: TodoStore, now: Optional[datetime] = None) -> str:
    return '\n'.join(render_lines(store, now))
