#!/usr/bin/env python3
"""
Command-line front end for the todo client.

Usage:
  todo-client register user@example.com
  todo-client login user@example.com --password 'pw12345'
  todo-client add "Buy milk" --priority 2
  todo-client done 3
  todo-client swap 0 2
  todo-client filter done --days 14
  todo-client offline      # later mutations are queued locally
  todo-client online       # replay the queue, then re-sync

State (token, cached todos, offline queue) lives in the client's local
store, so every invocation picks up where the last one left off.
"""
import argparse
import getpass
import logging
import sys
from typing import Optional

from .api import ApiGateway
from .app import TodoApp
from .config import Config
from .connectivity import Connectivity
from .local_store import LocalStore, STATE_KEY
from .patches import SetCategory, SetNotes, SetPriority
from .store import TodoFilter

logger = logging.getLogger(__name__)

# set while the user has declared the client offline
OFFLINE_KEY = 'todo_offline'


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='todo-client', description='Offline-capable todo list client')
    parser.add_argument('--config', default=None, help='path to the client config JSON file')
    parser.add_argument('--server', default=None, help='override server_url from the config')
    parser.add_argument('-v', '--verbose', action='store_true', help='log requests and sync activity')
    sub = parser.add_subparsers(dest='command', required=True)

    for name in ('register', 'login'):
        p = sub.add_parser(name)
        p.add_argument('email', nargs='?', default=None)
        p.add_argument('--password', default=None, help='prompted for when omitted')
    sub.add_parser('logout')
    p_list = sub.add_parser('list', help='show todos')
    p_list.add_argument('--refresh', action='store_true', help='sync with the server first')

    p_add = sub.add_parser('add')
    p_add.add_argument('name')
    p_add.add_argument('--group', default='default')
    p_add.add_argument('--priority', type=int, default=1, choices=range(1, 6))
    p_add.add_argument('--category', type=int, default=None, help='category id')
    p_add.add_argument('--notes', default='')

    for name in ('done', 'undo', 'rm'):
        p = sub.add_parser(name)
        p.add_argument('id', type=int)

    p_edit = sub.add_parser('edit', help='change fields of one todo')
    p_edit.add_argument('id', type=int)
    p_edit.add_argument('--name', default=None)
    p_edit.add_argument('--priority', type=int, default=None, choices=range(1, 6))
    p_edit.add_argument('--notes', default=None)
    p_edit.add_argument('--category', type=int, default=None)

    p_swap = sub.add_parser('swap', help='swap two positions and save the order')
    p_swap.add_argument('from_index', type=int)
    p_swap.add_argument('to_index', type=int)

    p_filter = sub.add_parser('filter')
    p_filter.add_argument('mode', choices=[f.value for f in TodoFilter])
    p_filter.add_argument('--days', type=int, default=None, help='how far back completed todos are shown')
    p_filter.add_argument('--category', type=int, action='append', default=None,
                          help='only show this category id (repeatable); omit for all')

    sub.add_parser('sync')
    sub.add_parser('online')
    sub.add_parser('offline')
    return parser


def make_app(cfg: Config, server: Optional[str] = None) -> TodoApp:
    local_store = LocalStore(cfg.storage_path)
    connectivity = Connectivity(online=local_store.get_item(OFFLINE_KEY) != '1')
    gateway = ApiGateway(
        server or cfg.server_url,
        local_store=local_store,
        connectivity=connectivity,
        verify_ssl=cfg.verify_ssl,
    )
    app = TodoApp(gateway)
    if app.store.state['done_age_filter'] != cfg.done_age_days and local_store.get_item(STATE_KEY) is None:
        app.store.set_done_age_filter(cfg.done_age_days)
    return app


def _credentials(args, cfg: Config) -> tuple[str, str]:
    email = args.email or cfg.email or input('Email: ')
    password = args.password or getpass.getpass(f'Password for {email}: ')
    return email, password


def run(app: TodoApp, args, cfg: Config) -> int:
    store = app.store
    cmd = args.command
    if cmd in ('register', 'login'):
        email, password = _credentials(args, cfg)
        if not app.login(email, password, register=(cmd == 'register')):
            print(store.state['error'] or 'login failed', file=sys.stderr)
            return 1
        if cfg.email != email:
            cfg.email = email
    elif cmd == 'logout':
        app.logout()
        print('logged out')
        return 0
    elif cmd == 'online':
        app.gateway.local_store.remove_item(OFFLINE_KEY)
        app.go_online()
    elif cmd == 'offline':
        app.gateway.local_store.set_item(OFFLINE_KEY, '1')
        app.go_offline()
    elif not store.state['is_authenticated']:
        print('not logged in; run `todo-client login` first', file=sys.stderr)
        return 1
    elif cmd == 'list':
        if args.refresh:
            app.load()
    elif cmd == 'sync':
        app.load()
    elif cmd == 'add':
        app.add(args.name, group=args.group, priority=args.priority, category_id=args.category, notes=args.notes)
    elif cmd in ('done', 'undo'):
        todo = store.get_todo_by_id(args.id)
        if todo is not None and bool(todo.get('done')) != (cmd == 'done'):
            app.toggle(args.id)
    elif cmd == 'rm':
        app.delete(args.id)
    elif cmd == 'edit':
        if args.name is not None:
            app.rename(args.id, args.name)
        patches = []
        if args.priority is not None:
            patches.append(SetPriority(args.priority))
        if args.notes is not None:
            patches.append(SetNotes(args.notes))
        if args.category is not None:
            patches.append(SetCategory(args.category))
        if patches:
            app.edit(args.id, *patches)
    elif cmd == 'swap':
        app.handle_reorder(args.from_index, args.to_index)
        app.finalize_reorder()
    elif cmd == 'filter':
        store.set_filter(args.mode)
        if args.days is not None:
            store.set_done_age_filter(args.days)
        if args.category:
            store.set_state({'selected_categories': set(args.category)})
        else:
            store.select_all_categories()

    print(app.render())
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format='%(asctime)s %(levelname)s:%(name)s: %(message)s',
    )
    cfg = Config(args.config)
    app = make_app(cfg, args.server)
    if args.command not in ('register', 'login', 'logout', 'online', 'offline'):
        app.start()
    return run(app, args, cfg)


if __name__ == '__main__':
    sys.exit(main())
