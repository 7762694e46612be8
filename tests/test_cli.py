import pytest

from conftest import unique_email
from todo_client import cli
from todo_client.config import Config


@pytest.fixture
def cfg(tmp_path):
    c = Config(str(tmp_path / 'config.json'))
    c.storage_path = str(tmp_path / 'local_data.db')
    return c


def run(app, cfg, *argv):
    args = cli.build_parser().parse_args(list(argv))
    return cli.run(app, args, cfg)


def test_register_remembers_email(todo_app, cfg, capsys):
    email = unique_email('cli')
    assert run(todo_app, cfg, 'register', email, '--password', 'pw12345') == 0
    assert cfg.email == email
    assert capsys.readouterr().out.strip().endswith('0/0 completed')


def test_add_done_and_list(logged_in_app, cfg, capsys):
    assert run(logged_in_app, cfg, 'add', 'Buy milk', '--priority', '2') == 0
    out = capsys.readouterr().out
    assert 'Buy milk' in out and '(Medium)' in out

    todo_id = logged_in_app.store.state['todos'][0]['id']
    assert run(logged_in_app, cfg, 'done', str(todo_id)) == 0
    assert capsys.readouterr().out.strip().endswith('1/1 completed')

    # already done: nothing to toggle
    assert run(logged_in_app, cfg, 'done', str(todo_id)) == 0
    assert logged_in_app.store.get_todo_by_id(todo_id)['done'] is True

    assert run(logged_in_app, cfg, 'undo', str(todo_id)) == 0
    assert capsys.readouterr().out.strip().endswith('0/1 completed')


def test_edit_and_swap(logged_in_app, cfg, capsys):
    for name in ('first', 'second'):
        run(logged_in_app, cfg, 'add', name)
    first_id = logged_in_app.store.state['todos'][0]['id']
    assert run(logged_in_app, cfg, 'edit', str(first_id), '--name', 'renamed', '--notes', 'n1') == 0
    todo = logged_in_app.store.get_todo_by_id(first_id)
    assert todo['name'] == 'renamed' and todo['notes'] == 'n1'

    assert run(logged_in_app, cfg, 'swap', '0', '1') == 0
    assert [t['name'] for t in logged_in_app.gateway.todos.get_all()] == ['second', 'renamed']
    capsys.readouterr()


def test_filter_command(logged_in_app, cfg, capsys):
    assert run(logged_in_app, cfg, 'filter', 'active', '--days', '3') == 0
    out = capsys.readouterr().out
    assert out.startswith('Filter: active (done within 3 days)')
    assert 'No active todos' in out
    with pytest.raises(SystemExit):
        run(logged_in_app, cfg, 'filter', 'sideways')


def test_offline_then_online(logged_in_app, cfg, capsys):
    assert run(logged_in_app, cfg, 'offline') == 0
    assert logged_in_app.gateway.local_store.get_item(cli.OFFLINE_KEY) == '1'
    run(logged_in_app, cfg, 'add', 'on the train')
    assert len(logged_in_app.gateway.read_queue()) == 1

    assert run(logged_in_app, cfg, 'online') == 0
    assert logged_in_app.gateway.local_store.get_item(cli.OFFLINE_KEY) is None
    assert logged_in_app.gateway.read_queue() == []
    assert 'on the train' in capsys.readouterr().out


def test_requires_login(todo_app, cfg, capsys):
    assert run(todo_app, cfg, 'list') == 1
    assert 'not logged in' in capsys.readouterr().err


def test_main_offline_round_trip(cfg, capsys):
    assert cli.main(['--config', cfg.config_file, 'offline']) == 0
    assert 'No todos' in capsys.readouterr().out
    # offline flag persisted; still not logged in
    assert cli.main(['--config', cfg.config_file, 'list']) == 1
