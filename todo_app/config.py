"""Runtime configuration for the todo server.

Control flags are read from environment variables so they can be toggled
in development or production without code changes.
"""
import os


def _trueish(v: str | None) -> bool:
    if not v:
        return False
    return v.lower() in ('1', 'true', 'yes', 'on')


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except (TypeError, ValueError):
        return default


# Lifetime of issued bearer tokens. The browser client keeps the token in
# local storage, so a week matches how long a cached session stays usable.
ACCESS_TOKEN_EXPIRE_DAYS = _int_env('ACCESS_TOKEN_EXPIRE_DAYS', 7)

# Comma-separated list of origins allowed to call the API from a browser.
FRONTEND_ORIGINS = [
    o.strip()
    for o in os.getenv('FRONTEND_ORIGINS', 'http://localhost:3000').split(',')
    if o.strip()
]

# Root log level for the server process.
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

# Echo every SQL statement (very noisy; local debugging only).
SQL_ECHO = _trueish(os.getenv('SQL_ECHO', '0'))

# Defaults applied when a todo is created without these fields.
DEFAULT_GROUP = os.getenv('DEFAULT_GROUP', 'default')
DEFAULT_PRIORITY = 1
MIN_PRIORITY = 1
MAX_PRIORITY = 5

# Optional local overrides: define variables in todo_app/local_config.py to
# extend or override the defaults above without changing versioned config.
try:
    from .local_config import *  # type: ignore  # noqa: F401,F403
except ImportError:
    pass
