"""Configuration management for the todo client."""

import os
import json
import logging
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = os.path.join(os.path.expanduser('~'), '.todo_client', 'config.json')

DEFAULTS: Dict[str, Any] = {
    'server_url': 'http://127.0.0.1:8000',
    'email': '',
    'storage_path': os.path.join(os.path.expanduser('~'), '.todo_client', 'local_data.db'),
    'verify_ssl': True,
    'done_age_days': 7,
}


class Config:
    """JSON-file configuration for the todo client.

    Missing keys fall back to DEFAULTS. Setters write the file immediately.
    """

    def __init__(self, config_file: Optional[str] = None):
        self.config_file = config_file or os.getenv('TODO_CLIENT_CONFIG') or DEFAULT_CONFIG_FILE
        self._config: Dict[str, Any] = {}
        self.load()

    def load(self) -> None:
        """Load configuration from file."""
        if os.path.exists(self.config_file):
            try:
                with open(self.config_file, 'r') as f:
                    self._config = json.load(f)
            except (OSError, ValueError):
                # If file is corrupted, start with empty config
                logger.warning('could not read %s; using defaults', self.config_file)
                self._config = {}
        else:
            self._config = dict(DEFAULTS)
            self.save()

    def save(self) -> None:
        """Save configuration to file."""
        directory = os.path.dirname(self.config_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.config_file, 'w') as f:
            json.dump(self._config, f, indent=2)

    def _get(self, key: str):
        return self._config.get(key, DEFAULTS[key])

    def _set(self, key: str, value) -> None:
        self._config[key] = value
        self.save()

    @property
    def server_url(self) -> str:
        return str(self._get('server_url')).rstrip('/')

    @server_url.setter
    def server_url(self, value: str):
        self._set('server_url', value)

    @property
    def email(self) -> str:
        return self._get('email')

    @email.setter
    def email(self, value: str):
        self._set('email', value)

    @property
    def storage_path(self) -> str:
        return self._get('storage_path')

    @storage_path.setter
    def storage_path(self, value: str):
        self._set('storage_path', value)

    @property
    def verify_ssl(self) -> bool:
        return bool(self._get('verify_ssl'))

    @verify_ssl.setter
    def verify_ssl(self, value: bool):
        self._set('verify_ssl', bool(value))

    @property
    def done_age_days(self) -> int:
        try:
            return int(self._get('done_age_days'))
        except (TypeError, ValueError):
            return DEFAULTS['done_age_days']

    @done_age_days.setter
    def done_age_days(self, value: int):
        self._set('done_age_days', int(value))
