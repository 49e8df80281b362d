"""slink configuration.

SlinkConfig is the single configuration object consumed by every command.
It is a plain frozen dataclass so tests can construct it directly without
touching the filesystem or os.environ; ``load``/``write`` handle the TOML
file at ``default_config_path()``.

The hash secret is never logged or displayed; use ``redacted_secret``.
"""

from __future__ import annotations

import os
import secrets
import stat
import tomllib
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Mapping

import tomli_w

from .codec import DEFAULT_HASH_BYTES, MAX_HASH_BYTES, MIN_HASH_BYTES
from .errors import ConfigError

CONFIG_ENV_VAR = 'SLINK_CONFIG'
CONFIG_FILE_MODE = 0o600

_FIELDS = (
    'base_url',
    'base_dir',
    'db_path',
    'hash_secret',
    'web_user',
    'web_group',
    'hash_bytes',
)


def _xdg_dir(env: Mapping[str, str], var: str, fallback: str) -> Path:
    value = env.get(var)
    if value:
        return Path(value)
    return Path.home() / fallback


def default_config_path(env: Mapping[str, str] | None = None) -> Path:
    if env is None:
        env = os.environ
    explicit = env.get(CONFIG_ENV_VAR)
    if explicit:
        return Path(explicit)
    return _xdg_dir(env, 'XDG_CONFIG_HOME', '.config') / 'slink' / 'slink.conf'


def default_db_path(env: Mapping[str, str] | None = None) -> Path:
    if env is None:
        env = os.environ
    return _xdg_dir(env, 'XDG_DATA_HOME', '.local/share') / 'slink' / 'shares.db'


def generate_secret() -> str:
    return secrets.token_urlsafe(32)


@dataclass(frozen=True, slots=True)
class SlinkConfig:
    """Configuration for one slink installation."""

    base_url: str = 'http://localhost:8080'
    """Public URL the web server serves ``base_dir`` under."""

    base_dir: str = '/var/www'
    """Existing directory holding ``UUID/filename`` trees and token links."""

    db_path: str = ''
    """SQLite database file."""

    hash_secret: str = ''
    """Key for token derivation. Never log this."""

    web_user: str = 'www-data'
    web_group: str = 'www-data'
    """Owner of published files; empty skips the ownership change."""

    hash_bytes: int = DEFAULT_HASH_BYTES
    """Token length in bytes before encoding (2-32)."""

    @property
    def secret(self) -> bytes:
        return self.hash_secret.encode('utf-8')

    @property
    def entropy_bits(self) -> int:
        return self.hash_bytes * 8

    def redacted_secret(self) -> str:
        s = self.hash_secret
        if len(s) < 8:
            return '[REDACTED]'
        return f'{s[:2]}..[REDACTED]..{s[-2:]}'

    def validate(self, *, check_paths: bool = True) -> list[str]:
        """Return a list of configuration errors. Empty means valid."""
        errors: list[str] = []
        if not self.base_url:
            errors.append('base_url is required')
        if not self.hash_secret:
            errors.append('hash_secret is required')
        if not self.db_path:
            errors.append('db_path is required')
        if (
            isinstance(self.hash_bytes, bool)
            or not isinstance(self.hash_bytes, int)
            or not MIN_HASH_BYTES <= self.hash_bytes <= MAX_HASH_BYTES
        ):
            errors.append(
                f'hash_bytes must be an integer between {MIN_HASH_BYTES} '
                f'and {MAX_HASH_BYTES}, got {self.hash_bytes!r}'
            )
        if bool(self.web_user) != bool(self.web_group):
            errors.append('web_user and web_group must be set together')
        if check_paths and not Path(self.base_dir).is_dir():
            errors.append(f'base_dir {self.base_dir} does not exist')
        return errors

    def require_valid(self, *, check_paths: bool = True) -> SlinkConfig:
        errors = self.validate(check_paths=check_paths)
        if errors:
            raise ConfigError('invalid configuration: ' + '; '.join(errors))
        return self

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> SlinkConfig:
        unknown = sorted(set(data) - set(_FIELDS))
        if unknown:
            raise ConfigError(f'unknown configuration keys: {", ".join(unknown)}')
        values = {k: data[k] for k in _FIELDS if k in data}
        for key in ('base_url', 'base_dir', 'db_path', 'hash_secret',
                    'web_user', 'web_group'):
            if key in values and not isinstance(values[key], str):
                raise ConfigError(f'{key} must be a string')
        return cls(**values)

    @classmethod
    def load(cls, path: Path | None = None, *, check_paths: bool = True) -> SlinkConfig:
        """Read, permission-check and validate the TOML config file."""
        path = Path(path) if path is not None else default_config_path()
        if not path.exists():
            raise ConfigError(
                f'no configuration at {path}; run "slink init" to create one'
            )
        check_permissions(path)
        try:
            with path.open('rb') as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f'malformed config file {path}: {exc}') from exc
        except OSError as exc:
            raise ConfigError(f'failed to read config file {path}: {exc}') from exc
        return cls.from_mapping(data).require_valid(check_paths=check_paths)

    def write(self, path: Path) -> Path:
        """Write the config as TOML with owner-only permissions."""
        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, CONFIG_FILE_MODE)
            with os.fdopen(fd, 'wb') as f:
                tomli_w.dump(self.to_dict(), f)
            os.chmod(path, CONFIG_FILE_MODE)
        except FileExistsError as exc:
            raise ConfigError(f'configuration file already exists at {path}') from exc
        except OSError as exc:
            raise ConfigError(f'failed to write config file {path}: {exc}') from exc
        return path


def check_permissions(path: Path) -> None:
    """Refuse config files readable by group or others."""
    mode = stat.S_IMODE(path.stat().st_mode)
    if mode & 0o077:
        raise ConfigError(
            f'config file permissions too loose ({oct(mode)}); '
            f'use chmod 600 {path}'
        )
