"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent configuration for dashauth:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.dashauth/`` on macOS and Windows. See :func:`get_config_dir`,
  :func:`get_cache_dir`, :func:`get_data_dir`.
* **App config** -- a single :class:`~dashauth.models.AppConfig` stored as
  ``config.json``. A hand-written ``config.yaml`` is accepted as well.
* **Precedence resolution** -- :func:`resolve_config` merges an explicit
  path, environment variables, the user config, and defaults.
* **Credential resolution** -- :func:`resolve_credential` reads secrets
  (client secrets, the backend anonymous key) from env vars, files, or an
  interactive prompt.

All file writes go through :func:`_atomic_write`.
"""

from __future__ import annotations

import getpass
import json
import os
import platform
import sys
import tempfile
from pathlib import Path
from typing import Any, Optional

import yaml

from dashauth.exceptions import ConfigurationError
from dashauth.models import AppConfig

_APP_NAME = "dashauth"
_CONFIG_FILENAME = "config.json"
_YAML_CONFIG_FILENAME = "config.yaml"


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform follows the XDG Base Directory spec (Linux/BSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/dashauth/`` (default ``~/.config/dashauth/``).
    On macOS/Windows: ``~/.dashauth/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_cache_dir() -> Path:
    """Return the cache directory, creating it if necessary.

    Holds the persisted service credential. Safe to delete at any time; the
    next start simply negotiates a new credential.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CACHE_HOME", (".cache",)) / _APP_NAME
    else:
        path = _fallback_base_dir() / "cache"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (saved sessions, crash logs), creating it if necessary."""
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _fallback_base_dir() / "data"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Atomic file writes ---


def _atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Write *data* to *path* atomically using a temp file + rename.

    The temporary file lives in the same directory as *path* so that
    ``os.replace`` is an atomic rename on POSIX. When *mode* is given the
    permissions are applied to the temp file before any content is written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        if mode is not None:
            os.chmod(tmp_path, mode)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None
        os.replace(tmp_path, path)
    except BaseException:
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- App config ---


def config_path() -> Path:
    """Path to the user's JSON config file."""
    return get_config_dir() / _CONFIG_FILENAME


def _read_config_file(path: Path) -> dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
        if path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(text) or {}
        else:
            data = json.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError, OSError) as exc:
        raise ConfigurationError(f"Invalid config at {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config at {path} must be a mapping")
    return data


def load_config(path: Optional[Path] = None) -> AppConfig:
    """Load the app configuration.

    Args:
        path: Explicit config file. When ``None`` the user's ``config.json``
            is used, falling back to ``config.yaml``.

    Returns:
        The deserialised :class:`~dashauth.models.AppConfig`. Defaults are
        returned when no file exists.

    Raises:
        ConfigurationError: If the file is unreadable, malformed, or fails
            validation.
    """
    if path is None:
        candidates = [config_path(), get_config_dir() / _YAML_CONFIG_FILENAME]
        path = next((p for p in candidates if p.is_file()), None)
        if path is None:
            return AppConfig()
    elif not path.is_file():
        raise ConfigurationError(f"Config file not found: {path}")

    data = _read_config_file(path)
    try:
        return AppConfig.model_validate(data)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid config at {path}: {exc}") from exc


def save_config(config: AppConfig) -> Path:
    """Persist *config* atomically as ``config.json`` and return its path."""
    path = config_path()
    data = config.model_dump(mode="json")
    _atomic_write(path, json.dumps(data, indent=2) + "\n")
    return path


# --- Precedence resolution ---


def resolve_config(cli_config: Optional[str] = None) -> AppConfig:
    """Resolve the effective configuration.

    Precedence (high to low):
        1. ``--config`` CLI flag
        2. ``DASHAUTH_CONFIG`` environment variable
        3. User config (``~/.config/dashauth/config.json``)
        4. Defaults

    Environment overrides are applied on top of whichever file wins:
    ``DASHAUTH_BACKEND_URL`` and ``DASHAUTH_ANON_KEY_SOURCE``.
    """
    explicit = cli_config or os.environ.get("DASHAUTH_CONFIG")
    config = load_config(Path(explicit).expanduser() if explicit else None)

    env_url = os.environ.get("DASHAUTH_BACKEND_URL")
    if env_url:
        config.backend.url = env_url
    env_key = os.environ.get("DASHAUTH_ANON_KEY_SOURCE")
    if env_key:
        config.backend.anon_key_source = env_key

    return config


# --- Credential source resolution ---


def resolve_credential(source: str) -> str:
    """Resolve a credential from its source descriptor.

    Supported formats:
        - ``"env:VAR_NAME"`` -- reads ``os.environ["VAR_NAME"]``
        - ``"file:/path/to/file"`` -- reads file content, stripped of whitespace
        - ``"prompt"`` -- prompts interactively (requires a TTY)

    Raises:
        ConfigurationError: If the source can't be resolved.
    """
    if source.startswith("env:"):
        var_name = source[4:]
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigurationError(
                f"Environment variable '{var_name}' is not set (source: {source})"
            )
        return value

    if source.startswith("file:"):
        path = Path(source[5:]).expanduser()
        if not path.is_file():
            raise ConfigurationError(f"Credential file not found: {path} (source: {source})")
        try:
            return path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ConfigurationError(f"Cannot read credential file {path}: {exc}") from exc

    if source == "prompt":
        if not sys.stdin.isatty():
            raise ConfigurationError(
                "Cannot prompt for credentials: stdin is not a TTY (source: prompt)"
            )
        return getpass.getpass("Enter credential: ")

    raise ConfigurationError(f"Unknown credential source format: {source}")
