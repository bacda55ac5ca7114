"""Loaders for connection settings and setup lists."""

import json
import os
from pathlib import Path
from typing import Dict, Any, List, Union

import yaml
from pydantic import ValidationError

from .schema import (
    HOST_KEY_FINGERPRINT_PLACEHOLDER,
    ConnectionEntry,
    SyncSettings,
    template_settings,
)
from ..utils.logging import get_logger


class ConfigurationError(Exception):
    """Raised when configuration loading fails."""
    pass


class SettingsNotFoundError(ConfigurationError):
    """Raised when a settings source does not exist."""

    def __init__(self, path: Union[str, Path]):
        self.path = str(path)
        super().__init__(
            f"Cannot find file `{self.path}`. Run `syncwatch --create` to create a new one."
        )


class InvalidPathError(ConfigurationError):
    """Raised when the resolved local path is not absolute."""

    def __init__(self, local_path: str, source: Union[str, Path]):
        self.local_path = local_path
        self.source = str(source)
        super().__init__(f"The local path `{local_path}` in `{self.source}` does not resolve to an absolute path.")


def _read_document(file_path: Path) -> Any:
    """Read a JSON or YAML document."""
    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            if file_path.suffix.lower() in ['.yaml', '.yml']:
                return yaml.safe_load(f)
            return json.load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML format in {file_path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON format in {file_path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Failed to read {file_path}: {e}") from e


def normalize_fingerprint(fingerprint: Any) -> str:
    """Collapse unset fingerprints to the empty string.

    Empty, whitespace-only and the template placeholder all mean "not
    configured", which makes the transfer accept any host key.
    """
    if fingerprint is None:
        return ""
    fingerprint = str(fingerprint).strip()
    if fingerprint == HOST_KEY_FINGERPRINT_PLACEHOLDER:
        return ""
    return fingerprint


def resolve_local_path(local_path: str, base_path: Union[str, Path]) -> str:
    """Join ``local_path`` onto ``base_path`` unless it is already absolute."""
    return os.path.normpath(str(Path(base_path) / local_path))


class SettingsResolver:
    """Loads and validates one connection's settings."""

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)

    def resolve(self, settings_source: Union[str, Path], base_path: Union[str, Path]) -> SyncSettings:
        """Load settings and resolve them against ``base_path``.

        Args:
            settings_source: Path to the JSON/YAML settings file
            base_path: Directory relative local paths are resolved against

        Returns:
            Immutable SyncSettings with an absolute local path

        Raises:
            SettingsNotFoundError: If the settings file does not exist
            InvalidPathError: If the local path does not resolve to an absolute path
            ConfigurationError: If the file cannot be parsed or validated
        """
        source = Path(settings_source)

        if not source.exists():
            self.logger.warning("Settings file not found", file_path=str(source))
            raise SettingsNotFoundError(source)

        data = _read_document(source)
        if not isinstance(data, dict):
            raise ConfigurationError(f"Settings in {source} must be a mapping")

        data = dict(data)
        local_path = data.pop('localPath', data.pop('local_path', None))
        if not local_path:
            raise ConfigurationError(f"Settings in {source} are missing localPath")

        resolved = resolve_local_path(str(local_path), base_path)
        if not os.path.isabs(resolved):
            raise InvalidPathError(resolved, source)

        fingerprint = normalize_fingerprint(
            data.pop('sshHostKeyFingerprint', data.pop('ssh_host_key_fingerprint', None))
        )
        if not fingerprint:
            self.logger.warning(
                "No host key fingerprint configured, any host key will be accepted",
                file_path=str(source)
            )

        try:
            settings = SyncSettings(
                **data,
                localPath=resolved,
                sshHostKeyFingerprint=fingerprint,
            )
        except ValidationError as e:
            raise ConfigurationError(f"Invalid settings in {source}: {e}") from e

        self.logger.info(
            "Settings resolved",
            file_path=str(source),
            local_path=settings.local_path,
            connection=settings.label
        )
        return settings


def load_setup(setup_source: Union[str, Path]) -> List[ConnectionEntry]:
    """Load a multi-connection setup list.

    Raises:
        ConfigurationError: If the file is missing or malformed
    """
    source = Path(setup_source)
    if not source.exists():
        raise ConfigurationError(f"Setup file not found: {source}")

    data = _read_document(source)
    if isinstance(data, dict):
        # Allow the manager's {"connections": [...]} layout as well
        data = data.get('connections', data.get('Connections'))
    if not isinstance(data, list):
        raise ConfigurationError(f"Setup in {source} must be a list of connections")

    try:
        entries = [ConnectionEntry(**_normalize_entry_keys(item)) for item in data]
    except (TypeError, ValidationError) as e:
        raise ConfigurationError(f"Invalid connection entry in {source}: {e}") from e

    get_logger("load_setup").info("Setup loaded", file_path=str(source), connections=len(entries))
    return entries


def _normalize_entry_keys(item: Dict[str, Any]) -> Dict[str, Any]:
    # Setup lists written for the old manager use PascalCase keys
    pascal = {'Path': 'path', 'IsEnabled': 'isEnabled', 'RunOnStartup': 'runOnStartup', 'LogFilePath': 'logFilePath'}
    return {pascal.get(key, key): value for key, value in item.items()}


def create_template(directory: Union[str, Path], file_name: str = "sync-settings.json") -> Path:
    """Write a template settings file into ``directory``.

    Raises:
        ConfigurationError: If a settings file already exists there
    """
    target = Path(directory) / file_name
    if target.exists():
        raise ConfigurationError(f"Settings file already exists: {target}")

    data = template_settings().dict(by_alias=True)

    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, 'w', encoding='utf-8') as f:
            if target.suffix.lower() in ['.yaml', '.yml']:
                yaml.dump(data, f, default_flow_style=False, allow_unicode=True, sort_keys=False)
            else:
                json.dump(data, f, indent=2)
    except OSError as e:
        raise ConfigurationError(f"Failed to write template {target}: {e}") from e

    get_logger("create_template").info("Template settings created", file_path=str(target))
    return target
