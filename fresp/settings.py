"""
Persisted instrument addresses.

The addresses live in a small YAML file so they survive between runs:

    oscope_resource: 192.168.0.197:5025
    stimulus_resource: 192.168.0.198:5555

The file is ``~/.config/fresp/settings.yaml`` unless the ``FRESP_SETTINGS``
environment variable points elsewhere. Missing entries are filled in with the
defaults and written back, so a first run leaves an editable file behind.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import yaml


ENV_VAR = 'FRESP_SETTINGS'

DEFAULTS = {
    'oscope_resource': '192.168.0.197:5025',
    'stimulus_resource': '192.168.0.198:5555',
}


class SettingsError(RuntimeError):
    """The settings file could not be read, parsed or written."""


@dataclass
class Settings:
    oscope_resource: str
    stimulus_resource: str


def settings_path() -> Path:
    env = os.environ.get(ENV_VAR)
    if env:
        return Path(env).expanduser()
    return Path.home() / '.config' / 'fresp' / 'settings.yaml'


def load_settings(path: Optional[Union[str, Path]] = None) -> Settings:
    """
    Read the instrument addresses, creating or completing the file as needed.

    Parameters
    ----------
    path : str or Path, optional
        Settings file; defaults to ``settings_path()``

    Raises
    ------
    SettingsError
        If the file exists but is unreadable or malformed, or if defaults
        have to be written and the file cannot be created.
    """
    path = Path(path) if path is not None else settings_path()

    raw = {}
    if path.exists():
        try:
            with open(path, 'r') as fh:
                raw = yaml.safe_load(fh)
        except (OSError, yaml.YAMLError) as e:
            raise SettingsError(f"Unable to read settings from {path}: {e}") from e
        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise SettingsError(f"Settings file {path} must contain a mapping")

    missing = [key for key in DEFAULTS if not raw.get(key)]
    for key in missing:
        raw[key] = DEFAULTS[key]

    for key in DEFAULTS:
        if not isinstance(raw[key], str):
            raise SettingsError(f"Setting '{key}' in {path} must be a string, got {raw[key]!r}")

    if missing:
        save_settings(Settings(raw['oscope_resource'], raw['stimulus_resource']), path, extra=raw)

    return Settings(oscope_resource=raw['oscope_resource'], stimulus_resource=raw['stimulus_resource'])


def save_settings(settings: Settings, path: Optional[Union[str, Path]] = None, extra: Optional[dict] = None) -> None:
    """Write ``settings`` to the YAML file, keeping any unrelated keys in ``extra``."""
    path = Path(path) if path is not None else settings_path()
    data = dict(extra or {})
    data['oscope_resource'] = settings.oscope_resource
    data['stimulus_resource'] = settings.stimulus_resource

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as fh:
            yaml.safe_dump(data, fh, default_flow_style=False)
    except OSError as e:
        raise SettingsError(f"Unable to write settings to {path}: {e}") from e
