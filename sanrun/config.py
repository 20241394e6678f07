# sanrun/config.py
import json
import logging
import os
from typing import Any, Dict, Optional

from sanrun.paths import DEFAULT_BUILD_ROOT, DEFAULT_REPORT_ROOT, ensure_base_dir, get_config_file

logger = logging.getLogger("sanrun.config")

DEFAULT_CONFIG: Dict[str, Any] = {
    "report_root": DEFAULT_REPORT_ROOT,
    "build_root": DEFAULT_BUILD_ROOT,
    "workspace": ".",
    "fail_fast": False,
    "timeout": None,          # applies to every mode when set
    "mode_timeouts": {},      # per-mode override, seconds
    "modes": None,            # names to run; None runs the whole catalog
    "catalog": None,          # mode definitions replacing the built-in catalog
    "cargo_command": ["cargo"],
    "profile": "debug",
    "test_args": ["--lib"],
    "artifact_pattern": "*",
    "fresh_build": True,
    "build_timeout": None,
    "host_triple": None,
    "log_to_file": True,
}


class SanrunConfigError(Exception):
    """Custom exception for sanrun configuration errors."""
    pass


class SanrunConfig:
    def __init__(self, **kwargs):
        data = json.loads(json.dumps(DEFAULT_CONFIG))
        data.update(kwargs)
        self._data = data

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def __getattr__(self, name: str) -> Any:
        if name == "_data":
            raise AttributeError(name)
        if name in self._data:
            return self._data[name]
        raise AttributeError(f"'SanrunConfig' object has no attribute '{name}'")

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "_data":
            super().__setattr__(name, value)
        else:
            self._data[name] = value

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._data)

    def validate(self) -> "SanrunConfig":
        """Check the value types that would otherwise fail deep inside a run."""
        for key in ("timeout", "build_timeout"):
            value = self._data.get(key)
            if value is not None and (isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0):
                raise SanrunConfigError(f"'{key}' must be a positive number or null")
        timeouts = self._data.get("mode_timeouts") or {}
        if not isinstance(timeouts, dict):
            raise SanrunConfigError("'mode_timeouts' must be an object")
        for name, value in timeouts.items():
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise SanrunConfigError(f"timeout for mode '{name}' must be a positive number")
        for key in ("cargo_command", "test_args"):
            value = self._data.get(key)
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                raise SanrunConfigError(f"'{key}' must be a list of strings")
        if not self._data.get("cargo_command"):
            raise SanrunConfigError("'cargo_command' must not be empty")
        modes = self._data.get("modes")
        if modes is not None and (not isinstance(modes, list) or not all(isinstance(m, str) for m in modes)):
            raise SanrunConfigError("'modes' must be a list of mode names or null")
        unknown = set(self._data) - set(DEFAULT_CONFIG)
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {', '.join(sorted(unknown))}")
        return self

    @classmethod
    def load(cls, path: Optional[str] = None) -> "SanrunConfig":
        """
        Load configuration from path, or from <SANRUN_HOME>/config.json.

        The default file is created with default values when missing; an
        explicitly named file must exist.
        """
        if path is None:
            try:
                ensure_base_dir()
            except OSError as e:
                raise SanrunConfigError(f"Cannot create sanrun home directory: {e}")
            config_path = str(get_config_file())
            if not os.path.exists(config_path):
                cfg = cls()
                cfg.save(config_path)
                return cfg
        else:
            config_path = os.path.expanduser(path)
            if not os.path.exists(config_path):
                raise SanrunConfigError(f"Config file not found: {config_path}")

        try:
            with open(config_path, "r") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise SanrunConfigError(f"Failed to load config from {config_path}: {e}")
        if not isinstance(data, dict):
            raise SanrunConfigError(f"Config file {config_path} must hold a JSON object")
        logger.debug(f"Loaded config from {config_path}")
        return cls(**data)

    def save(self, path: Optional[str] = None) -> None:
        config_path = os.path.expanduser(path) if path else str(get_config_file())
        try:
            os.makedirs(os.path.dirname(os.path.abspath(config_path)), exist_ok=True)
            with open(config_path, "w") as f:
                json.dump(self._data, f, indent=2)
        except OSError as e:
            raise SanrunConfigError(f"Failed to save sanrun config: {e}")
