"""
Standard locations for sanrun's own files.

Default base directory: ~/.sanrun/ (override with SANRUN_HOME). Report and
build directories are not kept here: they belong to the project under test
and are configured per invocation.
"""

import os
from pathlib import Path


# Environment variable to override base directory
SANRUN_HOME_ENV = "SANRUN_HOME"

DEFAULT_REPORT_ROOT = "./.output"
DEFAULT_BUILD_ROOT = "./target/sanrun"


def get_base_dir() -> Path:
    """
    Get the sanrun base directory.

    Priority:
    1. SANRUN_HOME environment variable
    2. ~/.sanrun/ (default)
    """
    env_home = os.environ.get(SANRUN_HOME_ENV)
    if env_home:
        return Path(env_home).expanduser().resolve()
    return Path.home() / ".sanrun"


def ensure_base_dir() -> Path:
    base = get_base_dir()
    base.mkdir(parents=True, exist_ok=True)
    return base


def get_config_file() -> Path:
    return get_base_dir() / "config.json"


def get_log_file() -> Path:
    return get_base_dir() / "sanrun.log"
