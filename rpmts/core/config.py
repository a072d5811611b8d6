"""
Transaction configuration for rpmts.

Settings that rpm kept in process-wide statics (debug/stats switches, the
autorollback macro) live in a TransactionConfig handed to each
TransactionSet.

Config file format (optional, one setting per line):
    root_dir=/mnt/chroot
    autorollback=yes
    # Comments start with #
"""

import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)

# Default system config file
SYSTEM_CONFIG_FILE = Path("/etc/rpmts.conf")

# Package database location, relative to the root directory
DB_RELATIVE_PATH = Path("var/lib/rpmts/packages.db")

MOUNTS_FILE = Path("/proc/mounts")

# Maximum number of dependency suggestions kept per check()
MAX_SUGGESTS = 32

_TRUE_VALUES = ('1', 'yes', 'true', 'on')
_FALSE_VALUES = ('0', 'no', 'false', 'off')


def get_db_path(root_dir: str = '/') -> Path:
    """Get the install database path below a root directory."""
    return Path(root_dir or '/') / DB_RELATIVE_PATH


@dataclass
class TransactionConfig:
    """Explicit configuration/diagnostics context of a transaction."""
    root_dir: str = '/'
    db_path: Optional[Path] = None
    solve_db_path: Optional[Path] = None
    autorollback: bool = False
    lazy_db_open: bool = True
    dbmode: str = 'r'
    sdbmode: str = 'r'
    debug: bool = False
    stats: bool = False
    mounts_file: Path = MOUNTS_FILE
    max_suggests: int = MAX_SUGGESTS

    def __post_init__(self):
        if self.db_path is not None:
            self.db_path = Path(self.db_path)
        if self.solve_db_path is not None:
            self.solve_db_path = Path(self.solve_db_path)
        self.mounts_file = Path(self.mounts_file)

    def get_db_path(self) -> Path:
        return self.db_path if self.db_path is not None else get_db_path(self.root_dir)

    @classmethod
    def from_file(cls, path: Path = SYSTEM_CONFIG_FILE, **overrides) -> 'TransactionConfig':
        """Load settings from a key=value file.

        A missing file gives the defaults. Unknown keys and bad values are
        logged and ignored.
        """
        values = _read_config_file(Path(path)) or {}
        kwargs = {}
        known = {f.name for f in fields(cls)}

        for key, raw in values.items():
            if key not in known:
                logger.warning(f"Ignoring unknown config key '{key}' in {path}")
                continue
            default = getattr(cls, key, None)
            try:
                kwargs[key] = _convert(raw, default)
            except ValueError:
                logger.warning(f"Ignoring bad value '{raw}' for '{key}' in {path}")

        kwargs.update(overrides)
        return cls(**kwargs)


def _convert(raw: str, default):
    if isinstance(default, bool):
        value = raw.lower()
        if value in _TRUE_VALUES:
            return True
        if value in _FALSE_VALUES:
            return False
        raise ValueError(raw)
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, Path) or default is None:
        return Path(raw).expanduser() if raw else None
    return raw


def _read_config_file(config_path: Path) -> Optional[Dict[str, str]]:
    """Read a key=value config file.

    Returns:
        Dict with config values, or None if file doesn't exist
    """
    if not config_path.exists():
        return None

    config = {}
    try:
        with open(config_path) as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith('#'):
                    continue
                if '=' in line:
                    key, value = line.split('=', 1)
                    config[key.strip()] = value.strip()
    except (OSError, IOError):
        return None

    return config
