import logging
import os
import tomllib
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Optional

import tomli_w

logger = logging.getLogger(__name__)

ELEVATION_MODES = ('auto', 'sudo', 'pkexec')


@dataclass(frozen=True)
class ChannelSettings:
    """Tunables for the privileged shell channel.

    Delays and timeouts are in seconds. The sudo values are short because no
    graphical prompt is expected once the credential is primed; the pkexec
    values leave room for a human to type into the polkit dialog.
    """

    elevation_mode: str = 'auto'
    shell: str = 'bash'
    sudo_binary: str = 'sudo'
    pkexec_binary: str = 'pkexec'
    sudo_settle_delay: float = 0.5
    pkexec_settle_delay: float = 2.0
    sudo_ready_timeout: float = 5.0
    pkexec_ready_timeout: float = 60.0
    poll_interval: float = 0.1
    # sudo's credential cache expires after 5 minutes by default
    keepalive_interval: float = 240.0
    close_timeout: float = 2.0


_ALLOWED_KEYS = {
    'elevation_mode': str,
    'shell': str,
    'sudo_binary': str,
    'pkexec_binary': str,
    'sudo_settle_delay': float,
    'pkexec_settle_delay': float,
    'sudo_ready_timeout': float,
    'pkexec_ready_timeout': float,
    'poll_interval': float,
    'keepalive_interval': float,
    'close_timeout': float,
    'log_file': str,
}


def _config_file_path() -> Path:
    xdg = os.getenv('XDG_CONFIG_HOME')
    if xdg:
        base = Path(xdg)
    else:
        base = Path.home() / '.config'
    return base / 'rootchannel' / 'config.toml'


def load_config() -> dict[str, Any]:
    """Load TOML configuration from XDG config path. Returns empty dict on error."""
    p = _config_file_path()
    if not p.exists():
        return {}
    try:
        with p.open('rb') as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning(f"Ignoring unreadable config file {p}: {e}")
        return {}
    return data if isinstance(data, dict) else {}


def save_config(cfg: dict[str, Any]) -> bool:
    """Save a flat config dict to the XDG config TOML file.

    Returns True on success, False otherwise.
    """
    p = _config_file_path()
    try:
        p.parent.mkdir(parents=True, exist_ok=True)
        with p.open('w', encoding='utf8') as f:
            f.write(tomli_w.dumps(cfg))
    except (OSError, TypeError) as e:
        logger.error(f"Failed to write config file {p}: {e}")
        return False
    return True


def _cast(key: str, value: Any) -> Any:
    """Convert ``value`` to the type registered for ``key``; raises ValueError."""
    expected = _ALLOWED_KEYS[key]
    if expected is float:
        cast_v: Any = float(value)
        if cast_v < 0:
            raise ValueError(f"{key} must not be negative")
        return cast_v
    cast_v = str(value)
    if key == 'elevation_mode' and cast_v not in ELEVATION_MODES:
        raise ValueError(f"elevation_mode must be one of {', '.join(ELEVATION_MODES)}")
    return cast_v


def set_config_value(key: str, value: Any) -> bool:
    """Set a single config key (with validation) and persist it.

    Returns True on success, False on validation or IO errors.
    """
    if key not in _ALLOWED_KEYS:
        return False
    try:
        cast_v = _cast(key, value)
    except (TypeError, ValueError):
        return False

    cfg = load_config() or {}
    cfg[key] = cast_v
    return save_config(cfg)


def get_allowed_keys() -> dict:
    return _ALLOWED_KEYS.copy()


def _code_default(key: str) -> Any:
    return getattr(ChannelSettings, key, None)


def get_effective_value(key: str, code_default: Any = None) -> dict[str, Any] | None:
    """Return a dict with env/config/code default/effective for a key.

    Returns None if key is not allowed.
    """
    if key not in _ALLOWED_KEYS:
        return None

    env = os.getenv('ROOTCHANNEL_' + key.upper())
    cfg = load_config() or {}
    cfg_val = cfg.get(key)
    eff_default = code_default if code_default is not None else _code_default(key)

    # precedence env > config > code_default; invalid layers are skipped
    effective: Any = eff_default
    for candidate in (env, cfg_val):
        if candidate is None:
            continue
        try:
            effective = _cast(key, candidate)
            break
        except (TypeError, ValueError):
            logger.warning(f"Ignoring invalid value for {key}: {candidate!r}")

    return {'env': env, 'config': cfg_val, 'code_default': eff_default, 'effective': effective}


def get_log_file(default: Optional[str] = None) -> Optional[Path]:
    eff = get_effective_value('log_file', code_default=default)
    value = eff['effective'] if eff else None
    return Path(value).expanduser() if value else None


def load_settings() -> ChannelSettings:
    """Build ChannelSettings from environment, config file and code defaults."""
    values: dict[str, Any] = {}
    for f in fields(ChannelSettings):
        eff = get_effective_value(f.name)
        if eff is not None:
            values[f.name] = eff['effective']
    return ChannelSettings(**values)
