"""
Typed run configuration.

Values are merged once at startup from, in increasing precedence: built-in
defaults, a YAML file, CLAT_* environment variables and ``key=value``
command-line overrides. Keys use the kebab-case spelling of the YAML file
(``clat-dev``, ``v4-defaultroute-mtu``, ...).
"""

import ipaddress
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

import yaml

from clat.addrmath import parse_ipv4, parse_ipv6, parse_ipv6_prefix, format_ipv6
from clat.errors import ConfigError, InvalidAddress


logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "/etc/clatd.yaml"
ENV_PREFIX = "CLAT_"


@dataclass
class ClatConfig:
    """Resolved configuration for one run."""
    clat_dev: str = "clat"
    clat_v4_addr: ipaddress.IPv4Address = ipaddress.IPv4Address("192.0.0.1")
    clat_v6_addr: Optional[ipaddress.IPv6Address] = None
    dns64_servers: List[str] = field(default_factory=list)
    cmd_ip: str = "ip"
    cmd_ip6tables: str = "ip6tables"
    cmd_sysctl: str = "sysctl"
    cmd_tayga: str = "tayga"
    forwarding_enable: bool = True
    ip6tables_enable: bool = True
    proxynd_enable: bool = True
    plat_dev: Optional[str] = None
    plat_prefix: Optional[ipaddress.IPv6Network] = None
    script_up: Optional[str] = None
    script_down: Optional[str] = None
    tayga_conffile: Optional[Path] = None
    tayga_v4_addr: ipaddress.IPv4Address = ipaddress.IPv4Address("192.0.0.2")
    v4_conncheck_enable: bool = True
    v4_conncheck_delay: int = 10
    v4_defaultroute_enable: bool = True
    v4_defaultroute_replace: bool = False
    v4_defaultroute_metric: int = 2048
    v4_defaultroute_mtu: int = 1260
    v4_defaultroute_advmss: int = 0

    @property
    def advmss(self) -> int:
        """Advertised MSS for the IPv4 default route (MTU minus 40 when unset)."""
        if self.v4_defaultroute_advmss:
            return self.v4_defaultroute_advmss
        return self.v4_defaultroute_mtu - 40

    def summary(self) -> Dict[str, str]:
        """Kebab-case key to display value, for the startup banner."""
        result = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, list):
                value = ', '.join(value) if value else None
            result[key_name(f.name)] = 'auto' if value is None else str(value)
        return result


# ---------------------------------------------------------------------------
# Value converters
# ---------------------------------------------------------------------------

def to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ('1', 'yes', 'true', 'on'):
        return True
    if text in ('0', 'no', 'false', 'off'):
        return False
    raise ValueError(f"'{value}' is not a boolean")


def to_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"'{value}' is not an integer")
    result = int(str(value).strip())
    if result < 0:
        raise ValueError(f"{result} must not be negative")
    return result


def to_optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip().strip("'").strip('"')
    return text or None


def to_str(value: Any) -> str:
    text = to_optional_str(value)
    if not text:
        raise ValueError("value must not be empty")
    return text


def to_server_list(value: Any) -> List[str]:
    if value is None:
        return []
    items = value if isinstance(value, list) else str(value).split(',')
    servers = []
    for item in items:
        text = str(item).strip()
        if not text:
            continue
        # Validates and canonicalises, scope IDs included
        servers.append(str(ipaddress.ip_address(text)))
    return servers


def to_ipv6_address(value: Any) -> Optional[ipaddress.IPv6Address]:
    text = to_optional_str(value)
    if text is None:
        return None
    return ipaddress.IPv6Address(format_ipv6(parse_ipv6(text)))


def to_plat_prefix(value: Any) -> Optional[ipaddress.IPv6Network]:
    text = to_optional_str(value)
    if text is None:
        return None
    return parse_ipv6_prefix(text)


def to_path(value: Any) -> Optional[Path]:
    text = to_optional_str(value)
    return Path(text) if text else None


CONVERTERS: Dict[str, Callable[[Any], Any]] = {
    "clat_dev": to_str,
    "clat_v4_addr": parse_ipv4,
    "clat_v6_addr": to_ipv6_address,
    "dns64_servers": to_server_list,
    "cmd_ip": to_str,
    "cmd_ip6tables": to_str,
    "cmd_sysctl": to_str,
    "cmd_tayga": to_str,
    "forwarding_enable": to_bool,
    "ip6tables_enable": to_bool,
    "proxynd_enable": to_bool,
    "plat_dev": to_optional_str,
    "plat_prefix": to_plat_prefix,
    "script_up": to_optional_str,
    "script_down": to_optional_str,
    "tayga_conffile": to_path,
    "tayga_v4_addr": parse_ipv4,
    "v4_conncheck_enable": to_bool,
    "v4_conncheck_delay": to_int,
    "v4_defaultroute_enable": to_bool,
    "v4_defaultroute_replace": to_bool,
    "v4_defaultroute_metric": to_int,
    "v4_defaultroute_mtu": to_int,
    "v4_defaultroute_advmss": to_int,
}


def key_name(field_name: str) -> str:
    """``clat_v4_addr`` -> ``clat-v4-addr``."""
    return field_name.replace('_', '-')


def field_name(key: str) -> str:
    """``clat-v4-addr`` -> ``clat_v4_addr``."""
    return key.strip().lower().replace('-', '_')


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------

def load_config_file(config_path: str) -> Dict[str, Any]:
    """
    Load raw settings from a YAML config file.

    Args:
        config_path: Path to YAML config file.

    Returns:
        Mapping of kebab-case keys to raw values.
    """
    logger.info(f"Loading configuration from {config_path}")

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_file, 'r') as f:
        try:
            config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Cannot parse {config_path}: {e}") from e

    if not config:
        logger.warning("Config file is empty")
        return {}
    if not isinstance(config, dict):
        raise ConfigError(f"{config_path} must contain a mapping of settings")

    return config


def settings_from_env(environ: Mapping[str, str]) -> Dict[str, str]:
    """Collect CLAT_<KEY> variables (CLAT_PLAT_PREFIX -> plat-prefix)."""
    known = {f.name for f in fields(ClatConfig)}
    settings = {}
    for name, value in environ.items():
        if not name.startswith(ENV_PREFIX):
            continue
        candidate = name[len(ENV_PREFIX):].lower()
        if candidate in known:
            settings[key_name(candidate)] = value
    return settings


def parse_overrides(items: List[str]) -> Dict[str, str]:
    """Parse ``key=value`` command-line arguments."""
    settings = {}
    for item in items:
        if '=' not in item:
            raise ConfigError(f"Invalid override '{item}' (expected key=value)")
        key, value = item.split('=', 1)
        settings[key.strip()] = value
    return settings


def build_config(*sources: Mapping[str, Any]) -> ClatConfig:
    """
    Merge raw settings (later sources win) into a validated ClatConfig.

    Raises:
        ConfigError: unknown key or malformed value.
    """
    merged: Dict[str, Any] = {}
    for source in sources:
        for key, value in source.items():
            name = field_name(str(key))
            if name not in CONVERTERS:
                raise ConfigError(f"Unknown configuration key '{key}'")
            merged[name] = value

    values = {}
    for name, raw in merged.items():
        try:
            values[name] = CONVERTERS[name](raw)
        except (ValueError, InvalidAddress) as e:
            raise ConfigError(f"Invalid value for '{key_name(name)}': {e}") from e

    config = ClatConfig(**values)
    validate_config(config)
    return config


def validate_config(config: ClatConfig) -> None:
    """Cross-field checks."""
    if config.clat_v4_addr == config.tayga_v4_addr:
        raise ConfigError("clat-v4-addr and tayga-v4-addr must differ")
    if config.plat_dev is not None and config.plat_dev == config.clat_dev:
        raise ConfigError("plat-dev and clat-dev must differ")
    if not 68 <= config.v4_defaultroute_mtu <= 65535:
        raise ConfigError(f"v4-defaultroute-mtu {config.v4_defaultroute_mtu} out of range")
    if config.v4_defaultroute_advmss and config.v4_defaultroute_advmss > config.v4_defaultroute_mtu - 40:
        raise ConfigError("v4-defaultroute-advmss must not exceed v4-defaultroute-mtu minus 40")


def load_config(
    config_path: Optional[str] = None,
    overrides: Optional[List[str]] = None,
    environ: Optional[Mapping[str, str]] = None
) -> ClatConfig:
    """
    Resolve the configuration for one run.

    Args:
        config_path: YAML file; when None, CLAT_CONFIG_FILE or the default
                     path is used if it exists.
        overrides: ``key=value`` strings from the command line.
        environ: Environment mapping (defaults to os.environ).

    Returns:
        Validated ClatConfig.
    """
    environ = os.environ if environ is None else environ

    file_settings: Dict[str, Any] = {}
    if config_path:
        file_settings = load_config_file(config_path)
    else:
        default_path = environ.get(f"{ENV_PREFIX}CONFIG_FILE", DEFAULT_CONFIG_FILE)
        if Path(default_path).exists():
            file_settings = load_config_file(default_path)
        else:
            logger.debug(f"No config file at {default_path}, using defaults")

    return build_config(
        file_settings,
        settings_from_env(environ),
        parse_overrides(overrides or [])
    )
