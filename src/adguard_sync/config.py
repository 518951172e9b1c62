"""Configuration: instance descriptors, feature flags and app settings.

Values are read from an optional YAML file first and then overridden by
environment variables:

    Origin:
        ORIGIN_URL, ORIGIN_WEB_URL, ORIGIN_API_PATH (default: /control),
        ORIGIN_USERNAME, ORIGIN_PASSWORD, ORIGIN_COOKIE ("name=value"),
        ORIGIN_REQUEST_HEADERS ("key1:value1,key2:value2"),
        ORIGIN_INSECURE_SKIP_VERIFY

    Replicas (either a single replica or numbered replicas, not both):
        REPLICA_URL, REPLICA_USERNAME, ...        same suffixes as the origin,
                                                  plus REPLICA_AUTO_SETUP,
                                                  REPLICA_INTERFACE_NAME and
                                                  REPLICA_DHCP_SERVER_ENABLED
        REPLICA1_URL, REPLICA2_URL, ...           numbered replicas (id >= 1)

    Runtime:
        SYNC_INTERVAL_SECONDS     Seconds between scheduled passes (0 = no schedule)
        RUN_ON_START              Run a pass at startup (default: true)
        CONTINUE_ON_ERROR         Skip failed items instead of aborting (default: false)
        PRINT_CONFIG_ONLY         Print the masked config and exit
        REQUEST_TIMEOUT_SECONDS   Per-request timeout (default: 10)
        SHUTDOWN_TIMEOUT_SECONDS  Grace period for an in-flight pass (default: 5)
        API_PORT, API_USERNAME, API_PASSWORD
        FEATURES_*                e.g. FEATURES_DNS_REWRITES=false
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlparse

import yaml

logger = logging.getLogger(__name__)

DEFAULT_API_PATH = "/control"
DEFAULT_CONFIG_FILE = "~/.adguardhome-sync.yaml"
DEFAULT_REQUEST_TIMEOUT_SECONDS = 10.0
DEFAULT_SHUTDOWN_TIMEOUT_SECONDS = 5.0

_NUMBERED_REPLICA_URL_RE = re.compile(r"^REPLICA(\d+)_URL$")


class ConfigError(Exception):
    """Invalid or inconsistent configuration."""


# =============================================================================
# Utility Functions
# =============================================================================


def parse_bool(value: Any, *, default: bool = True) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}


def _parse_optional_bool(value: Any) -> Optional[bool]:
    if value is None or str(value).strip() == "":
        return None
    return parse_bool(value)


def _parse_int(name: str, value: Any) -> int:
    try:
        return int(str(value).strip())
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from e


def _parse_float(name: str, value: Any) -> float:
    try:
        return float(str(value).strip())
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {value!r}") from e


def _parse_headers(value: Any) -> Dict[str, str]:
    """Parse "key1:value1,key2:value2" (or a YAML mapping) into headers."""
    if not value:
        return {}
    if isinstance(value, dict):
        return {str(k): str(v) for k, v in value.items()}

    headers: Dict[str, str] = {}
    for raw_item in str(value).split(","):
        item = raw_item.strip()
        if not item:
            continue
        if ":" not in item:
            raise ConfigError(f"Invalid request header {item!r}, expected 'key:value'")
        key, val = item.split(":", 1)
        headers[key.strip()] = val.strip()
    return headers


def mask(value: str) -> str:
    """Mask a credential, keeping only its first and last character."""
    if not value:
        return value
    if len(value) < 3:
        return "*" * len(value)
    return f"{value[0]}{'*' * (len(value) - 2)}{value[-1]}"


# =============================================================================
# Instance
# =============================================================================


@dataclass(frozen=True)
class Instance:
    """Connection settings of one AdGuard Home instance."""

    url: str
    web_url: str = ""
    api_path: str = DEFAULT_API_PATH
    username: str = ""
    password: str = ""
    cookie: str = ""
    request_headers: Dict[str, str] = field(default_factory=dict)
    insecure_skip_verify: bool = False
    auto_setup: bool = False
    interface_name: Optional[str] = None
    dhcp_server_enabled: Optional[bool] = None

    @property
    def key(self) -> str:
        return f"{self.url}#{self.api_path}"

    @property
    def host(self) -> str:
        return urlparse(self.url).netloc or self.url

    @property
    def web_host(self) -> str:
        if not self.web_url:
            return self.host
        return urlparse(self.web_url).netloc or self.web_url

    @property
    def effective_web_url(self) -> str:
        return self.web_url or self.url

    @property
    def api_url(self) -> str:
        path = self.api_path.strip("/") or DEFAULT_API_PATH.strip("/")
        return f"{self.url.rstrip('/')}/{path}"

    def cookie_pair(self) -> Optional[Tuple[str, str]]:
        parts = self.cookie.split("=") if self.cookie else []
        if len(parts) != 2:
            return None
        return parts[0], parts[1]

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Instance:
        data = data or {}
        return cls(
            url=str(data.get("url") or "").strip(),
            web_url=str(data.get("webURL") or "").strip(),
            api_path=str(data.get("apiPath") or DEFAULT_API_PATH).strip(),
            username=str(data.get("username") or ""),
            password=str(data.get("password") or ""),
            cookie=str(data.get("cookie") or ""),
            request_headers=_parse_headers(data.get("requestHeaders")),
            insecure_skip_verify=parse_bool(data.get("insecureSkipVerify"), default=False),
            auto_setup=parse_bool(data.get("autoSetup"), default=False),
            interface_name=data.get("interfaceName") or None,
            dhcp_server_enabled=_parse_optional_bool(data.get("dhcpServerEnabled")),
        )

    def with_env(self, prefix: str, environ: Mapping[str, str]) -> Instance:
        """Return a copy with every ``<prefix><FIELD>`` variable applied."""
        changes: Dict[str, Any] = {}
        for suffix, name in (
            ("URL", "url"),
            ("WEB_URL", "web_url"),
            ("API_PATH", "api_path"),
            ("USERNAME", "username"),
            ("PASSWORD", "password"),
            ("COOKIE", "cookie"),
        ):
            if f"{prefix}{suffix}" in environ:
                changes[name] = environ[f"{prefix}{suffix}"].strip()
        if f"{prefix}REQUEST_HEADERS" in environ:
            changes["request_headers"] = _parse_headers(environ[f"{prefix}REQUEST_HEADERS"])
        if f"{prefix}INSECURE_SKIP_VERIFY" in environ:
            changes["insecure_skip_verify"] = parse_bool(environ[f"{prefix}INSECURE_SKIP_VERIFY"])
        if f"{prefix}AUTO_SETUP" in environ:
            changes["auto_setup"] = parse_bool(environ[f"{prefix}AUTO_SETUP"])
        if f"{prefix}INTERFACE_NAME" in environ:
            changes["interface_name"] = environ[f"{prefix}INTERFACE_NAME"].strip() or None
        if f"{prefix}DHCP_SERVER_ENABLED" in environ:
            changes["dhcp_server_enabled"] = _parse_optional_bool(environ[f"{prefix}DHCP_SERVER_ENABLED"])

        instance = replace(self, **changes)
        if not instance.api_path:
            instance = replace(instance, api_path=DEFAULT_API_PATH)
        return instance

    def to_dict(self, masked: bool = True) -> Dict[str, Any]:
        out: Dict[str, Any] = {"url": self.url, "webURL": self.effective_web_url, "apiPath": self.api_path}
        if self.username:
            out["username"] = mask(self.username) if masked else self.username
        if self.password:
            out["password"] = mask(self.password) if masked else self.password
        if self.cookie:
            out["cookie"] = mask(self.cookie) if masked else self.cookie
        if self.request_headers:
            out["requestHeaders"] = dict(self.request_headers)
        out["insecureSkipVerify"] = self.insecure_skip_verify
        out["autoSetup"] = self.auto_setup
        if self.interface_name is not None:
            out["interfaceName"] = self.interface_name
        if self.dhcp_server_enabled is not None:
            out["dhcpServerEnabled"] = self.dhcp_server_enabled
        return out


# =============================================================================
# Features
# =============================================================================

# flag -> (YAML path below "features", environment variable)
_FEATURE_KEYS: Dict[str, Tuple[Tuple[str, ...], str]] = {
    "general_settings": (("generalSettings",), "FEATURES_GENERAL_SETTINGS"),
    "query_log_config": (("queryLogConfig",), "FEATURES_QUERY_LOG_CONFIG"),
    "stats_config": (("statsConfig",), "FEATURES_STATS_CONFIG"),
    "client_settings": (("clientSettings",), "FEATURES_CLIENT_SETTINGS"),
    "services": (("services",), "FEATURES_SERVICES"),
    "filters": (("filters",), "FEATURES_FILTERS"),
    "theme": (("theme",), "FEATURES_THEME"),
    "tls_config": (("tlsConfig",), "FEATURES_TLS_CONFIG"),
    "dns_access_lists": (("dns", "accessLists"), "FEATURES_DNS_ACCESS_LISTS"),
    "dns_server_config": (("dns", "serverConfig"), "FEATURES_DNS_SERVER_CONFIG"),
    "dns_rewrites": (("dns", "rewrites"), "FEATURES_DNS_REWRITES"),
    "dhcp_server_config": (("dhcp", "serverConfig"), "FEATURES_DHCP_SERVER_CONFIG"),
    "dhcp_static_leases": (("dhcp", "staticLeases"), "FEATURES_DHCP_STATIC_LEASES"),
}


@dataclass(frozen=True)
class Features:
    """Which resource types get synchronized. Everything is on by default."""

    general_settings: bool = True
    query_log_config: bool = True
    stats_config: bool = True
    client_settings: bool = True
    services: bool = True
    filters: bool = True
    theme: bool = True
    tls_config: bool = True
    dns_access_lists: bool = True
    dns_server_config: bool = True
    dns_rewrites: bool = True
    dhcp_server_config: bool = True
    dhcp_static_leases: bool = True

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Features:
        data = data or {}
        values: Dict[str, bool] = {}
        for name, (path, _) in _FEATURE_KEYS.items():
            node: Any = data
            for part in path:
                node = node.get(part) if isinstance(node, dict) else None
            values[name] = parse_bool(node, default=True)
        return cls(**values)

    def with_env(self, environ: Mapping[str, str]) -> Features:
        changes = {
            name: parse_bool(environ[env_name])
            for name, (_, env_name) in _FEATURE_KEYS.items()
            if env_name in environ
        }
        return replace(self, **changes)

    def disabled(self) -> List[str]:
        return [f.name for f in fields(self) if not getattr(self, f.name)]

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for name, (path, _) in _FEATURE_KEYS.items():
            node = out
            for part in path[:-1]:
                node = node.setdefault(part, {})
            node[path[-1]] = getattr(self, name)
        return out


# =============================================================================
# App Config
# =============================================================================


@dataclass(frozen=True)
class ApiConfig:
    port: int = 0
    username: str = ""
    password: str = ""

    @property
    def auth_enabled(self) -> bool:
        return bool(self.username and self.password)


@dataclass(frozen=True)
class Config:
    origin: Instance
    replicas: Tuple[Instance, ...] = ()
    interval: int = 0
    run_on_start: bool = True
    continue_on_error: bool = False
    print_config_only: bool = False
    api: ApiConfig = field(default_factory=ApiConfig)
    features: Features = field(default_factory=Features)
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS
    shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT_SECONDS

    def unique_replicas(self) -> List[Instance]:
        """Replicas de-duplicated by URL and API path, ordered by that key."""
        dedup: Dict[str, Instance] = {}
        for replica in self.replicas:
            if replica.url:
                dedup[replica.key] = replica
        return [dedup[k] for k in sorted(dedup)]

    def validate(self) -> List[str]:
        errors = []
        if not self.origin.url:
            errors.append("origin URL is required (ORIGIN_URL)")
        if not self.unique_replicas():
            errors.append("no replicas configured (REPLICA_URL or REPLICA1_URL, ...)")
        if self.interval < 0:
            errors.append("SYNC_INTERVAL_SECONDS must not be negative")
        if self.api.port < 0 or self.api.port > 65535:
            errors.append(f"API_PORT out of range: {self.api.port}")
        return errors

    def to_dict(self, masked: bool = True) -> Dict[str, Any]:
        api: Dict[str, Any] = {"port": self.api.port}
        if self.api.username:
            api["username"] = mask(self.api.username) if masked else self.api.username
        if self.api.password:
            api["password"] = mask(self.api.password) if masked else self.api.password
        return {
            "origin": self.origin.to_dict(masked),
            "replicas": [r.to_dict(masked) for r in self.unique_replicas()],
            "interval": self.interval,
            "runOnStart": self.run_on_start,
            "continueOnError": self.continue_on_error,
            "requestTimeout": self.request_timeout,
            "shutdownTimeout": self.shutdown_timeout,
            "api": api,
            "features": self.features.to_dict(),
        }

    def dump(self) -> str:
        """Masked YAML rendering for PRINT_CONFIG_ONLY and debug logs."""
        return yaml.safe_dump(self.to_dict(masked=True), sort_keys=False)


# =============================================================================
# Loading
# =============================================================================


def _read_yaml(path: Optional[str], environ: Mapping[str, str]) -> Dict[str, Any]:
    explicit = path or environ.get("CONFIG_FILE")
    config_path = Path(os.path.expanduser(explicit or DEFAULT_CONFIG_FILE))
    if not config_path.exists():
        if explicit:
            raise ConfigError(f"Config file {config_path} does not exist")
        return {}

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to load config from {config_path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping")
    logger.info(f"Loaded config file {config_path}")
    return data


def _load_replicas(data: Dict[str, Any], environ: Mapping[str, str]) -> Tuple[Instance, ...]:
    single: Optional[Instance] = None
    if data.get("replica"):
        single = Instance.from_dict(data["replica"])
    if any(k.startswith("REPLICA_") for k in environ):
        single = (single or Instance(url="")).with_env("REPLICA_", environ)
    if single is not None and not single.url and not single.username:
        single = None

    replicas = [Instance.from_dict(r) for r in data.get("replicas") or []]

    numbered: Dict[int, str] = {}
    for name, value in environ.items():
        match = _NUMBERED_REPLICA_URL_RE.match(name)
        if match:
            replica_id = int(match.group(1))
            if replica_id <= 0:
                raise ConfigError(f"numbered replica env variables must have a number id >= 1, got {name}")
            numbered[replica_id] = value.strip()

    if single is not None and (replicas or numbered):
        raise ConfigError(
            "mixed replica config in use. "
            "Do not use single replica and numbered (list) replica config combined"
        )
    if single is not None:
        return (single,)

    for replica_id in sorted(numbered):
        if replica_id > len(replicas):
            replicas.append(Instance(url=numbered[replica_id]))
        else:
            replicas[replica_id - 1] = replace(replicas[replica_id - 1], url=numbered[replica_id])

    return tuple(r.with_env(f"REPLICA{i}_", environ) for i, r in enumerate(replicas, start=1))


def load_config(path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> Config:
    """Build the effective config from the YAML file and the environment."""
    environ = os.environ if environ is None else environ
    data = _read_yaml(path, environ)

    # The origin is never set up automatically.
    origin = replace(Instance.from_dict(data.get("origin")).with_env("ORIGIN_", environ), auto_setup=False)

    api_data = data.get("api") or {}
    api = ApiConfig(
        port=_parse_int("API_PORT", environ.get("API_PORT", api_data.get("port") or 0)),
        username=str(environ.get("API_USERNAME", api_data.get("username") or "")),
        password=str(environ.get("API_PASSWORD", api_data.get("password") or "")),
    )

    return Config(
        origin=origin,
        replicas=_load_replicas(data, environ),
        interval=_parse_int(
            "SYNC_INTERVAL_SECONDS", environ.get("SYNC_INTERVAL_SECONDS", data.get("interval") or 0)
        ),
        run_on_start=parse_bool(environ.get("RUN_ON_START", data.get("runOnStart")), default=True),
        continue_on_error=parse_bool(
            environ.get("CONTINUE_ON_ERROR", data.get("continueOnError")), default=False
        ),
        print_config_only=parse_bool(
            environ.get("PRINT_CONFIG_ONLY", data.get("printConfigOnly")), default=False
        ),
        api=api,
        features=Features.from_dict(data.get("features")).with_env(environ),
        request_timeout=_parse_float(
            "REQUEST_TIMEOUT_SECONDS",
            environ.get("REQUEST_TIMEOUT_SECONDS", data.get("requestTimeout") or DEFAULT_REQUEST_TIMEOUT_SECONDS),
        ),
        shutdown_timeout=_parse_float(
            "SHUTDOWN_TIMEOUT_SECONDS",
            environ.get(
                "SHUTDOWN_TIMEOUT_SECONDS", data.get("shutdownTimeout") or DEFAULT_SHUTDOWN_TIMEOUT_SECONDS
            ),
        ),
    )
