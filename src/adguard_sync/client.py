"""AdGuard Home control API client.

One client per instance. Every call is synchronous, uses the configured
timeout and is never retried; a failed call raises ``AdGuardClientError`` and
recovery is left to the next sync pass.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import requests
from requests.auth import HTTPBasicAuth

from adguard_sync.config import Instance
from adguard_sync.models import (
    AccessList,
    BlockedServicesSchedule,
    Client,
    DhcpStaticLease,
    DhcpStatus,
    DNSConfig,
    Filter,
    FilterStatus,
    ProfileInfo,
    QueryLogConfig,
    RewriteEntry,
    SafeSearchConfig,
    ServerStatus,
    StatsConfig,
    TlsConfig,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0

_INSTALL_LOCATIONS = ("/install.html", "/control/install.html")


# =============================================================================
# Errors
# =============================================================================


class AdGuardClientError(Exception):
    """A control API call failed (transport error or non-200 response)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SetupNeededError(AdGuardClientError):
    """The instance redirects to its install wizard and has not been set up yet."""

    def __init__(self, message: str = "setup needed"):
        super().__init__(message, status_code=302)


def _detailed_error(response: requests.Response, cause: str = "") -> str:
    message = f"{response.status_code} {response.reason or ''}".strip()
    body = (response.text or "").strip()
    if body:
        message += f"({body})"
    if cause:
        message += f": {cause}"
    return message


class HostLogger(logging.LoggerAdapter):
    """Prefixes every message with the instance host."""

    def process(self, msg, kwargs):
        return f"[{self.extra['host']}] {msg}", kwargs


# =============================================================================
# Client
# =============================================================================


class AdGuardHomeClient:
    """Typed access to one AdGuard Home instance."""

    def __init__(self, instance: Instance, timeout: float = DEFAULT_TIMEOUT_SECONDS):
        self._instance = instance
        self._url = instance.api_url
        self._timeout = timeout
        self.log = HostLogger(logger, {"host": instance.host})
        self.version = ""

        self._session = requests.Session()
        self._session.verify = not instance.insecure_skip_verify
        if instance.request_headers:
            self._session.headers.update(instance.request_headers)

        cookie = instance.cookie_pair()
        if cookie is not None:
            self._session.cookies.set(cookie[0], cookie[1])
        elif instance.username and instance.password:
            self._session.auth = HTTPBasicAuth(instance.username, instance.password)

    @property
    def host(self) -> str:
        return self._instance.host

    def _endpoint(self, path: str) -> str:
        return f"{self._url}/{path.lstrip('/')}"

    def _call(self, method: str, path: str, payload: Any = None, authenticated: bool = True) -> requests.Response:
        url = self._endpoint(path)
        kwargs: Dict[str, Any] = {"timeout": self._timeout, "allow_redirects": False}
        if payload is not None:
            kwargs["json"] = payload

        if authenticated:
            send = getattr(self._session, method)
        else:
            send = getattr(requests, method)
            kwargs["headers"] = dict(self._instance.request_headers)
            kwargs["verify"] = not self._instance.insecure_skip_verify

        self.log.debug(f"{method.upper()} {path}")
        try:
            response = send(url, **kwargs)
        except requests.exceptions.RequestException as e:
            raise AdGuardClientError(f"{method.upper()} {path}: {e}") from e

        if response.status_code == 302 and response.headers.get("Location") in _INSTALL_LOCATIONS:
            raise SetupNeededError()
        if response.status_code in (401, 403):
            self.log.error(
                f"there seems to be an authentication issue ({response.status_code}) - "
                "please check the configured credentials"
            )
        if response.status_code != 200:
            raise AdGuardClientError(_detailed_error(response), status_code=response.status_code)
        return response

    def _get(self, path: str) -> Any:
        response = self._call("get", path)
        if not (response.text or "").strip():
            return None
        try:
            return response.json()
        except ValueError as e:
            raise AdGuardClientError(_detailed_error(response, f"invalid JSON: {e}"), response.status_code) from e

    def _post(self, path: str, payload: Any = None) -> None:
        self._call("post", path, payload)

    def _put(self, path: str, payload: Any = None) -> None:
        self._call("put", path, payload)

    # -------------------------------------------------------------------------
    # Status and setup
    # -------------------------------------------------------------------------

    def status(self) -> ServerStatus:
        status = ServerStatus.from_dict(self._get("/status"))
        self.version = status.version
        return status

    def setup(self) -> None:
        """Run the first-start install wizard with the configured credentials."""
        self.log.info("Setup new AdGuard Home instance")
        payload = {
            "web": {"ip": "0.0.0.0", "port": 3000, "status": "", "can_autofix": False},
            "dns": {"ip": "0.0.0.0", "port": 53, "status": "", "can_autofix": False},
            "username": self._instance.username,
            "password": self._instance.password,
        }
        self._call("post", "/install/configure", payload, authenticated=False)

    def toggle_protection(self, enable: bool) -> None:
        self.log.info(f"Toggle protection: enabled={enable}")
        self._post("/dns_config", {"protection_enabled": enable})

    # -------------------------------------------------------------------------
    # DNS rewrites
    # -------------------------------------------------------------------------

    def rewrite_list(self) -> List[RewriteEntry]:
        data = self._get("/rewrite/list") or []
        entries = []
        for item in data:
            if not isinstance(item, dict):
                self.log.warning(f"Skipping malformed rewrite entry: {item}")
                continue
            entries.append(RewriteEntry.from_dict(item))
        return entries

    def add_rewrite(self, entry: RewriteEntry) -> None:
        self.log.info(f"Add rewrite entry: {entry.domain} -> {entry.answer}")
        self._post("/rewrite/add", entry.to_dict())

    def delete_rewrite(self, entry: RewriteEntry) -> None:
        self.log.info(f"Delete rewrite entry: {entry.domain} -> {entry.answer}")
        self._post("/rewrite/delete", entry.to_dict())

    # -------------------------------------------------------------------------
    # Filtering
    # -------------------------------------------------------------------------

    def filtering(self) -> FilterStatus:
        return FilterStatus.from_dict(self._get("/filtering/status"))

    def add_filter(self, whitelist: bool, f: Filter) -> None:
        self.log.info(f"Add filter: url={f.url} whitelist={whitelist} enabled={f.enabled}")
        self._post("/filtering/add_url", {"name": f.name, "url": f.url, "whitelist": whitelist})

    def delete_filter(self, whitelist: bool, f: Filter) -> None:
        self.log.info(f"Delete filter: url={f.url} whitelist={whitelist}")
        self._post("/filtering/remove_url", {"url": f.url, "whitelist": whitelist})

    def update_filter(self, whitelist: bool, f: Filter) -> None:
        self.log.info(f"Update filter: url={f.url} whitelist={whitelist} enabled={f.enabled}")
        self._post(
            "/filtering/set_url",
            {
                "url": f.url,
                "whitelist": whitelist,
                "data": {"name": f.name, "url": f.url, "enabled": f.enabled},
            },
        )

    def refresh_filters(self, whitelist: bool) -> None:
        self.log.info(f"Refresh filters: whitelist={whitelist}")
        self._post("/filtering/refresh", {"whitelist": whitelist})

    def set_custom_rules(self, rules: List[str]) -> None:
        self.log.info(f"Set user rules: {len(rules)} rules")
        self._post("/filtering/set_rules", {"rules": list(rules)})

    def toggle_filtering(self, enabled: bool, interval: int) -> None:
        self.log.info(f"Toggle filtering: enabled={enabled} interval={interval}")
        self._post("/filtering/config", {"enabled": enabled, "interval": interval})

    # -------------------------------------------------------------------------
    # Toggles and general settings
    # -------------------------------------------------------------------------

    def _toggle_status(self, mode: str) -> bool:
        data = self._get(f"/{mode}/status") or {}
        return bool(data.get("enabled", False))

    def _toggle(self, mode: str, enable: bool) -> None:
        self.log.info(f"Toggle {mode}: enabled={enable}")
        self._post(f"/{mode}/{'enable' if enable else 'disable'}")

    def safe_browsing(self) -> bool:
        return self._toggle_status("safebrowsing")

    def toggle_safe_browsing(self, enable: bool) -> None:
        self._toggle("safebrowsing", enable)

    def parental(self) -> bool:
        return self._toggle_status("parental")

    def toggle_parental(self, enable: bool) -> None:
        self._toggle("parental", enable)

    def safe_search_config(self) -> SafeSearchConfig:
        return SafeSearchConfig.from_dict(self._get("/safesearch/status"))

    def set_safe_search_config(self, config: SafeSearchConfig) -> None:
        self.log.info(f"Set safe search settings: enabled={config.enabled}")
        self._put("/safesearch/settings", config.to_dict())

    def profile_info(self) -> ProfileInfo:
        return ProfileInfo.from_dict(self._get("/profile"))

    def set_profile_info(self, profile: ProfileInfo) -> None:
        self.log.info(f"Set profile: language={profile.language} theme={profile.theme}")
        self._put("/profile/update", profile.to_dict())

    # -------------------------------------------------------------------------
    # Blocked services
    # -------------------------------------------------------------------------

    def blocked_services_schedule(self) -> BlockedServicesSchedule:
        return BlockedServicesSchedule.from_dict(self._get("/blocked_services/get"))

    def set_blocked_services_schedule(self, schedule: BlockedServicesSchedule) -> None:
        self.log.info(f"Set blocked services schedule: {schedule.services_string()}")
        self._put("/blocked_services/update", schedule.to_dict())

    # -------------------------------------------------------------------------
    # Clients
    # -------------------------------------------------------------------------

    def clients(self) -> List[Client]:
        data = self._get("/clients") or {}
        return [Client.from_dict(c) for c in data.get("clients") or []]

    def add_client(self, client: Client) -> None:
        self.log.info(f"Add client: {client.name}")
        self._post("/clients/add", client.to_dict())

    def update_client(self, client: Client) -> None:
        self.log.info(f"Update client: {client.name}")
        self._post("/clients/update", {"name": client.name, "data": client.to_dict()})

    def delete_client(self, client: Client) -> None:
        self.log.info(f"Delete client: {client.name}")
        self._post("/clients/delete", {"name": client.name})

    # -------------------------------------------------------------------------
    # Query log and statistics
    # -------------------------------------------------------------------------

    def query_log_config(self) -> QueryLogConfig:
        return QueryLogConfig.from_dict(self._get("/querylog/config"))

    def set_query_log_config(self, config: QueryLogConfig) -> None:
        self.log.info(
            f"Set query log config: enabled={config.enabled} interval={config.interval} "
            f"anonymize_client_ip={config.anonymize_client_ip}"
        )
        self._put("/querylog/config/update", config.to_dict())

    def stats_config(self) -> StatsConfig:
        return StatsConfig.from_dict(self._get("/stats/config"))

    def set_stats_config(self, config: StatsConfig) -> None:
        self.log.info(f"Set stats config: enabled={config.enabled} interval={config.interval}")
        self._put("/stats/config/update", config.to_dict())

    # -------------------------------------------------------------------------
    # DNS server config and access list
    # -------------------------------------------------------------------------

    def access_list(self) -> AccessList:
        return AccessList.from_dict(self._get("/access/list"))

    def set_access_list(self, access_list: AccessList) -> None:
        self.log.info("Set access list")
        self._post("/access/set", access_list.to_dict())

    def dns_config(self) -> DNSConfig:
        return DNSConfig.from_dict(self._get("/dns_info"))

    def set_dns_config(self, config: DNSConfig) -> None:
        self.log.info("Set DNS server config")
        self._post("/dns_config", config.to_dict())

    # -------------------------------------------------------------------------
    # DHCP
    # -------------------------------------------------------------------------

    def dhcp_config(self) -> DhcpStatus:
        return DhcpStatus.from_dict(self._get("/dhcp/status"))

    def set_dhcp_config(self, config: DhcpStatus) -> None:
        self.log.info("Set DHCP server config")
        self._post("/dhcp/set_config", config.to_config_dict())

    def add_dhcp_static_lease(self, lease: DhcpStaticLease) -> None:
        self.log.info(f"Add static DHCP lease: mac={lease.mac} ip={lease.ip} hostname={lease.hostname}")
        self._post("/dhcp/add_static_lease", lease.to_dict())

    def delete_dhcp_static_lease(self, lease: DhcpStaticLease) -> None:
        self.log.info(f"Delete static DHCP lease: mac={lease.mac} ip={lease.ip} hostname={lease.hostname}")
        self._post("/dhcp/remove_static_lease", lease.to_dict())

    # -------------------------------------------------------------------------
    # TLS
    # -------------------------------------------------------------------------

    def tls_config(self) -> TlsConfig:
        return TlsConfig.from_dict(self._get("/tls/status"))

    def set_tls_config(self, config: TlsConfig) -> None:
        self.log.info(f"Set TLS config: enabled={config.enabled} server_name={config.server_name}")
        self._post("/tls/configure", config.to_dict())
