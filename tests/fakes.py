"""In-memory AdGuard Home stand-in shared by the action and worker tests."""

import logging
from dataclasses import replace
from typing import Dict, List, Optional, Set

from adguard_sync.client import AdGuardClientError, HostLogger, SetupNeededError
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

VERSION = "v0.107.43"


class FakeAdGuardClient:
    """Keeps instance state in memory and records every write as (operation, key).

    ``failures`` maps an operation name to the item keys whose write should
    fail ("*" fails every item). ``read_failures`` lists read operations that
    should fail.
    """

    def __init__(self, host: str = "replica:3000", **state):
        self.host = host
        self.log = HostLogger(logging.getLogger("tests.fake"), {"host": host})
        self.version = ""

        self.server_status = ServerStatus(version=VERSION, protection_enabled=True)
        self.needs_setup = False
        self.profile = ProfileInfo(name="admin", language="en", theme="auto")
        self.parental_enabled = False
        self.safe_search = SafeSearchConfig(enabled=False)
        self.safe_browsing_enabled = False
        self.dns = DNSConfig(upstream_dns=["9.9.9.9"])
        self.query_log = QueryLogConfig(enabled=True, interval=86400000, anonymize_client_ip=False, ignored=[])
        self.stats = StatsConfig(enabled=True, interval=86400000, ignored=[])
        self.rewrites: List[RewriteEntry] = []
        self.filter_status = FilterStatus(enabled=True, interval=24)
        self.schedule = BlockedServicesSchedule()
        self.client_list: List[Client] = []
        self.access = AccessList()
        self.dhcp = DhcpStatus()
        self.tls = TlsConfig(enabled=False)

        self.calls: List[tuple] = []
        self.failures: Dict[str, Set[str]] = {}
        self.read_failures: Set[str] = set()

        for name, value in state.items():
            setattr(self, name, value)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _read(self, op: str) -> None:
        if op in self.read_failures:
            raise AdGuardClientError(f"500 Internal Server Error: {op} failed", status_code=500)

    def _write(self, op: str, key: str = "") -> None:
        self.calls.append((op, key))
        failing = self.failures.get(op, set())
        if key in failing or "*" in failing:
            raise AdGuardClientError(f"500 Internal Server Error: {op} {key} failed", status_code=500)

    def ops(self) -> List[str]:
        return [op for op, _ in self.calls]

    # -------------------------------------------------------------------------
    # Status and setup
    # -------------------------------------------------------------------------

    def status(self) -> ServerStatus:
        self._read("status")
        if self.needs_setup:
            raise SetupNeededError()
        self.version = self.server_status.version
        return self.server_status

    def setup(self) -> None:
        self._write("setup")
        self.needs_setup = False

    def toggle_protection(self, enable: bool) -> None:
        self._write("toggle_protection", str(enable))
        self.server_status = replace(self.server_status, protection_enabled=enable)

    # -------------------------------------------------------------------------
    # General settings
    # -------------------------------------------------------------------------

    def profile_info(self) -> ProfileInfo:
        self._read("profile_info")
        return self.profile

    def set_profile_info(self, profile: ProfileInfo) -> None:
        self._write("set_profile_info", profile.language)
        self.profile = profile

    def parental(self) -> bool:
        self._read("parental")
        return self.parental_enabled

    def toggle_parental(self, enable: bool) -> None:
        self._write("toggle_parental", str(enable))
        self.parental_enabled = enable

    def safe_search_config(self) -> SafeSearchConfig:
        self._read("safe_search_config")
        return self.safe_search

    def set_safe_search_config(self, config: SafeSearchConfig) -> None:
        self._write("set_safe_search_config")
        self.safe_search = config

    def safe_browsing(self) -> bool:
        self._read("safe_browsing")
        return self.safe_browsing_enabled

    def toggle_safe_browsing(self, enable: bool) -> None:
        self._write("toggle_safe_browsing", str(enable))
        self.safe_browsing_enabled = enable

    # -------------------------------------------------------------------------
    # Whole-resource settings
    # -------------------------------------------------------------------------

    def dns_config(self) -> DNSConfig:
        self._read("dns_config")
        return self.dns

    def set_dns_config(self, config: DNSConfig) -> None:
        self._write("set_dns_config")
        self.dns = config

    def query_log_config(self) -> QueryLogConfig:
        self._read("query_log_config")
        return self.query_log

    def set_query_log_config(self, config: QueryLogConfig) -> None:
        self._write("set_query_log_config")
        self.query_log = config

    def stats_config(self) -> StatsConfig:
        self._read("stats_config")
        return self.stats

    def set_stats_config(self, config: StatsConfig) -> None:
        self._write("set_stats_config")
        self.stats = config

    def blocked_services_schedule(self) -> BlockedServicesSchedule:
        self._read("blocked_services_schedule")
        return self.schedule

    def set_blocked_services_schedule(self, schedule: BlockedServicesSchedule) -> None:
        self._write("set_blocked_services_schedule", schedule.services_string())
        self.schedule = schedule

    def access_list(self) -> AccessList:
        self._read("access_list")
        return self.access

    def set_access_list(self, access_list: AccessList) -> None:
        self._write("set_access_list")
        self.access = access_list

    def tls_config(self) -> TlsConfig:
        self._read("tls_config")
        return self.tls

    def set_tls_config(self, config: TlsConfig) -> None:
        self._write("set_tls_config")
        self.tls = config

    # -------------------------------------------------------------------------
    # Rewrites
    # -------------------------------------------------------------------------

    def rewrite_list(self) -> List[RewriteEntry]:
        self._read("rewrite_list")
        return list(self.rewrites)

    def add_rewrite(self, entry: RewriteEntry) -> None:
        self._write("add_rewrite", entry.key)
        self.rewrites.append(entry)

    def delete_rewrite(self, entry: RewriteEntry) -> None:
        self._write("delete_rewrite", entry.key)
        self.rewrites.remove(entry)

    # -------------------------------------------------------------------------
    # Filtering
    # -------------------------------------------------------------------------

    def filtering(self) -> FilterStatus:
        self._read("filtering")
        return self.filter_status

    def _filter_list(self, whitelist: bool) -> List[Filter]:
        return self.filter_status.whitelist_filters if whitelist else self.filter_status.filters

    def add_filter(self, whitelist: bool, f: Filter) -> None:
        self._write("add_filter", f.url)
        self._filter_list(whitelist).append(f)

    def delete_filter(self, whitelist: bool, f: Filter) -> None:
        self._write("delete_filter", f.url)
        filters = self._filter_list(whitelist)
        filters[:] = [x for x in filters if x.url != f.url]

    def update_filter(self, whitelist: bool, f: Filter) -> None:
        self._write("update_filter", f.url)
        filters = self._filter_list(whitelist)
        filters[:] = [f if x.url == f.url else x for x in filters]

    def refresh_filters(self, whitelist: bool) -> None:
        self._write("refresh_filters", "whitelist" if whitelist else "blocklist")

    def set_custom_rules(self, rules: List[str]) -> None:
        self._write("set_custom_rules", str(len(rules)))
        self.filter_status = replace(self.filter_status, user_rules=list(rules))

    def toggle_filtering(self, enabled: bool, interval: int) -> None:
        self._write("toggle_filtering", f"{enabled}/{interval}")
        self.filter_status = replace(self.filter_status, enabled=enabled, interval=interval)

    # -------------------------------------------------------------------------
    # Clients
    # -------------------------------------------------------------------------

    def clients(self) -> List[Client]:
        self._read("clients")
        return list(self.client_list)

    def add_client(self, client: Client) -> None:
        self._write("add_client", client.name)
        self.client_list.append(client)

    def update_client(self, client: Client) -> None:
        self._write("update_client", client.name)
        self.client_list = [client if c.name == client.name else c for c in self.client_list]

    def delete_client(self, client: Client) -> None:
        self._write("delete_client", client.name)
        self.client_list = [c for c in self.client_list if c.name != client.name]

    # -------------------------------------------------------------------------
    # DHCP
    # -------------------------------------------------------------------------

    def dhcp_config(self) -> DhcpStatus:
        self._read("dhcp_config")
        return self.dhcp

    def set_dhcp_config(self, config: DhcpStatus) -> None:
        self._write("set_dhcp_config")
        self.dhcp = replace(config, static_leases=list(self.dhcp.static_leases))

    def add_dhcp_static_lease(self, lease: DhcpStaticLease) -> None:
        self._write("add_dhcp_static_lease", lease.mac)
        self.dhcp = replace(self.dhcp, static_leases=self.dhcp.static_leases + [lease])

    def delete_dhcp_static_lease(self, lease: DhcpStaticLease) -> None:
        self._write("delete_dhcp_static_lease", lease.mac)
        self.dhcp = replace(self.dhcp, static_leases=[le for le in self.dhcp.static_leases if le != lease])


def make_origin(**state) -> FakeAdGuardClient:
    return FakeAdGuardClient(host="origin:3000", **state)


def client_factory(clients: Dict[str, FakeAdGuardClient], default: Optional[FakeAdGuardClient] = None):
    """Worker client factory returning the fake registered for each instance URL."""

    def create(instance):
        if instance.url in clients:
            return clients[instance.url]
        if default is not None:
            return default
        raise KeyError(instance.url)

    return create
