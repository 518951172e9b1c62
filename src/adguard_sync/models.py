"""Resource model for the AdGuard Home control API.

Each synchronized resource type is a dataclass that knows how to read itself
from the API's JSON (``from_dict``), how to serialize itself for a write
(``to_dict``) and how to compare itself with another instance of the same type
(``equals``).

Unset values are ``None`` and are left out of write payloads, so "not
configured" never collapses into ``False`` or ``""``.

List fields whose order carries no meaning (tags, ids, upstreams, blocked
services, ignored domains, access list entries) are compared as sorted
sequences, and an empty list compares equal to an unset one.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple

WEEKDAYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")

# =============================================================================
# Helpers
# =============================================================================


def _canonical_list(values: Optional[Sequence[str]]) -> Tuple[str, ...]:
    return tuple(sorted(values or ()))


def _drop_none(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


def _flat_from_dict(cls, data: Optional[Dict[str, Any]]):
    """Build a flat dataclass from the same-named JSON keys, ignoring extras."""
    data = data or {}
    return cls(**{f.name: data.get(f.name) for f in fields(cls) if f.name in data})


def _str_list(value: Any) -> Optional[List[str]]:
    if value is None:
        return None
    return [str(v) for v in value]


def _non_empty(value: Optional[str]) -> bool:
    return value is not None and value.strip() != ""


# =============================================================================
# Server Status
# =============================================================================


@dataclass(frozen=True)
class ServerStatus:
    """Result of ``GET /status``."""

    version: str = ""
    protection_enabled: bool = False
    running: bool = True
    language: str = ""

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> ServerStatus:
        data = data or {}
        return cls(
            version=str(data.get("version") or ""),
            protection_enabled=bool(data.get("protection_enabled", False)),
            running=bool(data.get("running", True)),
            language=str(data.get("language") or ""),
        )


# =============================================================================
# DNS Rewrites
# =============================================================================


@dataclass(frozen=True)
class RewriteEntry:
    """A DNS rewrite. Domain and answer together form its identity."""

    domain: str
    answer: str

    @property
    def key(self) -> str:
        return f"{self.domain}#{self.answer}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> RewriteEntry:
        return cls(domain=str(data.get("domain") or ""), answer=str(data.get("answer") or ""))

    def to_dict(self) -> Dict[str, Any]:
        return {"domain": self.domain, "answer": self.answer}


# =============================================================================
# Filtering
# =============================================================================


@dataclass(frozen=True)
class Filter:
    """A block list or allow list subscription, identified by its URL."""

    url: str
    name: str = ""
    enabled: bool = False
    id: Optional[int] = None
    rules_count: Optional[int] = None
    last_updated: Optional[str] = None

    @property
    def key(self) -> str:
        return self.url

    def equals(self, other: Filter) -> bool:
        # id, rules_count and last_updated are assigned by each instance.
        return self.url == other.url and self.name == other.name and self.enabled == other.enabled

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Filter:
        return cls(
            url=str(data.get("url") or ""),
            name=str(data.get("name") or ""),
            enabled=bool(data.get("enabled", False)),
            id=data.get("id"),
            rules_count=data.get("rules_count"),
            last_updated=data.get("last_updated"),
        )


@dataclass(frozen=True)
class FilterStatus:
    """Result of ``GET /filtering/status``."""

    enabled: Optional[bool] = None
    interval: Optional[int] = None
    filters: List[Filter] = field(default_factory=list)
    whitelist_filters: List[Filter] = field(default_factory=list)
    user_rules: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> FilterStatus:
        data = data or {}
        return cls(
            enabled=data.get("enabled"),
            interval=data.get("interval"),
            filters=[Filter.from_dict(f) for f in data.get("filters") or []],
            whitelist_filters=[Filter.from_dict(f) for f in data.get("whitelist_filters") or []],
            user_rules=[str(r) for r in data.get("user_rules") or []],
        )

    def user_rules_text(self) -> str:
        return "\n".join(self.user_rules)


# =============================================================================
# Schedules
# =============================================================================


@dataclass(frozen=True)
class DayRange:
    """Start and end of a daily window, in milliseconds since midnight."""

    start: int = 0
    end: int = 0


@dataclass(frozen=True)
class Schedule:
    """Weekly pause schedule used for blocked services."""

    time_zone: Optional[str] = None
    days: Dict[str, DayRange] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional[Schedule]:
        if data is None:
            return None
        days = {}
        for day in WEEKDAYS:
            rng = data.get(day)
            if isinstance(rng, dict):
                days[day] = DayRange(start=int(rng.get("start") or 0), end=int(rng.get("end") or 0))
        return cls(time_zone=data.get("time_zone"), days=days)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.time_zone is not None:
            out["time_zone"] = self.time_zone
        for day in WEEKDAYS:
            rng = self.days.get(day)
            if rng is not None:
                out[day] = {"start": rng.start, "end": rng.end}
        return out

    def canonical(self) -> Tuple[Any, ...]:
        """Comparable form; the time zone only matters when a day is set."""
        days = tuple((day, self.days[day].start, self.days[day].end) for day in WEEKDAYS if day in self.days)
        time_zone = self.time_zone if days else None
        return (time_zone, days)


def _schedule_canonical(schedule: Optional[Schedule]) -> Tuple[Any, ...]:
    if schedule is None:
        return (None, ())
    return schedule.canonical()


@dataclass(frozen=True)
class BlockedServicesSchedule:
    """Result of ``GET /blocked_services/get``."""

    ids: List[str] = field(default_factory=list)
    schedule: Optional[Schedule] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> BlockedServicesSchedule:
        data = data or {}
        return cls(ids=_str_list(data.get("ids")) or [], schedule=Schedule.from_dict(data.get("schedule")))

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"ids": list(self.ids)}
        if self.schedule is not None:
            out["schedule"] = self.schedule.to_dict()
        return out

    def equals(self, other: BlockedServicesSchedule) -> bool:
        return _canonical_list(self.ids) == _canonical_list(other.ids) and _schedule_canonical(
            self.schedule
        ) == _schedule_canonical(other.schedule)

    def services_string(self) -> str:
        return ",".join(sorted(self.ids))


# =============================================================================
# General Settings
# =============================================================================


@dataclass(frozen=True)
class SafeSearchConfig:
    enabled: Optional[bool] = None
    bing: Optional[bool] = None
    duckduckgo: Optional[bool] = None
    ecosia: Optional[bool] = None
    google: Optional[bool] = None
    pixabay: Optional[bool] = None
    yandex: Optional[bool] = None
    youtube: Optional[bool] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> SafeSearchConfig:
        return _flat_from_dict(cls, data)

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none(asdict(self))

    def equals(self, other: SafeSearchConfig) -> bool:
        return all(getattr(self, f.name) == getattr(other, f.name) for f in fields(self))


@dataclass(frozen=True)
class ProfileInfo:
    name: str = ""
    language: str = ""
    theme: str = ""

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> ProfileInfo:
        data = data or {}
        return cls(
            name=str(data.get("name") or ""),
            language=str(data.get("language") or ""),
            theme=str(data.get("theme") or ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "language": self.language, "theme": self.theme}

    def should_sync_for(self, origin: ProfileInfo, with_theme: bool) -> Optional[ProfileInfo]:
        """Return the profile to write to this (replica) profile, or None.

        The replica keeps its own user name. Language follows the origin when
        the origin has one; the theme only when theme sync is enabled.
        """
        merged = replace(self)
        if origin.language:
            merged = replace(merged, language=origin.language)
        if with_theme and origin.theme:
            merged = replace(merged, theme=origin.theme)

        if not merged.name or not merged.language:
            return None
        if merged.language != self.language or merged.theme != self.theme:
            return merged
        return None


@dataclass(frozen=True)
class QueryLogConfig:
    """Result of ``GET /querylog/config``."""

    enabled: Optional[bool] = None
    interval: Optional[float] = None
    anonymize_client_ip: Optional[bool] = None
    ignored: Optional[List[str]] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> QueryLogConfig:
        return _flat_from_dict(cls, data)

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none(asdict(self))

    def equals(self, other: QueryLogConfig) -> bool:
        return (
            self.enabled == other.enabled
            and self.interval == other.interval
            and self.anonymize_client_ip == other.anonymize_client_ip
            and _canonical_list(self.ignored) == _canonical_list(other.ignored)
        )


@dataclass(frozen=True)
class StatsConfig:
    """Result of ``GET /stats/config``."""

    enabled: Optional[bool] = None
    interval: Optional[float] = None
    ignored: Optional[List[str]] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> StatsConfig:
        return _flat_from_dict(cls, data)

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none(asdict(self))

    def equals(self, other: StatsConfig) -> bool:
        return (
            self.enabled == other.enabled
            and self.interval == other.interval
            and _canonical_list(self.ignored) == _canonical_list(other.ignored)
        )


# =============================================================================
# Clients
# =============================================================================


@dataclass(frozen=True)
class Client:
    """A persistent client profile, identified by name."""

    name: str
    ids: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    upstreams: Optional[List[str]] = None
    use_global_settings: Optional[bool] = None
    filtering_enabled: Optional[bool] = None
    parental_enabled: Optional[bool] = None
    safebrowsing_enabled: Optional[bool] = None
    safe_search: Optional[SafeSearchConfig] = None
    use_global_blocked_services: Optional[bool] = None
    blocked_services: Optional[List[str]] = None
    blocked_services_schedule: Optional[Schedule] = None
    upstreams_cache_enabled: Optional[bool] = None
    upstreams_cache_size: Optional[int] = None
    ignore_querylog: Optional[bool] = None
    ignore_statistics: Optional[bool] = None

    @property
    def key(self) -> str:
        return self.name

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Client:
        safe_search = data.get("safe_search")
        return cls(
            name=str(data.get("name") or ""),
            ids=_str_list(data.get("ids")),
            tags=_str_list(data.get("tags")),
            upstreams=_str_list(data.get("upstreams")),
            use_global_settings=data.get("use_global_settings"),
            filtering_enabled=data.get("filtering_enabled"),
            parental_enabled=data.get("parental_enabled"),
            safebrowsing_enabled=data.get("safebrowsing_enabled"),
            safe_search=SafeSearchConfig.from_dict(safe_search) if safe_search is not None else None,
            use_global_blocked_services=data.get("use_global_blocked_services"),
            blocked_services=_str_list(data.get("blocked_services")),
            blocked_services_schedule=Schedule.from_dict(data.get("blocked_services_schedule")),
            upstreams_cache_enabled=data.get("upstreams_cache_enabled"),
            upstreams_cache_size=data.get("upstreams_cache_size"),
            ignore_querylog=data.get("ignore_querylog"),
            ignore_statistics=data.get("ignore_statistics"),
        )

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "name": self.name,
            "ids": self.ids,
            "tags": self.tags,
            "upstreams": self.upstreams,
            "use_global_settings": self.use_global_settings,
            "filtering_enabled": self.filtering_enabled,
            "parental_enabled": self.parental_enabled,
            "safebrowsing_enabled": self.safebrowsing_enabled,
            "safe_search": self.safe_search.to_dict() if self.safe_search is not None else None,
            "use_global_blocked_services": self.use_global_blocked_services,
            "blocked_services": self.blocked_services,
            "blocked_services_schedule": (
                self.blocked_services_schedule.to_dict()
                if self.blocked_services_schedule is not None
                else None
            ),
            "upstreams_cache_enabled": self.upstreams_cache_enabled,
            "upstreams_cache_size": self.upstreams_cache_size,
            "ignore_querylog": self.ignore_querylog,
            "ignore_statistics": self.ignore_statistics,
        }
        return _drop_none(out)

    def canonical(self) -> Tuple[Any, ...]:
        safe_search = self.safe_search or SafeSearchConfig()
        return (
            self.name,
            _canonical_list(self.ids),
            _canonical_list(self.tags),
            _canonical_list(self.upstreams),
            self.use_global_settings,
            self.filtering_enabled,
            self.parental_enabled,
            self.safebrowsing_enabled,
            tuple(getattr(safe_search, f.name) for f in fields(safe_search)),
            self.use_global_blocked_services,
            _canonical_list(self.blocked_services),
            _schedule_canonical(self.blocked_services_schedule),
            self.upstreams_cache_enabled,
            self.upstreams_cache_size,
            self.ignore_querylog,
            self.ignore_statistics,
        )

    def equals(self, other: Client) -> bool:
        return self.canonical() == other.canonical()


# =============================================================================
# DNS Server Config and Access List
# =============================================================================


@dataclass(frozen=True)
class AccessList:
    allowed_clients: Optional[List[str]] = None
    disallowed_clients: Optional[List[str]] = None
    blocked_hosts: Optional[List[str]] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> AccessList:
        return _flat_from_dict(cls, data)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed_clients": list(self.allowed_clients or []),
            "disallowed_clients": list(self.disallowed_clients or []),
            "blocked_hosts": list(self.blocked_hosts or []),
        }

    def equals(self, other: AccessList) -> bool:
        return (
            _canonical_list(self.allowed_clients) == _canonical_list(other.allowed_clients)
            and _canonical_list(self.disallowed_clients) == _canonical_list(other.disallowed_clients)
            and _canonical_list(self.blocked_hosts) == _canonical_list(other.blocked_hosts)
        )


_DNS_LIST_FIELDS = (
    "upstream_dns",
    "bootstrap_dns",
    "fallback_dns",
    "local_ptr_upstreams",
    "ratelimit_whitelist",
)


@dataclass(frozen=True)
class DNSConfig:
    """Result of ``GET /dns_info``.

    ``protection_enabled`` is deliberately not part of this model; protection
    is reconciled by its own toggle.
    """

    upstream_dns: Optional[List[str]] = None
    upstream_dns_file: Optional[str] = None
    bootstrap_dns: Optional[List[str]] = None
    fallback_dns: Optional[List[str]] = None
    local_ptr_upstreams: Optional[List[str]] = None
    use_private_ptr_resolvers: Optional[bool] = None
    resolve_clients: Optional[bool] = None
    upstream_mode: Optional[str] = None
    upstream_timeout: Optional[int] = None
    ratelimit: Optional[int] = None
    ratelimit_subnet_len_ipv4: Optional[int] = None
    ratelimit_subnet_len_ipv6: Optional[int] = None
    ratelimit_whitelist: Optional[List[str]] = None
    blocking_mode: Optional[str] = None
    blocking_ipv4: Optional[str] = None
    blocking_ipv6: Optional[str] = None
    blocked_response_ttl: Optional[int] = None
    edns_cs_enabled: Optional[bool] = None
    edns_cs_use_custom: Optional[bool] = None
    edns_cs_custom_ip: Optional[str] = None
    dnssec_enabled: Optional[bool] = None
    disable_ipv6: Optional[bool] = None
    cache_size: Optional[int] = None
    cache_ttl_min: Optional[int] = None
    cache_ttl_max: Optional[int] = None
    cache_optimistic: Optional[bool] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> DNSConfig:
        return _flat_from_dict(cls, data)

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none(asdict(self))

    def sanitize(self) -> DNSConfig:
        """Private PTR resolvers cannot be used without local PTR upstreams."""
        if self.use_private_ptr_resolvers and not self.local_ptr_upstreams:
            return replace(self, use_private_ptr_resolvers=False)
        return self

    def equals(self, other: DNSConfig) -> bool:
        for f in fields(self):
            mine, theirs = getattr(self, f.name), getattr(other, f.name)
            if f.name in _DNS_LIST_FIELDS:
                if _canonical_list(mine) != _canonical_list(theirs):
                    return False
            elif mine != theirs:
                return False
        return True


# =============================================================================
# DHCP
# =============================================================================


@dataclass(frozen=True)
class DhcpConfigV4:
    gateway_ip: Optional[str] = None
    subnet_mask: Optional[str] = None
    range_start: Optional[str] = None
    range_end: Optional[str] = None
    lease_duration: Optional[int] = None

    def is_valid(self) -> bool:
        return (
            _non_empty(self.gateway_ip)
            and _non_empty(self.subnet_mask)
            and _non_empty(self.range_start)
            and _non_empty(self.range_end)
        )

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional[DhcpConfigV4]:
        if data is None:
            return None
        return _flat_from_dict(cls, data)

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none(asdict(self))


@dataclass(frozen=True)
class DhcpConfigV6:
    range_start: Optional[str] = None
    lease_duration: Optional[int] = None

    def is_valid(self) -> bool:
        return _non_empty(self.range_start)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional[DhcpConfigV6]:
        if data is None:
            return None
        return _flat_from_dict(cls, data)

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none(asdict(self))


@dataclass(frozen=True)
class DhcpStaticLease:
    """A static DHCP lease, identified by MAC address."""

    mac: str
    ip: str = ""
    hostname: str = ""

    @property
    def key(self) -> str:
        return self.mac.lower()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> DhcpStaticLease:
        return cls(
            mac=str(data.get("mac") or ""),
            ip=str(data.get("ip") or ""),
            hostname=str(data.get("hostname") or ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"mac": self.mac, "ip": self.ip, "hostname": self.hostname}


@dataclass(frozen=True)
class DhcpStatus:
    """Result of ``GET /dhcp/status``.

    Dynamic leases are runtime state and are not modelled.
    """

    enabled: Optional[bool] = None
    interface_name: Optional[str] = None
    v4: Optional[DhcpConfigV4] = None
    v6: Optional[DhcpConfigV6] = None
    static_leases: List[DhcpStaticLease] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> DhcpStatus:
        data = data or {}
        return cls(
            enabled=data.get("enabled"),
            interface_name=data.get("interface_name"),
            v4=DhcpConfigV4.from_dict(data.get("v4")),
            v6=DhcpConfigV6.from_dict(data.get("v6")),
            static_leases=[DhcpStaticLease.from_dict(le) for le in data.get("static_leases") or []],
        )

    def valid_v4(self) -> Optional[DhcpConfigV4]:
        return self.v4 if self.v4 is not None and self.v4.is_valid() else None

    def valid_v6(self) -> Optional[DhcpConfigV6]:
        return self.v6 if self.v6 is not None and self.v6.is_valid() else None

    def has_config(self) -> bool:
        return self.valid_v4() is not None or self.valid_v6() is not None

    def equals(self, other: DhcpStatus) -> bool:
        """Compare server config only; partial v4/v6 blocks count as absent."""
        return (
            self.enabled == other.enabled
            and (self.interface_name or "") == (other.interface_name or "")
            and self.valid_v4() == other.valid_v4()
            and self.valid_v6() == other.valid_v6()
        )

    def to_config_dict(self) -> Dict[str, Any]:
        """Payload for ``POST /dhcp/set_config``; invalid blocks are left out."""
        out: Dict[str, Any] = {}
        if self.enabled is not None:
            out["enabled"] = self.enabled
        if self.interface_name is not None:
            out["interface_name"] = self.interface_name
        v4 = self.valid_v4()
        if v4 is not None:
            out["v4"] = v4.to_dict()
        v6 = self.valid_v6()
        if v6 is not None:
            out["v6"] = v6.to_dict()
        return out


# =============================================================================
# TLS
# =============================================================================


@dataclass(frozen=True)
class TlsConfig:
    """Result of ``GET /tls/status``."""

    enabled: Optional[bool] = None
    server_name: Optional[str] = None
    force_https: Optional[bool] = None
    port_https: Optional[int] = None
    port_dns_over_tls: Optional[int] = None
    port_dns_over_quic: Optional[int] = None
    certificate_chain: Optional[str] = None
    private_key: Optional[str] = None
    certificate_path: Optional[str] = None
    private_key_path: Optional[str] = None
    private_key_saved: Optional[bool] = None
    serve_plain_dns: Optional[bool] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> TlsConfig:
        return _flat_from_dict(cls, data)

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none(asdict(self))

    def equals(self, other: TlsConfig) -> bool:
        # private_key_saved is a read-only flag reported by the server.
        return all(
            getattr(self, f.name) == getattr(other, f.name)
            for f in fields(self)
            if f.name != "private_key_saved"
        )
