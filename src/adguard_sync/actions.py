"""Per-resource reconciliation actions and the registry that orders them.

Every action reads the replica's current state for one resource type,
compares it with the origin snapshot and issues only the writes needed to make
the replica match. Actions never write to the origin and never depend on the
result of another action in the same pass.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Callable, List, Sequence

from adguard_sync.client import AdGuardClientError, AdGuardHomeClient
from adguard_sync.config import Features, Instance
from adguard_sync.merge import merge_clients, merge_filters, merge_rewrites, merge_static_leases
from adguard_sync.models import Filter, ServerStatus

if TYPE_CHECKING:
    from adguard_sync.sync import OriginSnapshot


class ActionKind(Enum):
    """One variant per synchronized resource type, in registry order."""

    PROFILE_INFO = "profile info"
    PROTECTION = "protection"
    PARENTAL = "parental"
    SAFE_SEARCH_CONFIG = "safe search config"
    SAFE_BROWSING = "safe browsing"
    DNS_SERVER_CONFIG = "DNS server config"
    QUERY_LOG_CONFIG = "query log config"
    STATS_CONFIG = "stats config"
    DNS_REWRITES = "DNS rewrites"
    FILTERS = "filters"
    BLOCKED_SERVICES_SCHEDULE = "blocked services schedule"
    CLIENT_SETTINGS = "client settings"
    DNS_ACCESS_LISTS = "DNS access lists"
    DHCP_SERVER_CONFIG = "DHCP server config"
    DHCP_STATIC_LEASES = "DHCP static leases"
    TLS_CONFIG = "TLS config"


@dataclass
class ActionContext:
    """Everything an action needs for one replica during one pass."""

    replica: Instance
    client: AdGuardHomeClient
    replica_status: ServerStatus
    origin: OriginSnapshot
    features: Features
    continue_on_error: bool
    log: logging.LoggerAdapter
    errors: List[str] = field(default_factory=list)

    def attempt(self, description: str, write: Callable[[], None]) -> bool:
        """Run one item write.

        With continue-on-error the failure is logged and recorded and False is
        returned; otherwise the error propagates and aborts the action.
        """
        try:
            write()
            return True
        except AdGuardClientError as e:
            if not self.continue_on_error:
                raise
            message = f"{description}: {e}"
            self.log.error(f"Error {message}")
            self.errors.append(message)
            return False


@dataclass(frozen=True)
class Action:
    kind: ActionKind
    fn: Callable[[ActionContext], None]

    @property
    def name(self) -> str:
        return self.kind.value

    def run(self, ctx: ActionContext) -> None:
        self.fn(ctx)


# =============================================================================
# General Settings
# =============================================================================


def sync_profile_info(ctx: ActionContext) -> None:
    replica = ctx.client.profile_info()
    merged = replica.should_sync_for(ctx.origin.profile_info, ctx.features.theme)
    if merged is not None:
        ctx.client.set_profile_info(merged)


def sync_protection(ctx: ActionContext) -> None:
    wanted = ctx.origin.status.protection_enabled
    if wanted != ctx.replica_status.protection_enabled:
        ctx.client.toggle_protection(wanted)


def sync_parental(ctx: ActionContext) -> None:
    if ctx.client.parental() != ctx.origin.parental:
        ctx.client.toggle_parental(ctx.origin.parental)


def sync_safe_search_config(ctx: ActionContext) -> None:
    replica = ctx.client.safe_search_config()
    if not ctx.origin.safe_search.equals(replica):
        ctx.client.set_safe_search_config(ctx.origin.safe_search)


def sync_safe_browsing(ctx: ActionContext) -> None:
    if ctx.client.safe_browsing() != ctx.origin.safe_browsing:
        ctx.client.toggle_safe_browsing(ctx.origin.safe_browsing)


# =============================================================================
# Whole-Resource Settings
# =============================================================================


def sync_dns_server_config(ctx: ActionContext) -> None:
    wanted = ctx.origin.dns_config.sanitize()
    if not wanted.equals(ctx.client.dns_config()):
        ctx.client.set_dns_config(wanted)


def sync_query_log_config(ctx: ActionContext) -> None:
    if not ctx.origin.query_log_config.equals(ctx.client.query_log_config()):
        ctx.client.set_query_log_config(ctx.origin.query_log_config)


def sync_stats_config(ctx: ActionContext) -> None:
    if not ctx.origin.stats_config.equals(ctx.client.stats_config()):
        ctx.client.set_stats_config(ctx.origin.stats_config)


def sync_blocked_services_schedule(ctx: ActionContext) -> None:
    if not ctx.origin.blocked_services_schedule.equals(ctx.client.blocked_services_schedule()):
        ctx.client.set_blocked_services_schedule(ctx.origin.blocked_services_schedule)


def sync_access_lists(ctx: ActionContext) -> None:
    if not ctx.origin.access_list.equals(ctx.client.access_list()):
        ctx.client.set_access_list(ctx.origin.access_list)


def sync_tls_config(ctx: ActionContext) -> None:
    if not ctx.origin.tls_config.equals(ctx.client.tls_config()):
        ctx.client.set_tls_config(ctx.origin.tls_config)


# =============================================================================
# Keyed Collections
# =============================================================================


def sync_rewrites(ctx: ActionContext) -> None:
    result = merge_rewrites(ctx.client.rewrite_list(), ctx.origin.rewrites)

    # Delete first so a re-added entry never collides with a stale one.
    for entry in result.deletes:
        ctx.attempt(f"deleting rewrite {entry.domain} -> {entry.answer}", lambda e=entry: ctx.client.delete_rewrite(e))
    for entry in result.adds:
        ctx.attempt(f"adding rewrite {entry.domain} -> {entry.answer}", lambda e=entry: ctx.client.add_rewrite(e))
    for entry in result.duplicates:
        ctx.log.warning(f"Skipping duplicated rewrite from origin: {entry.domain} -> {entry.answer}")
    for entry in result.replica_duplicates:
        ctx.log.warning(f"Removing duplicated rewrite on replica: {entry.domain} -> {entry.answer}")

    if not result.is_empty():
        ctx.log.info(f"DNS rewrites: {len(result.adds)} added, {len(result.deletes)} deleted")


def _sync_filter_list(
    ctx: ActionContext, origin_filters: Sequence[Filter], replica_filters: Sequence[Filter], whitelist: bool
) -> None:
    kind = "allow list" if whitelist else "block list"
    result = merge_filters(replica_filters, origin_filters)

    for f in result.deletes:
        ctx.attempt(f"deleting {kind} filter {f.url}", lambda f=f: ctx.client.delete_filter(whitelist, f))

    changed = 0
    for f in result.adds:
        if ctx.attempt(f"adding {kind} filter {f.url}", lambda f=f: ctx.client.add_filter(whitelist, f)):
            changed += 1
    for f in result.updates:
        if ctx.attempt(f"updating {kind} filter {f.url}", lambda f=f: ctx.client.update_filter(whitelist, f)):
            changed += 1

    for f in result.duplicates:
        ctx.log.warning(f"Skipping duplicated {kind} filter from origin: {f.url}")
    for f in result.replica_duplicates:
        ctx.log.warning(f"Removing duplicated {kind} filter on replica: {f.url}")

    # Duplicates never trigger a refresh; only content that was written does.
    if changed:
        ctx.client.refresh_filters(whitelist)

    if not result.is_empty():
        ctx.log.info(
            f"Filters ({kind}): {len(result.adds)} added, {len(result.updates)} updated, "
            f"{len(result.deletes)} deleted"
        )


def sync_filters(ctx: ActionContext) -> None:
    origin = ctx.origin.filters
    replica = ctx.client.filtering()

    _sync_filter_list(ctx, origin.filters, replica.filters, whitelist=False)
    _sync_filter_list(ctx, origin.whitelist_filters, replica.whitelist_filters, whitelist=True)

    if origin.user_rules_text() != replica.user_rules_text():
        ctx.client.set_custom_rules(origin.user_rules)

    if origin.enabled is not None and origin.interval is not None:
        if origin.enabled != replica.enabled or origin.interval != replica.interval:
            ctx.client.toggle_filtering(origin.enabled, origin.interval)


def sync_clients(ctx: ActionContext) -> None:
    result = merge_clients(ctx.client.clients(), ctx.origin.clients)

    for c in result.deletes:
        ctx.attempt(f"deleting client {c.name}", lambda c=c: ctx.client.delete_client(c))
    for c in result.adds:
        ctx.attempt(f"adding client {c.name}", lambda c=c: ctx.client.add_client(c))
    for c in result.updates:
        ctx.attempt(f"updating client {c.name}", lambda c=c: ctx.client.update_client(c))
    for c in result.duplicates:
        ctx.log.warning(f"Skipping duplicated client from origin: {c.name}")
    for c in result.replica_duplicates:
        ctx.log.warning(f"Removing duplicated client on replica: {c.name}")

    if not result.is_empty():
        ctx.log.info(
            f"Clients: {len(result.adds)} added, {len(result.updates)} updated, {len(result.deletes)} deleted"
        )


# =============================================================================
# DHCP
# =============================================================================


def sync_dhcp_server_config(ctx: ActionContext) -> None:
    origin = ctx.origin.dhcp
    if not origin.has_config():
        ctx.log.debug("Origin has no valid DHCP v4/v6 config, skipping DHCP server config")
        return

    wanted = replace(origin, static_leases=[])
    if ctx.replica.interface_name:
        wanted = replace(wanted, interface_name=ctx.replica.interface_name)
    if ctx.replica.dhcp_server_enabled is not None:
        wanted = replace(wanted, enabled=ctx.replica.dhcp_server_enabled)

    if not wanted.equals(ctx.client.dhcp_config()):
        ctx.client.set_dhcp_config(wanted)


def sync_dhcp_static_leases(ctx: ActionContext) -> None:
    replica = ctx.client.dhcp_config()
    result = merge_static_leases(replica.static_leases, ctx.origin.dhcp.static_leases)

    # A lease that changed keeps its MAC, so it is replaced rather than edited.
    replaced = {}
    for le in replica.static_leases:
        replaced.setdefault(le.key, le)
    stale = list(result.deletes) + [replaced[le.key] for le in result.updates if le.key in replaced]
    fresh = list(result.adds) + list(result.updates)

    # A lease whose old entry could not be removed is not re-added.
    stuck = set()
    for le in stale:
        if not ctx.attempt(f"deleting static lease {le.mac}", lambda le=le: ctx.client.delete_dhcp_static_lease(le)):
            stuck.add(le.key)
    for le in fresh:
        if le.key in stuck:
            ctx.log.warning(f"Not re-adding static lease {le.mac}, its old entry is still present")
            continue
        ctx.attempt(f"adding static lease {le.mac}", lambda le=le: ctx.client.add_dhcp_static_lease(le))
    for le in result.duplicates:
        ctx.log.warning(f"Skipping duplicated static lease from origin: {le.mac}")
    for le in result.replica_duplicates:
        ctx.log.warning(f"Removing duplicated static lease on replica: {le.mac}")

    if stale or fresh:
        ctx.log.info(f"DHCP static leases: {len(fresh)} added, {len(stale)} deleted")


# =============================================================================
# Registry
# =============================================================================

_ACTION_FUNCTIONS = {
    ActionKind.PROFILE_INFO: sync_profile_info,
    ActionKind.PROTECTION: sync_protection,
    ActionKind.PARENTAL: sync_parental,
    ActionKind.SAFE_SEARCH_CONFIG: sync_safe_search_config,
    ActionKind.SAFE_BROWSING: sync_safe_browsing,
    ActionKind.DNS_SERVER_CONFIG: sync_dns_server_config,
    ActionKind.QUERY_LOG_CONFIG: sync_query_log_config,
    ActionKind.STATS_CONFIG: sync_stats_config,
    ActionKind.DNS_REWRITES: sync_rewrites,
    ActionKind.FILTERS: sync_filters,
    ActionKind.BLOCKED_SERVICES_SCHEDULE: sync_blocked_services_schedule,
    ActionKind.CLIENT_SETTINGS: sync_clients,
    ActionKind.DNS_ACCESS_LISTS: sync_access_lists,
    ActionKind.DHCP_SERVER_CONFIG: sync_dhcp_server_config,
    ActionKind.DHCP_STATIC_LEASES: sync_dhcp_static_leases,
    ActionKind.TLS_CONFIG: sync_tls_config,
}

_GENERAL_SETTINGS = (
    ActionKind.PROFILE_INFO,
    ActionKind.PROTECTION,
    ActionKind.PARENTAL,
    ActionKind.SAFE_SEARCH_CONFIG,
    ActionKind.SAFE_BROWSING,
)


def _enabled_kinds(features: Features) -> List[ActionKind]:
    kinds: List[ActionKind] = []
    if features.general_settings:
        kinds.extend(_GENERAL_SETTINGS)
    for flag, kind in (
        (features.dns_server_config, ActionKind.DNS_SERVER_CONFIG),
        (features.query_log_config, ActionKind.QUERY_LOG_CONFIG),
        (features.stats_config, ActionKind.STATS_CONFIG),
        (features.dns_rewrites, ActionKind.DNS_REWRITES),
        (features.filters, ActionKind.FILTERS),
        (features.services, ActionKind.BLOCKED_SERVICES_SCHEDULE),
        (features.client_settings, ActionKind.CLIENT_SETTINGS),
        (features.dns_access_lists, ActionKind.DNS_ACCESS_LISTS),
        (features.dhcp_server_config, ActionKind.DHCP_SERVER_CONFIG),
        (features.dhcp_static_leases, ActionKind.DHCP_STATIC_LEASES),
        (features.tls_config, ActionKind.TLS_CONFIG),
    ):
        if flag:
            kinds.append(kind)
    return kinds


def build_actions(features: Features) -> List[Action]:
    """Ordered list of the actions enabled by ``features``."""
    return [Action(kind=kind, fn=_ACTION_FUNCTIONS[kind]) for kind in _enabled_kinds(features)]


def describe_actions(actions: Sequence[Action]) -> str:
    return ", ".join(a.name for a in actions) or "<none>"
