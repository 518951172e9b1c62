"""Sync worker: snapshots the origin and drives every replica towards it."""

from __future__ import annotations

import copy
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from adguard_sync import versions
from adguard_sync.actions import Action, ActionContext, build_actions, describe_actions
from adguard_sync.client import AdGuardClientError, AdGuardHomeClient, HostLogger, SetupNeededError
from adguard_sync.config import Config, Features, Instance
from adguard_sync.models import (
    AccessList,
    BlockedServicesSchedule,
    Client,
    DhcpStatus,
    DNSConfig,
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


class SyncAlreadyRunningError(Exception):
    """A pass was requested while another one is still in progress."""


class InstanceState(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    FAILURE = "failure"
    SETUP_NEEDED = "setup_needed"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


# =============================================================================
# Origin Snapshot
# =============================================================================


@dataclass(frozen=True)
class OriginSnapshot:
    """Everything read from the origin at the start of a pass.

    Resource types whose feature is disabled are not fetched and keep their
    empty defaults.
    """

    status: ServerStatus
    profile_info: ProfileInfo = field(default_factory=ProfileInfo)
    parental: bool = False
    safe_search: SafeSearchConfig = field(default_factory=SafeSearchConfig)
    safe_browsing: bool = False
    dns_config: DNSConfig = field(default_factory=DNSConfig)
    query_log_config: QueryLogConfig = field(default_factory=QueryLogConfig)
    stats_config: StatsConfig = field(default_factory=StatsConfig)
    rewrites: List[RewriteEntry] = field(default_factory=list)
    filters: FilterStatus = field(default_factory=FilterStatus)
    blocked_services_schedule: BlockedServicesSchedule = field(default_factory=BlockedServicesSchedule)
    clients: List[Client] = field(default_factory=list)
    access_list: AccessList = field(default_factory=AccessList)
    dhcp: DhcpStatus = field(default_factory=DhcpStatus)
    tls_config: TlsConfig = field(default_factory=TlsConfig)

    @classmethod
    def fetch(cls, client: AdGuardHomeClient, status: ServerStatus, features: Features) -> OriginSnapshot:
        values: Dict[str, Any] = {"status": status}
        if features.general_settings:
            values["profile_info"] = client.profile_info()
            values["parental"] = client.parental()
            values["safe_search"] = client.safe_search_config()
            values["safe_browsing"] = client.safe_browsing()
        if features.dns_server_config:
            values["dns_config"] = client.dns_config()
        if features.query_log_config:
            values["query_log_config"] = client.query_log_config()
        if features.stats_config:
            values["stats_config"] = client.stats_config()
        if features.dns_rewrites:
            values["rewrites"] = client.rewrite_list()
        if features.filters:
            values["filters"] = client.filtering()
        if features.services:
            values["blocked_services_schedule"] = client.blocked_services_schedule()
        if features.client_settings:
            values["clients"] = client.clients()
        if features.dns_access_lists:
            values["access_list"] = client.access_list()
        if features.dhcp_server_config or features.dhcp_static_leases:
            values["dhcp"] = client.dhcp_config()
        if features.tls_config:
            values["tls_config"] = client.tls_config()
        return cls(**values)


# =============================================================================
# Status Record
# =============================================================================


@dataclass
class InstanceStatus:
    host: str
    url: str
    state: InstanceState = InstanceState.PENDING
    version: str = ""
    version_match: Optional[bool] = None
    error: str = ""
    errors: List[str] = field(default_factory=list)
    protection_enabled: Optional[bool] = None
    last_sync: Optional[str] = None

    @classmethod
    def for_instance(cls, instance: Instance) -> InstanceStatus:
        return cls(host=instance.web_host, url=instance.effective_web_url)

    def fail(self, state: InstanceState, message: str) -> InstanceStatus:
        self.state = state
        self.error = message
        self.errors.append(message)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "host": self.host,
            "url": self.url,
            "status": self.state.value,
            "version": self.version,
            "version_match": self.version_match,
            "error": self.error,
            "errors": list(self.errors),
            "protection_enabled": self.protection_enabled,
            "last_sync": self.last_sync,
        }


@dataclass
class SyncStatus:
    origin: InstanceStatus
    replicas: List[InstanceStatus] = field(default_factory=list)
    sync_running: bool = False
    last_outcome: Optional[InstanceState] = None
    last_run: Optional[str] = None

    @property
    def healthy(self) -> bool:
        if self.origin.state != InstanceState.SUCCESS:
            return False
        return all(r.state == InstanceState.SUCCESS for r in self.replicas)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sync_running": self.sync_running,
            "healthy": self.healthy,
            "last_outcome": self.last_outcome.value if self.last_outcome else None,
            "last_run": self.last_run,
            "origin": self.origin.to_dict(),
            "replicas": [r.to_dict() for r in self.replicas],
        }


def _pass_outcome(replicas: List[InstanceStatus]) -> InstanceState:
    if all(r.state == InstanceState.SUCCESS for r in replicas):
        return InstanceState.SUCCESS
    if all(r.state in (InstanceState.FAILURE, InstanceState.SETUP_NEEDED) for r in replicas):
        return InstanceState.FAILURE
    return InstanceState.PARTIAL_FAILURE


# =============================================================================
# Worker
# =============================================================================


class Worker:
    """Runs sync passes. At most one pass runs at a time per worker."""

    def __init__(
        self,
        config: Config,
        client_factory: Optional[Callable[[Instance], AdGuardHomeClient]] = None,
    ):
        self._config = config
        self._create_client = client_factory or (
            lambda instance: AdGuardHomeClient(instance, timeout=config.request_timeout)
        )
        self._replicas = config.unique_replicas()

        self._run_lock = threading.Lock()
        self._status_lock = threading.Lock()
        self._idle = threading.Event()
        self._idle.set()
        self._status = SyncStatus(
            origin=InstanceStatus.for_instance(config.origin),
            replicas=[InstanceStatus.for_instance(r) for r in self._replicas],
        )

    @property
    def replicas(self) -> List[Instance]:
        return list(self._replicas)

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def status(self) -> SyncStatus:
        with self._status_lock:
            return copy.deepcopy(self._status)

    def healthy(self) -> bool:
        with self._status_lock:
            return self._status.healthy

    def is_running(self) -> bool:
        return self._run_lock.locked()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no pass is running. Returns False on timeout."""
        return self._idle.wait(timeout)

    def _publish(self, **changes: Any) -> None:
        with self._status_lock:
            for name, value in changes.items():
                setattr(self._status, name, value)

    def _publish_replica(self, index: int, status: InstanceStatus) -> None:
        with self._status_lock:
            self._status.replicas[index] = status

    # -------------------------------------------------------------------------
    # Pass
    # -------------------------------------------------------------------------

    def run_sync(self) -> SyncStatus:
        """Run one pass and return the resulting status.

        Raises SyncAlreadyRunningError without side effects when a pass is in
        progress.
        """
        if not self._run_lock.acquire(blocking=False):
            logger.info("Sync already running")
            raise SyncAlreadyRunningError("sync already running")

        self._idle.clear()
        self._publish(sync_running=True)
        try:
            outcome = self._run_pass()
            self._publish(last_outcome=outcome, last_run=_now())
        finally:
            self._publish(sync_running=False)
            self._idle.set()
            self._run_lock.release()
        return self.status()

    def _run_pass(self) -> InstanceState:
        origin = self._config.origin
        features = self._config.features
        olog = HostLogger(logger, {"host": origin.host})
        origin_status = InstanceStatus.for_instance(origin)

        try:
            origin_client = self._create_client(origin)
            status = origin_client.status()
        except SetupNeededError as e:
            olog.error(f"Origin is not set up: {e}")
            self._publish(origin=origin_status.fail(InstanceState.SETUP_NEEDED, str(e)))
            return InstanceState.FAILURE
        except AdGuardClientError as e:
            olog.error(f"Error getting origin status: {e}")
            self._publish(origin=origin_status.fail(InstanceState.FAILURE, str(e)))
            return InstanceState.FAILURE
        except Exception as e:
            olog.error(f"Unexpected error getting origin status: {e}", exc_info=True)
            self._publish(origin=origin_status.fail(InstanceState.FAILURE, str(e)))
            return InstanceState.FAILURE

        origin_status.version = status.version
        origin_status.protection_enabled = status.protection_enabled
        if not versions.is_supported(status.version):
            message = f"origin AdGuard Home version must be >= {versions.MIN_VERSION}, got {status.version!r}"
            olog.error(message)
            self._publish(origin=origin_status.fail(InstanceState.FAILURE, message))
            return InstanceState.FAILURE
        olog.info(f"Connected to origin: version={status.version}")

        try:
            snapshot = OriginSnapshot.fetch(origin_client, status, features)
        except AdGuardClientError as e:
            olog.error(f"Error reading origin config: {e}")
            self._publish(origin=origin_status.fail(InstanceState.FAILURE, str(e)))
            return InstanceState.FAILURE
        except Exception as e:
            olog.error(f"Unexpected error reading origin config: {e}", exc_info=True)
            self._publish(origin=origin_status.fail(InstanceState.FAILURE, str(e)))
            return InstanceState.FAILURE

        origin_status.state = InstanceState.SUCCESS
        origin_status.last_sync = _now()
        self._publish(origin=origin_status)

        actions = build_actions(features)
        logger.debug(f"Actions: {describe_actions(actions)}")

        results = []
        for index, replica in enumerate(self._replicas):
            result = self._sync_replica(replica, snapshot, actions)
            self._publish_replica(index, result)
            results.append(result)

        outcome = _pass_outcome(results)
        logger.info(f"Sync pass finished: {outcome.value}")
        return outcome

    def _status_with_setup(
        self, replica: Instance, client: AdGuardHomeClient, rlog: logging.LoggerAdapter
    ) -> ServerStatus:
        try:
            return client.status()
        except SetupNeededError:
            if not replica.auto_setup:
                raise
            rlog.info("Replica needs setup, running auto setup")
            client.setup()
            return client.status()

    def _sync_replica(self, replica: Instance, snapshot: OriginSnapshot, actions: List[Action]) -> InstanceStatus:
        rlog = HostLogger(logger, {"host": replica.host})
        result = InstanceStatus.for_instance(replica)
        result.last_sync = _now()
        rlog.info("Start sync")
        start = time.monotonic()

        try:
            client = self._create_client(replica)
            replica_status = self._status_with_setup(replica, client, rlog)
        except SetupNeededError as e:
            rlog.error(f"Replica is not set up and auto setup is disabled: {e}")
            return result.fail(InstanceState.SETUP_NEEDED, str(e))
        except AdGuardClientError as e:
            rlog.error(f"Error getting replica status: {e}")
            return result.fail(InstanceState.FAILURE, str(e))
        except Exception as e:
            rlog.error(f"Unexpected error getting replica status: {e}", exc_info=True)
            return result.fail(InstanceState.FAILURE, str(e))

        result.version = replica_status.version
        result.protection_enabled = replica_status.protection_enabled
        rlog.info(f"Connected to replica: version={replica_status.version}")

        if not versions.is_supported(replica_status.version):
            result.version_match = False
            message = (
                f"replica AdGuard Home version must be >= {versions.MIN_VERSION}, "
                f"got {replica_status.version!r}"
            )
            rlog.error(message)
            return result.fail(InstanceState.FAILURE, message)

        if not versions.is_same(snapshot.status.version, replica_status.version):
            result.version_match = False
            message = (
                f"version mismatch: origin {versions.sanitize(snapshot.status.version)}, "
                f"replica {versions.sanitize(replica_status.version)}"
            )
            rlog.error(message)
            return result.fail(InstanceState.FAILURE, message)
        result.version_match = True

        ctx = ActionContext(
            replica=replica,
            client=client,
            replica_status=replica_status,
            origin=snapshot,
            features=self._config.features,
            continue_on_error=self._config.continue_on_error,
            log=rlog,
        )

        aborted = False
        for action in actions:
            try:
                action.run(ctx)
            except AdGuardClientError as e:
                rlog.error(f"Error syncing {action.name}: {e}")
                ctx.errors.append(f"{action.name}: {e}")
                if not ctx.continue_on_error:
                    aborted = True
                    break
            except Exception as e:
                rlog.error(f"Unexpected error syncing {action.name}: {e}", exc_info=True)
                ctx.errors.append(f"{action.name}: {e}")
                if not ctx.continue_on_error:
                    aborted = True
                    break

        result.errors = list(ctx.errors)
        result.error = ctx.errors[-1] if ctx.errors else ""
        if aborted:
            result.state = InstanceState.FAILURE
        elif ctx.errors:
            result.state = InstanceState.PARTIAL_FAILURE
        else:
            result.state = InstanceState.SUCCESS

        duration = time.monotonic() - start
        if result.state == InstanceState.SUCCESS:
            rlog.info(f"Sync done in {duration:.2f}s")
        else:
            rlog.error(f"Sync done with {len(result.errors)} error(s) in {duration:.2f}s: {result.state.value}")
        return result
