"""Key-based classification of replica items against origin items."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Generic, Iterable, Tuple, TypeVar

from adguard_sync.models import Client, DhcpStaticLease, Filter, RewriteEntry

T = TypeVar("T")


@dataclass(frozen=True)
class MergeResult(Generic[T]):
    """Writes needed to turn the replica collection into the origin collection.

    ``duplicates`` holds origin items whose key already appeared earlier in
    the origin collection. They are reported for logging only and never
    written. ``replica_duplicates`` holds replica items whose key already
    appeared earlier on the replica; each is also scheduled in ``deletes``.
    """

    adds: Tuple[T, ...] = ()
    updates: Tuple[T, ...] = ()
    deletes: Tuple[T, ...] = ()
    duplicates: Tuple[T, ...] = ()
    replica_duplicates: Tuple[T, ...] = ()

    def is_empty(self) -> bool:
        return not (self.adds or self.updates or self.deletes)


def merge(
    replica_items: Iterable[T],
    origin_items: Iterable[T],
    key: Callable[[T], str],
    equal: Callable[[T, T], bool],
) -> MergeResult[T]:
    """Classify origin items as adds/updates and leftover replica items as deletes.

    A replica item whose key was already indexed is scheduled for deletion, so
    earlier duplication on the replica gets cleaned up. The first origin item
    for a key wins; later ones land in ``duplicates``.
    """
    index: Dict[str, T] = {}
    deletes = []
    replica_duplicates = []
    for item in replica_items:
        k = key(item)
        if k in index:
            deletes.append(item)
            replica_duplicates.append(item)
        else:
            index[k] = item

    adds = []
    updates = []
    duplicates = []
    seen = set()
    for item in origin_items:
        k = key(item)
        if k in seen:
            duplicates.append(item)
            continue
        seen.add(k)

        existing = index.pop(k, None)
        if existing is None:
            adds.append(item)
        elif not equal(item, existing):
            updates.append(item)

    deletes.extend(index.values())
    return MergeResult(
        adds=tuple(adds),
        updates=tuple(updates),
        deletes=tuple(deletes),
        duplicates=tuple(duplicates),
        replica_duplicates=tuple(replica_duplicates),
    )


# =============================================================================
# Per-Type Merges
# =============================================================================


def merge_rewrites(replica: Iterable[RewriteEntry], origin: Iterable[RewriteEntry]) -> MergeResult[RewriteEntry]:
    # The key covers every field, so a matching key is always equal.
    return merge(replica, origin, key=lambda r: r.key, equal=lambda a, b: True)


def merge_filters(replica: Iterable[Filter], origin: Iterable[Filter]) -> MergeResult[Filter]:
    return merge(replica, origin, key=lambda f: f.key, equal=lambda a, b: a.equals(b))


def merge_clients(replica: Iterable[Client], origin: Iterable[Client]) -> MergeResult[Client]:
    return merge(replica, origin, key=lambda c: c.key, equal=lambda a, b: a.equals(b))


def merge_static_leases(
    replica: Iterable[DhcpStaticLease], origin: Iterable[DhcpStaticLease]
) -> MergeResult[DhcpStaticLease]:
    return merge(replica, origin, key=lambda le: le.key, equal=lambda a, b: a == b)
