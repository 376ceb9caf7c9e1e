from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Iterable, Mapping

from .models import ClaimRecord, ReportRow, UsageAggregate, VolumeRecord
from .topology import claim_key

PLACEHOLDER = "-"
UNBOUND_PLACEHOLDER = "(none)"

ACCESS_MODE_ABBREVIATIONS = {
    "ReadWriteOnce": "RWO",
    "ReadOnlyMany": "ROX",
    "ReadWriteMany": "RWX",
    "ReadWriteOncePod": "RWOP",
}


def format_percent(used: float, total: float) -> str:
    if total <= 0:
        return PLACEHOLDER
    return f"{used / total * 100.0:.1f}"


def access_modes_short(access_modes: Iterable[str]) -> str:
    abbreviations = [ACCESS_MODE_ABBREVIATIONS.get(mode, mode) for mode in access_modes]
    if not abbreviations:
        return PLACEHOLDER
    return ",".join(abbreviations)


def humanize_age(age: timedelta) -> str:
    """Render an age as its two most significant units, e.g. ``45s``, ``3h12m``, ``1d1h``."""
    total_seconds = max(0, int(age.total_seconds()))
    if total_seconds < 60:
        return f"{total_seconds}s"

    total_hours = total_seconds // 3600
    days = total_hours // 24
    hours = total_hours % 24
    minutes = (total_seconds // 60) % 60

    if days > 0 and hours > 0:
        return f"{days}d{hours}h"
    if days > 0:
        return f"{days}d"
    if hours > 0 and minutes > 0:
        return f"{hours}h{minutes}m"
    if hours > 0:
        return f"{hours}h"
    return f"{minutes}m"


def correlate_claims(
    claims: Iterable[ClaimRecord],
    *,
    volume_index: Mapping[str, VolumeRecord],
    node_instances: Mapping[str, str],
    claim_nodes: Mapping[str, set[str]],
    usage: Mapping[str, UsageAggregate],
    volume_types: Mapping[str, str],
    now: datetime | None = None,
) -> list[ReportRow]:
    """Join every claim with its volume, nodes, usage and volume type; one row per claim, in input order."""
    now = now or datetime.now(UTC)
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    rows: list[ReportRow] = []

    for claim in claims:
        volume = volume_index.get(claim.volume_name) if claim.volume_name else None
        key = claim_key(claim.namespace, claim.name)

        storage_class = claim.storage_class or ""
        if not storage_class and volume is not None:
            storage_class = volume.storage_class or ""

        volume_id = volume.volume_id if volume is not None else ""
        volume_type = volume_types.get(volume_id, "") if volume_id else ""

        capacity_percent, inode_percent = PLACEHOLDER, PLACEHOLDER
        aggregate = usage.get(key)
        if aggregate is not None:
            capacity_percent = format_percent(aggregate.used_bytes, aggregate.capacity_bytes)
            inode_percent = format_percent(aggregate.inodes_used, aggregate.inodes_total)

        reclaim_policy = ""
        if volume is not None:
            reclaim_policy = volume.reclaim_policy or ""

        rows.append(
            ReportRow(
                namespace=claim.namespace,
                claim=claim.name,
                volume=volume.name if volume is not None else UNBOUND_PLACEHOLDER,
                capacity=claim.capacity or PLACEHOLDER,
                storage_class=storage_class or PLACEHOLDER,
                volume_id=volume_id or PLACEHOLDER,
                volume_type=volume_type or PLACEHOLDER,
                node_ids=_instance_ids(claim_nodes.get(key), node_instances),
                status=claim.phase or PLACEHOLDER,
                capacity_used_percent=capacity_percent,
                inode_used_percent=inode_percent,
                access_modes=access_modes_short(claim.access_modes),
                reclaim_policy=reclaim_policy or PLACEHOLDER,
                age=_claim_age(claim.created_at, now),
            )
        )

    return rows


def _instance_ids(node_names: set[str] | None, node_instances: Mapping[str, str]) -> str:
    if not node_names:
        return PLACEHOLDER
    instance_ids = sorted({node_instances.get(name, "") for name in node_names} - {""})
    if not instance_ids:
        return PLACEHOLDER
    return ",".join(instance_ids)


def _claim_age(created_at: datetime | None, now: datetime) -> str:
    if created_at is None:
        return PLACEHOLDER
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=UTC)
    return humanize_age(now - created_at)
