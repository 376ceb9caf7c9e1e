from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any
import logging

from .config import AppConfig, validate_config
from .ec2 import fetch_volume_types
from .k8s import (
    KubernetesClients,
    KubernetesDiscoveryError,
    fetch_node_metrics,
    list_claims,
    list_nodes,
    list_pod_attachments,
    list_volumes,
)
from .metrics import collect_volume_usage
from .models import (
    OUTCOME_FAILED,
    OUTCOME_SKIPPED,
    OUTCOME_SUCCESS,
    Deadline,
    DeadlineExceeded,
    InventoryReport,
    PodAttachment,
    SourceOutcome,
)
from .report import correlate_claims
from .topology import build_claim_node_index, build_node_instance_index, build_volume_index

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CorrelationContext:
    kubernetes: KubernetesClients
    ec2_client: Any | None = None


def run_inventory(
    context: CorrelationContext,
    *,
    config: AppConfig | None = None,
    now: datetime | None = None,
) -> InventoryReport:
    """Run one read-only inventory pass and return a row for every PVC.

    Failing to list PVs, nodes or PVCs raises ``KubernetesDiscoveryError``.
    Pod, kubelet metrics and EC2 failures only degrade the affected columns
    and are reported through ``InventoryReport.outcomes``.
    """
    config = config or AppConfig()
    validate_config(config)
    namespace = config.namespace or None
    deadline = Deadline.after(config.pass_timeout_seconds)

    core = context.kubernetes
    volumes = list_volumes(core, request_timeout_seconds=_listing_timeout(deadline, config, "PersistentVolumes"))
    nodes = list_nodes(core, request_timeout_seconds=_listing_timeout(deadline, config, "Nodes"))
    claims = list_claims(
        core,
        namespace=namespace,
        request_timeout_seconds=_listing_timeout(deadline, config, "PVCs"),
    )
    logger.info("Listed %d PVs, %d nodes and %d PVCs", len(volumes), len(nodes), len(claims))

    volume_index, volume_ids = build_volume_index(volumes)
    node_instances = build_node_instance_index(nodes)

    outcomes: list[SourceOutcome] = []

    usage = collect_volume_usage(
        [node.name for node in nodes],
        lambda node_name, path: fetch_node_metrics(
            core,
            node_name,
            path,
            request_timeout_seconds=deadline.request_timeout(config.request_timeout_seconds),
        ),
        namespace=namespace,
        max_workers=config.scrape_workers,
        deadline=deadline,
    )
    outcomes.extend(usage.outcomes)

    attachments, pods_outcome = _read_pod_attachments(
        core,
        namespace=namespace,
        deadline=deadline,
        request_timeout_seconds=config.request_timeout_seconds,
    )
    outcomes.append(pods_outcome)
    claim_nodes = build_claim_node_index(attachments)

    if context.ec2_client is None:
        outcomes.append(SourceOutcome(source="ec2", status=OUTCOME_SKIPPED, reason="no EC2 client configured"))
    lookup = fetch_volume_types(
        context.ec2_client,
        volume_ids,
        batch_size=config.volume_batch_size,
        deadline=deadline,
    )
    outcomes.extend(lookup.outcomes)

    rows = correlate_claims(
        claims,
        volume_index=volume_index,
        node_instances=node_instances,
        claim_nodes=claim_nodes,
        usage=usage.usage,
        volume_types=lookup.volume_types,
        now=now,
    )
    return InventoryReport(rows=tuple(rows), outcomes=tuple(outcomes))


def _read_pod_attachments(
    clients: KubernetesClients,
    *,
    namespace: str | None,
    deadline: Deadline,
    request_timeout_seconds: float,
) -> tuple[list[PodAttachment], SourceOutcome]:
    try:
        attachments = list_pod_attachments(
            clients,
            namespace=namespace,
            request_timeout_seconds=deadline.request_timeout(request_timeout_seconds),
        )
    except DeadlineExceeded as error:
        return [], SourceOutcome(source="pods", status=OUTCOME_SKIPPED, reason=str(error))
    except KubernetesDiscoveryError as error:
        logger.warning("Continuing without pod placement: %s", error)
        return [], SourceOutcome(source="pods", status=OUTCOME_FAILED, reason=str(error))
    return attachments, SourceOutcome(source="pods", status=OUTCOME_SUCCESS)


def _listing_timeout(deadline: Deadline, config: AppConfig, resource: str) -> float:
    try:
        return deadline.request_timeout(config.request_timeout_seconds)
    except DeadlineExceeded as error:
        raise KubernetesDiscoveryError(f"Unable to list {resource}: {error}.") from error
