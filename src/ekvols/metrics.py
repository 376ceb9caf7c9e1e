from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Mapping, Sequence
import logging

from prometheus_client.parser import text_string_to_metric_families

from .models import (
    OUTCOME_FAILED,
    OUTCOME_SKIPPED,
    OUTCOME_SUCCESS,
    Deadline,
    DeadlineExceeded,
    SourceOutcome,
    UsageAggregate,
)
from .topology import claim_key

logger = logging.getLogger(__name__)

PRIMARY_METRICS_PATH = "metrics"
FALLBACK_METRICS_PATH = "metrics/resource"

USED_BYTES_FAMILY = "kubelet_volume_stats_used_bytes"
CAPACITY_BYTES_FAMILY = "kubelet_volume_stats_capacity_bytes"
INODES_TOTAL_FAMILY = "kubelet_volume_stats_inodes"
INODES_USED_FAMILY = "kubelet_volume_stats_inodes_used"

VOLUME_STATS_FIELDS: dict[str, str] = {
    USED_BYTES_FAMILY: "used_bytes",
    CAPACITY_BYTES_FAMILY: "capacity_bytes",
    INODES_TOTAL_FAMILY: "inodes_total",
    INODES_USED_FAMILY: "inodes_used",
}

DEFAULT_SCRAPE_WORKERS = 8

MetricsFetcher = Callable[[str, str], str]


@dataclass(frozen=True)
class MetricSample:
    labels: Mapping[str, str]
    value: float


@dataclass(frozen=True)
class NodeScrape:
    node_name: str
    families: dict[str, list[MetricSample]] | None
    outcome: SourceOutcome


@dataclass
class UsageCollection:
    usage: dict[str, UsageAggregate] = field(default_factory=dict)
    outcomes: list[SourceOutcome] = field(default_factory=list)


def parse_metric_families(text: str) -> dict[str, list[MetricSample]] | None:
    """Decode a Prometheus text exposition into samples per family, or None if it is unreadable."""
    families: dict[str, list[MetricSample]] = {}
    try:
        for family in text_string_to_metric_families(text):
            samples = families.setdefault(family.name, [])
            for sample in family.samples:
                # Gauge and untyped samples both land in ``value``.
                samples.append(MetricSample(labels=dict(sample.labels), value=float(sample.value)))
    except ValueError as error:
        logger.debug("Discarding unparseable metrics payload: %s", error)
        return None
    return families


def aggregate_volume_stats(
    families: Mapping[str, Sequence[MetricSample]],
    usage: dict[str, UsageAggregate],
    *,
    namespace: str | None = None,
) -> None:
    """Fold the four kubelet volume-stats families into ``usage``; later samples overwrite earlier ones."""
    for family_name, field_name in VOLUME_STATS_FIELDS.items():
        for sample in families.get(family_name, ()):
            sample_namespace = sample.labels.get("namespace", "")
            claim_name = sample.labels.get("persistentvolumeclaim", "")
            if not sample_namespace or not claim_name:
                continue
            if namespace and sample_namespace != namespace:
                continue

            aggregate = usage.setdefault(claim_key(sample_namespace, claim_name), UsageAggregate())
            setattr(aggregate, field_name, sample.value)


def scrape_node(node_name: str, fetch: MetricsFetcher, *, deadline: Deadline | None = None) -> NodeScrape:
    """Scrape one node, falling back to the resource endpoint.

    The deadline is checked before each request. A primary payload that was
    already read is kept when the deadline stops the fallback.
    """
    source = f"node/{node_name}/metrics"
    skipped = NodeScrape(
        node_name=node_name,
        families=None,
        outcome=SourceOutcome(source=source, status=OUTCOME_SKIPPED, reason="pass deadline exceeded"),
    )
    if deadline is not None and deadline.expired():
        return skipped

    try:
        families, primary_error = _fetch_families(node_name, PRIMARY_METRICS_PATH, fetch)
    except DeadlineExceeded:
        return skipped

    if families is None or USED_BYTES_FAMILY not in families:
        try:
            if deadline is not None and deadline.expired():
                raise DeadlineExceeded("pass deadline exceeded")
            fallback, fallback_error = _fetch_families(node_name, FALLBACK_METRICS_PATH, fetch)
        except DeadlineExceeded:
            if families is None:
                logger.debug("Skipping fallback metrics for node %s: pass deadline exceeded", node_name)
                return skipped
            fallback, fallback_error = None, "pass deadline exceeded"
        if fallback is not None:
            families = fallback
        elif families is None:
            reason = f"{PRIMARY_METRICS_PATH}: {primary_error}; {FALLBACK_METRICS_PATH}: {fallback_error}"
            logger.warning("Skipping metrics for node %s: %s", node_name, reason)
            return NodeScrape(
                node_name=node_name,
                families=None,
                outcome=SourceOutcome(source=source, status=OUTCOME_FAILED, reason=reason),
            )

    return NodeScrape(
        node_name=node_name,
        families=families,
        outcome=SourceOutcome(source=source, status=OUTCOME_SUCCESS),
    )


def collect_volume_usage(
    node_names: Sequence[str],
    fetch: MetricsFetcher,
    *,
    namespace: str | None = None,
    max_workers: int = DEFAULT_SCRAPE_WORKERS,
    deadline: Deadline | None = None,
) -> UsageCollection:
    collection = UsageCollection()
    if not node_names:
        return collection

    workers = max(1, min(max_workers, len(node_names)))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ekvols-scrape") as executor:
        scrapes = list(executor.map(lambda name: scrape_node(name, fetch, deadline=deadline), node_names))

    # Merge on this thread in node order so overwrites are deterministic.
    for scrape in scrapes:
        collection.outcomes.append(scrape.outcome)
        if scrape.families is not None:
            aggregate_volume_stats(scrape.families, collection.usage, namespace=namespace)

    return collection


def _fetch_families(
    node_name: str,
    path: str,
    fetch: MetricsFetcher,
) -> tuple[dict[str, list[MetricSample]] | None, str]:
    try:
        raw = fetch(node_name, path)
    except DeadlineExceeded:
        raise
    except Exception as error:  # pylint: disable=broad-except
        logger.debug("Metrics fetch for node %s at %s failed: %s", node_name, path, error)
        return None, str(error).strip() or error.__class__.__name__

    families = parse_metric_families(raw)
    if families is None:
        return None, "unparseable payload"
    return families, ""
