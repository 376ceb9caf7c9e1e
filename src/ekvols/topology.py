from __future__ import annotations

from typing import Iterable

from .identifiers import instance_id_from_provider_id
from .models import NodeRecord, PodAttachment, VolumeRecord


def claim_key(namespace: str, claim_name: str) -> str:
    return f"{namespace}/{claim_name}"


def build_volume_index(volumes: Iterable[VolumeRecord]) -> tuple[dict[str, VolumeRecord], list[str]]:
    """Index volumes by name and collect their distinct cloud volume ids in first-seen order."""
    index: dict[str, VolumeRecord] = {}
    volume_ids: list[str] = []
    seen: set[str] = set()

    for volume in volumes:
        index[volume.name] = volume
        if volume.volume_id and volume.volume_id not in seen:
            seen.add(volume.volume_id)
            volume_ids.append(volume.volume_id)

    return index, volume_ids


def build_node_instance_index(nodes: Iterable[NodeRecord]) -> dict[str, str]:
    # An empty instance id means the node's provider id could not be resolved.
    return {node.name: instance_id_from_provider_id(node.provider_id) for node in nodes}


def build_claim_node_index(attachments: Iterable[PodAttachment]) -> dict[str, set[str]]:
    index: dict[str, set[str]] = {}
    for attachment in attachments:
        if not attachment.node_name:
            continue
        for claim_name in attachment.claim_names:
            index.setdefault(claim_key(attachment.namespace, claim_name), set()).add(attachment.node_name)
    return index
