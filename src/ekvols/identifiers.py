from __future__ import annotations

from typing import Any
import re

_VOLUME_ID_PATTERN = re.compile(r"vol-[0-9a-fA-F]+")


def normalize_volume_id(raw: str | None) -> str:
    """Return the embedded ``vol-<hex>`` id, or the input unchanged when there is none."""
    if not raw:
        return ""
    match = _VOLUME_ID_PATTERN.search(raw)
    if match:
        return match.group(0)
    return raw


def extract_volume_identifier(volume_spec: Any) -> str:
    """Canonical EBS id for a PV spec: CSI volume handle first, in-tree EBS source second."""
    if volume_spec is None:
        return ""

    csi = getattr(volume_spec, "csi", None)
    if csi is not None and getattr(csi, "volume_handle", None):
        return normalize_volume_id(csi.volume_handle)

    ebs = getattr(volume_spec, "aws_elastic_block_store", None)
    if ebs is not None and getattr(ebs, "volume_id", None):
        return normalize_volume_id(ebs.volume_id)

    return ""


def instance_id_from_provider_id(provider_id: str | None) -> str:
    # aws:///eu-west-1a/i-0123456789abcdef0 -> i-0123456789abcdef0
    if not provider_id:
        return ""
    return provider_id.split("/")[-1]
