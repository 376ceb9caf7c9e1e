from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence
import logging

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .models import OUTCOME_FAILED, OUTCOME_SKIPPED, OUTCOME_SUCCESS, Deadline, SourceOutcome

logger = logging.getLogger(__name__)

VOLUME_DESCRIBE_BATCH_SIZE = 200
DEFAULT_EC2_TIMEOUT_SECONDS = 30


class AwsAuthenticationError(RuntimeError):
    """Raised when an EC2 client cannot be created from the local AWS configuration."""


@dataclass
class VolumeTypeLookup:
    volume_types: dict[str, str] = field(default_factory=dict)
    outcomes: list[SourceOutcome] = field(default_factory=list)


def load_ec2_client(
    *,
    region: str | None = None,
    profile: str | None = None,
    timeout_seconds: float = DEFAULT_EC2_TIMEOUT_SECONDS,
) -> Any:
    """Build an EC2 client whose calls time out after ``timeout_seconds`` and are not retried."""
    client_config = Config(
        connect_timeout=timeout_seconds,
        read_timeout=timeout_seconds,
        retries={"total_max_attempts": 1},
    )
    try:
        session = boto3.session.Session(profile_name=profile or None, region_name=region or None)
        return session.client("ec2", config=client_config)
    except BotoCoreError as error:
        reason = str(error).strip() or error.__class__.__name__
        profile_message = f" with profile '{profile}'" if profile else ""
        raise AwsAuthenticationError(
            f"EC2 client setup failed{profile_message}: {reason}. "
            "Set AWS_REGION/--region and verify credentials (environment, shared config or instance role)."
        ) from error


def fetch_volume_types(
    ec2_client: Any | None,
    volume_ids: Sequence[str],
    *,
    batch_size: int = VOLUME_DESCRIBE_BATCH_SIZE,
    deadline: Deadline | None = None,
) -> VolumeTypeLookup:
    """Resolve the EBS volume type for each id, one ``DescribeVolumes`` call per batch.

    A failing batch is skipped and leaves its ids unresolved; the remaining
    batches are still attempted.
    """
    if batch_size <= 0:
        raise ValueError("batch_size must be positive")

    lookup = VolumeTypeLookup()
    if ec2_client is None or not volume_ids:
        return lookup

    for batch_number, start in enumerate(range(0, len(volume_ids), batch_size), start=1):
        batch = list(volume_ids[start : start + batch_size])
        source = f"ec2/describe-volumes/batch-{batch_number}"

        if deadline is not None and deadline.expired():
            lookup.outcomes.append(
                SourceOutcome(source=source, status=OUTCOME_SKIPPED, reason="pass deadline exceeded")
            )
            continue

        try:
            response = ec2_client.describe_volumes(VolumeIds=batch)
        except (BotoCoreError, ClientError) as error:
            reason = _error_message(error)
            logger.warning("Skipping DescribeVolumes batch %d (%d ids): %s", batch_number, len(batch), reason)
            lookup.outcomes.append(SourceOutcome(source=source, status=OUTCOME_FAILED, reason=reason))
            continue

        for volume in response.get("Volumes", []):
            volume_id = volume.get("VolumeId")
            volume_type = volume.get("VolumeType")
            if not volume_id or not volume_type:
                continue
            lookup.volume_types[volume_id] = volume_type
        lookup.outcomes.append(SourceOutcome(source=source, status=OUTCOME_SUCCESS))

    return lookup


def _error_message(error: Exception) -> str:
    if isinstance(error, ClientError):
        details = error.response.get("Error", {})
        code = details.get("Code") or "unknown"
        message = details.get("Message") or "no message provided"
        return f"{code}: {message}"
    return str(error).strip() or error.__class__.__name__
