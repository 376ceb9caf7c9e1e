from __future__ import annotations

from unittest.mock import Mock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError, ProfileNotFound

from ekvols.ec2 import AwsAuthenticationError, fetch_volume_types, load_ec2_client
from ekvols.models import Deadline


def _describe_response(*volumes: dict[str, str]) -> dict:
    return {"Volumes": list(volumes)}


def _not_found_error() -> ClientError:
    return ClientError(
        {"Error": {"Code": "InvalidVolume.NotFound", "Message": "The volume 'vol-0dead' does not exist."}},
        "DescribeVolumes",
    )


def test_fetch_volume_types_batches_ids_and_maps_types() -> None:
    ec2_client = Mock()
    ec2_client.describe_volumes.side_effect = [
        _describe_response({"VolumeId": "vol-01", "VolumeType": "gp3"}, {"VolumeId": "vol-02", "VolumeType": "io2"}),
        _describe_response({"VolumeId": "vol-03", "VolumeType": "st1"}),
    ]

    lookup = fetch_volume_types(ec2_client, ["vol-01", "vol-02", "vol-03"], batch_size=2)

    assert lookup.volume_types == {"vol-01": "gp3", "vol-02": "io2", "vol-03": "st1"}
    assert [call.kwargs["VolumeIds"] for call in ec2_client.describe_volumes.call_args_list] == [
        ["vol-01", "vol-02"],
        ["vol-03"],
    ]
    assert [outcome.status for outcome in lookup.outcomes] == ["success", "success"]


def test_fetch_volume_types_uses_batches_of_two_hundred_by_default() -> None:
    ec2_client = Mock()
    ec2_client.describe_volumes.return_value = _describe_response()
    volume_ids = [f"vol-{index:04x}" for index in range(401)]

    fetch_volume_types(ec2_client, volume_ids)

    batch_sizes = [len(call.kwargs["VolumeIds"]) for call in ec2_client.describe_volumes.call_args_list]
    assert batch_sizes == [200, 200, 1]


def test_fetch_volume_types_skips_failed_batch_and_continues() -> None:
    ec2_client = Mock()
    ec2_client.describe_volumes.side_effect = [
        _not_found_error(),
        _describe_response({"VolumeId": "vol-03", "VolumeType": "gp2"}),
    ]

    lookup = fetch_volume_types(ec2_client, ["vol-0dead", "vol-02", "vol-03"], batch_size=2)

    assert lookup.volume_types == {"vol-03": "gp2"}
    assert lookup.outcomes[0].status == "failed"
    assert lookup.outcomes[0].source == "ec2/describe-volumes/batch-1"
    assert "InvalidVolume.NotFound" in lookup.outcomes[0].reason
    assert lookup.outcomes[1].status == "success"


def test_fetch_volume_types_with_transport_error_skips_batch() -> None:
    ec2_client = Mock()
    ec2_client.describe_volumes.side_effect = EndpointConnectionError(endpoint_url="https://ec2.invalid")

    lookup = fetch_volume_types(ec2_client, ["vol-01"])

    assert lookup.volume_types == {}
    assert lookup.outcomes[0].status == "failed"


def test_fetch_volume_types_ignores_descriptors_missing_id_or_type() -> None:
    ec2_client = Mock()
    ec2_client.describe_volumes.return_value = _describe_response(
        {"VolumeId": "vol-01"},
        {"VolumeType": "gp3"},
        {"VolumeId": "vol-02", "VolumeType": ""},
        {"VolumeId": "vol-03", "VolumeType": "sc1"},
    )

    lookup = fetch_volume_types(ec2_client, ["vol-01", "vol-02", "vol-03"])

    assert lookup.volume_types == {"vol-03": "sc1"}


def test_fetch_volume_types_without_client_or_ids_is_a_no_op() -> None:
    ec2_client = Mock()

    assert fetch_volume_types(None, ["vol-01"]).volume_types == {}
    assert fetch_volume_types(ec2_client, []).outcomes == []
    ec2_client.describe_volumes.assert_not_called()


def test_fetch_volume_types_after_deadline_skips_remaining_batches() -> None:
    ec2_client = Mock()

    lookup = fetch_volume_types(ec2_client, ["vol-01", "vol-02"], batch_size=1, deadline=Deadline(expires_at=0.0))

    assert [outcome.status for outcome in lookup.outcomes] == ["skipped", "skipped"]
    ec2_client.describe_volumes.assert_not_called()


def test_fetch_volume_types_with_non_positive_batch_size_raises_value_error() -> None:
    with pytest.raises(ValueError, match="batch_size"):
        fetch_volume_types(Mock(), ["vol-01"], batch_size=0)


def test_load_ec2_client_with_unknown_profile_raises_authentication_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        "ekvols.ec2.boto3.session.Session",
        Mock(side_effect=ProfileNotFound(profile="missing")),
    )

    with pytest.raises(AwsAuthenticationError, match="profile 'missing'"):
        load_ec2_client(region="eu-west-1", profile="missing")


def test_load_ec2_client_passes_region_profile_and_timeouts_to_session(monkeypatch: pytest.MonkeyPatch) -> None:
    session = Mock()
    session_factory = Mock(return_value=session)
    monkeypatch.setattr("ekvols.ec2.boto3.session.Session", session_factory)

    ec2_client = load_ec2_client(region="eu-west-1", profile=None, timeout_seconds=7)

    session_factory.assert_called_once_with(profile_name=None, region_name="eu-west-1")
    session.client.assert_called_once()
    assert session.client.call_args.args == ("ec2",)
    client_config = session.client.call_args.kwargs["config"]
    assert (client_config.connect_timeout, client_config.read_timeout) == (7, 7)
    assert client_config.retries == {"total_max_attempts": 1}
    assert ec2_client is session.client.return_value
