from __future__ import annotations

import json
from unittest.mock import Mock

import pytest

from ekvols import cli
from ekvols.config import APP_VERSION
from ekvols.ec2 import AwsAuthenticationError
from ekvols.k8s import KubernetesDiscoveryError
from ekvols.models import InventoryReport, ReportRow, SourceOutcome


def _row(claim: str = "data", node_ids: str = "i-0aaa,i-0bbb") -> ReportRow:
    return ReportRow(
        namespace="apps",
        claim=claim,
        volume="pv-data",
        capacity="10Gi",
        storage_class="gp3",
        volume_id="vol-0abc",
        volume_type="gp3",
        node_ids=node_ids,
        status="Bound",
        capacity_used_percent="25.0",
        inode_used_percent="-",
        access_modes="RWX",
        reclaim_policy="Delete",
        age="2d",
    )


def _report() -> InventoryReport:
    return InventoryReport(
        rows=(_row(),),
        outcomes=(SourceOutcome(source="node/node-b/metrics", status="failed", reason="503"),),
    )


@pytest.fixture
def fake_cluster(monkeypatch: pytest.MonkeyPatch) -> Mock:
    run = Mock(return_value=_report())
    monkeypatch.setattr(cli, "load_kubernetes_clients", Mock(return_value=Mock()))
    monkeypatch.setattr(cli, "load_ec2_client", Mock(return_value=Mock()))
    monkeypatch.setattr(cli, "run_inventory", run)
    return run


def test_render_table_aligns_columns_with_two_space_padding() -> None:
    table = cli.render_table([_row(claim="a-much-longer-claim-name")])
    header, line = table.splitlines()

    assert header.startswith("NAMESPACE  PVC                       PV       ")
    assert line.startswith("apps       a-much-longer-claim-name  pv-data  ")
    assert header.endswith("AGE")
    assert line.endswith("2d")
    assert header.index("NODE_ID") == line.index("i-0aaa,i-0bbb")


def test_render_table_without_rows_prints_header_only() -> None:
    assert cli.render_table([]).split() == list(cli.REPORT_COLUMNS)


def test_main_list_prints_table(fake_cluster: Mock, capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = cli.main(["list", "-n", "apps"])

    output = capsys.readouterr().out
    assert exit_code == 0
    assert output.splitlines()[0].startswith("NAMESPACE")
    assert "vol-0abc" in output
    assert fake_cluster.call_args.kwargs["config"].namespace == "apps"


def test_main_list_json_includes_outcomes_when_requested(fake_cluster: Mock, capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = cli.main(["list", "--format", "json", "--show-outcomes"])

    payload = json.loads(capsys.readouterr().out)
    assert exit_code == 0
    assert payload["rows"][0]["VOLUME_ID"] == "vol-0abc"
    assert payload["outcomes"] == [{"source": "node/node-b/metrics", "status": "failed", "reason": "503"}]


def test_main_list_with_no_aws_skips_ec2_client(
    fake_cluster: Mock,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    load_ec2 = Mock()
    monkeypatch.setattr(cli, "load_ec2_client", load_ec2)

    assert cli.main(["list", "--no-aws"]) == 0

    load_ec2.assert_not_called()
    assert fake_cluster.call_args.args[0].ec2_client is None


def test_main_list_continues_when_ec2_client_cannot_be_created(
    fake_cluster: Mock,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(cli, "load_ec2_client", Mock(side_effect=AwsAuthenticationError("no region")))

    assert cli.main(["list"]) == 0
    assert fake_cluster.call_args.args[0].ec2_client is None


def test_main_list_with_fatal_discovery_error_exits_nonzero(
    fake_cluster: Mock,
    capsys: pytest.CaptureFixture[str],
) -> None:
    fake_cluster.side_effect = KubernetesDiscoveryError("list Nodes failed")

    exit_code = cli.main(["list"])

    captured = capsys.readouterr()
    assert exit_code == 1
    assert captured.out == ""
    assert "list Nodes failed" in captured.err


def test_main_version_prints_version(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["version"]) == 0
    assert capsys.readouterr().out.strip() == f"Version: {APP_VERSION}"


def test_main_list_with_non_integer_environment_setting_exits_with_usage_error(
    fake_cluster: Mock,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    monkeypatch.setenv("EKVOLS_SCRAPE_WORKERS", "eight")

    exit_code = cli.main(["list", "--no-aws"])

    assert exit_code == 2
    assert "EKVOLS_SCRAPE_WORKERS must be an integer, got 'eight'" in capsys.readouterr().err
    fake_cluster.assert_not_called()


def test_main_list_with_non_positive_environment_setting_exits_before_connecting(
    fake_cluster: Mock,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("EKVOLS_PASS_TIMEOUT_SECONDS", "0")

    assert cli.main(["list"]) == 2
    cli.load_kubernetes_clients.assert_not_called()


def test_main_list_bounds_ec2_client_timeout_by_pass_timeout(
    fake_cluster: Mock,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("EKVOLS_REQUEST_TIMEOUT_SECONDS", "30")
    monkeypatch.setenv("EKVOLS_PASS_TIMEOUT_SECONDS", "12")

    assert cli.main(["list", "--region", "eu-west-1"]) == 0

    cli.load_ec2_client.assert_called_once_with(region="eu-west-1", profile=None, timeout_seconds=12)
