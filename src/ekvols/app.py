from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Any
import os

import streamlit as st
import yaml

from ekvols.cli import render_json
from ekvols.config import APP_VERSION, AppConfig, validate_config
from ekvols.ec2 import AwsAuthenticationError, load_ec2_client
from ekvols.inventory import CorrelationContext, run_inventory
from ekvols.k8s import (
    KubernetesAuthenticationError,
    KubernetesDiscoveryError,
    load_kubernetes_clients,
    resolve_kubeconfig_path,
)
from ekvols.models import InventoryReport, ReportRow, SourceOutcome
from ekvols.report import PLACEHOLDER, UNBOUND_PLACEHOLDER

_CURRENT_CONTEXT_LABEL = "(kubeconfig current-context)"

_WORKFLOW_STATE_LABELS = {
    "done": "Done",
    "active": "Ready",
    "blocked": "Waiting",
}

_OUTCOME_HINTS: tuple[tuple[str, str], ...] = (
    (
        "node/",
        "Verify RBAC allows get on nodes/proxy and that the kubelet metrics endpoint is reachable.",
    ),
    (
        "pods",
        "Verify RBAC allows list on pods; NODE_ID stays empty until pods can be read.",
    ),
    (
        "ec2/",
        "Verify the credentials allow ec2:DescribeVolumes in the cluster's region.",
    ),
    (
        "ec2",
        "Configure AWS credentials and a region to resolve EBS volume types.",
    ),
)


def _initialize_state() -> None:
    defaults = {
        "clients": None,
        "ec2_client": None,
        "connection_label": "",
        "report": None,
    }
    for key, value in defaults.items():
        if key not in st.session_state:
            st.session_state[key] = value


def _load_base_config() -> tuple[AppConfig | None, str | None]:
    try:
        config = AppConfig()
        validate_config(config)
    except ValueError as error:
        return None, f"Invalid EKVOLS_* environment configuration: {error}"
    return config, None


def _apply_dashboard_settings(
    base: AppConfig,
    *,
    namespace: str,
    request_timeout_seconds: int,
    pass_timeout_seconds: int,
    scrape_workers: int,
    aws_enabled: bool,
    aws_region: str,
    aws_profile: str,
) -> AppConfig:
    config = replace(
        base,
        namespace=namespace.strip(),
        request_timeout_seconds=int(request_timeout_seconds),
        pass_timeout_seconds=int(pass_timeout_seconds),
        scrape_workers=int(scrape_workers),
        aws_enabled=aws_enabled,
        aws_region=aws_region.strip() or None,
        aws_profile=aws_profile.strip() or None,
    )
    validate_config(config)
    return config


def _read_kubeconfig_contexts(kubeconfig_path: str | None) -> tuple[list[str], str | None]:
    """Return the context names and current-context of a kubeconfig file.

    A blank path reads the first ``$KUBECONFIG`` entry, or ``~/.kube/config``.
    Raises ``ValueError`` when the file is missing or not a kubeconfig.
    """
    resolved = resolve_kubeconfig_path(kubeconfig_path)
    if resolved is None:
        env_paths = [entry for entry in os.getenv("KUBECONFIG", "").split(os.pathsep) if entry.strip()]
        resolved = str(Path(env_paths[0]).expanduser()) if env_paths else str(Path("~/.kube/config").expanduser())

    try:
        document = yaml.safe_load(Path(resolved).read_text(encoding="utf-8"))
    except OSError as error:
        raise ValueError(f"Cannot read kubeconfig {resolved}: {error.strerror or error}") from error
    except yaml.YAMLError as error:
        raise ValueError(f"Kubeconfig {resolved} is not valid YAML ({error.__class__.__name__})") from error

    if not isinstance(document, dict):
        raise ValueError(f"Kubeconfig {resolved} is not a YAML mapping")

    names = [
        entry["name"]
        for entry in document.get("contexts") or []
        if isinstance(entry, dict) and entry.get("name")
    ]
    if not names:
        raise ValueError(f"Kubeconfig {resolved} defines no contexts")

    current = document.get("current-context")
    return names, current if current in names else None


def _load_optional_ec2_client(config: AppConfig) -> tuple[Any | None, str | None]:
    if not config.aws_enabled:
        return None, None
    try:
        client = load_ec2_client(
            region=config.aws_region,
            profile=config.aws_profile,
            timeout_seconds=config.ec2_timeout_seconds,
        )
    except AwsAuthenticationError as error:
        return None, str(error)
    return client, None


def _build_report_rows(rows: tuple[ReportRow, ...] | list[ReportRow]) -> list[dict[str, str]]:
    return [row.as_dict() for row in rows]


def _summarize_report(report: InventoryReport) -> dict[str, int]:
    rows = report.rows
    return {
        "PVCs": len(rows),
        "Unbound": sum(1 for row in rows if row.volume == UNBOUND_PLACEHOLDER),
        "Without usage": sum(1 for row in rows if row.capacity_used_percent == PLACEHOLDER),
        "Degraded sources": len(report.degraded_outcomes()),
    }


def _outcome_hint(outcome: SourceOutcome) -> str:
    for prefix, hint in _OUTCOME_HINTS:
        if outcome.source.startswith(prefix):
            return hint
    return "Inspect application logs for more detail."


def _build_outcome_rows(report: InventoryReport) -> list[dict[str, str]]:
    return [
        {
            "source": outcome.source,
            "status": outcome.status,
            "reason": outcome.reason,
            "next_step": _outcome_hint(outcome),
        }
        for outcome in report.degraded_outcomes()
    ]


def _build_workflow_rows(*, connected: bool, row_count: int | None) -> list[dict[str, str]]:
    connect_state = "done" if connected else "active"
    inventory_state = "done" if row_count is not None else ("active" if connected else "blocked")
    review_state = "done" if row_count else ("active" if row_count is not None else "blocked")

    return [
        {
            "step": "1. Connect",
            "state": _WORKFLOW_STATE_LABELS[connect_state],
            "description": "Authenticate to the cluster from the sidebar.",
        },
        {
            "step": "2. Inventory",
            "state": _WORKFLOW_STATE_LABELS[inventory_state],
            "description": "Read PVs, PVCs, nodes, pods, kubelet metrics and EBS volume types.",
        },
        {
            "step": "3. Review",
            "state": _WORKFLOW_STATE_LABELS[review_state],
            "description": "Inspect the PVC mapping and any degraded sources.",
        },
    ]


def main() -> None:
    st.set_page_config(page_title="EKS Volume Inventory", layout="wide")
    _initialize_state()

    st.title("EKS Volume Inventory")
    st.caption(f"Map PVCs to PVs, EBS volumes and EC2 instances with usage percentages. Version {APP_VERSION}.")

    base_config, config_error = _load_base_config()
    if base_config is None:
        st.error(config_error)
        return

    report: InventoryReport | None = st.session_state.report
    st.subheader("Workflow Status")
    st.dataframe(
        _build_workflow_rows(
            connected=st.session_state.clients is not None,
            row_count=len(report.rows) if report is not None else None,
        ),
        use_container_width=True,
        hide_index=True,
    )

    st.sidebar.header("Cluster")
    in_cluster = st.sidebar.checkbox(
        "Use in-cluster service account",
        value=bool(os.getenv("KUBERNETES_SERVICE_HOST")),
        help="Authenticate with the pod's mounted service account token.",
    )
    kubeconfig_path = ""
    context: str | None = None
    if not in_cluster:
        kubeconfig_path = st.sidebar.text_input(
            "Kubeconfig path (optional)",
            value="",
            help="Blank uses $KUBECONFIG or ~/.kube/config.",
        )
        try:
            context_names, current_context = _read_kubeconfig_contexts(kubeconfig_path)
        except ValueError as error:
            st.sidebar.warning(str(error))
            context_names, current_context = [], None
        options = [_CURRENT_CONTEXT_LABEL, *context_names]
        selected = st.sidebar.selectbox(
            "Context",
            options=options,
            help=f"Current context: {current_context}" if current_context else None,
        )
        context = None if selected == _CURRENT_CONTEXT_LABEL else selected

    st.sidebar.header("AWS")
    aws_enabled = st.sidebar.checkbox(
        "Resolve EBS volume types",
        value=base_config.aws_enabled,
        help="Calls ec2:DescribeVolumes with the default AWS credential chain.",
    )
    aws_region = st.sidebar.text_input("Region (optional)", value=base_config.aws_region or "")
    aws_profile = st.sidebar.text_input("Profile (optional)", value=base_config.aws_profile or "")

    st.sidebar.header("Pass limits")
    request_timeout = st.sidebar.number_input(
        "Request timeout (s)", min_value=1, value=base_config.request_timeout_seconds
    )
    pass_timeout = st.sidebar.number_input("Pass timeout (s)", min_value=1, value=base_config.pass_timeout_seconds)
    scrape_workers = st.sidebar.number_input(
        "Concurrent node scrapes", min_value=1, max_value=64, value=base_config.scrape_workers
    )

    namespace_input = st.text_input(
        "Namespace filter (optional)",
        value=base_config.namespace,
        help="Leave blank to inventory all namespaces.",
    )
    try:
        config = _apply_dashboard_settings(
            base_config,
            namespace=namespace_input,
            request_timeout_seconds=request_timeout,
            pass_timeout_seconds=pass_timeout,
            scrape_workers=scrape_workers,
            aws_enabled=aws_enabled,
            aws_region=aws_region,
            aws_profile=aws_profile,
        )
    except ValueError as error:
        st.error(f"Invalid settings: {error}")
        return

    if st.sidebar.button("Connect", type="primary"):
        try:
            st.session_state.clients = load_kubernetes_clients(
                kubeconfig_path=kubeconfig_path,
                context=context,
                in_cluster=in_cluster,
            )
        except KubernetesAuthenticationError as error:
            st.session_state.clients = None
            st.sidebar.error(str(error))
        else:
            ec2_client, aws_error = _load_optional_ec2_client(config)
            st.session_state.ec2_client = ec2_client
            st.session_state.connection_label = "in-cluster" if in_cluster else (context or _CURRENT_CONTEXT_LABEL)
            st.session_state.report = None
            st.sidebar.success(f"Connected ({st.session_state.connection_label}).")
            if aws_error:
                st.sidebar.warning(f"EBS volume types will be skipped: {aws_error}")

    if st.session_state.clients is None:
        st.info("Connect to a cluster from the sidebar to build the volume inventory.")
        return

    if st.button("Refresh inventory"):
        with st.spinner("Reading PVs, PVCs, nodes, pods, kubelet metrics and EBS volumes..."):
            try:
                st.session_state.report = run_inventory(
                    CorrelationContext(
                        kubernetes=st.session_state.clients,
                        ec2_client=st.session_state.ec2_client,
                    ),
                    config=config,
                )
            except KubernetesDiscoveryError as error:
                st.error(str(error))

    report = st.session_state.report
    if report is None:
        st.info("Click 'Refresh inventory' to load persistent volume claims.")
        return

    summary_columns = st.columns(4)
    for column, (label, value) in zip(summary_columns, _summarize_report(report).items()):
        column.metric(label, value)

    if report.rows:
        st.dataframe(_build_report_rows(report.rows), use_container_width=True, hide_index=True)
        st.download_button(
            "Download JSON",
            data=render_json(report, include_outcomes=True),
            file_name="ekvols-inventory.json",
            mime="application/json",
        )
    else:
        st.warning("Inventory completed, but no PVCs were found for the current filter.")

    outcome_rows = _build_outcome_rows(report)
    if outcome_rows:
        st.subheader("Degraded Sources")
        st.caption("These reads failed or were skipped; affected columns show '-'.")
        st.dataframe(outcome_rows, use_container_width=True, hide_index=True)


if __name__ == "__main__":
    main()
