from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, TypeVar

from kubernetes import client, config
from kubernetes.client import ApiException

from .config import APP_VERSION
from .identifiers import extract_volume_identifier
from .models import ClaimRecord, NodeRecord, PodAttachment, VolumeRecord

DEFAULT_REQUEST_TIMEOUT_SECONDS = 30
DEFAULT_KUBECONFIG_LABEL = "the default kubeconfig search path"
T = TypeVar("T")


@dataclass(frozen=True)
class KubernetesClients:
    api_client: client.ApiClient
    core_api: client.CoreV1Api


class KubernetesDiscoveryError(RuntimeError):
    """Raised when a cluster read fails."""


class KubernetesAuthenticationError(RuntimeError):
    """Raised when no usable cluster credentials could be loaded."""


def load_kubernetes_clients(
    *,
    kubeconfig_path: str | None = None,
    context: str | None = None,
    in_cluster: bool = False,
) -> KubernetesClients:
    """Authenticate with the pod's service account or a kubeconfig file.

    A blank ``kubeconfig_path`` falls back to the client's own search
    (``$KUBECONFIG``, then ``~/.kube/config``). ``context`` is ignored for
    in-cluster authentication.
    """
    config_file = resolve_kubeconfig_path(kubeconfig_path)
    try:
        if in_cluster:
            config.load_incluster_config()
        else:
            config.load_kube_config(config_file=config_file, context=context or None)
    except Exception as error:  # pylint: disable=broad-except
        if in_cluster:
            source = "the in-cluster service account (is the token mounted?)"
        else:
            source = f"kubeconfig {config_file or DEFAULT_KUBECONFIG_LABEL}"
            if context:
                source += f", context '{context}'"
        raise KubernetesAuthenticationError(f"Unable to authenticate with {source}: {_describe(error)}") from error

    api_client = client.ApiClient()
    api_client.user_agent = f"ekvols/{APP_VERSION}"
    return KubernetesClients(api_client=api_client, core_api=client.CoreV1Api(api_client))


def resolve_kubeconfig_path(kubeconfig_path: str | None) -> str | None:
    if not kubeconfig_path or not kubeconfig_path.strip():
        return None
    return str(Path(kubeconfig_path.strip()).expanduser())


def list_volumes(
    clients: KubernetesClients,
    *,
    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
) -> list[VolumeRecord]:
    items = _read(
        "list PersistentVolumes",
        lambda: clients.core_api.list_persistent_volume(_request_timeout=request_timeout_seconds).items,
        rbac="list persistentvolumes",
    )
    return [_volume_record(pv) for pv in items]


def list_claims(
    clients: KubernetesClients,
    *,
    namespace: str | None = None,
    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
) -> list[ClaimRecord]:
    if namespace:
        items = _read(
            f"list PVCs in namespace '{namespace}'",
            lambda: clients.core_api.list_namespaced_persistent_volume_claim(
                namespace=namespace,
                _request_timeout=request_timeout_seconds,
            ).items,
            rbac=f"list persistentvolumeclaims in '{namespace}'",
        )
    else:
        items = _read(
            "list PVCs across all namespaces",
            lambda: clients.core_api.list_persistent_volume_claim_for_all_namespaces(
                _request_timeout=request_timeout_seconds
            ).items,
            rbac="list persistentvolumeclaims cluster-wide (or pass a namespace)",
        )
    return [_claim_record(pvc) for pvc in items]


def list_nodes(
    clients: KubernetesClients,
    *,
    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
) -> list[NodeRecord]:
    items = _read(
        "list Nodes",
        lambda: clients.core_api.list_node(_request_timeout=request_timeout_seconds).items,
        rbac="list nodes",
    )
    return [
        NodeRecord(
            name=node.metadata.name or "",
            provider_id=(node.spec.provider_id or "") if node.spec else "",
        )
        for node in items
    ]


def list_pod_attachments(
    clients: KubernetesClients,
    *,
    namespace: str | None = None,
    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
) -> list[PodAttachment]:
    if namespace:
        items = _read(
            f"list Pods in namespace '{namespace}'",
            lambda: clients.core_api.list_namespaced_pod(
                namespace=namespace,
                _request_timeout=request_timeout_seconds,
            ).items,
            rbac=f"list pods in '{namespace}'",
        )
    else:
        items = _read(
            "list Pods across all namespaces",
            lambda: clients.core_api.list_pod_for_all_namespaces(_request_timeout=request_timeout_seconds).items,
            rbac="list pods cluster-wide (or pass a namespace)",
        )
    return [_pod_attachment(pod) for pod in items]


def fetch_node_metrics(
    clients: KubernetesClients,
    node_name: str,
    path: str,
    *,
    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
) -> str:
    """Fetch raw kubelet metrics text through the API server node proxy."""

    def _fetch() -> str:
        response = clients.core_api.connect_get_node_proxy_with_path(
            node_name,
            path,
            _preload_content=False,
            _request_timeout=request_timeout_seconds,
        )
        data = response.data
        if isinstance(data, bytes):
            return data.decode("utf-8", errors="replace")
        return str(data)

    return _read(f"fetch /{path} from node '{node_name}'", _fetch, rbac="get nodes/proxy")


def _volume_record(pv: client.V1PersistentVolume) -> VolumeRecord:
    spec = pv.spec
    return VolumeRecord(
        name=pv.metadata.name or "",
        volume_id=extract_volume_identifier(spec),
        storage_class=spec.storage_class_name if spec else None,
        reclaim_policy=spec.persistent_volume_reclaim_policy if spec else None,
    )


def _claim_record(pvc: client.V1PersistentVolumeClaim) -> ClaimRecord:
    spec = pvc.spec
    requests = spec.resources.requests if spec and spec.resources and spec.resources.requests else {}
    return ClaimRecord(
        namespace=pvc.metadata.namespace or "",
        name=pvc.metadata.name or "",
        capacity=requests.get("storage"),
        storage_class=spec.storage_class_name if spec else None,
        volume_name=spec.volume_name if spec else None,
        access_modes=tuple(spec.access_modes or ()) if spec else (),
        phase=pvc.status.phase if pvc.status else None,
        created_at=pvc.metadata.creation_timestamp,
    )


def _pod_attachment(pod: client.V1Pod) -> PodAttachment:
    spec = pod.spec
    claim_names: list[str] = []
    for volume in (spec.volumes or []) if spec else []:
        pvc_source = volume.persistent_volume_claim
        if pvc_source and pvc_source.claim_name:
            claim_names.append(pvc_source.claim_name)

    return PodAttachment(
        namespace=pod.metadata.namespace or "",
        node_name=(spec.node_name or "") if spec else "",
        claim_names=tuple(claim_names),
    )


def _read(action: str, request: Callable[[], T], *, rbac: str) -> T:
    try:
        return request()
    except ApiException as error:
        detail = f"API status {error.status or 'unknown'} ({error.reason or 'no reason given'})"
        if error.status in (401, 403):
            detail += f"; the credentials need RBAC to {rbac}"
        raise KubernetesDiscoveryError(f"Unable to {action}: {detail}.") from error
    except Exception as error:  # pylint: disable=broad-except
        raise KubernetesDiscoveryError(
            f"Unable to {action}: {_describe(error)}. Check that the API server is reachable."
        ) from error


def _describe(error: Exception) -> str:
    message = str(error).strip()
    if not message:
        return error.__class__.__name__
    return f"{error.__class__.__name__}: {message}"
