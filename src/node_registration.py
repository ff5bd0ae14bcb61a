import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from constants import ANNOTATION_CRI_SOCKET
from errors import MissingAnnotationError, StoreReadError
from node_identity import first_certificate, resolve_node_name

log = logging.getLogger(__name__)


@dataclass
class NodeRegistration:
    """How a node participates in the cluster.

    ``kubelet_extra_args`` is never filled from the cluster: kubeadm keeps
    those flags in the per-host kubeadm-flags.env, which upgrades leave alone.
    """

    name: str = ""
    cri_socket: str = ""
    taints: Optional[List[dict]] = None
    kubelet_extra_args: Dict[str, str] = field(default_factory=dict)
    image_pull_policy: str = "IfNotPresent"
    ignore_preflight_errors: List[str] = field(default_factory=list)


def fetch(store, node_name: str) -> NodeRegistration:
    """Read the registration kubeadm recorded on the Node object.

    Raises:
        StoreReadError: the node does not exist or cannot be read.
        MissingAnnotationError: the node has no CRI socket annotation.
    """
    try:
        node = store.get_node(node_name)
    except StoreReadError as e:
        raise StoreReadError(
            f"failed to get corresponding node {node_name}: {e.message}",
            kind="node",
            name=node_name,
            node_name=node_name,
        ) from e

    annotations = node.get("metadata", {}).get("annotations") or {}
    cri_socket = annotations.get(ANNOTATION_CRI_SOCKET)
    if cri_socket is None:
        raise MissingAnnotationError(
            f"node {node_name} doesn't have {ANNOTATION_CRI_SOCKET} annotation",
            kind="node",
            name=node_name,
            annotation=ANNOTATION_CRI_SOCKET,
            node_name=node_name,
        )

    taints = node.get("spec", {}).get("taints")
    log.info("Node %s uses CRI socket %s", node_name, cri_socket)
    return NodeRegistration(name=node_name, cri_socket=cri_socket, taints=taints)


def get_node_registration(
    store, kubeconfig_path: str, select=first_certificate
) -> NodeRegistration:
    """Registration of the node whose kubelet credentials are in kubeconfig_path."""
    node_name = resolve_node_name(kubeconfig_path, select=select)
    return fetch(store, node_name)
