"""Control-plane store backed by kubectl."""

import json
import logging
from subprocess import CalledProcessError
from typing import Dict, List

from constants import ADMIN_KUBECONFIG, NAMESPACE_SYSTEM
from errors import StoreReadError
from kubectl import kubectl, kubectl_get

log = logging.getLogger(__name__)


class KubectlStore:
    """Read and annotate cluster objects through kubectl.

    Every call goes to the API server; nothing is cached between calls.
    """

    def __init__(self, kubeconfig: str = ADMIN_KUBECONFIG):
        self.kubeconfig = kubeconfig

    def _get(self, kind: str, name: str, *args: str) -> dict:
        try:
            obj = kubectl_get(kind, name, *args, kubeconfig=self.kubeconfig)
        except (CalledProcessError, FileNotFoundError, json.JSONDecodeError) as e:
            raise StoreReadError(f"failed to get {kind} {name}: {e}", kind=kind, name=name) from e
        if not obj:
            raise StoreReadError(f"{kind} {name} not found", kind=kind, name=name)
        return obj

    def get_config_map(self, namespace: str, name: str) -> Dict[str, str]:
        """Return the data of a ConfigMap."""
        config_map = self._get("configmap", name, "-n", namespace)
        return config_map.get("data") or {}

    def get_node(self, name: str) -> dict:
        """Return the Node object."""
        return self._get("node", name)

    def list_pods(
        self, namespace: str = NAMESPACE_SYSTEM, field_selector: str = "", label_selector: str = ""
    ) -> List[dict]:
        """List pods matching both selectors."""
        args = ["pods", "-n", namespace]
        if field_selector:
            args.append(f"--field-selector={field_selector}")
        if label_selector:
            args.append(f"--selector={label_selector}")
        try:
            pods = kubectl_get(*args, kubeconfig=self.kubeconfig)
        except (CalledProcessError, FileNotFoundError, json.JSONDecodeError) as e:
            raise StoreReadError(
                f"could not retrieve list of pods in {namespace}: {e}", kind="pod"
            ) from e
        return pods.get("items") or []

    def annotate_node(self, name: str, key: str, value: str) -> None:
        """Set a single annotation on a Node, replacing any previous value."""
        log.info(f"Annotating node {name} with {key}={value}")
        try:
            kubectl(
                "annotate", "--overwrite", "node", name, f"{key}={value}",
                kubeconfig=self.kubeconfig,
            )
        except (CalledProcessError, FileNotFoundError) as e:
            raise StoreReadError(
                f"failed to annotate node {name}: {e}", kind="node", name=name, key=key,
                node_name=name,
            ) from e
