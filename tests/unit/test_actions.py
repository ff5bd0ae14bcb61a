from unittest import mock

import ops
import ops.testing
import pytest
import yaml
from conftest import FakeStore
from test_cluster_config import CLUSTER_CONFIGURATION, KUBE_PROXY, KUBELET

from charm import KubeadmNodeUpgradeCharm
from constants import ANNOTATION_API_ENDPOINT, ANNOTATION_CRI_SOCKET


@pytest.fixture
def store():
    return FakeStore(
        config_maps={
            ("kube-system", "kubeadm-config"): {"ClusterConfiguration": CLUSTER_CONFIGURATION},
            ("kube-system", "kubelet-config"): {"kubelet": KUBELET},
            ("kube-system", "kube-proxy"): {"config.conf": KUBE_PROXY},
        },
        nodes={
            "worker-3": {
                "metadata": {
                    "name": "worker-3",
                    "annotations": {ANNOTATION_CRI_SOCKET: "/var/run/cri.sock"},
                }
            }
        },
        pods=[
            [
                {
                    "metadata": {
                        "name": "kube-apiserver-worker-3",
                        "annotations": {ANNOTATION_API_ENDPOINT: "10.0.0.3:6443"},
                    }
                }
            ]
        ],
    )


@pytest.fixture
def harness(store, kubelet_kubeconfig, tmp_path):
    flags_env = tmp_path / "kubeadm-flags.env"
    flags_env.write_text('KUBELET_KUBEADM_ARGS="--container-runtime-endpoint=/var/run/cri.sock"\n')
    harness = ops.testing.Harness(KubeadmNodeUpgradeCharm)
    try:
        harness.update_config(
            {"kubelet-kubeconfig": kubelet_kubeconfig, "kubelet-flags-env": str(flags_env)}
        )
        harness.begin_with_initial_hooks()
        with mock.patch("charm.KubectlStore", return_value=store):
            yield harness
    finally:
        harness.cleanup()


def test_upgrade_node_config_action(harness, store):
    """Verify the action reconciles the node and reports what it did."""
    output = harness.run_action("upgrade-node-config")
    assert output.results == {
        "state": "done",
        "cri-socket": "unix:///var/run/cri.sock",
        "cri-socket-changed": True,
        "node-name": "worker-3",
        "api-endpoint": "10.0.0.3:6443",
    }
    assert store.annotations == [("worker-3", ANNOTATION_CRI_SOCKET, "unix:///var/run/cri.sock")]
    assert harness.model.unit.status == ops.ActiveStatus("Ready")


def test_upgrade_node_config_action_dry_run(harness, store):
    output = harness.run_action("upgrade-node-config", {"dry-run": True})
    assert output.results["state"] == "print-and-stop"
    kinds = [d["kind"] for d in yaml.safe_load_all(output.results["config"])]
    assert "ClusterConfiguration" in kinds
    assert store.annotations == []


def test_upgrade_node_config_action_fails(harness, store):
    """Verify a failed upgrade fails the action and blocks the unit."""
    store.config_maps.clear()
    with pytest.raises(ops.testing.ActionFailed) as action_err:
        harness.run_action("upgrade-node-config")
    assert "failed to get config map" in action_err.value.message
    assert harness.model.unit.status == ops.BlockedStatus("upgrade-node-config failed")


def test_upgrade_node_config_action_invalid_config(harness):
    harness.update_config({"certificate-selection": "sha256:"})
    with pytest.raises(ops.testing.ActionFailed):
        harness.run_action("upgrade-node-config")


def test_get_cluster_config_action(harness):
    output = harness.run_action("get-cluster-config")
    assert output.results["component-configs"] == "kubelet, kubeproxy"
    documents = list(yaml.safe_load_all(output.results["config"]))
    assert documents[0]["nodeRegistration"]["name"] == "worker-3"
    assert documents[1]["kubernetesVersion"] == "v1.28.4"


def test_get_cluster_config_action_skip_component_configs(harness):
    output = harness.run_action("get-cluster-config", {"skip-component-configs": True})
    assert output.results["component-configs"] == ""


def test_normalize_cri_socket_action(harness, store):
    output = harness.run_action("normalize-cri-socket", {"dry-run": True})
    assert output.results == {
        "changed": True,
        "proposed-value": "unix:///var/run/cri.sock",
        "dry-run": True,
    }
    assert store.annotations == []

    output = harness.run_action("normalize-cri-socket")
    assert output.results["changed"] is True
    assert output.results["dry-run"] is False
    assert len(store.annotations) == 1


def test_normalize_cri_socket_action_missing_node(harness, store):
    store.nodes.clear()
    with pytest.raises(ops.testing.ActionFailed) as action_err:
        harness.run_action("normalize-cri-socket")
    assert "worker-3" in action_err.value.message
    assert harness.model.unit.status == ops.BlockedStatus("normalize-cri-socket failed")


@pytest.mark.parametrize("action", ["get-cluster-config", "normalize-cri-socket"])
def test_action_success_clears_blocked_status(harness, store, action):
    """Verify a successful action unblocks a unit blocked by an earlier failure."""
    nodes = dict(store.nodes)
    store.nodes.clear()
    with pytest.raises(ops.testing.ActionFailed):
        harness.run_action(action)
    assert harness.model.unit.status == ops.BlockedStatus(f"{action} failed")

    store.nodes.update(nodes)
    harness.run_action(action)
    assert harness.model.unit.status == ops.ActiveStatus("Ready")
