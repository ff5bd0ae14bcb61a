import logging

import ops

import cluster_config
from errors import NodeUpgradeError

log = logging.getLogger(__name__)


def _fail(charm, event: ops.ActionEvent, err: Exception):
    log.error("Action %s failed: %s", event.handle.kind, err)
    charm.unit.status = ops.BlockedStatus(f"{event.handle.kind.replace('_', '-')} failed")
    event.fail(str(err))


def upgrade_node_config(charm, event: ops.ActionEvent):
    """Reconcile this node's configuration with the cluster."""
    dry_run = bool(event.params.get("dry-run", False))
    try:
        upgrade = charm.node_upgrade(dry_run=dry_run)
        result = upgrade.run()
    except (NodeUpgradeError, ValueError) as e:
        _fail(charm, event, e)
        return

    results = {"state": result.state.value}
    if result.rendered:
        results["config"] = result.rendered
    if result.normalized:
        results["cri-socket"] = result.normalized.proposed_value
        results["cri-socket-changed"] = result.normalized.changed
    node = result.configuration.node_registration
    if node.name:
        results["node-name"] = node.name
        results["api-endpoint"] = str(result.configuration.local_api_endpoint)
    event.set_results(results)
    charm.unit.status = ops.ActiveStatus("Ready")


def get_cluster_config(charm, event: ops.ActionEvent):
    """Show the kubeadm configuration recorded in the cluster."""
    skip = bool(event.params.get("skip-component-configs", False))
    try:
        upgrade = charm.node_upgrade(skip_component_configs=skip)
        cfg = upgrade.load_cluster_configuration()
    except (NodeUpgradeError, ValueError) as e:
        _fail(charm, event, e)
        return
    event.set_results(
        {
            "config": cluster_config.render(cfg),
            "component-configs": ", ".join(sorted(cfg.component_configs)),
        }
    )
    charm.unit.status = ops.ActiveStatus("Ready")


def normalize_cri_socket(charm, event: ops.ActionEvent):
    """Add a URL scheme to this node's CRI socket."""
    dry_run = bool(event.params.get("dry-run", False))
    try:
        result = charm.node_upgrade().normalize_runtime_socket(dry_run=dry_run)
    except (NodeUpgradeError, ValueError) as e:
        _fail(charm, event, e)
        return
    event.set_results(
        {
            "changed": result.changed,
            "proposed-value": result.proposed_value,
            "dry-run": result.dry_run,
        }
    )
    charm.unit.status = ops.ActiveStatus("Ready")
