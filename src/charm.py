#!/usr/bin/env python3
# Copyright 2023 Canonical
# See LICENSE file for licensing details.

"""Charmed Machine Operator for kubeadm node upgrades."""

import functools
import logging

import ops

import actions.node_config
from backoff import Backoff
from node_identity import certificate_selector
from store import KubectlStore
from upgrade_node import NodeUpgrade, UpgradeOptions

log = logging.getLogger(__name__)


class KubeadmNodeUpgradeCharm(ops.CharmBase):
    """Charmed Operator reconciling a kubeadm node's configuration on upgrade."""

    def __init__(self, *args):
        super().__init__(*args)

        # register charm actions
        action_events = [
            self.on.upgrade_node_config_action,
            self.on.get_cluster_config_action,
            self.on.normalize_cri_socket_action,
        ]
        for action in action_events:
            self.framework.observe(action, self.charm_actions)

        self.framework.observe(self.on.install, self.update_status)
        self.framework.observe(self.on.config_changed, self.update_status)
        self.framework.observe(self.on.update_status, self.update_status)

    def charm_actions(self, event: ops.ActionEvent):
        action_map = {
            "upgrade_node_config_action": functools.partial(
                actions.node_config.upgrade_node_config, self
            ),
            "get_cluster_config_action": functools.partial(
                actions.node_config.get_cluster_config, self
            ),
            "normalize_cri_socket_action": functools.partial(
                actions.node_config.normalize_cri_socket, self
            ),
        }
        return action_map[event.handle.kind](event)

    def backoff(self) -> Backoff:
        """Retry schedule for the API endpoint lookup, from charm config."""
        return Backoff(
            steps=int(self.model.config["endpoint-retry-steps"]),
            duration=float(self.model.config["endpoint-retry-interval"]),
            factor=float(self.model.config["endpoint-retry-factor"]),
            jitter=float(self.model.config["endpoint-retry-jitter"]),
        )

    def upgrade_options(self, **overrides) -> UpgradeOptions:
        """Build the upgrade options from charm config.

        Raises:
            ValueError: if the config holds an invalid retry schedule or
                certificate selection.
        """
        config = self.model.config
        options = {
            "kubelet_kubeconfig": config["kubelet-kubeconfig"],
            "kubelet_flags_env": config["kubelet-flags-env"],
            "new_control_plane": bool(config["new-control-plane"]),
            "skip_component_configs": bool(config["skip-component-configs"]),
            "backoff": self.backoff(),
            "select_certificate": certificate_selector(config["certificate-selection"]),
        }
        options.update(overrides)
        return UpgradeOptions(**options)

    def node_upgrade(self, **overrides) -> NodeUpgrade:
        store = KubectlStore(kubeconfig=self.model.config["kubeconfig"])
        return NodeUpgrade(store, self.upgrade_options(**overrides))

    def update_status(self, _event=None):
        try:
            self.upgrade_options()
        except ValueError as e:
            log.error("Invalid charm config: %s", e)
            self.unit.status = ops.BlockedStatus(f"Invalid config: {e}")
            return
        self.unit.status = ops.ActiveStatus("Ready")


if __name__ == "__main__":  # pragma: nocover
    ops.main(KubeadmNodeUpgradeCharm)
