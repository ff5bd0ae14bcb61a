"""Component configurations kubeadm stores next to its own configuration."""

import ipaddress
import logging
import re
from dataclasses import dataclass
from typing import Callable, Dict

import yaml

from constants import NAMESPACE_SYSTEM
from errors import ComponentConfigError, StoreReadError

log = logging.getLogger(__name__)

UNVERSIONED_KUBELET_CONFIG_MAP = "UnversionedKubeletConfigMap"


def _kubelet_config_map(cluster_cfg) -> str:
    if cluster_cfg.feature_gates.get(UNVERSIONED_KUBELET_CONFIG_MAP, True):
        return "kubelet-config"
    match = re.match(r"^v?(\d+)\.(\d+)", cluster_cfg.kubernetes_version)
    if not match:
        raise ValueError(
            f"cannot derive the kubelet ConfigMap name from version "
            f"{cluster_cfg.kubernetes_version!r}"
        )
    return "kubelet-config-{}.{}".format(*match.groups())


def _cluster_dns(service_subnet: str) -> str:
    """The DNS service address: the 10th address of the first service subnet."""
    network = ipaddress.ip_network(service_subnet.split(",")[0].strip(), strict=False)
    return str(network[10])


def _default_kubelet(config: dict, cluster_cfg) -> None:
    config.setdefault("clusterDomain", cluster_cfg.networking.dns_domain)
    if "clusterDNS" not in config:
        try:
            config["clusterDNS"] = [_cluster_dns(cluster_cfg.networking.service_subnet)]
        except (ValueError, IndexError):
            log.warning(
                "Unable to derive clusterDNS from service subnet %s",
                cluster_cfg.networking.service_subnet,
            )
    config.setdefault("staticPodPath", "/etc/kubernetes/manifests")
    config.setdefault("cgroupDriver", "systemd")
    config.setdefault("rotateCertificates", True)


def _default_kube_proxy(config: dict, cluster_cfg) -> None:
    if cluster_cfg.networking.pod_subnet:
        config.setdefault("clusterCIDR", cluster_cfg.networking.pod_subnet)
    config.setdefault("bindAddress", "0.0.0.0")


@dataclass(frozen=True)
class ComponentConfigHandler:
    """Where one component config lives, what it must look like, how to default it."""

    name: str
    group: str
    kind: str
    config_map_key: str
    config_map: Callable
    apply_defaults: Callable

    def from_cluster(self, store, cluster_cfg) -> dict:
        try:
            config_map = self.config_map(cluster_cfg)
            data = store.get_config_map(NAMESPACE_SYSTEM, config_map)
        except (ValueError, StoreReadError) as e:
            raise ComponentConfigError(
                f"failed to get {self.name} component config: {e}", component=self.name
            ) from e

        raw = data.get(self.config_map_key)
        if raw is None:
            raise ComponentConfigError(
                f"{self.name} component config ConfigMap {config_map} has no "
                f"{self.config_map_key!r} key",
                component=self.name,
            )
        try:
            config = yaml.safe_load(raw)
        except yaml.YAMLError as e:
            raise ComponentConfigError(
                f"failed to decode {self.name} component config: {e}", component=self.name
            ) from e
        if not isinstance(config, dict):
            raise ComponentConfigError(
                f"{self.name} component config is not a mapping", component=self.name
            )

        group = str(config.get("apiVersion", "")).split("/")[0]
        if group != self.group or config.get("kind") != self.kind:
            raise ComponentConfigError(
                f"unexpected {self.name} component config {config.get('apiVersion')}, "
                f"Kind={config.get('kind')}; expected group {self.group}, Kind={self.kind}",
                component=self.name,
            )
        self.apply_defaults(config, cluster_cfg)
        return config


KNOWN = [
    ComponentConfigHandler(
        name="kubelet",
        group="kubelet.config.k8s.io",
        kind="KubeletConfiguration",
        config_map_key="kubelet",
        config_map=_kubelet_config_map,
        apply_defaults=_default_kubelet,
    ),
    ComponentConfigHandler(
        name="kubeproxy",
        group="kubeproxy.config.k8s.io",
        kind="KubeProxyConfiguration",
        config_map_key="config.conf",
        config_map=lambda cluster_cfg: "kube-proxy",
        apply_defaults=_default_kube_proxy,
    ),
]


def fetch_from_cluster(store, cluster_cfg) -> Dict[str, dict]:
    """Fetch every known component config; the first failure aborts."""
    configs = {}
    for handler in KNOWN:
        configs[handler.name] = handler.from_cluster(store, cluster_cfg)
        log.info("Loaded %s component config", handler.name)
    return configs
