# Copyright 2023 Canonical
# See LICENSE file for licensing details.

"""The kubeadm configuration recorded in the cluster."""

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping

import yaml

import component_configs
from api_endpoint import APIEndpoint
from constants import CLUSTER_CONFIGURATION_KEY, KUBEADM_CONFIG_MAP, NAMESPACE_SYSTEM
from errors import DecodeError, StoreReadError
from node_registration import NodeRegistration

log = logging.getLogger(__name__)

API_VERSION = "kubeadm.k8s.io/v1beta3"
V1BETA4_API_VERSION = "kubeadm.k8s.io/v1beta4"
SUPPORTED_API_VERSIONS = (API_VERSION, V1BETA4_API_VERSION)
KIND = "ClusterConfiguration"

DEFAULT_ETCD_DATA_DIR = "/var/lib/etcd"
DEFAULT_BOOTSTRAP_TOKEN = {
    "groups": ["system:bootstrappers:kubeadm:default-node-token"],
    "ttl": "24h0m0s",
    "usages": ["signing", "authentication"],
}

# Static defaults of a v1beta3 ClusterConfiguration. A key counts as unset
# when it is missing, null or an empty string.
CLUSTER_DEFAULTS = {
    "kubernetesVersion": "stable-1",
    "controlPlaneEndpoint": "",
    "certificatesDir": "/etc/kubernetes/pki",
    "imageRepository": "registry.k8s.io",
    "clusterName": "kubernetes",
    "networking": {
        "serviceSubnet": "10.96.0.0/12",
        "podSubnet": "",
        "dnsDomain": "cluster.local",
    },
    "etcd": {},
    "apiServer": {
        "extraArgs": {},
        "certSANs": [],
        "timeoutForControlPlane": "4m0s",
    },
    "controllerManager": {"extraArgs": {}},
    "scheduler": {"extraArgs": {}},
    "dns": {},
    "featureGates": {},
}


def _unset(value) -> bool:
    return value is None or value == ""


def _merge_defaults(target: dict, defaults: Mapping) -> None:
    for key, default in defaults.items():
        if _unset(target.get(key)):
            target[key] = copy.deepcopy(default)
        elif isinstance(default, dict) and isinstance(target[key], dict):
            _merge_defaults(target[key], default)


def apply_defaults(partial: Mapping) -> dict:
    """Return a copy of a ClusterConfiguration mapping with static defaults set.

    The input is left untouched.
    """
    config = copy.deepcopy(dict(partial))
    defaults = CLUSTER_DEFAULTS
    if config.get("apiVersion") == V1BETA4_API_VERSION:
        # v1beta4 moved the control plane timeout out of ClusterConfiguration
        defaults = copy.deepcopy(CLUSTER_DEFAULTS)
        del defaults["apiServer"]["timeoutForControlPlane"]
    _merge_defaults(config, defaults)
    etcd = config["etcd"]
    if isinstance(etcd, dict) and not etcd.get("external"):
        local = etcd.setdefault("local", {})
        if isinstance(local, dict) and _unset(local.get("dataDir")):
            local["dataDir"] = DEFAULT_ETCD_DATA_DIR
    return config


def _invalid(where: str, expected: str, value) -> DecodeError:
    return DecodeError(
        f"failed to decode cluster configuration data: {where} must be {expected}, "
        f"got {type(value).__name__}",
        key=CLUSTER_CONFIGURATION_KEY,
    )


def _mapping(data: Mapping, key: str) -> dict:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise _invalid(key, "a mapping", value)
    return value


def _string(data: Mapping, key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        raise _invalid(key, "a string", value)
    return str(value)


def _extra_args(data: Mapping, where: str) -> Dict[str, str]:
    """Extra args as a mapping; v1beta4 writes them as a list of name/value pairs."""
    value = data.get("extraArgs")
    if value is None:
        return {}
    if isinstance(value, dict):
        return {str(k): str(v) for k, v in value.items()}
    if isinstance(value, list):
        try:
            return {str(arg["name"]): str(arg["value"]) for arg in value}
        except (KeyError, TypeError):
            pass
    raise _invalid(f"{where}.extraArgs", "a mapping or a list of name/value pairs", value)


def _etcd(data: Mapping) -> Dict[str, Any]:
    etcd = copy.deepcopy(_mapping(data, "etcd"))
    local = etcd.get("local")
    if isinstance(local, dict) and local.get("extraArgs") is not None:
        local["extraArgs"] = _extra_args(local, "etcd.local")
    return etcd


@dataclass
class Networking:
    service_subnet: str = ""
    pod_subnet: str = ""
    dns_domain: str = ""


@dataclass
class ControlPlaneComponent:
    extra_args: Dict[str, str] = field(default_factory=dict)


@dataclass
class APIServer(ControlPlaneComponent):
    cert_sans: List[str] = field(default_factory=list)
    timeout_for_control_plane: str = ""


@dataclass
class ClusterConfiguration:
    """Cluster-wide settings shared by every control-plane node."""

    kubernetes_version: str = ""
    control_plane_endpoint: str = ""
    certificates_dir: str = ""
    image_repository: str = ""
    cluster_name: str = ""
    networking: Networking = field(default_factory=Networking)
    etcd: Dict[str, Any] = field(default_factory=dict)
    api_server: APIServer = field(default_factory=APIServer)
    controller_manager: ControlPlaneComponent = field(default_factory=ControlPlaneComponent)
    scheduler: ControlPlaneComponent = field(default_factory=ControlPlaneComponent)
    dns: Dict[str, Any] = field(default_factory=dict)
    feature_gates: Dict[str, bool] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping) -> "ClusterConfiguration":
        networking = _mapping(data, "networking")
        api_server = _mapping(data, "apiServer")
        cert_sans = api_server.get("certSANs") or []
        if not isinstance(cert_sans, list):
            raise _invalid("apiServer.certSANs", "a list", cert_sans)
        feature_gates = _mapping(data, "featureGates")
        return cls(
            kubernetes_version=_string(data, "kubernetesVersion"),
            control_plane_endpoint=_string(data, "controlPlaneEndpoint"),
            certificates_dir=_string(data, "certificatesDir"),
            image_repository=_string(data, "imageRepository"),
            cluster_name=_string(data, "clusterName"),
            networking=Networking(
                service_subnet=_string(networking, "serviceSubnet"),
                pod_subnet=_string(networking, "podSubnet"),
                dns_domain=_string(networking, "dnsDomain"),
            ),
            etcd=_etcd(data),
            api_server=APIServer(
                extra_args=_extra_args(api_server, "apiServer"),
                cert_sans=[str(san) for san in cert_sans],
                timeout_for_control_plane=_string(api_server, "timeoutForControlPlane"),
            ),
            controller_manager=ControlPlaneComponent(
                extra_args=_extra_args(_mapping(data, "controllerManager"), "controllerManager")
            ),
            scheduler=ControlPlaneComponent(
                extra_args=_extra_args(_mapping(data, "scheduler"), "scheduler")
            ),
            dns=copy.deepcopy(_mapping(data, "dns")),
            feature_gates={str(k): bool(v) for k, v in feature_gates.items()},
        )

    def to_dict(self) -> dict:
        return {
            "apiVersion": API_VERSION,
            "kind": KIND,
            "kubernetesVersion": self.kubernetes_version,
            "controlPlaneEndpoint": self.control_plane_endpoint,
            "certificatesDir": self.certificates_dir,
            "imageRepository": self.image_repository,
            "clusterName": self.cluster_name,
            "networking": {
                "serviceSubnet": self.networking.service_subnet,
                "podSubnet": self.networking.pod_subnet,
                "dnsDomain": self.networking.dns_domain,
            },
            "etcd": copy.deepcopy(self.etcd),
            "apiServer": {
                "extraArgs": dict(self.api_server.extra_args),
                "certSANs": list(self.api_server.cert_sans),
                "timeoutForControlPlane": self.api_server.timeout_for_control_plane,
            },
            "controllerManager": {"extraArgs": dict(self.controller_manager.extra_args)},
            "scheduler": {"extraArgs": dict(self.scheduler.extra_args)},
            "dns": copy.deepcopy(self.dns),
            "featureGates": dict(self.feature_gates),
        }


@dataclass
class InitConfiguration:
    """Everything kubeadm knows about the cluster and the node being upgraded."""

    cluster_configuration: ClusterConfiguration = field(default_factory=ClusterConfiguration)
    node_registration: NodeRegistration = field(default_factory=NodeRegistration)
    local_api_endpoint: APIEndpoint = field(default_factory=APIEndpoint)
    bootstrap_tokens: List[dict] = field(default_factory=list)
    component_configs: Dict[str, dict] = field(default_factory=dict)

    def to_dict(self) -> dict:
        node = self.node_registration
        return {
            "apiVersion": API_VERSION,
            "kind": "InitConfiguration",
            "bootstrapTokens": copy.deepcopy(self.bootstrap_tokens),
            "nodeRegistration": {
                "name": node.name,
                "criSocket": node.cri_socket,
                "taints": copy.deepcopy(node.taints),
                "kubeletExtraArgs": dict(node.kubelet_extra_args),
                "imagePullPolicy": node.image_pull_policy,
                "ignorePreflightErrors": list(node.ignore_preflight_errors),
            },
            "localAPIEndpoint": {
                "advertiseAddress": self.local_api_endpoint.advertise_address,
                "bindPort": self.local_api_endpoint.bind_port,
            },
        }


def default_cluster_configuration() -> ClusterConfiguration:
    return ClusterConfiguration.from_dict(apply_defaults({}))


def default_init_configuration() -> InitConfiguration:
    """A statically defaulted InitConfiguration."""
    return InitConfiguration(
        cluster_configuration=default_cluster_configuration(),
        bootstrap_tokens=[copy.deepcopy(DEFAULT_BOOTSTRAP_TOKEN)],
    )


def decode_cluster_configuration(blob: str) -> ClusterConfiguration:
    """Decode and default the stored ClusterConfiguration document.

    Raises:
        DecodeError: the blob is not a ClusterConfiguration of a supported
            version, or a field has the wrong type.
    """
    try:
        data = yaml.safe_load(blob)
    except yaml.YAMLError as e:
        raise DecodeError(
            f"failed to decode cluster configuration data: {e}", key=CLUSTER_CONFIGURATION_KEY
        ) from e
    if not isinstance(data, dict):
        raise _invalid("the document", "a mapping", data)

    api_version, kind = data.get("apiVersion"), data.get("kind")
    if kind != KIND:
        raise DecodeError(
            f"failed to decode cluster configuration data: unexpected kind {kind!r}",
            key=CLUSTER_CONFIGURATION_KEY,
        )
    if api_version not in SUPPORTED_API_VERSIONS:
        raise DecodeError(
            f"failed to decode cluster configuration data: unsupported apiVersion "
            f"{api_version!r}, expected one of {', '.join(SUPPORTED_API_VERSIONS)}",
            key=CLUSTER_CONFIGURATION_KEY,
        )
    return ClusterConfiguration.from_dict(apply_defaults(data))


def encode_cluster_configuration(cfg: ClusterConfiguration) -> str:
    return yaml.safe_dump(cfg.to_dict(), default_flow_style=False, sort_keys=False)


def render(cfg: InitConfiguration) -> str:
    """Render the configuration as the multi-document YAML kubeadm prints."""
    documents = [cfg.to_dict(), cfg.cluster_configuration.to_dict()]
    documents.extend(cfg.component_configs[name] for name in sorted(cfg.component_configs))
    return yaml.safe_dump_all(documents, default_flow_style=False, sort_keys=False)


def load(store, skip_component_configs: bool = False) -> InitConfiguration:
    """Load the kubeadm configuration recorded in the cluster.

    Node specific fields are left at their defaults.

    Raises:
        StoreReadError: the kubeadm-config ConfigMap, or its
            ClusterConfiguration key, is missing.
        DecodeError: the stored ClusterConfiguration is malformed.
        ComponentConfigError: a component config could not be loaded.
    """
    config_map = KUBEADM_CONFIG_MAP
    log.info("Reading configuration from the cluster...")
    log.info(
        f"FYI: You can look at this config file with "
        f"'kubectl -n {NAMESPACE_SYSTEM} get cm {config_map} -o yaml'"
    )
    cfg = default_init_configuration()

    try:
        data = store.get_config_map(NAMESPACE_SYSTEM, config_map)
    except StoreReadError as e:
        raise StoreReadError(
            f"failed to get config map: {e.message}", kind="configmap", name=config_map
        ) from e
    blob = data.get(CLUSTER_CONFIGURATION_KEY)
    if blob is None:
        raise StoreReadError(
            f"unexpected error when reading {config_map} ConfigMap: "
            f"{CLUSTER_CONFIGURATION_KEY} key value pair missing",
            kind="configmap",
            name=config_map,
            key=CLUSTER_CONFIGURATION_KEY,
        )
    cfg.cluster_configuration = decode_cluster_configuration(blob)

    if not skip_component_configs:
        cfg.component_configs = component_configs.fetch_from_cluster(
            store, cfg.cluster_configuration
        )
    return cfg
