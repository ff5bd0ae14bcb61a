"""Reconcile the kubelet configuration of the node running the upgrade."""

import enum
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

import api_endpoint
import cluster_config
import node_registration
from api_endpoint import APIEndpoint
from backoff import Backoff
from cluster_config import InitConfiguration
from constants import KUBELET_FLAGS_ENV, KUBELET_KUBECONFIG, UNKNOWN_CRI_SOCKET
from cri_socket import CRISocketNormalizer, NormalizeResult, update_flags_env_file
from node_identity import CertificateSelector, first_certificate, resolve_node_name
from node_registration import NodeRegistration

log = logging.getLogger(__name__)


class State(enum.Enum):
    START = "start"
    LOAD_CONFIGURATION = "load-configuration"
    PRINT_AND_STOP = "print-and-stop"
    RESOLVE_IDENTITY = "resolve-identity"
    FETCH_REGISTRATION = "fetch-registration"
    NORMALIZE_RUNTIME_SOCKET = "normalize-runtime-socket"
    DONE = "done"
    FAILED = "failed"


@dataclass
class UpgradeOptions:
    kubelet_kubeconfig: str = KUBELET_KUBECONFIG
    kubelet_flags_env: str = KUBELET_FLAGS_ENV
    new_control_plane: bool = False
    skip_component_configs: bool = False
    dry_run: bool = False
    backoff: Backoff = field(default_factory=Backoff)
    select_certificate: CertificateSelector = first_certificate


@dataclass
class NodeUpgradeContext:
    node_registration: NodeRegistration
    api_endpoint: APIEndpoint


@dataclass
class UpgradeResult:
    state: State
    configuration: InitConfiguration
    rendered: str = ""
    normalized: Optional[NormalizeResult] = None


class NodeUpgrade:
    """One upgrade of the local node's configuration.

    Steps run in a fixed order and are never retried as a whole; only the API
    endpoint lookup retries internally. The first error aborts the run and
    leaves ``state`` at ``State.FAILED``.
    """

    def __init__(
        self,
        store,
        options: Optional[UpgradeOptions] = None,
        sleep: Callable[[float], None] = time.sleep,
        cancel: Optional[threading.Event] = None,
    ):
        self.store = store
        self.options = options or UpgradeOptions()
        self.sleep = sleep
        self.cancel = cancel
        self.state = State.START

    def _enter(self, state: State):
        log.info("[upgrade] %s", state.value)
        self.state = state

    def resolve_node_upgrade_context(
        self, kubeconfig_path: Optional[str] = None
    ) -> NodeUpgradeContext:
        """Registration and API endpoint of the node whose kubelet credentials we hold."""
        self._enter(State.RESOLVE_IDENTITY)
        node_name = resolve_node_name(
            kubeconfig_path or self.options.kubelet_kubeconfig,
            select=self.options.select_certificate,
        )
        self._enter(State.FETCH_REGISTRATION)
        registration = node_registration.fetch(self.store, node_name)
        endpoint = api_endpoint.resolve(
            self.store, node_name, self.options.backoff, sleep=self.sleep, cancel=self.cancel
        )
        return NodeUpgradeContext(node_registration=registration, api_endpoint=endpoint)

    def load_cluster_configuration(self) -> InitConfiguration:
        """The cluster configuration completed with this node's registration."""
        cfg = self._load()
        self._complete(cfg)
        return cfg

    def _load(self) -> InitConfiguration:
        self._enter(State.LOAD_CONFIGURATION)
        return cluster_config.load(self.store, self.options.skip_component_configs)

    def _complete(self, cfg: InitConfiguration):
        if self.options.new_control_plane:
            # The registration is replaced once the node joins; a placeholder
            # keeps CRI socket detection from running too early.
            cfg.node_registration.cri_socket = UNKNOWN_CRI_SOCKET
            return
        context = self.resolve_node_upgrade_context()
        cfg.node_registration = context.node_registration
        cfg.local_api_endpoint = context.api_endpoint

    def normalize_runtime_socket(
        self, dry_run: Optional[bool] = None, registration: Optional[NodeRegistration] = None
    ) -> NormalizeResult:
        """Add the missing URL scheme to the node's CRI socket, on the Node and locally.

        The registration is looked up when not given, as worker nodes upgrade
        without one.
        """
        dry_run = self.options.dry_run if dry_run is None else dry_run
        if registration is None or not registration.name:
            registration = node_registration.get_node_registration(
                self.store,
                self.options.kubelet_kubeconfig,
                select=self.options.select_certificate,
            )
        self._enter(State.NORMALIZE_RUNTIME_SOCKET)
        result = CRISocketNormalizer(self.store, registration, dry_run=dry_run).normalize()
        update_flags_env_file(self.options.kubelet_flags_env, dry_run=dry_run)
        return result

    def run(self) -> UpgradeResult:
        try:
            cfg = self._load()
            if self.options.dry_run:
                self._enter(State.PRINT_AND_STOP)
                return UpgradeResult(
                    state=self.state, configuration=cfg, rendered=cluster_config.render(cfg)
                )

            self._complete(cfg)
            normalized = self.normalize_runtime_socket(
                dry_run=False, registration=cfg.node_registration
            )
        except Exception:
            self.state = State.FAILED
            raise

        self._enter(State.DONE)
        log.info("[upgrade] The configuration for this node was successfully updated!")
        log.info(
            "[upgrade] Now you should go ahead and upgrade the kubelet package "
            "using your package manager."
        )
        return UpgradeResult(state=self.state, configuration=cfg, normalized=normalized)
