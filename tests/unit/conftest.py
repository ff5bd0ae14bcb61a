import base64
import datetime

import pytest
import yaml
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from errors import StoreReadError


class FakeStore:
    """In-memory stand-in for KubectlStore."""

    def __init__(self, config_maps=None, nodes=None, pods=None):
        self.config_maps = config_maps or {}
        self.nodes = nodes or {}
        # each list_pods call consumes one response, the last one repeats
        self.pod_responses = list(pods) if pods else [[]]
        self.annotations = []
        self.pod_queries = []

    def get_config_map(self, namespace, name):
        try:
            return self.config_maps[(namespace, name)]
        except KeyError:
            raise StoreReadError(f"configmap {name} not found", kind="configmap", name=name)

    def get_node(self, name):
        try:
            return self.nodes[name]
        except KeyError:
            raise StoreReadError(f"node {name} not found", kind="node", name=name)

    def list_pods(self, namespace, field_selector="", label_selector=""):
        self.pod_queries.append((namespace, field_selector, label_selector))
        if len(self.pod_responses) > 1:
            response = self.pod_responses.pop(0)
        else:
            response = self.pod_responses[0]
        if isinstance(response, Exception):
            raise response
        return response

    def annotate_node(self, name, key, value):
        self.annotations.append((name, key, value))
        self.nodes[name]["metadata"].setdefault("annotations", {})[key] = value


def make_certificate(common_name, days_valid=365, not_before=None):
    key = ec.generate_private_key(ec.SECP256R1())
    not_before = not_before or datetime.datetime.now(datetime.timezone.utc) - datetime.timedelta(
        days=1
    )
    subject = x509.Name(
        [
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "system:nodes"),
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
        ]
    )
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_before + datetime.timedelta(days=days_valid))
        .sign(key, hashes.SHA256())
    )
    return cert


def pem(*certs):
    return b"".join(c.public_bytes(serialization.Encoding.PEM) for c in certs)


def kubeconfig(
    current="system:node:worker-3@kubernetes", user="system:node:worker-3", auth=None
):
    return {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [
            {"name": "kubernetes", "cluster": {"server": "https://10.0.0.1:6443"}},
        ],
        "contexts": [
            {
                "name": "system:node:worker-3@kubernetes",
                "context": {"cluster": "kubernetes", "user": user},
            }
        ],
        "current-context": current,
        "users": [{"name": "system:node:worker-3", "user": auth or {}}],
    }


@pytest.fixture
def write_kubeconfig(tmp_path):
    """Write a kubelet kubeconfig embedding the given certificates."""

    def _write(*certs, **overrides):
        auth = {}
        if certs:
            auth["client-certificate-data"] = base64.b64encode(pem(*certs)).decode()
        auth.update(overrides.pop("auth", {}))
        path = tmp_path / "kubelet.conf"
        path.write_text(yaml.safe_dump(kubeconfig(auth=auth, **overrides)))
        return str(path)

    return _write


@pytest.fixture
def node_cert():
    return make_certificate("system:node:worker-3")


@pytest.fixture
def kubelet_kubeconfig(write_kubeconfig, node_cert):
    return write_kubeconfig(node_cert)
