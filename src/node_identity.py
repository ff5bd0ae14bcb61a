"""Node identity from the kubelet's client certificate.

kubeadm does not store the node name anywhere on the host except inside the
client certificate the kubelet authenticates with. The certificate's Common
Name is ``system:node:<name>``.

Only one certificate is expected in the kubelet's credentials. Which one to
trust when several are present (e.g. during rotation) is still undecided; the
selection strategies below let a caller choose, and the default keeps the
single-certificate behavior of taking the first.
"""

import base64
import binascii
import datetime
import logging
from pathlib import Path
from typing import Callable, List, Optional

import yaml
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.x509.oid import NameOID

from constants import NODES_USER_PREFIX
from errors import IdentityError

log = logging.getLogger(__name__)

CertificateSelector = Callable[[List[x509.Certificate]], x509.Certificate]


def first_certificate(certs: List[x509.Certificate]) -> x509.Certificate:
    return certs[0]


def most_recent_not_expired(
    certs: List[x509.Certificate], now: Optional[datetime.datetime] = None
) -> x509.Certificate:
    """Pick the newest certificate that is currently valid."""
    now = now or datetime.datetime.now(datetime.timezone.utc)
    valid = [c for c in certs if c.not_valid_before_utc <= now < c.not_valid_after_utc]
    if not valid:
        raise ValueError("no certificate is currently valid")
    return max(valid, key=lambda c: c.not_valid_before_utc)


class ExplicitFingerprint:
    """Pick the certificate with the given SHA-256 fingerprint."""

    def __init__(self, fingerprint: str):
        self.fingerprint = fingerprint.replace(":", "").lower()

    def __call__(self, certs: List[x509.Certificate]) -> x509.Certificate:
        for cert in certs:
            if cert.fingerprint(hashes.SHA256()).hex() == self.fingerprint:
                return cert
        raise ValueError(f"no certificate with fingerprint {self.fingerprint}")

    def __repr__(self):
        return f"ExplicitFingerprint({self.fingerprint!r})"


def certificate_selector(value: str) -> CertificateSelector:
    """Build a selector from its config form.

    Accepts ``first``, ``most-recent`` or ``sha256:<hex fingerprint>``.
    """
    value = (value or "first").strip()
    if value == "first":
        return first_certificate
    if value == "most-recent":
        return most_recent_not_expired
    if value.startswith("sha256:") and len(value) > len("sha256:"):
        return ExplicitFingerprint(value[len("sha256:"):])
    raise ValueError(f"unknown certificate selection {value!r}")


def load_kubeconfig(path: str) -> dict:
    """Parse a kubeconfig file into a mapping."""
    try:
        with open(path) as f:
            config = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise IdentityError(f"failed to load kubeconfig file {path}: {e}", path=path) from e
    if not isinstance(config, dict):
        raise IdentityError(f"invalid kubeconfig file {path}: not a mapping", path=path)
    return config


def _named(entries, field: str) -> dict:
    """Index a kubeconfig list of ``{name, <field>}`` entries by name."""
    return {
        entry["name"]: entry.get(field) or {}
        for entry in entries or []
        if isinstance(entry, dict) and "name" in entry
    }


def _client_certificates(path: str, user: dict) -> List[x509.Certificate]:
    if user.get("client-certificate-data"):
        # embedded certificate, e.g. kubelet.conf written by kubeadm init/join
        try:
            pem = base64.b64decode(user["client-certificate-data"])
        except (binascii.Error, ValueError) as e:
            raise IdentityError(
                f"invalid kubeconfig file {path}: bad client-certificate-data: {e}", path=path
            ) from e
    elif user.get("client-certificate"):
        # linked certificate, e.g. kubelet.conf written by TLS bootstrap
        cert_path = Path(user["client-certificate"])
        if not cert_path.is_absolute():
            cert_path = Path(path).parent / cert_path
        try:
            pem = cert_path.read_bytes()
        except OSError as e:
            raise IdentityError(
                f"failed to read client certificate {cert_path}: {e}", path=path
            ) from e
    else:
        raise IdentityError(
            f"invalid kubeconfig file {path}. x509 certificate expected", path=path
        )

    try:
        certs = x509.load_pem_x509_certificates(pem)
    except ValueError as e:
        raise IdentityError(f"failed to parse client certificate in {path}: {e}", path=path) from e
    if not certs:
        raise IdentityError(f"no client certificate found in {path}", path=path)
    return certs


def resolve_node_name(path: str, select: CertificateSelector = first_certificate) -> str:
    """Node name from the client certificate of the current context's user.

    Raises:
        IdentityError: the kubeconfig is unreadable, lacks the current context
            or its user, carries no parseable client certificate, or the
            certificate has no Common Name.
    """
    config = load_kubeconfig(path)
    current = config.get("current-context")
    context = _named(config.get("contexts"), "context").get(current)
    if context is None:
        raise IdentityError(
            f"invalid kubeconfig file {path}: missing context {current}", path=path
        )
    auth_info = context.get("user")
    user = _named(config.get("users"), "user").get(auth_info)
    if user is None:
        raise IdentityError(
            f"invalid kubeconfig file {path}: missing AuthInfo {auth_info}", path=path
        )

    certs = _client_certificates(path, user)
    try:
        cert = select(certs)
    except ValueError as e:
        raise IdentityError(f"no usable client certificate in {path}: {e}", path=path) from e

    common_names = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    if not common_names:
        raise IdentityError(f"client certificate in {path} has no Common Name", path=path)
    common_name = common_names[0].value
    node_name = common_name.removeprefix(NODES_USER_PREFIX)
    log.info("Resolved node name %s from %s", node_name, path)
    return node_name
