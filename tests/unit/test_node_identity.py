import datetime

import pytest
from conftest import make_certificate, pem
from cryptography.hazmat.primitives import hashes

import node_identity
from errors import IdentityError


def test_resolve_node_name_embedded_certificate(kubelet_kubeconfig):
    """Verify the node name is the certificate Common Name without its prefix."""
    assert node_identity.resolve_node_name(kubelet_kubeconfig) == "worker-3"


def test_resolve_node_name_without_prefix(write_kubeconfig):
    path = write_kubeconfig(make_certificate("plain-node"))
    assert node_identity.resolve_node_name(path) == "plain-node"


def test_resolve_node_name_linked_certificate(tmp_path, write_kubeconfig, node_cert):
    """Verify a relative client-certificate path is read next to the kubeconfig."""
    (tmp_path / "pki").mkdir()
    (tmp_path / "pki" / "kubelet-client-current.pem").write_bytes(pem(node_cert))
    path = write_kubeconfig(auth={"client-certificate": "pki/kubelet-client-current.pem"})
    assert node_identity.resolve_node_name(path) == "worker-3"


def test_embedded_certificate_preferred(tmp_path, write_kubeconfig, node_cert):
    path = write_kubeconfig(node_cert, auth={"client-certificate": "/does/not/exist.pem"})
    assert node_identity.resolve_node_name(path) == "worker-3"


def test_missing_current_context(write_kubeconfig, node_cert):
    path = write_kubeconfig(node_cert, current="other@kubernetes")
    with pytest.raises(IdentityError) as ie:
        node_identity.resolve_node_name(path)
    assert "missing context other@kubernetes" in ie.value.message
    assert ie.value.path == path


def test_missing_auth_info(write_kubeconfig, node_cert):
    path = write_kubeconfig(node_cert, user="someone-else")
    with pytest.raises(IdentityError) as ie:
        node_identity.resolve_node_name(path)
    assert "missing AuthInfo someone-else" in ie.value.message


def test_missing_certificate(write_kubeconfig):
    path = write_kubeconfig(auth={"token": "abc"})
    with pytest.raises(IdentityError, match="x509 certificate expected"):
        node_identity.resolve_node_name(path)


def test_unparseable_certificate(write_kubeconfig):
    path = write_kubeconfig(auth={"client-certificate-data": "bm90IGEgY2VydA=="})
    with pytest.raises(IdentityError, match="failed to parse client certificate"):
        node_identity.resolve_node_name(path)


def test_unreadable_kubeconfig(tmp_path):
    with pytest.raises(IdentityError, match="failed to load kubeconfig"):
        node_identity.resolve_node_name(str(tmp_path / "missing.conf"))


def test_malformed_kubeconfig(tmp_path):
    path = tmp_path / "kubelet.conf"
    path.write_text("- just\n- a list\n")
    with pytest.raises(IdentityError, match="not a mapping"):
        node_identity.resolve_node_name(str(path))


def test_first_certificate_is_default(write_kubeconfig):
    path = write_kubeconfig(
        make_certificate("system:node:worker-3"), make_certificate("system:node:worker-4")
    )
    assert node_identity.resolve_node_name(path) == "worker-3"


def test_most_recent_not_expired():
    now = datetime.datetime.now(datetime.timezone.utc)
    expired = make_certificate(
        "system:node:old", days_valid=1, not_before=now - datetime.timedelta(days=10)
    )
    older = make_certificate("system:node:older", not_before=now - datetime.timedelta(days=5))
    newer = make_certificate("system:node:newer", not_before=now - datetime.timedelta(days=1))

    assert node_identity.most_recent_not_expired([expired, older, newer]) is newer
    with pytest.raises(ValueError):
        node_identity.most_recent_not_expired([expired])


def test_explicit_fingerprint(write_kubeconfig):
    first, second = make_certificate("system:node:a"), make_certificate("system:node:b")
    fingerprint = second.fingerprint(hashes.SHA256()).hex()
    path = write_kubeconfig(first, second)

    select = node_identity.certificate_selector(f"sha256:{fingerprint.upper()}")
    assert node_identity.resolve_node_name(path, select=select) == "b"

    select = node_identity.ExplicitFingerprint("00" * 32)
    with pytest.raises(IdentityError, match="no usable client certificate"):
        node_identity.resolve_node_name(path, select=select)


@pytest.mark.parametrize(
    "value, expected",
    [
        ("first", node_identity.first_certificate),
        ("", node_identity.first_certificate),
        ("most-recent", node_identity.most_recent_not_expired),
    ],
)
def test_certificate_selector(value, expected):
    assert node_identity.certificate_selector(value) is expected


@pytest.mark.parametrize("value", ["latest", "sha256:", "md5:abcd"])
def test_certificate_selector_invalid(value):
    with pytest.raises(ValueError):
        node_identity.certificate_selector(value)
