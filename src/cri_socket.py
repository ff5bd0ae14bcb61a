"""Add the URL scheme older kubeadm releases left off CRI sockets.

Older kubeadm releases accepted sockets such as ``/var/run/containerd.sock``
and recorded them as-is, both on the Node object and in the kubelet flags.
Current releases expect ``unix:///var/run/containerd.sock``.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path

from constants import (
    ANNOTATION_CRI_SOCKET,
    DEFAULT_CRI_URL_SCHEME,
    KUBELET_FLAGS_ENV,
    KUBELET_FLAGS_ENV_VARIABLE,
)
from errors import ParseError

log = logging.getLogger(__name__)

CRI_ENDPOINT_FLAG = "--container-runtime-endpoint"


def has_url_scheme(socket: str) -> bool:
    return "://" in socket


def with_url_scheme(socket: str) -> str:
    if has_url_scheme(socket):
        return socket
    return f"{DEFAULT_CRI_URL_SCHEME}://{socket}"


@dataclass(frozen=True)
class NormalizeResult:
    """Outcome of a normalization.

    Attributes:
        changed: the socket lacked a scheme, so it was rewritten (or, in a dry
            run, would have been).
        proposed_value: the socket with its scheme.
        dry_run: nothing was written.
    """

    changed: bool
    proposed_value: str
    dry_run: bool = False


class CRISocketNormalizer:
    """Patch the CRI socket annotation of one node to carry a URL scheme.

    Running it again once the annotation has a scheme does nothing.
    """

    def __init__(self, store, node_registration, dry_run: bool = False):
        self.store = store
        self.node_registration = node_registration
        self.dry_run = dry_run

    def normalize(self) -> NormalizeResult:
        name = self.node_registration.name
        current = self.node_registration.cri_socket
        if not current:
            raise ParseError(f"node {name} has an empty CRI socket", value=current, node_name=name)

        proposed = with_url_scheme(current)
        if proposed == current:
            log.info("Node %s CRI socket %s already has a URL scheme", name, current)
            return NormalizeResult(changed=False, proposed_value=current, dry_run=self.dry_run)

        if self.dry_run:
            log.info(
                "[dryrun] would update the node %s CRI socket path to include an URL scheme: %s",
                name,
                proposed,
            )
            return NormalizeResult(changed=True, proposed_value=proposed, dry_run=True)

        log.info(
            "Ensuring that Node %s has a CRI socket annotation with URL scheme %s", name, proposed
        )
        self.store.annotate_node(name, ANNOTATION_CRI_SOCKET, proposed)
        self.node_registration.cri_socket = proposed
        return NormalizeResult(changed=True, proposed_value=proposed)


def _flags_with_url_scheme(args: str) -> str:
    # kubeadm writes flags as space separated --key=value pairs, but accept
    # "--key value" as well.
    tokens = args.split(" ")
    for i, token in enumerate(tokens):
        if token.startswith(CRI_ENDPOINT_FLAG + "="):
            value = token[len(CRI_ENDPOINT_FLAG) + 1:]
            tokens[i] = f"{CRI_ENDPOINT_FLAG}={with_url_scheme(value)}"
        elif token == CRI_ENDPOINT_FLAG and i + 1 < len(tokens) and tokens[i + 1]:
            tokens[i + 1] = with_url_scheme(tokens[i + 1])
    return " ".join(tokens)


def flags_env_with_url_scheme(content: str) -> str:
    """Return the kubeadm-flags.env content with a scheme on the CRI endpoint."""
    pattern = re.compile(rf'^({KUBELET_FLAGS_ENV_VARIABLE}=")(.*)(")(\s*)$')
    lines = []
    for line in content.splitlines(keepends=True):
        match = pattern.match(line)
        if match:
            prefix, args, quote, end = match.groups()
            line = f"{prefix}{_flags_with_url_scheme(args)}{quote}{end}"
        lines.append(line)
    return "".join(lines)


def update_flags_env_file(path: str = KUBELET_FLAGS_ENV, dry_run: bool = False) -> bool:
    """Ensure the kubelet flags env file has a CRI endpoint with a URL scheme.

    Returns:
        bool: whether the file was rewritten.

    Raises:
        ParseError: the file cannot be read or written.
    """
    if dry_run:
        log.info("[dryrun] Would ensure that %s has URL scheme", path)
        return False

    flags_file = Path(path)
    try:
        content = flags_file.read_text()
    except OSError as e:
        raise ParseError(
            f"failed to read kubelet configuration from file {path}: {e}", value=path
        ) from e

    updated = flags_env_with_url_scheme(content)
    if updated == content:
        return False
    try:
        flags_file.write_text(updated)
    except OSError as e:
        raise ParseError(
            f"failed to write kubelet configuration to file {path}: {e}", value=path
        ) from e
    log.info("Updated the CRI endpoint in %s", path)
    return True
