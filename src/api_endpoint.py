import logging
import socket
import threading
import time
from dataclasses import dataclass
from ipaddress import ip_address
from typing import Callable, Optional

from backoff import Backoff
from constants import (
    ANNOTATION_API_ENDPOINT,
    APISERVER_PORT,
    CONTROL_PLANE_TIER,
    KUBE_APISERVER,
    NAMESPACE_SYSTEM,
)
from errors import (
    AmbiguousOrAbsentAnnouncementError,
    MissingAnnotationError,
    ParseError,
    StoreReadError,
)

log = logging.getLogger(__name__)

APISERVER_POD_SELECTOR = f"component={KUBE_APISERVER},tier={CONTROL_PLANE_TIER}"


@dataclass
class APIEndpoint:
    """Address and port a kube-apiserver instance advertises."""

    advertise_address: str = ""
    bind_port: int = APISERVER_PORT

    @classmethod
    def from_string(cls, raw: str) -> "APIEndpoint":
        """Parse ``host:port`` where host is an IP address.

        IPv6 hosts must be bracketed. The port may be a number or a tcp
        service name.
        """
        host, port = split_host_port(raw)
        try:
            ip_address(host)
        except ValueError:
            raise ParseError(f"invalid API endpoint IP: {host}", value=raw) from None
        return cls(advertise_address=host, bind_port=lookup_port(port, raw))

    def __str__(self):
        if is_ipv6_address(self.advertise_address):
            return f"[{self.advertise_address}]:{self.bind_port}"
        return f"{self.advertise_address}:{self.bind_port}"

    @property
    def url(self) -> str:
        return build_url(self.advertise_address, self.bind_port)


def split_host_port(raw: str):
    if raw.startswith("["):
        end = raw.find("]:")
        if end == -1:
            raise ParseError(f"invalid advertise address endpoint: {raw}", value=raw)
        return raw[1:end], raw[end + 2:]
    if raw.count(":") != 1:
        raise ParseError(f"invalid advertise address endpoint: {raw}", value=raw)
    host, _, port = raw.partition(":")
    return host, port


def lookup_port(port: str, raw: str) -> int:
    if port.isdigit():
        number = int(port)
    else:
        try:
            number = socket.getservbyname(port, "tcp")
        except OSError:
            raise ParseError(f"invalid API endpoint port: {port!r}", value=raw) from None
    if not 0 < number < 65536:
        raise ParseError(f"invalid API endpoint port: {port!r}", value=raw)
    return number


def build_url(address, port):
    if is_ipv6_address(address):
        return f"https://[{address}]:{port}"
    else:
        return f"https://{address}:{port}"


def is_ipv6_address(address):
    try:
        address = ip_address(address)
        return address.version == 6
    except ValueError:
        return False


def announced_endpoint(store, node_name: str) -> str:
    """Raw endpoint announced by the node's kube-apiserver pod, without retry."""
    pods = store.list_pods(
        NAMESPACE_SYSTEM,
        field_selector=f"spec.nodeName={node_name}",
        label_selector=APISERVER_POD_SELECTOR,
    )
    if len(pods) != 1:
        raise AmbiguousOrAbsentAnnouncementError(
            f"API server pod for node name {node_name!r} has {len(pods)} entries, "
            "only one was expected",
            node_name=node_name,
            count=len(pods),
        )
    metadata = pods[0].get("metadata", {})
    annotations = metadata.get("annotations") or {}
    if ANNOTATION_API_ENDPOINT not in annotations:
        raise MissingAnnotationError(
            f"API server pod for node name {node_name!r} hasn't got a "
            f"{ANNOTATION_API_ENDPOINT!r} annotation, cannot retrieve API endpoint",
            kind="pod",
            name=metadata.get("name"),
            annotation=ANNOTATION_API_ENDPOINT,
            node_name=node_name,
        )
    return annotations[ANNOTATION_API_ENDPOINT]


def resolve(
    store,
    node_name: str,
    backoff: Optional[Backoff] = None,
    sleep: Callable[[float], None] = time.sleep,
    cancel: Optional[threading.Event] = None,
) -> APIEndpoint:
    """Endpoint of the kube-apiserver running on node_name.

    Static pods may not be mirrored into the API server yet, and the API
    server or its load balancer may fail transiently, so the lookup is retried
    until exactly one pod is found. A pod without the announcement is not
    retried.

    Raises:
        AmbiguousOrAbsentAnnouncementError: never exactly one pod, after every
            attempt of the backoff.
        StoreReadError: the pods could not be listed, after every attempt.
        MissingAnnotationError: the pod has no endpoint annotation.
        ParseError: the announced endpoint is malformed.
    """
    backoff = backoff or Backoff()
    attempts = 0

    def attempt():
        nonlocal attempts
        attempts += 1
        return announced_endpoint(store, node_name)

    retrying = backoff.retrying(
        retry_on=(AmbiguousOrAbsentAnnouncementError, StoreReadError), sleep=sleep, cancel=cancel
    )
    context = f"could not retrieve API endpoints for node {node_name!r} using pod annotations"
    try:
        raw = retrying(attempt)
    except AmbiguousOrAbsentAnnouncementError as e:
        raise AmbiguousOrAbsentAnnouncementError(
            f"{context} after {attempts} attempts: {e.message}",
            node_name=node_name,
            count=e.count,
            attempts=attempts,
        ) from e
    except StoreReadError as e:
        raise StoreReadError(
            f"{context} after {attempts} attempts: {e.message}",
            kind=e.kind,
            name=e.name,
            key=e.key,
            node_name=node_name,
        ) from e

    try:
        endpoint = APIEndpoint.from_string(raw)
    except ParseError as e:
        raise ParseError(
            f"could not parse API endpoint for node {node_name!r}: {e.message}",
            value=raw,
            node_name=node_name,
        ) from e
    log.info("Node %s announces API endpoint %s", node_name, endpoint)
    return endpoint
