"""Failures raised while reconstructing a node's upgrade configuration."""

from typing import Optional


class NodeUpgradeError(Exception):
    """Base class for every failure in the node upgrade pipeline."""

    def __init__(self, message, node_name: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.node_name = node_name


class StoreReadError(NodeUpgradeError):
    """The control-plane store is unreachable, or an object or key is absent."""

    def __init__(self, message, kind=None, name=None, key=None, node_name=None):
        super().__init__(message, node_name=node_name)
        self.kind = kind
        self.name = name
        self.key = key


class DecodeError(NodeUpgradeError):
    """Stored configuration is malformed or of an unsupported version."""

    def __init__(self, message, key=None):
        super().__init__(message)
        self.key = key


class ParseError(NodeUpgradeError):
    """A value read from the cluster or the local host could not be parsed."""

    def __init__(self, message, value=None, node_name=None):
        super().__init__(message, node_name=node_name)
        self.value = value


class ComponentConfigError(NodeUpgradeError):
    """A component configuration could not be fetched or decoded."""

    def __init__(self, message, component):
        super().__init__(message)
        self.component = component


class IdentityError(NodeUpgradeError):
    """The kubeconfig does not yield a usable client certificate identity."""

    def __init__(self, message, path):
        super().__init__(message)
        self.path = path


class MissingAnnotationError(NodeUpgradeError):
    """An object exists but lacks an annotation kubeadm should have written."""

    def __init__(self, message, kind, name, annotation, node_name=None):
        super().__init__(message, node_name=node_name)
        self.kind = kind
        self.name = name
        self.annotation = annotation


class AmbiguousOrAbsentAnnouncementError(NodeUpgradeError):
    """Not exactly one kube-apiserver pod announces an endpoint for the node."""

    def __init__(self, message, node_name, count, attempts=1):
        super().__init__(message, node_name=node_name)
        self.count = count
        self.attempts = attempts
