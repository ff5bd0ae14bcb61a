"""Well-known names shared with kubeadm.

These must match kubeadm exactly, otherwise the objects it wrote into the
cluster will not be found.
"""

KUBERNETES_DIR = "/etc/kubernetes"
ADMIN_KUBECONFIG = f"{KUBERNETES_DIR}/admin.conf"
KUBELET_KUBECONFIG = f"{KUBERNETES_DIR}/kubelet.conf"

KUBELET_RUN_DIR = "/var/lib/kubelet"
KUBELET_FLAGS_ENV = f"{KUBELET_RUN_DIR}/kubeadm-flags.env"
KUBELET_FLAGS_ENV_VARIABLE = "KUBELET_KUBEADM_ARGS"

NAMESPACE_SYSTEM = "kube-system"

KUBEADM_CONFIG_MAP = "kubeadm-config"
CLUSTER_CONFIGURATION_KEY = "ClusterConfiguration"

ANNOTATION_CRI_SOCKET = "kubeadm.alpha.kubernetes.io/cri-socket"
ANNOTATION_API_ENDPOINT = "kubeadm.kubernetes.io/kube-apiserver.advertise-address.endpoint"

NODES_USER_PREFIX = "system:node:"

KUBE_APISERVER = "kube-apiserver"
CONTROL_PLANE_TIER = "control-plane"

DEFAULT_CRI_URL_SCHEME = "unix"
UNKNOWN_CRI_SOCKET = "unix:///var/run/unknown.sock"

APISERVER_PORT = 6443
