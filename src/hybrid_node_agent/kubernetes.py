"""
Kubernetes 컨트롤 플레인 관련 검증
API 엔드포인트 접근성, kubelet 버전 차이, 이전 설치 흔적 확인
"""

import os
from typing import Callable, Optional

from .cluster import ClusterDetails
from .config import Config
from .daemon import DaemonManager, DaemonStatus
from .errors import ExternalDependencyError
from .kubelet import DAEMON_NAME as KUBELET_DAEMON_NAME
from .kubelet import ENVIRONMENT_FILE_PATH as KUBELET_ENVIRONMENT_FILE_PATH
from .kubelet import parse_kubernetes_version
from .logger import get_logger
from .network import check_connection_to_host
from .utils import rooted
from .validation import Informer, informing, skip_unavailable, with_remediation, with_warning

K8S_ENDPOINT_ACCESS = "k8s-endpoint-access"
KUBELET_VERSION_SKEW = "kubelet-version-skew"
NODE_INACTIVE = "node-inactive"

MAX_VERSION_SKEW = 3
ETC_KUBERNETES_DIR = "/etc/kubernetes"

VERSION_SKEW_REMEDIATION = (
    "Ensure the hybrid node's Kubernetes version follows the version skew policy of the EKS cluster. "
    "Update the node's Kubernetes components using 'hybrid-node-agent upgrade' or reinstall with a compatible version. "
    "https://kubernetes.io/releases/version-skew-policy/#kubelet"
)
ENDPOINT_REMEDIATION = (
    "Ensure your network configuration allows the node to access the Kubernetes API endpoint. "
    "Check firewall rules, routing and proxy settings between the node and the EKS control plane."
)
NODE_ACTIVE_REMEDIATION = (
    "Ensure the hybrid node is made inactive by running 'hybrid-node-agent uninstall' "
    "before attaching to the EKS cluster"
)


class APIEndpointValidator:
    """API 서버 엔드포인트에 HTTPS로 도달 가능한지 확인"""

    def __init__(self, get_cluster: Callable[[], Optional[ClusterDetails]],
                 check: Callable[..., None] = check_connection_to_host):
        self.get_cluster = get_cluster
        self.check = check

    def run(self, informer: Informer, config: Config):
        endpoint = config.cluster.api_server_endpoint
        if not endpoint:
            cluster = self.get_cluster()
            endpoint = cluster.endpoint if cluster else ""
        if not endpoint:
            skip_unavailable(informer, K8S_ENDPOINT_ACCESS,
                             "Skipping Kubernetes API endpoint access validation (endpoint unavailable)")
            return

        with informing(informer, K8S_ENDPOINT_ACCESS, "Validating access to Kubernetes API endpoint"):
            try:
                # 인증서 신뢰는 kubelet-cert-validation에서 다룬다
                self.check(endpoint, verify=False)
            except ExternalDependencyError as e:
                raise with_remediation(e, ENDPOINT_REMEDIATION)


def check_version_skew(kubelet_version: str, api_server_version: str):
    """kubelet이 API 서버보다 새롭지 않고 최대 3 마이너 버전 이내인지 확인"""
    try:
        _, server_minor, _ = parse_kubernetes_version(api_server_version)
    except ValueError as e:
        raise ExternalDependencyError(f"failed to parse kube-apiserver version {api_server_version}: {e}") from e
    try:
        _, kubelet_minor, _ = parse_kubernetes_version(kubelet_version)
    except ValueError as e:
        raise ExternalDependencyError(f"failed to parse kubelet version {kubelet_version}: {e}") from e

    if kubelet_minor > server_minor:
        raise ExternalDependencyError(
            f"kubelet version {kubelet_version} is newer than kube-apiserver version {api_server_version}"
        )
    if server_minor - kubelet_minor > MAX_VERSION_SKEW:
        raise ExternalDependencyError(
            f"kubelet version {kubelet_version} is too old for kube-apiserver version {api_server_version}; "
            f"maximum supported version skew is {MAX_VERSION_SKEW} minor versions"
        )


class VersionSkewValidator:
    def __init__(self, get_cluster: Callable[[], Optional[ClusterDetails]],
                 get_kubelet_version: Callable[[], str]):
        self.get_cluster = get_cluster
        self.get_kubelet_version = get_kubelet_version

    def run(self, informer: Informer, config: Config):
        cluster = self.get_cluster()
        if cluster is None:
            skip_unavailable(informer, KUBELET_VERSION_SKEW,
                             "Skipping kubelet version skew validation due to node IAM role missing "
                             "EKS DescribeCluster permission")
            return

        with informing(informer, KUBELET_VERSION_SKEW, "Validating kubelet version skew"):
            try:
                version = self.get_kubelet_version()
            except ExternalDependencyError as e:
                raise with_remediation(ExternalDependencyError(f"failed to get kubelet version: {e}"),
                                       VERSION_SKEW_REMEDIATION)
            try:
                check_version_skew(version, cluster.version)
            except ExternalDependencyError as e:
                raise with_remediation(e, VERSION_SKEW_REMEDIATION)


class NodeInactiveValidator:
    """이전 설치 흔적이나 실행 중인 kubelet이 있으면 경고"""

    def __init__(self, manager: DaemonManager, install_root: str = "/"):
        self.manager = manager
        self.install_root = install_root
        self.logger = get_logger()

    def run(self, informer: Informer, config: Config):
        with informing(informer, NODE_INACTIVE, "Validating that the node is inactive"):
            env_file = rooted(self.install_root, KUBELET_ENVIRONMENT_FILE_PATH)
            if os.path.exists(env_file):
                raise with_warning(
                    ExternalDependencyError(f"kubelet args environment file {env_file} exists"),
                    NODE_ACTIVE_REMEDIATION,
                )

            kube_dir = rooted(self.install_root, ETC_KUBERNETES_DIR)
            if os.path.exists(kube_dir):
                raise with_warning(
                    ExternalDependencyError(f"kubernetes directory {kube_dir} still exists"),
                    NODE_ACTIVE_REMEDIATION,
                )

            try:
                status = self.manager.status(KUBELET_DAEMON_NAME)
            except ExternalDependencyError as e:
                raise with_warning(e, NODE_ACTIVE_REMEDIATION)
            if status == DaemonStatus.RUNNING:
                raise with_warning(
                    ExternalDependencyError("kubelet service is still active and may be connected to a previous cluster"),
                    NODE_ACTIVE_REMEDIATION,
                )
