"""
하이브리드 노드 프로바이더
설정 검증, AWS 자격 증명 구성, 클러스터 정보 보강, 데몬 및 검증 목록 구성
"""

import os
import threading
import time
from typing import Callable, List, Optional

import boto3

from .aws import AWS_AUTH, AuthenticationValidator, get_caller_identity, load_session
from .certificate import (
    KUBELET_CERT_VALIDATION,
    iam_roles_anywhere_remediations,
    remediable_error,
    validate_certificate,
)
from .cluster import ClusterDetails, enrich_config, needs_cluster_details, read_cluster
from .config import Config
from .containerd import ContainerdDaemon
from .daemon import Daemon, DaemonManager, SystemdDaemonManager, run_daemon_lifecycle
from .errors import ConfigurationError
from .iamrolesanywhere import (
    DEFAULT_AWS_CONFIG_PATH,
    AWSConfig,
    SigningHelperDaemon,
    load_aws_config,
    write_aws_config,
)
from .kubelet import CURRENT_CERT_PATH, KubeletCertificateValidator, KubeletDaemon, kubelet_version
from .kubernetes import (
    K8S_ENDPOINT_ACCESS,
    KUBELET_VERSION_SKEW,
    NODE_INACTIVE,
    APIEndpointValidator,
    NodeInactiveValidator,
    VersionSkewValidator,
)
from .logger import get_logger
from .network import NODE_IP_VALIDATION, Network, NodeIPValidator
from .ssm import SSMDaemon, credentials_file_path, wait_for_aws_config
from .system import NTP_SYNC, SWAP, NTPValidator, SwapValidator
from .utils import Runner, rooted
from .validation import Validation, ValidationError

IAM_RA_CERTIFICATE = "iam-ra-certificate"


class HybridNodeProvider:
    """하이브리드 노드 부트스트랩 구성 요소 조립

    테스트에서는 manager, network, session, cluster 등을 주입한다.
    """

    def __init__(self, config: Config, skip: Optional[List[str]] = None,
                 manager: Optional[DaemonManager] = None,
                 network: Optional[Network] = None,
                 install_root: str = "/",
                 session: Optional[boto3.Session] = None,
                 cluster: Optional[ClusterDetails] = None,
                 cert_path: str = CURRENT_CERT_PATH,
                 os_name: Optional[str] = None,
                 runner: Optional[Runner] = None,
                 cluster_reader: Callable[[boto3.Session, Config], ClusterDetails] = read_cluster,
                 kubelet_version_reader: Optional[Callable[[], str]] = None,
                 caller_identity: Callable[[boto3.Session], dict] = get_caller_identity,
                 sleep: Callable[[float], None] = time.sleep,
                 cancel: Optional[threading.Event] = None):
        self.config = config
        self.skip = list(skip or [])
        self.manager = manager or SystemdDaemonManager(runner)
        self.network = network
        self.install_root = install_root
        self.session = session
        self.cluster = cluster
        self.cluster_error: Optional[Exception] = None
        self.cert_path = cert_path
        self.os_name = os_name
        self.runner = runner
        self.cluster_reader = cluster_reader
        self.kubelet_version_reader = kubelet_version_reader or (lambda: kubelet_version(self.runner))
        self.caller_identity = caller_identity
        self.sleep = sleep
        self.cancel = cancel
        self.logger = get_logger()

    # 설정 검증

    def validate_config(self):
        """부작용 없이 설정 검증. IAM-RA 인증서도 확인한다"""
        self.config.validate()

        if self.config.is_iam_roles_anywhere() and IAM_RA_CERTIFICATE not in self.skip:
            cert_path = self.config.hybrid.iam_roles_anywhere.certificate_path
            check = validate_certificate(cert_path)
            if not check.ok:
                raise remediable_error(check, iam_roles_anywhere_remediations(cert_path),
                                       "validating iam-roles-anywhere certificate")

    # 자격 증명

    def ssm_daemon(self) -> SSMDaemon:
        return SSMDaemon(self.manager, self.config, os_name=self.os_name,
                         install_root=self.install_root, runner=self.runner,
                         sleep=self.sleep, cancel=self.cancel)

    def signing_helper_daemon(self) -> SigningHelperDaemon:
        return SigningHelperDaemon(self.manager, self.config, install_root=self.install_root,
                                   sleep=self.sleep, cancel=self.cancel)

    def credential_daemons(self) -> List[Daemon]:
        if self.config.is_ssm():
            return [self.ssm_daemon()]
        if self.config.is_iam_roles_anywhere() and self.config.hybrid.enable_credentials_file:
            return [self.signing_helper_daemon()]
        return []

    def configure_aws(self) -> boto3.Session:
        """선택된 방식으로 자격 증명을 구성하고 사용할 수 있는 세션 반환"""
        if self.config.is_ssm():
            self.logger.info("Configuring AWS credentials with SSM")
            run_daemon_lifecycle([self.ssm_daemon()])
            self.logger.info("Waiting for AWS config to be available")
            credentials_file = self._rooted_ssm_credentials_file()
            self.session = wait_for_aws_config(self.config, credentials_file,
                                               cancel=self.cancel, sleep=self.sleep)
        elif self.config.is_iam_roles_anywhere():
            self.logger.info("Configuring AWS credentials with IAM Roles Anywhere")
            self.config.status.node_name = self.config.hybrid.iam_roles_anywhere.node_name
            write_aws_config(AWSConfig.from_config(self.config), self.install_root)
            if self.config.hybrid.enable_credentials_file:
                run_daemon_lifecycle([self.signing_helper_daemon()])
            self.session = load_aws_config(self.config, self.install_root)
        else:
            raise ConfigurationError("Either IAMRolesAnywhere or SSM must be provided for hybrid node configuration")
        return self.session

    def load_existing_aws_config(self) -> Optional[boto3.Session]:
        """debug용: 자격 증명을 새로 만들지 않고 이미 있는 설정으로 세션 생성"""
        if self.session is not None:
            return self.session
        if self.config.is_ssm():
            credentials_file = self._rooted_ssm_credentials_file()
            if not os.path.exists(credentials_file):
                self.logger.warning(f"SSM credentials file {credentials_file} not found")
                return None
            registration = self.ssm_daemon().registration.read()
            if registration is not None:
                self.config.status.node_name = registration.instance_id
            self.session = load_session(self.config.cluster.region, credentials_file=credentials_file,
                                        allowed_providers=("shared-credentials-file",))
        elif self.config.is_iam_roles_anywhere():
            iam = self.config.hybrid.iam_roles_anywhere
            self.config.status.node_name = iam.node_name
            aws_config_path = rooted(self.install_root, iam.aws_config_path or DEFAULT_AWS_CONFIG_PATH)
            if not os.path.exists(aws_config_path):
                self.logger.warning(f"IAM Roles Anywhere AWS config {aws_config_path} not found")
                return None
            self.session = load_aws_config(self.config, self.install_root)
        return self.session

    def _rooted_ssm_credentials_file(self) -> str:
        return rooted(self.install_root, credentials_file_path())

    # 클러스터 정보

    def get_cluster(self) -> Optional[ClusterDetails]:
        """캐시된 클러스터 정보. 조회할 수 없으면 None"""
        if self.cluster is not None or self.cluster_error is not None:
            return self.cluster
        if self.session is None:
            return None
        try:
            self.cluster = self.cluster_reader(self.session, self.config)
        except ValidationError as e:
            self.logger.warning(f"Cluster details are unavailable: {e}")
            self.cluster_error = e
        return self.cluster

    def enrich(self):
        """누락된 클러스터 필드를 DescribeCluster 결과로 채운다"""
        if not needs_cluster_details(self.config):
            self.logger.info("Cluster details already present, skipping enrichment")
            return
        cluster = self.get_cluster()
        if cluster is None:
            if self.cluster_error is not None:
                raise self.cluster_error
            raise ConfigurationError("cluster details are missing and no AWS credentials are available to read them")
        enrich_config(self.config, cluster)
        self.logger.info(f"Cluster details populated for {self.config.cluster.name}")

    # 데몬 및 검증

    def node_daemons(self) -> List[Daemon]:
        return [
            ContainerdDaemon(self.manager, self.config, self.install_root),
            KubeletDaemon(self.manager, self.config, self.install_root, sleep=self.sleep),
        ]

    def preflight_validations(self) -> List[Validation]:
        """데몬 구성 전에 실행하는 검증"""
        inactive = NodeInactiveValidator(self.manager, self.install_root)
        return [Validation(NODE_INACTIVE, inactive.run)]

    def validations(self) -> List[Validation]:
        """노드 준비 상태 검증 목록 (순서대로 실행)"""
        node_ip = NodeIPValidator(self.get_cluster, self.network,
                                  validate_mtu=self.config.agent.validate_mtu)
        kubelet_cert = KubeletCertificateValidator(self.cert_path)
        ntp = NTPValidator(self.runner)
        swap = SwapValidator(self.install_root)
        auth = AuthenticationValidator(lambda: self.session, self.caller_identity)
        skew = VersionSkewValidator(self.get_cluster, self.kubelet_version_reader)
        endpoint = APIEndpointValidator(self.get_cluster)
        return [
            Validation(NTP_SYNC, ntp.run),
            Validation(SWAP, swap.run),
            Validation(AWS_AUTH, auth.run),
            Validation(NODE_IP_VALIDATION, node_ip.run),
            Validation(KUBELET_CERT_VALIDATION, kubelet_cert.run),
            Validation(KUBELET_VERSION_SKEW, skew.run),
            Validation(K8S_ENDPOINT_ACCESS, endpoint.run),
        ]
