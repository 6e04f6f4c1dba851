"""
Kubelet 데몬 및 인증서 검증
"""

import json
import re
import time
from typing import Callable, Optional

from jinja2 import Template

from .certificate import (
    CertificateOutcome,
    KUBELET_CERT_VALIDATION,
    kubelet_remediations,
    remediable_error,
    validate_certificate,
)
from .config import Config
from .daemon import DaemonManager, ManagedDaemon
from .errors import ExternalDependencyError
from .iamrolesanywhere import CREDENTIALS_FILE_PATH as IAM_RA_CREDENTIALS_FILE_PATH
from .iamrolesanywhere import DEFAULT_AWS_CONFIG_PATH, PROFILE_NAME
from .logger import get_logger
from .utils import Runner, rooted, run_command, write_file_if_different
from .validation import Informer, informing

DAEMON_NAME = "kubelet"
KUBELET_BIN_PATH = "/usr/bin/kubelet"
UNIT_PATH = "/etc/systemd/system/kubelet.service"
ENVIRONMENT_FILE_PATH = "/etc/eks/kubelet/environment"
CONFIG_PATH = "/etc/kubernetes/kubelet/config.json"
KUBECONFIG_PATH = "/var/lib/kubelet/kubeconfig"
CA_CERT_PATH = "/etc/kubernetes/pki/ca.crt"
CURRENT_CERT_PATH = "/var/lib/kubelet/pki/kubelet-server-current.pem"

VERSION_PATTERN = re.compile(r"v?(\d+)\.(\d+)(?:\.(\d+))?")

UNIT_TEMPLATE = Template("""[Unit]
Description=Kubernetes Kubelet
Documentation=https://github.com/kubernetes/kubernetes
After=containerd.service
Wants=containerd.service

[Service]
EnvironmentFile=-{{ environment_file }}
ExecStart={{ kubelet_bin }} $NODEADM_KUBELET_ARGS
Restart=on-failure
RestartForceExitStatus=SIGPIPE
RestartSec=5
KillMode=process
CPUAccounting=true
MemoryAccounting=true

[Install]
WantedBy=multi-user.target
""", keep_trailing_newline=True)

KUBECONFIG_TEMPLATE = Template("""---
apiVersion: v1
kind: Config
clusters:
- cluster:
    certificate-authority: {{ ca_cert_path }}
    server: {{ endpoint }}
  name: kubernetes
contexts:
- context:
    cluster: kubernetes
    user: kubelet
  name: kubelet
current-context: kubelet
users:
- name: kubelet
  user:
    exec:
      apiVersion: client.authentication.k8s.io/v1beta1
      command: aws-iam-authenticator
      args:
      - token
      - -i
      - {{ cluster_name }}
      - --region
      - {{ region }}
{%- if env %}
      env:
{%- for key, value in env %}
      - name: {{ key }}
        value: {{ value }}
{%- endfor %}
{%- endif %}
""", keep_trailing_newline=True)


def parse_kubernetes_version(version: str):
    """'v1.30.2', '1.30', 'Kubernetes v1.30.2-eks-...' → (major, minor, patch)"""
    match = VERSION_PATTERN.search(version or "")
    if not match:
        raise ValueError(f"invalid kubernetes version {version!r}")
    return int(match.group(1)), int(match.group(2)), int(match.group(3) or 0)


def kubelet_version(runner: Optional[Runner] = None) -> str:
    """`kubelet --version` 출력에서 버전 추출"""
    output = run_command([KUBELET_BIN_PATH, "--version"], timeout=30, runner=runner)
    match = VERSION_PATTERN.search(output)
    if not match:
        raise ExternalDependencyError(f"unexpected kubelet version output: {output.strip()}")
    return match.group(0) if match.group(0).startswith("v") else "v" + match.group(0)


def kubelet_args(config: Config) -> str:
    args = [
        f"--config={CONFIG_PATH}",
        f"--kubeconfig={KUBECONFIG_PATH}",
        f"--hostname-override={config.status.node_name}",
        "--node-labels=eks.amazonaws.com/compute-type=hybrid",
    ]
    args.extend(config.kubelet.flags)
    return " ".join(args)


def kubelet_config_json(config: Config) -> bytes:
    """기본 KubeletConfiguration에 사용자 설정을 덮어쓴다"""
    kubelet_config = {
        "apiVersion": "kubelet.config.k8s.io/v1beta1",
        "kind": "KubeletConfiguration",
        "authentication": {
            "anonymous": {"enabled": False},
            "webhook": {"enabled": True},
            "x509": {"clientCAFile": CA_CERT_PATH},
        },
        "authorization": {"mode": "Webhook"},
        "cgroupDriver": "systemd",
        "containerRuntimeEndpoint": "unix:///run/containerd/containerd.sock",
        "serverTLSBootstrap": True,
        "providerID": f"eks-hybrid:///{config.cluster.region}/{config.cluster.name}/{config.status.node_name}",
    }
    kubelet_config.update(config.kubelet.config)
    return (json.dumps(kubelet_config, indent=2, sort_keys=True) + "\n").encode()


def kubeconfig(config: Config, install_root: str = "/") -> bytes:
    env = []
    if config.is_iam_roles_anywhere():
        iam = config.hybrid.iam_roles_anywhere
        env.append(("AWS_CONFIG_FILE", rooted(install_root, iam.aws_config_path or DEFAULT_AWS_CONFIG_PATH)))
        env.append(("AWS_PROFILE", PROFILE_NAME))
        if config.hybrid.enable_credentials_file:
            env.append(("AWS_SHARED_CREDENTIALS_FILE", rooted(install_root, IAM_RA_CREDENTIALS_FILE_PATH)))
    return KUBECONFIG_TEMPLATE.render(
        ca_cert_path=CA_CERT_PATH,
        endpoint=config.cluster.api_server_endpoint,
        cluster_name=config.cluster.name,
        region=config.cluster.region,
        env=env,
    ).encode()


class KubeletDaemon(ManagedDaemon):
    """kubelet 서비스"""

    def __init__(self, manager: DaemonManager, config: Config, install_root: str = "/",
                 sleep: Callable[[float], None] = time.sleep):
        super().__init__(manager, sleep)
        self.config = config
        self.install_root = install_root

    @property
    def name(self) -> str:
        return DAEMON_NAME

    def configure(self):
        root = self.install_root
        if self.config.cluster.certificate_authority:
            write_file_if_different(rooted(root, CA_CERT_PATH), self.config.cluster.certificate_authority, 0o644)
        write_file_if_different(rooted(root, KUBECONFIG_PATH), kubeconfig(self.config, root), 0o600)
        write_file_if_different(rooted(root, CONFIG_PATH), kubelet_config_json(self.config), 0o644)
        write_file_if_different(
            rooted(root, ENVIRONMENT_FILE_PATH),
            f'NODEADM_KUBELET_ARGS="{kubelet_args(self.config)}"\n'.encode(),
            0o644,
        )
        unit = UNIT_TEMPLATE.render(environment_file=ENVIRONMENT_FILE_PATH, kubelet_bin=KUBELET_BIN_PATH)
        write_file_if_different(rooted(root, UNIT_PATH), unit.encode(), 0o644)
        self.manager.reload()


class KubeletCertificateValidator:
    """기존 kubelet 서버 인증서를 클러스터 CA로 검증

    인증서가 없거나 날짜 문제(시계 오차, 만료)인 경우 kubelet이
    다시 발급하므로 실패로 취급하지 않는다.
    """

    def __init__(self, cert_path: str = CURRENT_CERT_PATH):
        self.cert_path = cert_path
        self.logger = get_logger()

    def run(self, informer: Informer, config: Config):
        with informing(informer, KUBELET_CERT_VALIDATION, "Validating kubelet server certificate"):
            check = validate_certificate(self.cert_path, config.cluster.certificate_authority)
            if check.ok:
                return
            if check.outcome is CertificateOutcome.NO_CERTIFICATE or check.outcome.is_date_problem:
                self.logger.info(f"Ignoring kubelet certificate state {check.outcome.value}: {check.message}")
                return
            raise remediable_error(check, kubelet_remediations(self.cert_path), "validating kubelet certificate")
