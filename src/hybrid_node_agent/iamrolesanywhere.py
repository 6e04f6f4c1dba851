"""
IAM Roles Anywhere 기반 자격 증명 모듈
AWS config 프로파일 작성, 서명 도우미 업데이트 데몬 관리, 세션 생성
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

import boto3
from jinja2 import Template

from .aws import load_session
from .config import Config
from .daemon import DaemonManager, ManagedDaemon
from .errors import ConfigurationError
from .logger import get_logger
from .utils import rooted, write_file_if_different
from .wait import wait_for_file

PROFILE_NAME = "hybrid"
DEFAULT_AWS_CONFIG_PATH = "/etc/aws/hybrid/config"
SIGNING_HELPER_BIN_PATH = "/usr/local/bin/aws_signing_helper"
DAEMON_NAME = "aws_signing_helper_update"
CREDENTIALS_FILE_PATH = "/eks-hybrid/.aws/credentials"
SERVICE_FILE_PATH = "/etc/systemd/system/aws_signing_helper_update.service"

AWS_CONFIG_TEMPLATE = Template(
    "[profile {{ profile }}]\n"
    "region = {{ cfg.region }}\n"
    "credential_process = {{ cfg.signing_helper_bin_path }} credential-process"
    " --certificate {{ cfg.certificate_path }}"
    " --private-key {{ cfg.private_key_path }}"
    " --profile-arn {{ cfg.profile_arn }}"
    " --role-arn {{ cfg.role_arn }}"
    " --trust-anchor-arn {{ cfg.trust_anchor_arn }}"
    " --role-session-name {{ cfg.node_name }}\n",
    keep_trailing_newline=True,
)

SERVICE_TEMPLATE = Template("""[Unit]
Description=Service that keeps IAM Roles Anywhere credentials updated
Wants=network-online.target
After=network-online.target

[Service]
Type=simple
Environment=AWS_SHARED_CREDENTIALS_FILE={{ credentials_file }}
ExecStart={{ signing_helper_bin_path }} update \\
  --certificate {{ certificate_path }} \\
  --private-key {{ private_key_path }} \\
  --trust-anchor-arn {{ trust_anchor_arn }} \\
  --profile-arn {{ profile_arn }} \\
  --role-arn {{ role_arn }} \\
  --region {{ region }} \\
  --role-session-name {{ node_name }} \\
  --profile {{ profile }}
Restart=on-failure
RestartSec=30

[Install]
WantedBy=multi-user.target
""", keep_trailing_newline=True)


@dataclass
class AWSConfig:
    """IAM Roles Anywhere 프로파일 렌더링 입력"""
    trust_anchor_arn: str = ""
    profile_arn: str = ""
    role_arn: str = ""
    region: str = ""
    node_name: str = ""
    certificate_path: str = ""
    private_key_path: str = ""
    config_path: str = DEFAULT_AWS_CONFIG_PATH
    signing_helper_bin_path: str = SIGNING_HELPER_BIN_PATH

    @classmethod
    def from_config(cls, config: Config) -> "AWSConfig":
        iam = config.hybrid.iam_roles_anywhere
        return cls(
            trust_anchor_arn=iam.trust_anchor_arn,
            profile_arn=iam.profile_arn,
            role_arn=iam.role_arn,
            region=config.cluster.region,
            node_name=config.status.node_name or iam.node_name,
            certificate_path=iam.certificate_path,
            private_key_path=iam.private_key_path,
            config_path=iam.aws_config_path or DEFAULT_AWS_CONFIG_PATH,
        )

    def validate(self):
        """필수 필드가 비어 있으면 필드명을 담은 ConfigurationError 발생"""
        required = (
            ("trust_anchor_arn", "TrustAnchorARN"),
            ("profile_arn", "ProfileARN"),
            ("role_arn", "RoleARN"),
            ("region", "Region"),
            ("node_name", "NodeName"),
            ("certificate_path", "CertificatePath"),
            ("private_key_path", "PrivateKeyPath"),
            ("signing_helper_bin_path", "SigningHelperBinPath"),
        )
        for attr, label in required:
            if not getattr(self, attr):
                raise ConfigurationError(f"{label} cannot be empty")


def render_aws_config(cfg: AWSConfig) -> bytes:
    return AWS_CONFIG_TEMPLATE.render(profile=PROFILE_NAME, cfg=cfg).encode()


def write_aws_config(cfg: AWSConfig, install_root: str = "/") -> bool:
    """프로파일 문서를 검증 후 작성 (내용이 같으면 쓰지 않음)"""
    cfg.validate()
    path = rooted(install_root, cfg.config_path)
    changed = write_file_if_different(path, render_aws_config(cfg), 0o644)
    get_logger().info(f"{'Wrote' if changed else 'Kept'} IAM Roles Anywhere AWS config at {path}")
    return changed


def render_update_service(config: Config, credentials_file: str = CREDENTIALS_FILE_PATH) -> bytes:
    iam = config.hybrid.iam_roles_anywhere
    return SERVICE_TEMPLATE.render(
        credentials_file=credentials_file,
        signing_helper_bin_path=SIGNING_HELPER_BIN_PATH,
        certificate_path=iam.certificate_path,
        private_key_path=iam.private_key_path,
        trust_anchor_arn=iam.trust_anchor_arn,
        profile_arn=iam.profile_arn,
        role_arn=iam.role_arn,
        region=config.cluster.region,
        node_name=iam.node_name,
        profile=PROFILE_NAME,
    ).encode()


class SigningHelperDaemon(ManagedDaemon):
    """공유 자격 증명 파일을 계속 갱신하는 aws_signing_helper update 서비스"""

    def __init__(self, manager: DaemonManager, config: Config, install_root: str = "/",
                 sleep: Callable[[float], None] = time.sleep,
                 cancel: Optional[threading.Event] = None):
        super().__init__(manager, sleep)
        self.config = config
        self.install_root = install_root
        self.cancel = cancel

    @property
    def name(self) -> str:
        return DAEMON_NAME

    @property
    def credentials_file(self) -> str:
        return rooted(self.install_root, CREDENTIALS_FILE_PATH)

    def configure(self):
        path = rooted(self.install_root, SERVICE_FILE_PATH)
        write_file_if_different(path, render_update_service(self.config), 0o644)
        self.manager.reload()

    def post_launch(self):
        if not self.config.hybrid.enable_credentials_file:
            return
        self.logger.info("Waiting for AWS credentials file to be created by iam-ra service")
        wait_for_file(self.credentials_file, "iam-roles-anywhere AWS creds file",
                      interval=self.config.agent.credentials_poll_interval,
                      timeout=self.config.agent.credentials_timeout,
                      cancel=self.cancel, sleep=self.sleep)
        self.logger.info("AWS credentials file created successfully")


def load_aws_config(config: Config, install_root: str = "/") -> boto3.Session:
    """작성한 프로파일(과 갱신 자격 증명 파일)로 세션 생성. IMDS 폴백 없음"""
    iam = config.hybrid.iam_roles_anywhere
    credentials_file = None
    if config.hybrid.enable_credentials_file:
        credentials_file = rooted(install_root, CREDENTIALS_FILE_PATH)
    return load_session(
        config.cluster.region,
        config_file=rooted(install_root, iam.aws_config_path or DEFAULT_AWS_CONFIG_PATH),
        credentials_file=credentials_file,
        profile=PROFILE_NAME,
    )
