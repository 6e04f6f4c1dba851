"""
SSM 하이브리드 활성화 기반 자격 증명 모듈
관리형 인스턴스 등록, SSM 에이전트 데몬 관리, 자격 증명 파일 대기
"""

import json
import os
import platform
import re
import shutil
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

import boto3
import requests
from botocore.exceptions import BotoCoreError, ClientError

from .aws import load_session
from .config import Config
from .daemon import DaemonManager, DaemonStatus, ManagedDaemon, wait_for_status
from .errors import CommandError, ExternalDependencyError
from .logger import get_logger
from .system import AMAZON_LINUX, RHEL, UBUNTU, get_os_name
from .utils import Runner, first_existing, rooted, run_command
from .wait import retry, wait_for_file

REGISTRATION_FILE_PATH = "/var/lib/amazon/ssm/registration"
AGENT_BINARY_PATHS = [
    "/usr/bin/amazon-ssm-agent",
    "/snap/amazon-ssm-agent/current/amazon-ssm-agent",
]
SETUP_CLI_PATH = "/opt/ssm/ssm-setup-cli"
SETUP_CLI_URL = "https://amazon-ssm-us-west-2.s3.us-west-2.amazonaws.com/latest/{platform}_{arch}/ssm-setup-cli"

DEFAULT_AWS_CONFIG_DIR = "/root/.aws"
CREDENTIALS_FILE_PATH = DEFAULT_AWS_CONFIG_DIR + "/credentials"
EKS_HYBRID_DIR = "/eks-hybrid"
SYMLINKED_AWS_CONFIG_DIR = EKS_HYBRID_DIR + "/.aws"
SHARED_CREDENTIALS_FILE_ENV = "AWS_SHARED_CREDENTIALS_FILE"

DEFAULT_DAEMON_NAME = "amazon-ssm-agent"
DAEMON_NAMES = {
    UBUNTU: "snap.amazon-ssm-agent.amazon-ssm-agent",
    RHEL: "amazon-ssm-agent",
    AMAZON_LINUX: "amazon-ssm-agent",
}

CHECKSUM_MISMATCH_PATTERN = re.compile(r"checksum mismatch with latest ssm-setup-cli")
ACTIVATION_EXPIRED_PATTERN = re.compile(r"ActivationExpired")
INVALID_ACTIVATION_PATTERN = re.compile(r"InvalidActivation")


def ssm_daemon_name(os_name: str) -> str:
    """배포판별 SSM 에이전트 유닛 이름"""
    return DAEMON_NAMES.get(os_name, DEFAULT_DAEMON_NAME)


def credentials_file_path() -> str:
    return os.environ.get(SHARED_CREDENTIALS_FILE_ENV, CREDENTIALS_FILE_PATH)


class ChecksumMismatchError(ExternalDependencyError):
    """등록 도구가 최신 ssm-setup-cli와 체크섬이 맞지 않음 (재다운로드 필요)"""


class ActivationExpiredError(ExternalDependencyError):
    """만료된 SSM 활성화 (재시도 불가)"""


class InvalidActivationError(ExternalDependencyError):
    """잘못된 SSM 활성화 (재시도 불가)"""


def classify_registration_error(err: CommandError) -> Exception:
    """등록 명령 출력으로 오류 분류. 분류되지 않으면 원래 오류 반환"""
    text = str(err)
    if CHECKSUM_MISMATCH_PATTERN.search(text):
        classified = ChecksumMismatchError(f"registering with SSM: {err.output}")
    elif ACTIVATION_EXPIRED_PATTERN.search(text):
        classified = ActivationExpiredError("SSM activation expired. Please use a valid activation")
    elif INVALID_ACTIVATION_PATTERN.search(text):
        classified = InvalidActivationError(
            "invalid SSM activation. Please use a valid activation code, activation id and region"
        )
    else:
        return err
    classified.__cause__ = err
    return classified


@dataclass(frozen=True)
class ManagedInstanceRegistration:
    """SSM 에이전트가 기록한 등록 정보 (읽기 전용)"""
    instance_id: str
    region: str


class SSMRegistration:
    """등록 파일 읽기"""

    def __init__(self, install_root: str = "/"):
        self.install_root = install_root

    @property
    def path(self) -> str:
        return rooted(self.install_root, REGISTRATION_FILE_PATH)

    def read(self) -> Optional[ManagedInstanceRegistration]:
        """등록 파일이 없으면 None"""
        if not os.path.exists(self.path):
            return None
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise ExternalDependencyError(f"reading ssm registration file {self.path}: {e}") from e
        return ManagedInstanceRegistration(
            instance_id=data.get("ManagedInstanceID", ""),
            region=data.get("Region", ""),
        )

    def is_registered(self) -> bool:
        return self.read() is not None


class SetupCliInstaller:
    """ssm-setup-cli 다운로드 및 에이전트 재설치"""

    def __init__(self, install_root: str = "/", runner: Optional[Runner] = None,
                 http_get: Callable[..., requests.Response] = requests.get):
        self.path = rooted(install_root, SETUP_CLI_PATH)
        self.runner = runner
        self.http_get = http_get
        self.logger = get_logger()

    @staticmethod
    def download_url(os_name: str, machine: str) -> str:
        arch = "arm64" if machine in ("aarch64", "arm64") else "amd64"
        kind = "debian" if os_name == UBUNTU else "linux"
        return SETUP_CLI_URL.format(platform=kind, arch=arch)

    def download(self, os_name: str):
        url = self.download_url(os_name, platform.machine())
        self.logger.info(f"Downloading ssm-setup-cli from {url}")
        try:
            response = self.http_get(url, timeout=60)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise ExternalDependencyError(f"downloading ssm-setup-cli: {e}") from e

        os.makedirs(os.path.dirname(self.path), exist_ok=True)
        with open(self.path, 'wb') as f:
            f.write(response.content)
        os.chmod(self.path, 0o755)

    def reinstall(self, region: str, os_name: str):
        """최신 setup cli를 받아 에이전트를 다시 설치"""
        self.download(os_name)
        run_command([self.path, "-install", "-region", region, "-version", "latest"],
                    timeout=600, runner=self.runner)


class SSMDaemon(ManagedDaemon):
    """SSM 에이전트 데몬

    configure 단계에서 관리형 인스턴스로 등록하고, 등록된 인스턴스 ID를
    노드 이름으로 설정한다.
    """

    restart_backoff = 20.0

    def __init__(self, manager: DaemonManager, config: Config,
                 os_name: Optional[str] = None,
                 installer: Optional[SetupCliInstaller] = None,
                 registration: Optional[SSMRegistration] = None,
                 install_root: str = "/",
                 runner: Optional[Runner] = None,
                 agent_paths: Optional[List[str]] = None,
                 sleep: Callable[[float], None] = time.sleep,
                 cancel: Optional[threading.Event] = None):
        super().__init__(manager, sleep)
        self.config = config
        self.os_name = os_name if os_name is not None else get_os_name()
        self._name = ssm_daemon_name(self.os_name)
        self.install_root = install_root
        self.installer = installer or SetupCliInstaller(install_root, runner)
        self.registration = registration or SSMRegistration(install_root)
        self.runner = runner
        self.agent_paths = agent_paths or [rooted(install_root, p) for p in AGENT_BINARY_PATHS]
        self.cancel = cancel

    @property
    def name(self) -> str:
        return self._name

    def configure(self):
        self.register()

    def register(self):
        existing = self.registration.read()
        if existing is not None:
            self.logger.info("SSM agent already registered, skipping registration")
        else:
            try:
                self._register_with_retries()
            except ChecksumMismatchError as e:
                self.logger.warning(f"SSM registration failed with checksum mismatch, reinstalling setup cli: {e}")
                self.installer.reinstall(self.config.cluster.region, self.os_name)
                self._register_with_retries()

        registered = self.registration.read()
        if registered is None or not registered.instance_id:
            raise ExternalDependencyError(
                f"SSM registration file {self.registration.path} has no managed instance id"
            )

        self.logger.info(f"Machine registered with SSM, assigning instance ID {registered.instance_id} as node name")
        self.config.status.node_name = registered.instance_id

    def _register_with_retries(self):
        agent_path = first_existing(self.agent_paths)
        if agent_path is None:
            raise ExternalDependencyError(
                f"can't register without ssm agent installed: ssm agent binary not found in any of the "
                f"well known paths {self.agent_paths}"
            )

        ssm = self.config.hybrid.ssm
        args = [agent_path, "-register", "-y",
                "-region", self.config.cluster.region,
                "-code", ssm.activation_code,
                "-id", ssm.activation_id]

        def register_once():
            try:
                run_command(args, timeout=120, runner=self.runner)
            except CommandError as e:
                raise classify_registration_error(e)

        self.logger.info("Registering machine with SSM agent")
        agent = self.config.agent
        retry(register_once,
              attempts=agent.ssm_registration_attempts,
              backoff=agent.ssm_registration_backoff,
              should_retry=lambda e: isinstance(e, CommandError),
              sleep=self.sleep,
              cancel=self.cancel)

    def ensure_running(self):
        super().ensure_running()
        self.logger.info("Waiting for SSM agent to be running...")
        wait_for_status(self.manager, self.name, DaemonStatus.RUNNING,
                        interval=self.config.agent.daemon_status_interval,
                        timeout=self.config.agent.daemon_status_timeout,
                        cancel=self.cancel, sleep=self.sleep)
        self.logger.info("SSM agent is running")

    def post_launch(self):
        if not self.config.hybrid.enable_credentials_file:
            return

        link = rooted(self.install_root, SYMLINKED_AWS_CONFIG_DIR)
        target = rooted(self.install_root, DEFAULT_AWS_CONFIG_DIR)
        self.logger.info(f"Creating symlink for AWS credentials at {link}")
        os.makedirs(os.path.dirname(link), mode=0o755, exist_ok=True)
        if os.path.islink(link) or os.path.isfile(link):
            os.remove(link)
        elif os.path.isdir(link):
            shutil.rmtree(link)
        os.symlink(target, link)


def wait_for_aws_config(config: Config, credentials_file: Optional[str] = None,
                        cancel: Optional[threading.Event] = None,
                        sleep: Callable[[float], None] = time.sleep) -> boto3.Session:
    """SSM 에이전트가 자격 증명 파일을 만들 때까지 대기 후 해당 파일만으로 세션 생성"""
    credentials_file = credentials_file or credentials_file_path()
    wait_for_file(credentials_file, "ssm AWS creds file",
                  interval=config.agent.credentials_poll_interval,
                  timeout=config.agent.credentials_timeout,
                  cancel=cancel, sleep=sleep)
    return load_session(config.cluster.region,
                        credentials_file=credentials_file,
                        allowed_providers=("shared-credentials-file",))


def deregister(registration: SSMRegistration,
               session_factory: Optional[Callable[[str], boto3.Session]] = None):
    """관리형 인스턴스 등록 해제 (등록되지 않았으면 건너뜀)"""
    logger = get_logger()
    record = registration.read()
    if record is None:
        logger.info("Skipping SSM deregistration - node is not registered")
        return

    session_factory = session_factory or (lambda region: boto3.Session(region_name=region))
    client = session_factory(record.region).client("ssm", region_name=record.region)
    try:
        response = client.describe_instance_information(
            Filters=[{"Key": "InstanceIds", "Values": [record.instance_id]}]
        )
        if not response.get("InstanceInformationList"):
            logger.info(f"Instance {record.instance_id} is not managed by SSM, skipping deregistration")
            return
        client.deregister_managed_instance(InstanceId=record.instance_id)
    except (ClientError, BotoCoreError) as e:
        raise ExternalDependencyError(f"deregistering ssm managed instance {record.instance_id}: {e}") from e
    logger.info(f"Deregistered SSM managed instance {record.instance_id}")
