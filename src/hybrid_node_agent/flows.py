"""
부트스트랩 흐름
init / upgrade / uninstall / debug 명령이 실행하는 단계 조립
"""

import os
import shutil
from dataclasses import dataclass
from typing import List, Optional

from . import containerd, iamrolesanywhere, kubelet
from .aws import load_session
from .config import Config, CredentialStrategy
from .daemon import run_daemon_lifecycle, stop_daemons
from .hybrid import HybridNodeProvider
from .logger import get_logger
from .ssm import SSMRegistration, SYMLINKED_AWS_CONFIG_DIR, credentials_file_path, deregister
from .tracker import Tracker
from .utils import rooted
from .validation import Informer, LoggerInformer, ValidationReport, ValidationRunner


@dataclass
class StepRecord:
    step: str
    status: str
    message: str = ""


def written_files(config: Config) -> List[str]:
    """init이 작성하는 파일 목록 (설치 루트 기준 이전 경로)"""
    files = [
        containerd.CONFIG_PATH,
        kubelet.KUBECONFIG_PATH,
        kubelet.CONFIG_PATH,
        kubelet.ENVIRONMENT_FILE_PATH,
        kubelet.UNIT_PATH,
    ]
    if config.cluster.certificate_authority:
        files.append(kubelet.CA_CERT_PATH)
    if config.is_iam_roles_anywhere():
        iam = config.hybrid.iam_roles_anywhere
        files.append(iam.aws_config_path or iamrolesanywhere.DEFAULT_AWS_CONFIG_PATH)
        if config.hybrid.enable_credentials_file:
            files.append(iamrolesanywhere.SERVICE_FILE_PATH)
    elif config.is_ssm() and config.hybrid.enable_credentials_file:
        files.append(SYMLINKED_AWS_CONFIG_DIR)
    return files


class NodeAgent:
    """명령별 단계를 순서대로 실행하고 결과를 기록하는 오케스트레이터"""

    def __init__(self, provider: HybridNodeProvider, informer: Optional[Informer] = None):
        self.provider = provider
        self.config = provider.config
        self.install_root = provider.install_root
        self.informer = informer or LoggerInformer()
        self.logger = get_logger()
        self.steps: List[StepRecord] = []
        self.reports: List[ValidationReport] = []

    def log_step(self, step: str, status: str, message: str = ""):
        self.steps.append(StepRecord(step, status, message))

    def _step(self, step: str, action, message: str = ""):
        """action 실행 후 성공/실패를 기록. 실패는 그대로 전파"""
        self.logger.info(f"Step {step} started")
        try:
            result = action()
        except Exception as e:
            self.log_step(step, "failed", str(e))
            raise
        self.log_step(step, "success", message)
        return result

    def _validate(self, validations) -> ValidationReport:
        runner = ValidationRunner(self.informer, self.provider.skip)
        runner.register(*validations)
        self.reports.append(runner.report)
        return runner.sequentially(self.config)

    def init(self) -> Tracker:
        """설정 검증 → 사전 점검 → 자격 증명 → 보강 → 노드 검증 → 데몬 실행"""
        self.logger.info("=== init started ===")
        self._step("config-validation", self.provider.validate_config)
        self._step("preflight", lambda: self._validate(self.provider.preflight_validations()))

        self._step("aws-credentials", self.provider.configure_aws)
        self.logger.info(f"Node name resolved to {self.config.status.node_name}")
        self._step("cluster-details", self.provider.enrich)
        self._step("node-validation", lambda: self._validate(self.provider.validations()))

        started = self._step("daemons", lambda: run_daemon_lifecycle(self.provider.node_daemons()))

        tracker = Tracker(credential_strategy=self.config.credential_strategy.value)
        for daemon in self.provider.credential_daemons():
            tracker.add_daemon(daemon.name)
        for name in started:
            tracker.add_daemon(name)
        for path in written_files(self.config):
            tracker.add_file(path)
        tracker.save(self.install_root)

        self.logger.info("=== init completed ===")
        return tracker

    def upgrade(self) -> List[str]:
        """노드 데몬을 멈춘 뒤 현재 설정으로 다시 구성하고 실행"""
        self.logger.info("=== upgrade started ===")
        self._step("config-validation", self.provider.validate_config)
        self._step("aws-credentials", self.provider.configure_aws)
        self._step("cluster-details", self.provider.enrich)

        daemons = self.provider.node_daemons()
        self._step("stop-daemons", lambda: stop_daemons(reversed(daemons)))
        started = self._step("daemons", lambda: run_daemon_lifecycle(daemons))
        self.logger.info("=== upgrade completed ===")
        return started

    def uninstall(self):
        """init이 설정한 것을 역순으로 정리. 로드되지 않은 데몬은 건너뜀"""
        self.logger.info("=== uninstall started ===")
        tracker = Tracker.load(self.install_root)
        if tracker is None:
            self.logger.warning("No install record found, falling back to configured credential strategy")
            strategy = self.config.credential_strategy
            tracker = Tracker(credential_strategy=strategy.value if strategy else "")

        node = {d.name: d for d in self.provider.node_daemons()}
        self._step("stop-kubelet", node[kubelet.DAEMON_NAME].stop)

        if tracker.credential_strategy == CredentialStrategy.SSM.value:
            self._step("ssm-deregister", self._deregister_ssm)
            self._step("stop-ssm", self.provider.ssm_daemon().stop)
        elif tracker.credential_strategy == CredentialStrategy.IAM_ROLES_ANYWHERE.value:
            if iamrolesanywhere.DAEMON_NAME in tracker.daemons:
                self._step("stop-signing-helper", self.provider.signing_helper_daemon().stop)

        self._step("stop-containerd", node[containerd.DAEMON_NAME].stop)
        self._step("remove-files", lambda: self._remove_files(tracker.files))
        Tracker.remove(self.install_root)
        self.logger.info("=== uninstall completed ===")

    def _deregister_ssm(self):
        credentials_file = rooted(self.install_root, credentials_file_path())

        def session_factory(region: str):
            return load_session(region, credentials_file=credentials_file,
                                allowed_providers=("shared-credentials-file",))

        deregister(SSMRegistration(self.install_root), session_factory)

    def _remove_files(self, files: List[str]):
        for path in files:
            target = rooted(self.install_root, path)
            if os.path.islink(target) or os.path.isfile(target):
                os.remove(target)
            elif os.path.isdir(target):
                shutil.rmtree(target)
            else:
                continue
            self.logger.info(f"Removed {target}")

    def debug(self) -> ValidationReport:
        """부작용 없이 전체 검증을 실행하고 결과를 반환

        치명적 오류가 있어도 나머지 검증을 계속 실행한다.
        """
        self.logger.info("=== debug started ===")
        self._step("config-validation", self.provider.validate_config)
        self.provider.load_existing_aws_config()
        runner = ValidationRunner(self.informer, self.provider.skip)
        runner.register(*self.provider.validations())
        self.reports.append(runner.report)
        report = runner.sequentially(self.config, keep_going=True)
        if runner.errors:
            self.logger.error(f"Debug found {len(runner.errors)} failed validation(s)")
        return report
