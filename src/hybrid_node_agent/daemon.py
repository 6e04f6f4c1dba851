"""
데몬 라이프사이클 관리 모듈
systemd 서비스에 대해 configure → ensure_running → post_launch / stop 계약 제공
"""

import threading
import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, Iterable, List, Optional

from .errors import AgentError, CommandError, ExternalDependencyError
from .logger import get_logger
from .utils import Runner, run_command
from .wait import poll_until, retry


class DaemonStatus(Enum):
    RUNNING = "running"
    STOPPED = "stopped"
    NOT_LOADED = "not-loaded"
    UNKNOWN = "unknown"


class DaemonManager(ABC):
    """서비스 매니저 프리미티브"""

    @abstractmethod
    def reload(self):
        ...

    @abstractmethod
    def enable(self, name: str):
        ...

    @abstractmethod
    def start(self, name: str):
        ...

    @abstractmethod
    def restart(self, name: str):
        ...

    @abstractmethod
    def stop(self, name: str):
        ...

    @abstractmethod
    def status(self, name: str) -> DaemonStatus:
        ...


class SystemdDaemonManager(DaemonManager):
    """systemctl 기반 서비스 매니저"""

    def __init__(self, runner: Optional[Runner] = None):
        self.runner = runner
        self.logger = get_logger()

    def _systemctl(self, *args: str) -> str:
        return run_command(["systemctl", *args], timeout=120, runner=self.runner)

    def reload(self):
        self.logger.debug("Reloading systemd daemon")
        self._systemctl("daemon-reload")

    def enable(self, name: str):
        self.logger.debug(f"Enabling {name}")
        self._systemctl("enable", name)

    def start(self, name: str):
        self.logger.debug(f"Starting {name}")
        self._systemctl("start", name)

    def restart(self, name: str):
        self.logger.debug(f"Restarting {name}")
        self._systemctl("restart", name)

    def stop(self, name: str):
        self.logger.debug(f"Stopping {name}")
        self._systemctl("stop", name)

    def status(self, name: str) -> DaemonStatus:
        output = self._systemctl("show", name, "--property=LoadState,ActiveState")
        return parse_systemd_status(output)


def parse_systemd_status(output: str) -> DaemonStatus:
    """`systemctl show --property=LoadState,ActiveState` 출력 해석"""
    props = {}
    for line in output.splitlines():
        if "=" in line:
            key, value = line.split("=", 1)
            props[key.strip()] = value.strip()

    if props.get("LoadState") in ("not-found", "masked"):
        return DaemonStatus.NOT_LOADED

    state = props.get("ActiveState")
    if state in ("active", "reloading", "activating"):
        return DaemonStatus.RUNNING
    if state in ("inactive", "failed", "deactivating"):
        return DaemonStatus.STOPPED
    return DaemonStatus.UNKNOWN


def wait_for_status(manager: DaemonManager, name: str, desired: DaemonStatus,
                    interval: float = 5.0, timeout: float = 300.0,
                    cancel: Optional[threading.Event] = None,
                    sleep: Callable[[float], None] = time.sleep):
    """데몬이 원하는 상태가 될 때까지 status를 폴링"""
    logger = get_logger()

    def reached() -> bool:
        try:
            status = manager.status(name)
        except CommandError as e:
            logger.debug(f"Getting {name} status failed: {e}")
            return False
        logger.debug(f"{name} status: {status.value}")
        return status == desired

    poll_until(reached, f"{name} status {desired.value}", interval, timeout,
               cancel=cancel, sleep=sleep)


class Daemon(ABC):
    """4단계 라이프사이클 계약을 따르는 시스템 서비스"""

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    def configure(self):
        """유닛/설정 파일 작성 (서비스 시작 안 함)"""

    @abstractmethod
    def ensure_running(self):
        """자동 시작 활성화 후 (재)시작"""

    def post_launch(self):
        """시작 후 외부에서 관찰 가능한 결과를 기다린다 (기본 없음)"""

    @abstractmethod
    def stop(self):
        """로드되어 실행 중일 때만 중지"""


class ManagedDaemon(Daemon):
    """DaemonManager 프리미티브로 구현한 공통 ensure_running/stop"""

    restart_attempts = 3
    restart_backoff = 5.0

    def __init__(self, manager: DaemonManager, sleep: Callable[[float], None] = time.sleep):
        self.manager = manager
        self.sleep = sleep
        self.logger = get_logger()

    def ensure_running(self):
        self.manager.enable(self.name)
        retry(lambda: self.manager.restart(self.name),
              attempts=self.restart_attempts,
              backoff=self.restart_backoff,
              sleep=self.sleep)

    def stop(self):
        status = self.manager.status(self.name)
        if status != DaemonStatus.RUNNING:
            self.logger.info(f"{self.name} is {status.value}, nothing to stop")
            return
        self.manager.stop(self.name)


def run_daemon_lifecycle(daemons: Iterable[Daemon]) -> List[str]:
    """데몬별 configure → ensure_running → post_launch 순서 실행

    실패 시 해당 데몬의 남은 단계를 중단하고 오류를 전파한다.
    이미 시작된 다른 데몬은 되돌리지 않는다.
    """
    logger = get_logger()
    started = []
    for daemon in daemons:
        for phase in ("configure", "ensure_running", "post_launch"):
            logger.info(f"Running {phase} for {daemon.name}")
            try:
                getattr(daemon, phase)()
            except AgentError:
                raise
            except Exception as e:
                raise ExternalDependencyError(f"{phase} {daemon.name}: {e}") from e
        started.append(daemon.name)
    return started


def stop_daemons(daemons: Iterable[Daemon]):
    logger = get_logger()
    for daemon in daemons:
        logger.info(f"Stopping {daemon.name}")
        daemon.stop()
