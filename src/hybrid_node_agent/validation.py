"""
검증 실행 엔진
이름이 지정된 검증을 순서대로 실행하고, Informer에 진행 상황을 알리며,
치명적 오류와 경고를 구분하고 조치 안내(remediation)를 전달한다.
"""

import copy
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, List, Optional

from rich.console import Console

from .logger import get_logger

console = Console()


class Severity(Enum):
    """검증 오류 분류"""
    FATAL = "fatal"
    WARNING = "warning"


class ValidationError(Exception):
    """원인 오류를 감싸 조치 안내와 분류를 덧붙인 오류

    원인은 ``cause``와 ``__cause__`` 모두에 보존되므로
    ``is_condition``으로 동일한 원인인지 확인할 수 있다.
    """

    def __init__(self, cause: BaseException, remediation: str = "", severity: Severity = Severity.FATAL):
        super().__init__(str(cause))
        self.cause = cause
        self.remediation = remediation
        self.severity = severity
        self.__cause__ = cause

    @property
    def is_warning(self) -> bool:
        return self.severity is Severity.WARNING


def with_remediation(err: BaseException, remediation: str) -> ValidationError:
    """오류에 조치 안내를 붙인다 (치명적)"""
    return ValidationError(err, remediation, Severity.FATAL)


def with_warning(err: BaseException, remediation: str) -> ValidationError:
    """오류를 경고로 분류한다"""
    return ValidationError(err, remediation, Severity.WARNING)


def new_remediable_error(message: str, remediation: str) -> ValidationError:
    return with_remediation(Exception(message), remediation)


def new_warning(message: str, remediation: str) -> ValidationError:
    return with_warning(Exception(message), remediation)


def is_warning(err: Optional[BaseException]) -> bool:
    return isinstance(err, ValidationError) and err.is_warning


def is_remediable(err: Optional[BaseException]) -> bool:
    return isinstance(err, ValidationError) and bool(err.remediation)


def remediation(err: Optional[BaseException]) -> str:
    """조치 안내 문구 반환 (없으면 빈 문자열)"""
    if isinstance(err, ValidationError):
        return err.remediation
    return ""


def is_condition(err: Optional[BaseException], target) -> bool:
    """err 또는 그 원인 체인이 target(인스턴스 또는 예외 클래스)과 일치하는지 확인"""
    seen = set()
    while err is not None and id(err) not in seen:
        seen.add(id(err))
        if isinstance(target, type):
            if isinstance(err, target):
                return True
        elif err is target:
            return True
        err = err.__cause__
    return False


class DependencyUnavailable(Exception):
    """필요한 정보(클러스터 등)가 없어 검증을 건너뜀"""


def is_skipped(err: Optional[BaseException]) -> bool:
    return isinstance(err, DependencyUnavailable)


class Informer(ABC):
    """검증 시작/종료 알림을 받는 관찰자

    건너뛴 검증은 done에 DependencyUnavailable이 전달된다.
    """

    @abstractmethod
    def starting(self, name: str, message: str) -> None:
        pass

    @abstractmethod
    def done(self, name: str, error: Optional[BaseException]) -> None:
        pass


@contextmanager
def informing(informer: Informer, name: str, message: str):
    """starting 호출 후 블록 결과(예외 포함)로 done을 호출한다"""
    informer.starting(name, message)
    try:
        yield
    except Exception as e:
        informer.done(name, e)
        raise
    informer.done(name, None)


def skip_unavailable(informer: Informer, name: str, message: str):
    """의존 정보가 없어 건너뛴 검증을 알린다 (실패로 집계되지 않음)"""
    informer.starting(name, message)
    informer.done(name, DependencyUnavailable(message))


# 검증 함수: (informer, node_config) -> None, 실패 시 예외
Check = Callable[[Informer, object], None]


@dataclass
class Validation:
    name: str
    run: Check


@dataclass
class ValidationResult:
    name: str
    message: str = ""
    error: Optional[BaseException] = None
    finished: bool = False

    @property
    def status(self) -> str:
        if not self.finished:
            return "running"
        if self.error is None:
            return "passed"
        if is_skipped(self.error):
            return "skipped"
        return "warning" if is_warning(self.error) else "failed"


@dataclass
class ValidationReport:
    """검증 실행 결과 집계"""
    results: List[ValidationResult] = field(default_factory=list)

    def _current(self, name: str) -> Optional[ValidationResult]:
        for result in reversed(self.results):
            if result.name == name and not result.finished:
                return result
        return None

    def record_start(self, name: str, message: str):
        self.results.append(ValidationResult(name=name, message=message))

    def record_done(self, name: str, error: Optional[BaseException]):
        result = self._current(name)
        if result is None:
            result = ValidationResult(name=name)
            self.results.append(result)
        result.error = error
        result.finished = True

    @property
    def warnings(self) -> List[ValidationResult]:
        return [r for r in self.results if r.status == "warning"]

    @property
    def failures(self) -> List[ValidationResult]:
        return [r for r in self.results if r.status == "failed"]

    @property
    def skipped(self) -> List[ValidationResult]:
        return [r for r in self.results if r.status == "skipped"]

    @property
    def passed(self) -> bool:
        return not self.failures


class _ReportingInformer(Informer):
    """이벤트를 리포트에 기록한 뒤 실제 Informer로 전달"""

    def __init__(self, informer: Informer, report: ValidationReport):
        self.informer = informer
        self.report = report

    def starting(self, name: str, message: str):
        self.report.record_start(name, message)
        self.informer.starting(name, message)

    def done(self, name: str, error: Optional[BaseException]):
        self.report.record_done(name, error)
        self.informer.done(name, error)


class ValidationRunner:
    """검증을 등록하고 순차 실행하는 러너

    건너뛸 이름은 정확히 일치하는 경우에만 적용된다. 등록되지 않은
    이름이 skip 목록에 있어도 오류로 취급하지 않는다.
    """

    def __init__(self, informer: Informer, skip: Iterable[str] = ()):
        self.informer = informer
        self.skip = list(skip)
        self.validations: List[Validation] = []
        self.report = ValidationReport()
        self.errors: List[BaseException] = []
        self.logger = get_logger()

    def should_run(self, name: str) -> bool:
        return name not in self.skip

    def register(self, *validations: Validation):
        for v in validations:
            if self.should_run(v.name):
                self.validations.append(v)
            else:
                self.logger.info(f"Skipping validation {v.name}")

    def sequentially(self, node_config, keep_going: bool = False) -> ValidationReport:
        """등록된 검증을 순서대로 실행

        경고는 기록 후 계속 진행한다. 치명적 오류는 기본적으로 남은 검증을
        중단하고 원래 오류를 그대로 다시 발생시킨다. keep_going이면 오류를
        self.errors에 모으고 나머지 검증도 모두 실행한다. node_config가
        검증 중에 변경되면 프로그래밍 오류로 간주한다.
        """
        snapshot = copy.deepcopy(node_config)
        informer = _ReportingInformer(self.informer, self.report)

        for validation in self.validations:
            try:
                validation.run(informer, node_config)
            except Exception as e:
                if is_warning(e):
                    self.logger.warning(f"Validation {validation.name} reported a warning: {e}")
                    continue
                self.logger.error(f"Validation {validation.name} failed: {e}")
                if not keep_going:
                    raise
                self.errors.append(e)

        comparable = type(node_config).__eq__ is not object.__eq__
        if comparable and snapshot != node_config:
            raise RuntimeError("validations must not modify the object under validation")

        return self.report


class LoggerInformer(Informer):
    """로거로 검증 진행 상황을 기록하는 Informer"""

    def __init__(self, logger=None):
        self.logger = logger or get_logger()

    def starting(self, name: str, message: str):
        self.logger.info(f"Starting validation {name}: {message}")

    def done(self, name: str, error: Optional[BaseException]):
        if error is None:
            self.logger.info(f"Validation {name} passed")
            return
        if is_skipped(error):
            self.logger.info(f"Validation {name} skipped: {error}")
            return
        text = f"Validation {name} failed: {error}"
        if is_remediable(error):
            text += f" | remediation: {remediation(error)}"
        if is_warning(error):
            self.logger.warning(text)
        else:
            self.logger.error(text)


class ConsolePrinter(Informer):
    """Rich 콘솔에 검증 결과를 출력하는 Informer"""

    def __init__(self, out: Optional[Console] = None):
        self.console = out or console

    def starting(self, name: str, message: str):
        self.console.print(f"[cyan]⏳ {message}...[/cyan]")

    def done(self, name: str, error: Optional[BaseException]):
        if error is None:
            self.console.print(f"  [green]✓[/green] {name}")
            return
        if is_skipped(error):
            self.console.print(f"  [dim]- {name}: skipped[/dim]")
            return

        color = "yellow" if is_warning(error) else "red"
        icon = "⚠" if is_warning(error) else "✗"
        self.console.print(f"  [{color}]{icon} {name}: {error}[/{color}]")
        if is_remediable(error):
            self.console.print(f"    [bold]Remediation:[/bold] {remediation(error)}")
