"""
에이전트 예외 정의
설정 오류, 외부 의존성 오류, 대기 시간 초과 오류
"""

from typing import Optional, Sequence


class AgentError(Exception):
    """에이전트 기본 예외"""


class ConfigurationError(AgentError):
    """필수 설정 누락 또는 모순 (부작용 발생 전에 검출)"""


class ExternalDependencyError(AgentError):
    """클라우드 API, 로컬 데몬 등 외부 의존성 실패"""


class CommandError(ExternalDependencyError):
    """외부 명령 실행 실패"""

    def __init__(self, args: Sequence[str], returncode: Optional[int], output: str = ""):
        self.argv = list(args)
        self.returncode = returncode
        self.output = output.strip()
        super().__init__(
            f"running command {self.argv}: {self.output} [exit code {returncode}]"
        )


class WaitTimeoutError(AgentError):
    """외부에서 생성되는 파일/상태를 기다리다 시간 초과"""

    def __init__(self, condition: str, reason: str = "deadline exceeded"):
        self.condition = condition
        self.reason = reason
        super().__init__(f"{condition} hasn't been reached on time: {reason}")
