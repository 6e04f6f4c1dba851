"""
대기 및 재시도 헬퍼
고정 간격 폴링과 제한된 횟수의 고정 백오프 재시도
"""

import os
import threading
import time
from typing import Callable, Optional, TypeVar

from .errors import WaitTimeoutError
from .logger import get_logger

T = TypeVar("T")


def poll_until(condition: Callable[[], bool], description: str, interval: float, timeout: float,
               cancel: Optional[threading.Event] = None,
               sleep: Callable[[float], None] = time.sleep,
               clock: Callable[[], float] = time.monotonic):
    """condition이 참이 될 때까지 interval 간격으로 확인

    timeout 또는 cancel 이벤트 발생 시 description을 담은
    WaitTimeoutError를 발생시킨다.
    """
    deadline = clock() + timeout
    while not condition():
        if cancel is not None and cancel.is_set():
            raise WaitTimeoutError(description, "cancelled")
        if clock() >= deadline:
            raise WaitTimeoutError(description)
        sleep(interval)


def wait_for_file(path: str, description: str, interval: float, timeout: float,
                  cancel: Optional[threading.Event] = None,
                  sleep: Callable[[float], None] = time.sleep,
                  clock: Callable[[], float] = time.monotonic):
    """외부 프로세스가 파일을 생성할 때까지 대기"""
    get_logger().info(f"Waiting for {path} to be created")
    poll_until(lambda: os.path.exists(path), f"{description} {path}", interval, timeout,
               cancel=cancel, sleep=sleep, clock=clock)


def retry(operation: Callable[[], T], attempts: int, backoff: float,
          should_retry: Callable[[Exception], bool] = lambda e: True,
          sleep: Callable[[float], None] = time.sleep,
          cancel: Optional[threading.Event] = None) -> T:
    """operation을 최대 attempts번 실행. 재시도 불가 오류는 즉시 전파"""
    logger = get_logger()
    attempts = max(1, attempts)

    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except Exception as e:
            if attempt == attempts or not should_retry(e):
                raise
            if cancel is not None and cancel.is_set():
                raise
            logger.warning(f"Attempt {attempt}/{attempts} failed, retrying in {backoff}s: {e}")
            sleep(backoff)
