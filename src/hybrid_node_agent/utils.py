"""
공통 유틸리티
외부 명령 실행, 변경 시에만 파일 쓰기, 설치 루트 경로 처리
"""

import os
import subprocess
from typing import Callable, List, Optional, Sequence

from .errors import CommandError
from .logger import get_logger

# subprocess.run 호환 함수 (테스트에서 교체)
Runner = Callable[..., subprocess.CompletedProcess]


def run_command(args: Sequence[str], timeout: Optional[float] = None,
                runner: Optional[Runner] = None) -> str:
    """명령을 실행하고 표준 출력을 반환. 실패 시 CommandError 발생"""
    runner = runner or subprocess.run
    logger = get_logger()
    logger.debug(f"Running command: {' '.join(args)}")

    try:
        result = runner(
            list(args),
            capture_output=True,
            text=True,
            timeout=timeout
        )
    except subprocess.TimeoutExpired as e:
        raise CommandError(args, None, f"timed out after {timeout}s") from e
    except OSError as e:
        raise CommandError(args, None, str(e)) from e

    if result.returncode != 0:
        output = "\n".join(p for p in (result.stdout, result.stderr) if p)
        raise CommandError(args, result.returncode, output)

    return result.stdout


def write_file_if_different(path: str, data: bytes, mode: int = 0o644) -> bool:
    """내용이 다를 때만 파일을 덮어쓴다. 변경 여부 반환"""
    if os.path.exists(path):
        with open(path, 'rb') as f:
            if f.read() == data:
                return False

    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    with open(path, 'wb') as f:
        f.write(data)
    os.chmod(path, mode)
    return True


def rooted(install_root: str, path: str) -> str:
    """설치 루트 기준 경로 (기본 '/')"""
    if not install_root or install_root == "/":
        return path
    return os.path.join(install_root, path.lstrip("/"))


def first_existing(paths: List[str]) -> Optional[str]:
    for path in paths:
        if os.path.exists(path):
            return path
    return None
