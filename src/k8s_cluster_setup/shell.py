"""
외부 명령어 실행 모듈
dry-run 지원 및 실패 시 CommandError 발생
"""

import os
import shlex
import shutil
import subprocess
from typing import Dict, Optional, Sequence

from .errors import CommandError
from .logger import get_logger


class CommandRunner:
    """subprocess 실행 래퍼"""

    def __init__(self, dry_run: bool = False, env: Optional[Dict[str, str]] = None):
        self.dry_run = dry_run
        self.env = dict(env or {})
        self.logger = get_logger()

    def set_env(self, key: str, value: str):
        """이후 실행되는 명령어에 적용할 환경 변수"""
        self.env[key] = value

    def run(self, cmd: Sequence[str], check: bool = True, timeout: Optional[int] = None,
            input: Optional[str] = None, mutating: bool = True) -> subprocess.CompletedProcess:
        """명령어 실행

        Args:
            cmd: 실행할 명령어 목록
            check: 0이 아닌 종료 코드에서 CommandError 발생
            timeout: 제한 시간(초)
            input: 표준 입력
            mutating: 호스트 상태를 바꾸는 명령어 (dry-run 시 실행하지 않음)
        """
        cmd = [str(part) for part in cmd]
        display = " ".join(shlex.quote(part) for part in cmd)

        if self.dry_run and mutating:
            self.logger.info(f"[dry-run] {display}")
            return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

        self.logger.debug(f"Executing: {display}")
        env = None
        if self.env:
            env = os.environ.copy()
            env.update(self.env)

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout,
                input=input,
                env=env
            )
        except FileNotFoundError:
            raise CommandError(cmd, 127, f"{cmd[0]}: command not found")
        except subprocess.TimeoutExpired:
            raise CommandError(cmd, -1, f"timed out after {timeout}s")

        if result.returncode != 0:
            self.logger.command_failed(cmd, result.returncode, result.stderr)
            if check:
                raise CommandError(cmd, result.returncode, result.stderr)

        return result

    def succeeds(self, cmd: Sequence[str], timeout: Optional[int] = None) -> bool:
        """명령어 성공 여부만 확인"""
        try:
            return self.run(cmd, check=False, timeout=timeout, mutating=False).returncode == 0
        except CommandError:
            return False

    def which(self, name: str) -> bool:
        """실행 파일 존재 여부"""
        return shutil.which(name) is not None
