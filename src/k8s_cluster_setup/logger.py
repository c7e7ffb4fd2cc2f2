"""
로깅 시스템
설치 로그/에러 로그 파일과 Rich 콘솔 출력, 레코드마다 현재 단계 이름 기록
"""

import logging
import os
from datetime import datetime
from typing import Optional, Sequence
from rich.logging import RichHandler
from rich.console import Console

console = Console()

DEFAULT_LOG_DIR = "/var/log/k8s-cluster-setup"
LOG_FORMAT = '%(asctime)s - %(levelname)s - [%(step)s] %(message)s'
NO_STEP = "-"


class StepContextFilter(logging.Filter):
    """레코드에 현재 실행 중인 단계 이름 추가"""

    def __init__(self):
        super().__init__()
        self.step = NO_STEP

    def filter(self, record: logging.LogRecord) -> bool:
        record.step = self.step
        return True


def _file_handler(path: str, level: int, step_filter: StepContextFilter) -> logging.FileHandler:
    handler = logging.FileHandler(path, encoding='utf-8')
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
    handler.addFilter(step_filter)
    return handler


class SetupLogger:
    """설치 로거"""

    def __init__(self, log_dir: str = DEFAULT_LOG_DIR, log_level: str = "INFO", debug: bool = False):
        self.log_dir = log_dir
        self.log_level = logging.DEBUG if debug else getattr(logging, log_level.upper(), logging.INFO)
        self.debug_mode = debug
        self.step_filter = StepContextFilter()

        os.makedirs(log_dir, exist_ok=True)

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        self.log_file = os.path.join(log_dir, f"setup_{timestamp}.log")
        self.error_file = os.path.join(log_dir, f"error_{timestamp}.log")

        self.logger = logging.getLogger("k8s_cluster_setup")
        self.logger.setLevel(self.log_level)
        self.logger.propagate = False
        for handler in list(self.logger.handlers):
            handler.close()
            self.logger.removeHandler(handler)

        self.logger.addHandler(_file_handler(self.log_file, self.log_level, self.step_filter))
        self.logger.addHandler(_file_handler(self.error_file, logging.ERROR, self.step_filter))

        # 콘솔은 경고 이상만 (진행 상황은 console.print 로 출력)
        rich_handler = RichHandler(
            console=console,
            rich_tracebacks=True,
            show_time=False,
            show_path=debug
        )
        rich_handler.setLevel(logging.DEBUG if debug else logging.WARNING)
        self.logger.addHandler(rich_handler)

    def set_step(self, step: Optional[str]):
        """이후 레코드에 기록할 단계 이름 (None 이면 해제)"""
        self.step_filter.step = step or NO_STEP

    def debug(self, message: str):
        self.logger.debug(message)

    def info(self, message: str):
        self.logger.info(message)

    def warning(self, message: str):
        self.logger.warning(message)

    def error(self, message: str):
        self.logger.error(message)

    def exception(self, message: str):
        """예외 로그 (트레이스백 포함)"""
        self.logger.exception(message)

    def command_failed(self, cmd: Sequence[str], returncode: int, stderr: str):
        """실패한 명령어와 stderr 를 한 레코드로 기록"""
        output = (stderr or "").strip()
        message = f"Command failed ({returncode}): {' '.join(cmd)}"
        if output:
            message += "\n" + "\n".join(f"    {line}" for line in output.splitlines())
        self.logger.debug(message)

    def get_log_files(self) -> dict:
        """로그 파일 경로 반환"""
        return {
            "main_log": self.log_file,
            "error_log": self.error_file,
            "log_dir": self.log_dir
        }


_logger: Optional[SetupLogger] = None


def get_logger(log_dir: str = DEFAULT_LOG_DIR,
               log_level: str = "INFO",
               debug: bool = False) -> SetupLogger:
    """로거 인스턴스 가져오기"""
    global _logger
    if _logger is None:
        _logger = SetupLogger(log_dir, log_level, debug)
    return _logger


def init_logger(log_dir: str, log_level: str, debug: bool) -> SetupLogger:
    """로거 초기화"""
    global _logger
    _logger = SetupLogger(log_dir, log_level, debug)
    return _logger
