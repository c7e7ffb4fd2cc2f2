"""
설치 오류 정의
치명적 오류와 경고성 오류를 구분
"""

from typing import List, Optional, Sequence


class ProvisionError(RuntimeError):
    """모든 설치 오류의 기반 클래스"""

    fatal = True

    def __init__(self, message: str, step: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.step = step

    def __str__(self) -> str:
        if self.step:
            return f"[{self.step}] {self.message}"
        return self.message


class ConfigError(ProvisionError):
    """잘못된 설정 값"""


class UnsupportedPlatformError(ProvisionError):
    """지원하지 않는 운영체제"""


class UntestedPlatformError(UnsupportedPlatformError):
    """인식은 되지만 검증되지 않은 운영체제 버전"""


class UnsupportedArchitectureError(ProvisionError):
    """지원하지 않는 CPU 아키텍처"""


class CommandError(ProvisionError):
    """외부 명령어 실패"""

    def __init__(self, cmd: Sequence[str], returncode: int, stderr: str = "", step: Optional[str] = None):
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stderr = (stderr or "").strip()
        message = f"'{' '.join(self.cmd)}' exited with {returncode}"
        if self.stderr:
            message += f": {self.stderr}"
        super().__init__(message, step)


class ServiceStartError(ProvisionError):
    """패키지 설치 또는 서비스 시작 실패"""


class JoinError(ProvisionError):
    """클러스터 조인 실패"""


class NetworkPollTimeout(ProvisionError):
    """CNI 준비 대기 시간 초과 (경고)"""

    fatal = False


class RemoteCopyError(ProvisionError):
    """원격 kubeconfig 복사 실패 (경고)"""

    fatal = False


class StepFailedError(ProvisionError):
    """단계 실패로 오케스트레이션 중단"""

    def __init__(self, step: str, message: str, results: Optional[List] = None):
        super().__init__(message, step)
        self.results = list(results or [])
