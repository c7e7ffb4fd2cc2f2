"""
컨트롤 플레인 연결성 확인
kubeconfig 복사 전에 ping, SSH, API 서버 포트를 참고용으로 점검
"""

import socket
from dataclasses import dataclass
from typing import Dict, Optional
from rich.console import Console

from .errors import CommandError
from .logger import get_logger
from .shell import CommandRunner

console = Console()

API_SERVER_PORT = 6443
SSH_PORT = 22
PING_WAIT = 2
CONNECT_TIMEOUT = 5


@dataclass(frozen=True)
class Probe:
    """단일 연결 점검 결과"""
    name: str
    ok: bool
    detail: str

    def line(self) -> str:
        mark = "[green]✓[/green]" if self.ok else "[red]✗[/red]"
        return f"{mark} {self.name}: {self.detail}"


class NetworkChecker:
    """컨트롤 플레인 연결성 점검 (실패해도 설치는 계속)"""

    def __init__(self, runner: Optional[CommandRunner] = None):
        self.runner = runner or CommandRunner()
        self.logger = get_logger()

    def ping(self, host: str) -> Probe:
        cmd = ["ping", "-c", "1", "-W", str(PING_WAIT), host]
        try:
            result = self.runner.run(cmd, check=False, timeout=PING_WAIT + 3, mutating=False)
        except CommandError as e:
            return Probe("ping", False, e.stderr.strip() or f"exit {e.returncode}")
        if result.returncode == 0:
            return Probe("ping", True, "응답")
        return Probe("ping", False, "응답 없음")

    def tcp(self, name: str, host: str, port: int) -> Probe:
        try:
            with socket.create_connection((host, port), timeout=CONNECT_TIMEOUT):
                return Probe(name, True, f"{port} 포트 열림")
        except socket.gaierror:
            return Probe(name, False, f"{host} 이름을 해석할 수 없음")
        except socket.timeout:
            return Probe(name, False, f"{port} 포트 응답 시간 초과")
        except (OSError, OverflowError) as e:
            return Probe(name, False, f"{port} 포트 연결 실패 ({e})")

    def check_master(self, master_host: str) -> Dict[str, Probe]:
        """컨트롤 플레인 연결성 체크 (결과는 참고용)

        ping 또는 API 포트 중 하나라도 응답하면 연결 가능으로 판단하고,
        kubeconfig 복사 가능 여부는 SSH 포트로 따로 표시한다.
        """
        console.print(f"\n[cyan]컨트롤 플레인({master_host}) 연결 확인 중...[/cyan]")
        self.logger.info(f"Checking connectivity to {master_host}")

        probes = {
            "ping": self.ping(master_host),
            "ssh": self.tcp("ssh", master_host, SSH_PORT),
            "api": self.tcp("api", master_host, API_SERVER_PORT),
        }
        for probe in probes.values():
            console.print(f"  {probe.line()}")
            self.logger.debug(f"{master_host} {probe.name}: ok={probe.ok} ({probe.detail})")

        reachable = probes["ping"].ok or probes["api"].ok
        if not reachable:
            console.print("[yellow]⚠ 컨트롤 플레인에 연결할 수 없습니다. 계속 진행합니다...[/yellow]")
            self.logger.warning(f"{master_host} is not reachable, continuing anyway")
        elif not probes["ssh"].ok:
            self.logger.warning(f"SSH port {SSH_PORT} on {master_host} is closed, kubeconfig copy may fail")

        return probes
