"""
클러스터 초기화 모듈 (컨트롤 플레인 전용)
kubeadm init, kubeconfig 설정, CNI 적용, 조인 명령어 생성
"""

import os
from typing import List, Optional
from rich.console import Console
from rich.panel import Panel

from .cni import CniInstaller, get_cni_installer
from .config import ProvisionConfig
from .errors import CommandError, NetworkPollTimeout
from .files import FileWriter
from .fingerprint import PlatformProfile
from .logger import get_logger
from .orchestrator import StepSkipped
from .runtime import RuntimeEndpoint
from .shell import CommandRunner

console = Console()

ADMIN_CONF = "/etc/kubernetes/admin.conf"
KUBECONFIG_EXPORT = "export KUBECONFIG=~/.kube/config"


def cri_socket_note(endpoint: RuntimeEndpoint) -> Optional[str]:
    """조인 명령어에 덧붙일 --cri-socket 안내"""
    if endpoint.is_default:
        return None
    return f"--cri-socket {endpoint.socket_path}"


def install_kubeconfig(runner: CommandRunner, files: FileWriter, content: str) -> str:
    """~/.kube/config 기록(0600), 현재 세션과 .bashrc 에 KUBECONFIG 설정"""
    kubeconfig = files.paths.kubeconfig
    files.write(kubeconfig, content, mode=0o600)
    runner.set_env("KUBECONFIG", kubeconfig)
    files.ensure_block(files.paths.bashrc, "kubeconfig", KUBECONFIG_EXPORT)
    return kubeconfig


class ClusterBootstrapper:
    """컨트롤 플레인 초기화"""

    def __init__(self, runner: CommandRunner, files: FileWriter, profile: PlatformProfile,
                 config: ProvisionConfig, cni: Optional[CniInstaller] = None):
        self.runner = runner
        self.files = files
        self.paths = files.paths
        self.profile = profile
        self.config = config
        self.cni = cni or get_cni_installer(runner, files, profile, config)
        self.logger = get_logger()
        self.join_command: Optional[str] = None

    def is_initialized(self) -> bool:
        """이미 kubeadm init 된 노드인지 확인"""
        initialized = os.path.exists(self.paths.host(ADMIN_CONF))
        self.logger.debug(f"Cluster initialized: {initialized}")
        return initialized

    def init_command(self, endpoint: RuntimeEndpoint) -> List[str]:
        return [
            "kubeadm", "init",
            f"--kubernetes-version={self.config.kubernetes_version}",
            f"--pod-network-cidr={self.config.pod_network_cidr}",
            "--ignore-preflight-errors=NumCPU",
            "--skip-token-print",
            *endpoint.cri_socket_args(),
        ]

    def init_cluster(self, endpoint: RuntimeEndpoint) -> str:
        """kubeadm init 실행 (idempotent)"""
        if self.is_initialized():
            console.print("[green]✓ 이미 초기화된 클러스터입니다.[/green]")
            self.logger.info("Cluster already initialized (idempotent)")
            raise StepSkipped(f"{ADMIN_CONF} exists")

        cmd = self.init_command(endpoint)
        console.print("[cyan]kubeadm init 실행 중... (수 분 소요될 수 있습니다)[/cyan]")
        self.logger.info(f"Executing: {' '.join(cmd)}")
        result = self.runner.run(cmd, timeout=900)
        self.logger.debug(result.stdout)

        self.logger.info("Kubernetes cluster initialized")
        return f"v{self.config.kubernetes_version}"

    def setup_kubeconfig(self) -> str:
        """admin.conf 를 관리자 kubeconfig 로 설치"""
        content = self.files.read(self.paths.host(ADMIN_CONF))
        if content is None:
            if self.runner.dry_run:
                self.logger.info(f"[dry-run] copy {ADMIN_CONF} to ~/.kube/config")
                return "dry-run"
            raise CommandError(["cp", ADMIN_CONF, "~/.kube/config"], 1, f"{ADMIN_CONF} not found")

        kubeconfig = install_kubeconfig(self.runner, self.files, content)
        self.logger.info(f"KUBECONFIG={kubeconfig}")
        return kubeconfig

    def install_cni(self) -> str:
        """CNI 매니페스트 적용 후 준비 상태 대기 (시간 초과는 경고)"""
        console.print(f"[cyan]{self.cni.title} CNI 설치 중...[/cyan]")
        detail = self.cni.install()

        try:
            self.cni.wait_ready(self.config.cni_wait_timeout)
        except NetworkPollTimeout as e:
            console.print(f"[yellow]⚠ {e} (계속 진행합니다)[/yellow]")
            self.logger.warning(str(e))
            return f"{self.cni.plugin.value} applied, not ready yet"

        self.logger.info(f"{self.cni.title} is ready")
        return f"{self.cni.plugin.value} ready ({detail})"

    def restart_coredns(self) -> str:
        """CoreDNS 재시작 (실패해도 계속)"""
        result = self.runner.run(
            ["kubectl", "-n", "kube-system", "rollout", "restart", "deployment", "coredns"],
            check=False
        )
        if result.returncode != 0:
            self.logger.warning(f"CoreDNS restart failed: {result.stderr.strip()}")
            raise StepSkipped("coredns restart failed")
        return "coredns restarted"

    def create_join_command(self, endpoint: RuntimeEndpoint) -> str:
        """만료되지 않는 조인 토큰 생성 및 출력"""
        result = self.runner.run(["kubeadm", "token", "create", "--print-join-command", "--ttl", "0"])
        self.join_command = result.stdout.strip()

        lines = [
            "[bold green]컨트롤 플레인 설치 완료![/bold green]",
            "",
            "워커 노드에서 다음 명령어를 실행하여 클러스터에 추가하세요:",
            "",
            f"[cyan]{self.join_command or 'kubeadm token create --print-join-command --ttl 0'}[/cyan]",
        ]
        note = cri_socket_note(endpoint)
        if note:
            lines.extend(["", f"[yellow]NOTE: {endpoint.runtime_kind.value} 런타임 사용 시 조인 명령어에 '{note}' 를 추가하세요[/yellow]"])

        console.print(Panel("\n".join(lines), title="Worker Join Command", border_style="green"))
        self.logger.info("Join command generated")
        return "token created (ttl 0)"

    def print_cluster_info(self) -> str:
        """클러스터 정보 출력"""
        console.print(f"  Container Runtime: {self.config.container_runtime.value}")
        console.print(f"  CNI Plugin: {self.config.cni_plugin.value}")
        console.print(f"  Pod Network CIDR: {self.config.pod_network_cidr}")

        for title, cmd in (
            ("Nodes", ["kubectl", "get", "nodes", "-o", "wide"]),
            ("System Pods", ["kubectl", "get", "pods", "-n", "kube-system"]),
        ):
            result = self.runner.run(cmd, check=False, mutating=False)
            console.print(f"\n[bold]{title}:[/bold]")
            console.print(result.stdout or result.stderr)

        return "printed"
