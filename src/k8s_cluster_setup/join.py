"""
워커 조인 안내 모듈
컨트롤 플레인 kubeconfig 복사, (선택) kubeadm join 실행, 조인 방법 안내
"""

import os
import shlex
from typing import List, Optional
from rich.console import Console

from .bootstrap import ADMIN_CONF, KUBECONFIG_EXPORT, cri_socket_note, install_kubeconfig
from .config import ConfigError, ProvisionConfig
from .errors import CommandError, JoinError, RemoteCopyError
from .files import FileWriter
from .logger import get_logger
from .network import NetworkChecker
from .orchestrator import StepSkipped
from .runtime import RuntimeEndpoint
from .shell import CommandRunner

console = Console()

KUBELET_CONF = "/etc/kubernetes/kubelet.conf"
SCP_CONNECT_TIMEOUT = 10


class JoinAdvisor:
    """워커 노드 조인 도우미"""

    def __init__(self, runner: CommandRunner, files: FileWriter, config: ProvisionConfig,
                 network_checker: Optional[NetworkChecker] = None):
        self.runner = runner
        self.files = files
        self.paths = files.paths
        self.config = config
        self.network_checker = network_checker or NetworkChecker(runner)
        self.logger = get_logger()

    def scp_command(self, target: str) -> List[str]:
        source = f"{self.config.master_user}@{self.config.master_host}:{ADMIN_CONF}"
        return [
            "scp",
            "-o", f"ConnectTimeout={SCP_CONNECT_TIMEOUT}",
            "-o", "StrictHostKeyChecking=no",
            source, target,
        ]

    def fetch_kubeconfig(self) -> str:
        """scp 로 admin.conf 복사

        Raises:
            RemoteCopyError: 접속 불가 또는 인증 실패
        """
        staging = self.paths.home(".kube/config.tmp")
        os.makedirs(os.path.dirname(staging), exist_ok=True)
        try:
            self.runner.run(self.scp_command(staging), timeout=120)
            content = self.files.read(staging)
        except CommandError as e:
            raise RemoteCopyError(f"Cannot copy kubeconfig from {self.config.master_host}: {e}")
        finally:
            if os.path.exists(staging):
                os.unlink(staging)

        if content is None:
            if self.runner.dry_run:
                return ""
            raise RemoteCopyError(f"{ADMIN_CONF} copied from {self.config.master_host} is empty")
        return content

    def copy_kubeconfig(self) -> str:
        """컨트롤 플레인 kubeconfig 복사 (실패해도 계속)"""
        if not self.config.copy_kubeconfig or not self.config.master_host:
            self.print_manual_kubeconfig_steps()
            raise StepSkipped("kubeconfig copy not requested")

        self.network_checker.check_master(self.config.master_host)
        console.print("[cyan]컨트롤 플레인에서 kubeconfig 복사 중... (root 비밀번호를 물어볼 수 있습니다)[/cyan]")

        try:
            content = self.fetch_kubeconfig()
        except RemoteCopyError as e:
            console.print(f"[red]✗ kubeconfig 를 자동으로 복사하지 못했습니다: {e}[/red]")
            self.logger.warning(str(e))
            self.print_manual_kubeconfig_steps()
            raise StepSkipped("remote copy failed, manual steps printed")

        if self.runner.dry_run:
            return "dry-run"

        kubeconfig = install_kubeconfig(self.runner, self.files, content)
        console.print("[green]✓ kubectl 설정 완료[/green]")
        self.logger.info(f"kubeconfig installed at {kubeconfig}")

        if self.runner.succeeds(["kubectl", "get", "nodes"], timeout=30):
            console.print("[green]✓ kubectl 이 정상 동작합니다.[/green]")
        else:
            console.print("[yellow]⚠ kubectl 은 설정되었지만 아직 접속할 수 없습니다. 먼저 클러스터에 조인하세요.[/yellow]")
        return kubeconfig

    def print_manual_kubeconfig_steps(self):
        """수동 kubeconfig 설정 방법 안내"""
        master = self.config.master_host or "<master-ip>"
        console.print("\n[yellow]kubectl 은 kubeconfig 를 설정하기 전까지 이 노드에서 동작하지 않습니다.[/yellow]")
        console.print("[bold]수동 설정 방법:[/bold]")
        console.print("  mkdir -p ~/.kube")
        console.print(f"  scp {self.config.master_user}@{master}:{ADMIN_CONF} ~/.kube/config")
        console.print("  chmod 600 ~/.kube/config")
        console.print("  export KUBECONFIG=~/.kube/config")
        console.print(f"  echo '{KUBECONFIG_EXPORT}' >> ~/.bashrc\n")

    def is_joined(self) -> bool:
        """기존 클러스터 멤버십 확인"""
        return os.path.exists(self.paths.host(KUBELET_CONF))

    def build_join_command(self, endpoint: RuntimeEndpoint) -> List[str]:
        """설정된 조인 명령어에 필요한 --cri-socket 추가"""
        cmd = shlex.split(self.config.join_command)
        if cmd[:1] == ["sudo"]:
            cmd = cmd[1:]
        if cmd[:2] != ["kubeadm", "join"]:
            raise ConfigError(f"join command must start with 'kubeadm join': {self.config.join_command}")
        if "--cri-socket" not in cmd:
            cmd.extend(endpoint.cri_socket_args())
        return cmd

    def join_cluster(self, endpoint: RuntimeEndpoint) -> str:
        """kubeadm join 실행 (idempotent)"""
        if not self.config.join_command:
            raise StepSkipped("no join command configured")

        if self.is_joined():
            console.print("[green]✓ 이미 클러스터에 조인되어 있습니다.[/green]")
            self.logger.info("Node already joined (idempotent)")
            raise StepSkipped(f"{KUBELET_CONF} exists")

        cmd = self.build_join_command(endpoint)
        console.print("[cyan]클러스터 조인 중...[/cyan]")
        self.logger.info("Executing kubeadm join")
        try:
            self.runner.run(cmd, timeout=300)
        except CommandError as e:
            console.print("\n[yellow]다음 사항을 확인하세요:[/yellow]")
            console.print("  1. 토큰이 유효한지 확인 (컨트롤 플레인에서 'kubeadm token list')")
            console.print("  2. CA 인증서 해시가 올바른지 확인")
            console.print("  3. 컨트롤 플레인 API 서버(6443)에 접근 가능한지 확인")
            raise JoinError(f"kubeadm join failed: {e.stderr or e}")

        self.logger.info("Cluster join successful")
        return "joined"

    def print_join_instructions(self, endpoint: RuntimeEndpoint) -> str:
        """조인 방법 안내 (런타임에 맞는 --cri-socket 포함)"""
        note = cri_socket_note(endpoint)
        console.print("\n" + "=" * 60)
        console.print("[bold green]워커 노드 클러스터 조인 준비 완료[/bold green]")
        console.print("=" * 60 + "\n")
        console.print("1. 컨트롤 플레인에서 실행:")
        console.print("   [cyan]kubeadm token create --print-join-command --ttl 0[/cyan]\n")
        console.print("2. 출력된 명령어를 이 워커 노드에서 실행")
        if note:
            console.print(f"\n3. {endpoint.runtime_kind.value} 런타임을 사용하므로 조인 명령어 끝에 추가:")
            console.print(f"   [cyan]{note}[/cyan]\n")
            console.print("   예:")
            console.print("   kubeadm join <master-ip>:6443 --token <token> \\")
            console.print("     --discovery-token-ca-cert-hash sha256:<hash> \\")
            console.print(f"     {note}")
        else:
            console.print("\n3. 명령어를 그대로 실행")
        console.print("\n4. 컨트롤 플레인에서 확인:")
        console.print("   [cyan]kubectl get nodes[/cyan]\n")

        self.logger.info(f"Join instructions printed (suffix: {note or 'none'})")
        return note or "no extra flags"
