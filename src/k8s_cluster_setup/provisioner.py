"""
노드 프로비저너
플랫폼 프로필과 설정으로 역할별 설치 단계를 구성하고 실행
"""

from typing import List, Optional
from rich.console import Console
from rich.panel import Panel

from .bootstrap import ClusterBootstrapper
from .config import NodeRole, ProvisionConfig
from .files import FileWriter, HostPaths
from .firewall import FirewallManager
from .fingerprint import DistributionFamily, PlatformProfile
from .join import JoinAdvisor
from .logger import get_logger
from .orchestrator import Step, StepOrchestrator, StepResult
from .packages import KubernetesPackages, get_package_manager
from .runtime import RuntimeEndpoint, endpoint_for, get_runtime_installer
from .shell import CommandRunner
from .system import SystemPreparer

console = Console()


class NodeProvisioner:
    """역할별 설치 단계 구성 및 실행"""

    def __init__(self, profile: PlatformProfile, config: ProvisionConfig, role: NodeRole,
                 runner: Optional[CommandRunner] = None):
        self.profile = profile
        self.config = config
        self.role = role
        self.logger = get_logger()

        self.runner = runner or CommandRunner(dry_run=config.dry_run)
        self.paths = HostPaths(config.root_dir, config.home_dir)
        self.files = FileWriter(self.paths, dry_run=self.runner.dry_run)
        self.packages = get_package_manager(self.runner, self.files, profile)

        self.system = SystemPreparer(self.runner, self.files, self.packages, profile, config)
        self.firewall = FirewallManager(self.runner, profile, config, role)
        self.runtime = get_runtime_installer(self.runner, self.files, self.packages, profile, config)
        self.kubernetes = KubernetesPackages(self.packages, self.runner, config)

        # 런타임 단계가 실행되기 전에도 안내 문구에 쓸 수 있도록 설정 값으로 초기화
        self.endpoint: RuntimeEndpoint = endpoint_for(config.container_runtime)
        self.orchestrator = StepOrchestrator(profile, config)

    def install_runtime(self) -> str:
        self.endpoint = self.runtime.install()
        return self.endpoint.socket_path

    def common_steps(self) -> List[Step]:
        """역할과 무관한 호스트 준비 단계"""
        return [
            Step("hostname", "호스트명 설정", self.system.set_hostname),
            Step("terminal", "터미널 환경 설정", self.system.setup_terminal),
            Step("swap", "swap 비활성화", self.system.disable_swap),
            Step("kernel", "커널 모듈 및 sysctl 설정", self.system.configure_kernel),
            Step(
                "selinux", "SELinux permissive 전환", self.system.relax_selinux,
                families=(DistributionFamily.RHEL,),
                condition=lambda config: config.disable_selinux,
                skip_reason="SELinux relaxation not requested",
            ),
            Step("firewall", "방화벽 설정", self.firewall.apply),
            Step("container-runtime", f"{self.runtime.title} 설치", self.install_runtime),
            Step("kubernetes-packages", "Kubernetes 패키지 설치", self.kubernetes.install),
        ]

    def control_plane_steps(self) -> List[Step]:
        bootstrapper = ClusterBootstrapper(self.runner, self.files, self.profile, self.config)
        return [
            Step("cluster-init", "클러스터 초기화 (kubeadm init)", lambda: bootstrapper.init_cluster(self.endpoint)),
            Step("kubeconfig", "kubeconfig 설정", bootstrapper.setup_kubeconfig),
            Step("cni", f"{bootstrapper.cni.title} CNI 설치", bootstrapper.install_cni),
            Step("coredns-restart", "CoreDNS 재시작", bootstrapper.restart_coredns),
            Step("join-command", "조인 명령어 생성", lambda: bootstrapper.create_join_command(self.endpoint)),
            Step("cluster-info", "클러스터 정보", bootstrapper.print_cluster_info),
        ]

    def worker_steps(self) -> List[Step]:
        advisor = JoinAdvisor(self.runner, self.files, self.config)
        return [
            Step("kubeconfig-copy", "컨트롤 플레인 kubeconfig 복사", advisor.copy_kubeconfig),
            Step(
                "join", "클러스터 조인 (kubeadm join)", lambda: advisor.join_cluster(self.endpoint),
                condition=lambda config: bool(config.join_command),
                skip_reason="no join command configured",
            ),
            Step("join-instructions", "조인 안내", lambda: advisor.print_join_instructions(self.endpoint)),
        ]

    def build_steps(self) -> List[Step]:
        """역할에 맞는 전체 단계 목록 (고정 순서)"""
        role_steps = self.control_plane_steps() if self.role == NodeRole.CONTROL_PLANE else self.worker_steps()
        return self.common_steps() + role_steps

    def run(self) -> List[StepResult]:
        """전체 단계 실행

        Raises:
            StepFailedError: 단계 실패 시 (요약 출력 후 전파)
        """
        title = "Control Plane" if self.role == NodeRole.CONTROL_PLANE else "Worker Node"
        console.print(Panel.fit(
            f"[bold cyan]Kubernetes {title} Setup[/bold cyan]\n"
            f"OS: {self.profile.pretty_name} ({self.profile.cpu_arch_tag})\n"
            f"Kubernetes: v{self.config.kubernetes_version} / Runtime: {self.config.container_runtime.value}",
            border_style="cyan"
        ))
        if self.runner.dry_run:
            console.print("[yellow]dry-run 모드: 명령어는 실행되지 않고 기록만 됩니다.[/yellow]")

        self.logger.info(f"=== {title} setup started ===")
        try:
            results = self.orchestrator.run(self.build_steps())
        finally:
            self.orchestrator.show_summary()

        self.logger.info(f"=== {title} setup completed ===")
        return results
