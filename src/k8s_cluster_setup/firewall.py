"""
방화벽 설정 모듈
UFW, firewalld, iptables 지원 (노드 역할별 Kubernetes 포트 개방 또는 비활성화)
"""

from typing import List, Tuple
from rich.console import Console

from .config import CniPlugin, NodeRole, ProvisionConfig
from .fingerprint import PlatformProfile
from .logger import get_logger
from .orchestrator import StepSkipped
from .shell import CommandRunner

console = Console()

ROLE_PORTS = {
    NodeRole.CONTROL_PLANE: [
        ("6443", "tcp", "Kubernetes API"),
        ("2379-2380", "tcp", "etcd"),
        ("10250", "tcp", "Kubelet API"),
        ("10257", "tcp", "kube-controller-manager"),
        ("10259", "tcp", "kube-scheduler"),
    ],
    NodeRole.WORKER: [
        ("10250", "tcp", "Kubelet API"),
        ("10256", "tcp", "kube-proxy"),
        ("30000-32767", "tcp", "NodePort range"),
    ],
}

CNI_PORTS = {
    CniPlugin.WEAVE: [("6783", "tcp", "Weave"), ("6783-6784", "udp", "Weave")],
    CniPlugin.CALICO: [("179", "tcp", "Calico BGP"), ("4789", "udp", "Calico VXLAN"), ("5473", "tcp", "Calico Typha")],
    CniPlugin.FLANNEL: [("8472", "udp", "Flannel VXLAN")],
    CniPlugin.CILIUM: [("4240", "tcp", "Cilium health"), ("8472", "udp", "Cilium VXLAN")],
}


def required_ports(role: NodeRole, cni: CniPlugin) -> List[Tuple[str, str, str]]:
    """역할과 CNI 에 필요한 포트 목록"""
    return list(ROLE_PORTS[role]) + list(CNI_PORTS[cni])


class FirewallManager:
    """방화벽 관리 클래스"""

    def __init__(self, runner: CommandRunner, profile: PlatformProfile, config: ProvisionConfig, role: NodeRole):
        self.runner = runner
        self.profile = profile
        self.config = config
        self.role = role
        self.logger = get_logger()
        self.firewall_type = None

    def detect_firewall(self) -> str:
        """시스템의 방화벽 타입 감지"""
        if self.runner.which("ufw"):
            return "ufw"
        elif self.runner.which("firewall-cmd"):
            return "firewalld"
        elif self.runner.which("iptables"):
            return "iptables"
        else:
            return "none"

    def is_active(self) -> bool:
        """방화벽 서비스 동작 여부 (iptables 는 항상 적용 가능)"""
        if self.firewall_type == "firewalld":
            return self.runner.succeeds(["firewall-cmd", "--state"])
        if self.firewall_type == "ufw":
            result = self.runner.run(["ufw", "status"], check=False, mutating=False)
            return result.returncode == 0 and "Status: active" in result.stdout
        return True

    def apply(self) -> str:
        """설정에 따라 방화벽 비활성화 또는 포트 개방"""
        if self.config.disable_firewall:
            return self.disable()
        return self.configure()

    def disable(self) -> str:
        """방화벽 비활성화 (학습용 환경 전용)"""
        console.print("[yellow]⚠ 학습용 환경을 위해 방화벽을 비활성화합니다. 운영 환경에서는 규칙을 직접 구성하세요![/yellow]")
        self.logger.warning("Disabling host firewall")

        if self.profile.is_debian:
            services = ["ufw", "apparmor"]
        else:
            services = ["firewalld"]

        for service in services:
            self.runner.run(["systemctl", "stop", service], check=False)
            self.runner.run(["systemctl", "disable", service], check=False)

        self.logger.info(f"Disabled services: {', '.join(services)}")
        return f"disabled {', '.join(services)}"

    def configure(self) -> str:
        """Kubernetes 포트 개방"""
        self.firewall_type = self.detect_firewall()
        console.print(f"[cyan]감지된 방화벽: {self.firewall_type}[/cyan]")
        self.logger.info(f"Detected firewall: {self.firewall_type}")

        if self.firewall_type == "none":
            console.print("[yellow]⚠ 방화벽 관리 도구를 찾을 수 없습니다.[/yellow]")
            self.logger.warning("No firewall management tool found")
            return "no firewall"

        if not self.is_active():
            console.print(f"[yellow]⚠ {self.firewall_type} 가 실행 중이 아니므로 포트 개방을 건너뜁니다.[/yellow]")
            self.logger.warning(f"{self.firewall_type} is not running, no rules added")
            raise StepSkipped(f"{self.firewall_type} inactive")

        ports = required_ports(self.role, self.config.cni_plugin)
        configure = {
            "ufw": self._configure_ufw,
            "firewalld": self._configure_firewalld,
            "iptables": self._configure_iptables,
        }[self.firewall_type]

        for port, protocol, description in ports:
            configure(port, protocol)
            console.print(f"  ✓ {port}/{protocol} - {description}")
            self.logger.debug(f"Opened {port}/{protocol} ({description})")

        if self.firewall_type == "firewalld":
            self.runner.run(["firewall-cmd", "--reload"])

        self.logger.info(f"{self.firewall_type} configuration completed")
        return f"{self.firewall_type}: {len(ports)} rules"

    def _configure_ufw(self, port: str, protocol: str):
        self.runner.run(["ufw", "allow", f"{port.replace('-', ':')}/{protocol}"])

    def _configure_firewalld(self, port: str, protocol: str):
        self.runner.run(["firewall-cmd", "--permanent", f"--add-port={port}/{protocol}"])

    def _configure_iptables(self, port: str, protocol: str):
        rule = ["INPUT", "-p", protocol, "--dport", port.replace("-", ":"), "-j", "ACCEPT"]
        # 같은 규칙이 이미 있으면 추가하지 않음
        if self.runner.succeeds(["iptables", "-C", *rule]):
            return
        self.runner.run(["iptables", "-A", *rule])
