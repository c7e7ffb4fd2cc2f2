"""
시스템 사전 준비 모듈
호스트명, 터미널 환경, swap, 커널 모듈/sysctl, SELinux
"""

import socket
from rich.console import Console

from .config import ProvisionConfig
from .files import FileWriter, comment_swap_entries, set_selinux_mode
from .fingerprint import PlatformProfile
from .logger import get_logger
from .orchestrator import StepSkipped
from .packages import PackageManager
from .shell import CommandRunner

console = Console()

KERNEL_MODULES = ["overlay", "br_netfilter"]

SYSCTL_SETTINGS = {
    "net.bridge.bridge-nf-call-iptables": "1",
    "net.bridge.bridge-nf-call-ip6tables": "1",
    "net.ipv4.ip_forward": "1",
}

MODULES_CONF = "/etc/modules-load.d/k8s.conf"
SYSCTL_CONF = "/etc/sysctl.d/k8s.conf"
FSTAB = "/etc/fstab"
SELINUX_CONFIG = "/etc/selinux/config"

VIMRC = """colorscheme ron
set tabstop=2
set shiftwidth=2
set expandtab
syntax on
"""

BASHRC_ALIASES = """# Kubernetes aliases
alias k=kubectl
alias c=clear
source <(kubectl completion bash) 2>/dev/null || true
complete -F __start_kubectl k 2>/dev/null || true

# Colorful prompt
export PS1='\\[\\033[01;32m\\]\\u@\\h\\[\\033[00m\\]:\\[\\033[01;34m\\]\\w\\[\\033[00m\\]\\$ '
force_color_prompt=yes
"""


def render_modules_conf() -> str:
    return "\n".join(KERNEL_MODULES) + "\n"


def render_sysctl_conf() -> str:
    width = max(len(key) for key in SYSCTL_SETTINGS)
    return "".join(f"{key.ljust(width)} = {value}\n" for key, value in SYSCTL_SETTINGS.items())


class SystemPreparer:
    """Kubernetes 설치 전 호스트 준비"""

    def __init__(self, runner: CommandRunner, files: FileWriter, packages: PackageManager,
                 profile: PlatformProfile, config: ProvisionConfig):
        self.runner = runner
        self.files = files
        self.paths = files.paths
        self.packages = packages
        self.profile = profile
        self.config = config
        self.logger = get_logger()

    def set_hostname(self) -> str:
        """FQDN 을 짧은 호스트명으로 정규화"""
        current = socket.gethostname()
        short_hostname = current.split(".")[0]
        if short_hostname == current:
            raise StepSkipped(f"hostname already short ({current})")

        result = self.runner.run(["hostnamectl", "set-hostname", short_hostname], check=False)
        if result.returncode != 0:
            self.logger.warning(f"hostnamectl failed: {result.stderr.strip()}")
        self.logger.info(f"Hostname set to {short_hostname}")
        return short_hostname

    def setup_terminal(self) -> str:
        """기본 유틸리티 설치 및 vim/bash 편의 설정"""
        self.packages.update()
        self.packages.install(self.packages.base_packages())

        self.files.ensure_block(self.paths.home(".vimrc"), "vim", VIMRC)
        self.files.ensure_block(self.paths.bashrc, "aliases", BASHRC_ALIASES)
        self.logger.info("Terminal environment configured")
        return "vimrc, bashrc"

    def disable_swap(self) -> str:
        """swap 비활성화 및 fstab 항목 주석 처리"""
        self.runner.run(["swapoff", "-a"])
        changed = self.files.transform(self.paths.host(FSTAB), comment_swap_entries)
        self.logger.info(f"Swap disabled (fstab changed: {changed})")
        return "fstab updated" if changed else "swap off"

    def configure_kernel(self) -> str:
        """overlay/br_netfilter 로드 및 브리지/포워딩 sysctl 설정"""
        self.files.write(self.paths.host(MODULES_CONF), render_modules_conf())
        for module in KERNEL_MODULES:
            self.runner.run(["modprobe", module])

        self.files.write(self.paths.host(SYSCTL_CONF), render_sysctl_conf())
        self.runner.run(["sysctl", "--system"])
        self.logger.info("Kernel configured for Kubernetes")
        return ", ".join(KERNEL_MODULES)

    def relax_selinux(self) -> str:
        """SELinux 를 permissive 로 전환 (RHEL 계열, 명시적으로 요청한 경우)"""
        config_path = self.paths.host(SELINUX_CONFIG)
        if self.files.read(config_path) is None:
            raise StepSkipped("SELinux is not installed")

        console.print("[yellow]⚠ SELinux 를 permissive 모드로 전환합니다.[/yellow]")
        self.runner.run(["setenforce", "0"], check=False)
        self.files.transform(config_path, set_selinux_mode)
        self.logger.warning("SELinux set to permissive mode")
        return "permissive"
