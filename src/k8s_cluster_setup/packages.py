"""
패키지 관리 모듈
apt/yum 저장소 등록, 패키지 설치, Kubernetes 패키지 설치
"""

import os
import requests
from jinja2 import Template
from typing import List, Sequence
from rich.console import Console

from .config import ProvisionConfig
from .errors import CommandError, ServiceStartError
from .files import FileWriter, HostPaths
from .fingerprint import PlatformProfile
from .logger import get_logger
from .shell import CommandRunner

console = Console()

DOWNLOAD_TIMEOUT = 60

KUBERNETES_PACKAGES = ["kubelet", "kubeadm", "kubectl"]

BASE_PACKAGES = {
    "debian": ["vim", "bash-completion", "curl", "wget", "gnupg2",
               "software-properties-common", "apt-transport-https", "ca-certificates"],
    "rhel": ["vim", "bash-completion", "curl", "wget", "gnupg2", "yum-utils"],
}


def fetch(url: str, timeout: int = DOWNLOAD_TIMEOUT) -> bytes:
    """URL 내용 다운로드 (실패 시 ServiceStartError)"""
    logger = get_logger()
    logger.debug(f"Downloading {url}")
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.exceptions.RequestException as e:
        raise ServiceStartError(f"Cannot download {url}: {e}")
    return response.content


class PackageManager:
    """배포판 패키지 관리자 기반 클래스"""

    family = ""

    def __init__(self, runner: CommandRunner, files: FileWriter, profile: PlatformProfile):
        self.runner = runner
        self.files = files
        self.paths: HostPaths = files.paths
        self.profile = profile
        self.logger = get_logger()

    def _run(self, cmd: Sequence[str], timeout: int = 1800):
        try:
            return self.runner.run(cmd, timeout=timeout)
        except CommandError as e:
            raise ServiceStartError(f"Package operation failed: {e}")

    def base_packages(self) -> List[str]:
        return BASE_PACKAGES[self.family]

    def update(self):
        pass

    def install(self, packages: Sequence[str], extra_args: Sequence[str] = ()):
        raise NotImplementedError

    def hold(self, packages: Sequence[str]):
        pass


class AptPackageManager(PackageManager):
    """Debian/Ubuntu apt-get"""

    family = "debian"
    KEYRING_DIR = "/usr/share/keyrings"
    SOURCES_DIR = "/etc/apt/sources.list.d"

    def update(self):
        self._run(["apt-get", "update", "-qq"])

    def install(self, packages: Sequence[str], extra_args: Sequence[str] = ()):
        console.print(f"[cyan]패키지 설치: {' '.join(packages)}[/cyan]")
        self.logger.info(f"apt-get install {' '.join(packages)}")
        self._run(["apt-get", "install", "-y", *extra_args, *packages])

    def hold(self, packages: Sequence[str]):
        self._run(["apt-mark", "hold", *packages])

    def keyring_path(self, name: str) -> str:
        return os.path.join(self.KEYRING_DIR, f"{name}.gpg")

    def add_repository(self, name: str, key_url: str, repo_line: str):
        """서명 키와 sources.list.d 항목 등록 후 update"""
        keyring = self.keyring_path(name)
        if not self.runner.dry_run:
            key = fetch(key_url).decode("utf-8")
            os.makedirs(os.path.dirname(self.paths.host(keyring)), exist_ok=True)
            try:
                self.runner.run(["gpg", "--dearmor", "--yes", "-o", self.paths.host(keyring)], input=key)
            except CommandError as e:
                raise ServiceStartError(f"Cannot import repository key {key_url}: {e}")

        self.files.write(
            self.paths.host(os.path.join(self.SOURCES_DIR, f"{name}.list")),
            repo_line.format(keyring=keyring) + "\n"
        )
        self.logger.info(f"Added apt repository {name}")
        self.update()


class YumPackageManager(PackageManager):
    """RHEL/CentOS/Rocky/AlmaLinux/Fedora yum"""

    family = "rhel"
    REPOS_DIR = "/etc/yum.repos.d"

    def install(self, packages: Sequence[str], extra_args: Sequence[str] = ()):
        console.print(f"[cyan]패키지 설치: {' '.join(packages)}[/cyan]")
        self.logger.info(f"yum install {' '.join(packages)}")
        self._run(["yum", "install", "-y", *packages, *extra_args])

    def repo_path(self, name: str) -> str:
        return self.paths.host(os.path.join(self.REPOS_DIR, f"{name}.repo"))

    def add_repository_file(self, name: str, content: str):
        """렌더링된 .repo 파일 등록"""
        self.files.write(self.repo_path(name), content)
        self.logger.info(f"Added yum repository {name}")

    def add_repository_url(self, name: str, url: str):
        """원격 .repo 파일 다운로드 후 등록"""
        if self.runner.dry_run:
            self.logger.info(f"[dry-run] download {url}")
            return
        self.add_repository_file(name, fetch(url).decode("utf-8"))


PACKAGE_MANAGERS = {
    "debian": AptPackageManager,
    "rhel": YumPackageManager,
}


def get_package_manager(runner: CommandRunner, files: FileWriter, profile: PlatformProfile) -> PackageManager:
    """배포판 계열에 맞는 패키지 관리자"""
    return PACKAGE_MANAGERS[profile.distribution_family.value](runner, files, profile)


def debian_codename(runner: CommandRunner, profile: PlatformProfile) -> str:
    """lsb_release -cs 값 (os-release 에 있으면 그대로 사용)"""
    if profile.codename:
        return profile.codename
    result = runner.run(["lsb_release", "-cs"], mutating=False)
    return result.stdout.strip()


KUBERNETES_REPO_TEMPLATE = """[kubernetes]
name=Kubernetes
baseurl=https://pkgs.k8s.io/core:/stable:/v{{ minor }}/rpm/
enabled=1
gpgcheck=1
gpgkey=https://pkgs.k8s.io/core:/stable:/v{{ minor }}/rpm/repodata/repomd.xml.key
exclude={{ excludes | join(' ') }}
"""


def render_kubernetes_repo(minor: str) -> str:
    """pkgs.k8s.io yum 저장소 파일"""
    template = Template(KUBERNETES_REPO_TEMPLATE, keep_trailing_newline=True)
    return template.render(minor=minor, excludes=KUBERNETES_PACKAGES + ["cri-tools", "kubernetes-cni"])


class KubernetesPackages:
    """kubelet/kubeadm/kubectl 설치"""

    def __init__(self, packages: PackageManager, runner: CommandRunner, config: ProvisionConfig):
        self.packages = packages
        self.runner = runner
        self.config = config
        self.logger = get_logger()

    def install(self) -> str:
        version = self.config.kubernetes_version
        minor = self.config.kubernetes_minor
        console.print(f"[cyan]Kubernetes v{version} 패키지 설치 중...[/cyan]")
        self.logger.info(f"Installing Kubernetes packages v{version}")

        if isinstance(self.packages, AptPackageManager):
            self.packages.add_repository(
                "kubernetes-apt-keyring",
                f"https://pkgs.k8s.io/core:/stable:/v{minor}/deb/Release.key",
                "deb [signed-by={keyring}] "
                f"https://pkgs.k8s.io/core:/stable:/v{minor}/deb/ /"
            )
            self.packages.install([f"{name}={version}-*" for name in KUBERNETES_PACKAGES])
            self.packages.hold(KUBERNETES_PACKAGES)
        else:
            self.packages.add_repository_file("kubernetes", render_kubernetes_repo(minor))
            self.packages.install(
                [f"{name}-{version}" for name in KUBERNETES_PACKAGES],
                extra_args=["--disableexcludes=kubernetes"]
            )

        try:
            self.runner.run(["systemctl", "enable", "kubelet"])
        except CommandError as e:
            raise ServiceStartError(f"Cannot enable kubelet: {e}")

        return f"v{version}"
