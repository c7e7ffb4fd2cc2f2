"""
컨테이너 런타임 설치 모듈
containerd, CRI-O, Docker(cri-dockerd) 지원
"""

import io
import json
import os
import re
import tarfile
import yaml
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Type
from rich.console import Console

from .config import ContainerRuntime, ProvisionConfig
from .errors import CommandError, ServiceStartError
from .files import FileWriter
from .fingerprint import PlatformProfile
from .logger import get_logger
from .packages import AptPackageManager, PackageManager, YumPackageManager, debian_codename, fetch
from .shell import CommandRunner

console = Console()

SOCKET_PATHS = {
    ContainerRuntime.CONTAINERD: "unix:///run/containerd/containerd.sock",
    ContainerRuntime.CRIO: "unix:///var/run/crio/crio.sock",
    ContainerRuntime.DOCKER: "unix:///var/run/cri-dockerd.sock",
}

# kubeadm 이 별도 플래그 없이 찾는 런타임
DEFAULT_RUNTIME = ContainerRuntime.CONTAINERD

CRICTL_CONFIG = "/etc/crictl.yaml"
CRICTL_TIMEOUT = 10

CRI_DOCKERD_VERSION = "0.3.9"
CRI_DOCKERD_BINARY = "/usr/local/bin/cri-dockerd"
CRI_DOCKERD_UNITS_URL = "https://raw.githubusercontent.com/Mirantis/cri-dockerd/master/packaging/systemd"
CRI_DOCKERD_UNITS = ("cri-docker.service", "cri-docker.socket")

REGISTRY_MIRRORS = ["https://mirror.gcr.io", "https://registry-1.docker.io"]


@dataclass(frozen=True)
class RuntimeEndpoint:
    """CRI 엔드포인트"""
    socket_path: str
    runtime_kind: ContainerRuntime

    @property
    def is_default(self) -> bool:
        return self.runtime_kind == DEFAULT_RUNTIME

    def cri_socket_args(self) -> List[str]:
        """kubeadm init/join 에 전달할 --cri-socket 인자"""
        if self.is_default:
            return []
        return ["--cri-socket", self.socket_path]


def endpoint_for(runtime: ContainerRuntime) -> RuntimeEndpoint:
    return RuntimeEndpoint(SOCKET_PATHS[runtime], runtime)


def render_crictl_config(socket_path: str, timeout: int = CRICTL_TIMEOUT) -> str:
    """crictl 클라이언트 설정"""
    return yaml.safe_dump(
        {"runtime-endpoint": socket_path, "image-endpoint": socket_path, "timeout": timeout},
        default_flow_style=False,
        sort_keys=False
    )


def render_containerd_config(default_config: str, mirrors: Sequence[str] = tuple(REGISTRY_MIRRORS)) -> str:
    """`containerd config default` 출력에 systemd cgroup 과 docker.io 미러 적용"""
    config = re.sub(r"SystemdCgroup = false", "SystemdCgroup = true", default_config)

    header = '[plugins."io.containerd.grpc.v1.cri".registry.mirrors]'
    mirror_header = '[plugins."io.containerd.grpc.v1.cri".registry.mirrors."docker.io"]'
    if mirror_header in config:
        return config

    lines = config.splitlines()
    for index, line in enumerate(lines):
        if line.strip() == header:
            indent = line[:len(line) - len(line.lstrip())] + "  "
            endpoints = ", ".join(f'"{mirror}"' for mirror in mirrors)
            lines[index + 1:index + 1] = [
                f"{indent}{mirror_header}",
                f"{indent}  endpoint = [{endpoints}]",
            ]
            break

    result = "\n".join(lines)
    return result + "\n" if config.endswith("\n") else result


def render_docker_daemon_config() -> str:
    """Docker daemon.json (systemd cgroup 드라이버)"""
    return json.dumps({
        "exec-opts": ["native.cgroupdriver=systemd"],
        "log-driver": "json-file",
        "log-opts": {"max-size": "100m"},
        "storage-driver": "overlay2",
    }, indent=2) + "\n"


def render_crio_cgroup_config() -> str:
    return '[crio.runtime]\ncgroup_manager = "systemd"\n'


class RuntimeInstaller:
    """컨테이너 런타임 설치 기반 클래스"""

    kind: ContainerRuntime = DEFAULT_RUNTIME
    title = ""
    service = ""
    packages_to_install: Sequence[str] = ()

    def __init__(self, runner: CommandRunner, files: FileWriter, packages: PackageManager,
                 profile: PlatformProfile, config: ProvisionConfig):
        self.runner = runner
        self.files = files
        self.paths = files.paths
        self.packages = packages
        self.profile = profile
        self.config = config
        self.logger = get_logger()

    @property
    def endpoint(self) -> RuntimeEndpoint:
        return endpoint_for(self.kind)

    def install(self) -> RuntimeEndpoint:
        """저장소 등록 → 패키지 설치 → 설정 → 서비스 시작"""
        console.print(f"[bold cyan]{self.title} 설치 중...[/bold cyan]")
        self.logger.info(f"Installing container runtime {self.kind.value}")

        self.add_source()
        self.packages.install(self.packages_to_install)
        self.configure()
        self.write_crictl_config()
        self.start_service(self.service)
        self.post_install()

        console.print(f"[green]✓ {self.title} 설치 완료 ({self.endpoint.socket_path})[/green]")
        self.logger.info(f"Container runtime ready at {self.endpoint.socket_path}")
        return self.endpoint

    def add_source(self):
        raise NotImplementedError

    def configure(self):
        raise NotImplementedError

    def post_install(self):
        pass

    def write_crictl_config(self):
        self.files.write(self.paths.host(CRICTL_CONFIG), render_crictl_config(self.endpoint.socket_path))

    def start_service(self, *units: str, restart: bool = True):
        """systemd 서비스 활성화 및 (재)시작"""
        try:
            self.runner.run(["systemctl", "daemon-reload"])
            for unit in units:
                self.runner.run(["systemctl", "enable", unit])
                self.runner.run(["systemctl", "restart" if restart else "start", unit])
        except CommandError as e:
            raise ServiceStartError(f"Cannot start {', '.join(units)}: {e}")

    def add_docker_repository(self):
        """download.docker.com 저장소 (containerd.io, docker-ce)"""
        if isinstance(self.packages, AptPackageManager):
            distro = self.profile.distribution_id
            codename = debian_codename(self.runner, self.profile)
            self.packages.add_repository(
                "docker-archive-keyring",
                f"https://download.docker.com/linux/{distro}/gpg",
                f"deb [arch={self.profile.cpu_arch_tag} signed-by={{keyring}}] "
                f"https://download.docker.com/linux/{distro} {codename} stable"
            )
        elif isinstance(self.packages, YumPackageManager):
            distro = "fedora" if self.profile.distribution_id == "fedora" else "centos"
            self.packages.add_repository_url(
                "docker-ce", f"https://download.docker.com/linux/{distro}/docker-ce.repo"
            )


class ContainerdInstaller(RuntimeInstaller):
    kind = ContainerRuntime.CONTAINERD
    title = "containerd"
    service = "containerd"
    packages_to_install = ("containerd.io",)

    CONFIG_PATH = "/etc/containerd/config.toml"

    def add_source(self):
        self.add_docker_repository()

    def configure(self):
        if self.runner.dry_run:
            self.logger.info(f"[dry-run] render {self.CONFIG_PATH}")
            return
        try:
            default_config = self.runner.run(["containerd", "config", "default"], mutating=False).stdout
        except CommandError as e:
            raise ServiceStartError(f"Cannot generate containerd config: {e}")
        self.files.write(self.paths.host(self.CONFIG_PATH), render_containerd_config(default_config))


class CrioInstaller(RuntimeInstaller):
    kind = ContainerRuntime.CRIO
    title = "CRI-O"
    service = "crio"
    packages_to_install = ("cri-o",)

    CONFIG_PATH = "/etc/crio/crio.conf.d/02-cgroup-manager.conf"

    def add_source(self):
        minor = self.config.kubernetes_minor
        base = f"https://pkgs.k8s.io/addons:/cri-o:/stable:/v{minor}"
        if isinstance(self.packages, AptPackageManager):
            self.packages.add_repository(
                "cri-o-apt-keyring",
                f"{base}/deb/Release.key",
                f"deb [signed-by={{keyring}}] {base}/deb/ /"
            )
        elif isinstance(self.packages, YumPackageManager):
            self.packages.add_repository_url("cri-o", f"{base}/rpm/cri-o.repo")

    def configure(self):
        self.files.write(self.paths.host(self.CONFIG_PATH), render_crio_cgroup_config())


class DockerInstaller(RuntimeInstaller):
    kind = ContainerRuntime.DOCKER
    title = "Docker (cri-dockerd)"
    service = "docker"
    packages_to_install = ("docker-ce", "docker-ce-cli")

    CONFIG_PATH = "/etc/docker/daemon.json"
    UNIT_DIR = "/etc/systemd/system"

    def add_source(self):
        console.print("[yellow]⚠ Docker 런타임은 Kubernetes 에서 더 이상 권장되지 않습니다. containerd 또는 CRI-O 를 고려하세요.[/yellow]")
        self.logger.warning("Docker as container runtime is deprecated in Kubernetes")
        self.add_docker_repository()

    def configure(self):
        self.files.write(self.paths.host(self.CONFIG_PATH), render_docker_daemon_config())

    def post_install(self):
        self.install_cri_dockerd()

    def unit_path(self, unit: str) -> str:
        return self.paths.host(f"{self.UNIT_DIR}/{unit}")

    def cri_dockerd_installed(self) -> bool:
        paths = [self.paths.host(CRI_DOCKERD_BINARY)] + [self.unit_path(unit) for unit in CRI_DOCKERD_UNITS]
        return all(os.path.exists(path) for path in paths)

    def install_cri_dockerd(self) -> bool:
        """cri-dockerd 바이너리와 systemd 유닛 설치 (이미 있으면 건너뜀)"""
        if self.cri_dockerd_installed():
            console.print("[green]✓ cri-dockerd 가 이미 설치되어 있습니다.[/green]")
            self.logger.info("cri-dockerd already installed")
            self.start_service(*CRI_DOCKERD_UNITS, restart=False)
            return False

        console.print(f"[cyan]cri-dockerd v{CRI_DOCKERD_VERSION} 설치 중...[/cyan]")
        self.logger.info(f"Installing cri-dockerd {CRI_DOCKERD_VERSION}")

        if not self.runner.dry_run:
            arch = self.profile.cpu_arch_tag
            url = (
                f"https://github.com/Mirantis/cri-dockerd/releases/download/"
                f"v{CRI_DOCKERD_VERSION}/cri-dockerd-{CRI_DOCKERD_VERSION}.{arch}.tgz"
            )
            self.files.write_bytes(self.paths.host(CRI_DOCKERD_BINARY), extract_cri_dockerd(fetch(url)), mode=0o755)

            for unit in CRI_DOCKERD_UNITS:
                content = fetch(f"{CRI_DOCKERD_UNITS_URL}/{unit}").decode("utf-8")
                content = content.replace("/usr/bin/cri-dockerd", CRI_DOCKERD_BINARY)
                self.files.write(self.unit_path(unit), content)

        self.start_service(*CRI_DOCKERD_UNITS, restart=False)
        console.print("[green]✓ cri-dockerd 설치 완료[/green]")
        return True


def extract_cri_dockerd(archive: bytes) -> bytes:
    """릴리스 tarball 에서 cri-dockerd 바이너리 추출"""
    with tarfile.open(fileobj=io.BytesIO(archive), mode="r:gz") as tar:
        for member in tar.getmembers():
            if member.isfile() and member.name.rstrip("/").endswith("cri-dockerd/cri-dockerd"):
                extracted = tar.extractfile(member)
                if extracted is not None:
                    return extracted.read()
    raise ServiceStartError("cri-dockerd binary not found in release archive")


RUNTIME_INSTALLERS: Dict[ContainerRuntime, Type[RuntimeInstaller]] = {
    ContainerRuntime.CONTAINERD: ContainerdInstaller,
    ContainerRuntime.CRIO: CrioInstaller,
    ContainerRuntime.DOCKER: DockerInstaller,
}


def get_runtime_installer(runner: CommandRunner, files: FileWriter, packages: PackageManager,
                          profile: PlatformProfile, config: ProvisionConfig,
                          runtime: Optional[ContainerRuntime] = None) -> RuntimeInstaller:
    """설정된 런타임에 맞는 설치기"""
    installer_cls = RUNTIME_INSTALLERS[runtime or config.container_runtime]
    return installer_cls(runner, files, packages, profile, config)
