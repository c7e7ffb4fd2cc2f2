"""
CNI 플러그인 설치 모듈
Weave, Calico, Flannel, Cilium 매니페스트 적용 및 준비 상태 대기
"""

import io
import os
import tarfile
from typing import Dict, List, Optional, Type
from rich.console import Console

from .config import CniPlugin, ProvisionConfig
from .errors import CommandError, NetworkPollTimeout, ServiceStartError
from .files import FileWriter
from .fingerprint import PlatformProfile
from .logger import get_logger
from .packages import fetch
from .shell import CommandRunner

console = Console()

WEAVE_MANIFEST = "https://github.com/weaveworks/weave/releases/download/v2.8.1/weave-daemonset-k8s.yaml"
CALICO_VERSION = "v3.27.0"
CALICO_MANIFEST_BASE = f"https://raw.githubusercontent.com/projectcalico/calico/{CALICO_VERSION}/manifests"
FLANNEL_MANIFEST = "https://github.com/flannel-io/flannel/releases/latest/download/kube-flannel.yml"
CILIUM_CLI_STABLE = "https://raw.githubusercontent.com/cilium/cilium-cli/main/stable.txt"
CILIUM_CLI_BINARY = "/usr/local/bin/cilium"


def replace_cidr(manifest: str, default_cidr: str, cidr: str) -> str:
    """매니페스트의 기본 Pod CIDR 을 설정 값으로 치환"""
    if default_cidr == cidr:
        return manifest
    return manifest.replace(default_cidr, cidr)


class CniInstaller:
    """CNI 설치 기반 클래스"""

    plugin: CniPlugin = CniPlugin.WEAVE
    title = ""
    namespace = "kube-system"
    selector: Optional[str] = None

    def __init__(self, runner: CommandRunner, files: FileWriter, profile: PlatformProfile, config: ProvisionConfig):
        self.runner = runner
        self.files = files
        self.paths = files.paths
        self.profile = profile
        self.config = config
        self.logger = get_logger()

    def install(self) -> str:
        raise NotImplementedError

    def kubectl(self, *args: str, input: Optional[str] = None, check: bool = True):
        return self.runner.run(["kubectl", *args], input=input, check=check, timeout=300)

    def apply_url(self, url: str):
        self.logger.info(f"Applying {url}")
        self.kubectl("apply", "-f", url)

    def apply_content(self, source: str, content: str):
        self.logger.info(f"Applying rendered {source}")
        self.kubectl("apply", "-f", "-", input=content)

    def fetch_manifest(self, url: str) -> str:
        return fetch(url).decode("utf-8")

    def wait_command(self, timeout: int) -> List[str]:
        cmd = ["kubectl", "-n", self.namespace, "wait", "--for=condition=Ready", "pod"]
        if self.selector:
            cmd.extend(["-l", self.selector])
        else:
            cmd.append("--all")
        cmd.append(f"--timeout={timeout}s")
        return cmd

    def wait_ready(self, timeout: int):
        """CNI 파드 Ready 대기

        Raises:
            NetworkPollTimeout: 제한 시간 안에 Ready 가 되지 않은 경우
        """
        console.print(f"[cyan]{self.title} 준비 대기 중 (최대 {timeout}초)...[/cyan]")
        self.logger.info(f"Waiting for {self.plugin.value} pods in {self.namespace} (timeout {timeout}s)")
        try:
            result = self.runner.run(self.wait_command(timeout), check=False, timeout=timeout + 30)
        except CommandError as e:
            raise NetworkPollTimeout(f"{self.title} readiness wait failed: {e}")
        if result.returncode != 0:
            raise NetworkPollTimeout(
                f"{self.title} pods in {self.namespace} not ready after {timeout}s: {result.stderr.strip()}"
            )


class WeaveInstaller(CniInstaller):
    plugin = CniPlugin.WEAVE
    title = "Weave Net"
    namespace = "kube-system"
    selector = "name=weave-net"

    def install(self) -> str:
        self.apply_url(WEAVE_MANIFEST)
        return WEAVE_MANIFEST


class CalicoInstaller(CniInstaller):
    plugin = CniPlugin.CALICO
    title = "Calico"
    namespace = "calico-system"
    selector = None

    DEFAULT_CIDR = "192.168.0.0/16"

    def install(self) -> str:
        operator = f"{CALICO_MANIFEST_BASE}/tigera-operator.yaml"
        # create 실패(이미 존재)면 apply 로 재시도
        result = self.kubectl("create", "-f", operator, check=False)
        if result.returncode != 0:
            self.kubectl("apply", "--server-side", "-f", operator)

        resources_url = f"{CALICO_MANIFEST_BASE}/custom-resources.yaml"
        if self.runner.dry_run:
            self.apply_url(resources_url)
        else:
            resources = replace_cidr(self.fetch_manifest(resources_url), self.DEFAULT_CIDR, self.config.pod_network_cidr)
            self.apply_content(resources_url, resources)
        return CALICO_VERSION


class FlannelInstaller(CniInstaller):
    plugin = CniPlugin.FLANNEL
    title = "Flannel"
    namespace = "kube-flannel"
    selector = "app=flannel"

    DEFAULT_CIDR = "10.244.0.0/16"

    def install(self) -> str:
        if self.runner.dry_run:
            self.apply_url(FLANNEL_MANIFEST)
        else:
            manifest = replace_cidr(self.fetch_manifest(FLANNEL_MANIFEST), self.DEFAULT_CIDR, self.config.pod_network_cidr)
            self.apply_content(FLANNEL_MANIFEST, manifest)
        return FLANNEL_MANIFEST


class CiliumInstaller(CniInstaller):
    plugin = CniPlugin.CILIUM
    title = "Cilium"
    namespace = "kube-system"
    selector = "k8s-app=cilium"

    def install_cli(self) -> bool:
        """cilium CLI 설치 (이미 있으면 건너뜀)"""
        binary = self.paths.host(CILIUM_CLI_BINARY)
        if os.path.exists(binary) or self.runner.dry_run:
            return False

        version = fetch(CILIUM_CLI_STABLE).decode("utf-8").strip()
        arch = self.profile.cpu_arch_tag
        url = f"https://github.com/cilium/cilium-cli/releases/download/{version}/cilium-linux-{arch}.tar.gz"
        self.logger.info(f"Installing cilium CLI {version}")

        with tarfile.open(fileobj=io.BytesIO(fetch(url)), mode="r:gz") as tar:
            try:
                member = tar.extractfile("cilium")
            except KeyError:
                member = None
            if member is None:
                raise ServiceStartError("cilium binary not found in release archive")
            self.files.write_bytes(binary, member.read(), mode=0o755)
        return True

    def install(self) -> str:
        self.install_cli()
        result = self.runner.run(["cilium", "install"], check=False, timeout=600)
        if result.returncode != 0 and "already" not in (result.stderr + result.stdout).lower():
            raise CommandError(["cilium", "install"], result.returncode, result.stderr)
        return "cilium install"


CNI_INSTALLERS: Dict[CniPlugin, Type[CniInstaller]] = {
    CniPlugin.WEAVE: WeaveInstaller,
    CniPlugin.CALICO: CalicoInstaller,
    CniPlugin.FLANNEL: FlannelInstaller,
    CniPlugin.CILIUM: CiliumInstaller,
}


def get_cni_installer(runner: CommandRunner, files: FileWriter, profile: PlatformProfile,
                      config: ProvisionConfig) -> CniInstaller:
    """설정된 CNI 에 맞는 설치기"""
    return CNI_INSTALLERS[config.cni_plugin](runner, files, profile, config)
