"""
패키지 관리 테스트
"""

import pytest
import requests
from k8s_cluster_setup import packages
from k8s_cluster_setup.errors import ServiceStartError
from k8s_cluster_setup.packages import (
    AptPackageManager,
    KubernetesPackages,
    YumPackageManager,
    get_package_manager,
    render_kubernetes_repo,
)
from conftest import FakeRunner


def test_get_package_manager(runner, files, debian_profile, rhel_profile):
    assert isinstance(get_package_manager(runner, files, debian_profile), AptPackageManager)
    assert isinstance(get_package_manager(runner, files, rhel_profile), YumPackageManager)


def test_kubernetes_packages_apt(runner, files, paths, debian_profile, config, downloads):
    """apt: pkgs.k8s.io 저장소 등록, 버전 고정 설치, hold"""
    apt = AptPackageManager(runner, files, debian_profile)
    assert KubernetesPackages(apt, runner, config).install() == "v1.32.5"

    sources = files.read(paths.host("/etc/apt/sources.list.d/kubernetes-apt-keyring.list"))
    assert "signed-by=/usr/share/keyrings/kubernetes-apt-keyring.gpg" in sources
    assert "https://pkgs.k8s.io/core:/stable:/v1.32/deb/ /" in sources
    assert "https://pkgs.k8s.io/core:/stable:/v1.32/deb/Release.key" in downloads.fetched

    assert ["apt-get", "install", "-y", "kubelet=1.32.5-*", "kubeadm=1.32.5-*", "kubectl=1.32.5-*"] in runner.commands
    assert ["apt-mark", "hold", "kubelet", "kubeadm", "kubectl"] in runner.commands
    assert runner.commands[-1] == ["systemctl", "enable", "kubelet"]


def test_kubernetes_packages_yum(runner, files, paths, rhel_profile, config):
    yum = YumPackageManager(runner, files, rhel_profile)
    KubernetesPackages(yum, runner, config).install()

    repo = files.read(paths.host("/etc/yum.repos.d/kubernetes.repo"))
    assert repo == render_kubernetes_repo("1.32")
    assert [
        "yum", "install", "-y", "kubelet-1.32.5", "kubeadm-1.32.5", "kubectl-1.32.5",
        "--disableexcludes=kubernetes",
    ] in runner.commands


def test_render_kubernetes_repo():
    repo = render_kubernetes_repo("1.31")
    assert "baseurl=https://pkgs.k8s.io/core:/stable:/v1.31/rpm/\n" in repo
    assert "exclude=kubelet kubeadm kubectl cri-tools kubernetes-cni\n" in repo
    assert repo.endswith("\n")


def test_install_failure_is_service_start_error(files, debian_profile):
    runner = FakeRunner(responses={("apt-get", "install"): (100, "", "E: Unable to locate package")})
    apt = AptPackageManager(runner, files, debian_profile)
    with pytest.raises(ServiceStartError, match="Unable to locate"):
        apt.install(["kubelet"])


def test_fetch_error(monkeypatch):
    """다운로드 실패는 ServiceStartError"""
    def fail(url, timeout):
        raise requests.exceptions.ConnectionError("no route")

    monkeypatch.setattr(packages.requests, "get", fail)
    with pytest.raises(ServiceStartError, match="no route"):
        packages.fetch("https://example.invalid/key")
