"""
컨테이너 런타임 설치 테스트
"""

import io
import json
import os
import tarfile
import pytest
import yaml
from k8s_cluster_setup.config import ContainerRuntime, ProvisionConfig
from k8s_cluster_setup.errors import ServiceStartError
from k8s_cluster_setup.packages import AptPackageManager, YumPackageManager
from k8s_cluster_setup.runtime import (
    CRI_DOCKERD_BINARY,
    ContainerdInstaller,
    CrioInstaller,
    DockerInstaller,
    endpoint_for,
    extract_cri_dockerd,
    get_runtime_installer,
    render_containerd_config,
    render_crictl_config,
)
from conftest import FakeRunner

CONTAINERD_DEFAULT = """version = 2

[plugins]
  [plugins."io.containerd.grpc.v1.cri"]
    [plugins."io.containerd.grpc.v1.cri".containerd.runtimes.runc.options]
      SystemdCgroup = false
    [plugins."io.containerd.grpc.v1.cri".registry]
      [plugins."io.containerd.grpc.v1.cri".registry.mirrors]
"""


def cri_dockerd_archive(content=b"#!/bin/sh\n"):
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        info = tarfile.TarInfo("cri-dockerd/cri-dockerd")
        info.size = len(content)
        tar.addfile(info, io.BytesIO(content))
    return buffer.getvalue()


def test_socket_paths():
    """docker 소켓은 containerd/crio 와 다름"""
    containerd = endpoint_for(ContainerRuntime.CONTAINERD)
    crio = endpoint_for(ContainerRuntime.CRIO)
    docker = endpoint_for(ContainerRuntime.DOCKER)

    assert containerd.socket_path == "unix:///run/containerd/containerd.sock"
    assert crio.socket_path == "unix:///var/run/crio/crio.sock"
    assert docker.socket_path == "unix:///var/run/cri-dockerd.sock"
    assert docker.socket_path not in (containerd.socket_path, crio.socket_path)


def test_cri_socket_args():
    """기본 런타임(containerd)은 --cri-socket 불필요"""
    assert endpoint_for(ContainerRuntime.CONTAINERD).cri_socket_args() == []
    assert endpoint_for(ContainerRuntime.CRIO).cri_socket_args() == ["--cri-socket", "unix:///var/run/crio/crio.sock"]


def test_render_crictl_config():
    data = yaml.safe_load(render_crictl_config("unix:///var/run/crio/crio.sock"))
    assert data == {
        "runtime-endpoint": "unix:///var/run/crio/crio.sock",
        "image-endpoint": "unix:///var/run/crio/crio.sock",
        "timeout": 10,
    }


def test_render_containerd_config():
    """systemd cgroup 사용 및 docker.io 미러 한 번만 추가"""
    rendered = render_containerd_config(CONTAINERD_DEFAULT)
    assert "SystemdCgroup = true" in rendered
    assert "SystemdCgroup = false" not in rendered
    assert rendered.count('registry.mirrors."docker.io"]') == 1
    assert 'endpoint = ["https://mirror.gcr.io", "https://registry-1.docker.io"]' in rendered
    assert render_containerd_config(rendered) == rendered


def test_crio_on_debian(runner, files, paths, debian_profile, downloads):
    """crio + 1.32.5 on debian 계열 -> crio 소켓"""
    config = ProvisionConfig(kubernetes_version="1.32.5", container_runtime=ContainerRuntime.CRIO)
    apt = AptPackageManager(runner, files, debian_profile)
    installer = get_runtime_installer(runner, files, apt, debian_profile, config)

    assert isinstance(installer, CrioInstaller)
    endpoint = installer.install()

    assert endpoint.socket_path == "unix:///var/run/crio/crio.sock"
    assert endpoint.runtime_kind == ContainerRuntime.CRIO
    sources = files.read(paths.host("/etc/apt/sources.list.d/cri-o-apt-keyring.list"))
    assert "https://pkgs.k8s.io/addons:/cri-o:/stable:/v1.32/deb/ /" in sources
    assert 'cgroup_manager = "systemd"' in files.read(paths.host("/etc/crio/crio.conf.d/02-cgroup-manager.conf"))
    assert yaml.safe_load(files.read(paths.host("/etc/crictl.yaml")))["runtime-endpoint"] == endpoint.socket_path
    assert ["apt-get", "install", "-y", "cri-o"] in runner.commands
    assert ["systemctl", "restart", "crio"] in runner.commands


def test_containerd_on_rhel(files, paths, rhel_profile, config, downloads):
    runner = FakeRunner(responses={("containerd", "config", "default"): (0, CONTAINERD_DEFAULT, "")})
    yum = YumPackageManager(runner, files, rhel_profile)
    installer = ContainerdInstaller(runner, files, yum, rhel_profile, config)

    endpoint = installer.install()

    assert endpoint.is_default
    assert "https://download.docker.com/linux/centos/docker-ce.repo" in downloads.fetched
    assert files.read(paths.host("/etc/yum.repos.d/docker-ce.repo")) == "downloaded\n"
    assert "SystemdCgroup = true" in files.read(paths.host("/etc/containerd/config.toml"))
    assert ["yum", "install", "-y", "containerd.io"] in runner.commands


def test_docker_daemon_config(runner, files, paths, debian_profile, downloads):
    downloads.payloads[".tgz"] = cri_dockerd_archive()
    config = ProvisionConfig(container_runtime=ContainerRuntime.DOCKER)
    installer = DockerInstaller(runner, files, AptPackageManager(runner, files, debian_profile), debian_profile, config)

    endpoint = installer.install()

    assert endpoint.socket_path == "unix:///var/run/cri-dockerd.sock"
    daemon = json.loads(files.read(paths.host("/etc/docker/daemon.json")))
    assert daemon["exec-opts"] == ["native.cgroupdriver=systemd"]


def test_cri_dockerd_installed_once(runner, files, paths, debian_profile, downloads):
    """cri-dockerd 는 재실행해도 한 번만 설치"""
    downloads.payloads[".tgz"] = cri_dockerd_archive(b"binary")
    downloads.payloads["cri-docker.service"] = b"ExecStart=/usr/bin/cri-dockerd --container-runtime-endpoint fd://\n"
    config = ProvisionConfig(container_runtime=ContainerRuntime.DOCKER)
    installer = DockerInstaller(runner, files, AptPackageManager(runner, files, debian_profile), debian_profile, config)

    assert installer.install_cri_dockerd() == True
    assert installer.install_cri_dockerd() == False

    tarballs = [url for url in downloads.fetched if url.endswith(".tgz")]
    assert tarballs == [
        "https://github.com/Mirantis/cri-dockerd/releases/download/v0.3.9/cri-dockerd-0.3.9.amd64.tgz"
    ]
    binary = paths.host(CRI_DOCKERD_BINARY)
    with open(binary, "rb") as f:
        assert f.read() == b"binary"
    assert os.access(binary, os.X_OK)
    unit = files.read(paths.host("/etc/systemd/system/cri-docker.service"))
    assert "ExecStart=/usr/local/bin/cri-dockerd" in unit


def test_extract_cri_dockerd_missing_binary():
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz"):
        pass
    with pytest.raises(ServiceStartError):
        extract_cri_dockerd(buffer.getvalue())


def test_service_start_failure(files, debian_profile, downloads):
    """서비스 시작 실패는 ServiceStartError"""
    runner = FakeRunner(responses={("systemctl", "restart"): (1, "", "Job for crio.service failed")})
    config = ProvisionConfig(container_runtime=ContainerRuntime.CRIO)
    installer = CrioInstaller(runner, files, AptPackageManager(runner, files, debian_profile), debian_profile, config)

    with pytest.raises(ServiceStartError, match="crio"):
        installer.install()
