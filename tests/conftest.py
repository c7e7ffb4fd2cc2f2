"""
공통 테스트 fixture
"""

import subprocess
from types import SimpleNamespace

import pytest

from k8s_cluster_setup import cni, packages, runtime
from k8s_cluster_setup.config import ProvisionConfig
from k8s_cluster_setup.errors import CommandError
from k8s_cluster_setup.files import FileWriter, HostPaths
from k8s_cluster_setup.fingerprint import DistributionFamily, PlatformProfile
from k8s_cluster_setup.logger import init_logger


class FakeRunner:
    """명령어를 실행하지 않고 기록하는 CommandRunner"""

    def __init__(self, dry_run=False, responses=None, available=("iptables",)):
        self.dry_run = dry_run
        self.env = {}
        self.commands = []
        self.inputs = []
        self.responses = dict(responses or {})
        self.available = set(available)

    def set_env(self, key, value):
        self.env[key] = value

    def response_for(self, cmd):
        for prefix, response in self.responses.items():
            if tuple(cmd[:len(prefix)]) == prefix:
                return response
        return 0, "", ""

    def run(self, cmd, check=True, timeout=None, input=None, mutating=True):
        cmd = [str(part) for part in cmd]
        self.commands.append(cmd)
        self.inputs.append(input)
        returncode, stdout, stderr = self.response_for(cmd)
        if returncode != 0 and check:
            raise CommandError(cmd, returncode, stderr)
        return subprocess.CompletedProcess(cmd, returncode, stdout, stderr)

    def succeeds(self, cmd, timeout=None):
        return self.run(cmd, check=False, timeout=timeout, mutating=False).returncode == 0

    def which(self, name):
        return name in self.available

    def ran(self, *prefix):
        return any(tuple(cmd[:len(prefix)]) == prefix for cmd in self.commands)

    def index_of(self, *prefix):
        for index, cmd in enumerate(self.commands):
            if tuple(cmd[:len(prefix)]) == prefix:
                return index
        return -1


@pytest.fixture(autouse=True)
def logger(tmp_path):
    """테스트마다 임시 디렉토리에 로그 기록"""
    return init_logger(str(tmp_path / "logs"), "DEBUG", False)


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def root_dir(tmp_path):
    root = tmp_path / "root"
    root.mkdir()
    return root


@pytest.fixture
def paths(root_dir):
    return HostPaths(str(root_dir), "/root")


@pytest.fixture
def files(paths):
    return FileWriter(paths)


@pytest.fixture
def config(root_dir):
    return ProvisionConfig(root_dir=str(root_dir), home_dir="/root")


@pytest.fixture
def debian_profile():
    return PlatformProfile(
        distribution_family=DistributionFamily.DEBIAN,
        distribution_id="ubuntu",
        version_tag="22.04",
        cpu_arch_tag="amd64",
        pretty_name="Ubuntu 22.04.4 LTS",
        codename="jammy",
    )


@pytest.fixture
def rhel_profile():
    return PlatformProfile(
        distribution_family=DistributionFamily.RHEL,
        distribution_id="rocky",
        version_tag="9.3",
        cpu_arch_tag="amd64",
        pretty_name="Rocky Linux 9.3 (Blue Onyx)",
    )


@pytest.fixture
def downloads(monkeypatch):
    """HTTP 다운로드 대체 (URL 접미사별 응답 지정)"""
    fetched = []
    payloads = {}

    def fake_fetch(url, timeout=60):
        fetched.append(url)
        for suffix, data in payloads.items():
            if url.endswith(suffix):
                return data
        return b"downloaded\n"

    for module in (packages, runtime, cni):
        monkeypatch.setattr(module, "fetch", fake_fetch)
    return SimpleNamespace(fetched=fetched, payloads=payloads)
