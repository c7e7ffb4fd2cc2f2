"""
설정 관리 모듈
YAML/JSON 설정 파일, 환경 변수, CLI 옵션을 하나의 불변 설정으로 해석
"""

import os
import re
import ipaddress
import yaml
import json
from jinja2 import Template
from enum import Enum
from typing import Dict, Any, Optional, Mapping
from dataclasses import dataclass, asdict

from .errors import ConfigError


class ContainerRuntime(str, Enum):
    """지원 컨테이너 런타임"""
    CONTAINERD = "containerd"
    CRIO = "crio"
    DOCKER = "docker"


class NodeRole(str, Enum):
    """노드 역할"""
    CONTROL_PLANE = "control-plane"
    WORKER = "worker"


class CniPlugin(str, Enum):
    """지원 CNI 플러그인"""
    WEAVE = "weave"
    CALICO = "calico"
    FLANNEL = "flannel"
    CILIUM = "cilium"


DEFAULT_KUBERNETES_VERSION = "1.32.5"
DEFAULT_POD_NETWORK_CIDR = "192.168.0.0/16"
DEFAULT_CNI_WAIT_TIMEOUT = 300

# 환경 변수 -> (섹션, 키)
ENV_OVERRIDES = {
    "KUBE_VERSION": ("cluster", "kubernetes_version"),
    "CONTAINER_RUNTIME": ("cluster", "container_runtime"),
    "CNI_PLUGIN": ("cluster", "cni_plugin"),
    "POD_NETWORK_CIDR": ("cluster", "pod_network_cidr"),
}

_VERSION_RE = re.compile(r"^\d+\.\d+(\.\d+)?$")


@dataclass
class ClusterConfig:
    """클러스터 설정"""
    kubernetes_version: str = DEFAULT_KUBERNETES_VERSION
    container_runtime: str = ContainerRuntime.CONTAINERD.value
    cni_plugin: str = CniPlugin.WEAVE.value
    pod_network_cidr: str = DEFAULT_POD_NETWORK_CIDR
    cni_wait_timeout: int = DEFAULT_CNI_WAIT_TIMEOUT


@dataclass
class HostConfig:
    """호스트 설정"""
    root_dir: str = "/"
    home_dir: str = "~"
    allow_untested: bool = False


@dataclass
class SecurityConfig:
    """보안 설정 (기본값은 보안 기능 유지)"""
    disable_selinux: bool = False
    disable_firewall: bool = False


@dataclass
class JoinConfig:
    """워커 조인 설정"""
    master_host: str = ""
    master_user: str = "root"
    copy_kubeconfig: bool = False
    join_command: str = ""


@dataclass
class AgentConfig:
    """실행 설정"""
    log_dir: str = "/var/log/k8s-cluster-setup"
    log_level: str = "INFO"
    assume_yes: bool = False
    dry_run: bool = False


@dataclass(frozen=True)
class ProvisionConfig:
    """한 번의 실행 동안 변하지 않는 해석된 설정"""
    kubernetes_version: str = DEFAULT_KUBERNETES_VERSION
    container_runtime: ContainerRuntime = ContainerRuntime.CONTAINERD
    cni_plugin: CniPlugin = CniPlugin.WEAVE
    pod_network_cidr: str = DEFAULT_POD_NETWORK_CIDR
    cni_wait_timeout: int = DEFAULT_CNI_WAIT_TIMEOUT
    root_dir: str = "/"
    home_dir: str = "/root"
    allow_untested: bool = False
    disable_selinux: bool = False
    disable_firewall: bool = False
    master_host: str = ""
    master_user: str = "root"
    copy_kubeconfig: bool = False
    join_command: str = ""
    assume_yes: bool = False
    dry_run: bool = False

    @property
    def kubernetes_minor(self) -> str:
        """패키지 저장소 경로에 쓰이는 MAJOR.MINOR"""
        return ".".join(self.kubernetes_version.split(".")[:2])


def _parse_enum(enum_cls, value, name: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ConfigError(f"Invalid {name} '{value}' (allowed: {allowed})")


def _parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "y", "on")


def validate_kubernetes_version(version: str) -> str:
    version = str(version).strip().lstrip("v")
    if not _VERSION_RE.match(version):
        raise ConfigError(f"Invalid kubernetes version '{version}' (expected MAJOR.MINOR[.PATCH])")
    return version


def validate_cidr(cidr: str) -> str:
    try:
        ipaddress.ip_network(str(cidr).strip())
    except ValueError as e:
        raise ConfigError(f"Invalid pod network CIDR '{cidr}': {e}")
    return str(cidr).strip()


class Config:
    """전체 설정 관리 클래스"""

    DEFAULT_CONFIG_PATHS = [
        "/etc/k8s-cluster-setup/config.yaml",
        "~/.k8s-cluster-setup/config.yaml",
        "./config.yaml",
    ]

    SECTIONS = ("cluster", "host", "security", "join", "agent")

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path
        self.cluster = ClusterConfig()
        self.host = HostConfig()
        self.security = SecurityConfig()
        self.join = JoinConfig()
        self.agent = AgentConfig()

        if config_path:
            self.load(config_path)
        else:
            self._load_from_default_paths()

    def _load_from_default_paths(self):
        """기본 경로에서 설정 파일 로드"""
        for path in self.DEFAULT_CONFIG_PATHS:
            expanded_path = os.path.expanduser(path)
            if os.path.exists(expanded_path):
                self.load(expanded_path)
                return

    def load(self, path: str):
        """설정 파일 로드"""
        path = os.path.expanduser(path)
        if not os.path.exists(path):
            return

        with open(path, 'r', encoding='utf-8') as f:
            try:
                if path.endswith('.json'):
                    data = json.load(f)
                else:
                    data = yaml.safe_load(f) or {}
            except (yaml.YAMLError, json.JSONDecodeError) as e:
                raise ConfigError(f"Cannot parse config file {path}: {e}")

        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")

        self._update_from_dict(data)
        self.config_path = path

    def _update_from_dict(self, data: Dict[str, Any]):
        """딕셔너리에서 설정 업데이트"""
        for section_name in self.SECTIONS:
            values = data.get(section_name) or {}
            if not isinstance(values, dict):
                raise ConfigError(f"Config section '{section_name}' must be a mapping")
            section = getattr(self, section_name)
            for key, value in values.items():
                if hasattr(section, key):
                    setattr(section, key, value)

    def apply_env(self, environ: Optional[Mapping[str, str]] = None):
        """환경 변수 덮어쓰기 (KUBE_VERSION, CONTAINER_RUNTIME, ...)"""
        environ = os.environ if environ is None else environ
        for env_name, (section_name, key) in ENV_OVERRIDES.items():
            value = environ.get(env_name)
            if value:
                setattr(getattr(self, section_name), key, value)

    def resolve(self, overrides: Optional[Dict[str, Any]] = None,
                environ: Optional[Mapping[str, str]] = None) -> ProvisionConfig:
        """기본값 < 설정 파일 < 환경 변수 < CLI 옵션 순으로 해석하여 불변 설정 생성"""
        self.apply_env(environ)

        merged: Dict[str, Any] = {}
        for section_name in self.SECTIONS:
            merged.update(asdict(getattr(self, section_name)))
        merged.pop("log_dir", None)
        merged.pop("log_level", None)

        for key, value in (overrides or {}).items():
            if value is not None:
                merged[key] = value

        try:
            timeout = int(merged["cni_wait_timeout"])
        except (TypeError, ValueError):
            raise ConfigError(f"Invalid cni_wait_timeout '{merged['cni_wait_timeout']}'")
        if timeout <= 0:
            raise ConfigError("cni_wait_timeout must be positive")

        return ProvisionConfig(
            kubernetes_version=validate_kubernetes_version(merged["kubernetes_version"]),
            container_runtime=_parse_enum(ContainerRuntime, merged["container_runtime"], "container runtime"),
            cni_plugin=_parse_enum(CniPlugin, merged["cni_plugin"], "CNI plugin"),
            pod_network_cidr=validate_cidr(merged["pod_network_cidr"]),
            cni_wait_timeout=timeout,
            root_dir=str(merged["root_dir"]) or "/",
            home_dir=os.path.expanduser(str(merged["home_dir"])),
            allow_untested=_parse_bool(merged["allow_untested"]),
            disable_selinux=_parse_bool(merged["disable_selinux"]),
            disable_firewall=_parse_bool(merged["disable_firewall"]),
            master_host=str(merged["master_host"] or "").strip(),
            master_user=str(merged["master_user"] or "root").strip(),
            copy_kubeconfig=_parse_bool(merged["copy_kubeconfig"]),
            join_command=str(merged["join_command"] or "").strip(),
            assume_yes=_parse_bool(merged["assume_yes"]),
            dry_run=_parse_bool(merged["dry_run"]),
        )

    def to_dict(self) -> Dict[str, Any]:
        """딕셔너리로 변환"""
        return {name: asdict(getattr(self, name)) for name in self.SECTIONS}

    def save(self, path: Optional[str] = None):
        """설정 파일 저장"""
        save_path = path or self.config_path or self.DEFAULT_CONFIG_PATHS[0]
        save_path = os.path.expanduser(save_path)

        directory = os.path.dirname(save_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        with open(save_path, 'w', encoding='utf-8') as f:
            if save_path.endswith('.json'):
                json.dump(self.to_dict(), f, indent=2)
            else:
                yaml.dump(self.to_dict(), f, default_flow_style=False, allow_unicode=True)

    @staticmethod
    def create_sample(output_path: str):
        """샘플 설정 파일 생성"""
        template = """# K8s Cluster Setup Configuration File
# 환경 변수(KUBE_VERSION, CONTAINER_RUNTIME, CNI_PLUGIN, POD_NETWORK_CIDR)가
# 이 파일의 값보다 우선합니다.

# 클러스터 설정
cluster:
  kubernetes_version: "{{ cluster.kubernetes_version }}"
  container_runtime: "{{ cluster.container_runtime }}"  # containerd, crio, docker
  cni_plugin: "{{ cluster.cni_plugin }}"  # weave, calico, flannel, cilium (컨트롤 플레인 전용)
  pod_network_cidr: "{{ cluster.pod_network_cidr }}"
  cni_wait_timeout: {{ cluster.cni_wait_timeout }}  # CNI 준비 대기 시간 (초)

# 호스트 설정
host:
  root_dir: "/"
  home_dir: "~"
  allow_untested: false  # 검증되지 않은 OS 버전 허용

# 보안 설정 (학습용 환경에서만 true 권장)
security:
  disable_selinux: false
  disable_firewall: false  # false면 필요한 포트만 개방

# 워커 조인 설정
join:
  master_host: ""  # 컨트롤 플레인 IP
  master_user: "root"
  copy_kubeconfig: false  # scp로 admin.conf 복사
  join_command: ""  # 'kubeadm token create --print-join-command' 출력

# 실행 설정
agent:
  log_dir: "{{ agent.log_dir }}"
  log_level: "INFO"  # DEBUG, INFO, WARNING, ERROR
  assume_yes: false
  dry_run: false
"""

        directory = os.path.dirname(output_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(output_path, 'w', encoding='utf-8') as f:
            f.write(Template(template, keep_trailing_newline=True).render(
                cluster=ClusterConfig(), agent=AgentConfig()
            ))

