"""
호스트 식별 모듈
/etc/os-release 와 CPU 아키텍처로 플랫폼 프로필 결정
"""

import os
import platform
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple
from rich.console import Console

from .errors import UnsupportedPlatformError, UntestedPlatformError, UnsupportedArchitectureError
from .logger import get_logger

console = Console()


class DistributionFamily(str, Enum):
    """배포판 계열"""
    DEBIAN = "debian"
    RHEL = "rhel"


@dataclass(frozen=True)
class DistributionSupport:
    """배포판별 지원 정보"""
    family: DistributionFamily
    tested_versions: Tuple[str, ...] = ()
    match_major: bool = True
    experimental: bool = False


SUPPORTED_DISTRIBUTIONS: Dict[str, DistributionSupport] = {
    "ubuntu": DistributionSupport(DistributionFamily.DEBIAN, ("20.04", "22.04", "24.04"), match_major=False),
    "debian": DistributionSupport(DistributionFamily.DEBIAN, ("11", "12")),
    "centos": DistributionSupport(DistributionFamily.RHEL, ("7", "8", "9")),
    "rhel": DistributionSupport(DistributionFamily.RHEL, ("7", "8", "9")),
    "rocky": DistributionSupport(DistributionFamily.RHEL, ("7", "8", "9")),
    "almalinux": DistributionSupport(DistributionFamily.RHEL, ("7", "8", "9")),
    "fedora": DistributionSupport(DistributionFamily.RHEL, experimental=True),
}

ARCHITECTURES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "arm",
}


@dataclass(frozen=True)
class PlatformProfile:
    """해석된 호스트 플랫폼"""
    distribution_family: DistributionFamily
    distribution_id: str
    version_tag: str
    cpu_arch_tag: str
    pretty_name: str = ""
    codename: str = ""
    untested: bool = False

    @property
    def is_debian(self) -> bool:
        return self.distribution_family == DistributionFamily.DEBIAN

    @property
    def is_rhel(self) -> bool:
        return self.distribution_family == DistributionFamily.RHEL

    @property
    def major_version(self) -> str:
        return self.version_tag.split(".")[0]


def parse_os_release(content: str) -> Dict[str, str]:
    """os-release 형식(KEY=value) 파싱"""
    values = {}
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
            value = value[1:-1]
        values[key.strip()] = value
    return values


def is_tested_version(support: DistributionSupport, version: str) -> bool:
    """검증된 버전인지 확인 (fedora 처럼 목록이 없으면 항상 허용)"""
    if not support.tested_versions:
        return True
    candidate = version.split(".")[0] if support.match_major else version
    return candidate in support.tested_versions


def detect_architecture(machine: Optional[str] = None) -> str:
    """uname -m 값을 플랫폼 태그(amd64/arm64/arm)로 변환"""
    machine = machine or platform.machine()
    tag = ARCHITECTURES.get(machine)
    if tag is None:
        raise UnsupportedArchitectureError(f"Unsupported architecture: {machine}")
    return tag


def resolve_platform(os_release: Dict[str, str], machine: str, allow_untested: bool = False) -> PlatformProfile:
    """os-release 값과 아키텍처로 PlatformProfile 생성"""
    logger = get_logger()
    distribution_id = os_release.get("ID", "").strip().lower()
    version = os_release.get("VERSION_ID", "").strip()
    pretty_name = os_release.get("PRETTY_NAME", distribution_id)

    support = SUPPORTED_DISTRIBUTIONS.get(distribution_id)
    if support is None:
        supported = ", ".join(sorted(SUPPORTED_DISTRIBUTIONS))
        raise UnsupportedPlatformError(f"Unsupported OS: {distribution_id or 'unknown'} (supported: {supported})")

    untested = not is_tested_version(support, version)
    if untested:
        recommended = ", ".join(support.tested_versions)
        logger.warning(f"{pretty_name} is not officially tested. Recommended: {recommended}")
        if not allow_untested:
            raise UntestedPlatformError(
                f"{pretty_name} ({version}) is not officially tested; use --allow-untested to continue"
            )

    if support.experimental:
        logger.warning(f"{pretty_name} support is experimental")

    return PlatformProfile(
        distribution_family=support.family,
        distribution_id=distribution_id,
        version_tag=version,
        cpu_arch_tag=detect_architecture(machine),
        pretty_name=pretty_name,
        codename=os_release.get("VERSION_CODENAME", "") or os_release.get("UBUNTU_CODENAME", ""),
        untested=untested,
    )


def detect_platform(os_release_path: str = "/etc/os-release",
                    machine: Optional[str] = None,
                    allow_untested: bool = False) -> PlatformProfile:
    """호스트 운영체제와 아키텍처 감지"""
    logger = get_logger()
    console.print("\n[bold cyan]운영체제 감지 중...[/bold cyan]")

    if not os.path.exists(os_release_path):
        raise UnsupportedPlatformError(f"Cannot detect OS: {os_release_path} not found")

    with open(os_release_path, "r", encoding="utf-8") as f:
        os_release = parse_os_release(f.read())

    profile = resolve_platform(os_release, machine or platform.machine(), allow_untested)

    console.print(f"  OS: {profile.pretty_name}")
    console.print(f"  계열: {profile.distribution_family.value}")
    console.print(f"  아키텍처: {profile.cpu_arch_tag}")
    console.print(f"[green]✓ 운영체제 감지 완료: {profile.distribution_id} ({profile.distribution_family.value})[/green]")
    logger.info(
        f"Detected {profile.distribution_id} {profile.version_tag} "
        f"({profile.distribution_family.value}, {profile.cpu_arch_tag})"
    )
    return profile
