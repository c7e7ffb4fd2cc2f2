"""
CLI 메인 인터페이스
Click 및 Rich 기반 사용자 친화적 CLI
"""

import os
import sys
import click
from typing import Any, Dict, Optional
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.prompt import Confirm

from . import __version__
from .config import CniPlugin, Config, ContainerRuntime, NodeRole, ProvisionConfig
from .errors import (
    ConfigError,
    StepFailedError,
    UnsupportedArchitectureError,
    UnsupportedPlatformError,
    UntestedPlatformError,
)
from .fingerprint import PlatformProfile, detect_platform
from .logger import get_logger, init_logger
from .provisioner import NodeProvisioner

console = Console()

FALLBACK_LOG_DIR = "~/.k8s-cluster-setup/logs"


def common_options(func):
    """master/worker 공통 옵션"""
    options = [
        click.option('--config', '-c', 'config_path', type=click.Path(exists=True), help='설정 파일 경로'),
        click.option('--debug', is_flag=True, help='디버그 모드'),
        click.option('--yes', '-y', 'assume_yes', is_flag=True, help='확인 없이 진행'),
        click.option('--dry-run', is_flag=True, help='명령어를 실행하지 않고 기록만'),
        click.option('--allow-untested', is_flag=True, help='검증되지 않은 OS 버전 허용'),
        click.option('--disable-selinux', is_flag=True, help='SELinux 를 permissive 로 전환 (RHEL 계열)'),
        click.option('--disable-firewall', is_flag=True, help='방화벽 비활성화 (기본: 필요한 포트만 개방)'),
        click.option('--kubernetes-version', help='Kubernetes 버전 (예: 1.32.5)'),
        click.option('--runtime', type=click.Choice([r.value for r in ContainerRuntime]), help='컨테이너 런타임'),
        click.option('--cni', type=click.Choice([c.value for c in CniPlugin]), help='CNI 플러그인 (워커는 방화벽 포트 결정에 사용)'),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def flag(value: bool) -> Optional[bool]:
    """지정되지 않은 플래그는 설정 파일 값을 유지"""
    return True if value else None


def init_logging(cfg: Config, debug: bool):
    """로거 초기화 (로그 디렉토리에 쓸 수 없으면 홈 디렉토리 사용)"""
    try:
        return init_logger(cfg.agent.log_dir, cfg.agent.log_level, debug)
    except PermissionError:
        return init_logger(os.path.expanduser(FALLBACK_LOG_DIR), cfg.agent.log_level, debug)


def load_config(config_path: Optional[str]) -> Config:
    try:
        return Config(config_path)
    except ConfigError as e:
        console.print(f"[red]✗ 설정 파일 오류: {e}[/red]")
        sys.exit(1)


def resolve_config(cfg: Config, overrides: Dict[str, Any]) -> ProvisionConfig:
    try:
        return cfg.resolve(overrides)
    except ConfigError as e:
        console.print(f"[red]✗ 설정 오류: {e}[/red]")
        get_logger().error(f"Invalid configuration: {e}")
        sys.exit(1)


def can_prompt(config: ProvisionConfig) -> bool:
    return not config.assume_yes and sys.stdin.isatty()


def require_root():
    if os.geteuid() != 0:
        console.print("[red]✗ root 권한이 필요합니다. sudo 로 실행하세요.[/red]")
        sys.exit(1)


def fingerprint(config: ProvisionConfig) -> PlatformProfile:
    """호스트 식별 (검증되지 않은 버전은 확인 후 진행)"""
    logger = get_logger()
    try:
        return detect_platform(allow_untested=config.allow_untested)
    except UntestedPlatformError as e:
        console.print(f"[yellow]⚠ {e}[/yellow]")
        if can_prompt(config) and Confirm.ask("검증되지 않은 버전입니다. 계속 진행하시겠습니까?", default=False):
            logger.warning("Continuing on untested platform at user request")
            return detect_platform(allow_untested=True)
        logger.error(str(e))
        sys.exit(1)
    except (UnsupportedPlatformError, UnsupportedArchitectureError) as e:
        console.print(f"[red]✗ {e}[/red]")
        logger.error(str(e))
        sys.exit(1)


def provision(role: NodeRole, config_path: Optional[str], debug: bool, overrides: Dict[str, Any]):
    """master/worker 공통 실행 흐름"""
    cfg = load_config(config_path)
    require_root()
    init_logging(cfg, debug)
    logger = get_logger()
    logger.info(f"Starting {role.value} setup (debug={debug})")

    config = resolve_config(cfg, overrides)
    profile = fingerprint(config)

    if can_prompt(config):
        if not Confirm.ask(f"{profile.pretty_name} 에 {role.value} 노드를 설치합니다. 계속하시겠습니까?", default=True):
            console.print("[yellow]취소되었습니다.[/yellow]")
            logger.info("Cancelled at confirmation prompt")
            sys.exit(0)

    try:
        NodeProvisioner(profile, config, role).run()
    except StepFailedError as e:
        console.print(f"\n[bold red]✗ 설치 실패 ({e.step}): {escape(e.message)}[/bold red]")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]사용자에 의해 중단되었습니다.[/yellow]")
        logger.warning("Execution interrupted by user")
        sys.exit(1)

    console.print("\n" + "=" * 60)
    console.print(f"[bold green]✓ {role.value} 노드 설치 완료![/bold green]")
    console.print("=" * 60)


@click.group()
@click.version_option(version=__version__)
def cli():
    """K8s Cluster Setup

    kubeadm 으로 Kubernetes 컨트롤 플레인 또는 워커 노드를 준비합니다.
    """
    pass


@cli.command()
@common_options
@click.option('--pod-network-cidr', help='Pod 네트워크 CIDR')
def master(config_path, debug, assume_yes, dry_run, allow_untested, disable_selinux, disable_firewall,
           kubernetes_version, runtime, cni, pod_network_cidr):
    """컨트롤 플레인 노드 설치"""
    provision(NodeRole.CONTROL_PLANE, config_path, debug, {
        "assume_yes": flag(assume_yes),
        "dry_run": flag(dry_run),
        "allow_untested": flag(allow_untested),
        "disable_selinux": flag(disable_selinux),
        "disable_firewall": flag(disable_firewall),
        "kubernetes_version": kubernetes_version,
        "container_runtime": runtime,
        "cni_plugin": cni,
        "pod_network_cidr": pod_network_cidr,
    })


@cli.command()
@common_options
@click.option('--master-host', help='컨트롤 플레인 주소')
@click.option('--master-user', help='컨트롤 플레인 SSH 사용자')
@click.option('--copy-kubeconfig/--no-copy-kubeconfig', default=None, help='컨트롤 플레인 kubeconfig 복사')
@click.option('--join-command', help="'kubeadm token create --print-join-command' 출력")
def worker(config_path, debug, assume_yes, dry_run, allow_untested, disable_selinux, disable_firewall,
           kubernetes_version, runtime, cni, master_host, master_user, copy_kubeconfig, join_command):
    """워커 노드 설치"""
    provision(NodeRole.WORKER, config_path, debug, {
        "assume_yes": flag(assume_yes),
        "dry_run": flag(dry_run),
        "allow_untested": flag(allow_untested),
        "disable_selinux": flag(disable_selinux),
        "disable_firewall": flag(disable_firewall),
        "kubernetes_version": kubernetes_version,
        "container_runtime": runtime,
        "cni_plugin": cni,
        "master_host": master_host,
        "master_user": master_user,
        "copy_kubeconfig": copy_kubeconfig,
        "join_command": join_command,
    })


@cli.command()
@click.option('--debug', is_flag=True, help='디버그 모드')
def detect(debug):
    """호스트 운영체제와 아키텍처 확인"""
    init_logging(load_config(None), debug)
    try:
        profile = detect_platform(allow_untested=True)
    except (UnsupportedPlatformError, UnsupportedArchitectureError) as e:
        console.print(f"[red]✗ {e}[/red]")
        sys.exit(1)

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("항목", style="cyan")
    table.add_column("값")
    table.add_row("배포판", profile.distribution_id)
    table.add_row("버전", profile.version_tag or "-")
    table.add_row("계열", profile.distribution_family.value)
    table.add_row("아키텍처", profile.cpu_arch_tag)
    table.add_row("코드네임", profile.codename or "-")
    table.add_row("검증 여부", "[yellow]미검증[/yellow]" if profile.untested else "[green]검증됨[/green]")
    console.print(table)


@cli.command()
@click.argument('output', type=click.Path(), default='./config.yaml')
def init(output):
    """샘플 설정 파일 생성"""
    if os.path.exists(output):
        console.print(f"[yellow]⚠ {output} 파일을 덮어씁니다.[/yellow]")
    Config.create_sample(output)
    console.print(f"[green]✓ 샘플 설정 파일 생성: {output}[/green]")
    console.print(f"[cyan]설정 파일을 편집한 후 다음 명령어로 실행하세요:[/cyan]")
    console.print(f"[cyan]  k8s-cluster-setup master --config {output}[/cyan]")


@cli.command()
@click.option('--config', '-c', 'config_path', type=click.Path(exists=True), help='설정 파일 경로')
def validate(config_path):
    """설정 파일 유효성 검사"""
    try:
        config = Config(config_path).resolve()
    except ConfigError as e:
        console.print(f"[red]✗ 설정 파일 오류: {e}[/red]")
        sys.exit(1)

    console.print("[green]✓ 설정 파일이 유효합니다.[/green]")

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("항목", style="cyan")
    table.add_column("값")

    table.add_row("Kubernetes 버전", config.kubernetes_version)
    table.add_row("컨테이너 런타임", config.container_runtime.value)
    table.add_row("CNI 플러그인", config.cni_plugin.value)
    table.add_row("Pod 네트워크 CIDR", config.pod_network_cidr)
    table.add_row("CNI 대기 시간", f"{config.cni_wait_timeout}s")
    table.add_row("SELinux 비활성화", "예" if config.disable_selinux else "아니오")
    table.add_row("방화벽 비활성화", "예" if config.disable_firewall else "아니오")
    table.add_row("컨트롤 플레인", config.master_host or "[yellow]미설정[/yellow]")
    table.add_row("조인 명령어", "설정됨" if config.join_command else "[yellow]미설정[/yellow]")

    console.print(table)


def main():
    """메인 엔트리 포인트"""
    cli()


if __name__ == '__main__':
    main()
