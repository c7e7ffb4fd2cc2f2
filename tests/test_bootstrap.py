"""
컨트롤 플레인 초기화 테스트
"""

import os
import stat
import pytest
from k8s_cluster_setup.bootstrap import ClusterBootstrapper
from k8s_cluster_setup.config import ContainerRuntime, NodeRole, ProvisionConfig
from k8s_cluster_setup.orchestrator import StepOutcome, StepSkipped
from k8s_cluster_setup.provisioner import NodeProvisioner
from k8s_cluster_setup.runtime import endpoint_for
from conftest import FakeRunner

JOIN_COMMAND = "kubeadm join 10.0.0.10:6443 --token abcdef.0123456789abcdef --discovery-token-ca-cert-hash sha256:1234"


def write_admin_conf(files, paths):
    files.write(paths.host("/etc/kubernetes/admin.conf"), "apiVersion: v1\nkind: Config\n")


def test_init_command_containerd(runner, files, debian_profile, config):
    """containerd 는 --cri-socket 없이 초기화"""
    bootstrapper = ClusterBootstrapper(runner, files, debian_profile, config)
    bootstrapper.init_cluster(endpoint_for(ContainerRuntime.CONTAINERD))

    assert runner.commands == [[
        "kubeadm", "init",
        "--kubernetes-version=1.32.5",
        "--pod-network-cidr=192.168.0.0/16",
        "--ignore-preflight-errors=NumCPU",
        "--skip-token-print",
    ]]


def test_init_command_crio(runner, files, debian_profile, config):
    bootstrapper = ClusterBootstrapper(runner, files, debian_profile, config)
    cmd = bootstrapper.init_command(endpoint_for(ContainerRuntime.CRIO))
    assert cmd[-2:] == ["--cri-socket", "unix:///var/run/crio/crio.sock"]


def test_init_skipped_when_initialized(runner, files, paths, debian_profile, config):
    """admin.conf 가 있으면 kubeadm init 생략"""
    write_admin_conf(files, paths)
    bootstrapper = ClusterBootstrapper(runner, files, debian_profile, config)

    with pytest.raises(StepSkipped):
        bootstrapper.init_cluster(endpoint_for(ContainerRuntime.CONTAINERD))
    assert not runner.ran("kubeadm", "init")


def test_setup_kubeconfig(runner, files, paths, debian_profile, config):
    """admin.conf -> ~/.kube/config (0600), KUBECONFIG 설정"""
    write_admin_conf(files, paths)
    bootstrapper = ClusterBootstrapper(runner, files, debian_profile, config)

    kubeconfig = bootstrapper.setup_kubeconfig()
    bootstrapper.setup_kubeconfig()

    assert kubeconfig == paths.kubeconfig
    assert stat.S_IMODE(os.stat(kubeconfig).st_mode) == 0o600
    assert runner.env["KUBECONFIG"] == kubeconfig
    assert files.read(paths.bashrc).count("export KUBECONFIG=~/.kube/config") == 1


def test_setup_kubeconfig_dry_run(files, debian_profile, config):
    runner = FakeRunner(dry_run=True)
    assert ClusterBootstrapper(runner, files, debian_profile, config).setup_kubeconfig() == "dry-run"


def test_install_cni_timeout_is_warning(files, debian_profile, config):
    runner = FakeRunner(responses={("kubectl", "-n", "kube-system", "wait"): (1, "", "timed out")})
    bootstrapper = ClusterBootstrapper(runner, files, debian_profile, config)
    assert bootstrapper.install_cni() == "weave applied, not ready yet"


def test_restart_coredns_failure_skips(files, debian_profile, config):
    runner = FakeRunner(responses={("kubectl", "-n", "kube-system", "rollout"): (1, "", "not found")})
    with pytest.raises(StepSkipped):
        ClusterBootstrapper(runner, files, debian_profile, config).restart_coredns()


def test_create_join_command(files, debian_profile, config):
    runner = FakeRunner(responses={("kubeadm", "token", "create"): (0, JOIN_COMMAND + "\n", "")})
    bootstrapper = ClusterBootstrapper(runner, files, debian_profile, config)

    bootstrapper.create_join_command(endpoint_for(ContainerRuntime.DOCKER))

    assert bootstrapper.join_command == JOIN_COMMAND
    assert ["kubeadm", "token", "create", "--print-join-command", "--ttl", "0"] in runner.commands


def test_join_token_after_cni_timeout(files, paths, debian_profile, root_dir):
    """CNI 준비 대기가 실패해도 조인 토큰은 CNI 적용 후 생성"""
    write_admin_conf(files, paths)
    runner = FakeRunner(responses={("kubectl", "-n", "kube-system", "wait"): (1, "", "timed out")})
    config = ProvisionConfig(root_dir=str(root_dir), home_dir="/root", cni_wait_timeout=1)
    provisioner = NodeProvisioner(debian_profile, config, NodeRole.CONTROL_PLANE, runner=runner)

    results = provisioner.orchestrator.run(provisioner.control_plane_steps())

    outcomes = {result.step_name: result.outcome for result in results}
    assert outcomes["cni"] == StepOutcome.SUCCESS
    assert outcomes["join-command"] == StepOutcome.SUCCESS
    apply_index = runner.index_of("kubectl", "apply")
    wait_index = runner.index_of("kubectl", "-n", "kube-system", "wait")
    token_index = runner.index_of("kubeadm", "token", "create")
    assert apply_index < wait_index < token_index
