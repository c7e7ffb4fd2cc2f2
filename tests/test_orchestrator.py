"""
단계 오케스트레이터 테스트
"""

import dataclasses
import pytest
from k8s_cluster_setup.config import ProvisionConfig
from k8s_cluster_setup.errors import CommandError, StepFailedError
from k8s_cluster_setup.fingerprint import DistributionFamily
from k8s_cluster_setup.orchestrator import Step, StepOrchestrator, StepOutcome, StepResult, StepSkipped


def make_steps(count, calls, fail_at=None):
    steps = []
    for number in range(1, count + 1):
        def action(number=number):
            calls.append(number)
            if number == fail_at:
                raise CommandError(["false"], 1, "boom")
            return f"done {number}"
        steps.append(Step(f"step-{number}", f"Step {number}", action))
    return steps


def test_all_steps_succeed(debian_profile, config):
    calls = []
    orchestrator = StepOrchestrator(debian_profile, config)
    results = orchestrator.run(make_steps(4, calls))

    assert calls == [1, 2, 3, 4]
    assert [r.outcome for r in results] == [StepOutcome.SUCCESS] * 4
    assert results[0].detail == "done 1"


@pytest.mark.parametrize("fail_at", [1, 3, 5])
def test_fail_fast(debian_profile, config, fail_at):
    """N 번째 단계 실패 시 결과는 정확히 N 개, 이후 단계는 실행되지 않음"""
    calls = []
    orchestrator = StepOrchestrator(debian_profile, config)

    with pytest.raises(StepFailedError) as exc_info:
        orchestrator.run(make_steps(5, calls, fail_at=fail_at))

    assert calls == list(range(1, fail_at + 1))
    assert len(orchestrator.results) == fail_at
    assert orchestrator.results[-1].outcome == StepOutcome.FAILED
    assert "boom" in orchestrator.results[-1].detail
    assert exc_info.value.step == f"step-{fail_at}"
    assert len(exc_info.value.results) == fail_at


def test_action_skip(debian_profile, config):
    """StepSkipped 는 건너뜀으로 기록하고 계속 진행"""
    def already_done():
        raise StepSkipped("already initialized")

    calls = []
    steps = [Step("init", "Init", already_done)] + make_steps(1, calls)
    results = StepOrchestrator(debian_profile, config).run(steps)

    assert results[0].outcome == StepOutcome.SKIPPED
    assert results[0].detail == "already initialized"
    assert calls == [1]


def test_family_applicability(debian_profile, rhel_profile, config):
    """배포판 계열이 맞지 않으면 실행하지 않음"""
    calls = []
    step = Step("selinux", "SELinux", lambda: calls.append("ran"), families=(DistributionFamily.RHEL,))

    results = StepOrchestrator(debian_profile, config).run([step])
    assert results[0].outcome == StepOutcome.SKIPPED
    assert "debian" in results[0].detail
    assert calls == []

    results = StepOrchestrator(rhel_profile, config).run([step])
    assert results[0].outcome == StepOutcome.SUCCESS
    assert calls == ["ran"]


def test_condition_applicability(debian_profile):
    """설정 조건이 거짓이면 skip_reason 으로 건너뜀"""
    step = Step(
        "firewall-off", "Firewall", lambda: "off",
        condition=lambda config: config.disable_firewall,
        skip_reason="not requested",
    )

    results = StepOrchestrator(debian_profile, ProvisionConfig()).run([step])
    assert results[0].outcome == StepOutcome.SKIPPED
    assert results[0].detail == "not requested"

    results = StepOrchestrator(debian_profile, ProvisionConfig(disable_firewall=True)).run([step])
    assert results[0].outcome == StepOutcome.SUCCESS


def test_step_result_is_frozen():
    result = StepResult("swap", StepOutcome.SUCCESS)
    with pytest.raises(dataclasses.FrozenInstanceError):
        result.outcome = StepOutcome.FAILED


def test_show_summary(debian_profile, config):
    orchestrator = StepOrchestrator(debian_profile, config)
    orchestrator.run(make_steps(2, []))
    orchestrator.show_summary()
