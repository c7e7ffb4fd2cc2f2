"""
단계 오케스트레이터
정해진 순서로 설치 단계를 실행하고 첫 실패에서 즉시 중단 (롤백 없음)
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .config import ProvisionConfig
from .errors import StepFailedError
from .fingerprint import DistributionFamily, PlatformProfile
from .logger import get_logger

console = Console()


class StepOutcome(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class StepResult:
    """단계 실행 결과 (생성 후 변경 불가)"""
    step_name: str
    outcome: StepOutcome
    detail: str = ""
    duration: float = 0.0


class StepSkipped(Exception):
    """단계 실행 중 이미 완료되었거나 해당 없음을 알림"""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


@dataclass
class Step:
    """설치 단계 정의"""
    name: str
    title: str
    action: Callable[[], Optional[str]]
    families: Optional[Tuple[DistributionFamily, ...]] = None
    condition: Optional[Callable[[ProvisionConfig], bool]] = None
    skip_reason: str = ""

    def applicability(self, profile: PlatformProfile, config: ProvisionConfig) -> Optional[str]:
        """적용 불가 사유 반환 (적용 가능하면 None)"""
        if self.families is not None and profile.distribution_family not in self.families:
            return f"not applicable to {profile.distribution_family.value}"
        if self.condition is not None and not self.condition(config):
            return self.skip_reason or "disabled by configuration"
        return None


class StepOrchestrator:
    """단계 순차 실행기"""

    def __init__(self, profile: PlatformProfile, config: ProvisionConfig):
        self.profile = profile
        self.config = config
        self.logger = get_logger()
        self.results: List[StepResult] = []

    def _record(self, result: StepResult) -> StepResult:
        self.results.append(result)
        return result

    def run(self, steps: Sequence[Step]) -> List[StepResult]:
        """모든 단계 실행

        Raises:
            StepFailedError: 단계 실패 시 (이후 단계는 실행되지 않음)
        """
        total = len(steps)
        self.logger.info(f"Running {total} steps: {', '.join(step.name for step in steps)}")

        for index, step in enumerate(steps, 1):
            reason = step.applicability(self.profile, self.config)
            if reason:
                console.print(f"[dim]- [{index}/{total}] {step.title}: 건너뜀 ({reason})[/dim]")
                self.logger.info(f"Step {step.name}: skipped ({reason})")
                self._record(StepResult(step.name, StepOutcome.SKIPPED, reason))
                continue

            console.print(f"\n[bold cyan]==> [{index}/{total}] {step.title}[/bold cyan]")
            self.logger.set_step(step.name)
            self.logger.info(f"Step {index}/{total}: {step.name}")
            started = time.monotonic()

            try:
                detail = step.action() or ""
            except StepSkipped as e:
                duration = round(time.monotonic() - started, 2)
                console.print(f"[dim]  건너뜀: {e.reason}[/dim]")
                self.logger.info(f"Step {step.name}: skipped ({e.reason})")
                self._record(StepResult(step.name, StepOutcome.SKIPPED, e.reason, duration))
                continue
            except Exception as e:
                duration = round(time.monotonic() - started, 2)
                message = str(e) or e.__class__.__name__
                self._record(StepResult(step.name, StepOutcome.FAILED, message, duration))
                console.print(f"[bold red]✗ {step.title} 실패: {escape(message)}[/bold red]")
                self.logger.error(
                    f"Step {step.name} failed: {message}. "
                    f"Completed {index - 1}/{total} steps, aborting"
                )
                raise StepFailedError(step.name, message, self.results) from e
            finally:
                self.logger.set_step(None)

            duration = round(time.monotonic() - started, 2)
            self._record(StepResult(step.name, StepOutcome.SUCCESS, detail, duration))
            console.print(f"[green]✓ {step.title} 완료[/green]")
            self.logger.info(f"Step {step.name}: success ({duration}s)")

        return self.results

    def show_summary(self):
        """실행 결과 요약 표시"""
        console.print("\n" + "=" * 60)
        console.print("[bold]실행 결과 요약[/bold]")
        console.print("=" * 60 + "\n")

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("단계", style="cyan", width=24)
        table.add_column("상태", width=8)
        table.add_column("시간", width=8)
        table.add_column("메시지", width=40)

        icons = {
            StepOutcome.SUCCESS: "[green]✓[/green]",
            StepOutcome.SKIPPED: "[yellow]-[/yellow]",
            StepOutcome.FAILED: "[red]✗[/red]",
        }
        for result in self.results:
            table.add_row(
                result.step_name,
                icons[result.outcome],
                f"{result.duration}s",
                escape(result.detail[:40])
            )

        console.print(table)

        log_files = self.logger.get_log_files()
        console.print(f"\n[bold]로그 파일:[/bold]")
        console.print(f"  Main: {log_files['main_log']}")
        console.print(f"  Error: {log_files['error_log']}")
