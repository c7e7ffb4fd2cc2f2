"""
호스트 파일 관리 모듈
템플릿 렌더링 결과를 원자적으로 기록하여 재실행해도 결과가 같도록 유지
"""

import os
import re
import tempfile
from typing import Optional

from .logger import get_logger

BLOCK_BEGIN = "# BEGIN k8s-cluster-setup {name}"
BLOCK_END = "# END k8s-cluster-setup {name}"


class HostPaths:
    """root_dir 기준 호스트 경로 계산"""

    def __init__(self, root_dir: str = "/", home_dir: str = "/root"):
        self.root_dir = root_dir or "/"
        self.home_dir = home_dir

    def host(self, path: str) -> str:
        """절대 경로를 root_dir 아래 경로로 변환"""
        return os.path.join(self.root_dir, path.lstrip("/"))

    def home(self, relative: str) -> str:
        """홈 디렉토리 기준 경로"""
        return self.host(os.path.join(self.home_dir, relative))

    @property
    def kubeconfig(self) -> str:
        return self.home(".kube/config")

    @property
    def bashrc(self) -> str:
        return self.home(".bashrc")


def render_managed_block(existing: str, name: str, body: str) -> str:
    """관리 블록을 교체하거나 끝에 추가한 전체 내용 반환"""
    begin = BLOCK_BEGIN.format(name=name)
    end = BLOCK_END.format(name=name)
    block = f"{begin}\n{body.rstrip()}\n{end}\n"

    pattern = re.compile(re.escape(begin) + r"\n.*?" + re.escape(end) + r"\n?", re.DOTALL)
    if pattern.search(existing):
        return pattern.sub(lambda _: block, existing, count=1)

    if existing and not existing.endswith("\n"):
        existing += "\n"
    return existing + block


def comment_swap_entries(fstab: str) -> str:
    """fstab 의 swap 항목 주석 처리"""
    lines = []
    for line in fstab.splitlines():
        stripped = line.strip()
        fields = stripped.split()
        if stripped and not stripped.startswith("#") and len(fields) >= 3 and fields[2] == "swap":
            line = "#" + line
        lines.append(line)
    result = "\n".join(lines)
    return result + "\n" if fstab.endswith("\n") else result


def set_selinux_mode(config: str, mode: str = "permissive") -> str:
    """SELINUX=enforcing 을 지정한 모드로 변경"""
    return re.sub(r"^SELINUX=enforcing[ \t]*$", f"SELINUX={mode}", config, flags=re.MULTILINE)


class FileWriter:
    """idempotent 파일 기록"""

    def __init__(self, paths: HostPaths, dry_run: bool = False):
        self.paths = paths
        self.dry_run = dry_run
        self.logger = get_logger()

    def read(self, path: str) -> Optional[str]:
        if not os.path.exists(path):
            return None
        with open(path, "r", encoding="utf-8") as f:
            return f.read()

    def write(self, path: str, content: str, mode: Optional[int] = None) -> bool:
        """내용이 다를 때만 원자적으로 기록, 변경 여부 반환"""
        if self.read(path) == content:
            if mode is not None and not self.dry_run:
                os.chmod(path, mode)
            self.logger.debug(f"{path} is up to date")
            return False

        if self.dry_run:
            self.logger.info(f"[dry-run] write {path}")
            return True

        directory = os.path.dirname(path)
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".tmp-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            if mode is not None:
                os.chmod(tmp_path, mode)
            os.replace(tmp_path, path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

        self.logger.debug(f"Wrote {path}")
        return True

    def write_bytes(self, path: str, data: bytes, mode: Optional[int] = None) -> bool:
        """바이너리 파일 기록"""
        if self.dry_run:
            self.logger.info(f"[dry-run] write {path}")
            return True

        directory = os.path.dirname(path)
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            if mode is not None:
                os.chmod(tmp_path, mode)
            os.replace(tmp_path, path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

        self.logger.debug(f"Wrote {path}")
        return True

    def ensure_block(self, path: str, name: str, body: str) -> bool:
        """관리 블록 보장 (반복 실행해도 한 번만 존재)"""
        existing = self.read(path) or ""
        return self.write(path, render_managed_block(existing, name, body))

    def transform(self, path: str, func) -> bool:
        """파일이 있으면 func 로 변환한 결과 기록"""
        existing = self.read(path)
        if existing is None:
            return False
        return self.write(path, func(existing))
