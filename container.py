from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Dict, List, Optional

from harness_errors import SetupError

DOCKER = "docker"
CONTAINER_ROOT = "/filler"
SOLUTION_MOUNT = "/filler/solution"
SCRATCH_MOUNT = "/filler/scratch"


class ContainerSession:
    """One long-lived container that every match is exec'd into.

    Use as a context manager; the container is stopped and removed on exit
    whatever happened inside the block.
    """

    def __init__(self, image: str, mounts: Optional[Dict[Path, str]] = None, workdir: str = CONTAINER_ROOT):
        self.image = image
        self.mounts = mounts or {}
        self.workdir = workdir
        self.container_id: Optional[str] = None

    def run_command(self) -> List[str]:
        cmd = [DOCKER, "run", "-d"]
        for host, target in self.mounts.items():
            cmd += ["-v", f"{Path(host).resolve()}:{target}"]
        cmd += [self.image, "sh", "-c", "tail -f /dev/null"]
        return cmd

    def start(self) -> str:
        try:
            proc = subprocess.run(self.run_command(), stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True)
        except OSError as e:
            raise SetupError(f"cannot run {DOCKER}: {e}") from e
        if proc.returncode != 0 or not proc.stdout.strip():
            raise SetupError(f"container from image {self.image!r} failed to start: {proc.stderr.strip()}")
        self.container_id = proc.stdout.strip()
        print(f"[container] Started: {self.container_id[:12]}", flush=True)
        return self.container_id

    def exec_prefix(self) -> List[str]:
        if self.container_id is None:
            raise SetupError("container not started")
        return [DOCKER, "exec", "-w", self.workdir, self.container_id]

    def require_executables(self, paths: List[str]) -> None:
        """Raise SetupError unless every path is executable inside the container."""
        missing = []
        for path in paths:
            proc = subprocess.run(
                self.exec_prefix() + ["test", "-x", path],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
            if proc.returncode != 0:
                missing.append(path)
        if missing:
            raise SetupError(f"not executable in container {self.image!r}: {', '.join(missing)}")

    def stop(self) -> None:
        if self.container_id is None:
            return
        print("[container] Cleaning up container...", flush=True)
        for action in ("stop", "rm"):
            subprocess.run(
                [DOCKER, action, self.container_id],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        self.container_id = None

    def __enter__(self) -> "ContainerSession":
        self.start()
        return self

    def __exit__(self, *exc) -> None:
        self.stop()
