from __future__ import annotations

import contextlib
import os
import signal
import subprocess
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional, Sequence

from harness_errors import HarnessError, MatchProcessError, MatchTimeout
from map_mutator import mutate, render
from outcome import classify
from start_positions import Coordinate

TIMEOUT, ERROR = "timeout", "error"

DEFAULT_TIMEOUT = 300.0


@dataclass
class MatchSpec:
    opponent: str
    opponent_path: str
    map_name: str
    rep: int
    pos_a: Coordinate
    pos_b: Coordinate


@dataclass
class MatchResult:
    output: str
    returncode: Optional[int]
    outcome: str  # win / loss / undetermined / timeout / error
    elapsed: float = 0.0
    detail: str = ""
    timeout: float = DEFAULT_TIMEOUT

    def failure(self) -> Optional[HarnessError]:
        if self.outcome == TIMEOUT:
            return MatchTimeout(self.timeout, self.output)
        if self.outcome == ERROR:
            return MatchProcessError(self.returncode, self.detail, self.output)
        return None


def _kill_group(proc: subprocess.Popen) -> None:
    # The engine runs in its own session, so this also takes down the bots it spawned
    if hasattr(os, "killpg"):
        with contextlib.suppress(ProcessLookupError, PermissionError):
            os.killpg(proc.pid, signal.SIGKILL)
    with contextlib.suppress(ProcessLookupError):
        proc.kill()


def engine_command(
    engine: str,
    map_path: str,
    program_a: str,
    program_b: str,
    prefix: Sequence[str] = (),
    inner_timeout: Optional[float] = None,
) -> list:
    # inner_timeout wraps the engine in coreutils timeout where the prefix
    # (docker exec) would otherwise leave it running after we give up
    wrap = ["timeout", "-s", "KILL", f"{inner_timeout:g}"] if inner_timeout else []
    return [*prefix, *wrap, engine, "-f", map_path, "-p1", program_a, "-p2", program_b]


def run_match(
    engine: str,
    map_path: str,
    program_a: str,
    program_b: str,
    timeout: float = DEFAULT_TIMEOUT,
    prefix: Sequence[str] = (),
    cwd: Optional[Path] = None,
    inner_timeout: Optional[float] = None,
) -> MatchResult:
    """Run one game and capture stdout+stderr as a single interleaved blob.

    Timeouts and launch failures come back as results, never as exceptions,
    so the caller can keep going through the matrix. On timeout the whole
    process group is killed, not just the engine.
    """
    cmd = engine_command(engine, map_path, program_a, program_b, prefix, inner_timeout)
    start = time.monotonic()
    try:
        proc = subprocess.Popen(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
            cwd=cwd,
            start_new_session=True,
        )
    except OSError as e:
        return MatchResult(
            output="",
            returncode=None,
            outcome=ERROR,
            elapsed=time.monotonic() - start,
            detail=str(e),
            timeout=timeout,
        )

    try:
        output, _ = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        _kill_group(proc)
        output, _ = proc.communicate()
        return MatchResult(
            output=output or "",
            returncode=None,
            outcome=TIMEOUT,
            elapsed=time.monotonic() - start,
            timeout=timeout,
        )
    except BaseException:
        _kill_group(proc)
        proc.wait()
        raise

    elapsed = time.monotonic() - start
    if proc.returncode != 0:
        return MatchResult(output, proc.returncode, ERROR, elapsed, timeout=timeout)
    return MatchResult(output, 0, classify(output), elapsed, timeout=timeout)


@contextlib.contextmanager
def transient_map(lines: Sequence[str], directory: Path, stem: str) -> Iterator[Path]:
    """Write ``lines`` to a uniquely named file in ``directory``; always remove it."""
    directory.mkdir(parents=True, exist_ok=True)
    fd, name = tempfile.mkstemp(prefix=f"{stem}_", dir=directory)
    path = Path(name)
    try:
        with os.fdopen(fd, "w") as f:
            f.write(render(lines))
        yield path
    finally:
        with contextlib.suppress(FileNotFoundError):
            path.unlink()


def play_match(
    engine: str,
    map_lines: Sequence[str],
    spec: MatchSpec,
    program_a: str,
    scratch_dir: Path,
    timeout: float = DEFAULT_TIMEOUT,
    prefix: Sequence[str] = (),
    cwd: Optional[Path] = None,
    engine_dir: Optional[str] = None,
    inner_timeout: Optional[float] = None,
) -> MatchResult:
    """Mutate the map for ``spec``, run the game on it, clean the map up.

    InvalidMapError from the mutation propagates; the orchestrator records it.
    ``engine_dir`` is where the engine sees ``scratch_dir`` (container mounts).
    """
    lines = mutate(map_lines, spec.pos_a, spec.pos_b)
    stem = f"{spec.map_name}_modified_{spec.rep}"
    with transient_map(lines, scratch_dir, stem) as path:
        map_arg = f"{engine_dir.rstrip('/')}/{path.name}" if engine_dir else str(path)
        return run_match(
            engine,
            map_arg,
            program_a,
            spec.opponent_path,
            timeout=timeout,
            prefix=prefix,
            cwd=cwd,
            inner_timeout=inner_timeout,
        )
