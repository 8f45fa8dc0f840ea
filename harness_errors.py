from __future__ import annotations

from typing import Optional


def output_tail(output: str, lines: int = 3, width: int = 200) -> str:
    """Last few non-blank lines of engine output, joined for a one-line report."""
    kept = [line.strip() for line in output.strip().splitlines() if line.strip()][-lines:]
    return " | ".join(line[:width] for line in kept)


class HarnessError(Exception):
    pass


class SetupError(HarnessError):
    """Missing engine, program, roster entry or container. Fatal for the run."""


class InvalidMapError(HarnessError):
    pass


class MatchTimeout(HarnessError):
    def __init__(self, timeout: float, output: str = ""):
        msg = f"match exceeded {timeout:g}s"
        tail = output_tail(output)
        if tail:
            msg = f"{msg}; last output: {tail}"
        super().__init__(msg)
        self.timeout = timeout
        self.output = output


class MatchProcessError(HarnessError):
    def __init__(self, returncode: Optional[int], detail: str = "", output: str = ""):
        msg = f"engine exited with code {returncode}" if returncode is not None else "engine failed to run"
        if detail:
            msg = f"{msg}: {detail}"
        tail = output_tail(output)
        if tail:
            msg = f"{msg}; last output: {tail}"
        super().__init__(msg)
        self.returncode = returncode
        self.output = output


class UndeterminedOutcome(HarnessError):
    """Engine output had neither a winner declaration nor both final scores."""

    def __init__(self, output: str):
        tail = output_tail(output) or "<no output>"
        super().__init__(f"no winner found (last output: {tail})")
        self.output = output
