import subprocess
from pathlib import Path

import pytest

import container
from container import ContainerSession
from harness_errors import SetupError


class FakeDocker:
    def __init__(self, run_stdout="0123456789abcdef\n", run_code=0, missing=()):
        self.calls = []
        self.run_stdout = run_stdout
        self.run_code = run_code
        self.missing = set(missing)

    def __call__(self, cmd, **kwargs):
        self.calls.append(cmd)
        if cmd[1] == "run":
            return subprocess.CompletedProcess(cmd, self.run_code, stdout=self.run_stdout, stderr="no such image")
        if cmd[1] == "exec" and cmd[-3:-1] == ["test", "-x"] and cmd[-1] in self.missing:
            return subprocess.CompletedProcess(cmd, 1)
        return subprocess.CompletedProcess(cmd, 0)


def test_session_lifecycle(monkeypatch, tmp_path: Path):
    docker = FakeDocker()
    monkeypatch.setattr(container.subprocess, "run", docker)
    mounts = {tmp_path / "solution": "/filler/solution"}
    with pytest.raises(RuntimeError):
        with ContainerSession("filler", mounts) as s:
            assert s.exec_prefix() == ["docker", "exec", "-w", "/filler", "0123456789abcdef"]
            raise RuntimeError("match blew up")
    run_cmd = docker.calls[0]
    assert run_cmd[:3] == ["docker", "run", "-d"]
    assert f"{(tmp_path / 'solution').resolve()}:/filler/solution" in run_cmd
    assert run_cmd[-4:] == ["filler", "sh", "-c", "tail -f /dev/null"]
    # stopped and removed even though the block raised
    assert docker.calls[1] == ["docker", "stop", "0123456789abcdef"]
    assert docker.calls[2] == ["docker", "rm", "0123456789abcdef"]
    assert s.container_id is None


def test_session_start_failure_is_setup_error(monkeypatch):
    monkeypatch.setattr(container.subprocess, "run", FakeDocker(run_stdout="", run_code=125))
    with pytest.raises(SetupError, match="failed to start"):
        with ContainerSession("missing-image"):
            pass


def test_missing_docker_binary_is_setup_error(monkeypatch):
    def boom(cmd, **kwargs):
        raise FileNotFoundError("docker")

    monkeypatch.setattr(container.subprocess, "run", boom)
    with pytest.raises(SetupError):
        ContainerSession("filler").start()


def test_exec_prefix_requires_started_container():
    with pytest.raises(SetupError):
        ContainerSession("filler").exec_prefix()


def test_require_executables_checks_inside_container(monkeypatch):
    docker = FakeDocker(missing={"linux_robots/wall_e"})
    monkeypatch.setattr(container.subprocess, "run", docker)
    s = ContainerSession("filler")
    s.start()
    s.require_executables(["./linux_game_engine", "solution/filler"])
    assert docker.calls[1] == ["docker", "exec", "-w", "/filler", "0123456789abcdef", "test", "-x", "./linux_game_engine"]
    assert docker.calls[2][-1] == "solution/filler"
    with pytest.raises(SetupError, match="linux_robots/wall_e") as e:
        s.require_executables(["./linux_game_engine", "linux_robots/wall_e"])
    assert "./linux_game_engine" not in str(e.value)
