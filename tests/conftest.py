import os
import stat
import sys
from pathlib import Path

import pytest


def _add_project_root_to_path():
    here = os.path.dirname(__file__)
    root = os.path.abspath(os.path.join(here, ".."))
    if root not in sys.path:
        sys.path.insert(0, root)


_add_project_root_to_path()


def write_script(path: Path, body: str) -> Path:
    """Write an executable Python script; used as a stand-in engine or bot."""
    path.write_text(f"#!{sys.executable}\nimport sys, time\n{body}\n")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def make_engine(tmp_path: Path):
    def make(body: str, name: str = "engine.py") -> Path:
        return write_script(tmp_path / name, body)

    return make


@pytest.fixture
def small_map():
    # 4x4, no obstacles
    return ["....", "....", "....", "...."]
