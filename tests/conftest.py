import asyncio
import dataclasses
import os
import shutil
import sys

import pytest

from codejudge.config import Settings
from codejudge.languages import DEFAULT_LANGUAGES, LanguageRegistry
from codejudge.workspace import WorkspaceManager

requires_gcc = pytest.mark.skipif(shutil.which("gcc") is None, reason="gcc not installed")
requires_javac = pytest.mark.skipif(
    shutil.which("javac") is None or shutil.which("java") is None, reason="JDK not installed"
)

ADD_PROGRAM = "a, b = map(int, input().split())\nprint(a + b)\n"
ECHO_PROGRAM = "print(input())\n"
LOOP_PROGRAM = "while True:\n    pass\n"


def pid_alive(pid):
    if os.path.isdir("/proc"):
        try:
            with open(f"/proc/{pid}/stat") as f:
                # zombies are dead, just not reaped yet
                return f.read().rsplit(")", 1)[-1].split()[0] != "Z"
        except FileNotFoundError:
            return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    return True


async def wait_until_gone(pid, seconds=3.0):
    for _ in range(int(seconds / 0.05)):
        if not pid_alive(pid):
            return True
        await asyncio.sleep(0.05)
    return False


def _with_current_python(spec):
    # Run python submissions with the interpreter running the tests
    if spec.id == "python":
        return dataclasses.replace(spec, run_command=(sys.executable, "{source}"))
    return spec


@pytest.fixture
def registry():
    return LanguageRegistry(_with_current_python(spec) for spec in DEFAULT_LANGUAGES)


@pytest.fixture
def workspaces(tmp_path):
    return WorkspaceManager(tmp_path / "workspaces", retention_minutes=10)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        api_secret_key="test-secret",
        workspace_root=tmp_path / "api-workspaces",
        rate_limit_max_requests=1000,
        log_json=False,
    )
