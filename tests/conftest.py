import os
import pwd
import subprocess
from collections import namedtuple
from pathlib import Path

import pytest

from vps_init.config import AppConfig
from vps_init.errors import ExecutionError
from vps_init.probes import SystemProbe

PROC_SWAPS_HEADER = "Filename\t\t\t\tType\t\tSize\t\tUsed\t\tPriority\n"

FakePasswd = namedtuple("FakePasswd", "pw_name pw_uid pw_gid pw_dir pw_shell")


class FakeRunner:
    """
    Records every command and answers from registered handlers.

    A handler is either a ``(returncode, stdout)`` tuple or a callable taking
    the command list and returning such a tuple. The most recently registered
    matching prefix wins; unmatched commands succeed with empty output.
    """

    def __init__(self):
        self.calls = []
        self.handlers = []

    def on(self, prefix, handler):
        self.handlers.append((list(prefix), handler))

    def missing(self, name):
        """Make a command behave as if it were not installed."""

        def _raise(cmd):
            raise ExecutionError(f"Command not found: {name}", returncode=127)

        self.on([name], _raise)

    def run(self, cmd, check=True, capture_output=True, env=None, timeout=None):
        cmd = list(cmd)
        self.calls.append(cmd)
        result = (0, "")
        for prefix, handler in reversed(self.handlers):
            if cmd[: len(prefix)] == prefix:
                result = handler(cmd) if callable(handler) else handler
                break
        returncode, stdout = result
        if returncode != 0 and check:
            raise ExecutionError(
                f"Command failed (code {returncode}): {' '.join(cmd)}", returncode
            )
        return subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr="")

    def called(self, *prefix):
        prefix = list(prefix)
        return [c for c in self.calls if c[: len(prefix)] == prefix]


def fake_curl(payload):
    """curl handler that writes ``payload`` to the -o destination."""

    def _curl(cmd):
        Path(cmd[cmd.index("-o") + 1]).write_text(payload)
        return 0, ""

    return _curl


@pytest.fixture
def config(tmp_path):
    (tmp_path / "tmp").mkdir()
    swaps = tmp_path / "swaps"
    swaps.write_text(PROC_SWAPS_HEADER)
    congestion = tmp_path / "tcp_congestion_control"
    congestion.write_text("cubic\n")
    (tmp_path / "fstab").write_text("UUID=abcd / ext4 defaults 0 1\n")
    (tmp_path / "sysctl.conf").write_text("# kernel tuning\n")
    return AppConfig(
        LOG_FILE=str(tmp_path / "vps_init.log"),
        LOCK_FILE=str(tmp_path / "vps-init.lock"),
        FSTAB_PATH=tmp_path / "fstab",
        SYSCTL_CONF=tmp_path / "sysctl.conf",
        PROC_SWAPS=swaps,
        PROC_CONGESTION=congestion,
        OS_RELEASE=tmp_path / "os-release",
        ZSH_SYSTEM_RC=tmp_path / "zshrc",
        TEMP_DIR=str(tmp_path / "tmp"),
        SWAP_FILE=tmp_path / "swapfile",
        DOCKER_BINARY=tmp_path / "docker",
        ZSH_USERS=[
            ("root", str(tmp_path / "root")),
            ("ubuntu", str(tmp_path / "home" / "ubuntu")),
        ],
    )


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def probe(config, runner):
    return SystemProbe(config, runner)


@pytest.fixture
def users(monkeypatch):
    """Fake user database: name -> login shell. Owned by the test process."""
    db = {"root": "/bin/bash"}

    def getpwnam(name):
        if name not in db:
            raise KeyError(name)
        return FakePasswd(name, os.getuid(), os.getgid(), "/", db[name])

    monkeypatch.setattr(pwd, "getpwnam", getpwnam)
    return db
