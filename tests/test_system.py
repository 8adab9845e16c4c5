import logging

import pytest

from vps_init.errors import DownloadError, EnvironmentCheckError, ExecutionError
from vps_init.system import (
    CommandRunner,
    EchoFilter,
    acquire_lock,
    append_line_once,
    backup_file,
    download_file,
    has_line,
)

from conftest import FakeRunner, fake_curl


def test_append_line_once_is_idempotent(tmp_path):
    conf = tmp_path / "sysctl.conf"
    conf.write_text("net.ipv4.ip_forward=1")  # no trailing newline

    assert append_line_once(conf, "vm.swappiness=60")
    for _ in range(3):
        assert not append_line_once(conf, "vm.swappiness=60")

    assert conf.read_text() == "net.ipv4.ip_forward=1\nvm.swappiness=60\n"


def test_append_line_once_creates_missing_file(tmp_path):
    conf = tmp_path / "new.conf"
    assert append_line_once(conf, "a=b")
    assert conf.read_text() == "a=b\n"


def test_has_line_ignores_spacing_and_comments(tmp_path):
    conf = tmp_path / "sysctl.conf"
    conf.write_text("#net.core.default_qdisc=fq\nvm.swappiness = 60\n")
    assert has_line(conf, "vm.swappiness=60")
    assert not has_line(conf, "net.core.default_qdisc=fq")
    assert not has_line(tmp_path / "missing.conf", "x=y")


def test_download_rejects_empty_payload(tmp_path):
    runner = FakeRunner()
    runner.on(["curl"], fake_curl(""))
    dest = tmp_path / "get-docker.sh"

    with pytest.raises(DownloadError):
        download_file(runner, "https://example.invalid/x", dest)
    assert not dest.exists()


def test_download_failure_removes_partial_file(tmp_path):
    dest = tmp_path / "partial"

    def _fail(cmd):
        dest.write_text("half")
        return 22, ""

    runner = FakeRunner()
    runner.on(["curl"], _fail)

    with pytest.raises(DownloadError):
        download_file(runner, "https://example.invalid/x", dest)
    assert not dest.exists()


def test_download_passes_timeout(tmp_path):
    runner = FakeRunner()
    runner.on(["curl"], fake_curl("echo hi\n"))
    dest = download_file(runner, "https://example.invalid/x", tmp_path / "f", timeout=30)

    assert dest.read_text() == "echo hi\n"
    cmd = runner.calls[0]
    assert cmd[cmd.index("--max-time") + 1] == "30"


def test_backup_file(tmp_path):
    rc = tmp_path / "zshrc"
    rc.write_text("compinit\n")
    backup = backup_file(rc, suffix="bak-test")
    assert backup == tmp_path / "zshrc.bak-test"
    assert backup.read_text() == "compinit\n"
    assert backup_file(tmp_path / "missing") is None


def test_command_runner_reports_exit_status():
    runner = CommandRunner()
    assert runner.run(["sh", "-c", "echo ok"]).stdout.strip() == "ok"
    assert runner.run(["sh", "-c", "exit 3"], check=False).returncode == 3

    with pytest.raises(ExecutionError) as excinfo:
        runner.run(["sh", "-c", "exit 3"])
    assert excinfo.value.returncode == 3


def test_command_runner_missing_binary():
    with pytest.raises(ExecutionError) as excinfo:
        CommandRunner().run(["definitely-not-a-real-command-vps-init"])
    assert excinfo.value.returncode == 127


def test_lock_prevents_second_instance(tmp_path):
    lock_file = tmp_path / "vps-init.lock"
    first = acquire_lock(lock_file)
    try:
        with pytest.raises(EnvironmentCheckError):
            acquire_lock(lock_file)
    finally:
        first.close()

    acquire_lock(lock_file).close()


def test_echo_filter_drops_echoed_records():
    record = logging.LogRecord("vps_init", logging.INFO, __file__, 1, "msg", None, None)
    assert EchoFilter().filter(record)
    record.echoed = True
    assert not EchoFilter().filter(record)
