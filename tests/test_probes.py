from vps_init.probes import (
    format_kib,
    parse_dpkg_status,
    parse_os_release,
    parse_proc_swaps,
    parse_timedatectl,
    parse_ufw_status,
)

from conftest import PROC_SWAPS_HEADER

UFW_ACTIVE = """\
Status: active
Logging: on (low)
Default: deny (incoming), allow (outgoing), disabled (routed)
New profiles: skip

To                         Action      From
--                         ------      ----
22/tcp                     LIMIT IN    Anywhere                   # SSH
80/tcp                     ALLOW IN    Anywhere                   # HTTP
443/tcp                    ALLOW IN    Anywhere                   # HTTPS
22/tcp (v6)                LIMIT IN    Anywhere (v6)              # SSH
80/tcp (v6)                ALLOW IN    Anywhere (v6)              # HTTP
443/tcp (v6)               ALLOW IN    Anywhere (v6)              # HTTPS
"""

TIMEDATECTL = """\
               Local time: Sat 2026-10-17 10:00:00 CST
           Universal time: Sat 2026-10-17 02:00:00 UTC
                 RTC time: Sat 2026-10-17 02:00:00
                Time zone: Asia/Shanghai (CST, +0800)
System clock synchronized: yes
              NTP service: active
"""


def test_parse_proc_swaps():
    text = PROC_SWAPS_HEADER + "/swapfile   file    2097148  1024  -2\n"
    devices = parse_proc_swaps(text)
    assert len(devices) == 1
    assert devices[0].filename == "/swapfile"
    assert devices[0].size_kib == 2097148
    assert devices[0].used_kib == 1024


def test_parse_proc_swaps_header_only():
    assert parse_proc_swaps(PROC_SWAPS_HEADER) == []


def test_format_kib():
    assert format_kib(2097148) == "2.0G"
    assert format_kib(524288) == "512.0M"
    assert format_kib(512) == "512K"


def test_parse_timedatectl():
    assert parse_timedatectl(TIMEDATECTL) == "Asia/Shanghai"
    assert parse_timedatectl("Local time: now\n") is None


def test_parse_ufw_status_active_folds_ipv6():
    state = parse_ufw_status(UFW_ACTIVE)
    assert state.active
    assert state.default_incoming == "deny"
    assert state.default_outgoing == "allow"
    assert state.rules == {
        ("22/tcp", "limit"),
        ("80/tcp", "allow"),
        ("443/tcp", "allow"),
    }
    assert state.has_rule("22/tcp", "LIMIT")


def test_parse_ufw_status_inactive():
    state = parse_ufw_status("Status: inactive\n")
    assert not state.active
    assert state.rules == set()
    assert state.default_incoming is None


def test_parse_os_release():
    text = 'NAME="Ubuntu"\nVERSION_ID="24.04"\nID=ubuntu\n# comment\n\n'
    info = parse_os_release(text)
    assert info["ID"] == "ubuntu"
    assert info["VERSION_ID"] == "24.04"
    assert info["NAME"] == "Ubuntu"


def test_parse_dpkg_status():
    text = (
        "vim install ok installed\n"
        "git deinstall ok config-files\n"
        "curl:amd64 install ok installed\n"
    )
    assert parse_dpkg_status(text) == {"vim", "curl"}


def test_swap_probe(config, probe):
    assert not probe.swap_active()
    assert probe.swap_size() is None

    config.PROC_SWAPS.write_text(
        PROC_SWAPS_HEADER + f"{config.SWAP_FILE}  file  2097148  0  -2\n"
    )
    assert probe.swap_active()
    assert probe.swap_size() == "2.0G"


def test_fstab_entries_ignore_comments(config, probe):
    config.FSTAB_PATH.write_text(
        f"# {config.SWAP_FILE} none swap sw 0 0\n"
        f"{config.SWAP_FILE} none swap sw 0 0\n"
        f"{config.SWAP_FILE}.old none swap sw 0 0\n"
    )
    assert probe.fstab_swap_entries() == 1


def test_congestion_control_falls_back_to_sysctl(config, runner, probe):
    config.PROC_CONGESTION.unlink()
    runner.on(["sysctl", "-n"], (0, "bbr\n"))
    assert probe.congestion_control() == "bbr"


def test_timezone_prefers_structured_query(runner, probe):
    runner.on(["timedatectl", "show"], (0, "UTC\n"))
    assert probe.timezone() == "UTC"
    assert len(runner.called("timedatectl")) == 1


def test_timezone_falls_back_to_plain_output(runner, probe):
    runner.on(["timedatectl"], (0, TIMEDATECTL))
    runner.on(["timedatectl", "show"], (1, ""))
    assert probe.timezone() == "Asia/Shanghai"


def test_firewall_state_none_when_ufw_missing(runner, probe):
    runner.missing("ufw")
    assert probe.firewall_state() is None


def test_firewall_state_parsed(runner, probe):
    runner.on(["ufw", "status"], (0, UFW_ACTIVE))
    state = probe.firewall_state()
    assert state.active
    assert len(state.rules) == 3


def test_docker_probes(config, runner, probe):
    runner.on(["systemctl", "is-active"], (3, ""))
    assert not probe.docker_installed()
    assert not probe.docker_active()

    config.DOCKER_BINARY.write_text("#!/bin/sh\n")
    runner.on(["systemctl", "is-active"], (0, ""))
    assert probe.docker_installed()
    assert probe.docker_active()


def test_user_probes(users, runner, probe):
    users["ubuntu"] = "/usr/bin/zsh"
    runner.on(["id", "-nG"], (0, "ubuntu adm sudo docker\n"))
    assert probe.user_exists("ubuntu")
    assert not probe.user_exists("nobody-here")
    assert probe.login_shell("ubuntu") == "/usr/bin/zsh"
    assert probe.login_shell("nobody-here") is None
    assert "docker" in probe.user_groups("ubuntu")


def test_installed_packages_tolerates_unknown_names(runner, probe):
    runner.on(["dpkg-query"], (1, "vim install ok installed\n"))
    assert probe.installed_packages(["vim", "btop"]) == {"vim"}


def test_os_release_missing(probe):
    assert probe.os_release() == {}
