"""
Read-only probes of live host state.

Text parsing lives in plain functions so it can be exercised without the
underlying tools; SystemProbe wires them to files and commands.
"""

# ----------------------------------------------------------------
# Dependencies and Imports
# ----------------------------------------------------------------
import logging
import pwd
import re
import shutil
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple

from vps_init.config import AppConfig
from vps_init.errors import ExecutionError
from vps_init.system import CommandRunner, read_config, read_lines
from vps_init.ui import LOGGER_NAME


# ----------------------------------------------------------------
# Data Structures
# ----------------------------------------------------------------
@dataclass
class SwapDevice:
    """One row of /proc/swaps."""

    filename: str
    type: str
    size_kib: int
    used_kib: int


@dataclass
class FirewallState:
    """Parsed view of `ufw status verbose`."""

    active: bool = False
    default_incoming: Optional[str] = None
    default_outgoing: Optional[str] = None
    rules: Set[Tuple[str, str]] = field(default_factory=set)

    def has_rule(self, port: str, action: str) -> bool:
        return (port, action.lower()) in self.rules


# ----------------------------------------------------------------
# Parsers
# ----------------------------------------------------------------
def parse_proc_swaps(text: str) -> List[SwapDevice]:
    """
    Parse the contents of /proc/swaps.

    Example:
        Filename    Type    Size     Used  Priority
        /swapfile   file    2097148  0     -2
    """
    devices = []
    for line in text.splitlines()[1:]:
        parts = line.split()
        if len(parts) < 4:
            continue
        try:
            devices.append(
                SwapDevice(parts[0], parts[1], int(parts[2]), int(parts[3]))
            )
        except ValueError:
            continue
    return devices


def format_kib(kib: int) -> str:
    """Format a KiB count the way `free -h` does, e.g. 2097148 -> '2.0G'."""
    value = float(kib)
    for unit in ("K", "M", "G", "T"):
        if value < 1024 or unit == "T":
            return f"{value:.1f}{unit}" if unit != "K" else f"{int(value)}K"
        value /= 1024
    return f"{value:.1f}T"


def parse_timedatectl(text: str) -> Optional[str]:
    """Extract the zone name from the 'Time zone:' line of plain `timedatectl`."""
    for line in text.splitlines():
        key, sep, value = line.partition(":")
        if sep and key.strip().lower() == "time zone":
            parts = value.split()
            return parts[0] if parts else None
    return None


_UFW_RULE_RE = re.compile(
    r"^(?P<to>\S+)(?: \(v6\))?\s+(?P<action>ALLOW|DENY|REJECT|LIMIT)(?: (?:IN|OUT|FWD))?\s+"
)
_UFW_DEFAULT_RE = re.compile(r"(\w+) \((incoming|outgoing|routed)\)")


def parse_ufw_status(text: str) -> FirewallState:
    """
    Parse `ufw status verbose` output.

    IPv4 and IPv6 rows for the same port fold into a single rule.
    """
    state = FirewallState()
    in_rules = False
    for raw in text.splitlines():
        line = raw.rstrip()
        if line.startswith("Status:"):
            state.active = line.split(":", 1)[1].strip().lower() == "active"
        elif line.startswith("Default:"):
            for policy, direction in _UFW_DEFAULT_RE.findall(line):
                if direction == "incoming":
                    state.default_incoming = policy.lower()
                elif direction == "outgoing":
                    state.default_outgoing = policy.lower()
        elif line.startswith("--"):
            in_rules = True
        elif in_rules and line:
            match = _UFW_RULE_RE.match(line)
            if match:
                state.rules.add((match.group("to"), match.group("action").lower()))
    return state


def parse_os_release(text: str) -> Dict[str, str]:
    """Parse KEY=value pairs from /etc/os-release."""
    info = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        k, v = line.split("=", 1)
        info[k] = v.strip().strip('"').strip("'")
    return info


def parse_dpkg_status(text: str) -> Set[str]:
    """
    Return installed package names from
    `dpkg-query -W -f='${Package} ${Status}\\n'` output.
    """
    installed = set()
    for line in text.splitlines():
        parts = line.split(None, 1)
        if len(parts) == 2 and parts[1].strip() == "install ok installed":
            installed.add(parts[0].split(":")[0])
    return installed


# ----------------------------------------------------------------
# System Probe
# ----------------------------------------------------------------
class SystemProbe:
    """Read-only queries against the live host. Never mutates anything."""

    def __init__(self, config: AppConfig, runner: CommandRunner) -> None:
        self.config = config
        self.runner = runner
        self.logger = logging.getLogger(LOGGER_NAME)

    def _query(self, cmd: List[str]) -> Optional[str]:
        """Run a read-only command; None if it is missing or exits non-zero."""
        try:
            result = self.runner.run(cmd, check=False)
        except ExecutionError as e:
            self.logger.debug(f"Probe {' '.join(cmd)} unavailable: {e}")
            return None
        if result.returncode != 0:
            return None
        return result.stdout or ""

    # Swap
    def swap_devices(self) -> List[SwapDevice]:
        path = self.config.PROC_SWAPS
        if not path.is_file():
            return []
        return parse_proc_swaps(path.read_text())

    def swap_active(self) -> bool:
        target = str(self.config.SWAP_FILE)
        return any(dev.filename == target for dev in self.swap_devices())

    def swap_size(self) -> Optional[str]:
        """Human-readable total of all active swap devices."""
        devices = self.swap_devices()
        if not devices:
            return None
        return format_kib(sum(dev.size_kib for dev in devices))

    def fstab_swap_entries(self) -> int:
        target = str(self.config.SWAP_FILE)
        return sum(
            1
            for line in read_lines(self.config.FSTAB_PATH)
            if line and not line.startswith("#") and line.split()[0] == target
        )

    # Network
    def congestion_control(self) -> Optional[str]:
        path = self.config.PROC_CONGESTION
        if path.is_file():
            return path.read_text().strip() or None
        output = self._query(["sysctl", "-n", "net.ipv4.tcp_congestion_control"])
        return output.strip() if output else None

    # Time
    def timezone(self) -> Optional[str]:
        output = self._query(["timedatectl", "show", "-p", "Timezone", "--value"])
        if output and output.strip():
            return output.strip()
        # Older systemd without `show`
        output = self._query(["timedatectl"])
        return parse_timedatectl(output) if output else None

    # Firewall
    def firewall_state(self) -> Optional[FirewallState]:
        """Parsed UFW state, or None when ufw is not installed."""
        try:
            result = self.runner.run(["ufw", "status", "verbose"], check=False)
        except ExecutionError:
            return None
        if result.returncode != 0:
            return FirewallState()
        return parse_ufw_status(result.stdout or "")

    # Docker
    def docker_installed(self) -> bool:
        return self.config.DOCKER_BINARY.exists()

    def docker_active(self) -> bool:
        return self._query(["systemctl", "is-active", "--quiet", "docker"]) is not None

    # Users and shells
    def user_exists(self, user: str) -> bool:
        try:
            pwd.getpwnam(user)
            return True
        except KeyError:
            return False

    def login_shell(self, user: str) -> Optional[str]:
        try:
            return pwd.getpwnam(user).pw_shell
        except KeyError:
            return None

    def user_groups(self, user: str) -> List[str]:
        output = self._query(["id", "-nG", user])
        return output.split() if output else []

    def zsh_path(self) -> Optional[str]:
        return shutil.which("zsh")

    # Packages
    def installed_packages(self, packages: Iterable[str]) -> Set[str]:
        packages = list(packages)
        if not packages:
            return set()
        try:
            result = self.runner.run(
                ["dpkg-query", "-W", "-f=${Package} ${Status}\n"] + packages,
                check=False,
            )
        except ExecutionError:
            return set()
        # dpkg-query exits 1 when some names are unknown but still lists the rest
        return parse_dpkg_status(result.stdout or "") & set(packages)

    # Platform
    def os_release(self) -> Dict[str, str]:
        path = self.config.OS_RELEASE
        if not path.is_file():
            self.logger.warning(f"Missing {path} file.")
            return {}
        return parse_os_release(read_config(path))
