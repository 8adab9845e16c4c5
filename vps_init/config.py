# ----------------------------------------------------------------
# Dependencies and Imports
# ----------------------------------------------------------------
import os
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

# Placeholder shipped in early copies of the config; treated as "not set".
P10K_PLACEHOLDER_URL = "YOUR_P10K_RAW_URL_HERE"


# ----------------------------------------------------------------
# Data Structures
# ----------------------------------------------------------------
@dataclass(frozen=True)
class FirewallRule:
    """A single UFW rule: port/proto, action (allow or limit) and comment."""

    port: str
    action: str
    comment: str = ""


@dataclass
class AppConfig:
    """Configuration for the VPS bootstrap process."""

    # Paths and files
    LOG_FILE: str = "/var/log/vps_init.log"
    LOCK_FILE: str = "/run/vps-init.lock"
    FSTAB_PATH: Path = field(default_factory=lambda: Path("/etc/fstab"))
    SYSCTL_CONF: Path = field(default_factory=lambda: Path("/etc/sysctl.conf"))
    PROC_SWAPS: Path = field(default_factory=lambda: Path("/proc/swaps"))
    PROC_CONGESTION: Path = field(
        default_factory=lambda: Path("/proc/sys/net/ipv4/tcp_congestion_control")
    )
    OS_RELEASE: Path = field(default_factory=lambda: Path("/etc/os-release"))
    ZSH_SYSTEM_RC: Path = field(default_factory=lambda: Path("/etc/zsh/zshrc"))
    TEMP_DIR: Optional[str] = None

    # Supported platform
    SUPPORTED_OS_ID: str = "ubuntu"
    SUPPORTED_OS_VERSION: str = "24"

    # Base packages
    BASE_PACKAGES: List[str] = field(
        default_factory=lambda: [
            "neofetch",
            "btop",
            "vim",
            "wget",
            "curl",
            "git",
            "unzip",
        ]
    )

    # Swap
    SWAP_FILE: Path = field(default_factory=lambda: Path("/swapfile"))
    SWAP_SIZE: str = "2G"
    SWAPPINESS: int = 60

    # Network tuning
    BBR_SETTINGS: List[str] = field(
        default_factory=lambda: [
            "net.core.default_qdisc=fq",
            "net.ipv4.tcp_congestion_control=bbr",
        ]
    )
    CONGESTION_CONTROL: str = "bbr"

    # Timezone
    TIMEZONE: str = "Asia/Shanghai"

    # Zsh, Zim and Powerlevel10k
    ZSH_USERS: List[Tuple[str, str]] = field(
        default_factory=lambda: [("root", "/root"), ("ubuntu", "/home/ubuntu")]
    )
    ZIM_INSTALLER_URL: str = (
        "https://raw.githubusercontent.com/zimfw/install/master/install.zsh"
    )
    P10K_MODULE: str = "zmodule romkatv/powerlevel10k"
    P10K_CONFIG_URL: str = (
        "https://raw.githubusercontent.com/SakenTam/vps-init/refs/heads/main/.p10k.zsh"
    )

    # Firewall
    FIREWALL_RULES: List[FirewallRule] = field(
        default_factory=lambda: [
            FirewallRule("22/tcp", "limit", "SSH"),
            FirewallRule("80/tcp", "allow", "HTTP"),
            FirewallRule("443/tcp", "allow", "HTTPS"),
        ]
    )

    # Docker
    DOCKER_INSTALL_URL: str = "https://get.docker.com"
    DOCKER_BINARY: Path = field(default_factory=lambda: Path("/usr/bin/docker"))
    DOCKER_USER: str = "ubuntu"

    # Operation settings
    DOWNLOAD_TIMEOUT: int = 120  # seconds, passed to curl --max-time

    @property
    def swappiness_line(self) -> str:
        return f"vm.swappiness={self.SWAPPINESS}"

    @property
    def fstab_line(self) -> str:
        return f"{self.SWAP_FILE} none swap sw 0 0"

    @property
    def p10k_enabled(self) -> bool:
        url = self.P10K_CONFIG_URL.strip()
        return bool(url) and url != P10K_PLACEHOLDER_URL

    def to_dict(self) -> Dict[str, Any]:
        """Convert the config to a dictionary."""
        return asdict(self)

    @classmethod
    def from_env(cls) -> "AppConfig":
        """
        Build a config from defaults, overriding selected fields from
        VPS_INIT_* environment variables (all optional).
        """
        config = cls()
        url = os.getenv("VPS_INIT_P10K_CONFIG_URL")
        if url is not None:
            config.P10K_CONFIG_URL = url
        config.TIMEZONE = os.getenv("VPS_INIT_TIMEZONE", config.TIMEZONE)
        config.SWAP_SIZE = os.getenv("VPS_INIT_SWAP_SIZE", config.SWAP_SIZE)
        config.LOG_FILE = os.getenv("VPS_INIT_LOG_FILE", config.LOG_FILE)
        config.DOCKER_USER = os.getenv("VPS_INIT_DOCKER_USER", config.DOCKER_USER)
        return config
