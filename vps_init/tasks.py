"""
Idempotent setup tasks.

Every task follows the same cycle: probe the host, return early when it is
already in the desired state, otherwise apply the change and re-probe to
confirm it. Failures surface as SetupError and are turned into a FAILED
report; nothing is rolled back.
"""

# ----------------------------------------------------------------
# Dependencies and Imports
# ----------------------------------------------------------------
import logging
import os
import pwd
import re
import shutil
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.prompt import Confirm

from vps_init.config import AppConfig
from vps_init.errors import (
    DownloadError,
    ExecutionError,
    SetupError,
    VerificationError,
)
from vps_init.probes import FirewallState, SystemProbe
from vps_init.system import (
    CommandRunner,
    append_line_once,
    backup_file,
    download_file,
    has_line,
    make_temp_path,
    read_config,
    write_config,
)
from vps_init.ui import (
    LOGGER_NAME,
    NordColors,
    console,
    display_panel,
    print_error,
    print_message,
    print_section,
    print_step,
    print_success,
    print_warning,
)

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}

_COMPINIT_RE = re.compile(r"^\s*compinit")


# ----------------------------------------------------------------
# Data Structures
# ----------------------------------------------------------------
class TaskStatus(Enum):
    NOOP = "no-op"
    CHANGED = "changed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class TaskReport:
    """Outcome of a single task run."""

    name: str
    status: TaskStatus
    message: str = ""
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status is not TaskStatus.FAILED


# ----------------------------------------------------------------
# Task Base Class
# ----------------------------------------------------------------
class Task:
    """Base class for an idempotent setup task."""

    key: str = ""
    title: str = ""

    def __init__(
        self, config: AppConfig, probe: SystemProbe, runner: CommandRunner
    ) -> None:
        self.config = config
        self.probe = probe
        self.runner = runner
        self.logger = logging.getLogger(LOGGER_NAME)

    def should_run(self) -> bool:
        """Hook for tasks that ask before doing anything."""
        return True

    def is_satisfied(self) -> bool:
        raise NotImplementedError

    def apply(self) -> None:
        raise NotImplementedError

    def verify(self) -> None:
        if not self.is_satisfied():
            raise VerificationError(f"{self.title} did not reach the desired state.")

    def run(self) -> TaskReport:
        """Probe, act only if needed, verify and report. Safe to call repeatedly."""
        print_section(self.title)
        start = time.time()

        if not self.should_run():
            print_message(f"Skipping: {self.title}", NordColors.FROST_3)
            return TaskReport(self.title, TaskStatus.SKIPPED, "Skipped by user")

        try:
            if self.is_satisfied():
                message = "Already configured; nothing to do."
                print_message(message, NordColors.FROST_3)
                return TaskReport(
                    self.title, TaskStatus.NOOP, message, time.time() - start
                )

            with Progress(
                SpinnerColumn(style=f"bold {NordColors.FROST_1}"),
                TextColumn("{task.description}"),
                TimeElapsedColumn(),
                console=console,
                transient=True,
            ) as progress:
                progress.add_task(f"{self.title}...", total=None)
                self.apply()
                self.verify()
        except (SetupError, OSError) as e:
            elapsed = time.time() - start
            print_error(f"{self.title} failed: {e}")
            return TaskReport(self.title, TaskStatus.FAILED, str(e), elapsed)

        elapsed = time.time() - start
        print_success(f"{self.title} completed in {elapsed:.2f}s")
        return TaskReport(
            self.title, TaskStatus.CHANGED, f"Completed in {elapsed:.2f}s", elapsed
        )

    # Shared helpers
    def apt_install(self, packages: List[str]) -> None:
        self.runner.run(["apt-get", "install", "-y"] + packages, env=APT_ENV)

    def chown_to(self, path: Path, user: str) -> None:
        entry = pwd.getpwnam(user)
        os.chown(path, entry.pw_uid, entry.pw_gid)


# ----------------------------------------------------------------
# 1. Base Packages
# ----------------------------------------------------------------
class BasePackagesTask(Task):
    key = "base"
    title = "Install Base Packages"

    def missing_packages(self) -> List[str]:
        installed = self.probe.installed_packages(self.config.BASE_PACKAGES)
        return [p for p in self.config.BASE_PACKAGES if p not in installed]

    def is_satisfied(self) -> bool:
        return not self.missing_packages()

    def apply(self) -> None:
        missing = self.missing_packages()
        print_step(f"Installing: {', '.join(missing)}")
        self.runner.run(["apt-get", "update", "-qq"], env=APT_ENV)
        self.apt_install(missing)


# ----------------------------------------------------------------
# 2. Swapfile
# ----------------------------------------------------------------
class SwapfileTask(Task):
    key = "swap"
    title = "Configure Swapfile"

    def is_satisfied(self) -> bool:
        return (
            self.probe.swap_active()
            and self.probe.fstab_swap_entries() == 1
            and has_line(self.config.SYSCTL_CONF, self.config.swappiness_line)
        )

    def apply(self) -> None:
        if self.probe.swap_active():
            print_message(f"{self.config.SWAP_FILE} is already active.")
        else:
            self._create_swapfile()
            self.runner.run(["swapon", str(self.config.SWAP_FILE)])
            print_step(f"Activated {self.config.SWAP_FILE}.")

        self._ensure_fstab_entry()

        if append_line_once(self.config.SYSCTL_CONF, self.config.swappiness_line):
            result = self.runner.run(
                ["sysctl", "-p", str(self.config.SYSCTL_CONF)], check=False
            )
            if result.returncode != 0:
                print_warning("sysctl -p reported errors; see the log for details.")

    def _create_swapfile(self) -> None:
        swap = self.config.SWAP_FILE
        if swap.exists() and swap.stat().st_size == 0:
            print_warning(f"{swap} is empty; recreating it.")
            swap.unlink()

        if swap.exists():
            print_message(f"{swap} already exists.")
            return

        print_step(f"Creating {swap} ({self.config.SWAP_SIZE})...")
        try:
            self.runner.run(["fallocate", "-l", self.config.SWAP_SIZE, str(swap)])
            os.chmod(swap, 0o600)
            self.runner.run(["mkswap", str(swap)])
        except (ExecutionError, OSError):
            swap.unlink(missing_ok=True)
            raise

    def _ensure_fstab_entry(self) -> None:
        fstab = self.config.FSTAB_PATH
        entries = self.probe.fstab_swap_entries()
        if entries == 1:
            print_message(f"{fstab} already contains the swap entry.")
            return
        if entries == 0:
            append_line_once(fstab, self.config.fstab_line)
            return

        # Collapse duplicates down to the first entry
        backup_file(fstab)
        target = str(self.config.SWAP_FILE)
        kept = False
        lines = []
        for line in read_config(fstab).splitlines():
            fields = line.split()
            if fields and not line.lstrip().startswith("#") and fields[0] == target:
                if kept:
                    continue
                kept = True
            lines.append(line)
        write_config(fstab, "\n".join(lines) + "\n")
        print_warning(f"Removed {entries - 1} duplicate swap entries from {fstab}.")

    def verify(self) -> None:
        if not self.probe.swap_active():
            raise VerificationError(f"{self.config.SWAP_FILE} is not active.")


# ----------------------------------------------------------------
# 3. Zsh, Zim and Powerlevel10k
# ----------------------------------------------------------------
class ZshTask(Task):
    key = "zsh"
    title = "Configure Zsh (Zim + Powerlevel10k)"

    def _present_users(self):
        for user, home in self.config.ZSH_USERS:
            if self.probe.user_exists(user) and Path(home).is_dir():
                yield user, Path(home)

    def _zshrc_needs_patch(self) -> bool:
        rc = self.config.ZSH_SYSTEM_RC
        if not rc.is_file():
            return False
        return any(_COMPINIT_RE.match(line) for line in read_config(rc).splitlines())

    def _user_done(
        self, user: str, home: Path, zsh: str, require_p10k: bool = True
    ) -> bool:
        p10k = home / ".p10k.zsh"
        return (
            (home / ".zim").is_dir()
            and has_line(home / ".zimrc", self.config.P10K_MODULE)
            and (
                not (require_p10k and self.config.p10k_enabled)
                or (p10k.is_file() and p10k.stat().st_size > 0)
            )
            and self.probe.login_shell(user) == zsh
        )

    def _all_users_done(self, require_p10k: bool) -> bool:
        zsh = self.probe.zsh_path()
        if not zsh or self._zshrc_needs_patch():
            return False
        return all(
            self._user_done(user, home, zsh, require_p10k)
            for user, home in self._present_users()
        )

    def is_satisfied(self) -> bool:
        return self._all_users_done(require_p10k=True)

    def verify(self) -> None:
        # The p10k config is optional content; a failed fetch only warns.
        if not self._all_users_done(require_p10k=False):
            raise VerificationError("Zsh was not fully configured for every present user.")

    def apply(self) -> None:
        zsh = self.probe.zsh_path()
        if not zsh:
            print_step("Installing zsh...")
            self.apt_install(["zsh"])
            zsh = self.probe.zsh_path()
            if not zsh:
                raise ExecutionError("zsh is still missing after installation.")
        else:
            print_message("Zsh is already installed.")

        if self._zshrc_needs_patch():
            self._patch_system_zshrc()

        if not self.config.p10k_enabled:
            print_warning(
                "P10K_CONFIG_URL is not set; users will need to run the p10k wizard on first login."
            )

        configured = 0
        for user, home in self.config.ZSH_USERS:
            if self._configure_user(user, Path(home), zsh):
                configured += 1

        if configured:
            print_message(
                "Affected users must log out and back in to start using zsh."
            )
        else:
            print_warning("No configured user was present; nothing was provisioned.")

    def _patch_system_zshrc(self) -> None:
        rc = self.config.ZSH_SYSTEM_RC
        print_step(f"Patching {rc} to avoid a duplicate 'compinit'...")
        backup_file(rc)
        lines = [
            "#" + line if _COMPINIT_RE.match(line) else line
            for line in read_config(rc).splitlines()
        ]
        write_config(rc, "\n".join(lines) + "\n")

    def _configure_user(self, user: str, home: Path, zsh: str) -> bool:
        """Provision one user; returns False when the user is skipped."""
        if not self.probe.user_exists(user):
            print_warning(f"User {user} does not exist. Skipping zsh setup.")
            return False
        if not home.is_dir():
            print_warning(f"Home directory {home} for {user} does not exist. Skipping.")
            return False

        print_step(f"Configuring zsh for '{user}' (home: {home})")

        zimrc = home / ".zimrc"
        if append_line_once(zimrc, self.config.P10K_MODULE):
            self.chown_to(zimrc, user)

        if (home / ".zim").is_dir():
            print_message(f"Zim framework already installed for {user}.")
        else:
            self._install_zim(user, home, zsh)

        if self.config.p10k_enabled:
            self._deploy_p10k_config(user, home)

        if self.probe.login_shell(user) != zsh:
            self.runner.run(["chsh", "-s", zsh, user])
            print_success(f"Default shell for '{user}' changed to {zsh}.")
        else:
            print_message(f"Default shell for '{user}' is already zsh.")
        return True

    def _install_zim(self, user: str, home: Path, zsh: str) -> None:
        print_step(f"Running the Zim installer for {user}...")
        installer = make_temp_path("vps_init_zim_", ".zsh", self.config.TEMP_DIR)
        try:
            download_file(
                self.runner,
                self.config.ZIM_INSTALLER_URL,
                installer,
                timeout=self.config.DOWNLOAD_TIMEOUT,
            )
            os.chmod(installer, 0o644)
            self.runner.run(
                [
                    "sudo",
                    "-u",
                    user,
                    "env",
                    f"HOME={home}",
                    f"ZDOTDIR={home}",
                    zsh,
                    str(installer),
                ]
            )
        finally:
            installer.unlink(missing_ok=True)

    def _deploy_p10k_config(self, user: str, home: Path) -> None:
        target = home / ".p10k.zsh"
        if target.is_file() and target.stat().st_size > 0:
            print_message(f"{target} already present.")
            return

        staging = make_temp_path("vps_init_p10k_", ".zsh", self.config.TEMP_DIR)
        try:
            download_file(
                self.runner,
                self.config.P10K_CONFIG_URL,
                staging,
                timeout=self.config.DOWNLOAD_TIMEOUT,
            )
        except DownloadError as e:
            staging.unlink(missing_ok=True)
            print_warning(
                f"Could not fetch .p10k.zsh for '{user}' ({e}); the p10k wizard will run instead."
            )
            return

        shutil.move(str(staging), str(target))
        os.chmod(target, 0o644)
        self.chown_to(target, user)
        print_success(f"Deployed custom .p10k.zsh for '{user}'.")


# ----------------------------------------------------------------
# 4. BBR Congestion Control
# ----------------------------------------------------------------
class BbrTask(Task):
    key = "bbr"
    title = "Enable BBR Network Optimisation"

    def _lines_present(self) -> bool:
        return all(
            has_line(self.config.SYSCTL_CONF, line) for line in self.config.BBR_SETTINGS
        )

    def is_satisfied(self) -> bool:
        return (
            self._lines_present()
            and self.probe.congestion_control() == self.config.CONGESTION_CONTROL
        )

    def apply(self) -> None:
        if self._lines_present():
            print_message("BBR settings already present in sysctl.conf.")
        else:
            print_step(f"Writing BBR settings to {self.config.SYSCTL_CONF}...")
            for line in self.config.BBR_SETTINGS:
                append_line_once(self.config.SYSCTL_CONF, line)

        print_step("Applying kernel parameters...")
        result = self.runner.run(
            ["sysctl", "-p", str(self.config.SYSCTL_CONF)], check=False
        )
        if result.returncode != 0:
            self.logger.warning(f"sysctl -p exited with {result.returncode}")

    def verify(self) -> None:
        current = self.probe.congestion_control()
        if current != self.config.CONGESTION_CONTROL:
            raise VerificationError(
                f"Congestion control is '{current}', not "
                f"'{self.config.CONGESTION_CONTROL}'; a reboot may be required."
            )


# ----------------------------------------------------------------
# 5. UFW Firewall
# ----------------------------------------------------------------
class FirewallTask(Task):
    key = "ufw"
    title = "Configure UFW Firewall"

    def _is_complete(self, state: Optional[FirewallState]) -> bool:
        return (
            state is not None
            and state.active
            and state.default_incoming == "deny"
            and state.default_outgoing == "allow"
            and all(
                state.has_rule(rule.port, rule.action)
                for rule in self.config.FIREWALL_RULES
            )
        )

    def is_satisfied(self) -> bool:
        return self._is_complete(self.probe.firewall_state())

    def apply(self) -> None:
        state = self.probe.firewall_state()
        if state is None:
            print_step("Installing ufw...")
            self.apt_install(["ufw"])
            state = self.probe.firewall_state()
            if state is None:
                raise ExecutionError("ufw is still missing after installation.")

        # An inactive ufw hides its rules, so state.rules is empty then; ufw
        # itself skips rules that already exist.
        if state.default_incoming != "deny":
            self.runner.run(["ufw", "default", "deny", "incoming"])
        if state.default_outgoing != "allow":
            self.runner.run(["ufw", "default", "allow", "outgoing"])

        for rule in self.config.FIREWALL_RULES:
            if state.has_rule(rule.port, rule.action):
                continue
            cmd = ["ufw", rule.action, rule.port]
            if rule.comment:
                cmd += ["comment", rule.comment]
            self.runner.run(cmd)
            print_step(f"{rule.action.capitalize()} {rule.port} ({rule.comment})")

        if not state.active:
            print_step("Enabling UFW...")
            self.runner.run(["ufw", "--force", "enable"])

        result = self.runner.run(["ufw", "status", "verbose"], check=False)
        status = (result.stdout or "").strip()
        self.logger.debug(status)
        if status:
            display_panel(escape(status), NordColors.FROST_3, "UFW Status")


# ----------------------------------------------------------------
# 6. Docker (optional)
# ----------------------------------------------------------------
class DockerTask(Task):
    key = "docker"
    title = "Install Docker (optional)"

    def __init__(
        self,
        config: AppConfig,
        probe: SystemProbe,
        runner: CommandRunner,
        confirm: Optional[Callable[[str], bool]] = None,
    ) -> None:
        super().__init__(config, probe, runner)
        self.confirm = confirm or (
            lambda question: Confirm.ask(question, default=False, console=console)
        )

    def should_run(self) -> bool:
        return self.confirm("Do you want to install Docker?")

    def _user_needs_group(self) -> bool:
        user = self.config.DOCKER_USER
        return self.probe.user_exists(user) and "docker" not in self.probe.user_groups(
            user
        )

    def is_satisfied(self) -> bool:
        return (
            self.probe.docker_installed()
            and self.probe.docker_active()
            and not self._user_needs_group()
        )

    def apply(self) -> None:
        if self.probe.docker_installed():
            print_message(f"Docker is already installed ({self.config.DOCKER_BINARY}).")
        else:
            self._install()

        if not self.probe.docker_active():
            print_step("Starting and enabling the Docker service...")
            self.runner.run(["systemctl", "enable", "--now", "docker"])

        if self._user_needs_group():
            user = self.config.DOCKER_USER
            self.runner.run(["usermod", "-aG", "docker", user])
            print_warning(
                f"User '{user}' was added to the docker group; log in again to use docker without sudo."
            )

    def _install(self) -> None:
        print_step("Installing Docker with the official convenience script...")
        script = make_temp_path("vps_init_get_docker_", ".sh", self.config.TEMP_DIR)
        try:
            download_file(
                self.runner,
                self.config.DOCKER_INSTALL_URL,
                script,
                timeout=self.config.DOWNLOAD_TIMEOUT,
            )
            self.runner.run(["sh", str(script)])
        finally:
            script.unlink(missing_ok=True)

        if not self.probe.docker_installed():
            raise VerificationError(
                f"Docker installation failed: {self.config.DOCKER_BINARY} not found."
            )
        print_success("Docker (and Docker Compose) installed.")


# ----------------------------------------------------------------
# 7. Timezone
# ----------------------------------------------------------------
class TimezoneTask(Task):
    key = "timezone"
    title = "Set Timezone"

    def is_satisfied(self) -> bool:
        return self.probe.timezone() == self.config.TIMEZONE

    def apply(self) -> None:
        print_step(f"Setting timezone to {self.config.TIMEZONE}...")
        self.runner.run(["timedatectl", "set-timezone", self.config.TIMEZONE])

    def verify(self) -> None:
        current = self.probe.timezone()
        if current != self.config.TIMEZONE:
            raise VerificationError(
                f"Timezone is '{current}' after setting {self.config.TIMEZONE}."
            )
        print_message(f"Time zone: {current}")


def build_tasks(
    config: AppConfig,
    probe: SystemProbe,
    runner: CommandRunner,
    confirm: Optional[Callable[[str], bool]] = None,
) -> List[Task]:
    """All tasks in batch order; later tasks may rely on earlier installs."""
    return [
        BasePackagesTask(config, probe, runner),
        SwapfileTask(config, probe, runner),
        ZshTask(config, probe, runner),
        BbrTask(config, probe, runner),
        FirewallTask(config, probe, runner),
        DockerTask(config, probe, runner, confirm=confirm),
        TimezoneTask(config, probe, runner),
    ]
