"""
Command execution, logging and file helpers shared by probes and tasks.
"""

# ----------------------------------------------------------------
# Dependencies and Imports
# ----------------------------------------------------------------
import datetime
import fcntl
import logging
import os
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Dict, IO, List, Optional, Union

from rich.logging import RichHandler

from vps_init.errors import DownloadError, EnvironmentCheckError, ExecutionError
from vps_init.ui import LOGGER_NAME, console


# ----------------------------------------------------------------
# Logger Setup
# ----------------------------------------------------------------
class EchoFilter(logging.Filter):
    """Drop records that the print_* helpers already wrote to the console."""

    def filter(self, record: logging.LogRecord) -> bool:
        return not getattr(record, "echoed", False)


def setup_logger(log_file: Union[str, Path]) -> logging.Logger:
    """Set up and configure the logger."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    # Remove any existing handlers
    for h in logger.handlers[:]:
        logger.removeHandler(h)

    # Rich console handler
    console_handler = RichHandler(console=console, rich_tracebacks=True)
    console_handler.setLevel(logging.INFO)
    console_handler.addFilter(EchoFilter())
    logger.addHandler(console_handler)

    # File handler
    log_file = Path(log_file)
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
    except OSError as e:
        logger.warning(f"Could not open log file {log_file}: {e}")
        return logger

    file_handler.setLevel(logging.DEBUG)
    formatter = logging.Formatter(
        "[%(asctime)s] [%(levelname)s] %(message)s", "%Y-%m-%d %H:%M:%S"
    )
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    try:
        # Secure the log file
        os.chmod(str(log_file), 0o600)
    except OSError as e:
        logger.warning(f"Could not set permissions on log file {log_file}: {e}")

    return logger


# ----------------------------------------------------------------
# Command Execution Utilities
# ----------------------------------------------------------------
class CommandRunner:
    """Runs external commands; tests substitute a recording fake."""

    def __init__(self) -> None:
        self.logger = logging.getLogger(LOGGER_NAME)

    def run(
        self,
        cmd: List[str],
        check: bool = True,
        capture_output: bool = True,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[int] = None,
    ) -> subprocess.CompletedProcess:
        """
        Execute a system command.

        Args:
            cmd: Command and arguments
            check: Raise ExecutionError on a non-zero exit status
            capture_output: Capture stdout/stderr instead of streaming them
            env: Extra environment variables merged over os.environ
            timeout: Optional timeout in seconds

        Returns:
            subprocess.CompletedProcess object

        Raises:
            ExecutionError: If the command is missing, times out or fails with check=True
        """
        cmd_str = " ".join(cmd)
        self.logger.debug(f"Executing: {cmd_str}")

        full_env = os.environ.copy()
        if env:
            full_env.update(env)

        try:
            result = subprocess.run(
                cmd,
                env=full_env,
                text=True,
                capture_output=capture_output,
                timeout=timeout,
            )
        except FileNotFoundError:
            raise ExecutionError(f"Command not found: {cmd[0]}", returncode=127)
        except subprocess.TimeoutExpired:
            raise ExecutionError(f"Command timed out after {timeout} seconds: {cmd_str}")

        if result.returncode != 0 and check:
            error_msg = f"Command failed (code {result.returncode}): {cmd_str}"
            if result.stderr:
                error_msg += f"\nError: {result.stderr.strip()}"
            self.logger.debug(error_msg)
            raise ExecutionError(error_msg, returncode=result.returncode)

        return result


# ----------------------------------------------------------------
# File Helpers
# ----------------------------------------------------------------
def backup_file(file_path: Union[str, Path], suffix: Optional[str] = None) -> Optional[Path]:
    """
    Copy a file next to itself with a date suffix.

    Args:
        file_path: Path to the file to backup
        suffix: Backup suffix, defaults to ``bak-YYYY-MM-DD``

    Returns:
        Path to the backup file, or None if the source does not exist
    """
    logger = logging.getLogger(LOGGER_NAME)
    file_path = Path(file_path)
    if not file_path.is_file():
        logger.warning(f"Cannot backup non-existent file: {file_path}")
        return None

    if suffix is None:
        suffix = f"bak-{datetime.date.today().isoformat()}"
    backup_path = file_path.with_name(f"{file_path.name}.{suffix}")
    shutil.copy2(file_path, backup_path)
    logger.debug(f"Backed up {file_path} to {backup_path}")
    return backup_path


def read_config(path: Union[str, Path]) -> str:
    """
    Read a system config file. Bytes that are not valid UTF-8 are kept as
    surrogates so write_config puts them back unchanged.
    """
    return Path(path).read_text(encoding="utf-8", errors="surrogateescape")


def write_config(path: Union[str, Path], content: str) -> None:
    Path(path).write_text(content, encoding="utf-8", errors="surrogateescape")


def read_lines(path: Union[str, Path]) -> List[str]:
    """Return the stripped lines of a file, or an empty list if it is missing."""
    path = Path(path)
    if not path.is_file():
        return []
    return [line.strip() for line in read_config(path).splitlines()]


def has_line(path: Union[str, Path], line: str) -> bool:
    """True if an uncommented line equal to ``line`` (spaces ignored) exists."""
    wanted = line.replace(" ", "")
    return any(
        existing.replace(" ", "") == wanted
        for existing in read_lines(path)
        if not existing.startswith("#")
    )


def append_line_once(path: Union[str, Path], line: str) -> bool:
    """
    Append ``line`` to a config file unless it is already present.

    Returns:
        True if the file was modified
    """
    path = Path(path)
    if has_line(path, line):
        return False
    content = read_config(path) if path.is_file() else ""
    if content and not content.endswith("\n"):
        content += "\n"
    write_config(path, content + line + "\n")
    logging.getLogger(LOGGER_NAME).info(f"Added '{line}' to {path}")
    return True


def download_file(
    runner: CommandRunner,
    url: str,
    dest: Union[str, Path],
    timeout: Optional[int] = None,
) -> Path:
    """
    Download a file with curl, rejecting missing or empty payloads.

    A partial or zero-byte file is removed before DownloadError is raised so
    that no later step can pick up a corrupt artifact.
    """
    dest = Path(dest)
    logger = logging.getLogger(LOGGER_NAME)
    logger.info(f"Downloading {url} to {dest}...")

    cmd = ["curl", "-fsSL", url, "-o", str(dest)]
    if timeout:
        cmd[2:2] = ["--max-time", str(timeout)]

    try:
        runner.run(cmd)
    except ExecutionError as e:
        dest.unlink(missing_ok=True)
        raise DownloadError(f"Download of {url} failed: {e}")

    if not dest.is_file() or dest.stat().st_size == 0:
        dest.unlink(missing_ok=True)
        raise DownloadError(f"Download of {url} returned an empty payload")

    logger.debug(f"Download complete: {dest} ({dest.stat().st_size} bytes)")
    return dest


def make_temp_path(prefix: str, suffix: str = "", directory: Optional[str] = None) -> Path:
    """Reserve a temporary file path; the caller owns deleting it."""
    fd, name = tempfile.mkstemp(prefix=prefix, suffix=suffix, dir=directory)
    os.close(fd)
    return Path(name)


# ----------------------------------------------------------------
# Single-Instance Guard
# ----------------------------------------------------------------
def acquire_lock(lock_file: Union[str, Path]) -> IO[str]:
    """
    Take an exclusive, non-blocking lock so two instances never edit the
    same host at once. Keep the returned handle open for the process lifetime.

    Raises:
        EnvironmentCheckError: If another instance holds the lock
    """
    lock_path = Path(lock_file)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    fh = lock_path.open("w")
    try:
        fcntl.flock(fh, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError:
        fh.close()
        raise EnvironmentCheckError(
            f"Another instance is already running (lock held on {lock_path})."
        )
    fh.write(str(os.getpid()))
    fh.flush()
    return fh
