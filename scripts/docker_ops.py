"""
Thin subprocess wrapper around the Docker CLI.

Every call returns a CommandResult instead of raising, the caller decides
whether a non-zero exit is fatal.
"""

import grp
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from models import DEFAULT_DOCKER_GID

DOCKER_BINARY = 'docker'
LEGACY_COMPOSE_BINARY = 'docker-compose'

BUILD_TIMEOUT_S = 3600
DEFAULT_TIMEOUT_S = 300


@dataclass
class CommandResult:
    returncode: int
    stdout: str = ''
    stderr: str = ''

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """stdout and stderr combined, in that order."""
        return '\n'.join(part for part in (self.stdout, self.stderr) if part)

    def tail(self, lines: int = 5) -> list[str]:
        return self.output.splitlines()[-lines:]


def run_command(cmd: list[str], cwd: Optional[Path] = None,
                timeout: int = DEFAULT_TIMEOUT_S) -> CommandResult:
    """Run a command and capture its output.

    A missing binary is reported as exit code 127, a timeout as 124,
    matching what a shell would return.
    """
    try:
        result = subprocess.run(
            cmd,
            cwd=str(cwd) if cwd is not None else None,
            capture_output=True,
            text=True,
            timeout=timeout
        )
    except FileNotFoundError as e:
        return CommandResult(returncode=127, stderr=str(e))
    except subprocess.TimeoutExpired:
        return CommandResult(returncode=124, stderr=f"Timed out after {timeout}s: {' '.join(cmd)}")
    returncode = result.returncode
    if returncode < 0:
        # Killed by a signal: report it the way a shell does
        returncode = 128 - returncode
    return CommandResult(returncode, result.stdout or '', result.stderr or '')


def run_compose(root: Path, *args, timeout: int = DEFAULT_TIMEOUT_S) -> CommandResult:
    """Run a `docker compose` subcommand in the install directory."""
    return run_command([DOCKER_BINARY, 'compose'] + list(args), cwd=root, timeout=timeout)


def find_runtime() -> Optional[str]:
    """Path to the docker binary, or None if it is not on PATH."""
    return shutil.which(DOCKER_BINARY)


def runtime_version() -> str:
    result = run_command([DOCKER_BINARY, '--version'], timeout=30)
    return result.stdout.strip() if result.ok else 'unknown'


def compose_down(root: Path, timeout: int = 30) -> bool:
    """Stop the stack. Tries the compose plugin first, then docker-compose.

    Returns:
        True if either command succeeded
    """
    if run_compose(root, 'down', '--timeout', str(timeout)).ok:
        return True
    legacy = run_command(
        [LEGACY_COMPOSE_BINARY, 'down', '--timeout', str(timeout)], cwd=root,
    )
    return legacy.ok


def compose_build(root: Path, service: str) -> CommandResult:
    return run_compose(root, 'build', '--no-cache', service, timeout=BUILD_TIMEOUT_S)


def compose_up(root: Path) -> CommandResult:
    return run_compose(root, 'up', '-d')


def compose_ps(root: Path) -> CommandResult:
    return run_compose(root, 'ps', timeout=60)


def exec_in_container(container: str, shell_cmd: str) -> CommandResult:
    """Run a shell snippet inside a running container."""
    return run_command([DOCKER_BINARY, 'exec', container, 'sh', '-c', shell_cmd], timeout=60)


def detect_docker_gid() -> int:
    """Group id of the host's docker group, falling back to 999."""
    try:
        return grp.getgrnam('docker').gr_gid
    except KeyError:
        return DEFAULT_DOCKER_GID
