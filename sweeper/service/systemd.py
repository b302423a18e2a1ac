"""
Host service-manager integration (systemd).

Thin pass-through for the install/uninstall/start/stop/restart/status
verbs. The unit file runs this program in the foreground with the
resolved config path; systemd owns supervision and delivers SIGTERM
on stop, which the lifecycle controller turns into a clean shutdown.

Usage:
    manager = SystemdServiceManager(config.service)
    manager.install(config_path)
    manager.start()
    print(manager.status().value)
"""

import shlex
import subprocess
import sys
from enum import Enum
from pathlib import Path
from typing import List

from loguru import logger

from sweeper.config import ServiceConfig

DEFAULT_UNIT_DIR = Path("/etc/systemd/system")

CONTROL_VERBS = ("install", "uninstall", "start", "stop", "restart", "status")


class ServiceControlError(Exception):
    """A service-manager command failed."""


class ServiceStatus(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"
    NOT_INSTALLED = "not_installed"
    UNKNOWN = "unknown"


class SystemdServiceManager:
    """Registers and controls the sweeper as a systemd unit."""

    def __init__(
        self,
        service: ServiceConfig,
        unit_dir: str | Path = DEFAULT_UNIT_DIR,
        python: str | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._service = service
        self._unit_dir = Path(unit_dir)
        self._python = python or sys.executable
        self._timeout = timeout

    @property
    def unit_name(self) -> str:
        return f"{self._service.name}.service"

    @property
    def unit_path(self) -> Path:
        return self._unit_dir / self.unit_name

    # ── Verbs ───────────────────────────────────────────────────────────

    def install(self, config_path: str | Path) -> Path:
        """Write the unit file and enable it at boot.

        Args:
            config_path: Config file the service will load; stored as an absolute path.

        Returns:
            Path of the written unit file.
        """
        config_path = Path(config_path).resolve()
        if self.unit_path.exists():
            logger.info("Systemd: {} already installed, rewriting unit", self.unit_name)

        try:
            self._unit_dir.mkdir(parents=True, exist_ok=True)
            self.unit_path.write_text(self.render_unit(config_path), encoding="utf-8")
        except OSError as e:
            raise ServiceControlError(f"Cannot write unit file {self.unit_path}: {e}") from e

        self._systemctl("daemon-reload")
        self._systemctl("enable", self.unit_name)
        logger.info("Systemd: installed {} (config={})", self.unit_path, config_path)
        return self.unit_path

    def uninstall(self) -> None:
        """Stop, disable and remove the unit."""
        if not self.unit_path.exists():
            logger.info("Systemd: {} is not installed", self.unit_name)
            return

        self._systemctl("disable", "--now", self.unit_name)
        try:
            self.unit_path.unlink()
        except OSError as e:
            raise ServiceControlError(f"Cannot remove unit file {self.unit_path}: {e}") from e
        self._systemctl("daemon-reload")
        logger.info("Systemd: uninstalled {}", self.unit_name)

    def start(self) -> None:
        self._systemctl("start", self.unit_name)
        logger.info("Systemd: started {}", self.unit_name)

    def stop(self) -> None:
        self._systemctl("stop", self.unit_name)
        logger.info("Systemd: stopped {}", self.unit_name)

    def restart(self) -> None:
        self._systemctl("restart", self.unit_name)
        logger.info("Systemd: restarted {}", self.unit_name)

    def status(self) -> ServiceStatus:
        """Query the unit state. Never raises for an inactive or missing unit."""
        if not self.unit_path.exists():
            return ServiceStatus.NOT_INSTALLED

        try:
            result = self._systemctl("is-active", self.unit_name, check=False)
        except ServiceControlError as e:
            logger.warning("Systemd: status query failed: {}", e)
            return ServiceStatus.UNKNOWN

        state = result.stdout.strip()
        if state in ("active", "activating", "reloading"):
            return ServiceStatus.RUNNING
        if state in ("inactive", "failed", "deactivating"):
            return ServiceStatus.STOPPED
        return ServiceStatus.UNKNOWN

    def control(self, verb: str, config_path: str | Path | None = None) -> None:
        """Dispatch a CLI control verb.

        Raises:
            ServiceControlError: Unknown verb or the underlying command failed.
        """
        if verb == "install":
            if config_path is None:
                raise ServiceControlError("install requires a config path")
            self.install(config_path)
        elif verb == "uninstall":
            self.uninstall()
        elif verb == "start":
            self.start()
        elif verb == "stop":
            self.stop()
        elif verb == "restart":
            self.restart()
        elif verb == "status":
            logger.info("Systemd: {} is {}", self.unit_name, self.status().value)
        else:
            raise ServiceControlError(
                f"Unknown control verb {verb!r}; expected one of {', '.join(CONTROL_VERBS)}"
            )

    # ── Helpers ─────────────────────────────────────────────────────────

    def render_unit(self, config_path: Path) -> str:
        """Build the systemd unit file text."""
        exec_start = " ".join(
            shlex.quote(part)
            for part in [self._python, "-m", "sweeper.main", "run", str(config_path)]
        )
        return (
            "[Unit]\n"
            f"Description={self._service.display_name}: {self._service.description}\n"
            "After=local-fs.target\n"
            "\n"
            "[Service]\n"
            "Type=simple\n"
            f"ExecStart={exec_start}\n"
            f"WorkingDirectory={config_path.parent}\n"
            "Restart=on-failure\n"
            "KillSignal=SIGTERM\n"
            "\n"
            "[Install]\n"
            "WantedBy=multi-user.target\n"
        )

    def _systemctl(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        cmd: List[str] = ["systemctl", *args]
        logger.debug("Systemd: running {}", " ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self._timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ServiceControlError(f"{' '.join(cmd)} failed: {e}") from e

        if check and result.returncode != 0:
            detail = (result.stderr or result.stdout).strip()
            raise ServiceControlError(
                f"{' '.join(cmd)} exited with {result.returncode}: {detail}"
            )
        return result
