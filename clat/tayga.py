"""
TAYGA configuration artifact and process supervision.

TAYGA performs the actual stateless IPv4/IPv6 translation. It is started in
the foreground with a config file holding the TUN device name, the PLAT
prefix, its own IPv4 address and the single CLAT address mapping.
"""

import ipaddress
import logging
import os
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from clat.signals import deferred_signals


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TranslatorConfig:
    """Contents of the TAYGA config file."""
    tun_device: str
    prefix: ipaddress.IPv6Network
    ipv4_addr: ipaddress.IPv4Address
    map_ipv4: ipaddress.IPv4Address
    map_ipv6: ipaddress.IPv6Address

    def render(self) -> str:
        return (
            f"tun-device {self.tun_device}\n"
            f"prefix {self.prefix}\n"
            f"ipv4-addr {self.ipv4_addr}\n"
            f"map {self.map_ipv4} {self.map_ipv6}\n"
        )


def write_config(config: TranslatorConfig, path: Optional[Path] = None) -> Path:
    """
    Write the TAYGA config file.

    Args:
        config: Translator settings.
        path: Target file; a temporary file is created when None.

    Returns:
        Path of the written file.
    """
    if path is None:
        fd, name = tempfile.mkstemp(prefix="clat-tayga-", suffix=".conf")
        with os.fdopen(fd, 'w') as f:
            f.write(config.render())
        path = Path(name)
    else:
        path.write_text(config.render())
    logger.debug(f"Wrote TAYGA config to {path}:\n{config.render()}")
    return path


def remove_config(path: Path):
    """Delete a config file written by write_config()."""
    try:
        path.unlink()
        logger.debug(f"Removed {path}")
    except FileNotFoundError:
        pass


class TaygaSupervisor:
    """Runs TAYGA in the foreground until it exits."""

    def __init__(self, cmd_tayga: str = "tayga", dry_run: bool = False):
        self.cmd_tayga = cmd_tayga
        self.dry_run = dry_run
        self.logger = logging.getLogger(__name__)
        self.interrupted = False

    def command(self, conffile: Path):
        return [self.cmd_tayga, "--nodetach", "--config", str(conffile)]

    def run(self, conffile: Path) -> int:
        """
        Start TAYGA and block until it exits.

        INT, TERM and HUP received meanwhile are forwarded to TAYGA instead of
        killing this process, so rollback always runs afterwards.

        Returns:
            TAYGA's exit status (negative when it died from a signal).
        """
        cmd = self.command(conffile)
        cmd_str = ' '.join(cmd)

        if self.dry_run:
            self.logger.info(f"[DRY RUN] Would execute: {cmd_str}")
            return 0

        process: Optional[subprocess.Popen] = None

        def forward(signum):
            if process is not None and process.poll() is None:
                process.send_signal(signum)

        with deferred_signals(on_signal=forward) as received:
            self.logger.info(f"Starting translator: {cmd_str}")
            process = subprocess.Popen(cmd)
            if received:
                # Arrived before there was a child to forward it to
                process.send_signal(received.received[-1])
            returncode = process.wait()

        self.interrupted = bool(received)
        if received:
            self.logger.info(f"Translator stopped after {', '.join(received.names())}")
        else:
            self.logger.info(f"Translator exited with status {returncode}")
        return returncode
