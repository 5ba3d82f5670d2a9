"""Logged execution of external commands (ip, sysctl, ip6tables, tayga)."""

import logging
import subprocess
from typing import Dict, List, Optional, Union


class CommandRunner:
    """Runs external commands, logging them and honouring dry-run mode."""

    def __init__(self, dry_run: bool = False):
        """
        Initialize the runner.

        Args:
            dry_run: If True, commands that change system state are only
                     logged; read-only commands still execute.
        """
        self.dry_run = dry_run
        self.logger = logging.getLogger(__name__)

    def run(
        self,
        cmd: Union[List[str], str],
        check: bool = True,
        readonly: bool = False,
        shell: bool = False,
        env: Optional[Dict[str, str]] = None
    ) -> subprocess.CompletedProcess:
        """
        Execute a command.

        Args:
            cmd: Command to execute (a string when ``shell`` is True).
            check: Whether to raise exception on non-zero exit code.
            readonly: The command only inspects state and runs in dry-run mode.
            shell: Whether to use shell execution.
            env: Full environment for the child process.

        Returns:
            CompletedProcess result.

        Raises:
            subprocess.CalledProcessError: the command failed and ``check`` is set.
            OSError: the executable could not be started.
        """
        cmd_str = ' '.join(cmd) if isinstance(cmd, list) else cmd
        self.logger.debug(f"Executing: {cmd_str}")

        if self.dry_run and not readonly:
            self.logger.info(f"[DRY RUN] Would execute: {cmd_str}")
            return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=check,
                shell=shell,
                env=env
            )
            if result.stdout:
                self.logger.debug(f"STDOUT: {result.stdout.strip()}")
            if result.stderr:
                self.logger.debug(f"STDERR: {result.stderr.strip()}")
            return result
        except subprocess.CalledProcessError as e:
            self.logger.error(f"Command failed: {cmd_str}")
            self.logger.error(f"Exit code: {e.returncode}")
            self.logger.error(f"STDOUT: {e.stdout}")
            self.logger.error(f"STDERR: {e.stderr}")
            raise
