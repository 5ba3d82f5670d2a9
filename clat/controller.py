"""
Run sequencing: discover, derive, provision, supervise, roll back.
"""

import logging
import os
import random
import subprocess
import time
from typing import Callable, Dict, Optional

from clat.commands import CommandRunner
from clat.config import ClatConfig
from clat.errors import ClatError, ProvisioningError
from clat.ledger import ProvisioningLedger
from clat.prefix import PrefixResolver
from clat.provision import ProvisioningContext, command_errors, provision
from clat.synth import candidates_from_interface, synthesize
from clat.system import SystemMutator
from clat.tayga import TaygaSupervisor, TranslatorConfig, remove_config, write_config


EXIT_OK = 0
EXIT_FAILURE = 1


class RunController:
    """Drives one CLAT run from prefix discovery to rollback."""

    def __init__(
        self,
        config: ClatConfig,
        runner: CommandRunner,
        system: Optional[SystemMutator] = None,
        resolver: Optional[PrefixResolver] = None,
        supervisor: Optional[TaygaSupervisor] = None,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.config = config
        self.runner = runner
        self.system = system or SystemMutator(config, runner)
        self.resolver = resolver or PrefixResolver()
        self.supervisor = supervisor or TaygaSupervisor(config.cmd_tayga, dry_run=runner.dry_run)
        self.rng = rng
        self.sleep = sleep
        self.ledger = ProvisioningLedger()
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Pre-flight
    # ------------------------------------------------------------------

    def native_ipv4_available(self) -> bool:
        """True when an IPv4 default route exists and survives the grace delay."""
        if not self.system.ipv4_default_routes():
            return False

        delay = self.config.v4_conncheck_delay
        self.logger.info(f"IPv4 default route present, checking again in {delay}s")
        self.sleep(delay)
        return bool(self.system.ipv4_default_routes())

    def resolve_plat_dev(self, plat_prefix) -> str:
        if self.config.plat_dev:
            return self.config.plat_dev
        dev = self.system.route_device(str(plat_prefix.network_address))
        if not dev:
            raise ProvisioningError("detect uplink device", f"no route towards {plat_prefix}")
        self.logger.info(f"Uplink device towards {plat_prefix}: {dev}")
        return dev

    def resolve_clat_v6_addr(self, plat_dev: str, plat_prefix):
        if self.config.clat_v6_addr is not None:
            return self.config.clat_v6_addr
        candidates = candidates_from_interface(self.system, plat_dev)
        return synthesize(candidates, plat_prefix, self.rng)

    # ------------------------------------------------------------------
    # Hook scripts
    # ------------------------------------------------------------------

    def script_env(self, event: str, ctx: ProvisioningContext) -> Dict[str, str]:
        env = dict(os.environ)
        env.update({
            "CLAT_EVENT": event,
            "CLAT_DEV": self.config.clat_dev,
            "CLAT_V4_ADDR": str(self.config.clat_v4_addr),
            "CLAT_V6_ADDR": str(ctx.clat_v6_addr),
            "PLAT_DEV": ctx.plat_dev,
            "PLAT_PREFIX": str(ctx.plat_prefix),
            "TAYGA_CONFFILE": str(ctx.conffile),
        })
        return env

    def run_script(self, event: str, script: str, ctx: ProvisioningContext):
        self.logger.info(f"Running {event} script: {script}")
        self.runner.run(script, shell=True, env=self.script_env(event, ctx))

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self) -> int:
        """
        Execute one run.

        Returns:
            Process exit status.
        """
        config = self.config

        try:
            with command_errors("IPv4 connectivity check"):
                native_ipv4 = config.v4_conncheck_enable and self.native_ipv4_available()
        except ProvisioningError as e:
            self.logger.error(f"Cannot check IPv4 connectivity: {e}")
            return EXIT_FAILURE
        if native_ipv4:
            self.logger.info("Native IPv4 connectivity present, CLAT not needed")
            return EXIT_OK

        plat_prefix = config.plat_prefix
        if plat_prefix is None:
            plat_prefix = self.resolver.discover_prefix(config.dns64_servers)
        if plat_prefix is None:
            self.logger.info("No PLAT prefix discovered, CLAT not needed")
            return EXIT_OK
        self.logger.info(f"Using PLAT prefix {plat_prefix}")

        try:
            with command_errors("detect uplink device"):
                plat_dev = self.resolve_plat_dev(plat_prefix)
            with command_errors("derive CLAT address"):
                clat_v6_addr = self.resolve_clat_v6_addr(plat_dev, plat_prefix)
        except ClatError as e:
            self.logger.error(f"Cannot determine CLAT addressing: {e}")
            return EXIT_FAILURE
        self.logger.info(f"Using CLAT IPv6 address {clat_v6_addr}")

        translator = TranslatorConfig(
            tun_device=config.clat_dev,
            prefix=plat_prefix,
            ipv4_addr=config.tayga_v4_addr,
            map_ipv4=config.clat_v4_addr,
            map_ipv6=clat_v6_addr,
        )
        try:
            with command_errors("write translator config"):
                conffile = write_config(translator, config.tayga_conffile)
        except ProvisioningError as e:
            self.logger.error(f"Cannot write translator config: {e}")
            return EXIT_FAILURE

        ctx = ProvisioningContext(
            config=config,
            system=self.system,
            ledger=self.ledger,
            plat_dev=plat_dev,
            plat_prefix=plat_prefix,
            clat_v6_addr=clat_v6_addr,
            conffile=conffile,
        )

        status = EXIT_FAILURE
        provisioned = False
        try:
            provision(ctx)
            provisioned = True
            self.logger.info(f"Provisioning complete ({len(self.ledger)} change(s) recorded)")

            if config.script_up:
                with command_errors("script-up"):
                    self.run_script("up", config.script_up, ctx)

            returncode = self.supervisor.run(conffile)
            if returncode == 0 or self.supervisor.interrupted:
                status = EXIT_OK
            else:
                self.logger.error(f"Translator failed with status {returncode}")
        except ClatError as e:
            self.logger.error(f"Provisioning failed: {e}")
        finally:
            if provisioned and config.script_down:
                try:
                    self.run_script("down", config.script_down, ctx)
                except (subprocess.CalledProcessError, OSError) as e:
                    self.logger.warning(f"script-down failed: {e}")
            self.ledger.unwind()
            if config.tayga_conffile is None:
                remove_config(conffile)

        return status
