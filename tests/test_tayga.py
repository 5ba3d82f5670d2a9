"""Tests for the TAYGA config artifact and supervisor."""

import ipaddress
import os
import signal
import subprocess
import tempfile
from pathlib import Path

from clat.tayga import TaygaSupervisor, TranslatorConfig, remove_config, write_config


TRANSLATOR = TranslatorConfig(
    tun_device="clat",
    prefix=ipaddress.IPv6Network("64:ff9b::/96"),
    ipv4_addr=ipaddress.IPv4Address("192.0.0.2"),
    map_ipv4=ipaddress.IPv4Address("192.0.0.1"),
    map_ipv6=ipaddress.IPv6Address("2001:db8::211:22c1:a733:4455"),
)


def test_render_contains_exactly_four_directives():
    assert TRANSLATOR.render().splitlines() == [
        "tun-device clat",
        "prefix 64:ff9b::/96",
        "ipv4-addr 192.0.0.2",
        "map 192.0.0.1 2001:db8::211:22c1:a733:4455",
    ]


def test_write_temporary_config_and_remove():
    path = write_config(TRANSLATOR)
    assert path.read_text() == TRANSLATOR.render()

    remove_config(path)
    assert not path.exists()
    # Removing twice is harmless
    remove_config(path)


def test_write_config_to_given_path():
    with tempfile.TemporaryDirectory() as tmp:
        target = Path(tmp) / "tayga.conf"
        assert write_config(TRANSLATOR, target) == target
        assert "map 192.0.0.1" in target.read_text()


def test_dry_run_does_not_start_tayga(monkeypatch):
    def fail(*args, **kwargs):
        raise AssertionError("tayga must not be started in dry-run mode")

    monkeypatch.setattr(subprocess, "Popen", fail)
    assert TaygaSupervisor(dry_run=True).run(Path("/tmp/tayga.conf")) == 0


def test_signal_is_forwarded_and_handlers_restored(monkeypatch):
    class FakeProcess:
        def __init__(self, cmd):
            self.cmd = cmd
            self.signals = []

        def poll(self):
            return None

        def send_signal(self, signum):
            self.signals.append(signum)

        def wait(self):
            # SIGTERM delivered while blocked on the child
            os.kill(os.getpid(), signal.SIGTERM)
            return -signal.SIGTERM

    started = []

    def fake_popen(cmd):
        process = FakeProcess(cmd)
        started.append(process)
        return process

    monkeypatch.setattr(subprocess, "Popen", fake_popen)
    before = signal.getsignal(signal.SIGTERM)

    supervisor = TaygaSupervisor("tayga")
    returncode = supervisor.run(Path("/tmp/tayga.conf"))

    assert returncode == -signal.SIGTERM
    assert supervisor.interrupted
    assert started[0].cmd == ["tayga", "--nodetach", "--config", "/tmp/tayga.conf"]
    assert started[0].signals == [signal.SIGTERM]
    assert signal.getsignal(signal.SIGTERM) is before
