"""Tests for the command runner."""

import subprocess

import pytest

from clat.commands import CommandRunner


def test_dry_run_skips_mutating_commands(monkeypatch):
    def fail(*args, **kwargs):
        raise AssertionError("subprocess.run must not be called")

    monkeypatch.setattr(subprocess, "run", fail)
    result = CommandRunner(dry_run=True).run(["ip", "link", "set", "up", "dev", "clat"])
    assert result.returncode == 0
    assert result.stdout == ""


def test_dry_run_still_runs_readonly_commands(monkeypatch):
    seen = []

    def fake_run(cmd, **kwargs):
        seen.append(cmd)
        return subprocess.CompletedProcess(cmd, 0, stdout="1\n", stderr="")

    monkeypatch.setattr(subprocess, "run", fake_run)
    result = CommandRunner(dry_run=True).run(["sysctl", "-n", "net.ipv6.conf.all.forwarding"], readonly=True)

    assert seen == [["sysctl", "-n", "net.ipv6.conf.all.forwarding"]]
    assert result.stdout == "1\n"


def test_failure_is_logged_and_reraised(monkeypatch, caplog):
    def fake_run(cmd, **kwargs):
        raise subprocess.CalledProcessError(2, cmd, "", "RTNETLINK answers: File exists")

    monkeypatch.setattr(subprocess, "run", fake_run)
    with pytest.raises(subprocess.CalledProcessError):
        CommandRunner().run(["ip", "-6", "route", "add", "2001:db8::1", "dev", "clat"])

    assert "Command failed: ip -6 route add 2001:db8::1 dev clat" in caplog.text
    assert "File exists" in caplog.text
