"""
Tests for the hosts file registrar.
"""

import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from laraharbor.errors import RegistrationFailed
from laraharbor.hosts import HostsRegistrar


class TestHostsRegistrar:
    """Test HostsRegistrar class."""

    def test_add_appends_one_line(self, hosts, hosts_file):
        added = hosts.add("demo.local", "admin.demo.local")

        assert added == ["demo.local", "admin.demo.local"]
        assert hosts_file.read_text().splitlines()[-1] == "127.0.0.1 demo.local admin.demo.local"
        assert hosts.is_registered("demo.local")

    def test_add_is_idempotent(self, hosts, hosts_file):
        hosts.add("demo.local")
        before = hosts_file.read_text()

        assert hosts.add("demo.local") == []
        assert hosts_file.read_text() == before

    def test_add_only_missing_hosts(self, hosts, hosts_file):
        hosts.add("demo.local")
        added = hosts.add("demo.local", "admin.demo.local")

        assert added == ["admin.demo.local"]
        assert hosts_file.read_text().count("demo.local") == 2

    def test_existing_entries_detected(self, hosts, hosts_file):
        hosts_file.write_text("127.0.0.1 localhost demo.local # managed elsewhere\n")

        assert hosts.add("demo.local") == []

    def test_remove(self, hosts, hosts_file):
        hosts.add("demo.local", "admin.demo.local")

        assert hosts.remove("demo.local") is True
        assert not hosts.is_registered("demo.local")
        assert hosts.is_registered("admin.demo.local")
        assert "localhost" in hosts_file.read_text()

    def test_remove_drops_empty_lines(self, hosts, hosts_file):
        hosts.add("demo.local")
        hosts.remove("demo.local")

        assert hosts_file.read_text() == "127.0.0.1 localhost\n::1 localhost\n"

    def test_remove_missing_host(self, hosts, hosts_file):
        before = hosts_file.read_text()

        assert hosts.remove("ghost.local") is False
        assert hosts_file.read_text() == before

    def test_missing_hosts_file_created(self, tmp_path):
        registrar = HostsRegistrar(hosts_file=str(tmp_path / "new-hosts"), use_sudo=False)

        registrar.add("demo.local")

        assert (tmp_path / "new-hosts").read_text() == "127.0.0.1 demo.local\n"

    def test_unwritable_without_sudo(self, tmp_path):
        directory = tmp_path / "hosts-dir"
        directory.mkdir()
        registrar = HostsRegistrar(hosts_file=str(directory), use_sudo=False)

        with pytest.raises(RegistrationFailed):
            registrar.add("demo.local")

    def test_permission_denied_falls_back_to_sudo(self, hosts_file):
        registrar = HostsRegistrar(hosts_file=str(hosts_file), use_sudo=True)
        completed = subprocess.CompletedProcess([], 0, stdout="", stderr="")

        with patch.object(Path, "write_text", side_effect=PermissionError("denied")), patch(
            "laraharbor.hosts.subprocess.run", return_value=completed
        ) as mock_run:
            registrar.add("demo.local")

        args, kwargs = mock_run.call_args
        assert args[0] == ["sudo", "tee", str(hosts_file)]
        assert kwargs["input"].endswith("127.0.0.1 demo.local\n")

    def test_sudo_failure(self, hosts_file):
        registrar = HostsRegistrar(hosts_file=str(hosts_file), use_sudo=True)
        failed = subprocess.CompletedProcess([], 1, stdout="", stderr="no tty")

        with patch.object(Path, "write_text", side_effect=PermissionError("denied")), patch(
            "laraharbor.hosts.subprocess.run", return_value=failed
        ):
            with pytest.raises(RegistrationFailed, match="no tty"):
                registrar.add("demo.local")
