import json

import pytest
from click.testing import CliRunner

from ss_libev_setup.cli import cli
from ss_libev_setup.config import ServerConfig


@pytest.fixture
def invoke(host, layout, tmp_path):
    def run(*args, env=None):
        clean_env = {name: None for name in ("PORT", "PASS", "METHOD", "MODE", "TIMEOUT", "BACKUP_KEEP")}
        clean_env.update(env or {})
        return CliRunner().invoke(
            cli,
            list(args) + ["--log-file", str(tmp_path / "setup.log")],
            env=clean_env,
            obj={"host": host, "layout": layout},
        )

    return run


def _install_args(*extra):
    return ("install", "--no-banner", "--settle-seconds", "0") + extra


def test_install_as_regular_user_changes_nothing(invoke, layout, runner, as_user):
    result = invoke(*_install_args())
    assert result.exit_code == 1
    assert runner.calls == []
    assert not layout.conf_dir.exists()
    assert not layout.unit.exists()


def test_install_from_environment(invoke, layout, as_root):
    env = {"PORT": "30001", "PASS": "MyStrongPass", "METHOD": "aes-256-gcm",
           "MODE": "tcp_and_udp", "TIMEOUT": "60"}
    result = invoke(*_install_args(), env=env)
    assert result.exit_code == 0, result.output
    doc = json.loads(layout.conf_file.read_text())
    assert doc["server_port"] == 30001
    assert doc["password"] == "MyStrongPass"
    assert "Port=30001" in result.output


def test_options_override_defaults(invoke, layout, as_root):
    result = invoke(*_install_args("--port", "4443", "--password", "x", "--mode", "udp_only"))
    assert result.exit_code == 0, result.output
    assert ServerConfig.load(layout.conf_file) == ServerConfig(port=4443, password="x", mode="udp_only")


@pytest.mark.parametrize(
    "env",
    [{"PORT": "70000"}, {"MODE": "both"}, {"METHOD": "rot13"}, {"TIMEOUT": "0"}],
)
def test_invalid_parameters_are_usage_errors(invoke, layout, runner, env, as_root):
    result = invoke(*_install_args(), env=env)
    assert result.exit_code == 2
    assert runner.calls == []
    assert not layout.conf_file.exists()


def test_service_failure_exits_nonzero(invoke, runner, as_root):
    runner.respond(["systemctl", "is-active"], 3, "")
    result = invoke(*_install_args("--password", "p"))
    assert result.exit_code == 1


def test_missing_firewall_still_succeeds(invoke, runner, as_root):
    runner.missing.update({"ufw", "iptables"})
    result = invoke(*_install_args("--password", "p"))
    assert result.exit_code == 0, result.output
    assert not runner.ran("ufw")
    assert runner.ran("systemctl", "is-active", "--quiet", "shadowsocks-libev.service")


def test_no_reinforce_flag(invoke, runner, as_root):
    result = invoke(*_install_args("--password", "p", "--no-reinforce"))
    assert result.exit_code == 0, result.output
    assert not runner.ran("systemctl", "restart")
    assert not runner.ran("iptables")


def test_status_reads_installed_port(invoke, layout, runner, as_root):
    layout.conf_dir.mkdir(parents=True)
    layout.conf_file.write_text(ServerConfig(port=8388, password="p").to_json())
    result = invoke("status")
    assert result.exit_code == 0, result.output
    assert runner.ran("systemctl", "--no-pager", "--full", "status", "shadowsocks-libev.service")
    assert runner.ran("journalctl", "-u", "shadowsocks-libev.service")
    assert "ss-server" in result.output


def test_set_password_requires_existing_config(invoke, as_root):
    result = invoke("set-password", "new", "--settle-seconds", "0")
    assert result.exit_code == 1


def test_set_password_updates_config(invoke, layout, runner, as_root):
    assert invoke(*_install_args("--password", "old")).exit_code == 0
    result = invoke("set-password", "brand-new", "--settle-seconds", "0")
    assert result.exit_code == 0, result.output
    assert json.loads(layout.conf_file.read_text())["password"] == "brand-new"
    assert runner.count("systemctl", "restart") == 2


def test_set_password_rejects_empty(invoke, layout, as_root):
    assert invoke(*_install_args("--password", "old")).exit_code == 0
    result = invoke("set-password", "", "--settle-seconds", "0")
    assert result.exit_code == 1
    assert json.loads(layout.conf_file.read_text())["password"] == "old"


def test_empty_password_option_is_usage_error(invoke, layout, runner, as_root):
    result = invoke(*_install_args("--password", ""))
    assert result.exit_code == 2
    assert "must not be empty" in result.output
    assert runner.calls == []
    assert not layout.conf_file.exists()


def test_status_survives_missing_ss_binary(invoke, layout, runner, as_root):
    layout.conf_dir.mkdir(parents=True)
    layout.conf_file.write_text(ServerConfig(password="p").to_json())
    runner.unstartable.add("ss")
    result = invoke("status")
    assert result.exit_code == 0, result.output
    assert "Could not list listening sockets" in result.output
    assert runner.ran("journalctl", "-u", "shadowsocks-libev.service")


def test_set_password_keeps_extra_keys(invoke, layout, as_root):
    doc = ServerConfig(password="old").to_dict()
    doc.update({"plugin": "v2ray-plugin", "plugin_opts": "server"})
    layout.conf_dir.mkdir(parents=True)
    layout.conf_file.write_text(json.dumps(doc))
    result = invoke("set-password", "brand-new", "--settle-seconds", "0")
    assert result.exit_code == 0, result.output
    saved = json.loads(layout.conf_file.read_text())
    assert saved["password"] == "brand-new"
    assert saved["plugin"] == "v2ray-plugin"
    assert saved["plugin_opts"] == "server"
