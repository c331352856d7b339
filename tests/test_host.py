import pytest

from ss_libev_setup.host import CommandError, CommandRunner, Ufw

UFW_STATUS = """Status: active

To                         Action      From
--                         ------      ----
22/tcp                     ALLOW       Anywhere
18388/tcp                  ALLOW       Anywhere
8388/udp                   ALLOW       Anywhere
8388/udp (v6)              ALLOW       Anywhere (v6)
"""


@pytest.mark.parametrize(
    "port, proto, expected",
    [(8388, "udp", True), (8388, "tcp", False), (18388, "tcp", True), (22, "tcp", True), (2, "tcp", False)],
)
def test_ufw_rule_present(port, proto, expected):
    assert Ufw.rule_present(UFW_STATUS, port, proto) is expected


def test_command_runner_captures_output():
    result = CommandRunner().run(["echo", "hello"])
    assert result.returncode == 0
    assert result.stdout.strip() == "hello"


def test_command_runner_raises_on_failure():
    with pytest.raises(CommandError) as excinfo:
        CommandRunner().run(["false"])
    assert excinfo.value.returncode == 1
    assert excinfo.value.cmd == ["false"]


def test_command_runner_unchecked_failure_returns_result():
    assert CommandRunner().run(["false"], check=False).returncode == 1


def test_command_runner_missing_binary():
    with pytest.raises(CommandError) as excinfo:
        CommandRunner().run(["definitely-not-a-real-command-xyz"])
    assert excinfo.value.returncode == 127


def test_apt_runs_noninteractive(host, runner):
    host.packages.update()
    host.packages.install("shadowsocks-libev")
    assert runner.calls == [
        ["apt-get", "update", "-y"],
        ["apt-get", "install", "-y", "shadowsocks-libev"],
    ]
    assert all(env["DEBIAN_FRONTEND"] == "noninteractive" for env in runner.envs)


def test_apt_detects_installed_package(host, runner):
    assert host.packages.is_installed("shadowsocks-libev") is False
    runner.respond(["dpkg-query"], 0, "install ok installed")
    assert host.packages.is_installed("shadowsocks-libev") is True
    runner.respond(["dpkg-query"], 0, "deinstall ok config-files")
    assert host.packages.is_installed("shadowsocks-libev") is False


def test_systemd_is_active_uses_exit_status(host, runner):
    assert host.services.is_active("x.service") is True
    runner.respond(["systemctl", "is-active"], 3, "")
    assert host.services.is_active("x.service") is False


def test_sysctl_read_returns_none_when_key_missing(host, runner):
    assert host.kernel.read("net.ipv4.tcp_congestion_control") == "cubic"
    runner.respond(["sysctl", "-n"], 255, "")
    assert host.kernel.read("net.ipv4.tcp_congestion_control") is None


def test_iptables_checks_before_insert(host, runner):
    assert host.iptables.has_accept(8388, "tcp") is False
    host.iptables.insert_accept(8388, "tcp")
    assert runner.calls[-1] == ["iptables", "-I", "INPUT", "-p", "tcp", "--dport", "8388", "-j", "ACCEPT"]


def test_socket_table_filters_by_port_and_process(host, runner):
    lines = host.sockets.listening(8388, "ss-server")
    # the fake returns the same table for the tcp and udp listings
    assert len(lines) == 2
    assert all("8388" in line for line in lines)
    assert runner.calls == [["ss", "-ltnup"], ["ss", "-lunup"]]


def test_journal_tail(host, runner):
    assert "Started" in host.journal.tail("shadowsocks-libev.service", 30)
    assert runner.calls[-1] == ["journalctl", "-u", "shadowsocks-libev.service", "-n", "30", "--no-pager"]


def test_sysctl_read_returns_none_without_binary(host, runner):
    runner.missing.add("sysctl")
    assert host.kernel.read("net.ipv4.tcp_congestion_control") is None
    assert runner.calls == []
