import socket

import pytest

from sealfs_acceptance.automation.process_utils import ProcessLaunchError
from sealfs_acceptance.automation.readiness import (
    ReadinessPolicy,
    all_probes,
    split_address,
    tcp_probe,
    unix_socket_probe,
)


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def clock(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def test_delay_strategy_sleeps_settle_time_and_ignores_probe():
    fake = FakeClock()
    policy = ReadinessPolicy(strategy="delay", sleep=fake.sleep, clock=fake.clock)
    policy.wait("cluster", 3, probe=lambda: pytest.fail("probe must not run"))
    assert fake.sleeps == [3]


def test_poll_backs_off_until_probe_succeeds():
    fake = FakeClock()
    answers = iter([False, False, False, True])
    policy = ReadinessPolicy(
        strategy="poll", initial_interval_s=0.1, max_interval_s=0.3, sleep=fake.sleep, clock=fake.clock
    )
    policy.wait("manager", 1, probe=lambda: next(answers))
    assert fake.sleeps == pytest.approx([0.1, 0.2, 0.3])


def test_poll_gives_up_at_deadline():
    fake = FakeClock()
    policy = ReadinessPolicy(strategy="poll", timeout_s=5, sleep=fake.sleep, clock=fake.clock)
    with pytest.raises(ProcessLaunchError, match="cluster not ready"):
        policy.wait("cluster", 3, probe=lambda: False)
    assert fake.now == pytest.approx(5)


def test_poll_without_probe_uses_settle_delay():
    fake = FakeClock()
    policy = ReadinessPolicy(strategy="poll", sleep=fake.sleep, clock=fake.clock)
    policy.wait("manager", 1)
    assert fake.sleeps == [1]


def test_unknown_strategy_rejected():
    with pytest.raises(ValueError):
        ReadinessPolicy(strategy="handshake")


def test_split_address():
    assert split_address("127.0.0.1:8085") == ("127.0.0.1", 8085)
    assert split_address(":9000") == ("127.0.0.1", 9000)


def test_tcp_probe_sees_listener():
    with socket.socket() as listener:
        listener.bind(("127.0.0.1", 0))
        listener.listen()
        port = listener.getsockname()[1]
        assert tcp_probe(f"127.0.0.1:{port}")()
    assert not tcp_probe(f"127.0.0.1:{port}", timeout_s=0.2)()


def test_unix_socket_probe(tmp_path):
    path = str(tmp_path / "sealfs.sock")
    assert not unix_socket_probe(path)()
    with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as listener:
        listener.bind(path)
        listener.listen()
        assert unix_socket_probe(path)()


def test_all_probes():
    assert all_probes(lambda: True, lambda: True)()
    assert not all_probes(lambda: True, lambda: False)()
