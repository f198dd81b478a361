"""
Tests for the UDP listener: lifecycle, dispatch and failure isolation.
"""

import logging
import re
import socket
import threading
import time

import pytest

from netflowd_app import sockets
from netflowd_app.sockets import Listener, ListenerState

from utils_netflow import Collector, v5_datagram, v5_header, v5_record

SENDER = ('192.0.2.10', 40000)


@pytest.fixture
def listener(free_port):
    collector = Collector()
    l = Listener(free_port, collector, listen_address='127.0.0.1',
                 poll_interval=0.2)
    l.collector = collector
    yield l
    l.close()


def send(sender, listener, packet):
    sender.sendto(packet, ('127.0.0.1', listener.port))


# Dispatch, without a socket.

def test_process_datagram_delivers_records_in_order():
    collector = Collector()
    l = Listener(2055, collector)

    l.process_datagram(v5_datagram([1, 2, 3]), SENDER)

    assert [r.source_port for r in collector.records] == [1, 2, 3]
    assert all(who is l for (who, _) in collector.calls)
    assert l.metric_datagrams == 1
    assert l.metric_records == 3


def test_unsupported_version_never_reaches_a_decoder(monkeypatch, caplog):
    decoded = []

    def spy(p, address):
        decoded.append(bytes(p))
        return []

    monkeypatch.setattr(sockets, 'dispatch', {5: spy})
    caplog.set_level(logging.INFO, logger='netflowd_app')
    collector = Collector()
    l = Listener(2055, collector)

    l.process_datagram(v5_header(1, version=9) + v5_record(), SENDER)

    assert decoded == []
    assert collector.calls == []
    assert l.metric_unsupported == 1
    assert 'unsupported version 9' in caplog.text


@pytest.mark.parametrize('packet', [b'', b'\x05'])
def test_short_datagram_discarded(packet, caplog):
    caplog.set_level(logging.INFO, logger='netflowd_app')
    collector = Collector()
    l = Listener(2055, collector)

    l.process_datagram(packet, SENDER)

    assert collector.calls == []
    assert l.metric_short == 1
    assert 'short packet' in caplog.text


@pytest.mark.parametrize('packet', [
    v5_header(1)[:10],
    v5_header(31) + v5_record() * 31,
])
def test_decode_failure_discarded(packet):
    collector = Collector()
    l = Listener(2055, collector)

    l.process_datagram(packet, SENDER)

    assert collector.calls == []
    assert l.metric_decode_failures == 1
    assert l.metric_errors == 0


def test_consumer_fault_does_not_stop_delivery(caplog):
    collector = Collector(fail_on=[2])
    l = Listener(2055, collector)

    l.process_datagram(v5_datagram([1, 2, 3]), SENDER)
    l.process_datagram(v5_datagram([4]), SENDER)

    assert [r.source_port for r in collector.records] == [1, 2, 3, 4]
    assert l.metric_consumer_errors == 1
    assert l.metric_records == 3
    assert 'consumer failure on 2' in caplog.text


def test_unexpected_error_is_contained(monkeypatch, caplog):
    def broken(p, address):
        raise KeyError('boom')

    monkeypatch.setattr(sockets, 'dispatch', {5: broken})
    l = Listener(2055, Collector())

    l.process_datagram(v5_datagram([1]), SENDER)

    assert l.metric_errors == 1
    assert 'boom' in caplog.text


def test_given_logger_is_used(caplog):
    logger = logging.getLogger('test.listener')
    caplog.set_level(logging.INFO, logger='test.listener')
    l = Listener(2055, Collector(), logger=logger)

    l.process_datagram(b'\x00\x09' + b'\x00' * 30, SENDER)

    assert [r.name for r in caplog.records] == ['test.listener']


def test_print_metrics_resets(caplog):
    caplog.set_level(logging.INFO, logger='netflowd_app')
    l = Listener(2055, Collector())
    l.process_datagram(v5_datagram([1, 2]), SENDER)

    l.print_metrics()

    assert 'datagrams: 1, records: 2' in caplog.text
    assert l.metric_datagrams == 0
    assert l.metric_records == 0


def test_print_metrics_loses_no_counts_while_reading(caplog):
    caplog.set_level(logging.INFO, logger='netflowd_app')
    l = Listener(2055, Collector())
    n = 2000

    def reader():
        for _ in range(n):
            l.process_datagram(b'\x05', SENDER)

    t = threading.Thread(target=reader)
    t.start()
    while t.is_alive():
        l.print_metrics()
    t.join()
    l.print_metrics()

    reported = [int(m) for m in
                re.findall(r'datagrams: (\d+),', caplog.text)]
    short = [int(m) for m in re.findall(r'short: (\d+),', caplog.text)]
    assert sum(reported) == n
    assert sum(short) == n
    assert l.metric_datagrams == 0


# Lifecycle, with a real socket.

def test_records_delivered_in_order_across_datagrams(listener, sender):
    listener.start()

    send(sender, listener, v5_datagram([1, 2, 3]))
    send(sender, listener, v5_datagram([4, 5]))

    assert listener.collector.wait_for(5)
    assert [r.source_port for r in listener.collector.records] == \
        [1, 2, 3, 4, 5]
    assert listener.collector.calls[0][0] is listener
    assert listener.collector.records[0].client_address.exploded == \
        '127.0.0.1'


def test_bad_datagrams_do_not_stop_the_loop(listener, sender):
    listener.start()

    send(sender, listener, b'\x00')
    send(sender, listener, v5_header(1, version=9) + v5_record())
    send(sender, listener, v5_header(31))
    send(sender, listener, v5_datagram([7]))

    assert listener.collector.wait_for(1)
    assert [r.source_port for r in listener.collector.records] == [7]
    assert listener.is_alive()
    assert listener.metric_short == 1
    assert listener.metric_unsupported == 1
    assert listener.metric_decode_failures == 1


def test_start_returns_without_traffic(listener):
    listener.start()

    assert listener.state == ListenerState.started
    assert listener.is_alive()
    assert listener.collector.calls == []


def test_start_twice_fails_and_loop_keeps_running(listener, sender):
    listener.start()

    with pytest.raises(RuntimeError):
        listener.start()

    send(sender, listener, v5_datagram([9]))
    assert listener.collector.wait_for(1)
    assert listener.state == ListenerState.started


def test_stop_before_start_is_noop(listener):
    assert listener.stop() is True
    assert listener.state == ListenerState.created
    assert listener.s is None


def test_stop_twice_is_noop(listener):
    listener.start()

    assert listener.stop(timeout=5) is True
    assert listener.stop(timeout=5) is True
    assert listener.state == ListenerState.stopped
    assert not listener.is_alive()
    assert listener.s is None


def test_stop_wakes_a_blocked_read(free_port):
    l = Listener(free_port, Collector(), listen_address='127.0.0.1',
                 poll_interval=30)
    l.start()

    began = time.monotonic()
    assert l.stop(timeout=10) is True
    assert time.monotonic() - began < 10


def test_stopped_listener_can_not_restart(listener):
    listener.start()
    listener.stop(timeout=5)

    with pytest.raises(RuntimeError):
        listener.start()


def test_nothing_delivered_after_stop(listener, sender):
    listener.start()
    listener.stop(timeout=5)

    # The port is released, so a new socket can take it.
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    s.bind(('127.0.0.1', listener.port))
    s.close()
    assert listener.collector.calls == []


@pytest.mark.parametrize('port', [None, 0, -5, 65536])
def test_bad_port_is_a_config_error(port):
    l = Listener(port, Collector())

    with pytest.raises(ValueError):
        l.start()

    assert l.state == ListenerState.created
    assert not l.is_alive()


def test_bad_listen_address_is_a_config_error(free_port):
    l = Listener(free_port, Collector(), listen_address='nowhere')

    with pytest.raises(ValueError):
        l.start()

    assert l.state == ListenerState.created


def test_bind_failure_reported_and_no_thread(free_port, caplog):
    taken = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    taken.bind(('127.0.0.1', free_port))
    try:
        l = Listener(free_port, Collector(), listen_address='127.0.0.1')
        with pytest.raises(OSError):
            l.start()
    finally:
        taken.close()

    assert l.state == ListenerState.created
    assert not l.is_alive()
    assert l.s is None
    assert 'ERROR: bind port %d' % free_port in caplog.text


def test_close_is_idempotent(listener):
    listener.start()

    listener.close()
    listener.close()

    assert listener.state == ListenerState.stopped
    assert not listener.is_alive()


def test_close_without_start_prevents_start(free_port):
    l = Listener(free_port, Collector())
    l.close()

    with pytest.raises(RuntimeError):
        l.start()


def test_context_manager_closes(free_port, sender):
    collector = Collector()
    with Listener(free_port, collector, listen_address='127.0.0.1',
                  poll_interval=0.2) as l:
        l.start()
        sender.sendto(v5_datagram([1]), ('127.0.0.1', free_port))
        assert collector.wait_for(1)

    assert l.state == ListenerState.stopped
    assert not l.is_alive()


def test_listeners_on_different_ports_are_independent(sender):
    ports = []
    for _ in range(2):
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        s.bind(('127.0.0.1', 0))
        ports.append(s.getsockname()[1])
        s.close()

    c1, c2 = Collector(), Collector()
    l1 = Listener(ports[0], c1, listen_address='127.0.0.1', poll_interval=0.2)
    l2 = Listener(ports[1], c2, listen_address='127.0.0.1', poll_interval=0.2)
    try:
        l1.start()
        l2.start()
        sender.sendto(v5_datagram([1]), ('127.0.0.1', ports[0]))
        sender.sendto(v5_datagram([2, 3]), ('127.0.0.1', ports[1]))

        assert c1.wait_for(1)
        assert c2.wait_for(2)
        assert [r.source_port for r in c1.records] == [1]
        assert [r.source_port for r in c2.records] == [2, 3]
        assert l1.id != l2.id
    finally:
        l1.close()
        l2.close()


def test_consumer_can_stop_its_own_listener(free_port, sender):
    calls = []

    def consumer(listener, record):
        calls.append(record)
        listener.stop()

    l = Listener(free_port, consumer, listen_address='127.0.0.1',
                 poll_interval=0.2)
    l.start()
    sender.sendto(v5_datagram([1, 2]), ('127.0.0.1', free_port))

    l.join(5)
    assert not l.is_alive()
    assert l.state == ListenerState.stopped
    # The rest of the datagram is still delivered; no further reads.
    assert [r.source_port for r in calls] == [1, 2]


def test_stop_times_out_on_a_stuck_consumer(free_port, sender, caplog):
    entered = threading.Event()
    release = threading.Event()
    calls = []

    def consumer(listener, record):
        calls.append(record.source_port)
        entered.set()
        release.wait(30)

    l = Listener(free_port, consumer, listen_address='127.0.0.1',
                 poll_interval=0.2)
    l.start()
    try:
        sender.sendto(v5_datagram([1, 2]), ('127.0.0.1', free_port))
        assert entered.wait(5)

        began = time.monotonic()
        assert l.stop(timeout=0.3) is False
        assert time.monotonic() - began < 3
        assert 'WARN: Thread %s has not stopped yet' % l.name in caplog.text
        assert l.s is None

        # A second stop still waits on the thread, it does not report
        # success while the consumer is blocked.
        assert l.stop(timeout=0.3) is False
        assert l.is_alive()

        release.set()
        assert l.stop(timeout=5) is True
        assert not l.is_alive()
        assert l.state == ListenerState.stopped

        sender.sendto(v5_datagram([3]), ('127.0.0.1', free_port))
        time.sleep(0.3)
        # The rest of the blocked datagram is delivered, nothing after.
        assert calls == [1, 2]
    finally:
        release.set()
        l.close()
