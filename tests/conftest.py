import socket

import pytest

from netflowd_app import util


@pytest.fixture
def free_port():
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    s.bind(('127.0.0.1', 0))
    port = s.getsockname()[1]
    s.close()
    return port


@pytest.fixture
def sender():
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    yield s
    s.close()


@pytest.fixture(autouse=True)
def reset_exit_code(monkeypatch):
    monkeypatch.setattr(util, 'exit_code', 0)
