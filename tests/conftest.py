"""Shared fixtures: a live VaultKeeper server on an ephemeral port."""

import pytest

from vaultkeeper.config import Config
from vaultkeeper.network.client import VaultClient
from vaultkeeper.network.server import build_server
from vaultkeeper.security.passwords import BcryptHasher

TEST_SECRET = "test-secret-key-that-is-32-bytes!"


@pytest.fixture
def server_config(tmp_path):
    return Config(db_path=str(tmp_path / "vault.db"), jwt_secret=TEST_SECRET, env="dev")


@pytest.fixture
def live_server(server_config):
    """Start a server bound to 127.0.0.1 on a free port; yields (server, port)."""
    server = build_server(server_config, hasher=BcryptHasher(rounds=4))
    thread, port = server.start("127.0.0.1", 0)
    try:
        yield server, port
    finally:
        server.stop()
        thread.join(timeout=5)


@pytest.fixture
def client_factory(live_server):
    _, port = live_server

    def make(token=None, timeout=10.0):
        return VaultClient("127.0.0.1", port, timeout=timeout, token=token)

    return make
