"""
Pytest fixtures for gateway tests.
Shared configuration, a fake WireGuard service and app clients.
"""
import json

import pytest
from fastapi.testclient import TestClient

from wg_gateway.audit import AuditLog
from wg_gateway.config import ConfigResolver, GatewaySettings
from wg_gateway.errors import WireGuardError
from wg_gateway.limiter import limiter
from wg_gateway.main import create_app
from wg_gateway.ports import PortLeaseAllocator
from wg_gateway.sessions import InMemorySessionStore
from wg_gateway.wg import WireGuardService

ADMIN_PASSWORD = "correct horse battery staple"


class FakeWireGuardService(WireGuardService):
    """In-memory stand-in for the WireGuard management service."""

    def __init__(self):
        self.reloads = 0
        self.fail_reload = False
        self.clients = {
            "c1": {"id": "c1", "name": "Alice's Phone", "enabled": True, "address": "10.8.0.2"},
        }

    async def save_config(self):
        if self.fail_reload:
            raise WireGuardError("wg syncconf failed")
        self.reloads += 1

    async def get_clients(self):
        return list(self.clients.values())

    async def get_client(self, client_id):
        if client_id not in self.clients:
            raise WireGuardError(f"Client Not Found: {client_id}", 404)
        return self.clients[client_id]

    async def create_client(self, name):
        client = {"id": f"c{len(self.clients) + 1}", "name": name, "enabled": True, "address": "10.8.0.3"}
        self.clients[client["id"]] = client
        return client

    async def delete_client(self, client_id):
        await self.get_client(client_id)
        del self.clients[client_id]

    async def enable_client(self, client_id):
        (await self.get_client(client_id))["enabled"] = True

    async def disable_client(self, client_id):
        (await self.get_client(client_id))["enabled"] = False

    async def update_client_name(self, client_id, name):
        (await self.get_client(client_id))["name"] = name

    async def update_client_address(self, client_id, address):
        (await self.get_client(client_id))["address"] = address

    async def get_client_configuration(self, client_id):
        client = await self.get_client(client_id)
        return f"[Interface]\nAddress = {client['address']}/24\n"

    async def get_client_qrcode_svg(self, client_id):
        await self.get_client(client_id)
        return "<svg xmlns='http://www.w3.org/2000/svg'></svg>"


def write_override(wg_dir, port, history, **extra):
    path = wg_dir / "wg_config.json"
    path.write_text(json.dumps({"WG_PORT": port, "WG_HISTORY_PORT": history, **extra}))
    return path


def read_override(wg_dir):
    return json.loads((wg_dir / "wg_config.json").read_text())


@pytest.fixture(autouse=True)
def disable_rate_limit():
    limiter.enabled = False
    yield
    limiter.enabled = True
    limiter.reset()


@pytest.fixture
def wg_dir(tmp_path):
    path = tmp_path / "wireguard"
    path.mkdir()
    return path


@pytest.fixture
def environ(wg_dir):
    """Mutable environment seen by the resolver."""
    return {"WG_PATH": str(wg_dir)}


@pytest.fixture
def resolver(environ):
    return ConfigResolver(environ)


@pytest.fixture
def wireguard():
    return FakeWireGuardService()


@pytest.fixture
def audit_path(tmp_path):
    return tmp_path / "audit.log"


@pytest.fixture
def allocator(resolver, wireguard, audit_path):
    return PortLeaseAllocator(resolver, wireguard, AuditLog(audit_path))


def make_client(resolver, wireguard, audit_path, store, **settings):
    app = create_app(
        settings=GatewaySettings(audit_log_path=audit_path, **settings),
        wireguard=wireguard,
        store=store,
        resolver=resolver,
    )
    return TestClient(app)


@pytest.fixture
def session_store():
    return InMemorySessionStore()


@pytest.fixture
def client(resolver, wireguard, audit_path, session_store):
    """App without an admin password."""
    with make_client(resolver, wireguard, audit_path, session_store) as test_client:
        yield test_client


@pytest.fixture
def protected_client(resolver, wireguard, audit_path, session_store):
    """App with an admin password, not logged in."""
    with make_client(resolver, wireguard, audit_path, session_store, password=ADMIN_PASSWORD) as test_client:
        yield test_client


@pytest.fixture
def admin_client(protected_client):
    """App with an admin password, already logged in."""
    response = protected_client.post("/api/session", json={"password": ADMIN_PASSWORD})
    assert response.status_code == 204
    return protected_client
