"""
WireGuard Service Client Tests

HttpWireGuardService against a mocked management API:
- Request routing for every operation
- Error mapping (upstream status, transport failure)
"""
import httpx
import pytest

from wg_gateway.errors import WireGuardError
from wg_gateway.wg import HttpWireGuardService


def make_service(handler):
    client = httpx.AsyncClient(base_url="http://wg.test", transport=httpx.MockTransport(handler))
    return HttpWireGuardService("http://wg.test/", client=client)


class Recorder:
    """Mock transport handler recording each request."""

    def __init__(self, response=None):
        self.requests = []
        self.response = response or httpx.Response(200, json={"ok": True})

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.response

    @property
    def last(self):
        request = self.requests[-1]
        return request.method, request.url.path, request.content


class TestRouting:
    @pytest.mark.asyncio
    async def test_save_config(self):
        recorder = Recorder(httpx.Response(204))
        service = make_service(recorder)

        await service.save_config()

        assert recorder.last == ("POST", "/config/reload", b"")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "call, method, path, body",
        [
            (lambda s: s.get_clients(), "GET", "/clients", None),
            (lambda s: s.get_client("c1"), "GET", "/clients/c1", None),
            (lambda s: s.create_client("Laptop"), "POST", "/clients", {"name": "Laptop"}),
            (lambda s: s.delete_client("c1"), "DELETE", "/clients/c1", None),
            (lambda s: s.enable_client("c1"), "POST", "/clients/c1/enable", None),
            (lambda s: s.disable_client("c1"), "POST", "/clients/c1/disable", None),
            (lambda s: s.update_client_name("c1", "Tablet"), "PUT", "/clients/c1/name", {"name": "Tablet"}),
            (lambda s: s.update_client_address("c1", "10.8.0.9"), "PUT", "/clients/c1/address", {"address": "10.8.0.9"}),
        ],
    )
    async def test_json_operations(self, call, method, path, body):
        recorder = Recorder()
        service = make_service(recorder)

        result = await call(service)

        request = recorder.requests[-1]
        assert (request.method, request.url.path) == (method, path)
        if body is not None:
            assert httpx.Response(200, content=request.content).json() == body
        assert result == {"ok": True}

    @pytest.mark.asyncio
    async def test_empty_body_returns_none(self):
        service = make_service(Recorder(httpx.Response(204)))
        assert await service.delete_client("c1") is None

    @pytest.mark.asyncio
    async def test_text_operations(self):
        def handler(request):
            if request.url.path.endswith("qrcode.svg"):
                return httpx.Response(200, text="<svg/>")
            return httpx.Response(200, text="[Interface]\n")

        service = make_service(handler)

        assert await service.get_client_configuration("c1") == "[Interface]\n"
        assert await service.get_client_qrcode_svg("c1") == "<svg/>"


class TestErrors:
    @pytest.mark.asyncio
    async def test_upstream_error_keeps_status(self):
        service = make_service(Recorder(httpx.Response(404, json={"error": "Client Not Found: c9"})))

        with pytest.raises(WireGuardError) as exc:
            await service.get_client("c9")

        assert exc.value.status_code == 404
        assert exc.value.message == "Client Not Found: c9"

    @pytest.mark.asyncio
    async def test_upstream_error_with_plain_body(self):
        service = make_service(Recorder(httpx.Response(500, text="boom")))

        with pytest.raises(WireGuardError) as exc:
            await service.save_config()

        assert exc.value.status_code == 500
        assert exc.value.message == "boom"

    @pytest.mark.asyncio
    async def test_unreachable_service(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        service = make_service(handler)

        with pytest.raises(WireGuardError) as exc:
            await service.get_clients()

        assert exc.value.status_code == 502
        assert "unreachable" in exc.value.message

    @pytest.mark.asyncio
    async def test_aclose(self):
        service = make_service(Recorder())
        await service.aclose()
        assert service._client.is_closed
