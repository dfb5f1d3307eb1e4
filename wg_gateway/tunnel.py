"""
Tunnel endpoints.
/api/tunnel/prot leases the listening port; /api/tunnel/client/... is
forwarded unchanged to the WireGuard management service.
"""
import re
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse, Response
from pydantic import AliasChoices, BaseModel, Field

from .auth import require_auth
from .ports import PortLeaseAllocator
from .wg import WireGuardService

router = APIRouter(prefix="/api/tunnel", tags=["tunnel"], dependencies=[Depends(require_auth)])


class AssignPortRequest(BaseModel):
    # Clients send `prot`; `port` is accepted as well.
    prot: Optional[int] = Field(default=None, validation_alias=AliasChoices("prot", "port"))


class CreateClientRequest(BaseModel):
    name: str


class ClientNameRequest(BaseModel):
    name: str


class ClientAddressRequest(BaseModel):
    address: str


def _allocator(request: Request) -> PortLeaseAllocator:
    return request.app.state.allocator


def _wireguard(request: Request) -> WireGuardService:
    return request.app.state.wireguard


def config_filename(name: str, client_id: str) -> str:
    """Download filename for a client config, derived from the client name."""
    safe = re.sub(r"[^a-zA-Z0-9_=+.-]", "-", name or "")
    safe = re.sub(r"(-{2,}|-$)", "-", safe)
    safe = re.sub(r"-$", "", safe)[:32]
    return f"{safe or client_id}.conf"


@router.get("/prot")
async def get_port(request: Request):
    """Current port, allowed range and previously used ports."""
    status = await _allocator(request).status()
    return {
        "port": status.port,
        "ports": str(status.range),
        "history_ports": list(status.history),
    }


@router.put("/prot")
async def assign_port(request: Request, body: Optional[AssignPortRequest] = None):
    """Lease the requested port, or the next unused one when none is given."""
    requested = body.prot if body else None
    port = await _allocator(request).assign(requested)
    return {"prot": port}


@router.delete("/prot")
async def release_port(request: Request):
    """Forget the current port and the whole history."""
    port = await _allocator(request).release()
    return {"prot": port}


@router.get("/client")
async def list_clients(request: Request):
    return await _wireguard(request).get_clients()


@router.post("/client")
async def create_client(request: Request, body: CreateClientRequest):
    return await _wireguard(request).create_client(body.name)


@router.get("/client/{client_id}/qrcode.svg")
async def get_client_qrcode(client_id: str, request: Request):
    svg = await _wireguard(request).get_client_qrcode_svg(client_id)
    return Response(content=svg, media_type="image/svg+xml")


@router.get("/client/{client_id}/configuration")
async def download_client_configuration(client_id: str, request: Request):
    """Client config as a .conf file download."""
    wireguard = _wireguard(request)
    client = await wireguard.get_client(client_id)
    config = await wireguard.get_client_configuration(client_id)
    filename = config_filename(client.get("name", ""), client_id)
    return PlainTextResponse(
        content=config,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/client/{client_id}/config")
async def get_client_configuration(client_id: str, request: Request):
    config = await _wireguard(request).get_client_configuration(client_id)
    return {"config": config}


@router.delete("/client/{client_id}")
async def delete_client(client_id: str, request: Request):
    return await _wireguard(request).delete_client(client_id)


@router.post("/client/{client_id}/enable")
async def enable_client(client_id: str, request: Request):
    return await _wireguard(request).enable_client(client_id)


@router.post("/client/{client_id}/disable")
async def disable_client(client_id: str, request: Request):
    return await _wireguard(request).disable_client(client_id)


@router.put("/client/{client_id}/name")
async def update_client_name(client_id: str, request: Request, body: ClientNameRequest):
    return await _wireguard(request).update_client_name(client_id, body.name)


@router.put("/client/{client_id}/address")
async def update_client_address(client_id: str, request: Request, body: ClientAddressRequest):
    return await _wireguard(request).update_client_address(client_id, body.address)
