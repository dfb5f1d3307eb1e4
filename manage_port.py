import asyncio
import sys

from wg_gateway.audit import AuditLog
from wg_gateway.config import ConfigResolver, GatewaySettings
from wg_gateway.errors import GatewayError
from wg_gateway.ports import PortLeaseAllocator
from wg_gateway.wg import HttpWireGuardService

USAGE = "Usage: python manage_port.py status | assign [port] | release"


async def manage_port(command, port=None):
    settings = GatewaySettings.from_env()
    wireguard = HttpWireGuardService(settings.wireguard_url, timeout=settings.wireguard_timeout)
    allocator = PortLeaseAllocator(ConfigResolver(), wireguard, AuditLog(settings.audit_log_path))

    try:
        if command == "status":
            status = await allocator.status()
            print(f"Port:    {status.port}")
            print(f"Range:   {status.range}")
            print(f"History: {', '.join(map(str, status.history)) or '-'}")
        elif command == "assign":
            leased = await allocator.assign(port)
            if leased:
                print(f"Tunnel port is now {leased}")
            else:
                print("No unused port left in range. Run 'release' to reset the history.")
        elif command == "release":
            await allocator.release()
            print("Port released, history cleared.")
    finally:
        await wireguard.aclose()


if __name__ == "__main__":
    if len(sys.argv) < 2 or sys.argv[1] not in ("status", "assign", "release"):
        print(USAGE)
        sys.exit(1)

    port = None
    if sys.argv[1] == "assign" and len(sys.argv) > 2:
        try:
            port = int(sys.argv[2])
        except ValueError:
            print(USAGE)
            sys.exit(1)

    try:
        asyncio.run(manage_port(sys.argv[1], port))
    except GatewayError as e:
        print(f"Failed: {e.message}")
        sys.exit(1)
