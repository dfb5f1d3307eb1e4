"""
Firewall rule templates for the tunnel interface.
Rendered into the PostUp/PostDown hooks of the WireGuard interface,
so every rule is a plain iptables command string.
"""

TUNNEL_INTERFACE = "wg0"


def subnet_of(default_address: str) -> str:
    """Turn a client address template like 10.8.0.x into its /24 subnet."""
    return f"{default_address.replace('x', '0')}/24"


def _rules(action: str, device: str, default_address: str, port: int) -> list:
    return [
        f"iptables -t nat {action} POSTROUTING -s {subnet_of(default_address)} -o {device} -j MASQUERADE;",
        f"iptables {action} INPUT -p udp -m udp --dport {port} -j ACCEPT;",
        f"iptables {action} FORWARD -i {TUNNEL_INTERFACE} -j ACCEPT;",
        f"iptables {action} FORWARD -o {TUNNEL_INTERFACE} -j ACCEPT;",
    ]


def build_post_up(device: str, default_address: str, port: int) -> str:
    """
    Rules installed when the interface comes up:
    NAT for the client subnet, the listening port opened, forwarding allowed.
    """
    return " ".join(_rules("-A", device, default_address, port))


def build_post_down(device: str, default_address: str, port: int) -> str:
    """Mirror of build_post_up that deletes the same rules."""
    return " ".join(_rules("-D", device, default_address, port))
