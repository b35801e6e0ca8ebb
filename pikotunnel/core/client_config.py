# pikotunnel/core/client_config.py
"""
Client-side configuration for a provisioned peer
"""

import shlex
from typing import Dict

from pikotunnel.config import Settings
from pikotunnel.database.models import Peer


def build_client_config(peer: Peer, settings: Settings) -> Dict[str, str]:
    """Values a client needs to bring its tunnel up against this relay"""
    return {
        "private_key": peer.private_key,
        "public_key": peer.public_key,
        "ip": peer.ip,
        "ip_with_mask": peer.allowed_ips,
        "allowed_ips": settings.client_subnet,
        "relay_public_key": settings.relay_public_key,
        "endpoint": settings.relay_endpoint,
        "persistent_keepalive": str(settings.WIREGUARD_KEEPALIVE),
    }


_SCRIPT_TEMPLATE = """#!/bin/bash
# Client tunnel for peer {peer_id}
# Usage: $0 <up|down>

INTERFACE_NAME={interface}
PRIVATE_KEY={private_key}
PEER_PUBLIC_KEY={relay_public_key}
ALLOWED_IPS={allowed_ips}
ENDPOINT={endpoint}
INTERFACE_IP={ip_with_mask}
KEEPALIVE={keepalive}

if [ "$EUID" -ne 0 ]; then
    echo "Please run as root"
    exit 1
fi

up() {{
    local key_file
    key_file=$(mktemp)
    trap 'rm -f "$key_file"' RETURN
    echo "$PRIVATE_KEY" > "$key_file"

    ip link add "$INTERFACE_NAME" type wireguard
    wg set "$INTERFACE_NAME" private-key "$key_file" listen-port 0
    wg set "$INTERFACE_NAME" peer "$PEER_PUBLIC_KEY" \\
        allowed-ips "$ALLOWED_IPS" \\
        endpoint "$ENDPOINT" \\
        persistent-keepalive "$KEEPALIVE"
    ip addr add "$INTERFACE_IP" dev "$INTERFACE_NAME"
    ip link set "$INTERFACE_NAME" up
    ip route add "$ALLOWED_IPS" dev "$INTERFACE_NAME"
    echo "WireGuard interface $INTERFACE_NAME has been set up"
}}

down() {{
    if ip link show "$INTERFACE_NAME" >/dev/null 2>&1; then
        ip route del "$ALLOWED_IPS" dev "$INTERFACE_NAME" 2>/dev/null || true
        ip link set "$INTERFACE_NAME" down 2>/dev/null || true
        ip link del "$INTERFACE_NAME" 2>/dev/null || true
        echo "WireGuard interface $INTERFACE_NAME has been removed"
    else
        echo "WireGuard interface $INTERFACE_NAME does not exist"
    fi
}}

case "$1" in
    up) up ;;
    down) down ;;
    *)
        echo "Usage: $0 <up|down>"
        exit 1
        ;;
esac
"""


def render_setup_script(peer: Peer, settings: Settings, interface: str = "wg0") -> str:
    """Bash script that creates (up) or removes (down) the client interface"""
    config = build_client_config(peer, settings)
    return _SCRIPT_TEMPLATE.format(
        peer_id=peer.id,
        interface=shlex.quote(interface),
        private_key=shlex.quote(config["private_key"]),
        relay_public_key=shlex.quote(config["relay_public_key"]),
        allowed_ips=shlex.quote(config["allowed_ips"]),
        endpoint=shlex.quote(config["endpoint"]),
        ip_with_mask=shlex.quote(config["ip_with_mask"]),
        keepalive=shlex.quote(config["persistent_keepalive"]),
    )
