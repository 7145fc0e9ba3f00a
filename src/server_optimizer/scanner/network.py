"""Network Scanner - The server's own IPv4 addresses."""

from server_optimizer.connector.base import Connector


def server_ipv4_addresses(connector: Connector) -> list[str]:
    """Global-scope IPv4 addresses, primary first."""
    result = connector.run("ip -4 -o addr show scope global")
    if not result.success:
        return []
    addresses = []
    for line in result.stdout.splitlines():
        # 2: eth0    inet 203.0.113.10/24 brd 203.0.113.255 scope global eth0
        parts = line.split()
        if "inet" not in parts:
            continue
        index = parts.index("inet") + 1
        if index < len(parts):
            address = parts[index].split("/")[0]
            if address not in addresses:
                addresses.append(address)
    return addresses
