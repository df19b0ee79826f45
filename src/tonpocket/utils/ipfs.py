"""IPFS URI helpers."""

from typing import Optional

IPFS_SCHEME = "ipfs://"
DEFAULT_GATEWAY = "https://ipfs.io/ipfs/"


def ipfs_path(uri: str) -> Optional[str]:
    """CID path of an ``ipfs://`` URI, or None for anything else."""
    if not uri or not uri.startswith(IPFS_SCHEME):
        return None
    path = uri[len(IPFS_SCHEME) :]
    if path.startswith("ipfs/"):
        path = path[len("ipfs/") :]
    return path.lstrip("/") or None


def ipfs_to_http(uri: Optional[str], gateway: str = DEFAULT_GATEWAY) -> Optional[str]:
    """Rewrite an ``ipfs://`` URI through a gateway; other URIs pass through."""
    if not uri:
        return uri
    path = ipfs_path(uri)
    if path is None:
        return uri
    if not gateway.endswith("/"):
        gateway += "/"
    return gateway + path


def gateway_candidates(uri: str, gateways: list[str]) -> list[str]:
    """HTTP URLs to try for ``uri``, one per gateway for IPFS content."""
    if ipfs_path(uri) is None:
        return [uri]
    return [ipfs_to_http(uri, gateway) for gateway in gateways or [DEFAULT_GATEWAY]]
