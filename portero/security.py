"""Client address resolution behind a known number of trusted reverse proxies."""

import logging
from ipaddress import IPv6Address, ip_address
from typing import List, Optional

from starlette.requests import Request

log = logging.getLogger("uvicorn.error")


class ClientAddressResolver:
    """Resolve the one address trusted as a request's client origin.

    The forwarding header lists addresses left to right, each proxy appending
    the peer it saw. Walking from the server side, the TCP peer is hop 0, the
    right-most header entry is hop 1, and so on. With ``trusted_hop_count``
    set to N the resolver returns hop N, or the furthest hop available when
    the header is shorter. With N == 0 the header is ignored entirely.
    """

    def __init__(
        self,
        trusted_hop_count: int = 1,
        header_name: str = "x-forwarded-for",
        unwrap_ipv4_mapped: bool = False,
    ):
        if trusted_hop_count < 0:
            raise ValueError("trusted_hop_count must be >= 0")
        self.trusted_hop_count = trusted_hop_count
        self.header_name = header_name.strip().lower()
        self.unwrap_ipv4_mapped = unwrap_ipv4_mapped

    def canonical(self, text: str) -> str:
        """Return the canonical textual form of ``text``, or ``text`` unchanged
        when it is not an IP address."""
        try:
            addr = ip_address(text)
        except ValueError:
            return text
        if self.unwrap_ipv4_mapped and isinstance(addr, IPv6Address) and addr.ipv4_mapped:
            return str(addr.ipv4_mapped)
        return str(addr)

    def _hops(self, forwarded: Optional[str]) -> List[str]:
        if not forwarded or not forwarded.strip():
            return []
        return [part.strip() for part in forwarded.split(",")]

    def resolve(self, peer: Optional[str], forwarded: Optional[str] = None) -> str:
        peer = (peer or "").strip()
        if self.trusted_hop_count == 0:
            return self.canonical(peer)

        hops = self._hops(forwarded)
        if not hops:
            return self.canonical(peer)

        # server-adjacent end first
        chain = [peer] + hops[::-1]
        index = min(self.trusted_hop_count, len(chain) - 1)
        for hop in chain[1 : index + 1]:
            try:
                ip_address(hop)
            except ValueError:
                log.debug(
                    "Malformed %s entry %r; falling back to peer %s",
                    self.header_name,
                    hop,
                    peer,
                )
                return self.canonical(peer)
        return self.canonical(chain[index])

    def from_request(self, request: Request) -> str:
        """Resolve the client address of a Starlette/FastAPI request."""
        peer = request.client.host if request.client else None
        # repeated headers are treated as one comma-joined list
        forwarded = ", ".join(request.headers.getlist(self.header_name)) or None
        resolved = self.resolve(peer, forwarded)
        log.debug("Resolved client address %s (peer=%s)", resolved or "-", peer)
        return resolved
