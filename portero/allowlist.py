"""Allow-list of permitted client addresses: exact entries and CIDR ranges."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from ipaddress import (
    IPv4Address,
    IPv4Network,
    IPv6Address,
    IPv6Network,
    ip_address,
    ip_network,
)
from typing import Iterable, Iterator, Optional, Tuple, Union

log = logging.getLogger("uvicorn.error")

IPAddress = Union[IPv4Address, IPv6Address]
IPNetwork = Union[IPv4Network, IPv6Network]


class InvalidAllowListEntry(ValueError):
    """Raised when a configured allow-list entry cannot be parsed."""


def _parse_address(text: str) -> Optional[IPAddress]:
    try:
        return ip_address(text)
    except ValueError:
        return None


@dataclass(frozen=True)
class ExactAddress:
    """A single address, stored in canonical textual form."""

    value: str

    def __post_init__(self) -> None:
        addr = _parse_address(self.value)
        if addr is None:
            raise InvalidAllowListEntry(f"invalid address: {self.value!r}")
        object.__setattr__(self, "value", str(addr))

    def matches(self, addr: IPAddress) -> bool:
        return str(addr) == self.value

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class AddressRange:
    """A base address plus the number of leading bits that must match.

    Host bits set in ``base`` are ignored, so ``10.214.3.7/16`` covers the same
    addresses as ``10.214.0.0/16``.
    """

    base: str
    prefix_length: int
    _network: IPNetwork = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        addr = _parse_address(self.base)
        if addr is None:
            raise InvalidAllowListEntry(f"invalid range base address: {self.base!r}")
        if not 0 <= self.prefix_length <= addr.max_prefixlen:
            raise InvalidAllowListEntry(
                f"prefix length {self.prefix_length} out of range for IPv{addr.version} "
                f"(0-{addr.max_prefixlen})"
            )
        object.__setattr__(self, "base", str(addr))
        object.__setattr__(
            self, "_network", ip_network(f"{addr}/{self.prefix_length}", strict=False)
        )

    def _mask(self, max_prefixlen: int) -> int:
        # top `prefix_length` bits set
        return ((1 << self.prefix_length) - 1) << (max_prefixlen - self.prefix_length)

    def matches(self, addr: IPAddress) -> bool:
        if addr.version != self._network.version:
            return False
        mask = self._mask(addr.max_prefixlen)
        return int(addr) & mask == int(self._network.network_address) & mask

    def __str__(self) -> str:
        return f"{self.base}/{self.prefix_length}"


AllowListEntry = Union[ExactAddress, AddressRange]


def parse_entry(text: str) -> AllowListEntry:
    """Parse one configured entry: ``"1.2.3.4"`` or ``"10.214.0.0/16"``."""
    raw = (text or "").strip()
    if not raw:
        raise InvalidAllowListEntry("empty allow-list entry")

    if "/" in raw:
        base, _, prefix = raw.partition("/")
        try:
            prefix_length = int(prefix)
        except ValueError as exc:
            raise InvalidAllowListEntry(f"invalid prefix length in {raw!r}") from exc
        return AddressRange(base.strip(), prefix_length)

    return ExactAddress(raw)


@dataclass(frozen=True)
class Decision:
    """Outcome of evaluating one resolved address against the allow-list."""

    allowed: bool
    address: str
    reason: Optional[str] = None

    @classmethod
    def allow(cls, address: str) -> "Decision":
        return cls(True, address)

    @classmethod
    def deny(cls, address: str, reason: str) -> "Decision":
        return cls(False, address, reason)


class AllowList:
    """Immutable set of allow-list entries.

    Membership is existential: an address is allowed when any entry matches.
    Entry order never changes the outcome. Instances hold no per-request state
    and can be shared across concurrent requests.
    """

    __slots__ = ("_entries",)

    def __init__(self, entries: Iterable[AllowListEntry] = ()):
        self._entries: Tuple[AllowListEntry, ...] = tuple(entries)

    @classmethod
    def from_strings(cls, values: Iterable[str]) -> "AllowList":
        """Build an allow-list from configuration strings (raises on bad entries)."""
        return cls(parse_entry(v) for v in values)

    @property
    def entries(self) -> Tuple[AllowListEntry, ...]:
        return self._entries

    def evaluate(self, address: str) -> Decision:
        """Return the allow/deny decision for ``address``; never raises."""
        addr = _parse_address(address or "")
        if addr is None:
            log.warning("Unparseable client address %r; denying", address)
            return Decision.deny(address, "unparseable address")

        if any(entry.matches(addr) for entry in self._entries):
            return Decision.allow(address)
        return Decision.deny(address, "address not in allow-list")

    def allows(self, address: str) -> bool:
        return self.evaluate(address).allowed

    def describe(self) -> list[str]:
        return [str(e) for e in self._entries]

    def __contains__(self, address: object) -> bool:
        return isinstance(address, str) and self.allows(address)

    def __iter__(self) -> Iterator[AllowListEntry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"AllowList({self.describe()!r})"
