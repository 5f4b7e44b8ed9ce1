"""Authorization scopes and abilities for hypha resources."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional
from urllib.parse import urlsplit

SCHEME = "hypha"


def _host_of(netloc: str) -> str:
    host = netloc.rpartition("@")[2]
    if host.startswith("["):
        end = host.find("]")
        return host[: end + 1] if end != -1 else host
    name, sep, port = host.rpartition(":")
    if sep and (port == "" or port.isdigit()):
        return name
    return host


@dataclass(frozen=True)
class HyphaScope:
    """A resource scope of the form ``hypha://<node_id>/<resource_type>``."""

    origin_node: str
    resource_type: str

    def contains(self, other: "HyphaScope") -> bool:
        return (
            self.origin_node == other.origin_node
            and self.resource_type == other.resource_type
        )

    def __str__(self) -> str:
        return f"{SCHEME}://{self.origin_node}/{self.resource_type}"

    @classmethod
    def from_url(cls, url: str) -> "HyphaScope":
        """Parse a scope URL; raise ValueError if it is not a hypha URL with a host."""
        parts = urlsplit(url)
        if parts.scheme != SCHEME:
            raise ValueError("Invalid scheme")
        host = _host_of(parts.netloc)
        if not host:
            raise ValueError("Missing host")
        return cls(origin_node=host, resource_type=parts.path.lstrip("/"))


class HyphaAbility(Enum):
    """Actions a capability token may grant, ordered as declared."""

    EXECUTE = "hypha/execute"
    STORE = "hypha/store"
    SENSE = "hypha/sense"
    ADMIN = "hypha/admin"

    def __str__(self) -> str:
        return self.value

    def __lt__(self, other: "HyphaAbility") -> bool:
        if not isinstance(other, HyphaAbility):
            return NotImplemented
        members = list(HyphaAbility)
        return members.index(self) < members.index(other)

    def __le__(self, other: "HyphaAbility") -> bool:
        if not isinstance(other, HyphaAbility):
            return NotImplemented
        return self == other or self < other

    def __gt__(self, other: "HyphaAbility") -> bool:
        if not isinstance(other, HyphaAbility):
            return NotImplemented
        return other < self

    def __ge__(self, other: "HyphaAbility") -> bool:
        if not isinstance(other, HyphaAbility):
            return NotImplemented
        return self == other or other < self

    @classmethod
    def parse(cls, value: str) -> "HyphaAbility":
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Invalid ability: {value}") from None


class HyphaSemantics:
    """Lenient parsing of scopes and abilities: invalid input yields None."""

    def parse_scope(self, uri: str) -> Optional[HyphaScope]:
        try:
            return HyphaScope.from_url(uri)
        except ValueError:
            return None

    def parse_action(self, ability: str) -> Optional[HyphaAbility]:
        try:
            return HyphaAbility.parse(ability)
        except ValueError:
            return None