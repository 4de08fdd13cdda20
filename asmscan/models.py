"""Core data models shared across asmscan components."""

from dataclasses import dataclass
from typing import NamedTuple, Optional


class AssemblyVersion(NamedTuple):
    """Four-part assembly version, ordered like a tuple."""

    major: int
    minor: int
    build: int
    revision: int

    def __str__(self) -> str:
        return ".".join(str(part) for part in self)


@dataclass(frozen=True)
class AssemblyIdentity:
    """Identity fields read from the Assembly metadata table."""

    name: str
    version: AssemblyVersion
    public_key: bytes


@dataclass
class FileMetadataRecord:
    """Result of inspecting one scanned file."""

    relative_path: str
    name: str = ""
    version: Optional[AssemblyVersion] = None
    public_key_token: bytes = b""
    is_error: bool = False
    error: Optional[str] = None

    @property
    def version_text(self) -> str:
        return str(self.version) if self.version is not None else ""

    @property
    def public_key_token_hex(self) -> str:
        return self.public_key_token.hex()
