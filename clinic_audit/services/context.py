"""
Request-scoped context handed to the recorder.

The API layer builds one SessionContext per request; the recorder never reaches
for a global "current session".
"""
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from clinic_audit.config import settings


@dataclass(frozen=True)
class Principal:
    """The authenticated identity credited with an event."""
    id: str
    email: Optional[str] = None
    role: Optional[str] = None  # Role claim from the identity provider, if any


@dataclass(frozen=True)
class ClientInfo:
    """What the client told us about itself. Empty fields are omitted from the payload."""
    user_agent: Optional[str] = None
    platform: Optional[str] = None
    language: Optional[str] = None
    screen_resolution: Optional[str] = None
    timezone: Optional[str] = None

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> "ClientInfo":
        """Read client hints from request headers (case-insensitive mapping expected)."""
        language = headers.get("accept-language") or ""
        language = language.split(",")[0].split(";")[0].strip()
        platform = (headers.get("sec-ch-ua-platform") or "").strip().strip('"')
        return cls(
            user_agent=headers.get("user-agent") or None,
            platform=platform or None,
            language=language or None,
            screen_resolution=headers.get("x-screen-resolution") or None,
            timezone=headers.get("x-timezone") or None,
        )

    def as_dict(self) -> Dict[str, str]:
        return {
            key: value
            for key, value in (
                ("user_agent", self.user_agent),
                ("platform", self.platform),
                ("language", self.language),
                ("screen_resolution", self.screen_resolution),
                ("timezone", self.timezone),
            )
            if value
        }


@dataclass(frozen=True)
class SessionContext:
    """Everything known about the live session making a request."""
    principal: Optional[Principal] = None
    access_token: Optional[str] = None
    client: ClientInfo = field(default_factory=ClientInfo)
    ip_address: Optional[str] = None  # From the connection, never from a client header


def _to_base36(number: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    if number == 0:
        return "0"
    out = []
    while number:
        number, rem = divmod(number, 36)
        out.append(digits[rem])
    return "".join(reversed(out))


def session_id_hash(access_token: Optional[str], prefix_length: Optional[int] = None) -> Optional[str]:
    """
    Short correlation token for a session.

    Classic 32-bit shift-subtract string hash over the token prefix, rendered in base 36.
    Not a security primitive: it only groups events from one login session.
    """
    if not access_token:
        return None
    if prefix_length is None:
        prefix_length = settings.session_hash_prefix_length

    value = 0
    for char in access_token[:prefix_length]:
        value = ((value << 5) - value + ord(char)) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return _to_base36(abs(value))
