from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


@dataclass
class CallerIdEvent:
    """One chunk of modem output and, when it carried one, the calling number."""
    raw: str
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    number: Optional[str] = None


@dataclass(frozen=True)
class LookupResult:
    """
    Normalized result of a reverse phone lookup.
    A result is only a match when it names someone or somewhere: an entry that
    merely echoes the phone number counts as "no match".
    """
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    zip: Optional[str] = None
    city: Optional[str] = None
    raw_source: Optional[str] = None  # provider payload, diagnostics only

    @property
    def has_identity(self) -> bool:
        return any((self.name, self.address, self.city))

    def summary(self) -> str:
        place = " ".join(p for p in (self.zip, self.city) if p)
        return f"{self.name or '-'} | {self.phone or '-'} | {self.address or '-'} {place}".rstrip()

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "phone": self.phone,
            "address": self.address,
            "zip": self.zip,
            "city": self.city,
        }
