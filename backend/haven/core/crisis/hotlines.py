"""
Crisis hotline directory.

Static, read-only. Shown alongside critical interventions.
"""

from dataclasses import asdict, dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class Hotline:
    country: str
    name: str
    phone: str
    type: str
    description: str
    available_24_7: bool = True
    website: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


HOTLINES: tuple[Hotline, ...] = (
    Hotline(
        country="US",
        name="988 Suicide & Crisis Lifeline",
        phone="988",
        type="suicide_prevention",
        description=(
            "Free and confidential support for people in distress, "
            "prevention and crisis resources"
        ),
        website="https://988lifeline.org",
    ),
    Hotline(
        country="US",
        name="National Domestic Violence Hotline",
        phone="1-800-799-7233",
        type="domestic_violence",
        description="Support for victims of domestic violence and abuse",
        website="https://www.thehotline.org",
    ),
    Hotline(
        country="US",
        name="Crisis Text Line",
        phone="Text HOME to 741741",
        type="mental_health",
        description="Free 24/7 support for those in crisis",
        website="https://www.crisistextline.org",
    ),
    Hotline(
        country="US",
        name="SAMHSA National Helpline",
        phone="1-800-662-4357",
        type="mental_health",
        description=(
            "Treatment referral and information service for mental health "
            "and substance abuse"
        ),
        website="https://www.samhsa.gov/find-help/national-helpline",
    ),
    Hotline(
        country="US",
        name="Love Is Respect",
        phone="1-866-331-9474",
        type="relationship",
        description="Support for young people experiencing dating violence or abuse",
        website="https://www.loveisrespect.org",
    ),
)


def list_hotlines(country: Optional[str] = "US") -> list[Hotline]:
    """Hotlines for a country code (case-insensitive); all when country is None."""
    if country is None:
        return list(HOTLINES)
    code = country.strip().upper()
    return [h for h in HOTLINES if h.country == code]
