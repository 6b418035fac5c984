"""
Jurisdiction Configuration for the Constitution RAG System

Each jurisdiction maps to one corpus in the shared vector index (selected by
the ``filter_country`` argument of the search function) plus the static facts
that ground the system prompt.
"""

import os
from dataclasses import dataclass, field


# Supported corpora keyed by lowercase country code used in the index
SUPPORTED_JURISDICTIONS = {
    "ghana": {
        "name": "Ghana",
        "constitution": "Ghana's 1992 Constitution",
        "facts": [
            "The Constitution has 26 Chapters and 299 Articles",
            "It also has a Preamble and 36 Transitional Provisions",
            "It came into force on January 7, 1993",
        ],
        "about": [
            "Created by Joel, a young Ghanaian AI enthusiast",
            "Powered by Ghana Legal AI",
        ],
    },
}

DEFAULT_JURISDICTION = "ghana"


@dataclass
class JurisdictionConfig:
    """Corpus filter and prompt facts for one jurisdiction."""
    country: str = DEFAULT_JURISDICTION
    name: str = "Ghana"
    constitution: str = "Ghana's 1992 Constitution"
    facts: list = field(default_factory=list)
    about: list = field(default_factory=list)

    @classmethod
    def for_country(cls, country: str) -> "JurisdictionConfig":
        """
        Factory method returning the configuration for a country code.

        Unknown codes fall back to the default jurisdiction.

        Args:
            country: Country code, case-insensitive ("ghana")

        Returns:
            JurisdictionConfig for that corpus
        """
        key = (country or "").strip().lower()
        if key not in SUPPORTED_JURISDICTIONS:
            key = DEFAULT_JURISDICTION

        entry = SUPPORTED_JURISDICTIONS[key]
        return cls(
            country=key,
            name=entry["name"],
            constitution=entry["constitution"],
            facts=list(entry["facts"]),
            about=list(entry.get("about", [])),
        )

    @classmethod
    def from_env(cls) -> "JurisdictionConfig":
        """Build the process default from DEFAULT_JURISDICTION."""
        return cls.for_country(os.getenv("DEFAULT_JURISDICTION", DEFAULT_JURISDICTION))
