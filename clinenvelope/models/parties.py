"""Configured identities of the two communicating parties."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class PartyProfile(BaseModel):
    """The acting practitioner and organization of one side of the exchange.

    Used by the builder to create the Principal / PrincipalRole entries and
    passed explicitly as the author role of a document transfer.
    """

    model_config = ConfigDict(frozen=True)

    prefix: str = ""
    given: str = ""
    family: str = ""
    practitioner_identifier_system: str = "urn:oid:1.2.40.0.10.1.4.3.2"
    practitioner_identifier: str = ""

    organization_name: str = ""
    organization_type_system: str = (
        "https://termgit.elga.gv.at/CodeSystem/elga-gtelvogdarollen"
    )
    organization_type_code: str = ""
    organization_type_display: str = ""

    role_system: str = "https://termgit.elga.gv.at/CodeSystem/elga-gtelvogdarollen"
    role_code: str = "1000"
    role_display: str = "Ärztin/Arzt"

    @property
    def display_name(self) -> str:
        """Prefix, given and family name joined, e.g. ``Dr. Selina Mayer``."""
        return " ".join(part for part in (self.prefix, self.given, self.family) if part)


HOSPITAL_PARTY = PartyProfile(
    prefix="Dr.",
    given="Selina",
    family="Mayer",
    practitioner_identifier="GP-54321",
    organization_name="Landesklinikum Musterstadt",
    organization_type_code="300",
    organization_type_display="Allgemeine Krankenanstalt",
)

PRACTICE_PARTY = PartyProfile(
    prefix="Dr.",
    given="Johann",
    family="Huber",
    practitioner_identifier="GP-12345",
    organization_name="Ordination Dr. Huber",
    organization_type_code="100",
    organization_type_display="Ärztin/Arzt für Allgemeinmedizin",
)
