"""Engine configuration — env-driven, one instance per deployment side.

Centralized config using pydantic-settings for environment variable
support. Reads from a .env file and CLINENVELOPE_* environment variables.
Nested party profiles are overridden with a double underscore, e.g.
``CLINENVELOPE_LOCAL_PARTY__FAMILY=Gruber``.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from clinenvelope.models.parties import HOSPITAL_PARTY, PRACTICE_PARTY, PartyProfile


class EngineSettings(BaseSettings):
    """Engine configuration with environment variable overrides.

    The defaults describe the hospital side: it sends documents and
    answers requests, and the practice is the remote party.  The practice
    side swaps the ``local_*`` and ``remote_*`` values.

    Examples
    --------
    Override via environment::

        export CLINENVELOPE_LOG_LEVEL=DEBUG
        export CLINENVELOPE_LOCAL_ENDPOINT_NAME="General Practitioner"
        export CLINENVELOPE_RECEIVED_LOG_PATH=/data/received.db

    Or via .env file::

        CLINENVELOPE_ENVIRONMENT=production
        CLINENVELOPE_POLL_INTERVAL_SECONDS=2.5
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="CLINENVELOPE_",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"
    debug: bool = False

    # Wire format
    reference_scheme: str = "urn:uuid:"
    binary_content_types: list[str] = ["application/pdf", "application/octet-stream"]
    document_language: str = "de"
    subject_identifier_system: str = "http://clinenvelope.example.com/Identifiers/Subject"

    # Endpoints
    local_endpoint_name: str = "Hospital Information System"
    local_endpoint_address: str = "matrix:@his_user:matrix.local"
    remote_endpoint_name: str = "General Practitioner"
    remote_endpoint_address: str = "matrix:@gp_user:matrix.local"

    # Header source metadata
    source_software: str = "clinenvelope"
    source_version: str = "0.1.0"
    support_contact: str = "support@clinenvelope.example.com"

    # Acting parties
    local_party: PartyProfile = HOSPITAL_PARTY
    remote_party: PartyProfile = PRACTICE_PARTY

    # Receiving side
    accepted_event_codes: list[str] = ["document", "status"]
    poll_interval_seconds: float = 5.0

    # Local storage paths
    received_log_path: Path = Path(".clinenvelope/received.db")
    sent_log_path: Path = Path(".clinenvelope/sent.db")
    envelope_store_path: Path = Path(".clinenvelope/envelopes")
    queue_path: Path = Path(".clinenvelope/queue.db")

    @property
    def is_production(self) -> bool:
        """Whether running in production mode."""
        return self.environment == "production"


# Module-level singleton, import as `from clinenvelope.config import settings`
settings = EngineSettings()
