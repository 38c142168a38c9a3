"""clinenvelope: clinical message-envelope engine.

Builds, parses and correlates self-contained multi-resource JSON
envelopes exchanged between a hospital and a practice:
  - Envelope builder for document transfer, request and status responses
  - Envelope parser with typed entry pools and in-envelope reference resolution
  - Base64 content codec (binary documents vs. UTF-8 text)
  - Correlation tracker matching responses to sent requests
  - Append-only record logs (in-memory or SQLite)
  - Content-addressed envelope store and local queue transport
  - Cooperative poller with overlap guard
"""

__version__ = "0.1.0"
__description__ = "Clinical message-envelope build, parse and correlation engine"

from clinenvelope.core.builder import EnvelopeBuilder, subject_from_display
from clinenvelope.core.correlation import CorrelationTracker
from clinenvelope.core.parser import AcceptPolicy, EnvelopeParser
from clinenvelope.models.envelope import Envelope
from clinenvelope.models.records import CorrelationRecord, DomainRecord, Skip

__all__ = [
    "AcceptPolicy",
    "CorrelationRecord",
    "CorrelationTracker",
    "DomainRecord",
    "Envelope",
    "EnvelopeBuilder",
    "EnvelopeParser",
    "Skip",
    "subject_from_display",
    "__version__",
]
