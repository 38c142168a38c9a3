"""Smoke test — one request/response round trip over the local queue.

Usage:
    python demo_prod.py
"""

from __future__ import annotations

from clinenvelope import __version__
from clinenvelope.bridge.transport import QueueTransport
from clinenvelope.config import settings
from clinenvelope.core.builder import EnvelopeBuilder, subject_from_display
from clinenvelope.core.correlation import CorrelationTracker
from clinenvelope.core.parser import AcceptPolicy, EnvelopeParser
from clinenvelope.core.poller import Poller


def main() -> None:
    """Send a request, answer it and correlate the answer."""
    print(f"clinenvelope v{__version__}")
    print(f"Environment: {settings.environment} | Endpoint: {settings.local_endpoint_name}")
    print()

    builder = EnvelopeBuilder()
    tracker = CorrelationTracker()
    patient = subject_from_display("Max Mustermann", "1985-03-15")

    with QueueTransport("smoke-requests") as requests, QueueTransport("smoke-replies") as replies:
        request = builder.build_request(patient, "Please send latest discharge summary")
        requests.send(request)
        tracker.record_envelope(request)
        print(f"Request sent: {request.id}")

        request_side = EnvelopeParser(accept=AcceptPolicy.requests())
        Poller(requests, request_side).tick()
        [incoming] = request_side.received_log.snapshot()
        print(f"Request received: {incoming.request_description!r} for {incoming.patient_name}")

        replies.send(builder.build_text_response(incoming.envelope_id, patient, "See attached"))

        document_side = EnvelopeParser(accept=AcceptPolicy.documents())
        result = Poller(replies, document_side).tick()
        print(f"Replies processed: {result.processed}")

        for record in document_side.received_log.snapshot():
            match = tracker.find_for(record)
            status = "OK" if match is not None else "??"
            print(f"  [{status}] {record.communication_text!r} -> {match.envelope_id if match else '-'}")

    print()
    print("Round trip complete")


if __name__ == "__main__":
    main()
