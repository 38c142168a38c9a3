"""Cooperative polling task feeding the parser from a transport feed.

The stop signal is owned by the caller.  A tick that starts while the
previous one is still running is skipped, not queued.
"""

from __future__ import annotations

import logging
import threading
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

from clinenvelope.core.parser import EnvelopeParser
from clinenvelope.errors import StructuralFailure
from clinenvelope.models.records import Skip

logger = logging.getLogger(__name__)


@runtime_checkable
class EnvelopeFeed(Protocol):
    """Anything that hands out the raw envelopes received since last drain."""

    def drain(self) -> list[str | bytes]: ...


class TickResult(BaseModel):
    """Counts for one polling tick."""

    model_config = ConfigDict(frozen=True)

    fetched: int = 0
    processed: int = 0
    skipped: int = 0
    failed: int = 0


class Poller:
    """Drains a feed and pushes every envelope through the parser.

    Parameters
    ----------
    feed:
        Source of raw envelope text.
    parser:
        Parser that turns raw text into records.
    """

    def __init__(self, feed: EnvelopeFeed, parser: EnvelopeParser) -> None:
        self._feed = feed
        self._parser = parser
        self._guard = threading.Lock()

    @property
    def busy(self) -> bool:
        """``True`` while a tick is running."""
        return self._guard.locked()

    def tick(self) -> TickResult | None:
        """Run one polling pass.

        Returns ``None`` without doing anything if the previous tick has
        not finished.
        """
        if not self._guard.acquire(blocking=False):
            logger.debug("Previous tick still running, skipping")
            return None
        try:
            return self._tick()
        finally:
            self._guard.release()

    def _tick(self) -> TickResult:
        try:
            raw_envelopes = self._feed.drain()
        except Exception:
            logger.exception("Envelope feed failed; retrying next tick")
            return TickResult()

        processed = skipped = failed = 0
        for raw in raw_envelopes:
            try:
                outcome = self._parser.parse(raw)
            except StructuralFailure as exc:
                logger.error("Dropping unreadable envelope: %s", exc)
                failed += 1
                continue
            except Exception:
                logger.exception("Unexpected error while processing envelope")
                failed += 1
                continue
            if isinstance(outcome, Skip):
                skipped += 1
            else:
                processed += 1

        if raw_envelopes:
            logger.info(
                "Tick: %d fetched, %d processed, %d skipped, %d failed",
                len(raw_envelopes),
                processed,
                skipped,
                failed,
            )
        return TickResult(
            fetched=len(raw_envelopes),
            processed=processed,
            skipped=skipped,
            failed=failed,
        )

    def run(self, stop_event: threading.Event, interval: float = 5.0) -> int:
        """Tick every *interval* seconds until *stop_event* is set.

        Returns the number of ticks run.
        """
        ticks = 0
        logger.info("Poller started (interval=%.1fs)", interval)
        while not stop_event.is_set():
            if self.tick() is not None:
                ticks += 1
            stop_event.wait(interval)
        logger.info("Poller stopped after %d ticks", ticks)
        return ticks
