"""Batch filtering of spool folders.

Each message file in the temporary folder is filtered independently: a
message that cannot be read, parsed, filtered or serialized is logged,
counted and left in the temporary folder, and the run moves on to the next
file. Successful
messages are written to the destination folder and, unless configured
otherwise, their source files are removed.

Messages share no mutable state, so files can be filtered on a thread pool.

Usage:
    from mailfilter.pipeline import SpoolProcessor

    processor = SpoolProcessor(MessageFilter(rules), spool, workers=4)
    summary = processor.run()
"""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

from mailfilter.core.errors import MessageProcessingError
from mailfilter.core.logging import get_logger, set_correlation_id
from mailfilter.engine.orchestrator import FilterOutcome, MessageFilter
from mailfilter.mailbox.spool import Spool

logger = get_logger(__name__)


@dataclass
class MessageResult:
    """Result of filtering one spool file."""

    source: Path
    output: Path | None = None
    outcome: FilterOutcome | None = None
    error: MessageProcessingError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class RunSummary:
    """Totals for one batch run."""

    fetched: int = 0
    processed: int = 0
    changed: int = 0
    failed: int = 0
    pruned_parts: int = 0
    duration_ms: int = 0
    results: list[MessageResult] = field(default_factory=list)

    @property
    def failures(self) -> list[MessageResult]:
        return [result for result in self.results if not result.ok]


class SpoolProcessor:
    """Filters every message file waiting in a spool.

    Attributes:
        message_filter: Filter applied to every message
        spool: Source and destination folders
        keep_source_files: Keep source files of successfully filtered messages
        workers: Number of messages filtered concurrently
    """

    def __init__(
        self,
        message_filter: MessageFilter,
        spool: Spool,
        keep_source_files: bool = False,
        workers: int = 1,
    ):
        self.message_filter = message_filter
        self.spool = spool
        self.keep_source_files = keep_source_files
        self.workers = max(1, workers)

    def process_file(self, source: Path) -> MessageResult:
        """Filter one spool file into the destination folder.

        Read and per-message errors are captured in the result; write errors
        on the destination folder propagate.
        """
        message_id = source.name
        set_correlation_id(message_id)
        try:
            logger.debug("Opening message", path=str(source))
            try:
                raw = source.read_bytes()
            except OSError as e:
                error = MessageProcessingError(
                    f"Cannot read spool file: {e}", message_id=message_id, stage="read"
                )
                logger.error(
                    "Message skipped, spool file unreadable",
                    path=str(source),
                    error=str(e),
                )
                return MessageResult(source=source, error=error)

            try:
                outcome = self.message_filter.process(raw, message_id=message_id)
            except MessageProcessingError as e:
                logger.error(
                    "Message skipped, source file kept",
                    path=str(source),
                    stage=e.stage,
                    error=str(e),
                )
                return MessageResult(source=source, error=e)

            output = self.spool.write_output(source, outcome.output)
            if not self.keep_source_files:
                self.spool.remove_source(source)
            return MessageResult(source=source, output=output, outcome=outcome)
        finally:
            set_correlation_id(None)

    def run(self, fetched: int = 0) -> RunSummary:
        """Filter all waiting spool files.

        Args:
            fetched: Number of messages fetched beforehand (for the summary)
        """
        start = time.monotonic()
        sources = self.spool.list_incoming()

        logger.info("Filtering spool", files=len(sources), workers=self.workers)

        if self.workers > 1 and len(sources) > 1:
            with ThreadPoolExecutor(max_workers=self.workers) as executor:
                results = list(executor.map(self.process_file, sources))
        else:
            results = [self.process_file(source) for source in sources]

        summary = RunSummary(fetched=fetched, results=results)
        for result in results:
            summary.processed += 1
            if not result.ok:
                summary.failed += 1
                continue
            if result.outcome.changed:
                summary.changed += 1
            summary.pruned_parts += len(result.outcome.pruned_content_ids)
        summary.duration_ms = int((time.monotonic() - start) * 1000)

        logger.info(
            "Spool filtered",
            processed=summary.processed,
            changed=summary.changed,
            failed=summary.failed,
            pruned_parts=summary.pruned_parts,
            duration_ms=summary.duration_ms,
        )
        return summary
