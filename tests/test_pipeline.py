"""Tests for batch filtering of spool folders."""

from pathlib import Path

import pytest

from mailfilter.engine import FilterRules, MessageFilter
from mailfilter.mailbox.spool import Spool
from mailfilter.pipeline import SpoolProcessor

DISCLAIMER_PATTERN = r"Disclaimer:.*?\n\n"


@pytest.fixture
def spool(tmp_path: Path) -> Spool:
    spool = Spool(tmp_path / "tmp", tmp_path / "dst")
    spool.ensure_dirs()
    return spool


@pytest.fixture
def message_filter() -> MessageFilter:
    return MessageFilter(FilterRules.from_strings(text=[DISCLAIMER_PATTERN], dom=[".sig"]))


class TestSpoolProcessor:
    """Tests for SpoolProcessor."""

    def test_filters_and_removes_source(
        self, spool: Spool, message_filter: MessageFilter, related_message: bytes
    ) -> None:
        source = spool.write_incoming("1", related_message)

        summary = SpoolProcessor(message_filter, spool).run(fetched=1)

        assert summary.fetched == 1
        assert summary.processed == 1
        assert summary.changed == 1
        assert summary.failed == 0
        assert summary.pruned_parts == 1
        assert not source.exists()
        output = (spool.dst_dir / "1.msg").read_bytes()
        assert b"Content-ID: <LOGO>" not in output
        assert b"Disclaimer" not in output

    def test_unchanged_message_copied_verbatim(
        self, spool: Spool, message_filter: MessageFilter
    ) -> None:
        raw = b"Content-Type: text/plain\n\nnothing to remove\n"
        spool.write_incoming("1", raw)

        summary = SpoolProcessor(message_filter, spool).run()

        assert summary.changed == 0
        assert (spool.dst_dir / "1.msg").read_bytes() == raw

    def test_failed_message_skipped_and_kept(
        self, spool: Spool, message_filter: MessageFilter, plain_message: bytes
    ) -> None:
        broken = spool.write_incoming("1", b"")
        spool.write_incoming("2", plain_message)

        summary = SpoolProcessor(message_filter, spool).run()

        assert summary.processed == 2
        assert summary.failed == 1
        assert broken.exists()
        assert not (spool.dst_dir / "1.msg").exists()
        assert (spool.dst_dir / "2.msg").exists()

        [failure] = summary.failures
        assert failure.source == broken
        assert failure.error.stage == "parse"
        assert failure.error.message_id == "1.msg"

    def test_unreadable_file_does_not_abort_batch(
        self,
        spool: Spool,
        message_filter: MessageFilter,
        plain_message: bytes,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        good = spool.write_incoming("2", plain_message)
        vanished = spool.incoming_path("1")
        monkeypatch.setattr(spool, "list_incoming", lambda: [vanished, good])

        summary = SpoolProcessor(message_filter, spool, workers=2).run()

        assert summary.processed == 2
        assert summary.failed == 1
        [failure] = summary.failures
        assert failure.source == vanished
        assert failure.error.stage == "read"
        assert failure.error.message_id == "1.msg"
        assert (spool.dst_dir / "2.msg").exists()

    def test_keep_source_files(
        self, spool: Spool, message_filter: MessageFilter, plain_message: bytes
    ) -> None:
        source = spool.write_incoming("1", plain_message)
        SpoolProcessor(message_filter, spool, keep_source_files=True).run()
        assert source.exists()
        assert (spool.dst_dir / "1.msg").exists()

    def test_worker_pool_processes_every_file(
        self,
        spool: Spool,
        message_filter: MessageFilter,
        plain_message: bytes,
        related_message: bytes,
    ) -> None:
        for number in range(6):
            spool.write_incoming(str(number), related_message if number % 2 else plain_message)

        summary = SpoolProcessor(message_filter, spool, workers=3).run()

        assert summary.processed == 6
        assert summary.changed == 6
        assert summary.pruned_parts == 3
        assert [result.source.name for result in summary.results] == [
            f"{n}.msg" for n in range(6)
        ]
        assert spool.list_incoming() == []

    def test_empty_spool(self, spool: Spool, message_filter: MessageFilter) -> None:
        summary = SpoolProcessor(message_filter, spool).run()
        assert summary.processed == 0
        assert summary.results == []
