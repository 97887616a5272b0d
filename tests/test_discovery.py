"""
Tests for the adaptive discovery loop, checkpoints and output synthesis.

The browser session is an AsyncMock whose ``interact`` replays scripted
link lists, one per phase.
"""

import csv
import io
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from phasecrawl.checkpoint_manager import CheckpointManager
from phasecrawl.discovery import DiscoveryLoop, adapt_batch_size, interaction_for_phase
from phasecrawl.errors import InteractionError, InvalidOption, TimingAnomaly
from phasecrawl.models import Discovery, InteractionKind, InteractionRecord
from phasecrawl.synthesis import CSV_HEADERS, DataSynthesizer


def links(*urls):
    return [Discovery(url=u, anchor_text=u.rsplit("/", 1)[-1]) for u in urls]


def scripted_session(*phases):
    session = MagicMock()
    session.initialize = AsyncMock()
    session.close = AsyncMock()
    session.interact = AsyncMock(side_effect=list(phases))
    session.stats = MagicMock(return_value={"requests": len(phases), "errors": 0})
    return session


def make_loop(session, tmp_path, sleep, **options):
    options.setdefault("output_dir", str(tmp_path))
    options.setdefault("write_outputs", False)
    return DiscoveryLoop(session, options, sleep=sleep)


# =============================================================================
# BATCH CONTROL
# =============================================================================

class TestBatchRule:

    @pytest.mark.parametrize("batch,tension,expected", [
        (1, 3.0, 2),
        (2, 0.5, 2),
        (2, 0.0, 1),
        (1, 0.0, 1),
        (3, 0.2, 3),
    ])
    def test_adapt_batch_size(self, batch, tension, expected):
        assert adapt_batch_size(batch, tension, 0.5) == expected

    def test_interactions_alternate(self):
        assert interaction_for_phase(0) == InteractionKind.SCROLL
        assert interaction_for_phase(1) == InteractionKind.PAGE_NEXT
        assert interaction_for_phase(4) == InteractionKind.SCROLL


# =============================================================================
# LOOP
# =============================================================================

class TestDiscoveryLoop:
    """Full runs against scripted sessions."""

    @pytest.mark.asyncio
    async def test_empty_page_reaches_stasis(self, tmp_path, no_sleep):
        session = scripted_session([], [], [], [], [])
        loop = make_loop(session, tmp_path, no_sleep)

        report = await loop.run("https://a.example/")

        assert report["phases"] == 3
        assert report["averageTension"] == 0
        assert report["finalBatchSize"] == 1
        assert report["uniqueDiscoveries"] == 0
        assert loop.tensions == [0, 0, 0]
        session.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_batch_expands_on_high_tension(self, tmp_path, no_sleep):
        session = scripted_session(
            links("https://a/1", "https://a/2", "https://a/3"),
            links("https://a/1", "https://a/2", "https://a/4"),
        )
        loop = make_loop(session, tmp_path, no_sleep, max_phases=1)

        report = await loop.run("https://a.example/")

        assert loop.tensions == [3, 0.5]
        assert report["finalBatchSize"] == 2
        assert report["uniqueDiscoveries"] == 4
        assert report["averageTension"] == 1.75
        no_sleep.assert_awaited_once_with(1.0)

    @pytest.mark.asyncio
    async def test_interactions_alternate_across_phases(self, tmp_path, no_sleep):
        session = scripted_session([], [], [])
        loop = make_loop(session, tmp_path, no_sleep)

        await loop.run("https://a.example/")

        kinds = [c.args[0] for c in session.interact.await_args_list]
        assert kinds == [InteractionKind.SCROLL, InteractionKind.PAGE_NEXT, InteractionKind.SCROLL]

    @pytest.mark.asyncio
    async def test_log_records_only_new_links(self, tmp_path, no_sleep):
        session = scripted_session(
            links("https://a/1", "https://a/1", "https://a/2"),
            links("https://a/2", "https://a/3"),
        )
        loop = make_loop(session, tmp_path, no_sleep, max_phases=1)

        await loop.run("https://a.example/")

        assert [r.discovery.url for r in loop.log] == ["https://a/1", "https://a/2", "https://a/3"]
        assert [r.phase for r in loop.log] == [0, 0, 1]
        assert loop.log[2].interaction_kind == InteractionKind.PAGE_NEXT
        assert loop.discovered["https://a/3"].discovered_at_phase == 1
        assert len(loop.log) == len(loop.discovered)

    @pytest.mark.asyncio
    async def test_failed_phase_is_recorded_and_loop_continues(self, tmp_path, no_sleep):
        session = scripted_session(
            InteractionError("target closed", kind="SCROLL"),
            links("https://a/1"),
        )
        loop = make_loop(session, tmp_path, no_sleep, max_phases=1)
        failures = []
        loop.on("phaseError", failures.append)

        report = await loop.run("https://a.example/")

        assert report["errors"] == 1
        assert report["phases"] == 2
        assert loop.tensions == [1]
        assert loop.errors[0]["kind"] == "InteractionError"
        assert loop.errors[0]["phase"] == 0
        assert failures[0]["phase"] == 0

    @pytest.mark.asyncio
    async def test_all_phases_failing_stops_at_cap(self, tmp_path, no_sleep):
        session = scripted_session(RuntimeError("a"), RuntimeError("b"))
        loop = make_loop(session, tmp_path, no_sleep, max_phases=1)

        report = await loop.run("https://a.example/")

        assert report["phases"] == 2
        assert report["averageTension"] is None
        assert report["errors"] == 2

    @pytest.mark.asyncio
    async def test_timing_anomaly_is_fatal(self, tmp_path, no_sleep):
        session = scripted_session(TimingAnomaly("stuck", depth=10))
        loop = make_loop(session, tmp_path, no_sleep)
        seen = []
        loop.on("crawlError", seen.append)
        loop.on("crawlEnd", seen.append)

        with pytest.raises(TimingAnomaly):
            await loop.run("https://a.example/")

        session.close.assert_awaited_once()
        assert len(seen) == 2

    @pytest.mark.asyncio
    async def test_initialization_failure_closes_session(self, tmp_path, no_sleep):
        session = scripted_session()
        session.initialize.side_effect = RuntimeError("launch failed")
        loop = make_loop(session, tmp_path, no_sleep)

        with pytest.raises(RuntimeError):
            await loop.run("https://a.example/")

        session.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_phase_shift_is_noop_after_stasis(self, tmp_path, no_sleep):
        session = scripted_session([])
        loop = make_loop(session, tmp_path, no_sleep, stasis_window=1)
        await loop.phase_shift()
        assert loop.stasis

        await loop.phase_shift()

        assert loop.phase == 1
        assert session.interact.await_count == 1

    @pytest.mark.asyncio
    async def test_events(self, tmp_path, no_sleep):
        session = scripted_session([])
        loop = make_loop(session, tmp_path, no_sleep, stasis_window=1)
        names = []
        for name in ("crawlStart", "phaseStart", "phaseComplete", "crawlEnd"):
            loop.on(name, lambda payload, name=name: names.append(name))

        await loop.run("https://a.example/")

        assert names == ["crawlStart", "phaseStart", "phaseComplete", "crawlEnd"]

    @pytest.mark.asyncio
    async def test_checkpoint_every_save_interval(self, tmp_path, no_sleep):
        session = scripted_session(links("https://a/1"), [], [], [])
        loop = make_loop(session, tmp_path, no_sleep, save_interval=2)

        await loop.run("https://a.example/")

        snapshot = CheckpointManager(str(tmp_path)).load_checkpoint()
        assert snapshot["phase"] == 4
        assert snapshot["discoverySet"][0][0] == "https://a/1"
        assert snapshot["tensionMap"] == [1, 0, 0, 0]

    @pytest.mark.asyncio
    async def test_writes_outputs(self, tmp_path, no_sleep):
        session = scripted_session(links("https://a/1"), [])
        loop = make_loop(session, tmp_path, no_sleep, max_phases=1, write_outputs=True)

        await loop.run("https://a.example/")

        for name in ("output.jsonl", "report.md", "raw.txt", "output.csv"):
            assert (tmp_path / name).exists()

    @pytest.mark.parametrize("options", [
        {"max_phases": 0},
        {"stasis_window": 0},
        {"save_interval": 0},
        {"phase_delay_ms": -1},
    ])
    def test_invalid_options(self, options):
        with pytest.raises(InvalidOption):
            DiscoveryLoop(scripted_session(), options)


# =============================================================================
# CHECKPOINTS & SYNTHESIS
# =============================================================================

def record(url, phase=0, kind=InteractionKind.SCROLL, text="Link", title=""):
    discovery = Discovery(url=url, anchor_text=text, title=title,
                          discovered_at_phase=phase, discovered_at_timestamp=1700000000000)
    return InteractionRecord(discovery, phase, kind, 1, 1700000000000)


class TestCheckpointManager:

    def test_missing_checkpoint(self, tmp_path):
        assert CheckpointManager(str(tmp_path)).load_checkpoint() is None

    def test_corrupt_checkpoint(self, tmp_path):
        (tmp_path / "checkpoint.json").write_text("{not json")
        assert CheckpointManager(str(tmp_path)).load_checkpoint() is None

    def test_round_trip_shape(self, tmp_path):
        manager = CheckpointManager(str(tmp_path / "nested"))
        discoveries = {"https://a/1": Discovery("https://a/1", "One")}

        assert manager.save_checkpoint(10, discoveries, [1.0, 0.0])

        data = json.loads((tmp_path / "nested" / "checkpoint.json").read_text())
        assert data["discoverySet"] == [["https://a/1", discoveries["https://a/1"].to_dict()]]
        assert data["tensionMap"] == [1.0, 0.0]
        assert isinstance(data["timestamp"], int)


class TestDataSynthesizer:

    def test_jsonl_lines(self):
        synth = DataSynthesizer([record("https://a/1"), record("https://a/2", phase=1)])
        lines = [json.loads(line) for line in synth.to_jsonl().splitlines()]

        assert [line["context"]["index"] for line in lines] == [0, 1]
        assert lines[1]["context"]["phase"] == 1
        assert lines[0]["metadata"] == {"url": "https://a/1", "text": "Link"}
        assert lines[0]["context"]["timestamp"].endswith("Z")
        assert "Found hyperlink: https://a/1" in lines[0]["response"]

    def test_markdown_groups_by_phase(self):
        synth = DataSynthesizer([
            record("https://a/1"),
            record("https://a/2", phase=1, kind=InteractionKind.PAGE_NEXT),
        ])
        md = synth.to_markdown()

        assert md.startswith("# LPS Discovery Report")
        assert "**Total Discoveries:** 2" in md
        assert "- **PAGE_NEXT**: 1 discoveries" in md
        assert md.index("### Phase 0") < md.index("### Phase 1")

    def test_csv_quotes_fields(self):
        synth = DataSynthesizer([record("https://a/1", text='Say "hi", ok')])
        header, row = synth.to_csv().splitlines()

        assert header == "timestamp,phase,interaction,url,text,title"
        assert '"Say ""hi"", ok"' in row

    def test_raw_is_tab_separated(self):
        raw = DataSynthesizer([record("https://a/1")]).to_raw()
        assert raw.split("\t") == ["1700000000000", "0", "SCROLL", "https://a/1", "Link"]

    def test_raw_keeps_one_record_per_line(self):
        raw = DataSynthesizer([
            record("https://a/1", text="Foo\n   Bar\tBaz"),
            record("https://a/2"),
        ]).to_raw()

        lines = raw.splitlines()
        assert len(lines) == 2
        assert lines[0].split("\t")[-1] == "Foo Bar Baz"

    def test_csv_keeps_multiline_text_in_one_field(self):
        synth = DataSynthesizer([record("https://a/1", text="Foo\nBar", title="T")])
        rows = list(csv.reader(io.StringIO(synth.to_csv())))

        assert rows[0] == CSV_HEADERS
        assert len(rows) == 2
        assert rows[1][1:] == ["0", "SCROLL", "https://a/1", "Foo\nBar", "T"]

    def test_empty_log(self, tmp_path):
        written = DataSynthesizer([]).write_all(str(tmp_path))
        assert len(written) == 4
        assert (tmp_path / "output.jsonl").read_text() == ""
