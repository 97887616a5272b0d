"""
Tests for the phasecrawl command line.

Browser sessions are replaced with in-memory doubles; logging setup is
patched out so no handlers leak between tests.
"""

import argparse
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from phasecrawl import cli
from phasecrawl.config import AppConfig

HTML = '<html><body><p>Read <a href="/guide">the guide</a>.</p></body></html>'


@pytest.fixture(autouse=True)
def quiet_logger(monkeypatch):
    monkeypatch.setattr(cli, "init_logger", MagicMock())


# =============================================================================
# ARGUMENTS
# =============================================================================

class TestParser:

    def test_no_command_returns_usage_code(self, capsys):
        assert cli.main([]) == 2
        assert "phasecrawl" in capsys.readouterr().out

    @pytest.mark.parametrize("argv", [
        ["extract", "maps", "--url", "https://a.example/"],
        ["extract", "images"],
        ["crawl", "--url", "https://a.example/", "--max-phases", "many"],
    ])
    def test_invalid_arguments_exit_with_2(self, argv):
        with pytest.raises(SystemExit) as exc_info:
            cli.main(argv)
        assert exc_info.value.code == 2

    def test_extract_kinds(self):
        args = cli.build_parser().parse_args(["extract", "videos", "-u", "https://a.example/"])
        assert args.kind == "videos"
        assert args.headless is True
        assert args.func is cli.cmd_extract

    def test_log_level_flag_wins(self, monkeypatch):
        monkeypatch.setattr(cli, "run_crawl", AsyncMock(return_value={}))
        cli.main(["crawl", "--url", "https://a.example/", "--log-level", "DEBUG"])
        cli.init_logger.assert_called_once_with("DEBUG", None)


class TestOptions:

    def test_browser_options(self):
        args = argparse.Namespace(headless=False, rate_limit=9, respect_robots=False)
        options = cli.browser_options(args, AppConfig())

        assert options["headless"] is False
        assert options["rate_limit"] == {"max_requests": 9, "interval": 1000}
        assert options["respect_robots"] is False
        assert options["viewport"] == {"width": 1920, "height": 1080}

    def test_extractor_options_only_forward_given_knobs(self):
        args = cli.build_parser().parse_args([
            "extract", "images", "--url", "https://a.example/", "--download", "--min-width", "300",
        ])
        options = cli.extractor_options(args, AppConfig())

        assert options["download_media"] is True
        assert options["download_dir"] == "./downloads"
        assert options["min_width"] == 300
        assert options["retry_attempts"] == 3
        assert "max_scrolls" not in options
        assert "quality_preference" not in options


# =============================================================================
# COMMANDS
# =============================================================================

class TestCrawlCommand:

    def test_prints_report(self, monkeypatch, capsys):
        monkeypatch.setattr(cli, "run_crawl", AsyncMock(return_value={"phases": 3, "uniqueDiscoveries": 0}))

        code = cli.main(["crawl", "--url", "https://a.example/"])

        assert code == 0
        assert json.loads(capsys.readouterr().out)["phases"] == 3

    def test_failure_exit_code(self, monkeypatch):
        monkeypatch.setattr(cli, "run_crawl", AsyncMock(side_effect=RuntimeError("launch failed")))
        assert cli.main(["crawl", "--url", "https://a.example/"]) == 1

    @pytest.mark.asyncio
    async def test_run_crawl_options(self, monkeypatch, tmp_path):
        loop = MagicMock()
        loop.run = AsyncMock(return_value={"phases": 1})
        loop_cls = MagicMock(return_value=loop)
        session_cls = MagicMock()
        monkeypatch.setattr(cli, "DiscoveryLoop", loop_cls)
        monkeypatch.setattr(cli, "BrowserSession", session_cls)
        args = cli.build_parser().parse_args([
            "crawl", "--url", "https://a.example/", "-m", "7", "-o", str(tmp_path), "--no-respect-robots",
        ])

        report = await cli.run_crawl(args, AppConfig())

        assert report == {"phases": 1}
        options = loop_cls.call_args.args[1]
        assert options["max_phases"] == 7
        assert options["save_interval"] == 10
        assert options["output_dir"] == str(tmp_path)
        assert session_cls.call_args.args[0]["respect_robots"] is False
        loop.run.assert_awaited_once_with("https://a.example/")


class TestExtractCommand:

    def test_text_extraction_writes_results(self, monkeypatch, tmp_path, capsys, make_page, make_session):
        session = make_session(make_page(html=HTML))
        monkeypatch.setattr(cli, "BrowserSession", lambda options: session)

        code = cli.main(["extract", "text", "--url", "https://a.example/", "-o", str(tmp_path), "--wait", "0"])

        assert code == 0
        written = json.loads((tmp_path / "extracted-text.json").read_text())
        assert written["items"] == ["https://a.example/"]
        assert written["links"]["internal"][0]["url"] == "https://a.example/guide"
        assert json.loads(capsys.readouterr().out)["items"] == 1
        assert session.closed == 1

    def test_failure_exit_code(self, monkeypatch):
        monkeypatch.setattr(cli, "run_extract", AsyncMock(side_effect=RuntimeError("boom")))
        assert cli.main(["extract", "all", "--url", "https://a.example/"]) == 1

    @pytest.mark.asyncio
    async def test_all_runs_universal_with_per_kind_options(self, monkeypatch, tmp_path):
        extractor = MagicMock()
        extractor.run = AsyncMock(return_value={"items": [], "summary": {}})
        create = MagicMock(return_value=extractor)
        monkeypatch.setattr(cli.EXTRACTORS, "create", create)
        monkeypatch.setattr(cli, "BrowserSession", MagicMock())
        args = cli.build_parser().parse_args(["extract", "all", "--url", "https://a.example/", "-o", str(tmp_path)])

        await cli.run_extract(args, AppConfig())

        kind, _, options = create.call_args.args
        assert kind == "universal"
        assert options["close_browser"] is True
        assert set(options) >= {"text", "images", "video", "audio", "documents"}
        assert (tmp_path / "extracted-all.json").exists()
