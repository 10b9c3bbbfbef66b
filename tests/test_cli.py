"""
Tests for the click command line.
"""

from pathlib import Path

import httpx
from click.testing import CliRunner

from conftest import FakeGallery, digest_of
from test_api import LIST_HTML
from gallwatch import cli as cli_mod
from gallwatch.api import DCInsideAPI
from gallwatch.harvester import Harvester


def test_watch_requires_a_gallery(monkeypatch, tmp_path: Path):
    monkeypatch.delenv("GALLWATCH_GALLERY", raising=False)
    monkeypatch.delenv("GALLWATCH_URL", raising=False)
    result = CliRunner().invoke(cli_mod.cli, ["watch", "--target-dir", str(tmp_path)])
    assert result.exit_code == 2
    assert "no gallery id" in result.output


def test_watch_rejects_id_and_url(tmp_path: Path):
    result = CliRunner().invoke(
        cli_mod.cli,
        ["watch", "foo", "--url", "https://m.dcinside.com/board/foo", "--target-dir", str(tmp_path)],
    )
    assert result.exit_code == 2


def test_watch_once_downloads(monkeypatch, tmp_path: Path):
    gallery = FakeGallery()
    gallery.pages = [gallery.add_article("5", {"u": (b"cli bytes", "Pic.PNG")})]
    monkeypatch.setattr(cli_mod, "Harvester", lambda cfg: Harvester(cfg, source=gallery))

    result = CliRunner().invoke(
        cli_mod.cli,
        ["watch", "--url", "https://m.dcinside.com/board/foo", "--target-dir", str(tmp_path), "--once"],
    )
    assert result.exit_code == 0, result.output
    assert (tmp_path / "foo" / f"{digest_of(b'cli bytes')}.png").exists()
    assert "Watch Summary" in result.output


def test_reconcile_command(tmp_path: Path):
    gallery_dir = tmp_path / "foo"
    gallery_dir.mkdir()
    (gallery_dir / "Old Name.JPEG").write_bytes(b"legacy")

    result = CliRunner().invoke(cli_mod.cli, ["reconcile", "foo", "--target-dir", str(tmp_path)])
    assert result.exit_code == 0, result.output
    assert [p.name for p in gallery_dir.iterdir()] == [f"{digest_of(b'legacy')}.jpeg"]
    assert "Renamed to digest" in result.output
    assert "1 distinct images" in result.output


def test_preview_lists_items(monkeypatch):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text=LIST_HTML)

    monkeypatch.setattr(
        cli_mod, "DCInsideAPI", lambda cfg: DCInsideAPI(cfg, transport=httpx.MockTransport(handler))
    )
    result = CliRunner().invoke(cli_mod.cli, ["preview", "programming", "--limit", "1"])
    assert result.exit_code == 0, result.output
    assert "1001" in result.output
    assert "1000" not in result.output


def test_preview_reports_fetch_errors(monkeypatch):
    monkeypatch.setattr(
        cli_mod, "DCInsideAPI",
        lambda cfg: DCInsideAPI(cfg, transport=httpx.MockTransport(lambda request: httpx.Response(500))),
    )
    result = CliRunner().invoke(cli_mod.cli, ["preview", "programming"])
    assert result.exit_code == 1


def test_stats_use_readable_labels(monkeypatch):
    from rich.console import Console

    recording = Console(record=True, width=80)
    monkeypatch.setattr(cli_mod, "console", recording)
    cli_mod._print_stats("Stats", {"stale": 2, "odd_metric": 1})
    text = recording.export_text()
    assert "Stale partials removed" in text
    assert "Odd metric" in text
