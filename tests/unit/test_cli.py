"""Tests for the command line interface."""

import json

import pytest

from scouted import __main__ as cli
from scouted import __version__
from scouted.config import get_settings


@pytest.fixture
def database(tmp_path, monkeypatch):
    """Point DATABASE_URL at a SQLite file; keep logging configuration untouched."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'scouted.db'}")
    monkeypatch.setenv("RESEND_API_KEY", "")
    monkeypatch.setattr(cli, "setup_logging", lambda *args, **kwargs: None)
    get_settings.cache_clear()
    yield tmp_path
    get_settings.cache_clear()


def run(argv):
    with pytest.raises(SystemExit) as exc_info:
        cli.main(argv)
    return exc_info.value.code


class TestParser:
    """Tests for argument parsing."""

    def test_scrape_options(self):
        args = cli.build_parser().parse_args(["scrape", "--sources", "ngobox_rfp,idr", "--dry-run"])
        assert args.command == "scrape"
        assert args.sources == "ngobox_rfp,idr"
        assert args.dry_run
        assert not args.no_classify

    def test_defaults(self):
        parser = cli.build_parser()
        assert parser.parse_args(["digest"]).days == 2
        assert parser.parse_args(["send-digest"]).hours == 48
        assert parser.parse_args(["upsert-csr"]).fy == "2023-24"

    def test_version(self, capsys):
        assert run(["--version"]) == 0
        assert capsys.readouterr().out.strip() == f"scouted {__version__}"

    def test_no_command(self, capsys):
        assert run([]) == 2


class TestCommands:
    """Tests for store-backed commands."""

    def test_subscribers(self, database, capsys):
        assert run(["subscribers", "add", "Lead@Example.org"]) == 0
        assert run(["subscribers", "add", "lead@example.org"]) == 0
        assert run(["subscribers", "list"]) == 0

        out = capsys.readouterr().out
        assert "Subscribed Lead@Example.org" in out
        assert "lead@example.org is already subscribed" in out
        assert out.strip().endswith("lead@example.org")

    def test_subscribers_needs_email(self, database, capsys):
        assert run(["subscribers", "remove"]) == 2
        assert "needs an email" in capsys.readouterr().err

    def test_upsert_then_digest(self, database, capsys):
        batch = database / "research.json"
        batch.write_text(
            json.dumps(
                [
                    {"title": "Teacher fellowship in Odisha", "source_url": "https://example.org/f"},
                    {"title": "", "source_url": "https://example.org/x"},
                ]
            ),
            encoding="utf-8",
        )

        assert run(["upsert", "--file", str(batch)]) == 0
        assert run(["digest", "--all"]) == 0

        out = capsys.readouterr().out
        assert "Received 2, valid 1 (skipped 1), unique 1, upserted 1" in out
        assert "*ScoutEd Digest* - 1 opportunities\n" in out
        assert "Teacher fellowship in Odisha" in out

    def test_invalid_batch(self, database, capsys):
        batch = database / "bad.json"
        batch.write_text("{}", encoding="utf-8")

        assert run(["upsert", "--file", str(batch)]) == 1
        assert "Error: Expected a JSON array" in capsys.readouterr().err

    def test_send_digest_without_key(self, database):
        assert run(["send-digest"]) == 0

    def test_missing_database_url(self, database, monkeypatch, capsys):
        monkeypatch.setenv("DATABASE_URL", "")
        get_settings.cache_clear()

        assert run(["init-db"]) == 1
        assert "DATABASE_URL is not set" in capsys.readouterr().err
