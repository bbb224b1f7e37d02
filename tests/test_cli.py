"""Tests for the reelforge command line."""

import json
import os

import pytest

from reelforge import cli
from reelforge.db import create_db_and_tables, make_engine
from reelforge.services.api_rotation import ApiRotationManager
from reelforge.services.job_queue import JobQueue


@pytest.fixture
def cli_env(monkeypatch, tmp_path):
    for name in list(os.environ):
        if name.startswith(("FAL_API_KEY", "WAVESPEED_API_KEY", "AIRTABLE_", "APIFY_", "SENTRY_")):
            monkeypatch.delenv(name, raising=False)
    database_url = f"sqlite:///{tmp_path / 'queue.db'}"
    monkeypatch.setenv("DATABASE_URL", database_url)
    monkeypatch.chdir(tmp_path)
    return database_url


class TestParser:
    def test_default_command_is_run(self):
        assert cli.build_parser().parse_args([]).command is None

    def test_subcommand_options(self):
        parser = cli.build_parser()

        assert parser.parse_args(["cleanup", "--days", "3"]).days == 3
        assert parser.parse_args(["reset-stale", "--minutes", "10"]).minutes == 10
        assert parser.parse_args(["reset-rotation", "--provider", "fal"]).provider == "fal"


class TestCommands:
    def test_run_without_configuration_exits_1(self, cli_env):
        assert cli.main(["run"]) == 1

    def test_stats(self, cli_env, capsys):
        JobQueue(_engine(cli_env)).enqueue("rec1", {"id": "rec1"})

        assert cli.main(["stats"]) == 0

        output = json.loads(capsys.readouterr().out)
        assert output["queue"]["pending"] == 1
        assert output["rotation"] == {}

    def test_cleanup(self, cli_env, capsys):
        assert cli.main(["cleanup", "--days", "1"]) == 0
        assert "Removed 0 jobs older than 1 days" in capsys.readouterr().out

    def test_reset_stale(self, cli_env, capsys):
        assert cli.main(["reset-stale"]) == 0
        assert "Requeued 0 jobs" in capsys.readouterr().out

    def test_reset_rotation(self, cli_env, capsys):
        engine = _engine(cli_env)
        rotation = ApiRotationManager(engine)
        rotation.get_next_key("fal:image", ["A", "B"], 1)

        assert cli.main(["reset-rotation", "--provider", "fal:image"]) == 0
        assert rotation.get_stats()["fal:image"]["current_index"] == 1

        assert cli.main(["reset-rotation"]) == 0
        assert rotation.get_stats() == {}


def _engine(database_url: str):
    engine = make_engine(database_url)
    create_db_and_tables(engine)
    return engine
