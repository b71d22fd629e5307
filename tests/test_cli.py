"""Tests for the driftline CLI."""

import json
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from driftline import cli
from driftline import config as drift_config
from driftline import logging as drift_logging
from driftline.cli import create_parser, run_cli
from driftline.store import SQLiteDriftStore


@pytest.fixture(autouse=True)
def isolated_config(tmp_path: Path, monkeypatch) -> Path:
    """Point the config file at a temp dir so tests never read ~/.driftline."""
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"drift": {"log_dir": str(tmp_path / "logs")}}))
    monkeypatch.setattr(drift_config, "DEFAULT_CONFIG_PATH", path)
    monkeypatch.setattr(drift_logging, "_logger", None)
    monkeypatch.delenv("DRIFT_DB_PATH", raising=False)
    return path


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "drift.db"


@pytest.fixture
def seeded(db_path: Path):
    """A conversation with a root branch and a child branch."""
    store = SQLiteDriftStore(db_path)
    store.init_db()
    store.ensure_conversation("anonymous", "c1")
    paris = store.create_branch("anonymous", "c1", "Paris trip")
    hotels = store.create_branch("anonymous", "c1", "Hotels", parent_id=paris.id)
    store.create_message("anonymous", "c1", hotels.id, "user", "Hotels near the Louvre?", "BRANCH", "new")
    store.close()
    return paris, hotels


class TestParser:
    """Tests for argument parsing."""

    def test_route_args(self):
        args = create_parser().parse_args(
            ["--db", "x.db", "route", "c1", "hello", "--role", "assistant", "--facts"]
        )
        assert args.command == "route"
        assert args.db == "x.db"
        assert args.role == "assistant"
        assert args.facts is True
        assert args.tenant == "anonymous"

    def test_context_defaults(self):
        args = create_parser().parse_args(["context", "b1"])
        assert args.max_messages == 50
        assert args.depth == 5
        assert args.json is False

    def test_no_command_prints_help(self, capsys):
        assert run_cli([]) == 0
        assert "usage: driftline" in capsys.readouterr().out


class TestBranchesCommand:
    """Tests for `driftline branches`."""

    def test_lists_branches(self, db_path: Path, seeded, capsys):
        code = run_cli(["--db", str(db_path), "branches", "c1"])

        out = capsys.readouterr().out
        assert code == 0
        assert out.index("Paris trip") < out.index("Hotels")
        assert "Total: 2 branch(es)" in out

    def test_empty(self, db_path: Path, capsys):
        assert run_cli(["--db", str(db_path), "branches", "nope"]) == 0
        assert "No branches found." in capsys.readouterr().out


class TestContextCommand:
    """Tests for `driftline context`."""

    def test_prompt_block(self, db_path: Path, seeded, capsys):
        _, hotels = seeded

        assert run_cli(["--db", str(db_path), "context", hotels.id]) == 0

        out = capsys.readouterr().out
        assert "<context>" in out
        assert "USER: Hotels near the Louvre?" in out

    def test_json(self, db_path: Path, seeded, capsys):
        paris, hotels = seeded

        run_cli(["--db", str(db_path), "context", hotels.id, "--json"])

        data = json.loads(capsys.readouterr().out)
        assert data["branchId"] == hotels.id
        assert [b["branchId"] for b in data["allFacts"]] == [hotels.id, paris.id]

    def test_unknown_branch(self, db_path: Path, capsys):
        assert run_cli(["--db", str(db_path), "context", "missing"]) == 1
        assert "Error: Branch not found: missing" in capsys.readouterr().err


class TestReplayCommand:
    """Tests for `driftline replay`."""

    @pytest.fixture
    def messages_file(self, tmp_path: Path) -> Path:
        path = tmp_path / "trip.json"
        path.write_text(
            json.dumps(
                [
                    {"role": "user", "content": "I want to plan a trip to Paris"},
                    {"role": "assistant", "content": "When are you going?"},
                ]
            )
        )
        return path

    def test_replay_writes_state(
        self,
        monkeypatch,
        classifier: AsyncMock,
        make_response,
        messages_file: Path,
        tmp_path: Path,
        capsys,
    ):
        classifier.classify.return_value = make_response("BRANCH", topic="Paris trip")
        monkeypatch.setattr(cli, "_make_classifier", lambda config: classifier)
        state_path = tmp_path / "state.json"

        code = run_cli(["replay", str(messages_file), "--state", str(state_path)])

        out = capsys.readouterr().out
        assert code == 0
        assert "trip-msg-0" in out
        assert "Branches: 1  Tokens: 120" in out
        state = json.loads(state_path.read_text())
        assert state["conversationId"] == "trip"
        assert state["lastProcessedIndex"] == 2

    def test_not_a_list(self, monkeypatch, classifier: AsyncMock, tmp_path: Path, capsys):
        monkeypatch.setattr(cli, "_make_classifier", lambda config: classifier)
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"role": "user"}))

        assert run_cli(["replay", str(path)]) == 1
        assert "must contain a JSON list" in capsys.readouterr().err

    def test_missing_api_key(self, monkeypatch, messages_file: Path, capsys):
        monkeypatch.delenv("GROQ_API_KEY", raising=False)

        assert run_cli(["replay", str(messages_file)]) == 1
        assert "Error: GROQ_API_KEY is not set" in capsys.readouterr().err


class TestRouteCommand:
    """Tests for `driftline route`."""

    def test_route_prints_result(
        self,
        monkeypatch,
        classifier: AsyncMock,
        make_response,
        db_path: Path,
        tmp_path: Path,
        capsys,
    ):
        classifier.classify.return_value = make_response("BRANCH", topic="Paris trip")
        monkeypatch.setattr(cli, "_groq_client", lambda: AsyncMock())
        monkeypatch.setattr(cli, "_make_classifier", lambda config: classifier)
        monkeypatch.delenv("EMBEDDING_URL", raising=False)

        code = run_cli(["--db", str(db_path), "route", "c1", "I want to plan a trip to Paris"])

        result = json.loads(capsys.readouterr().out)
        assert code == 0
        assert result["action"] == "BRANCH"
        assert result["branchTopic"] == "Paris trip"
        assert (tmp_path / "logs" / "drift.jsonl").exists()

    def test_validation_error_exit_code(
        self, monkeypatch, classifier: AsyncMock, db_path: Path, capsys
    ):
        monkeypatch.setattr(cli, "_groq_client", lambda: AsyncMock())
        monkeypatch.setattr(cli, "_make_classifier", lambda config: classifier)

        assert run_cli(["--db", str(db_path), "route", "c1", "   "]) == 1
        assert "Error: content is required" in capsys.readouterr().err
