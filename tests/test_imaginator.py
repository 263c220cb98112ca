"""
Tests for the interactive console front end.
"""

import io
import json
from unittest.mock import MagicMock

import pytest
from rich.console import Console

from config_manager import AppConfig, ExportConfig, UIConfig
from data_models import ExportFormat, SceneFramework, ScenePerspectives
from imaginator import ImaginatorApp, build_parser, init_config, run
from story_repository import JsonStoryRepository
from story_session import EngineState
from tests.conftest import options_json, scene_json


@pytest.fixture
def app(provider, tmp_path):
    config = AppConfig(
        ui=UIConfig(show_progress=False, color_output=False),
        export=ExportConfig(output_dir=str(tmp_path / "exports")),
    )
    console = Console(file=io.StringIO(), width=120)
    return ImaginatorApp(config, provider, JsonStoryRepository(tmp_path / "stories"), "user_1", console)


def output(app) -> str:
    return app.console.file.getvalue()


class TestInteractiveFlow:
    """Test guiding a story through its decisions"""

    @pytest.mark.asyncio
    async def test_new_story_to_resolution(self, app, provider):
        app.console.input = MagicMock(side_effect=["A heist gone wrong", "1", "1"])
        provider.queue(
            options_json("Greed leads to isolation", prefix="premise"),
            options_json("Mirror rivals", prefix="character"),
            scene_json(),
        )

        session = await app.new_story("Night Heist")

        assert session.state == EngineState.RESOLVED
        stored = await app.repository.load(session.project.id, "user_1")
        assert len(stored.characters) == 2
        text = output(app)
        assert "Story Health" in text
        assert "Framework Compliance" in text
        assert "Objective Story Laboratory" in text
        assert "Alex Morgan's Mind" in text
        assert "Marcus sees leverage." in text
        assert "Save the Cat!" in text
        assert "Alex Morgan: Doubts the partner" in text

    @pytest.mark.asyncio
    async def test_empty_concept_is_asked_again(self, app, provider):
        app.console.input = MagicMock(side_effect=["", "   ", "A heist", "c"])
        provider.queue(options_json("Greed leads to isolation", prefix="premise"))

        session = await app.new_story("Night Heist")

        assert session.state == EngineState.AWAITING_PREMISE_CHOICE
        assert output(app).count("Please enter a story concept") == 2
        assert "A heist" in provider.calls[0].prompt

    @pytest.mark.asyncio
    async def test_postponed_decision_resumes_with_same_options(self, app, provider):
        app.console.input = MagicMock(side_effect=["A heist", "1", "c"])
        provider.queue(
            options_json("Greed leads to isolation", prefix="premise"),
            options_json("Mirror rivals", "Mentor and pupil", prefix="character"),
        )
        session = await app.new_story("Night Heist")

        resumed = await app.load_story(session.project.id)

        assert resumed.state == EngineState.AWAITING_CHARACTER_CHOICE
        assert [o.title for o in resumed.current_decision.options] == ["Mirror rivals", "Mentor and pupil"]
        assert "Decision History" in output(app)
        assert "Premise Selection" in output(app)

    @pytest.mark.asyncio
    async def test_invalid_then_valid_choice(self, app, provider):
        app.console.input = MagicMock(side_effect=["A heist", "abc", "9", "1", "c"])
        provider.queue(
            options_json("Greed leads to isolation", prefix="premise"),
            options_json("Mirror rivals", prefix="character"),
        )

        session = await app.new_story("Night Heist")

        assert session.state == EngineState.AWAITING_CHARACTER_CHOICE
        text = output(app)
        assert "valid number" in text
        assert "between 1 and 1" in text
        assert "postponed" in text


class TestCommands:
    """Test command line dispatch"""

    def test_parser_flags(self):
        args = build_parser().parse_args(["--load", "project_1", "--export", "novel", "--owner", "me"])
        assert args.load == "project_1"
        assert args.export == ExportFormat.NOVEL
        assert args.owner == "me"
        assert not args.analyze

    def test_parser_accepts_hyphenated_format(self):
        assert build_parser().parse_args(["--export", "stage-play"]).export == ExportFormat.STAGE_PLAY

    def test_parser_rejects_unknown_format(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--export", "pdf"])

    @pytest.mark.asyncio
    async def test_list(self, app, full_project):
        await app.repository.save(full_project)
        assert await run(app, build_parser().parse_args(["--list"])) == 0
        assert "The Long Night" in output(app)

    @pytest.mark.asyncio
    async def test_load_missing(self, app):
        assert await run(app, build_parser().parse_args(["--load", "project_missing"])) == 1

    @pytest.mark.asyncio
    async def test_load_shows_scene_perspectives(self, app, full_project):
        scene = full_project.scenes[0]
        scene.perspectives = ScenePerspectives(objective="Rain on the docks.", protagonist="Alex hesitates.")
        scene.framework_beats = {SceneFramework.EGRI: "Point of attack"}
        scene.character_developments = {"char_a": "Tightens the net"}
        await app.repository.save(full_project)

        session = await app.load_story(full_project.id)

        assert session.state == EngineState.RESOLVED
        text = output(app)
        assert "Scene 1: Opening" in text
        assert "Alex's Mind" in text
        assert "Alex hesitates." in text
        assert "Marcus's Mind" in text
        assert "This perspective will be generated" in text
        assert "Egri (Premise-Driven)" in text
        assert "Marcus: Tightens the net" in text

    @pytest.mark.asyncio
    async def test_load_and_export(self, app, provider, full_project, tmp_path):
        await app.repository.save(full_project)
        provider.queue("Chapter One")

        args = build_parser().parse_args(["--load", full_project.id, "--export", "novel"])
        assert await run(app, args) == 0

        exported = tmp_path / "exports" / "The Long Night_novel.txt"
        assert exported.read_text(encoding="utf-8") == "Chapter One"

    @pytest.mark.asyncio
    async def test_export_defaults_to_configured_format(self, app, provider, full_project, tmp_path):
        app.config.export.default_format = ExportFormat.TV_SERIES.value
        await app.repository.save(full_project)
        provider.queue("PILOT")

        args = build_parser().parse_args(["--load", full_project.id, "--export"])
        assert await run(app, args) == 0

        assert (tmp_path / "exports" / "The Long Night_tv_series.txt").read_text(encoding="utf-8") == "PILOT"

    @pytest.mark.asyncio
    async def test_delete(self, app, full_project):
        await app.repository.save(full_project)
        assert await run(app, build_parser().parse_args(["--delete", full_project.id])) == 0
        assert await app.repository.load(full_project.id, "user_1") is None

    def test_init_config_writes_effective_settings(self, app, tmp_path):
        path = tmp_path / "config.json"

        assert init_config(app.config, str(path), app.console) == 0

        written = json.loads(path.read_text(encoding="utf-8"))
        assert written["export"]["output_dir"] == app.config.export.output_dir
        assert written["ui"]["show_progress"] is False
