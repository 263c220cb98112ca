#!/usr/bin/env python3
"""
The Imaginator: interactive story builder.
Guides a user from a concept to a premise, a cast and an opening scene, shows
story health, and exports the result to screenplay, novel, stage play, series
or game formats.
"""

import argparse
import asyncio
import logging
import os
import sys
from typing import List, Optional

from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from config_manager import AppConfig, ConfigError, config_manager
from data_models import (
    CharacterRole,
    DecisionOption,
    DecisionPoint,
    DecisionRecord,
    ExportFormat,
    ImaginatorError,
    SceneFramework,
    StoryProject,
)
from decision_engine import DecisionEngine
from export_coordinator import ExportCoordinator
from generation_service import GenerationService, TextProvider
from health_scorer import health_report, health_status
from prompts import FORMAT_CATALOGUE
from story_analysis import StoryAnalyst
from story_repository import JsonStoryRepository, PersistenceError, StoryRepository
from story_session import AWAITING_STATES, EngineState, StorySession

logger = logging.getLogger(__name__)

# (perspective, title, subtitle, border style, character role)
PERSPECTIVE_VIEWS = (
    ("objective", "Objective Story Laboratory", "The God's Eye View", "blue", None),
    ("protagonist", "{name}'s Mind", "The Subjective Experience", "green", CharacterRole.PROTAGONIST),
    ("antagonist", "{name}'s Mind", "The Counter-Narrative", "red", CharacterRole.ANTAGONIST),
)

FRAMEWORK_LABELS = {
    SceneFramework.EGRI: "Egri (Premise-Driven)",
    SceneFramework.ARISTOTLE: "Aristotle (Classical)",
    SceneFramework.SAVE_THE_CAT: "Save the Cat!",
    SceneFramework.HERO_JOURNEY: "Hero's Journey",
}


def configure_logging(verbose: bool = False, log_file: str = "imaginator.log"):
    """Log to a file and to stderr"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ]
    )


class ImaginatorApp:
    """Console front end over the decision engine, exporter and repository"""

    def __init__(self, config: AppConfig, provider: TextProvider,
                 repository: StoryRepository, owner_id: str,
                 console: Optional[Console] = None):
        self.config = config
        self.owner_id = owner_id
        self.console = console or Console(no_color=not config.ui.color_output)
        self.repository = repository
        self.engine = DecisionEngine(provider, repository, config.engine)
        self.exporter = ExportCoordinator(provider, timeout=config.export.timeout)
        self.analyst = StoryAnalyst(provider, timeout=config.engine.provider_timeout)
        self.engine.add_transition_callback(self._on_transition)

    def _on_transition(self, session: StorySession, result):
        if result.degraded:
            self.console.print(
                "[yellow]⚠️ The story engine could not reach the AI provider; "
                "built-in content was used.[/yellow]"
            )
        logger.debug(f"Transition took {result.duration or 0:.2f}s")

    def _spinner(self, description: str) -> Progress:
        progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=self.console,
            transient=True,
            disable=not self.config.ui.show_progress,
        )
        progress.add_task(description, total=None)
        return progress

    def display_decision(self, decision: DecisionPoint):
        """Show each option of a decision with its impact scores"""
        self.console.print(f"\n[bold blue]{decision.context}[/bold blue]")
        for i, option in enumerate(decision.options, 1):
            impact = option.impact
            body = (
                f"{option.description}\n\n"
                f"[bold]Impact:[/bold] premise {impact.premise:.0f} · character {impact.character:.0f} · "
                f"structure {impact.structure:.0f} · theme {impact.theme:.0f}"
            )
            if option.analysis:
                body += f"\n[bold]Analysis:[/bold] {option.analysis}"
            if option.examples:
                body += f"\n[bold]Examples:[/bold] {', '.join(option.examples)}"
            self.console.print(Panel(body, title=f"{i}. {option.title}", border_style="green", expand=False))
        if decision.recommendation:
            self.console.print(f"[dim]{decision.recommendation}[/dim]")

    def get_user_choice(self, options: List, prompt: str) -> Optional[int]:
        """Ask for a 1-based choice; 'c' cancels"""
        while True:
            choice = self.console.input(
                f"\n[bold cyan]{prompt} (1-{len(options)}) or 'c' to cancel: [/bold cyan]"
            ).strip().lower()
            if choice in ("c", "cancel"):
                return None
            try:
                choice_num = int(choice)
            except ValueError:
                self.console.print("[red]Please enter a valid number[/red]")
                continue
            if 1 <= choice_num <= len(options):
                return choice_num - 1
            self.console.print(f"[red]Please enter a number between 1 and {len(options)}[/red]")

    def display_health(self, project: StoryProject):
        """Show the health table of a story"""
        table = Table(title=f"📊 Story Health: {project.title}", show_header=True)
        table.add_column("Metric", style="cyan")
        table.add_column("Score", justify="right")
        table.add_column("Status", style="green")
        table.add_column("Meaning", style="dim")
        for row in health_report(project.health):
            table.add_row(row["label"], f"{row['value']:.0f}", row["status"], row["description"])
        overall = project.health.overall
        table.add_row("[bold]Overall[/bold]", f"[bold]{overall:.0f}[/bold]", health_status(overall), "")
        self.console.print(table)

        compliance = Table(title="Framework Compliance", show_header=True)
        compliance.add_column("Framework", style="cyan")
        compliance.add_column("Alignment", justify="right")
        for framework, label in FRAMEWORK_LABELS.items():
            compliance.add_row(label, f"{getattr(project.frameworks, framework.value):.0f}%")
        self.console.print(compliance)

    def display_scenes(self, project: StoryProject):
        """Show every scene from the objective, protagonist and antagonist perspectives"""
        if not project.scenes:
            self.console.print("[yellow]No scenes generated yet.[/yellow]")
            return
        names = {c.id: c.name for c in project.characters}

        for scene in project.scenes:
            self.console.print(Panel(
                scene.content or scene.perspectives.objective,
                title=f"🎬 Scene {scene.position}: {scene.title}",
                subtitle=f"conflict {scene.conflict_level:.0f}/10 · premise advancement {scene.premise_advancement:.0f}/10",
                border_style="cyan",
            ))
            for key, title, subtitle, style, role in PERSPECTIVE_VIEWS:
                if role is not None:
                    character = project.find_character(role)
                    title = title.format(name=character.name if character else role.value.title())
                text = getattr(scene.perspectives, key) or "This perspective will be generated when the scene is created..."
                self.console.print(Panel(text, title=title, subtitle=subtitle, border_style=style))

            beats = [(FRAMEWORK_LABELS[f], beat) for f, beat in scene.framework_beats.items() if beat]
            if beats:
                table = Table(title="Framework Analysis", show_header=False)
                table.add_column("Framework", style="cyan")
                table.add_column("Beat")
                for label, beat in beats:
                    table.add_row(label, beat)
                self.console.print(table)

            developments = [(names[cid], note) for cid, note in scene.character_developments.items()
                            if cid in names and note]
            if developments:
                self.console.print("[bold]Character Development[/bold]")
                for name, note in developments:
                    self.console.print(f"  • [green]{name}[/green]: {note}")

    def display_history(self, records: List[DecisionRecord]):
        """Show the decisions that shaped a story"""
        if not records:
            return
        table = Table(title="🕘 Decision History", show_header=True)
        table.add_column("When", style="dim")
        table.add_column("Decision", style="cyan")
        table.add_column("Choice", style="green")
        for record in records:
            table.add_row(
                record.created_at.strftime("%Y-%m-%d %H:%M"),
                record.decision_type.value.replace("_", " ").title(),
                record.chosen_option_title,
            )
        self.console.print(table)

    def _ask_text(self, prompt: str, missing: str) -> str:
        """Ask until a non-empty answer is given"""
        while True:
            answer = self.console.input(f"[cyan]{prompt}: [/cyan]").strip()
            if answer:
                return answer
            self.console.print(f"[red]Please enter {missing}[/red]")

    async def guide(self, session: StorySession) -> StorySession:
        """Walk a session through its remaining decisions"""
        started = session.state
        if session.state == EngineState.IDLE:
            concept = self._ask_text("Describe your story concept", "a story concept")
            with self._spinner("Generating premise options..."):
                await self.engine.begin(session, concept)

        while session.state in AWAITING_STATES:
            decision = session.current_decision
            self.display_decision(decision)
            index = self.get_user_choice(decision.options, "Select an option")
            if index is None:
                self.console.print("[yellow]Decision postponed. Your story is saved as it is.[/yellow]")
                break
            option: DecisionOption = decision.options[index]
            with self._spinner(f"Applying '{option.title}'..."):
                await self.engine.choose(session, option.id)

        await self._save_session(session)
        if session.state == EngineState.RESOLVED:
            self.console.print(f"[green]✅ Story '{session.project.title}' is ready[/green]")
            if started != EngineState.RESOLVED:
                self.display_scenes(session.project)
            self.display_health(session.project)
        return session

    async def _save_session(self, session: StorySession):
        project = session.project
        try:
            await self.repository.save_session_state(project.id, project.user_id, session.export_state())
        except PersistenceError as e:
            logger.warning(f"Session of story {project.id} not saved, it will resume from the document: {e}")

    async def new_story(self, title: Optional[str] = None) -> StorySession:
        title = title or self._ask_text("Story title", "a title")
        session = self.engine.new_session(title, self.owner_id)
        await self.repository.save(session.project)
        return await self.guide(session)

    async def load_story(self, story_id: str) -> Optional[StorySession]:
        project = await self.repository.load(story_id, self.owner_id)
        if project is None:
            self.console.print(f"[red]❌ Story '{story_id}' not found[/red]")
            return None
        saved_state = await self.repository.load_session_state(story_id, self.owner_id)
        session = self.engine.resume(project, saved_state)
        self.console.print(f"[green]✅ Loaded '{project.title}'[/green]")
        self.display_history(await self.repository.load_decision_history(story_id, self.owner_id))
        if project.scenes:
            self.display_scenes(project)
        return session

    async def list_stories(self):
        stories = await self.repository.list_by_owner(self.owner_id)
        if not stories:
            self.console.print("[yellow]No stories yet.[/yellow]")
            return
        table = Table(title="📚 Your Stories", show_header=True)
        table.add_column("ID", style="dim")
        table.add_column("Title", style="green")
        table.add_column("Premise")
        table.add_column("Scenes", justify="right")
        table.add_column("Health", justify="right")
        table.add_column("Updated")
        for story in stories:
            table.add_row(
                story.id, story.title, story.premise.statement or "-",
                str(story.structure.total_scenes), f"{story.health.overall:.0f}",
                story.updated_at.strftime("%Y-%m-%d %H:%M"),
            )
        self.console.print(table)

    async def delete_story(self, story_id: str):
        await self.repository.delete(story_id, self.owner_id)
        self.console.print(f"[green]🗑️ Story '{story_id}' deleted[/green]")

    async def export(self, session: StorySession, target_format: ExportFormat):
        profile = FORMAT_CATALOGUE[target_format]
        with self._spinner(f"Rendering {profile['title']}..."):
            content = await self.exporter.export_session(session, target_format)
        path = await self.exporter.save_export(
            session.project, target_format, content, self.config.export.output_dir
        )
        self.console.print(Panel(content[:2000], title=f"{profile['title']} Preview", border_style="blue"))
        self.console.print(f"[green]📁 Export saved: {path}[/green]")

    async def analyze(self, session: StorySession):
        with self._spinner("Analyzing story..."):
            analysis = await self.analyst.analyze(session.project)
        self.display_health(session.project)
        sections = [
            analysis.analysis,
            "[bold]Strengths[/bold]\n" + "\n".join(f"• {s}" for s in analysis.strengths),
            "[bold]Weaknesses[/bold]\n" + "\n".join(f"• {w}" for w in analysis.weaknesses),
            "[bold]Recommendations[/bold]\n" + "\n".join(f"• {r}" for r in analysis.recommendations),
        ]
        self.console.print(Panel("\n\n".join(sections), title="🧠 Story Analysis", border_style="magenta"))


def _get_api_key(provided_key: Optional[str]) -> str:
    api_key = provided_key or os.getenv("GEMINI_API_KEY")
    if not api_key or not api_key.strip():
        raise ConfigError("Gemini API key is required (use --api-key or set GEMINI_API_KEY)")
    return api_key.strip()


DEFAULT_EXPORT = "default"


def _export_format_arg(value: str):
    if value == DEFAULT_EXPORT:
        return value
    try:
        return ExportFormat.parse(value)
    except ImaginatorError as e:
        raise argparse.ArgumentTypeError(str(e))


def init_config(config: AppConfig, config_path: str, console: Console) -> int:
    """Write the effective configuration so it can be edited"""
    if not config_manager.save_config(config, config_path):
        console.print(f"[red]❌ Could not write {config_path}[/red]")
        return 1
    console.print(f"[green]📝 Configuration written to {config_path}[/green]")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="The Imaginator: AI-guided story builder",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                            # Build a new story interactively
  %(prog)s --list                     # List your stories
  %(prog)s --load ID                  # Continue a story
  %(prog)s --load ID --export novel   # Export a story as a novel
  %(prog)s --load ID --export         # Export in the configured default format
  %(prog)s --load ID --analyze        # Critique a story's health
  %(prog)s --delete ID                # Delete a story
  %(prog)s --init-config              # Write config.json with every setting
        """
    )
    parser.add_argument("--config", "-c", default="config.json",
                        help="Path to configuration file (default: config.json)")
    parser.add_argument("--owner", default=os.getenv("IMAGINATOR_USER", "local"),
                        help="Owner id for stored stories (or set IMAGINATOR_USER)")
    parser.add_argument("--title", help="Title for a new story")
    parser.add_argument("--list", action="store_true", help="List stories and exit")
    parser.add_argument("--load", "-l", metavar="ID", help="Load an existing story")
    parser.add_argument("--delete", metavar="ID", help="Delete a story and exit")
    parser.add_argument("--export", nargs="?", const=DEFAULT_EXPORT, type=_export_format_arg, metavar="FORMAT",
                        help="Export the loaded story: " + ", ".join(f.value for f in ExportFormat)
                        + " (default from config)")
    parser.add_argument("--analyze", action="store_true", help="Analyze the loaded story")
    parser.add_argument("--init-config", action="store_true",
                        help="Write the current configuration to --config and exit")
    parser.add_argument("--api-key", help="Google Gemini API key (or set GEMINI_API_KEY)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    return parser


async def run(app: ImaginatorApp, args) -> int:
    if args.list:
        await app.list_stories()
        return 0
    if args.delete:
        await app.delete_story(args.delete)
        return 0

    if args.load:
        session = await app.load_story(args.load)
        if session is None:
            return 1
        if not (args.export or args.analyze):
            await app.guide(session)
    else:
        session = await app.new_story(args.title)

    if args.analyze:
        await app.analyze(session)
    if args.export:
        target = app.config.export.default_format if args.export == DEFAULT_EXPORT else args.export
        await app.export(session, ExportFormat.parse(target))
    return 0


def main():
    console = Console()
    args = build_parser().parse_args()

    load_dotenv()
    config = config_manager.load_config(args.config)
    configure_logging(args.verbose or config.ui.verbose_logging)

    if args.init_config:
        sys.exit(init_config(config, args.config, console))

    console.print("[bold blue]🎬 The Imaginator[/bold blue]\n")

    try:
        provider = GenerationService(_get_api_key(args.api_key), config.api)
        repository = JsonStoryRepository(config.storage.data_dir, config.storage.history_enabled)
        app = ImaginatorApp(config, provider, repository, args.owner, console)
        sys.exit(asyncio.run(run(app, args)))
    except KeyboardInterrupt:
        console.print("\n[yellow]⚠️ Interrupted. Decisions made so far are saved.[/yellow]")
        sys.exit(130)
    except ImaginatorError as e:
        console.print(f"[red]❌ {e}[/red]")
        logger.error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
