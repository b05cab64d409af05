"""Terminal interface for running a dialectic against a self model."""

import argparse
import asyncio
import logging

import asyncpg
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from epistemic_core import db
from epistemic_core.config import KV_FILE_PATH
from epistemic_core.dialectic import DialecticService
from epistemic_core.errors import EpistemicError, InvalidStateError, NotFoundError
from epistemic_core.kv_store import InMemoryKeyValueStore, KeyValueStore, PostgresKeyValueStore
from epistemic_core.language import ClaudeLanguageCollaborator
from epistemic_core.models import Dialectic, DialecticType, InteractionStatus
from epistemic_core.predictive_processing import find_context
from epistemic_core.self_model import SelfModelService

console = Console()


def confidence_bar(value: float, width: int = 20) -> str:
    filled = int(value * width)
    bar = "█" * filled + "░" * (width - filled)
    return f"[cyan]{bar}[/cyan] {value:.2f}"


def emotion_label(emotion: str, intensity: float) -> str:
    color = {
        "surprise": "red",
        "confirmation": "green",
        "curiosity": "yellow",
        "confusion": "magenta",
    }.get(emotion, "white")
    return f"[{color}]{emotion}[/{color}] {intensity:.2f}"


async def open_store() -> KeyValueStore:
    """Postgres when reachable, otherwise the in-memory store mirrored to a JSON file."""
    try:
        await db.get_pool()
        await db.init_schema()
        console.print("[dim]✓ Connected to Postgres[/dim]")
        return PostgresKeyValueStore()
    except (OSError, asyncpg.PostgresError) as e:
        path = KV_FILE_PATH or "epistemic_core.json"
        console.print(f"[yellow]Postgres unavailable ({e}); using {path}[/yellow]")
        return InMemoryKeyValueStore(path)


async def show_beliefs(models: SelfModelService, self_model_id: str):
    bs = await models.get_belief_system(self_model_id)
    ppc = find_context(bs)
    table = Table(title="Active Beliefs", show_lines=True)
    table.add_column("#", style="dim", width=3)
    table.add_column("Belief", style="white", max_width=60)
    table.add_column("Type", style="dim")
    table.add_column("v", style="dim", width=3)
    table.add_column("Confidence", width=28)

    for i, b in enumerate(b for b in bs.beliefs if b.active):
        scores = [bc.latest_confidence for bc in ppc.belief_contexts if bc.belief_id == b.id] if ppc else []
        table.add_row(
            str(i),
            b.text,
            b.type.value,
            str(b.version),
            confidence_bar(max(scores)) if scores else "[dim]no context[/dim]",
        )
    console.print(table)


async def show_contexts(models: SelfModelService, self_model_id: str):
    bs = await models.get_belief_system(self_model_id)
    ppc = find_context(bs)
    if ppc is None or not ppc.observation_contexts:
        console.print("[dim]No observation contexts yet.[/dim]")
        return

    beliefs = {b.id: b.text for b in bs.beliefs}
    table = Table(title="Belief Contexts", show_lines=True)
    table.add_column("Observation context", max_width=40)
    table.add_column("Belief", max_width=40)
    table.add_column("Confidence", width=28)
    table.add_column("Emotion")
    table.add_column("Predicted", style="dim")
    for bc in ppc.belief_contexts:
        oc = ppc.observation_context(bc.observation_context_id)
        predicted = ", ".join(f"{s}={p:.2f}" for s, p in bc.conditional_probabilities.items())
        table.add_row(
            oc.name if oc else bc.observation_context_id,
            beliefs.get(bc.belief_id, bc.belief_id)[:40],
            confidence_bar(bc.latest_confidence),
            emotion_label(bc.epistemic_emotion.value, bc.emotion_intensity),
            predicted,
        )
    console.print(table)


async def show_metrics(models: SelfModelService, self_model_id: str):
    m = await models.belief_system_metrics(self_model_id)
    console.print(Panel(
        f"Beliefs: {m.total_beliefs}  (statements {m.total_belief_statements}, causal {m.total_causal_beliefs})\n"
        f"Falsifiable: {m.total_falsifiable_beliefs}\n"
        f"Clarification: {confidence_bar(m.clarification_score, 40)}",
        title="Belief System Metrics",
    ))


def show_history(dialectic: Dialectic):
    for i, interaction in enumerate(dialectic.user_interactions, 1):
        qa = interaction.question_answer
        if interaction.status == InteractionStatus.ANSWERED:
            extracted = "\n".join(f"  • {b.text}" for b in qa.extracted_beliefs)
            console.print(Panel(
                f"[bold]Q:[/bold] {qa.question.text}\n"
                f"[bold]A:[/bold] {qa.answer.text if qa.answer else ''}\n"
                + (f"[dim]Beliefs:\n{extracted}[/dim]" if extracted else "[dim]No beliefs extracted[/dim]"),
                title=f"#{i} answered",
            ))
        else:
            console.print(Panel(f"[bold]Q:[/bold] {qa.question.text}", title=f"#{i} pending", border_style="yellow"))


def show_pending(dialectic: Dialectic):
    pending = dialectic.pending_interactions()
    if not pending:
        console.print("[dim]No pending questions.[/dim]")
        return
    for interaction in pending:
        console.print(Panel(interaction.question, title="[bold]question[/bold]", border_style="bright_blue"))


def show_help():
    console.print(Panel(
        "[bold]Commands:[/bold]\n"
        "  [cyan]\\beliefs[/cyan]            Show active beliefs and their confidence\n"
        "  [cyan]\\contexts[/cyan]           Show belief contexts, predictions and emotions\n"
        "  [cyan]\\metrics[/cyan]            Show belief system metrics\n"
        "  [cyan]\\history[/cyan]            Show the dialectic so far\n"
        "  [cyan]\\analyze[/cyan]            Score the belief system\n"
        "  [cyan]\\questions <text>[/cyan]   Add the questions found in a block of text\n"
        "  [cyan]\\answers <text>[/cyan]     Answer pending questions from a block of text\n"
        "  [cyan]\\help[/cyan]               Show this help\n"
        "  [cyan]\\quit[/cyan]               Exit\n"
        "\n"
        "Anything else answers the latest pending question.",
        title="Epistemic Core CLI",
    ))


async def run_cli(self_model_id: str, dialectic_type: DialecticType, dialectic_id: str | None):
    console.print(Panel(
        "[bold]EPISTEMIC CORE[/bold]\n"
        "Elicit, track and revise a belief system through dialogue\n"
        "[dim]Type \\help for commands[/dim]",
        border_style="bright_blue",
    ))

    store = await open_store()
    models = SelfModelService(store)
    dialectics = DialecticService(store, ClaudeLanguageCollaborator())

    try:
        await models.get_self_model(self_model_id)
    except NotFoundError:
        await models.create_self_model(self_model_id)
        console.print(f"[green]✓ Created self model {self_model_id}[/green]")

    if dialectic_id:
        dialectic = await dialectics.get_dialectic(self_model_id, dialectic_id)
    else:
        console.print("[dim]Starting dialectic...[/dim]")
        dialectic = await dialectics.create_dialectic(self_model_id, dialectic_type)
    console.print(f"[dim]✓ Dialectic {dialectic.id}[/dim]\n")
    show_pending(dialectic)

    while True:
        try:
            user_input = console.input("[bold cyan]you>[/bold cyan] ").strip()
        except (EOFError, KeyboardInterrupt):
            break

        if not user_input:
            continue

        try:
            if user_input.startswith("\\"):
                cmd, _, rest = user_input.partition(" ")
                cmd = cmd.lower()
                if cmd in ("\\quit", "\\exit", "\\q"):
                    break
                elif cmd == "\\beliefs":
                    await show_beliefs(models, self_model_id)
                elif cmd == "\\contexts":
                    await show_contexts(models, self_model_id)
                elif cmd == "\\metrics":
                    await show_metrics(models, self_model_id)
                elif cmd == "\\history":
                    show_history(dialectic)
                elif cmd == "\\analyze":
                    console.print("[dim]Analyzing...[/dim]")
                    a = await dialectics.analyze_dialectic(self_model_id, dialectic.id)
                    console.print(Panel(
                        f"Coherence:      {confidence_bar(a.coherence)}\n"
                        f"Consistency:    {confidence_bar(a.consistency)}\n"
                        f"Falsifiability: {confidence_bar(a.falsifiability)}\n"
                        f"[bold]Overall:        {confidence_bar(a.overall_score)}[/bold]\n\n"
                        f"{a.feedback}\n\n"
                        + "\n".join(f"  • {r}" for r in a.recommendations),
                        title="Belief System Analysis",
                    ))
                elif cmd == "\\questions":
                    if not rest.strip():
                        raise InvalidStateError("\\questions needs a block of text")
                    dialectic = await dialectics.update_dialectic(self_model_id, dialectic.id, question_blob=rest)
                    show_pending(dialectic)
                elif cmd == "\\answers":
                    if not rest.strip():
                        raise InvalidStateError("\\answers needs a block of text")
                    console.print("[dim]Processing...[/dim]")
                    dialectic = await dialectics.update_dialectic(self_model_id, dialectic.id, answer_blob=rest)
                    show_pending(dialectic)
                elif cmd == "\\help":
                    show_help()
                else:
                    console.print(f"[red]Unknown command: {cmd}[/red]")
                continue

            console.print("[dim]Processing...[/dim]")
            dialectic = await dialectics.update_dialectic(self_model_id, dialectic.id, answer=user_input)
            answered = dialectic.user_interactions[-2].question_answer
            if answered.extracted_beliefs:
                console.print("[dim]  beliefs: " + " | ".join(b.text for b in answered.extracted_beliefs) + "[/dim]")
            console.print()
            show_pending(dialectic)

        except EpistemicError as e:
            console.print(f"[red]Error: {e}[/red]")

    await db.close_pool()
    console.print("[dim]Goodbye.[/dim]")


def main():
    parser = argparse.ArgumentParser(prog="epistemic-core")
    parser.add_argument("self_model_id", nargs="?", default="default")
    parser.add_argument("--type", dest="dialectic_type", default=DialecticType.DEFAULT.value,
                        choices=[t.value for t in DialecticType])
    parser.add_argument("--dialectic", dest="dialectic_id", default=None, help="resume an existing dialectic")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )
    asyncio.run(run_cli(args.self_model_id, DialecticType(args.dialectic_type), args.dialectic_id))


if __name__ == "__main__":
    main()
