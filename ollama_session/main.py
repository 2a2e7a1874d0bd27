"""
ollama-session: chat with a local Ollama model from your terminal.

Command: ollama-session chat
"""

import os
import sys
from typing import Optional

import click
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .config import CONFIG_DIR, CONFIG_FIELDS, HISTORY_FILE, Config
from .discovery import list_models
from .display import ERROR, DisplayConfig, ModelPicker, render_transcript
from .logger import get_logger, setup_logger
from .session import OllamaSession, QueryResult
from .transcript import EventRole

console = Console()
_log = get_logger(__name__)

BANNER = (
    f"[bold #7FA6D9]ollama-session[/bold #7FA6D9] "
    f"[dim]v{__version__} · chat with a local model[/dim]"
)
HELP_TEXT = """\
  /model [name]   show or switch the model
  /host [addr]    show or switch the Ollama host
  /clear          start a new conversation
  /config         show the current settings
  /exit           leave (also Ctrl-D)
  Ctrl-C stops a reply in progress."""
POLL_INTERVAL = 0.08


@click.group(invoke_without_command=True)
@click.version_option(__version__, prog_name="ollama-session")
@click.pass_context
def cli(ctx):
    """ollama-session: chat with a local Ollama model."""
    if ctx.invoked_subcommand is None:
        ctx.invoke(chat)


def _load_config(project_dir, model=None, host=None, system=None,
                 show_thinking=False, verbose=False) -> Config:
    config = Config.load(project_dir)
    if model:
        config.model = model
    if host:
        ok, error = config.set("host", host)
        if not ok:
            console.print(f"[yellow]  Ignoring --host {host}: {error}[/yellow]")
    if system is not None:
        config.system_prompt = system
    if show_thinking:
        config.show_thinking = True
    if verbose:
        config.verbose = True
    setup_logger("ollama_session", verbose=config.verbose, log_file=config.resolve_log_file())
    return config


def _pick_models(config: Config, picker: ModelPicker):
    if picker is ModelPicker.NONE:
        return []
    return list_models(only_tool_calling=picker is ModelPicker.TOOL_ENABLED, host=config.host)


def _resolve_model(config: Config) -> Optional[str]:
    if config.model:
        return config.model
    picker = ModelPicker(config.model_picker)
    candidates = _pick_models(config, picker) or _pick_models(config, ModelPicker.ALL)
    return candidates[0] if candidates else None


def _build_session(config: Config, model: str) -> OllamaSession:
    return OllamaSession(
        model,
        system_prompt=config.system_prompt,
        host=config.host,
        timeout=float(config.request_timeout),
    )


def _visible_tail(session: OllamaSession, start: int):
    return [e for e in session.transcript.snapshot()[start:] if e.role is not EventRole.USER]


def run_query(session: OllamaSession, text: str, display: DisplayConfig,
              out: Console = console) -> Optional[QueryResult]:
    """Submit ``text`` and draw the reply live until it finishes.

    Ctrl-C stops the reply; whatever streamed so far stays in the transcript.
    """
    start = len(session.transcript)
    handle = session.submit(text)

    def view(final: bool = False):
        status = None if final else session.last_status
        return render_transcript(_visible_tail(session, start), display, status)

    with Live(view(), console=out, refresh_per_second=12) as live:
        try:
            while not handle.done:
                handle.wait(POLL_INTERVAL)
                live.update(view())
        except KeyboardInterrupt:
            session.stop()
            handle.wait()
        live.update(view(final=True))

    result = handle.result
    if result is None:
        return None
    if result.failed:
        out.print(Panel(
            f"[{ERROR}]{result.error.message}[/{ERROR}]",
            title=f"[bold {ERROR}]Error[/bold {ERROR}]",
            title_align="left",
            border_style=ERROR,
            padding=(0, 1),
        ))
    elif result.cancelled:
        out.print("[dim]  Stopped.[/dim]")
    return result


def _show_config(config: Config, out: Console = console) -> None:
    table = Table(show_header=True, header_style="bold #7FA6D9", box=None, padding=(0, 2))
    table.add_column("key")
    table.add_column("value")
    table.add_column("description", style="dim")
    values = config.to_dict()
    for key, spec in CONFIG_FIELDS.items():
        table.add_row(key, repr(values[key]), spec.description)
    out.print(table)
    if config.config_source:
        out.print(f"[dim]  Loaded from {config.config_source}[/dim]")


def _save_config(config: Config, out: Console) -> None:
    path = config.save()
    out.print(f"[dim]  Saved to {path}[/dim]")


def handle_command(text: str, session: OllamaSession, config: Config,
                   out: Console = console) -> Optional[str]:
    """Run one slash command. Returns ``"quit"`` when the REPL should end."""
    command, _, arg = text.partition(" ")
    command = command.lower()
    arg = arg.strip()

    if command in ("/exit", "/quit"):
        return "quit"

    if command == "/help":
        out.print(f"[dim]{HELP_TEXT}[/dim]")
    elif command == "/model":
        if arg:
            session.model = arg
            config.model = arg
            _save_config(config, out)
            out.print(f"  Model: [bold]{arg}[/bold]")
            return None
        picker = ModelPicker(config.model_picker)
        out.print(f"  Model: [bold]{session.model}[/bold]")
        if picker is ModelPicker.NONE:
            return None
        names = _pick_models(config, picker)
        if not names:
            out.print("[dim]  No models found.[/dim]")
        for name in names:
            marker = "●" if name == session.model else " "
            out.print(f"  [#7FA6D9]{marker}[/#7FA6D9] {name}")
    elif command == "/host":
        if arg:
            ok, error = config.set("host", arg)
            if not ok:
                out.print(f"[yellow]  {error}[/yellow]")
                return None
            session.host = config.host
            _save_config(config, out)
        out.print(f"  Host: [bold]{session.host}[/bold]")
    elif command == "/clear":
        session.reset()
        out.print("[dim]  Conversation cleared.[/dim]")
    elif command == "/config":
        _show_config(config, out)
    else:
        out.print(f"[yellow]  Unknown command {command}. Try /help.[/yellow]")
    return None


@cli.command()
@click.option("--model", "-m", default=None, help="Model name, e.g. qwen3:8b")
@click.option("--host", "-H", default=None, help="Ollama host:port")
@click.option("--system", "-s", default=None, help="System prompt")
@click.option("--show-thinking", is_flag=True, help="Show the model's thinking")
@click.option("--project-dir", "-d", default=".", help="Directory to read config from")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
def chat(model, host, system, show_thinking, project_dir, verbose):
    """Start an interactive conversation."""
    console.print(BANNER)
    os.environ.setdefault("PROMPT_TOOLKIT_NO_CPR", "1")
    config = _load_config(project_dir, model, host, system, show_thinking, verbose)

    model_name = _resolve_model(config)
    if not model_name:
        console.print(f"[{ERROR}]No model available on {config.host}. "
                      f"Pull one with `ollama pull` or pass --model.[/{ERROR}]")
        sys.exit(1)

    session = _build_session(config, model_name)
    display = DisplayConfig.from_config(config)
    console.print(f"[dim]  {model_name} @ {config.host} · /help for commands[/dim]\n")

    from prompt_toolkit import PromptSession
    from prompt_toolkit.history import FileHistory

    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    prompt = PromptSession(history=FileHistory(str(HISTORY_FILE)), multiline=False)

    pending_ctrl_d_exit = False
    while True:
        try:
            user_input = prompt.prompt("› ").strip()
            pending_ctrl_d_exit = False
        except EOFError:
            if pending_ctrl_d_exit:
                console.print("\n[dim]Goodbye![/dim]")
                break
            pending_ctrl_d_exit = True
            console.print("\n[dim]Press Ctrl-D again to exit.[/dim]")
            continue
        except KeyboardInterrupt:
            console.print("\n[dim]Goodbye![/dim]")
            break

        if not user_input:
            continue
        if user_input.startswith("/"):
            if handle_command(user_input, session, config) == "quit":
                break
            continue

        try:
            run_query(session, user_input, display)
        except Exception as error:
            _log.exception("Query crashed")
            console.print(f"\n[red]  Error: {error}[/red]")


@cli.command()
@click.argument("message", nargs=-1, required=True)
@click.option("--model", "-m", default=None)
@click.option("--host", "-H", default=None)
@click.option("--project-dir", "-d", default=".")
def ask(message, model, host, project_dir):
    """Run a single query and print the reply."""
    config = _load_config(project_dir, model, host)
    model_name = _resolve_model(config)
    if not model_name:
        console.print(f"[{ERROR}]No model available on {config.host}.[/{ERROR}]")
        sys.exit(1)
    session = _build_session(config, model_name)
    result = run_query(session, " ".join(message), DisplayConfig.from_config(config))
    if result is None or result.failed:
        sys.exit(1)


@cli.command()
@click.option("--tools", "only_tools", is_flag=True, help="Only models that can call tools")
@click.option("--host", "-H", default=None)
@click.option("--project-dir", "-d", default=".")
def models(only_tools, host, project_dir):
    """List the models the Ollama host offers."""
    config = _load_config(project_dir, host=host)
    names = list_models(only_tool_calling=only_tools, host=config.host)
    if not names:
        console.print(f"[dim]No models found on {config.host}.[/dim]")
        return
    table = Table(title=f"Models on {config.host}", title_style="bold #7FA6D9", box=None)
    table.add_column("name")
    table.add_column("", style="dim")
    for name in names:
        table.add_row(name, "current" if name == config.model else "")
    console.print(table)


@cli.command("config")
@click.option("--project-dir", "-d", default=".")
def config_cmd(project_dir):
    """Show configuration."""
    _show_config(_load_config(project_dir))


if __name__ == "__main__":
    cli()
