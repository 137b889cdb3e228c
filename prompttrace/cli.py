"CLI layer: Typer commands for run, replay, info, list, clean, delete, config."

import logging
import sys
import threading
from pathlib import Path
from typing import List

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from . import config as settings
from . import outputs, transcript
from .controller import CaptureController, CaptureOptions, CaptureRequest
from .modes import ExecutionMode, command_name

app = typer.Typer(help="prompttrace: pipe prompts into CLI tools and record everything they print")
console = Console()
err_console = Console(stderr=True)


def setup_logging(verbose=False):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging")):
    """Pipe prompts into CLI tools and record everything they print."""
    setup_logging(verbose)


def auto_stop_capture(handle, timeout_seconds):
    """Kill a capture once its timeout expires."""
    if handle.done():
        return
    err_console.print(f"\n[yellow]⏱️  Timeout reached ({timeout_seconds}s), stopping...[/yellow]")
    handle.kill()


def read_prompt(prompt, prompt_file):
    """Resolve the prompt from --prompt or --prompt-file ('-' reads stdin)."""
    if prompt is not None and prompt_file is not None:
        raise ValueError("Use either --prompt or --prompt-file, not both")
    if prompt is not None:
        return prompt
    if prompt_file == "-":
        return sys.stdin.read()
    if prompt_file is not None:
        with open(prompt_file, "r", encoding="utf-8") as f:
            return f.read()
    return ""


@app.command(context_settings={"allow_interspersed_args": False, "ignore_unknown_options": True})
def run(
    command: str = typer.Argument(..., help="Program to run"),
    arguments: List[str] = typer.Argument(None, help="Arguments passed to the program"),
    prompt: str = typer.Option(None, "--prompt", "-p", help="Prompt text to send"),
    prompt_file: str = typer.Option(None, "--prompt-file", "-f", help="Read the prompt from a file ('-' for stdin)"),
    output: Path = typer.Option(None, "--output", "-o", help="Chunk log path (default: a new file in output_dir)"),
    max_size_mb: float = typer.Option(None, "--max-size-mb", help="Output cap in MB (default: from config or 10)"),
    timeout: int = typer.Option(None, "--timeout", help="Kill the program after N seconds"),
    cwd: Path = typer.Option(None, "--cwd", help="Working directory for the program"),
    mode: str = typer.Option(None, "--mode", help="Force pty-direct, pty-staged or pipe-direct"),
):
    """Run a program with a prompt and capture everything it prints."""
    config = settings.load_config()

    try:
        prompt_text = read_prompt(prompt, prompt_file)
        command_modes = settings.command_modes(config)
        if mode:
            command_modes[command_name(command)] = ExecutionMode.parse(mode)

        if max_size_mb is not None:
            config["max_size_mb"] = max_size_mb
        max_bytes = settings.max_output_bytes(config)

        if output is None:
            output_dir = outputs.ensure_dirs(config["output_dir"])
            output = outputs.output_path_for(output_dir, outputs.generate_capture_id())

        request = CaptureRequest(
            command=command,
            arguments=tuple(arguments or ()),
            prompt=prompt_text,
            output_path=str(output),
            max_output_bytes=max_bytes,
        )
    except (OSError, ValueError) as e:
        console.print(f"[red]❌ Error: {escape(str(e))}[/red]")
        raise typer.Exit(1)

    options = CaptureOptions(
        cwd=str(cwd) if cwd else None,
        rows=config["rows"],
        cols=config["cols"],
        kill_timeout=config["kill_timeout"],
        strip_ansi=config["strip_ansi"],
        passthrough=True,
        interactive=True,
        command_modes=command_modes,
    )
    controller = CaptureController(options)

    command_line = escape(" ".join((command,) + request.arguments))
    console.print(f"[blue]Running: {command_line}[/blue]", highlight=False)
    console.print(f"[dim]Recording to: {escape(str(output))}[/dim]")
    console.print("[dim]" + "─" * 60 + "[/dim]")

    handle = controller.start(request)

    timer = None
    if timeout:
        timer = threading.Timer(timeout, auto_stop_capture, args=(handle, timeout))
        timer.daemon = True
        timer.start()

    try:
        result = handle.result()
    except KeyboardInterrupt:
        handle.kill()
        result = handle.result()
    finally:
        if timer is not None:
            timer.cancel()

    console.print("\n[dim]" + "─" * 60 + "[/dim]")
    if result.error:
        console.print(f"[red]❌ Error: {escape(result.error)}[/red]")
    if result.truncated:
        console.print(f"[yellow]⚠️  Output truncated at {result.output_size} bytes[/yellow]")
    console.print(f"[green]✅ Capture saved: {result.output_file}[/green]")
    console.print(f"[dim]Exit code: {result.exit_code}[/dim]")

    exit_code = result.exit_code if result.exit_code is not None else 1
    if exit_code != 0:
        raise typer.Exit(exit_code)


def _load(capture):
    config = settings.load_config()
    path = outputs.resolve_output(config["output_dir"], capture)
    if not path.exists():
        console.print(f"[red]❌ Capture not found: {capture}[/red]")
        raise typer.Exit(1)
    try:
        return path, transcript.load_chunks(path)
    except (OSError, ValueError) as e:
        console.print(f"[red]❌ Error: {escape(str(e))}[/red]")
        raise typer.Exit(1)


@app.command()
def replay(
    capture: str = typer.Argument(..., help="Capture ID or chunk log path"),
    raw: bool = typer.Option(False, "--raw", help="Keep ANSI escape codes"),
    inputs: bool = typer.Option(False, "--inputs", help="Show only what was sent to the program"),
):
    """Print the recorded transcript of a capture."""
    path, chunks = _load(capture)

    if inputs:
        for line in transcript.extract_user_input_lines(chunks):
            typer.echo(line)
        return

    typer.echo(transcript.build_transcript(chunks, clean=not raw), nl=False)


@app.command()
def info(capture: str = typer.Argument(..., help="Capture ID or chunk log path")):
    """Summarize a capture."""
    path, chunks = _load(capture)
    summary = transcript.summarize(chunks)

    table = Table(title=f"Capture {outputs.capture_id_from_path(path)}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("File", str(path))
    table.add_row("Chunks", str(summary["chunks"]))
    table.add_row("Output chunks", str(summary["output_chunks"]))
    table.add_row("Input chunks", str(summary["input_chunks"]))
    table.add_row("Output bytes", str(summary["output_bytes"]))
    table.add_row("Truncated", "yes" if summary["truncated"] else "no")
    table.add_row("Started", (summary["started_at"] or "")[:19])
    table.add_row("Finished", (summary["finished_at"] or "")[:19])
    table.add_row("Active time", f"{summary['active_seconds']:.2f}s")
    console.print(table)


@app.command("list")
def list_captures(
    name: str = typer.Option(None, "--name", help="Filter captures by ID (partial match, case-insensitive)"),
):
    """List all recorded captures."""
    config = settings.load_config()
    captures = outputs.list_outputs(config["output_dir"])

    if name:
        captures = [c for c in captures if name.lower() in c["capture_id"].lower()]

    if not captures:
        console.print("[dim]No captures found[/dim]")
        return

    table = Table(title="prompttrace Captures")
    table.add_column("Capture ID", style="cyan")
    table.add_column("Modified", style="green")
    table.add_column("Size", style="magenta", justify="right")
    table.add_column("Inputs", justify="right")
    table.add_column("Status", style="yellow")

    for capture in captures:
        # Hyperlink capture ID to the file
        capture_id_display = f"[link=file://{capture['path']}]{capture['capture_id']}[/link]"
        table.add_row(
            capture_id_display,
            capture["modified"][:19],
            str(capture["size"]),
            str(capture["inputs"]),
            capture["status"],
        )

    console.print(table)


@app.command()
def clean(days: int = typer.Option(None, "--days", help="Retention in days (default: from config or 30)")):
    """Delete captures older than the retention period."""
    config = settings.load_config()
    retention = days if days is not None else config["retention_days"]
    try:
        removed = outputs.cleanup_old_outputs(config["output_dir"], retention)
    except OSError as e:
        console.print(f"[red]❌ Error: {escape(str(e))}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✅ Removed {len(removed)} capture(s) older than {retention} days[/green]")


@app.command()
def delete(capture: str = typer.Argument(..., help="Capture ID to delete")):
    """Delete a capture file."""
    config = settings.load_config()
    path = outputs.output_path_for(config["output_dir"], capture)

    if not path.exists():
        console.print(f"[red]❌ Capture not found: {capture}[/red]")
        raise typer.Exit(1)

    # Confirm deletion
    if not typer.confirm(f"Delete capture {capture}? This cannot be undone."):
        console.print("[dim]Cancelled[/dim]")
        return

    path.unlink()
    console.print(f"[green]✅ Capture deleted: {capture}[/green]")


@app.command("config")
def config_command(
    key: str = typer.Argument(..., help="Config key, e.g. max_size_mb or terminal_commands"),
    value: str = typer.Argument(None, help="Value to set (omit to get current value)"),
):
    """Get or set configuration values."""
    config = settings.load_config()

    if value is None:
        # Get current value
        if key in config:
            console.print(f"{key}: {config[key]}", highlight=False)
        else:
            console.print(f"{key}: not set", highlight=False)
        return

    try:
        settings.set_value(config, key, value)
    except ValueError as e:
        console.print(f"[red]❌ {e}[/red]")
        raise typer.Exit(1)

    settings.save_config(config)
    console.print(f"[green]✅ Set {key} to {config[key]}[/green]")


if __name__ == "__main__":
    app()
