"""CLI entry point for bidilog."""

import asyncio
import logging
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from bidilog.core.bidi_client import open_channel
from bidilog.core.exceptions import BidilogError, DriverNotFoundError
from bidilog.core.filters import FilterBy
from bidilog.core.log_entry import LogEntry, LogLevel
from bidilog.core.log_inspector import log_inspector
from bidilog.core.registry import Category
from bidilog.core.webdriver import DEFAULT_DRIVER_URL, WebDriverSession, check_driver_status
from bidilog.utils.driver import (
    DEFAULT_DRIVER_PORT,
    driver_url,
    find_driver,
    get_driver_version,
    kill_driver,
    launch_driver,
)

console = Console()
app = typer.Typer(
    name="bidilog",
    help="""Inspect browser log entries over WebDriver BiDi.

Typical workflow:
    bidilog driver launch
    bidilog stream --url http://localhost:3000

Console & Errors:
    bidilog stream --url myapp                          # Every log entry
    bidilog stream --url myapp --category console       # Only console.* calls
    bidilog stream --url myapp --category javascript_exception
    bidilog stream --url myapp --level error            # Only error level
    """,
    no_args_is_help=True,
)

driver_app = typer.Typer(help="Launch and manage a local WebDriver server.")
app.add_typer(driver_app, name="driver")

LEVEL_COLORS = {
    LogLevel.DEBUG.value: "dim",
    LogLevel.INFO.value: "white",
    LogLevel.WARN.value: "yellow",
    LogLevel.ERROR.value: "red",
}


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Show debug logging")] = False,
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
    )


@app.command()
def doctor(
    browser: Annotated[str, typer.Option("--browser", "-b", help="firefox or chrome")] = "firefox",
    port: Annotated[int, typer.Option("--port", "-p", help="WebDriver port to check")] = DEFAULT_DRIVER_PORT,
) -> None:
    """Check environment and WebDriver connectivity."""
    console.print("[bold]bidilog doctor[/bold]\n")

    try:
        path = find_driver(browser)
        version = get_driver_version(path)
        console.print(f"[green]✓[/green] Driver found: {path}")
        if version:
            console.print(f"  Version: {version}")
    except DriverNotFoundError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(code=1) from None

    console.print()

    if asyncio.run(check_driver_status(driver_url(port))):
        console.print(f"[green]✓[/green] WebDriver ready on port {port}")
    else:
        console.print(f"[yellow]![/yellow] WebDriver not available on port {port}")
        console.print("\n[dim]To start one:[/dim]")
        console.print(f"  bidilog driver launch --browser {browser} --port {port}")


@app.command()
def stream(
    url: Annotated[str | None, typer.Option("--url", help="Page to open before streaming")] = None,
    driver: Annotated[
        str, typer.Option("--driver-url", envvar="BIDILOG_DRIVER_URL", help="WebDriver server URL")
    ] = DEFAULT_DRIVER_URL,
    browser: Annotated[str | None, typer.Option("--browser", "-b", help="firefox or chrome")] = None,
    headless: Annotated[bool, typer.Option("--headless", help="Run the browser headless")] = False,
    category: Annotated[
        Category, typer.Option("--category", "-c", help="Which entries to receive")
    ] = Category.ANY,
    level: Annotated[
        str | None, typer.Option("--level", "-l", help="Only entries with exactly this level")
    ] = None,
    format_type: Annotated[
        str, typer.Option("--format", "-f", help="Output format: pretty, ndjson, tsv")
    ] = "pretty",
    lines: Annotated[int | None, typer.Option("--lines", "-n", help="Exit after N entries")] = None,
    duration: Annotated[
        str | None, typer.Option("--for", help="Exit after duration (e.g. 30s, 5m)")
    ] = None,
) -> None:
    """Open a BiDi session and stream log entries in real-time.

    Examples:
        bidilog stream --url localhost:3000
        bidilog stream --url myapp --lines 100
        bidilog stream --for 30s --format ndjson
    """
    timeout_seconds = _parse_duration(duration) if duration else None
    filter_by = FilterBy.log_level(level) if level else None

    async def _stream() -> None:
        try:
            session = await WebDriverSession.create(driver, browser_name=browser, headless=headless)
        except BidilogError as e:
            console.print(f"[red]Error:[/red] {e}")
            console.print("\n[dim]Hint: start a WebDriver server first:[/dim]")
            console.print("  bidilog driver launch")
            raise typer.Exit(code=1) from None

        done = asyncio.Event()
        count = 0

        def print_entry(entry: LogEntry) -> None:
            nonlocal count
            if done.is_set():
                return
            _print_entry(entry, format_type)
            count += 1
            if lines and count >= lines:
                done.set()

        try:
            client = await open_channel(session.capabilities)
            try:
                inspector = await log_inspector(client)
                await inspector.on(category, print_entry, filter_by)

                if url:
                    contexts = await client.get_tree()
                    if not contexts:
                        console.print("[red]Error:[/red] Browser reported no browsing context to open the page in")
                        raise typer.Exit(code=1)
                    await client.navigate(contexts[0]["context"], _normalize_url(url))

                stop_msg = "Ctrl+C to stop"
                if lines:
                    stop_msg = f"capturing {lines} entries"
                elif timeout_seconds:
                    stop_msg = f"capturing for {duration}"
                console.print(f"[dim]Streaming {category.value} log entries ({stop_msg})...[/dim]\n")

                try:
                    await asyncio.wait_for(done.wait(), timeout=timeout_seconds)
                except TimeoutError:
                    pass
                await inspector.close()
            finally:
                await client.close()
        except BidilogError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(code=1) from None
        finally:
            await session.delete()

    try:
        asyncio.run(_stream())
    except KeyboardInterrupt:
        console.print("\n[dim]Stopped.[/dim]")


def _print_entry(entry: LogEntry, format_type: str) -> None:
    if format_type == "ndjson":
        print(entry.to_ndjson())
    elif format_type == "tsv":
        print(entry.to_tsv())
    else:
        color = LEVEL_COLORS.get(entry.level, "white")
        console.print(f"[{color}]{escape(entry.to_pretty())}[/{color}]", highlight=False)
        if entry.stack_trace:
            console.print(f"[dim]{escape(entry.stack_trace.format())}[/dim]", highlight=False)


def _normalize_url(url: str) -> str:
    if "://" in url or url.startswith(("about:", "data:")):
        return url
    return f"http://{url}"


def _parse_duration(duration_str: str) -> float:
    """Parse duration string like '30s', '5m', '1h' to seconds."""
    duration_str = duration_str.strip().lower()
    if duration_str.endswith("s"):
        return float(duration_str[:-1])
    elif duration_str.endswith("m"):
        return float(duration_str[:-1]) * 60
    elif duration_str.endswith("h"):
        return float(duration_str[:-1]) * 3600
    else:
        return float(duration_str)


@driver_app.command("launch")
def driver_launch(
    browser: Annotated[str, typer.Option("--browser", "-b", help="firefox or chrome")] = "firefox",
    port: Annotated[int, typer.Option("--port", "-p", help="WebDriver port")] = DEFAULT_DRIVER_PORT,
    verbose: Annotated[bool, typer.Option("--driver-verbose", help="Verbose driver logging")] = False,
    kill_existing: Annotated[
        bool, typer.Option("--kill-existing", "-k", help="Kill an existing driver on this port first")
    ] = False,
) -> None:
    """Launch geckodriver or chromedriver."""

    async def _launch() -> None:
        try:
            console.print(f"[dim]Launching {browser} driver on port {port}...[/dim]")
            process = await launch_driver(
                browser=browser,
                port=port,
                verbose=verbose,
                kill_existing=kill_existing,
            )
            console.print(f"[green]✓[/green] Driver launched (PID: {process.pid})")
            console.print(f"  WebDriver available at: {driver_url(port)}")
            console.print("\n[dim]Use 'bidilog stream --url <url>' to capture logs[/dim]")
        except DriverNotFoundError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(code=1) from None

    asyncio.run(_launch())


@driver_app.command("kill")
def driver_kill(
    port: Annotated[int, typer.Option("--port", "-p", help="WebDriver port")] = DEFAULT_DRIVER_PORT,
) -> None:
    """Kill driver processes listening on a port."""
    killed = kill_driver(port)
    if killed > 0:
        console.print(f"[green]✓[/green] Killed {killed} driver process(es) on port {port}")
    else:
        console.print(f"[yellow]No driver processes found using port {port}[/yellow]")


if __name__ == "__main__":
    app()
