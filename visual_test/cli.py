"""CLI entry point for the visual test capture server."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import click
from PIL import Image
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from visual_test.artifacts.store import ArtifactStore
from visual_test.comparator.pixel_diff import compare_images
from visual_test.models.capture import CaptureRequest, ComparisonResult
from visual_test.models.config import VisualTestConfig
from visual_test.server.middleware import CaptureMiddleware

console = Console()

DEFAULT_CONFIG = "visual-test.json"


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
        force=True,
    )


def load_config(path: str) -> VisualTestConfig:
    """Resolve config, tolerating a missing default config file."""
    config_path = Path(path)
    if not config_path.exists():
        if path != DEFAULT_CONFIG:
            console.print(f"[red]Config file not found: {path}[/red]")
            console.print("Run 'visual-test init' to create a default config.")
            sys.exit(1)
        config_path = None
    cfg = VisualTestConfig.resolve(config_path)
    if cfg.debug_logging:
        logging.getLogger().setLevel(logging.DEBUG)
    return cfg


def print_result(name: str, result: ComparisonResult) -> None:
    table = Table(title=f"visual-test: {name}")
    table.add_column("Field", style="bold")
    table.add_column("Value")
    color = "green" if result.passed else "red"
    table.add_row("Status", f"[{color}]{result.status}[/{color}]")
    table.add_row("New baseline", str(result.new_baseline))
    if result.diff_pixel_count is not None:
        table.add_row("Differing pixels", str(result.diff_pixel_count))
    if result.diff_path:
        table.add_row("Diff", f"[blue]{result.diff_path}[/blue]")
    if result.error:
        table.add_row("Error", result.error)
    console.print(table)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """Visual regression capture server and tools"""
    setup_logging(verbose)


@cli.command()
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
@click.option("--host", default="127.0.0.1", help="Interface to bind")
@click.option("--port", "-p", default=7357, type=int, help="Port to listen on")
def serve(config: str, host: str, port: int) -> None:
    """Run the capture server (POST /visual-test/make-screenshot)."""
    import uvicorn

    from visual_test.server.app import create_app

    cfg = load_config(config)
    console.print(f"[green]Baselines:[/green] {cfg.image_directory}")
    if cfg.force_rebuild_baselines:
        console.print("[yellow]Rebuilding all baselines (FORCE_BUILD_VISUAL_TEST_IMAGES)[/yellow]")
    uvicorn.run(create_app(cfg), host=host, port=port, log_config=None)


@cli.command()
@click.argument("url")
@click.argument("name")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
@click.option("--selector", "-s", default=None, help="Capture only this element")
@click.option("--full-page/--viewport", default=None, help="Capture the full scrollable page")
@click.option("--delay-ms", default=None, type=int, help="Settle time before the screenshot (default from config)")
@click.option("--width", default=None, type=int, help="Viewport width")
@click.option("--height", default=None, type=int, help="Viewport height")
def capture(
    url: str,
    name: str,
    config: str,
    selector: str | None,
    full_page: bool | None,
    delay_ms: int | None,
    width: int | None,
    height: int | None,
) -> None:
    """Capture URL as NAME and compare it against its baseline.

    The page must insert the readiness sentinel (#visual-test-has-loaded).
    """
    cfg = load_config(config)
    request = CaptureRequest(
        url=url,
        name=name,
        selector=selector,
        full_page=full_page,
        delay_ms=delay_ms,
        window_width=width,
        window_height=height,
    )

    async def _run() -> ComparisonResult:
        middleware = CaptureMiddleware(cfg)
        try:
            return await middleware.handle(request)
        finally:
            await middleware.close()

    result = asyncio.run(_run())
    print_result(name, result)
    if not result.passed:
        sys.exit(1)


@cli.command()
@click.argument("baseline", type=click.Path(exists=True, dir_okay=False))
@click.argument("current", type=click.Path(exists=True, dir_okay=False))
@click.option("--diff", "diff_path", default=None, help="Where to write the diff image on failure")
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def compare(baseline: str, current: str, diff_path: str | None, config: str) -> None:
    """Compare two PNG files with the configured threshold and budget."""
    cfg = load_config(config)
    with Image.open(baseline) as b, Image.open(current) as c:
        result = compare_images(
            b, c,
            threshold=cfg.image_match_threshold,
            include_anti_aliasing=cfg.include_anti_aliasing,
        )

    if result.dimension_mismatch:
        console.print("[red]Image dimensions differ[/red]")
        sys.exit(1)

    if result.diff_pixel_count <= cfg.image_match_allowed_failures:
        console.print(f"[green]Match:[/green] {result.diff_pixel_count} pixels differ")
        return

    console.print(f"[red]{result.diff_pixel_count} pixels differ[/red]")
    if diff_path and result.diff_image is not None:
        ArtifactStore.write_image(Path(diff_path), result.diff_image)
        console.print(f"  Diff: [blue]{diff_path}[/blue]")
    sys.exit(1)


@cli.command()
@click.option("--path", default=DEFAULT_CONFIG, help="Where to write the config")
def init(path: str) -> None:
    """Create a default configuration file."""
    config_path = Path(path)
    if config_path.exists():
        if not click.confirm(f"{path} already exists. Overwrite?"):
            return

    VisualTestConfig().save(config_path)
    console.print(f"[green]Created {config_path}[/green]")
    console.print("\nStart the capture server with:")
    console.print("  [blue]visual-test serve[/blue]")
    console.print("\nRebuild every baseline on the next run with:")
    console.print("  [blue]FORCE_BUILD_VISUAL_TEST_IMAGES=1 visual-test serve[/blue]")


if __name__ == "__main__":
    cli()
