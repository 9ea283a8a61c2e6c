"""
Snaptrace CLI - Raster to flat-color vector tracing

Command-line front-end: trace an image to SVG, or show its palette.
"""

import logging
import time
from pathlib import Path
from typing import List, Optional, Annotated

import typer
from PIL import Image, UnidentifiedImageError
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn, TaskProgressColumn, TimeElapsedColumn
from rich.table import Table
from rich import box

from . import config
from .errors import TracerError
from .pipeline import PipelineContext, auto_params, trace_prepared
from .progress import Checkpoint
from .quantize import extract_palette
from .types import ColorMode, PixelBuffer, TracerParams

app = typer.Typer(
    name="snaptrace",
    help="[bold cyan]Snaptrace[/] - turn raster images into flat-color SVG paths.",
    rich_markup_mode="rich",
    no_args_is_help=True,
    pretty_exceptions_show_locals=False,
)

console = Console()
error_console = Console(stderr=True, style="bold red")

SUPPORTED_FORMATS = {'.png', '.jpg', '.jpeg', '.bmp', '.tiff', '.tif', '.webp', '.gif'}


def version_callback(value: bool):
    """Show version and exit."""
    if value:
        from snaptrace import __version__
        console.print(f"[bold cyan]Snaptrace[/] version [bold green]{__version__}[/]")
        raise typer.Exit()


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def load_image(path: Path) -> PixelBuffer:
    """Validate and load an input image."""
    if not path.exists():
        error_console.print(f"Input file not found: [yellow]{path}[/]")
        raise typer.Exit(1)
    if path.suffix.lower() not in SUPPORTED_FORMATS:
        error_console.print(
            f"Unsupported format: [yellow]{path.suffix}[/]\n"
            f"   Supported formats: {', '.join(sorted(SUPPORTED_FORMATS))}"
        )
        raise typer.Exit(1)
    try:
        with Image.open(path) as img:
            return PixelBuffer.from_image(img)
    except (UnidentifiedImageError, OSError) as e:
        error_console.print(f"Could not read image: {e}")
        raise typer.Exit(1)


@app.command("trace", rich_help_panel="Commands")
def trace_command(
    input_file: Annotated[Path, typer.Argument(help="Input image (PNG, JPG, ...)", show_default=False)],
    output_file: Annotated[
        Optional[Path],
        typer.Argument(help="Output SVG [dim](default: input_name.svg)[/]", show_default=False),
    ] = None,
    colors: Annotated[int, typer.Option("--colors", "-c", help="Palette size (2-64)",
                                        rich_help_panel="Tracing")] = config.DEFAULT_PARAMS['colors'],
    paths: Annotated[float, typer.Option("--paths", "-p", help="Path fitting strength (0-100)",
                                         rich_help_panel="Tracing")] = config.DEFAULT_PARAMS['paths'],
    corners: Annotated[float, typer.Option("--corners", help="Corner sharpness (0-100)",
                                           rich_help_panel="Tracing")] = config.DEFAULT_PARAMS['corners'],
    noise: Annotated[float, typer.Option("--noise", "-n", help="Speckle area to drop, in px²",
                                         rich_help_panel="Tracing")] = config.DEFAULT_PARAMS['noise'],
    blur: Annotated[int, typer.Option("--blur", help="Pre-blur radius (0-10)",
                                      rich_help_panel="Tracing")] = config.DEFAULT_PARAMS['blur'],
    sampling: Annotated[int, typer.Option("--sampling", "-s", help="Internal upscale (1, 2 or 4)",
                                          rich_help_panel="Tracing")] = config.DEFAULT_PARAMS['sampling'],
    color_mode: Annotated[ColorMode, typer.Option("--mode", "-m", help="Color reduction",
                                                  rich_help_panel="Tracing")] = ColorMode.color,
    ignore_background: Annotated[bool, typer.Option("--ignore-background/--keep-background",
                                                    help="Drop the background color",
                                                    rich_help_panel="Background")] = True,
    background_color: Annotated[Optional[str], typer.Option("--background", "-b",
                                                            help="Explicit background hex color",
                                                            rich_help_panel="Background")] = None,
    smart_background: Annotated[bool, typer.Option("--smart-background/--blanket-background",
                                                   help="Only drop background reachable from the border",
                                                   rich_help_panel="Background")] = True,
    anti_alias: Annotated[bool, typer.Option("--anti-alias/--no-anti-alias",
                                             help="Majority filter over cluster edges",
                                             rich_help_panel="Tracing")] = True,
    palette: Annotated[Optional[List[str]], typer.Option("--palette",
                                                         help="Lock fills to these hex colors (repeatable)",
                                                         rich_help_panel="Tracing")] = None,
    auto: Annotated[bool, typer.Option("--auto", "-a", help="Pick colors, sampling and mode from the image",
                                       rich_help_panel="Tracing")] = False,
    workers: Annotated[int, typer.Option("--workers", "-w", help="Worker processes for large images (0 = off)",
                                         rich_help_panel="Performance")] = 0,
    metrics: Annotated[bool, typer.Option("--metrics", help="Report SSIM / PSNR against the input")] = False,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Show debug logging")] = False,
    force: Annotated[bool, typer.Option("--force", "-f", help="Overwrite the output file")] = False,
):
    """
    Trace an image to SVG.

    [bold]Examples:[/]

      $ snaptrace trace logo.png
      $ snaptrace trace photo.jpg out.svg -c 24 -s 2 --workers 4
      $ snaptrace trace scan.png --mode binary --keep-background
    """
    setup_logging(verbose)
    buffer = load_image(input_file)
    output_path = (output_file or input_file.with_suffix('.svg')).with_suffix('.svg')
    if output_path.exists() and not force:
        error_console.print(f"Output exists: [yellow]{output_path}[/] (use --force)")
        raise typer.Exit(1)

    try:
        params = TracerParams(
            colors=colors, paths=paths, corners=corners, noise=noise, blur=blur,
            sampling=sampling, color_mode=color_mode,
            ignore_background=ignore_background, background_color=background_color,
            smart_background=smart_background, anti_alias=anti_alias,
            palette=tuple(palette) if palette else None,
        )
        if auto:
            params = auto_params(buffer, params)

        start = time.time()
        result = _run_trace(buffer, params, workers)
        elapsed = time.time() - start
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user.[/]")
        raise typer.Exit(130)
    except TracerError as e:
        error_console.print(f"Tracing failed: {e}")
        if verbose:
            console.print_exception()
        raise typer.Exit(1)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(result.markup, encoding='utf-8')

    table = Table(box=box.ROUNDED, show_header=False, border_style="dim")
    table.add_column("Property", style="cyan")
    table.add_column("Value")
    table.add_row("Input", f"{input_file} ({buffer.width}x{buffer.height})")
    table.add_row("Output", str(output_path))
    table.add_row("Paths", str(len(result.paths)))
    table.add_row("Colors", str(len(result.palette)))
    table.add_row("Size", f"{len(result.markup.encode('utf-8')) / 1024:.1f} KB")
    table.add_row("Time", f"{elapsed:.2f}s")
    table.add_row("Params", f"colors={params.colors} paths={params.paths:g} corners={params.corners:g} "
                            f"noise={params.noise:g} sampling={params.sampling} mode={params.color_mode.value}")
    if metrics:
        from .quality import compute_quality_metrics
        scores = compute_quality_metrics(buffer, result)
        table.add_row("SSIM", f"{scores['ssim'] * 100:.2f}%")
        table.add_row("PSNR", f"{scores['psnr']:.2f} dB")
    console.print(Panel(table, title="[bold green]Traced[/]", border_style="green"))


def _run_trace(buffer: PixelBuffer, params: TracerParams, workers: int):
    with PipelineContext() as context, Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("Preparing...", total=1.0)

        def on_progress(stage: str, fraction: float):
            progress.update(task, description=f"{stage.replace('_', ' ').capitalize()}...", completed=fraction)

        checkpoint = Checkpoint(on_progress=on_progress)
        prepared = context.prepared(buffer, params.sampling, checkpoint)
        source_size = (buffer.width, buffer.height)

        if workers > 1:
            from .config import PoolOptions
            from .workers import WorkerPool
            options = PoolOptions(size=workers)
            if prepared.pixel_count > options.parallel_threshold:
                with WorkerPool(options=options) as pool:
                    return pool.trace_parallel(
                        prepared, params, params.sampling, source_size,
                        on_progress=lambda done, total: progress.update(
                            task, description=f"Strips {done}/{total}", completed=done / total),
                    )

        return trace_prepared(
            prepared, params, params.sampling, source_size,
            context=context, checkpoint=checkpoint, cache_key=buffer.identity,
        )


@app.command("palette", rich_help_panel="Commands")
def palette_command(
    input_file: Annotated[Path, typer.Argument(help="Input image", show_default=False)],
    max_colors: Annotated[Optional[int], typer.Option("--max", help="Colors to list")] = None,
):
    """Show the dominant colors of an image and a suggested color count."""
    buffer = load_image(input_file)
    suggested, items = extract_palette(buffer, max_colors)

    table = Table(title=f"Palette of {input_file.name}", box=box.ROUNDED)
    table.add_column("", width=4)
    table.add_column("Hex", style="cyan")
    table.add_column("RGB")
    table.add_column("Share", justify="right")
    for item in items:
        table.add_row(f"[on {item.hex}]    [/]", item.hex, f"{item.r}, {item.g}, {item.b}", f"{item.ratio * 100:.1f}%")
    console.print(table)
    console.print(f"Suggested colors: [bold green]{suggested}[/]")


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: Annotated[
        Optional[bool],
        typer.Option("--version", "-V", help="Show version and exit.", callback=version_callback, is_eager=True),
    ] = None,
):
    """
    [bold cyan]Snaptrace[/] - turn raster images into flat-color SVG paths.

    [bold]Quick Start:[/]

      $ snaptrace trace image.png
      $ snaptrace palette image.png
    """


def run():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    app()
