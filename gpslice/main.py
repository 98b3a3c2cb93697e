#!/usr/bin/env python
# -*- coding: utf-8 -*-

# Make BLAS single-threaded to avoid oversubscription / macOS crashes
import os
for _env_var in (
    "MKL_NUM_THREADS",
    "OPENBLAS_NUM_THREADS",
    "OMP_NUM_THREADS",
    "VECLIB_MAXIMUM_THREADS",
    "NUMEXPR_NUM_THREADS",
):
    os.environ.setdefault(_env_var, "1")

from enum import Enum
from pathlib import Path
from typing import Optional

import pandas as pd
import typer
from rich.console import Console

from .model import build_model, load_model, describe_model
from .slice import DEFAULT_STEPS, DimensionOutOfRangeError, check_dimension
from .util import df_to_table
from . import viz

__version__ = "0.1.0"

console = Console()
app = typer.Typer(no_args_is_help=True, add_completion=False, rich_markup_mode="rich")


class ImageFormat(str, Enum):
    SVG = "svg"
    HTML = "html"


def _load(model: Path):
    if not model.exists():
        raise typer.BadParameter(f"Model artifact not found: {model.resolve()}")
    return load_model(model)


@app.callback(invoke_without_command=True)
def main(
    version: bool = typer.Option(False, "--version", "-v", help="Show version and exit.", is_eager=True),
):
    if version:
        console.print(f"[bold]gpslice[/] {__version__}")
        raise typer.Exit()


@app.command(help="Condition a Gaussian process on a CSV and save it as a model artifact.")
def model(
    input: Path = typer.Argument(..., help="Input CSV file."),
    output: Path = typer.Argument(..., help="Path to save model artifact (.nc)."),
    target: str = typer.Option("y", "--target", "-t", help="Target column name."),
    exclude: list[str] = typer.Option([], help="Feature columns to exclude."),
    sigma: float = typer.Option(1e-3, help="Observation noise standard deviation."),
    compress: bool = typer.Option(True, help="Apply compression inside the artifact."),
):
    if not input.exists():
        raise typer.BadParameter(f"Input CSV not found: {input.resolve()}")
    if input.suffix.lower() != ".csv":
        console.print(":warning: [yellow]Input does not end with .csv[/]")

    build_model(
        input=input,
        target=target,
        output=output,
        exclude=exclude,
        sigma=sigma,
        compress=compress,
    )
    console.print(f"[green]Wrote model artifact →[/] {output}")


@app.command(help="Show the input dimensions of a model artifact.")
def info(
    model: Path = typer.Argument(..., help="Path to the model artifact (.nc)."),
):
    gp = _load(model)
    console.print(df_to_table(describe_model(gp), title=str(model), index_name="dimension"))


@app.command(help="Plot the mean and ±1σ band of the model along one dimension.")
def plot(
    model: Path = typer.Argument(..., help="Path to the model artifact (.nc)."),
    dim: int = typer.Option(0, "--dim", "-d", help="Input dimension to slice along."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output image (defaults to <dim>.<format> next to the model)."),
    steps: int = typer.Option(DEFAULT_STEPS, help="Grid points along the slice."),
    image_format: ImageFormat = typer.Option(ImageFormat.SVG, "--format", "-f", help="Output format."),
    csv_out: Optional[Path] = typer.Option(None, help="Optional CSV export of the plotted slice."),
    verbose: bool = typer.Option(False, help="Log a summary of the slice."),
):
    gp = _load(model)
    try:
        check_dimension(dim, gp.dims())
    except DimensionOutOfRangeError as err:
        console.print(f"[red]{err}[/]")
        raise typer.Exit(code=1)

    output = output or model.parent / f"{dim}.{image_format.value}"
    viz.render_to_file(
        gp, output, dim,
        steps=steps,
        image_format=image_format.value,
        csv_out=csv_out,
        verbose=verbose,
    )

    console.print(f"[green]Wrote slice →[/] {output}")
    if csv_out:
        console.print(f"[green]Wrote slice CSV →[/] {csv_out}")


@app.command("plot-all", help="Plot every dimension of the model into one directory.")
def plot_all(
    model: Path = typer.Argument(..., help="Path to the model artifact (.nc)."),
    output_dir: Optional[Path] = typer.Option(None, "--output-dir", "-o", help="Directory for the images (defaults to a new temp directory)."),
    steps: int = typer.Option(DEFAULT_STEPS, help="Grid points along each slice."),
    image_format: ImageFormat = typer.Option(ImageFormat.SVG, "--format", "-f", help="Output format."),
):
    gp = _load(model)
    directory = viz.save_all(gp, output_dir=output_dir, steps=steps, image_format=image_format.value)

    artifacts = pd.DataFrame({
        "feature": gp.feature_names,
        "file": [str(directory / f"{dim}.{image_format.value}") for dim in range(gp.dims())],
    })
    console.print(df_to_table(artifacts, index_name="dimension"))
    console.print(f"[green]Wrote {gp.dims()} slices →[/] {directory}")


if __name__ == "__main__":
    app()
