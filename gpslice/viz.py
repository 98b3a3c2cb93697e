# -*- coding: utf-8 -*-
import io
import math
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Protocol

import numpy as np
import pandas as pd
import plotly.graph_objects as go
from rich.console import Console

from .model import SampledModel, load_model
from .slice import DEFAULT_STEPS, SliceGrid, build_grid, check_dimension

console = Console()

PADDING = 20
DEFAULT_HEIGHT = 400
KNOWN_MARKER_SIZE = 5
IMAGE_FORMATS = ("svg", "html")

MEAN = "Mean"
UPPER = "+σ = 1"
LOWER = "-σ = 1"
KNOWN = "Known"


@dataclass
class Series:
    name: str
    x: np.ndarray
    y: np.ndarray
    markers: bool = False   # discrete dots instead of a connected line


@dataclass
class ChartSpec:
    title: str
    series: list[Series] = field(default_factory=list)
    show_x_axis: bool = True
    show_y_axis: bool = True
    padding_top: int = PADDING
    padding_left: int = PADDING
    legend: bool = True
    width: int = DEFAULT_STEPS
    height: int = DEFAULT_HEIGHT

    def add(self, series: Series) -> None:
        if any(s.name == series.name for s in self.series):
            raise ValueError(f"Chart already has a series named {series.name!r}.")
        self.series.append(series)

    def __getitem__(self, name: str) -> Series:
        for s in self.series:
            if s.name == name:
                return s
        raise KeyError(name)


class ChartSink(Protocol):
    def render(self, chart: ChartSpec, stream: BinaryIO, image_format: str = "svg") -> None: ...


def build_figure(chart: ChartSpec) -> go.Figure:
    """Translate a chart specification into a plotly figure, keeping the series order."""
    fig = go.Figure()
    for s in chart.series:
        if s.markers:
            fig.add_trace(go.Scatter(
                x=s.x, y=s.y, mode="markers", name=s.name,
                marker=dict(size=KNOWN_MARKER_SIZE, line=dict(width=0)),
            ))
        else:
            fig.add_trace(go.Scatter(x=s.x, y=s.y, mode="lines", name=s.name, line=dict(width=2)))

    fig.update_xaxes(visible=chart.show_x_axis)
    fig.update_yaxes(visible=chart.show_y_axis)
    fig.update_layout(
        title=chart.title,
        template="simple_white",
        width=chart.width,
        height=chart.height,
        showlegend=chart.legend,
        legend_title_text="",
        margin=dict(t=chart.padding_top, l=chart.padding_left),
    )
    return fig


class PlotlySink:
    """ Renders chart specifications with plotly. SVG goes through plotly's static image export. """
    def render(self, chart: ChartSpec, stream: BinaryIO, image_format: str = "svg") -> None:
        if image_format not in IMAGE_FORMATS:
            raise ValueError(f"Unsupported image format {image_format!r}. Choices: {IMAGE_FORMATS}")
        fig = build_figure(chart)
        if image_format == "html":
            data = fig.to_html(include_plotlyjs="cdn").encode("utf-8")
        else:
            data = fig.to_image(format="svg", width=chart.width, height=chart.height)
        stream.write(data)


def signed_sd(variance: float) -> float:
    """ sqrt(|variance|), negative when the variance is: the band flips instead of collapsing. """
    sd = math.sqrt(abs(variance))
    if variance < 0:
        sd = -sd
    return sd


@dataclass
class Band:
    means: np.ndarray
    variances: np.ndarray
    uppers: np.ndarray
    lowers: np.ndarray


def estimate_band(model: SampledModel, grid: SliceGrid) -> Band:
    """
    Query the model at every covered grid point, in increasing x order.
    Points past ``grid.covered`` stay zero. Estimation errors propagate untouched.
    """
    means = np.zeros(grid.steps, dtype=float)
    variances = np.zeros(grid.steps, dtype=float)
    uppers = np.zeros(grid.steps, dtype=float)
    lowers = np.zeros(grid.steps, dtype=float)

    for j in range(grid.covered):
        query = grid.queries[j]
        try:
            mean, variance = model.estimate(query)
        except Exception as err:
            err.add_note(f"while estimating dimension {grid.dim} at grid point {j}: query={query.tolist()}")
            raise
        sd = signed_sd(variance)
        means[j] = mean
        variances[j] = variance
        uppers[j] = mean + sd
        lowers[j] = mean - sd

    return Band(means=means, variances=variances, uppers=uppers, lowers=lowers)


def build_chart(grid: SliceGrid, band: Band, dims: int, height: int = DEFAULT_HEIGHT) -> ChartSpec:
    chart = ChartSpec(
        title=f"Gaussian Process: Dimension {grid.dim}/{dims}",
        height=height,
    )
    chart.add(Series(MEAN, grid.grid_x, band.means))
    chart.add(Series(UPPER, grid.grid_x, band.uppers))
    chart.add(Series(LOWER, grid.grid_x, band.lowers))
    chart.add(Series(KNOWN, grid.known_x, grid.known_y, markers=True))
    return chart


def tidy_dataframe(grid: SliceGrid, band: Band) -> pd.DataFrame:
    n = grid.covered
    return pd.DataFrame({
        "dimension": np.full(n, grid.dim, dtype=int),
        "x": grid.grid_x[:n],
        "mean": band.means[:n],
        "variance": band.variances[:n],
        "upper": band.uppers[:n],
        "lower": band.lowers[:n],
    })


def render_dimension(
    model: SampledModel,
    stream: BinaryIO,
    dim: int,
    sink: ChartSink | None = None,
    steps: int = DEFAULT_STEPS,
    image_format: str = "svg",
    height: int = DEFAULT_HEIGHT,
    csv_out: Path | None = None,
    verbose: bool = False,
) -> ChartSpec:
    """
    Draw the model's mean and ±1σ band along one input dimension, with the known samples.

    Nothing reaches ``stream`` unless every estimate succeeds. The other input coordinates
    of each query are interpolated between the two samples bracketing the grid point.
    """
    dims = model.dims()
    check_dimension(dim, dims)

    inputs, outputs = model.raw_data()
    grid = build_grid(inputs, outputs, dim, steps=steps, dims=dims)
    band = estimate_band(model, grid)
    chart = build_chart(grid, band, dims, height=height)

    if verbose:
        covered = band.means[:grid.covered]
        console.log(
            f"dimension {dim}/{dims}: {grid.covered}/{grid.steps} grid points covered, "
            f"{len(grid.known_x)} samples, "
            f"{int(np.sum(band.variances[:grid.covered] < 0))} negative variances"
            + (f", mean in [{covered.min():.4g}, {covered.max():.4g}]" if covered.size else "")
        )

    sink = sink or PlotlySink()
    sink.render(chart, stream, image_format=image_format)

    if csv_out:
        csv_out = Path(csv_out)
        csv_out.parent.mkdir(parents=True, exist_ok=True)
        tidy_dataframe(grid, band).to_csv(str(csv_out), index=False)

    return chart


def render_to_file(model: SampledModel, path: Path | str, dim: int, **kwargs) -> ChartSpec:
    """
    Render one dimension into ``path``. The image is buffered in memory and the file is
    only opened once the render has succeeded, so a failure leaves any existing file intact.
    """
    buffer = io.BytesIO()
    chart = render_dimension(model, buffer, dim, **kwargs)
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(buffer.getvalue())
    return chart


def save_all(
    model: SampledModel | Path | str,
    output_dir: Path | str | None = None,
    sink: ChartSink | None = None,
    steps: int = DEFAULT_STEPS,
    image_format: str = "svg",
    height: int = DEFAULT_HEIGHT,
) -> Path:
    """
    Render every dimension of the model into ``<dim>.<format>`` files of one directory.

    A new temporary directory is created unless ``output_dir`` is given. Stops at the
    first failure; files of earlier runs are only replaced by successful renders.
    """
    if not isinstance(model, SampledModel):
        model = load_model(model)

    if output_dir is None:
        output_dir = Path(tempfile.mkdtemp(prefix="gp-plots"))
    else:
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

    sink = sink or PlotlySink()
    for dim in range(model.dims()):
        path = output_dir / f"{dim}.{image_format}"
        render_to_file(model, path, dim, sink=sink, steps=steps, image_format=image_format, height=height)
        console.log(f"{dim}: {path}")

    return output_dir
