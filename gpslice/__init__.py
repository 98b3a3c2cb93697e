from .model import GP, SampledModel, build_model, load_model, save_model
from .slice import DEFAULT_STEPS, DimensionOutOfRangeError, SliceGrid, build_grid
from .viz import ChartSink, ChartSpec, PlotlySink, Series, render_dimension, save_all
