import numpy as np
import pandas as pd
from rich.table import Table


def format_cell(x, sig_figs: int = 3) -> str:
    if isinstance(x, (float, np.floating)):
        if np.isnan(x) or np.isinf(x):
            return str(x)
        return f"{float(x):.{sig_figs}g}"
    if isinstance(x, (int, np.integer)) and not isinstance(x, bool):
        return str(int(x))
    return str(x)


def df_to_table(
    df: pd.DataFrame,
    title: str | None = None,
    show_index: bool = True,
    index_name: str | None = None,
    sig_figs: int = 3,
    heading_style: str = "magenta",
) -> Table:
    """Convert a pandas.DataFrame to a rich.Table with sig-fig formatting of numbers."""
    table = Table(title=title, header_style="bold magenta")
    if show_index:
        table.add_column(str(index_name) if index_name else "", style=heading_style)
    for col in df.columns:
        table.add_column(str(col))

    for idx, row in df.iterrows():
        cells = ([str(idx)] if show_index else []) + [format_cell(v, sig_figs) for v in row.tolist()]
        table.add_row(*cells)
    return table
