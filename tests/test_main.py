from typer.testing import CliRunner
from gpslice.main import app

runner = CliRunner()

from .test_model import TEST_CSV


def _build(tmpdir):
    output = tmpdir/"model.nc"
    result = runner.invoke(app, ["model", str(TEST_CSV), str(output), "--target", "y", "--exclude", "trial_id"])
    assert result.exit_code == 0
    return output


def test_app_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert "gpslice" in result.output


def test_app_model(tmpdir):
    output = _build(tmpdir)
    assert output.exists()


def test_app_info(tmpdir):
    output = _build(tmpdir)
    result = runner.invoke(app, ["info", str(output)])
    assert result.exit_code == 0
    assert "a" in result.output
    assert "b" in result.output


def test_app_plot_html(tmpdir):
    model = _build(tmpdir)
    output_path = tmpdir/"slice.html"
    csv_out = tmpdir/"slice.csv"
    result = runner.invoke(app, [
        "plot", str(model), "--dim", "1", "--output", str(output_path),
        "--format", "html", "--steps", "64", "--csv-out", str(csv_out), "--verbose",
    ])
    assert result.exit_code == 0
    assert output_path.exists()
    assert csv_out.exists()


def test_app_plot_out_of_range(tmpdir):
    model = _build(tmpdir)
    output_path = tmpdir/"5.svg"
    result = runner.invoke(app, ["plot", str(model), "--dim", "5", "--output", str(output_path)])
    assert result.exit_code == 1
    assert "requested graph of dimension 5; only 2 dimensions" in result.output
    assert not output_path.exists()


def test_app_plot_missing_model(tmpdir):
    result = runner.invoke(app, ["plot", str(tmpdir/"missing.nc")])
    assert result.exit_code != 0


def test_app_plot_all(tmpdir):
    model = _build(tmpdir)
    output_dir = tmpdir/"plots"
    result = runner.invoke(app, ["plot-all", str(model), "--output-dir", str(output_dir), "--format", "html", "--steps", "32"])
    assert result.exit_code == 0
    assert sorted(p.basename for p in output_dir.listdir()) == ["0.html", "1.html"]


def test_app_plot_out_of_range_keeps_existing_file(tmpdir):
    model = _build(tmpdir)
    output_path = tmpdir/"keep.svg"
    output_path.write_binary(b"<svg>previous good render</svg>")
    result = runner.invoke(app, ["plot", str(model), "--dim", "5", "--output", str(output_path)])
    assert result.exit_code == 1
    assert output_path.read_binary() == b"<svg>previous good render</svg>"
