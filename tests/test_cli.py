"""Tests for the command-line interface."""

import json
import pytest

from cognitive_forecast.cli import main
from cognitive_forecast.data import generate_ema_dataset, save_ema_csv, load_ema_csv, load_weights_file
from cognitive_forecast.core import PLRNNWeights


def run(argv):
    with pytest.raises(SystemExit) as exc_info:
        main(argv)
    return exc_info.value.code


@pytest.fixture
def ema_csv(tmp_path):
    return save_ema_csv(generate_ema_dataset(4, 30, seed=3), tmp_path / "ema.csv")


class TestSimulate:
    """Test suite for the simulate command."""

    def test_writes_csv(self, tmp_path):
        path = tmp_path / "sim.csv"
        assert run(["simulate", str(path), "--participants", "2", "--observations", "5", "--seed", "1"]) == 0
        dataset = load_ema_csv(path)
        assert len(dataset) == 2
        assert dataset.num_observations == 10

    def test_invalid_parameters(self, tmp_path):
        assert run(["simulate", str(tmp_path / "sim.csv"), "--participants", "0"]) == 1


class TestConfigCommand:
    """Test suite for the config command."""

    def test_writes_toml(self, tmp_path):
        path = tmp_path / "settings.toml"
        assert run(["config", str(path), "--preset", "minimal"]) == 0
        assert path.exists()
        assert "[training]" in path.read_text()


class TestTrain:
    """Test suite for the train command."""

    @pytest.mark.slow
    def test_trains_and_saves(self, ema_csv, tmp_path):
        output = tmp_path / "weights.json"
        code = run(["train", str(ema_csv), "--output", str(output), "--preset", "minimal",
                    "--epochs", "1", "--seed", "0"])
        assert code == 0
        assert isinstance(load_weights_file(output), PLRNNWeights)

    def test_too_short_data(self, tmp_path):
        path = save_ema_csv(generate_ema_dataset(2, 4, seed=0), tmp_path / "short.csv")
        code = run(["train", str(path), "--output", str(tmp_path / "w.json"), "--preset", "minimal"])
        assert code == 2

    def test_missing_file(self, tmp_path):
        assert run(["train", str(tmp_path / "absent.csv")]) == 1


class TestForecast:
    """Test suite for the forecast command."""

    @pytest.mark.parametrize("engine", ["plrnn", "kalmanformer"])
    def test_prints_json(self, ema_csv, capsys, engine):
        code = run(["forecast", str(ema_csv), "--engine", engine, "--horizon", "4",
                    "--preset", "minimal", "--seed", "0"])
        assert code == 0
        output = json.loads(capsys.readouterr().out)
        assert output['participant_id'] == 'P000'
        assert output['engine'] == engine
        assert len(output['prediction']['mean_prediction']) == 5
        assert output['prediction']['horizon'] == 4

    def test_plrnn_includes_network(self, ema_csv, capsys):
        run(["forecast", str(ema_csv), "--participant", "P002", "--preset", "minimal"])
        output = json.loads(capsys.readouterr().out)
        assert output['participant_id'] == 'P002'
        assert 'nodes' in output['causal_network']

    def test_unknown_participant(self, ema_csv):
        assert run(["forecast", str(ema_csv), "--participant", "nobody"]) == 1

    def test_saves_plot(self, ema_csv, tmp_path, capsys):
        import matplotlib
        matplotlib.use('Agg')
        plot = tmp_path / "fan.png"
        assert run(["forecast", str(ema_csv), "--horizon", "3", "--plot", str(plot),
                    "--preset", "minimal"]) == 0
        assert plot.exists()
