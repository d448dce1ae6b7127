import json
import logging

import pytest

import run_backtest as cli
from tradesim import RunConfig, SizingMode

BARS_CSV = (
    "time,open,high,low,close,volume\n"
    "2024-01-01,100,101,99,100,1000\n"
    "2024-01-02,100,103,99,102,1000\n"
    "2024-01-03,102,106,101,105,1000\n"
    "2024-01-04,105,108,104,107,1000\n"
)
SIGNALS_CSV = "time,type,price\n2024-01-01,buy,100\n2024-01-03,sell,105\n"


@pytest.fixture
def workspace(tmp_path):
    (tmp_path / "bars.csv").write_text(BARS_CSV, encoding="utf-8")
    (tmp_path / "signals.csv").write_text(SIGNALS_CSV, encoding="utf-8")
    return tmp_path


def _config(path, **payload):
    body = {"bars_csv": "bars.csv", "signals_csv": "signals.csv", "initial_capital": 1000}
    body.update(payload)
    path.write_text(json.dumps(body), encoding="utf-8")
    return path


def test_config_resolves_relative_paths(workspace):
    config = RunConfig.from_path(_config(workspace / "run.json", sizing={"mode": "fixed", "fixed_trade_amount": 50}))

    assert config.bars_csv == (workspace / "bars.csv").resolve()
    assert config.signals_csv == (workspace / "signals.csv").resolve()
    assert config.sizing.mode is SizingMode.FIXED
    assert config.to_dict()["initial_capital"] == 1000.0


@pytest.mark.parametrize(
    "payload",
    [
        [],
        {},
        {"bars_csv": "bars.csv"},
        {"bars_csv": "bars.csv", "signals_csv": "s.csv", "strategy": "a.py:B"},
        {"bars_csv": "bars.csv", "signals_csv": "s.csv", "initial_capital": 0},
        {"bars_csv": "bars.csv", "signals_csv": "s.csv", "initial_capital": "lots"},
        {"bars_csv": "bars.csv", "signals_csv": "s.csv", "commission_percent": -1},
        {"bars_csv": "bars.csv", "signals_csv": "s.csv", "settings": []},
    ],
)
def test_invalid_config_raises_value_error(payload):
    with pytest.raises(ValueError):
        RunConfig.from_dict(payload)


def test_invalid_json_raises_value_error(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(ValueError):
        RunConfig.from_path(path)


def test_run_command_succeeds(workspace, monkeypatch, caplog):
    monkeypatch.chdir(workspace)
    config_path = _config(workspace / "run.json")

    with caplog.at_level(logging.INFO):
        code = cli._run(cli._parse_args(["run", "--config", str(config_path)]))

    assert code == 0
    assert "Net profit: 50.00" in caplog.text


def test_run_command_with_strategy_plugin(workspace, monkeypatch):
    monkeypatch.chdir(workspace)
    plugin = workspace / "plugin.py"
    plugin.write_text(
        "class BuyFirst:\n"
        "    def execute(self, bars, params):\n"
        "        return [{'time': bars[0].time, 'type': 'buy', 'price': bars[0].close}]\n",
        encoding="utf-8",
    )
    config_path = workspace / "run.json"
    config_path.write_text(
        json.dumps({"bars_csv": "bars.csv", "strategy": "plugin.py:BuyFirst", "compact": True}),
        encoding="utf-8",
    )

    assert cli._run(cli._parse_args(["run", "--config", str(config_path)])) == 0


def test_run_command_exit_codes(workspace, monkeypatch):
    monkeypatch.chdir(workspace)

    assert cli._run(cli._parse_args(["run", "--config", str(workspace / "missing.json")])) == 2
    missing_bars = _config(workspace / "missing_bars.json", bars_csv="nope.csv")
    assert cli._run(cli._parse_args(["run", "--config", str(missing_bars)])) == 2
    invalid = _config(workspace / "invalid.json", initial_capital=-5)
    assert cli._run(cli._parse_args(["run", "--config", str(invalid)])) == 3


def test_prepare_command_logs_queue(workspace, caplog):
    args = cli._parse_args(
        [
            "prepare",
            "--bars",
            str(workspace / "bars.csv"),
            "--signals",
            str(workspace / "signals.csv"),
            "--settings",
            '{"execution_model": "next_open"}',
        ]
    )

    with caplog.at_level(logging.INFO):
        code = cli._run(args)

    assert code == 0
    assert "Prepared 2 of 2 signals" in caplog.text
    assert "bar=1" in caplog.text


def test_prepare_command_rejects_bad_settings(workspace):
    args = cli._parse_args(
        ["prepare", "--bars", str(workspace / "bars.csv"), "--signals", str(workspace / "signals.csv"), "--settings", "[1]"]
    )

    assert cli._run(args) == 3


def test_main_exits_with_status(workspace, monkeypatch):
    monkeypatch.chdir(workspace)
    config_path = _config(workspace / "run.json")

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--log-level", "WARNING", "run", "--config", str(config_path)])

    assert excinfo.value.code == 0
    assert (workspace / "logs").is_dir()
