from __future__ import annotations

import importlib
import signal
from pathlib import Path

import pytest

# The package re-exports the `main` function under the same name as the module.
main_module = importlib.import_module("load_simulator.main")

TESTDATA = Path(__file__).parent.parent / "testdata"


class _RecordingPool:
    instances: list["_RecordingPool"] = []

    def __init__(self, config, template, connect_fn, logger) -> None:
        self.config = config
        self.template = template
        self.connect_fn = connect_fn
        self.interrupt = None
        _RecordingPool.instances.append(self)

    def run(self, interrupt=None) -> None:
        self.interrupt = interrupt


@pytest.fixture
def recorded(monkeypatch: pytest.MonkeyPatch) -> list[_RecordingPool]:
    _RecordingPool.instances = []
    monkeypatch.setattr(main_module, "RunnerPool", _RecordingPool)
    monkeypatch.setattr(main_module, "setup_logging", lambda level, log_path=None: None)
    monkeypatch.setattr(main_module, "install_signal_handlers", lambda: None)
    for name in (
        "KUBECONFIG",
        "KUBE_CONTEXT",
        "LOAD_CONCURRENT",
        "LOAD_DURATION_SECONDS",
        "LOAD_INTERVAL_MS",
        "LOAD_TEMPLATE",
        "LOAD_LOG_PATH",
        "LOAD_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    return _RecordingPool.instances


def test_parse_args_defaults() -> None:
    args = main_module.parse_args([])

    assert args.update is True
    assert args.clean is False
    assert args.concurrent is None
    assert args.diagnostics_port == 6060


def test_parse_args_flags() -> None:
    args = main_module.parse_args(["--no-update", "--clean", "--concurrent", "3", "--interval", "20"])

    assert args.update is False
    assert args.clean is True
    assert args.concurrent == 3
    assert args.interval == 20.0


def test_run_fails_on_missing_template(recorded, tmp_path) -> None:
    exit_code = main_module.run(["--template", str(tmp_path / "missing.yaml")])

    assert exit_code == 1
    assert recorded == []


def test_run_builds_pool_from_arguments(recorded) -> None:
    exit_code = main_module.run(
        [
            "--template",
            str(TESTDATA / "configmap-template.yaml"),
            "--concurrent",
            "4",
            "--duration",
            "2",
            "--interval",
            "20",
            "--no-update",
            "--kubeconfig",
            "/tmp/kubeconfig",
        ]
    )

    assert exit_code == 0
    (pool,) = recorded
    assert pool.config.concurrency == 4
    assert pool.config.duration_s == 2.0
    assert pool.config.interval_s == pytest.approx(0.02)
    assert pool.config.update is False
    assert pool.config.clean is False
    assert pool.template["kind"] == "ConfigMap"
    assert pool.connect_fn.args[0].kubeconfig == "/tmp/kubeconfig"
    assert pool.interrupt is None


def test_run_reads_environment_fallbacks(recorded, monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    monkeypatch.setenv("LOAD_TEMPLATE", str(TESTDATA / "ssar-template.yaml"))
    monkeypatch.setenv("LOAD_CONCURRENT", "7")
    monkeypatch.setenv("LOAD_INTERVAL_MS", "not-a-number")

    assert main_module.run([]) == 0

    (pool,) = recorded
    assert pool.config.concurrency == 7
    assert pool.config.interval_s == pytest.approx(0.005)
    assert pool.config.duration_s == 10.0
    assert pool.template["kind"] == "SelfSubjectAccessReview"
    assert "invalid LOAD_INTERVAL_MS value 'not-a-number'" in capsys.readouterr().err


@pytest.mark.parametrize(
    "argv",
    [
        ["--concurrent", "-1"],
        ["--duration", "-5"],
        ["--interval", "0"],
        ["--interval", "-2"],
    ],
)
def test_parse_args_rejects_out_of_range_values(argv: list[str], capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        main_module.parse_args(argv)

    assert excinfo.value.code == 2
    assert "must be" in capsys.readouterr().err


def test_run_reports_bad_concurrency_as_usage_error(recorded) -> None:
    with pytest.raises(SystemExit) as excinfo:
        main_module.run(["--template", str(TESTDATA / "configmap-template.yaml"), "--concurrent", "-1"])

    assert excinfo.value.code == 2
    assert recorded == []


def test_zero_interval_from_environment_falls_back(recorded, monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    monkeypatch.setenv("LOAD_TEMPLATE", str(TESTDATA / "configmap-template.yaml"))
    monkeypatch.setenv("LOAD_INTERVAL_MS", "0")

    assert main_module.run([]) == 0

    (pool,) = recorded
    assert pool.config.interval_s == pytest.approx(0.005)
    assert "invalid LOAD_INTERVAL_MS value '0'" in capsys.readouterr().err


def test_interrupt_during_run_still_exits_cleanly(recorded, monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    def _interrupted(self, interrupt=None) -> None:
        raise KeyboardInterrupt

    monkeypatch.setattr(_RecordingPool, "run", _interrupted)

    assert main_module.run(["--template", str(TESTDATA / "configmap-template.yaml")]) == 0
    assert "stopping simulator" in capsys.readouterr().err


def test_sigterm_is_delivered_as_keyboard_interrupt() -> None:
    previous_int = signal.getsignal(signal.SIGINT)
    previous_term = signal.getsignal(signal.SIGTERM)
    try:
        main_module.install_signal_handlers()

        assert signal.getsignal(signal.SIGTERM) is signal.default_int_handler
        assert signal.getsignal(signal.SIGINT) is signal.default_int_handler
    finally:
        if previous_int is not None:
            signal.signal(signal.SIGINT, previous_int)
        if previous_term is not None:
            signal.signal(signal.SIGTERM, previous_term)
