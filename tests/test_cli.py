import logging

import getlat.cli as cli
from getlat.config import StartupError


class FakeSupervisor:
    instances = []

    def __init__(self, config, reader, emitter, concurrency, **kwargs):
        self.config = config
        self.concurrency = concurrency
        self.stopped = False
        FakeSupervisor.instances.append(self)

    def run(self):
        raise KeyboardInterrupt

    def stop(self):
        self.stopped = True


def test_missing_bucket_exits_nonzero(monkeypatch, caplog):
    monkeypatch.delenv("GETLAT_BUCKET", raising=False)
    caplog.set_level(logging.ERROR)
    assert cli.main(["--key", "k"]) == 1
    assert "bucket is required" in caplog.text


def test_startup_failure_is_fatal(monkeypatch, caplog):
    def _fail(config):
        raise StartupError("no AWS credentials found")

    def _unexpected(*args, **kwargs):
        raise AssertionError("supervisor must not start")

    monkeypatch.setattr(cli, "create_s3_client", _fail)
    monkeypatch.setattr(cli, "Supervisor", _unexpected)
    caplog.set_level(logging.ERROR)
    assert cli.main(["--bucket", "b", "--key", "k"]) == 1
    assert "no AWS credentials found" in caplog.text


def test_flags_reach_supervisor(monkeypatch):
    FakeSupervisor.instances.clear()
    monkeypatch.setattr(cli, "create_s3_client", lambda config: object())
    monkeypatch.setattr(cli, "Supervisor", FakeSupervisor)
    exit_code = cli.main(
        [
            "--bucket",
            "b",
            "--key",
            "k",
            "--size",
            "12",
            "--concurrency",
            "3",
            "--instrumentation",
            "coarse",
            "--ssl",
        ]
    )
    assert exit_code == 130
    (supervisor,) = FakeSupervisor.instances
    assert supervisor.concurrency == 3
    assert supervisor.config.window_size == 12
    assert supervisor.config.detailed is False
    assert supervisor.stopped is True


def test_ssl_flag_parsing():
    parser = cli.argparse.ArgumentParser()
    cli._add_config_args(parser)
    assert cli._cli_overrides(parser.parse_args(["--no-ssl"]))["ssl"] is False
    assert cli._cli_overrides(parser.parse_args(["--ssl"]))["ssl"] is True
    assert "ssl" not in cli._cli_overrides(parser.parse_args([]))
    overrides = cli._cli_overrides(parser.parse_args(["--read-timeout-seconds", "2"]))
    assert overrides["read_timeout_seconds"] == 2.0
