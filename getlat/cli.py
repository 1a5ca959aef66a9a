from __future__ import annotations

import argparse
import logging
import os
import sys
from dataclasses import fields
from typing import Any

from .config import Config, ConfigError, Instrumentation, OutputFormat, StartupError, _scalar_type
from .report import make_emitter
from .storage import S3ObjectReader, create_s3_client
from .supervisor import Supervisor
from .transport import Transport

logger = logging.getLogger("getlat")

LOG_FORMAT = "%(asctime)s %(levelname)s [%(threadName)s] %(message)s"

_CHOICES = {
    "instrumentation": [item.value for item in Instrumentation],
    "output_format": [item.value for item in OutputFormat],
}


def _add_config_args(parser: argparse.ArgumentParser) -> None:
    for field in fields(Config):
        name = field.name.replace("_", "-")
        if _scalar_type(field.type) is bool:
            group = parser.add_mutually_exclusive_group()
            group.add_argument(f"--{name}", dest=field.name, action="store_true")
            group.add_argument(f"--no-{name}", dest=field.name, action="store_false")
            parser.set_defaults(**{field.name: None})
        else:
            parser.add_argument(
                f"--{name}",
                dest=field.name,
                default=None,
                choices=_CHOICES.get(field.name),
            )


def _cli_overrides(ns: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for field in fields(Config):
        value = getattr(ns, field.name, None)
        if value is None:
            continue
        target = _scalar_type(field.type)
        if target is bool:
            overrides[field.name] = bool(value)
        elif target is int:
            overrides[field.name] = int(value)
        elif target is float:
            overrides[field.name] = float(value)
        else:
            overrides[field.name] = value
    return overrides


def configure_logging(level: str) -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT, stream=sys.stderr)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="getlat",
        description="Measure S3 GET latency with concurrent closed-loop workers.",
    )
    _add_config_args(parser)
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    try:
        config = Config.from_env_and_cli(_cli_overrides(args), os.environ).validate()
    except (ConfigError, ValueError) as exc:
        logger.error("invalid configuration: %s", exc)
        return 1

    logger.info(
        "region=%s bucket=%s key=%s size=%d concurrency=%d instrumentation=%s ssl=%s",
        config.region or "-",
        config.bucket,
        config.key,
        config.size,
        config.concurrency,
        config.instrumentation,
        config.ssl,
    )

    try:
        client = create_s3_client(config)
    except StartupError as exc:
        logger.error("startup failed: %s", exc)
        return 1

    worker_config = config.worker_config()
    transport = Transport(config.transport_config())
    reader = S3ObjectReader(client, transport, expires_seconds=config.presign_expires_seconds)
    emitter = make_emitter(OutputFormat(config.output_format), detailed=worker_config.detailed)
    supervisor = Supervisor(worker_config, reader, emitter, config.concurrency)
    try:
        supervisor.run()
    except KeyboardInterrupt:
        supervisor.stop()
        return 130
    finally:
        transport.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
