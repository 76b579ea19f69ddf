from __future__ import annotations

import logging
from pathlib import Path

from streamgraph import ServiceConfig
from streamgraph.main import build_config, parse_args
from streamgraph.runtime.processes import render_command
from streamgraph.utils.logging import configure_logging, resolve_level


def test_defaults_point_at_data_root() -> None:
    config = ServiceConfig()

    assert config.store_path == Path("/data/storage/streaming-graph.json")
    assert config.settings_path == Path("/data/storage/streaming-settings.json")
    assert config.http_timeout == 1.5


def test_yaml_then_environment(tmp_path) -> None:
    path = tmp_path / "service.yaml"
    path.write_text(
        "root: /srv/stream\nport: 9000\nrestart-backoff: 4\nunknown_key: 1\n",
        encoding="utf-8",
    )

    config = ServiceConfig.load(
        path,
        environ={
            "STREAMGRAPH_PORT": "9100",
            "STREAMGRAPH_HEALTH_URLS": "http://a:1, http://b:2",
            "STREAMGRAPH_SUNSHINE_USERNAME": "admin",
        },
    )

    assert config.root == Path("/srv/stream")
    assert config.port == 9100
    assert config.restart_backoff == 4.0
    assert config.health_urls == ["http://a:1", "http://b:2"]
    assert config.sunshine_username == "admin"


def test_cli_overrides_host_and_port() -> None:
    args = parse_args(["--host", "0.0.0.0", "--port", "8181", "--log-level", "debug"])

    config = build_config(args)

    assert (config.host, config.port) == ("0.0.0.0", 8181)
    assert args.log_level == "debug"


def test_command_templates_are_rendered() -> None:
    argv = render_command(["sway", "--config", "{config}"], config=Path("/run/x/compositor.conf"), runtime_dir="/run/x")

    assert argv == ["sway", "--config", "/run/x/compositor.conf"]


def test_logging_quiets_http_client_unless_debugging() -> None:
    logger = logging.getLogger("httpx")
    previous = logger.level
    try:
        configure_logging("info")
        assert logger.level == logging.WARNING

        logger.setLevel(logging.NOTSET)
        configure_logging("debug")
        assert logger.level == logging.NOTSET
        assert resolve_level("nonsense") == logging.INFO
    finally:
        logger.setLevel(previous)
