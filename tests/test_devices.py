from __future__ import annotations

from pathlib import Path

from streamgraph.utils.devices import DEFAULT_PULSE_SOCKET, pulse_socket, render_nodes, run_device_checks


def test_device_checks_report_missing_nodes(tmp_path) -> None:
    socket = tmp_path / "pulse" / "native"
    assert run_device_checks(tmp_path, pulse=socket) == {"drm": "missing", "uinput": "missing", "pulse": "missing"}

    (tmp_path / "dri").mkdir()
    (tmp_path / "uinput").touch()
    socket.parent.mkdir()
    socket.touch()
    assert run_device_checks(tmp_path, pulse=socket) == {"drm": "ok", "uinput": "ok", "pulse": "ok"}


def test_pulse_socket_location() -> None:
    assert pulse_socket({"PULSE_SERVER": "unix:/tmp/pulse.sock"}) == Path("/tmp/pulse.sock")
    assert pulse_socket({"PULSE_SERVER": "tcp:host", "XDG_RUNTIME_DIR": "/run/user/42"}) == Path(
        "/run/user/42/pulse/native"
    )
    assert pulse_socket({}) == Path(DEFAULT_PULSE_SOCKET)


def test_render_nodes_lists_existing_nodes_only(tmp_path) -> None:
    dri = tmp_path / "dri"
    dri.mkdir()
    (dri / "renderD128").touch()

    assert render_nodes(tmp_path) == [str(dri / "renderD128")]
