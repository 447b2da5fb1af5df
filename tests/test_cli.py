import pytest
import asyncio
import json
from contextlib import contextmanager
from unittest.mock import AsyncMock, patch

from typer.testing import CliRunner

from relay_router.cli import app
from relay_router.config import ProbeConfig
from relay_router.errors import LocationError, RelaysError
from relay_router.relays import Protocol
from relay_router.router import RunResult
from relay_router.stats import finalize

from conftest import make_endpoint
from test_stats import samples_for, successes

runner = CliRunner()


def run_fixture():
    fast = finalize(make_endpoint(1, city="Malmo"), samples_for(make_endpoint(1), successes(10.0, 12.0)))
    dead = finalize(make_endpoint(2, city="Lund"), [])
    result = RunResult({fast.endpoint.key: fast, dead.endpoint.key: dead})
    return [fast.endpoint, dead.endpoint], result


@contextmanager
def mocked_client(endpoints, result):
    with patch("relay_router.cli.RelaySmartClient") as mock_client_class:
        mock_client = AsyncMock()
        mock_client_class.return_value = mock_client
        mock_client.load_endpoints.return_value = endpoints
        mock_client.probe.return_value = result
        yield mock_client_class, mock_client


def test_list_relays_command():
    """Prints a table of the ranked relays."""
    endpoints, result = run_fixture()

    with mocked_client(endpoints, result) as (mock_client_class, mock_client):
        outcome = runner.invoke(app, ["list-relays", "--latitude", "55.6", "--longitude", "13.0",
                                      "--count", "8", "--timeout", "500", "--rtt", "40"])

    assert outcome.exit_code == 0, outcome.output
    assert "RTT median *" in outcome.output
    assert "Malmo" in outcome.output
    assert "11.00 ms" in outcome.output
    assert "n/a" in outcome.output

    kwargs = mock_client_class.call_args.kwargs
    assert kwargs["latitude"] == 55.6
    assert kwargs["config"] == ProbeConfig(rounds=8, timeout=0.5)
    mock_client.load_endpoints.assert_awaited_once_with(None, 500.0)
    probed, cancel_event = mock_client.probe.call_args.args
    assert probed == endpoints
    assert isinstance(cancel_event, asyncio.Event)


def test_rtt_option_drops_slow_relays():
    endpoints, result = run_fixture()

    with mocked_client(endpoints, result):
        outcome = runner.invoke(app, ["list-relays", "--rtt", "5"])

    assert outcome.exit_code == 0, outcome.output
    assert "Malmo" not in outcome.output
    assert "Lund" in outcome.output


def test_interrupt_handler_only_covers_probing():
    """Ctrl-C is routed to the cancel event after loading, and only while probing."""
    endpoints, result = run_fixture()
    calls = []

    @contextmanager
    def recording_interrupt(event):
        calls.append("interrupt on")
        yield
        calls.append("interrupt off")

    with mocked_client(endpoints, result) as (_, mock_client):
        mock_client.load_endpoints.side_effect = lambda *args: calls.append("load") or endpoints
        mock_client.probe.side_effect = lambda *args: calls.append("probe") or result

        with patch("relay_router.cli._interrupt_sets", recording_interrupt):
            outcome = runner.invoke(app, ["list-relays"])

    assert outcome.exit_code == 0, outcome.output
    assert calls == ["load", "interrupt on", "probe", "interrupt off"]


def test_interrupted_run_prints_partial_results():
    endpoints, result = run_fixture()
    partial = RunResult(dict(result), cancelled=True, skipped=[make_endpoint(3)])

    with mocked_client(endpoints, partial):
        outcome = runner.invoke(app, ["list-relays"])

    assert outcome.exit_code == 0, outcome.output
    assert "Malmo" in outcome.output
    assert "1 relays not probed" in outcome.output


def test_fastest_command():
    endpoints, result = run_fixture()

    with mocked_client(endpoints, result) as (_, mock_client):
        outcome = runner.invoke(app, ["fastest", "--protocol", "wireguard"])

    assert outcome.exit_code == 0, outcome.output
    assert "median=11.00 ms" in outcome.output
    assert "Malmo" in outcome.output
    mock_client.load_endpoints.assert_awaited_once_with(Protocol.WIREGUARD, 500.0)


def test_fastest_with_no_answer_exits_nonzero():
    endpoints, result = run_fixture()
    dead_only = RunResult({k: v for k, v in result.items() if not v.reachable})

    with mocked_client(endpoints, dead_only):
        outcome = runner.invoke(app, ["fastest"])

    assert outcome.exit_code == 1
    assert "No relay answered" in outcome.output


@pytest.mark.error
@pytest.mark.parametrize("error", [RelaysError("Couldn't find any relays"),
                                   LocationError("Failed to fetch coordinates")])
def test_collaborator_errors_exit_nonzero(error):
    endpoints, result = run_fixture()

    with mocked_client(endpoints, result) as (_, mock_client):
        mock_client.load_endpoints.side_effect = error

        outcome = runner.invoke(app, ["list-relays"])

    assert outcome.exit_code == 1
    assert str(error) in outcome.output
    mock_client.probe.assert_not_awaited()


@pytest.mark.error
def test_invalid_count_is_rejected():
    outcome = runner.invoke(app, ["list-relays", "--count", "0"])

    assert outcome.exit_code == 1
    assert "Round count must be positive" in outcome.output


def test_environment_overrides_defaults(tmp_path, monkeypatch):
    relays_path = tmp_path / "relays.json"
    relays_path.write_text(json.dumps({"countries": []}), encoding="utf-8")
    monkeypatch.setenv("RELAY_ROUTER_COUNT", "6")
    monkeypatch.setenv("RELAY_ROUTER_RELAYS_FILE", str(relays_path))
    endpoints, result = run_fixture()

    with mocked_client(endpoints, result) as (mock_client_class, _):
        outcome = runner.invoke(app, ["list-relays"])

    assert outcome.exit_code == 0, outcome.output
    kwargs = mock_client_class.call_args.kwargs
    assert kwargs["config"].rounds == 6
    assert kwargs["relays_path"] == relays_path
