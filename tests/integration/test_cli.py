"""
Integration tests for the command line.

Each test runs the CLI against in-memory nodes keyed by host name, and
checks exit code and output.
"""

import asyncio

import pytest

from cerberus.log import ConsumerStrategy, EventData, InMemoryLogConnection, LogConnectionError
from cerberus.tools import cli
from cerberus.tools.inspect import events_stream_name, streams_index_name


class UnreachableLogConnection(InMemoryLogConnection):
    """A node that refuses connections."""

    async def connect(self) -> None:
        raise LogConnectionError("connection refused")


@pytest.fixture(autouse=True)
def quiet(monkeypatch):
    """Keep the CLI off the root logger and the environment."""
    monkeypatch.setattr(cli, "setup_logging", lambda *args, **kwargs: None)
    for name in ("CERBERUS_HOST", "CERBERUS_TCP_PORT", "CERBERUS_LOGIN", "CERBERUS_PASSWORD"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("CERBERUS_BACKEND", "memory")


@pytest.fixture
def nodes():
    """In-memory nodes by host."""
    return {
        "src": InMemoryLogConnection(name="src"),
        "dst": InMemoryLogConnection(name="dst"),
        "down": UnreachableLogConnection(name="down"),
    }


@pytest.fixture
def run(nodes):
    def _run(*argv):
        return cli.run(list(argv), connection_factory=lambda endpoint: nodes[endpoint.host])

    return _run


def seed(log, setup):
    async def _seed():
        await log.connect()
        await setup(log)
        await log.close()

    asyncio.run(_seed())


async def three_orders(log):
    await log.append("orders-1", [EventData.json("OrderPlaced", {"n": n}) for n in range(3)])


class TestExportCommand:
    """Tests for `cerberus export`."""

    def test_export_stream(self, nodes, run):
        seed(nodes["src"], three_orders)

        code = run("--host", "src", "export", "--from-stream", "orders-1", "--to-host", "dst")

        assert code == 0
        copied = nodes["dst"].get_records("orders-1")
        assert [r.id for r in copied] == [r.id for r in nodes["src"].get_records("orders-1")]
        assert [r.data_json() for r in copied] == [{"n": 0}, {"n": 1}, {"n": 2}]

    def test_export_top(self, nodes, run):
        seed(nodes["src"], three_orders)

        code = run(
            "--host", "src", "export", "--from-stream", "orders-1", "--to-host", "dst", "--top", "2"
        )

        assert code == 0
        assert [r.data_json()["n"] for r in nodes["dst"].get_records("orders-1")] == [1, 2]

    def test_top_zero_fails(self, nodes, run, capsys):
        seed(nodes["src"], three_orders)

        code = run(
            "--host", "src", "export", "--from-stream", "orders-1", "--to-host", "dst", "--top", "0"
        )

        assert code == 1
        assert "--top parameter must be greater than 0" in capsys.readouterr().err
        assert nodes["dst"].stream_names() == []

    def test_no_selection_fails(self, run, capsys):
        code = run("--host", "src", "export", "--to-host", "dst")

        assert code == 1
        assert "No source submitted" in capsys.readouterr().err

    def test_two_selections_fail(self, run, capsys):
        code = run(
            "--host", "src", "export",
            "--from-stream", "orders-1", "--from-type", "OrderPlaced",
            "--to-host", "dst",
        )

        assert code == 1
        assert capsys.readouterr().err

    def test_recent_with_top_fails(self, run, capsys):
        code = run(
            "--host", "src", "export", "--from-stream", "orders-1",
            "--to-host", "dst", "--recent", "--top", "5",
        )

        assert code == 1
        assert "--recent and --top cannot be used together" in capsys.readouterr().err

    def test_bad_destination_port_fails(self, run, capsys):
        code = run(
            "--host", "src", "export", "--from-stream", "orders-1",
            "--to-host", "dst", "--to-tcp-port", "abc",
        )

        assert code == 1
        assert "Failed to parse destination endpoint" in capsys.readouterr().err

    def test_unreachable_destination_fails(self, nodes, run, capsys):
        seed(nodes["src"], three_orders)

        code = run("--host", "src", "export", "--from-stream", "orders-1", "--to-host", "down")

        assert code == 1
        assert "Failed to connect to [down:1113]" in capsys.readouterr().err
        assert not nodes["src"].is_connected

    def test_unexpected_error_is_dev_fault(self, capsys):
        def broken_factory(endpoint):
            raise RuntimeError("boom")

        code = cli.run(
            ["--host", "src", "export", "--from-stream", "s", "--to-host", "dst"],
            connection_factory=broken_factory,
        )

        assert code == 1
        err = capsys.readouterr().err
        assert "Please report an issue" in err
        assert "Unexpected error >>= RuntimeError: boom" in err


class TestCheckCommand:
    """Tests for `cerberus check`."""

    def test_check_reachable(self, run, capsys):
        code = run("--host", "src", "check")

        assert code == 0
        assert (
            "Successfully connected to node src:1113 through its public TCP port."
            in capsys.readouterr().out
        )

    def test_check_unreachable(self, run, capsys):
        code = run("--host", "down", "--tcp-port", "2113", "check")

        assert code == 1
        assert (
            "Failed to connect to node down:2113 through its public TCP port."
            in capsys.readouterr().err
        )


class TestListCommands:
    """Tests for `cerberus list`."""

    def test_list_streams(self, nodes, run, capsys):
        async def setup(log):
            await log.append("orders-1", [EventData.json("OrderPlaced", {})])
            await log.append("orders-2", [EventData.json("OrderPlaced", {})])
            await log.append_link("$streams", log.get_records("orders-1")[0])
            await log.append_link("$streams", log.get_records("orders-2")[0])

        seed(nodes["src"], setup)
        nodes["src"].delete_stream("orders-1")

        code = run("--host", "src", "list", "streams")

        assert code == 0
        out = capsys.readouterr().out.splitlines()
        assert out == ["1: [DELETED] orders-1", "2: orders-2"]

    def test_list_streams_empty(self, run, capsys):
        code = run("--host", "src", "list", "streams", "--category", "orders")

        assert code == 0
        assert "You have no user-defined streams yet" in capsys.readouterr().out

    def test_list_events(self, nodes, run, capsys):
        seed(nodes["src"], three_orders)

        code = run("--host", "src", "list", "events", "--stream", "orders-1")

        assert code == 0
        out = capsys.readouterr().out
        assert "Number: 2" in out
        assert "Stream: orders-1" in out
        assert "Type: OrderPlaced" in out
        assert '"n": 1' in out

    def test_list_events_binary_payload(self, nodes, run, capsys):
        async def setup(log):
            await log.append("blobs", [EventData(type="Blob", data=b"\x00", is_json=False)])

        seed(nodes["src"], setup)

        code = run("--host", "src", "list", "events", "--stream", "blobs")

        assert code == 0
        assert "<raw bytes we don't know how to deal with>" in capsys.readouterr().out

    def test_list_denied(self, nodes, run, capsys):
        nodes["src"].deny("$streams")

        code = run("--host", "src", "list", "streams")

        assert code == 1
        assert "Action denied" in capsys.readouterr().err


class TestInspectNames:
    """Tests for the streams read by inspection commands."""

    def test_events_stream_name(self):
        assert events_stream_name("orders-1") == "orders-1"
        assert (
            events_stream_name("orders-1", "billing")
            == "$persistentsubscription-orders-1::billing-parked"
        )
        assert (
            events_stream_name("orders-1", "billing", checkpoint=True)
            == "$persistentsubscription-orders-1::billing-checkpoint"
        )

    def test_streams_index_name(self):
        assert streams_index_name() == "$streams"
        assert streams_index_name("orders") == "$ce-orders"


class TestSubscriptionCommands:
    """Tests for persistent subscription commands."""

    def test_create_subscription(self, nodes, run, capsys):
        code = run(
            "--host", "src", "create", "subscription",
            "--stream", "orders-1", "--group-id", "billing",
            "--resolve-link", "--start-from", "5", "--message-timeout", "1000",
            "--consumer-strategy", "pinned",
        )

        assert code == 0
        assert "Persistent subscription created." in capsys.readouterr().out
        settings = nodes["src"].get_subscription("orders-1", "billing")
        assert settings.resolve_links
        assert settings.start_from == 5
        assert settings.message_timeout_ms == 1000
        assert settings.consumer_strategy == ConsumerStrategy.PINNED

    def test_create_existing_subscription_fails(self, run, capsys):
        args = ("--host", "src", "create", "subscription", "--stream", "orders-1", "--group-id", "billing")
        assert run(*args) == 0

        code = run(*args)

        assert code == 1
        assert (
            "A persistent subscription already exists for the stream [orders-1] with the group [billing]"
            in capsys.readouterr().err
        )

    def test_create_with_bad_number_fails(self, nodes, run, capsys):
        code = run(
            "--host", "src", "create", "subscription",
            "--stream", "orders-1", "--group-id", "billing", "--max-retry-count", "ten",
        )

        assert code == 1
        assert "Failed to parse --max-retry-count number parameter" in capsys.readouterr().err
        assert nodes["src"].get_subscription("orders-1", "billing") is None

    def test_unknown_consumer_strategy_fails(self, run, capsys):
        code = run(
            "--host", "src", "create", "subscription",
            "--stream", "orders-1", "--group-id", "billing", "--consumer-strategy", "random",
        )

        assert code == 1
        assert "Unknown --consumer-strategy value: [random]" in capsys.readouterr().err

    def test_create_denied_fails(self, nodes, run, capsys):
        nodes["src"].deny("orders-1")

        code = run(
            "--host", "src", "create", "subscription", "--stream", "orders-1", "--group-id", "billing"
        )

        assert code == 1
        assert "Your current credentials doesn't allow you to create" in capsys.readouterr().err

    def test_update_subscription(self, nodes, run, capsys):
        run("--host", "src", "create", "subscription", "--stream", "orders-1", "--group-id", "billing")

        code = run(
            "--host", "src", "update", "subscription",
            "--stream", "orders-1", "--group-id", "billing", "--extra-stats",
        )

        assert code == 0
        assert "Persistent subscription updated." in capsys.readouterr().out
        assert nodes["src"].get_subscription("orders-1", "billing").extra_stats

    def test_update_missing_subscription_fails(self, run, capsys):
        code = run(
            "--host", "src", "update", "subscription", "--stream", "orders-1", "--group-id", "billing"
        )

        assert code == 1
        assert "because it doesn't exist" in capsys.readouterr().err

    def test_delete_subscription(self, nodes, run, capsys):
        run("--host", "src", "create", "subscription", "--stream", "orders-1", "--group-id", "billing")

        code = run(
            "--host", "src", "delete", "subscription", "--stream", "orders-1", "--group-id", "billing"
        )

        assert code == 0
        assert "Persistent subscription deleted." in capsys.readouterr().out
        assert nodes["src"].get_subscription("orders-1", "billing") is None

    def test_delete_missing_subscription_fails(self, run, capsys):
        code = run(
            "--host", "src", "delete", "subscription", "--stream", "orders-1", "--group-id", "billing"
        )

        assert code == 1
        assert (
            "You can't delete a persistent subscription on stream [orders-1] "
            "with group id [billing] because it doesn't exist"
        ) in capsys.readouterr().err

    def test_list_subscriptions(self, nodes, run, capsys):
        seed(nodes["src"], three_orders)
        run("--host", "src", "create", "subscription", "--stream", "orders-1", "--group-id", "billing")
        capsys.readouterr()

        code = run("--host", "src", "list", "subscriptions")

        assert code == 0
        out = capsys.readouterr().out.splitlines()
        assert "Stream: orders-1" in out
        assert "Group: billing" in out
        assert "Status: Live" in out
        assert "Processed / Known: -1 / 2 (3)" in out

    def test_list_no_subscriptions(self, run, capsys):
        code = run("--host", "src", "list", "subscriptions")

        assert code == 0
        assert "You have no persistent subscriptions yet" in capsys.readouterr().out


class TestProjectionCommands:
    """Tests for `cerberus create projection`."""

    def test_create_projection(self, nodes, run, capsys, tmp_path):
        script = tmp_path / "counter.js"
        script.write_text("fromAll().when({})")

        code = run("--host", "src", "create", "projection", str(script), "--name", "counter", "--enabled")

        assert code == 0
        assert "Projection [counter] created" in capsys.readouterr().out

    def test_missing_script_fails(self, run, capsys, tmp_path):
        code = run(
            "--host", "src", "create", "projection", str(tmp_path / "nope.js"), "--name", "counter"
        )

        assert code == 1
        assert "There was an issue with the script's filepath you submitted" in capsys.readouterr().err

    def test_faulted_projection_fails(self, nodes, run, capsys, tmp_path):
        script = tmp_path / "broken.js"
        script.write_text("fromAll(")
        nodes["src"].fault_next_projection("Unexpected end of input")

        code = run("--host", "src", "create", "projection", str(script), "--name", "broken")

        assert code == 1
        assert (
            "Unsuccessful projection [broken] creation:\n>> Unexpected end of input"
            in capsys.readouterr().err
        )


class TestMalformedIndexEntries:
    """Tests for index entries that cannot be decoded."""

    def test_export_malformed_category_link_is_dev_fault(self, nodes, run, capsys):
        async def setup(log):
            await log.append("$category-orders", [EventData(type="$>", data=b"garbage", is_json=False)])

        seed(nodes["src"], setup)

        code = run("--host", "src", "export", "--from-category", "orders", "--to-host", "dst")

        assert code == 1
        err = capsys.readouterr().err
        assert "Please report an issue" in err
        assert "Error occurred when exporting by category" in err
        assert nodes["dst"].stream_names() == []
