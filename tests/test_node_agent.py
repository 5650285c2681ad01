import asyncio

import pytest  # type: ignore

from clocksync.config import NodeConfig
from clocksync.core.identity import Role
from clocksync.core.node import NodeAgent
from clocksync.errors import ConfigurationError, TransportFailure
from clocksync.protocol.message import ClockSyncMessage, MessageType
from clocksync.protocol.transport import LoopbackNetwork, LoopbackTransport

FAST_CONFIG = NodeConfig(
    announce_delay=0.0,
    announce_interval=0.05,
    request_delay=0.0,
    request_interval=0.05,
    discovery_delay=0.0,
    discovery_interval=0.05,
    shutdown_grace=1.0,
    receive_backoff=0.01,
)


def _node(network: LoopbackNetwork, name: str, time_ms: int, role: Role = Role.REGULAR,
          config: NodeConfig = None) -> NodeAgent:
    return NodeAgent(
        name,
        ("127.0.0.1", 9000),
        role=role,
        transport=LoopbackTransport(network, name),
        config=config,
        drift_rate=1.0,
        initial_time_ms=time_ms,
        monotonic=lambda: 0.0,
    )


class _UnopenableTransport(LoopbackTransport):
    async def open(self) -> None:
        raise TransportFailure("address already in use")


class _BrokenBroadcastTransport(LoopbackTransport):
    async def broadcast(self, message) -> None:
        raise TransportFailure("network unreachable")


def test_own_messages_are_dropped() -> None:
    async def scenario():
        node = _node(LoopbackNetwork(), "n1", 4000)
        await node.handle_message(ClockSyncMessage(node.node_id, 9999, MessageType.SYNC_RESPONSE), "n1")
        return node

    node = asyncio.run(scenario())

    assert node.stats["self_messages_dropped"] == 1
    assert node.stats["messages_received"] == 0
    assert node.peers() == {}
    assert node.current_time() == 4000


def test_master_answers_request_to_sender_address() -> None:
    async def scenario():
        network = LoopbackNetwork()
        master = _node(network, "master", 10000, Role.MASTER)
        regular = _node(network, "regular", 9000)
        await master.transport.open()
        await regular.transport.open()

        await master.handle_message(
            ClockSyncMessage(regular.node_id, regular.current_time(), MessageType.SYNC_REQUEST), "regular")
        reply, source = await asyncio.wait_for(regular.transport.receive(), 1.0)
        return master, regular, reply, source

    master, regular, reply, source = asyncio.run(scenario())

    assert reply.type is MessageType.SYNC_RESPONSE
    assert reply.sender_id == master.node_id
    assert reply.sender_time == 10000
    assert source == "master"
    assert master.stats["responses_sent"] == 1
    assert master.peers()[regular.node_id].address == "regular"


def test_regular_node_does_not_answer_requests() -> None:
    async def scenario():
        network = LoopbackNetwork()
        regular = _node(network, "regular", 9000)
        await regular.transport.open()
        await regular.handle_message(ClockSyncMessage("other", 1, MessageType.SYNC_REQUEST), "other")
        return regular

    regular = asyncio.run(scenario())

    assert regular.stats["responses_sent"] == 0
    assert regular.stats["messages_received"] == 1
    assert "other" in regular.peers()


@pytest.mark.parametrize("msg_type", [MessageType.SYNC_RESPONSE, MessageType.MASTER_ANNOUNCE])
def test_regular_node_applies_master_time(msg_type: MessageType) -> None:
    node = _node(LoopbackNetwork(), "regular", 4000)

    asyncio.run(node.handle_message(ClockSyncMessage("master-id", 4500, msg_type), "master"))

    assert node.current_time() == 4500
    assert node.stats["sync_adjustments"] == 1
    assert node.clock.drift_rate == pytest.approx(1.001)


@pytest.mark.parametrize("msg_type", [MessageType.SYNC_RESPONSE, MessageType.MASTER_ANNOUNCE])
def test_master_ignores_time_from_others(msg_type: MessageType) -> None:
    node = _node(LoopbackNetwork(), "master", 4000, Role.MASTER)

    asyncio.run(node.handle_message(ClockSyncMessage("someone", 4500, msg_type), "someone"))

    assert node.current_time() == 4000
    assert node.stats["sync_adjustments"] == 0
    assert "someone" in node.peers()


def test_role_change_takes_effect_on_next_message() -> None:
    async def scenario():
        network = LoopbackNetwork()
        node = _node(network, "flip", 7000)
        peer = _node(network, "peer", 1000)
        await node.transport.open()
        await peer.transport.open()

        await node.handle_message(ClockSyncMessage(peer.node_id, 1000, MessageType.SYNC_REQUEST), "peer")
        node.set_role("MASTER")
        await node.handle_message(ClockSyncMessage(peer.node_id, 1000, MessageType.SYNC_REQUEST), "peer")
        reply, _ = await asyncio.wait_for(peer.transport.receive(), 1.0)
        return node, reply

    node, reply = asyncio.run(scenario())

    assert node.is_master
    assert node.stats["responses_sent"] == 1
    assert reply.sender_time == 7000


def test_periodic_senders_respect_role() -> None:
    async def scenario():
        network = LoopbackNetwork()
        master = _node(network, "master", 1, Role.MASTER)
        regular = _node(network, "regular", 1)
        await master.transport.open()
        await regular.transport.open()
        return (
            await master.request_time_sync(),
            await regular.announce_master_time(),
            await master.announce_master_time(),
            await regular.request_time_sync(),
        )

    master_request, regular_announce, master_announce, regular_request = asyncio.run(scenario())

    assert not master_request
    assert not regular_announce
    assert master_announce
    assert regular_request


def test_running_nodes_converge_on_master_time() -> None:
    async def scenario():
        network = LoopbackNetwork()
        master = _node(network, "master", 10000, Role.MASTER, FAST_CONFIG)
        regular = _node(network, "regular", 9500, config=FAST_CONFIG)
        await master.start()
        await regular.start()
        await asyncio.sleep(0.3)
        statuses = master.get_status(), regular.get_status()
        await regular.stop()
        await master.stop()
        return master, regular, statuses

    master, regular, (master_status, regular_status) = asyncio.run(scenario())

    assert regular.current_time() == 10000
    assert master.current_time() == 10000
    assert master_status["running"] and regular_status["running"]
    assert regular.node_id in master.peers()
    assert master.node_id in regular.peers()
    assert master.stats["responses_sent"] >= 1
    # broadcasts loop back to their sender
    assert master.stats["self_messages_dropped"] >= 1
    assert not master.running and not regular.running


def test_second_start_is_ignored() -> None:
    async def scenario():
        node = _node(LoopbackNetwork(), "n1", 0, config=FAST_CONFIG)
        await node.start()
        await node.start()
        task_count = len(node._tasks)
        await node.stop()
        return node, task_count

    node, task_count = asyncio.run(scenario())

    assert task_count == 4
    assert not node.running


def test_stop_without_start_is_harmless() -> None:
    node = _node(LoopbackNetwork(), "n1", 0)

    asyncio.run(node.stop())

    assert not node.running


def test_failed_transport_open_leaves_node_stopped() -> None:
    network = LoopbackNetwork()
    node = NodeAgent("n1", ("127.0.0.1", 9000), transport=_UnopenableTransport(network, "n1"))

    with pytest.raises(TransportFailure):
        asyncio.run(node.start())
    assert not node.running


def test_broadcast_failure_is_counted_not_raised() -> None:
    async def scenario():
        network = LoopbackNetwork()
        node = NodeAgent("n1", ("127.0.0.1", 9000), transport=_BrokenBroadcastTransport(network, "n1"))
        await node.transport.open()
        return node, await node.request_time_sync()

    node, sent = asyncio.run(scenario())

    assert not sent
    assert node.stats["send_failures"] == 1


def test_invalid_configuration_is_rejected() -> None:
    with pytest.raises(ConfigurationError):
        NodeAgent("n1", ("127.0.0.1", 9000), transport=LoopbackTransport(LoopbackNetwork(), "n1"),
                  config=NodeConfig(request_interval=0))
    with pytest.raises(ConfigurationError):
        NodeAgent("n1", ("127.0.0.1", 9000), transport=LoopbackTransport(LoopbackNetwork(), "n1"),
                  drift_rate=2.0)


def test_config_from_env(monkeypatch) -> None:
    monkeypatch.setenv("CLOCKSYNC_ANNOUNCE_INTERVAL", "2.5")
    monkeypatch.setenv("CLOCKSYNC_TICK_MS", "50")
    monkeypatch.setenv("CLOCKSYNC_QUERY_TIMEOUT", "none")

    config = NodeConfig.from_env()

    assert config.announce_interval == 2.5
    assert config.tick_ms == 50
    assert config.query_timeout is None
    assert config.request_interval == NodeConfig().request_interval


def test_config_from_env_rejects_garbage(monkeypatch) -> None:
    monkeypatch.setenv("CLOCKSYNC_REQUEST_INTERVAL", "soon")

    with pytest.raises(ConfigurationError):
        NodeConfig.from_env()
