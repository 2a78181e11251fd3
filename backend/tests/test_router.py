import asyncio

import pytest

from ghostwire.errors import PersistenceFailure
from ghostwire.registry import Delivery


def _live(hub, make_conn, *identities):
    conns = {}
    for identity in identities:
        conns[identity] = make_conn(str(identity))
        hub.registry.bind(identity, conns[identity])
    return conns


def test_both_endpoints_live(hub, make_conn):
    conns = _live(hub, make_conn, 0, 5, 7)

    result = asyncio.run(hub.send_message(5, 7, "hi"))

    assert result.branch == "peer"
    for identity in (0, 5, 7):
        [frame] = conns[identity].of("newMessage")
        assert frame["payload"]["convoId"] == "5--7"
        assert frame["payload"]["message"]["text"] == "hi"
        assert "isSimulation" not in frame["payload"]


def test_recipient_offline_is_simulation(hub, make_conn):
    conns = _live(hub, make_conn, 0, 5)

    result = asyncio.run(hub.send_message(5, 7, "hi"))

    assert result.branch == "simulation"
    [echo] = conns[5].of("newMessage")
    assert "isSimulation" not in echo["payload"]
    [mirror] = conns[0].of("newMessage")
    assert mirror["payload"]["isSimulation"] is True
    assert 7 not in result.deliveries


def test_sender_offline_is_injected(hub, make_conn):
    conns = _live(hub, make_conn, 0, 7)

    result = asyncio.run(hub.send_message(5, 7, "hi"))

    assert result.branch == "injected"
    [delivered] = conns[7].of("newMessage")
    [mirror] = conns[0].of("newMessage")
    assert delivered == mirror
    assert "isSimulation" not in mirror["payload"]
    assert 5 not in result.deliveries


def test_no_observer_no_mirror(hub, make_conn):
    conns = _live(hub, make_conn, 5)
    result = asyncio.run(hub.send_message(5, 7, "hi"))
    assert set(result.deliveries) == {5}
    assert len(conns[5].of("newMessage")) == 1


def test_observer_as_endpoint_receives_one_copy(hub, make_conn):
    conns = _live(hub, make_conn, 0, 5)
    asyncio.run(hub.send_message(0, 5, "from the wire"))
    assert len(conns[0].of("newMessage")) == 1
    assert len(conns[5].of("newMessage")) == 1


def test_message_is_persisted_with_server_timestamp(hub, make_conn):
    async def scenario():
        await hub.send_message(7, 5, "first")
        await hub.send_message(5, 7, "second")
        return await hub.get_document()

    doc = asyncio.run(scenario())
    convo = doc["chats"]["5--7"]
    assert [m["text"] for m in convo] == ["first", "second"]
    assert convo[0]["fromId"] == 7 and convo[0]["toId"] == 5
    assert convo[0]["timestamp"].endswith("Z")


def test_failed_persistence_aborts_delivery(hub, make_conn, monkeypatch):
    conns = _live(hub, make_conn, 0, 5, 7)

    def broken_save(doc):
        raise PersistenceFailure("disk full")

    monkeypatch.setattr(hub.store, "_save", broken_save)

    with pytest.raises(PersistenceFailure):
        asyncio.run(hub.send_message(5, 7, "lost"))
    for conn in conns.values():
        assert conn.frames == []


def test_failed_delivery_does_not_block_others(hub, make_conn):
    observer = make_conn("observer")
    hub.registry.bind(0, observer)
    hub.registry.bind(5, make_conn("5", fail=True))
    hub.registry.bind(7, make_conn("7"))

    result = asyncio.run(hub.send_message(5, 7, "hi"))

    assert result.deliveries[5] is Delivery.FAILED
    assert result.deliveries[7] is Delivery.DELIVERED
    assert len(observer.of("newMessage")) == 1


def test_interleaved_sends_keep_every_record(hub, make_conn):
    _live(hub, make_conn, 0, 1, 2)
    calls = [(1, 2, f"a{i}") if i % 2 else (2, 3, f"b{i}") for i in range(40)]

    async def scenario():
        await asyncio.gather(*(hub.send_message(*call) for call in calls))
        return await hub.get_document()

    doc = asyncio.run(scenario())
    texts_12 = [m["text"] for m in doc["chats"]["1--2"]]
    texts_23 = [m["text"] for m in doc["chats"]["2--3"]]
    assert sorted(texts_12) == sorted(t for _, _, t in calls if t.startswith("a"))
    assert sorted(texts_23) == sorted(t for _, _, t in calls if t.startswith("b"))
    assert len(texts_12) + len(texts_23) == len(calls)
