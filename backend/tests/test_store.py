import asyncio
import json

import pytest

from ghostwire.document import append_message
from ghostwire.errors import CorruptStoreError, PersistenceFailure
from ghostwire.store import DocumentStore


def test_missing_file_reads_as_empty_document(tmp_path):
    store = DocumentStore(tmp_path / "database.json")
    assert asyncio.run(store.read()) == {"profiles": [], "chats": {}}
    assert not (tmp_path / "database.json").exists()


def test_corrupt_file_raises_and_is_left_untouched(tmp_path):
    path = tmp_path / "database.json"
    path.write_text("{not json", encoding="utf-8")
    store = DocumentStore(path)

    with pytest.raises(CorruptStoreError):
        asyncio.run(store.read())
    assert path.read_text(encoding="utf-8") == "{not json"


def test_write_then_read_returns_normalized_document(tmp_path):
    store = DocumentStore(tmp_path / "database.json")

    async def scenario():
        await store.write([{"id": 1, "name": "legacy"}])
        return await store.read()

    doc = asyncio.run(scenario())
    assert doc == {"profiles": [{"id": 1, "name": "legacy"}], "chats": {}}
    on_disk = json.loads((tmp_path / "database.json").read_text(encoding="utf-8"))
    assert on_disk == doc


def test_concurrent_appends_are_never_lost(tmp_path):
    store = DocumentStore(tmp_path / "database.json")
    count = 60

    async def append(i):
        def op(doc):
            append_message(doc, "1--2", {"n": i})

        await store.with_exclusive_access(op, name=f"append-{i}")

    async def scenario():
        await asyncio.gather(*(append(i) for i in range(count)))
        return await store.read()

    doc = asyncio.run(scenario())
    numbers = [m["n"] for m in doc["chats"]["1--2"]]
    assert len(numbers) == count
    assert sorted(numbers) == list(range(count))


def test_failing_operation_persists_nothing(tmp_path):
    store = DocumentStore(tmp_path / "database.json")

    def boom(doc):
        doc["profiles"].append({"id": 1})
        raise ValueError("bad input")

    async def scenario():
        with pytest.raises(ValueError):
            await store.with_exclusive_access(boom)
        assert not store.locked
        return await store.read()

    assert asyncio.run(scenario()) == {"profiles": [], "chats": {}}


def test_write_failure_keeps_last_good_document(tmp_path, monkeypatch):
    path = tmp_path / "database.json"
    store = DocumentStore(path)
    asyncio.run(store.write({"profiles": [{"id": 1}], "chats": {}}))
    before = path.read_text(encoding="utf-8")

    def broken_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr("ghostwire.store.os.replace", broken_replace)

    with pytest.raises(PersistenceFailure):
        asyncio.run(store.write({"profiles": [], "chats": {}}))

    assert path.read_text(encoding="utf-8") == before
    assert not (tmp_path / "database.json.tmp").exists()


def test_lock_wait_is_bounded(tmp_path):
    store = DocumentStore(tmp_path / "database.json", lock_timeout=0.05)

    async def scenario():
        async with store.exclusive("hold"):
            with pytest.raises(PersistenceFailure):
                await store.read()
        # Released on the way out; the store is usable again
        return await store.read()

    assert asyncio.run(scenario()) == {"profiles": [], "chats": {}}


def test_reads_wait_for_writer(tmp_path):
    store = DocumentStore(tmp_path / "database.json")
    seen = []

    async def slow_writer():
        async with store.exclusive("slow"):
            await asyncio.sleep(0.05)
            await asyncio.to_thread(store._save, {"profiles": [{"id": 7}], "chats": {}})

    async def reader():
        await asyncio.sleep(0.01)
        seen.append(await store.read())

    async def scenario():
        await asyncio.gather(slow_writer(), reader())

    asyncio.run(scenario())
    assert seen == [{"profiles": [{"id": 7}], "chats": {}}]


def test_unreadable_file_is_a_persistence_failure(tmp_path):
    # A directory in place of the document file makes open() fail with an OSError
    path = tmp_path / "database.json"
    path.mkdir()
    store = DocumentStore(path)

    with pytest.raises(PersistenceFailure):
        asyncio.run(store.read())


def test_non_utf8_file_is_corrupt(tmp_path):
    path = tmp_path / "database.json"
    path.write_bytes(b"\xff\xfe{}")
    store = DocumentStore(path)

    with pytest.raises(CorruptStoreError):
        asyncio.run(store.read())
