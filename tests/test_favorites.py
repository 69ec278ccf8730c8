import asyncio

import pytest

from stallview.favorites import FavoriteState, FavoriteSynchronizer, FavoriteSyncError
from stallview.store import ContentStoreError


def _sync(store, identity, comic_id="c1", timeout_s=5.0):
    return FavoriteSynchronizer(store, identity, comic_id, timeout_s)


class TestInitialize:

    def test_present_row_reads_as_present(self, fake_store, identity):
        fake_store.rows.add((identity.id, "c1"))
        sync = _sync(fake_store, identity)
        assert asyncio.run(sync.initialize()) is True
        assert sync.state is FavoriteState.PRESENT
        assert sync.is_favorite

    def test_missing_row_reads_as_absent(self, fake_store, identity):
        sync = _sync(fake_store, identity)
        asyncio.run(sync.initialize())
        assert sync.state is FavoriteState.ABSENT

    def test_failure_leaves_state_unknown(self, fake_store, identity):
        fake_store.fail = ContentStoreError("fetch favorite failed")
        sync = _sync(fake_store, identity)
        assert asyncio.run(sync.initialize()) is False
        assert sync.state is FavoriteState.UNKNOWN
        assert not sync.is_favorite
        assert "fetch favorite failed" in sync.error

    def test_retry_after_failure_clears_error(self, fake_store, identity):
        fake_store.fail = ContentStoreError("down")
        sync = _sync(fake_store, identity)
        asyncio.run(sync.initialize())
        fake_store.fail = None
        assert asyncio.run(sync.initialize()) is True
        assert sync.error is None
        assert sync.state is FavoriteState.ABSENT

    def test_signed_out_visitor_is_not_queried(self, fake_store):
        sync = _sync(fake_store, None)
        assert asyncio.run(sync.initialize()) is False
        assert fake_store.calls == []
        assert sync.state is FavoriteState.UNKNOWN

    def test_result_after_close_is_ignored(self, fake_store, identity, wait_for_call):
        fake_store.rows.add((identity.id, "c1"))
        fake_store.gate = asyncio.Event()
        sync = _sync(fake_store, identity)

        async def scenario():
            pending = asyncio.ensure_future(sync.initialize())
            await wait_for_call(fake_store, "is_favorite")
            sync.close()
            fake_store.gate.set()
            return await pending

        assert asyncio.run(scenario()) is False
        assert sync.state is FavoriteState.UNKNOWN


class TestToggle:

    def test_toggle_adds_then_removes(self, fake_store, identity):
        sync = _sync(fake_store, identity)

        async def scenario():
            await sync.initialize()
            assert await sync.toggle() is FavoriteState.PRESENT
            assert (identity.id, "c1") in fake_store.rows
            assert await sync.toggle() is FavoriteState.ABSENT
            assert (identity.id, "c1") not in fake_store.rows

        asyncio.run(scenario())
        assert not sync.in_flight

    def test_toggle_is_optimistic(self, fake_store, identity, wait_for_call):
        fake_store.gate = asyncio.Event()
        sync = _sync(fake_store, identity)

        async def scenario():
            pending = asyncio.ensure_future(sync.toggle())
            await wait_for_call(fake_store, "add_favorite")
            assert sync.state is FavoriteState.PRESENT
            assert sync.in_flight
            fake_store.gate.set()
            return await pending

        assert asyncio.run(scenario()) is FavoriteState.PRESENT

    def test_second_toggle_while_in_flight_is_ignored(self, fake_store, identity, wait_for_call):
        sync = _sync(fake_store, identity)

        async def scenario():
            await sync.initialize()
            fake_store.gate = asyncio.Event()
            first = asyncio.ensure_future(sync.toggle())
            await wait_for_call(fake_store, "add_favorite")
            assert await sync.toggle() is None
            fake_store.gate.set()
            return await first

        assert asyncio.run(scenario()) is FavoriteState.PRESENT
        assert sync.state is FavoriteState.PRESENT
        assert fake_store.calls.count("add_favorite") == 1
        assert "remove_favorite" not in fake_store.calls

    def test_failed_add_rolls_back(self, fake_store, identity):
        sync = _sync(fake_store, identity)
        asyncio.run(sync.initialize())
        fake_store.fail = ContentStoreError("add favorite failed")
        with pytest.raises(FavoriteSyncError):
            asyncio.run(sync.toggle())
        assert sync.state is FavoriteState.ABSENT
        assert not sync.in_flight
        assert "add favorite failed" in sync.error

    def test_failed_remove_rolls_back(self, fake_store, identity):
        fake_store.rows.add((identity.id, "c1"))
        sync = _sync(fake_store, identity)
        asyncio.run(sync.initialize())
        fake_store.fail = ContentStoreError("remove favorite failed")
        with pytest.raises(FavoriteSyncError):
            asyncio.run(sync.toggle())
        assert sync.state is FavoriteState.PRESENT

    def test_timeout_counts_as_failure(self, fake_store, identity):
        sync = _sync(fake_store, identity, timeout_s=0.01)
        asyncio.run(sync.initialize())
        fake_store.gate = asyncio.Event()
        with pytest.raises(FavoriteSyncError):
            asyncio.run(sync.toggle())
        assert sync.state is FavoriteState.ABSENT
        assert not sync.in_flight

    def test_toggle_from_unknown_adds_and_rolls_back_to_unknown(self, fake_store, identity):
        sync = _sync(fake_store, identity)
        fake_store.fail = ContentStoreError("down")
        with pytest.raises(FavoriteSyncError):
            asyncio.run(sync.toggle())
        assert sync.state is FavoriteState.UNKNOWN
        fake_store.fail = None
        assert asyncio.run(sync.toggle()) is FavoriteState.PRESENT
        assert fake_store.calls[-1] == "add_favorite"

    def test_signed_out_toggle_is_a_silent_no_op(self, fake_store):
        sync = _sync(fake_store, None)
        assert asyncio.run(sync.toggle()) is None
        assert fake_store.calls == []
        assert sync.state is FavoriteState.UNKNOWN

    def test_response_after_close_does_not_touch_state(self, fake_store, identity, wait_for_call):
        sync = _sync(fake_store, identity)

        async def scenario():
            await sync.initialize()
            fake_store.gate = asyncio.Event()
            fake_store.fail = ContentStoreError("late failure")
            pending = asyncio.ensure_future(sync.toggle())
            await wait_for_call(fake_store, "add_favorite")
            sync.close()
            before = (sync.state, sync.in_flight, sync.error)
            fake_store.gate.set()
            result = await pending
            return before, result

        before, result = asyncio.run(scenario())
        assert result is None
        assert (sync.state, sync.in_flight, sync.error) == before

    def test_settled_state_mirrors_store(self, fake_store, identity):
        sync = _sync(fake_store, identity)

        async def scenario():
            await sync.initialize()
            for i in range(5):
                fake_store.fail = ContentStoreError("flaky") if i % 2 else None
                try:
                    await sync.toggle()
                except FavoriteSyncError:
                    pass
                stored = (identity.id, "c1") in fake_store.rows
                assert sync.is_favorite == stored

        asyncio.run(scenario())


class SnapshotReadStore:
    """Answers is_favorite with the rows as they were when the read was issued."""

    def __init__(self, fake_store):
        self._inner = fake_store
        self.read_gate = asyncio.Event()

    async def is_favorite(self, user_id, comic_id):
        present = (user_id, comic_id) in self._inner.rows
        self._inner.calls.append("is_favorite")
        await self.read_gate.wait()
        return present

    async def add_favorite(self, user_id, comic_id):
        await self._inner.add_favorite(user_id, comic_id)

    async def remove_favorite(self, user_id, comic_id):
        await self._inner.remove_favorite(user_id, comic_id)


class TestLoadDuringToggle:

    def test_load_while_toggle_pending_is_discarded(self, fake_store, identity, wait_for_call):
        fake_store.gates["add_favorite"] = asyncio.Event()
        sync = _sync(fake_store, identity)

        async def scenario():
            await sync.initialize()
            pending = asyncio.ensure_future(sync.toggle())
            await wait_for_call(fake_store, "add_favorite")
            assert await sync.initialize() is False
            assert sync.state is FavoriteState.PRESENT
            fake_store.gates["add_favorite"].set()
            return await pending

        assert asyncio.run(scenario()) is FavoriteState.PRESENT
        assert sync.state is FavoriteState.PRESENT
        assert (identity.id, "c1") in fake_store.rows

    def test_stale_load_landing_after_toggle_settles_is_discarded(self, fake_store, identity, wait_for_call):
        store = SnapshotReadStore(fake_store)
        fake_store.gates["add_favorite"] = asyncio.Event()
        sync = _sync(store, identity)

        async def scenario():
            store.read_gate.set()
            await sync.initialize()
            store.read_gate.clear()
            fake_store.calls.clear()
            pending = asyncio.ensure_future(sync.toggle())
            await wait_for_call(fake_store, "add_favorite")
            load = asyncio.ensure_future(sync.initialize())
            await wait_for_call(fake_store, "is_favorite")
            fake_store.gates["add_favorite"].set()
            assert await pending is FavoriteState.PRESENT
            store.read_gate.set()
            return await load

        assert asyncio.run(scenario()) is False
        assert sync.state is FavoriteState.PRESENT
        assert (identity.id, "c1") in fake_store.rows
