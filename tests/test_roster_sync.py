import asyncio

from tugofwar.services.roster_sync import RosterSync, make_player_id, parse_roster
from tugofwar.state.keys import GAME_ROOT, PLAYERS_PATH, player_path
from tugofwar.state.memory_store import MemoryStore


def test_player_id_is_nickname_plus_suffix():
    player_id = make_player_id("ann")
    assert player_id.startswith("ann_")
    assert len(player_id) > len("ann_")
    assert make_player_id("a/b c").startswith("a_b_c_")
    assert make_player_id("ann") != make_player_id("ann")


def test_parse_roster_skips_bad_entries():
    players = parse_roster({
        "ok_1": {"nickname": "ok", "team": "left"},
        "bad_1": {"nickname": "", "team": "left"},
        "bad_2": {"nickname": "x", "team": "up"},
        "bad_3": "nope",
    })
    assert list(players) == ["ok_1"]
    assert parse_roster(None) == {}
    assert parse_roster([1, 2]) == {}


def test_select_then_leave():
    async def scenario():
        store = MemoryStore()
        roster = RosterSync(store, store.connect())
        await roster.subscribe()
        await store.drain()

        player_id = await roster.select("ann", "left")
        await store.drain()

        assert list(roster.players) == [player_id]
        assert roster.players[player_id].nickname == "ann"
        assert roster.players[player_id].team == "left"
        assert roster.team == "left"
        assert roster.connection.armed == [player_path(player_id)]

        await roster.leave()
        await store.drain()

        assert roster.players == {}
        assert roster.player_id is None
        assert await store.read(PLAYERS_PATH) is None
        assert roster.connection.armed == []
        roster.close()

    asyncio.run(scenario())


def test_reselect_replaces_entry():
    async def scenario():
        store = MemoryStore()
        roster = RosterSync(store, store.connect())
        await roster.subscribe()

        first = await roster.select("bo", "left")
        second = await roster.select("bo", "right")
        await store.drain()

        assert first != second
        assert list(roster.players) == [second]
        assert roster.players[second].team == "right"
        roster.close()

    asyncio.run(scenario())


def test_external_removal_evicts():
    async def scenario():
        store = MemoryStore()
        evictions = []

        async def on_evicted():
            evictions.append(True)

        roster = RosterSync(store, store.connect(), on_evicted=on_evicted)
        await roster.subscribe()
        player_id = await roster.select("cy", "right")
        await store.drain()

        # simulate the disconnect cleanup of another process
        await store.remove(player_path(player_id))
        await store.drain()

        assert evictions == [True]
        assert roster.player_id is None
        assert roster.team is None
        assert roster.connection.armed == []
        roster.close()

    asyncio.run(scenario())


def test_other_players_do_not_evict():
    async def scenario():
        store = MemoryStore()
        evictions = []

        async def on_evicted():
            evictions.append(True)

        mine = RosterSync(store, store.connect(), on_evicted=on_evicted)
        theirs = RosterSync(store, store.connect())
        await mine.subscribe()
        await theirs.subscribe()

        await mine.select("dee", "left")
        their_id = await theirs.select("eve", "right")
        await store.drain()
        await theirs.leave()
        await store.drain()

        assert evictions == []
        assert mine.joined
        assert their_id not in mine.players
        mine.close()
        theirs.close()

    asyncio.run(scenario())


def test_connection_close_removes_entry():
    async def scenario():
        store = MemoryStore()
        watcher = RosterSync(store, store.connect())
        await watcher.subscribe()

        conn = store.connect()
        leaver = RosterSync(store, conn)
        player_id = await leaver.select("fay", "left")
        await store.drain()
        assert player_id in watcher.players

        await conn.close()
        await store.drain()
        assert player_id not in watcher.players
        watcher.close()

    asyncio.run(scenario())


def test_reset_before_first_roster_push_evicts():
    async def scenario():
        store = MemoryStore()
        evictions = []

        async def on_evicted():
            evictions.append(True)

        roster = RosterSync(store, store.connect(), on_evicted=on_evicted)
        await roster.subscribe()

        await roster.select("ann", "left")
        await store.set(GAME_ROOT, {"score": 0, "players": {}})
        await store.drain()

        assert evictions == [True]
        assert not roster.joined
        assert roster.connection.armed == []
        roster.close()

    asyncio.run(scenario())


def test_removal_right_after_select_evicts():
    async def scenario():
        store = MemoryStore()
        evictions = []

        async def on_evicted():
            evictions.append(True)

        roster = RosterSync(store, store.connect(), on_evicted=on_evicted)
        await roster.subscribe()

        player_id = await roster.select("bo", "right")
        await store.remove(player_path(player_id))
        await store.drain()

        assert evictions == [True]
        assert roster.player_id is None
        roster.close()

    asyncio.run(scenario())


def test_stale_roster_without_our_entry_keeps_us_joined():
    async def scenario():
        store = MemoryStore()
        evictions = []

        async def on_evicted():
            evictions.append(True)

        roster = RosterSync(store, store.connect(), on_evicted=on_evicted)
        await roster.subscribe()
        player_id = await roster.select("cy", "left")

        # a roster value read before our write finished
        await roster._on_value(None)

        assert evictions == []
        assert roster.player_id == player_id
        await store.drain()
        assert player_id in roster.players
        roster.close()

    asyncio.run(scenario())
