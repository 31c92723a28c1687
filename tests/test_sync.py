"""同期データの検証と反映のテスト"""
from datetime import timedelta

import httpx
import pytest

from farm_tasker.cloud.api_client import FarmApiClient
from farm_tasker.cloud.snapshot import SnapshotDecodeError, decode_snapshot
from farm_tasker.logic.level_calculator import LevelCalculator
from farm_tasker.models import SeedStack
from farm_tasker.store import FarmStateStore


def sync_payload(**overrides):
    payload = {
        "currentXp": 160,
        "coins": 40,
        "streak": 3,
        "didTaskToday": True,
        "isDrought": False,
        "tasks": [
            {"id": 1, "title": "Dishes", "difficulty": "easy", "done": False,
             "date": "2024-05-01T09:00:00+03:00", "tag": {"id": 1, "name": "Home", "color": "#10b981"}},
        ],
        "habits": [
            {"id": 10, "title": "Run", "difficulty": "normal", "done": True, "count": 4,
             "period": "week", "every": 1, "startDate": "2024-01-01T00:00:00Z", "tag": None},
        ],
        "tags": [{"id": 1, "name": "Home", "color": "#10b981"}],
        "field": [
            {"id": 1, "isLock": False,
             "plant": {"id": 5, "name": "Wheat", "currentGrowth": 2, "targetGrowth": 4, "imgPath": "wheat"}},
            {"id": 2, "isLock": True, "plant": None},
        ],
        "inventorySeeds": [
            {"id": 1, "name": "Wheat", "icon": "w.png", "targetGrowth": 4, "rarity": "common", "quantity": 2, "seedId": 1},
        ],
        "shopItems": [
            {"type": "bed", "id": 8, "quantity": 1, "cost": 100},
        ],
    }
    payload.update(overrides)
    return payload


def test_decode_full_payload():
    snapshot = decode_snapshot(sync_payload())

    assert snapshot.current_xp == 160
    assert snapshot.tasks[0].tag.name == "Home"
    assert snapshot.tasks[0].date.utcoffset() == timedelta(hours=3)
    assert snapshot.habits[0].count == 4
    assert snapshot.habits[0].start_date.utcoffset() == timedelta(0)
    assert snapshot.beds[0].plant.current_growth == 2
    assert snapshot.beds[1].is_lock is True
    assert snapshot.inventory_seeds[0].seed_id == 1
    assert snapshot.shop_items[0].item is None
    assert snapshot.warnings == []


def test_missing_scalars_default_and_missing_arrays_are_absent():
    snapshot = decode_snapshot({"tasks": []})

    assert snapshot.current_xp == 0
    assert snapshot.coins == 0
    assert snapshot.did_task_today is False
    assert snapshot.tasks == []
    assert snapshot.habits is None
    assert snapshot.shop_items is None
    assert "missing currentXp" in snapshot.warnings


def test_legacy_keys_are_accepted():
    payload = sync_payload(strick=9, shopItem=[{"type": "seed", "id": 3, "quantity": 1, "cost": 5}])
    del payload["streak"]
    del payload["shopItems"]

    snapshot = decode_snapshot(payload)
    assert snapshot.streak == 9
    assert snapshot.shop_items[0].id == 3


@pytest.mark.parametrize("payload, path", [
    ([], "sync"),
    ({"tasks": {"id": 1}}, "sync.tasks"),
    ({"currentXp": "lots"}, "sync.currentXp"),
    ({"tasks": [{"title": "no id"}]}, "sync.tasks[0].id"),
    ({"habits": [{"id": 1, "startDate": "yesterday"}]}, "sync.habits[0].startDate"),
    ({"tasks": [{"id": 1, "difficulty": "epic"}]}, "sync.tasks[0].difficulty"),
    ({"shopItems": [{"id": 1, "type": "tractor"}]}, "sync.shopItems[0].type"),
])
def test_invalid_payload_raises_structured_error(payload, path):
    with pytest.raises(SnapshotDecodeError) as excinfo:
        decode_snapshot(payload)
    assert excinfo.value.path == path


def test_apply_server_data_derives_level(store):
    assert store.apply_server_data(sync_payload())["success"] is True

    player = store.player
    assert player.current_level == LevelCalculator.calculate_level(160) == 4
    assert player.current_level_xp == 2
    assert player.xp_to_next_level == 58
    assert player.coins == 40
    assert player.streak == 3
    assert [t.id for t in store.tasks] == [1]
    assert store.field[0].plant.name == "Wheat"
    assert len(store.field) == 2


def test_empty_collections_keep_local_state(store):
    local_seed = SeedStack(id=1, name="Wheat", seed_id=1, quantity=1)
    store.inventory_seeds = [local_seed]

    store.apply_server_data(sync_payload(inventorySeeds=[], shopItems=None, field=[]))
    assert store.inventory_seeds == [local_seed]
    assert store.shop_items == []
    assert len(store.field) == 9


def test_invalid_sync_leaves_state_and_reports(store, recorder):
    store.set_coins(12)

    result = store.apply_server_data({"coins": "many"})
    assert result["success"] is False
    assert store.player.coins == 12
    assert recorder.errors[0][0] == "sync"


@pytest.mark.asyncio
async def test_sync_fetches_and_applies(store, api):
    api.responses["get_sync"] = sync_payload()

    assert (await store.sync())["success"] is True
    assert store.player.current_xp == 160


@pytest.mark.asyncio
async def test_sync_transport_failure_is_reported(store, api, recorder):
    api.fail["get_sync"] = httpx.ConnectError("offline")

    result = await store.sync()
    assert result["success"] is False
    assert recorder.errors == [("sync", "データを同期できませんでした")]


@pytest.mark.parametrize("value", [59.9, float("inf")])
def test_fractional_numbers_are_rejected(value):
    with pytest.raises(SnapshotDecodeError) as excinfo:
        decode_snapshot({"currentXp": value})
    assert excinfo.value.path == "sync.currentXp"


def test_integral_float_is_accepted():
    assert decode_snapshot({"currentXp": 60.0}).current_xp == 60


@pytest.mark.asyncio
async def test_sync_with_non_json_body_is_reported(recorder):
    transport = httpx.MockTransport(lambda r: httpx.Response(200, content=b"<html>oops</html>"))
    client = FarmApiClient(base_url="http://farm.test", user_id=1, transport=transport)
    farm = FarmStateStore(client)
    farm.on_error = recorder.on_error
    farm.set_coins(12)

    async with client:
        result = await farm.sync()

    assert result["success"] is False
    assert "invalid JSON" in result["message"]
    assert farm.player.coins == 12
    assert recorder.errors == [("sync", "データを同期できませんでした")]
