"""
テスト用の共通フィクスチャ
"""
import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional

import pytest

from farm_tasker.logic.optimistic import TemporaryIdFactory
from farm_tasker.models import Bed, Habit, Plant, SeedStack, ShopItem, Tag, Task
from farm_tasker.store import FarmStateStore


class FakeApi:
    """FarmApiClientの代わりに使うテスト用API"""

    def __init__(self):
        self.user_id = None
        self.calls: List[tuple] = []
        self.fail: Dict[str, Exception] = {}
        self.responses: Dict[str, Any] = {}
        self.gate: Optional[asyncio.Event] = None
        self.next_id = 1000

    async def _handle(self, name: str, *args, default=None):
        self.calls.append((name,) + args)
        if self.gate is not None:
            await self.gate.wait()
        if name in self.fail:
            raise self.fail[name]
        return self.responses.get(name, default)

    def called(self, name: str) -> bool:
        return any(call[0] == name for call in self.calls)

    async def get_sync(self):
        return await self._handle("get_sync", default={})

    async def add_task(self, task):
        self.next_id += 1
        return await self._handle("add_task", task, default=Task(id=self.next_id, title=task.title))

    async def edit_task(self, task):
        return await self._handle("edit_task", task)

    async def delete_task(self, task_id):
        return await self._handle("delete_task", task_id)

    async def done_task(self, task_id):
        return await self._handle("done_task", task_id, default={"xpEarned": 0, "plantsGrown": 0})

    async def undone_task(self, task_id):
        return await self._handle("undone_task", task_id, default={"xpEarned": 0, "plantsGrown": 0})

    async def add_habit(self, habit):
        self.next_id += 1
        return await self._handle("add_habit", habit, default=Habit(id=self.next_id, title=habit.title))

    async def edit_habit(self, habit):
        return await self._handle("edit_habit", habit)

    async def delete_habit(self, habit_id):
        return await self._handle("delete_habit", habit_id)

    async def done_habit(self, habit_id):
        return await self._handle("done_habit", habit_id, default={"xpEarned": 0, "plantsGrown": 0})

    async def undone_habit(self, habit_id):
        return await self._handle("undone_habit", habit_id, default={"xpEarned": 0, "plantsGrown": 0})

    async def create_tag(self, name, color):
        self.next_id += 1
        return await self._handle("create_tag", name, color, default=Tag(id=self.next_id, name=name, color=color))

    async def update_tag(self, tag):
        return await self._handle("update_tag", tag)

    async def delete_tag(self, tag_id):
        return await self._handle("delete_tag", tag_id)

    async def set_plant(self, cell_number, seed_id):
        return await self._handle(
            "set_plant", cell_number, seed_id,
            default=Plant(id=500, name="Wheat", current_growth=0, target_growth=4),
        )

    async def harvest_plant(self, plant_id):
        return await self._handle("harvest_plant", plant_id, default={"xpEarned": 0, "goldEarned": 0})

    async def buy_item(self, good_id):
        return await self._handle("buy_item", good_id, default=200)


class Recorder:
    """コールバックの呼び出しを記録する"""

    def __init__(self):
        self.errors: List[tuple] = []
        self.rewards: List[tuple] = []
        self.level_ups: List[tuple] = []
        self.changes = 0

    def on_error(self, action, message):
        self.errors.append((action, message))

    def on_reward(self, xp, coins):
        self.rewards.append((xp, coins))

    def on_level_up(self, old, new):
        self.level_ups.append((old, new))

    def on_change(self):
        self.changes += 1


@pytest.fixture
def api():
    return FakeApi()


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def store(api, recorder):
    clock = iter(range(1_700_000_000, 1_800_000_000))
    farm = FarmStateStore(api, id_factory=TemporaryIdFactory(clock=lambda: next(clock)))
    farm.on_error = recorder.on_error
    farm.on_reward = recorder.on_reward
    farm.on_level_up = recorder.on_level_up
    farm.on_change = recorder.on_change
    return farm


HOME = Tag(id=1, name="Home", color="#10b981")
WORK = Tag(id=2, name="Work", color="#3b82f6")


@pytest.fixture
def seeded_store(store):
    """タスク・習慣・タグ・畑・種・ショップ入りのストア"""
    store.tags = [HOME, WORK]
    store.tasks = [
        Task(id=1, title="Dishes", difficulty="easy", tag=HOME),
        Task(id=2, title="Report", difficulty="hard", tag=WORK),
        Task(id=3, title="Laundry", difficulty="normal", tag=HOME),
    ]
    store.habits = [
        Habit(id=10, title="Run", count=2, period="day", every=1, start_date=datetime(2024, 1, 1), tag=HOME),
        Habit(id=11, title="Read", count=0, period="week", every=2, start_date=datetime(2024, 1, 1)),
    ]
    store.field = [
        Bed(id=1, plant=Plant(id=100, name="Wheat", current_growth=4, target_growth=4)),
        Bed(id=2, plant=Plant(id=101, name="Carrot", current_growth=1, target_growth=5)),
        Bed(id=3, plant=None),
        Bed(id=4, plant=None, is_lock=True),
        Bed(id=5, plant=None, is_lock=True),
    ]
    store.inventory_seeds = [
        SeedStack(id=1, name="Wheat", icon="wheat.png", target_growth=4, rarity="common", seed_id=1, quantity=1),
        SeedStack(id=2, name="Eggplant", icon="eggplant.png", target_growth=8, rarity="uncommon", seed_id=2, quantity=3),
    ]
    store.shop_items = [
        ShopItem(type="seed", id=7, quantity=2, cost=30,
                 item=SeedStack(id=3, name="Pumpkin", target_growth=10, rarity="rare", seed_id=3, quantity=1)),
        ShopItem(type="bed", id=8, quantity=1, cost=100),
    ]
    return store
