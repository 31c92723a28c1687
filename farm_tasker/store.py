"""
ファーム状態管理クラス
プレイヤー・タスク・習慣・タグ・畑・種・ショップを保持し、
すべての変更を楽観的更新で行う
"""
import logging
from dataclasses import replace
from datetime import datetime
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional

import httpx

from . import config
from .cloud.api_client import FarmApiError
from .cloud.snapshot import SnapshotDecodeError, decode_snapshot
from .logic.growth import GrowthAdvancer
from .logic.optimistic import Mutation, OptimisticMutator, TemporaryIdFactory
from .logic.rewards import RewardApplier
from .models import (
    Bed,
    FarmSnapshot,
    Habit,
    Plant,
    Player,
    SeedStack,
    ShopItem,
    Tag,
    Task,
    default_field,
)

LOGGER = logging.getLogger(__name__)

# プレイヤーのうち、完了操作で変わる項目
ACTIVITY_FIELDS = ("streak", "did_task_today", "is_drought")


def _find(items, item_id: int):
    for item in items:
        if item.id == item_id:
            return item
    return None


def _replace_by_id(items, item_id: int, new_item) -> list:
    return [new_item if item.id == item_id else item for item in items]


def _ok(**extra) -> Dict[str, Any]:
    result = {"success": True}
    result.update(extra)
    return result


def _fail(message: str) -> Dict[str, Any]:
    return {"success": False, "message": message}


class FarmStateStore:
    """ファームの状態を一括で管理するクラス"""

    def __init__(
        self,
        api,
        rows: int = config.FIELD_ROWS,
        cols: int = config.FIELD_COLS,
        id_factory: Optional[TemporaryIdFactory] = None,
    ):
        self.api = api
        self.user_id = 0

        # プレイヤー
        self.player = Player()
        self.rewards = RewardApplier(self.player)
        self.rewards.apply_xp(0, force=True)

        # コレクション
        self.tasks: List[Task] = []
        self.habits: List[Habit] = []
        self.tags: List[Tag] = []
        self.rows = rows
        self.cols = cols
        self.field: List[Bed] = default_field(rows, cols)
        self.inventory_seeds: List[SeedStack] = []
        self.shop_items: List[ShopItem] = []

        self.growth = GrowthAdvancer()
        self.mutator = OptimisticMutator(on_error=self._emit_error)
        self.temp_ids = id_factory or TemporaryIdFactory()

        # コールバック
        self.on_reward: Optional[Callable[[int, int], None]] = None  # (xp, coins)
        self.on_error: Optional[Callable[[str, str], None]] = None  # (action, message)
        self.on_level_up: Optional[Callable[[int, int], None]] = None  # (old, new)
        self.on_change: Optional[Callable[[], None]] = None

    # === 通知 ===

    def _changed(self):
        if self.on_change:
            self.on_change()

    def _emit_error(self, action: str, message: str):
        if self.on_error:
            self.on_error(action, message)

    def _emit_reward(self, xp: int = 0, coins: int = 0):
        if xp <= 0 and coins <= 0:
            return
        if self.on_reward:
            self.on_reward(xp, coins)

    def _after_xp_change(self, levels):
        old_level, new_level = levels
        if new_level > old_level and self.on_level_up:
            self.on_level_up(old_level, new_level)
        self._changed()

    # === スナップショット ===

    def _capture(self, **extra) -> Mapping[str, Any]:
        """変更前の状態を不変のコピーとして取得"""
        snapshot = {"player": replace(self.player)}
        snapshot.update(extra)
        return MappingProxyType(snapshot)

    def _restore_player_fields(self, snapshot: Mapping[str, Any], names):
        saved = snapshot["player"]
        for name in names:
            setattr(self.player, name, getattr(saved, name))

    # === プレイヤー ===

    def set_user_id(self, user_id: int):
        """ユーザーIDをセット（以降のリクエストに付与される）"""
        self.user_id = user_id
        self.api.user_id = user_id

    def set_drought(self, is_drought: bool):
        self.player.is_drought = is_drought
        self._changed()

    def set_xp(self, xp: int):
        self._after_xp_change(self.rewards.apply_xp(max(0, xp)))

    def add_xp(self, xp: int):
        self._after_xp_change(self.rewards.grant_xp(xp))

    def remove_xp(self, xp: int):
        self._after_xp_change(self.rewards.spend_xp(xp))

    def set_coins(self, coins: int):
        self.rewards.set_coins(coins)
        self._changed()

    def add_coins(self, coins: int):
        self.rewards.grant_coins(coins)
        self._changed()

    def remove_coins(self, coins: int):
        self.rewards.spend_coins(coins)
        self._changed()

    # === 同期 ===

    def apply_snapshot(self, snapshot: FarmSnapshot):
        """検証済みスナップショットで状態を置き換える（空の配列ではローカルを消さない）"""
        for warning in snapshot.warnings:
            LOGGER.warning("Sync data incomplete: %s", warning)

        player = self.player
        player.coins = snapshot.coins
        player.streak = snapshot.streak
        player.did_task_today = snapshot.did_task_today
        player.is_drought = snapshot.is_drought
        self.rewards.apply_xp(snapshot.current_xp, force=True)

        if snapshot.tasks:
            self.tasks = list(snapshot.tasks)
        if snapshot.habits:
            self.habits = list(snapshot.habits)
        if snapshot.tags:
            self.tags = list(snapshot.tags)
        if snapshot.beds:
            self.field = list(snapshot.beds)
        if snapshot.inventory_seeds:
            self.inventory_seeds = [s for s in snapshot.inventory_seeds if s.quantity > 0]
        if snapshot.shop_items:
            self.shop_items = list(snapshot.shop_items)

        LOGGER.info(
            "Synced: xp=%d level=%d coins=%d tasks=%d habits=%d",
            player.current_xp, player.current_level, player.coins,
            len(self.tasks), len(self.habits),
        )
        self._changed()

    def apply_server_data(self, payload: Any) -> Dict[str, Any]:
        """サーバーの同期データを検証して反映"""
        try:
            snapshot = decode_snapshot(payload)
        except SnapshotDecodeError as e:
            LOGGER.error("Invalid sync data: %s", e)
            self.mutator.notify_error("sync")
            return _fail(str(e))

        self.apply_snapshot(snapshot)
        return _ok()

    async def sync(self) -> Dict[str, Any]:
        """サーバーから全データを取得して反映"""
        try:
            payload = await self.api.get_sync()
        except (httpx.HTTPError, FarmApiError) as e:
            LOGGER.error("Sync failed: %s", e)
            self.mutator.notify_error("sync")
            return _fail(str(e))

        return self.apply_server_data(payload)

    # === 完了報酬 ===

    def _mark_activity(self):
        """完了/取り消し共通：日照り解除とストリーク更新"""
        player = self.player
        player.is_drought = False
        if not player.did_task_today:
            player.streak += 1
        player.did_task_today = True

    def _apply_completion_reward(self, snapshot, result):
        if not isinstance(result, Mapping):
            raise ValueError("empty reward response")

        xp_earned = int(result.get("xpEarned") or 0)
        plants_grown = int(result.get("plantsGrown") or 0)

        self.add_xp(xp_earned)
        self._emit_reward(xp_earned)

        if plants_grown > 0:
            self.advance_growth()

    # === タスク・習慣 共通 ===

    def _add_entity(self, collection: str, entity, remote: Callable) -> Mutation:
        temp_id = entity.id

        def apply():
            setattr(self, collection, getattr(self, collection) + [entity])
            self._changed()

        def reconcile(snapshot, server_entity):
            current = getattr(self, collection)
            pending = _find(current, snapshot["temp_id"])
            if pending is not None:
                setattr(self, collection, _replace_by_id(current, snapshot["temp_id"], replace(pending, id=server_entity.id)))
                self._changed()

        def rollback(snapshot):
            setattr(self, collection, [e for e in getattr(self, collection) if e.id != snapshot["temp_id"]])
            self._changed()

        return self.mutator.run(
            "add", self._capture(temp_id=temp_id), apply, lambda: remote(entity), reconcile, rollback,
        )

    def _edit_entity(self, collection: str, entity_id: int, changes: Dict[str, Any], remote: Callable) -> Optional[Mutation]:
        original = _find(getattr(self, collection), entity_id)
        if original is None:
            LOGGER.debug("Edit ignored: %s %s not found", collection, entity_id)
            return None

        updated = replace(original, **changes)

        def apply():
            setattr(self, collection, _replace_by_id(getattr(self, collection), entity_id, updated))
            self._changed()

        def rollback(snapshot):
            current = getattr(self, collection)
            if _find(current, entity_id) is not None:
                setattr(self, collection, _replace_by_id(current, entity_id, snapshot["original"]))
                self._changed()

        return self.mutator.run(
            "edit", self._capture(original=original), apply, lambda: remote(updated), None, rollback,
        )

    def _remove_entity(self, collection: str, entity_id: int, remote: Callable) -> Optional[Mutation]:
        original = _find(getattr(self, collection), entity_id)
        if original is None:
            LOGGER.debug("Remove ignored: %s %s not found", collection, entity_id)
            return None

        def apply():
            setattr(self, collection, [e for e in getattr(self, collection) if e.id != entity_id])
            self._changed()

        def rollback(snapshot):
            current = list(getattr(self, collection))
            if _find(current, entity_id) is None:
                current.insert(min(snapshot["index"], len(current)), snapshot["original"])
                setattr(self, collection, current)
                self._changed()

        index = getattr(self, collection).index(original)
        return self.mutator.run(
            "delete", self._capture(original=original, index=index), apply, lambda: remote(entity_id), None, rollback,
        )

    # === タスク ===

    def toggle_task(self, task_id: int) -> Optional[Mutation]:
        """タスクの完了/未完了を切り替える"""
        task = _find(self.tasks, task_id)
        if task is None:
            LOGGER.debug("Toggle ignored: task %s not found", task_id)
            return None

        new_done = not task.done

        def apply():
            self.tasks = _replace_by_id(self.tasks, task_id, replace(task, done=new_done))
            self._mark_activity()
            self._changed()

        def remote():
            if new_done:
                return self.api.done_task(task_id)
            return self.api.undone_task(task_id)

        def rollback(snapshot):
            current = _find(self.tasks, task_id)
            if current is not None:
                self.tasks = _replace_by_id(self.tasks, task_id, replace(current, done=snapshot["original"].done))
            self._restore_player_fields(snapshot, ACTIVITY_FIELDS)
            self._changed()

        return self.mutator.run(
            "toggle", self._capture(original=task), apply, remote, self._apply_completion_reward, rollback,
        )

    def add_task(
        self,
        title: str,
        description: str = "",
        difficulty: str = "normal",
        date: Optional[datetime] = None,
        tag: Optional[Tag] = None,
    ) -> Mutation:
        """タスクを追加（サーバーIDが返るまでは仮ID）"""
        task = Task(
            id=self.temp_ids.next_id(t.id for t in self.tasks),
            title=title,
            description=description,
            difficulty=difficulty,
            date=date,
            tag=tag,
        )
        return self._add_entity("tasks", task, self.api.add_task)

    def edit_task(
        self,
        task_id: int,
        title: str,
        description: str = "",
        difficulty: str = "normal",
        date: Optional[datetime] = None,
        tag: Optional[Tag] = None,
    ) -> Optional[Mutation]:
        changes = dict(title=title, description=description, difficulty=difficulty, date=date, tag=tag)
        return self._edit_entity("tasks", task_id, changes, self.api.edit_task)

    def remove_task(self, task_id: int) -> Optional[Mutation]:
        return self._remove_entity("tasks", task_id, self.api.delete_task)

    # === 習慣 ===

    def toggle_habit(self, habit_id: int) -> Optional[Mutation]:
        """習慣の完了/未完了を切り替える（回数は0未満にしない）"""
        habit = _find(self.habits, habit_id)
        if habit is None:
            LOGGER.debug("Toggle ignored: habit %s not found", habit_id)
            return None

        new_done = not habit.done
        new_count = habit.count + 1 if new_done else max(0, habit.count - 1)

        def apply():
            self.habits = _replace_by_id(self.habits, habit_id, replace(habit, done=new_done, count=new_count))
            self._mark_activity()
            self._changed()

        def remote():
            if new_done:
                return self.api.done_habit(habit_id)
            return self.api.undone_habit(habit_id)

        def rollback(snapshot):
            original = snapshot["original"]
            current = _find(self.habits, habit_id)
            if current is not None:
                restored = replace(current, done=original.done, count=original.count)
                self.habits = _replace_by_id(self.habits, habit_id, restored)
            self._restore_player_fields(snapshot, ACTIVITY_FIELDS)
            self._changed()

        return self.mutator.run(
            "toggle", self._capture(original=habit), apply, remote, self._apply_completion_reward, rollback,
        )

    def add_habit(
        self,
        title: str,
        description: str = "",
        difficulty: str = "normal",
        period: str = "day",
        every: int = 1,
        start_date: Optional[datetime] = None,
        tag: Optional[Tag] = None,
    ) -> Mutation:
        habit = Habit(
            id=self.temp_ids.next_id(h.id for h in self.habits),
            title=title,
            description=description,
            difficulty=difficulty,
            period=period,
            every=every,
            start_date=start_date or datetime.now(),
            tag=tag,
        )
        return self._add_entity("habits", habit, self.api.add_habit)

    def edit_habit(
        self,
        habit_id: int,
        title: str,
        description: str = "",
        difficulty: str = "normal",
        period: str = "day",
        every: int = 1,
        start_date: Optional[datetime] = None,
        tag: Optional[Tag] = None,
    ) -> Optional[Mutation]:
        changes = dict(
            title=title, description=description, difficulty=difficulty,
            period=period, every=every, tag=tag,
        )
        if start_date is not None:
            changes["start_date"] = start_date
        return self._edit_entity("habits", habit_id, changes, self.api.edit_habit)

    def remove_habit(self, habit_id: int) -> Optional[Mutation]:
        return self._remove_entity("habits", habit_id, self.api.delete_habit)

    # === タグ ===

    def _retag(self, tag_id: int, new_tag: Optional[Tag], only_ids=None):
        """tag_idを参照しているタスク・習慣のタグを差し替える"""
        for collection in ("tasks", "habits"):
            updated = []
            for entity in getattr(self, collection):
                if only_ids is not None:
                    hit = entity.id in only_ids[collection]
                else:
                    hit = entity.tag is not None and entity.tag.id == tag_id
                updated.append(replace(entity, tag=new_tag) if hit else entity)
            setattr(self, collection, updated)

    def _tag_references(self, tag_id: int) -> Dict[str, frozenset]:
        return {
            collection: frozenset(
                e.id for e in getattr(self, collection)
                if e.tag is not None and e.tag.id == tag_id
            )
            for collection in ("tasks", "habits")
        }

    def create_tag(self, name: str, color: str) -> Mutation:
        """タグを作成"""
        temp_id = self.temp_ids.next_id(t.id for t in self.tags)
        tag = Tag(id=temp_id, name=name, color=color)

        def apply():
            self.tags = self.tags + [tag]
            self._changed()

        def reconcile(snapshot, server_tag):
            durable = Tag(id=server_tag.id, name=name, color=color)
            if _find(self.tags, snapshot["temp_id"]) is not None:
                self.tags = _replace_by_id(self.tags, snapshot["temp_id"], durable)
            # 仮IDのまま付けられたタグも差し替える
            self._retag(snapshot["temp_id"], durable)
            self._changed()

        def rollback(snapshot):
            self.tags = [t for t in self.tags if t.id != snapshot["temp_id"]]
            self._retag(snapshot["temp_id"], None)
            self._changed()

        return self.mutator.run(
            "add", self._capture(temp_id=temp_id), apply,
            lambda: self.api.create_tag(name, color), reconcile, rollback,
        )

    def update_tag(self, tag_id: int, name: str, color: str) -> Optional[Mutation]:
        """タグ名・色を変更（参照しているタスク・習慣にも反映）"""
        original = _find(self.tags, tag_id)
        if original is None:
            LOGGER.debug("Update ignored: tag %s not found", tag_id)
            return None

        updated = Tag(id=tag_id, name=name, color=color)

        def apply():
            self.tags = _replace_by_id(self.tags, tag_id, updated)
            self._retag(tag_id, updated)
            self._changed()

        def rollback(snapshot):
            saved = snapshot["original"]
            if _find(self.tags, tag_id) is not None:
                self.tags = _replace_by_id(self.tags, tag_id, saved)
            self._retag(tag_id, saved, only_ids=snapshot["references"])
            self._changed()

        snapshot = self._capture(original=original, references=self._tag_references(tag_id))
        return self.mutator.run(
            "edit", snapshot, apply, lambda: self.api.update_tag(updated), None, rollback,
        )

    def delete_tag(self, tag_id: int) -> Optional[Mutation]:
        """タグを削除し、参照しているタスク・習慣からも外す"""
        original = _find(self.tags, tag_id)
        if original is None:
            LOGGER.debug("Delete ignored: tag %s not found", tag_id)
            return None

        def apply():
            self.tags = [t for t in self.tags if t.id != tag_id]
            self._retag(tag_id, None)
            self._changed()

        def rollback(snapshot):
            saved = snapshot["original"]
            if _find(self.tags, tag_id) is None:
                tags = list(self.tags)
                tags.insert(min(snapshot["index"], len(tags)), saved)
                self.tags = tags
            self._retag(tag_id, saved, only_ids=snapshot["references"])
            self._changed()

        snapshot = self._capture(
            original=original, index=self.tags.index(original), references=self._tag_references(tag_id),
        )
        return self.mutator.run(
            "delete", snapshot, apply, lambda: self.api.delete_tag(tag_id), None, rollback,
        )

    # === 畑 ===

    def unlock_next_bed(self) -> Dict[str, Any]:
        """ロックされている最初の畑を解放"""
        for index, bed in enumerate(self.field):
            if bed.is_lock:
                field = list(self.field)
                field[index] = replace(bed, is_lock=False)
                self.field = field
                self._changed()
                return _ok(bed_id=bed.id)

        return _fail("すべての畑が解放済みです")

    def advance_growth(self):
        """成長途中の作物を1段階成長させる（日照り中は何もしない）"""
        if self.player.is_drought:
            LOGGER.debug("Growth skipped: drought")
            return

        LOGGER.debug("Advancing %d growing plants", self.growth.count_growing(self.field))
        self.field = self.growth.advance(self.field, self.player.is_drought)
        self._changed()

    def plant_seed(self, bed_id: int, seed_id: int) -> Dict[str, Any]:
        """種を植える（在庫を1減らしてサーバーに送る）"""
        seed = next((s for s in self.inventory_seeds if s.seed_id == seed_id), None)
        bed = _find(self.field, bed_id)

        if seed is None or seed.quantity <= 0:
            return _fail("種がありません")
        if bed is None or bed.plant is not None or bed.is_lock:
            return _fail("この畑には植えられません")

        seed_index = self.inventory_seeds.index(seed)
        pending_plant = Plant(
            id=self.temp_ids.next_id(b.plant.id for b in self.field if b.plant is not None),
            name=seed.name,
            current_growth=0,
            target_growth=seed.target_growth,
            img_path=seed.icon,
        )

        def apply():
            seeds = [replace(s, quantity=s.quantity - 1) if s.seed_id == seed_id else s for s in self.inventory_seeds]
            self.inventory_seeds = [s for s in seeds if s.quantity > 0]
            self.field = _replace_by_id(self.field, bed_id, replace(bed, plant=pending_plant))
            self._changed()

        def reconcile(snapshot, server_plant):
            current = _find(self.field, bed_id)
            if current is not None and current.plant is not None and current.plant.id == snapshot["pending_plant"].id:
                self.field = _replace_by_id(self.field, bed_id, replace(current, plant=server_plant))
                self._changed()

        def rollback(snapshot):
            saved_seed = snapshot["seed"]
            current_seed = next((s for s in self.inventory_seeds if s.seed_id == seed_id), None)
            if current_seed is None:
                seeds = list(self.inventory_seeds)
                seeds.insert(min(snapshot["seed_index"], len(seeds)), saved_seed)
                self.inventory_seeds = seeds
            else:
                restored = replace(current_seed, quantity=current_seed.quantity + 1)
                self.inventory_seeds = [restored if s is current_seed else s for s in self.inventory_seeds]

            current_bed = _find(self.field, bed_id)
            if current_bed is not None and current_bed.plant is not None and current_bed.plant.id == snapshot["pending_plant"].id:
                self.field = _replace_by_id(self.field, bed_id, replace(current_bed, plant=None))
            self._changed()

        snapshot = self._capture(seed=seed, seed_index=seed_index, bed=bed, pending_plant=pending_plant)
        mutation = self.mutator.run(
            "plant", snapshot, apply, lambda: self.api.set_plant(bed_id, seed_id), reconcile, rollback,
        )
        return _ok(mutation=mutation)

    def harvest_plant(self, bed_id: int) -> Dict[str, Any]:
        """育ちきった作物を収穫する"""
        bed = _find(self.field, bed_id)
        if bed is None or bed.plant is None:
            return _fail("収穫できる作物がありません")
        if not bed.plant.is_grown:
            return _fail("まだ育っていません")

        plant = bed.plant

        def apply():
            self.field = _replace_by_id(self.field, bed_id, replace(bed, plant=None))
            self._changed()

        def reconcile(snapshot, result):
            if not isinstance(result, Mapping):
                raise ValueError("empty harvest response")
            xp_earned = int(result.get("xpEarned") or 0)
            gold_earned = int(result.get("goldEarned") or 0)

            self.add_xp(xp_earned)
            self.add_coins(gold_earned)
            self._emit_reward(xp_earned, gold_earned)

        def rollback(snapshot):
            current = _find(self.field, bed_id)
            if current is not None and current.plant is None:
                self.field = _replace_by_id(self.field, bed_id, replace(current, plant=snapshot["plant"]))
                self._changed()

        mutation = self.mutator.run(
            "harvest", self._capture(plant=plant), apply,
            lambda: self.api.harvest_plant(plant.id), reconcile, rollback,
        )
        return _ok(mutation=mutation)

    # === 種 ===

    def add_seed_to_inventory(self, seed: SeedStack):
        """種を1つ在庫に追加（同じ種なら数を増やす）"""
        existing = next((s for s in self.inventory_seeds if s.seed_id == seed.seed_id), None)
        if existing is not None:
            restacked = replace(existing, quantity=existing.quantity + 1)
            self.inventory_seeds = [restacked if s is existing else s for s in self.inventory_seeds]
        else:
            self.inventory_seeds = self.inventory_seeds + [replace(seed, quantity=1)]
        self._changed()

    # === ショップ ===

    def _find_good(self, good_type: str, good_id: int) -> int:
        for index, item in enumerate(self.shop_items):
            if item.type == good_type and item.id == good_id:
                return index
        return -1

    def decrease_shop_item(self, good_type: str, good_id: int) -> Dict[str, Any]:
        """商品の在庫を1減らす（0になったら削除）"""
        index = self._find_good(good_type, good_id)
        if index == -1:
            return _fail("商品が見つかりません")

        item = self.shop_items[index]
        if item.quantity <= 1:
            self.shop_items = [s for i, s in enumerate(self.shop_items) if i != index]
        else:
            items = list(self.shop_items)
            items[index] = replace(item, quantity=item.quantity - 1)
            self.shop_items = items

        self._changed()
        return _ok()

    def remove_shop_item(self, good_type: str, good_id: int) -> Dict[str, Any]:
        if self._find_good(good_type, good_id) == -1:
            return _fail("商品が見つかりません")

        self.shop_items = [
            s for s in self.shop_items if not (s.type == good_type and s.id == good_id)
        ]
        self._changed()
        return _ok()

    async def buy_item(self, good_type: str, good_id: int) -> Dict[str, Any]:
        """
        商品を購入（サーバーの確認後に反映）

        コイン不足はサーバーに問い合わせずに失敗を返す
        """
        index = self._find_good(good_type, good_id)
        if index == -1:
            return _fail("商品が見つかりません")

        item = self.shop_items[index]
        if self.player.coins < item.cost:
            return _fail("コインが足りません")

        try:
            status = await self.api.buy_item(good_id)
        except (httpx.HTTPError, FarmApiError) as e:
            LOGGER.warning("Buy %s %s failed: %s", good_type, good_id, e)
            status = None

        if status != 200:
            self.mutator.notify_error("buy")
            return _fail("購入できませんでした")

        self.remove_coins(item.cost)
        if item.type == "seed":
            if item.item is not None:
                self.add_seed_to_inventory(item.item)
        elif item.type == "bed":
            self.unlock_next_bed()

        self.decrease_shop_item(good_type, good_id)
        LOGGER.info("Bought %s %s for %d coins", good_type, good_id, item.cost)
        return _ok()
