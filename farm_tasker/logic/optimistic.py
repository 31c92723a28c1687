"""
楽観的更新ロジック
ローカルに即反映 → サーバー呼び出し → 成功なら確定、失敗ならスナップショットに戻す
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Optional, Set

LOGGER = logging.getLogger(__name__)


class MutationState(Enum):
    APPLIED_LOCALLY = "applied_locally"
    CONFIRMED = "confirmed"
    ROLLED_BACK = "rolled_back"


# 操作カテゴリごとのエラーメッセージ
ERROR_MESSAGES = {
    "add": "追加できませんでした",
    "edit": "変更を保存できませんでした",
    "delete": "削除できませんでした",
    "toggle": "タスクを完了できませんでした",
    "buy": "購入できませんでした",
    "plant": "植えられませんでした",
    "harvest": "収穫できませんでした",
    "sync": "データを同期できませんでした",
}


@dataclass
class Mutation:
    """1回分の楽観的更新"""
    action: str
    snapshot: Any
    state: MutationState = MutationState.APPLIED_LOCALLY
    task: Optional[asyncio.Task] = None
    result: Any = None
    error: Optional[BaseException] = None

    @property
    def is_settled(self) -> bool:
        return self.state is not MutationState.APPLIED_LOCALLY

    async def wait(self) -> MutationState:
        """サーバーの応答を待って最終状態を返す"""
        if self.task is not None:
            await self.task
        return self.state


class OptimisticMutator:
    """楽観的更新の実行役"""

    def __init__(self, on_error: Optional[Callable[[str, str], None]] = None):
        self.on_error = on_error
        # 実行中のタスク（完了時に除去）
        self._pending: Set[asyncio.Task] = set()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def drain(self):
        """実行中のサーバー呼び出しがすべて終わるまで待つ（終了処理・テスト用）"""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    def run(
        self,
        action: str,
        snapshot: Any,
        apply: Callable[[], None],
        remote: Callable[[], Awaitable[Any]],
        reconcile: Optional[Callable[[Any, Any], None]] = None,
        rollback: Optional[Callable[[Any], None]] = None,
        message: Optional[str] = None,
    ) -> Mutation:
        """
        ローカル変更を即適用し、サーバー呼び出しをバックグラウンドで開始する

        snapshotは呼び出し側が変更前に取得した不変のコピー。
        rollbackはsnapshotだけを使って元に戻すこと。
        """
        apply()

        mutation = Mutation(action=action, snapshot=snapshot)
        loop = asyncio.get_running_loop()
        mutation.task = loop.create_task(
            self._settle(mutation, remote, reconcile, rollback, message)
        )
        self._pending.add(mutation.task)
        mutation.task.add_done_callback(self._pending.discard)
        return mutation

    async def _settle(self, mutation: Mutation, remote, reconcile, rollback, message):
        try:
            result = await remote()
            mutation.result = result
            if reconcile is not None:
                reconcile(mutation.snapshot, result)
        except Exception as e:
            LOGGER.warning("Remote %s failed, rolling back: %s", mutation.action, e)
            mutation.error = e
            if rollback is not None:
                rollback(mutation.snapshot)
            mutation.state = MutationState.ROLLED_BACK
            self.notify_error(mutation.action, message)
            return

        mutation.state = MutationState.CONFIRMED
        LOGGER.debug("Remote %s confirmed", mutation.action)

    def notify_error(self, action: str, message: Optional[str] = None):
        """ユーザー向けのエラー通知"""
        text = message or ERROR_MESSAGES.get(action, "エラーが発生しました")
        if self.on_error:
            self.on_error(action, text)


class TemporaryIdFactory:
    """サーバーIDが決まるまでの仮ID（ミリ秒時刻ベース、単調増加）"""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._last = 0

    def next_id(self, existing: Iterable[int] = ()) -> int:
        candidate = max(int(self._clock() * 1000), self._last + 1)
        taken = set(existing)
        while candidate in taken:
            candidate += 1

        self._last = candidate
        return candidate
