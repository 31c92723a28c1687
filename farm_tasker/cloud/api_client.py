"""
ファームAPIクライアント（HTTP API版）
httpxの非同期クライアントでサーバーを呼び出す
"""
from datetime import datetime
from typing import Any, Dict, Optional

import httpx

from .. import config
from ..models import Habit, Plant, Tag, Task
from .snapshot import habit_from_dict, plant_from_dict, tag_from_dict, task_from_dict

USER_ID_HEADER = "X-User-ID"
SYNC_PATH = "/users/sync"


class FarmApiError(Exception):
    """サーバーがエラーを返した"""

    def __init__(self, method: str, path: str, status_code: int, detail: str = ""):
        super().__init__(f"{method} {path} failed with status {status_code}: {detail}")
        self.method = method
        self.path = path
        self.status_code = status_code
        self.detail = detail


def to_local_iso_with_offset(value: datetime) -> str:
    """UTCオフセット付きのISO文字列（naiveはローカル時刻とみなす）"""
    if value.tzinfo is None:
        value = value.astimezone()
    return value.isoformat(timespec="seconds")


def _date_or_none(value: Optional[datetime]) -> Optional[str]:
    return to_local_iso_with_offset(value) if value else None


class FarmApiClient:
    """ファームAPIの呼び出しを管理するクラス"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        user_id: Optional[int] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url if base_url is not None else config.API_BASE_URL
        self.user_id = user_id
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout if timeout is not None else config.API_TIMEOUT,
            transport=transport,
        )

    async def __aenter__(self) -> "FarmApiClient":
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def aclose(self):
        await self._client.aclose()

    @property
    def effective_user_id(self) -> int:
        """ヘッダーに載せるユーザーID（未設定なら仮ID）"""
        return self.user_id or config.DEFAULT_USER_ID

    def _get_headers(self) -> Dict[str, str]:
        """APIヘッダーを取得"""
        headers = {"Content-Type": "application/json"}
        user_id = self.effective_user_id
        if user_id:
            headers[USER_ID_HEADER] = str(user_id)
        return headers

    async def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> httpx.Response:
        return await self._client.request(method, path, json=json, headers=self._get_headers())

    async def _call(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Any:
        response = await self._request(method, path, json)
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise FarmApiError(method, path, response.status_code, response.text) from e

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise FarmApiError(method, path, response.status_code, f"invalid JSON: {e}") from e

    # === 同期 ===

    async def get_sync(self) -> Dict[str, Any]:
        """全データを取得（検証前の生データ）"""
        return await self._call("GET", SYNC_PATH)

    # === タスク ===

    @staticmethod
    def _task_body(task: Task) -> Dict[str, Any]:
        return {
            "title": task.title,
            "description": task.description or "",
            "difficulty": task.difficulty,
            "date": _date_or_none(task.date),
            "tagId": task.tag.id if task.tag else None,
        }

    async def get_tasks(self) -> list:
        data = await self._call("GET", "/tasks")
        return [task_from_dict(t) for t in data or []]

    async def add_task(self, task: Task) -> Task:
        data = await self._call("POST", "/tasks", self._task_body(task))
        if not data:
            raise FarmApiError("POST", "/tasks", 200, "empty response")
        return task_from_dict(data)

    async def edit_task(self, task: Task) -> Any:
        body = self._task_body(task)
        body["done"] = task.done
        return await self._call("PUT", f"/tasks/{task.id}", body)

    async def delete_task(self, task_id: int) -> Any:
        return await self._call("DELETE", f"/tasks/{task_id}")

    async def done_task(self, task_id: int) -> Dict[str, int]:
        return await self._call("PATCH", f"/tasks/{task_id}/done")

    async def undone_task(self, task_id: int) -> Dict[str, int]:
        return await self._call("PATCH", f"/tasks/{task_id}/undone")

    # === 習慣 ===

    @staticmethod
    def _habit_body(habit: Habit) -> Dict[str, Any]:
        return {
            "title": habit.title,
            "description": habit.description or "",
            "difficulty": habit.difficulty,
            "period": habit.period,
            "every": habit.every,
            "startDate": _date_or_none(habit.start_date),
            "tagId": habit.tag.id if habit.tag else None,
        }

    async def get_habits(self) -> list:
        data = await self._call("GET", "/habits")
        return [habit_from_dict(h) for h in data or []]

    async def add_habit(self, habit: Habit) -> Habit:
        body = self._habit_body(habit)
        body["count"] = 0
        data = await self._call("POST", "/habits", body)
        if not data:
            raise FarmApiError("POST", "/habits", 200, "empty response")
        return habit_from_dict(data)

    async def edit_habit(self, habit: Habit) -> Any:
        body = self._habit_body(habit)
        body["done"] = habit.done
        body["count"] = habit.count
        return await self._call("PUT", f"/habits/{habit.id}", body)

    async def delete_habit(self, habit_id: int) -> Any:
        return await self._call("DELETE", f"/habits/{habit_id}")

    async def done_habit(self, habit_id: int) -> Dict[str, int]:
        return await self._call("PATCH", f"/habits/{habit_id}/done")

    async def undone_habit(self, habit_id: int) -> Dict[str, int]:
        return await self._call("PATCH", f"/habits/{habit_id}/undone")

    # === タグ ===

    async def create_tag(self, name: str, color: str) -> Tag:
        data = await self._call("POST", "/tags", {"name": name, "color": color})
        if not data:
            raise FarmApiError("POST", "/tags", 200, "empty response")
        return tag_from_dict(data)

    async def update_tag(self, tag: Tag) -> Any:
        return await self._call("PUT", f"/tags/{tag.id}", {"name": tag.name, "color": tag.color})

    async def delete_tag(self, tag_id: int) -> Any:
        return await self._call("DELETE", f"/tags/{tag_id}")

    # === 畑 ===

    async def set_plant(self, cell_number: int, seed_id: int) -> Plant:
        """種を植える"""
        data = await self._call("POST", "/user-plants", {"cellNumber": cell_number, "seedId": seed_id})
        if not data:
            raise FarmApiError("POST", "/user-plants", 200, "empty response")
        return plant_from_dict(data)

    async def harvest_plant(self, plant_id: int) -> Dict[str, int]:
        """収穫（{xpEarned, goldEarned}を返す）"""
        return await self._call("POST", f"/user-plants/{plant_id}/harvest")

    # === ショップ ===

    async def buy_item(self, good_id: int) -> int:
        """商品を購入してステータスコードを返す"""
        response = await self._request("POST", f"/goods/{good_id}/buy")
        return response.status_code
