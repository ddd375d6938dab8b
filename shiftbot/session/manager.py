"""
会话历史存储模块 - 按用户持久化、只追加的对话日志。

本模块包含两个类：
- HistoryStore：存储抽象基类，定义 append / load_recent / clear 三个契约
- JsonlHistoryStore：基于 JSONL 文件的实现，每个用户一个文件

【存储格式 - JSONL】
每个用户的历史存储为 <history_dir>/<user_id>.jsonl，每行一个 ConversationTurn：
    {"role": "user", "parts": [{"text": "..."}], "sequence": 1, "timestamp": "..."}
序号（sequence）由存储层分配，单用户内严格递增，作为轮次的全序依据。

【持久性保证】
append 在返回前完成 flush + fsync，崩溃不会丢失已确认的写入；
任何 I/O 失败都转换为 PersistenceError 抛出，绝不静默丢弃。

【并发】
同一用户的 append 由存储层内部的 asyncio.Lock 串行化（即使上层的会话锁被绕过也不会交错写入）；
不同用户之间互不阻塞。

【Java 开发者类比】
- HistoryStore 类似于 Spring Data 的 Repository 接口
- JsonlHistoryStore 类似于一个以文件为后端的 append-only 日志（如 Kafka 的 log segment）
"""

import asyncio
import json
import os
import weakref
from abc import ABC, abstractmethod
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Any

from loguru import logger

from shiftbot.errors import PersistenceError
from shiftbot.session.turns import ConversationTurn
from shiftbot.utils.helpers import ensure_dir, safe_filename


class HistoryStore(ABC):
    """会话历史存储的抽象契约。"""

    @abstractmethod
    async def append(self, user_id: str, turn: ConversationTurn) -> ConversationTurn:
        """
        追加一个轮次，返回带有 sequence / timestamp 的已存储副本。

        异常:
            PersistenceError: 后端不可用。写入失败时绝不静默丢弃。
        """

    @abstractmethod
    async def load_recent(
        self,
        user_id: str,
        user_turn_limit: int = 5,
        fetch_cap: int = 50,
    ) -> list[ConversationTurn]:
        """
        读取最近的历史窗口（按时间升序返回）。

        窗口按"用户轮次数"而非原始消息条数划定：从最新记录向前回溯，
        直到包含 user_turn_limit 个 role == "user" 的轮次，最多读取 fetch_cap 条原始记录。
        未知用户返回空列表。
        """

    @abstractmethod
    async def clear(self, user_id: str) -> None:
        """删除该用户的全部轮次。幂等：清空不存在的会话同样成功。"""


def select_window(
    newest_first: list[ConversationTurn],
    user_turn_limit: int,
) -> list[ConversationTurn]:
    """
    从"新 → 旧"排列的记录中截取窗口，并重排为"旧 → 新"。

    若截取在达到 user_turn_limit 之前就因 fetch_cap 耗尽，窗口开头可能落在某个周期中间
    （model / tool 轮次），此时丢弃开头的非 user 轮次，保证窗口总是从 user 轮次开始。
    """
    window: list[ConversationTurn] = []
    user_turns = 0
    for turn in newest_first:
        window.append(turn)
        if turn.role == "user":
            user_turns += 1
            if user_turns >= user_turn_limit:
                break

    window.sort(key=lambda t: t.sequence or 0)

    # 不让周期被窗口边界截断
    while window and window[0].role != "user":
        window.pop(0)
    return window


class JsonlHistoryStore(HistoryStore):
    """
    基于 JSONL 文件的会话历史存储。

    属性:
        history_dir: 历史文件目录
        _locks: 每个用户一把 asyncio.Lock（弱引用），串行化同一用户的读写
        _last_sequence: 每个用户最后分配的序号缓存（首次访问时从文件恢复）
    """

    def __init__(self, history_dir: Path):
        self.history_dir = ensure_dir(Path(history_dir).expanduser())
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()
        self._last_sequence: dict[str, int] = {}

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        # 无人持有或等待时锁会被回收，空闲用户不常驻内存
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    def _get_path(self, user_id: str) -> Path:
        return self.history_dir / f"{safe_filename(user_id)}.jsonl"

    def _read_records(self, path: Path, cap: int | None = None) -> list[ConversationTurn]:
        """读取文件中的轮次（cap 不为空时只保留最后 cap 条）。损坏的行记录警告后跳过。"""
        if not path.exists():
            return []
        try:
            with open(path, encoding="utf-8") as f:
                lines = deque(f, maxlen=cap) if cap else list(f)
        except OSError as e:
            raise PersistenceError(f"Failed to read history {path}: {e}") from e

        turns = []
        for line in lines:
            line = line.strip()
            if not line:
                continue
            try:
                turns.append(ConversationTurn.from_dict(json.loads(line)))
            except (json.JSONDecodeError, KeyError, ValueError) as e:
                logger.warning(f"Skipping corrupt history record in {path.name}: {e}")
        return turns

    def _resolve_last_sequence(self, user_id: str) -> int:
        if user_id not in self._last_sequence:
            # 最后一行可能是崩溃留下的半截记录，取所有可解析记录中的最大序号
            records = self._read_records(self._get_path(user_id))
            self._last_sequence[user_id] = max((t.sequence or 0 for t in records), default=0)
        return self._last_sequence[user_id]

    async def append(self, user_id: str, turn: ConversationTurn) -> ConversationTurn:
        async with self._lock_for(user_id):
            sequence = self._resolve_last_sequence(user_id) + 1
            stored = turn.stamped(sequence, datetime.now().isoformat())
            line = json.dumps(stored.to_dict(), ensure_ascii=False) + "\n"
            path = self._get_path(user_id)
            try:
                with open(path, "ab+") as f:
                    # 文件末尾缺少换行（上次写入被截断）时先补一个，新记录不会并入损坏的行
                    if f.seek(0, os.SEEK_END) > 0:
                        f.seek(-1, os.SEEK_END)
                        if f.read(1) != b"\n":
                            line = "\n" + line
                    f.write(line.encode("utf-8"))
                    f.flush()
                    os.fsync(f.fileno())
            except (OSError, TypeError) as e:
                raise PersistenceError(f"Failed to append turn for {user_id}: {e}") from e
            self._last_sequence[user_id] = sequence
            return stored

    async def load_recent(
        self,
        user_id: str,
        user_turn_limit: int = 5,
        fetch_cap: int = 50,
    ) -> list[ConversationTurn]:
        async with self._lock_for(user_id):
            records = self._read_records(self._get_path(user_id), cap=fetch_cap)
        records.sort(key=lambda t: t.sequence or 0, reverse=True)
        return select_window(records, user_turn_limit)

    async def clear(self, user_id: str) -> None:
        async with self._lock_for(user_id):
            path = self._get_path(user_id)
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                raise PersistenceError(f"Failed to clear history for {user_id}: {e}") from e
            self._last_sequence.pop(user_id, None)
        logger.info(f"Cleared history for {user_id}")

    def list_sessions(self) -> list[dict[str, Any]]:
        """列出所有存在历史文件的用户，按最后修改时间倒序排列。"""
        sessions = []
        for path in self.history_dir.glob("*.jsonl"):
            stat = path.stat()
            sessions.append({
                "key": path.stem,
                "updated_at": datetime.fromtimestamp(stat.st_mtime).isoformat(),
                "size": stat.st_size,
                "path": str(path),
            })
        return sorted(sessions, key=lambda x: x["updated_at"], reverse=True)
