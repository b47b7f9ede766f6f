"""
キャンセル・タイムアウト管理ユーティリティ

リクエスト単位のキャンセル信号と期限を表す CancelScope を提供します。
ネットワーク呼び出し・バックオフ待機・ワーカーのディスパッチは
すべてこのスコープを参照して早期終了します。
"""

import threading
import time
from typing import List, Optional

from tsradiko.error_handler import OperationCancelledError


class CancelScope:
    """キャンセル信号と期限（deadline）を持つスコープ

    子スコープは親のキャンセルを引き継ぎ、期限は親と自身の早い方になる。

    Usage:
        scope = CancelScope(timeout=600)
        scope.raise_if_cancelled()
        if scope.wait(0.5):
            ...  # 待機中にキャンセルされた
    """

    def __init__(self, timeout: Optional[float] = None,
                 parent: Optional['CancelScope'] = None):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._children: List['CancelScope'] = []
        self._reason = "operation cancelled"

        deadline = time.monotonic() + timeout if timeout is not None else None
        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
        self.deadline = deadline

        if parent is not None:
            parent._attach(self)

    def _attach(self, child: 'CancelScope') -> None:
        with self._lock:
            if self._event.is_set():
                child.cancel(self._reason)
                return
            self._children.append(child)

    def child(self, timeout: Optional[float] = None) -> 'CancelScope':
        """子スコープを作成"""
        return CancelScope(timeout=timeout, parent=self)

    def cancel(self, reason: str = "operation cancelled") -> None:
        """スコープと全ての子スコープをキャンセル"""
        with self._lock:
            if self._event.is_set():
                return
            self._reason = reason
            self._event.set()
            children = list(self._children)
        for child in children:
            child.cancel(reason)

    @property
    def cancelled(self) -> bool:
        """キャンセル済み、または期限切れか"""
        if self._event.is_set():
            return True
        if self.deadline is not None and time.monotonic() >= self.deadline:
            self.cancel("deadline exceeded")
            return True
        return False

    def remaining(self) -> Optional[float]:
        """期限までの残り秒数（期限なしはNone）"""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def raise_if_cancelled(self) -> None:
        """キャンセル済みなら OperationCancelledError を送出"""
        if self.cancelled:
            raise OperationCancelledError(self._reason)

    def wait(self, seconds: float) -> bool:
        """指定秒数待機する（期限で打ち切り）

        Returns:
            bool: 待機中にキャンセルまたは期限切れになった場合True
        """
        if self.cancelled:
            return True
        remaining = self.remaining()
        if remaining is not None and remaining < seconds:
            self._event.wait(remaining)
            return self.cancelled
        self._event.wait(max(0.0, seconds))
        return self.cancelled


def background_scope() -> CancelScope:
    """期限もキャンセル元もない既定スコープ"""
    return CancelScope()
