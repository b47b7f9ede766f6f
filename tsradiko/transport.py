"""
HTTP通信モジュール

このモジュールはRadiko APIへのHTTP通信を一元管理します。
- 一時的な障害（タイムアウト・接続リセット・5xx・429）の再試行
- 指数バックオフ + ジッター
- キャンセルスコープによる即時中断
- 共有コネクションプール
"""

import random
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple, TypeVar

import requests

from .error_handler import (
    OperationCancelledError, TransportPermanentError, TransportTransientError
)
from .utils.base import LoggerMixin
from .utils.cancellation import CancelScope, background_scope
from .utils.network_utils import create_radiko_session

T = TypeVar('T')

DEFAULT_RETRIES = 3
DEFAULT_BASE_DELAY = 0.3
DEFAULT_MAX_DELAY = 2.0
DEFAULT_TIMEOUT = 30.0

# 接続エラーのうち一時的とみなすメッセージ断片
_TRANSIENT_MARKERS = (
    'connection reset', 'connection aborted', 'timeout', 'timed out',
    'eof', 'temporar', 'remote end closed', 'broken pipe'
)


@dataclass(frozen=True)
class RetryOptions:
    """リトライ設定

    retries は初回以降の再試行回数（総試行回数は retries + 1）。
    base_delay は初回の待機秒数、max_delay はジッター加算前の上限。
    """
    retries: Optional[int] = None
    base_delay: float = DEFAULT_BASE_DELAY
    max_delay: float = DEFAULT_MAX_DELAY

    def with_defaults(self) -> 'RetryOptions':
        """未設定・不正値を既定値で補完"""
        retries = self.retries
        if retries is None or retries < 0:
            retries = DEFAULT_RETRIES
        base_delay = self.base_delay if self.base_delay > 0 else DEFAULT_BASE_DELAY
        max_delay = self.max_delay if self.max_delay > 0 else DEFAULT_MAX_DELAY
        return RetryOptions(retries=retries, base_delay=base_delay, max_delay=max_delay)


def backoff_with_jitter(options: RetryOptions, attempt: int) -> float:
    """attempt回目（0始まり）の待機秒数: min(base * 2^attempt, max) + [0, delay/4]"""
    delay = min(options.base_delay * (2 ** attempt), options.max_delay)
    return delay + random.uniform(0, delay / 4)


def is_transient_error(error: BaseException) -> bool:
    """requests例外が一時的な障害かどうかを判定"""
    if isinstance(error, (requests.Timeout, requests.exceptions.ChunkedEncodingError)):
        return True
    if isinstance(error, requests.ConnectionError):
        message = str(error).lower()
        return any(marker in message for marker in _TRANSIENT_MARKERS)
    return False


def retry_operation(operation: Callable[[], T],
                    options: RetryOptions,
                    scope: Optional[CancelScope] = None,
                    on_retry: Optional[Callable[[int, Exception, float], None]] = None) -> T:
    """operation を成功・キャンセル・試行回数超過まで実行

    TransportTransientError のみ再試行し、それ以外の例外はそのまま送出する。
    試行回数を超えた場合は最後の TransportTransientError を送出する。

    Raises:
        OperationCancelledError: 試行前または待機中にキャンセルされた場合
    """
    options = options.with_defaults()
    scope = scope or background_scope()
    last_error: Optional[TransportTransientError] = None

    for attempt in range(options.retries + 1):
        scope.raise_if_cancelled()
        try:
            return operation()
        except TransportTransientError as e:
            last_error = e
            if attempt >= options.retries:
                break
            delay = backoff_with_jitter(options, attempt)
            if on_retry:
                on_retry(attempt, e, delay)
            if scope.wait(delay):
                raise OperationCancelledError("cancelled while waiting to retry") from e

    raise last_error


class RetryingTransport(LoggerMixin):
    """リトライ付きHTTPトランスポート

    全コンポーネントが1インスタンスを共有し、requests.Session の
    コネクションプールを再利用する。
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT,
                 retry: Optional[RetryOptions] = None,
                 session: Optional[requests.Session] = None):
        super().__init__()
        self.timeout = timeout if timeout and timeout > 0 else DEFAULT_TIMEOUT
        self.retry = (retry or RetryOptions()).with_defaults()
        self.session = session or create_radiko_session()

    def execute(self, method: str, url: str,
                headers: Optional[Dict[str, str]] = None,
                scope: Optional[CancelScope] = None) -> requests.Response:
        """HTTPリクエストを実行（本文は読み込み済み・接続は解放済み）

        Returns:
            requests.Response: 5xx/429以外の応答（2xx以外も返す）

        Raises:
            TransportTransientError: 再試行しても一時的障害が解消しない場合
            TransportPermanentError: 再試行しない通信エラー
            OperationCancelledError: キャンセル・期限切れ
        """
        scope = scope or background_scope()

        def attempt() -> requests.Response:
            scope.raise_if_cancelled()
            response = None
            try:
                response = self.session.request(
                    method, url, headers=headers, timeout=self._request_timeout(scope)
                )
                # 本文を必ず読み切る
                _ = response.content
            except requests.RequestException as e:
                if scope.cancelled:
                    raise OperationCancelledError(f"request cancelled: {url}") from e
                if is_transient_error(e):
                    raise TransportTransientError(f"{method} {url} failed: {e}") from e
                raise TransportPermanentError(f"{method} {url} failed: {e}") from e
            finally:
                if response is not None:
                    response.close()

            if response.status_code >= 500 or response.status_code == 429:
                raise TransportTransientError(
                    f"retryable status: {response.status_code} ({url})",
                    status_code=response.status_code
                )
            return response

        return retry_operation(attempt, self.retry, scope, on_retry=self._log_retry)

    def get_text(self, url: str, headers: Optional[Dict[str, str]] = None,
                 scope: Optional[CancelScope] = None) -> Tuple[int, str]:
        """GETしてステータスコードとUTF-8テキスト本文を返す"""
        response = self.execute('GET', url, headers=headers, scope=scope)
        return response.status_code, response.content.decode('utf-8', errors='replace')

    def get_bytes(self, url: str, headers: Optional[Dict[str, str]] = None,
                  scope: Optional[CancelScope] = None) -> Tuple[int, bytes]:
        """GETしてステータスコードとバイト列本文を返す"""
        response = self.execute('GET', url, headers=headers, scope=scope)
        return response.status_code, response.content

    def close(self) -> None:
        """コネクションプールを解放"""
        self.session.close()

    def _request_timeout(self, scope: CancelScope) -> float:
        remaining = scope.remaining()
        if remaining is None:
            return self.timeout
        return max(0.001, min(self.timeout, remaining))

    def _log_retry(self, attempt: int, error: Exception, delay: float) -> None:
        self.logger.warning(
            f"通信再試行 ({attempt + 1}/{self.retry.retries}) {delay:.2f}秒後: {error}"
        )
