"""
セグメント並列ダウンロードモジュール

このモジュールはAACセグメントを並列に取得し、1つのファイルに結合します。
- ワーカースレッドによる並列取得（既定8並列）
- 最初のエラーの保持と全体の失敗
- ID3ヘッダーの除去
- 元の順序での結合とファイル書き込み
"""

import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, List, Optional, Union

from .error_handler import OperationCancelledError, SegmentDownloadError
from .utils.base import LoggerMixin
from .utils.cancellation import CancelScope, background_scope
from .utils.path_utils import ensure_directory_path_exists

DEFAULT_CONCURRENCY = 8
ID3_SIGNATURE = b'ID3'
ID3_HEADER_LENGTH = 10

ProgressCallback = Callable[[int, int], None]


def parse_id3_header_size(data: bytes) -> int:
    """先頭のID3v2ヘッダーのバイト長（ヘッダーがなければ0）

    サイズはヘッダーの6〜9バイト目をビッグエンディアンで読んだ値に
    10バイトの固定部を加えたもの。
    """
    if len(data) < ID3_HEADER_LENGTH or data[:3] != ID3_SIGNATURE:
        return 0
    size = (data[6] << 24) | (data[7] << 16) | (data[8] << 8) | data[9]
    return ID3_HEADER_LENGTH + size


def strip_id3_header(data: bytes) -> bytes:
    """ID3ヘッダーを除去（宣言長が本体を超える場合はそのまま）"""
    header_size = parse_id3_header_size(data)
    if header_size > len(data):
        header_size = 0
    return data[header_size:]


class SegmentDownloader(LoggerMixin):
    """セグメント並列ダウンロード・結合クラス"""

    def __init__(self, transport, concurrency: int = DEFAULT_CONCURRENCY):
        super().__init__()
        self.transport = transport
        self.concurrency = concurrency if concurrency and concurrency > 0 else DEFAULT_CONCURRENCY

    def fetch_and_merge(self, urls: List[str], output_dir: Union[str, Path], file_name: str,
                        on_progress: Optional[ProgressCallback] = None,
                        scope: Optional[CancelScope] = None) -> str:
        """全セグメントを取得して元の順序で結合し、ファイルに書き込む

        Args:
            urls: セグメントURL（この順序で結合）
            output_dir: 出力ディレクトリ（なければ作成）
            file_name: 出力ファイル名
            on_progress: 進捗コールバック (完了数, 総数)
            scope: キャンセルスコープ

        Returns:
            str: 出力ファイルの絶対パス

        Raises:
            SegmentDownloadError: いずれかのセグメント取得に失敗した場合（最初のエラー）
            OperationCancelledError: キャンセル・期限切れ
            OSError: ファイル書き込みに失敗した場合
        """
        scope = scope or background_scope()
        output_path = ensure_directory_path_exists(output_dir)

        total = len(urls)
        self._notify_progress(on_progress, 0, total)

        results: List[Optional[bytes]] = [None] * total
        tasks: queue.Queue = queue.Queue(maxsize=self.concurrency)
        first_error: List[Union[SegmentDownloadError, OperationCancelledError]] = []
        error_lock = threading.Lock()
        progress_lock = threading.Lock()
        done = [0]

        def latch(error: Exception) -> None:
            with error_lock:
                if not first_error:
                    first_error.append(error)

        def worker() -> None:
            while True:
                task = tasks.get()
                if task is None:
                    return
                index, url = task
                # エラー確定後はキューを空にするだけ
                if first_error:
                    continue
                try:
                    status, body = self.transport.get_bytes(url, scope=scope)
                    if status < 200 or status >= 300:
                        raise SegmentDownloadError(
                            f"segment fetch failed: {status} ({url})",
                            segment_index=index, status_code=status
                        )
                except (SegmentDownloadError, OperationCancelledError) as e:
                    latch(e)
                    continue
                except Exception as e:
                    # ワーカーは止めずにキューの排出を続ける
                    wrapped = SegmentDownloadError(
                        f"segment fetch failed: {e} ({url})",
                        segment_index=index, status_code=getattr(e, 'status_code', None)
                    )
                    wrapped.__cause__ = e
                    latch(wrapped)
                    continue

                results[index] = strip_id3_header(body)
                with progress_lock:
                    done[0] += 1
                    self._notify_progress(on_progress, done[0], total)

        workers = max(1, min(self.concurrency, total))
        self.logger.info(f"セグメントダウンロード開始: {total}セグメント ({workers}並列)")

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix='segment') as executor:
            futures = [executor.submit(worker) for _ in range(workers)]
            try:
                for index, url in enumerate(urls):
                    if scope.cancelled:
                        break
                    tasks.put((index, url))
            finally:
                for _ in range(workers):
                    tasks.put(None)
            for future in futures:
                future.result()

        scope.raise_if_cancelled()
        if first_error:
            raise first_error[0]

        target = output_path / file_name
        with open(target, 'wb') as f:
            for segment in results:
                f.write(segment)

        absolute_path = str(target.resolve())
        self.logger.info(f"セグメント結合完了: {absolute_path} ({done[0]}/{total})")
        return absolute_path

    def _notify_progress(self, on_progress: Optional[ProgressCallback], done: int, total: int) -> None:
        if on_progress is None:
            return
        try:
            on_progress(done, total)
        except Exception as e:
            self.logger.warning(f"進捗コールバックエラー: {e}")
