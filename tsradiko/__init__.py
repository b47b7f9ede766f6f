"""
TsRadiko - Radikoタイムフリー番組ダウンローダー

このパッケージは検索リンク・番組詳細リンクからタイムフリー番組を取得し、
1つのAACファイルとして保存します。

主要コンポーネント:
- transport: リトライ付きHTTP通信
- region_mapper: 都道府県情報・放送局→地域IDキャッシュ
- auth: Radiko認証・トークンキャッシュ
- link_resolver: 入力リンクの解決
- program_info: 番組情報取得
- streaming: セグメントURL展開
- segment_downloader: セグメント並列取得・結合
- timefree_recorder: 録音処理の統括
- cli: コマンドライン操作
"""

__version__ = "1.0.0"
__license__ = "MIT"

from .auth import RadikoAuthenticator, KeyMaterial
from .error_handler import TsRadikoError, ErrorSeverity, ErrorCategory, format_error
from .link_resolver import LinkResolver, DetailRef, extract_detail
from .program_info import ProgramInfoManager, ProgramMeta
from .region_mapper import RegionMapper, StationRegionCache
from .segment_downloader import SegmentDownloader
from .streaming import StreamingManager, SegmentRequest
from .timefree_recorder import TimeFreeRecorder, DownloadOptions
from .transport import RetryingTransport, RetryOptions

__all__ = [
    # 通信
    'RetryingTransport',
    'RetryOptions',

    # 認証・地域
    'RadikoAuthenticator',
    'KeyMaterial',
    'RegionMapper',
    'StationRegionCache',

    # リンク・番組情報
    'LinkResolver',
    'DetailRef',
    'extract_detail',
    'ProgramInfoManager',
    'ProgramMeta',

    # ダウンロード
    'StreamingManager',
    'SegmentRequest',
    'SegmentDownloader',
    'TimeFreeRecorder',
    'DownloadOptions',

    # エラーハンドリング
    'TsRadikoError',
    'ErrorSeverity',
    'ErrorCategory',
    'format_error',
]
