"""
タイムフリー録音モジュール

このモジュールはリンク1件分のタイムフリー録音の全工程を統括します。
- 入力リンクの詳細リンクへの解決
- 放送局の地域ID解決と認証トークン取得
- 番組情報取得とセグメントURL展開
- セグメントの並列取得・結合
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Union

from .auth import RadikoAuthenticator
from .error_handler import NoSegmentsError
from .link_resolver import LinkResolver, extract_detail
from .program_info import ProgramInfoManager
from .region_mapper import StationRegionCache
from .segment_downloader import DEFAULT_CONCURRENCY, SegmentDownloader
from .streaming import SegmentRequest, StreamingManager
from .utils.base import LoggerMixin
from .utils.cancellation import CancelScope, background_scope


@dataclass
class DownloadOptions:
    """ダウンロード設定"""
    output_dir: Union[str, Path] = "downloads"
    area_id: Optional[str] = None
    on_progress: Optional[Callable[[int, int], None]] = None


class TimeFreeRecorder(LoggerMixin):
    """タイムフリー録音クラス

    各コンポーネントは共有トランスポートから生成するか、
    呼び出し側で生成したものを注入する（地域キャッシュ・認証キャッシュを
    複数の録音で共有する場合）。
    """

    def __init__(self, transport,
                 authenticator: Optional[RadikoAuthenticator] = None,
                 region_cache: Optional[StationRegionCache] = None,
                 link_resolver: Optional[LinkResolver] = None,
                 program_manager: Optional[ProgramInfoManager] = None,
                 streaming_manager: Optional[StreamingManager] = None,
                 segment_downloader: Optional[SegmentDownloader] = None,
                 concurrency: int = DEFAULT_CONCURRENCY):
        super().__init__()
        self.transport = transport
        self.authenticator = authenticator or RadikoAuthenticator(transport)
        self.region_cache = region_cache or StationRegionCache(transport)
        self.link_resolver = link_resolver or LinkResolver(transport)
        self.program_manager = program_manager or ProgramInfoManager(transport)
        self.streaming_manager = streaming_manager or StreamingManager(transport)
        self.segment_downloader = segment_downloader or SegmentDownloader(transport, concurrency)

    def resolve_to_detail(self, raw_link: str, scope: Optional[CancelScope] = None) -> str:
        """入力リンクを詳細リンクに解決"""
        return self.link_resolver.resolve_to_detail(raw_link, scope or background_scope())

    def download_from_detail(self, detail_url: str, options: DownloadOptions,
                             scope: Optional[CancelScope] = None) -> str:
        """詳細リンクから番組を録音

        地域IDが指定されていなければ放送局から解決する。

        Returns:
            str: 出力ファイルの絶対パス

        Raises:
            InvalidLinkError: 詳細リンクの形式不正
            RegionNotFoundError: 放送局の地域IDが見つからない
            NoSegmentsError: セグメントが0件の場合
            TsRadikoError: 各工程のエラー（そのまま送出）
        """
        scope = scope or background_scope()
        detail = extract_detail(detail_url)

        area_id = options.area_id
        if not area_id:
            area_id = self.region_cache.resolve(detail.station_id, scope)
        self.logger.info(f"録音開始: {detail.station_id} {detail.ft} (地域: {area_id})")

        token = self.authenticator.retrieve_token(area_id, scope)
        meta = self.program_manager.resolve_meta(detail.station_id, detail.ft, scope)

        segment_urls = self.streaming_manager.expand_segments(
            SegmentRequest(
                station_id=detail.station_id,
                ft=meta.ft,
                to=meta.to,
                token=token,
                area_id=area_id,
            ),
            scope,
        )
        if not segment_urls:
            raise NoSegmentsError(f"no segments found: {detail.station_id} {meta.ft}-{meta.to}")

        output_path = self.segment_downloader.fetch_and_merge(
            segment_urls, options.output_dir, meta.to_filename(),
            on_progress=options.on_progress, scope=scope,
        )
        self.logger.info(f"録音完了: {output_path}")
        return output_path

    def download(self, raw_link: str, output_dir: Union[str, Path] = "downloads",
                 area_id: Optional[str] = None,
                 on_progress: Optional[Callable[[int, int], None]] = None,
                 scope: Optional[CancelScope] = None) -> str:
        """入力リンク（検索または詳細）から番組を録音

        全工程で同じキャンセルスコープを使う。

        Returns:
            str: 出力ファイルの絶対パス
        """
        scope = scope or background_scope()
        detail_url = self.resolve_to_detail(raw_link, scope)
        options = DownloadOptions(output_dir=output_dir, area_id=area_id, on_progress=on_progress)
        return self.download_from_detail(detail_url, options, scope)
