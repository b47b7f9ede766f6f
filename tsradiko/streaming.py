"""
ストリーミング処理モジュール

このモジュールはタイムフリー番組の放送時間をセグメントURLの一覧に展開します。
- 放送局ごとのプレイリスト生成URLの取得
- 300秒単位のシーク窓によるプレイリスト要求
- チャンクリスト（M3U8）からのセグメントURL抽出

M3U8は行単位、XMLは正規表現による最小限の抽出で扱う。
"#EXTINF" を伴わないURL行も保持する必要があるため、HLSパーサーは使わない。
"""

import re
import secrets
from dataclasses import dataclass
from typing import Dict, List, Optional

from .error_handler import PlaylistExpiredError, ProtocolViolationError, TransportError
from .utils.base import LoggerMixin
from .utils.cancellation import CancelScope
from .utils.datetime_utils import parse_timestamp, step_timestamp

SEEK_WINDOW_SECONDS = 300

_PLAYLIST_CREATE_URL_PATTERN = re.compile(r'<playlist_create_url>(.*?)</playlist_create_url>')


@dataclass(frozen=True)
class SegmentRequest:
    """セグメント展開に必要なパラメータ一式"""
    station_id: str
    ft: str
    to: str
    token: str
    area_id: str

    @property
    def auth_headers(self) -> Dict[str, str]:
        return {
            'X-Radiko-AreaId': self.area_id,
            'X-Radiko-AuthToken': self.token,
        }


def data_lines(m3u8_text: str) -> List[str]:
    """空行・コメント行（#始まり）を除いた行を出現順に返す"""
    lines = []
    for line in m3u8_text.split('\n'):
        line = line.strip()
        if not line or line.startswith('#'):
            continue
        lines.append(line)
    return lines


def first_data_line(m3u8_text: str) -> str:
    """最初のデータ行

    Raises:
        ProtocolViolationError: データ行がない場合
    """
    lines = data_lines(m3u8_text)
    if not lines:
        raise ProtocolViolationError("m3u8 has no media lines")
    return lines[0]


def count_seek_windows(ft: str, to: str) -> int:
    """[ft, to) を覆うシーク窓の数"""
    seconds = (parse_timestamp(to) - parse_timestamp(ft)).total_seconds()
    if seconds <= 0:
        return 0
    return int(-(-seconds // SEEK_WINDOW_SECONDS))


class StreamingManager(LoggerMixin):
    """タイムフリー配信のセグメントURL展開を管理するクラス"""

    STREAM_DESCRIPTOR_URL = "https://radiko.jp/v3/station/stream/pc_html5/{station_id}.xml"
    DEFAULT_PLAYLIST_CREATE_URL = "https://tf-f-rpaa-radiko.smartstream.ne.jp/tf/playlist.m3u8"

    def __init__(self, transport):
        super().__init__()
        self.transport = transport

    def playlist_create_url(self, station_id: str,
                            scope: Optional[CancelScope] = None) -> str:
        """放送局のプレイリスト生成URLを取得

        記述がない放送局は既定のエンドポイントを使う。

        Raises:
            TransportError: 放送局XMLの取得が2xx以外の場合
        """
        url = self.STREAM_DESCRIPTOR_URL.format(station_id=station_id)
        status, xml_text = self.transport.get_text(url, scope=scope)
        if status < 200 or status >= 300:
            raise TransportError(f"station stream xml failed: {status}", status_code=status)

        match = _PLAYLIST_CREATE_URL_PATTERN.search(xml_text)
        if match:
            return match.group(1).strip()
        self.logger.debug(f"playlist_create_url なし、既定URLを使用: {station_id}")
        return self.DEFAULT_PLAYLIST_CREATE_URL

    def build_playlist_url(self, base: str, request: SegmentRequest, seek: str) -> str:
        """シーク窓ごとのプレイリストURL"""
        return (
            f"{base}?lsid={secrets.token_hex(16)}&station_id={request.station_id}"
            f"&l={SEEK_WINDOW_SECONDS}&start_at={request.ft}&end_at={request.to}"
            f"&type=b&ft={request.ft}&to={request.to}&seek={seek}"
        )

    def expand_segments(self, request: SegmentRequest,
                        scope: Optional[CancelScope] = None) -> List[str]:
        """放送時間 [ft, to) をセグメントURLの順序付き一覧に展開

        Returns:
            List[str]: セグメントURL（空の場合もある）

        Raises:
            PlaylistExpiredError: プレイリストが403または "expired" を返した場合
            TransportError: プレイリスト・チャンクリストが2xx以外の場合
            ProtocolViolationError: プレイリストにデータ行がない場合
            ValueError: ft / to がタイムスタンプとして不正な場合
        """
        base = self.playlist_create_url(request.station_id, scope)
        end = parse_timestamp(request.to)
        segments: List[str] = []
        seek = request.ft
        windows = 0

        while parse_timestamp(seek) < end:
            playlist_url = self.build_playlist_url(base, request, seek)
            status, playlist_text = self.transport.get_text(
                playlist_url, headers=request.auth_headers, scope=scope
            )
            if status == 403 or playlist_text.strip() == "expired":
                raise PlaylistExpiredError(
                    f"playlist window expired at seek={seek}: {status}",
                    context={'seek': seek, 'status_code': status}
                )
            if status < 200 or status >= 300:
                raise TransportError(
                    f"playlist request failed at seek={seek}: {status}", status_code=status
                )

            chunklist_url = first_data_line(playlist_text)
            chunk_status, chunk_text = self.transport.get_text(chunklist_url, scope=scope)
            if chunk_status < 200 or chunk_status >= 300:
                raise TransportError(
                    f"chunklist request failed: {chunk_status}", status_code=chunk_status
                )
            segments.extend(data_lines(chunk_text))

            windows += 1
            seek = step_timestamp(seek, SEEK_WINDOW_SECONDS)

        self.logger.info(
            f"セグメント展開完了: {request.station_id} {request.ft}-{request.to} "
            f"窓数={windows} セグメント数={len(segments)}"
        )
        return segments
