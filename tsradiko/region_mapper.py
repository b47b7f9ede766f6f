"""
地域IDマッピングモジュール

このモジュールは地域ID（JP1〜JP47）に関する機能を提供します。
- 47都道府県の地域ID・名称・代表座標（位置情報偽装の基準点）
- 都道府県名（日本語・英語）から地域IDへの変換
- 放送局ID → 地域ID のプロセス内キャッシュ（全地域ウォームアップ付き）
"""

import re
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .error_handler import (
    InvalidRegionError, OperationCancelledError, RegionNotFoundError, TsRadikoError
)
from .utils.base import LoggerMixin
from .utils.cancellation import CancelScope, background_scope


@dataclass(frozen=True)
class RegionInfo:
    """地域情報"""
    area_id: str           # 地域ID（JP13等）
    prefecture_ja: str     # 都道府県名（日本語）
    prefecture_en: str     # 都道府県名（英語）
    latitude: float        # 県庁所在地の緯度
    longitude: float       # 県庁所在地の経度


class RegionMapper:
    """地域IDマッピングクラス"""

    # 地域ID順（JP1〜JP47）
    REGIONS: Tuple[RegionInfo, ...] = (
        RegionInfo("JP1", "北海道", "Hokkaido", 43.064615, 141.346807),
        RegionInfo("JP2", "青森県", "Aomori", 40.824308, 140.739998),
        RegionInfo("JP3", "岩手県", "Iwate", 39.703619, 141.152684),
        RegionInfo("JP4", "宮城県", "Miyagi", 38.268837, 140.8721),
        RegionInfo("JP5", "秋田県", "Akita", 39.718614, 140.102364),
        RegionInfo("JP6", "山形県", "Yamagata", 38.240436, 140.363633),
        RegionInfo("JP7", "福島県", "Fukushima", 37.750299, 140.467551),
        RegionInfo("JP8", "茨城県", "Ibaraki", 36.341811, 140.446793),
        RegionInfo("JP9", "栃木県", "Tochigi", 36.565725, 139.883565),
        RegionInfo("JP10", "群馬県", "Gunma", 36.390668, 139.060406),
        RegionInfo("JP11", "埼玉県", "Saitama", 35.856999, 139.648849),
        RegionInfo("JP12", "千葉県", "Chiba", 35.605057, 140.123306),
        RegionInfo("JP13", "東京都", "Tokyo", 35.689488, 139.691706),
        RegionInfo("JP14", "神奈川県", "Kanagawa", 35.447507, 139.642345),
        RegionInfo("JP15", "新潟県", "Niigata", 37.902552, 139.023095),
        RegionInfo("JP16", "富山県", "Toyama", 36.695291, 137.211338),
        RegionInfo("JP17", "石川県", "Ishikawa", 36.594682, 136.625573),
        RegionInfo("JP18", "福井県", "Fukui", 36.065178, 136.221527),
        RegionInfo("JP19", "山梨県", "Yamanashi", 35.664158, 138.568449),
        RegionInfo("JP20", "長野県", "Nagano", 36.651299, 138.180956),
        RegionInfo("JP21", "岐阜県", "Gifu", 35.391227, 136.722291),
        RegionInfo("JP22", "静岡県", "Shizuoka", 34.97712, 138.383084),
        RegionInfo("JP23", "愛知県", "Aichi", 35.180188, 136.906565),
        RegionInfo("JP24", "三重県", "Mie", 34.730283, 136.508588),
        RegionInfo("JP25", "滋賀県", "Shiga", 35.004531, 135.86859),
        RegionInfo("JP26", "京都府", "Kyoto", 35.021247, 135.755597),
        RegionInfo("JP27", "大阪府", "Osaka", 34.686297, 135.519661),
        RegionInfo("JP28", "兵庫県", "Hyogo", 34.691269, 135.183071),
        RegionInfo("JP29", "奈良県", "Nara", 34.685334, 135.832742),
        RegionInfo("JP30", "和歌山県", "Wakayama", 34.225987, 135.167509),
        RegionInfo("JP31", "鳥取県", "Tottori", 35.503891, 134.237736),
        RegionInfo("JP32", "島根県", "Shimane", 35.472295, 133.0505),
        RegionInfo("JP33", "岡山県", "Okayama", 34.661751, 133.934406),
        RegionInfo("JP34", "広島県", "Hiroshima", 34.39656, 132.459622),
        RegionInfo("JP35", "山口県", "Yamaguchi", 34.185956, 131.470649),
        RegionInfo("JP36", "徳島県", "Tokushima", 34.065718, 134.55936),
        RegionInfo("JP37", "香川県", "Kagawa", 34.340149, 134.043444),
        RegionInfo("JP38", "愛媛県", "Ehime", 33.841624, 132.765681),
        RegionInfo("JP39", "高知県", "Kochi", 33.559706, 133.531079),
        RegionInfo("JP40", "福岡県", "Fukuoka", 33.606576, 130.418297),
        RegionInfo("JP41", "佐賀県", "Saga", 33.249442, 130.299794),
        RegionInfo("JP42", "長崎県", "Nagasaki", 32.744839, 129.873756),
        RegionInfo("JP43", "熊本県", "Kumamoto", 32.789827, 130.741667),
        RegionInfo("JP44", "大分県", "Oita", 33.238172, 131.612619),
        RegionInfo("JP45", "宮崎県", "Miyazaki", 31.911096, 131.423893),
        RegionInfo("JP46", "鹿児島県", "Kagoshima", 31.560146, 130.557978),
        RegionInfo("JP47", "沖縄県", "Okinawa", 26.2124, 127.680932),
    )

    _AREA_ID_PATTERN = re.compile(r'^JP(\d{1,2})$', re.IGNORECASE)

    @classmethod
    def all_area_ids(cls) -> List[str]:
        """全地域IDを番号の昇順で取得"""
        return [info.area_id for info in cls.REGIONS]

    @classmethod
    def area_number(cls, area_id: str) -> Optional[int]:
        """地域IDの番号部分（JP13 → 13）。範囲外・不正はNone"""
        if not area_id:
            return None
        match = cls._AREA_ID_PATTERN.match(area_id.strip())
        if not match:
            return None
        number = int(match.group(1))
        if number < 1 or number > len(cls.REGIONS):
            return None
        return number

    @classmethod
    def validate_area_id(cls, area_id: str) -> bool:
        """地域IDの妥当性を確認"""
        return cls.area_number(area_id) is not None

    @classmethod
    def get_region_info(cls, area_id: str) -> Optional[RegionInfo]:
        """地域IDから詳細情報を取得"""
        number = cls.area_number(area_id)
        return cls.REGIONS[number - 1] if number else None

    @classmethod
    def get_seed_coordinate(cls, area_id: str) -> Tuple[float, float]:
        """位置情報偽装の基準座標（緯度, 経度）を取得

        Raises:
            InvalidRegionError: 地域IDが JP1〜JP47 の範囲外の場合
        """
        info = cls.get_region_info(area_id)
        if info is None:
            raise InvalidRegionError(f"invalid area id: {area_id}")
        return info.latitude, info.longitude

    @classmethod
    def get_area_id(cls, name: str) -> Optional[str]:
        """地域ID・都道府県名（日本語/英語）から地域IDを取得

        Example:
            RegionMapper.get_area_id("jp13")    # "JP13"
            RegionMapper.get_area_id("東京")     # "JP13"
            RegionMapper.get_area_id("osaka")   # "JP27"
        """
        if not name or not name.strip():
            return None
        name = name.strip()

        number = cls.area_number(name)
        if number:
            return f"JP{number}"

        lowered = name.lower()
        for info in cls.REGIONS:
            if name == info.prefecture_ja or lowered == info.prefecture_en.lower():
                return info.area_id
            # 「都」「府」「県」を省略した表記（北海道は省略形なし）
            if info.prefecture_ja[-1] in "都府県" and name == info.prefecture_ja[:-1]:
                return info.area_id
        return None

    @classmethod
    def get_prefecture_name(cls, area_id: str) -> Optional[str]:
        """地域IDから都道府県名（日本語）を取得"""
        info = cls.get_region_info(area_id)
        return info.prefecture_ja if info else None


@dataclass
class FetchOutcome:
    """1地域分の放送局一覧取得結果"""
    area_id: str
    ok: bool
    station_count: int = 0
    error: Optional[Exception] = None


_STATION_ID_PATTERN = re.compile(r'<id>(.*?)</id>', re.DOTALL)


def extract_station_ids(xml_text: str) -> List[str]:
    """地域の放送局一覧XMLから <id> の値を抽出

    小さく構造の安定したXMLなので、パーサーを使わず正規表現で走査する。
    """
    ids = []
    for raw in _STATION_ID_PATTERN.findall(xml_text):
        station_id = raw.strip()
        if station_id:
            ids.append(station_id)
    return ids


class StationRegionCache(LoggerMixin):
    """放送局ID → 地域ID キャッシュ

    プロセス内で1インスタンスを共有する。エントリは削除されず、
    同じ放送局に対しては最初に書き込まれた地域IDが保持される。
    全地域ウォームアップは最初の呼び出し元が1回だけ実行し、
    同時に呼び出した他のスレッドは完了を待つ。
    """

    STATION_LIST_URL = "https://radiko.jp/v3/station/list/{area_id}.xml"

    def __init__(self, transport, area_ids: Optional[List[str]] = None):
        super().__init__()
        self.transport = transport
        self.area_ids = list(area_ids) if area_ids else RegionMapper.all_area_ids()

        self._stations: Dict[str, str] = {}
        self._lock = threading.Lock()
        self._warm_lock = threading.Lock()
        self._warmed = threading.Event()

    def get(self, station_id: str) -> Optional[str]:
        """キャッシュのみを参照"""
        with self._lock:
            return self._stations.get(station_id)

    def snapshot(self) -> Dict[str, str]:
        """キャッシュ内容のコピー"""
        with self._lock:
            return dict(self._stations)

    @property
    def is_warmed(self) -> bool:
        return self._warmed.is_set()

    def warm_all(self, scope: Optional[CancelScope] = None) -> None:
        """全地域の放送局一覧を並列取得してキャッシュを構築（1回のみ）

        各地域の取得失敗は無視する（resolve の逐次フォールバックで補う）。
        """
        if self._warmed.is_set():
            return
        with self._warm_lock:
            if self._warmed.is_set():
                return
            scope = scope or background_scope()
            try:
                with ThreadPoolExecutor(max_workers=len(self.area_ids),
                                        thread_name_prefix="region-warm") as executor:
                    outcomes = list(executor.map(
                        lambda area_id: self.fetch_area(area_id, scope), self.area_ids
                    ))
                failed = [outcome.area_id for outcome in outcomes if not outcome.ok]
                if failed:
                    self.logger.warning(
                        f"放送局一覧の取得に失敗した地域: {', '.join(failed)}"
                    )
                self.logger.info(
                    f"地域キャッシュ構築完了: {len(self.snapshot())}局 "
                    f"({len(outcomes) - len(failed)}/{len(outcomes)}地域)"
                )
            finally:
                self._warmed.set()

    def fetch_area(self, area_id: str, scope: Optional[CancelScope] = None) -> FetchOutcome:
        """1地域の放送局一覧を取得してキャッシュに追加

        Returns:
            FetchOutcome: 成否（例外は送出せず結果に格納する）
        """
        url = self.STATION_LIST_URL.format(area_id=area_id)
        try:
            status, body = self.transport.get_text(url, scope=scope)
        except TsRadikoError as e:
            self.logger.debug(f"放送局一覧取得エラー ({area_id}): {e}")
            return FetchOutcome(area_id=area_id, ok=False, error=e)

        if status < 200 or status >= 300:
            self.logger.debug(f"放送局一覧取得失敗 ({area_id}): HTTP {status}")
            return FetchOutcome(area_id=area_id, ok=False)

        station_ids = extract_station_ids(body)
        with self._lock:
            for station_id in station_ids:
                self._stations.setdefault(station_id, area_id)
        return FetchOutcome(area_id=area_id, ok=True, station_count=len(station_ids))

    def resolve(self, station_id: str, scope: Optional[CancelScope] = None) -> str:
        """放送局IDから地域IDを解決

        キャッシュ → 全地域ウォームアップ（初回のみ） → 再確認 →
        地域番号の昇順で1地域ずつ再取得、の順に探す。

        Raises:
            RegionNotFoundError: 全地域を探しても見つからない場合
        """
        area_id = self.get(station_id)
        if area_id:
            return area_id

        scope = scope or background_scope()
        self.warm_all(scope)
        area_id = self.get(station_id)
        if area_id:
            return area_id

        self.logger.info(f"地域キャッシュ未登録のため逐次探索: {station_id}")
        for candidate in self.area_ids:
            scope.raise_if_cancelled()
            outcome = self.fetch_area(candidate, scope)
            if isinstance(outcome.error, OperationCancelledError):
                raise outcome.error
            if outcome.ok:
                area_id = self.get(station_id)
                if area_id:
                    return area_id

        raise RegionNotFoundError(f"cannot resolve area id for station: {station_id}")
