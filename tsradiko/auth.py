"""
Radiko認証モジュール

このモジュールはRadikoサービスへの認証を管理します。
- auth1/auth2 ハンドシェイク（部分キー・位置情報・端末情報）
- 地域ごとの認証トークンキャッシュ（70分TTL）
- トークンキャッシュのJSONファイル永続化
- アプリ鍵（KeyMaterial）の読み込み
"""

import base64
import binascii
import json
import os
import random
import secrets
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

from .error_handler import (
    AuthenticationError, ConfigurationError, InvalidKeyRangeError,
    ProtocolViolationError
)
from .region_mapper import RegionMapper
from .utils.base import LoggerMixin
from .utils.cancellation import CancelScope, background_scope
from .utils.path_utils import ensure_directory_exists

KEY_FILE_ENV = 'TSRADIKO_KEY_FILE'


@dataclass(frozen=True)
class KeyMaterial:
    """アプリ認証情報（不変）"""
    app_version: str
    app_id: str
    app_key_base64: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'KeyMaterial':
        """辞書から生成（snake_case / camelCase 両対応）

        Raises:
            ConfigurationError: 必須項目の欠落、または鍵がbase64として不正な場合
        """
        def pick(*names: str) -> str:
            for name in names:
                value = data.get(name)
                if isinstance(value, str) and value.strip():
                    return value.strip()
            raise ConfigurationError(f"key material is missing '{names[0]}'")

        material = cls(
            app_version=pick('app_version', 'appVersion'),
            app_id=pick('app_id', 'appId'),
            app_key_base64=pick('app_key_base64', 'appKeyBase64'),
        )
        material.decoded_key()
        return material

    @classmethod
    def load(cls, key_file: Optional[Union[str, Path]] = None) -> 'KeyMaterial':
        """JSON鍵ファイルから読み込み

        Args:
            key_file: 鍵ファイルパス（None時は環境変数 TSRADIKO_KEY_FILE）

        Raises:
            ConfigurationError: ファイル未指定・読み込み失敗・内容不正
        """
        key_file = key_file or os.environ.get(KEY_FILE_ENV)
        if not key_file:
            raise ConfigurationError(
                f"app key file is not configured (set 'key_file' or {KEY_FILE_ENV})"
            )
        try:
            with open(key_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"cannot read app key file {key_file}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"app key file must contain a JSON object: {key_file}")
        return cls.from_dict(data)

    def decoded_key(self) -> bytes:
        """base64デコード済みの鍵"""
        try:
            return base64.b64decode(self.app_key_base64, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ConfigurationError(f"app key is not valid base64: {e}") from e


@dataclass
class TokenCacheEntry:
    """地域ごとのキャッシュ済みトークン"""
    token: str
    request_time: int  # エポックミリ秒

    def is_valid(self, now_ms: int, ttl_ms: int) -> bool:
        return now_ms - self.request_time < ttl_ms

    def to_dict(self) -> Dict[str, Any]:
        return {'token': self.token, 'requestTime': self.request_time}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TokenCacheEntry':
        token = data['token']
        request_time = data['requestTime']
        if not isinstance(token, str) or isinstance(request_time, bool) \
                or not isinstance(request_time, int):
            raise ValueError(f"malformed token cache entry: {data}")
        return cls(token=token, request_time=request_time)


@dataclass(frozen=True)
class DeviceInfo:
    """Android端末を模したクライアント情報"""
    app_version: str
    user_id: str
    user_agent: str
    device: str


def generate_device_info(app_version: str) -> DeviceInfo:
    """端末情報を生成（ユーザーIDは16バイト乱数の16進表記）"""
    model = "Google Pixel 6"
    sdk = "34"
    return DeviceInfo(
        app_version=app_version,
        user_id=secrets.token_hex(16),
        user_agent=f"Dalvik/2.1.0 (Linux; U; Android 14.0.0; {model}/AP2A.240805.005.S4)",
        device=f"{sdk}.GQML3",
    )


def generate_partial_key(key: bytes, offset: int, length: int) -> str:
    """鍵の [offset, offset+length) を切り出してbase64化

    Raises:
        InvalidKeyRangeError: 範囲が不正な場合
    """
    if offset < 0 or length <= 0 or offset + length > len(key):
        raise InvalidKeyRangeError(
            f"invalid key range from auth1: offset={offset} length={length} key_length={len(key)}"
        )
    return base64.b64encode(key[offset:offset + length]).decode('ascii')


def generate_gps(area_id: str, rng: Optional[random.Random] = None) -> str:
    """地域の代表座標に ±1/40 度の揺らぎを加えた位置情報

    Returns:
        str: "<lat>,<lon>,gps"

    Raises:
        InvalidRegionError: 地域IDが範囲外の場合
    """
    rng = rng or random
    latitude, longitude = RegionMapper.get_seed_coordinate(area_id)
    latitude += rng.uniform(-1, 1) / 40.0
    longitude += rng.uniform(-1, 1) / 40.0
    return f"{latitude:.6f},{longitude:.6f},gps"


class RadikoAuthenticator(LoggerMixin):
    """Radiko認証を管理するクラス

    トークンキャッシュはプロセス内で共有され、地域IDをキーに
    70分間再利用される。キャッシュファイルの読み書き失敗は
    認証処理を止めない。
    """

    AUTH1_URL = "https://radiko.jp/v2/api/auth1"
    AUTH2_URL = "https://radiko.jp/v2/api/auth2"

    TOKEN_TTL_MS = 4_200_000  # 70分
    DEFAULT_CACHE_PATH = Path(".cache") / "auth-tokens.json"

    def __init__(self, transport,
                 key_material: Optional[KeyMaterial] = None,
                 key_file: Optional[Union[str, Path]] = None,
                 cache_path: Optional[Union[str, Path]] = DEFAULT_CACHE_PATH,
                 persist: bool = True,
                 clock: Callable[[], float] = time.time):
        super().__init__()
        self.transport = transport
        self.cache_path = Path(cache_path) if cache_path else None
        self.persist = persist and self.cache_path is not None
        self._clock = clock

        self._key_material = key_material
        self._key_file = key_file
        self._key_lock = threading.Lock()

        self._tokens: Dict[str, TokenCacheEntry] = {}
        self._cache_lock = threading.Lock()
        self._load_lock = threading.Lock()
        self._cache_loaded = False

    @property
    def key_material(self) -> KeyMaterial:
        """アプリ鍵（初回アクセス時に1回だけ読み込む）"""
        with self._key_lock:
            if self._key_material is None:
                self._key_material = KeyMaterial.load(self._key_file)
            return self._key_material

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def get_cached_token(self, area_id: str) -> Optional[str]:
        """有効なキャッシュ済みトークン（なければNone）"""
        self._ensure_cache_loaded()
        with self._cache_lock:
            entry = self._tokens.get(area_id)
            if entry and entry.is_valid(self._now_ms(), self.TOKEN_TTL_MS):
                return entry.token
        return None

    def retrieve_token(self, area_id: str, scope: Optional[CancelScope] = None) -> str:
        """地域IDに対する有効な認証トークンを取得

        キャッシュが有効ならそれを返し、なければ auth1 → auth2 を実行する。

        Raises:
            AuthenticationError: auth1 が2xx以外、または auth2 が200以外
            ProtocolViolationError: auth1 応答ヘッダーの欠落
            InvalidKeyRangeError: 部分キー範囲の不正
            InvalidRegionError: 地域IDの不正
        """
        cached = self.get_cached_token(area_id)
        if cached:
            self.logger.debug(f"認証トークンキャッシュ使用: {area_id}")
            return cached

        scope = scope or background_scope()
        key_material = self.key_material
        device = generate_device_info(key_material.app_version)
        self.logger.info(f"Radiko認証を開始: {area_id}")

        base_headers = {
            'X-Radiko-App': key_material.app_id,
            'X-Radiko-App-Version': device.app_version,
            'X-Radiko-Device': device.device,
            'X-Radiko-User': device.user_id,
        }

        # Step 1: 認証開始
        auth1 = self.transport.execute('GET', self.AUTH1_URL, headers=base_headers, scope=scope)
        if auth1.status_code < 200 or auth1.status_code >= 300:
            raise AuthenticationError(f"auth1 failed: {auth1.status_code}",
                                      status_code=auth1.status_code)

        token = auth1.headers.get('x-radiko-authtoken')
        key_offset = auth1.headers.get('x-radiko-keyoffset')
        key_length = auth1.headers.get('x-radiko-keylength')
        if not token or not key_offset or not key_length:
            raise ProtocolViolationError("auth1 response is missing token or key range headers")

        try:
            offset = int(key_offset)
            length = int(key_length)
        except ValueError:
            raise InvalidKeyRangeError(
                f"invalid key range from auth1: offset={key_offset!r} length={key_length!r}"
            ) from None

        # Step 2: 部分キー・位置情報
        partial_key = generate_partial_key(key_material.decoded_key(), offset, length)
        location = generate_gps(area_id)

        # Step 3: 認証完了
        auth2_headers = dict(base_headers)
        auth2_headers.update({
            'X-Radiko-AuthToken': token,
            'X-Radiko-Partialkey': partial_key,
            'X-Radiko-Location': location,
            'X-Radiko-Connection': 'wifi',
            'User-Agent': device.user_agent,
        })
        auth2 = self.transport.execute('GET', self.AUTH2_URL, headers=auth2_headers, scope=scope)
        if auth2.status_code != 200:
            raise AuthenticationError(f"auth2 failed: {auth2.status_code}",
                                      status_code=auth2.status_code)

        with self._cache_lock:
            self._tokens[area_id] = TokenCacheEntry(token=token, request_time=self._now_ms())
        self._save_cache()

        self.logger.info(f"Radiko認証完了: {area_id}")
        return token

    def clear_cache(self) -> None:
        """メモリ上のトークンキャッシュを破棄（ファイルは残す）"""
        with self._cache_lock:
            self._tokens.clear()

    def _ensure_cache_loaded(self) -> None:
        """キャッシュファイルを1回だけ読み込む（失敗時は空のキャッシュ）"""
        if self._cache_loaded:
            return
        with self._load_lock:
            if self._cache_loaded:
                return
            loaded = self._load_cache_file()
            with self._cache_lock:
                for area_id, entry in loaded.items():
                    self._tokens.setdefault(area_id, entry)
            self._cache_loaded = True

    def _load_cache_file(self) -> Dict[str, TokenCacheEntry]:
        if not self.persist or not self.cache_path.exists():
            return {}
        try:
            with open(self.cache_path, 'r', encoding='utf-8') as f:
                raw = json.load(f)
            if not isinstance(raw, dict):
                raise ValueError("token cache must be a JSON object")
            return {str(area_id): TokenCacheEntry.from_dict(entry) for area_id, entry in raw.items()}
        except (OSError, ValueError, KeyError, TypeError) as e:
            self.logger.debug(f"トークンキャッシュ読み込み失敗（空として扱う）: {e}")
            return {}

    def _save_cache(self) -> None:
        """キャッシュ全体をJSONで保存（失敗は無視）"""
        if not self.persist:
            return
        with self._cache_lock:
            data = {area_id: entry.to_dict() for area_id, entry in self._tokens.items()}
            try:
                path = ensure_directory_exists(self.cache_path)
                with open(path, 'w', encoding='utf-8') as f:
                    json.dump(data, f, indent=2)
            except OSError as e:
                self.logger.debug(f"トークンキャッシュ保存失敗: {e}")
