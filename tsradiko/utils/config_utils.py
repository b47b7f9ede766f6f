"""
設定ファイル管理ユーティリティ

JSON設定ファイルの読み込み・保存と、実行設定（TsRadikoConfig）の
正規化・検証を提供します。
"""

import json
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from tsradiko.error_handler import ConfigurationError
from tsradiko.logging_config import get_logger
from tsradiko.region_mapper import RegionMapper

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = "config.json"

# 設定ファイルのキー別名（camelCase表記も受け付ける）
_KEY_ALIASES = {
    'outputDir': 'output_dir',
    'areaId': 'area_id',
    'itemTimeoutSeconds': 'item_timeout_seconds',
    'requestTimeout': 'request_timeout',
    'maxRetries': 'max_retries',
    'keyFile': 'key_file',
    'tokenCachePath': 'token_cache_path',
    'logLevel': 'log_level',
    'logFile': 'log_file',
}


@dataclass
class TsRadikoConfig:
    """実行設定"""
    links: List[str] = field(default_factory=list)
    output_dir: str = "downloads"
    area_id: Optional[str] = None
    prefecture: Optional[str] = None
    jobs: int = 2
    concurrency: int = 8
    request_timeout: float = 45.0
    max_retries: int = 3
    item_timeout_seconds: float = 600.0
    key_file: Optional[str] = None
    token_cache_path: Optional[str] = ".cache/auth-tokens.json"
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TsRadikoConfig':
        """辞書から生成（未知のキーは無視し、警告を出す）"""
        known = set(cls.__dataclass_fields__)
        values = {}
        for key, value in data.items():
            key = _KEY_ALIASES.get(key, key)
            if key in known:
                values[key] = value
            else:
                logger.warning(f"未知の設定キーを無視します: {key}")
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def normalize(self) -> 'TsRadikoConfig':
        """既定値の補完・型の検証・都道府県名の地域ID変換

        Raises:
            ConfigurationError: 設定値が不正な場合
        """
        if not isinstance(self.links, list) or not self.links:
            raise ConfigurationError("config must contain a non-empty `links` array")
        links = []
        for link in self.links:
            if not isinstance(link, str) or not link.strip():
                raise ConfigurationError(f"invalid link in config: {link!r}")
            links.append(link.strip())
        self.links = links

        if not self.output_dir:
            self.output_dir = "downloads"

        self.jobs = _positive_int(self.jobs, 'jobs', default=2)
        self.concurrency = _positive_int(self.concurrency, 'concurrency', default=8)
        self.max_retries = _non_negative_int(self.max_retries, 'max_retries')
        self.request_timeout = _positive_number(self.request_timeout, 'request_timeout', 45.0)
        self.item_timeout_seconds = _positive_number(
            self.item_timeout_seconds, 'item_timeout_seconds', 600.0
        )

        if self.area_id:
            area_id = RegionMapper.get_area_id(str(self.area_id))
            if not area_id:
                raise ConfigurationError(f"invalid area_id: {self.area_id}")
            self.area_id = area_id
        elif self.prefecture:
            area_id = RegionMapper.get_area_id(str(self.prefecture))
            if not area_id:
                raise ConfigurationError(f"unknown prefecture: {self.prefecture}")
            self.area_id = area_id
        else:
            self.area_id = None

        self.log_level = str(self.log_level or "INFO").upper()
        return self


def _positive_int(value: Any, name: str, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"`{name}` must be an integer: {value!r}")
    return value if value > 0 else default


def _non_negative_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigurationError(f"`{name}` must be a non-negative integer: {value!r}")
    return value


def _positive_number(value: Any, name: str, default: float) -> float:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(f"`{name}` must be a number: {value!r}")
    return float(value) if value > 0 else default


class ConfigManager:
    """JSON設定ファイル管理クラス

    Usage:
        config_manager = ConfigManager("config.json")
        config = config_manager.load_config()
        config_manager.save_config(config.to_dict())
    """

    def __init__(self, config_path: Union[str, Path] = DEFAULT_CONFIG_PATH,
                 encoding: str = 'utf-8'):
        self.config_path = Path(config_path)
        self.encoding = encoding

    def load_raw(self) -> Dict[str, Any]:
        """設定ファイルを辞書として読み込む

        Raises:
            ConfigurationError: ファイルがない・読めない・JSONオブジェクトでない場合
        """
        if not self.config_path.exists():
            raise ConfigurationError(f"config file not found: {self.config_path}")
        try:
            with open(self.config_path, 'r', encoding=self.encoding) as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"invalid JSON in {self.config_path}: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"cannot read {self.config_path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"config must be a JSON object: {self.config_path}")
        logger.debug(f"設定ファイル読み込み成功: {self.config_path}")
        return data

    def load_config(self, overrides: Optional[Dict[str, Any]] = None) -> TsRadikoConfig:
        """設定ファイルを読み込み、上書き値を適用して検証済みの設定を返す

        Args:
            overrides: コマンドライン引数などによる上書き（Noneの値は無視）

        リンクが上書き指定されていれば、設定ファイルがなくても既定値で動作する。
        """
        overrides = {key: value for key, value in (overrides or {}).items() if value is not None}
        if self.config_path.exists() or not overrides.get('links'):
            data = self.load_raw()
        else:
            logger.info(f"設定ファイルなし、既定値を使用: {self.config_path}")
            data = {}
        data.update(overrides)
        return TsRadikoConfig.from_dict(data).normalize()

    def save_config(self, config: Dict[str, Any], indent: int = 2) -> bool:
        """設定ファイルを保存（一時ファイル経由で原子的に置き換え）

        Returns:
            保存成功ならTrue
        """
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            temp_path = self.config_path.with_suffix('.tmp')
            with open(temp_path, 'w', encoding=self.encoding) as f:
                json.dump(config, f, ensure_ascii=False, indent=indent)
            temp_path.replace(self.config_path)
            logger.debug(f"設定ファイル保存成功: {self.config_path}")
            return True
        except OSError as e:
            logger.error(f"設定ファイル保存エラー: {self.config_path} - {e}")
            return False


def create_template_config() -> Dict[str, Any]:
    """設定ファイルのひな形"""
    template = TsRadikoConfig(
        links=["https://radiko.jp/#!/ts/TBS/20260219010000"],
    ).to_dict()
    template.pop('prefecture')
    return template
