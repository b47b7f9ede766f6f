"""
CLIインターフェースモジュール

このモジュールはTsRadikoのコマンドライン操作を提供します。
- 設定ファイル・引数の読み込み
- 放送局→地域IDキャッシュの事前構築
- 複数リンクの並列ダウンロードと結果集計
"""

import argparse
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from tqdm import tqdm

from . import __version__
from .auth import KeyMaterial, RadikoAuthenticator
from .error_handler import TsRadikoError, format_error
from .logging_config import reset_logging, setup_logging
from .region_mapper import StationRegionCache
from .timefree_recorder import DownloadOptions, TimeFreeRecorder
from .transport import RetryingTransport, RetryOptions
from .utils.base import LoggerMixin
from .utils.cancellation import CancelScope
from .utils.config_utils import (
    DEFAULT_CONFIG_PATH, ConfigManager, TsRadikoConfig, create_template_config
)

EXIT_SUCCESS = 0
EXIT_CONFIG_ERROR = 1
EXIT_DOWNLOAD_FAILED = 2
EXIT_INTERRUPTED = 130


@dataclass
class LinkResult:
    """リンク1件の処理結果"""
    input_url: str
    output_path: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class TsRadikoCLI(LoggerMixin):
    """TsRadiko CLIメインクラス"""

    VERSION = __version__

    def __init__(self, recorder_factory: Optional[Callable[[TsRadikoConfig, bool], TimeFreeRecorder]] = None):
        super().__init__()
        self._recorder_factory = recorder_factory or self.build_recorder
        self._output_lock = threading.Lock()
        self.root_scope = CancelScope()

    def create_parser(self) -> argparse.ArgumentParser:
        """コマンドライン引数パーサーを作成"""
        parser = argparse.ArgumentParser(
            prog='tsradiko',
            description='Radikoタイムフリー番組をAACファイルとして保存します',
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog="""
使用例:
  tsradiko                                   # config.json の links を処理
  tsradiko -c my.json -j 4                   # 設定ファイル・並列数を指定
  tsradiko "https://radiko.jp/#!/ts/TBS/20260219010000"
  tsradiko -a 東京 "https://radiko.jp/#!/search/timeshift?key=..."
  tsradiko --init-config                     # 設定ファイルのひな形を作成
            """
        )
        parser.add_argument('links', nargs='*', help='検索リンクまたは番組詳細リンク（設定ファイルより優先）')
        parser.add_argument('-c', '--config', default=DEFAULT_CONFIG_PATH, help='設定ファイルパス')
        parser.add_argument('-o', '--output-dir', help='出力ディレクトリ')
        parser.add_argument('-a', '--area', help='地域IDまたは都道府県名（指定時は地域の自動判定を省略）')
        parser.add_argument('-j', '--jobs', type=int, help='同時に処理するリンク数')
        parser.add_argument('--concurrency', type=int, help='リンクごとのセグメント同時取得数')
        parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                            type=str.upper, help='ログレベル')
        parser.add_argument('--no-token-cache', action='store_true',
                            help='認証トークンのキャッシュファイルを使わない')
        parser.add_argument('--init-config', action='store_true',
                            help='設定ファイルのひな形を作成して終了')
        parser.add_argument('--version', action='version', version=f'TsRadiko {self.VERSION}')
        return parser

    def run(self, args: Optional[List[str]] = None) -> int:
        """CLIメインエントリーポイント

        Returns:
            int: 終了コード（0: 全件成功, 1: 設定・引数エラー, 2: 失敗あり, 130: 中断）
        """
        parser = self.create_parser()
        try:
            parsed_args = parser.parse_args(args)
        except SystemExit as e:
            # --help / --version は0、引数エラーは設定エラーとして扱う
            return EXIT_SUCCESS if e.code in (0, None) else EXIT_CONFIG_ERROR

        config_manager = ConfigManager(parsed_args.config)
        if parsed_args.init_config:
            return self._init_config(config_manager)

        try:
            config = config_manager.load_config({
                'links': parsed_args.links or None,
                'output_dir': parsed_args.output_dir,
                'area_id': parsed_args.area,
                'jobs': parsed_args.jobs,
                'concurrency': parsed_args.concurrency,
                'log_level': parsed_args.log_level,
            })
        except TsRadikoError as e:
            self._emit('ERROR', format_error(e))
            return EXIT_CONFIG_ERROR

        self._setup_logging(config)

        try:
            recorder = self._recorder_factory(config, parsed_args.no_token_cache)
        except TsRadikoError as e:
            self._emit('ERROR', format_error(e))
            return EXIT_CONFIG_ERROR

        try:
            if not config.area_id:
                self.logger.info("放送局→地域IDキャッシュを構築中")
                recorder.region_cache.warm_all(self.root_scope)
            results = self.process_links(recorder, config)
        except KeyboardInterrupt:
            self.root_scope.cancel("interrupted by user")
            self._emit('WARN', "操作がキャンセルされました")
            return EXIT_INTERRUPTED
        finally:
            recorder.transport.close()

        return self._report(results)

    def build_recorder(self, config: TsRadikoConfig, no_token_cache: bool = False) -> TimeFreeRecorder:
        """設定から録音コンポーネント一式を構築

        全コンポーネントで1つのトランスポートと各キャッシュを共有する。

        Raises:
            ConfigurationError: アプリ鍵を読み込めない場合
        """
        key_material = KeyMaterial.load(config.key_file)
        transport = RetryingTransport(
            timeout=config.request_timeout,
            retry=RetryOptions(retries=config.max_retries),
        )
        authenticator = RadikoAuthenticator(
            transport,
            key_material=key_material,
            cache_path=config.token_cache_path,
            persist=not no_token_cache,
        )
        return TimeFreeRecorder(
            transport,
            authenticator=authenticator,
            region_cache=StationRegionCache(transport),
            concurrency=config.concurrency,
        )

    def process_links(self, recorder: TimeFreeRecorder, config: TsRadikoConfig) -> List[LinkResult]:
        """全リンクを並列処理（1件の失敗は他のリンクに影響しない）"""
        output_dir = str(Path(config.output_dir).resolve())
        jobs = max(1, min(config.jobs, len(config.links)))
        self.logger.info(f"ダウンロード開始: {len(config.links)}件 ({jobs}並列)")

        executor = ThreadPoolExecutor(max_workers=jobs, thread_name_prefix='link')
        futures = []
        try:
            for index, url in enumerate(config.links):
                futures.append(
                    executor.submit(self.process_link, recorder, index, url, output_dir, config)
                )
            return [future.result() for future in futures]
        except KeyboardInterrupt:
            self.root_scope.cancel("interrupted by user")
            for future in futures:
                future.cancel()
            raise
        finally:
            executor.shutdown(wait=True)

    def process_link(self, recorder: TimeFreeRecorder, index: int, url: str,
                     output_dir: str, config: TsRadikoConfig) -> LinkResult:
        """リンク1件を処理"""
        scope = self.root_scope.child(timeout=config.item_timeout_seconds)
        progress = tqdm(desc=f"segments[{index + 1}]", unit="seg", leave=False,
                        position=index % max(1, config.jobs), disable=None)
        progress_lock = threading.Lock()

        def on_progress(done: int, total: int) -> None:
            with progress_lock:
                if total <= 0:
                    return
                progress.total = total
                progress.n = done
                progress.refresh()

        self._emit('INFO', f"Input: {url}")
        try:
            detail_url = recorder.resolve_to_detail(url, scope)
            self._emit('INFO', f"Resolved detail: {detail_url}")
            output_path = recorder.download_from_detail(
                detail_url,
                DownloadOptions(output_dir=output_dir, area_id=config.area_id, on_progress=on_progress),
                scope,
            )
        except Exception as e:
            message = format_error(e)
            self._emit('FAIL', f"{url} -> {message}")
            return LinkResult(input_url=url, error=message)
        finally:
            progress.close()

        self._emit('OK', f"Downloaded: {output_path}")
        return LinkResult(input_url=url, output_path=output_path)

    def _report(self, results: List[LinkResult]) -> int:
        """結果を集計して終了コードを返す"""
        failures = [result for result in results if not result.ok]
        success = len(results) - len(failures)
        self._emit('INFO', f"Completed. success={success} failed={len(failures)}")
        if failures:
            for result in failures:
                self._emit('WARN', f"Failure detail: {result.input_url} :: {result.error}")
            return EXIT_DOWNLOAD_FAILED
        return EXIT_SUCCESS

    def _init_config(self, config_manager: ConfigManager) -> int:
        if config_manager.config_path.exists():
            self._emit('ERROR', f"設定ファイルは既に存在します: {config_manager.config_path}")
            return EXIT_CONFIG_ERROR
        if not config_manager.save_config(create_template_config()):
            self._emit('ERROR', f"設定ファイルを作成できません: {config_manager.config_path}")
            return EXIT_CONFIG_ERROR
        self._emit('OK', f"設定ファイルを作成しました: {config_manager.config_path}")
        return EXIT_SUCCESS

    def _setup_logging(self, config: TsRadikoConfig) -> None:
        # モジュール読み込み時に既定値で初期化されているため作り直す
        reset_logging()
        setup_logging(log_level=config.log_level, log_file=config.log_file)

    def _emit(self, level: str, message: str) -> None:
        """"[LEVEL] message" 形式でユーザーに表示し、ログにも残す"""
        stream = sys.stderr if level == 'ERROR' else sys.stdout
        with self._output_lock:
            tqdm.write(f"[{level}] {message}", file=stream)
        if level in ('ERROR', 'FAIL'):
            self.logger.error(message)
        elif level == 'WARN':
            self.logger.warning(message)
        else:
            self.logger.info(message)


def main() -> None:
    """コンソールスクリプトのエントリーポイント"""
    sys.exit(TsRadikoCLI().run())


if __name__ == "__main__":
    main()
