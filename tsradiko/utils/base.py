"""
基底クラスとMixin
"""

import logging
from typing import Optional

from tsradiko.logging_config import get_logger


class LoggerMixin:
    """self.logger を提供するMixin

    ロガーはクラスが定義されたモジュール名で、初回アクセス時に取得する。
    ワーカースレッドから使う場合も同じロガーを共有する。

    Usage:
        class StreamingManager(LoggerMixin):
            def __init__(self, transport):
                super().__init__()
                self.transport = transport

            def run(self):
                self.logger.info("開始")
    """

    _logger: Optional[logging.Logger] = None

    def __init__(self) -> None:
        self._logger = None

    @property
    def logger(self) -> logging.Logger:
        if self._logger is None:
            self._logger = get_logger(type(self).__module__)
        return self._logger
