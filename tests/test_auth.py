"""
Radiko認証単体テスト

auth1/auth2 ハンドシェイク、部分キー・位置情報の生成、
トークンキャッシュ（TTL・ファイル永続化）を確認する。
"""

import base64
import json
import os
import random
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from tsradiko.auth import (
    KEY_FILE_ENV, KeyMaterial, RadikoAuthenticator, TokenCacheEntry,
    generate_device_info, generate_gps, generate_partial_key
)
from tsradiko.error_handler import (
    AuthenticationError, ConfigurationError, InvalidKeyRangeError,
    InvalidRegionError, ProtocolViolationError
)
from tsradiko.region_mapper import RegionMapper
from tests.utils.fake_transport import TEST_APP_KEY, FakeTransport, make_key_material

AUTH1_URL = RadikoAuthenticator.AUTH1_URL
AUTH2_URL = RadikoAuthenticator.AUTH2_URL

AUTH1_HEADERS = {
    'X-Radiko-AuthToken': 'token-abc',
    'X-Radiko-KeyOffset': '8',
    'X-Radiko-KeyLength': '16',
}


class FakeClock:
    """秒単位で進められる時計"""

    def __init__(self, now: float = 1_770_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestPartialKey(unittest.TestCase):
    """部分キー生成テスト"""

    def test_01_範囲を切り出してbase64化(self):
        key = bytes(range(32))
        expected = base64.b64encode(bytes(range(8, 24))).decode('ascii')
        self.assertEqual(generate_partial_key(key, 8, 16), expected)

    def test_02_鍵の末尾までは有効(self):
        key = bytes(range(32))
        self.assertEqual(generate_partial_key(key, 16, 16),
                         base64.b64encode(key[16:]).decode('ascii'))

    def test_03_不正な範囲(self):
        key = bytes(range(32))
        for offset, length in [(-1, 4), (0, 0), (0, -1), (30, 4), (0, 33)]:
            with self.subTest(offset=offset, length=length):
                with self.assertRaises(InvalidKeyRangeError):
                    generate_partial_key(key, offset, length)


class TestLocationAndDevice(unittest.TestCase):
    """位置情報・端末情報の生成テスト"""

    def test_01_位置情報は基準座標から40分の1度以内(self):
        latitude, longitude = RegionMapper.get_seed_coordinate("JP13")
        rng = random.Random(42)
        for _ in range(20):
            value = generate_gps("JP13", rng)
            lat_text, lon_text, suffix = value.split(',')
            self.assertEqual(suffix, "gps")
            self.assertEqual(len(lat_text.split('.')[1]), 6)
            self.assertLessEqual(abs(float(lat_text) - latitude), 1 / 40 + 1e-6)
            self.assertLessEqual(abs(float(lon_text) - longitude), 1 / 40 + 1e-6)

    def test_02_不正な地域ID(self):
        with self.assertRaises(InvalidRegionError):
            generate_gps("JP99")

    def test_03_端末情報(self):
        device = generate_device_info("8.2.4")
        self.assertEqual(device.app_version, "8.2.4")
        self.assertEqual(len(device.user_id), 32)
        int(device.user_id, 16)
        self.assertTrue(device.user_agent.startswith("Dalvik/2.1.0"))
        self.assertEqual(device.device, "34.GQML3")
        self.assertNotEqual(device.user_id, generate_device_info("8.2.4").user_id)


class TestKeyMaterial(unittest.TestCase):
    """アプリ鍵の読み込みテスト"""

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.key_path = Path(self.temp_dir.name) / "key.json"

    def tearDown(self):
        self.temp_dir.cleanup()

    def test_01_camelCaseの鍵ファイル(self):
        self.key_path.write_text(json.dumps({
            "appVersion": "8.2.4",
            "appId": "aSmartPhone8",
            "appKeyBase64": base64.b64encode(b"secret-key").decode('ascii'),
        }), encoding='utf-8')

        material = KeyMaterial.load(self.key_path)

        self.assertEqual(material.app_id, "aSmartPhone8")
        self.assertEqual(material.decoded_key(), b"secret-key")

    def test_02_環境変数の鍵ファイル(self):
        self.key_path.write_text(json.dumps({
            "app_version": "8.2.4",
            "app_id": "aSmartPhone8",
            "app_key_base64": base64.b64encode(b"k").decode('ascii'),
        }), encoding='utf-8')
        with patch.dict(os.environ, {KEY_FILE_ENV: str(self.key_path)}):
            self.assertEqual(KeyMaterial.load().app_version, "8.2.4")

    def test_03_鍵ファイル未設定(self):
        with patch.dict(os.environ, {}, clear=True):
            with self.assertRaises(ConfigurationError):
                KeyMaterial.load()

    def test_04_不正な鍵ファイル(self):
        cases = [
            "not json",
            json.dumps(["list"]),
            json.dumps({"app_version": "1", "app_id": "x"}),
            json.dumps({"app_version": "1", "app_id": "x", "app_key_base64": "!!!"}),
        ]
        for content in cases:
            with self.subTest(content=content):
                self.key_path.write_text(content, encoding='utf-8')
                with self.assertRaises(ConfigurationError):
                    KeyMaterial.load(self.key_path)

    def test_05_存在しない鍵ファイル(self):
        with self.assertRaises(ConfigurationError):
            KeyMaterial.load(self.key_path)


class TestRadikoAuthenticator(unittest.TestCase):
    """auth1/auth2 ハンドシェイクとトークンキャッシュのテスト"""

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.cache_path = Path(self.temp_dir.name) / ".cache" / "auth-tokens.json"
        self.transport = FakeTransport()
        self.clock = FakeClock()

    def tearDown(self):
        self.temp_dir.cleanup()

    def make_authenticator(self, **kwargs) -> RadikoAuthenticator:
        kwargs.setdefault('key_material', make_key_material())
        kwargs.setdefault('cache_path', self.cache_path)
        kwargs.setdefault('clock', self.clock)
        return RadikoAuthenticator(self.transport, **kwargs)

    def add_successful_handshake(self):
        self.transport.add(AUTH1_URL, headers=AUTH1_HEADERS)
        self.transport.add(AUTH2_URL, body="JP13,東京都,tokyo Japan")

    def test_01_認証成功(self):
        """
        Given: auth1がトークンと鍵範囲を返し、auth2が200を返す
        When: retrieve_token
        Then: auth1のトークンが返り、auth2に部分キー・位置情報が送られる
        """
        self.add_successful_handshake()
        authenticator = self.make_authenticator()

        token = authenticator.retrieve_token("JP13")

        self.assertEqual(token, "token-abc")
        auth1, auth2 = self.transport.calls
        self.assertEqual(auth1.url, AUTH1_URL)
        self.assertEqual(auth1.headers['X-Radiko-App'], "aSmartPhone8")
        self.assertEqual(auth1.headers['X-Radiko-App-Version'], "8.2.4")
        self.assertEqual(auth2.url, AUTH2_URL)
        self.assertEqual(auth2.headers['X-Radiko-AuthToken'], "token-abc")
        self.assertEqual(auth2.headers['X-Radiko-Partialkey'],
                         base64.b64encode(TEST_APP_KEY[8:24]).decode('ascii'))
        self.assertTrue(auth2.headers['X-Radiko-Location'].endswith(",gps"))
        self.assertEqual(auth2.headers['X-Radiko-Connection'], "wifi")
        self.assertEqual(auth2.headers['X-Radiko-User'], auth1.headers['X-Radiko-User'])

    def test_02_70分以内はトークンを再利用(self):
        """
        同じ地域に対する2回の retrieve_token はネットワーク往復1回のみ
        """
        self.add_successful_handshake()
        authenticator = self.make_authenticator()

        first = authenticator.retrieve_token("JP13")
        self.clock.now += 69 * 60
        second = authenticator.retrieve_token("JP13")

        self.assertEqual(first, second)
        self.assertEqual(self.transport.count(AUTH1_URL), 1)
        self.assertEqual(self.transport.count(AUTH2_URL), 1)

    def test_03_70分経過で再認証(self):
        self.add_successful_handshake()
        authenticator = self.make_authenticator()

        authenticator.retrieve_token("JP13")
        self.clock.now += 70 * 60
        authenticator.retrieve_token("JP13")

        self.assertEqual(self.transport.count(AUTH1_URL), 2)

    def test_04_地域ごとに別のトークン(self):
        self.add_successful_handshake()
        authenticator = self.make_authenticator()

        authenticator.retrieve_token("JP13")
        authenticator.retrieve_token("JP27")

        self.assertEqual(self.transport.count(AUTH1_URL), 2)

    def test_05_auth1ヘッダー欠落はauth2を呼ばない(self):
        """
        auth1応答にトークン・オフセット・長さのいずれかがなければ
        ProtocolViolationError となり、auth2は呼ばれない
        """
        for missing in AUTH1_HEADERS:
            with self.subTest(missing=missing):
                self.transport = FakeTransport()
                headers = {k: v for k, v in AUTH1_HEADERS.items() if k != missing}
                self.transport.add(AUTH1_URL, headers=headers)
                self.transport.add(AUTH2_URL)
                authenticator = self.make_authenticator(persist=False)

                with self.assertRaises(ProtocolViolationError):
                    authenticator.retrieve_token("JP13")
                self.assertEqual(self.transport.count(AUTH2_URL), 0)

    def test_06_auth1失敗(self):
        self.transport.add(AUTH1_URL, status=401)
        with self.assertRaises(AuthenticationError) as ctx:
            self.make_authenticator().retrieve_token("JP13")
        self.assertEqual(ctx.exception.status_code, 401)

    def test_07_auth2が200以外(self):
        self.transport.add(AUTH1_URL, headers=AUTH1_HEADERS)
        self.transport.add(AUTH2_URL, status=204)
        with self.assertRaises(AuthenticationError):
            self.make_authenticator().retrieve_token("JP13")

    def test_08_数値でない鍵範囲(self):
        headers = dict(AUTH1_HEADERS, **{'X-Radiko-KeyOffset': 'abc'})
        self.transport.add(AUTH1_URL, headers=headers)
        with self.assertRaises(InvalidKeyRangeError):
            self.make_authenticator().retrieve_token("JP13")
        self.assertEqual(self.transport.count(AUTH2_URL), 0)

    def test_09_鍵長を超える範囲(self):
        headers = dict(AUTH1_HEADERS, **{'X-Radiko-KeyOffset': str(len(TEST_APP_KEY) - 4)})
        self.transport.add(AUTH1_URL, headers=headers)
        with self.assertRaises(InvalidKeyRangeError):
            self.make_authenticator().retrieve_token("JP13")

    def test_10_キャッシュファイルに保存し再読み込み(self):
        """
        Given: 認証済みトークンがファイルに保存されている
        When: 新しいインスタンスで同じ地域のトークンを要求
        Then: ネットワークを使わずにファイルのトークンを返す
        """
        self.add_successful_handshake()
        self.make_authenticator().retrieve_token("JP13")

        with open(self.cache_path, 'r', encoding='utf-8') as f:
            saved = json.load(f)
        self.assertEqual(saved, {
            "JP13": {"token": "token-abc", "requestTime": int(self.clock.now * 1000)}
        })

        calls_before = len(self.transport.calls)
        token = self.make_authenticator().retrieve_token("JP13")
        self.assertEqual(token, "token-abc")
        self.assertEqual(len(self.transport.calls), calls_before)

    def test_11_壊れたキャッシュファイルは空として扱う(self):
        self.cache_path.parent.mkdir(parents=True)
        self.cache_path.write_text("{broken", encoding='utf-8')
        self.add_successful_handshake()

        token = self.make_authenticator().retrieve_token("JP13")

        self.assertEqual(token, "token-abc")
        self.assertEqual(self.transport.count(AUTH1_URL), 1)

    def test_12_永続化なし(self):
        self.add_successful_handshake()
        authenticator = self.make_authenticator(persist=False)
        authenticator.retrieve_token("JP13")
        self.assertFalse(self.cache_path.exists())

    def test_13_キャッシュ破棄(self):
        self.add_successful_handshake()
        authenticator = self.make_authenticator(persist=False)
        authenticator.retrieve_token("JP13")
        authenticator.clear_cache()
        self.assertIsNone(authenticator.get_cached_token("JP13"))

    def test_14_鍵ファイル未設定は初回認証でエラー(self):
        with patch.dict(os.environ, {}, clear=True):
            authenticator = RadikoAuthenticator(self.transport, persist=False)
            with self.assertRaises(ConfigurationError):
                authenticator.retrieve_token("JP13")
        self.assertEqual(self.transport.calls, [])


class TestTokenCacheEntry(unittest.TestCase):
    """トークンキャッシュエントリのテスト"""

    def test_01_有効期限(self):
        entry = TokenCacheEntry(token="t", request_time=1_000)
        self.assertTrue(entry.is_valid(1_000 + 4_199_999, 4_200_000))
        self.assertFalse(entry.is_valid(1_000 + 4_200_000, 4_200_000))

    def test_02_不正なエントリ(self):
        for data in [{"token": 1, "requestTime": 1}, {"token": "t", "requestTime": "1"},
                     {"token": "t", "requestTime": True}]:
            with self.subTest(data=data):
                with self.assertRaises(ValueError):
                    TokenCacheEntry.from_dict(data)


if __name__ == '__main__':
    unittest.main()
