"""
リンク解決単体テスト

リンク種別判定、詳細リンク解析、検索APIからの候補生成と
最新候補の選択を確認する。
"""

import json
import unittest
from datetime import datetime
from urllib.parse import parse_qs, urlsplit

from tsradiko.error_handler import (
    InvalidLinkError, NoUsableCandidateError, TransportTransientError,
    UnsupportedLinkError
)
from tsradiko.link_resolver import (
    DetailRef, LinkKind, LinkResolver, build_detail_urls_from_search,
    classify_link, extract_detail, extract_search_key, pick_latest_detail_url,
    to_ft_timestamp
)
from tsradiko.utils.datetime_utils import JST
from tests.utils.fake_transport import FakeTransport

SEARCH_API = LinkResolver.SEARCH_API_URL
SEARCH_LINK = "https://radiko.jp/#!/search/timeshift?key=%E3%83%86%E3%82%B9%E3%83%88&filter=past"
NOW = JST.localize(datetime(2026, 2, 19, 12, 0, 0))


def search_payload(*records) -> str:
    return json.dumps({"meta": {"result_count": len(records)}, "data": list(records)})


class TestLinkClassification(unittest.TestCase):
    """リンク種別判定テスト"""

    def test_01_リンク種別(self):
        cases = [
            (SEARCH_LINK, LinkKind.SEARCH),
            ("https://radiko.jp/#!/ts/TBS/20260219010000", LinkKind.DETAIL),
            ("https://radiko.jp/#!/live/TBS", LinkKind.UNSUPPORTED),
            ("https://example.com/", LinkKind.UNSUPPORTED),
        ]
        for url, expected in cases:
            with self.subTest(url=url):
                self.assertEqual(classify_link(url), expected)


class TestDetailExtraction(unittest.TestCase):
    """詳細リンク解析テスト"""

    def test_01_放送局と開始時刻(self):
        detail = extract_detail("https://radiko.jp/#!/ts/TBS/20260219010000")
        self.assertEqual(detail, DetailRef(station_id="TBS", ft="20260219010000"))
        self.assertEqual(detail.detail_url, "https://radiko.jp/#!/ts/TBS/20260219010000")

    def test_02_不正な詳細リンク(self):
        invalid = [
            "https://radiko.jp/#!/ts/TBS",
            "https://radiko.jp/#!/live/TBS/20260219010000",
            "https://radiko.jp/#!/ts//20260219010000",
            "https://radiko.jp/#!/ts/TBS/2026021901",
            "https://radiko.jp/#!/ts/TBS/20261319010000",
            "https://radiko.jp/",
        ]
        for url in invalid:
            with self.subTest(url=url):
                with self.assertRaises(InvalidLinkError):
                    extract_detail(url)


class TestSearchParsing(unittest.TestCase):
    """検索リンク・検索結果の解析テスト"""

    def test_01_検索キー(self):
        self.assertEqual(extract_search_key(SEARCH_LINK), "テスト")
        self.assertEqual(extract_search_key("https://radiko.jp/#!/search/timeshift?key=abc"), "abc")
        self.assertEqual(extract_search_key("https://radiko.jp/#!/search/timeshift"), "")
        self.assertEqual(extract_search_key("https://radiko.jp/#!/search/timeshift?filter=past"), "")

    def test_02_開始時刻の変換(self):
        self.assertEqual(to_ft_timestamp("2026-02-19 01:00:00"), "20260219010000")
        self.assertEqual(to_ft_timestamp("2026-02-19T01:00:00"), "20260219010000")
        self.assertEqual(to_ft_timestamp("2026/02/19 01:00:00"), "")
        self.assertEqual(to_ft_timestamp("2026-02-19 01:00"), "")

    def test_03_検索結果から詳細リンク生成(self):
        """
        station_id と正しい形式の start_time を持つレコードのみが詳細リンクになる
        """
        payload = search_payload(
            {"station_id": "TBS", "start_time": "2026-02-18 01:00:00"},
            {"station_id": "", "start_time": "2026-02-18 01:00:00"},
            {"station_id": "QRR"},
            {"station_id": "LFR", "start_time": "2026/02/18 01:00:00"},
            {"station_id": "INT", "start_time": "2026-02-17T22:00:00"},
        )
        self.assertEqual(build_detail_urls_from_search(payload.encode('utf-8')), [
            "https://radiko.jp/#!/ts/TBS/20260218010000",
            "https://radiko.jp/#!/ts/INT/20260217220000",
        ])

    def test_04_dataなし(self):
        self.assertEqual(build_detail_urls_from_search(b'{"meta": {}}'), [])
        self.assertEqual(build_detail_urls_from_search(b'[]'), [])


class TestCandidateSelection(unittest.TestCase):
    """最新候補の選択テスト"""

    def test_01_未来の番組を除いて最新を選ぶ(self):
        urls = [
            "https://radiko.jp/#!/ts/TBS/20260212010000",
            "https://radiko.jp/#!/ts/TBS/20260219010000",
            "https://radiko.jp/#!/ts/TBS/20260226010000",
            "https://radiko.jp/#!/ts/TBS/invalid",
        ]
        self.assertEqual(pick_latest_detail_url(urls, NOW),
                         "https://radiko.jp/#!/ts/TBS/20260219010000")

    def test_02_現在時刻ちょうどは対象(self):
        urls = ["https://radiko.jp/#!/ts/TBS/20260219120000"]
        self.assertEqual(pick_latest_detail_url(urls, NOW), urls[0])

    def test_03_候補なし(self):
        for urls in [[], ["https://radiko.jp/#!/ts/TBS/20260226010000"], ["broken"]]:
            with self.subTest(urls=urls):
                with self.assertRaises(NoUsableCandidateError):
                    pick_latest_detail_url(urls, NOW)


class TestLinkResolver(unittest.TestCase):
    """LinkResolver のテスト"""

    def setUp(self):
        self.transport = FakeTransport()
        self.resolver = LinkResolver(self.transport, clock=lambda: NOW)

    def test_01_詳細リンクはそのまま返す(self):
        url = "https://radiko.jp/#!/ts/TBS/20260219010000"
        self.assertEqual(self.resolver.resolve_to_detail(url), url)
        self.assertEqual(self.transport.calls, [])

    def test_02_非対応リンク(self):
        with self.assertRaises(UnsupportedLinkError):
            self.resolver.resolve_to_detail("https://radiko.jp/#!/live/TBS")

    def test_03_検索リンクから最新の放送回を解決(self):
        """
        Given: 過去2回分と未来1回分を返す検索API
        When: 検索リンクを解決
        Then: 現在時刻以前で最も新しい放送回の詳細リンク
        """
        self.transport.add(SEARCH_API, body=search_payload(
            {"station_id": "TBS", "start_time": "2026-02-12 01:00:00"},
            {"station_id": "TBS", "start_time": "2026-02-19 01:00:00"},
            {"station_id": "TBS", "start_time": "2026-02-26 01:00:00"},
        ))

        detail_url = self.resolver.resolve_to_detail(SEARCH_LINK)

        self.assertEqual(detail_url, "https://radiko.jp/#!/ts/TBS/20260219010000")
        query = parse_qs(urlsplit(self.transport.calls[0].url).query, keep_blank_values=True)
        self.assertEqual(query['key'], ["テスト"])
        self.assertEqual(query['row_limit'], ["12"])
        self.assertEqual(query['app_id'], ["pc"])
        self.assertEqual(query['action_id'], ["0"])
        self.assertEqual(query['area_id'], [""])
        self.assertEqual(len(query['uid'][0]), 32)

    def test_04_検索キーが空なら通信せず候補なし(self):
        """
        検索キーが空の場合、候補取得はエラーにせず0件を返し、
        選択段階で NoUsableCandidateError になる
        """
        url = "https://radiko.jp/#!/search/timeshift?filter=past"
        self.assertEqual(self.resolver.fetch_search_candidates(url), [])
        with self.assertRaises(NoUsableCandidateError):
            self.resolver.resolve_to_detail(url)
        self.assertEqual(self.transport.calls, [])

    def test_05_検索APIの失敗は候補0件(self):
        cases = [
            {"status": 500, "body": ""},
            {"status": 404, "body": "not found"},
            {"status": 200, "body": "<html>"},
            {"status": 200, "body": TransportTransientError("timeout")},
        ]
        for case in cases:
            with self.subTest(case=case):
                self.transport = FakeTransport()
                self.transport.add(SEARCH_API, **case)
                resolver = LinkResolver(self.transport, clock=lambda: NOW)
                self.assertEqual(resolver.fetch_search_candidates(SEARCH_LINK), [])

    def test_06_検索結果0件(self):
        self.transport.add(SEARCH_API, body=search_payload())
        with self.assertRaises(NoUsableCandidateError):
            self.resolver.resolve_to_detail(SEARCH_LINK)

    def test_07_注入した時計を基準に選ぶ(self):
        self.transport.add(SEARCH_API, body=search_payload(
            {"station_id": "TBS", "start_time": "2026-02-12 01:00:00"},
            {"station_id": "TBS", "start_time": "2026-02-19 01:00:00"},
        ))
        earlier = JST.localize(datetime(2026, 2, 15, 0, 0, 0))
        resolver = LinkResolver(self.transport, clock=lambda: earlier)

        self.assertEqual(resolver.resolve_to_detail(SEARCH_LINK),
                         "https://radiko.jp/#!/ts/TBS/20260212010000")


if __name__ == '__main__':
    unittest.main()
