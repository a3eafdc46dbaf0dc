import httpx
import pytest

from newsbrief.generation.news import NewsFetcher, parse_rss_items

FEED = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
<channel>
<title>NHKニュース</title>
<item>
<title>円相場 一時150円台</title>
<link>https://www3.nhk.or.jp/news/html/1.html</link>
<description>外国為替市場で円安が進みました。</description>
</item>
<item>
<title>各地で真夏日</title>
<link>https://www3.nhk.or.jp/news/html/2.html</link>
<description></description>
</item>
<item>
<title></title>
<description>タイトルのない項目</description>
</item>
</channel>
</rss>"""


def test_parse_rss_items():
    items = parse_rss_items(FEED)
    assert [i.title for i in items] == ["円相場 一時150円台", "各地で真夏日"]
    assert items[0].link == "https://www3.nhk.or.jp/news/html/1.html"
    assert items[0].description == "外国為替市場で円安が進みました。"
    assert items[1].description == ""


@pytest.mark.asyncio
class TestNewsFetcher:
    async def test_fetch_tags_topics_and_skips_unknown(self):
        requested = []

        def handler(request):
            requested.append(str(request.url))
            return httpx.Response(200, text=FEED)

        fetcher = NewsFetcher(
            feeds={"headline": "https://rss.test/h.xml", "sports": "https://rss.test/s.xml"},
            transport=httpx.MockTransport(handler),
        )
        items = await fetcher.fetch(["headline", "weather", "sports"])

        assert requested == ["https://rss.test/h.xml", "https://rss.test/s.xml"]
        assert [i.topic for i in items] == ["headline", "headline", "sports", "sports"]

    async def test_items_per_feed_limit(self):
        fetcher = NewsFetcher(
            feeds={"headline": "https://rss.test/h.xml"},
            items_per_feed=1,
            transport=httpx.MockTransport(lambda r: httpx.Response(200, text=FEED)),
        )
        items = await fetcher.fetch(["headline"])
        assert len(items) == 1

    async def test_failing_feed_is_skipped(self):
        def handler(request):
            if request.url.path == "/h.xml":
                return httpx.Response(503)
            if request.url.path == "/i.xml":
                raise httpx.ConnectError("unreachable", request=request)
            return httpx.Response(200, text=FEED)

        fetcher = NewsFetcher(
            feeds={
                "headline": "https://rss.test/h.xml",
                "international": "https://rss.test/i.xml",
                "business": "https://rss.test/b.xml",
            },
            transport=httpx.MockTransport(handler),
        )
        items = await fetcher.fetch(["headline", "international", "business"])
        assert [i.topic for i in items] == ["business", "business"]
