import httpx
from bs4 import BeautifulSoup
from pydantic import BaseModel

from newsbrief.observability.logger import get_logger

log = get_logger("news")

TOPIC_RSS = {
    "headline": "https://www.nhk.or.jp/rss/news/cat0.xml",
    "international": "https://www.nhk.or.jp/rss/news/cat6.xml",
    "business": "https://www.nhk.or.jp/rss/news/cat5.xml",
    "technology": "https://www.nhk.or.jp/rss/news/cat3.xml",
    "sports": "https://www.nhk.or.jp/rss/news/cat7.xml",
    "entertainment": "https://www.nhk.or.jp/rss/news/cat2.xml",
}


class NewsItem(BaseModel):
    title: str
    description: str = ""
    link: str = ""
    topic: str | None = None


def _tag_text(item, name: str) -> str:
    tag = item.find(name)
    if tag is None:
        return ""
    text = tag.get_text().strip()
    if not text and tag.next_sibling is not None and isinstance(tag.next_sibling, str):
        # html.parser treats <link> as a void element; the URL lands after it
        text = str(tag.next_sibling).strip()
    return text


def parse_rss_items(xml: str) -> list[NewsItem]:
    soup = BeautifulSoup(xml, "html.parser")
    items = []
    for item in soup.find_all("item"):
        title = _tag_text(item, "title")
        if title:
            items.append(NewsItem(
                title=title,
                description=_tag_text(item, "description"),
                link=_tag_text(item, "link"),
            ))
    return items


class NewsFetcher:
    """Headlines per topic from the NHK RSS feeds."""

    def __init__(self, feeds: dict[str, str] = None, timeout_seconds: float = 15.0,
                 items_per_feed: int = 15, transport: httpx.AsyncBaseTransport | None = None):
        self.feeds = feeds or TOPIC_RSS
        self.timeout = timeout_seconds
        self.items_per_feed = items_per_feed
        self.transport = transport

    async def fetch(self, topics: list[str]) -> list[NewsItem]:
        news: list[NewsItem] = []
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport, follow_redirects=True) as client:
            for topic in topics:
                url = self.feeds.get(topic)
                if not url:
                    continue
                try:
                    response = await client.get(url)
                    response.raise_for_status()
                except httpx.HTTPError as e:
                    log.warning("rss_fetch_failed", topic=topic, error=str(e))
                    continue
                items = parse_rss_items(response.text)[: self.items_per_feed]
                news.extend(item.model_copy(update={"topic": topic}) for item in items)
        log.info("news_fetched", topics=topics, count=len(news))
        return news
