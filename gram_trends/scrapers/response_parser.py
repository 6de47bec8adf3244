"""
响应解析 - 从异构 JSON / HTML 载荷中提取榜单条目

两种相互独立的策略:
  1. JsonRecordParser: 结构化 JSON 数组, 字段名容错 (id|music_id, title|name ...)
  2. FallbackHtmlParser: 原始 HTML/文本上的正则提取 (内联 JSON 片段 -> 音乐链接)

所有上游页面结构相关的脆弱逻辑都集中在这里, 编排层只依赖 ResponseParser 接口。
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Set

from gram_trends.models.message import TrendItem

logger = logging.getLogger(__name__)

MAX_ITEMS = 50

_COUNT_CLEAN_RE = re.compile(r"[,\s]")
_COUNT_NUMBER_RE = re.compile(r"^[+-]?(\d+(?:\.\d*)?|\.\d+)([KMB])?")
_SLUG_RE = re.compile(r"[^a-z0-9]+")
_UNICODE_ESCAPE_RE = re.compile(r"\\u([0-9A-Fa-f]{4})")

_INLINE_JSON_RE = re.compile(
    r'"music_id":"?(\d+)"?[^}]*?"title":"((?:[^"\\]|\\.)+)"[^}]*?"author":"((?:[^"\\]|\\.)*)"'
)
_MUSIC_LINK_RE = re.compile(r'href="[^"]*/music/(?:[^"/?#]*-)?(\d+)[^"]*"[^>]*>([^<]+)<')
_PLAY_COUNT_RES = (
    re.compile(r'"video_count":(\d+)'),
    re.compile(r'"videoCnt":(\d+)'),
)
MUSIC_ID_RE = re.compile(r"/music/(?:[^/?#]*-)?(\d+)")


def parse_count(value: Any) -> int:
    """Decode usage counts like "1.2M", "35K", "1,024" into integers."""
    if value is None:
        return 0
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return max(0, int(round(value)))
    cleaned = _COUNT_CLEAN_RE.sub("", str(value)).upper()
    match = _COUNT_NUMBER_RE.match(cleaned)
    if not match:
        return 0
    number = float(match.group(1))
    suffix = match.group(2)
    if suffix == "K":
        number *= 1_000
    elif suffix == "M":
        number *= 1_000_000
    elif suffix == "B":
        number *= 1_000_000_000
    return max(0, int(round(number)))


def slugify(value: str, max_length: int = 64) -> str:
    slug = _SLUG_RE.sub("-", (value or "").lower()).strip("-")
    return slug[:max_length]


def synthesize_id(title: str, author: str, index: int) -> str:
    return slugify(f"{title}-{author}-{index}") or f"unknown-{index}"


def decode_escaped(value: str) -> str:
    text = (value or "").replace('\\"', '"')
    text = _UNICODE_ESCAPE_RE.sub(lambda m: chr(int(m.group(1), 16)), text)
    return text.strip()


def extract_music_id(href: str) -> Optional[str]:
    match = MUSIC_ID_RE.search(href or "")
    return match.group(1) if match else None


def _first_present(record: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = record.get(key)
        if value is not None:
            return value
    return None


class ResponseParser(ABC):
    """解析策略接口"""

    name: str = ""

    def __init__(self, max_items: int = MAX_ITEMS):
        self.max_items = max_items

    @abstractmethod
    def parse(self, payload: Any) -> List[TrendItem]:
        ...


class JsonRecordParser(ResponseParser):
    """Structured JSON records with flexible key aliasing."""

    name = "json"

    def parse(self, payload: Any) -> List[TrendItem]:
        records = self._records(payload)
        items: List[TrendItem] = []
        seen: Set[str] = set()

        for index, record in enumerate(records):
            if len(items) >= self.max_items:
                break
            if not isinstance(record, dict):
                continue
            try:
                item = self._to_item(record, index)
            except (TypeError, ValueError) as e:
                logger.debug("Skipping unparseable record at %d: %s", index, e)
                continue
            if item.id in seen:
                continue
            seen.add(item.id)
            items.append(item)

        return items

    @staticmethod
    def _records(payload: Any) -> List[Any]:
        if isinstance(payload, list):
            return payload
        if isinstance(payload, dict):
            data = payload.get("data")
            if isinstance(data, list):
                return data
        return []

    @staticmethod
    def _to_item(record: Dict[str, Any], index: int) -> TrendItem:
        raw_id = _first_present(record, "id", "music_id")
        item_id = str(raw_id).strip() if raw_id is not None else ""
        if not item_id:
            item_id = f"tiktok-{index}"

        raw_rank = record.get("rank")
        rank = int(raw_rank) if raw_rank is not None else index + 1
        if rank < 1:
            rank = index + 1

        title = _first_present(record, "title", "name")
        author = _first_present(record, "author", "artist")
        cover = _first_present(record, "cover_url", "cover")
        return TrendItem(
            id=item_id,
            rank=rank,
            title=str(title).strip() if title is not None and str(title).strip() else "Unknown",
            author=str(author).strip() if author is not None and str(author).strip() else "Unknown",
            play_count=parse_count(_first_present(record, "play_count", "video_count")),
            cover_url=str(cover) if cover is not None else "",
        )


class FallbackHtmlParser(ResponseParser):
    """Regex extraction over raw HTML / text bodies."""

    name = "html"

    def parse(self, payload: Any) -> List[TrendItem]:
        html = payload if isinstance(payload, str) else ""
        if not html:
            return []
        items = self._from_inline_json(html)
        if not items:
            items = self._from_music_links(html)
        return items

    def _from_inline_json(self, html: str) -> List[TrendItem]:
        items: List[TrendItem] = []
        seen: Set[str] = set()
        for match in _INLINE_JSON_RE.finditer(html):
            item_id = match.group(1)
            if item_id in seen:
                continue
            seen.add(item_id)
            items.append(
                TrendItem(
                    id=item_id,
                    rank=len(items) + 1,
                    title=decode_escaped(match.group(2)) or "Unknown",
                    author=decode_escaped(match.group(3)) or "Unknown",
                    play_count=self._play_count(self._record_window(html, match)),
                    cover_url="",
                )
            )
            if len(items) >= self.max_items:
                break
        return items

    def _from_music_links(self, html: str) -> List[TrendItem]:
        items: List[TrendItem] = []
        seen: Set[str] = set()
        for match in _MUSIC_LINK_RE.finditer(html):
            item_id = match.group(1)
            if item_id in seen:
                continue
            seen.add(item_id)
            items.append(
                TrendItem(
                    id=item_id,
                    rank=len(items) + 1,
                    title=decode_escaped(match.group(2)) or "Unknown",
                    author="Unknown",
                    play_count=0,
                    cover_url="",
                )
            )
            if len(items) >= self.max_items:
                break
        return items

    @staticmethod
    def _record_window(html: str, match: "re.Match") -> str:
        """The matched fragment up to the end of its enclosing object."""
        end = html.find("}", match.end())
        return html[match.start(): end if end != -1 else len(html)]

    @staticmethod
    def _play_count(snippet: str) -> int:
        for pattern in _PLAY_COUNT_RES:
            match = pattern.search(snippet)
            if match:
                return int(match.group(1))
        return 0


class HtmlResponseParser:
    """
    Proxy Grid 响应解析入口

    JSON 响应先走结构化解析, 结果为空时把其中的 body/html/data 文本
    (或整个 JSON 序列化结果) 交给 HTML 策略; 非 JSON 响应直接走 HTML 策略。
    """

    def __init__(
        self,
        max_items: int = MAX_ITEMS,
        strategies: Optional[Iterable[ResponseParser]] = None,
        html_parser: Optional[ResponseParser] = None,
    ):
        self._json_strategies: List[ResponseParser] = list(strategies or [JsonRecordParser(max_items)])
        self._html_parser = html_parser or FallbackHtmlParser(max_items)

    def parse_json(self, payload: Any) -> List[TrendItem]:
        for strategy in self._json_strategies:
            items = strategy.parse(payload)
            if items:
                return items
        return self._html_parser.parse(self._embedded_text(payload))

    def parse_text(self, body: str) -> List[TrendItem]:
        return self._html_parser.parse(body or "")

    def parse_response(self, content_type: str, body: str) -> List[TrendItem]:
        if "application/json" in (content_type or "").lower():
            try:
                payload = json.loads(body)
            except json.JSONDecodeError:
                logger.warning("Response declared JSON but failed to decode, scanning as HTML")
                return self.parse_text(body)
            return self.parse_json(payload)
        return self.parse_text(body)

    @staticmethod
    def _embedded_text(payload: Any) -> str:
        if isinstance(payload, dict):
            for key in ("body", "html", "data"):
                value = payload.get(key)
                if isinstance(value, str):
                    return value
        try:
            return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
        except (TypeError, ValueError):
            return ""
