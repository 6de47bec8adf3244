"""
音频风格标注 - LLM 分类 + 关键词兜底

classify() 永不抛异常: LLM 未启用 / 调用失败 / 返回无法解析时回退到关键词规则。
输出统一映射到固定的 genre / vibe 词表。
"""

import json
import logging
import re
from typing import Any, Optional

from gram_trends.config.settings import settings
from gram_trends.models.message import TagResult
from gram_trends.services.llm_client import LLMServiceClient

logger = logging.getLogger(__name__)

CANONICAL_GENRES = {
    "pop": "pop",
    "hiphop": "hip-hop",
    "hip-hop": "hip-hop",
    "rap": "hip-hop",
    "electronic": "electronic",
    "edm": "electronic",
    "dance": "dance",
    "rock": "rock",
    "indie": "indie",
    "rnb": "r&b",
    "r&b": "r&b",
    "latin": "latin",
    "classical": "classical",
    "soundtrack": "soundtrack",
}

CANONICAL_VIBES = {
    "energetic": "energetic",
    "hype": "energetic",
    "upbeat": "energetic",
    "chill": "chill",
    "calm": "chill",
    "sad": "sad",
    "moody": "sad",
    "funny": "funny",
    "comedic": "funny",
    "romantic": "romantic",
    "dreamy": "dreamy",
    "dark": "dark",
    "nostalgic": "nostalgic",
    "aggressive": "aggressive",
    "workout": "gym",
    "gym": "gym",
    "motivational": "gym",
    "dance": "dance",
}

# Ordered: first match wins.
FALLBACK_KEYWORDS = (
    ("sad", "sad"),
    ("slow", "sad"),
    ("love", "romantic"),
    ("chill", "chill"),
    ("gym", "gym"),
    ("workout", "gym"),
    ("dance", "dance"),
    ("funny", "funny"),
    ("comedy", "funny"),
    ("hype", "energetic"),
    ("viral", "energetic"),
)

TAG_PROMPT = (
    "Classify this song for TikTok usage.\n"
    'Song: "{title}" by "{author}".\n'
    'Return ONLY a JSON object: {{"genre": "Pop/Rap/Electronic/etc", "vibe": "Energetic/Sad/Funny/Chill"}}'
)

_JSON_BLOCK_RE = re.compile(r"\{.*\}", re.DOTALL)
_TOKEN_STRIP_RE = re.compile(r"[^a-z0-9&\s-]")
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_token(value: Any) -> str:
    text = str(value or "").lower()
    text = _TOKEN_STRIP_RE.sub("", text).strip()
    return _WHITESPACE_RE.sub("-", text)


def parse_ai_response(value: Any) -> TagResult:
    """Pull {genre, vibe} out of a model reply; the reply may wrap the JSON in prose."""
    default = TagResult()
    if isinstance(value, dict) and value.get("genre") and value.get("vibe"):
        return TagResult(genre=str(value["genre"]), vibe=str(value["vibe"]))

    text = value if isinstance(value, str) else json.dumps(value or {})
    match = _JSON_BLOCK_RE.search(text)
    if not match:
        return default
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError:
        return default
    if not isinstance(parsed, dict):
        return default
    return TagResult(
        genre=str(parsed.get("genre") or default.genre),
        vibe=str(parsed.get("vibe") or default.vibe),
    )


def normalize_tags(genre: str, vibe: str) -> TagResult:
    clean_genre = normalize_token(genre)
    clean_vibe = normalize_token(vibe)
    return TagResult(
        genre=CANONICAL_GENRES.get(clean_genre, clean_genre or settings.tagger.placeholder_genre),
        vibe=CANONICAL_VIBES.get(clean_vibe, clean_vibe or settings.tagger.placeholder_vibe),
    )


def heuristic_tags(title: str, author: str) -> TagResult:
    haystack = f"{title} {author}".lower()
    vibe = settings.tagger.placeholder_vibe
    for token, mapped in FALLBACK_KEYWORDS:
        if token in haystack:
            vibe = mapped
            break
    return TagResult(genre=settings.tagger.placeholder_genre, vibe=vibe)


def needs_tagging(genre: Optional[str], vibe: Optional[str]) -> bool:
    missing_genre = not genre or genre == settings.tagger.placeholder_genre
    missing_vibe = not vibe or vibe == settings.tagger.placeholder_vibe
    return missing_genre or missing_vibe


class AudioTagger:
    """音频 genre / vibe 分类器"""

    def __init__(self, llm: Optional[LLMServiceClient] = None, llm_enabled: Optional[bool] = None):
        self._llm_enabled = settings.tagger.llm_enabled if llm_enabled is None else llm_enabled
        self._llm = llm
        if self._llm is None and self._llm_enabled:
            self._llm = LLMServiceClient()

    async def classify(self, title: str, author: str) -> TagResult:
        if not self._llm_enabled or self._llm is None:
            return heuristic_tags(title, author)
        prompt = TAG_PROMPT.format(title=title, author=author)
        try:
            reply = await self._llm.generate(prompt)
            parsed = parse_ai_response(reply)
            return normalize_tags(parsed.genre, parsed.vibe)
        except Exception as e:
            logger.error("AI tagging failed for %r: %s", title, e)
            return heuristic_tags(title, author)

    async def close(self):
        if self._llm is not None:
            await self._llm.close()
