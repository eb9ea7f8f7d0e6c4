"""Hashtag generation tool."""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

from services.tools.types import ToolDefinition

logger = logging.getLogger(__name__)

TOOL_NAME = "generateHashtags"

PLATFORM_MAX_HASHTAGS = {
    "linkedin": 5,
    "twitter": 3,
    "facebook": 7,
}

TONE_HASHTAGS = {
    "Professional": ["#Leadership", "#Business", "#Career", "#Success", "#Innovation"],
    "Casual": ["#LifeStyle", "#Community", "#Thoughts", "#Daily", "#Real"],
    "Inspirational": ["#Motivation", "#Inspiration", "#Growth", "#Mindset", "#Goals"],
}

PLATFORM_HASHTAGS = {
    "linkedin": ["#LinkedIn", "#Professional", "#Networking", "#B2B", "#Industry"],
    "twitter": ["#TechTwitter", "#Trending", "#Thread", "#X"],
    "facebook": ["#SocialMedia", "#Community", "#Engagement", "#Facebook"],
}

FALLBACK_HASHTAGS = ["#LinkedIn", "#Professional", "#Content"]

STOP_WORDS = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
        "of", "with", "by", "from", "as", "is", "was", "are", "been", "be",
        "have", "has", "had", "do", "does", "did", "will", "would", "could",
        "should", "may", "might", "can", "this", "that", "these", "those",
    }
)

_PUNCTUATION = re.compile(r"[^\w\s]")

GENERATE_HASHTAGS_TOOL = ToolDefinition(
    name=TOOL_NAME,
    description=(
        "Generate 5-10 relevant hashtags for a social media post based on the topic, tone, and "
        "platform. Returns an array of hashtags (with # prefix) that are trending, relevant, and "
        "appropriate for the content."
    ),
    input_schema={
        "topic": {"type": "string", "description": "The main topic or subject of the post"},
        "tone": {
            "type": "string",
            "enum": ["Professional", "Casual", "Inspirational"],
            "description": "The tone of the post",
        },
        "content_length": {
            "type": "string",
            "enum": ["Short", "Medium", "Long"],
            "description": "The length of the post content",
        },
        "platform": {
            "type": "string",
            "enum": ["linkedin", "twitter", "facebook"],
            "description": "The social media platform where the post will be published",
        },
        "content": {
            "type": "string",
            "description": "Optional: The actual post content to analyze for more accurate hashtags",
        },
    },
    required=["topic", "tone", "content_length", "platform"],
)


def extract_keywords(text: str) -> List[str]:
    """Lowercased, punctuation-free, stop-word-free words in first-seen order."""
    words = _PUNCTUATION.sub(" ", text.lower()).split()
    keywords: List[str] = []
    for word in words:
        if len(word) > 2 and word not in STOP_WORDS and word not in keywords:
            keywords.append(word)
    return keywords


def _hashtag(word: str) -> str:
    return f"#{word[:1].upper()}{word[1:].lower()}"


def _dedupe(hashtags: List[str]) -> List[str]:
    seen = set()
    unique: List[str] = []
    for tag in hashtags:
        key = tag.lower()
        if key in seen:
            continue
        seen.add(key)
        unique.append(tag)
    return unique


def _contextual_hashtags(
    topic: str,
    tone: str,
    platform: str,
    max_hashtags: int,
    content: Optional[str],
) -> List[str]:
    hashtags = [_hashtag(word) for word in extract_keywords(topic)[:3]]
    hashtags.extend(TONE_HASHTAGS.get(tone, TONE_HASHTAGS["Professional"])[:2])
    hashtags.extend(PLATFORM_HASHTAGS.get(platform, PLATFORM_HASHTAGS["linkedin"])[:2])

    if content:
        for word in extract_keywords(content)[:2]:
            if len(word) > 3 and not any(word in tag.lower() for tag in hashtags):
                hashtags.append(_hashtag(word))

    return _dedupe(hashtags)[:max_hashtags]


def generate_hashtags(
    topic: str,
    tone: str,
    platform: str,
    content_length: Optional[str] = None,
    content: Optional[str] = None,
) -> Dict[str, Any]:
    """Deterministic hashtags for a post; never raises."""
    try:
        max_hashtags = PLATFORM_MAX_HASHTAGS.get(platform, PLATFORM_MAX_HASHTAGS["linkedin"])
        hashtags = _contextual_hashtags(topic, tone, platform, max_hashtags, content)
        return {
            "hashtags": hashtags,
            "reasoning": (
                f"Generated {len(hashtags)} hashtags optimized for {platform} "
                f"with {tone.lower()} tone."
            ),
        }
    except Exception as exc:
        logger.warning("Hashtag generation fallback for topic=%r: %s", topic, exc)
        return {
            "hashtags": list(FALLBACK_HASHTAGS),
            "reasoning": "Fallback hashtags due to error in generation",
        }


def run(tool_input: Dict[str, Any]) -> Dict[str, Any]:
    return generate_hashtags(
        topic=tool_input.get("topic"),
        tone=tool_input.get("tone"),
        platform=tool_input.get("platform"),
        content_length=tool_input.get("content_length"),
        content=tool_input.get("content"),
    )
