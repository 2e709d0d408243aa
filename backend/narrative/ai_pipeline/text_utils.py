"""
Text helpers shared by the filter stage and clustering
"""
import re
from collections import Counter
from typing import List
from urllib.parse import urlparse, urlunparse, parse_qsl, urlencode

from bs4 import BeautifulSoup

NO_TITLE = "No Title"

# Video hosts keep the query params that identify the content
URL_PARAM_ALLOW_LIST = {
    "youtube.com": ["v"],
    "youtu.be": ["v"],
    "vimeo.com": ["id"],
}


def _bigrams(text: str) -> List[str]:
    s = re.sub(r"[^a-z0-9]", "", text.lower())
    return [s[i:i + 2] for i in range(len(s) - 1)]


def similarity_score(first: str, second: str) -> float:
    """
    Dice coefficient over character bigrams.

    Case and punctuation are ignored. Symmetric, in [0, 1], 1.0 for identical
    strings. Headlines scoring above ~0.8 are near duplicates.
    """
    if not first or not second:
        return 0.0

    a = Counter(_bigrams(first))
    b = Counter(_bigrams(second))
    total = sum(a.values()) + sum(b.values())
    if not a or not b:
        return 0.0

    overlap = sum((a & b).values())
    return (2.0 * overlap) / total


def clean_text(text: str) -> str:
    """Strip HTML, '[+123 chars]' style suffixes and bracketed notes, collapse whitespace"""
    if not text:
        return ""

    if "<" in text:
        text = BeautifulSoup(text, "html.parser").get_text(separator=" ", strip=True)

    text = re.sub(r"\[\+\d+\s?chars\]", "", text)
    text = re.sub(r"\[.*?\]", "", text)
    return re.sub(r"\s+", " ", text).strip()


def format_headline(title: str) -> str:
    """Trim, capitalize the first letter and end the headline with punctuation"""
    if not title or not title.strip():
        return NO_TITLE

    clean = re.sub(r"\s+", " ", title).strip()
    clean = clean[0].upper() + clean[1:]
    if not re.search(r"[.!?][\"']?$", clean):
        clean += "."
    return clean


def count_words(text: str) -> int:
    return len(text.split()) if text else 0


def _count_syllables(word: str) -> int:
    word = re.sub(r"[^a-z]", "", word.lower())
    if not word:
        return 0
    groups = re.findall(r"[aeiouy]+", word)
    count = len(groups)
    if word.endswith("e") and not word.endswith(("le", "ee")) and count > 1:
        count -= 1
    return max(1, count)


def reading_complexity(text: str) -> float:
    """
    Flesch-Kincaid grade level of the text, floored at 0.

    Higher means harder to read. Empty text scores 0.
    """
    words = re.findall(r"[A-Za-z']+", text or "")
    if not words:
        return 0.0

    sentences = max(1, len(re.findall(r"[.!?]+", text)))
    syllables = sum(_count_syllables(w) for w in words)

    grade = 0.39 * (len(words) / sentences) + 11.8 * (syllables / len(words)) - 15.59
    return round(max(0.0, grade), 1)


def normalize_url(url: str) -> str:
    """
    Canonical form of an article URL for deduplication.

    Drops the fragment, every query parameter except the allow-listed ones on
    video hosts, and the trailing slash.
    """
    if not url:
        return ""

    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return url

    if not parsed.scheme or not parsed.netloc:
        return url

    host = parsed.netloc.lower()
    query = ""
    for domain, keep in URL_PARAM_ALLOW_LIST.items():
        if domain in host:
            params = [(k, v) for k, v in parse_qsl(parsed.query) if k in keep]
            query = urlencode(params)
            break

    normalized = urlunparse((parsed.scheme, parsed.netloc, parsed.path, "", query, ""))
    if normalized.endswith("/"):
        normalized = normalized.rstrip("/")
    return normalized


def domain_of(url: str) -> str:
    """Lowercased host of a URL without the www. prefix, or "" when there is none"""
    try:
        host = urlparse((url or "").strip()).hostname or ""
    except ValueError:
        return ""
    host = host.lower()
    return host[4:] if host.startswith("www.") else host


def truncate(text: str, length: int = 60) -> str:
    return (text or "")[:length]
