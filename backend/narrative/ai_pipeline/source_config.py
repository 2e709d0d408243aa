# narrative/ai_pipeline/source_config.py
"""
Source lists for the Narrative pipeline
Trusted outlets relax the image penalty, junk keywords sink a candidate
and banned domains never reach analysis
"""
from urllib.parse import urlparse

from narrative.ai_pipeline.text_utils import domain_of

# Matched as case-insensitive substrings of the source name
TRUSTED_SOURCES = [
    # Global wires
    "reuters", "associated press", "bloomberg", "bbc", "al jazeera", "deutsche welle",

    # Financial / policy
    "the wall street journal", "financial times", "the economist",
    "npr", "pbs",

    # India hard news
    "the indian express", "the hindu", "livemint", "ndtv", "business standard",
    "the print", "scroll.in", "ani news", "deccan herald", "the tribune"
]

# Matched as case-insensitive substrings of the title
JUNK_KEYWORDS = [
    # Lifestyle
    "dating", "relationship advice", "tips for", "diet", "weight loss",
    "workout", "fashion", "beauty", "outfit", "skin care", "hairstyle",
    "makeup", "gift idea",

    # Shopping & deals
    "coupon", "promo code", "discount", "deal of the day", "price drop", "bundle",
    "shopping", "gift guide", "best buy", "amazon prime", "black friday",
    "cyber monday", "sale", "% off", "where to buy", "restock", "clearance",
    "bargain", "doorbuster", "cheapest", "affiliate link",

    # Gaming guides
    "wordle", "connections hint", "connections answer", "crossword", "sudoku",
    "daily mini", "spoilers", "walkthrough", "guide", "today's answer", "quordle",
    "patch notes", "loadout", "tier list", "how to get", "where to find",
    "twitch drops", "codes for",

    # Fluff
    "horoscope", "zodiac", "astrology", "tarot", "psychic", "manifesting",
    "celeb look", "red carpet", "net worth",

    # Gambling
    "powerball", "mega millions", "lottery results", "winning numbers",
    "betting odds", "prediction", "parlay", "gambling",

    # Admin / paywall
    "subscribe now", "sign up", "newsletter", "login", "register",
    "have an account?", "exclusive content", "premium", "giveaway"
]

# Seed for the BANNED_DOMAINS entry in system_config. An entry with a path
# bans only that section of the site.
DEFAULT_BANNED_DOMAINS = [
    # Tabloids & Gossip
    "dailymail.co.uk", "thesun.co.uk", "nypost.com", "tmz.com", "perezhilton.com",
    "mirror.co.uk", "express.co.uk", "dailystar.co.uk", "radaronline.com",

    # Clickbait & Viral
    "buzzfeed.com", "upworthy.com", "viralnova.com", "clickhole.com",
    "ladbible.com", "unilad.com", "boredpanda.com",

    # Satire
    "theonion.com", "babylonbee.com", "duffelblog.com", "newyorker.com/humor",

    # Propaganda / Extreme Bias
    "infowars.com", "sputniknews.com", "rt.com", "breitbart.com", "naturalnews.com",

    # Shopping / PR Wires
    "prweb.com", "businesswire.com", "prnewswire.com", "globenewswire.com",
    "marketwatch.com"
]

VALID_COUNTRIES = ["USA", "India"]
DEFAULT_COUNTRY = "Global"


def is_trusted_source(source_name: str) -> bool:
    source = (source_name or "").lower()
    return any(trusted in source for trusted in TRUSTED_SOURCES)


def find_junk_keyword(text: str, keywords=None):
    """Return the first junk keyword contained in the text, or None"""
    text = (text or "").lower()
    for keyword in keywords if keywords is not None else JUNK_KEYWORDS:
        if keyword in text:
            return keyword
    return None


def find_banned_domain(url: str, banned_domains):
    """
    Return the banned entry covering the URL, or None.

    A plain domain also covers its subdomains.
    """
    domain = domain_of(url)
    if not domain:
        return None

    try:
        path = urlparse(url.strip()).path.lower()
    except ValueError:
        path = ""

    for banned in banned_domains:
        banned = banned.lower()
        if "/" in banned:
            if f"{domain}{path}/".startswith(banned.rstrip("/") + "/"):
                return banned
        elif domain == banned or domain.endswith(f".{banned}"):
            return banned
    return None
