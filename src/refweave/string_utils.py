"""String and date normalizers shared by the scanner, renderer and naming."""

from __future__ import annotations

import datetime
import re
import unicodedata
from dataclasses import dataclass
from urllib.parse import urlsplit

from bs4 import BeautifulSoup


MONTH_MAP: dict[str, int] = {
    "january": 1, "february": 2, "march": 3, "april": 4,
    "may": 5, "june": 6, "july": 7, "august": 8,
    "september": 9, "october": 10, "november": 11, "december": 12,
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "jun": 6, "jul": 7,
    "aug": 8, "sep": 9, "sept": 9, "oct": 10, "nov": 11, "dec": 12,
}

# Second-level labels that sit under a country code and act as a public suffix
# (example.co.uk, example.com.au).
_SECOND_LEVEL_SUFFIXES: frozenset[str] = frozenset({
    "ac", "co", "com", "edu", "gov", "go", "ne", "net", "or", "org", "ltd", "plc", "gob",
})

_ROMAN_NUMERALS: tuple[tuple[int, str], ...] = (
    (1000, "M"), (900, "CM"), (500, "D"), (400, "CD"),
    (100, "C"), (90, "XC"), (50, "L"), (40, "XL"),
    (10, "X"), (9, "IX"), (5, "V"), (4, "IV"), (1, "I"),
)

_ALPHA_GROUPS: tuple[str, ...] = ("#", *"ABCDEFGHIJKLMNOPQRSTUVWXYZ", "*")

_COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)
_REF_BLOCK_RE = re.compile(r"<ref[^>]*>.*?</ref>", re.DOTALL | re.IGNORECASE)
_LANG_TEMPLATE_RE = re.compile(r"\{\{\s*lang[-_a-z]*\s*\|[^|}]*\|([^{}]*?)\}\}", re.IGNORECASE)
_FLAT_TEMPLATE_RE = re.compile(r"\{\{[^{}]*\}\}")
_EXTERNAL_LINK_RE = re.compile(r"\[https?://[^\s\]]+(?:\s+([^\]]+))?\]")
_WIKI_LINK_RE = re.compile(r"\[\[([^|\]]*\|)?([^\]]+)\]\]")
_ITALIC_BOLD_RE = re.compile(r"''+")
_WS_RE = re.compile(r"\s+")

_YEAR_RE = re.compile(r"(?:^|\D)(\d{4})(?!\d)")
_URL_RE = re.compile(r"https?://[^\s|<>\"]+", re.IGNORECASE)

_YMD_RE = re.compile(r"^(\d{4})[./-](\d{1,2})[./-](\d{1,2})$")
_CJK_YMD_RE = re.compile(r"^(\d{4})\s*年\s*(\d{1,2})\s*月\s*(\d{1,2})\s*日$")
_DAY_MONTH_RE = re.compile(r"^(\d{1,2})\s+([A-Za-z.]+)\s*,?\s*(\d{4})$")
_MONTH_DAY_RE = re.compile(r"^([A-Za-z.]+)\s+(\d{1,2})(?:\s*,\s*|\s+)(\d{4})$")
_NUMERIC_DMY_RE = re.compile(r"^(\d{1,2})[./-](\d{1,2})[./-](\d{4})$")
_DATE_PARAM_RE = re.compile(r"^(?:date\d*|(?:access|archive|publication|orig)-?date\d*)$")


# ---------------------------------------------------------------------------
# Digits and markup
# ---------------------------------------------------------------------------


def convert_digits_to_ascii(value: str) -> str:
    """Replace every Unicode decimal digit with its ASCII counterpart."""
    out: list[str] = []
    for ch in value:
        if ch.isdecimal() and not ch.isascii():
            out.append(str(unicodedata.decimal(ch)))
        else:
            out.append(ch)
    return "".join(out)


def _strip_tags(text: str) -> str:
    if "<" not in text:
        return text
    return BeautifulSoup(text, "html.parser").get_text(" ")


def strip_markup(text: str) -> str:
    """Reduce a wikitext/HTML snippet to plain words for token extraction."""
    t = _COMMENT_RE.sub(" ", text or "")
    t = _REF_BLOCK_RE.sub(" ", t)
    t = _strip_tags(t)
    t = _LANG_TEMPLATE_RE.sub(r"\1", t)
    t = _FLAT_TEMPLATE_RE.sub(" ", t)
    t = _EXTERNAL_LINK_RE.sub(lambda m: m.group(1) or "", t)
    t = _WIKI_LINK_RE.sub(r"\2", t)
    t = _ITALIC_BOLD_RE.sub("", t)
    return _WS_RE.sub(" ", t).strip()


def escape_attr(value: str) -> str:
    return value.replace('"', "&quot;")


# ---------------------------------------------------------------------------
# Years, URLs, domains
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class YearCandidate:
    """A four-digit year as written and in ASCII digits."""

    original: str
    ascii: str


def first_year_candidate(value: str) -> YearCandidate | None:
    if not value:
        return None
    m = _YEAR_RE.search(convert_digits_to_ascii(value))
    if not m:
        return None
    original = _YEAR_RE.search(value)
    return YearCandidate(original=original.group(1) if original else m.group(1), ascii=m.group(1))


def extract_url(content: str) -> str | None:
    m = _URL_RE.search(content)
    return m.group(0) if m else None


def _hostname(url: str) -> str:
    candidate = url.strip()
    if "://" not in candidate and not candidate.startswith("//"):
        candidate = "//" + candidate
    try:
        return (urlsplit(candidate).hostname or "").lower()
    except ValueError:
        return ""


def domain_from_url(url: str) -> str | None:
    """Host name of ``url`` with a leading ``www.`` removed."""
    host = _hostname(url)
    if host.startswith("www."):
        host = host[4:]
    return host or None


def domain_short_from_url(url: str) -> str | None:
    """Registrable label of the host, without its public suffix.

    ``https://news.example.co.uk/a`` gives ``example``.
    """
    host = domain_from_url(url)
    if not host:
        return None
    labels = [label for label in host.split(".") if label]
    if len(labels) == 1:
        return labels[0]
    suffix_len = 1
    if len(labels) >= 3 and len(labels[-1]) == 2 and labels[-2] in _SECOND_LEVEL_SUFFIXES:
        suffix_len = 2
    return labels[-suffix_len - 1]


# ---------------------------------------------------------------------------
# Names and counters
# ---------------------------------------------------------------------------


def normalize_name_key(name: str) -> str:
    """Lower-case ASCII key for comparing reference names."""
    if not name:
        return ""
    decomposed = unicodedata.normalize("NFD", convert_digits_to_ascii(name))
    ascii_ = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
    key = re.sub(r"[\s_]+", "_", ascii_.lower())
    return re.sub(r"[^\w-]+", "", key).strip()


def to_latin(n: int) -> str:
    """Zero-based index to a letter sequence: 0 -> a, 25 -> z, 26 -> aa."""
    out = ""
    num = n
    while True:
        out = chr(97 + num % 26) + out
        num = num // 26 - 1
        if num < 0:
            return out


def number_to_alpha(value: int, uppercase: bool = False) -> str:
    """One-based bijective base-26: 1 -> a, 27 -> aa."""
    if value <= 0:
        return str(value)
    out = ""
    num = value
    while num > 0:
        out = chr(97 + (num - 1) % 26) + out
        num = (num - 1) // 26
    return out.upper() if uppercase else out


def number_to_roman(value: int) -> str:
    if value <= 0:
        return str(value)
    remaining = min(value, 3999)
    out: list[str] = []
    for num, symbol in _ROMAN_NUMERALS:
        while remaining >= num:
            out.append(symbol)
            remaining -= num
    return "".join(out)


def alpha_index(char: str) -> int:
    """Sort position of an alphabetical group bucket; unknown buckets sort last."""
    try:
        return _ALPHA_GROUPS.index(char)
    except ValueError:
        return len(_ALPHA_GROUPS)


def natural_sort_key(value: str) -> tuple[tuple[int, int | str], ...]:
    """Case-insensitive, numeric-aware key: ``ref2`` sorts before ``ref10``."""
    folded = unicodedata.normalize("NFKC", value).casefold()
    parts = re.split(r"(\d+)", folded)
    return tuple((0, int(part)) if part.isdigit() else (1, part) for part in parts if part)


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------


def _month_from_name(raw: str) -> int | None:
    key = re.sub(r"[^A-Za-z]", "", raw).lower()
    return MONTH_MAP.get(key) or MONTH_MAP.get(key[:3])


def build_iso_date(year: int, month: int, day: int) -> str | None:
    try:
        return datetime.date(year, month, day).isoformat()
    except ValueError:
        return None


def normalize_date_value(raw_value: str) -> str | None:
    """Parse a citation date into ``YYYY-MM-DD``; None when unrecognized.

    Handles ``2023-7-5`` / ``2023.07.05``, ``2023年7月5日``, ``5 July 2023``,
    ``July 5, 2023`` and numeric day/month orders that are unambiguous.
    """
    if not raw_value:
        return None
    trimmed = convert_digits_to_ascii(raw_value).strip()
    if not trimmed or re.search(r"[{}\[\]]", trimmed):
        return None

    m = _YMD_RE.match(trimmed) or _CJK_YMD_RE.match(trimmed)
    if m:
        return build_iso_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))

    m = _DAY_MONTH_RE.match(trimmed)
    if m:
        month = _month_from_name(m.group(2))
        if month:
            return build_iso_date(int(m.group(3)), month, int(m.group(1)))

    m = _MONTH_DAY_RE.match(trimmed)
    if m:
        month = _month_from_name(m.group(1))
        if month:
            return build_iso_date(int(m.group(3)), month, int(m.group(2)))

    m = _NUMERIC_DMY_RE.match(trimmed)
    if m:
        first, second, year = int(m.group(1)), int(m.group(2)), int(m.group(3))
        if first > 12:
            return build_iso_date(year, second, first)
        if second > 12:
            return build_iso_date(year, first, second)

    return None


def is_date_param_name(name: str | None) -> bool:
    if not name:
        return False
    key = name.strip().lower().replace("_", "-")
    if not key or key.isdigit():
        return False
    return bool(_DATE_PARAM_RE.match(key))


def normalize_date_param_value(name: str, value: str) -> str:
    """ISO form of ``value`` when ``name`` is a date parameter and it parses."""
    if not is_date_param_name(name):
        return value
    return normalize_date_value(value) or value
