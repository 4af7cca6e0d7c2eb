"""Reference name suggestions built from citation metadata.

``extract_metadata`` pulls author/title/site/date fields out of a reference
body (template parameters first, plain-text fallbacks second) and
``build_suggestion`` turns them into a short, unique name such as
``example-20230705``. ``suggest_names`` does both for a whole document and
returns maps that plug straight into ``RewriteOptions``.
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any, Literal, TypeAlias

from refweave.markup import is_auto_generated_name, parse_template_params, pick_template_param
from refweave.registry import build_registry
from refweave.string_utils import (
    MONTH_MAP,
    build_iso_date,
    convert_digits_to_ascii,
    domain_from_url,
    domain_short_from_url,
    extract_url,
    first_year_candidate,
    normalize_date_value,
    normalize_name_key,
    strip_markup,
    to_latin,
)


NamingField: TypeAlias = Literal[
    "last", "first", "author", "title", "work", "publisher",
    "domain", "domain_short", "phrase", "year", "fulldate",
]
IncrementStyle: TypeAlias = Literal["latin", "numeric"]

NAMING_FIELDS: tuple[NamingField, ...] = (
    "last", "first", "author", "title", "work", "publisher",
    "domain", "domain_short", "phrase", "year", "fulldate",
)
DEFAULT_FIELDS: tuple[NamingField, ...] = ("domain_short", "fulldate")
FALLBACK_ORDER: tuple[NamingField, ...] = (
    "title", "domain_short", "domain", "phrase", "author", "work", "year", "fulldate",
)

_FIELD_ALIASES: dict[str, str] = {"domainShort": "domain_short", "domain-short": "domain_short"}

_TEMPLATE_NAME_RE = re.compile(r"\{\{\s*([^{|}]+?)(?:\s*\||\s*\}\})")
_LANG_PREFIX_RE = re.compile(r"^[a-zA-Z-]{2,}:\s*")
_NUMERIC_DATE_RE = re.compile(r"^(\d{4})(?:\D+(\d{1,2})(?:\D+(\d{1,2}))?)?$")
_DAY_MONTH_RE = re.compile(r"^(\d{1,2})\s+([a-zA-Z.]+)\s*,?\s*(\d{4})$")
_MONTH_DAY_RE = re.compile(r"^([a-zA-Z.]+)\s+(\d{1,2})(?:\s*,\s*|\s+)(\d{4})$")
_AUTHOR_SPLIT_RE = re.compile(r"[,;]| and ", re.IGNORECASE)
_UNSAFE_CHARS_RE = re.compile(r"[<>{}\[\]|\"]")
_WS_RE = re.compile(r"\s+")
_TRAILING_DIGIT_RE = re.compile(r"\d$")

# Defaults for citation templates whose source is implied by the template itself.
_TEMPLATE_SOURCES: dict[str, tuple[str, str, str]] = {
    "cite tweet": ("Twitter", "twitter.com", "twitter"),
    "cite arxiv": ("arXiv", "arxiv.com", "arxiv"),
    "cite biorxiv": ("bioRxiv", "biorxiv.org", "biorxiv"),
    "cite citeseerx": ("CiteSeerX", "citeseerx.ist.psu.edu", "citeseerx"),
    "cite ssrn": ("SSRN", "ssrn.com", "ssrn"),
}


@dataclass(slots=True)
class RefMetadata:
    last: str | None = None
    first: str | None = None
    author: str | None = None
    title: str | None = None
    work: str | None = None
    publisher: str | None = None
    domain: str | None = None
    domain_short: str | None = None
    phrase: str | None = None
    year: str | None = None
    year_ascii: str | None = None
    text_year: str | None = None
    text_year_ascii: str | None = None
    date_ymd: str | None = None
    date_display: str | None = None


@dataclass(frozen=True, slots=True)
class NamingConfig:
    fields: tuple[NamingField, ...] = DEFAULT_FIELDS
    lowercase: bool = True
    strip_diacritics: bool = False
    strip_punctuation: bool = False
    replace_space_with: str = "_"
    convert_year_digits: bool = True
    delimiter: str = "-"
    delimiter_conditional: bool = False
    increment_style: IncrementStyle = "latin"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> NamingConfig:
        """Accept camelCase or snake_case keys; unknown fields are dropped."""
        def get(*keys: str) -> Any:
            for key in keys:
                if key in data:
                    return data[key]
            return None

        kwargs: dict[str, Any] = {}
        fields_raw = get("fields")
        if fields_raw is not None:
            if isinstance(fields_raw, str) or not isinstance(fields_raw, Iterable):
                raise ValueError("fields must be a list of field names")
            kwargs["fields"] = normalize_field_selection(fields_raw) or DEFAULT_FIELDS
        for attr, keys in (
            ("lowercase", ("lowercase",)),
            ("strip_diacritics", ("strip_diacritics", "stripDiacritics")),
            ("strip_punctuation", ("strip_punctuation", "stripPunctuation")),
            ("convert_year_digits", ("convert_year_digits", "convertYearDigits")),
            ("delimiter_conditional", ("delimiter_conditional", "delimiterConditional")),
        ):
            value = get(*keys)
            if value is not None:
                if not isinstance(value, bool):
                    raise ValueError(f"{attr} must be a boolean")
                kwargs[attr] = value
        for attr, keys in (
            ("replace_space_with", ("replace_space_with", "replaceSpaceWith")),
            ("delimiter", ("delimiter",)),
        ):
            value = get(*keys)
            if value is not None:
                if not isinstance(value, str):
                    raise ValueError(f"{attr} must be a string")
                kwargs[attr] = value
        style = get("increment_style", "incrementStyle")
        if style is not None:
            if style not in ("latin", "numeric"):
                raise ValueError(f"unknown increment style {style!r}")
            kwargs["increment_style"] = style
        return cls(**kwargs)


def normalize_field_selection(
    selection: Iterable[str],
    allowed: Iterable[str] = NAMING_FIELDS,
) -> tuple[NamingField, ...]:
    """Known fields only, first occurrence kept, camelCase names accepted."""
    allowed_set = set(allowed)
    seen: list[NamingField] = []
    for raw in selection:
        name = _FIELD_ALIASES.get(raw, raw) if isinstance(raw, str) else None
        if name in allowed_set and name not in seen:
            seen.append(name)  # type: ignore[arg-type]
    return tuple(seen)


# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------


def _strip_language_prefix(value: str) -> str:
    return _LANG_PREFIX_RE.sub("", value or "")


def _month(raw: str) -> int | None:
    key = re.sub(r"[^a-zA-Z]", "", raw).lower()
    return MONTH_MAP.get(key) or MONTH_MAP.get(key[:3])


def _full_date(year: int, month: int, day: int) -> tuple[str | None, str | None]:
    iso = build_iso_date(year, month, day)
    if iso is None:
        return None, None
    return iso.replace("-", ""), iso


def parse_name_date(value: str) -> tuple[str | None, str | None]:
    """``(YYYYMMDD, display)`` for a citation date; partial dates pad with 01."""
    trimmed = value.strip()
    if not trimmed:
        return None, None

    m = _NUMERIC_DATE_RE.match(trimmed)
    if m:
        year, month, day = m.groups()
        if month and day:
            return _full_date(int(year), int(month), int(day))
        if month:
            return f"{year}{int(month):02d}01", f"{year}-{int(month):02d}"
        return year, year

    m = _DAY_MONTH_RE.match(trimmed)
    if m and _month(m.group(2)):
        return _full_date(int(m.group(3)), _month(m.group(2)) or 0, int(m.group(1)))
    m = _MONTH_DAY_RE.match(trimmed)
    if m and _month(m.group(1)):
        return _full_date(int(m.group(3)), _month(m.group(1)) or 0, int(m.group(2)))

    iso = normalize_date_value(trimmed)
    if iso:
        return iso.replace("-", ""), iso
    return None, None


def _template_name(content: str) -> str | None:
    m = _TEMPLATE_NAME_RE.search(content)
    if not m:
        return None
    return m.group(1).replace("_", " ").strip().lower()


def extract_metadata(content: str) -> RefMetadata:
    """Naming metadata from a reference body."""
    content = content or ""
    params = parse_template_params(content)
    template = _template_name(content)
    meta = RefMetadata()

    def pick(*keys: str) -> str | None:
        return pick_template_param(params, *keys)

    meta.last = pick("last", "last1", "surname", "author1")
    meta.first = pick("first", "first1", "given")
    meta.author = pick("author", "authors")
    meta.title = strip_markup(_strip_language_prefix(pick("title", "script-title", "chapter", "contribution") or ""))
    meta.work = strip_markup(pick("work", "journal", "newspaper", "website", "periodical") or "")
    meta.publisher = strip_markup(pick("publisher", "institution") or "")

    url = pick("url", "archive-url") or extract_url(content)
    if url:
        meta.domain = domain_from_url(url)
        meta.domain_short = domain_short_from_url(url)

    raw_date = pick("date")
    normalized_date = convert_digits_to_ascii(strip_markup(raw_date)) if raw_date else ""
    if normalized_date:
        meta.date_ymd, meta.date_display = parse_name_date(normalized_date)

    base_year = first_year_candidate(pick("year", "date") or raw_date or "")
    if base_year:
        meta.year = base_year.original
        if base_year.ascii != base_year.original:
            meta.year_ascii = base_year.ascii
    if not meta.year:
        fallback = first_year_candidate(content)
        if fallback:
            meta.text_year = fallback.original
            if fallback.ascii != fallback.original:
                meta.text_year_ascii = fallback.ascii

    author_guess = strip_markup(meta.author) if meta.author else ""
    if not meta.last and author_guess:
        meta.last = _AUTHOR_SPLIT_RE.split(author_guess)[0].strip()

    phrase_source = strip_markup(content)
    if phrase_source:
        meta.phrase = " ".join(phrase_source.split()[:6])

    if template == "cite tweet":
        user = strip_markup(pick("user") or "")
        if user:
            meta.author = meta.author or user
            meta.last = meta.last or user
    if template in _TEMPLATE_SOURCES:
        site, domain, short = _TEMPLATE_SOURCES[template]
        meta.work = meta.work or site
        meta.publisher = meta.publisher or site
        meta.domain = meta.domain or domain
        meta.domain_short = meta.domain_short or short
    elif template and not meta.domain_short:
        meta.domain_short = template.replace("cite ", "", 1).replace(" ", "_", 1)
    return meta


# ---------------------------------------------------------------------------
# Suggestions
# ---------------------------------------------------------------------------


def sanitize_token(token: str, config: NamingConfig) -> str:
    if not token:
        return ""
    text = strip_markup(token)
    if config.strip_diacritics:
        decomposed = unicodedata.normalize("NFD", text)
        text = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
    if config.strip_punctuation:
        text = "".join(" " if unicodedata.category(ch)[0] in "PS" else ch for ch in text)
    text = _UNSAFE_CHARS_RE.sub(" ", text).strip()
    if config.lowercase:
        text = text.lower()
    text = _WS_RE.sub(config.replace_space_with, text)
    text = re.sub(r"_{2,}", "_", text)
    text = re.sub(r"\s{2,}", " ", text)
    return text.strip()


def _pick_year(meta: RefMetadata, config: NamingConfig) -> str | None:
    if config.convert_year_digits:
        return meta.year_ascii or meta.year
    return meta.year


def _pick_field(meta: RefMetadata, name: NamingField, config: NamingConfig) -> str | None:
    match name:
        case "author":
            return meta.author or meta.last
        case "year":
            return _pick_year(meta, config)
        case "fulldate":
            return meta.date_ymd
        case _:
            return getattr(meta, name) or None


def _join_parts(parts: list[str], config: NamingConfig) -> str:
    acc = ""
    for part in parts:
        if not part:
            continue
        if not acc:
            acc = part
            continue
        use_delimiter = bool(_TRAILING_DIGIT_RE.search(acc)) if config.delimiter_conditional else True
        acc += (config.delimiter if use_delimiter else "") + part
    return acc


def ensure_unique_name(base: str, reserved: set[str], config: NamingConfig) -> str:
    """Append ``a, b, ...`` or ``2, 3, ...`` until the name's key is free; reserve it."""
    clean = base or "ref"
    key = normalize_name_key(clean)
    if key and key not in reserved:
        reserved.add(key)
        return clean
    delimiter = "" if config.delimiter_conditional and not _TRAILING_DIGIT_RE.search(clean) else config.delimiter
    counter = 2 if config.increment_style == "numeric" else 0
    while True:
        suffix = str(counter) if config.increment_style == "numeric" else to_latin(counter)
        name = f"{clean}{delimiter}{suffix}"
        key = normalize_name_key(name)
        counter += 1
        if not key or key not in reserved:
            break
    if key:
        reserved.add(key)
    return name


def build_suggestion(
    meta: RefMetadata,
    config: NamingConfig,
    reserved: set[str],
    fallback_name: str | None = None,
) -> str:
    """A unique name from the configured fields, falling back through ``FALLBACK_ORDER``."""
    fields = normalize_field_selection(config.fields or DEFAULT_FIELDS)
    raw_parts = [value for name in fields if (value := _pick_field(meta, name, config))]
    if not raw_parts:
        for name in FALLBACK_ORDER:
            value = _pick_field(meta, name, config)
            if value:
                raw_parts.append(value)
                break

    parts = [p for p in (sanitize_token(raw, config).strip() for raw in raw_parts) if p]
    combined = _join_parts(parts, config)
    if not combined:
        combined = sanitize_token(fallback_name or meta.domain or meta.phrase or "ref", config)
    return ensure_unique_name(combined or "ref", reserved, config)


@dataclass(slots=True)
class NameSuggestions:
    """Suggested renames split the way ``RewriteOptions`` takes them."""

    rename: dict[str, str] = field(default_factory=dict)
    rename_nameless: dict[str, str] = field(default_factory=dict)

    def to_options(self) -> dict[str, Any]:
        return {"rename": dict(self.rename), "rename_nameless": dict(self.rename_nameless)}


def suggest_names(
    document: str,
    config: NamingConfig | None = None,
    *,
    only_auto_generated: bool = False,
    container_names: tuple[str, ...] | list[str] = ("reflist", "references"),
) -> NameSuggestions:
    """Suggest a name for every reference with content.

    With ``only_auto_generated`` only unnamed references and editor-generated
    names (``:0``, ``auto``, ``ReferenceA``) are renamed; every other name is
    reserved so suggestions never collide with it. Names of references
    without content are always reserved.
    """
    config = config or NamingConfig()
    registry = build_registry(document, tuple(n.lower() for n in container_names))
    reserved: set[str] = set()
    candidates = []
    for _, rec in registry.iter_live():
        if only_auto_generated and rec.name and not is_auto_generated_name(rec.name):
            reserved.add(normalize_name_key(rec.name))
            continue
        if rec.first_content():
            candidates.append(rec)
        elif rec.name:
            # Reuse-only references keep their names.
            reserved.add(normalize_name_key(rec.name))

    out = NameSuggestions()
    for rec in candidates:
        meta = extract_metadata(rec.first_content() or "")
        suggestion = build_suggestion(meta, config, reserved, fallback_name=rec.name or rec.id)
        if rec.name:
            if suggestion != rec.name:
                out.rename[rec.name] = suggestion
        else:
            out.rename_nameless[rec.id] = suggestion
    return out


def with_fields(config: NamingConfig, *fields: str) -> NamingConfig:
    """Copy of ``config`` naming from ``fields`` instead."""
    return replace(config, fields=normalize_field_selection(fields) or DEFAULT_FIELDS)
