"""Structural fingerprints of single-template citations, used by dedupe.

Two citations built from the same template are compatible when every
parameter they share either has the same normalized value or differs in a
way the preference rule can settle. Merging patches the surviving template
text literally so untouched parameters keep their formatting.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from urllib.parse import urlsplit

from refweave.markup import find_template_close, is_single_template, param_spans, parse_template_params, template_name


PARAM_KEY_ALIASES: dict[str, str] = {
    "accessdate": "access-date",
    "archiveurl": "archive-url",
    "archivedate": "archive-date",
}

_WIKI_LINK_RE = re.compile(r"\[\[[^\]]+\]\]")
_WS_RE = re.compile(r"\s+")


@dataclass(frozen=True, slots=True)
class ParamEntry:
    key: str
    value: str
    param_name: str
    param_value: str


@dataclass(slots=True)
class ParamBucket:
    values: list[str] = field(default_factory=list)
    entries: list[ParamEntry] = field(default_factory=list)


@dataclass(slots=True)
class TemplateFingerprint:
    normalized_name: str
    original_name: str
    params: dict[str, ParamBucket]
    template_text: str
    leading_whitespace: str
    trailing_whitespace: str

    @property
    def content(self) -> str:
        return f"{self.leading_whitespace}{self.template_text}{self.trailing_whitespace}"


def normalize_template_name(name: str) -> str:
    return name.replace("_", " ").strip().lower()


def normalize_param_key(name: str | None) -> str | None:
    if name is None:
        return None
    trimmed = name.strip()
    if not trimmed:
        return None
    if trimmed.isdigit():
        return trimmed
    collapsed = re.sub(r"[_-]+", "-", trimmed.lower())
    return PARAM_KEY_ALIASES.get(collapsed, collapsed)


def canonicalize_param_value(value: str) -> str:
    return _WS_RE.sub(" ", value).strip()


def build_fingerprint(content: str) -> TemplateFingerprint | None:
    """Fingerprint ``content`` when it consists of exactly one template."""
    if not content:
        return None
    core = content.strip()
    if not core or not is_single_template(core):
        return None
    name = template_name(core)
    if not name:
        return None
    leading = content[:len(content) - len(content.lstrip())]
    trailing = content[len(content.rstrip()):]

    buckets: dict[str, ParamBucket] = {}
    for param in parse_template_params(core):
        key = normalize_param_key(param.name)
        if not key:
            continue
        value = canonicalize_param_value(param.value)
        bucket = buckets.setdefault(key, ParamBucket())
        bucket.values.append(value)
        bucket.entries.append(ParamEntry(
            key=key, value=value, param_name=param.name or key, param_value=param.value.strip(),
        ))

    return TemplateFingerprint(
        normalized_name=normalize_template_name(name),
        original_name=name.strip(),
        params=buckets,
        template_text=core,
        leading_whitespace=leading,
        trailing_whitespace=trailing,
    )


# ---------------------------------------------------------------------------
# Preference and compatibility
# ---------------------------------------------------------------------------


def _url_host(fp: TemplateFingerprint) -> str | None:
    bucket = fp.params.get("url")
    if bucket is None or len(bucket.entries) != 1:
        return None
    url = bucket.entries[0].param_value.strip()
    if not url:
        return None
    try:
        host = urlsplit(url).hostname
    except ValueError:
        return None
    return host.lower() if host else None


def _strip_www(host: str) -> str:
    host = host.lower()
    return host[4:] if host.startswith("www.") else host


def is_website_domain_only(entry: ParamEntry, fp: TemplateFingerprint) -> bool:
    """True when ``website`` just repeats the host of the citation's own url."""
    website = entry.param_value.strip()
    host = _url_host(fp)
    if not website or not host:
        return False
    return _strip_www(website) == _strip_www(host)


def prefer_param_entry(
    key: str,
    a: ParamEntry,
    b: ParamEntry,
    a_fp: TemplateFingerprint,
    b_fp: TemplateFingerprint,
) -> int:
    """1 if ``a`` is better, -1 if ``b`` is, 0 when neither wins."""
    a_linked = bool(_WIKI_LINK_RE.search(a.param_value))
    b_linked = bool(_WIKI_LINK_RE.search(b.param_value))
    if a_linked != b_linked:
        return 1 if a_linked else -1
    if key == "website":
        a_domain = is_website_domain_only(a, a_fp)
        b_domain = is_website_domain_only(b, b_fp)
        if a_domain != b_domain:
            return -1 if a_domain else 1
    return 0


def _buckets_compatible(key: str, a: TemplateFingerprint, b: TemplateFingerprint) -> bool:
    left = a.params[key]
    right = b.params[key]
    if left.values == right.values:
        return True
    if len(left.values) != 1 or len(right.values) != 1:
        return False
    return prefer_param_entry(key, left.entries[0], right.entries[0], a, b) != 0


def templates_compatible(a: TemplateFingerprint, b: TemplateFingerprint) -> bool:
    if a.normalized_name != b.normalized_name:
        return False
    shared = [key for key in a.params if key in b.params]
    shared += [key for key in b.params if key in a.params and key not in shared]
    return all(_buckets_compatible(key, a, b) for key in shared)


# ---------------------------------------------------------------------------
# Literal patching
# ---------------------------------------------------------------------------


def _format_param(entry: ParamEntry) -> str:
    if entry.param_name:
        return f"{entry.param_name}={entry.param_value}"
    return entry.param_value


def insert_template_param(text: str, addition: ParamEntry) -> str:
    """Add a parameter just before the closing braces, following the layout.

    A template written one parameter per line gets the new parameter on its
    own line with the same indentation; otherwise it is appended inline.
    """
    close = find_template_close(text)
    if close == -1:
        return text
    before, after = text[:close], text[close:]
    without_trailing = before.rstrip()
    trailing = before[len(without_trailing):]
    newline = without_trailing.rfind("\n")
    if newline >= 0:
        line = without_trailing[newline + 1:]
        indent = line[:len(line) - len(line.lstrip())]
        prefix = f"\n{indent}|"
    else:
        prefix = "|"
    return f"{without_trailing}{prefix}{_format_param(addition)}{trailing}{after}"


def replace_template_param(text: str, key: str, entry: ParamEntry) -> str:
    """Swap the value of the parameter whose normalized key is ``key``, in place."""
    positional = 0
    for span in param_spans(text):
        if span.name is None:
            positional += 1
            name = str(positional)
        else:
            name = span.name
        if normalize_param_key(name) != key:
            continue
        raw = text[span.start:span.end]
        leading = raw[:len(raw) - len(raw.lstrip())]
        trailing = raw[len(raw.rstrip()):]
        param_name = entry.param_name or (span.name or "")
        body = f"{param_name}={entry.param_value}" if span.name is not None else entry.param_value
        return f"{text[:span.start]}{leading}{body}{trailing}{text[span.end:]}"
    return text


def merge_template_params(target: TemplateFingerprint, incoming: TemplateFingerprint) -> bool:
    """Fold ``incoming``'s parameters into ``target``; True if the text changed."""
    changed = False
    text = target.template_text
    for key, bucket in incoming.params.items():
        existing = target.params.get(key)
        if existing is not None:
            if existing.values == bucket.values or len(existing.values) != 1 or len(bucket.values) != 1:
                continue
            if prefer_param_entry(key, existing.entries[0], bucket.entries[0], target, incoming) == -1:
                target.params[key] = ParamBucket(list(bucket.values), list(bucket.entries))
                text = replace_template_param(text, key, bucket.entries[0])
                changed = True
            continue
        target.params[key] = ParamBucket(list(bucket.values), list(bucket.entries))
        for addition in bucket.entries:
            text = insert_template_param(text, addition)
            changed = True
    if changed:
        target.template_text = text
    return changed
