"""Command-line interface.

Usage:
    refweave rewrite article.wiki --options opts.json --output article.new.wiki
    refweave rewrite article.wiki --rename old=new --location-mode all_ldr --in-place
    refweave suggest-names article.wiki --fields last year --only-auto --output names.json
    refweave rewrite article.wiki --options names.json --in-place
    refweave list article.wiki --by-bucket --copy-format ref

Outputs structured JSON to stdout, human messages to stderr.
"""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from refweave.io_utils import dump_json, load_json, read_document, save_json, write_document
from refweave.naming import NamingConfig, suggest_names, with_fields
from refweave.render import format_copy
from refweave.rewrite import RewriteOptions, list_references, rewrite
from refweave.templatedata import TemplateDataLookup, cite_templates_in

log = logging.getLogger("refweave")


def _emit(obj: Any) -> None:
    sys.stdout.buffer.write(dump_json(obj))
    sys.stdout.buffer.write(b"\n")
    sys.stdout.flush()


def _parse_pairs(pairs: Sequence[str], flag: str) -> dict[str, str | None]:
    """``old=new`` pairs; ``old=`` strips the name."""
    out: dict[str, str | None] = {}
    for pair in pairs:
        if "=" not in pair:
            raise ValueError(f"{flag} expects OLD=NEW, got {pair!r}")
        old, new = pair.split("=", 1)
        out[old.strip()] = new.strip() or None
    return out


def _build_options(args: argparse.Namespace) -> RewriteOptions:
    data: dict[str, Any] = {}
    if args.options:
        loaded = load_json(args.options)
        if not isinstance(loaded, dict):
            raise ValueError(f"{args.options}: options must be a JSON object")
        data.update(loaded)
    if args.rename:
        merged: dict[str, Any] = {}
        for key in ("rename", "renameMap", "rename_map"):
            merged.update(data.pop(key, None) or {})
        data["rename"] = {**merged, **_parse_pairs(args.rename, "--rename")}
    if args.dedupe:
        data["dedupe"] = True
    if args.location_mode:
        data["location_mode"] = args.location_mode
    if args.min_uses is not None:
        data["location_mode"] = {"minUses": args.min_uses}
    if args.sort:
        data["sort_refs"] = True
    if args.normalize:
        data["normalize_content"] = True
    if args.chained is not None:
        data["prefer_chained_template"] = args.chained == "template"
    if args.container is not None:
        data["prefer_template_container"] = args.container == "template"
    # Flags are added after the file's keys, so they win when both spell the same option.
    return RewriteOptions.from_dict(data)


def cmd_rewrite(args: argparse.Namespace) -> int:
    document = read_document(args.document)
    options = _build_options(args)
    lookup = TemplateDataLookup.from_json_file(args.template_data) if args.template_data else None
    if options.normalize_content and lookup is None:
        names = cite_templates_in(document)
        if names:
            log.info("No --template-data given; %d cite template(s) keep their parameter order", len(names))

    result = rewrite(document, options, lookup)
    for warning in result.warnings:
        log.warning(warning)

    target: Path | None = args.document if args.in_place else args.output
    if target is not None:
        if result.text != document:
            write_document(result.text, target)
            log.info("Wrote %s", target)
        else:
            log.info("No changes for %s", args.document)
        payload = result.to_dict()
        payload.pop("text")
        _emit(payload)
    else:
        _emit(result.to_dict())
    return 0


def cmd_suggest_names(args: argparse.Namespace) -> int:
    document = read_document(args.document)
    config = NamingConfig.from_dict(load_json(args.config)) if args.config else NamingConfig()
    if args.fields:
        config = with_fields(config, *args.fields)
    suggestions = suggest_names(document, config, only_auto_generated=args.only_auto)
    log.info(
        "Suggested %d rename(s) and %d name(s) for unnamed references",
        len(suggestions.rename), len(suggestions.rename_nameless),
    )
    if args.output is not None:
        save_json(suggestions.to_options(), args.output)
        log.info("Wrote %s", args.output)
    _emit(suggestions.to_options())
    return 0


def cmd_list(args: argparse.Namespace) -> int:
    document = read_document(args.document)
    refs = list_references(document, by_bucket=args.by_bucket)
    log.info("Found %d reference(s)", len(refs))
    rows = []
    for ref in refs:
        row = ref.to_dict()
        if args.copy_format and ref.name:
            row["copy"] = format_copy(ref.name, args.copy_format)
        rows.append(row)
    _emit(rows)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="refweave",
        description="Rename, deduplicate and relocate citations in wikitext.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("rewrite", help="Rewrite the references of a document")
    p.add_argument("document", type=Path, help="Wikitext file")
    p.add_argument("--options", type=Path, default=None, help="JSON file with rewrite options")
    p.add_argument("--template-data", type=Path, default=None, help="JSON file with template parameter order")
    p.add_argument("--rename", action="append", default=[], metavar="OLD=NEW", help="Rename a reference (repeatable)")
    p.add_argument("--dedupe", action="store_true", help="Merge references with equivalent content")
    p.add_argument("--location-mode", choices=["keep", "all_inline", "all_ldr"], default=None)
    p.add_argument("--min-uses", type=int, default=None, help="Move references used at least N times to the list")
    p.add_argument("--sort", action="store_true", help="Sort list-defined references by name")
    p.add_argument("--normalize", action="store_true", help="Normalize citation template parameters")
    p.add_argument("--chained", choices=["template", "tags"], default=None, help="Preferred form for chained references")
    p.add_argument("--container", choices=["template", "tag"], default=None, help="Preferred reference list form")
    dest = p.add_mutually_exclusive_group()
    dest.add_argument("--output", type=Path, default=None, help="Write rewritten text here")
    dest.add_argument("--in-place", action="store_true", help="Overwrite the input document")
    p.set_defaults(func=cmd_rewrite)

    p = sub.add_parser("suggest-names", help="Suggest names built from citation metadata")
    p.add_argument("document", type=Path, help="Wikitext file")
    p.add_argument("--config", type=Path, default=None, help="JSON file with naming options")
    p.add_argument("--fields", nargs="+", default=None, help="Fields to build names from")
    p.add_argument("--only-auto", action="store_true", help="Only rename unnamed and auto-generated names")
    p.add_argument("--output", type=Path, default=None, help="Also save the suggestions as a rewrite options file")
    p.set_defaults(func=cmd_suggest_names)

    p = sub.add_parser("list", help="List references with their use counts")
    p.add_argument("document", type=Path, help="Wikitext file")
    p.add_argument("--by-bucket", action="store_true", help="Order by first letter of the name, then by name")
    p.add_argument("--copy-format", choices=["raw", "r", "ref"], default=None, help="Add a ready-to-paste reuse snippet")
    p.set_defaults(func=cmd_list)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )

    if not args.document.exists():
        log.error("Document not found: %s", args.document)
        return 1
    try:
        return args.func(args)
    except UnicodeDecodeError as exc:
        log.error("Cannot decode %s as UTF-8: %s", args.document, exc)
        return 1
    except ValueError as exc:
        log.error("%s", exc)
        return 2


if __name__ == "__main__":
    sys.exit(main())
