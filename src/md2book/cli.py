"""Command-line interface for md2book."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from .version import __version__


def _get_usage() -> str:
    return (
        f"md2book {__version__}\n"
        "Usage:\n"
        "  md2book [--help] [--version|--ver]\n"
        "  md2book --source BOOK.md --to-dir TO_DIR [options]\n\n"
        "Options:\n"
        "  --config PATH                JSON config (markdown_extensions, link_mode, html_name, metadata_name)\n"
        "  --link-mode MODE             Footnote linking: substring (default) or boundary\n"
        "  --html-name NAME             File name of the HTML artifact (default: book.html)\n"
        "  --metadata-name NAME         File name of the metadata artifact (default: book-metadata.json)\n"
        "  --outline PATH               Also write the nested navigation outline as JSON\n"
        "  --verbose                    Verbose progress logs\n"
        "  --debug                      Debug logs"
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument("--help", action="store_true")
    parser.add_argument("--version", action="store_true")
    parser.add_argument("--ver", action="store_true")
    parser.add_argument("--source", help="Markdown book source file")
    parser.add_argument("--to-dir", help="Output directory for the HTML and metadata artifacts")
    parser.add_argument("--config", help="Path to a JSON config file")
    parser.add_argument("--link-mode", default=None, help="Footnote linking mode: substring or boundary")
    parser.add_argument("--html-name", default=None, help="File name of the HTML artifact")
    parser.add_argument("--metadata-name", default=None, help="File name of the metadata artifact")
    parser.add_argument("--outline", help="Write the nested navigation outline JSON to the given path")
    parser.add_argument("--verbose", action="store_true", help="Verbose progress logs")
    parser.add_argument("--debug", action="store_true", help="Debug logs")
    return parser


def _validate_names(args: argparse.Namespace) -> str | None:
    for flag, value in (("--html-name", args.html_name), ("--metadata-name", args.metadata_name)):
        if value is None:
            continue
        if not value.strip() or "/" in value or "\\" in value:
            return f"Invalid value for {flag}: must be a plain file name"
    if args.html_name and args.metadata_name and args.html_name == args.metadata_name:
        return "Options --html-name and --metadata-name must differ"
    return None


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    parser = _build_parser()
    args, unknown = parser.parse_known_args(argv)
    if unknown:
        print(_get_usage())
        return 2

    if not argv or args.help:
        print(_get_usage())
        return 0

    if args.version or args.ver:
        print(__version__)
        return 0

    try:
        from md2book import core
    except Exception as exc:
        print(f"Unable to import md2book core: {exc}", file=sys.stderr)
        return 6

    if args.link_mode is not None and args.link_mode not in core.LINK_MODES:
        print(
            f"Invalid value for --link-mode: must be one of {', '.join(core.LINK_MODES)}",
            file=sys.stderr,
        )
        return core.EXIT_INVALID_ARGS

    name_error = _validate_names(args)
    if name_error:
        print(name_error, file=sys.stderr)
        return core.EXIT_INVALID_ARGS

    if not args.source or not args.to_dir:
        print(_get_usage())
        print("Options --source and --to-dir are required unless --version/--ver is used", file=sys.stderr)
        return core.EXIT_INVALID_ARGS

    source_path = Path(args.source).expanduser().resolve()
    to_dir = Path(args.to_dir).expanduser().resolve()

    if not source_path.exists() or not source_path.is_file():
        print(f"Source file not found: {source_path}", file=sys.stderr)
        return core.EXIT_INVALID_ARGS

    if to_dir.exists() and not to_dir.is_dir():
        print(f"Output path is not a directory: {to_dir}", file=sys.stderr)
        return core.EXIT_OUTPUT_DIR

    core.setup_logging(args.verbose, args.debug)

    settings = {}
    if args.config:
        config_path = Path(args.config).expanduser().resolve()
        if not config_path.exists() or not config_path.is_file():
            print(f"Config file not found: {config_path}", file=sys.stderr)
            return core.EXIT_INVALID_ARGS
        try:
            settings = core.load_config_file(config_path)
        except ValueError as exc:
            print(str(exc), file=sys.stderr)
            return core.EXIT_INVALID_ARGS

    for key in ("link_mode", "html_name", "metadata_name"):
        value = getattr(args, key)
        if value is not None:
            settings[key] = value.strip()

    config = core.RenderConfig(verbose=bool(args.verbose), debug=bool(args.debug), **settings)
    if config.html_name == config.metadata_name:
        print("HTML and metadata artifacts must use different file names", file=sys.stderr)
        return core.EXIT_INVALID_ARGS

    try:
        output, _, _ = core.build_book(source_path, to_dir, config)
    except (RuntimeError, OSError, ValueError) as exc:
        print(f"Rendering failed: {exc}", file=sys.stderr)
        return core.EXIT_RENDER

    if args.outline:
        outline_path = Path(args.outline).expanduser().resolve()
        outline = core.serialize_navigation(core.build_navigation_outline(output.content_tree))
        try:
            core.safe_write_text(outline_path, json.dumps(outline, ensure_ascii=False, indent=2) + "\n")
        except OSError as exc:
            print(f"Unable to write outline file {outline_path}: {exc}", file=sys.stderr)
            return core.EXIT_RENDER
        if args.verbose:
            print(f"Navigation outline written to {outline_path}")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
