import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

import structlog
from pydantic import ValidationError

from shapepatch import __version__
from shapepatch.diagnostics import format_outcomes
from shapepatch.models import PatchSettings, PipelineResult, load_settings
from shapepatch.patching.engine import apply_patches


def _configure_logging(verbose: bool):
    # Diagnostics and patched text go to stdout, so logs must stay on stderr.
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.DEBUG if verbose else logging.WARNING),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )


def _read_bundle(path: Path) -> str:
    if not path.exists():
        print(f"Error: File not found: {path}", file=sys.stderr)
        sys.exit(1)
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def _settings_from_args(args: argparse.Namespace) -> PatchSettings:
    try:
        settings = load_settings(args.settings) if args.settings else PatchSettings()
    except (OSError, ValidationError) as e:
        print(f"Error loading settings: {e}", file=sys.stderr)
        sys.exit(1)

    overrides = {}
    if getattr(args, "require", None):
        overrides["required_patches"] = list(settings.required_patches) + list(args.require)
    if getattr(args, "welcome_text", None) is not None:
        overrides["welcome_text"] = args.welcome_text
    if getattr(args, "tool_version", None) is not None:
        overrides["tool_version"] = args.tool_version
    if overrides:
        settings = settings.model_copy(update=overrides)
    return settings


def _report(result: PipelineResult, as_json: bool):
    if as_json:
        print(result.model_dump_json(indent=2, exclude={"text"}))
        return
    print(format_outcomes(result.outcomes, show_changes=True))
    if result.error:
        print(f"❌ {result.error}", file=sys.stderr)


def handle_apply(args):
    source = _read_bundle(args.bundle)
    settings = _settings_from_args(args)

    result = apply_patches(source, settings)
    _report(result, args.json)
    if result.text is None:
        sys.exit(1)

    output_path = args.output or args.bundle.with_name(f"{args.bundle.stem}_patched{args.bundle.suffix}")
    with open(output_path, "w", encoding="utf-8") as f:
        f.write(result.text)

    applied = sum(1 for o in result.outcomes if o.applied)
    print(f"✅ Saved to {output_path}", file=sys.stderr)
    print(f"Stats: {applied} applied, {len(result.outcomes) - applied} not applied.", file=sys.stderr)


def handle_check(args):
    """Dry run: reports what would apply without writing anything."""
    source = _read_bundle(args.bundle)
    settings = _settings_from_args(args)

    result = apply_patches(source, settings)
    _report(result, args.json)
    if result.text is None:
        sys.exit(1)


def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(
        prog="shapepatch", description="shapepatch: structural patching of minified JavaScript bundles"
    )
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--verbose", action="store_true", help="Log patch progress to stderr")
    subparsers = parser.add_subparsers(dest="command", required=True, help="Subcommands")

    def add_common(p: argparse.ArgumentParser):
        p.add_argument("bundle", type=Path, help="JavaScript bundle to patch")
        p.add_argument("--settings", type=Path, help="JSON settings file")
        p.add_argument(
            "--require",
            action="append",
            metavar="PATCH_ID",
            help="Fail unless this patch applies (repeatable)",
        )
        p.add_argument("--welcome-text", type=str, help="Replace the product name in the welcome banner")
        p.add_argument("--tool-version", type=str, help="Add this version to the version output")
        p.add_argument("--json", action="store_true", help="Print outcomes as JSON")

    p_apply = subparsers.add_parser("apply", help="Patch a bundle and write the result")
    add_common(p_apply)
    p_apply.add_argument("-o", "--output", type=Path, help="Output path (default: <bundle>_patched.js)")
    p_apply.set_defaults(func=handle_apply)

    p_check = subparsers.add_parser("check", help="Report which patches would apply")
    add_common(p_check)
    p_check.set_defaults(func=handle_check)

    args = parser.parse_args(argv)
    _configure_logging(args.verbose)
    args.func(args)


if __name__ == "__main__":
    main()
