"""CLI entry point for Civicwatch."""
import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from civicwatch import __version__
from civicwatch.formatters import ConsoleFormatter, JSONFormatter
from civicwatch.models import Report, Viewport

FORMATTERS = {"console": ConsoleFormatter, "json": JSONFormatter}


def _parse_viewport(value: str) -> Viewport:
    try:
        return Viewport.parse(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def _load_draft(path: str) -> Report:
    """Load a single report draft from a JSON or YAML file."""
    p = Path(path)
    content = p.read_text(encoding="utf-8")
    if p.suffix in (".yaml", ".yml"):
        import yaml
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {path}: {e}") from e
    else:
        data = json.loads(content)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a single report object in {path}")
    return Report.from_dict(data)


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("-f", "--format", choices=sorted(FORMATTERS), default="console",
                   help="Output format (default: console)")
    p.add_argument("-o", "--output", type=str, default=None,
                   help="Write output to file instead of stdout")
    p.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")
    p.add_argument("--no-config", action="store_true",
                   help="Ignore config files (~/.civicwatch.yaml, ./civicwatch.yaml) and CIVICWATCH_* vars")


def _add_source(p: argparse.ArgumentParser, required: bool = False) -> None:
    src = p.add_mutually_exclusive_group(required=required)
    src.add_argument("--reports", type=str, default=None, metavar="FILE",
                     help="Existing reports (JSON/YAML list)")
    src.add_argument("--api-url", type=str, default=None, dest="api_url",
                     help="Reports API base URL to use instead of a file")
    p.add_argument("--api-token", type=str, default=None, dest="api_token",
                   help="Bearer token for the reports API")
    p.add_argument("--timeout", type=float, default=15.0, help="HTTP timeout in seconds (default: 15)")
    p.add_argument("--retries", type=int, default=2, help="Max retries per request (default: 2)")


def _add_detection(p: argparse.ArgumentParser) -> None:
    p.add_argument("--max-distance", type=float, default=0.5, dest="max_distance",
                   help="Maximum distance in km (default: 0.5)")
    p.add_argument("--min-similarity", type=float, default=0.3, dest="min_similarity",
                   help="Keyword similarity threshold 0.0-1.0 (default: 0.3)")
    p.add_argument("--min-confidence", type=float, default=0.6, dest="min_confidence",
                   help="Confidence threshold 0.0-1.0 (default: 0.6)")
    p.add_argument("--max-age", type=str, default="7d", dest="max_age",
                   help="Ignore reports older than this (e.g. 72h, 7d; default: 7d)")
    p.add_argument("--policy", choices=["either", "confidence", "both"], default="either",
                   help="Duplicate rule: confidence OR similarity (either), confidence only, or both")
    p.add_argument("--unique-keywords", action="store_true", dest="unique_keywords",
                   help="Drop repeated words before keyword scoring")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="civicwatch",
        description="🏙️ Civicwatch — duplicate report detection and map marker selection",
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    dup = sub.add_parser("duplicates", help="Find existing reports that duplicate a draft")
    dup.add_argument("draft", help="Draft report (JSON or YAML object)")
    _add_source(dup)
    _add_detection(dup)
    dup.add_argument("--message", action="store_true",
                     help="Print the upvote-or-continue prompt for the top match")
    _add_common(dup)

    sb = sub.add_parser("submit", help="Check a draft for duplicates, then upvote the match or file the draft")
    sb.add_argument("draft", help="Draft report (JSON or YAML object)")
    _add_source(sb, required=True)
    _add_detection(sb)
    sb.add_argument("--on-duplicate", choices=["upvote", "continue"], default="continue", dest="on_duplicate",
                    help="Upvote the top duplicate, or file the draft flagged for review (default: continue)")
    _add_common(sb)

    mk = sub.add_parser(
        "markers",
        help="Select the markers to show for a map viewport",
        epilog="Southern/western centres: use --lat/--lng, or --viewport=-26.2,28.0,0.05,0.05 with '='.",
    )
    _add_source(mk, required=True)
    mk.add_argument("--lat", type=float, default=None, help="Viewport centre latitude")
    mk.add_argument("--lng", type=float, default=None, help="Viewport centre longitude")
    mk.add_argument("--lat-delta", type=float, default=0.1, dest="lat_delta",
                    help="Viewport latitude span in degrees (default: 0.1)")
    mk.add_argument("--lng-delta", type=float, default=0.1, dest="lng_delta",
                    help="Viewport longitude span in degrees (default: 0.1)")
    mk.add_argument("--viewport", type=_parse_viewport, default=None, metavar="LAT,LNG,DLAT,DLNG",
                    help="Whole viewport in one value (write --viewport=... when LAT is negative)")
    mk.add_argument("--buffer", type=float, default=0.1,
                    help="Extra margin around the viewport in degrees (default: 0.1)")
    mk.add_argument("--order", choices=["nearest", "upvotes", "recent", "input"], default="nearest",
                    help="Ordering applied before capping (default: nearest)")
    mk.add_argument("--low-spec", action="store_true", dest="low_spec",
                    help="Cap markers for low-spec devices")
    _add_common(mk)

    sub.add_parser("init-config", help="Write a starter ~/.civicwatch.yaml")
    parser.subcommands = {"duplicates": dup, "submit": sb, "markers": mk}
    return parser


def _emit(args, output: str, count: int, noun: str) -> None:
    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            f.write(output)
        print(f"✅ Wrote {count} {noun} to {args.output}", file=sys.stderr)
    else:
        print(output)


def _open_store(args):
    """Report Store for --reports FILE or --api-url URL; None (with a message) on failure."""
    from civicwatch.store import HTTPReportStore, InMemoryReportStore

    if args.reports:
        try:
            return InMemoryReportStore.from_file(args.reports)
        except (OSError, ValueError) as e:
            print(f"Error loading reports file: {e}", file=sys.stderr)
            return None
    if args.api_url:
        return HTTPReportStore(args.api_url, timeout=args.timeout, max_retries=args.retries,
                               token=args.api_token)
    print("Error: pass --reports FILE or --api-url URL", file=sys.stderr)
    return None


def _viewport_from_args(args) -> Viewport:
    if args.viewport is not None:
        if args.lat is not None or args.lng is not None:
            raise ValueError("pass either --viewport or --lat/--lng, not both")
        return args.viewport
    if args.lat is None or args.lng is None:
        raise ValueError("pass --lat and --lng (plus --lat-delta/--lng-delta), or --viewport=LAT,LNG,DLAT,DLNG")
    return Viewport(args.lat, args.lng, args.lat_delta, args.lng_delta)


def _run_duplicates(args) -> int:
    from civicwatch.config import duplicate_config_from
    from civicwatch.dedup import duplicate_message
    from civicwatch.engine import DuplicateCheckEngine

    try:
        draft = _load_draft(args.draft)
    except (OSError, ValueError) as e:
        print(f"Error loading draft: {e}", file=sys.stderr)
        return 1

    try:
        config = duplicate_config_from(vars(args))
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    store = _open_store(args)
    if store is None:
        return 1

    with DuplicateCheckEngine(store, config) as engine:
        candidates = engine.check(draft)

    if args.message:
        _emit(args, duplicate_message(candidates) or "No similar reports found nearby.", len(candidates), "candidates")
        return 0
    output = FORMATTERS[args.format]().format_duplicates(candidates)
    _emit(args, output, len(candidates), "candidates")
    return 0


def _run_submit(args) -> int:
    from civicwatch.config import duplicate_config_from
    from civicwatch.engine import DuplicateCheckEngine
    from civicwatch.store import ReportStoreError, save_reports

    try:
        draft = _load_draft(args.draft)
    except (OSError, ValueError) as e:
        print(f"Error loading draft: {e}", file=sys.stderr)
        return 1

    try:
        config = duplicate_config_from(vars(args))
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    store = _open_store(args)
    if store is None:
        return 1

    with DuplicateCheckEngine(store, config) as engine:
        try:
            result = engine.submit_report(draft, args.on_duplicate)
        except ReportStoreError as e:
            print(f"Error submitting report: {e}", file=sys.stderr)
            return 1

    if args.reports:
        try:
            save_reports(args.reports, store.reports)
        except (OSError, ValueError) as e:
            print(f"Error saving reports file: {e}", file=sys.stderr)
            return 1

    output = FORMATTERS[args.format]().format_submission(result)
    _emit(args, output, 1, "reports")
    return 0


def _run_markers(args) -> int:
    from civicwatch.engine import MarkerSession
    from civicwatch.store import HTTPReportStore

    try:
        viewport = _viewport_from_args(args)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    store = _open_store(args)
    if store is None:
        return 1

    shown: List[List[Report]] = []
    try:
        session = MarkerSession.from_config(lambda markers, vp: shown.append(markers), vars(args))
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    with session:
        if isinstance(store, HTTPReportStore):
            if not session.load_region(store, viewport):
                print("Error: could not load reports for this region", file=sys.stderr)
                return 1
        else:
            session.set_reports(store.reports)
        session.viewport_changed(viewport)
        session.flush()

    markers = shown[-1] if shown else []
    output = FORMATTERS[args.format]().format_markers(markers, viewport, low_spec=args.low_spec)
    _emit(args, output, len(markers), "markers")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    if args.command == "init-config":
        from civicwatch.config import generate_starter_config
        path = generate_starter_config()
        print(f"📝 Wrote starter config to {path}")
        return 0

    # Apply config file defaults (CLI args always win)
    if not args.no_config:
        from civicwatch.config import apply_config_defaults
        args = apply_config_defaults(parser.subcommands[args.command], args)

    if args.format not in FORMATTERS:
        print(f"Error: unknown format '{args.format}' (choose from {', '.join(sorted(FORMATTERS))})", file=sys.stderr)
        return 1

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "duplicates":
        return _run_duplicates(args)
    if args.command == "submit":
        return _run_submit(args)
    return _run_markers(args)


if __name__ == "__main__":
    sys.exit(main())
