#!/usr/bin/env python3
"""
Collection name reconciliation
------------------------------
plan    -> print the merge plan (never mutates)
apply   -> execute the plan (needs --yes or an interactive "yes")
check   -> list similar collection-name pairs
verify  -> check names against the naming standard

Usage:
    collectiondb plan [--threshold 0.49] [--prefix user_] [--mapping map.json] [--json]
    collectiondb apply --yes
    collectiondb verify --prefix user_ --prefix system_

Exit codes: 0 ok, 1 unresolved groups / skipped documents / non-compliant
names, 2 configuration or connection failure.
"""
import argparse
import json
import logging
import signal
import sys
import threading
from typing import List, Optional

from .config import CONVENTIONS, Settings, load_settings
from .db import close_db, get_db
from .errors import ConfigError, StoreConnectionError
from .naming import NamingPolicy
from .planner import MergePlan, build_plan, format_plan, load_mapping, plan_from_mapping
from .reconcile import ReconcileExecutor
from .similarity import similar_pairs
from .store import MongoStore

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONNECTION = 2

logger = logging.getLogger("collectiondb")


def open_store(settings: Settings) -> MongoStore:
    return MongoStore(get_db(settings))


def policy_from(settings: Settings) -> NamingPolicy:
    return NamingPolicy(
        prefixes=list(settings.prefixes),
        convention=settings.convention,
        standard_names=list(settings.standard_names),
    )


def make_plan(store: MongoStore, settings: Settings, mapping: Optional[str] = None) -> MergePlan:
    collections = store.list_collections()
    if mapping:
        return plan_from_mapping(collections, load_mapping(mapping))
    return build_plan(collections, policy_from(settings), settings.threshold)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format='%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S',
    )


def _emit(args, payload: dict, text: str) -> None:
    if args.json:
        print(json.dumps(payload, ensure_ascii=False, indent=2))
    else:
        print(text)


def cmd_plan(args, settings: Settings, store: MongoStore) -> int:
    plan = make_plan(store, settings, args.mapping)
    _emit(args, plan.as_dict(), "🔍 PLAN ONLY - no changes made\n\n" + format_plan(plan))
    return EXIT_OK


def cmd_apply(args, settings: Settings, store: MongoStore) -> int:
    plan = make_plan(store, settings, args.mapping)
    if not args.json:
        print(format_plan(plan))
    if plan.is_empty and not plan.unresolved:
        if args.json:
            print(json.dumps({"ok": True, "summary": "nothing to do"}))
        return EXIT_OK
    if plan.operations and not args.yes:
        try:
            confirm = input(f"\n⚠️  Apply {len(plan.operations)} operations to {store.name}? (yes/no): ")
        except EOFError:
            confirm = ""
        if confirm.strip().lower() != "yes":
            print("Operation cancelled")
            return EXIT_OK

    stop = threading.Event()

    def _on_sigint(signum, frame):
        logger.warning("interrupt received; stopping after the current document")
        stop.set()

    previous = signal.signal(signal.SIGINT, _on_sigint)
    try:
        result = ReconcileExecutor(store, skip_existing=not args.no_skip_existing, stop_event=stop).apply(plan)
    finally:
        signal.signal(signal.SIGINT, previous)

    if args.json:
        print(json.dumps(result.as_dict(), ensure_ascii=False, indent=2))
    else:
        print(f"\n📊 {result.summary()}")
        print(f"Documents copied: {result.copied} (already present: {result.duplicates})")
        for u in result.unresolved:
            print(f"  unresolved: {', '.join(u.members)} ({u.reason})")
        for f in result.failed:
            print(f"  skipped: {f['collection']} {f['document_id']} ({f['error']})")
        print("✅ Done" if result.ok else "❌ Finished with problems")
    return EXIT_OK if result.ok else EXIT_FAILED


def cmd_check(args, settings: Settings, store: MongoStore) -> int:
    pairs = similar_pairs(store.collection_names(), settings.threshold)
    lines = [f"Similar pairs (>= {settings.threshold:.0%}): {len(pairs)}"]
    lines += [f"- {p.a} and {p.b} = {p.score:.2%} similar" for p in pairs]
    _emit(args, {"threshold": settings.threshold, "pairs": [p.as_dict() for p in pairs]}, "\n".join(lines))
    return EXIT_OK


def cmd_verify(args, settings: Settings, store: MongoStore) -> int:
    report = policy_from(settings).verify(store.collection_names(), settings.threshold)
    lines = ["=== Collection Standardization Verification ==="]
    sections = [
        ("missing a required prefix", report.missing_prefix),
        ("with uppercase characters", report.uppercase),
        (f"not {settings.convention} case", report.bad_convention),
    ]
    for label, names in sections:
        if names:
            lines.append(f"\nCollections {label}:")
            lines += [f"- {n}" for n in names]
        else:
            lines.append(f"✓ No collections {label}")
    if report.similar:
        lines.append(f"\nSimilar names (>= {settings.threshold:.0%}):")
        lines += [f"- {p.a} and {p.b} ({p.score:.0%})" for p in report.similar]
    else:
        lines.append("✓ No similar collection names")
    if report.suggestions:
        lines.append("\nSuggested names:")
        lines += [f"- {old} -> {new}" for old, new in sorted(report.suggestions.items())]
    lines.append("\n✓ All collections meet the naming standard" if report.ok else "\n✗ Naming issues found")
    _emit(args, report.as_dict(), "\n".join(lines))
    return EXIT_OK if report.ok else EXIT_FAILED


COMMANDS = {"plan": cmd_plan, "apply": cmd_apply, "check": cmd_check, "verify": cmd_verify}


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--threshold", type=float, help="Similarity cutoff in (0, 1] (default: RECONCILE_THRESHOLD or 0.49)")
    common.add_argument("--prefix", action="append", dest="prefixes", help="Required domain prefix (repeatable)")
    common.add_argument("--convention", choices=CONVENTIONS, help="Multi-word naming convention")
    common.add_argument("--env-file", help="Read settings from this .env file")
    common.add_argument("--json", action="store_true", help="Machine-readable output")

    ap = argparse.ArgumentParser(prog="collectiondb", description="Find and merge near-duplicate MongoDB collections")
    sub = ap.add_subparsers(dest="command", required=True)
    p = sub.add_parser("plan", parents=[common], help="Print the merge plan (dry run)")
    p.add_argument("--mapping", help="JSON file mapping target collections to their legacy names")
    a = sub.add_parser("apply", parents=[common], help="Execute the merge plan")
    a.add_argument("--mapping", help="JSON file mapping target collections to their legacy names")
    a.add_argument("--yes", action="store_true", help="Do not ask for confirmation")
    a.add_argument("--no-skip-existing", action="store_true",
                   help="Copy every document, even when the target already holds an identical one (same fields, ignoring _id)")
    sub.add_parser("check", parents=[common], help="List similar collection-name pairs")
    sub.add_parser("verify", parents=[common], help="Check names against the naming standard")
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = load_settings(
            args.env_file,
            threshold=args.threshold,
            prefixes=args.prefixes,
            convention=args.convention,
        )
    except ConfigError as e:
        print(f"❌ Configuration error: {e}", file=sys.stderr)
        return EXIT_CONNECTION
    _configure_logging(settings.log_level)
    try:
        store = open_store(settings)
        return COMMANDS[args.command](args, settings, store)
    except StoreConnectionError as e:
        print(f"❌ Connection error: {e}", file=sys.stderr)
        return EXIT_CONNECTION
    except ConfigError as e:
        print(f"❌ Configuration error: {e}", file=sys.stderr)
        return EXIT_CONNECTION
    finally:
        close_db()


if __name__ == '__main__':
    raise SystemExit(main())
