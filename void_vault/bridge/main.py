"""
Command line entry point for the Void Vault browser bridge.

Manages the local per-domain rules and runs one-shot generator queries
(configuration check, rules fetch/push). Results are printed as JSON on stdout;
logs go to stderr.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from . import queries
from .config import BridgeConfig
from .errors import BridgeError
from .native_channel import ChannelFactory
from .normalizer import CharClass, Policy
from .rule_store import RuleStore
from .settings import PRESETS, PolicyForm, SettingsSurface

logger = logging.getLogger("vault.bridge")

__all__ = ["build_parser", "main", "run"]


def _emit(payload: Any) -> None:
    sys.stdout.write(json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True) + "\n")
    sys.stdout.flush()


def _parse_classes(raw: str) -> set[CharClass]:
    return {CharClass.parse(part) for part in raw.split(",") if part.strip()}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="void-vault-bridge", description="Void Vault browser bridge tools")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("check", help="check that the generator is installed and configured")

    rules = sub.add_parser("rules", help="per-domain normalization rules")
    rules_sub = rules.add_subparsers(dest="rules_command", required=True)
    rules_sub.add_parser("list", help="list stored rules")
    for name in ("get", "delete", "fetch", "push"):
        p = rules_sub.add_parser(name)
        p.add_argument("domain")
    set_p = rules_sub.add_parser("set", help="store rules for a domain")
    set_p.add_argument("domain")
    set_p.add_argument("--min", dest="min_length", type=int, default=None)
    set_p.add_argument("--max", dest="max_length", type=int, default=None)
    group = set_p.add_mutually_exclusive_group()
    group.add_argument("--allow", default=None, help="comma separated classes, e.g. lowercase,digits")
    group.add_argument("--preset", choices=sorted(PRESETS), default=None)
    return parser


async def _run_rules(args: argparse.Namespace, settings: SettingsSurface) -> int:
    cmd = args.rules_command
    store = settings.rule_store

    if cmd == "list":
        _emit({domain: policy.to_dict() for domain, policy in store.all().items()})
        return 0
    if cmd == "get":
        policy = store.get(args.domain)
        _emit(policy.to_dict() if policy is not None else None)
        return 0
    if cmd == "delete":
        _emit({"deleted": settings.delete(args.domain)})
        return 0
    if cmd == "set":
        form = PolicyForm(enabled=True, min_length=args.min_length, max_length=args.max_length)
        if args.preset:
            form.apply_preset(args.preset)
        elif args.allow is not None:
            form.allowed = _parse_classes(args.allow)
        policy = settings.save(args.domain, form)
        _emit(policy.to_dict() if policy is not None else None)
        return 0
    if cmd == "fetch":
        rules = await settings.fetch_generator_rules(args.domain)
        _emit(
            {
                "maxLength": rules.max_length,
                "charTypes": rules.char_type_mask,
                "allowedClasses": [c.value for c in CharClass if c in rules.allowed_classes],
            }
        )
        return 0
    if cmd == "push":
        policy = store.get(args.domain)
        if policy is None:
            policy = Policy()
        await settings.push_to_generator(args.domain, policy)
        _emit({"status": "success"})
        return 0
    return 2


async def run(args: argparse.Namespace, config: BridgeConfig) -> int:
    factory = ChannelFactory(config)
    if args.command == "check":
        result = await queries.check_configuration(factory, timeout=config.check_timeout)
        _emit({"hasShape": result.has_shape, **({"error": result.error} if result.error else {})})
        return 0 if result.has_shape else 1

    settings = SettingsSurface(RuleStore(Path(config.rules_path)), open_channel=factory, query_timeout=config.query_timeout)
    return await _run_rules(args, settings)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )
    config = BridgeConfig.from_env()
    try:
        return asyncio.run(run(args, config))
    except BridgeError as exc:
        logger.error("%s: %s", type(exc).__name__, exc)
        _emit({"error": str(exc), "kind": type(exc).__name__})
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
