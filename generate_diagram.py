#!/usr/bin/env python3
"""Replay migration DDL and write a D2 schema diagram + YAML model dump."""

from __future__ import annotations

import argparse
import difflib
import logging
import os
import sys
from pathlib import Path

try:
    import yaml
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required. Install with: pip install pyyaml") from exc

from ddl_statements import MIGRATION_SEPARATOR
from render_d2 import dump_model_yaml, render_d2
from schema_model import DEFAULT_SCHEMA
from schema_replay import MigrationReplayError, ReplayConfig, replay_files

DEFAULT_CONFIG = {
    "migrations": ["migrations"],
    "dialect": "postgres",
    "default_schema": DEFAULT_SCHEMA,
    "separator": MIGRATION_SEPARATOR,
    "output": {"d2": "schema.d2", "model": "schema.yaml"},
}

OUTPUT_LABELS = {"d2": "D2 diagram", "model": "model dump"}

MAX_DIFF_LINES = 200


def load_config(path: Path | None) -> dict:
    """Defaults overlaid with the YAML config file, when one exists."""
    config = {k: (dict(v) if isinstance(v, dict) else v) for k, v in DEFAULT_CONFIG.items()}
    if path is None or not path.exists():
        return config

    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Config {path} must be a mapping")
    for key, value in raw.items():
        if key not in DEFAULT_CONFIG:
            raise ValueError(f"Unknown config key in {path}: {key}")
        if key == "output":
            if not isinstance(value, dict):
                raise ValueError(f"Config {path}: output must be a mapping")
            unknown = sorted(set(value) - set(DEFAULT_CONFIG["output"]))
            if unknown:
                raise ValueError(f"Unknown output keys in {path}: {unknown}")
            config["output"].update(value)
        elif key == "migrations":
            config[key] = [value] if isinstance(value, str) else list(value)
        else:
            config[key] = value
    return config


def discover_migrations(paths: list[str]) -> list[str]:
    files: list[str] = []
    for p in paths:
        path = Path(p)
        if path.is_dir():
            for root, _, names in os.walk(path):
                for name in names:
                    if name.lower().endswith(".sql"):
                        files.append(str(Path(root) / name))
        elif path.is_file() and path.name.lower().endswith(".sql"):
            files.append(str(path))
    # Replay order is plain string order, the same order the migration runner applies.
    return sorted(files)


def replay_config(config: dict) -> ReplayConfig:
    return ReplayConfig(
        dialect=config["dialect"],
        default_schema=config["default_schema"],
        separator=config["separator"],
    )


def generate_outputs(config: dict) -> tuple[str, str]:
    files = discover_migrations(config["migrations"])
    if not files:
        raise ValueError(f"unable to find any schemas in {config['migrations']}")

    model = replay_files(files, replay_config(config))
    return render_d2(model), dump_model_yaml(model)


def write_output(path: Path, content: str, label: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    print(f"Generated {label}: {path}")


def check_output(path: Path, replayed: str, label: str) -> bool:
    """Compare a committed output with what the migrations replay to now."""
    if not path.exists():
        print(f"[check] {label} not generated yet: {path}", file=sys.stderr)
        return False

    committed = path.read_text(encoding="utf-8")
    if committed == replayed:
        return True

    print(f"[check] {label} is stale against the migrations: {path}", file=sys.stderr)
    diff = difflib.unified_diff(
        committed.splitlines(),
        replayed.splitlines(),
        fromfile=str(path),
        tofile=f"replayed {label}",
        lineterm="",
    )
    for idx, line in enumerate(diff):
        if idx >= MAX_DIFF_LINES:
            print(f"... ({label} diff truncated at {MAX_DIFF_LINES} lines)", file=sys.stderr)
            break
        print(line, file=sys.stderr)
    return False


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate a D2 schema diagram from SQL migrations")
    parser.add_argument("--config", default="diagram.yaml", help="YAML config file (optional)")
    parser.add_argument("--migrations", nargs="+", help="Migration files or directories")
    parser.add_argument("--dialect", help="sqlglot dialect used to parse migrations")
    parser.add_argument("--default-schema", help="Schema treated the same as an unqualified name")
    parser.add_argument("--out-d2", help="Output D2 file")
    parser.add_argument("--out-model", help="Output YAML model file")
    parser.add_argument("--check", action="store_true", help="Verify outputs are up-to-date without writing")
    parser.add_argument("--verbose", action="store_true", help="Log skipped statements")
    return parser.parse_args(argv)


def apply_overrides(config: dict, args: argparse.Namespace) -> dict:
    if args.migrations:
        config["migrations"] = list(args.migrations)
    if args.dialect:
        config["dialect"] = args.dialect
    if args.default_schema:
        config["default_schema"] = args.default_schema
    if args.out_d2:
        config["output"]["d2"] = args.out_d2
    if args.out_model:
        config["output"]["model"] = args.out_model
    return config


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING, format="%(levelname)s %(name)s: %(message)s")

    try:
        config = apply_overrides(load_config(Path(args.config)), args)
        d2_output, model_output = generate_outputs(config)
    except (MigrationReplayError, ValueError) as exc:
        print(f"[error] {exc}", file=sys.stderr)
        return 1

    outputs = [
        (Path(config["output"][key]), text, OUTPUT_LABELS[key])
        for key, text in (("d2", d2_output), ("model", model_output))
    ]

    if args.check:
        # Check every output so one run reports all stale files.
        results = [check_output(path, text, label) for path, text, label in outputs]
        return 0 if all(results) else 1

    for path, text, label in outputs:
        write_output(path, text, label)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
