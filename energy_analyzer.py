#!/usr/bin/env python3
import argparse
import os
import sys
from typing import Any, Optional

from energy_commands import CommandInterpreter
from energy_csv import DataSourceUnavailable, generate_demo_csv, read_energy_csv
from energy_query import QueryEngine
from energy_store import Store

DEFAULT_DATA_FILE = "Chart Export.csv"


def _resolve_config_path_for_read() -> str:
    return os.path.expanduser("~/.energy_analyzer.toml")


def _load_toml_dict(path: str) -> dict[str, Any]:
    if not os.path.exists(path):
        return {}
    try:
        import tomllib  # Python 3.11+
    except ImportError:  # pragma: no cover - older interpreters use the toml package
        import toml as tomllib  # type: ignore
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, ValueError) as exc:
        print(f"Ignoring unreadable config file {path}: {exc}", file=sys.stderr)
        return {}
    return data if isinstance(data, dict) else {}


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def load_analyzer_config(rc_path: str) -> dict[str, Any]:
    data = _load_toml_dict(rc_path)

    data_file = DEFAULT_DATA_FILE
    for key in ("data_file", "data-file"):
        if key in data and str(data[key]).strip():
            data_file = str(data[key]).strip()
            break

    log_dir = ""
    for key in ("log_dir", "log-dir"):
        if key in data:
            log_dir = str(data[key]).strip()
            break

    sort_records = False
    for key in ("sort_records", "sort-records"):
        if key in data:
            sort_records = _parse_bool(data[key])
            break

    return {
        "data_file": data_file,
        "log_dir": log_dir,
        "sort_records": sort_records,
    }


def _quote_toml_string(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def dumps_analyzer_config_toml(config: dict[str, Any]) -> str:
    lines = [
        f"data_file = {_quote_toml_string(str(config.get('data_file', DEFAULT_DATA_FILE)))}",
        f"log_dir = {_quote_toml_string(str(config.get('log_dir', '')))}",
        f"sort_records = {'true' if config.get('sort_records') else 'false'}",
    ]
    return "\n".join(lines) + "\n"


def save_analyzer_config(rc_path: str, config: dict[str, Any]) -> None:
    parent = os.path.dirname(os.path.abspath(rc_path))
    os.makedirs(parent, exist_ok=True)
    tmp = rc_path + ".tmp"
    with open(tmp, "w", encoding="utf-8") as f:
        f.write(dumps_analyzer_config_toml(config))
    os.replace(tmp, rc_path)


def build_store(data_file: str, log_dir: Optional[str], sort_records: bool, verbose: int) -> Store:
    records = read_energy_csv(data_file, log_dir=log_dir, verbose=verbose)
    store = Store.build(records, sort_records=sort_records)
    if verbose:
        print(f"store ready: years={len(store.years())} records={store.record_count}")
    return store


def main(argv: Optional[list[str]] = None) -> int:
    default_config_path = _resolve_config_path_for_read()
    parser = argparse.ArgumentParser(
        description="Range queries over energy measurements (SUMA, SREDNIA, POROWNAJ, ZNAJDZ, WYPISZ, KONIEC).",
    )
    parser.add_argument(
        "--config",
        default=default_config_path,
        help=f"Path to config file (default: {default_config_path})",
    )
    parser.add_argument(
        "--data-file",
        default=None,
        help=f"CSV chart export to load. If omitted, read data_file from config file (default: {DEFAULT_DATA_FILE!r}).",
    )
    parser.add_argument(
        "--log-dir",
        default=None,
        help="Directory for per-run ingestion logs. If omitted, read log_dir from config file (empty disables).",
    )
    parser.add_argument(
        "--sort-records",
        action="store_true",
        default=None,
        help="Sort records by time inside each quarter before answering queries",
    )
    parser.add_argument(
        "-e",
        "--execute",
        action="append",
        default=[],
        metavar="COMMAND",
        help="Run COMMAND instead of reading commands from stdin (repeatable)",
    )
    parser.add_argument("--dump", action="store_true", help="Print a summary of the loaded store and exit")
    parser.add_argument(
        "--generate-demo-csv",
        type=int,
        metavar="DAYS",
        help="Write DAYS days of synthetic 15-minute data to the data file and exit",
    )
    parser.add_argument("--save-config", action="store_true", help="Write the effective settings to the config file and exit")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (can be repeated)")
    args = parser.parse_args(argv)

    rc_path = os.path.expanduser(args.config)
    config = load_analyzer_config(rc_path)
    if args.data_file:
        config["data_file"] = args.data_file
    if args.log_dir is not None:
        config["log_dir"] = args.log_dir
    if args.sort_records is not None:
        config["sort_records"] = True

    data_file = os.path.abspath(os.path.expanduser(config["data_file"]))
    log_dir = os.path.abspath(os.path.expanduser(config["log_dir"])) if config["log_dir"] else None

    if args.save_config:
        try:
            save_analyzer_config(rc_path, config)
        except OSError as exc:
            print(f"Failed to write config file {rc_path!r}: {exc}")
            return 2
        print(f"saved config: {rc_path}")
        return 0

    if args.generate_demo_csv is not None:
        try:
            rows = generate_demo_csv(args.generate_demo_csv, data_file)
        except (OSError, ValueError) as exc:
            print(f"Failed to generate demo CSV: {exc}")
            return 2
        print(data_file)
        if args.verbose:
            print(f"rows={rows}")
        return 0

    try:
        store = build_store(data_file, log_dir, bool(config["sort_records"]), args.verbose)
    except DataSourceUnavailable as exc:
        print(str(exc))
        return 2
    except OSError as exc:
        print(f"Failed to prepare ingestion log in {log_dir!r}: {exc}")
        return 2

    if args.dump:
        store.dump()
        return 0

    interpreter = CommandInterpreter(QueryEngine(store), verbose=args.verbose)
    if args.execute:
        return interpreter.run(args.execute)
    try:
        return interpreter.run(sys.stdin)
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
