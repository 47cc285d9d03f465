import csv
import datetime
import math
import os
import re
from typing import Optional, TextIO

from energy_store import Record, TimeOfDay

CSV_HEADER = ["Data", "Autokonsumpcja (W)", "Eksport (W)", "Import (W)", "Pobór (W)", "Produkcja (W)"]
CSV_COLUMN_COUNT = len(CSV_HEADER)

_TIMESTAMP_RE = re.compile(r"(\d{1,2})\.(\d{1,2})\.(\d{4})\s+(\d{1,2}):(\d{1,2})(?::(\d{1,2}))?")


class DataSourceUnavailable(RuntimeError):
    pass


def _log_stamp(now: Optional[datetime.datetime] = None) -> str:
    moment = now if now is not None else datetime.datetime.now()
    return moment.strftime("%Y-%m-%d_%H-%M-%S")


def parse_timestamp(text: str) -> tuple[int, int, int, TimeOfDay]:
    match = _TIMESTAMP_RE.fullmatch(text.strip())
    if match is None:
        raise ValueError(f"invalid timestamp {text!r}")
    day, month, year, hour, minute = (int(match.group(i)) for i in range(1, 6))
    if not (1 <= day <= 31) or not (1 <= month <= 12):
        raise ValueError(f"invalid date in timestamp {text!r}")
    # Seconds are accepted and dropped.
    return year, month, day, TimeOfDay(hour, minute)


def parse_csv_row(row: list[str]) -> Record:
    if len(row) < CSV_COLUMN_COUNT:
        raise ValueError(f"expected {CSV_COLUMN_COUNT} columns, got {len(row)}")
    year, month, day, time = parse_timestamp(row[0])
    values = []
    for cell in row[1:CSV_COLUMN_COUNT]:
        try:
            values.append(float(cell.strip()))
        except ValueError:
            raise ValueError(f"invalid number {cell!r}")
    return Record(year, month, day, time, *values)


class IngestLog:
    """Per-run ingestion log: every line to ``log_*``, failures also to ``log_error_*``."""

    def __init__(self, log_dir: Optional[str], now: Optional[datetime.datetime] = None) -> None:
        self.log_path: Optional[str] = None
        self.error_path: Optional[str] = None
        self._log: Optional[TextIO] = None
        self._errors: Optional[TextIO] = None
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
            stamp = _log_stamp(now)
            self.log_path = os.path.join(log_dir, f"log_{stamp}.txt")
            self.error_path = os.path.join(log_dir, f"log_error_{stamp}.txt")
            self._log = open(self.log_path, "w", encoding="utf-8")
            try:
                self._errors = open(self.error_path, "w", encoding="utf-8")
            except OSError:
                self._log.close()
                self._log = None
                raise

    def parsed(self, line: str) -> None:
        if self._log is not None:
            self._log.write(f"Parsed line: {line}\n")

    def failed(self, line: str, reason: str) -> None:
        if self._log is not None:
            self._log.write(f"Error while parsing line: {line}\n")
        if self._errors is not None:
            self._errors.write(f"{reason}: {line}\n")

    def close(self) -> None:
        for stream in (self._log, self._errors):
            if stream is not None:
                stream.close()
        self._log = None
        self._errors = None

    def __enter__(self) -> "IngestLog":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def read_energy_csv(path: str, log_dir: Optional[str] = None, verbose: int = 0) -> list[Record]:
    try:
        with open(path, "r", encoding="utf-8-sig", newline="") as f:
            lines = f.read().splitlines()
    except (OSError, UnicodeDecodeError) as exc:
        raise DataSourceUnavailable(f"Could not open data file {path}: {exc}")

    records: list[Record] = []
    skipped = 0
    with IngestLog(log_dir) as log:
        # First line is the header.
        for line_no, line in enumerate(lines[1:], start=2):
            if not line.strip():
                continue
            row = next(csv.reader([line]))
            try:
                record = parse_csv_row(row)
            except ValueError as exc:
                skipped += 1
                log.failed(line, str(exc))
                if verbose >= 2:
                    print(f"skipped line {line_no}: {exc}")
                continue
            records.append(record)
            log.parsed(line)
        if verbose and log.log_path:
            print(f"ingestion log: {log.log_path}")

    if verbose:
        print(f"loaded {len(records)} records from {path} (skipped {skipped})")
    return records


def _bounded_sin(min_value: float, max_value: float, phase: float, day_fraction: float) -> float:
    mid = (min_value + max_value) * 0.5
    amp = (max_value - min_value) * 0.5
    value = mid + amp * math.sin((2.0 * math.pi * day_fraction) + phase)
    return min(max(value, min_value), max_value)


def generate_demo_csv(days: int, path: str, start: Optional[datetime.date] = None) -> int:
    """Write a synthetic chart export with one row every 15 minutes; returns the row count."""
    if days <= 0:
        raise ValueError(f"days must be > 0, got {days}")
    if start is None:
        start = datetime.date.today() - datetime.timedelta(days=days - 1)

    parent = os.path.dirname(os.path.abspath(path))
    os.makedirs(parent, exist_ok=True)
    steps_per_day = 24 * 4
    rows = 0
    with open(path, "w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f, quoting=csv.QUOTE_ALL)
        writer.writerow(CSV_HEADER)
        for day_index in range(days):
            day = start + datetime.timedelta(days=day_index)
            for step_idx in range(steps_per_day):
                day_fraction = step_idx / steps_per_day
                # Daylight bell between 06:00 and 18:00, zero at night.
                generation = 0.0
                if 0.25 <= day_fraction < 0.75:
                    generation = round(3000.0 * math.sin(2.0 * math.pi * (day_fraction - 0.25)), 1)
                consumption = _bounded_sin(300.0, 1500.0, day_index * 0.37, day_fraction)
                auto_consumption = min(generation, consumption)
                export = generation - auto_consumption
                import_ = consumption - auto_consumption
                hour, quarter = divmod(step_idx, 4)
                stamp = f"{day.day:02d}.{day.month:02d}.{day.year:04d} {hour:02d}:{quarter * 15:02d}:00"
                writer.writerow(
                    [stamp]
                    + [f"{v:.1f}" for v in (auto_consumption, export, import_, consumption, generation)]
                )
                rows += 1
    return rows
