import datetime
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))
from energy_csv import (
    CSV_HEADER,
    DataSourceUnavailable,
    IngestLog,
    generate_demo_csv,
    parse_timestamp,
    read_energy_csv,
)
from energy_store import Store, TimeOfDay

HEADER_LINE = ",".join(f'"{name}"' for name in CSV_HEADER)


def write_csv(path: Path, *rows: str) -> Path:
    path.write_text("\n".join((HEADER_LINE,) + rows) + "\n", encoding="utf-8")
    return path


def test_parse_timestamp_with_and_without_seconds():
    assert parse_timestamp("01.02.2024 13:45:00") == (2024, 2, 1, TimeOfDay(13, 45))
    assert parse_timestamp(" 9.3.2023 7:05 ") == (2023, 3, 9, TimeOfDay(7, 5))
    with pytest.raises(ValueError):
        parse_timestamp("2024-02-01 13:45")
    with pytest.raises(ValueError):
        parse_timestamp("01.02.2024 25:00")


def test_read_skips_header_and_parses_quoted_values(tmp_path):
    path = write_csv(
        tmp_path / "export.csv",
        '"01.01.2024 00:15:00","1.5","2.0","3.0","4.5","5.0"',
        "01.01.2024 23:50,1,2,3,4,5",
    )
    records = read_energy_csv(str(path))

    assert len(records) == 2
    first = records[0]
    assert (first.year, first.month, first.day, first.time) == (2024, 1, 1, TimeOfDay(0, 15))
    assert (first.auto_consumption, first.export, first.import_, first.consumption, first.generation) == (
        1.5,
        2.0,
        3.0,
        4.5,
        5.0,
    )
    assert records[1].time == TimeOfDay(23, 50)


def test_read_skips_malformed_rows(tmp_path):
    path = write_csv(
        tmp_path / "export.csv",
        '"01.01.2024 00:15:00","1","2","3","4","5"',
        '"not a date","1","2","3","4","5"',
        '"01.01.2024 00:30:00","1","x","3","4","5"',
        '"01.01.2024 00:45:00","1","2"',
        "",
        '"01.01.2024 01:00:00","6","7","8","9","10"',
    )
    records = read_energy_csv(str(path))
    assert [r.auto_consumption for r in records] == [1.0, 6.0]


def test_read_writes_ingestion_logs(tmp_path):
    good = '"01.01.2024 00:15:00","1","2","3","4","5"'
    bad = '"01.01.2024 00:30:00","1","x","3","4","5"'
    path = write_csv(tmp_path / "export.csv", good, bad)
    log_dir = tmp_path / "logs"

    read_energy_csv(str(path), log_dir=str(log_dir))

    logs = sorted(p.name for p in log_dir.iterdir())
    assert len(logs) == 2
    log_file = next(p for p in log_dir.iterdir() if not p.name.startswith("log_error_"))
    error_file = next(p for p in log_dir.iterdir() if p.name.startswith("log_error_"))
    assert log_file.read_text(encoding="utf-8").splitlines() == [
        f"Parsed line: {good}",
        f"Error while parsing line: {bad}",
    ]
    assert error_file.read_text(encoding="utf-8").splitlines() == [f"invalid number 'x': {bad}"]


def test_ingest_log_names_files_by_run_stamp(tmp_path):
    with IngestLog(str(tmp_path), now=datetime.datetime(2024, 5, 6, 7, 8, 9)) as log:
        log.parsed("a")
    assert Path(log.log_path).name == "log_2024-05-06_07-08-09.txt"
    assert Path(log.error_path).name == "log_error_2024-05-06_07-08-09.txt"


def test_ingest_log_without_directory_is_silent():
    with IngestLog(None) as log:
        log.parsed("a")
        log.failed("b", "reason")
    assert log.log_path is None
    assert log.error_path is None


def test_missing_file_is_data_source_unavailable(tmp_path):
    with pytest.raises(DataSourceUnavailable):
        read_energy_csv(str(tmp_path / "missing.csv"))


def test_generate_demo_csv_round_trips(tmp_path):
    path = tmp_path / "demo.csv"
    rows = generate_demo_csv(2, str(path), start=datetime.date(2024, 3, 1))
    assert rows == 2 * 96

    records = read_energy_csv(str(path))
    assert len(records) == rows
    store = Store.build(records)
    assert [y.year for y in store.years()] == [2024]
    assert [d.day for d in store.year(2024).month(3).days()] == [1, 2]
    for record in records:
        assert record.generation >= 0.0
        assert record.auto_consumption <= record.generation
        if record.hour < 6 or record.hour >= 18:
            assert record.generation == 0.0


def test_generate_demo_csv_rejects_non_positive_days(tmp_path):
    with pytest.raises(ValueError):
        generate_demo_csv(0, str(tmp_path / "demo.csv"))


def test_ingest_log_closes_main_log_when_error_log_fails(tmp_path, monkeypatch):
    opened = []

    def fake_open(path, *args, **kwargs):
        if Path(path).name.startswith("log_error_"):
            raise PermissionError(path)
        stream = open(path, *args, **kwargs)
        opened.append(stream)
        return stream

    monkeypatch.setattr("energy_csv.open", fake_open, raising=False)
    with pytest.raises(PermissionError):
        IngestLog(str(tmp_path), now=datetime.datetime(2024, 5, 6, 7, 8, 9))
    assert len(opened) == 1
    assert opened[0].closed
