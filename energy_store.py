"""Time-hierarchy store for periodic energy measurements.

Records are kept in a fixed four-level tree:

    Store -> YearNode -> MonthNode -> DayNode -> QuarterBucket -> Record

Nodes down to the day level are created lazily on first reference and never
removed. A day always owns exactly four six-hour quarters.
"""

import dataclasses
import sys
from typing import Iterable, Iterator, Optional, TextIO

MINUTES_PER_HOUR = 60
HOURS_PER_DAY = 24

# (first hour, last hour) of each quarter, in band order.
QUARTER_HOURS = ((0, 5), (6, 11), (12, 17), (18, 23))


class ValidationError(ValueError):
    pass


@dataclasses.dataclass(frozen=True, order=True)
class TimeOfDay:
    hour: int
    minute: int

    def __post_init__(self) -> None:
        if not (0 <= self.hour < HOURS_PER_DAY):
            raise ValidationError(f"hour out of range 0..23: {self.hour}")
        if not (0 <= self.minute < MINUTES_PER_HOUR):
            raise ValidationError(f"minute out of range 0..59: {self.minute}")

    @classmethod
    def parse(cls, text: str) -> "TimeOfDay":
        parts = text.strip().split(":")
        if len(parts) != 2 or not all(p.isdecimal() for p in parts):
            raise ValidationError(f"expected HH:MM, got {text!r}")
        return cls(int(parts[0]), int(parts[1]))

    def __str__(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"


@dataclasses.dataclass(frozen=True)
class Record:
    year: int
    month: int
    day: int
    time: TimeOfDay
    auto_consumption: float
    export: float
    import_: float
    consumption: float
    generation: float

    @property
    def hour(self) -> int:
        return self.time.hour

    @property
    def minute(self) -> int:
        return self.time.minute

    def date_text(self) -> str:
        return f"{self.year:04d}-{self.month:02d}-{self.day:02d}"


class QuarterBucket:
    def __init__(self, start: TimeOfDay, end: TimeOfDay) -> None:
        self._start = start
        self._end = end
        self._records: list[Record] = []

    @property
    def start(self) -> TimeOfDay:
        return self._start

    @property
    def end(self) -> TimeOfDay:
        return self._end

    def try_add(self, time: TimeOfDay, record: Record) -> bool:
        if time < self._start or time > self._end:
            return False
        self._records.append(record)
        return True

    def sort_by_time(self) -> None:
        # list.sort is stable, equal times keep insertion order
        self._records.sort(key=lambda r: r.time)

    def records(self) -> list[Record]:
        return list(self._records)

    def __iter__(self) -> Iterator[Record]:
        return iter(self._records)

    def __len__(self) -> int:
        return len(self._records)


class DayNode:
    def __init__(self, day: int) -> None:
        self.day = day
        # The labelled end of a band is HH:45, the last sample of the quarter-hour
        # grid. Acceptance runs to HH:59 so off-grid samples still land somewhere.
        self._quarters = tuple(
            QuarterBucket(TimeOfDay(first, 0), TimeOfDay(last, MINUTES_PER_HOUR - 1))
            for first, last in QUARTER_HOURS
        )

    @property
    def quarters(self) -> tuple[QuarterBucket, ...]:
        return self._quarters

    def add(self, record: Record) -> int:
        for idx, quarter in enumerate(self._quarters):
            if quarter.try_add(record.time, record):
                return idx
        raise ValueError(f"No quarter accepts time {record.time} on day {self.day}")

    def record_count(self) -> int:
        return sum(len(q) for q in self._quarters)


class MonthNode:
    def __init__(self, month: int) -> None:
        self.month = month
        self._days: dict[int, DayNode] = {}

    def day(self, key: int) -> Optional[DayNode]:
        return self._days.get(key)

    def get_or_create(self, key: int) -> DayNode:
        node = self._days.get(key)
        if node is None:
            node = DayNode(key)
            self._days[key] = node
        return node

    def days(self) -> list[DayNode]:
        return [self._days[k] for k in sorted(self._days)]

    def record_count(self) -> int:
        return sum(d.record_count() for d in self._days.values())


class YearNode:
    def __init__(self, year: int) -> None:
        self.year = year
        self._months: dict[int, MonthNode] = {}

    def month(self, key: int) -> Optional[MonthNode]:
        return self._months.get(key)

    def get_or_create(self, key: int) -> MonthNode:
        node = self._months.get(key)
        if node is None:
            node = MonthNode(key)
            self._months[key] = node
        return node

    def months(self) -> list[MonthNode]:
        return [self._months[k] for k in sorted(self._months)]

    def record_count(self) -> int:
        return sum(m.record_count() for m in self._months.values())


class Store:
    def __init__(self) -> None:
        self._years: dict[int, YearNode] = {}
        self._record_count = 0
        self._sealed = False

    @classmethod
    def build(cls, records: Iterable[Record], sort_records: bool = False) -> "Store":
        store = cls()
        for record in records:
            store.insert(record)
        if sort_records:
            store.sort_by_time()
        store.seal()
        return store

    @property
    def sealed(self) -> bool:
        return self._sealed

    @property
    def record_count(self) -> int:
        return self._record_count

    def seal(self) -> None:
        self._sealed = True

    def insert(self, record: Record) -> int:
        """Place ``record`` in its day and return the index of the accepting quarter."""
        if self._sealed:
            raise ValueError("Store is read-only after it has been built")
        year = self._years.get(record.year)
        if year is None:
            year = YearNode(record.year)
            self._years[record.year] = year
        day = year.get_or_create(record.month).get_or_create(record.day)
        quarter_idx = day.add(record)
        self._record_count += 1
        return quarter_idx

    def sort_by_time(self) -> None:
        if self._sealed:
            raise ValueError("Store is read-only after it has been built")
        for _year, _month, _day, day in self.iter_days():
            for quarter in day.quarters:
                quarter.sort_by_time()

    def year(self, key: int) -> Optional[YearNode]:
        return self._years.get(key)

    def years(self) -> list[YearNode]:
        return [self._years[k] for k in sorted(self._years)]

    def iter_days(self) -> Iterator[tuple[int, int, int, DayNode]]:
        for year in self.years():
            for month in year.months():
                for day in month.days():
                    yield year.year, month.month, day.day, day

    def iter_records(self) -> Iterator[Record]:
        for _year, _month, _day, day in self.iter_days():
            for quarter in day.quarters:
                yield from quarter

    def dump(self, out: Optional[TextIO] = None) -> None:
        stream = out if out is not None else sys.stdout
        stream.write(f"EnergyStore dump: years={len(self._years)} records={self._record_count}\n")
        for year in self.years():
            stream.write(f"  {year.year:04d}: records={year.record_count()}\n")
            for month in year.months():
                stream.write(f"    {year.year:04d}-{month.month:02d}: days={len(month.days())} records={month.record_count()}\n")
                for day in month.days():
                    counts = "/".join(str(len(q)) for q in day.quarters)
                    stream.write(f"      {year.year:04d}-{month.month:02d}-{day.day:02d}: quarters={counts}\n")
