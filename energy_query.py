"""Range queries over an energy Store.

Two time-of-day filters exist and are used by different query families:

- ``matches_per_field``: hour and minute bounds are checked independently
  (sum, average, compare, print);
- ``matches_lexicographic``: a real HH:MM range test (search).

They give different answers for the same bounds and must not be merged.
"""

import dataclasses
import enum
from typing import Callable, Iterator, Optional

from energy_store import DayNode, Record, Store, TimeOfDay


class Channel(enum.Enum):
    AUTO_CONSUMPTION = "auto_consumption"
    EXPORT = "export"
    IMPORT = "import_"
    CONSUMPTION = "consumption"
    GENERATION = "generation"

    def value_of(self, record: Record) -> float:
        return getattr(record, self.value)


@dataclasses.dataclass(frozen=True)
class RangePoint:
    """A query boundary: calendar date plus time of day."""

    year: int
    month: int
    day: int
    time: TimeOfDay

    @property
    def hour(self) -> int:
        return self.time.hour

    @property
    def minute(self) -> int:
        return self.time.minute

    def __str__(self) -> str:
        return f"{self.day:02d}.{self.month:02d}.{self.year:04d} {self.time}"


@dataclasses.dataclass(frozen=True)
class CompareOutcome:
    sum_1: float
    sum_2: float

    @property
    def larger(self) -> Optional[int]:
        if self.sum_1 > self.sum_2:
            return 1
        if self.sum_2 > self.sum_1:
            return 2
        return None

    @property
    def difference(self) -> float:
        return abs(self.sum_1 - self.sum_2)


@dataclasses.dataclass(frozen=True)
class SearchMatch:
    year: int
    month: int
    day: int
    time: TimeOfDay
    value: float

    def date_text(self) -> str:
        return f"{self.year:04d}-{self.month:02d}-{self.day:02d}"


def year_in_range(year: int, start: RangePoint, end: RangePoint) -> bool:
    return start.year <= year <= end.year


def month_in_range(year: int, month: int, start: RangePoint, end: RangePoint) -> bool:
    # Months of years strictly between the bounds are never filtered.
    if year == start.year and month < start.month:
        return False
    if year == end.year and month > end.month:
        return False
    return True


def day_in_range(year: int, month: int, day: int, start: RangePoint, end: RangePoint) -> bool:
    if year == start.year and month == start.month and day < start.day:
        return False
    if year == end.year and month == end.month and day > end.day:
        return False
    return True


def matches_per_field(time: TimeOfDay, start: RangePoint, end: RangePoint) -> bool:
    if time.hour < start.hour or time.hour > end.hour:
        return False
    if time.minute < start.minute or time.minute > end.minute:
        return False
    return True


def matches_lexicographic(time: TimeOfDay, start: RangePoint, end: RangePoint) -> bool:
    if time.hour < start.hour or (time.hour == start.hour and time.minute < start.minute):
        return False
    if time.hour > end.hour or (time.hour == end.hour and time.minute > end.minute):
        return False
    return True


TimeFilter = Callable[[TimeOfDay, RangePoint, RangePoint], bool]


def iter_days_in_range(store: Store, start: RangePoint, end: RangePoint) -> Iterator[tuple[int, int, int, DayNode]]:
    for year in store.years():
        if not year_in_range(year.year, start, end):
            continue
        for month in year.months():
            if not month_in_range(year.year, month.month, start, end):
                continue
            for day in month.days():
                if not day_in_range(year.year, month.month, day.day, start, end):
                    continue
                yield year.year, month.month, day.day, day


def iter_records_in_range(
    store: Store,
    start: RangePoint,
    end: RangePoint,
    time_filter: TimeFilter,
) -> Iterator[Record]:
    for _year, _month, _day, day in iter_days_in_range(store, start, end):
        for quarter in day.quarters:
            for record in quarter:
                if time_filter(record.time, start, end):
                    yield record


class RecordView:
    """Restartable view over records; every iteration walks the store again."""

    def __init__(self, store: Store, start: RangePoint, end: RangePoint, time_filter: TimeFilter) -> None:
        self._store = store
        self._start = start
        self._end = end
        self._time_filter = time_filter

    def __iter__(self) -> Iterator[Record]:
        return iter_records_in_range(self._store, self._start, self._end, self._time_filter)


class SearchView:
    def __init__(
        self,
        store: Store,
        channel: Channel,
        target: float,
        tolerance: float,
        start: RangePoint,
        end: RangePoint,
    ) -> None:
        self._records = RecordView(store, start, end, matches_lexicographic)
        self._channel = channel
        self._target = target
        self._tolerance = tolerance

    def __iter__(self) -> Iterator[SearchMatch]:
        for record in self._records:
            value = self._channel.value_of(record)
            if abs(value - self._target) <= self._tolerance:
                yield SearchMatch(record.year, record.month, record.day, record.time, value)


class QueryEngine:
    def __init__(self, store: Store) -> None:
        self._store = store

    @property
    def store(self) -> Store:
        return self._store

    def _sum_and_count(self, channel: Channel, start: RangePoint, end: RangePoint) -> tuple[float, int]:
        total = 0.0
        count = 0
        for record in iter_records_in_range(self._store, start, end, matches_per_field):
            total += channel.value_of(record)
            count += 1
        return total, count

    def sum_in_range(self, channel: Channel, start: RangePoint, end: RangePoint) -> float:
        return self._sum_and_count(channel, start, end)[0]

    def count_in_range(self, start: RangePoint, end: RangePoint) -> int:
        return sum(1 for _ in iter_records_in_range(self._store, start, end, matches_per_field))

    def average_in_range(self, channel: Channel, start: RangePoint, end: RangePoint) -> float:
        total, count = self._sum_and_count(channel, start, end)
        if count == 0:
            return 0.0
        return total / count

    def compare_ranges(
        self,
        channel: Channel,
        start_1: RangePoint,
        end_1: RangePoint,
        start_2: RangePoint,
        end_2: RangePoint,
    ) -> CompareOutcome:
        return CompareOutcome(
            self.sum_in_range(channel, start_1, end_1),
            self.sum_in_range(channel, start_2, end_2),
        )

    def search_with_tolerance(
        self,
        channel: Channel,
        target: float,
        tolerance: float,
        start: RangePoint,
        end: RangePoint,
    ) -> SearchView:
        return SearchView(self._store, channel, target, tolerance, start, end)

    def print_range(self, start: RangePoint, end: RangePoint) -> RecordView:
        return RecordView(self._store, start, end, matches_per_field)
