"""Text command interpreter for energy range queries.

Grammar (tokens separated by whitespace, dates DD.MM.YYYY, times HH:MM):

    SUMA      <CHANNEL> OD <date> <time> DO <date> <time>
    SREDNIA   <CHANNEL> OD <date> <time> DO <date> <time>
    POROWNAJ  <CHANNEL> OD <date> <time> DO <date> <time> Z OD <date> <time> DO <date> <time>
    ZNAJDZ    <CHANNEL> WARTOSC <num> TOLERANCJA <num> OD <date> <time> DO <date> <time>
    WYPISZ              OD <date> <time> DO <date> <time>
    KONIEC

ZNAJDZ spells the export channel EXPORT while the other commands use
EKSPORT. Both tables below are kept verbatim.
"""

import dataclasses
import enum
import math
import sys
from typing import Any, Callable, Iterable, Optional, TextIO, Union

from energy_query import Channel, QueryEngine, RangePoint
from energy_store import TimeOfDay, ValidationError

AGGREGATE_CHANNELS: dict[str, Channel] = {
    "AUTOKONSUMPCJA": Channel.AUTO_CONSUMPTION,
    "EKSPORT": Channel.EXPORT,
    "IMPORT": Channel.IMPORT,
    "POBOR": Channel.CONSUMPTION,
    "PRODUKCJA": Channel.GENERATION,
}

SEARCH_CHANNELS: dict[str, Channel] = {
    "AUTOKONSUMPCJA": Channel.AUTO_CONSUMPTION,
    "EXPORT": Channel.EXPORT,
    "IMPORT": Channel.IMPORT,
    "POBOR": Channel.CONSUMPTION,
    "PRODUKCJA": Channel.GENERATION,
}

# Token count of a well-formed command, keyed by command keyword.
COMMAND_TOKEN_COUNTS = {
    "SUMA": 8,
    "SREDNIA": 8,
    "POROWNAJ": 15,
    "ZNAJDZ": 12,
    "WYPISZ": 7,
}


@dataclasses.dataclass(frozen=True)
class ChannelText:
    sum_label: str
    average_label: str
    compare_noun: str
    search_noun: str
    print_label: str


CHANNEL_TEXTS: dict[Channel, ChannelText] = {
    Channel.AUTO_CONSUMPTION: ChannelText(
        "Suma autokonsumpcji", "Średnia autokonsumpcja", "zużycie energii", "autokonsumpcji", "Autokonsumpcja"
    ),
    Channel.EXPORT: ChannelText("Suma eksportu", "Średnia eksportu", "eksportowanie energii", "eksportu", "Export"),
    Channel.IMPORT: ChannelText("Suma importu", "Średnia importu", "importowanie energii", "importu", "Import"),
    Channel.CONSUMPTION: ChannelText("Suma poboru", "Średnia poboru", "zużycie energii", "zużycia", "Pobór"),
    Channel.GENERATION: ChannelText(
        "Suma produkcji", "Średnia produkcji", "generowanie energii", "produkcji", "Produkcja"
    ),
}

PRINT_CHANNEL_ORDER = (
    Channel.AUTO_CONSUMPTION,
    Channel.EXPORT,
    Channel.IMPORT,
    Channel.CONSUMPTION,
    Channel.GENERATION,
)


class CommandError(ValueError):
    pass


class MalformedCommand(CommandError):
    pass


class MalformedDateTime(CommandError):
    pass


class MalformedNumber(CommandError):
    pass


class UnknownChannel(CommandError):
    pass


@dataclasses.dataclass(frozen=True)
class SumCommand:
    channel_token: str
    channel: Channel
    start: RangePoint
    end: RangePoint


@dataclasses.dataclass(frozen=True)
class AverageCommand:
    channel_token: str
    channel: Channel
    start: RangePoint
    end: RangePoint


@dataclasses.dataclass(frozen=True)
class CompareCommand:
    channel_token: str
    channel: Channel
    start_1: RangePoint
    end_1: RangePoint
    start_2: RangePoint
    end_2: RangePoint


@dataclasses.dataclass(frozen=True)
class SearchCommand:
    channel_token: str
    channel: Channel
    target: float
    tolerance: float
    start: RangePoint
    end: RangePoint


@dataclasses.dataclass(frozen=True)
class PrintCommand:
    start: RangePoint
    end: RangePoint


@dataclasses.dataclass(frozen=True)
class StopCommand:
    pass


Command = Union[SumCommand, AverageCommand, CompareCommand, SearchCommand, PrintCommand, StopCommand]


class CommandStatus(enum.Enum):
    DONE = "done"
    FAILED = "failed"
    STOP = "stop"


def tokenize(line: str) -> list[str]:
    return line.split()


def parse_range_point(date_text: str, time_text: str) -> RangePoint:
    parts = date_text.split(".")
    if len(parts) != 3 or not all(p.isdecimal() for p in parts):
        raise MalformedDateTime(f"Błąd: Nieprawidłowy format daty i godziny: {date_text} {time_text}")
    day, month, year = (int(p) for p in parts)
    if not (1 <= day <= 31) or not (1 <= month <= 12):
        raise MalformedDateTime(f"Błąd: Nieprawidłowa data: {date_text}")
    try:
        time = TimeOfDay.parse(time_text)
    except ValidationError as exc:
        raise MalformedDateTime(f"Błąd: Nieprawidłowy format daty i godziny: {date_text} {time_text} ({exc})")
    return RangePoint(year, month, day, time)


def parse_number(text: str, what: str) -> float:
    try:
        value = float(text)
    except ValueError:
        raise MalformedNumber(f"Błąd: Nieprawidłowy format liczby ({what}): {text}")
    if not math.isfinite(value):
        raise MalformedNumber(f"Błąd: Nieprawidłowy format liczby ({what}): {text}")
    return value


class _TokenCursor:
    def __init__(self, tokens: list[str], index: int) -> None:
        self._tokens = tokens
        self._index = index

    def take(self) -> str:
        token = self._tokens[self._index]
        self._index += 1
        return token

    def expect(self, keyword: str) -> None:
        if self.take() != keyword:
            raise MalformedCommand(f"Błąd: Brak słowa kluczowego {keyword}")

    def range_point(self) -> RangePoint:
        date_text = self.take()
        time_text = self.take()
        return parse_range_point(date_text, time_text)

    def interval(self) -> tuple[RangePoint, RangePoint]:
        self.expect("OD")
        start = self.range_point()
        self.expect("DO")
        end = self.range_point()
        return start, end


def _resolve_channel(keyword: str, token: str, table: dict[str, Channel]) -> Channel:
    channel = table.get(token)
    if channel is None:
        raise UnknownChannel(f"Błąd: Nieznany typ dla komendy {keyword}: {token}")
    return channel


def parse_command(line: str) -> Command:
    tokens = tokenize(line)
    if not tokens:
        raise MalformedCommand("Pusta komenda.")

    keyword = tokens[0]
    if keyword == "KONIEC":
        return StopCommand()
    expected = COMMAND_TOKEN_COUNTS.get(keyword)
    if expected is None:
        raise MalformedCommand(f"Nieznana komenda: {keyword}")
    if len(tokens) != expected:
        raise MalformedCommand(f"Błąd: Nieprawidłowa liczba argumentów dla komendy {keyword}.")

    if keyword == "WYPISZ":
        start, end = _TokenCursor(tokens, 1).interval()
        return PrintCommand(start, end)

    channel_token = tokens[1]
    cursor = _TokenCursor(tokens, 2)

    if keyword == "ZNAJDZ":
        channel = _resolve_channel(keyword, channel_token, SEARCH_CHANNELS)
        cursor.expect("WARTOSC")
        target = parse_number(cursor.take(), "wartość")
        cursor.expect("TOLERANCJA")
        tolerance = parse_number(cursor.take(), "tolerancja")
        start, end = cursor.interval()
        return SearchCommand(channel_token, channel, target, tolerance, start, end)

    channel = _resolve_channel(keyword, channel_token, AGGREGATE_CHANNELS)
    start, end = cursor.interval()
    if keyword == "SUMA":
        return SumCommand(channel_token, channel, start, end)
    if keyword == "SREDNIA":
        return AverageCommand(channel_token, channel, start, end)

    cursor.expect("Z")
    start_2, end_2 = cursor.interval()
    return CompareCommand(channel_token, channel, start, end, start_2, end_2)


def format_value(value: float) -> str:
    return f"{value:.4f}"


class CommandInterpreter:
    def __init__(
        self,
        engine: QueryEngine,
        out: Optional[TextIO] = None,
        err: Optional[TextIO] = None,
        verbose: int = 0,
    ) -> None:
        self._engine = engine
        self._out = out
        self._err = err
        self._verbose = verbose
        self._handlers: dict[type, Callable[[Any], None]] = {
            SumCommand: self._run_sum,
            AverageCommand: self._run_average,
            CompareCommand: self._run_compare,
            SearchCommand: self._run_search,
            PrintCommand: self._run_print,
        }

    def _write(self, text: str) -> None:
        stream = self._out if self._out is not None else sys.stdout
        stream.write(text + "\n")

    def _write_error(self, text: str) -> None:
        stream = self._err if self._err is not None else sys.stderr
        stream.write(text + "\n")

    def execute(self, line: str) -> CommandStatus:
        try:
            command = parse_command(line)
        except CommandError as exc:
            self._write_error(str(exc))
            return CommandStatus.FAILED
        if isinstance(command, StopCommand):
            return CommandStatus.STOP
        self._handlers[type(command)](command)
        return CommandStatus.DONE

    def run(self, lines: Iterable[str]) -> int:
        for raw in lines:
            line = raw.strip()
            if not line:
                continue
            if self._verbose >= 2:
                self._write(f"command: {line}")
            if self.execute(line) is CommandStatus.STOP:
                if self._verbose:
                    self._write("stop requested")
                break
        return 0

    def _run_sum(self, command: SumCommand) -> None:
        self._write(
            f"Wywołano komendę SUMA dla {command.channel_token} w przedziale od {command.start} do {command.end}"
        )
        total = self._engine.sum_in_range(command.channel, command.start, command.end)
        self._write(f"{CHANNEL_TEXTS[command.channel].sum_label}: {format_value(total)} W")

    def _run_average(self, command: AverageCommand) -> None:
        self._write(
            f"Wywołano komendę SREDNIA dla {command.channel_token} w przedziale od {command.start} do {command.end}"
        )
        average = self._engine.average_in_range(command.channel, command.start, command.end)
        self._write(f"{CHANNEL_TEXTS[command.channel].average_label}: {format_value(average)} W")

    def _run_compare(self, command: CompareCommand) -> None:
        self._write(
            f"Wywołano komendę POROWNAJ dla {command.channel_token} w przedziałach od {command.start_1} "
            f"do {command.end_1} oraz od {command.start_2} do {command.end_2}"
        )
        outcome = self._engine.compare_ranges(
            command.channel, command.start_1, command.end_1, command.start_2, command.end_2
        )
        noun = CHANNEL_TEXTS[command.channel].compare_noun
        if outcome.larger is None:
            self._write(f"Okresy mają takie same {noun}")
            return
        if outcome.larger == 1:
            start, end = command.start_1, command.end_1
        else:
            start, end = command.start_2, command.end_2
        self._write(f"Okres od {start} do {end} ma większe {noun} o wartości {format_value(outcome.difference)} W")

    def _run_search(self, command: SearchCommand) -> None:
        self._write(
            f"Wywołano komendę ZNAJDZ dla {command.channel_token} o wartości {format_value(command.target)} "
            f"z tolerancją {format_value(command.tolerance)} w przedziale od {command.start} do {command.end}"
        )
        text = CHANNEL_TEXTS[command.channel]
        low = command.target - command.tolerance
        high = command.target + command.tolerance
        self._write(
            f"Szukam {text.search_noun} w zakresie {format_value(low)} - {format_value(high)} "
            f"w przedziale czasowym od {command.start} do {command.end}:"
        )
        matches = self._engine.search_with_tolerance(
            command.channel, command.target, command.tolerance, command.start, command.end
        )
        found = 0
        for match in matches:
            found += 1
            self._write(
                f"  - Znaleziono rekord: Data i godzina: {match.date_text()} {match.time}, "
                f"{text.print_label}: {format_value(match.value)}"
            )
        if self._verbose:
            self._write(f"matched {found} records")

    def _run_print(self, command: PrintCommand) -> None:
        self._write(f"Wywołano komendę WYPISZ w przedziale od {command.start} do {command.end}")
        listed = 0
        for record in self._engine.print_range(command.start, command.end):
            listed += 1
            values = ", ".join(
                f"{CHANNEL_TEXTS[channel].print_label}: {format_value(channel.value_of(record))}"
                for channel in PRINT_CHANNEL_ORDER
            )
            self._write(f"{record.date_text()} {record.time}, {values}")
        if self._verbose:
            self._write(f"listed {listed} records")
