from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field, replace
from enum import IntEnum
from typing import Any, Literal, Self

from rich.markup import escape

from tmsandbox.history import History

logger = logging.getLogger(__name__)

BLANK = "⬜"
HALT = "HALT"
INITIAL_STATE = "q0"
MAX_STATE_LENGTH = 10

RuleField = Literal["state", "read", "write", "move", "next_state"]


def label(symbol: str) -> str:
    return "blank" if symbol == BLANK else symbol


def parse_symbol(val: str) -> str:
    match val:
        case "" | "blank" | "⬜":
            return BLANK
        case _ if len(val) == 1:
            return val
        case _:
            raise ValueError(f"Symbol '{val}' is not a single character")


class Direction(IntEnum):
    L = -1
    N = 0
    R = 1

    @classmethod
    def parse(cls, val: str) -> Self:
        match val.strip().upper():
            case "L" | "N" | "R" as name:
                return getattr(cls, name)
            case _:
                raise ValueError(f"Unknown move '{val}', expected L, N or R")

    @property
    def verb(self) -> str:
        return {Direction.L: "left", Direction.N: "stay", Direction.R: "right"}[self]


@dataclass
class Tape:
    cells: list[str]

    def __init__(self, cells: Iterable[str] = ()) -> None:
        self.cells = list(cells) or [BLANK]

    def __len__(self) -> int:
        return len(self.cells)

    def __iter__(self) -> Iterator[str]:
        return iter(self.cells)

    def read(self, pos: int) -> str:
        if 0 <= pos < len(self.cells):
            return self.cells[pos]
        return BLANK

    def write(self, pos: int, symbol: str) -> None:
        self.cells[pos] = symbol

    def settle(self, pos: int) -> int:
        """Grow the tape by one blank cell if `pos` fell off either end and return the re-based position."""
        if pos < 0:
            self.cells.insert(0, BLANK)
            return 0
        if pos >= len(self.cells):
            self.cells.append(BLANK)
        return pos

    def set_cell(self, pos: int, value: str) -> bool:
        if not 0 <= pos < len(self.cells):
            return False
        try:
            self.cells[pos] = parse_symbol(value)
        except ValueError:
            return False
        return True

    def append_cell(self) -> None:
        self.cells.append(BLANK)

    def remove_cell(self) -> bool:
        if len(self.cells) <= 1:
            return False
        self.cells.pop()
        return True

    def non_blank(self) -> list[str]:
        return [c for c in self.cells if c != BLANK]


@dataclass(frozen=True)
class Rule:
    state: str
    read: str
    write: str
    move: Direction
    next_state: str

    def __str__(self) -> str:
        return (
            f"({self.state}, {label(self.read)}) → write {label(self.write)}, "
            f"move {self.move.verb}, goto {self.next_state}"
        )

    @classmethod
    def default(cls) -> Self:
        return cls(INITIAL_STATE, BLANK, BLANK, Direction.R, INITIAL_STATE)

    @classmethod
    def parse(cls, line: str) -> Self:
        match line.split():
            case [state, read, write, move, next_state, *_]:
                return cls(state, parse_symbol(read), parse_symbol(write), Direction.parse(move), next_state)
            case _:
                raise ValueError(f"Expected 'state read write move next_state', got '{line}'")

    def to_dict(self) -> dict[str, str]:
        return {
            "state": self.state,
            "read": self.read,
            "write": self.write,
            "move": self.move.name,
            "next_state": self.next_state,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        match data:
            case {
                "state": str(state),
                "read": str(read),
                "write": str(write),
                "move": str(move),
                "next_state": str(next_state),
            } if state.strip() and next_state.strip():
                return cls(
                    state.strip()[:MAX_STATE_LENGTH],
                    parse_symbol(read),
                    parse_symbol(write),
                    Direction.parse(move),
                    next_state.strip()[:MAX_STATE_LENGTH],
                )
            case _:
                raise ValueError(f"Malformed rule {data!r}")


@dataclass
class RuleTable:
    rules: list[Rule] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.rules)

    def __iter__(self) -> Iterator[Rule]:
        return iter(self.rules)

    def __getitem__(self, index: int) -> Rule:
        return self.rules[index]

    def lookup(self, state: str, symbol: str) -> Rule | None:
        return next((r for r in self.rules if r.state == state and r.read == symbol), None)

    def add(self, rule: Rule | None = None) -> int:
        self.rules.append(rule or Rule.default())
        return len(self.rules) - 1

    def update(self, index: int, field: RuleField, value: str) -> bool:
        """Edit a single field of a rule, returning whether the edit was kept.

        Invalid values leave the rule as it was instead of raising.
        """
        if not 0 <= index < len(self.rules):
            return False
        new: str | Direction
        match field:
            case "state" | "next_state":
                new = value.strip()[:MAX_STATE_LENGTH]
                if not new:
                    return False
            case "read" | "write":
                try:
                    new = parse_symbol(value)
                except ValueError:
                    return False
            case "move":
                try:
                    new = Direction.parse(value)
                except ValueError:
                    return False
            case _:
                raise ValueError(f"Rules have no field '{field}'")
        self.rules[index] = replace(self.rules[index], **{field: new})
        return True

    def delete(self, index: int) -> bool:
        if not 0 <= index < len(self.rules):
            return False
        del self.rules[index]
        return True

    def states(self) -> list[str]:
        found = {s for r in self.rules for s in (r.state, r.next_state)}
        ordered = sorted(found - {INITIAL_STATE, HALT})
        if INITIAL_STATE in found:
            ordered.insert(0, INITIAL_STATE)
        if HALT in found:
            ordered.append(HALT)
        return ordered

    def edges(self) -> dict[tuple[str, str], list[Rule]]:
        edges: dict[tuple[str, str], list[Rule]] = defaultdict(list)
        for rule in self.rules:
            edges[rule.state, rule.next_state].append(rule)
        return dict(edges)

    def symbols(self, tape: Iterable[str] = ()) -> list[str]:
        seen = dict.fromkeys(tape)
        for rule in self.rules:
            seen.update(dict.fromkeys((rule.read, rule.write)))
        seen[BLANK] = None
        return list(seen)

    def conflicts(self) -> dict[tuple[str, str], list[int]]:
        keys: dict[tuple[str, str], list[int]] = defaultdict(list)
        for i, rule in enumerate(self.rules):
            keys[rule.state, rule.read].append(i)
        return {key: indices for key, indices in keys.items() if len(indices) > 1}

    def copy(self) -> RuleTable:
        return RuleTable(list(self.rules))

    @classmethod
    def from_spec(cls, spec: str) -> Self:
        rules = []
        for num, line in enumerate(spec.splitlines(), 1):
            line = line.strip()
            if line.startswith(("#", "/")) or not line:
                continue
            try:
                rules.append(Rule.parse(line))
            except ValueError as e:
                raise ValueError(f"Line {num}: {e}") from e
        return cls(rules)

    def to_spec(self) -> str:
        return "".join(
            f"{r.state} {label(r.read)} {label(r.write)} {r.move.name} {r.next_state}\n" for r in self.rules
        )


@dataclass(frozen=True)
class Snapshot:
    tape: tuple[str, ...]
    head: int
    state: str
    step_count: int

    def __str__(self) -> str:
        return f"#{self.step_count}: state={self.state}, head={self.head}, read={label(self.read())}"

    def __format__(self, format: str) -> str:
        if not format:
            return str(self)
        elif format == ">":
            return self.pretty()
        else:
            raise ValueError

    def read(self) -> str:
        return self.tape[self.head] if 0 <= self.head < len(self.tape) else BLANK

    def pretty(self) -> str:
        cells = []
        for i, char in enumerate(self.tape):
            text = "[grey58]_[/]" if char == BLANK else escape(char)
            cells.append(f"[reverse]{text}[/]" if i == self.head else text)
        return f"{''.join(cells)}  [cyan]\\[{self.state}][/]"


@dataclass
class Machine:
    """Mutable machine state plus the transition engine operating on it."""

    rules: RuleTable
    tape: Tape
    head: int = 0
    state: str = INITIAL_STATE
    step_count: int = 0
    history: History[Snapshot] = field(default_factory=History)
    halted: bool = False
    won: bool = False
    message: str = ""
    last_step: str = ""
    active_rule: Rule | None = None
    changed_cell: int | None = None

    def __post_init__(self) -> None:
        self.head = min(max(self.head, 0), len(self.tape) - 1)

    def snapshot(self) -> Snapshot:
        return Snapshot(tuple(self.tape), self.head, self.state, self.step_count)

    def step(self) -> bool:
        """Apply one transition and return whether the machine may keep stepping."""
        self.active_rule = None
        self.changed_cell = None
        if self.halted:
            return False
        if self.state == HALT:
            self.halted = True
            return False

        symbol = self.tape.read(self.head)
        rule = self.rules.lookup(self.state, symbol)
        if rule is None:
            self.halted = True
            self.message = f'No rule for state "{self.state}" reading "{label(symbol)}"'
            self.last_step = f"No rule for ({self.state}, {label(symbol)}), halted"
            logger.debug("Rule miss at step %d: %s", self.step_count, self.message)
            return False

        self.history.push(self.snapshot())
        self.tape.write(self.head, rule.write)
        changed = self.head
        pos = self.head + rule.move
        if pos < 0:
            changed += 1
        self.head = self.tape.settle(pos)
        self.state = rule.next_state
        self.step_count += 1
        self.message = ""
        self.last_step = f"Rule: {rule}"
        self.active_rule = rule
        self.changed_cell = changed
        logger.debug("Step %d: %s", self.step_count, rule)

        if rule.next_state == HALT:
            self.halted = True
            return False
        return True

    def undo(self) -> bool:
        prev = self.history.pop()
        if prev is None:
            return False
        self.tape = Tape(prev.tape)
        self.head = prev.head
        self.state = prev.state
        self.step_count = prev.step_count
        self.halted = False
        self.won = False
        self.message = ""
        self.last_step = ""
        self.active_rule = None
        self.changed_cell = None
        logger.debug("Undid step, back at step %d", self.step_count)
        return True

    def load(self, tape: Iterable[str], head: int) -> None:
        """Put the machine back to its initial state on the given tape."""
        self.tape = Tape(tape)
        self.head = min(max(head, 0), len(self.tape) - 1)
        self.state = INITIAL_STATE
        self.step_count = 0
        self.history.clear()
        self.halted = False
        self.won = False
        self.message = ""
        self.last_step = ""
        self.active_rule = None
        self.changed_cell = None
