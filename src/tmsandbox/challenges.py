from collections.abc import Iterable
from dataclasses import dataclass

from tmsandbox.turing_machine import BLANK, HALT, INITIAL_STATE, Direction, Rule

B = BLANK


@dataclass(frozen=True)
class Challenge:
    name: str
    description: str
    tape: tuple[str, ...]
    head: int
    expected: tuple[str, ...] | None
    hints: str
    rules: tuple[Rule, ...] = ()

    @property
    def sandbox(self) -> bool:
        return self.expected is None


@dataclass(frozen=True)
class Verdict:
    won: bool
    message: str


def verify(tape: Iterable[str], challenge: Challenge) -> Verdict | None:
    """Compare the non-blank content of a halted tape with what the challenge expects.

    Blanks anywhere on either tape are ignored, so only the order of the written symbols matters.
    Sandbox challenges have nothing to compare against and yield None.
    """
    if challenge.expected is None:
        return None
    got = [c for c in tape if c != BLANK]
    expected = [c for c in challenge.expected if c != BLANK]
    if got == expected:
        return Verdict(True, "CORRECT! Machine produced the expected output!")
    return Verdict(False, f"Halted. Got: [{','.join(got)}] Expected: [{','.join(expected)}]")


INVERTER_RULES = (
    Rule(INITIAL_STATE, "0", "1", Direction.R, INITIAL_STATE),
    Rule(INITIAL_STATE, "1", "0", Direction.R, INITIAL_STATE),
    Rule(INITIAL_STATE, B, B, Direction.N, HALT),
)

CHALLENGES = (
    Challenge(
        "Binary Inverter",
        "Flip all 0s to 1s and 1s to 0s, then halt.",
        ("1", "0", "1", "1", "0", "0", "1"),
        0,
        ("0", "1", "0", "0", "1", "1", "0"),
        "Use one state to scan right, flipping bits. Halt on blank.",
        INVERTER_RULES,
    ),
    Challenge(
        "Move & Mark",
        "Replace all blanks with 'X' for 5 cells, then halt.",
        (B, B, B, B, B),
        0,
        ("X", "X", "X", "X", "X"),
        "Write X and move right. Count using states or halt on a boundary.",
    ),
    Challenge(
        "Unary Increment",
        "Add one '1' to the end of a unary number (string of 1s).",
        ("1", "1", "1", B, B),
        0,
        ("1", "1", "1", "1"),
        "Scan right past all 1s, write a 1 on the first blank, then halt.",
    ),
    Challenge(
        "Palindrome",
        "Mark tape with 'Y' if '1001' is a palindrome, 'N' if not. (It is!)",
        ("1", "0", "0", "1", B, B),
        0,
        ("Y",),
        "Compare first & last symbols, mark checked cells. Advanced!",
    ),
    Challenge(
        "Sandbox",
        "Free mode, set up your own tape and rules!",
        (B,) * 8,
        0,
        None,
        "Experiment freely. No win condition.",
    ),
)
