from tmsandbox.challenges import CHALLENGES, INVERTER_RULES, verify
from tmsandbox.turing_machine import BLANK

B = BLANK


def test_catalog():
    assert [c.name for c in CHALLENGES] == [
        "Binary Inverter",
        "Move & Mark",
        "Unary Increment",
        "Palindrome",
        "Sandbox",
    ]
    assert CHALLENGES[0].rules == INVERTER_RULES
    assert all(not c.rules for c in CHALLENGES[1:])
    assert [c.sandbox for c in CHALLENGES] == [False, False, False, False, True]


def test_verify_ignores_blanks():
    verdict = verify([B, "0", "1", B, "0", "0", "1", "1", "0", B], CHALLENGES[0])
    assert verdict is not None
    assert verdict.won
    assert verdict.message == "CORRECT! Machine produced the expected output!"


def test_verify_reports_mismatch():
    verdict = verify(["1", "1", "1", B], CHALLENGES[2])
    assert verdict is not None
    assert not verdict.won
    assert verdict.message == "Halted. Got: [1,1,1] Expected: [1,1,1,1]"


def test_verify_sandbox():
    assert verify(["x", "y"], CHALLENGES[4]) is None
