import asyncio

from tmsandbox.config import Settings
from tmsandbox.controller import Controller
from tmsandbox.storage import Session
from tmsandbox.turing_machine import BLANK, HALT, Direction, Rule, RuleTable

B = BLANK


def fast() -> Controller:
    return Controller(Settings(speed=0))


def run_to_end(controller: Controller):
    async def main():
        assert controller.run()
        return await controller.scheduler.wait()

    return asyncio.run(main())


def test_binary_inverter_scenario():
    controller = fast()
    run_to_end(controller)
    machine = controller.machine
    assert machine.tape.cells == ["0", "1", "0", "0", "1", "1", "0", B]
    assert machine.head == 7
    assert machine.state == HALT
    assert machine.halted
    assert machine.won
    assert machine.message == "CORRECT! Machine produced the expected output!"


def test_undo_after_halt():
    controller = fast()
    run_to_end(controller)
    assert controller.undo()
    machine = controller.machine
    assert not machine.halted
    assert not machine.won
    assert machine.message == ""
    assert machine.step_count == 7
    assert machine.tape.cells == ["0", "1", "0", "0", "1", "1", "0", B]
    assert machine.state == "q0"
    assert controller.step() is False
    assert machine.won


def test_wrong_output_is_reported():
    controller = fast()
    controller.load_challenge(2)
    controller.use_rules(RuleTable([Rule("q0", "1", "1", Direction.N, HALT)]))
    assert controller.step() is False
    assert controller.machine.halted
    assert not controller.machine.won
    assert controller.machine.message == "Halted. Got: [1,1,1] Expected: [1,1,1,1]"


def test_sandbox_never_wins():
    controller = fast()
    controller.load_challenge(4)
    assert len(controller.rules) == 0
    controller.add_rule()
    controller.update_rule(0, "write", "x")
    controller.update_rule(0, "next_state", HALT)
    run_to_end(controller)
    assert controller.machine.halted
    assert not controller.machine.won
    assert controller.machine.message == ""


def test_rule_miss_from_run():
    controller = fast()
    controller.load_challenge(1)
    run_to_end(controller)
    assert controller.machine.halted
    assert not controller.machine.won
    assert controller.machine.message == 'No rule for state "q0" reading "blank"'
    assert controller.scheduler.state.value == "halted"


def test_step_refused_while_halted_or_running():
    controller = fast()

    async def main():
        controller.run()
        assert controller.step() is False
        assert controller.undo() is False
        controller.pause()

    asyncio.run(main())
    assert controller.machine.step_count == 0
    controller.machine.halted = True
    assert controller.step() is False
    assert controller.run() is False


def test_reset_restores_challenge():
    controller = fast()
    controller.step()
    controller.step()
    controller.reset()
    machine = controller.machine
    assert machine.tape.cells == ["1", "0", "1", "1", "0", "0", "1"]
    assert machine.step_count == 0
    assert machine.state == "q0"
    assert len(machine.history) == 0
    assert len(controller.rules) == 3


def test_load_challenge_replaces_rules_and_history():
    controller = fast()
    controller.step()
    controller.load_challenge(3)
    assert controller.challenge.name == "Palindrome"
    assert len(controller.rules) == 0
    assert len(controller.machine.history) == 0
    controller.load_challenge(0)
    assert len(controller.rules) == 3


def test_tape_edits():
    controller = fast()
    controller.load_challenge(4)
    assert controller.edit_tape_cell(0, "a")
    assert not controller.edit_tape_cell(99, "a")
    controller.add_tape_cell()
    assert len(controller.machine.tape) == 9
    for _ in range(8):
        assert controller.remove_tape_cell()
    assert not controller.remove_tape_cell()
    assert controller.machine.tape.cells == ["a"]


def test_listeners_are_notified():
    controller = fast()
    seen = []
    controller.subscribe(lambda c: seen.append(c.machine.step_count))
    controller.step()
    controller.set_speed(50)
    assert seen == [1, 1]
    assert controller.speed == 50


def test_restore_session():
    controller = fast()
    session = Session(challenge=4, rules=RuleTable([Rule.default()]), tape=["a", "b"], head=1)
    controller.restore(session)
    assert controller.challenge.name == "Sandbox"
    assert controller.rules.rules == [Rule.default()]
    assert controller.machine.tape.cells == ["a", "b"]
    assert controller.machine.head == 1
    assert controller.machine.message == "Previous session restored."


def test_partial_restore_keeps_defaults():
    controller = fast()
    controller.restore(Session(head=3))
    assert controller.challenge_index == 0
    assert controller.machine.head == 3
    assert len(controller.rules) == 3


def interrupted_run(controller: Controller, interrupt) -> tuple[bool, int, int]:
    async def main():
        controller.set_speed(5)
        assert controller.run()
        await asyncio.sleep(0.012)
        interrupt(controller)
        pending = controller.scheduler.pending
        steps = controller.machine.step_count
        await asyncio.sleep(0.03)
        return pending, steps, controller.machine.step_count

    return asyncio.run(main())


def test_reset_cancels_run():
    controller = fast()
    pending, steps, later = interrupted_run(controller, Controller.reset)
    assert not pending
    assert steps == later == 0
    assert not controller.running


def test_load_challenge_cancels_run():
    controller = fast()
    pending, steps, later = interrupted_run(controller, lambda c: c.load_challenge(2))
    assert not pending
    assert steps == later == 0
    assert controller.challenge.name == "Unary Increment"
    assert not controller.running


def test_undo_after_pause_leaves_nothing_scheduled():
    controller = fast()

    def pause_and_undo(c: Controller) -> None:
        c.pause()
        assert c.undo()

    pending, steps, later = interrupted_run(controller, pause_and_undo)
    assert not pending
    assert steps == later
    assert not controller.running
