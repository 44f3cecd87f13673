import asyncio
import logging
from functools import partial
from pathlib import Path
from typing import Annotated, get_args

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.prompt import Prompt
from rich.table import Table
from rich.theme import Theme
from typer import Abort, Argument, Context, Exit, Option, Typer

from tmsandbox.challenges import CHALLENGES
from tmsandbox.config import ConfigError, Settings
from tmsandbox.controller import Controller
from tmsandbox.storage import SessionStore
from tmsandbox.turing_machine import BLANK, HALT, Machine, Rule, RuleField, RuleTable, label

app = Typer(pretty_exceptions_show_locals=False, no_args_is_help=True)
theme = Theme({
    "success": "green",
    "warning": "orange3",
    "error": "red",
    "attention": "magenta2",
    "heading": "blue",
    "info": "dim cyan",
})
console = Console(theme=theme)

PLAY_HELP = """\
[heading]Commands[/]
  s                      step once
  r                      run until halted, press Enter to pause
  u                      undo the last step
  x                      reset the tape of the current challenge
  c <n>                  load challenge number n
  v <ms>                 set the delay between steps of a run
  a                      add a rule
  e <i> <field> <value>  edit a field (state, read, write, move, next_state) of rule i
  d <i>                  delete rule i
  t <i> <symbol>         write a symbol into tape cell i, nothing for blank
  + / -                  add or remove a cell at the end of the tape
  l                      list the challenges
  g                      show the state graph
  log                    show the execution log
  q                      quit"""


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False, show_time=False)],
        force=True,
    )


def parse_tape(cells: str) -> list[str]:
    return [BLANK if c in " _" else c for c in cells]


def rules_table(rules: RuleTable, active: Rule | None = None) -> Table:
    table = Table(show_header=True, header_style="heading")
    for column in ("#", "state", "read", "write", "move", "next state"):
        table.add_column(column, justify="center")
    conflicting = {i for indices in rules.conflicts().values() for i in indices[1:]}
    for i, rule in enumerate(rules):
        style = "attention" if rule is active else "info" if i in conflicting else None
        table.add_row(
            str(i),
            escape(rule.state),
            escape(label(rule.read)),
            escape(label(rule.write)),
            rule.move.name,
            escape(rule.next_state),
            style=style,
        )
    return table


def state_graph(rules: RuleTable) -> str:
    lines = [f"[heading]States:[/] {', '.join(escape(s) for s in rules.states()) or 'none'}"]
    for (start, end), edge in rules.edges().items():
        labels = " | ".join(f"{label(r.read)}→{label(r.write)},{r.move.name}" for r in edge)
        lines.append(f"  {escape(start)} → {escape(end)}: {escape(labels)}")
    return "\n".join(lines)


def status_line(controller: Controller) -> str:
    machine = controller.machine
    if machine.won:
        flag = "[success]WON[/]"
    elif machine.halted:
        flag = "[warning]HALTED[/]"
    elif controller.running:
        flag = "[attention]RUNNING[/]"
    else:
        flag = "[info]READY[/]"
    return (
        f"step {machine.step_count}  state [cyan]{escape(machine.state)}[/]  head {machine.head}  "
        f"speed {controller.speed}ms  {flag}"
    )


def execution_log(machine: Machine, count: int = 10) -> str:
    lines = [f"[attention]#{machine.step_count}: {escape(machine.last_step)}[/]"] if machine.last_step else []
    lines.extend(f"[info]{escape(str(snapshot))}[/]" for snapshot in machine.history.recent(count))
    return "\n".join(lines)


def show_message(machine: Machine) -> None:
    if not machine.message:
        return
    if machine.won:
        style = "success"
    elif machine.halted:
        style = "error"
    else:
        style = "info"
    console.print(f"[{style}]{escape(machine.message)}[/]")


def show_machine(controller: Controller) -> None:
    machine = controller.machine
    console.print(f"{machine.snapshot():>}")
    console.print(status_line(controller))
    show_message(machine)


def warn_conflicts(rules: RuleTable) -> None:
    for (state, symbol), indices in rules.conflicts().items():
        console.print(
            f"[warning]Rules {', '.join(map(str, indices))} share state '{escape(state)}' and symbol "
            f"'{escape(label(symbol))}', only rule {indices[0]} is used."
        )


def read_rules(path: Path) -> RuleTable:
    try:
        return RuleTable.from_spec(path.read_text(encoding="utf-8"))
    except OSError as e:
        console.print(f"[error]Could not read the rule file:[/] {escape(str(path))}\n{e.strerror}")
        raise Abort from e
    except ValueError as e:
        console.print(f"[error]The rule file is formatted incorrectly:[/] {escape(str(path))}\n{escape(str(e))}")
        raise Abort from e


def pick_challenge(index: int) -> int:
    if not 0 <= index < len(CHALLENGES):
        console.print(f"[error]There is no challenge number {index}, pick one between 0 and {len(CHALLENGES) - 1}.")
        raise Abort
    return index


@app.callback()
def main(
    ctx: Context,
    *,
    config: Annotated[
        Path | None,
        Option("--config", help="TOML file with settings. Defaults to 'tmsandbox.toml' if that exists."),
    ] = None,
    verbose: Annotated[bool, Option("--verbose", "-v", help="Log every step and save.")] = False,
):
    setup_logging(verbose)
    try:
        ctx.obj = Settings.load(config)
    except ConfigError as e:
        console.print(f"[error]{escape(str(e))}")
        raise Abort from e


@app.command()
def challenges():
    """List the available challenges."""
    table = Table(show_header=True, header_style="heading")
    table.add_column("#", justify="center")
    table.add_column("Name")
    table.add_column("Goal")
    table.add_column("Hint", style="info")
    for i, challenge in enumerate(CHALLENGES):
        table.add_row(str(i), challenge.name, challenge.description, challenge.hints)
    console.print(table)


@app.command()
def rules(path: Annotated[Path, Argument(help="Rule file with one 'state read write move next_state' per line.")]):
    """Check a rule file and show its rules and state graph."""
    table = read_rules(path)
    if not len(table):
        console.print("[warning]The rule file does not contain any rules.")
        return
    console.print(rules_table(table))
    console.print(state_graph(table))
    warn_conflicts(table)
    if HALT not in table.states():
        console.print(f"[warning]No rule ever moves to the '{HALT}' state.")


@app.command()
def run(
    ctx: Context,
    *,
    challenge: Annotated[int, Option("--challenge", "-c", help="Number of the challenge to run.")] = 0,
    rules_file: Annotated[
        Path | None, Option("--rules", "-r", help="Rule file to use instead of the challenge's preset rules.")
    ] = None,
    tape: Annotated[
        str | None,
        Option("--tape", "-t", help="Initial tape, one cell per character, with spaces or '_' for blanks."),
    ] = None,
    head: Annotated[int | None, Option("--head", help="Initial head position.")] = None,
    speed: Annotated[int, Option("--speed", "-s", help="Delay between steps in milliseconds.")] = 0,
    max_steps: Annotated[int | None, Option("--max-steps", help="Give up after this many steps.")] = None,
    trace: Annotated[bool, Option("--trace/--quiet", help="Print the configuration after every step.")] = True,
):
    """Run a machine until it halts and check the result against the challenge."""
    try:
        settings: Settings = ctx.obj.with_overrides(speed=speed, max_steps=max_steps)
    except ConfigError as e:
        console.print(f"[error]{escape(str(e))}")
        raise Abort from e
    controller = Controller(settings)
    controller.load_challenge(pick_challenge(challenge))
    if rules_file is not None:
        controller.use_rules(read_rules(rules_file))
    if tape is not None or head is not None:
        cells = parse_tape(tape) if tape is not None else controller.challenge.tape
        controller.load_tape(cells, controller.challenge.head if head is None else head)
    warn_conflicts(controller.rules)

    console.print(f"[heading]Running '{controller.challenge.name}'")
    if trace:
        console.print(f"{0: >5}    {controller.machine.snapshot():>}", highlight=False)
    timed_out = asyncio.run(run_headless(controller, settings.max_steps, trace))

    machine = controller.machine
    if timed_out:
        console.print(f"[warning]The machine did not halt within {settings.max_steps} steps.")
    console.print(status_line(controller))
    show_message(machine)
    if timed_out or not (machine.won or controller.challenge.sandbox):
        raise Exit(1)


async def run_headless(controller: Controller, max_steps: int, trace: bool) -> bool:
    """Drive a run to its end and return whether it had to be stopped at the step limit."""
    limited = False

    def on_change(c: Controller) -> None:
        nonlocal limited
        machine = c.machine
        if trace and machine.active_rule is not None:
            console.print(f"{machine.step_count: >5}    {machine.snapshot():>}", highlight=False)
        if c.running and not machine.halted and machine.step_count >= max_steps:
            limited = True
            c.pause()

    controller.subscribe(on_change)
    if controller.run():
        await controller.scheduler.wait()
    return limited


@app.command()
def play(
    ctx: Context,
    *,
    fresh: Annotated[bool, Option("--fresh", help="Ignore the saved session and start over.")] = False,
):
    """Interactively build and run machines. The session is saved between runs."""
    settings: Settings = ctx.obj
    store = SessionStore(settings.session_path, settings.save_delay, len(CHALLENGES))
    controller = Controller(settings, store=store)
    if not fresh and (session := store.load()) is not None:
        controller.restore(session)
    asyncio.run(interact(controller, store))


async def ask(prompt: str) -> str:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, partial(Prompt.ask, prompt, console=console, default=""))


async def interact(controller: Controller, store: SessionStore) -> None:
    console.print(PLAY_HELP)
    show_challenge(controller)
    try:
        while True:
            command, *args = (await ask("\n[heading]tm")).split() or [""]
            if command == "q":
                break
            if command == "r":
                await run_interactive(controller)
            else:
                handle_command(controller, command, args)
    finally:
        store.flush()
        await store.drain()


def show_challenge(controller: Controller) -> None:
    challenge = controller.challenge
    console.print(f"[heading]{controller.challenge_index}: {challenge.name}[/] {escape(challenge.description)}")
    console.print(f"[info]Hint: {escape(challenge.hints)}")
    console.print(rules_table(controller.rules))
    show_machine(controller)


async def run_interactive(controller: Controller) -> None:
    machine = controller.machine
    if machine.halted:
        console.print("[warning]The machine has halted, undo or reset it first.")
        return

    def on_change(c: Controller) -> None:
        if c.running and c.machine.active_rule is not None:
            console.print(f"{c.machine.step_count: >5}    {c.machine.snapshot():>}", highlight=False)

    controller.subscribe(on_change)
    try:
        controller.run()
        loop = asyncio.get_running_loop()
        entered = loop.run_in_executor(None, console.input)
        stopped = asyncio.ensure_future(controller.scheduler.wait())
        await asyncio.wait({entered, stopped}, return_when=asyncio.FIRST_COMPLETED)
        if not stopped.done():
            controller.pause()
            console.print("[info]Paused.")
        else:
            console.print("[info]The run has finished, press Enter to continue.")
            await entered
        await stopped
    finally:
        controller.unsubscribe(on_change)
    show_machine(controller)


def handle_command(controller: Controller, command: str, args: list[str]) -> None:
    machine = controller.machine
    match command, args:
        case "s", []:
            if machine.halted:
                console.print("[warning]The machine has halted, undo or reset it first.")
                return
            controller.step()
            if machine.last_step:
                console.print(f"[attention]{escape(machine.last_step)}")
        case "u", []:
            if not controller.undo():
                console.print("[warning]There is nothing to undo.")
        case "x", []:
            controller.reset()
        case "c", [index] if index.isdigit() and int(index) < len(controller.challenges):
            controller.load_challenge(int(index))
            show_challenge(controller)
            return
        case "v", [delay] if delay.isdigit():
            controller.set_speed(int(delay))
        case "a", []:
            controller.add_rule()
            console.print(rules_table(controller.rules))
        case "e", [index, field, *value] if index.isdigit() and field in get_args(RuleField.__value__):
            if not controller.update_rule(int(index), field, " ".join(value)):
                console.print("[warning]That edit is not valid and was discarded.")
            console.print(rules_table(controller.rules))
            warn_conflicts(controller.rules)
        case "d", [index] if index.isdigit():
            if not controller.delete_rule(int(index)):
                console.print(f"[warning]There is no rule {index}.")
            console.print(rules_table(controller.rules))
        case "t", [index, *value] if index.isdigit():
            if not controller.edit_tape_cell(int(index), "".join(value)):
                console.print("[warning]Tape cells are numbered from 0 and hold a single character.")
        case "+", []:
            controller.add_tape_cell()
        case "-", []:
            if not controller.remove_tape_cell():
                console.print("[warning]The tape needs at least one cell.")
        case "l", []:
            challenges()
            return
        case "g", []:
            console.print(state_graph(controller.rules))
            alphabet = controller.rules.symbols(machine.tape)
            console.print(f"[heading]Symbols:[/] {escape(' '.join(label(s) for s in alphabet))}")
            return
        case "log", []:
            console.print(execution_log(machine) or "[info]Nothing has happened yet.")
            return
        case "", []:
            return
        case _:
            console.print(PLAY_HELP)
            return
    show_machine(controller)


if __name__ == "__main__":
    app()
