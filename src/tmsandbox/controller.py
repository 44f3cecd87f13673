from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence

from tmsandbox.challenges import CHALLENGES, Challenge, verify
from tmsandbox.config import Settings
from tmsandbox.history import History
from tmsandbox.scheduler import RunScheduler
from tmsandbox.storage import Session, SessionStore
from tmsandbox.turing_machine import HALT, Machine, RuleField, RuleTable, Tape

logger = logging.getLogger(__name__)

Listener = Callable[["Controller"], None]


class Controller:
    """Owns one machine and funnels every change to it through a named operation.

    Listeners are told after each change, the session store among them when one is attached.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        challenges: Sequence[Challenge] = CHALLENGES,
        store: SessionStore | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.challenges = challenges
        self.challenge_index = 0
        challenge = challenges[0]
        self.machine = Machine(
            RuleTable(list(challenge.rules)),
            Tape(challenge.tape),
            challenge.head,
            history=History(self.settings.history_cap, self.settings.history_drop),
        )
        self.scheduler = RunScheduler(self._advance, lambda: self.machine.halted, self.settings.speed / 1000)
        self.store = store
        self._listeners: list[Listener] = []

    @property
    def challenge(self) -> Challenge:
        return self.challenges[self.challenge_index]

    @property
    def rules(self) -> RuleTable:
        return self.machine.rules

    @property
    def running(self) -> bool:
        return self.scheduler.running

    @property
    def speed(self) -> int:
        return round(self.scheduler.delay * 1000)

    @property
    def can_undo(self) -> bool:
        return len(self.machine.history) > 0 and not self.running

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        self._listeners.remove(listener)

    def session(self) -> Session:
        return Session(self.challenge_index, self.rules.copy(), list(self.machine.tape), self.machine.head)

    def _changed(self, *, persist: bool = True) -> None:
        if persist and self.store is not None:
            self.store.schedule(self.session())
        for listener in self._listeners:
            listener(self)

    def _advance(self) -> bool:
        cont = self.machine.step()
        rule = self.machine.active_rule
        if rule is not None and rule.next_state == HALT:
            verdict = verify(self.machine.tape, self.challenge)
            if verdict is not None:
                self.machine.won = verdict.won
                self.machine.message = verdict.message
                logger.info("Challenge '%s' %s", self.challenge.name, "solved" if verdict.won else "failed")
        self._changed(persist=rule is not None)
        return cont

    def step(self) -> bool:
        """Perform a single manual step. Refused while a run is going or once the machine halted."""
        if self.running or self.machine.halted:
            return False
        return self._advance()

    def run(self) -> bool:
        if self.machine.halted:
            return False
        started = self.scheduler.start()
        if started:
            self._changed(persist=False)
        return started

    def pause(self) -> None:
        if self.running:
            self.scheduler.pause()
            self._changed(persist=False)

    def undo(self) -> bool:
        if self.running:
            return False
        self.scheduler.reset()
        if not self.machine.undo():
            return False
        self._changed()
        return True

    def reset(self) -> None:
        self.scheduler.reset()
        challenge = self.challenge
        self.machine.load(challenge.tape, challenge.head)
        if self.store is not None:
            self.store.clear()
        logger.debug("Reset to challenge '%s'", challenge.name)
        self._changed()

    def load_challenge(self, index: int) -> None:
        if not 0 <= index < len(self.challenges):
            raise IndexError(f"There is no challenge number {index}")
        self.scheduler.reset()
        self.challenge_index = index
        challenge = self.challenge
        self.machine.load(challenge.tape, challenge.head)
        self.machine.rules = RuleTable(list(challenge.rules))
        logger.debug("Loaded challenge '%s'", challenge.name)
        self._changed()

    def use_rules(self, rules: RuleTable) -> None:
        self.machine.rules = rules.copy()
        self._changed()

    def load_tape(self, cells: Iterable[str], head: int = 0) -> None:
        """Start over on a tape of your own, keeping the challenge and its rules."""
        self.scheduler.reset()
        self.machine.load(cells, head)
        self._changed()

    def set_speed(self, milliseconds: int) -> None:
        self.scheduler.delay = max(milliseconds, 0) / 1000
        self._changed(persist=False)

    def add_rule(self) -> int:
        index = self.rules.add()
        self._changed()
        return index

    def update_rule(self, index: int, field: RuleField, value: str) -> bool:
        if not self.rules.update(index, field, value):
            return False
        self._changed()
        return True

    def delete_rule(self, index: int) -> bool:
        if not self.rules.delete(index):
            return False
        self._changed()
        return True

    def edit_tape_cell(self, index: int, value: str) -> bool:
        if not self.machine.tape.set_cell(index, value):
            return False
        self._changed()
        return True

    def add_tape_cell(self) -> None:
        self.machine.tape.append_cell()
        self._changed()

    def remove_tape_cell(self) -> bool:
        if not self.machine.tape.remove_cell():
            return False
        self.machine.head = min(self.machine.head, len(self.machine.tape) - 1)
        self._changed()
        return True

    def restore(self, session: Session) -> None:
        """Apply a saved session on top of the freshly loaded challenge it refers to."""
        self.scheduler.reset()
        if session.challenge is not None:
            self.challenge_index = session.challenge
            challenge = self.challenge
            self.machine.load(challenge.tape, challenge.head)
            self.machine.rules = RuleTable(list(challenge.rules))
        if session.rules is not None:
            self.machine.rules = session.rules.copy()
        if session.tape is not None:
            self.machine.tape = Tape(session.tape)
        if session.head is not None:
            self.machine.head = session.head
        self.machine.head = min(self.machine.head, len(self.machine.tape) - 1)
        self.machine.message = "Previous session restored."
        logger.info("Restored previous session on challenge '%s'", self.challenge.name)
        self._changed(persist=False)
