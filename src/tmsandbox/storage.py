from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from tmsandbox.turing_machine import Rule, RuleTable, parse_symbol

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


@dataclass
class Session:
    """The parts of a machine that survive a restart. Fields missing from a saved file stay None."""

    challenge: int | None = None
    rules: RuleTable | None = None
    tape: list[str] | None = None
    head: int | None = None

    def to_json(self) -> dict[str, Any]:
        return {
            "version": SCHEMA_VERSION,
            "data": {
                "challenge": self.challenge,
                "rules": [r.to_dict() for r in self.rules or ()],
                "tape": self.tape,
                "head": self.head,
            },
        }

    @classmethod
    def from_json(cls, payload: Any, num_challenges: int) -> Session | None:
        """Rebuild a session from a decoded save, or return None if it is not one we understand.

        Individual fields that are malformed are dropped and the rest is still used.
        """
        match payload:
            case {"version": int(version), "data": dict(data)} if version == SCHEMA_VERSION:
                pass
            case _:
                return None
        session = cls()
        match data.get("challenge"):
            case int(challenge) if not isinstance(challenge, bool) and 0 <= challenge < num_challenges:
                session.challenge = challenge
        match data.get("rules"):
            case list(rules):
                with contextlib.suppress(ValueError, TypeError):
                    session.rules = RuleTable([Rule.from_dict(r) for r in rules])
        match data.get("tape"):
            case list(tape) if tape and all(isinstance(c, str) for c in tape):
                with contextlib.suppress(ValueError):
                    session.tape = [parse_symbol(c) for c in tape]
        match data.get("head"):
            case int(head) if not isinstance(head, bool) and head >= 0:
                if session.tape is None or head < len(session.tape):
                    session.head = head
        return session


class SessionStore:
    """Keeps the last session in a JSON file, writing it a short while after the latest change."""

    def __init__(self, path: Path, delay: float = 0.5, num_challenges: int = 1) -> None:
        self.path = path
        self.delay = delay
        self.num_challenges = num_challenges
        self._pending: Session | None = None
        self._handle: asyncio.TimerHandle | None = None
        self._writes: set[asyncio.Future[None]] = set()

    def load(self) -> Session | None:
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.debug("Ignoring unreadable session file %s: %s", self.path, e)
            return None
        session = Session.from_json(payload, self.num_challenges)
        if session is None:
            logger.debug("Ignoring session file %s with an unknown layout", self.path)
        return session

    def write(self, session: Session) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w", encoding="utf-8", dir=self.path.parent, prefix=f"{self.path.stem}-", suffix=".tmp", delete=False
        ) as tmp:
            json.dump(session.to_json(), tmp, ensure_ascii=False)
        try:
            Path(tmp.name).replace(self.path)
        except OSError:
            Path(tmp.name).unlink(missing_ok=True)
            raise
        logger.debug("Saved session to %s", self.path)

    def clear(self) -> None:
        self.cancel()
        self._pending = None
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not remove session file %s: %s", self.path, e)

    def schedule(self, session: Session) -> None:
        """Remember `session` and write it once no newer one arrived for `delay` seconds.

        Outside of a running event loop the session is only remembered until `flush` is called.
        """
        self._pending = session
        self.cancel()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._handle = loop.call_later(self.delay, self._write_pending, loop)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def flush(self) -> None:
        """Write any pending session right now."""
        self.cancel()
        if self._pending is not None:
            session, self._pending = self._pending, None
            try:
                self.write(session)
            except OSError as e:
                logger.warning("Could not save session to %s: %s", self.path, e)

    def _write_pending(self, loop: asyncio.AbstractEventLoop) -> None:
        self._handle = None
        if self._pending is None:
            return
        session, self._pending = self._pending, None
        future = loop.run_in_executor(None, self.write, session)
        self._writes.add(future)
        future.add_done_callback(self._written)

    def _written(self, future: asyncio.Future[None]) -> None:
        self._writes.discard(future)
        if not future.cancelled() and (e := future.exception()) is not None:
            logger.warning("Could not save session to %s: %s", self.path, e)

    async def drain(self) -> None:
        """Wait for writes that are already underway."""
        if self._writes:
            await asyncio.gather(*self._writes, return_exceptions=True)
