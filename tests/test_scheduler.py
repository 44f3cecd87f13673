import asyncio

from tmsandbox.scheduler import RunScheduler, RunState


class Counter:
    def __init__(self, limit: int, halts: bool = True) -> None:
        self.calls = 0
        self.limit = limit
        self.halts = halts
        self.halted = False

    def step(self) -> bool:
        self.calls += 1
        if self.calls >= self.limit:
            self.halted = self.halts
            return False
        return True


def make(counter: Counter, delay: float = 0) -> RunScheduler:
    return RunScheduler(counter.step, lambda: counter.halted, delay)


def test_runs_until_halt():
    async def main():
        counter = Counter(5)
        scheduler = make(counter)
        assert scheduler.start()
        assert scheduler.running
        assert await scheduler.wait() is RunState.halted
        return counter, scheduler

    counter, scheduler = asyncio.run(main())
    assert counter.calls == 5
    assert scheduler.state is RunState.halted
    assert not scheduler.pending


def test_halted_is_sticky_until_reset():
    async def main():
        counter = Counter(1)
        scheduler = make(counter)
        scheduler.start()
        await scheduler.wait()
        assert not scheduler.start()
        scheduler.pause()
        assert scheduler.state is RunState.halted
        counter.halted = False
        scheduler.reset()
        assert scheduler.state is RunState.idle
        assert scheduler.start()
        scheduler.pause()

    asyncio.run(main())


def test_stop_without_halt_goes_idle():
    async def main():
        counter = Counter(2, halts=False)
        scheduler = make(counter)
        scheduler.start()
        return await scheduler.wait()

    assert asyncio.run(main()) is RunState.idle


def test_pause_cancels_pending_step():
    async def main():
        counter = Counter(100)
        scheduler = make(counter, delay=0.01)
        scheduler.start()
        await asyncio.sleep(0.035)
        scheduler.pause()
        assert not scheduler.pending
        calls = counter.calls
        await asyncio.sleep(0.05)
        return calls, counter.calls, await scheduler.wait()

    paused_at, later, state = asyncio.run(main())
    assert paused_at == later
    assert paused_at < 100
    assert state is RunState.idle


def test_wait_resolves_on_pause():
    async def main():
        counter = Counter(100)
        scheduler = make(counter, delay=0.01)
        scheduler.start()
        waiter = asyncio.ensure_future(scheduler.wait())
        await asyncio.sleep(0)
        scheduler.pause()
        return await waiter

    assert asyncio.run(main()) is RunState.idle


def test_refuses_when_already_halted():
    async def main():
        counter = Counter(5)
        counter.halted = True
        scheduler = make(counter)
        return scheduler.start(), counter.calls

    assert asyncio.run(main()) == (False, 0)


def test_delay_change_applies_to_next_step():
    async def main():
        counter = Counter(3)
        scheduler = make(counter, delay=10)
        scheduler.start()
        scheduler.pause()
        scheduler.delay = 0
        scheduler.start()
        return await scheduler.wait(), counter.calls

    assert asyncio.run(main()) == (RunState.halted, 3)
