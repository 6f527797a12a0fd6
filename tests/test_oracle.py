import asyncio
import gc
import threading
import io
import time
import unittest
from dataclasses import dataclass, field

from asyncdrop import (
    ConsistencyViolation,
    ConsoleLogger,
    Duration,
    FailurePolicy,
    FatalFinalizationError,
    FinalizableMisuse,
    FinalizationTimeout,
    async_finalizable,
    is_already_finalized,
    shared_empty,
    use_settings,
)

CALLS: list[str] = []


@async_finalizable
@dataclass
class Session:
    session_id: str = ""
    tags: list[str] = field(default_factory=list)

    async def finalize(self) -> None:
        await asyncio.sleep(0.01)
        CALLS.append(self.session_id)


@async_finalizable(timeout=Duration.millis(20))
@dataclass
class SlowSession:
    session_id: str = ""

    async def finalize(self) -> None:
        await asyncio.sleep(100)
        CALLS.append(self.session_id)


@async_finalizable(timeout=Duration.millis(20), policy=FailurePolicy.ESCALATE)
@dataclass
class StrictSession:
    session_id: str = ""

    async def finalize(self) -> None:
        await asyncio.sleep(100)


@async_finalizable
@dataclass
class Sticky:
    name: str = ""
    keep: int = 0

    async def finalize(self) -> None:
        CALLS.append(self.name)

    def reset(self) -> None:
        # leaves `keep` behind
        self.name = ""


@async_finalizable
@dataclass
class Flaky:
    name: str = ""

    async def finalize(self) -> None:
        CALLS.append(self.name)
        raise ConnectionError("peer went away")

    def failure_policy(self) -> FailurePolicy:
        return FailurePolicy.CONTINUE


def _quiet():
    return use_settings(logger=ConsoleLogger(level="ERROR", stream=io.StringIO()))


class TestOracle(unittest.TestCase):
    def setUp(self):
        CALLS.clear()

    def test_empty_value_dispatches_nothing(self):
        s = Session()
        self.assertTrue(is_already_finalized(s))
        del s
        Session("").drop()
        self.assertEqual(CALLS, [])

    def test_drop_finalizes_and_empties_value(self):
        s = Session("abc", ["x"])
        self.assertFalse(is_already_finalized(s))
        s.drop()
        self.assertEqual(CALLS, ["abc"])
        self.assertEqual(s, Session())
        self.assertTrue(is_already_finalized(s))

    def test_at_most_once_across_triggers(self):
        s = Session("abc")
        with s:
            pass
        s.drop()
        del s
        gc.collect()
        self.assertEqual(CALLS, ["abc"])

    def test_concurrent_drops_finalize_once(self):
        s = Session("t")
        barrier = threading.Barrier(4)

        def trigger():
            barrier.wait()
            s.drop()

        threads = [threading.Thread(target=trigger) for _ in range(4)]
        for t in threads: t.start()
        for t in threads: t.join()
        self.assertEqual(CALLS, ["t"])

    def test_gc_trigger(self):
        s = Session("gc")
        del s
        self.assertEqual(CALLS, ["gc"])

    def test_shared_empty_is_built_once_per_type(self):
        holder = shared_empty(Session)
        self.assertIs(holder, shared_empty(Session))
        self.assertIsNot(holder, shared_empty(SlowSession))
        self.assertIs(holder.get(), holder.get())
        self.assertEqual(holder.get(), Session())

    def test_decorator_timeout_bounds_teardown(self):
        s = SlowSession("slow")
        start = time.monotonic()
        with _quiet():
            s.drop()
        self.assertLess(time.monotonic() - start, 5.0)
        self.assertEqual(CALLS, [])
        self.assertEqual(s, SlowSession())
        self.assertEqual(s.drop_timeout(), Duration.millis(20))

    def test_escalate_on_timeout(self):
        s = StrictSession("strict")
        with _quiet(), self.assertRaises(FatalFinalizationError) as cm:
            s.drop()
        self.assertIsInstance(cm.exception.error, FinalizationTimeout)
        # the value was emptied before the fatal error surfaced
        self.assertTrue(is_already_finalized(s))

    def test_continue_swallows_internal_error(self):
        f = Flaky("f")
        with _quiet():
            f.drop()
        self.assertEqual(CALLS, ["f"])
        self.assertEqual(f, Flaky())

    def test_default_timeout_comes_from_settings(self):
        s = Session("x")
        self.assertEqual(s.drop_timeout(), Duration.seconds_(3))
        with use_settings(default_timeout=1.5):
            self.assertEqual(s.drop_timeout(), Duration.seconds_(1.5))
        s.drop()

    def test_bad_reset_is_consistency_violation(self):
        s = Sticky("n", 1)
        with _quiet(), self.assertRaises(ConsistencyViolation):
            s.drop()
        self.assertEqual(CALLS, ["n"])
        self.assertEqual(s, Sticky())
        gc.collect()
        # the detached copy was forced empty, so nothing runs twice
        self.assertEqual(CALLS, ["n"])

    def test_consistency_violation_is_fatal(self):
        self.assertTrue(issubclass(ConsistencyViolation, FatalFinalizationError))
        self.assertFalse(issubclass(ConsistencyViolation, Exception))

    def test_partially_built_value_is_inert(self):
        s = object.__new__(Session)
        s.__del__()
        self.assertEqual(CALLS, [])


class TestOracleInsideEventLoop(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        CALLS.clear()

    async def test_drop_from_coroutine(self):
        s = Session("loop")
        s.drop()
        self.assertEqual(CALLS, ["loop"])
        await asyncio.sleep(0)

    async def test_drop_from_coroutine_many_values(self):
        sessions = [Session(f"s{i}") for i in range(5)]
        for s in sessions:
            s.drop()
        self.assertEqual(sorted(CALLS), [f"s{i}" for i in range(5)])


class TestRegistrationMisuse(unittest.TestCase):
    def test_requires_dataclass(self):
        with self.assertRaises(FinalizableMisuse):
            @async_finalizable
            class Plain:
                async def finalize(self): pass

    def test_rejects_type_without_fields(self):
        with self.assertRaises(FinalizableMisuse):
            @async_finalizable
            @dataclass
            class Unit:
                async def finalize(self): pass

    def test_rejects_fields_without_defaults(self):
        with self.assertRaises(FinalizableMisuse):
            @async_finalizable
            @dataclass
            class NoDefault:
                url: str

                async def finalize(self): pass

    def test_rejects_identity_equality(self):
        with self.assertRaises(FinalizableMisuse):
            @async_finalizable
            @dataclass(eq=False)
            class ById:
                url: str = ""

                async def finalize(self): pass

    def test_rejects_frozen(self):
        with self.assertRaises(FinalizableMisuse):
            @async_finalizable
            @dataclass(frozen=True)
            class Frozen:
                url: str = ""

                async def finalize(self): pass

    def test_rejects_sync_finalize(self):
        with self.assertRaises(FinalizableMisuse):
            @async_finalizable
            @dataclass
            class Sync:
                url: str = ""

                def finalize(self): pass

    def test_keeps_user_hooks(self):
        @async_finalizable
        @dataclass
        class Custom:
            url: str = ""

            async def finalize(self): pass

            def failure_policy(self):
                return FailurePolicy.ESCALATE

        self.assertEqual(Custom().failure_policy(), FailurePolicy.ESCALATE)
        self.assertEqual(Custom().drop_timeout(), Duration.seconds_(3))
