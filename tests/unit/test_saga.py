"""
Unit tests for saga ordering, non-critical steps and compensation.
"""
import pytest

from ride_service.services.saga import Saga


class Boom(Exception):
    pass


@pytest.mark.asyncio
class TestSaga:
    async def test_steps_run_in_order_and_share_results(self):
        calls = []

        async def first(results):
            calls.append("first")
            return 1

        async def second(results):
            calls.append("second")
            return results["first"] + 1

        results = await Saga("test", "subject").step("first", first).step("second", second).run()
        assert calls == ["first", "second"]
        assert results == {"first": 1, "second": 2}

    async def test_non_critical_failure_is_skipped(self):
        async def fails(results):
            raise Boom("insurer down")

        async def after(results):
            return "ran"

        saga = Saga("test", "subject").step("optional", fails, critical=False).step("after", after)
        results = await saga.run()
        assert results["after"] == "ran"
        assert saga.skipped == ["optional"]
        assert saga.completed == ["after"]

    async def test_critical_failure_compensates_in_reverse(self):
        undone = []

        async def ok(results):
            return None

        def undo(name):
            async def _undo(results):
                undone.append(name)
            return _undo

        async def fails(results):
            raise Boom("device offline")

        saga = (
            Saga("test", "subject")
            .step("a", ok, compensate=undo("a"))
            .step("b", ok)
            .step("c", ok, compensate=undo("c"))
            .step("d", fails, compensate=undo("d"))
        )
        with pytest.raises(Boom):
            await saga.run()
        assert undone == ["c", "a"]
        assert saga.completed == ["a", "b", "c"]

    async def test_failing_compensation_does_not_mask_error(self):
        undone = []

        async def ok(results):
            return None

        async def bad_undo(results):
            raise RuntimeError("compensation failed")

        async def good_undo(results):
            undone.append("first")

        async def fails(results):
            raise Boom("persist failed")

        saga = (
            Saga("test", "subject")
            .step("first", ok, compensate=good_undo)
            .step("second", ok, compensate=bad_undo)
            .step("third", fails)
        )
        with pytest.raises(Boom):
            await saga.run()
        assert undone == ["first"]

    async def test_steps_after_failure_do_not_run(self):
        ran = []

        async def fails(results):
            raise Boom()

        async def never(results):
            ran.append("never")

        with pytest.raises(Boom):
            await Saga("test", "subject").step("fails", fails).step("never", never).run()
        assert ran == []
