"""Tests for RequestObserver refresh coordination."""

import asyncio

import pytest

from refresh_observer.client import CancelReason, CancelToken, LinkedCancelToken
from refresh_observer.errors import RefreshError, RequestCancelledError
from refresh_observer.observer import ObserverConfig, RequestObserver


class GatedRefresh:
    """Refresh handler that blocks until released."""

    def __init__(self, result: object = "token") -> None:
        self.calls = 0
        self.gate = asyncio.Event()
        self.result = result
        self.error: Exception | None = None

    async def __call__(self) -> object:
        self.calls += 1
        await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.result


def make_observer(handler, **options) -> RequestObserver:
    return RequestObserver(ObserverConfig(refresh_handler=handler, **options))


class TestAcquireSignal:
    """Tests for acquire_signal."""

    @pytest.mark.asyncio
    async def test_initial_state(self) -> None:
        observer = make_observer(GatedRefresh())

        assert observer.is_suspended is False
        assert observer.refresh_count == 0
        assert observer.pending_waiters == 0
        assert not observer.current_epoch.is_cancelled

    @pytest.mark.asyncio
    async def test_fresh_request_gets_epoch_without_refresh(self) -> None:
        handler = GatedRefresh()
        observer = make_observer(handler)

        token = await observer.acquire_signal(0)

        assert token is observer.current_epoch
        assert handler.calls == 0

    @pytest.mark.asyncio
    async def test_retried_request_triggers_refresh_and_rotates_epoch(self) -> None:
        handler = GatedRefresh()
        handler.gate.set()
        observer = make_observer(handler)
        old_epoch = observer.current_epoch

        token = await observer.acquire_signal(1)

        assert handler.calls == 1
        assert old_epoch.is_cancelled
        assert old_epoch.reason == CancelReason.REFRESH
        assert token is observer.current_epoch
        assert token is not old_epoch
        assert not token.is_cancelled
        assert observer.is_suspended is False

    @pytest.mark.asyncio
    async def test_request_during_refresh_waits(self) -> None:
        handler = GatedRefresh()
        observer = make_observer(handler)

        trigger = asyncio.create_task(observer.trigger_or_join_refresh())
        await asyncio.sleep(0)
        newcomer = asyncio.create_task(observer.acquire_signal(0))
        await asyncio.sleep(0)

        assert observer.is_suspended
        assert observer.pending_waiters == 1
        assert not newcomer.done()

        handler.gate.set()
        await trigger
        token = await newcomer

        assert token is observer.current_epoch
        assert not token.is_cancelled
        assert handler.calls == 1

    @pytest.mark.asyncio
    async def test_external_token_ignored_without_combining(self) -> None:
        observer = make_observer(GatedRefresh(), combine_abort_signals=False)
        external = CancelToken()

        token = await observer.acquire_signal(0, external)

        assert token is observer.current_epoch
        external.cancel()
        assert not token.is_cancelled

    @pytest.mark.asyncio
    async def test_external_token_combined(self) -> None:
        observer = make_observer(GatedRefresh(), combine_abort_signals=True)
        external = CancelToken()

        token = await observer.acquire_signal(0, external)

        assert isinstance(token, LinkedCancelToken)
        external.cancel(CancelReason.USER_REQUEST)
        assert token.is_cancelled
        assert token.reason == CancelReason.USER_REQUEST
        assert not observer.current_epoch.is_cancelled

    @pytest.mark.asyncio
    async def test_combined_token_fires_on_refresh(self) -> None:
        handler = GatedRefresh()
        observer = make_observer(handler, combine_abort_signals=True)
        token = await observer.acquire_signal(0, CancelToken())

        trigger = asyncio.create_task(observer.trigger_or_join_refresh())
        await asyncio.sleep(0)

        assert token.reason == CancelReason.REFRESH
        handler.gate.set()
        await trigger

    @pytest.mark.asyncio
    async def test_combining_without_external_returns_epoch(self) -> None:
        observer = make_observer(GatedRefresh(), combine_abort_signals=True)

        token = await observer.acquire_signal(0)

        assert token is observer.current_epoch


class TestAbandonWait:
    """Tests for callers leaving the waiter queue through their own token."""

    @pytest.mark.asyncio
    async def test_parked_caller_abandons_wait(self) -> None:
        handler = GatedRefresh()
        observer = make_observer(handler, combine_abort_signals=True)

        trigger = asyncio.create_task(observer.trigger_or_join_refresh())
        await asyncio.sleep(0)
        leaving, staying = CancelToken(), CancelToken()
        left = asyncio.create_task(observer.acquire_signal(0, leaving))
        kept = asyncio.create_task(observer.acquire_signal(0, staying))
        await asyncio.sleep(0)
        assert observer.pending_waiters == 2

        leaving.cancel(CancelReason.TIMEOUT)
        with pytest.raises(RequestCancelledError) as exc_info:
            await left

        assert exc_info.value.reason == CancelReason.TIMEOUT
        assert observer.pending_waiters == 1
        assert observer.is_suspended

        handler.gate.set()
        await trigger
        token = await kept

        assert isinstance(token, LinkedCancelToken)
        assert not token.is_cancelled
        assert handler.calls == 1

    @pytest.mark.asyncio
    async def test_cancelled_token_never_parks(self) -> None:
        handler = GatedRefresh()
        observer = make_observer(handler, combine_abort_signals=True)
        trigger = asyncio.create_task(observer.trigger_or_join_refresh())
        await asyncio.sleep(0)

        caller = CancelToken()
        caller.cancel(CancelReason.USER_REQUEST)
        with pytest.raises(RequestCancelledError):
            await observer.acquire_signal(0, caller)

        assert observer.pending_waiters == 0
        handler.gate.set()
        await trigger

    @pytest.mark.asyncio
    async def test_caller_token_ignored_while_parked_without_combining(self) -> None:
        handler = GatedRefresh()
        observer = make_observer(handler, combine_abort_signals=False)

        trigger = asyncio.create_task(observer.trigger_or_join_refresh())
        await asyncio.sleep(0)
        caller = CancelToken()
        parked = asyncio.create_task(observer.acquire_signal(0, caller))
        await asyncio.sleep(0)

        caller.cancel(CancelReason.USER_REQUEST)
        await asyncio.sleep(0.01)
        assert not parked.done()

        handler.gate.set()
        await trigger
        assert await parked is observer.current_epoch

    @pytest.mark.asyncio
    async def test_refresh_failure_reaches_watching_waiter(self) -> None:
        handler = GatedRefresh()
        handler.error = ConnectionError("down")
        observer = make_observer(handler, combine_abort_signals=True)

        trigger = asyncio.create_task(observer.trigger_or_join_refresh())
        await asyncio.sleep(0)
        parked = asyncio.create_task(observer.acquire_signal(0, CancelToken()))
        await asyncio.sleep(0)
        handler.gate.set()

        results = await asyncio.gather(trigger, parked, return_exceptions=True)

        assert all(isinstance(r, RefreshError) for r in results)


class TestSingleFlight:
    """Tests for single-flight refresh and wakeup order."""

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_refresh(self) -> None:
        handler = GatedRefresh()
        observer = make_observer(handler)

        tasks = [asyncio.create_task(observer.trigger_or_join_refresh()) for _ in range(5)]
        await asyncio.sleep(0)

        assert handler.calls == 1
        assert observer.is_suspended
        assert observer.pending_waiters == 4

        handler.gate.set()
        await asyncio.gather(*tasks)

        assert handler.calls == 1
        assert observer.refresh_count == 1
        assert observer.pending_waiters == 0
        assert observer.is_suspended is False

    @pytest.mark.asyncio
    async def test_waiters_resume_in_parking_order(self) -> None:
        handler = GatedRefresh()
        observer = make_observer(handler)
        order: list[str] = []

        async def waiter(name: str) -> None:
            await observer.trigger_or_join_refresh()
            order.append(name)

        trigger = asyncio.create_task(observer.trigger_or_join_refresh())
        await asyncio.sleep(0)
        waiters = []
        for name in ("A", "B", "C"):
            waiters.append(asyncio.create_task(waiter(name)))
            await asyncio.sleep(0)

        assert observer.pending_waiters == 3
        handler.gate.set()
        await asyncio.gather(trigger, *waiters)

        assert order == ["A", "B", "C"]

    @pytest.mark.asyncio
    async def test_cancelled_waiter_is_skipped(self) -> None:
        handler = GatedRefresh()
        observer = make_observer(handler)

        trigger = asyncio.create_task(observer.trigger_or_join_refresh())
        await asyncio.sleep(0)
        gone = asyncio.create_task(observer.trigger_or_join_refresh())
        kept = asyncio.create_task(observer.trigger_or_join_refresh())
        await asyncio.sleep(0)

        gone.cancel()
        await asyncio.gather(gone, return_exceptions=True)
        handler.gate.set()
        await asyncio.gather(trigger, kept)

        assert gone.cancelled()
        assert kept.done() and kept.exception() is None

    @pytest.mark.asyncio
    async def test_next_round_starts_new_refresh(self) -> None:
        handler = GatedRefresh()
        handler.gate.set()
        observer = make_observer(handler)

        await observer.trigger_or_join_refresh()
        await observer.trigger_or_join_refresh()

        assert handler.calls == 2
        assert observer.refresh_count == 2


class TestRefreshFailure:
    """Tests for the refresh failure policy."""

    @pytest.mark.asyncio
    async def test_failure_reaches_trigger_and_waiters(self) -> None:
        handler = GatedRefresh()
        handler.error = ConnectionError("token endpoint down")
        observer = make_observer(handler)

        trigger = asyncio.create_task(observer.trigger_or_join_refresh())
        await asyncio.sleep(0)
        waiter = asyncio.create_task(observer.acquire_signal(0))
        await asyncio.sleep(0)
        handler.gate.set()

        results = await asyncio.gather(trigger, waiter, return_exceptions=True)

        assert all(isinstance(r, RefreshError) for r in results)
        assert results[0] is not results[1]
        assert isinstance(results[0].__cause__, ConnectionError)
        assert results[1].__cause__ is results[0].__cause__

    @pytest.mark.asyncio
    async def test_failure_resets_state(self) -> None:
        handler = GatedRefresh()
        handler.error = ConnectionError("down")
        handler.gate.set()
        observer = make_observer(handler)
        old_epoch = observer.current_epoch

        with pytest.raises(RefreshError):
            await observer.trigger_or_join_refresh()

        assert observer.is_suspended is False
        assert observer.pending_waiters == 0
        assert old_epoch.is_cancelled
        assert not observer.current_epoch.is_cancelled

        handler.error = None
        await observer.trigger_or_join_refresh()
        assert handler.calls == 2

    @pytest.mark.asyncio
    async def test_empty_credential_is_failure(self) -> None:
        handler = GatedRefresh(result="")
        handler.gate.set()
        observer = make_observer(handler)

        with pytest.raises(RefreshError, match="empty credential"):
            await observer.trigger_or_join_refresh()

        assert observer.is_suspended is False

    @pytest.mark.asyncio
    async def test_none_credential_is_success(self) -> None:
        handler = GatedRefresh(result=None)
        handler.gate.set()
        observer = make_observer(handler)

        await observer.trigger_or_join_refresh()

        assert observer.refresh_count == 1

    @pytest.mark.asyncio
    async def test_cancelled_refresh_releases_waiters(self) -> None:
        handler = GatedRefresh()
        observer = make_observer(handler)

        trigger = asyncio.create_task(observer.trigger_or_join_refresh())
        await asyncio.sleep(0)
        waiter = asyncio.create_task(observer.trigger_or_join_refresh())
        await asyncio.sleep(0)

        trigger.cancel()
        results = await asyncio.gather(trigger, waiter, return_exceptions=True)

        assert isinstance(results[0], asyncio.CancelledError)
        assert isinstance(results[1], RefreshError)
        assert observer.is_suspended is False
