import asyncio

import pytest

from github_cache import RequestCoalescer, ResultCache, cache_key
from stats_types import TimeFilter


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class TestCacheKey:

    def test_key_includes_operation_subject_and_filter(self):
        assert cache_key('repo', 'acme/widgets', TimeFilter.ONE_MONTH) == ('repo', 'acme/widgets', '1m')
        assert cache_key('maintainers', 'acme/widgets') == ('maintainers', 'acme/widgets', '')

    def test_distinct_subjects_never_collide(self):
        # underscores in names must not make two keys equal
        assert cache_key('repo', 'a_b/c', '1m') != cache_key('repo', 'a/b_c', '1m')
        assert cache_key('repo', 'acme/widgets', '1m') != cache_key('user', 'acme/widgets', '1m')
        assert cache_key('repo', 'acme/widgets', '1m') != cache_key('repo', 'acme/widgets', '3m')


class TestResultCache:

    def test_get_returns_value_within_ttl(self):
        clock = FakeClock()
        cache = ResultCache(default_ttl=300, clock=clock)
        cache.set('k', {'value': 1})
        clock.now += 300
        assert cache.get('k') == {'value': 1}
        assert cache.has('k')

    def test_expired_entry_is_never_returned_and_is_evicted(self):
        clock = FakeClock()
        cache = ResultCache(default_ttl=300, clock=clock)
        cache.set('k', 'data')
        clock.now += 300.5
        assert cache.get('k') is None
        assert len(cache) == 0
        # going back in time does not resurrect the entry
        clock.now -= 100
        assert cache.get('k') is None

    def test_per_entry_ttl_overrides_default(self):
        clock = FakeClock()
        cache = ResultCache(default_ttl=300, clock=clock)
        cache.set('short', 'a')
        cache.set('long', 'b', ttl=3600)
        clock.now += 1000
        assert cache.get('short') is None
        assert cache.get('long') == 'b'

    def test_has_evaluates_expiry(self):
        clock = FakeClock()
        cache = ResultCache(default_ttl=10, clock=clock)
        cache.set('k', 'v')
        clock.now += 11
        assert not cache.has('k')

    def test_clear_removes_everything(self):
        cache = ResultCache()
        cache.set('a', 1)
        cache.set('b', 2)
        cache.clear()
        assert cache.get('a') is None
        assert len(cache) == 0

    def test_missing_key(self):
        assert ResultCache().get('missing') is None


class TestRequestCoalescer:

    def test_concurrent_callers_share_one_factory_call(self):
        calls = []

        async def factory():
            calls.append(1)
            await asyncio.sleep(0.01)
            return {'alice'}

        async def scenario():
            coalescer = RequestCoalescer(grace_period=60)
            futures = [coalescer.acquire('acme/widgets', factory) for _ in range(5)]
            return await asyncio.gather(*futures)

        results = asyncio.run(scenario())
        assert len(calls) == 1
        assert all(r is results[0] for r in results)

    def test_registration_happens_before_first_suspension(self):
        calls = []

        async def factory():
            calls.append(1)
            return 'value'

        async def caller(coalescer):
            return await coalescer.acquire('key', factory)

        async def scenario():
            coalescer = RequestCoalescer(grace_period=60)
            return await asyncio.gather(*(caller(coalescer) for _ in range(10)))

        assert asyncio.run(scenario()) == ['value'] * 10
        assert len(calls) == 1

    def test_failure_propagates_to_every_waiter(self):
        async def factory():
            await asyncio.sleep(0)
            raise RuntimeError('upstream down')

        async def scenario():
            coalescer = RequestCoalescer(grace_period=60)
            futures = [coalescer.acquire('key', factory) for _ in range(3)]
            return await asyncio.gather(*futures, return_exceptions=True)

        results = asyncio.run(scenario())
        assert all(isinstance(r, RuntimeError) for r in results)
        assert all(r is results[0] for r in results)

    def test_callers_within_grace_period_reuse_settled_future(self):
        calls = []

        async def factory():
            calls.append(1)
            return len(calls)

        async def scenario():
            coalescer = RequestCoalescer(grace_period=60)
            first = await coalescer.acquire('key', factory)
            await asyncio.sleep(0.01)
            second = await coalescer.acquire('key', factory)
            return first, second, coalescer.is_in_flight('key')

        first, second, in_flight = asyncio.run(scenario())
        assert first == second == 1
        assert in_flight
        assert len(calls) == 1

    def test_registration_removed_after_grace_period(self):
        calls = []

        async def factory():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError('first attempt fails')
            return 'recovered'

        async def scenario():
            coalescer = RequestCoalescer(grace_period=0.01)
            with pytest.raises(RuntimeError):
                await coalescer.acquire('key', factory)
            await asyncio.sleep(0.05)
            assert not coalescer.is_in_flight('key')
            return await coalescer.acquire('key', factory)

        assert asyncio.run(scenario()) == 'recovered'
        assert len(calls) == 2

    def test_distinct_keys_are_independent(self):
        calls = []

        async def factory():
            calls.append(1)
            return len(calls)

        async def scenario():
            coalescer = RequestCoalescer(grace_period=60)
            return await asyncio.gather(coalescer.acquire('a', factory), coalescer.acquire('b', factory))

        assert sorted(asyncio.run(scenario())) == [1, 2]

    def test_settled_registration_expires_without_timer(self):
        clock = FakeClock()
        calls = []

        async def factory():
            calls.append(1)
            return len(calls)

        async def scenario():
            coalescer = RequestCoalescer(grace_period=5, clock=clock)
            first = await coalescer.acquire('key', factory)
            clock.now += 5
            assert not coalescer.is_in_flight('key')
            second = await coalescer.acquire('key', factory)
            return first, second

        assert asyncio.run(scenario()) == (1, 2)

    def test_registration_from_a_closed_loop_is_replaced(self):
        coalescer = RequestCoalescer(grace_period=60)
        calls = []

        async def factory():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError('first attempt fails')
            return 'recovered'

        async def attempt():
            return await coalescer.acquire('key', factory)

        with pytest.raises(RuntimeError):
            asyncio.run(attempt())

        assert not coalescer.is_in_flight('key')
        assert asyncio.run(attempt()) == 'recovered'
        assert len(calls) == 2

    def test_cancelling_one_caller_leaves_the_shared_request_running(self):
        calls = []

        async def factory():
            calls.append(1)
            await asyncio.sleep(0.01)
            return 'value'

        async def scenario():
            coalescer = RequestCoalescer(grace_period=60)
            impatient = coalescer.acquire('key', factory)
            patient = coalescer.acquire('key', factory)
            impatient.cancel()
            return await patient, impatient.cancelled()

        assert asyncio.run(scenario()) == ('value', True)
        assert len(calls) == 1
