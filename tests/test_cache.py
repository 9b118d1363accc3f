"""
结果缓存测试
"""

import threading

from hanpin.engine.cache import LRUCache, make_cache_key


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestLRUCache:
    """LRU 淘汰"""

    def test_capacity_two_eviction(self):
        cache = LRUCache(2)
        cache.put('A', 1)
        cache.put('B', 2)
        assert cache.get('A') == 1
        cache.put('C', 3)
        assert 'B' not in cache
        assert cache.keys() == ['A', 'C']
        assert cache.evictions == 1

    def test_hit_miss_stats(self):
        cache = LRUCache(4)
        cache.put('k', 'v')
        cache.get('k')
        cache.get('missing')
        stats = cache.stats()
        assert stats['hits'] == 1
        assert stats['misses'] == 1
        assert stats['hit_rate'] == 0.5

    def test_get_or_compute_once(self):
        cache = LRUCache(4)
        calls = []

        def compute():
            calls.append(1)
            return 'value'

        assert cache.get_or_compute('k', compute) == 'value'
        assert cache.get_or_compute('k', compute) == 'value'
        assert len(calls) == 1

    def test_ttl_expiry(self):
        clock = FakeClock()
        cache = LRUCache(4, ttl=10, clock=clock)
        cache.put('a', 1)
        cache.put('b', 2)
        clock.now = 5
        assert cache.get('a') == 1
        clock.now = 12
        # a 在 5 时刻被访问过，b 已过期
        assert cache.sweep_expired() == 1
        assert cache.keys() == ['a']
        clock.now = 30
        assert cache.get('a') is None

    def test_clear(self):
        cache = LRUCache(4)
        cache.put('a', 1)
        cache.clear()
        assert len(cache) == 0

    def test_concurrent_puts(self):
        cache = LRUCache(50)

        def worker(n):
            for i in range(100):
                cache.put(f'{n}-{i}', i)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(cache) == 50


class TestCacheKey:
    """缓存键"""

    def test_same_options_same_key(self):
        assert make_cache_key('中国', ' ', False, '', None) == make_cache_key('中国', ' ', False, '', {})

    def test_key_changes_with_options(self):
        base = make_cache_key('中国', ' ', False, '', None)
        assert make_cache_key('中国', '-', False, '', None) != base
        assert make_cache_key('中国', ' ', True, '', None) != base
        assert make_cache_key('中国', ' ', False, 'keep', None) != base
        assert make_cache_key('中国', ' ', False, '', {'中': 'zhong4'}) != base
        assert make_cache_key('中', ' ', False, '', None) != base

    def test_temp_map_order_irrelevant(self):
        a = make_cache_key('x', ' ', False, '', {'中': 'a', '国': 'b'})
        b = make_cache_key('x', ' ', False, '', {'国': 'b', '中': 'a'})
        assert a == b
