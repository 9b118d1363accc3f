import hashlib
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

import orjson


_MISSING = object()


class LRUCache:
    """
    线程安全的 LRU 缓存

    - 容量满时淘汰最久未使用的条目
    - 可选 TTL：过期条目在访问或 sweep_expired() 时移除
    """

    def __init__(self, capacity: int = 1000, ttl: Optional[float] = None,
                 clock: Callable[[], float] = time.monotonic):
        if capacity < 1:
            raise ValueError("capacity 必须大于 0")
        self.capacity = capacity
        self.ttl = ttl
        self._clock = clock
        self._data: "OrderedDict[Hashable, Tuple[Any, float]]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key) -> bool:
        with self._lock:
            return key in self._data and not self._expired(self._data[key][1])

    def _expired(self, stamp: float) -> bool:
        return self.ttl is not None and self._clock() - stamp > self.ttl

    def get(self, key, default=None):
        with self._lock:
            item = self._data.get(key, _MISSING)
            if item is _MISSING or self._expired(item[1]):
                if item is not _MISSING:
                    del self._data[key]
                self.misses += 1
                return default
            self.hits += 1
            self._data[key] = (item[0], self._clock())
            self._data.move_to_end(key)
            return item[0]

    def put(self, key, value):
        with self._lock:
            if key in self._data:
                self._data.move_to_end(key)
            self._data[key] = (value, self._clock())
            while len(self._data) > self.capacity:
                self._data.popitem(last=False)
                self.evictions += 1

    def get_or_compute(self, key, compute_fn: Callable[[], Any]):
        """命中则返回缓存值，否则计算、写入并返回（计算在锁外进行）"""
        value = self.get(key, _MISSING)
        if value is not _MISSING:
            return value
        value = compute_fn()
        self.put(key, value)
        return value

    def sweep_expired(self) -> int:
        """清理过期条目，返回清理数量"""
        if self.ttl is None:
            return 0
        with self._lock:
            stale = [k for k, (_, stamp) in self._data.items() if self._expired(stamp)]
            for k in stale:
                del self._data[k]
        return len(stale)

    def clear(self):
        with self._lock:
            self._data.clear()

    def keys(self):
        """按最久未使用 → 最近使用的顺序返回键"""
        with self._lock:
            return list(self._data.keys())

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def stats(self) -> Dict[str, Any]:
        return {
            'size': len(self._data),
            'capacity': self.capacity,
            'hits': self.hits,
            'misses': self.misses,
            'evictions': self.evictions,
            'hit_rate': round(self.hit_rate, 4),
        }


def make_cache_key(text: str, separator: str, with_tone: bool, special_chars,
                   temp_map: Optional[Dict[str, str]] = None) -> str:
    """
    由输入文本和所有影响输出的选项生成缓存键

    任一选项不同，键必然不同
    """
    payload = [text, separator, bool(with_tone), special_chars, temp_map or {}]
    raw = orjson.dumps(payload, option=orjson.OPT_SORT_KEYS, default=_encode_option)
    return hashlib.md5(raw).hexdigest()


def _encode_option(obj):
    if hasattr(obj, '__dict__'):
        return vars(obj)
    if isinstance(obj, (set, frozenset, tuple)):
        return sorted(obj) if isinstance(obj, (set, frozenset)) else list(obj)
    raise TypeError(f"无法编码缓存键选项: {type(obj).__name__}")
