"""
字频账本：记录每个字 / 词被解析的次数
"""

import threading
from typing import Dict, Iterable, List, Mapping, Optional


class FrequencyLedger:
    """
    内存中的字频计数

    计数只增不减，仅在迁移时清除被迁移字的计数。
    持久化由外部 FrequencyStorage 负责，本类只是进程内镜像。
    """

    def __init__(self, counts: Optional[Mapping[str, int]] = None):
        self._counts: Dict[str, int] = {}
        self._lock = threading.Lock()
        self.dirty = False
        if counts:
            self.update(counts)

    def __len__(self) -> int:
        return len(self._counts)

    def __contains__(self, key: str) -> bool:
        return key in self._counts

    def increment(self, key: str, amount: int = 1) -> int:
        with self._lock:
            value = self._counts.get(key, 0) + amount
            self._counts[key] = value
            self.dirty = True
            return value

    def get(self, key: str) -> int:
        return self._counts.get(key, 0)

    def set(self, key: str, value: int):
        with self._lock:
            self._counts[key] = max(int(value), 0)
            self.dirty = True

    def update(self, counts: Mapping[str, int]):
        with self._lock:
            for key, value in counts.items():
                try:
                    self._counts[str(key)] = max(int(value), 0)
                except (TypeError, ValueError):
                    continue
            self.dirty = True

    def clear(self, keys: Iterable[str]):
        """清除指定字的计数（迁移后调用）"""
        with self._lock:
            for key in keys:
                self._counts.pop(key, None)
            self.dirty = True

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counts)

    def average(self, keys: Iterable[str]) -> float:
        values = [self._counts.get(k, 0) for k in keys]
        return sum(values) / len(values) if values else 0.0

    def rank(self, keys: Iterable[str], descending: bool = True) -> List[str]:
        """按频次排序，频次相同保持原顺序"""
        keys = list(keys)
        return sorted(keys, key=lambda k: self._counts.get(k, 0), reverse=descending)
