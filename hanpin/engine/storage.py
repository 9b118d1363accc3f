"""
外部协作方

- 字典持久化（JSON / 内存）
- 字频持久化
- 未找到字符记录
- 外部读音来源（pypinyin）
- 时钟与系统负载
"""

import os
import shutil
import threading
import time
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Protocol, Tuple, Union

import orjson
from pypinyin.pinyin_dict import pinyin_dict

from .dictionary import Pronunciations, Tier, ToneVariant, normalize_entries, untoned_of
from .errors import PersistenceFailure
from .pinyin_utils import match_candidate


# ===== 协议 =====

class DictionaryStorage(Protocol):
    def load(self, tier: Tier, variant: ToneVariant) -> Dict[str, List[str]]: ...
    def save(self, tier: Tier, variant: ToneVariant, mapping: Mapping) -> None: ...
    def backup(self, tier: Tier, variant: ToneVariant) -> Optional[Path]: ...
    def load_state(self) -> dict: ...
    def save_state(self, state: dict) -> None: ...


class FrequencyStorage(Protocol):
    def load(self) -> Dict[str, int]: ...
    def save(self, counts: Mapping[str, int]) -> None: ...


class NotFoundSink(Protocol):
    def record(self, char: str) -> None: ...
    def pending(self) -> List[str]: ...
    def discard(self, char: str) -> None: ...


class PronunciationFetcher(Protocol):
    def fetch(self, char: str) -> Optional[List[str]]: ...


class Clock(Protocol):
    def now(self) -> float: ...
    def load(self) -> Optional[float]: ...


# ===== JSON 文件工具 =====

def _read_json(path: Path, default):
    if not path.exists():
        return default
    try:
        return orjson.loads(path.read_bytes())
    except (OSError, orjson.JSONDecodeError) as e:
        raise PersistenceFailure(f"读取 {path}", e) from e


def _write_json(path: Path, data):
    """先写临时文件再替换，保证文件要么是旧内容要么是新内容"""
    tmp = path.with_suffix(path.suffix + '.tmp')
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp.write_bytes(orjson.dumps(data, option=orjson.OPT_INDENT_2 | orjson.OPT_NON_STR_KEYS))
        os.replace(tmp, path)
    except (OSError, TypeError, orjson.JSONEncodeError) as e:
        if tmp.exists():
            tmp.unlink()
        raise PersistenceFailure(f"写入 {path}", e) from e


def _plain(mapping: Mapping) -> Dict[str, List[str]]:
    return {k: list(v) for k, v in mapping.items()}


# ===== 字典持久化 =====

class JsonDictionaryStorage:
    """
    JSON 字典存储

    文件布局：
        <data_dir>/<tier>_<variant>.json
        <data_dir>/state.json
        <data_dir>/backup/<tier>_<variant>_<时间戳>.json
    """

    def __init__(self, data_dir: Union[str, Path], backup_dir: Union[str, Path, None] = None):
        self.data_dir = Path(data_dir)
        self.backup_dir = Path(backup_dir) if backup_dir else self.data_dir / 'backup'

    def path_for(self, tier: Tier, variant: ToneVariant) -> Path:
        return self.data_dir / f"{Tier(tier).value}_{ToneVariant(variant).value}.json"

    def load(self, tier: Tier, variant: ToneVariant) -> Dict[str, List[str]]:
        data = _read_json(self.path_for(tier, variant), {})
        if not isinstance(data, dict):
            raise PersistenceFailure(f"{self.path_for(tier, variant)} 不是 JSON 对象")
        return data

    def save(self, tier: Tier, variant: ToneVariant, mapping: Mapping):
        _write_json(self.path_for(tier, variant), _plain(mapping))

    def backup(self, tier: Tier, variant: ToneVariant) -> Optional[Path]:
        source = self.path_for(tier, variant)
        if not source.exists():
            return None
        stamp = datetime.now().strftime('%Y%m%d%H%M%S%f')
        target = self.backup_dir / f"{source.stem}_{stamp}.json"
        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, target)
        except OSError as e:
            raise PersistenceFailure(f"备份 {source}", e) from e
        return target

    def load_state(self) -> dict:
        return _read_json(self.data_dir / 'state.json', {})

    def save_state(self, state: dict):
        _write_json(self.data_dir / 'state.json', state)


class MemoryDictionaryStorage:
    """内存字典存储（测试 / 无持久化场景）"""

    def __init__(self, data: Optional[Mapping] = None):
        self.data: Dict[Tuple[Tier, ToneVariant], Dict[str, List[str]]] = {}
        for (tier, variant), mapping in (data or {}).items():
            self.data[(Tier(tier), ToneVariant(variant))] = _plain(normalize_entries(mapping))
        self.state: dict = {}
        self.backups: List[Tuple[Tier, ToneVariant]] = []
        self.fail_on_save = False
        self.saves = 0

    def load(self, tier: Tier, variant: ToneVariant) -> Dict[str, List[str]]:
        return dict(self.data.get((tier, variant), {}))

    def save(self, tier: Tier, variant: ToneVariant, mapping: Mapping):
        if self.fail_on_save:
            raise PersistenceFailure(f"保存 {tier.value}/{variant.value}", OSError("模拟写入失败"))
        self.data[(tier, variant)] = _plain(mapping)
        self.saves += 1

    def backup(self, tier: Tier, variant: ToneVariant) -> Optional[Path]:
        self.backups.append((tier, variant))
        return None

    def load_state(self) -> dict:
        return dict(self.state)

    def save_state(self, state: dict):
        self.state = dict(state)


# ===== 字频持久化 =====

class JsonFrequencyStorage:
    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self) -> Dict[str, int]:
        data = _read_json(self.path, {})
        return data if isinstance(data, dict) else {}

    def save(self, counts: Mapping[str, int]):
        _write_json(self.path, dict(counts))


class MemoryFrequencyStorage:
    def __init__(self, counts: Optional[Mapping[str, int]] = None):
        self.counts = dict(counts or {})

    def load(self) -> Dict[str, int]:
        return dict(self.counts)

    def save(self, counts: Mapping[str, int]):
        self.counts = dict(counts)


# ===== 未找到字符 =====

class MemoryNotFoundSink:
    """内存记录，自动去重"""

    def __init__(self):
        self._chars: Dict[str, None] = {}
        self._lock = threading.Lock()

    def record(self, char: str):
        with self._lock:
            self._chars.setdefault(char, None)

    def pending(self) -> List[str]:
        with self._lock:
            return list(self._chars)

    def discard(self, char: str):
        with self._lock:
            self._chars.pop(char, None)

    def __len__(self) -> int:
        return len(self._chars)


class JsonNotFoundSink(MemoryNotFoundSink):
    """带文件持久化的记录，flush() 时写盘"""

    def __init__(self, path: Union[str, Path]):
        super().__init__()
        self.path = Path(path)
        for char in _read_json(self.path, []):
            self._chars.setdefault(char, None)

    def flush(self):
        _write_json(self.path, self.pending())


# ===== 外部读音来源 =====

class PypinyinFetcher:
    """基于 pypinyin 单字读音表的外部读音来源，同时提供声调还原"""

    def fetch(self, char: str) -> Optional[List[str]]:
        if len(char) != 1:
            return None
        raw = pinyin_dict.get(ord(char))
        if not raw:
            return None
        options: List[str] = []
        for item in raw.split(','):
            item = item.strip()
            if item and item not in options:
                options.append(item)
        return options or None

    def restore(self, char: str, untoned: str) -> Optional[str]:
        """无调拼音 → 带调拼音；无法确定时返回 None"""
        options = self.fetch(char)
        if not options:
            return None
        return match_candidate(untoned, options)


class PypinyinExtendedSource(Mapping):
    """
    扩展字典层：以 pypinyin 读音表为权威来源的只读 Mapping
    """

    def __init__(self, variant: ToneVariant = ToneVariant.WITH_TONE):
        self.variant = ToneVariant(variant)
        self._fetcher = PypinyinFetcher()

    def __getitem__(self, char: str) -> Pronunciations:
        options = self._fetcher.fetch(char) if isinstance(char, str) else None
        if not options:
            raise KeyError(char)
        if self.variant is ToneVariant.NO_TONE:
            return untoned_of(options)
        return tuple(options)

    def __contains__(self, char) -> bool:
        return isinstance(char, str) and len(char) == 1 and ord(char) in pinyin_dict

    def __iter__(self) -> Iterator[str]:
        return (chr(cp) for cp in pinyin_dict)

    def __len__(self) -> int:
        return len(pinyin_dict)


# ===== 时钟 =====

class SystemClock:
    """系统时间与负载（1 分钟平均负载 / CPU 核数）"""

    def now(self) -> float:
        return time.time()

    def load(self) -> Optional[float]:
        try:
            return os.getloadavg()[0] / (os.cpu_count() or 1)
        except (AttributeError, OSError):
            return None


class ManualClock:
    """可手动推进的时钟（测试用）"""

    def __init__(self, now: float = 0.0, load: Optional[float] = None):
        self._now = now
        self._load = load

    def now(self) -> float:
        return self._now

    def load(self) -> Optional[float]:
        return self._load

    def advance(self, seconds: float):
        self._now += seconds

    def set_load(self, load: Optional[float]):
        self._load = load
