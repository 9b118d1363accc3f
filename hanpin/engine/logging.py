"""
统一日志配置模块

hanpin.engine / hanpin.api 两个日志器，控制台输出，
可选 JSON 格式和轮转文件（设置 HANPIN_LOG_DIR 时启用）。
"""

import os
import sys
import time
import logging
from datetime import datetime, timezone
from functools import wraps
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional

import orjson


LOG_DIR = Path(os.getenv('HANPIN_LOG_DIR', 'logs'))
LOG_FORMATS = ('text', 'json')

# 由转换器配置统一调整的日志器
MANAGED_LOGGERS = ('hanpin.engine', 'hanpin.api')

_TEXT_FORMAT = '%(asctime)s | %(levelname)-8s | %(message)s'
_FILE_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d | %(message)s'


class JsonFormatter(logging.Formatter):
    """JSON 格式日志，API 请求日志附带 request_id 与 duration_ms"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'function': record.funcName,
            'line': record.lineno,
        }
        for key in ('request_id', 'duration_ms'):
            if hasattr(record, key):
                log_data[key] = getattr(record, key)
        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)
        return orjson.dumps(log_data, default=str).decode('utf-8')


class ColorFormatter(logging.Formatter):
    """彩色控制台输出"""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def format(self, record: logging.LogRecord) -> str:
        # 复制一份，颜色码不影响文件 handler
        colored = logging.makeLogRecord(record.__dict__)
        colored.levelname = f"{self.COLORS.get(record.levelname, '')}{record.levelname}{self.RESET}"
        return super().format(colored)


def parse_level(level: str) -> int:
    """'debug' / 'INFO' → logging 常量，未知级别抛出 ValueError"""
    value = logging.getLevelName(str(level).upper())
    if not isinstance(value, int):
        raise ValueError(f"未知的日志级别: {level}")
    return value


def _console_handler(json_format: bool) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    if json_format:
        handler.setFormatter(JsonFormatter())
    elif sys.stderr.isatty():
        handler.setFormatter(ColorFormatter(_TEXT_FORMAT))
    else:
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT))
    return handler


def _file_handlers(name: str, log_dir: Path, json_format: bool,
                   max_bytes: int, backup_count: int) -> List[logging.Handler]:
    """主日志 + 单独的错误日志，均按大小轮转"""
    log_dir.mkdir(parents=True, exist_ok=True)
    main = RotatingFileHandler(log_dir / f'{name}.log', maxBytes=max_bytes,
                               backupCount=backup_count, encoding='utf-8')
    main.setFormatter(JsonFormatter() if json_format else logging.Formatter(_FILE_FORMAT))

    errors = RotatingFileHandler(log_dir / f'{name}_error.log', maxBytes=max_bytes,
                                 backupCount=backup_count, encoding='utf-8')
    errors.setLevel(logging.ERROR)
    errors.setFormatter(logging.Formatter(_FILE_FORMAT))
    return [main, errors]


def setup_logging(
    name: str = 'hanpin',
    level: str = 'INFO',
    log_to_file: Optional[bool] = None,
    log_to_console: bool = True,
    json_format: bool = False,
    log_dir: Optional[Path] = None,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
) -> logging.Logger:
    """
    配置日志器（重复调用会替换已有 handlers）

    Args:
        name: 日志器名称
        level: 日志级别 (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_to_file: 是否写入文件（默认仅在设置了 HANPIN_LOG_DIR 时写入）
        log_to_console: 是否输出到 stderr
        json_format: 是否使用 JSON 格式
        log_dir: 日志目录
        max_bytes: 单个日志文件最大大小
        backup_count: 保留的日志文件数量
    """
    if log_to_file is None:
        log_to_file = 'HANPIN_LOG_DIR' in os.environ

    logger = logging.getLogger(name)
    logger.setLevel(parse_level(level))
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if log_to_console:
        logger.addHandler(_console_handler(json_format))
    if log_to_file:
        for handler in _file_handlers(name, Path(log_dir) if log_dir else LOG_DIR,
                                      json_format, max_bytes, backup_count):
            logger.addHandler(handler)
    return logger


def configure_logging(level: str = 'INFO', log_format: str = 'text'):
    """按转换器配置重新设置引擎与 API 日志器"""
    for name in MANAGED_LOGGERS:
        setup_logging(name, level=level, json_format=log_format == 'json')


def get_logger(name: str = 'hanpin') -> logging.Logger:
    """获取已配置的 logger，首次使用时按 HANPIN_LOG_LEVEL / HANPIN_LOG_FORMAT 配置"""
    logger = logging.getLogger(name)
    if not logger.handlers:
        return setup_logging(
            name,
            level=os.getenv('HANPIN_LOG_LEVEL', 'INFO'),
            json_format=os.getenv('HANPIN_LOG_FORMAT', 'text').lower() == 'json',
        )
    return logger


def log_execution_time(logger: Optional[logging.Logger] = None):
    """装饰器：记录函数执行时间"""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            log = logger or get_engine_logger()
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                log.error(f"{func.__name__} 执行失败, 耗时: {(time.perf_counter() - start) * 1000:.2f}ms, 错误: {e}")
                raise
            log.debug(f"{func.__name__} 执行完成, 耗时: {(time.perf_counter() - start) * 1000:.2f}ms")
            return result
        return wrapper
    return decorator


def get_api_logger() -> logging.Logger:
    return get_logger('hanpin.api')


def get_engine_logger() -> logging.Logger:
    return get_logger('hanpin.engine')
