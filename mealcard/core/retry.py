"""
并发冲突重试，指数退避加随机抖动
"""
import logging
import random
import time
from functools import wraps
from typing import Any, Callable, TypeVar

from .exceptions import BaseApplicationError, ConcurrencyConflictError
from ..config.settings import settings

T = TypeVar('T')

logger = logging.getLogger(__name__)


def retry_on_conflict(
    max_retries: int = None,
    initial_delay: float = None,
    max_delay: float = 1.0,
    exponential_base: float = 2.0,
):
    """
    仅对 ConcurrencyConflictError 重试的装饰器，其他业务拒绝记一条 WARNING 后原样抛出

    Args:
        max_retries: 最大重试次数，默认取 settings.conflict_retries
        initial_delay: 首次等待秒数，默认取 settings.conflict_retry_delay
        max_delay: 单次等待上限
        exponential_base: 退避倍数
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            retries = settings.conflict_retries if max_retries is None else max_retries
            delay = settings.conflict_retry_delay if initial_delay is None else initial_delay

            for attempt in range(retries + 1):
                try:
                    return func(*args, **kwargs)
                except ConcurrencyConflictError:
                    if attempt == retries:
                        raise
                    # 加入 0~25% 的随机抖动
                    actual_delay = min(delay + delay * 0.25 * random.random(), max_delay)
                    logger.warning(
                        "%s hit a concurrency conflict, retry %d/%d in %.3fs",
                        func.__name__, attempt + 1, retries, actual_delay,
                    )
                    time.sleep(actual_delay)
                    delay *= exponential_base
                except BaseApplicationError as e:
                    logger.warning("%s rejected: %s %s", func.__name__, e.error_code, e.message)
                    raise

        return wrapper
    return decorator
