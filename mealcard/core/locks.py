"""
实体级互斥锁

按 (实体, ID) 维护进程内可重入锁，用于订阅、订单、学生钱包行的
读-改-写临界区。锁必须在 BEGIN 之前获取，这样事务快照能看到上一个
持有者已提交的结果。

注意：这些锁只在单进程内有效，不能跨多个服务实例使用。多实例部署时
需要换成数据库自身的行锁（SELECT ... FOR UPDATE）或咨询锁。
"""

import threading
from contextlib import ExitStack, contextmanager
from typing import Dict, Hashable, List, Tuple

LockKey = Tuple[str, Hashable]

# 键 -> [锁, 持有或等待该锁的次数]；计数归零时移除，注册表只保留正在使用的锁
_registry: Dict[LockKey, List] = {}
_registry_guard = threading.Lock()


def _checkout(key: LockKey) -> threading.RLock:
    with _registry_guard:
        entry = _registry.get(key)
        if entry is None:
            entry = [threading.RLock(), 0]
            _registry[key] = entry
        entry[1] += 1
        return entry[0]


def _checkin(key: LockKey):
    with _registry_guard:
        entry = _registry[key]
        entry[1] -= 1
        if entry[1] == 0:
            del _registry[key]


@contextmanager
def entity_locks(*keys: LockKey):
    """
    按固定顺序获取多把实体锁

    Usage:
        with entity_locks(("subscription", 7), ("profile", 3)):
            ...
    """
    ordered = sorted({k for k in keys if k[1] is not None}, key=lambda k: (k[0], str(k[1])))
    with ExitStack() as stack:
        for key in ordered:
            lock = _checkout(key)
            stack.callback(_checkin, key)
            lock.acquire()
            stack.callback(lock.release)
        yield


def subscription_key(subscription_id) -> LockKey:
    return ("subscription", subscription_id)


def profile_key(student_id) -> LockKey:
    return ("profile", student_id)


def order_key(order_id) -> LockKey:
    return ("order", order_id)
