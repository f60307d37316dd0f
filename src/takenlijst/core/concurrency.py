"""Concurrency Guard -- 乐观并发检查

每个可变实体携带单调递增的整数 revision。变更前将调用方持有的 revision
与存储值做严格相等比较（不是大小比较），不一致即拒绝整个写入，不做合并或重试。
revision 的推进与数据变更在同一事务内完成（见 store 层的 guarded UPDATE）。
"""

import structlog

from .exceptions import ConflictStaleWriteError

log = structlog.get_logger()

INITIAL_REVISION = 1


def check_revision(
    entity: str,
    entity_id: str,
    current: int,
    last_known: int,
) -> None:
    """校验 revision 严格相等

    Raises:
        ConflictStaleWriteError: revision 不一致
    """
    if isinstance(last_known, bool) or current != last_known:
        log.info(
            "stale_write_rejected",
            entity=entity,
            entity_id=entity_id,
            current=current,
            last_known=last_known,
        )
        raise ConflictStaleWriteError(entity, entity_id, current, last_known)


def next_revision(current: int) -> int:
    """返回推进后的 revision"""
    return current + 1
