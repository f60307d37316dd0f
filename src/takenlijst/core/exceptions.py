"""Takenlijst 异常体系

每个异常携带稳定的错误码（ErrorCode），由 gateway 映射为 HTTP 状态码。
"""

from .models.enums import ErrorCode


class TakenlijstError(Exception):
    """核心层基础异常"""

    code: ErrorCode = ErrorCode.INTERNAL

    def __init__(self, message: str) -> None:
        """
        Args:
            message: 错误描述（面向调用方，可直接返回给客户端）
        """
        super().__init__(message)
        self.message = message


class ValidationFailedError(TakenlijstError):
    """输入校验失败（RRULE 格式、日期/时区、取值范围、文本长度等）"""

    code = ErrorCode.VALIDATION_FAILED


class NotFoundError(TakenlijstError):
    """系列、任务、指派人或标签不存在"""

    code = ErrorCode.NOT_FOUND


class ConflictStaleWriteError(TakenlijstError):
    """revision 不匹配 -- 调用方持有的是过期版本，需要重新读取后再提交"""

    code = ErrorCode.CONFLICT_STALE_WRITE

    def __init__(
        self,
        entity: str,
        entity_id: str,
        current: int | None = None,
        last_known: int | None = None,
    ) -> None:
        """
        Args:
            entity: 实体类型（task / series）
            entity_id: 实体 ID
            current: 存储中的 revision
            last_known: 调用方提交的 revision
        """
        super().__init__(f"{entity} {entity_id} has been modified by another writer")
        self.entity = entity
        self.entity_id = entity_id
        self.current = current
        self.last_known = last_known


class PermissionDeniedError(TakenlijstError):
    """调用方不是项目成员（由授权协作方判定）"""

    code = ErrorCode.PERMISSION_DENIED


class InternalError(TakenlijstError):
    """存储 / 事务失败"""

    code = ErrorCode.INTERNAL
