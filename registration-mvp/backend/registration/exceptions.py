"""
统一异常体系。

所有业务异常继承 BaseAppException，包含：
- type:        错误类型标识（validation_error / block / queue_error / error）
- code:        业务错误码（MALFORMED_DATE / DUPLICATE_PATIENT_SUSPECTED / ...）
- message:     人类可读的描述
- detail:      可选的附加信息（dict / list / None）
- http_status: HTTP 状态码

Mapping 阶段的错误不直接抛出，而是记录进 ValidationReport，
全部字段尝试完之后一次性抛出 QueueProcessorError（包含所有错误）。
"""


class BaseAppException(Exception):
    """所有业务异常的基类。"""

    type = 'error'
    code = 'UNKNOWN_ERROR'
    http_status = 500

    def __init__(self, message, code=None, detail=None, http_status=None):
        self.message = message
        if code is not None:
            self.code = code
        if http_status is not None:
            self.http_status = http_status
        self.detail = detail
        super().__init__(message)

    def as_dict(self):
        body = {
            'type': self.type,
            'code': self.code,
            'message': self.message,
        }
        if self.detail is not None:
            body['detail'] = self.detail
        return body


class ValidationError(BaseAppException):
    """Payload 字段校验失败，400。"""

    type = 'validation_error'
    code = 'VALIDATION_ERROR'
    http_status = 400


class InvalidPathExpression(ValidationError):
    """路径表达式语法错误。与 PathAbsent 不同，不能靠 fallback 恢复。"""

    code = 'INVALID_PATH_EXPRESSION'


class PathAbsent(ValidationError):
    """路径语法正确但 payload 中不存在。调用方通常用它选择 fallback。"""

    code = 'PATH_ABSENT'


class MalformedDate(ValidationError):
    code = 'MALFORMED_DATE'


class UnexpectedValueType(ValidationError):
    """路径存在，但值的形状不对（例如期望字符串却拿到对象）。"""

    code = 'UNEXPECTED_VALUE_TYPE'


class BlockError(BaseAppException):
    """业务规则阻止操作，409。"""

    type = 'block'
    code = 'BUSINESS_BLOCK'
    http_status = 409


class DuplicatePatientSuspected(BlockError):
    """
    找到了特征相似的已保存患者。

    不自动合并、不跳过，交给人工审核：detail 里带上已有患者的 id 和 identifier。
    """

    code = 'DUPLICATE_PATIENT_SUSPECTED'


class StorageFailure(BaseAppException):
    """持久化层失败（数据库异常）。调用方可以整体重试，ledger 保证幂等。"""

    code = 'STORAGE_FAILURE'
    http_status = 503


class QueueProcessorError(BaseAppException):
    """
    一个 payload 处理过程中收集到的全部错误。

    detail = {'errors': [ {type, code, message, detail?}, ... ]}，顺序即记录顺序。
    """

    type = 'queue_error'
    code = 'QUEUE_PROCESSING_FAILED'
    http_status = 400

    def __init__(self, message, errors=None, code=None, http_status=None):
        self.errors = list(errors or [])
        super().__init__(
            message,
            code=code,
            detail={'errors': [e.as_dict() for e in self.errors]},
            http_status=http_status,
        )

    @property
    def codes(self):
        return [e.code for e in self.errors]

    def has_storage_failure(self):
        return any(isinstance(e, StorageFailure) for e in self.errors)


class ValidationReport:
    """
    单个 payload 的错误累加器。

    Mapper 每个字段都要尝试，失败就 add() 进来，绝不在第一个错误处中断。
    最后由 raise_if_any() 统一抛出。
    """

    def __init__(self):
        self.errors = []

    def add(self, exc):
        self.errors.append(exc)

    def extend(self, other):
        self.errors.extend(other.errors)

    def any_errors(self):
        return bool(self.errors)

    def __len__(self):
        return len(self.errors)

    def __iter__(self):
        return iter(self.errors)

    @property
    def codes(self):
        return [e.code for e in self.errors]

    def raise_if_any(self, message='Registration payload failed validation.'):
        if self.errors:
            raise QueueProcessorError(message, errors=self.errors)
