"""
统一异常处理器，挂在 settings.REST_FRAMEWORK['EXCEPTION_HANDLER'] 上。

所有错误响应格式一致，前端 / 调用方只看 type：
  'validation_error' / 'block' / 'queue_error' / 'error'  → 出问题了
  没有 type 字段  → 成功

{
    "type":    "queue_error",
    "code":    "QUEUE_PROCESSING_FAILED",
    "message": "Registration payload failed validation.",
    "detail":  {"errors": [{"type": "validation_error", "code": "MALFORMED_DATE", ...}, ...]}
}
"""

import logging

from rest_framework.exceptions import ParseError
from rest_framework.exceptions import ValidationError as DRFValidationError
from rest_framework.views import exception_handler as drf_default_handler
from django.http import JsonResponse

from .exceptions import BaseAppException

logger = logging.getLogger(__name__)


def unified_exception_handler(exc, context):
    """
    优先级：
    1. BaseAppException 及其子类 → exc.as_dict()
    2. DRF 的 ValidationError / ParseError（请求体不是合法 JSON）→ 转成统一格式
    3. 其他异常 → 交给 DRF 默认处理
    """

    if isinstance(exc, BaseAppException):
        if exc.http_status >= 500:
            logger.error("[api] %s: %s", exc.code, exc.message)
        return JsonResponse(exc.as_dict(), status=exc.http_status)

    if isinstance(exc, (DRFValidationError, ParseError)):
        body = {
            'type': 'validation_error',
            'code': 'MALFORMED_PAYLOAD',
            'message': 'Request body could not be parsed',
            'detail': exc.detail,
        }
        return JsonResponse(body, status=400)

    return drf_default_handler(exc, context)
