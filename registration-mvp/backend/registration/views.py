"""
HTTP 入口。

View 只负责：取参数 → 调 service → 序列化。
业务异常直接 raise，由 exception_handler.unified_exception_handler 统一格式化。
"""

from rest_framework.response import Response
from rest_framework.views import APIView

from . import services
from .serializers import (
    serialize_candidate,
    serialize_queue_data_created,
    serialize_queue_data_detail,
    serialize_registration,
)


def _discriminator(request):
    return request.query_params.get('discriminator') or request.headers.get('X-Queue-Discriminator')


class RegistrationCreateView(APIView):
    """POST /api/registrations/ - 入队，异步处理"""

    def post(self, request):
        queue_data = services.enqueue_registration(request.data, _discriminator(request))
        return Response(serialize_queue_data_created(queue_data), status=202)


class RegistrationValidateView(APIView):
    """POST /api/registrations/validate/ - 同步校验（mapping + 重复检测），不写库"""

    def post(self, request):
        candidate = services.validate_registration(request.data, _discriminator(request))
        return Response(serialize_candidate(candidate))


class RegistrationDetailView(APIView):
    """GET /api/registrations/<queue_data_id>/ - queue 条目状态和错误列表"""

    def get(self, request, queue_data_id):
        queue_data = services.get_queue_data(queue_data_id)
        return Response(serialize_queue_data_detail(queue_data))


class RegistrationRetryView(APIView):
    """POST /api/registrations/<queue_data_id>/retry/ - 重新提交失败的条目"""

    def post(self, request, queue_data_id):
        queue_data = services.requeue_registration(queue_data_id)
        return Response(serialize_queue_data_detail(queue_data), status=202)


class TemporaryRegistrationView(APIView):
    """GET /api/registrations/temporary/<temporary_uuid>/ - ledger 查询 temporary → assigned"""

    def get(self, request, temporary_uuid):
        registration = services.get_registration_by_temporary_uuid(temporary_uuid)
        return Response(serialize_registration(registration))
