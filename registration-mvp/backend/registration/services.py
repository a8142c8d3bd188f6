import logging
from dataclasses import dataclass
from uuid import UUID

from django.conf import settings
from django.db import DatabaseError, IntegrityError, transaction
from django.utils import timezone
from rapidfuzz.distance import Levenshtein

from .exceptions import (
    BaseAppException,
    BlockError,
    DuplicatePatientSuspected,
    QueueProcessorError,
    StorageFailure,
    ValidationError,
)
from .intake import get_adapter
from .intake.types import RegistrationCandidate, UnsavedPatient
from .models import (
    Patient,
    PatientIdentifier,
    PatientIdentifierType,
    PersonAddress,
    PersonAttribute,
    PersonAttributeType,
    PersonName,
    QueueData,
    RegistrationData,
)

logger = logging.getLogger(__name__)

COMMITTED = 'committed'
REUSED = 'reused'


@dataclass
class RegistrationResult:
    outcome: str               # COMMITTED / REUSED
    temporary_uuid: str
    assigned_uuid: UUID

    @property
    def created(self):
        return self.outcome == COMMITTED


def _default_discriminator():
    return getattr(settings, 'REGISTRATION_DEFAULT_DISCRIMINATOR', 'json-registration')


# ── 重复患者检测 ────────────────────────────────────────────────────────────

def _same_gender(saved_gender, unsaved_gender):
    if saved_gender is None or unsaved_gender is None:
        return saved_gender is None and unsaved_gender is None
    return saved_gender.lower() == unsaved_gender.lower()


def _edit_distance(a, b):
    return Levenshtein.distance((a or '').lower(), (b or '').lower())


def find_patient(patients, unsaved_patient):
    """
    按列表顺序逐个比较，返回第一个相似患者（不做 best-of-N 排序）。

    相似 = 两边全名都非空 + 性别相同（忽略大小写）+ 生日同一天
           + given / family 的编辑距离都 < 阈值（默认 3）。
    """
    threshold = getattr(settings, 'REGISTRATION_NAME_EDIT_DISTANCE', 3)
    unsaved_name = unsaved_patient.person_name

    for patient in patients:
        saved_name = patient.person_name
        if saved_name is None or unsaved_name is None:
            continue
        if not saved_name.full_name.strip() or not unsaved_name.full_name.strip():
            continue
        if not _same_gender(patient.gender, unsaved_patient.gender):
            continue
        if patient.birthdate is None or unsaved_patient.birthdate is None:
            continue
        if patient.birthdate != unsaved_patient.birthdate:
            continue

        given_distance = _edit_distance(saved_name.given_name, unsaved_name.given_name)
        family_distance = _edit_distance(saved_name.family_name, unsaved_name.family_name)
        if given_distance < threshold and family_distance < threshold:
            return patient
    return None


def find_similar_patient(unsaved_patient):
    """
    选比较集合：
    - 没有名字 → 按 preferred identifier 的值查
    - 有名字   → 按全名查
    """
    if not unsaved_patient.names:
        identifier = unsaved_patient.preferred_identifier
        if identifier is None:
            return None
        patients = Patient.objects.find_by_identifier_value(identifier.identifier)
    else:
        patients = Patient.objects.find_by_full_name(unsaved_patient.full_name)
    return find_patient(patients, unsaved_patient)


def check_patient_duplicate(unsaved_patient):
    """找到相似患者时返回 DuplicatePatientSuspected（由调用方记进 report），否则 None。"""
    saved = find_similar_patient(unsaved_patient)
    if saved is None:
        return None

    identifier = saved.preferred_identifier
    identifier_value = identifier.identifier if identifier else None
    logger.info("[duplicate] candidate matches saved patient %s (identifier=%s)", saved.id, identifier_value)
    return DuplicatePatientSuspected(
        message=(
            f"Found a patient with similar characteristic: patientId = {saved.id} "
            f"Identifier Id = {identifier_value}"
        ),
        detail={'patient_id': str(saved.id), 'identifier': identifier_value},
    )


# ── 持久化 + ledger ────────────────────────────────────────────────────────

def save_unsaved_patient(unsaved_patient: UnsavedPatient) -> Patient:
    """把候选患者整棵写入数据库。调用方负责事务。"""
    patient = Patient.objects.create(
        gender=unsaved_patient.gender,
        birthdate=unsaved_patient.birthdate,
        birthdate_estimated=unsaved_patient.birthdate_estimated,
    )

    identifier_types = {
        t.name: t
        for t in PatientIdentifierType.objects.filter(
            name__in=[i.identifier_type for i in unsaved_patient.identifiers]
        )
    }
    PatientIdentifier.objects.bulk_create([
        PatientIdentifier(
            patient=patient,
            identifier_type=identifier_types[i.identifier_type],
            identifier=i.identifier,
            preferred=i.preferred,
            location_id=i.location_id,
        )
        for i in unsaved_patient.identifiers
    ])

    PersonName.objects.bulk_create([
        PersonName(
            patient=patient,
            given_name=n.given_name,
            middle_name=n.middle_name,
            family_name=n.family_name,
        )
        for n in unsaved_patient.names
    ])

    PersonAddress.objects.bulk_create([
        PersonAddress(
            patient=patient,
            county_district=a.county_district,
            address5=a.address5,
            address6=a.address6,
            city_village=a.city_village,
        )
        for a in unsaved_patient.addresses
    ])

    attribute_types = {
        t.name: t
        for t in PersonAttributeType.objects.filter(
            name__in=[a.attribute_type for a in unsaved_patient.attributes]
        )
    }
    PersonAttribute.objects.bulk_create([
        PersonAttribute(patient=patient, attribute_type=attribute_types[a.attribute_type], value=a.value)
        for a in unsaved_patient.attributes
    ])

    return patient


def register_unsaved_patient(unsaved_patient, temporary_uuid):
    """
    幂等注册：同一个 temporary_uuid 只会产生一个 Patient。

    - ledger 已有记录 → REUSED，什么都不写
    - 没有记录 → 同一事务里保存 patient + 写 ledger → COMMITTED
    - 并发时 temporary_uuid 唯一约束冲突 → 整个事务（包括 patient）回滚，返回胜出者 → REUSED
    """
    existing = RegistrationData.objects.filter(temporary_uuid=temporary_uuid).first()
    if existing is not None:
        logger.info("[ledger] temporary_uuid=%s already registered as %s, skipping save",
                    temporary_uuid, existing.assigned_uuid)
        return RegistrationResult(REUSED, temporary_uuid, existing.assigned_uuid)

    try:
        with transaction.atomic():
            patient = save_unsaved_patient(unsaved_patient)
            registration = RegistrationData.objects.create(
                temporary_uuid=temporary_uuid,
                assigned_uuid=patient.id,
            )
    except IntegrityError as exc:
        winner = RegistrationData.objects.filter(temporary_uuid=temporary_uuid).first()
        if winner is None:
            raise StorageFailure(
                message=f"Unable to save patient for temporary_uuid={temporary_uuid}: {exc}",
                detail={'temporary_uuid': temporary_uuid},
            ) from exc
        logger.warning("[ledger] concurrent registration of temporary_uuid=%s, reusing %s",
                       temporary_uuid, winner.assigned_uuid)
        return RegistrationResult(REUSED, temporary_uuid, winner.assigned_uuid)
    except DatabaseError as exc:
        raise StorageFailure(
            message=f"Unable to save patient for temporary_uuid={temporary_uuid}: {exc}",
            detail={'temporary_uuid': temporary_uuid},
        ) from exc

    logger.info("[ledger] temporary_uuid=%s committed as %s", temporary_uuid, registration.assigned_uuid)
    return RegistrationResult(COMMITTED, temporary_uuid, registration.assigned_uuid)


# ── 编排：validate → register ──────────────────────────────────────────────

def validate_registration(payload, discriminator=None) -> RegistrationCandidate:
    """
    mapping + 重复检测。

    即使 mapping 已经有错误，也照样做重复检测，所有错误一次性通过 QueueProcessorError 抛出。
    temporary_uuid 已在 ledger 里时跳过重复检测，交给 register_unsaved_patient 返回 REUSED。
    """
    adapter = get_adapter(discriminator or _default_discriminator(), payload)

    try:
        candidate = adapter.map()
    except ValidationError as exc:
        # payload 本身无法解析，没有任何字段可以继续
        adapter.report.add(exc)
        adapter.report.raise_if_any()

    # ledger 里已有这个 temporary_uuid：是重新处理，相似患者就是上次提交的自己
    already_registered = (
        candidate.temporary_uuid is not None
        and RegistrationData.objects.filter(temporary_uuid=candidate.temporary_uuid).exists()
    )
    if already_registered:
        logger.info("[duplicate] temporary_uuid=%s already in ledger, skipping duplicate check",
                    candidate.temporary_uuid)
    else:
        duplicate = check_patient_duplicate(candidate.patient)
        if duplicate is not None:
            adapter.report.add(duplicate)

    adapter.validate(candidate)
    return candidate


def process_registration(payload, discriminator=None) -> RegistrationResult:
    """
    Received → Validating → {Rejected | Mapped} → {DuplicateFound | Unique} → {Committed | Reused}

    Raises:
        QueueProcessorError: 校验失败 / 疑似重复 / 存储失败，全部错误在 detail['errors']
    """
    candidate = validate_registration(payload, discriminator)
    try:
        return register_unsaved_patient(candidate.patient, candidate.temporary_uuid)
    except StorageFailure as exc:
        raise QueueProcessorError(
            'Registration payload could not be committed.',
            errors=[exc],
            http_status=exc.http_status,
        ) from exc


# ── queue 条目 ─────────────────────────────────────────────────────────────

def _dispatch(queue_data):
    from registration.tasks import process_registration_task
    process_registration_task.delay(str(queue_data.id))
    logger.info("[queue] dispatched queue_data_id=%s", queue_data.id)


def enqueue_registration(payload, discriminator=None):
    """保存 queue 条目并提交 Celery 任务。未知 discriminator → 400。"""
    discriminator = discriminator or _default_discriminator()
    get_adapter(discriminator, payload)

    queue_data = QueueData.objects.create(discriminator=discriminator, payload=payload)
    _dispatch(queue_data)
    return queue_data


def _mark_failed(queue_data, exc):
    queue_data.status = 'failed'
    queue_data.errors = exc.detail['errors']
    queue_data.save(update_fields=['status', 'errors', 'updated_at'])


def process_queue_data(queue_data):
    """
    驱动一条 queue 条目：processing → processed | failed。

    任何异常都会让条目落到 failed（不会卡在 processing），
    并统一以 QueueProcessorError 重新抛出。
    """
    logger.info("Processing registration form data: %s", queue_data.id)
    queue_data.status = 'processing'
    queue_data.save(update_fields=['status', 'updated_at'])

    try:
        result = process_registration(queue_data.payload, queue_data.discriminator)
    except QueueProcessorError as exc:
        _mark_failed(queue_data, exc)
        raise
    except BaseAppException as exc:
        # 例如条目上的 discriminator 已经没有对应 adapter
        wrapped = QueueProcessorError(
            'Registration payload could not be processed.',
            errors=[exc],
            http_status=exc.http_status,
        )
        _mark_failed(queue_data, wrapped)
        raise wrapped from exc
    except Exception as exc:
        logger.exception("[queue] unexpected error processing queue_data_id=%s", queue_data.id)
        wrapped = QueueProcessorError(
            'Registration payload could not be processed.',
            errors=[BaseAppException(str(exc), code='UNEXPECTED_ERROR', detail={'exception': type(exc).__name__})],
            http_status=500,
        )
        _mark_failed(queue_data, wrapped)
        raise wrapped from exc

    queue_data.status = 'processed'
    queue_data.errors = []
    queue_data.registration_outcome = result.outcome
    queue_data.processed_at = timezone.now()
    queue_data.save(update_fields=['status', 'errors', 'registration_outcome', 'processed_at', 'updated_at'])
    return result


def get_queue_data(queue_data_id):
    """Raises BlockError if not found."""
    try:
        return QueueData.objects.get(id=queue_data_id)
    except QueueData.DoesNotExist:
        raise BlockError(
            message='Queue data not found',
            code='QUEUE_DATA_NOT_FOUND',
            detail={'queue_data_id': str(queue_data_id)},
            http_status=404,
        )


def requeue_registration(queue_data_id):
    """只有 failed 的条目可以重新提交；ledger 保证重复处理是安全的。"""
    queue_data = get_queue_data(queue_data_id)

    if queue_data.status != 'failed':
        raise BlockError(
            message='Only failed registrations can be retried',
            code='QUEUE_DATA_NOT_RETRYABLE',
            detail={'queue_data_id': str(queue_data_id), 'current_status': queue_data.status},
        )

    queue_data.status = 'pending'
    queue_data.errors = []
    queue_data.save(update_fields=['status', 'errors', 'updated_at'])
    _dispatch(queue_data)
    return queue_data


def get_registration_by_temporary_uuid(temporary_uuid):
    """Raises BlockError if not found."""
    try:
        return RegistrationData.objects.get(temporary_uuid=temporary_uuid)
    except RegistrationData.DoesNotExist:
        raise BlockError(
            message='Registration not found',
            code='REGISTRATION_NOT_FOUND',
            detail={'temporary_uuid': temporary_uuid},
            http_status=404,
        )
