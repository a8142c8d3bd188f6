"""
具体 Adapter 实现。

新增 payload 格式：在此文件添加一个类，然后在 factory.py 注册即可。

已注册格式：
  json-registration — JsonRegistrationAdapter  (JSON 注册表单，patient / observation / encounter 三段)
"""

import logging
import uuid
from typing import Any, Iterator, Optional

from django.conf import settings

from ..exceptions import BaseAppException, PathAbsent, UnexpectedValueType, ValidationError
from ..models import Location, PatientIdentifierType, PersonAttributeType
from .base import BaseIntakeAdapter
from .paths import PathKind
from .types import (
    AddressData,
    AttributeData,
    IdentifierData,
    NameData,
    RegistrationCandidate,
    UnsavedPatient,
)

logger = logging.getLogger(__name__)


def _scalar_text(value: Any, path: str = "") -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (dict, list)):
        raise UnexpectedValueType(
            message=f"Expected a scalar at {path or 'node'}, found {type(value).__name__}.",
            detail={"path": path},
        )
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _as_pk(text: Optional[str]) -> Optional[int]:
    """数字 id → int；'²' 之类 isdigit() 为真但 int() 不认的字符也返回 None。"""
    if text is None or not text.strip().isdecimal():
        return None
    try:
        return int(text.strip())
    except ValueError:
        return None


# ── JsonRegistrationAdapter ────────────────────────────────────────────────
#
# 外部格式示例（JSON）:
# {
#   "patient": {
#     "uuid":                  "tmp-123",          ← temporary id，幂等 key
#     "medical_record_number": "12345-6",          ← preferred identifier
#     "given_name": "Jane", "middle_name": "A", "family_name": "Doe",
#     "sex": "F", "birth_date": "1990-01-01", "birthdate_estimated": false,
#     "personaddress":  {...} 或 [{...}, ...]      ← 缺失时读 personaddress^1, ^2 ...
#     "personattribute": {"attribute_type_uuid": "8", "attribute_value": "0722000000"}
#   },
#   "observation": {
#     "other_identifier_type":  "National ID" 或 ["National ID", "Passport"],
#     "other_identifier_value": "A123"        或 ["A123", "P456"]     ← 数组必须等长
#   },
#   "encounter": {"location_id": "1"}
# }

class JsonRegistrationAdapter(BaseIntakeAdapter):
    discriminator = "json-registration"

    TEMPORARY_UUID_PATH = "$['patient']['uuid']"
    PREFERRED_IDENTIFIER_PATH = "$['patient']['medical_record_number']"
    OTHER_IDENTIFIER_TYPE_PATH = "$['observation']['other_identifier_type']"
    OTHER_IDENTIFIER_VALUE_PATH = "$['observation']['other_identifier_value']"
    LOCATION_PATH = "$['encounter']['location_id']"
    BIRTH_DATE_PATH = "$['patient']['birth_date']"
    BIRTH_DATE_ESTIMATED_PATH = "$['patient']['birthdate_estimated']"
    GENDER_PATH = "$['patient']['sex']"
    GIVEN_NAME_PATH = "$['patient']['given_name']"
    MIDDLE_NAME_PATH = "$['patient']['middle_name']"
    FAMILY_NAME_PATH = "$['patient']['family_name']"
    ADDRESS_PATH = "$['patient']['personaddress']"
    NUMBERED_ADDRESS_PATH = "$['patient']['personaddress^{index}']"
    ATTRIBUTE_PATH = "$['patient']['personattribute']"

    def transform(self) -> RegistrationCandidate:
        patient = UnsavedPatient()

        self._set_identifiers(patient)
        patient.birthdate = self._guarded(self.reader.read_date, self.BIRTH_DATE_PATH)
        patient.birthdate_estimated = bool(
            self._guarded(self.reader.read_bool, self.BIRTH_DATE_ESTIMATED_PATH)
        )
        patient.gender = self._guarded(self.reader.read_string, self.GENDER_PATH)
        self._set_name(patient)
        self._set_addresses(patient)
        self._set_attributes(patient)

        return RegistrationCandidate(
            patient=patient,
            temporary_uuid=self._guarded(self._read_temporary_uuid),
            discriminator=self.discriminator,
            raw_payload=self._parsed,
        )

    def _guarded(self, func, *args):
        """执行一个 mapping 步骤；业务异常记进 report，返回 None，继续下一个字段。"""
        try:
            return func(*args)
        except BaseAppException as exc:
            self.report.add(exc)
            return None

    def _read_temporary_uuid(self) -> str:
        temporary_uuid = self.reader.read_string(self.TEMPORARY_UUID_PATH)
        if not (temporary_uuid or "").strip():
            raise ValidationError(
                message="Payload is missing the patient uuid used as the temporary id.",
                code="MISSING_TEMPORARY_ID",
                detail={"path": self.TEMPORARY_UUID_PATH},
            )
        return temporary_uuid.strip()

    # ── identifiers ────────────────────────────────────────────────────────

    def _set_identifiers(self, patient: UnsavedPatient) -> None:
        preferred = self._guarded(self._preferred_identifier)
        if preferred is not None:
            patient.add_identifier(preferred)

        for identifier in self._guarded(self._other_identifiers) or []:
            patient.add_identifier(identifier)

        # 没有 identifier 就不需要 location
        if patient.identifiers:
            self._guarded(self._set_identifier_location, patient.identifiers)

    def _preferred_identifier(self) -> Optional[IdentifierData]:
        value = self.reader.read_string(self.PREFERRED_IDENTIFIER_PATH)
        if value is None:
            return None
        type_name = getattr(settings, "REGISTRATION_PREFERRED_IDENTIFIER_TYPE", "AMRS Universal ID")
        identifier = self._create_identifier(type_name, value)
        if identifier is not None:
            identifier.preferred = True
        return identifier

    def _other_identifiers(self) -> list[IdentifierData]:
        types = self.reader.read_raw(self.OTHER_IDENTIFIER_TYPE_PATH)
        values = self.reader.read_raw(self.OTHER_IDENTIFIER_VALUE_PATH)
        empty = (PathKind.ABSENT, PathKind.NULL)

        if types.kind in empty and values.kind in empty:
            return []

        if types.kind is PathKind.ARRAY or values.kind is PathKind.ARRAY:
            type_items = types.value if types.kind is PathKind.ARRAY else None
            value_items = values.value if values.kind is PathKind.ARRAY else None
            if type_items is None or value_items is None or len(type_items) != len(value_items):
                raise ValidationError(
                    message="Identifier type and value arrays must have the same length.",
                    code="ARRAY_LENGTH_MISMATCH",
                    detail={
                        "types": len(type_items) if type_items is not None else types.kind.value,
                        "values": len(value_items) if value_items is not None else values.kind.value,
                    },
                )
            pairs = [
                (
                    f"{self.OTHER_IDENTIFIER_TYPE_PATH}[{i}]",
                    type_item,
                    f"{self.OTHER_IDENTIFIER_VALUE_PATH}[{i}]",
                    value_item,
                )
                for i, (type_item, value_item) in enumerate(zip(type_items, value_items))
            ]
        else:
            pairs = [(
                self.OTHER_IDENTIFIER_TYPE_PATH, types.value,
                self.OTHER_IDENTIFIER_VALUE_PATH, values.value,
            )]

        identifiers = []
        for type_path, type_item, value_path, value_item in pairs:
            type_name = self._guarded(_scalar_text, type_item, type_path)
            value = self._guarded(_scalar_text, value_item, value_path)
            identifier = self._create_identifier(type_name, value)
            if identifier is not None:
                identifiers.append(identifier)
        return identifiers

    def _create_identifier(self, type_name: Optional[str], value: Optional[str]) -> Optional[IdentifierData]:
        identifier_type = None
        if type_name:
            identifier_type = PatientIdentifierType.objects.filter(name=type_name).first()

        if identifier_type is None:
            self.report.add(ValidationError(
                message=f"Unable to find identifier type with name: {type_name}",
                code="UNRESOLVED_IDENTIFIER_TYPE",
                detail={"identifier_type": type_name},
            ))
            return None
        if value is None:
            self.report.add(ValidationError(
                message=f"Identifier value can't be null for type: {type_name}",
                code="NULL_IDENTIFIER_VALUE",
                detail={"identifier_type": type_name},
            ))
            return None
        return IdentifierData(identifier_type=identifier_type.name, identifier=value)

    def _set_identifier_location(self, identifiers: list[IdentifierData]) -> None:
        location_id = self.reader.read_string(self.LOCATION_PATH)

        location = None
        location_pk = _as_pk(location_id)
        if location_pk is not None:
            location = Location.objects.filter(pk=location_pk).first()

        if location is None:
            # identifiers 保留在候选记录里（location 为空），错误会阻止提交
            raise ValidationError(
                message=f"Unable to find encounter location using the id: {location_id}",
                code="UNRESOLVED_LOCATION",
                detail={"location_id": location_id},
            )

        for identifier in identifiers:
            identifier.location_id = location.pk

    # ── name ───────────────────────────────────────────────────────────────

    def _set_name(self, patient: UnsavedPatient) -> None:
        given_name = self._guarded(self.reader.read_string, self.GIVEN_NAME_PATH) or ""
        family_name = self._guarded(self.reader.read_string, self.FAMILY_NAME_PATH) or ""

        # middle name 读不出来只记日志，绝不影响其他字段
        middle_name = ""
        try:
            middle_name = self.reader.read_string(self.MIDDLE_NAME_PATH) or ""
        except BaseAppException as exc:
            logger.error("[intake] unable to read middle name, continuing without it: %s", exc.message)

        patient.names.append(NameData(
            given_name=given_name,
            middle_name=middle_name,
            family_name=family_name,
        ))

    # ── addresses ──────────────────────────────────────────────────────────

    def _set_addresses(self, patient: UnsavedPatient) -> None:
        primary = self.reader.read_raw(self.ADDRESS_PATH)

        if primary.is_absent:
            logger.debug(
                "[intake] %s not found, falling back to personaddress^n nodes", self.ADDRESS_PATH,
            )
            nodes = self._numbered_nodes(self.NUMBERED_ADDRESS_PATH)
        elif primary.kind is PathKind.ARRAY:
            nodes = ((f"{self.ADDRESS_PATH}[{i}]", node) for i, node in enumerate(primary.value))
        else:
            nodes = ((self.ADDRESS_PATH, node) for node in primary.as_list())

        for path, node in nodes:
            address = self._guarded(self._address_from_node, path, node)
            if address is not None:
                patient.addresses.add(address)

    def _numbered_nodes(self, template: str) -> Iterator[tuple[str, Any]]:
        """依次探测 ^1, ^2, ...，遇到第一个不存在的序号就停止。"""
        limit = getattr(settings, "REGISTRATION_MAX_NUMBERED_NODES", 100)
        for index in range(1, limit + 1):
            path = template.format(index=index)
            try:
                node = self.reader.require(path)
            except PathAbsent:
                return
            yield path, node.value

        overflow = template.format(index=limit + 1)
        if self.reader.exists(overflow):
            logger.warning(
                "[intake] REGISTRATION_MAX_NUMBERED_NODES=%d reached, ignoring %s and later nodes",
                limit, overflow,
            )

    @staticmethod
    def _address_from_node(path: str, node: Any) -> AddressData:
        if not isinstance(node, dict):
            raise UnexpectedValueType(
                message=f"Expected an address object at {path}, found {type(node).__name__}.",
                detail={"path": path},
            )
        return AddressData(
            county_district=_scalar_text(node.get("countyDistrict"), f"{path}.countyDistrict"),
            address5=_scalar_text(node.get("address5"), f"{path}.address5"),
            address6=_scalar_text(node.get("address6"), f"{path}.address6"),
            city_village=_scalar_text(node.get("cityVillage"), f"{path}.cityVillage"),
        )

    # ── attributes ─────────────────────────────────────────────────────────

    def _set_attributes(self, patient: UnsavedPatient) -> None:
        raw = self.reader.read_raw(self.ATTRIBUTE_PATH)

        if raw.kind is PathKind.SCALAR:
            self.report.add(UnexpectedValueType(
                message=f"Expected an attribute object or array at {self.ATTRIBUTE_PATH}.",
                detail={"path": self.ATTRIBUTE_PATH},
            ))
            return
        if raw.kind is PathKind.ARRAY:
            nodes = [(f"{self.ATTRIBUTE_PATH}[{i}]", node) for i, node in enumerate(raw.value)]
        else:
            nodes = [(self.ATTRIBUTE_PATH, node) for node in raw.as_list()]

        # TODO: 支持 personattribute^n 编号节点（地址已支持，属性目前只读 personattribute 本身）
        for path, node in nodes:
            attribute = self._guarded(self._attribute_from_node, path, node)
            if attribute is not None:
                patient.attributes.add(attribute)

    def _attribute_from_node(self, path: str, node: Any) -> AttributeData:
        if not isinstance(node, dict):
            raise UnexpectedValueType(
                message=f"Expected an attribute object at {path}, found {type(node).__name__}.",
                detail={"path": path},
            )
        type_id = _scalar_text(node.get("attribute_type_uuid"), f"{path}.attribute_type_uuid")
        value = _scalar_text(node.get("attribute_value"), f"{path}.attribute_value")

        # id → name → 定义，两次查询
        type_name = self._attribute_type_name(type_id)
        attribute_type = None
        if type_name:
            attribute_type = PersonAttributeType.objects.filter(name=type_name).first()

        if attribute_type is None:
            raise ValidationError(
                message=f"Unable to find Person Attribute type by id '{type_id}'",
                code="UNRESOLVED_ATTRIBUTE_TYPE",
                detail={"attribute_type": type_id},
            )
        if value is None:
            raise ValidationError(
                message=f"Person Attribute value can't be null for type '{attribute_type.name}'",
                code="NULL_ATTRIBUTE_VALUE",
                detail={"attribute_type": attribute_type.name},
            )
        return AttributeData(attribute_type=attribute_type.name, value=value)

    @staticmethod
    def _attribute_type_name(type_id: Optional[str]) -> Optional[str]:
        if not type_id:
            return None
        names = PersonAttributeType.objects.values_list("name", flat=True)
        type_pk = _as_pk(type_id)
        if type_pk is not None:
            return names.filter(pk=type_pk).first()
        try:
            return names.filter(uuid=uuid.UUID(type_id.strip())).first()
        except ValueError:
            return None
