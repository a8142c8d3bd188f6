"""
UnsavedPatient dataclass — 业务逻辑唯一认识的候选患者格式。

Adapter 的 transform() 必须返回 RegistrationCandidate。
业务层（services.py）只消费这个结构，永远不碰外部原始 payload。
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional


@dataclass
class IdentifierData:
    identifier_type: str                      # PatientIdentifierType.name
    identifier: str
    preferred: bool = False
    location_id: Optional[int] = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.identifier_type, self.identifier)


@dataclass
class NameData:
    given_name: str = ""
    middle_name: str = ""
    family_name: str = ""

    @property
    def full_name(self) -> str:
        parts = [self.given_name, self.middle_name, self.family_name]
        return " ".join(p for p in parts if p)


@dataclass(frozen=True)
class AddressData:
    # frozen → 按全部字段值比较、可放进 set 去重
    county_district: Optional[str] = None
    address5: Optional[str] = None
    address6: Optional[str] = None
    city_village: Optional[str] = None


@dataclass(frozen=True)
class AttributeData:
    attribute_type: str                       # PersonAttributeType.name
    value: str


@dataclass
class UnsavedPatient:
    """
    组装中的候选患者。

    identifiers  按 (type, value) 去重，最多一个 preferred。
    addresses    set，字段值完全相同的地址只保留一份。
    """

    identifiers: list[IdentifierData] = field(default_factory=list)
    birthdate: Optional[date] = None
    birthdate_estimated: bool = False
    gender: Optional[str] = None
    names: list[NameData] = field(default_factory=list)
    addresses: set[AddressData] = field(default_factory=set)
    attributes: set[AttributeData] = field(default_factory=set)

    def add_identifier(self, identifier: IdentifierData) -> bool:
        """已有相同 (type, value) 时忽略，返回是否真的加入。"""
        if any(existing.key == identifier.key for existing in self.identifiers):
            return False
        if identifier.preferred and self.preferred_identifier is not None:
            identifier.preferred = False
        self.identifiers.append(identifier)
        return True

    @property
    def preferred_identifier(self) -> Optional[IdentifierData]:
        for identifier in self.identifiers:
            if identifier.preferred:
                return identifier
        return None

    @property
    def person_name(self) -> Optional[NameData]:
        return self.names[0] if self.names else None

    @property
    def full_name(self) -> str:
        name = self.person_name
        return name.full_name if name else ""


@dataclass
class RegistrationCandidate:
    """
    一个 payload 的 mapping 结果。

    raw_payload  保存原始数据，用于排查问题，不参与业务逻辑。
    """

    patient: UnsavedPatient
    temporary_uuid: Optional[str] = None
    discriminator: str = ""
    raw_payload: Any = field(default=None, repr=False)
