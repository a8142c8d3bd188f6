"""
Shared fixtures for all tests.

factory-boy factories live here so both unit/ and integration/ can import them.
"""
import uuid

import pytest
from datetime import date
from rest_framework.test import APIClient

import factory
from registration.models import (
    Location,
    Patient,
    PatientIdentifier,
    PatientIdentifierType,
    PersonAttributeType,
    PersonName,
    QueueData,
    RegistrationData,
)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

class LocationFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Location

    name = factory.Sequence(lambda n: f'Clinic {n}')


class PatientIdentifierTypeFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = PatientIdentifierType
        django_get_or_create = ('name',)

    name = 'AMRS Universal ID'


class PersonAttributeTypeFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = PersonAttributeType
        django_get_or_create = ('name',)

    name = factory.Sequence(lambda n: f'Attribute {n}')


class PatientFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Patient

    gender = 'F'
    birthdate = date(1990, 1, 1)


class PersonNameFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = PersonName

    patient = factory.SubFactory(PatientFactory)
    given_name = 'Jane'
    family_name = 'Doe'


class PatientIdentifierFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = PatientIdentifier

    patient = factory.SubFactory(PatientFactory)
    identifier_type = factory.SubFactory(PatientIdentifierTypeFactory)
    identifier = factory.Sequence(lambda n: f'{10000 + n}-1')
    preferred = True


class RegistrationDataFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = RegistrationData

    temporary_uuid = factory.Sequence(lambda n: f'tmp-{n}')
    assigned_uuid = factory.LazyFunction(uuid.uuid4)


class QueueDataFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = QueueData

    discriminator = 'json-registration'
    payload = factory.LazyFunction(lambda: {
        'patient': {
            'given_name': 'Jane',
            'family_name': 'Doe',
            'sex': 'F',
            'birth_date': '1990-01-01',
            'uuid': 'tmp-queue',
        },
    })
    status = 'pending'


def create_saved_patient(given_name='Jane', family_name='Doe', gender='F',
                         birthdate=date(1990, 1, 1), identifier=None):
    """已保存患者 + 名字 (+ preferred identifier)。"""
    patient = PatientFactory(gender=gender, birthdate=birthdate)
    PersonNameFactory(patient=patient, given_name=given_name, family_name=family_name)
    if identifier is not None:
        PatientIdentifierFactory(patient=patient, identifier=identifier)
    return patient


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def api_client():
    """DRF test client for integration tests."""
    return APIClient()


@pytest.fixture
def minimal_payload():
    """最小可注册 payload：无 identifier、无地址、无属性。"""
    return {
        'patient': {
            'given_name': 'Jane',
            'family_name': 'Doe',
            'sex': 'F',
            'birth_date': '1990-01-01',
            'uuid': 'tmp-123',
        },
    }


@pytest.fixture
def full_payload():
    """包含 identifier / location / 地址数组 / 属性的完整 payload。需要 registration_lookups。"""
    return {
        'patient': {
            'uuid': 'tmp-full',
            'medical_record_number': '12345-6',
            'given_name': 'John',
            'middle_name': 'K',
            'family_name': 'Kamau',
            'sex': 'M',
            'birth_date': '1985-03-20',
            'birthdate_estimated': 'true',
            'personaddress': [
                {'countyDistrict': 'Uasin Gishu', 'address6': 'Kapsoya', 'address5': 'Block 4',
                 'cityVillage': 'Eldoret'},
                {'countyDistrict': 'Nairobi', 'address6': 'Kilimani', 'address5': 'Flat 2',
                 'cityVillage': 'Nairobi'},
            ],
            'personattribute': {'attribute_type_uuid': 'Telephone', 'attribute_value': '0722000000'},
        },
        'observation': {
            'other_identifier_type': ['National ID', 'Passport'],
            'other_identifier_value': ['A123', 'P456'],
        },
        'encounter': {'location_id': 'LOCATION'},
    }


@pytest.fixture
def registration_lookups(db):
    """identifier types / location / attribute type，返回 dict 供 payload 引用。"""
    for name in ('AMRS Universal ID', 'National ID', 'Passport'):
        PatientIdentifierTypeFactory(name=name)
    return {
        'location': LocationFactory(name='Eldoret MTRH'),
        'telephone': PersonAttributeTypeFactory(name='Telephone Number'),
    }


@pytest.fixture
def resolved_full_payload(full_payload, registration_lookups):
    """full_payload 里的占位符替换成真实的 location id / attribute type id。"""
    full_payload['encounter']['location_id'] = str(registration_lookups['location'].pk)
    full_payload['patient']['personattribute']['attribute_type_uuid'] = str(registration_lookups['telephone'].pk)
    return full_payload
