"""
Response serializers — ORM 对象 / dataclass → JSON-able dict。

只负责「输出格式化」，不做任何解析或校验。
输入解析和校验在 registration/intake/ adapter 系统里。
"""

from dataclasses import astuple


def serialize_queue_data_created(queue_data):
    """Serialize queue entry for 202 response."""
    return {
        'queue_data_id': str(queue_data.id),
        'discriminator': queue_data.discriminator,
        'status': queue_data.status,
        'message': 'Registration received. Processing queued.',
        'created_at': queue_data.created_at.isoformat(),
    }


def serialize_queue_data_detail(queue_data):
    """Serialize queue entry with status-dependent fields."""
    response = {
        'queue_data_id': str(queue_data.id),
        'discriminator': queue_data.discriminator,
        'status': queue_data.status,
        'created_at': queue_data.created_at.isoformat(),
        'updated_at': queue_data.updated_at.isoformat(),
    }

    if queue_data.status in ('pending', 'processing'):
        response['message'] = 'Registration is queued for processing'
    elif queue_data.status == 'processed':
        response['message'] = 'Registration processed successfully'
        response['outcome'] = queue_data.registration_outcome
        response['processed_at'] = queue_data.processed_at.isoformat() if queue_data.processed_at else None
    elif queue_data.status == 'failed':
        response['message'] = 'Registration processing failed'
        response['errors'] = queue_data.errors
        response['retry_allowed'] = True

    return response


def serialize_registration(registration):
    """Serialize a ledger entry (temporary_uuid → assigned_uuid)."""
    return {
        'temporary_uuid': registration.temporary_uuid,
        'assigned_uuid': str(registration.assigned_uuid),
        'created_at': registration.created_at.isoformat(),
    }


def serialize_candidate(candidate):
    """Serialize a validated RegistrationCandidate (not yet persisted)."""
    patient = candidate.patient
    return {
        'valid': True,
        'temporary_uuid': candidate.temporary_uuid,
        'candidate': {
            'gender': patient.gender,
            'birthdate': patient.birthdate.isoformat() if patient.birthdate else None,
            'birthdate_estimated': patient.birthdate_estimated,
            'names': [
                {'given_name': n.given_name, 'middle_name': n.middle_name, 'family_name': n.family_name}
                for n in patient.names
            ],
            'identifiers': [
                {
                    'identifier_type': i.identifier_type,
                    'identifier': i.identifier,
                    'preferred': i.preferred,
                    'location_id': i.location_id,
                }
                for i in patient.identifiers
            ],
            'addresses': [
                {
                    'county_district': a.county_district,
                    'address5': a.address5,
                    'address6': a.address6,
                    'city_village': a.city_village,
                }
                for a in sorted(patient.addresses, key=lambda a: tuple(v or '' for v in astuple(a)))
            ],
            'attributes': [
                {'attribute_type': a.attribute_type, 'value': a.value}
                for a in sorted(patient.attributes, key=lambda a: (a.attribute_type, a.value))
            ],
        },
    }
