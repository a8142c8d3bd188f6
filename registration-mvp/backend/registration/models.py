import uuid
from django.db import models


class Location(models.Model):
    name = models.CharField(max_length=255)

    class Meta:
        db_table = 'locations'


class PatientIdentifierType(models.Model):
    name = models.CharField(max_length=100, unique=True)

    class Meta:
        db_table = 'patient_identifier_types'


class PersonAttributeType(models.Model):
    uuid = models.UUIDField(default=uuid.uuid4, unique=True, editable=False)
    name = models.CharField(max_length=100, unique=True)

    class Meta:
        db_table = 'person_attribute_types'


class PatientQuerySet(models.QuerySet):

    def find_by_identifier_value(self, value):
        return (
            self.filter(identifiers__identifier=value)
            .distinct()
            .order_by('created_at')
        )

    def find_by_full_name(self, full_name):
        """
        宽松检索：任一名字片段命中 given / middle / family 即返回。

        只负责圈出候选集，是否真的相似由 services.find_patient() 打分决定。
        """
        tokens = (full_name or '').split()
        if not tokens:
            return self.none()

        query = models.Q()
        for token in tokens:
            query |= (
                models.Q(names__given_name__iexact=token) |
                models.Q(names__middle_name__iexact=token) |
                models.Q(names__family_name__iexact=token)
            )
        return self.filter(query).distinct().order_by('created_at')


class Patient(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    gender = models.CharField(max_length=50, blank=True, null=True)
    birthdate = models.DateField(blank=True, null=True)
    birthdate_estimated = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = PatientQuerySet.as_manager()

    class Meta:
        db_table = 'patients'

    @property
    def person_name(self):
        return self.names.order_by('id').first()

    @property
    def preferred_identifier(self):
        identifiers = self.identifiers.order_by('-preferred', 'id')
        return identifiers.first()


class PersonName(models.Model):
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='names')
    given_name = models.CharField(max_length=100, blank=True, default='')
    middle_name = models.CharField(max_length=100, blank=True, default='')
    family_name = models.CharField(max_length=100, blank=True, default='')

    class Meta:
        db_table = 'person_names'

    @property
    def full_name(self):
        parts = [self.given_name, self.middle_name, self.family_name]
        return ' '.join(p for p in parts if p)


class PatientIdentifier(models.Model):
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='identifiers')
    identifier_type = models.ForeignKey(PatientIdentifierType, on_delete=models.PROTECT)
    identifier = models.CharField(max_length=100)
    preferred = models.BooleanField(default=False)
    location = models.ForeignKey(Location, on_delete=models.SET_NULL, blank=True, null=True)

    class Meta:
        db_table = 'patient_identifiers'


class PersonAddress(models.Model):
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='addresses')
    county_district = models.CharField(max_length=255, blank=True, null=True)
    address5 = models.CharField(max_length=255, blank=True, null=True)
    address6 = models.CharField(max_length=255, blank=True, null=True)
    city_village = models.CharField(max_length=255, blank=True, null=True)

    class Meta:
        db_table = 'person_addresses'


class PersonAttribute(models.Model):
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='attributes')
    attribute_type = models.ForeignKey(PersonAttributeType, on_delete=models.PROTECT)
    value = models.CharField(max_length=255)

    class Meta:
        db_table = 'person_attributes'


class RegistrationData(models.Model):
    """temporary_uuid → assigned_uuid 的 ledger。一旦写入永不覆盖。"""

    temporary_uuid = models.CharField(max_length=255, unique=True)
    assigned_uuid = models.UUIDField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'registration_data'


class QueueData(models.Model):
    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('processing', 'Processing'),
        ('processed', 'Processed'),
        ('failed', 'Failed'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    discriminator = models.CharField(max_length=50)
    payload = models.JSONField()
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending')
    errors = models.JSONField(default=list, blank=True)
    registration_outcome = models.CharField(max_length=20, blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    processed_at = models.DateTimeField(blank=True, null=True)

    class Meta:
        db_table = 'queue_data'
