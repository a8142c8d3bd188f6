from django.urls import path
from .views import (
    RegistrationCreateView,
    RegistrationDetailView,
    RegistrationRetryView,
    RegistrationValidateView,
    TemporaryRegistrationView,
)

urlpatterns = [
    path('registrations/', RegistrationCreateView.as_view(), name='registration-create'),
    path('registrations/validate/', RegistrationValidateView.as_view(), name='registration-validate'),
    path('registrations/temporary/<str:temporary_uuid>/', TemporaryRegistrationView.as_view(),
         name='registration-temporary'),
    path('registrations/<uuid:queue_data_id>/', RegistrationDetailView.as_view(), name='registration-detail'),
    path('registrations/<uuid:queue_data_id>/retry/', RegistrationRetryView.as_view(), name='registration-retry'),
]
