from django.apps import AppConfig


class TreatmentsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'klinik_backend.treatments'
    verbose_name = 'Treatments'
