from django.apps import AppConfig


class RawmaterialConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'rawmaterial'
    verbose_name = 'Raw Material'
