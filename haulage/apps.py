from django.apps import AppConfig


class HaulageConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "haulage"
