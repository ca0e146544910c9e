from django.apps import AppConfig


class CodConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.cod"
    verbose_name = "COD Ledger"
