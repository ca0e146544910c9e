from django.apps import AppConfig


class EarningsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.earnings"
    verbose_name = "Partner Earnings"
