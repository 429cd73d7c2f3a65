from django.apps import AppConfig


class FacilitatorConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'facilitator'
    verbose_name = 'x402 facilitator'
