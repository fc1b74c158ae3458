from django.apps import AppConfig


class SouqConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'souq'
    verbose_name = 'Souq wholesale'

    def ready(self):
        import souq.signals  # noqa: F401
