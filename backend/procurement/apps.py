from django.apps import AppConfig


class ProcurementConfig(AppConfig):
    default_auto_field = "django.db.models.AutoField"
    name = "procurement"

    def ready(self) -> None:
        from procurement import feed

        feed.connect_signals()
