from django.apps import AppConfig


class PullTasksConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "pulltasks"
