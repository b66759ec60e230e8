from django.apps import AppConfig


class LocalcacheConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "localcache"
    verbose_name = "Local cache"
