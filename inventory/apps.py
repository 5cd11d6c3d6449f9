from django.apps import AppConfig


class InventoryConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'inventory'

    def ready(self):
        # Signal receivers (audit of warehouse changes)
        from inventory import signals  # noqa: F401
