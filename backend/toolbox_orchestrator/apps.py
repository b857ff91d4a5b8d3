from django.apps import AppConfig


class ToolboxOrchestratorConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "toolbox_orchestrator"
    label = "toolbox_orchestrator"

    def ready(self) -> None:
        from toolbox_orchestrator import signals  # noqa: F401
