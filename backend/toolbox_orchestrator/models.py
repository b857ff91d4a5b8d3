import secrets
import uuid

from django.db import models
from django.utils import timezone


def _new_agent_token() -> str:
    return secrets.token_urlsafe(32)


class SSHKeyPair(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    owner = models.ForeignKey("auth.User", on_delete=models.CASCADE, related_name="ssh_keys")
    key_name = models.CharField(max_length=120)
    public_key_reference = models.CharField(max_length=512)
    private_key_reference = models.CharField(max_length=512)
    fingerprint = models.CharField(max_length=128)
    provider_key_id = models.CharField(max_length=255, blank=True)
    # region -> provider key pair id; the key name is shared across regions.
    provider_regions_json = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        unique_together = ("owner", "key_name")

    def __str__(self) -> str:
        return f"{self.key_name} ({self.fingerprint})"


class ToolboxRecord(models.Model):
    STATUS_CHOICES = [
        ("inactive", "Inactive"),
        ("pending_creation", "Pending creation"),
        ("creating", "Creating"),
        ("active", "Active"),
        ("unresponsive", "Unresponsive"),
        ("scaling", "Scaling"),
        ("awaiting_heartbeat", "Awaiting heartbeat"),
        ("error_creation", "Error creating"),
        ("error_provisioning", "Error provisioning"),
        ("pending_deprovision", "Pending deprovision"),
        ("deprovisioning", "Deprovisioning"),
        ("deprovisioned", "Deprovisioned"),
        ("error_deprovisioning", "Error deprovisioning"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    owner = models.ForeignKey("auth.User", on_delete=models.CASCADE, related_name="toolboxes")
    name = models.CharField(max_length=120)
    region = models.CharField(max_length=50)
    size_class = models.CharField(max_length=40)
    provider_host_id = models.CharField(max_length=255, blank=True)
    public_address = models.GenericIPAddressField(null=True, blank=True)
    agent_auth_token = models.CharField(max_length=128, default=_new_agent_token, editable=False)
    ssh_key = models.ForeignKey(
        SSHKeyPair, null=True, blank=True, on_delete=models.SET_NULL, related_name="toolboxes"
    )
    status = models.CharField(max_length=32, choices=STATUS_CHOICES, default="inactive")
    status_changed_at = models.DateTimeField(default=timezone.now)
    last_heartbeat_at = models.DateTimeField(null=True, blank=True)
    provisioning_error_message = models.TextField(blank=True)
    agent_version = models.CharField(max_length=64, blank=True)
    health_json = models.JSONField(null=True, blank=True)
    host_details_json = models.JSONField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(fields=["owner", "name"], name="toolbox_owner_name_unique"),
        ]

    def __str__(self) -> str:
        return f"{self.name} ({self.status})"

    def __repr__(self) -> str:
        return f"<ToolboxRecord {self.id} {self.name} status={self.status}>"

    @property
    def reachable_address(self):
        # public_address is only confirmed once the Agent answers; before that
        # the provider-reported address lives in host_details_json.
        return self.public_address or (self.host_details_json or {}).get("public_address") or None


class ToolInstance(models.Model):
    STATUS_CHOICES = [
        ("created", "Created"),
        ("running", "Running"),
        ("stopped", "Stopped"),
        ("removed", "Removed"),
        ("error", "Error"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    toolbox = models.ForeignKey(ToolboxRecord, on_delete=models.CASCADE, related_name="tool_instances")
    instance_name = models.CharField(max_length=120)
    image_reference = models.CharField(max_length=500)
    container_id = models.CharField(max_length=128, null=True, blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default="created")
    port_bindings = models.JSONField(default=dict, blank=True)
    last_reported_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["instance_name"]
        constraints = [
            models.UniqueConstraint(fields=["toolbox", "instance_name"], name="tool_instance_name_unique"),
        ]

    def __str__(self) -> str:
        return f"{self.instance_name} ({self.status})"


class ToolboxEvent(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    toolbox = models.ForeignKey(ToolboxRecord, on_delete=models.CASCADE, related_name="events")
    from_status = models.CharField(max_length=32)
    to_status = models.CharField(max_length=32)
    message = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at"]

    def __str__(self) -> str:
        return f"{self.from_status} -> {self.to_status}"
