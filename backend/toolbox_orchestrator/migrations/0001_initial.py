from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion
import django.utils.timezone
import uuid

import toolbox_orchestrator.models


TOOLBOX_STATUS_CHOICES = [
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

TOOL_STATUS_CHOICES = [
    ("created", "Created"),
    ("running", "Running"),
    ("stopped", "Stopped"),
    ("removed", "Removed"),
    ("error", "Error"),
]


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="SSHKeyPair",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("key_name", models.CharField(max_length=120)),
                ("public_key_reference", models.CharField(max_length=512)),
                ("private_key_reference", models.CharField(max_length=512)),
                ("fingerprint", models.CharField(max_length=128)),
                ("provider_key_id", models.CharField(blank=True, max_length=255)),
                ("provider_regions_json", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("owner", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="ssh_keys", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "ordering": ["-created_at"],
                "unique_together": {("owner", "key_name")},
            },
        ),
        migrations.CreateModel(
            name="ToolboxRecord",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=120)),
                ("region", models.CharField(max_length=50)),
                ("size_class", models.CharField(max_length=40)),
                ("provider_host_id", models.CharField(blank=True, max_length=255)),
                ("public_address", models.GenericIPAddressField(blank=True, null=True)),
                ("agent_auth_token", models.CharField(default=toolbox_orchestrator.models._new_agent_token, editable=False, max_length=128)),
                ("status", models.CharField(choices=TOOLBOX_STATUS_CHOICES, default="inactive", max_length=32)),
                ("status_changed_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("last_heartbeat_at", models.DateTimeField(blank=True, null=True)),
                ("provisioning_error_message", models.TextField(blank=True)),
                ("agent_version", models.CharField(blank=True, max_length=64)),
                ("health_json", models.JSONField(blank=True, null=True)),
                ("host_details_json", models.JSONField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("owner", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="toolboxes", to=settings.AUTH_USER_MODEL)),
                ("ssh_key", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="toolboxes", to="toolbox_orchestrator.sshkeypair")),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
        migrations.AddConstraint(
            model_name="toolboxrecord",
            constraint=models.UniqueConstraint(fields=("owner", "name"), name="toolbox_owner_name_unique"),
        ),
        migrations.CreateModel(
            name="ToolInstance",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("instance_name", models.CharField(max_length=120)),
                ("image_reference", models.CharField(max_length=500)),
                ("container_id", models.CharField(blank=True, max_length=128, null=True)),
                ("status", models.CharField(choices=TOOL_STATUS_CHOICES, default="created", max_length=20)),
                ("port_bindings", models.JSONField(blank=True, default=dict)),
                ("last_reported_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("toolbox", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="tool_instances", to="toolbox_orchestrator.toolboxrecord")),
            ],
            options={
                "ordering": ["instance_name"],
            },
        ),
        migrations.AddConstraint(
            model_name="toolinstance",
            constraint=models.UniqueConstraint(fields=("toolbox", "instance_name"), name="tool_instance_name_unique"),
        ),
        migrations.CreateModel(
            name="ToolboxEvent",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("from_status", models.CharField(max_length=32)),
                ("to_status", models.CharField(max_length=32)),
                ("message", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("toolbox", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="events", to="toolbox_orchestrator.toolboxrecord")),
            ],
            options={
                "ordering": ["created_at"],
            },
        ),
    ]
