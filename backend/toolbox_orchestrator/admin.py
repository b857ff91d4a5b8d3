from django.contrib import admin

from .models import SSHKeyPair, ToolboxEvent, ToolboxRecord, ToolInstance


class ToolInstanceInline(admin.TabularInline):
    model = ToolInstance
    extra = 0
    readonly_fields = ("instance_name", "image_reference", "container_id", "status", "port_bindings", "last_reported_at")


@admin.register(ToolboxRecord)
class ToolboxRecordAdmin(admin.ModelAdmin):
    list_display = (
        "name",
        "owner",
        "region",
        "size_class",
        "status",
        "public_address",
        "last_heartbeat_at",
        "updated_at",
    )
    search_fields = ("name", "provider_host_id", "public_address")
    list_filter = ("status", "region", "size_class")
    # Status only moves through the lifecycle functions.
    readonly_fields = ("status", "status_changed_at", "last_heartbeat_at", "provider_host_id")
    exclude = ("agent_auth_token",)
    inlines = [ToolInstanceInline]


@admin.register(SSHKeyPair)
class SSHKeyPairAdmin(admin.ModelAdmin):
    list_display = ("key_name", "owner", "fingerprint", "provider_key_id", "created_at")
    search_fields = ("key_name", "fingerprint")
    readonly_fields = ("public_key_reference", "private_key_reference", "fingerprint", "provider_regions_json")


@admin.register(ToolboxEvent)
class ToolboxEventAdmin(admin.ModelAdmin):
    list_display = ("toolbox", "from_status", "to_status", "created_at")
    list_filter = ("to_status",)
