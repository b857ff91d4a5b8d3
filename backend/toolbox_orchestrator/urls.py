from django.urls import path

from . import toolbox_views

urlpatterns = [
    path("toolboxes/", toolbox_views.toolboxes, name="toolboxes"),
    path("toolboxes/<uuid:toolbox_id>", toolbox_views.toolbox_detail, name="toolbox-detail"),
    path("toolboxes/<uuid:toolbox_id>/refresh", toolbox_views.toolbox_refresh, name="toolbox-refresh"),
    path("toolboxes/<uuid:toolbox_id>/deprovision", toolbox_views.toolbox_deprovision, name="toolbox-deprovision"),
    path(
        "toolboxes/<uuid:toolbox_id>/<str:action>-agent",
        toolbox_views.toolbox_remediate,
        name="toolbox-remediate",
    ),
    path("toolboxes/<uuid:toolbox_id>/bootstrap-log", toolbox_views.toolbox_bootstrap_log, name="toolbox-bootstrap-log"),
    path("toolboxes/<uuid:toolbox_id>/events", toolbox_views.toolbox_events, name="toolbox-events"),
    path("toolboxes/<uuid:toolbox_id>/tools", toolbox_views.toolbox_tools, name="toolbox-tools"),
    path("toolboxes/<uuid:toolbox_id>/tools/<str:instance_name>", toolbox_views.toolbox_tool, name="toolbox-tool"),
    path(
        "toolboxes/<uuid:toolbox_id>/tools/<str:instance_name>/<str:action>",
        toolbox_views.toolbox_tool_action,
        name="toolbox-tool-action",
    ),
    path("ssh-keys", toolbox_views.ssh_key_collection, name="ssh-keys"),
]
