import json
import logging
from typing import Any, Dict, Optional

from django.contrib.auth.decorators import login_required
from django.http import HttpRequest, JsonResponse
from django.shortcuts import get_object_or_404
from django.utils.dateparse import parse_datetime
from django.views.decorators.csrf import csrf_exempt

from . import ssh_keys
from .errors import ToolboxConfigError, ToolboxError
from .models import SSHKeyPair, ToolboxRecord, ToolInstance
from .provisioning import deprovision, fetch_bootstrap_log, list_toolboxes, provision
from .reconciler import refresh_status
from .remediation import remediate
from .status_view import describe, user_message
from .tools import deploy_tool, remove_tool, start_tool, stop_tool


logger = logging.getLogger(__name__)


def _json_body(request: HttpRequest) -> Dict[str, Any]:
    if not request.body:
        return {}
    try:
        payload = json.loads(request.body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ToolboxConfigError("request body must be valid JSON") from exc
    if not isinstance(payload, dict):
        raise ToolboxConfigError("request body must be a JSON object")
    return payload


def _error_response(exc: ToolboxError) -> JsonResponse:
    return JsonResponse({"error": user_message(exc), "category": exc.user_category}, status=exc.http_status)


def _require_staff(request: HttpRequest) -> Optional[JsonResponse]:
    if not request.user.is_authenticated or not request.user.is_staff:
        return JsonResponse({"error": "Staff access required"}, status=403)
    return None


def _get_toolbox(request: HttpRequest, toolbox_id: str) -> ToolboxRecord:
    toolboxes = ToolboxRecord.objects.all()
    if not request.user.is_staff:
        toolboxes = toolboxes.filter(owner=request.user)
    return get_object_or_404(toolboxes, id=toolbox_id)


def _tool_payload(instance: ToolInstance) -> dict:
    return {
        "id": str(instance.id) if instance.id else None,
        "instance_name": instance.instance_name,
        "image_reference": instance.image_reference,
        "container_id": instance.container_id,
        "status": instance.status,
        "port_bindings": instance.port_bindings or {},
        "last_reported_at": instance.last_reported_at,
    }


def _toolbox_payload(toolbox: ToolboxRecord, include_internal: bool = False) -> dict:
    payload = {
        "id": str(toolbox.id),
        "name": toolbox.name,
        "region": toolbox.region,
        "size_class": toolbox.size_class,
        "status": toolbox.status,
        "public_address": toolbox.public_address,
        "last_heartbeat_at": toolbox.last_heartbeat_at,
        "status_changed_at": toolbox.status_changed_at,
        "agent_version": toolbox.agent_version,
        "health": toolbox.health_json or {},
        "view": describe(toolbox),
        "tools": [_tool_payload(instance) for instance in toolbox.tool_instances.all()],
        "created_at": toolbox.created_at,
        "updated_at": toolbox.updated_at,
    }
    if include_internal:
        payload.update(
            {
                "owner_id": toolbox.owner_id,
                "provider_host_id": toolbox.provider_host_id,
                "host_details": toolbox.host_details_json or {},
                "provisioning_error_message": toolbox.provisioning_error_message,
            }
        )
    return payload


def _key_payload(key: SSHKeyPair) -> dict:
    return {
        "id": str(key.id),
        "key_name": key.key_name,
        "fingerprint": key.fingerprint,
        "provider_key_id": key.provider_key_id,
        "regions": sorted(key.provider_regions_json or {}),
        "created_at": key.created_at,
    }


@csrf_exempt
@login_required
def toolboxes(request: HttpRequest) -> JsonResponse:
    if request.method == "POST":
        try:
            toolbox = provision(request.user, _json_body(request))
        except ToolboxError as exc:
            return _error_response(exc)
        return JsonResponse(_toolbox_payload(toolbox, request.user.is_staff), status=201)
    if request.method != "GET":
        return JsonResponse({"error": "GET or POST required"}, status=405)

    owner = None if request.user.is_staff and request.GET.get("all") == "true" else request.user
    changed_since = None
    if raw := request.GET.get("changed_since"):
        changed_since = parse_datetime(raw)
        if changed_since is None:
            return JsonResponse({"error": "changed_since must be an ISO-8601 timestamp"}, status=400)
    include_deprovisioned = request.GET.get("include_deprovisioned", "true") != "false"
    data = [
        _toolbox_payload(toolbox, request.user.is_staff)
        for toolbox in list_toolboxes(owner, changed_since=changed_since, include_deprovisioned=include_deprovisioned)
    ]
    return JsonResponse({"toolboxes": data})


@csrf_exempt
@login_required
def toolbox_detail(request: HttpRequest, toolbox_id: str) -> JsonResponse:
    toolbox = _get_toolbox(request, toolbox_id)
    return JsonResponse(_toolbox_payload(toolbox, request.user.is_staff))


@csrf_exempt
@login_required
def toolbox_refresh(request: HttpRequest, toolbox_id: str) -> JsonResponse:
    if request.method != "POST":
        return JsonResponse({"error": "POST required"}, status=405)
    toolbox = _get_toolbox(request, toolbox_id)
    try:
        toolbox = refresh_status(toolbox.id)
    except ToolboxError as exc:
        return _error_response(exc)
    return JsonResponse(_toolbox_payload(toolbox, request.user.is_staff))


@csrf_exempt
@login_required
def toolbox_deprovision(request: HttpRequest, toolbox_id: str) -> JsonResponse:
    if request.method != "POST":
        return JsonResponse({"error": "POST required"}, status=405)
    toolbox = _get_toolbox(request, toolbox_id)
    try:
        toolbox = deprovision(toolbox.id)
    except ToolboxError as exc:
        return _error_response(exc)
    return JsonResponse(_toolbox_payload(toolbox, request.user.is_staff))


@csrf_exempt
@login_required
def toolbox_remediate(request: HttpRequest, toolbox_id: str, action: str) -> JsonResponse:
    if request.method != "POST":
        return JsonResponse({"error": "POST required"}, status=405)
    toolbox = _get_toolbox(request, toolbox_id)
    try:
        result = remediate(toolbox.id, action)
    except ToolboxError as exc:
        return _error_response(exc)
    payload = result.as_dict()
    if not request.user.is_staff:
        payload.pop("details", None)
    return JsonResponse(payload, status=200 if result.success else 502)


@csrf_exempt
@login_required
def toolbox_bootstrap_log(request: HttpRequest, toolbox_id: str) -> JsonResponse:
    if staff_error := _require_staff(request):
        return staff_error
    toolbox = _get_toolbox(request, toolbox_id)
    try:
        tail = int(request.GET.get("tail", "200"))
    except ValueError:
        return JsonResponse({"error": "tail must be an integer"}, status=400)
    try:
        log = fetch_bootstrap_log(toolbox.id, tail=tail)
    except ToolboxError as exc:
        return JsonResponse({"error": str(exc), "category": exc.user_category}, status=exc.http_status)
    return JsonResponse(log)


@csrf_exempt
@login_required
def toolbox_events(request: HttpRequest, toolbox_id: str) -> JsonResponse:
    toolbox = _get_toolbox(request, toolbox_id)
    events = [
        {
            "from_status": event.from_status,
            "to_status": event.to_status,
            "message": event.message if request.user.is_staff else "",
            "created_at": event.created_at,
        }
        for event in toolbox.events.all()
    ]
    return JsonResponse({"events": events})


@csrf_exempt
@login_required
def toolbox_tools(request: HttpRequest, toolbox_id: str) -> JsonResponse:
    toolbox = _get_toolbox(request, toolbox_id)
    if request.method == "GET":
        return JsonResponse({"tools": [_tool_payload(instance) for instance in toolbox.tool_instances.all()]})
    if request.method != "POST":
        return JsonResponse({"error": "GET or POST required"}, status=405)
    try:
        payload = _json_body(request)
        instance = deploy_tool(
            toolbox.id,
            payload.get("instance_name", ""),
            payload.get("image_reference", ""),
            env=payload.get("env") or {},
            port_bindings=payload.get("port_bindings") or {},
        )
    except ToolboxError as exc:
        return _error_response(exc)
    return JsonResponse(_tool_payload(instance), status=201)


@csrf_exempt
@login_required
def toolbox_tool(request: HttpRequest, toolbox_id: str, instance_name: str) -> JsonResponse:
    if request.method != "DELETE":
        return JsonResponse({"error": "DELETE required"}, status=405)
    toolbox = _get_toolbox(request, toolbox_id)
    try:
        instance = remove_tool(toolbox.id, instance_name)
    except ToolboxError as exc:
        return _error_response(exc)
    return JsonResponse(_tool_payload(instance))


@csrf_exempt
@login_required
def toolbox_tool_action(request: HttpRequest, toolbox_id: str, instance_name: str, action: str) -> JsonResponse:
    if request.method != "POST":
        return JsonResponse({"error": "POST required"}, status=405)
    toolbox = _get_toolbox(request, toolbox_id)
    operation = {"start": start_tool, "stop": stop_tool}.get(action)
    if operation is None:
        return JsonResponse({"error": "unknown action"}, status=404)
    try:
        instance = operation(toolbox.id, instance_name)
    except ToolboxError as exc:
        return _error_response(exc)
    return JsonResponse(_tool_payload(instance))


@csrf_exempt
@login_required
def ssh_key_collection(request: HttpRequest) -> JsonResponse:
    try:
        if request.method == "GET":
            keys = SSHKeyPair.objects.filter(owner=request.user)
            return JsonResponse({"keys": [_key_payload(key) for key in keys]})
        if request.method == "POST":
            key = ssh_keys.ensure_keys(request.user, _json_body(request).get("region") or None)
            return JsonResponse(_key_payload(key), status=201)
        if request.method == "DELETE":
            deleted = ssh_keys.delete_keys(request.user)
            return JsonResponse({"deleted": deleted})
    except ToolboxError as exc:
        return _error_response(exc)
    return JsonResponse({"error": "GET, POST or DELETE required"}, status=405)
