from typing import Optional


class ToolboxError(RuntimeError):
    """Base error for the toolbox control plane.

    ``user_category`` selects the plain-language message shown to end users;
    the exception text itself is operator detail and may be technical.
    """

    user_category = "temporary_issue"
    http_status = 500

    def __init__(self, message: str, *, detail: str = "") -> None:
        super().__init__(message)
        self.detail = detail or message


class ToolboxConfigError(ToolboxError, ValueError):
    user_category = "invalid_request"
    http_status = 400


class DuplicateToolbox(ToolboxError):
    user_category = "invalid_request"
    http_status = 409


class InvalidTransition(ToolboxError):
    user_category = "invalid_request"
    http_status = 409


class ProviderError(ToolboxError):
    user_category = "provider_failure"
    http_status = 502

    def __init__(self, message: str, *, code: Optional[str] = None, detail: str = "") -> None:
        super().__init__(message, detail=detail)
        self.code = code


class AgentError(ToolboxError):
    user_category = "temporary_issue"
    http_status = 502

    def __init__(self, message: str, *, status_code: Optional[int] = None, detail: str = "") -> None:
        super().__init__(message, detail=detail)
        self.status_code = status_code


class ToolNotFound(AgentError):
    user_category = "invalid_request"
    http_status = 404


class RemoteCommandError(ToolboxError):
    user_category = "temporary_issue"
    http_status = 502


class SecretStoreError(ToolboxError):
    user_category = "temporary_issue"
    http_status = 502
