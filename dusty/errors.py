"""
Error handling for the dusty notification daemon.

Structured error codes shared by the D-Bus binding and the JSON-RPC
control socket.
"""

from enum import Enum
from typing import Optional, Dict, Any


class ErrorCode(Enum):
    """
    Error codes for the notification daemon.

    JSON-RPC standard codes:
    - -32700: Parse error
    - -32600: Invalid request
    - -32601: Method not found
    - -32602: Invalid params
    - -32603: Internal error

    Custom codes (1000-1999):
    - 1000-1099: Request validation errors
    - 1100-1199: Policy/configuration errors
    - 1200-1299: Notification lookup errors
    - 1300-1399: Bus errors
    - 1500-1599: State errors
    """

    # JSON-RPC standard errors
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603

    # Request validation errors (1000-1099)
    VALIDATION_FAILED = 1000
    INVALID_FIELD_TYPE = 1001
    VALUE_OUT_OF_RANGE = 1002
    MALFORMED_ACTIONS = 1003

    # Policy errors (1100-1199)
    POLICY_LOAD_FAILED = 1100
    INVALID_RULE = 1101
    CONFIG_SYNTAX_ERROR = 1102

    # Lookup errors (1200-1299)
    NOTIFICATION_NOT_FOUND = 1200
    ACTION_NOT_FOUND = 1201

    # Bus errors (1300-1399)
    BUS_NAME_TAKEN = 1300
    BUS_CONNECTION_FAILED = 1301

    # State errors (1500-1599)
    DAEMON_NOT_INITIALIZED = 1500
    INVARIANT_VIOLATION = 1501


class NotificationError(Exception):
    """Base exception for notification daemon errors."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        suggestion: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize notification daemon error.

        Args:
            code: Error code from ErrorCode enum
            message: Human-readable error message
            suggestion: Suggested recovery action
            context: Additional context for debugging
        """
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.context = context or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert error to dictionary for JSON-RPC response.

        Returns:
            Error dictionary with code, message, suggestion, and context
        """
        result = {
            "code": self.code.value,
            "message": self.message
        }

        if self.suggestion:
            result["suggestion"] = self.suggestion

        if self.context:
            result["context"] = self.context

        return result


class ValidationError(NotificationError):
    """Malformed field in an inbound request. Rejected before reaching the engine."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        suggestion: Optional[str] = None
    ):
        context = {}
        if field:
            context["field"] = field

        super().__init__(
            code=code,
            message=message,
            suggestion=suggestion,
            context=context
        )
        self.field = field


class NotFound(NotificationError):
    """Operation referenced a notification id that is not live."""

    def __init__(self, notification_id: int, code: ErrorCode = ErrorCode.NOTIFICATION_NOT_FOUND, detail: Optional[str] = None):
        message = f"Notification #{notification_id} is not live"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(
            code=code,
            message=message,
            suggestion="List live notifications with: dustyctl list",
            context={"id": notification_id}
        )
        self.notification_id = notification_id


class PolicyError(NotificationError):
    """Malformed policy or rule definition at load time."""

    def __init__(
        self,
        source: str,
        reason: str,
        errors: Optional[list] = None,
        code: ErrorCode = ErrorCode.POLICY_LOAD_FAILED,
    ):
        """
        Initialize policy error.

        Args:
            source: Path or name of the policy source
            reason: Reason for load failure
            errors: Per-field validation errors, if any
            code: CONFIG_SYNTAX_ERROR, INVALID_RULE or POLICY_LOAD_FAILED
        """
        context: Dict[str, Any] = {"source": source, "reason": reason}
        if errors:
            context["errors"] = errors

        super().__init__(
            code=code,
            message=f"Failed to load policy from {source}: {reason}",
            suggestion="Check config.toml syntax and rule definitions",
            context=context
        )


class InternalInvariantViolation(NotificationError):
    """Live-table inconsistency detected inside the engine."""

    def __init__(self, notification_id: int, reason: str):
        super().__init__(
            code=ErrorCode.INVARIANT_VIOLATION,
            message=f"Invariant violated for notification #{notification_id}: {reason}",
            suggestion="The affected notification was force-closed; check daemon logs",
            context={"id": notification_id, "reason": reason}
        )
        self.notification_id = notification_id


class BusError(NotificationError):
    """Session bus connection or name acquisition failure."""

    def __init__(self, operation: str, reason: str, code: ErrorCode = ErrorCode.BUS_CONNECTION_FAILED):
        suggestion = "Ensure a D-Bus session bus is running"
        if code == ErrorCode.BUS_NAME_TAKEN:
            suggestion = "Stop any other notification daemon (e.g. killall dunst) before starting dusty"

        super().__init__(
            code=code,
            message=f"D-Bus {operation} failed: {reason}",
            suggestion=suggestion,
            context={"operation": operation, "reason": reason}
        )


def error_response(error: Exception, request_id: Optional[Any] = None) -> Dict[str, Any]:
    """
    Create JSON-RPC error response from exception.

    Args:
        error: Exception to convert
        request_id: JSON-RPC request ID

    Returns:
        JSON-RPC error response dictionary
    """
    if isinstance(error, NotificationError):
        error_dict = error.to_dict()
    else:
        error_dict = {
            "code": ErrorCode.INTERNAL_ERROR.value,
            "message": str(error),
            "suggestion": "Check daemon logs for details"
        }

    return {
        "jsonrpc": "2.0",
        "error": error_dict,
        "id": request_id
    }


def validate_params(params: Dict[str, Any], required: list, optional: Optional[list] = None) -> None:
    """
    Validate request parameters.

    Args:
        params: Request parameters dictionary
        required: List of required parameter names
        optional: List of optional parameter names

    Raises:
        NotificationError: If required parameters are missing or unknown parameters provided
    """
    if not isinstance(params, dict):
        raise NotificationError(
            code=ErrorCode.INVALID_PARAMS,
            message="'params' must be an object",
            suggestion="Send parameters as a JSON object"
        )

    missing = [key for key in required if key not in params]
    if missing:
        raise NotificationError(
            code=ErrorCode.INVALID_PARAMS,
            message=f"Missing required parameters: {', '.join(missing)}",
            suggestion=f"Provide required parameters: {', '.join(missing)}",
            context={"missing": missing, "required": required}
        )

    if optional is not None:
        allowed = set(required + optional)
        unknown = [key for key in params.keys() if key not in allowed]
        if unknown:
            raise NotificationError(
                code=ErrorCode.INVALID_PARAMS,
                message=f"Unknown parameters: {', '.join(unknown)}",
                suggestion="Remove unknown parameters or check dustyctl --help",
                context={"unknown": unknown, "allowed": sorted(allowed)}
            )
