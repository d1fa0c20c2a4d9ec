"""
Exceptions raised by the service layer.

Services never build HTTP responses.  They raise one of the types below
and ``testhub.blueprints.register_error_handlers`` turns it into the JSON
error envelope with a fixed status per type:

    AccessDeniedError      404  token did not resolve
    PermissionDeniedError  403  role lacks a capability
    NotFoundError          404  missing, or outside the caller's session
    ValidationError        422  well-formed input breaking a rule
    ConflictError          409  unique value already taken
    InvalidStateError      409  current state forbids the write
"""


class NotFoundError(Exception):
    """A record is missing or belongs to a different session than the caller's.

    Both cases read the same from outside; ``resource_id`` and
    ``session_id`` only end up in logs.
    """

    def __init__(self, resource: str, resource_id=None, session_id=None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.session_id = session_id
        where = f" in session {session_id}" if session_id is not None else ""
        ident = f" #{resource_id}" if resource_id is not None else ""
        super().__init__(f"{resource}{ident} not found{where}")


class AccessDeniedError(Exception):
    """A capability token could not be resolved.

    Unknown token, expired session or a token kind the portal does not
    take all produce the same public message; ``reason`` is for logs.
    """

    public_message = "Access denied"

    def __init__(self, reason: str = "unknown token") -> None:
        self.reason = reason
        super().__init__(self.public_message)


class PermissionDeniedError(Exception):
    """The resolved actor is known but its role lacks ``capability``."""

    def __init__(self, capability: str, role: str | None = None) -> None:
        self.capability = capability
        self.role = role
        who = f"Role '{role}'" if role else "This actor"
        super().__init__(f"{who} is not permitted to perform this action")


class ValidationError(Exception):
    """Input parsed fine but breaks a business rule.

    ``details`` maps field names to what was wrong with them and is
    returned to the client as-is.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """``field`` must be unique within its scope and ``value`` is taken."""

    def __init__(self, resource: str, field: str, value=None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource}.{field} {value!r} is already in use")


class InvalidStateError(Exception):
    """The entity's current state does not allow the operation.

    Recording into a closed run, reviewing in a session that is not
    active, or moving a session along an edge its lifecycle lacks.
    """

    def __init__(self, message: str, current_state: str | None = None) -> None:
        self.current_state = current_state
        super().__init__(message)
