"""
Beep Exceptions.

============================================================
PURPOSE
============================================================
Defines the errors raised by entity methods and the repo.
Database errors are caught by the repo and re-raised as one
of these with context attached.

============================================================
HIERARCHY
============================================================
BeepError (base)
├── ConfigurationError
├── AssociationError
├── RecordNotFoundError
├── MultipleResultsError
├── StaleRecordError
├── InvalidChangesetError
├── ConstraintError
├── QueryError
└── DatabaseConnectionError

============================================================
USAGE
============================================================
Non-raising entity methods never raise InvalidChangesetError;
they return Result.failure(changeset) instead. The *_or_raise
variants raise it.

============================================================
"""

from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from beep.changeset import Changeset


class BeepError(Exception):
    """
    Base exception for all beep operations.

    Callers can catch this for generic error handling.
    """

    def __init__(
        self,
        message: str,
        repository_name: str,
        operation: str,
        details: Optional[dict] = None
    ) -> None:
        self.message = message
        self.repository_name = repository_name
        self.operation = operation
        self.details = details or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        return f"[{self.repository_name}] {self.operation}: {self.message}"


class ConfigurationError(BeepError):
    """Raised when an entity class is declared with invalid options."""

    def __init__(self, entity_name: str, reason: str) -> None:
        super().__init__(
            message=reason,
            repository_name=entity_name,
            operation="configure",
            details={"reason": reason}
        )
        self.reason = reason


class AssociationError(BeepError):
    """
    Raised when a relation name does not match a declared
    relationship on the record class.
    """

    def __init__(
        self,
        model_name: str,
        relation: str,
        reason: Optional[str] = None
    ) -> None:
        reason = reason or f"{model_name} has no relationship named {relation!r}"
        super().__init__(
            message=reason,
            repository_name=model_name,
            operation="build_assoc",
            details={"relation": relation}
        )
        self.relation = relation


class RecordNotFoundError(BeepError):
    """
    Raised when a requested record does not exist.

    Only the *_or_raise lookups raise this; get and get_by
    return None instead.
    """

    def __init__(
        self,
        repository_name: str,
        model_name: str,
        criteria: Any,
        operation: str = "get"
    ) -> None:
        super().__init__(
            message=f"{model_name} matching {criteria!r} not found",
            repository_name=repository_name,
            operation=operation,
            details={"model": model_name, "criteria": repr(criteria)}
        )
        self.model_name = model_name
        self.criteria = criteria


class MultipleResultsError(BeepError):
    """Raised when get_by matches more than one record."""

    def __init__(
        self,
        repository_name: str,
        model_name: str,
        criteria: Any
    ) -> None:
        super().__init__(
            message=f"Expected at most one {model_name} matching {criteria!r}, got more",
            repository_name=repository_name,
            operation="get_by",
            details={"model": model_name, "criteria": repr(criteria)}
        )
        self.model_name = model_name
        self.criteria = criteria


class StaleRecordError(BeepError):
    """
    Raised when a record handed to update or preload no longer
    has a row in the database.
    """

    def __init__(
        self,
        repository_name: str,
        model_name: str,
        record_id: Any,
        operation: str
    ) -> None:
        super().__init__(
            message=f"{model_name} with primary key {record_id!r} no longer exists",
            repository_name=repository_name,
            operation=operation,
            details={"model": model_name, "record_id": repr(record_id)}
        )
        self.model_name = model_name
        self.record_id = record_id


class InvalidChangesetError(BeepError):
    """
    Raised by the *_or_raise write methods when validation or a
    declared constraint rejects the change-set.

    The rejected change-set, with its errors, is kept on the
    exception.
    """

    def __init__(
        self,
        repository_name: str,
        operation: str,
        changeset: "Changeset"
    ) -> None:
        summary = ", ".join(
            f"{field} {message}" for field, message, _ in changeset.errors
        )
        super().__init__(
            message=f"Could not perform {operation} because changeset is invalid: {summary}",
            repository_name=repository_name,
            operation=operation,
            details={"errors": [(field, message) for field, message, _ in changeset.errors]}
        )
        self.changeset = changeset


class ConstraintError(BeepError):
    """
    Raised when the database rejects a write for a constraint
    that was not declared on the change-set.

    Declare the constraint (for example with the entity's
    unique option) to get a failure result instead.
    """

    def __init__(
        self,
        repository_name: str,
        operation: str,
        original_error: str
    ) -> None:
        super().__init__(
            message=f"Constraint violated and not declared on changeset: {original_error}",
            repository_name=repository_name,
            operation=operation,
            details={"original_error": original_error}
        )


class QueryError(BeepError):
    """Raised when a query execution fails."""

    def __init__(
        self,
        repository_name: str,
        operation: str,
        original_error: str
    ) -> None:
        super().__init__(
            message=f"Query failed: {original_error}",
            repository_name=repository_name,
            operation=operation,
            details={"original_error": original_error}
        )


class DatabaseConnectionError(BeepError):
    """Raised when the database connection fails."""

    def __init__(
        self,
        repository_name: str,
        operation: str,
        original_error: str
    ) -> None:
        super().__init__(
            message=f"Database connection failed: {original_error}",
            repository_name=repository_name,
            operation=operation,
            details={"original_error": original_error}
        )
