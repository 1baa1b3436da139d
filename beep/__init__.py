"""
Beep Package.

Adds common repo methods (insert, update, get, get_by, all and
relation helpers) to SQLAlchemy mapped classes.

Modules:
- entity: the Entity mixin
- repo: session-per-call persistence gateway
- changeset: pending changes, errors and constraints
- associations: relationship lookup and child construction
- result: success/failure values
- engine: engine and repo construction from environment
- exceptions: error hierarchy
"""

from beep.changeset import (
    Changeset,
    Constraint,
    add_error,
    change,
    unique_constraint,
    validate_required,
)
from beep.entity import Entity, EntityConfig
from beep.exceptions import (
    AssociationError,
    BeepError,
    ConfigurationError,
    ConstraintError,
    DatabaseConnectionError,
    InvalidChangesetError,
    MultipleResultsError,
    QueryError,
    RecordNotFoundError,
    StaleRecordError,
)
from beep.repo import Repo
from beep.result import Result

__version__ = "0.1.0"

__all__ = [
    # Core
    "Entity",
    "EntityConfig",
    "Repo",
    "Result",
    # Changesets
    "Changeset",
    "Constraint",
    "add_error",
    "change",
    "unique_constraint",
    "validate_required",
    # Exceptions
    "AssociationError",
    "BeepError",
    "ConfigurationError",
    "ConstraintError",
    "DatabaseConnectionError",
    "InvalidChangesetError",
    "MultipleResultsError",
    "QueryError",
    "RecordNotFoundError",
    "StaleRecordError",
]
