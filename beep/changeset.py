"""
Beep Changesets.

============================================================
PURPOSE
============================================================
A Changeset describes a pending write: the record it targets,
the attribute deltas, validation errors and the constraints
that the repo should translate into errors when the database
rejects the write.

============================================================
DESIGN
============================================================
- Every function returns a new Changeset, nothing is mutated
- Unknown attribute names become errors, not changes
- Constraints are declarations only; the database enforces
  them at commit time and the repo maps violations back

============================================================
"""

import re
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Tuple, Union

from sqlalchemy import inspect
from sqlalchemy.exc import NoInspectionAvailable


# A single error: (field, message, metadata)
ErrorEntry = Tuple[str, str, Mapping[str, Any]]

UNIQUE_MESSAGE = "has already been taken"
REQUIRED_MESSAGE = "can't be blank"
UNKNOWN_FIELD_MESSAGE = "is not a known field"

# Driver message fragments that identify a uniqueness violation
UNIQUE_MARKERS = ("unique constraint", "duplicate")

SQLITE_UNIQUE_FAILURE = re.compile(r"unique constraint failed:\s*(.+)")


# =============================================================
# CONSTRAINTS
# =============================================================

@dataclass(frozen=True)
class Constraint:
    """
    A database constraint declared on a changeset.

    When the database raises an integrity error that matches
    the constraint, the repo records `message` against the
    first field instead of raising.
    """

    kind: str
    """Constraint kind, currently always "unique"."""

    fields: Tuple[str, ...]
    """Columns covered by the constraint."""

    name: str
    """Constraint or index name as known to the database."""

    message: str = UNIQUE_MESSAGE
    """Error message recorded on violation."""

    @property
    def field(self) -> str:
        return self.fields[0]

    def matches(self, error_message: str, table_name: str) -> bool:
        """
        Check whether a driver error message refers to this constraint.

        The message must report a uniqueness failure. It then matches
        on the constraint name, the SQLite column list
        ("UNIQUE constraint failed: users.email", exact columns) or
        the PostgreSQL detail form ("Key (email)=(...)").
        """
        text = error_message.lower()
        if self.kind == "unique" and not any(marker in text for marker in UNIQUE_MARKERS):
            return False
        if self.name.lower() in text:
            return True

        sqlite = SQLITE_UNIQUE_FAILURE.search(text)
        if sqlite is not None:
            columns = {column.strip() for column in sqlite.group(1).split(",")}
            return columns == {f"{table_name}.{f}".lower() for f in self.fields}

        key = ", ".join(self.fields).lower()
        return f"key ({key})=" in text


# =============================================================
# CHANGESET
# =============================================================

@dataclass(frozen=True)
class Changeset:
    """
    Pending changes for one record.

    Build with change() rather than directly.
    """

    data: Any
    """The record the changes apply to."""

    changes: Dict[str, Any] = field(default_factory=dict)
    """Attribute name -> new value."""

    errors: Tuple[ErrorEntry, ...] = ()
    """Validation and constraint errors, in the order found."""

    constraints: Tuple[Constraint, ...] = ()
    """Constraints the repo maps back to errors."""

    action: Optional[str] = None
    """Repo action that last processed the changeset."""

    @property
    def valid(self) -> bool:
        return not self.errors

    @property
    def table_name(self) -> str:
        table = getattr(type(self.data), "__table__", None)
        if table is not None:
            return table.name
        return type(self.data).__name__.lower()

    def get_change(self, name: str, default: Any = None) -> Any:
        return self.changes.get(name, default)

    def get_field(self, name: str, default: Any = None) -> Any:
        """Return the pending value if changed, else the record's current value."""
        if name in self.changes:
            return self.changes[name]
        return getattr(self.data, name, default)

    def errors_on(self, name: str) -> list:
        """Error messages recorded for one field."""
        return [message for f, message, _ in self.errors if f == name]

    def constraint_for(self, error_message: str) -> Optional[Constraint]:
        for constraint in self.constraints:
            if constraint.matches(error_message, self.table_name):
                return constraint
        return None

    def apply_changes(self, target: Any = None) -> Any:
        """
        Copy the changes onto target (default: the changeset's data).

        Returns the target.
        """
        target = self.data if target is None else target
        for name, value in self.changes.items():
            setattr(target, name, value)
        return target


# =============================================================
# BUILDERS
# =============================================================

def _field_names(model: type) -> Tuple[str, ...]:
    try:
        mapper = inspect(model)
    except NoInspectionAvailable:
        return ()
    return tuple(attr.key for attr in mapper.column_attrs)


def change(
    data: Union[Changeset, Any],
    attributes: Optional[Mapping[str, Any]] = None
) -> Changeset:
    """
    Build a changeset for a record, or extend an existing one.

    Args:
        data: A mapped record instance or an existing Changeset
        attributes: Raw attribute mapping

    Returns:
        A new Changeset. Names that are not mapped columns of the
        record's class are recorded as errors.
    """
    if isinstance(data, Changeset):
        base = data
    else:
        base = Changeset(data=data)

    known = _field_names(type(base.data))
    changes = dict(base.changes)
    errors = list(base.errors)

    for name, value in (attributes or {}).items():
        name = str(name)
        if name not in known:
            errors.append((name, UNKNOWN_FIELD_MESSAGE, {"validation": "field"}))
            continue
        if getattr(base.data, name, None) == value:
            changes.pop(name, None)
        else:
            changes[name] = value

    return replace(base, changes=changes, errors=tuple(errors))


def add_error(changeset: Changeset, name: str, message: str, **meta: Any) -> Changeset:
    return replace(changeset, errors=changeset.errors + ((name, message, meta),))


def validate_required(changeset: Changeset, fields: Iterable[str]) -> Changeset:
    """Record an error for each field whose value is None or blank."""
    for name in fields:
        value = changeset.get_field(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            changeset = add_error(changeset, name, REQUIRED_MESSAGE, validation="required")
    return changeset


def unique_constraint(
    changeset: Changeset,
    fields: Union[str, Sequence[str]],
    name: Optional[str] = None,
    message: str = UNIQUE_MESSAGE
) -> Changeset:
    """
    Declare a unique constraint on the changeset.

    The constraint is checked by the database when the repo
    commits. A matching violation becomes an error on the
    first field rather than an exception.
    """
    if isinstance(fields, str):
        fields = (fields,)
    fields = tuple(fields)
    if not fields:
        raise ValueError("unique_constraint requires at least one field")

    name = name or "_".join((changeset.table_name,) + fields + ("index",))
    constraint = Constraint(kind="unique", fields=fields, name=name, message=message)
    return replace(changeset, constraints=changeset.constraints + (constraint,))
