"""
Beep Result Type.

Tagged outcome of a non-raising write: either a success holding
the persisted record, or a failure holding the rejected changeset.
"""

from dataclasses import dataclass
from typing import Any, Generic, Optional, Tuple, TypeVar

from beep.changeset import Changeset, ErrorEntry
from beep.exceptions import InvalidChangesetError


T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    """
    Outcome of insert/update.

    Usage:
        result = User.insert({"email": "a@example.com"})
        if result.ok:
            user = result.value
        else:
            print(result.changeset.errors)
    """

    ok: bool
    value: Optional[T] = None
    changeset: Optional[Changeset] = None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, changeset: Changeset) -> "Result[Any]":
        return cls(ok=False, changeset=changeset)

    @property
    def errors(self) -> Tuple[ErrorEntry, ...]:
        if self.changeset is None:
            return ()
        return self.changeset.errors

    def unwrap(self, repository_name: str = "result") -> T:
        """Return the value, or raise InvalidChangesetError on failure."""
        if self.ok:
            return self.value
        raise InvalidChangesetError(
            repository_name=repository_name,
            operation=self.changeset.action or "unwrap",
            changeset=self.changeset
        )
