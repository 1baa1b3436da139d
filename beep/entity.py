"""
Beep Entity Mixin.

============================================================
PURPOSE
============================================================
Adds common repo methods to a SQLAlchemy mapped class so that
application code can write

    user = User.insert_or_raise({"email": "test@example.com"})
    user = User.update_or_raise(user, {"email": "hello@example.com"})
    user = User.get(1)
    user = User.get_by({"email": "hello@example.com"})
    users = User.all()

instead of building changesets and driving a session by hand.

============================================================
METHODS
============================================================
Always added:
- all, get(_or_raise), get_by(_or_raise)
- insert(_or_raise), update(_or_raise)
- get_unique_fields, apply_unique_constraints, change

For each name in `related` (e.g. "posts"):
- insert_posts(_or_raise)(parent, attributes)
- get_posts(parent)

The non-raising writes return a Result; the *_or_raise
variants return the record or raise InvalidChangesetError.

============================================================
USAGE
============================================================
    class User(Base, Entity, repo=repo, unique=["email"], related=["posts"]):
        __tablename__ = "users"

        id: Mapped[int] = mapped_column(primary_key=True)
        email: Mapped[str] = mapped_column(unique=True)
        posts: Mapped[List["Post"]] = relationship(back_populates="user")

    result = User.insert({"email": "test@example.com"})
    result = User.insert({"email": "test@example.com"})
    result.ok                        # False
    result.changeset.errors_on("email")  # ["has already been taken"]

    post = User.insert_posts_or_raise(user, {"title": "Hello World"})
    posts = User.get_posts(user)

Custom changesets go through update() as well:

    User.update(User.registration_changeset(user, data))

============================================================
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Mapping, Optional, Sequence, Tuple, Union

from sqlalchemy import event, inspect

from beep.associations import build_assoc
from beep.changeset import Changeset, change as build_change, unique_constraint
from beep.exceptions import AssociationError, ConfigurationError
from beep.repo import Clauses, Repo
from beep.result import Result


logger = logging.getLogger(__name__)

Attributes = Optional[Mapping[str, Any]]


# =============================================================
# CONFIGURATION
# =============================================================

@dataclass(frozen=True)
class EntityConfig:
    """
    Options an Entity class was declared with.

    Fixed at class creation; stored on the class as
    __beep_config__.
    """

    repo: Repo
    """Repo that executes every generated method."""

    unique: Tuple[str, ...] = ()
    """Fields declared as unique constraints on insert/update."""

    related: Tuple[str, ...] = ()
    """Relationship names that get insert_<rel>/get_<rel> methods."""


def _names(value: Union[str, Sequence[str], None]) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(str(name) for name in value)


def relation_method_names(relation: str) -> Tuple[str, str, str]:
    """Names of the methods generated for one relation."""
    return (f"insert_{relation}", f"insert_{relation}_or_raise", f"get_{relation}")


# =============================================================
# RELATION METHOD GENERATION
# =============================================================

def _related_changeset(
    owner: type,
    parent: Any,
    relation: str,
    attributes: Attributes
) -> Changeset:
    child = build_assoc(parent, relation)
    child_class = type(child)
    if not issubclass(child_class, Entity):
        raise ConfigurationError(
            owner.__name__,
            f"{child_class.__name__} (target of {relation!r}) does not use Entity"
        )
    return owner.apply_unique_constraints(
        build_change(child, attributes),
        child_class.get_unique_fields()
    )


def _relation_methods(relation: str) -> Tuple[Callable, Callable, Callable]:
    def insert_related(cls, parent: Any, attributes: Attributes = None) -> Result:
        changeset = _related_changeset(cls, parent, relation, attributes)
        return cls._config().repo.insert(changeset)

    def insert_related_or_raise(cls, parent: Any, attributes: Attributes = None) -> Any:
        changeset = _related_changeset(cls, parent, relation, attributes)
        return cls._config().repo.insert_or_raise(changeset)

    def get_related(cls, parent: Any) -> List[Any]:
        loaded = cls._config().repo.preload(parent, relation)
        return list(getattr(loaded, relation))

    insert_related.__doc__ = (
        f"Insert a record linked to parent through {relation!r}, "
        f"enforcing the child class's unique fields."
    )
    insert_related_or_raise.__doc__ = f"Like insert_{relation}, raising InvalidChangesetError on failure."
    get_related.__doc__ = f"Preload {relation!r} on parent and return it as a list."
    return insert_related, insert_related_or_raise, get_related


def _define_relation_methods(cls: type, relation: str) -> None:
    if not relation.isidentifier():
        raise ConfigurationError(cls.__name__, f"related name {relation!r} is not a valid identifier")

    names = relation_method_names(relation)
    for name in names:
        existing = getattr(cls, name, None)
        if existing is not None and not getattr(existing, "__beep_generated__", False):
            raise ConfigurationError(
                cls.__name__,
                f"related name {relation!r} would replace existing attribute {name!r}"
            )

    for name, method in zip(names, _relation_methods(relation)):
        method.__name__ = name
        method.__qualname__ = f"{cls.__qualname__}.{name}"
        method.__beep_generated__ = True
        setattr(cls, name, classmethod(method))


def _check_related(mapper: Any, class_: type) -> None:
    config = class_.__dict__.get("__beep_config__")
    if config is None:
        return
    for relation in config.related:
        if relation not in mapper.relationships:
            raise AssociationError(
                model_name=class_.__name__,
                relation=relation,
                reason=f"{class_.__name__} declares related={relation!r} but has no such relationship"
            )


# =============================================================
# MIXIN
# =============================================================

class Entity:
    """
    Mixin adding repo methods to a mapped class.

    Options are passed as class keyword arguments:
        repo: Repo instance (required for concrete classes)
        unique: field names to enforce as unique on insert/update
        related: one-to-many relationship names

    A subclass declared without any options inherits its
    parent's configuration, or stays unconfigured if it has none.
    """

    __beep_config__ = None

    def __init_subclass__(
        cls,
        repo: Optional[Repo] = None,
        unique: Union[str, Sequence[str], None] = None,
        related: Union[str, Sequence[str], None] = None,
        **kwargs: Any
    ) -> None:
        super().__init_subclass__(**kwargs)

        unique = _names(unique)
        related = _names(related)
        if repo is None:
            if unique or related:
                raise ConfigurationError(cls.__name__, "repo is required when unique or related is given")
            return

        for relation in related:
            _define_relation_methods(cls, relation)

        cls.__beep_config__ = EntityConfig(repo=repo, unique=unique, related=related)
        if related and inspect(cls, raiseerr=False) is not None:
            event.listen(cls, "mapper_configured", _check_related)

        logger.debug(
            f"Configured {cls.__name__} with repo={repo.name} "
            f"unique={list(unique)} related={list(related)}"
        )

    @classmethod
    def _config(cls) -> EntityConfig:
        config = cls.__beep_config__
        if config is None:
            raise ConfigurationError(cls.__name__, "no repo configured; declare the class with repo=...")
        return config

    # =========================================================
    # CONSTRAINTS AND CHANGESETS
    # =========================================================

    @classmethod
    def get_unique_fields(cls) -> Tuple[str, ...]:
        """Unique fields this class was declared with."""
        config = cls.__beep_config__
        return config.unique if config is not None else ()

    @classmethod
    def apply_unique_constraints(
        cls,
        changeset: Changeset,
        fields: Optional[Sequence[str]] = None
    ) -> Changeset:
        """
        Declare a unique constraint for each field, in order.

        Defaults to this class's own unique fields.
        """
        if fields is None:
            fields = cls.get_unique_fields()
        for field in fields:
            changeset = unique_constraint(changeset, [field])
        return changeset

    @classmethod
    def change(cls, record: Union[Changeset, Any], attributes: Attributes = None) -> Changeset:
        return build_change(record, attributes)

    # =========================================================
    # LOOKUPS
    # =========================================================

    @classmethod
    def all(cls, **options: Any) -> List[Any]:
        return cls._config().repo.all(cls, **options)

    @classmethod
    def get(cls, record_id: Any, **options: Any) -> Optional[Any]:
        return cls._config().repo.get(cls, record_id, **options)

    @classmethod
    def get_or_raise(cls, record_id: Any, **options: Any) -> Any:
        return cls._config().repo.get_or_raise(cls, record_id, **options)

    @classmethod
    def get_by(cls, clauses: Clauses, **options: Any) -> Optional[Any]:
        return cls._config().repo.get_by(cls, clauses, **options)

    @classmethod
    def get_by_or_raise(cls, clauses: Clauses, **options: Any) -> Any:
        return cls._config().repo.get_by_or_raise(cls, clauses, **options)

    # =========================================================
    # WRITES
    # =========================================================

    @classmethod
    def insert(cls, attributes: Attributes = None) -> Result:
        """Insert a new record built from attributes."""
        changeset = cls.apply_unique_constraints(build_change(cls(), attributes))
        return cls._config().repo.insert(changeset)

    @classmethod
    def insert_or_raise(cls, attributes: Attributes = None) -> Any:
        changeset = cls.apply_unique_constraints(build_change(cls(), attributes))
        return cls._config().repo.insert_or_raise(changeset)

    @classmethod
    def update(cls, record: Union[Changeset, Any], attributes: Attributes = None) -> Result:
        """
        Update record (or an existing changeset) with attributes.

        Fields absent from attributes are left untouched.
        """
        changeset = cls.apply_unique_constraints(build_change(record, attributes))
        return cls._config().repo.update(changeset)

    @classmethod
    def update_or_raise(cls, record: Union[Changeset, Any], attributes: Attributes = None) -> Any:
        changeset = cls.apply_unique_constraints(build_change(record, attributes))
        return cls._config().repo.update_or_raise(changeset)
