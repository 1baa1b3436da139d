"""
Beep Repo.

============================================================
PURPOSE
============================================================
Executes persistence operations for entity classes against a
SQLAlchemy session factory:
- Lookups (all, get, get_by and their raising variants)
- Writes driven by changesets (insert, update)
- Relationship preloading

============================================================
SESSION HANDLING
============================================================
Each call opens one session, commits if it wrote, and closes
it. Returned records are detached with their column
attributes loaded. Relationships are never lazy loaded after
the call returns; use preload() or the `preload` option.

============================================================
USAGE
============================================================
    from sqlalchemy import create_engine
    from sqlalchemy.orm import sessionmaker
    from beep import Repo

    engine = create_engine("sqlite+pysqlite:///app.db")
    repo = Repo(sessionmaker(bind=engine, expire_on_commit=False))

============================================================
"""

import logging
from dataclasses import replace
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple, Type, TypeVar, Union

from sqlalchemy import inspect, select
from sqlalchemy.exc import (
    IntegrityError,
    MultipleResultsFound,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.orm import Session, selectinload, sessionmaker
from sqlalchemy.orm.attributes import set_committed_value

from beep.associations import get_relationship
from beep.changeset import Changeset
from beep.exceptions import (
    ConstraintError,
    DatabaseConnectionError,
    MultipleResultsError,
    QueryError,
    RecordNotFoundError,
    StaleRecordError,
)
from beep.result import Result


T = TypeVar("T")

Clauses = Union[Mapping[str, Any], Iterable[Tuple[str, Any]]]


def _as_tuple(value: Union[str, Sequence[Any], None]) -> Tuple[Any, ...]:
    if value is None:
        return ()
    if isinstance(value, (str, bytes)) or not isinstance(value, (list, tuple, set, frozenset)):
        return (value,)
    return tuple(value)


class Repo:
    """
    Persistence gateway used by Entity classes.

    ============================================================
    RESPONSIBILITIES
    ============================================================
    - Runs every operation in its own short-lived session
    - Maps integrity errors onto declared changeset constraints
    - Wraps other database errors in beep exceptions
    - Logs every operation under "beep.repo.<name>"

    ============================================================
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        name: str = "repo"
    ) -> None:
        """
        Initialize the repo.

        Args:
            session_factory: SQLAlchemy sessionmaker (or any callable
                returning a Session usable as a context manager)
            name: Name for logging and error messages
        """
        self._session_factory = session_factory
        self._name = name
        self._logger = logging.getLogger(f"beep.repo.{name}")

    @property
    def name(self) -> str:
        return self._name

    @property
    def session_factory(self) -> sessionmaker:
        return self._session_factory

    def __repr__(self) -> str:
        return f"Repo(name={self._name!r})"

    # =========================================================
    # PROTECTED HELPER METHODS
    # =========================================================

    def _session(self) -> Session:
        return self._session_factory()

    def _handle_db_error(
        self,
        error: Exception,
        operation: str,
        context: Optional[dict] = None
    ) -> None:
        """
        Wrap a database error in a beep exception.

        Raises:
            DatabaseConnectionError: For OperationalError
            QueryError: For any other SQLAlchemyError
        """
        context = context or {}
        self._logger.error(
            f"Database error in {operation}: {error}",
            extra={"context": context},
            exc_info=True
        )

        if isinstance(error, OperationalError):
            raise DatabaseConnectionError(
                repository_name=self._name,
                operation=operation,
                original_error=str(error)
            ) from error

        raise QueryError(
            repository_name=self._name,
            operation=operation,
            original_error=str(error)
        ) from error

    def _constraint_failure(
        self,
        changeset: Changeset,
        error: IntegrityError,
        operation: str
    ) -> Result:
        """
        Turn an integrity error into a failure result.

        Raises:
            ConstraintError: If no declared constraint matches
        """
        message = str(error.orig) if error.orig is not None else str(error)
        constraint = changeset.constraint_for(message)
        if constraint is None:
            self._logger.error(f"Undeclared constraint violated in {operation}: {message}")
            raise ConstraintError(
                repository_name=self._name,
                operation=operation,
                original_error=message
            ) from error

        self._logger.info(
            f"{operation} rejected by {constraint.kind} constraint "
            f"{constraint.name} on {changeset.table_name}"
        )
        failed = replace(
            changeset,
            errors=changeset.errors + (
                (
                    constraint.field,
                    constraint.message,
                    {"constraint": constraint.kind, "constraint_name": constraint.name},
                ),
            )
        )
        return Result.failure(failed)

    def _loader_options(self, model: type, preload: Union[str, Sequence[str], None]) -> list:
        options = []
        for relation in _as_tuple(preload):
            prop = get_relationship(model, relation)
            options.append(selectinload(getattr(model, prop.key)))
        return options

    def _order_clauses(self, model: type, order_by: Any) -> list:
        if order_by is None:
            return list(inspect(model).primary_key)

        clauses = []
        for item in _as_tuple(order_by):
            if isinstance(item, str):
                descending = item.startswith("-")
                name = item.lstrip("-")
                if name not in inspect(model).column_attrs:
                    raise QueryError(
                        repository_name=self._name,
                        operation="all",
                        original_error=f"{model.__name__} has no column attribute {name!r} to order by"
                    )
                column = getattr(model, name)
                clauses.append(column.desc() if descending else column.asc())
            else:
                clauses.append(item)
        return clauses

    def _identity(self, entity: Any, operation: str) -> Tuple[Any, ...]:
        identity = inspect(entity).identity
        if identity is None:
            raise StaleRecordError(
                repository_name=self._name,
                model_name=type(entity).__name__,
                record_id=None,
                operation=operation
            )
        return identity

    # =========================================================
    # LOOKUPS
    # =========================================================

    def all(
        self,
        model: Type[T],
        *,
        order_by: Any = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        preload: Union[str, Sequence[str], None] = None,
        execution_options: Optional[dict] = None
    ) -> List[T]:
        """
        List records of a model.

        Ordered by primary key unless order_by is given. Strings
        in order_by name attributes; a leading "-" sorts descending.
        """
        stmt = select(model).order_by(*self._order_clauses(model, order_by))
        stmt = stmt.options(*self._loader_options(model, preload))
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset is not None:
            stmt = stmt.offset(offset)
        if execution_options:
            stmt = stmt.execution_options(**execution_options)

        with self._session() as session:
            try:
                records = list(session.scalars(stmt).all())
            except SQLAlchemyError as e:
                self._handle_db_error(e, "all", {"model": model.__name__})
                raise  # Never reached, but satisfies type checker

        self._logger.debug(f"Fetched {len(records)} {model.__name__} records")
        return records

    def get(
        self,
        model: Type[T],
        record_id: Any,
        *,
        preload: Union[str, Sequence[str], None] = None,
        execution_options: Optional[dict] = None
    ) -> Optional[T]:
        """Get a record by primary key, or None if it does not exist."""
        options = self._loader_options(model, preload)
        with self._session() as session:
            try:
                record = session.get(
                    model,
                    record_id,
                    options=options,
                    execution_options=execution_options or {}
                )
            except SQLAlchemyError as e:
                self._handle_db_error(e, "get", {"model": model.__name__, "id": str(record_id)})
                raise

        self._logger.debug(f"get {model.__name__} {record_id!r}: {'hit' if record is not None else 'miss'}")
        return record

    def get_or_raise(self, model: Type[T], record_id: Any, **options: Any) -> T:
        """
        Get a record by primary key.

        Raises:
            RecordNotFoundError: If the record does not exist
        """
        record = self.get(model, record_id, **options)
        if record is None:
            raise RecordNotFoundError(
                repository_name=self._name,
                model_name=model.__name__,
                criteria=record_id,
                operation="get"
            )
        return record

    def get_by(
        self,
        model: Type[T],
        clauses: Clauses,
        *,
        preload: Union[str, Sequence[str], None] = None,
        execution_options: Optional[dict] = None
    ) -> Optional[T]:
        """
        Get a single record matching equality clauses.

        Args:
            model: Mapped class
            clauses: Mapping or (field, value) pairs, ANDed together

        Returns:
            The record or None

        Raises:
            MultipleResultsError: If more than one record matches
        """
        criteria = dict(clauses)
        options = self._loader_options(model, preload)

        with self._session() as session:
            try:
                stmt = select(model).filter_by(**criteria).options(*options)
                if execution_options:
                    stmt = stmt.execution_options(**execution_options)
                record = session.scalars(stmt).one_or_none()
            except MultipleResultsFound:
                raise MultipleResultsError(
                    repository_name=self._name,
                    model_name=model.__name__,
                    criteria=criteria
                ) from None
            except SQLAlchemyError as e:
                self._handle_db_error(e, "get_by", {"model": model.__name__, "criteria": criteria})
                raise

        self._logger.debug(f"get_by {model.__name__} {criteria!r}: {'hit' if record is not None else 'miss'}")
        return record

    def get_by_or_raise(self, model: Type[T], clauses: Clauses, **options: Any) -> T:
        """
        Get a single record matching equality clauses.

        Raises:
            RecordNotFoundError: If no record matches
            MultipleResultsError: If more than one record matches
        """
        criteria = dict(clauses)
        record = self.get_by(model, criteria, **options)
        if record is None:
            raise RecordNotFoundError(
                repository_name=self._name,
                model_name=model.__name__,
                criteria=criteria,
                operation="get_by"
            )
        return record

    # =========================================================
    # WRITES
    # =========================================================

    def insert(self, changeset: Changeset) -> Result:
        """
        Insert the changeset's record with its changes applied.

        Returns:
            Result.success(record), or Result.failure(changeset) when
            the changeset is invalid or a declared constraint is hit

        Raises:
            ConstraintError: If an undeclared constraint is violated
        """
        changeset = replace(changeset, action="insert")
        if not changeset.valid:
            self._logger.debug(f"insert skipped, changeset invalid: {changeset.errors}")
            return Result.failure(changeset)

        record = changeset.apply_changes()
        with self._session() as session:
            try:
                session.add(record)
                session.commit()
                session.refresh(record)
            except IntegrityError as e:
                session.rollback()
                return self._constraint_failure(changeset, e, "insert")
            except SQLAlchemyError as e:
                session.rollback()
                self._handle_db_error(e, "insert", {"model": type(record).__name__})
                raise

        self._logger.debug(f"Inserted {type(record).__name__} {inspect(record).identity}")
        return Result.success(record)

    def insert_or_raise(self, changeset: Changeset) -> Any:
        """
        Insert, raising on failure.

        Raises:
            InvalidChangesetError: If the changeset is rejected
        """
        return self.insert(changeset).unwrap(self._name)

    def update(self, changeset: Changeset) -> Result:
        """
        Write the changeset's changes to its record's row.

        The record held by the changeset is not modified; the
        success value is a freshly loaded copy.

        Raises:
            StaleRecordError: If the row no longer exists
            ConstraintError: If an undeclared constraint is violated
        """
        changeset = replace(changeset, action="update")
        if not changeset.valid:
            self._logger.debug(f"update skipped, changeset invalid: {changeset.errors}")
            return Result.failure(changeset)
        if not changeset.changes:
            return Result.success(changeset.data)

        model = type(changeset.data)
        identity = self._identity(changeset.data, "update")
        with self._session() as session:
            try:
                record = session.get(model, identity)
                if record is None:
                    raise StaleRecordError(
                        repository_name=self._name,
                        model_name=model.__name__,
                        record_id=identity,
                        operation="update"
                    )
                changeset.apply_changes(record)
                session.commit()
                session.refresh(record)
            except IntegrityError as e:
                session.rollback()
                return self._constraint_failure(changeset, e, "update")
            except SQLAlchemyError as e:
                session.rollback()
                self._handle_db_error(e, "update", {"model": model.__name__, "id": str(identity)})
                raise

        self._logger.debug(f"Updated {model.__name__} {identity}: {sorted(changeset.changes)}")
        return Result.success(record)

    def update_or_raise(self, changeset: Changeset) -> Any:
        """
        Update, raising on failure.

        Raises:
            InvalidChangesetError: If the changeset is rejected
        """
        return self.update(changeset).unwrap(self._name)

    # =========================================================
    # RELATIONSHIPS
    # =========================================================

    def preload(self, entity: T, *relations: str) -> T:
        """
        Fetch relations and attach them to entity.

        The same entity object is returned with each relation
        loaded, so it can be read after the session is gone.

        Raises:
            AssociationError: If a relation name is unknown
            StaleRecordError: If the entity has no row
        """
        model = type(entity)
        options = self._loader_options(model, relations)
        identity = self._identity(entity, "preload")

        with self._session() as session:
            try:
                loaded = session.get(model, identity, options=options)
            except SQLAlchemyError as e:
                self._handle_db_error(e, "preload", {"model": model.__name__, "relations": relations})
                raise
            if loaded is None:
                raise StaleRecordError(
                    repository_name=self._name,
                    model_name=model.__name__,
                    record_id=identity,
                    operation="preload"
                )
            for relation in relations:
                set_committed_value(entity, relation, getattr(loaded, relation))

        self._logger.debug(f"Preloaded {', '.join(relations)} on {model.__name__} {identity}")
        return entity
