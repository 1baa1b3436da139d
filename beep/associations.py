"""
Beep Associations.

Relationship lookup and child construction for one-to-many
relations declared with sqlalchemy.orm.relationship().
"""

import logging
from typing import Any

from sqlalchemy import inspect
from sqlalchemy.exc import NoInspectionAvailable
from sqlalchemy.orm import MANYTOONE, RelationshipProperty

from beep.exceptions import AssociationError


logger = logging.getLogger(__name__)


def get_relationship(model: type, name: str) -> RelationshipProperty:
    """
    Look up a relationship on a mapped class.

    Raises:
        AssociationError: If the class is not mapped or has no
            relationship with that name
    """
    try:
        mapper = inspect(model)
    except NoInspectionAvailable:
        raise AssociationError(
            model_name=model.__name__,
            relation=name,
            reason=f"{model.__name__} is not a mapped class"
        ) from None

    if name not in mapper.relationships:
        raise AssociationError(model_name=model.__name__, relation=name)
    return mapper.relationships[name]


def build_assoc(parent: Any, name: str) -> Any:
    """
    Build a new child record linked to parent through relation `name`.

    The child's foreign key attributes are copied from the
    parent's referenced attributes; the relationship attribute
    itself is left untouched so the parent is not modified.

    Raises:
        AssociationError: If the relation is unknown or goes
            through a secondary table
    """
    parent_class = type(parent)
    prop = get_relationship(parent_class, name)

    if prop.direction is MANYTOONE:
        raise AssociationError(
            model_name=parent_class.__name__,
            relation=name,
            reason=f"{parent_class.__name__}.{name} is many-to-one; build the parent instead"
        )
    if prop.secondary is not None:
        raise AssociationError(
            model_name=parent_class.__name__,
            relation=name,
            reason=f"{parent_class.__name__}.{name} uses a secondary table and cannot be built directly"
        )

    parent_mapper = inspect(parent_class)
    child_mapper = prop.mapper
    child = child_mapper.class_()

    for parent_column, child_column in prop.local_remote_pairs:
        parent_key = parent_mapper.get_property_by_column(parent_column).key
        child_key = child_mapper.get_property_by_column(child_column).key
        setattr(child, child_key, getattr(parent, parent_key))

    logger.debug(f"Built {child_mapper.class_.__name__} for {parent_class.__name__}.{name}")
    return child
