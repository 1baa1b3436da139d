"""
Tests for the Entity Mixin.

============================================================
PURPOSE
============================================================
End-to-end tests of the generated methods against an
in-memory SQLite database, covering:
1. Lookups (all, get, get_by and raising variants)
2. Inserts with unique constraint enforcement
3. Updates
4. Relation helpers (insert_<rel>, get_<rel>)
5. Class declaration errors

============================================================
"""

from dataclasses import FrozenInstanceError

import pytest
from unittest.mock import MagicMock, patch

from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.orm.exc import DetachedInstanceError

from beep import (
    AssociationError,
    ConfigurationError,
    ConstraintError,
    Entity,
    InvalidChangesetError,
    MultipleResultsError,
    RecordNotFoundError,
    Repo,
    Result,
    validate_required,
)
from tests.models import Post, Tag, User


# ============================================================
# LOOKUP TESTS
# ============================================================

class TestLookups:
    """Tests for all/get/get_by."""

    def test_get_returns_inserted_record(self, user):
        """get(id) after insert returns that record."""
        found = User.get(user.id)

        assert found is not None
        assert found.id == user.id
        assert found.email == "test@example.com"

    def test_get_absent_returns_none(self):
        assert User.get(999) is None

    def test_get_or_raise_absent_raises_not_found(self):
        with pytest.raises(RecordNotFoundError) as exc_info:
            User.get_or_raise(999)

        assert exc_info.value.model_name == "User"
        assert exc_info.value.criteria == 999

    def test_get_by_matches_clauses(self, user, other_user):
        found = User.get_by({"email": "other@example.com"})

        assert found.id == other_user.id

    def test_get_by_accepts_pairs(self, user):
        found = User.get_by([("email", "test@example.com"), ("name", "Test")])

        assert found.id == user.id

    def test_get_by_absent_returns_none(self, user):
        assert User.get_by({"email": "missing@example.com"}) is None

    def test_get_by_or_raise_absent_raises_not_found(self):
        with pytest.raises(RecordNotFoundError):
            User.get_by_or_raise({"email": "missing@example.com"})

    def test_get_by_multiple_matches_raises(self):
        User.insert_or_raise({"email": "a@example.com", "name": "Same"})
        User.insert_or_raise({"email": "b@example.com", "name": "Same"})

        with pytest.raises(MultipleResultsError):
            User.get_by({"name": "Same"})

    def test_all_is_ordered_and_repeatable(self):
        """Calling all() twice without writes gives identical results."""
        for email in ["c@example.com", "a@example.com", "b@example.com"]:
            User.insert_or_raise({"email": email})

        first = [u.email for u in User.all()]
        second = [u.email for u in User.all()]

        assert first == ["c@example.com", "a@example.com", "b@example.com"]
        assert first == second

    def test_all_passes_options(self):
        for email in ["c@example.com", "a@example.com", "b@example.com"]:
            User.insert_or_raise({"email": email})

        emails = [u.email for u in User.all(order_by="-email", limit=2)]

        assert emails == ["c@example.com", "b@example.com"]

    def test_all_empty(self):
        assert User.all() == []

    def test_get_with_preload_option(self, user, post):
        found = User.get(user.id, preload=["posts"])

        assert [p.id for p in found.posts] == [post.id]


# ============================================================
# INSERT TESTS
# ============================================================

class TestInsert:
    """Tests for insert and insert_or_raise."""

    def test_insert_success_reflects_attributes(self):
        result = User.insert({"email": "new@example.com", "name": "New"})

        assert isinstance(result, Result)
        assert result.ok
        assert result.value.id is not None
        assert result.value.email == "new@example.com"
        assert result.value.name == "New"

    def test_insert_duplicate_unique_field_fails(self, user):
        """Second insert with the same email fails on the email field."""
        result = User.insert({"email": "test@example.com"})

        assert not result.ok
        assert result.value is None
        assert result.changeset.errors_on("email") == ["has already been taken"]
        field, _, meta = result.errors[0]
        assert field == "email"
        assert meta["constraint"] == "unique"

    def test_insert_or_raise_duplicate_raises(self, user):
        with pytest.raises(InvalidChangesetError) as exc_info:
            User.insert_or_raise({"email": "test@example.com"})

        assert exc_info.value.changeset.errors_on("email")
        assert exc_info.value.operation == "insert"

    def test_failed_insert_leaves_table_unchanged(self, user):
        User.insert({"email": "test@example.com"})

        assert len(User.all()) == 1

    def test_insert_unknown_field_fails_without_database_write(self):
        result = User.insert({"email": "x@example.com", "nickname": "x"})

        assert not result.ok
        assert result.changeset.errors_on("nickname") == ["is not a known field"]
        assert User.all() == []

    def test_undeclared_unique_violation_raises(self):
        """A constraint the entity never declared is not turned into a result."""
        Tag.insert_or_raise({"label": "python"})

        with pytest.raises(ConstraintError):
            Tag.insert({"label": "python"})

    def test_missing_required_column_is_not_a_uniqueness_error(self):
        """email is NOT NULL; leaving it out must not read as a duplicate."""
        with pytest.raises(ConstraintError) as exc_info:
            User.insert({"name": "No Email"})

        assert "NOT NULL" in str(exc_info.value)
        assert User.all() == []

    def test_record_relations_not_loaded_after_insert(self, user):
        with pytest.raises(DetachedInstanceError):
            user.posts


# ============================================================
# UPDATE TESTS
# ============================================================

class TestUpdate:
    """Tests for update and update_or_raise."""

    def test_update_overwrites_given_fields_only(self, user):
        result = User.update(user, {"name": "Renamed"})

        assert result.ok
        assert result.value.name == "Renamed"
        assert result.value.email == "test@example.com"
        assert User.get(user.id).name == "Renamed"

    def test_update_does_not_modify_original_record(self, user):
        User.update(user, {"name": "Renamed"})

        assert user.name == "Test"

    def test_update_revalidates_uniqueness(self, user, other_user):
        result = User.update(other_user, {"email": "test@example.com"})

        assert not result.ok
        assert result.changeset.errors_on("email") == ["has already been taken"]
        assert User.get(other_user.id).email == "other@example.com"

    def test_update_or_raise_raises(self, user, other_user):
        with pytest.raises(InvalidChangesetError):
            User.update_or_raise(other_user, {"email": "test@example.com"})

    def test_update_or_raise_returns_record(self, user):
        updated = User.update_or_raise(user, {"email": "new@example.com"})

        assert updated.email == "new@example.com"

    def test_update_without_changes_returns_record(self, user):
        result = User.update(user, {"name": "Test"})

        assert result.ok
        assert result.value is user

    def test_update_accepts_custom_changeset(self, user):
        changeset = validate_required(User.change(user, {"name": "  "}), ["name"])

        result = User.update(changeset)

        assert not result.ok
        assert result.changeset.errors_on("name") == ["can't be blank"]
        assert User.get(user.id).name == "Test"

    def test_update_merges_attributes_into_changeset(self, user):
        changeset = User.change(user, {"name": "Step one"})

        updated = User.update_or_raise(changeset, {"email": "merged@example.com"})

        assert updated.name == "Step one"
        assert updated.email == "merged@example.com"


# ============================================================
# RELATION TESTS
# ============================================================

class TestRelations:
    """Tests for insert_<rel> and get_<rel>."""

    def test_generated_methods_exist(self):
        assert callable(User.insert_posts)
        assert callable(User.insert_posts_or_raise)
        assert callable(User.get_posts)
        assert not hasattr(Post, "insert_posts")

    def test_insert_related_links_to_parent(self, user):
        result = User.insert_posts(user, {"title": "First"})

        assert result.ok
        assert result.value.user_id == user.id
        assert isinstance(result.value, Post)

    def test_get_related_returns_children(self, user, post):
        posts = User.get_posts(user)

        assert [p.id for p in posts] == [post.id]
        assert posts[0].title == "Hello World"

    def test_get_related_attaches_collection_to_parent(self, user, post):
        User.get_posts(user)

        assert [p.id for p in user.posts] == [post.id]

    def test_get_related_only_returns_own_children(self, user, other_user, post):
        User.insert_posts_or_raise(other_user, {"title": "Elsewhere"})

        assert [p.title for p in User.get_posts(user)] == ["Hello World"]

    def test_get_related_empty(self, user):
        assert User.get_posts(user) == []

    def test_insert_related_uses_child_unique_fields(self, user, post):
        """Post declares slug as unique; the duplicate fails on slug."""
        result = User.insert_posts(user, {"title": "Again", "slug": "hello-world"})

        assert not result.ok
        assert result.changeset.errors_on("slug") == ["has already been taken"]
        assert [c.fields for c in result.changeset.constraints] == [("slug",)]

    def test_insert_related_or_raise_raises(self, user, post):
        with pytest.raises(InvalidChangesetError):
            User.insert_posts_or_raise(user, {"title": "Again", "slug": "hello-world"})


# ============================================================
# DECLARATION TESTS
# ============================================================

class TestDeclaration:
    """Tests for class declaration and configuration."""

    def test_unique_fields_exposed(self):
        assert User.get_unique_fields() == ("email",)
        assert Post.get_unique_fields() == ("slug",)
        assert Tag.get_unique_fields() == ()

    def test_config_is_immutable(self):
        config = User.__beep_config__

        assert config.related == ("posts",)
        with pytest.raises(FrozenInstanceError):
            config.unique = ("name",)

    def test_unique_without_repo_raises(self):
        with pytest.raises(ConfigurationError):
            class Broken(Entity, unique=["email"]):
                pass

    def test_unconfigured_class_raises_on_use(self):
        class Abstract(Entity):
            pass

        assert Abstract.get_unique_fields() == ()
        with pytest.raises(ConfigurationError):
            Abstract.all()

    def test_invalid_related_name_raises(self, repo):
        with pytest.raises(ConfigurationError):
            class Broken(Entity, repo=repo, related=["not-a-name"]):
                pass

    def test_related_name_collision_raises(self, repo):
        with pytest.raises(ConfigurationError):
            class Broken(Entity, repo=repo, related=["by"]):
                pass

    def test_unknown_relationship_fails_at_mapper_configuration(self, repo):
        class OtherBase(DeclarativeBase):
            pass

        class Author(OtherBase, Entity, repo=repo, related=["books"]):
            __tablename__ = "authors"

            id: Mapped[int] = mapped_column(primary_key=True)

        try:
            with pytest.raises(AssociationError) as exc_info:
                OtherBase.registry.configure()
            assert exc_info.value.relation == "books"
        finally:
            OtherBase.registry.dispose()

    def test_known_relationship_passes_mapper_configuration(self, repo):
        class OtherBase(DeclarativeBase):
            pass

        class Shelf(OtherBase, Entity, repo=repo, related=["books"]):
            __tablename__ = "shelves"

            id: Mapped[int] = mapped_column(primary_key=True)
            books: Mapped[list["Book"]] = relationship()

        class Book(OtherBase, Entity, repo=repo):
            __tablename__ = "books"

            id: Mapped[int] = mapped_column(primary_key=True)
            shelf_id: Mapped[int] = mapped_column(ForeignKey("shelves.id"))
            title: Mapped[str] = mapped_column(String(50))

        try:
            OtherBase.registry.configure()
        finally:
            OtherBase.registry.dispose()


# ============================================================
# DELEGATION TESTS
# ============================================================

@pytest.fixture
def mock_repo():
    repo = MagicMock(spec=Repo)
    repo.name = "mock"
    return repo


class TestDelegation:
    """Generated methods pass their arguments through to the repo."""

    def test_lookups_pass_options_through(self, mock_repo):
        class Widget(Entity, repo=mock_repo):
            pass

        Widget.all(order_by="-id", limit=5)
        Widget.get(1, preload=["parts"])
        Widget.get_or_raise(2)
        Widget.get_by({"code": "x"}, execution_options={"timeout": 5})
        Widget.get_by_or_raise({"code": "y"})

        mock_repo.all.assert_called_once_with(Widget, order_by="-id", limit=5)
        mock_repo.get.assert_called_once_with(Widget, 1, preload=["parts"])
        mock_repo.get_or_raise.assert_called_once_with(Widget, 2)
        mock_repo.get_by.assert_called_once_with(Widget, {"code": "x"}, execution_options={"timeout": 5})
        mock_repo.get_by_or_raise.assert_called_once_with(Widget, {"code": "y"})

    def test_insert_declares_each_unique_field(self, mock_repo):
        class Widget(Entity, repo=mock_repo, unique=["code", "serial"]):
            pass

        Widget.insert({})

        changeset = mock_repo.insert.call_args[0][0]
        assert [c.fields for c in changeset.constraints] == [("code",), ("serial",)]
        assert all(c.kind == "unique" for c in changeset.constraints)

    def test_related_insert_uses_child_configuration(self, mock_repo):
        class Part(Entity, repo=mock_repo, unique=["sku"]):
            pass

        class Widget(Entity, repo=mock_repo, unique=["code"], related=["parts"]):
            pass

        with patch("beep.entity.build_assoc", return_value=Part()) as build_assoc:
            Widget.insert_parts_or_raise(Widget(), {})

        build_assoc.assert_called_once()
        changeset = mock_repo.insert_or_raise.call_args[0][0]
        assert [c.fields for c in changeset.constraints] == [("sku",)]

    def test_related_insert_requires_entity_child(self, mock_repo):
        class Widget(Entity, repo=mock_repo, related=["parts"]):
            pass

        with patch("beep.entity.build_assoc", return_value=object()):
            with pytest.raises(ConfigurationError):
                Widget.insert_parts(Widget(), {})

    def test_get_related_preloads(self, mock_repo):
        class Widget(Entity, repo=mock_repo, related=["parts"]):
            pass

        parent = Widget()
        mock_repo.preload.return_value = MagicMock(parts=("a", "b"))

        assert Widget.get_parts(parent) == ["a", "b"]
        mock_repo.preload.assert_called_once_with(parent, "parts")
