import pytest
from pydantic import ValidationError

from errors import Conflict, InvalidID, NotFound
from schemas import DEVELOPER, MANAGER, PROJECT_LEAD, Membership

PROJECT = "65a1f0c2e4b0a1b2c3d4e5f6"
OTHER_PROJECT = "65a1f0c2e4b0a1b2c3d4e5f7"


def test_role_of_absent_is_none(memberships):
    assert memberships.role_of("alice", PROJECT) is None


def test_add_defaults_to_developer(memberships):
    membership = memberships.add(PROJECT, "bob")

    assert membership == Membership(project_id=PROJECT, user_id="bob", role=DEVELOPER)
    assert memberships.role_of("bob", PROJECT) == DEVELOPER


def test_add_duplicate_conflicts(memberships):
    memberships.add(PROJECT, "bob", MANAGER)

    with pytest.raises(Conflict):
        memberships.add(PROJECT, "bob", DEVELOPER)
    assert memberships.role_of("bob", PROJECT) == MANAGER


def test_unique_index_rejects_duplicate_rows(store, memberships):
    memberships.add(PROJECT, "bob")

    with pytest.raises(Conflict):
        store.insert_one("team", {"project_id": PROJECT, "user_id": "bob", "role": MANAGER})


def test_add_rejects_empty_user_id(memberships):
    with pytest.raises(InvalidID):
        memberships.add(PROJECT, "")


def test_set_role(memberships):
    memberships.add(PROJECT, "bob")

    memberships.set_role("bob", PROJECT, MANAGER)

    assert memberships.role_of("bob", PROJECT) == MANAGER


def test_set_role_without_membership(memberships):
    with pytest.raises(NotFound):
        memberships.set_role("bob", PROJECT, MANAGER)


def test_set_role_rejects_unknown_role(memberships):
    memberships.add(PROJECT, "alice", PROJECT_LEAD)

    with pytest.raises(ValidationError):
        memberships.set_role("alice", PROJECT, "Admin")
    assert memberships.role_of("alice", PROJECT) == PROJECT_LEAD


def test_all_roles_of(memberships):
    memberships.add(PROJECT, "alice", PROJECT_LEAD)
    memberships.add(OTHER_PROJECT, "alice", DEVELOPER)
    memberships.add(OTHER_PROJECT, "bob", PROJECT_LEAD)

    roles = {(m.project_id, m.role) for m in memberships.all_roles_of("alice")}

    assert roles == {(PROJECT, PROJECT_LEAD), (OTHER_PROJECT, DEVELOPER)}
    assert memberships.all_roles_of("nobody") == []


def test_remove(memberships):
    memberships.add(PROJECT, "alice", PROJECT_LEAD)
    memberships.add(PROJECT, "bob")

    memberships.remove("bob", PROJECT)

    assert memberships.role_of("bob", PROJECT) is None
    assert memberships.role_of("alice", PROJECT) == PROJECT_LEAD


def test_remove_last_member_conflicts(memberships):
    memberships.add(PROJECT, "alice", PROJECT_LEAD)

    with pytest.raises(Conflict):
        memberships.remove("alice", PROJECT)
    assert memberships.role_of("alice", PROJECT) == PROJECT_LEAD


def test_remove_non_member(memberships):
    memberships.add(PROJECT, "alice", PROJECT_LEAD)

    with pytest.raises(NotFound):
        memberships.remove("bob", PROJECT)


def test_remove_all_only_touches_one_project(memberships):
    memberships.add(PROJECT, "alice", PROJECT_LEAD)
    memberships.add(PROJECT, "bob")
    memberships.add(OTHER_PROJECT, "alice", PROJECT_LEAD)

    assert memberships.remove_all(PROJECT) == 2

    assert memberships.members_of(PROJECT) == []
    assert memberships.role_of("alice", OTHER_PROJECT) == PROJECT_LEAD


def test_restore(memberships):
    memberships.add(PROJECT, "alice", PROJECT_LEAD)
    memberships.add(PROJECT, "bob")
    removed = memberships.members_of(PROJECT)
    memberships.remove_all(PROJECT)

    memberships.restore(removed)

    assert memberships.role_of("alice", PROJECT) == PROJECT_LEAD
    assert memberships.role_of("bob", PROJECT) == DEVELOPER
