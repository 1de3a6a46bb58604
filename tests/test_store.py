import json

import pytest

from permitdesk.store import Database, Permit


@pytest.fixture
def db(tmp_path):
    database = Database(tmp_path / "data")
    yield database
    database.close()


def make_permit(**overrides):
    values = {"permit_type": "Building", "holder_name": "Alice"}
    values.update(overrides)
    return Permit(**values)


def test_database_file_created(tmp_path):
    data_dir = tmp_path / "nested" / "data"
    with Database(data_dir) as database:
        assert database.count_permits() == 0
    assert (data_dir / "permit.db").is_file()


def test_create_and_get_round_trip(db):
    created = db.create_permit(
        make_permit(holder_email="alice@example.com", cost=12.5, status="Active")
    )
    assert created.id.isdigit()
    assert created.created_at.endswith("Z")
    fetched = db.get_permit(created.id)
    assert fetched == created


def test_create_assigns_unique_ids(db):
    first = db.create_permit(make_permit())
    second = db.create_permit(make_permit())
    assert first.id != second.id
    assert db.count_permits() == 2


def test_get_missing_returns_none(db):
    assert db.get_permit("missing") is None


def test_list_contains_all_sorted_desc(db):
    created = [db.create_permit(make_permit(holder_name=name)) for name in ("A", "B", "C")]
    listed = db.list_permits()
    assert {p.id for p in listed} == {p.id for p in created}
    stamps = [p.created_at for p in listed]
    assert stamps == sorted(stamps, reverse=True)


def test_update_changes_fields_but_not_created_at(db):
    created = db.create_permit(make_permit())
    changed = Permit(
        id=created.id,
        permit_type="Fishing",
        holder_name="Bob",
        status="Expired",
        cost=3.0,
        created_at="ignored",
    )
    db.update_permit(changed)
    fetched = db.get_permit(created.id)
    assert fetched.permit_type == "Fishing"
    assert fetched.holder_name == "Bob"
    assert fetched.status == "Expired"
    assert fetched.cost == 3.0
    assert fetched.created_at == created.created_at


def test_delete(db):
    created = db.create_permit(make_permit())
    db.delete_permit(created.id)
    assert db.get_permit(created.id) is None
    assert db.count_permits() == 0


def test_search_by_query_is_case_insensitive(db):
    wanted = db.create_permit(make_permit(notes="Harbour dock"))
    db.create_permit(make_permit(notes="Garage"))
    found = db.search_permits("harbour", {})
    assert [p.id for p in found] == [wanted.id]


def test_search_by_status_filter(db):
    active = db.create_permit(make_permit(status="Active"))
    db.create_permit(make_permit(status="Revoked"))
    found = db.search_permits("", {"status": "Active"})
    assert [p.id for p in found] == [active.id]


def test_search_without_criteria_returns_everything(db):
    db.create_permit(make_permit())
    db.create_permit(make_permit())
    assert len(db.search_permits("", None)) == db.count_permits()


def test_extras_default_and_round_trip(db):
    assert db.get_extras("permits", "1") == "{}"
    db.set_extras("permits", "1", '{"color": "red"}')
    assert json.loads(db.get_extras("permits", "1")) == {"color": "red"}


def test_extras_upsert_and_empty(db):
    db.set_extras("permits", "1", '{"a": 1}')
    db.set_extras("permits", "1", '{"a": 2}')
    assert json.loads(db.get_extras("permits", "1")) == {"a": 2}
    db.set_extras("permits", "1", "")
    assert db.get_extras("permits", "1") == "{}"


def test_all_extras_and_delete(db):
    db.set_extras("permits", "1", '{"a": 1}')
    db.set_extras("permits", "2", '{"b": 2}')
    db.set_extras("other", "3", '{"c": 3}')
    assert db.all_extras("permits") == {"1": '{"a": 1}', "2": '{"b": 2}'}
    db.delete_extras("permits", "1")
    assert set(db.all_extras("permits")) == {"2"}


def test_permit_dict_round_trip():
    permit = make_permit(id="7", cost=4.25, notes="n")
    assert Permit.from_dict(permit.to_dict()) == permit


def test_from_dict_ignores_wrong_types():
    permit = Permit.from_dict({"permit_type": 5, "holder_name": "Alice", "cost": "9"})
    assert permit.permit_type == ""
    assert permit.holder_name == "Alice"
    assert permit.cost == 0.0


def test_from_dict_accepts_integer_cost():
    permit = Permit.from_dict({"cost": 3})
    assert permit.cost == 3.0
    assert isinstance(permit.cost, float)