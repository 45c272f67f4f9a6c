"""
Repository tests: CRUD pipeline, audit timestamps, soft delete and querying
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone

import pytest

from dynarepo import (
    FilterSpec, InvalidError, MemoryStore, ModelInvalidError, NotFoundError, Operation,
    ProjectionSpec, Repository, RepositoryConfig, ResolutionError, SchemaRegistry, SortSpec, Stages
)

from .entities import Address, Bookmark, Company, Employee, Tag

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class Ticker:
    """Clock returning T0, T0 + 1h, T0 + 2h, ..."""

    def __init__(self):
        self.calls = 0

    def __call__(self) -> datetime:
        value = T0 + timedelta(hours=self.calls)
        self.calls += 1
        return value


def naive(value: datetime) -> datetime:
    # SQLite drops the timezone on the way back
    return value.replace(tzinfo=None)


async def find_one(repository, name, **kwargs):
    rows = await repository.find(FilterSpec(repository.entity_class).equal("name", name), **kwargs)
    assert len(rows) == 1
    return rows[0]


@pytest.mark.asyncio
class TestAdd:

    async def test_add_stamps_created_at(self, stores):
        repository = stores.repository(Company, clock=Ticker())
        company = Company(name="Acme", updated_at=T0, deleted_at=T0)
        await repository.add(company)
        await repository.save_changes()

        stored = await find_one(stores.repository(Company), "Acme")
        assert naive(stored.created_at) == naive(T0)
        assert stored.updated_at is None
        assert stored.deleted_at is None
        assert stored.id is not None

    async def test_add_is_visible_to_others_after_save(self, stores):
        repository = stores.repository(Company)
        await repository.add(Company(name="Acme"))

        assert await stores.repository(Company).count() == 0
        assert await repository.count() == 1

        await repository.save_changes()
        assert await stores.repository(Company).count() == 1

    async def test_invalid_model_is_rejected_before_staging(self, stores):
        repository = stores.repository(Company)
        with pytest.raises(ModelInvalidError) as exc_info:
            await repository.add(Company(name=None))
        assert exc_info.value.messages[0].startswith("name:")

        await repository.save_changes()
        assert await stores.repository(Company).count() == 0

    async def test_duplicate_id_is_invalid(self, stores):
        repository = stores.repository(Company)
        await repository.add(Company(id=1, name="Acme"))
        await repository.save_changes()

        repository = stores.repository(Company)
        with pytest.raises(InvalidError):
            await repository.add(Company(id=1, name="Copy"))
            await repository.save_changes()

    async def test_entity_of_another_type_is_invalid(self, stores):
        with pytest.raises(InvalidError):
            await stores.repository(Company).add(Employee(name="Ada"))

    async def test_type_without_timestamps(self, stores):
        repository = stores.repository(Tag)
        tag = await repository.add(Tag(label="urgent"))
        await repository.save_changes()
        assert (await stores.repository(Tag).get(tag.id)).label == "urgent"

        with pytest.raises(InvalidError):
            await stores.repository(Tag).soft_delete_by_id(tag.id)


@pytest.mark.asyncio
class TestUpdate:

    async def test_update_stamps_updated_at_and_keeps_created_at(self, stores):
        clock = Ticker()
        repository = stores.repository(Company, clock=clock)
        company = await repository.add(Company(name="Acme"))
        await repository.save_changes()

        repository = stores.repository(Company, clock=clock)
        await repository.update(Company(id=company.id, name="Acme Corp"))
        await repository.save_changes()

        stored = await stores.repository(Company).get(company.id)
        assert stored.name == "Acme Corp"
        assert naive(stored.created_at) == naive(T0)
        assert naive(stored.updated_at) == naive(T0 + timedelta(hours=1))

    async def test_update_of_loaded_entity(self, seeded):
        repository = seeded.repository(Employee)
        ada = await find_one(repository, "Ada")
        ada.salary = 5500
        await repository.update(ada)
        await repository.save_changes()

        assert (await find_one(seeded.repository(Employee), "Ada")).salary == 5500

    async def test_update_of_missing_entity(self, stores):
        repository = stores.repository(Company)
        with pytest.raises(NotFoundError):
            await repository.update(Company(id=42, name="Ghost"))
        await repository.save_changes()
        assert await stores.repository(Company).count(include_deleted=True) == 0

    async def test_update_requires_an_id(self, stores):
        with pytest.raises(InvalidError):
            await stores.repository(Company).update(Company(name="Anonymous"))


@pytest.mark.asyncio
class TestDelete:

    async def test_delete_removes_the_row(self, seeded):
        repository = seeded.repository(Employee)
        ada = await find_one(repository, "Ada")
        await repository.delete(ada)
        await repository.save_changes()

        fresh = seeded.repository(Employee)
        assert not await fresh.exists_by_id(ada.id)
        assert await fresh.count(include_deleted=True) == 4

    async def test_delete_by_id(self, seeded):
        repository = seeded.repository(Employee)
        alan = await find_one(repository, "Alan")
        await repository.delete_by_id(alan.id)
        await repository.save_changes()

        with pytest.raises(NotFoundError):
            await seeded.repository(Employee).get(alan.id)

    async def test_delete_by_missing_id(self, seeded):
        with pytest.raises(NotFoundError) as exc_info:
            await seeded.repository(Employee).delete_by_id(999)
        assert exc_info.value.message == "Employee 999 not found"


@pytest.mark.asyncio
class TestSoftDelete:

    async def test_soft_deleted_row_is_hidden_but_kept(self, seeded):
        repository = seeded.repository(Employee)
        margaret = await find_one(repository, "Margaret", include_deleted=True)

        with pytest.raises(NotFoundError):
            await repository.get(margaret.id)
        assert not await repository.exists_by_id(margaret.id)

        stored = await seeded.open().get(Employee, margaret.id)
        assert stored is not None
        assert stored.deleted_at is not None
        assert stored.is_deleted

    async def test_queries_hide_soft_deleted_rows(self, seeded):
        repository = seeded.repository(Employee)
        managers = FilterSpec(Employee).equal("name", "Margaret")

        assert await repository.count() == 4
        assert await repository.count(include_deleted=True) == 5
        assert await repository.find(managers) == []
        assert not await repository.exists(managers)
        assert await repository.exists(managers, include_deleted=True)

    async def test_soft_deleted_rows_cannot_be_changed(self, seeded):
        repository = seeded.repository(Employee)
        margaret = await find_one(repository, "Margaret", include_deleted=True)

        with pytest.raises(NotFoundError):
            await repository.update(margaret)
        with pytest.raises(NotFoundError):
            await repository.soft_delete_by_id(margaret.id)
        with pytest.raises(NotFoundError):
            await repository.delete_by_id(margaret.id)

    async def test_soft_delete_by_id(self, seeded):
        repository = seeded.repository(Employee, clock=Ticker())
        ada = await find_one(repository, "Ada")
        await repository.soft_delete_by_id(ada.id)
        await repository.save_changes()

        fresh = seeded.repository(Employee)
        assert await fresh.count() == 3
        stored = await find_one(fresh, "Ada", include_deleted=True)
        assert naive(stored.deleted_at) == naive(T0)


@pytest.mark.asyncio
class TestPipeline:
    """before -> perform -> after stages"""

    async def test_stage_order(self, stores):
        calls = []

        def before(repository, entity):
            calls.append("before")
            entity.country = "DE"

        async def perform(repository, entity):
            calls.append("perform")
            return await repository.perform_add(entity)

        async def after(repository, entity):
            calls.append("after")

        repository = stores.repository(Company, hooks={
            Operation.ADD: Stages(before=before, perform=perform, after=after),
        })
        company = await repository.add(Company(name="Acme"))
        await repository.save_changes()

        assert calls == ["before", "perform", "after"]
        assert company.created_at is not None
        assert (await find_one(stores.repository(Company), "Acme")).country == "DE"

    async def test_stage_may_replace_the_entity(self, stores):
        def shout(repository, entity):
            return Company(name=entity.name.upper())

        repository = stores.repository(Company, hooks={"add": Stages(before=shout)})
        company = await repository.add(Company(name="Acme"))
        assert company.name == "ACME"

    async def test_hooks_per_operation(self, seeded):
        seen = []

        def audit(repository, entity):
            seen.append((repository.entity_class.__name__, entity.name))

        repository = seeded.repository(Employee, hooks={Operation.SOFT_DELETE: Stages(after=audit)})
        ada = await find_one(repository, "Ada")
        await repository.update(ada)
        await repository.soft_delete(ada)
        assert seen == [("Employee", "Ada")]

    async def test_cancellation_propagates_and_stages_nothing(self, stores):
        async def cancelled(repository, entity):
            raise asyncio.CancelledError()

        repository = stores.repository(Company, hooks={Operation.ADD: Stages(before=cancelled)})
        with pytest.raises(asyncio.CancelledError):
            await repository.add(Company(name="Acme"))

        await repository.save_changes()
        assert await stores.repository(Company).count() == 0


@pytest.mark.asyncio
class TestQueries:

    async def test_get_coerces_the_id(self, seeded):
        repository = seeded.repository(Employee)
        ada = await find_one(repository, "Ada")
        assert (await repository.get(str(ada.id))).name == "Ada"
        assert await repository.exists_by_id(ada.id)

    async def test_get_missing(self, seeded):
        with pytest.raises(NotFoundError):
            await seeded.repository(Employee).get(999)
        with pytest.raises(InvalidError):
            await seeded.repository(Employee).get(None)

    async def test_pagination(self, seeded):
        rows = await seeded.repository(Employee).find(
            sort=SortSpec(Employee).ascending("name"), offset=1, limit=2
        )
        assert [row.name for row in rows] == ["Alan", "Grace"]

    async def test_paging_without_sort_warns(self, seeded, caplog):
        repository = seeded.repository(Employee)
        with caplog.at_level(logging.WARNING, logger="dynarepo.persistence.repository"):
            await repository.find(limit=2)
        assert "without a sort order" in caplog.text

        caplog.clear()
        with caplog.at_level(logging.WARNING, logger="dynarepo.persistence.repository"):
            await repository.find(sort=SortSpec(Employee).ascending("name"), limit=2)
            quiet = seeded.repository(Employee, config=RepositoryConfig(warn_unordered_pagination=False))
            await quiet.find(limit=2)
        assert "without a sort order" not in caplog.text

    async def test_includes_load_relationships(self, seeded):
        repository = seeded.repository(Employee, includes=["company"])
        rows = await repository.find(sort=SortSpec(Employee).ascending("name"))
        assert [row.company.name for row in rows] == ["Acme", "Acme", "Acme", "Globex"]

        ada = await repository.get(rows[0].id)
        assert ada.company.country == "DE"

    async def test_includes_must_be_relationships(self, seeded):
        repository = seeded.repository(Employee, includes=["name"])
        with pytest.raises(ResolutionError):
            await repository.find()

    async def test_to_query_override(self, seeded):
        class EngineerRepository(Repository):
            def to_query(self, include_deleted=False):
                query = super().to_query(include_deleted)
                return FilterSpec(Employee).equal("position", "engineer").apply(query)

        repository = EngineerRepository(seeded.open(), Employee)
        assert await repository.count() == 3
        grace = await find_one(seeded.repository(Employee), "Grace")
        with pytest.raises(NotFoundError):
            await repository.get(grace.id)

    async def test_stream_pages_in_id_order(self, seeded):
        repository = seeded.repository(Employee)
        names = [employee.name async for employee in repository.stream(batch_size=3)]
        assert names == ["Ada", "Alan", "Grace", "Linus"]

        everyone = [e.name async for e in repository.stream(batch_size=2, include_deleted=True)]
        assert everyone == ["Ada", "Alan", "Grace", "Linus", "Margaret"]

    async def test_stream_with_filter_and_sort(self, seeded):
        repository = seeded.repository(Employee)
        stream = repository.stream(
            FilterSpec(Employee).equal("position", "engineer"),
            SortSpec(Employee).descending("salary"),
            batch_size=1,
        )
        assert [employee.name async for employee in stream] == ["Ada", "Linus", "Alan"]


@pytest.mark.asyncio
class TestPreconditions:
    """Checks that fail before the store is queried"""

    async def test_spec_for_another_entity(self):
        repository = Repository(MemoryStore(), Employee)
        with pytest.raises(InvalidError):
            await repository.find(FilterSpec(Company))
        with pytest.raises(InvalidError):
            await repository.find(sort=SortSpec(Company).ascending("name"))
        with pytest.raises(InvalidError):
            await repository.count(FilterSpec(Company))

    async def test_spec_from_another_registry(self):
        registry = SchemaRegistry(case_sensitive=False)
        repository = Repository(MemoryStore(), Employee, registry=registry)
        assert await repository.find(FilterSpec(Employee, registry).equal("NAME", "Ada")) == []
        with pytest.raises(InvalidError):
            await repository.find(FilterSpec(Employee).equal("name", "Ada"))
        with pytest.raises(InvalidError):
            await repository.find(projection=ProjectionSpec(Employee).include("name"))

    @pytest.mark.parametrize("offset, limit", [(-1, 0), (0, -5)])
    async def test_negative_paging(self, offset, limit):
        repository = Repository(MemoryStore(), Employee)
        with pytest.raises(InvalidError):
            await repository.find(offset=offset, limit=limit)

    async def test_invalid_batch_size(self):
        repository = Repository(MemoryStore(), Employee)
        with pytest.raises(InvalidError):
            [employee async for employee in repository.stream(batch_size=-1)]

    async def test_type_without_id(self):
        with pytest.raises(InvalidError):
            Repository(MemoryStore(), Address)

    async def test_string_ids_are_generated(self):
        repository = Repository(MemoryStore(), Bookmark)
        bookmark = await repository.add(Bookmark(url="https://example.com"))
        assert isinstance(bookmark.id, str)
        assert len(bookmark.id) == 36
        assert (await repository.get(bookmark.id)).url == "https://example.com"

    async def test_helpers_raise(self):
        repository = Repository(MemoryStore(), Employee)
        with pytest.raises(NotFoundError):
            repository.ensure_found(None, "missing")
        assert repository.ensure_found(0) == 0
        with pytest.raises(ModelInvalidError) as exc_info:
            repository.model_invalid(["name: required", "email: required"])
        assert exc_info.value.message == "name: required\nemail: required"
