from typing import List, Optional

import pytest
import pytest_asyncio

from dynarepo import (
    MemoryDatabase, MemoryStore, Repository, SQLConfig, SQLStore,
    create_engine, create_session_factory, create_tables
)
from dynarepo.persistence.interface import BackingStore

from .entities import Company, Employee


class StoreFactory:
    """Opens fresh stores (units of work) over one shared database"""

    def __init__(self, kind: str, database: Optional[MemoryDatabase] = None, session_factory=None):
        self.kind = kind
        self.database = database
        self.session_factory = session_factory
        self._sessions: List = []

    def open(self) -> BackingStore:
        if self.kind == "memory":
            return MemoryStore(self.database)
        session = self.session_factory()
        self._sessions.append(session)
        return SQLStore(session)

    def repository(self, entity_class, store: Optional[BackingStore] = None, **kwargs) -> Repository:
        return Repository(store or self.open(), entity_class, **kwargs)

    async def close(self):
        for session in self._sessions:
            await session.close()


@pytest_asyncio.fixture(params=["memory", "sql"])
async def stores(request, tmp_path):
    if request.param == "memory":
        factory = StoreFactory("memory", database=MemoryDatabase())
        yield factory
        await factory.close()
        return

    engine = create_engine(SQLConfig(database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"))
    await create_tables(engine)
    factory = StoreFactory("sql", session_factory=create_session_factory(engine))
    yield factory
    await factory.close()
    await engine.dispose()


@pytest_asyncio.fixture
async def seeded(stores):
    """
    Two companies and five employees, committed.

    Acme (DE, 1990): Ada (engineer, 5000), Alan (engineer, 4000), Grace (manager, no salary)
    Globex (US, 2005): Linus (engineer, 4500), Margaret (soft-deleted, 7000)
    """
    store = stores.open()
    companies = Repository(store, Company)
    employees = Repository(store, Employee)

    acme = await companies.add(Company(name="Acme", country="DE", founded=1990))
    globex = await companies.add(Company(name="Globex", country="US", founded=2005))
    people = [
        Employee(name="Ada", email="ada@acme.test", position="engineer", salary=5000, company=acme),
        Employee(name="Alan", email="alan@acme.test", position="engineer", salary=4000, company=acme),
        Employee(name="Grace", email="grace@acme.test", position="manager", salary=None, company=acme),
        Employee(name="Linus", email="linus@globex.test", position="engineer", salary=4500, company=globex),
        Employee(name="Margaret", email="margaret@globex.test", position="manager", salary=7000,
                 company=globex),
    ]
    for person in people:
        await employees.add(person)
    await employees.save_changes()

    await employees.soft_delete(people[-1])
    await employees.save_changes()
    return stores
