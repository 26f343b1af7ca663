import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"

import asyncio
from datetime import datetime
from types import SimpleNamespace
from typing import AsyncGenerator, Dict, List, Optional
from uuid import UUID, uuid4

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from schoolrecords.api.v1.dissolutions.registry import WorkflowRegistry, get_registry
from schoolrecords.api.v1.sections.schemas import (
    DissolveSectionData,
    DissolveSectionRequest,
    DissolveSectionResponse,
    SectionResponse,
    StudentResponse,
)
from schoolrecords.api.v1.subjects.schemas import SubjectResponse
from schoolrecords.core.exceptions import CatalogFetchError, TransferError
from schoolrecords.core.models import ClassSection, Student, StudentRunningGrade, StudentSection, Subject
from schoolrecords.db.session import Base, get_db, get_session_factory
from schoolrecords.dissolution.workflow import DissolutionWorkflow
from schoolrecords.main import app


INSTITUTION_ID = UUID("5d7c8f0e-3a61-4d1b-9a55-0c2f3e4b6a71")
OTHER_INSTITUTION_ID = UUID("0b9f1d2c-7e44-4c0a-8f6d-2a3b4c5d6e7f")
ACADEMIC_YEAR = "2025-2026"


# -- in-memory fakes ----------------------------------------------------------


class FakeCatalogSource:
    """Serves catalogs from a dict and records every fetch."""

    def __init__(self) -> None:
        self.catalogs: Dict[UUID, List[SubjectResponse]] = {}
        self.failures: Dict[UUID, str] = {}
        self.crashes: Dict[UUID, Exception] = {}
        self.calls: List[UUID] = []

    async def fetch(self, section_id: UUID) -> List[SubjectResponse]:
        self.calls.append(section_id)
        await asyncio.sleep(0)
        if section_id in self.failures:
            raise CatalogFetchError(self.failures[section_id], section_id)
        if section_id in self.crashes:
            raise self.crashes[section_id]
        return list(self.catalogs.get(section_id, []))


class FakeExecutor:
    """Records commit payloads; can fail with ``error`` or hold until ``gate`` is set."""

    def __init__(self) -> None:
        self.calls: List[DissolveSectionRequest] = []
        self.error: Optional[TransferError] = None
        self.gate: Optional[asyncio.Event] = None

    async def execute(self, source_section_id: UUID, payload: DissolveSectionRequest) -> DissolveSectionResponse:
        self.calls.append(payload)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return DissolveSectionResponse(
            data=DissolveSectionData(section_id=source_section_id, status="dissolve", deleted_at=datetime.utcnow()),
        )


class RecordFactory:
    def section(self, title: str, academic_year: str = ACADEMIC_YEAR) -> SectionResponse:
        return SectionResponse(
            id=uuid4(),
            institution_id=INSTITUTION_ID,
            title=title,
            grade_level="7",
            academic_year=academic_year,
        )

    def student(self, first_name: str, last_name: str, lrn: Optional[str] = None) -> StudentResponse:
        return StudentResponse(id=uuid4(), first_name=first_name, last_name=last_name, lrn=lrn)

    def subject(
        self,
        section: SectionResponse,
        title: str,
        parent: Optional[SubjectResponse] = None,
        order: Optional[int] = None,
    ) -> SubjectResponse:
        return SubjectResponse(
            id=uuid4(),
            class_section_id=section.id,
            title=title,
            subject_type="child" if parent else "parent",
            parent_subject_id=parent.id if parent else None,
            display_order=order,
        )


@pytest.fixture()
def records() -> RecordFactory:
    return RecordFactory()


@pytest.fixture()
def catalog_source() -> FakeCatalogSource:
    return FakeCatalogSource()


@pytest.fixture()
def executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture()
def school(records: RecordFactory, catalog_source: FakeCatalogSource) -> SimpleNamespace:
    """A section to dissolve (Rizal) and two destinations (Mabini, Bonifacio) with their catalogs."""
    source = records.section("Grade 7 - Rizal")
    mabini = records.section("Grade 7 - Mabini")
    bonifacio = records.section("Grade 7 - Bonifacio")

    math = records.subject(source, "Mathematics", order=1)
    remedial = records.subject(source, "Mathematics - Remedial", parent=math, order=2)
    science = records.subject(source, "Science", order=3)
    filipino = records.subject(source, "Filipino", order=4)

    mabini_math = records.subject(mabini, "mathematics", order=1)
    mabini_remedial = records.subject(mabini, "Mathematics - Remedial ", parent=mabini_math, order=2)
    mabini_science = records.subject(mabini, "Science", order=3)
    bonifacio_science = records.subject(bonifacio, "Science", order=1)

    catalog_source.catalogs[mabini.id] = [mabini_math, mabini_remedial, mabini_science]
    catalog_source.catalogs[bonifacio.id] = [bonifacio_science]

    return SimpleNamespace(
        source=source,
        mabini=mabini,
        bonifacio=bonifacio,
        students=[
            records.student("Ana", "Cruz", lrn="100001"),
            records.student("Ben", "Dela Rosa", lrn="100002"),
            records.student("Carla", "Santos", lrn="100003"),
            records.student("Dario", "Villanueva", lrn="100004"),
        ],
        math=math,
        remedial=remedial,
        science=science,
        filipino=filipino,
        mabini_math=mabini_math,
        mabini_remedial=mabini_remedial,
        mabini_science=mabini_science,
        bonifacio_science=bonifacio_science,
    )


@pytest.fixture()
def workflow(school: SimpleNamespace, catalog_source: FakeCatalogSource, executor: FakeExecutor) -> DissolutionWorkflow:
    return DissolutionWorkflow(
        source_section=school.source,
        students=school.students,
        source_subjects=[school.math, school.remedial, school.science, school.filipino],
        candidate_sections=[school.bonifacio, school.mabini],
        catalog_source=catalog_source,
        executor=executor,
    )


# -- database / API -----------------------------------------------------------


@pytest.fixture()
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """A file-backed SQLite database per test, so concurrent sessions each get their own connection."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False, future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture()
async def db_session(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture()
async def workflow_registry() -> AsyncGenerator[WorkflowRegistry, None]:
    registry = WorkflowRegistry()
    yield registry
    await registry.close_all()


@pytest.fixture()
async def client(
    session_factory: async_sessionmaker,
    workflow_registry: WorkflowRegistry,
) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app, scoped to the test institution."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_registry] = lambda: workflow_registry

    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://test",
        headers={"X-Institution-Id": str(INSTITUTION_ID)},
    ) as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture()
async def seeded(db_session: AsyncSession) -> SimpleNamespace:
    """Rizal (to dissolve) with three enrolled students, Mabini and Bonifacio as destinations."""
    rizal = ClassSection(id=uuid4(), institution_id=INSTITUTION_ID, title="Grade 7 - Rizal", grade_level="7", academic_year=ACADEMIC_YEAR)
    mabini = ClassSection(id=uuid4(), institution_id=INSTITUTION_ID, title="Grade 7 - Mabini", grade_level="7", academic_year=ACADEMIC_YEAR)
    bonifacio = ClassSection(id=uuid4(), institution_id=INSTITUTION_ID, title="Grade 7 - Bonifacio", grade_level="7", academic_year=ACADEMIC_YEAR)
    retired = ClassSection(
        id=uuid4(),
        institution_id=INSTITUTION_ID,
        title="Grade 7 - Luna",
        grade_level="7",
        academic_year=ACADEMIC_YEAR,
        status="dissolve",
        deleted_at=datetime.utcnow(),
    )
    foreign = ClassSection(id=uuid4(), institution_id=OTHER_INSTITUTION_ID, title="Grade 7 - Aguinaldo", grade_level="7", academic_year=ACADEMIC_YEAR)
    db_session.add_all([rizal, mabini, bonifacio, retired, foreign])

    ana = Student(id=uuid4(), institution_id=INSTITUTION_ID, first_name="Ana", last_name="Cruz", lrn="100001")
    ben = Student(id=uuid4(), institution_id=INSTITUTION_ID, first_name="Ben", last_name="Dela Rosa", lrn="100002")
    carla = Student(id=uuid4(), institution_id=INSTITUTION_ID, first_name="Carla", last_name="Santos", lrn="100003")
    db_session.add_all([ana, ben, carla])
    await db_session.flush()
    for student in (ana, ben, carla):
        db_session.add(StudentSection(student_id=student.id, section_id=rizal.id, academic_year=ACADEMIC_YEAR, is_active=True))

    math = Subject(id=uuid4(), class_section_id=rizal.id, title="Mathematics", subject_type="parent", display_order=1)
    remedial = Subject(
        id=uuid4(),
        class_section_id=rizal.id,
        title="Mathematics - Remedial",
        subject_type="child",
        parent_subject_id=math.id,
        display_order=2,
    )
    science = Subject(id=uuid4(), class_section_id=rizal.id, title="Science", subject_type="parent", display_order=3)
    filipino = Subject(id=uuid4(), class_section_id=rizal.id, title="Filipino", subject_type="parent", display_order=4)
    mabini_math = Subject(id=uuid4(), class_section_id=mabini.id, title="Mathematics", subject_type="parent", display_order=1)
    mabini_remedial = Subject(
        id=uuid4(),
        class_section_id=mabini.id,
        title="Mathematics - Remedial",
        subject_type="child",
        parent_subject_id=mabini_math.id,
        display_order=2,
    )
    bonifacio_science = Subject(id=uuid4(), class_section_id=bonifacio.id, title="Science", subject_type="parent", display_order=1)
    db_session.add_all([math, science, filipino, mabini_math, bonifacio_science])
    await db_session.flush()
    db_session.add_all([remedial, mabini_remedial])
    await db_session.flush()

    db_session.add_all(
        [
            StudentRunningGrade(student_id=ana.id, subject_id=math.id, quarter="Q1", grade=88.0, final_grade=88.0, academic_year=ACADEMIC_YEAR),
            StudentRunningGrade(student_id=ana.id, subject_id=filipino.id, quarter="Q1", grade=91.0, academic_year=ACADEMIC_YEAR),
            StudentRunningGrade(student_id=carla.id, subject_id=science.id, quarter="Q1", grade=85.0, academic_year=ACADEMIC_YEAR),
        ]
    )
    await db_session.commit()

    return SimpleNamespace(
        rizal=rizal,
        mabini=mabini,
        bonifacio=bonifacio,
        retired=retired,
        foreign=foreign,
        ana=ana,
        ben=ben,
        carla=carla,
        math=math,
        remedial=remedial,
        science=science,
        filipino=filipino,
        mabini_math=mabini_math,
        mabini_remedial=mabini_remedial,
        bonifacio_science=bonifacio_science,
    )
