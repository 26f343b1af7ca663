from uuid import uuid4

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from schoolrecords.core.enums import GRADE_NOTE_NO_MAPPING, GRADE_NOTE_TRANSFERRED
from schoolrecords.core.models import ClassSection, StudentRunningGrade, StudentSection


def _dissolve_payload(seeded, with_mapping: bool = True) -> dict:
    payload = {
        "student_assignments": [
            {"student_id": str(seeded.ana.id), "target_section_id": str(seeded.mabini.id)},
            {"student_id": str(seeded.ben.id), "target_section_id": str(seeded.mabini.id)},
            {"student_id": str(seeded.carla.id), "target_section_id": str(seeded.bonifacio.id)},
        ],
    }
    if with_mapping:
        payload["subject_mappings"] = [
            {
                "source_subject_id": str(seeded.math.id),
                "target_subject_id": str(seeded.mabini_math.id),
                "target_section_id": str(seeded.mabini.id),
            }
        ]
    return payload


@pytest.mark.asyncio
async def test_list_sections_hides_dissolved_and_other_institutions(client: AsyncClient, seeded) -> None:
    response = await client.get("/api/v1/sections")
    assert response.status_code == 200
    assert [s["title"] for s in response.json()] == ["Grade 7 - Bonifacio", "Grade 7 - Mabini", "Grade 7 - Rizal"]

    response = await client.get("/api/v1/sections", params={"active_only": "false"})
    assert "Grade 7 - Luna" in [s["title"] for s in response.json()]


@pytest.mark.asyncio
async def test_section_students_and_subjects(client: AsyncClient, seeded) -> None:
    response = await client.get(f"/api/v1/sections/{seeded.rizal.id}/students")
    assert response.status_code == 200
    assert [s["last_name"] for s in response.json()] == ["Cruz", "Dela Rosa", "Santos"]

    response = await client.get("/api/v1/subjects", params={"class_section_id": str(seeded.rizal.id)})
    assert response.status_code == 200
    data = response.json()
    assert [s["title"] for s in data] == ["Mathematics", "Mathematics - Remedial", "Science", "Filipino"]
    assert data[1]["parent_subject_id"] == str(seeded.math.id)


@pytest.mark.asyncio
async def test_unknown_section_is_404(client: AsyncClient, seeded) -> None:
    response = await client.get(f"/api/v1/sections/{uuid4()}")
    assert response.status_code == 404

    response = await client.get(f"/api/v1/sections/{seeded.foreign.id}")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_institution_header_is_required(client: AsyncClient, seeded) -> None:
    response = await client.get("/api/v1/sections", headers={"X-Institution-Id": "not-a-uuid"})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_dissolve_section_transfers_students_and_grades(client: AsyncClient, seeded, session_factory) -> None:
    response = await client.post(f"/api/v1/sections/{seeded.rizal.id}/dissolve", json=_dissolve_payload(seeded))
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["status"] == "dissolve"
    assert body["data"]["deleted_at"] is not None

    async with session_factory() as db:
        section = (await db.execute(select(ClassSection).where(ClassSection.id == seeded.rizal.id))).scalar_one()
        assert section.status == "dissolve"
        assert section.deleted_at is not None

        r = await db.execute(select(StudentSection).where(StudentSection.student_id == seeded.ana.id))
        enrolments = {e.section_id: e for e in r.scalars().all()}
        assert enrolments[seeded.rizal.id].is_active is False
        assert enrolments[seeded.mabini.id].is_active is True
        assert enrolments[seeded.mabini.id].academic_year == "2025-2026"

        r = await db.execute(select(StudentSection).where(StudentSection.student_id == seeded.carla.id, StudentSection.is_active.is_(True)))
        assert [e.section_id for e in r.scalars().all()] == [seeded.bonifacio.id]

        r = await db.execute(select(StudentRunningGrade).where(StudentRunningGrade.student_id == seeded.ana.id))
        grades = r.scalars().all()
        by_subject = {g.subject_id: g for g in grades}
        assert by_subject[seeded.math.id].note == GRADE_NOTE_TRANSFERRED
        assert by_subject[seeded.math.id].deleted_at is not None
        assert by_subject[seeded.filipino.id].note == GRADE_NOTE_NO_MAPPING
        assert by_subject[seeded.filipino.id].deleted_at is not None
        carried = by_subject[seeded.mabini_math.id]
        assert carried.grade == 88.0
        assert carried.final_grade == 88.0
        assert carried.quarter == "Q1"
        assert carried.deleted_at is None

        r = await db.execute(select(StudentRunningGrade).where(StudentRunningGrade.student_id == seeded.carla.id))
        (science,) = r.scalars().all()
        assert science.note == GRADE_NOTE_NO_MAPPING

    response = await client.get("/api/v1/sections")
    assert "Grade 7 - Rizal" not in [s["title"] for s in response.json()]


@pytest.mark.asyncio
async def test_dissolve_twice_is_a_conflict(client: AsyncClient, seeded) -> None:
    url = f"/api/v1/sections/{seeded.rizal.id}/dissolve"
    assert (await client.post(url, json=_dissolve_payload(seeded, with_mapping=False))).status_code == 200

    response = await client.post(url, json=_dissolve_payload(seeded, with_mapping=False))
    assert response.status_code == 409
    assert response.json()["detail"] == "Section is already dissolved"


@pytest.mark.asyncio
async def test_dissolve_rejects_invalid_payloads(client: AsyncClient, seeded, session_factory) -> None:
    url = f"/api/v1/sections/{seeded.rizal.id}/dissolve"

    response = await client.post(url, json={"student_assignments": []})
    assert response.status_code == 422

    payload = _dissolve_payload(seeded, with_mapping=False)
    payload["student_assignments"][0]["target_section_id"] = str(seeded.rizal.id)
    assert (await client.post(url, json=payload)).status_code == 400

    payload = _dissolve_payload(seeded, with_mapping=False)
    payload["student_assignments"][0]["target_section_id"] = str(seeded.retired.id)
    assert (await client.post(url, json=payload)).status_code == 400

    payload = _dissolve_payload(seeded)
    payload["subject_mappings"][0]["target_subject_id"] = str(seeded.bonifacio_science.id)
    response = await client.post(url, json=payload)
    assert response.status_code == 400
    assert "does not belong to section" in response.json()["detail"]

    payload = _dissolve_payload(seeded)
    payload["student_assignments"].append(payload["student_assignments"][0])
    assert (await client.post(url, json=payload)).status_code == 400

    async with session_factory() as db:
        section = (await db.execute(select(ClassSection).where(ClassSection.id == seeded.rizal.id))).scalar_one()
        assert section.status == "active"


@pytest.mark.asyncio
async def test_dissolve_unknown_section_is_404(client: AsyncClient, seeded) -> None:
    response = await client.post(f"/api/v1/sections/{uuid4()}/dissolve", json=_dissolve_payload(seeded))
    assert response.status_code == 404
