from datetime import date, datetime

import pytest

from clinic_booking.core.config import settings
from clinic_booking.core.security import UserRole
from clinic_booking.models.appointment import Appointment, AppointmentStatus, AppointmentType
from clinic_booking.schemas.appointment import AppointmentResponse

from .conftest import (
    CLINIC_ID,
    OTHER_DOCTOR_USER_ID,
    auth_headers,
    make_doctor,
)

SLOTS_URL = "/api/v1/slots"
APPOINTMENTS_URL = "/api/v1/appointments"

def book_payload(doctor, start_time="09:00", day="2030-01-07", **extra):
    payload = {"doctor_id": doctor.id, "date": day, "start_time": start_time}
    payload.update(extra)
    return payload

def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert "X-Process-Time" in response.headers

class TestSlotEndpoints:
    def test_get_day_slots(self, client, doctor):
        response = client.get(f"{SLOTS_URL}/{doctor.id}/2030-01-07")
        assert response.status_code == 200
        data = response.json()
        assert data["day_name"] == "monday"
        assert data["is_available"] is True
        assert data["slot_duration"] == 15
        assert [slot["start_time"] for slot in data["available_slots"]] == ["09:00", "09:15", "09:30", "09:45"]
        assert data["booked_slots"] == []

    def test_past_date_is_rejected(self, client, doctor):
        response = client.get(f"{SLOTS_URL}/{doctor.id}/2020-01-06")
        assert response.status_code == 400
        assert response.json()["error"] == "PastDateBooking"

    def test_unknown_doctor(self, client, test_db):
        response = client.get(f"{SLOTS_URL}/999/2030-01-07")
        assert response.status_code == 404
        assert response.json()["error"] == "NotFound"

    def test_booked_slot_is_reported(self, client, doctor, patient_headers):
        client.post(f"{APPOINTMENTS_URL}/book", json=book_payload(doctor, "09:15"), headers=patient_headers)
        data = client.get(f"{SLOTS_URL}/{doctor.id}/2030-01-07").json()
        assert [slot["start_time"] for slot in data["booked_slots"]] == ["09:15"]
        assert len(data["available_slots"]) == 3

    def test_summary(self, client, doctor):
        response = client.get(f"{SLOTS_URL}/summary/{doctor.id}")
        assert response.status_code == 200
        data = response.json()
        assert data["doctor_id"] == doctor.id
        assert len(data["summary"]) == settings.SUMMARY_WINDOW_DAYS

    def test_doctor_updates_weekly_availability(self, client, doctor, doctor_headers):
        response = client.put(
            f"{SLOTS_URL}/availability",
            json={
                "weekly_availability": {
                    "Tuesday": {"is_available": True, "slots": [{"start_time": "10:00", "end_time": "11:00"}]}
                },
                "slot_duration": 30,
                "buffer_time": 0,
            },
            headers=doctor_headers,
        )
        assert response.status_code == 200
        assert response.json()["slot_duration"] == 30

        availability = client.get(f"{SLOTS_URL}/availability/{doctor.id}").json()
        assert list(availability["weekly_availability"]) == ["tuesday"]
        assert availability["max_reschedules"] == settings.MAX_RESCHEDULES
        assert availability["min_reschedule_hours"] == settings.MIN_RESCHEDULE_HOURS

        slots = client.get(f"{SLOTS_URL}/{doctor.id}/2030-01-08").json()
        assert [slot["start_time"] for slot in slots["all_slots"]] == ["10:00", "10:30"]

    @pytest.mark.parametrize("update", [
        {"weekly_availability": {"funday": {"is_available": True, "slots": []}}},
        {"weekly_availability": {}, "slot_duration": 25},
        {"weekly_availability": {}, "buffer_time": 7},
        {"weekly_availability": {"monday": {"slots": [{"start_time": "11:00", "end_time": "10:00"}]}}},
        {"weekly_availability": {"monday": {"slots": [{"start_time": "9:00", "end_time": "10:00"}]}}},
    ])
    def test_invalid_availability_is_rejected(self, client, doctor, doctor_headers, update):
        response = client.put(f"{SLOTS_URL}/availability", json=update, headers=doctor_headers)
        assert response.status_code == 422

    def test_patient_cannot_update_availability(self, client, doctor, patient_headers):
        response = client.put(f"{SLOTS_URL}/availability", json={"weekly_availability": {}}, headers=patient_headers)
        assert response.status_code == 403

    def test_schedule_exception_lifecycle(self, client, doctor, doctor_headers):
        response = client.post(
            f"{SLOTS_URL}/exceptions",
            json={"date": "2030-01-07", "type": "holiday", "reason": "Pongal"},
            headers=doctor_headers,
        )
        assert response.status_code == 201
        exception = response.json()
        assert (exception["date"], exception["type"]) == ("2030-01-07", "holiday")

        day = client.get(f"{SLOTS_URL}/{doctor.id}/2030-01-07").json()
        assert day["is_available"] is False
        assert day["reason"] == "Pongal"

        duplicate = client.post(
            f"{SLOTS_URL}/exceptions",
            json={"date": "2030-01-07", "type": "leave"},
            headers=doctor_headers,
        )
        assert duplicate.status_code == 409
        assert duplicate.json()["error"] == "DuplicateScheduleException"

        mine = client.get(f"{SLOTS_URL}/exceptions", headers=doctor_headers).json()
        assert [item["id"] for item in mine] == [exception["id"]]

        deleted = client.delete(f"{SLOTS_URL}/exceptions/{exception['id']}", headers=doctor_headers)
        assert deleted.status_code == 200
        assert client.get(f"{SLOTS_URL}/{doctor.id}/2030-01-07").json()["is_available"] is True

    def test_other_doctor_cannot_delete_exception(self, client, db, doctor, doctor_headers):
        make_doctor(db, user_id=OTHER_DOCTOR_USER_ID, full_name="Dr. Vikram Iyer")
        created = client.post(
            f"{SLOTS_URL}/exceptions",
            json={"date": "2030-01-07", "type": "leave"},
            headers=doctor_headers,
        ).json()

        response = client.delete(
            f"{SLOTS_URL}/exceptions/{created['id']}",
            headers=auth_headers(OTHER_DOCTOR_USER_ID, UserRole.DOCTOR, clinic_id=CLINIC_ID),
        )
        assert response.status_code == 403
        assert response.json()["error"] == "Forbidden"

class TestAppointmentEndpoints:
    def test_patient_books_online(self, client, doctor, patient_headers):
        response = client.post(
            f"{APPOINTMENTS_URL}/book",
            json=book_payload(doctor, notes="  Follow-up on blood work  "),
            headers=patient_headers,
        )
        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "booked"
        assert data["type"] == "online"
        assert data["patient_id"] == 1
        assert data["end_time"] == "09:15"
        assert data["notes"] == "Follow-up on blood work"

    def test_same_slot_conflicts(self, client, doctor, patient_headers, other_patient_headers):
        client.post(f"{APPOINTMENTS_URL}/book", json=book_payload(doctor), headers=patient_headers)
        response = client.post(f"{APPOINTMENTS_URL}/book", json=book_payload(doctor), headers=other_patient_headers)
        assert response.status_code == 409
        assert response.json()["error"] == "SlotAlreadyBooked"

    def test_slot_not_in_schedule(self, client, doctor, patient_headers):
        response = client.post(f"{APPOINTMENTS_URL}/book", json=book_payload(doctor, "13:00"), headers=patient_headers)
        assert response.status_code == 400
        assert response.json()["error"] == "SlotUnavailable"

    def test_malformed_start_time(self, client, doctor, patient_headers):
        response = client.post(f"{APPOINTMENTS_URL}/book", json=book_payload(doctor, "9 am"), headers=patient_headers)
        assert response.status_code == 422

    def test_idempotency_key_replay(self, client, doctor, patient_headers):
        headers = dict(patient_headers, **{"Idempotency-Key": "5d1c0e1e-booking"})
        first = client.post(f"{APPOINTMENTS_URL}/book", json=book_payload(doctor), headers=headers)
        second = client.post(f"{APPOINTMENTS_URL}/book", json=book_payload(doctor), headers=headers)
        assert first.status_code == second.status_code == 201
        assert first.json()["id"] == second.json()["id"]

    def test_receptionist_books_walk_in(self, client, doctor, receptionist_headers):
        missing_patient = client.post(f"{APPOINTMENTS_URL}/book", json=book_payload(doctor), headers=receptionist_headers)
        assert missing_patient.status_code == 400

        response = client.post(
            f"{APPOINTMENTS_URL}/book",
            json=book_payload(doctor, patient_id=7),
            headers=receptionist_headers,
        )
        assert response.status_code == 201
        assert response.json()["status"] == "confirmed"
        assert response.json()["type"] == "walk-in"
        assert response.json()["patient_id"] == 7

    def test_doctor_cannot_book(self, client, doctor, doctor_headers):
        response = client.post(f"{APPOINTMENTS_URL}/book", json=book_payload(doctor), headers=doctor_headers)
        assert response.status_code == 403

    def test_booking_requires_token(self, client, doctor):
        response = client.post(f"{APPOINTMENTS_URL}/book", json=book_payload(doctor))
        assert response.status_code in (401, 403)

    def test_invalid_token(self, client, doctor):
        response = client.post(
            f"{APPOINTMENTS_URL}/book",
            json=book_payload(doctor),
            headers={"Authorization": "Bearer not-a-token"},
        )
        assert response.status_code == 401

    def test_booking_rate_limit(self, client, doctor, patient_headers, monkeypatch):
        monkeypatch.setattr(settings, "BOOKING_RATE_LIMIT", 1)
        client.post(f"{APPOINTMENTS_URL}/book", json=book_payload(doctor), headers=patient_headers)
        response = client.post(f"{APPOINTMENTS_URL}/book", json=book_payload(doctor, "09:15"), headers=patient_headers)
        assert response.status_code == 429

    def test_reschedule_cancel_and_audit(self, client, doctor, patient_headers):
        appointment = client.post(f"{APPOINTMENTS_URL}/book", json=book_payload(doctor), headers=patient_headers).json()

        moved = client.put(
            f"{APPOINTMENTS_URL}/{appointment['id']}/reschedule",
            json={"date": "2030-01-07", "start_time": "09:45"},
            headers=patient_headers,
        )
        assert moved.status_code == 200
        assert moved.json()["start_time"] == "09:45"
        assert moved.json()["reschedule_count"] == 1

        cancelled = client.put(
            f"{APPOINTMENTS_URL}/{appointment['id']}/cancel",
            json={"reason": "Travelling"},
            headers=patient_headers,
        )
        assert cancelled.status_code == 200
        assert cancelled.json()["status"] == "cancelled"
        assert cancelled.json()["cancel_reason"] == "Travelling"

        audit = client.get(f"{APPOINTMENTS_URL}/{appointment['id']}/audit", headers=patient_headers).json()
        assert [entry["action"] for entry in audit["audit_log"]] == ["created", "rescheduled", "cancelled"]

    def test_patient_cannot_touch_others_appointment(self, client, doctor, patient_headers, other_patient_headers):
        appointment = client.post(f"{APPOINTMENTS_URL}/book", json=book_payload(doctor), headers=patient_headers).json()
        response = client.put(
            f"{APPOINTMENTS_URL}/{appointment['id']}/cancel",
            json={"reason": "not mine"},
            headers=other_patient_headers,
        )
        assert response.status_code == 403
        assert response.json()["error"] == "Forbidden"

    def test_status_updates_follow_workflow(self, client, doctor, patient_headers, doctor_headers):
        appointment = client.post(f"{APPOINTMENTS_URL}/book", json=book_payload(doctor), headers=patient_headers).json()
        url = f"{APPOINTMENTS_URL}/{appointment['id']}/status"

        invalid = client.put(url, json={"status": "completed"}, headers=doctor_headers)
        assert invalid.status_code == 400
        assert invalid.json()["error"] == "InvalidStatusTransition"

        checked_in = client.put(url, json={"status": "checked_in"}, headers=doctor_headers)
        assert checked_in.status_code == 200
        assert checked_in.json()["status"] == "checked_in"

        by_patient = client.put(url, json={"status": "in_consultation"}, headers=patient_headers)
        assert by_patient.status_code == 403

    def test_listing_appointments(self, client, doctor, patient_headers, doctor_headers):
        client.post(f"{APPOINTMENTS_URL}/book", json=book_payload(doctor, "09:30"), headers=patient_headers)
        client.post(f"{APPOINTMENTS_URL}/book", json=book_payload(doctor, "09:00", day="2030-01-14"), headers=patient_headers)

        mine = client.get(f"{APPOINTMENTS_URL}/my", headers=patient_headers).json()
        assert [item["date"] for item in mine] == ["2030-01-14", "2030-01-07"]

        calendar = client.get(
            f"{APPOINTMENTS_URL}/doctor",
            params={"target_date": "2030-01-07"},
            headers=doctor_headers,
        ).json()
        assert [item["start_time"] for item in calendar] == ["09:30"]

    def test_unknown_appointment(self, client, test_db, patient_headers):
        response = client.put(f"{APPOINTMENTS_URL}/999/cancel", json={}, headers=patient_headers)
        assert response.status_code == 404
        assert response.json()["error"] == "NotFound"

    def test_patient_reschedule_inside_notice_window(self, client, doctor, patient_headers, receptionist_headers, clinic_clock):
        clinic_clock(datetime(2030, 1, 7, 8, 0))
        appointment = client.post(f"{APPOINTMENTS_URL}/book", json=book_payload(doctor), headers=patient_headers).json()
        url = f"{APPOINTMENTS_URL}/{appointment['id']}/reschedule"
        body = {"date": "2030-01-14", "start_time": "09:00"}

        by_patient = client.put(url, json=body, headers=patient_headers)
        assert by_patient.status_code == 400
        assert by_patient.json()["error"] == "RescheduleNoticeTooShort"

        by_receptionist = client.put(url, json=body, headers=receptionist_headers)
        assert by_receptionist.status_code == 200
        assert by_receptionist.json()["date"] == "2030-01-14"

    @pytest.mark.parametrize("clinic_id", [None, CLINIC_ID + 1])
    def test_staff_outside_the_clinic_is_denied(self, client, doctor, patient_headers, clinic_id):
        appointment = client.post(f"{APPOINTMENTS_URL}/book", json=book_payload(doctor), headers=patient_headers).json()
        headers = auth_headers(51, UserRole.RECEPTIONIST, clinic_id=clinic_id)

        cancelled = client.put(f"{APPOINTMENTS_URL}/{appointment['id']}/cancel", json={}, headers=headers)
        assert cancelled.status_code == 403
        assert cancelled.json()["error"] == "Forbidden"

        audit = client.get(f"{APPOINTMENTS_URL}/{appointment['id']}/audit", headers=headers)
        assert audit.status_code == 403

    def test_day_view_lists_started_slots(self, client, doctor, clinic_clock):
        clinic_clock(datetime(2030, 1, 7, 9, 20))
        data = client.get(f"{SLOTS_URL}/{doctor.id}/2030-01-07").json()
        assert [slot["start_time"] for slot in data["past_slots"]] == ["09:00", "09:15"]
        assert [slot["start_time"] for slot in data["available_slots"]] == ["09:30", "09:45"]

def test_appointment_response_renders_date_and_type():
    appointment = Appointment(
        id=3,
        doctor_id=1,
        patient_id=7,
        appointment_date=date(2030, 1, 7),
        start_time="09:00",
        end_time="09:15",
        status=AppointmentStatus.CONFIRMED,
        appointment_type=AppointmentType.WALK_IN,
        reschedule_count=0,
    )
    rendered = AppointmentResponse.model_validate(appointment).model_dump(mode="json", by_alias=True)
    assert rendered["date"] == "2030-01-07"
    assert rendered["type"] == "walk-in"
    assert "appointment_date" not in rendered
