from datetime import datetime, timedelta, timezone

import pytest

import booking
from booking import (
    PAGES, active_schedule, add_hours, calculate_bill, can_cancel, can_reschedule,
    cancel_payment_updates, checkin_updates, day_name, filter_by_tab, format_time_12h,
    join_tables, bookable_tables, max_duration, next_type_code, paginate,
    permission_matrix, permission_rows, schedule_toggle_updates, search_rows,
    sort_rows, split_amounts, time_slots, toggle_permission, validate_close_day,
    validate_duration, validate_mobile_ph, validate_payment, validate_qr_code,
    validate_registration, validate_schedule,
)
from booking import (
    STAFF_KEEP_ON_LOGOUT, archive_role_label, balance_due, can_extend,
    complete_session_updates, customer_session_defaults, deactivation_expired,
    extension_updates, finish_checkin, reset_session_state, staff_session_defaults,
    start_session_updates, validate_extension, validate_staff_account,
)

DAY = "2030-06-03"
SCHED = {"id": 1, "Date": "Monday", "OpenTime": "10:00:00", "CloseTime": "14:00:00",
         "Actions": "Active", "CloseDay": None}
DURATIONS = [{"hours": 1}, {"hours": 2}]


class FixedRng:
    def randint(self, a, b):
        return 42


def _available(slots):
    return [s["db_time"] for s in slots if s["available"]]


# ── Time helpers ──

@pytest.mark.parametrize("value,expected", [
    ("13:30:00", "1:30 PM"),
    ("00:15", "12:15 AM"),
    ("12:00:00", "12:00 PM"),
    (None, "-"),
    ("garbage", "-"),
])
def test_format_time_12h(value, expected):
    assert format_time_12h(value) == expected


def test_add_hours_handles_fractions():
    assert add_hours("13:00:00", 1.5) == "14:30:00"
    assert add_hours("9:30 AM", 2) == "11:30:00"


# ── Schedules ──

def test_active_schedule_respects_close_days():
    tds = [dict(SCHED, Date=day_name(DAY))]
    assert active_schedule(DAY, tds)["id"] == 1
    tds.append({"id": 9, "CloseDay": DAY})
    assert active_schedule(DAY, tds) is None


def test_inactive_schedule_is_ignored():
    tds = [dict(SCHED, Date=day_name(DAY), Actions="Inactive")]
    assert active_schedule(DAY, tds) is None


def test_toggle_activating_deactivates_same_day():
    tds = [
        {"id": 1, "Date": "Monday", "Actions": "Active"},
        {"id": 2, "Date": "Monday", "Actions": "Inactive"},
        {"id": 3, "Date": "Tuesday", "Actions": "Active"},
        {"id": 4, "CloseDay": "2030-01-01"},
    ]
    assert schedule_toggle_updates(tds, tds[1]) == [(1, "Inactive"), (2, "Active")]
    assert schedule_toggle_updates(tds, tds[0]) == [(1, "Inactive")]


def test_validate_schedule():
    assert validate_schedule("Monday", "10:00 AM", "11:00 PM") == (True, "", "10:00:00", "23:00:00")
    ok, msg, _, _ = validate_schedule("Monday", "11:00 PM", "10:00 AM")
    assert not ok and msg == "Closing time must be after opening time."
    ok, msg, _, _ = validate_schedule("Monday", "25:00", "10:00 AM")
    assert not ok and "valid time format" in msg
    ok, msg, _, _ = validate_schedule("Funday", "10:00 AM", "11:00 PM")
    assert msg == "Please fill in all fields."


def test_validate_close_day_rejects_duplicates():
    tds = [{"id": 1, "CloseDay": DAY}]
    assert validate_close_day(DAY, tds) == (False, "This close day already exists.")
    assert validate_close_day(DAY, tds, exclude_id=1) == (True, "")


# ── Tables ──

def test_bookable_tables_filters_status_and_type():
    joined = join_tables(
        [{"table_id": 1}, {"table_id": 2}, {"table_id": 3}],
        [{"table_id": 1, "status": "Available", "billiard_type": "8-Ball"},
         {"table_id": 2, "status": "Occupied", "billiard_type": "8-Ball"},
         {"table_id": 3, "status": "Available", "billiard_type": "9-Ball"}],
    )
    assert [t["table_id"] for t in bookable_tables(joined)] == [1, 3]
    assert [t["table_id"] for t in bookable_tables(joined, "9-Ball")] == [3]


def test_join_tables_without_info():
    assert join_tables([{"table_id": 5}], [])[0]["info"] == {}


# ── Slots ──

def test_time_slots_empty_day():
    slots = time_slots(SCHED, [], DAY, durations=DURATIONS)
    assert len(slots) == 8
    assert _available(slots) == ["10:00:00", "11:00:00", "11:30:00", "12:00:00",
                                 "12:30:00", "13:00:00"]
    reasons = {s["db_time"]: s["reason"] for s in slots}
    assert reasons["10:30:00"] == "gap"
    assert reasons["13:30:00"] == "gap"


def test_time_slots_around_a_booking():
    res = [{"id": 1, "start_time": "11:00:00", "time_end": "12:00:00", "status": "pending"},
           {"id": 2, "start_time": "12:00:00", "time_end": "14:00:00", "status": "cancelled"}]
    slots = {s["db_time"]: s for s in time_slots(SCHED, res, DAY, durations=DURATIONS)}
    assert slots["10:00:00"]["available"]
    assert slots["11:00:00"]["reason"] == "booked"
    assert slots["11:30:00"]["reason"] == "booked"
    assert slots["12:00:00"]["available"]
    assert slots["12:30:00"]["reason"] == "gap"


def test_time_slots_excluded_booking_is_free():
    res = [{"id": 1, "start_time": "11:00:00", "time_end": "12:00:00", "status": "approved"}]
    slots = {s["db_time"]: s for s in time_slots(SCHED, res, DAY, exclude_id=1)}
    assert slots["11:00:00"]["available"]


def test_time_slots_marks_past_today():
    now = datetime(2030, 6, 3, 11, 15)
    slots = {s["db_time"]: s for s in time_slots(SCHED, [], DAY, now=now)}
    assert slots["11:00:00"]["reason"] == "past"
    assert slots["11:30:00"]["available"]


def test_time_slots_closed_day():
    assert time_slots(None, [], DAY) == []


def test_max_duration_skips_lengths_that_leave_a_gap():
    res = [{"id": 1, "start_time": "12:00:00", "time_end": "13:00:00", "status": "approved"}]
    durations = [{"hours": 1}, {"hours": 1.5}, {"hours": 2}, {"hours": 3}]
    assert max_duration(SCHED, res, "10:00:00", durations) == 2
    assert max_duration(SCHED, res, "13:00:00", durations) == 1
    assert max_duration(None, res, "10:00:00", durations) == 0


# ── Billing ──

def test_calculate_bill_rounds_half_up_to_peso():
    total, half = calculate_bill([{"price": 150, "hours": 2}, {"price": 125, "hours": 1.5}])
    assert total == 487.5
    assert half == 244


def test_split_amounts():
    assert split_amounts(150, 1.5, "half") == {"total_bill": 225, "full_amount": None,
                                               "half_amount": 113}
    assert split_amounts(150, 2, "full")["full_amount"] == 300


def test_validate_payment_gcash_ok():
    assert validate_payment("GCash", "half", 244, 487.5, 244,
                            proof="data:image/png;base64,AA", reference="1234 5678") == []


def test_validate_payment_errors():
    assert "Cash payments must be paid in full at the counter." in \
        validate_payment("Cash", "half", 244, 487.5, 244)
    errs = validate_payment("GCash", "full", 487.5, 487.5, 244)
    assert errs == ["Please upload a screenshot of your GCash payment.",
                    "Please enter your GCash reference number."]
    errs = validate_payment("GCash", "full", 487.5, 487.5, 244, proof="x", reference="12ab")
    assert errs == ["GCash reference number must contain digits only."]
    errs = validate_payment("Cash", "full", 400, 487.5, 244)
    assert errs == ["Full payment must be exactly ₱487.50."]
    assert validate_payment("Cash", "full", "", 487.5, 244) == [
        "Please enter a valid payment amount."]
    assert validate_payment("Card", "full", 1, 1, 1) == ["Choose a payment method."]


# ── Customer reservations ──

def test_filter_by_tab_groups_completed_and_cancelled():
    rows = [{"status": s} for s in ("pending", "approved", "completed", "cancelled")]
    assert [r["status"] for r in filter_by_tab(rows, "completed")] == ["completed", "cancelled"]
    assert filter_by_tab(rows, "unknown") == []


def test_can_cancel_and_reschedule():
    assert can_cancel({"status": "pending"})[0]
    assert not can_cancel({"status": "ongoing"})[0]
    assert can_reschedule({"status": "approved"}) == (True, "")
    ok, msg = can_reschedule({"status": "rescheduled"})
    assert not ok and "already been rescheduled once" in msg
    assert not can_reschedule({"status": "completed"})[0]


# ── Check-in ──

def test_checkin_cash_full_generates_reference():
    now = datetime(2030, 6, 3, 9, 5, 7)
    upd, msg = checkin_updates({"status": "pending", "payment_method": "Cash",
                                "payment_type": "Full Payment"}, now=now, rng=FixedRng())
    assert upd == {"status": "approved", "payment_status": "completed",
                   "reference_no": "203006030905070042"}
    assert msg == "Reference No: 203006030905070042"


def test_checkin_gcash():
    row = {"status": "pending", "payment_method": "GCash", "payment_type": "Half Payment"}
    assert checkin_updates(row, "") == (None, "Please enter GCash Reference Number")
    upd, msg = checkin_updates(row, " 987654 ")
    assert upd == {"status": "approved", "reference_no": "987654"}
    assert msg == "GCash Ref No: 987654"


def test_checkin_refuses_released():
    upd, msg = checkin_updates({"status": "cancelled", "payment_method": "Cash"})
    assert upd is None
    assert msg == "Reservation is already cancelled."


# ── Cancellation manager ──

def test_cancel_payment_updates():
    b = {"total_bill": 300}
    assert cancel_payment_updates(b, "Refund", 10) == (None, "Please select a payment type.")
    assert cancel_payment_updates(b, "Half Payment", 0)[0] is None
    upd, msg = cancel_payment_updates(b, "Full Payment", 301)
    assert upd is None and "cannot exceed total bill" in msg
    upd, _ = cancel_payment_updates(b, "Half Payment", 150)
    assert upd == {"full_amount": None, "half_amount": 150, "partial_amount": None,
                   "payment_type": "Half Payment", "cancelled_amount": 150}


# ── Validation ──

@pytest.mark.parametrize("raw,expected", [
    ("0917 123 4567", "09171234567"),
    ("+63 917 123 4567", "09171234567"),
    ("12345", None),
    ("", None),
])
def test_validate_mobile_ph(raw, expected):
    assert validate_mobile_ph(raw) == expected


def test_validate_registration_collects_errors():
    errs = validate_registration("", "Cruz", "bad", "123", "abc", "abd")
    assert errs == ["First Name required.", "Enter a valid email address.",
                    "Invalid mobile. Use 09XX format (11 digits).", "Password: min 6 characters."]
    assert validate_registration("Ana", "Cruz", "ana@mail.com", "09171234567",
                                 "secret1", "secret1") == []


def test_next_type_code():
    assert next_type_code(None) == "BT-001"
    assert next_type_code("BT-009") == "BT-010"
    assert next_type_code("junk") == "BT-001"


def test_validate_duration():
    existing = [{"id": 1, "hours": 2}]
    assert validate_duration(0.5, existing)[0] is False
    assert validate_duration(2, existing) == (False, "This duration already exists.")
    assert validate_duration(2, existing, exclude_id=1) == (True, "")


def test_validate_extension_refuses_duplicates():
    existing = [{"id": 1, "extension_hours": 0.5}, {"id": 2, "extension_hours": 1}]
    assert validate_extension(0, existing) == (
        False, "Please enter valid extension hours (greater than 0).")
    assert validate_extension("1.0", existing) == (
        False, "This extension duration already exists.")
    assert validate_extension(1, existing, exclude_id=2) == (True, "")
    assert validate_extension(1.5, existing) == (True, "")


def test_validate_staff_account_needs_a_managed_role():
    ok_args = ("Bea", "Santos", "bea@mail.com", "09171234567", "secret1", "secret1")
    assert validate_staff_account(*ok_args, "frontdesk") == []
    assert validate_staff_account(*ok_args, "customer") == ["Choose a role."]
    assert validate_staff_account(*ok_args, "superadmin") == ["Choose a role."]


def test_validate_qr_code():
    existing = [{"qr_id": 1, "cellphone_number": "09171234567"}]
    assert validate_qr_code("Ana", "09171234567", True, existing) == [
        "This cellphone number already exists."]
    assert validate_qr_code("Ana", "09171234567", True, existing, exclude_id=1) == []
    errs = validate_qr_code("", "19171234567", False, [])
    assert errs == ["Please enter the GCash account name.",
                    "Philippine mobile numbers must start with 09.",
                    "Please upload a QR code image."]


# ── Permissions ──

def test_permission_matrix_and_toggle():
    m = permission_matrix([{"role_id": 1, "page": "History", "has_access": True}])
    t = toggle_permission(m, 1, "Profile")
    assert m == {1: {"History": True}}
    assert t == {1: {"History": True, "Profile": True}}
    assert toggle_permission(t, 1, "History")[1]["History"] is False


def test_permission_rows_cover_every_page():
    rows = permission_rows(4, {"Profile": True})
    assert [r["page"] for r in rows] == PAGES
    assert sum(r["has_access"] for r in rows) == 1
    assert len(set(PAGES)) == len(PAGES)


def test_role_matching_ignores_case_and_spacing():
    roles = [{"role_id": 1, "role": "Front Desk"}, {"role_id": 2, "role": "Super_Admin"}]
    assert booking.match_role(roles, "frontdesk")["role_id"] == 1
    assert booking.match_role(roles, "superadmin")["role_id"] == 2
    assert booking.match_role(roles, "janitor") is None


# ── Lists ──

def test_search_sort_paginate():
    rows = [{"n": i, "name": f"row {i}"} for i in range(25)]
    assert len(search_rows(rows, "ROW 1", ("name",))) == 11
    assert search_rows(rows, "  ", ("name",)) == rows
    page, cur, total = paginate(rows, 3)
    assert (len(page), cur, total) == (5, 3, 3)
    assert paginate(rows, 10)[1] == 3
    assert paginate([], 1) == ([], 1, 1)
    mixed = [{"k": 2}, {"k": None}, {"k": 1}]
    assert [r["k"] for r in sort_rows(mixed, "k")] == [1, 2, None]
    assert [r["k"] for r in sort_rows(mixed, "k", descending=True)] == [2, 1, None]


# ── Sessions and extensions ──

def _session(**kw):
    row = {"id": 5, "status": "ongoing", "start_time": "10:00:00", "time_end": "12:00:00",
           "duration": 2, "total_bill": 300, "payment_type": "Half Payment",
           "half_amount": 150}
    row.update(kw)
    return row


def test_start_session_needs_check_in():
    assert start_session_updates(_session(status="approved")) == (
        {"status": "ongoing"}, "Session started.")
    updates, msg = start_session_updates(_session(status="pending"))
    assert updates is None
    assert msg == "Only checked-in (approved) reservations can be started."


def test_can_extend():
    row = _session()
    nxt = {"id": 6, "start_time": "12:30:00", "time_end": "13:30:00", "status": "pending"}
    assert can_extend(SCHED, [row], row, 1) == (True, "")
    assert can_extend(SCHED, [row], row, 3) == (False, "The extension goes past closing time.")
    assert can_extend(SCHED, [row, nxt], row, 1) == (
        False, "The table is booked right after this session.")
    assert can_extend(SCHED, [row, dict(nxt, status="cancelled")], row, 1) == (True, "")
    assert can_extend(SCHED, [row], row, 0) == (False, "Please select an extension duration.")
    assert can_extend(SCHED, [row], _session(status="approved"), 1) == (
        False, "Only ongoing sessions can be extended.")


def test_extension_updates_bill_the_hourly_price():
    updates, charge = extension_updates(_session(), 1.5, 150)
    assert charge == 225
    assert updates == {"duration": 3.5, "time_end": "13:30:00", "extension": 1.5,
                       "time_extension": 1.5, "amount_extension": 225, "total_bill": 525}


def test_extension_paid_now_adds_to_the_recorded_amount():
    updates, _ = extension_updates(_session(), 1, 100, pay_now=True)
    assert updates["half_amount"] == 250
    assert "payment_status" not in updates

    full = _session(payment_type="Full Payment", full_amount=300, half_amount=None)
    updates, _ = extension_updates(full, 1, 100, pay_now=True)
    assert updates["full_amount"] == 400
    assert updates["payment_status"] == "completed"


def test_complete_session_settles_the_balance():
    updates, balance = complete_session_updates(_session())
    assert balance == 150
    assert updates == {"status": "completed", "payment_status": "completed",
                       "End_Session": True, "half_amount": 300}
    assert complete_session_updates(_session(status="approved")) == (
        None, "Only ongoing sessions can be completed.")


def test_balance_due():
    assert balance_due(_session()) == 150
    assert balance_due({"total_bill": 300, "payment_type": "Full Payment",
                        "full_amount": 300}) == 0
    assert balance_due({"total_bill": 300}) == 300


# ── User management ──

def test_archive_role_label():
    assert archive_role_label("frontdesk") == "Front Desk"
    assert archive_role_label("customer") == "Customer"
    assert archive_role_label("superadmin") is None


def test_deactivation_expired():
    pht = timezone(timedelta(hours=8))
    now = datetime(2030, 6, 3, 12, 0, tzinfo=pht)
    assert deactivation_expired({"deactivated_until": "2030-06-03T11:00:00+08:00"}, now)
    assert deactivation_expired({"deactivated_until": "2030-06-03T03:00:00Z"}, now)
    assert not deactivation_expired({"deactivated_until": "2030-06-03T05:00:00Z"}, now)
    assert not deactivation_expired({"deactivated_until": "2030-06-04T00:00:00"}, now)
    assert not deactivation_expired({}, now)
    assert not deactivation_expired(None, now)


# ── Session state ──

def test_customer_logout_resets_every_key():
    state = customer_session_defaults()
    state.update(user={"account_id": 7}, page="History", sel_table=2, checkout=True,
                 receipt={"reservation_no": "RES-1"}, hist_page=4, resched_id=11)
    state["cart"].append({"table": {}, "hours": 1})
    reset_session_state(state, customer_session_defaults())
    assert state == customer_session_defaults()
    assert customer_session_defaults()["cart"] is not customer_session_defaults()["cart"]


def test_staff_logout_keeps_only_the_lockout():
    state = staff_session_defaults()
    state.update(auth_user={"account_id": 1}, fail_count=2, lock_until=99.0,
                 session_start=5.0, staff_tab="Reference", scan_no="RES-1", scan_nonce=3,
                 checkin_msg="done", perm_matrix={1: {}}, cb_page=2, log_page=3,
                 arch_page=4, user_page=5, fin_page=6, del_armed="td_1")
    reset_session_state(state, staff_session_defaults(), keep=STAFF_KEEP_ON_LOGOUT)
    assert state == dict(staff_session_defaults(), fail_count=2, lock_until=99.0)


def test_finish_checkin_clears_the_scanner():
    state = {"scan_no": "RES-1", "scan_nonce": 2, "checkin_msg": ""}
    finish_checkin(state, "RES-1", "Reference No: 42")
    assert state == {"scan_no": "", "scan_nonce": 3,
                     "checkin_msg": "✅ Checked in RES-1. Reference No: 42"}
