"""
═══════════════════════════════════════════════════════════
 CueBook — Booking Rules
 Pure helpers over rows already fetched by db.py:
 schedules, time slots, bills, validation, check-in,
 sessions and extensions, role permissions,
 client-side list handling.
 All times in PHT (UTC+8)
═══════════════════════════════════════════════════════════
"""

import copy
import math
import random
import re
from datetime import date, datetime

# ═══════════════════════════════════════════════════
#  CONSTANTS
# ═══════════════════════════════════════════════════
SLOT_MINUTES = 30
MIN_GAP_MINUTES = 60        # a booking may not leave a 1–59 min hole on a table
MIN_DURATION_HOURS = 1

# Reservation statuses that no longer hold a table
RELEASED = ("cancelled", "completed")

DAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]

PAYMENT_METHODS = ["GCash", "Cash"]
PAYMENT_TYPE_LABELS = {"full": "Full Payment", "half": "Half Payment"}

# Cancellation manager: payment type → amount column
CANCEL_PAYMENT_COLUMNS = {
    "Full Payment": "full_amount",
    "Half Payment": "half_amount",
    "Partial Payment": "partial_amount",
}

# Customer "My Reservations" tabs → statuses shown
RES_TABS = {
    "pending":     ("pending",),
    "rescheduled": ("rescheduled",),
    "approved":    ("approved",),
    "ongoing":     ("ongoing",),
    "completed":   ("completed", "cancelled"),
}

# Pages a role can be granted (Role_Permission.page)
CUSTOMER_PAGES = ["Reservation (Customer)", "History", "Notifications", "Profile"]
STAFF_PAGES = ["QR Check-In", "Finalize Payment", "CancelBookings", "Reference",
               "User Management", "Archived Users", "Audit Trail", "Profile"]
PAGES = CUSTOMER_PAGES + [p for p in STAFF_PAGES if p not in CUSTOMER_PAGES]

# Roles that bypass Role_Permission (the editor must stay reachable)
UNRESTRICTED_ROLES = ("admin", "superadmin")

# Roles the user manager can create
MANAGED_ROLES = ["frontdesk", "manager", "admin"]

# Deactivation choices → days
DEACTIVATION_PERIODS = {"3 days": 3, "7 days": 7, "2 weeks": 14, "1 month": 30, "1 year": 365}

# Finalize Payment tabs → statuses shown
SESSION_TABS = {
    "approved":  ("approved",),
    "ongoing":   ("ongoing",),
    "completed": ("completed",),
}

# Archived user role label → accounts.role
ARCHIVE_ROLE_MAP = {
    "Admin": "admin",
    "Manager": "manager",
    "Front Desk": "frontdesk",
    "Customer": "customer",
}

# accounts.role → (profile table, primary key)
ROLE_TABLES = {
    "customer":   ("customer", "customer_id"),
    "frontdesk":  ("front_desk", "frontdesk_id"),
    "manager":    ("manager", "manager_id"),
    "admin":      ("admin", "admin_id"),
    "superadmin": ("admin", "admin_id"),
}

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
TIME_12H_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*([AaPp][Mm])\s*$")


# ═══════════════════════════════════════════════════
#  TIME HELPERS
# ═══════════════════════════════════════════════════
def parse_time(value):
    """'13:30', '13:30:00' or '1:30 PM' → minutes after midnight."""
    if value is None:
        raise ValueError("empty time")
    if isinstance(value, int):
        return value
    text = str(value).strip()
    m = TIME_12H_RE.match(text)
    if m:
        minutes = parse_12h(text)
        if minutes is None:
            raise ValueError(f"bad time: {value!r}")
        return minutes
    parts = text.split(":")
    if len(parts) < 2:
        raise ValueError(f"bad time: {value!r}")
    h, mi = int(parts[0]), int(parts[1])
    if not (0 <= h <= 24 and 0 <= mi < 60):
        raise ValueError(f"bad time: {value!r}")
    return h * 60 + mi


def parse_12h(text):
    """'10:30 AM' → 630. None when not a valid 12-hour time."""
    m = TIME_12H_RE.match(text or "")
    if not m:
        return None
    h, mi, period = int(m.group(1)), int(m.group(2)), m.group(3).upper()
    if not (1 <= h <= 12 and 0 <= mi < 60):
        return None
    if period == "PM" and h != 12:
        h += 12
    if period == "AM" and h == 12:
        h = 0
    return h * 60 + mi


def to_db_time(minutes):
    return f"{minutes // 60:02d}:{minutes % 60:02d}:00"


def format_time_12h(value):
    """DB time (or minutes) → '1:30 PM'. '-' when empty or unparsable."""
    if value is None or value == "":
        return "-"
    try:
        minutes = parse_time(value)
    except ValueError:
        return "-"
    h, mi = divmod(minutes, 60)
    h %= 24
    period = "PM" if h >= 12 else "AM"
    disp = 12 if h % 12 == 0 else h % 12
    return f"{disp}:{mi:02d} {period}"


def add_hours(start, hours):
    """Start time + fractional hours → DB time string."""
    return to_db_time(parse_time(start) + int(round(float(hours) * 60)))


def format_hours(hours):
    h = float(hours)
    txt = f"{h:g}"
    return f"{txt} hour" if h == 1 else f"{txt} hours"


def peso(amount):
    return f"₱{float(amount or 0):,.2f}"


def day_name(date_iso):
    return DAY_NAMES[date.fromisoformat(str(date_iso)).weekday()]


# ═══════════════════════════════════════════════════
#  SCHEDULES (TimeDate rows)
# ═══════════════════════════════════════════════════
def is_date_closed(date_iso, time_dates):
    return any(td.get("CloseDay") == str(date_iso) for td in time_dates)


def active_schedule(date_iso, time_dates):
    """Active schedule for the date's weekday, or None (closed / no hours)."""
    if is_date_closed(date_iso, time_dates):
        return None
    dn = day_name(date_iso)
    return next((td for td in time_dates
                 if td.get("Date") == dn and td.get("Actions") == "Active"
                 and not td.get("CloseDay")), None)


def group_schedules(time_dates):
    """→ ({weekday: [schedules]}, [close day rows]) in weekday order."""
    grouped = {}
    closes = []
    for td in time_dates:
        if td.get("CloseDay"):
            closes.append(td)
            continue
        grouped.setdefault(td.get("Date") or "", []).append(td)
    order = {d: i for i, d in enumerate(DAY_NAMES)}
    grouped = dict(sorted(grouped.items(), key=lambda kv: order.get(kv[0], 99)))
    closes.sort(key=lambda td: td["CloseDay"])
    return grouped, closes


def schedule_toggle_updates(time_dates, schedule):
    """Flip Active/Inactive on `schedule`. Activating one deactivates every
    other schedule of the same weekday. Returns [(id, new_actions), ...]."""
    new_status = "Inactive" if schedule.get("Actions") == "Active" else "Active"
    updates = []
    if new_status == "Active":
        for td in time_dates:
            if td.get("CloseDay") or td["id"] == schedule["id"]:
                continue
            if td.get("Date") == schedule.get("Date") and td.get("Actions") != "Inactive":
                updates.append((td["id"], "Inactive"))
    updates.append((schedule["id"], new_status))
    return updates


# ═══════════════════════════════════════════════════
#  TABLES
# ═══════════════════════════════════════════════════
def join_tables(tables, infos):
    """Attach each table's info row (status, price, type) under 'info'."""
    by_table = {i.get("table_id"): i for i in infos}
    out = []
    for t in tables:
        row = dict(t)
        row["info"] = by_table.get(t.get("table_id")) or {}
        out.append(row)
    return out


def bookable_tables(joined, billiard_type=None):
    out = []
    for t in joined:
        info = t.get("info") or {}
        if info.get("status") != "Available":
            continue
        if billiard_type and info.get("billiard_type") != billiard_type:
            continue
        out.append(t)
    return out


# ═══════════════════════════════════════════════════
#  TIME SLOTS & AVAILABILITY
# ═══════════════════════════════════════════════════
def booked_intervals(reservations, exclude_id=None):
    """Minutes intervals held by the table's live reservations."""
    out = []
    for r in reservations:
        if exclude_id is not None and r.get("id") == exclude_id:
            continue
        if r.get("status") in RELEASED:
            continue
        if not r.get("start_time") or not r.get("time_end"):
            continue
        out.append((parse_time(r["start_time"]), parse_time(r["time_end"])))
    return sorted(out)


def _overlaps(start, end, intervals):
    return any(start < e and s < end for s, e in intervals)


def _leaves_gap(minutes):
    return 0 < minutes < MIN_GAP_MINUTES


def max_duration(schedule, reservations, start, durations, exclude_id=None):
    """Largest configured duration (hours) bookable from `start`. 0 if none."""
    if not schedule:
        return 0
    close = parse_time(schedule["CloseTime"])
    st_min = parse_time(start)
    intervals = booked_intervals(reservations, exclude_id)
    next_start = min((s for s, _ in intervals if s >= st_min), default=None)
    best = 0
    for hours in sorted(float(d["hours"]) for d in durations):
        end = st_min + int(round(hours * 60))
        if end > close or _overlaps(st_min, end, intervals):
            break
        if next_start is not None and _leaves_gap(next_start - end):
            continue
        best = hours
    return best


def time_slots(schedule, reservations, date_iso, now=None, durations=None, exclude_id=None):
    """Half-hour start slots for one table on one date.

    Each slot: {"time": '1:30 PM', "db_time": '13:30:00', "available": bool,
    "reason": '' | 'past' | 'gap' | 'booked' | 'too_short'}.
    """
    if not schedule:
        return []
    open_m = parse_time(schedule["OpenTime"])
    close_m = parse_time(schedule["CloseTime"])
    intervals = booked_intervals(reservations, exclude_id)

    now_min = None
    if now is not None and str(date_iso) == now.date().isoformat():
        now_min = now.hour * 60 + now.minute

    slots = []
    t = open_m
    while t < close_m:
        reason = ""
        if now_min is not None and t < now_min:
            reason = "past"
        elif (_leaves_gap(t - open_m) or close_m - t < MIN_GAP_MINUTES
              or any(_leaves_gap(t - e) for _, e in intervals)):
            reason = "gap"
        elif _overlaps(t, t + SLOT_MINUTES, intervals):
            reason = "booked"
        elif durations is not None and not max_duration(schedule, reservations, t,
                                                         durations, exclude_id):
            reason = "too_short"
        slots.append({"time": format_time_12h(t), "db_time": to_db_time(t),
                      "available": not reason, "reason": reason})
        t += SLOT_MINUTES
    return slots


# ═══════════════════════════════════════════════════
#  BILLING
# ═══════════════════════════════════════════════════
def round_half_up(x):
    return int(math.floor(float(x) + 0.5))


def line_total(price, hours):
    return float(price or 0) * float(hours or 0)


def calculate_bill(items):
    """items: [{"price": per-hour, "hours": h}, ...] → (total, half).
    Half payment is the total halved, rounded up to the peso."""
    total = sum(line_total(i["price"], i["hours"]) for i in items)
    return total, math.ceil(total / 2)


def split_amounts(price, hours, payment_type):
    """Per-row amounts stored on the reservation for its share of the bill."""
    bill = line_total(price, hours)
    return {
        "total_bill": round_half_up(bill),
        "full_amount": round_half_up(bill) if payment_type == "full" else None,
        "half_amount": round_half_up(bill / 2) if payment_type == "half" else None,
    }


def _same_amount(a, b):
    return abs(float(a) - float(b)) < 0.005


def validate_payment(method, payment_type, amount, total, half, proof=None, reference=""):
    """Return a list of error messages; empty means the payment may be submitted."""
    errors = []
    if method not in PAYMENT_METHODS:
        errors.append("Choose a payment method.")
        return errors
    if payment_type not in PAYMENT_TYPE_LABELS:
        errors.append("Choose full or half payment.")
        return errors
    if method == "Cash" and payment_type != "full":
        errors.append("Cash payments must be paid in full at the counter.")
    if method == "GCash":
        if not proof:
            errors.append("Please upload a screenshot of your GCash payment.")
        ref = (reference or "").replace(" ", "")
        if not ref:
            errors.append("Please enter your GCash reference number.")
        elif not ref.isdigit():
            errors.append("GCash reference number must contain digits only.")
    try:
        amt = float(amount)
    except (TypeError, ValueError):
        amt = 0
    if amt <= 0:
        errors.append("Please enter a valid payment amount.")
    elif payment_type == "half" and not _same_amount(amt, half):
        errors.append(f"Half payment must be exactly {peso(half)}.")
    elif payment_type == "full" and not _same_amount(amt, total):
        errors.append(f"Full payment must be exactly {peso(total)}.")
    return errors


# ═══════════════════════════════════════════════════
#  CUSTOMER RESERVATIONS
# ═══════════════════════════════════════════════════
def filter_by_tab(reservations, tab, tabs=RES_TABS):
    statuses = tabs.get(tab, ())
    return [r for r in reservations if r.get("status") in statuses]


def can_cancel(reservation):
    if reservation.get("status") in ("pending", "approved", "rescheduled"):
        return True, ""
    return False, f"A {reservation.get('status', '')} reservation cannot be cancelled."


def can_reschedule(reservation):
    status = reservation.get("status")
    if status == "rescheduled":
        return False, ("This reservation has already been rescheduled once. "
                       "You cannot reschedule it again.")
    if status not in ("pending", "approved"):
        return False, f"A {status} reservation cannot be rescheduled."
    return True, ""


# ═══════════════════════════════════════════════════
#  QR CHECK-IN
# ═══════════════════════════════════════════════════
def generate_reference_no(now=None, rng=None):
    """Counter receipt number: YYYYMMDDHHMMSS + 4 random digits."""
    now = now or datetime.now()
    rng = rng or random
    return f"{now:%Y%m%d%H%M%S}{rng.randint(0, 9999):04d}"


def checkin_updates(reservation, gcash_ref="", now=None, rng=None):
    """Row patch for a front-desk check-in. Returns (updates | None, message)."""
    method = reservation.get("payment_method")
    ptype = reservation.get("payment_type")
    if reservation.get("status") in RELEASED:
        return None, f"Reservation is already {reservation['status']}."
    if method == "Cash" and ptype == "Full Payment":
        ref = generate_reference_no(now, rng)
        return {"status": "approved", "payment_status": "completed",
                "reference_no": ref}, f"Reference No: {ref}"
    if method == "GCash":
        ref = (gcash_ref or "").strip()
        if not ref:
            return None, "Please enter GCash Reference Number"
        return {"status": "approved", "reference_no": ref}, f"GCash Ref No: {ref}"
    return {"status": "approved"}, "Customer checked in."


# ═══════════════════════════════════════════════════
#  CANCELLATION MANAGER
# ═══════════════════════════════════════════════════
def recorded_amount(booking):
    col = CANCEL_PAYMENT_COLUMNS.get(booking.get("payment_type"))
    return booking.get(col) if col else None


def balance_due(reservation):
    total = reservation.get("total_bill") or 0
    return max(0, total - (recorded_amount(reservation) or 0))


def _amount_column(reservation):
    return CANCEL_PAYMENT_COLUMNS.get(reservation.get("payment_type"), "full_amount")


# ═══════════════════════════════════════════════════
#  FINALIZE PAYMENT (approved → ongoing → completed)
# ═══════════════════════════════════════════════════
def start_session_updates(reservation):
    if reservation.get("status") != "approved":
        return None, "Only checked-in (approved) reservations can be started."
    return {"status": "ongoing"}, "Session started."


def can_extend(schedule, reservations, reservation, hours):
    """(ok, message) for pushing the session end back by `hours`."""
    if reservation.get("status") != "ongoing":
        return False, "Only ongoing sessions can be extended."
    h = _as_hours(hours)
    if h is None or h <= 0:
        return False, "Please select an extension duration."
    end = parse_time(reservation["time_end"])
    new_end = end + int(round(h * 60))
    if schedule and new_end > parse_time(schedule["CloseTime"]):
        return False, "The extension goes past closing time."
    if _overlaps(end, new_end, booked_intervals(reservations, exclude_id=reservation.get("id"))):
        return False, "The table is booked right after this session."
    return True, ""


def extension_updates(reservation, hours, price, pay_now=False):
    """Row patch adding `hours` at `price` per hour. → (updates, charge)."""
    h = float(hours)
    charge = round_half_up(float(price or 0) * h)
    new_total = (reservation.get("total_bill") or 0) + charge
    updates = {
        "duration": float(reservation.get("duration") or 0) + h,
        "time_end": add_hours(reservation["time_end"], h),
        "extension": float(reservation.get("extension") or 0) + h,
        "time_extension": float(reservation.get("time_extension") or 0) + h,
        "amount_extension": (reservation.get("amount_extension") or 0) + charge,
        "total_bill": new_total,
    }
    if pay_now:
        paid = (recorded_amount(reservation) or 0) + charge
        updates[_amount_column(reservation)] = paid
        if paid >= new_total:
            updates["payment_status"] = "completed"
    return updates, charge


def complete_session_updates(reservation):
    """End an ongoing session with the balance settled. → (updates | None, balance | message)."""
    if reservation.get("status") != "ongoing":
        return None, "Only ongoing sessions can be completed."
    updates = {
        "status": "completed",
        "payment_status": "completed",
        "End_Session": True,
        _amount_column(reservation): reservation.get("total_bill") or 0,
    }
    return updates, balance_due(reservation)


def cancel_payment_updates(booking, payment_type, amount):
    """Edit the payment recorded on a cancelled booking. (updates | None, message)."""
    if payment_type not in CANCEL_PAYMENT_COLUMNS:
        return None, "Please select a payment type."
    try:
        amt = int(amount)
    except (TypeError, ValueError):
        amt = 0
    if amt <= 0:
        return None, "Please enter a valid payment amount."
    total = booking.get("total_bill") or 0
    if amt > total:
        return None, f"Payment amount ({peso(amt)}) cannot exceed total bill ({peso(total)})."
    updates = {col: None for col in CANCEL_PAYMENT_COLUMNS.values()}
    updates[CANCEL_PAYMENT_COLUMNS[payment_type]] = amt
    updates["payment_type"] = payment_type
    updates["cancelled_amount"] = amt
    return updates, ""


# ═══════════════════════════════════════════════════
#  FORM VALIDATION
# ═══════════════════════════════════════════════════
def validate_mobile_ph(mobile):
    """Philippine mobile: 09XXXXXXXXX (11 digits). +639… is normalised."""
    digits = re.sub(r"\D", "", mobile or "")
    if len(digits) == 11 and digits.startswith("09"):
        return digits
    if len(digits) == 12 and digits.startswith("639"):
        return "0" + digits[2:]
    return None


def validate_email(email):
    return bool(EMAIL_RE.match((email or "").strip()))


def validate_new_password(new, confirm, min_len=6):
    if not new or len(new) < min_len:
        return False, f"Password: min {min_len} characters."
    if new != confirm:
        return False, "Passwords don't match."
    return True, ""


def validate_registration(first_name, last_name, email, mobile, password, confirm):
    errors = []
    if not (first_name or "").strip():
        errors.append("First Name required.")
    if not (last_name or "").strip():
        errors.append("Last Name required.")
    if not validate_email(email):
        errors.append("Enter a valid email address.")
    if not validate_mobile_ph(mobile):
        errors.append("Invalid mobile. Use 09XX format (11 digits).")
    ok, msg = validate_new_password(password, confirm)
    if not ok:
        errors.append(msg)
    return errors


def validate_staff_account(first_name, last_name, email, mobile, password, confirm, role):
    errors = validate_registration(first_name, last_name, email, mobile, password, confirm)
    if role not in MANAGED_ROLES:
        errors.append("Choose a role.")
    return errors


def archive_role_label(role):
    """accounts.role → archived_users.role label. None for roles that cannot be archived."""
    return next((label for label, r in ARCHIVE_ROLE_MAP.items() if r == role), None)


def deactivation_expired(deact_row, now):
    until = (deact_row or {}).get("deactivated_until")
    if not until:
        return False
    ts = datetime.fromisoformat(str(until).replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=now.tzinfo)
    return ts <= now


def validate_profile(first_name, last_name, email, mobile):
    errors = []
    if not (first_name or "").strip():
        errors.append("First Name required.")
    if not (last_name or "").strip():
        errors.append("Last Name required.")
    if not validate_email(email):
        errors.append("Enter a valid email address.")
    if (mobile or "").strip() and not validate_mobile_ph(mobile):
        errors.append("Invalid mobile. Use 09XX format (11 digits).")
    return errors


def next_type_code(last_code):
    """'BT-007' → 'BT-008'. BT-001 when there is no usable previous code."""
    try:
        n = int(str(last_code).split("-")[1])
    except (IndexError, ValueError, TypeError):
        return "BT-001"
    return f"BT-{n + 1:03d}"


def _as_hours(value):
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def validate_duration(hours, existing, exclude_id=None):
    h = _as_hours(hours)
    if h is None or h < MIN_DURATION_HOURS:
        return False, "Please enter a valid number of hours (1 or more)."
    if any(float(d["hours"]) == h and d.get("id") != exclude_id for d in existing):
        return False, "This duration already exists."
    return True, ""


def validate_extension(hours, existing, exclude_id=None):
    h = _as_hours(hours)
    if h is None or h <= 0:
        return False, "Please enter valid extension hours (greater than 0)."
    if any(float(e["extension_hours"]) == h and e.get("id") != exclude_id for e in existing):
        return False, "This extension duration already exists."
    return True, ""


def validate_qr_code(full_name, mobile, has_image, existing, exclude_id=None):
    errors = []
    if not (full_name or "").strip():
        errors.append("Please enter the GCash account name.")
    m = (mobile or "").strip()
    if len(m) != 11 or not m.isdigit():
        errors.append("Please enter a valid 11-digit Philippine mobile number.")
    elif not m.startswith("09"):
        errors.append("Philippine mobile numbers must start with 09.")
    if not has_image:
        errors.append("Please upload a QR code image.")
    if any(q.get("cellphone_number") == m and q.get("qr_id") != exclude_id for q in existing):
        errors.append("This cellphone number already exists.")
    return errors


def validate_table_info(status, price, billiard_type):
    errors = []
    if not (status or "").strip():
        errors.append("Status is required.")
    if not (billiard_type or "").strip():
        errors.append("Billiard type is required.")
    p = _as_hours(price)
    if p is None or p <= 0:
        errors.append("Price per hour must be greater than 0.")
    return errors


def validate_schedule(day, open_text, close_text):
    """→ (ok, message, open_db, close_db). Times are typed as '10:30 AM'."""
    if day not in DAY_NAMES or not (open_text or "").strip() or not (close_text or "").strip():
        return False, "Please fill in all fields.", None, None
    o = parse_12h(open_text)
    c = parse_12h(close_text)
    if o is None or c is None:
        return False, "Please enter valid time format (e.g., 10:30 AM).", None, None
    if c <= o:
        return False, "Closing time must be after opening time.", None, None
    return True, "", to_db_time(o), to_db_time(c)


def validate_close_day(date_iso, time_dates, exclude_id=None):
    if not date_iso:
        return False, "Please enter a close date."
    if any(td.get("CloseDay") == str(date_iso) and td.get("id") != exclude_id
           for td in time_dates):
        return False, "This close day already exists."
    return True, ""


# ═══════════════════════════════════════════════════
#  ROLE PERMISSIONS
# ═══════════════════════════════════════════════════
def normalize_role(name):
    return re.sub(r"[\s_\-]", "", (name or "")).lower()


def match_role(roles, role_name):
    key = normalize_role(role_name)
    return next((r for r in roles if normalize_role(r.get("role")) == key), None)


def permission_matrix(rows):
    """Role_Permission rows → {role_id: {page: has_access}}."""
    matrix = {}
    for row in rows:
        matrix.setdefault(row["role_id"], {})[row["page"]] = bool(row.get("has_access"))
    return matrix


def toggle_permission(matrix, role_id, page):
    """New matrix with one flag flipped; a missing flag counts as False."""
    out = copy.deepcopy(matrix)
    flags = out.setdefault(role_id, {})
    flags[page] = not flags.get(page, False)
    return out


def permission_rows(role_id, flags):
    """Full replacement row set for one role: every page, explicit True/False."""
    return [{"role_id": role_id, "page": p, "has_access": bool(flags.get(p, False))}
            for p in PAGES]


# ═══════════════════════════════════════════════════
#  LIST HANDLING (search / sort / paginate)
# ═══════════════════════════════════════════════════
def search_rows(rows, text, fields):
    q = (text or "").strip().lower()
    if not q:
        return list(rows)
    return [r for r in rows
            if any(q in str(r.get(f) if r.get(f) is not None else "").lower() for f in fields)]


def sort_rows(rows, key, descending=False):
    # None sorts last regardless of direction
    present = [r for r in rows if r.get(key) is not None]
    missing = [r for r in rows if r.get(key) is None]
    return sorted(present, key=lambda r: r[key], reverse=descending) + missing


def paginate(rows, page, per_page=10):
    """→ (rows on page, clamped page, total pages). Always at least one page."""
    total_pages = max(1, math.ceil(len(rows) / per_page))
    page = min(max(1, int(page)), total_pages)
    start = (page - 1) * per_page
    return rows[start:start + per_page], page, total_pages


# ═══════════════════════════════════════════════════
#  SESSION STATE (both apps)
# ═══════════════════════════════════════════════════
def customer_session_defaults():
    return {"user": None, "page": "Reservation (Customer)", "cart": [],
            "sel_table": None, "checkout": False, "receipt": None,
            "hist_page": 1, "resched_id": None}


def staff_session_defaults():
    return {"auth_user": None, "fail_count": 0, "lock_until": 0, "session_start": None,
            "staff_tab": "QR Check-In", "scan_no": "", "scan_nonce": 0, "checkin_msg": "",
            "perm_matrix": None, "cb_page": 1, "log_page": 1, "arch_page": 1,
            "user_page": 1, "fin_page": 1, "del_armed": None}


# login lockout survives logout
STAFF_KEEP_ON_LOGOUT = ("fail_count", "lock_until")


def reset_session_state(state, defaults, keep=()):
    """Put every default key back to a fresh value, except those in keep."""
    for k, v in defaults.items():
        if k not in keep:
            state[k] = v
    return state


def finish_checkin(state, res_no, message):
    """Clear the scanned number and bump the scanner nonce so its widgets start empty."""
    state["checkin_msg"] = f"✅ Checked in {res_no}. {message}"
    state["scan_no"] = ""
    state["scan_nonce"] = state.get("scan_nonce", 0) + 1
    return state
