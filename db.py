"""
═══════════════════════════════════════════════════════════
 CueBook — Database Layer V1.0.0 (Supabase)
 Shared by customer_app.py and staff_app.py
 All times in PHT (UTC+8)
═══════════════════════════════════════════════════════════
"""

import streamlit as st
from supabase import create_client
from postgrest.exceptions import APIError
from datetime import datetime, timezone, timedelta
import hashlib, logging, os, time

import qrcodes
from booking import (
    ARCHIVE_ROLE_MAP, MANAGED_ROLES, PAGES, PAYMENT_TYPE_LABELS, RELEASED, ROLE_TABLES,
    UNRESTRICTED_ROLES,
    add_hours, active_schedule, archive_role_label, calculate_bill, can_cancel,
    can_extend, can_reschedule, cancel_payment_updates, checkin_updates,
    complete_session_updates, deactivation_expired, extension_updates,
    generate_reference_no, join_tables, match_role, max_duration, next_type_code,
    peso, permission_matrix, permission_rows, recorded_amount, schedule_toggle_updates,
    split_amounts, start_session_updates, time_slots, validate_mobile_ph,
    validate_new_password, validate_payment,
)

VER = "V1.0.0"
log = logging.getLogger(__name__)

# ── Philippine Standard Time ──
PHT = timezone(timedelta(hours=8))

def now_pht():
    return datetime.now(PHT)

def today_pht():
    return now_pht().date()

def today_iso():
    return today_pht().isoformat()


class ReservationError(Exception):
    """A fatal step of the reservation submission failed; nothing was booked."""


# ── Configuration: st.secrets first, then environment ──
def get_secret(name, default=""):
    try:
        return st.secrets[name]
    except Exception:
        return os.environ.get(name, default)

QR_BUCKET = get_secret("QR_BUCKET", "qr-codes")

# ── Supabase Connection ──
def get_supabase():
    if "sb_client" not in st.session_state:
        url = get_secret("SUPABASE_URL")
        key = get_secret("SUPABASE_KEY")
        if not url or not key:
            st.error("❌ Missing Supabase credentials.")
            st.stop()
        st.session_state.sb_client = create_client(url, key)
    return st.session_state.sb_client

def hash_pw(pw):
    return hashlib.sha256(pw.encode()).hexdigest()

def log_action(account_id, action):
    """Audit trail row. Failure to audit never blocks the action itself."""
    sb = get_supabase()
    try:
        sb.table("system_log").insert({
            "account_id": account_id, "action": action,
            "created_at": now_pht().isoformat(),
        }).execute()
    except APIError as e:
        log.warning("system_log insert failed (%s): %s", action, e.message)

# ═══════════════════════════════════════════════════
#  CACHED LOOKUPS (reference tables change rarely)
# ═══════════════════════════════════════════════════
@st.cache_data(ttl=60)
def get_tables():
    sb = get_supabase()
    r = sb.table("billiard_table").select("*").order("table_id").execute()
    return r.data or []

@st.cache_data(ttl=60)
def get_table_infos():
    sb = get_supabase()
    r = sb.table("billiard_table_info").select("*").execute()
    return r.data or []

@st.cache_data(ttl=60)
def get_types():
    sb = get_supabase()
    r = sb.table("billiard_type").select("*").order("created_at", desc=True).execute()
    return r.data or []

@st.cache_data(ttl=60)
def get_statuses():
    sb = get_supabase()
    r = sb.table("status").select("*").order("status").execute()
    return r.data or []

@st.cache_data(ttl=60)
def get_durations():
    sb = get_supabase()
    r = sb.table("duration").select("*").order("hours").execute()
    return r.data or []

@st.cache_data(ttl=60)
def get_extensions():
    sb = get_supabase()
    r = sb.table("extension").select("*").order("extension_hours").execute()
    return r.data or []

@st.cache_data(ttl=60)
def get_time_dates():
    sb = get_supabase()
    r = sb.table("TimeDate").select("*").order("id").execute()
    return r.data or []

@st.cache_data(ttl=60)
def get_roles():
    sb = get_supabase()
    r = sb.table("UserRole").select("*").order("created_at", desc=True).execute()
    return r.data or []

@st.cache_data(ttl=60)
def get_permission_rows():
    sb = get_supabase()
    r = sb.table("Role_Permission").select("*").execute()
    return r.data or []

@st.cache_data(ttl=60)
def get_qr_codes():
    sb = get_supabase()
    r = sb.table("qr_code").select("*").order("generated_at", desc=True).execute()
    return r.data or []

def get_active_qr_codes():
    return [q for q in get_qr_codes() if q.get("status")]

def get_tables_with_info():
    return join_tables(get_tables(), get_table_infos())

def invalidate_tables():
    get_tables.clear()
    get_table_infos.clear()

def invalidate_references():
    invalidate_tables()
    for fn in (get_types, get_statuses, get_durations, get_extensions,
               get_time_dates, get_roles, get_permission_rows, get_qr_codes):
        fn.clear()

# ═══════════════════════════════════════════════════
#  BILLIARD TYPES
# ═══════════════════════════════════════════════════
def add_type(name):
    sb = get_supabase()
    last = (sb.table("billiard_type").select("billiard_type_code")
            .order("id", desc=True).limit(1).execute())
    code = next_type_code(last.data[0].get("billiard_type_code") if last.data else None)
    sb.table("billiard_type").insert({
        "billiard_type": name.strip(), "billiard_type_code": code,
        "created_at": now_pht().isoformat(),
    }).execute()
    get_types.clear()
    return code

def update_type(type_id, name):
    sb = get_supabase()
    sb.table("billiard_type").update({"billiard_type": name.strip()}).eq("id", type_id).execute()
    get_types.clear()

def delete_type(type_id):
    sb = get_supabase()
    sb.table("billiard_type").delete().eq("id", type_id).execute()
    get_types.clear()

# ═══════════════════════════════════════════════════
#  BILLIARD TABLES + TABLE INFO
# ═══════════════════════════════════════════════════
def add_table(name, image=None):
    sb = get_supabase()
    row = {"table_name": name.strip()}
    if image:
        row["table_image"] = image
    sb.table("billiard_table").insert(row).execute()
    invalidate_tables()

def update_table(table, name, image=None):
    """Image is replaced only when a new one is given. A rename keeps the old
    name in previous_table_name."""
    sb = get_supabase()
    upd = {"table_name": name.strip()}
    if image:
        upd["table_image"] = image
    if upd["table_name"] != table.get("table_name"):
        upd["previous_table_name"] = table.get("table_name")
    sb.table("billiard_table").update(upd).eq("table_id", table["table_id"]).execute()
    invalidate_tables()

def delete_table(table_id):
    sb = get_supabase()
    sb.table("billiard_table_info").delete().eq("table_id", table_id).execute()
    sb.table("billiard_table").delete().eq("table_id", table_id).execute()
    invalidate_tables()

def save_table_info(table_id, status, price, billiard_type):
    sb = get_supabase()
    row = {"status": status.strip(), "price": float(price),
           "billiard_type": billiard_type.strip()}
    existing = next((i for i in get_table_infos() if i.get("table_id") == table_id), None)
    if existing:
        sb.table("billiard_table_info").update(row).eq(
            "table_info_id", existing["table_info_id"]).execute()
    else:
        row["table_id"] = table_id
        sb.table("billiard_table_info").insert(row).execute()
    invalidate_tables()

# ═══════════════════════════════════════════════════
#  DURATIONS / EXTENSIONS
# ═══════════════════════════════════════════════════
def add_duration(hours):
    sb = get_supabase()
    sb.table("duration").insert({"hours": float(hours)}).execute()
    get_durations.clear()

def update_duration(duration_id, hours):
    sb = get_supabase()
    sb.table("duration").update({"hours": float(hours)}).eq("id", duration_id).execute()
    get_durations.clear()

def delete_duration(duration_id):
    sb = get_supabase()
    sb.table("duration").delete().eq("id", duration_id).execute()
    get_durations.clear()

def add_extension(hours):
    sb = get_supabase()
    sb.table("extension").insert({"extension_hours": float(hours)}).execute()
    get_extensions.clear()

def update_extension(extension_id, hours):
    sb = get_supabase()
    sb.table("extension").update({"extension_hours": float(hours)}).eq("id", extension_id).execute()
    get_extensions.clear()

def delete_extension(extension_id):
    sb = get_supabase()
    sb.table("extension").delete().eq("id", extension_id).execute()
    get_extensions.clear()

# ═══════════════════════════════════════════════════
#  GCASH QR CODES
# ═══════════════════════════════════════════════════
def add_qr_code(full_name, cellphone_number, qr_image, active=True):
    sb = get_supabase()
    sb.table("qr_code").insert({
        "full_name": full_name.strip(), "cellphone_number": cellphone_number.strip(),
        "qr_image": qr_image, "status": bool(active),
        "generated_at": now_pht().isoformat(),
    }).execute()
    get_qr_codes.clear()

def update_qr_code(qr_id, **kwargs):
    sb = get_supabase()
    sb.table("qr_code").update(kwargs).eq("qr_id", qr_id).execute()
    get_qr_codes.clear()

def delete_qr_code(qr_id):
    sb = get_supabase()
    sb.table("qr_code").delete().eq("qr_id", qr_id).execute()
    get_qr_codes.clear()

# ═══════════════════════════════════════════════════
#  SCHEDULES (TimeDate): weekday hours + close days
# ═══════════════════════════════════════════════════
def _deactivate_same_day(sb, day, keep_id=None):
    for td in get_time_dates():
        if td.get("CloseDay") or td.get("Date") != day or td["id"] == keep_id:
            continue
        if td.get("Actions") == "Active":
            sb.table("TimeDate").update({"Actions": "Inactive"}).eq("id", td["id"]).execute()

def save_schedule(day, open_time, close_time, actions="Active", schedule_id=None):
    """Insert or update a weekday schedule. Only one schedule per weekday is Active."""
    sb = get_supabase()
    row = {"Date": day, "OpenTime": open_time, "CloseTime": close_time,
           "Actions": actions, "CloseDay": None}
    if actions == "Active":
        _deactivate_same_day(sb, day, keep_id=schedule_id)
    if schedule_id is None:
        sb.table("TimeDate").insert(row).execute()
    else:
        sb.table("TimeDate").update(row).eq("id", schedule_id).execute()
    get_time_dates.clear()

def save_close_day(close_day, time_date_id=None):
    sb = get_supabase()
    row = {"CloseDay": str(close_day), "Date": None, "OpenTime": None,
           "CloseTime": None, "Actions": None}
    if time_date_id is None:
        sb.table("TimeDate").insert(row).execute()
    else:
        sb.table("TimeDate").update(row).eq("id", time_date_id).execute()
    get_time_dates.clear()

def toggle_schedule(schedule):
    sb = get_supabase()
    updates = schedule_toggle_updates(get_time_dates(), schedule)
    for td_id, actions in updates:
        sb.table("TimeDate").update({"Actions": actions}).eq("id", td_id).execute()
    get_time_dates.clear()
    return updates[-1][1]

def delete_time_date(time_date_id):
    sb = get_supabase()
    sb.table("TimeDate").delete().eq("id", time_date_id).execute()
    get_time_dates.clear()

# ═══════════════════════════════════════════════════
#  USER ROLES + ROLE PERMISSIONS
# ═══════════════════════════════════════════════════
def add_role(name):
    sb = get_supabase()
    sb.table("UserRole").insert({"role": name.strip(),
                                 "created_at": now_pht().isoformat()}).execute()
    get_roles.clear()

def update_role(role_id, name):
    sb = get_supabase()
    sb.table("UserRole").update({"role": name.strip()}).eq("role_id", role_id).execute()
    get_roles.clear()

def delete_role(role_id):
    sb = get_supabase()
    sb.table("Role_Permission").delete().eq("role_id", role_id).execute()
    sb.table("UserRole").delete().eq("role_id", role_id).execute()
    get_roles.clear()
    get_permission_rows.clear()

def load_permission_matrix():
    return permission_matrix(get_permission_rows())

def save_role_permissions(role_id, flags, actor_id=None):
    """Replace the role's permission rows with one explicit row per page."""
    sb = get_supabase()
    rows = permission_rows(role_id, flags)
    sb.table("Role_Permission").delete().eq("role_id", role_id).execute()
    sb.table("Role_Permission").insert(rows).execute()
    get_permission_rows.clear()
    granted = sum(1 for r in rows if r["has_access"])
    log.info("permissions saved for role %s: %d/%d pages", role_id, granted, len(rows))
    log_action(actor_id, f"Updated permissions for role {role_id}")

def allowed_pages(role_name):
    if role_name in UNRESTRICTED_ROLES:
        return list(PAGES)
    role = match_role(get_roles(), role_name)
    if not role:
        log.warning("no UserRole row matches %r", role_name)
        return []
    flags = load_permission_matrix().get(role["role_id"], {})
    return [p for p in PAGES if flags.get(p)]

# ═══════════════════════════════════════════════════
#  ACCOUNTS: LOGIN / REGISTER / PROFILE
# ═══════════════════════════════════════════════════
def get_account_by_email(email):
    sb = get_supabase()
    r = sb.table("accounts").select("*").eq("email", email.strip().lower()).limit(1).execute()
    return r.data[0] if r.data else None

def get_account(account_id):
    sb = get_supabase()
    r = sb.table("accounts").select("*").eq("account_id", account_id).limit(1).execute()
    return r.data[0] if r.data else None

def _full_name(row, fallback=""):
    parts = [row.get("first_name"), row.get("middle_name"), row.get("last_name")]
    name = " ".join(p.strip() for p in parts if p and p.strip())
    return name or fallback

def authenticate(email, password, allowed_roles=None):
    """→ (session account | None, message). Hashed password comparison only."""
    if not (email or "").strip() or not password:
        return None, "Please enter both email and password."
    acct = get_account_by_email(email)
    if not acct:
        return None, "Invalid email or password."
    if acct.get("status") == "deactivated":
        sb = get_supabase()
        r = (sb.table("deact_user").select("duration_days, deactivated_until")
             .eq("account_id", acct["account_id"]).eq("status", "deactivated")
             .limit(1).execute())
        deact = r.data[0] if r.data else None
        if deact and deactivation_expired(deact, now_pht()):
            reactivate_user(acct["account_id"])
        else:
            days = deact.get("duration_days") if deact else None
            if days:
                return None, f"Your account has been deactivated for {days} day{'s' if days > 1 else ''}."
            return None, "Your account has been deactivated."
    if acct.get("password") != hash_pw(password):
        return None, "Invalid email or password."
    role = acct.get("role", "")
    if allowed_roles is not None and role not in allowed_roles:
        return None, "This account cannot sign in here."

    full_name = acct["email"]
    table, _ = ROLE_TABLES.get(role, (None, None))
    if table:
        sb = get_supabase()
        r = sb.table(table).select("*").eq("account_id", acct["account_id"]).limit(1).execute()
        if r.data:
            full_name = _full_name(r.data[0], acct["email"])
    session = {"account_id": acct["account_id"], "email": acct["email"],
               "role": role, "full_name": full_name}
    log_action(acct["account_id"], f"{role.capitalize()} login")
    log.info("login ok: account %s (%s)", acct["account_id"], role)
    return session, f"Welcome back, {full_name}!"

def _create_account(email, password_hash, role, profile):
    """Insert the account, then its role profile row. → account_id."""
    sb = get_supabase()
    r = sb.table("accounts").insert({
        "email": email, "password": password_hash, "role": role,
        "status": "active", "created_at": now_pht().isoformat(),
    }).execute()
    account_id = r.data[0]["account_id"]
    table, _ = ROLE_TABLES[role]
    try:
        sb.table(table).insert(dict(profile, account_id=account_id)).execute()
    except APIError:
        # no orphan login without a profile
        sb.table("accounts").delete().eq("account_id", account_id).execute()
        raise
    return account_id

def _new_profile(first_name, middle_name, last_name, email, mobile):
    return {"first_name": first_name.strip(), "middle_name": (middle_name or "").strip(),
            "last_name": last_name.strip(), "email": email,
            "contact_number": validate_mobile_ph(mobile)}

def register_customer(first_name, middle_name, last_name, email, mobile, password):
    """Create the account + customer profile. Caller validates the form first."""
    em = email.strip().lower()
    if get_account_by_email(em):
        return False, "Email is already registered."
    account_id = _create_account(em, hash_pw(password), "customer",
                                 _new_profile(first_name, middle_name, last_name, em, mobile))
    log_action(account_id, "Customer registered")
    return True, "Registration successful. You can now log in."

def get_profile(session):
    """→ (profile table, profile row | {}, account row | {})."""
    table, _ = ROLE_TABLES.get(session["role"], (None, None))
    acct = get_account(session["account_id"]) or {}
    if not table:
        return None, {}, acct
    sb = get_supabase()
    r = sb.table(table).select("*").eq("account_id", session["account_id"]).limit(1).execute()
    return table, (r.data[0] if r.data else {}), acct

def update_profile(session, first_name, middle_name, last_name, email, mobile):
    sb = get_supabase()
    table, pk = ROLE_TABLES[session["role"]]
    em = email.strip().lower()
    other = get_account_by_email(em)
    if other and other["account_id"] != session["account_id"]:
        return False, "Email is already used by another account."
    fields = {"first_name": first_name.strip(), "middle_name": (middle_name or "").strip(),
              "last_name": last_name.strip(), "email": em}
    if (mobile or "").strip():
        fields["contact_number"] = validate_mobile_ph(mobile)
    _, profile, _ = get_profile(session)
    if profile:
        sb.table(table).update(fields).eq(pk, profile[pk]).execute()
    else:
        fields["account_id"] = session["account_id"]
        sb.table(table).insert(fields).execute()
    sb.table("accounts").update({"email": em}).eq("account_id", session["account_id"]).execute()
    return True, "Profile updated!"

def change_password(account_id, current, new, confirm):
    acct = get_account(account_id)
    if not acct or acct.get("password") != hash_pw(current or ""):
        return False, "Current password is incorrect."
    ok, msg = validate_new_password(new, confirm)
    if not ok:
        return False, msg
    sb = get_supabase()
    sb.table("accounts").update({"password": hash_pw(new)}).eq("account_id", account_id).execute()
    log_action(account_id, "Password changed")
    return True, "Password changed!"

# ═══════════════════════════════════════════════════
#  RESERVATIONS: READS
# ═══════════════════════════════════════════════════
def get_table_reservations(table_id, reservation_date):
    sb = get_supabase()
    r = (sb.table("reservation").select("*")
         .eq("table_id", table_id).eq("reservation_date", str(reservation_date))
         .order("start_time").execute())
    return r.data or []

def get_account_reservations(account_id):
    sb = get_supabase()
    r = (sb.table("reservation").select("*").eq("account_id", account_id)
         .order("created_at", desc=True).execute())
    return r.data or []

def find_reservation(reservation_no):
    """All rows sharing a reservation number (one per table)."""
    sb = get_supabase()
    r = sb.table("reservation").select("*").eq("reservation_no", reservation_no.strip()).execute()
    return r.data or []

def available_slots(table_id, reservation_date, exclude_id=None, held=None):
    """Start slots for a table on a date, with availability resolved.
    `held` are extra intervals (cart items not yet submitted)."""
    schedule = active_schedule(reservation_date, get_time_dates())
    res = get_table_reservations(table_id, reservation_date) + list(held or [])
    return time_slots(schedule, res, reservation_date, now=now_pht(),
                      durations=get_durations(), exclude_id=exclude_id)

def longest_duration(table_id, reservation_date, start_time, exclude_id=None, held=None):
    schedule = active_schedule(reservation_date, get_time_dates())
    res = get_table_reservations(table_id, reservation_date) + list(held or [])
    return max_duration(schedule, res, start_time, get_durations(), exclude_id)

# ═══════════════════════════════════════════════════
#  RESERVATIONS: PAYMENT SUBMISSION
# ═══════════════════════════════════════════════════
def submit_reservation(account_id, items, method, payment_type, amount,
                       proof=None, reference=""):
    """Book every cart item under one reservation number.

    items: [{"table": table row joined with "info", "date": ISO date,
             "start_time": 'HH:MM:SS', "hours": float}, ...]

    Steps: RPC reservation number → insert rows → notification →
    QR image (inline data URL) → QR upload to storage → patch public URL.
    Only the first two steps are fatal.
    """
    if not items:
        raise ReservationError("Please select tables first.")
    sb = get_supabase()
    total, half = calculate_bill([{"price": i["table"]["info"].get("price"), "hours": i["hours"]}
                                  for i in items])
    errors = validate_payment(method, payment_type, amount, total, half, proof, reference)
    if errors:
        raise ReservationError(" ".join(errors))

    # 1. Reservation number
    try:
        r = sb.rpc("generate_reservation_no", {}).execute()
    except APIError as e:
        raise ReservationError(f"Failed to generate reservation number: {e.message}") from e
    reservation_no = str(r.data).strip() if r.data else ""
    if not reservation_no:
        raise ReservationError("Failed to generate reservation number - returned empty")
    log.info("[%s] reservation number issued for account %s", reservation_no, account_id)

    # 2. One row per table
    ref = (reference or "").replace(" ", "")
    gcash = method == "GCash"
    rows = []
    for it in items:
        info = it["table"]["info"]
        row = {
            "reservation_no": reservation_no,
            "account_id": account_id,
            "table_id": it["table"]["table_id"],
            "reservation_date": str(it["date"]),
            "billiard_type": info.get("billiard_type"),
            "start_time": it["start_time"],
            "time_end": add_hours(it["start_time"], it["hours"]),
            "duration": float(it["hours"]),
            "status": "pending",
            "payment_status": "completed" if payment_type == "full" else "pending",
            "payment_method": method,
            "payment_type": PAYMENT_TYPE_LABELS[payment_type],
            "proof_of_payment": proof if gcash else None,
            "reference_no": int(ref) if gcash and ref else None,
            "notification": False,
            "created_at": now_pht().isoformat(),
        }
        row.update(split_amounts(info.get("price"), it["hours"], payment_type))
        rows.append(row)
    try:
        ins = sb.table("reservation").insert(rows).execute()
    except APIError as e:
        log.error("[%s] reservation insert failed: %s", reservation_no, e.message)
        raise ReservationError(f"Failed to create reservation: {e.message}") from e
    log.info("[%s] %d reservation row(s) inserted", reservation_no, len(rows))

    # 3. Notification for staff
    try:
        sb.table("notification").insert({
            "account_id": account_id, "reservation_no": reservation_no,
            "message": f"New reservation {reservation_no} has been submitted and is pending approval.",
            "is_read": False, "created_at": now_pht().isoformat(),
        }).execute()
    except APIError as e:
        log.warning("[%s] notification insert failed: %s", reservation_no, e.message)

    # 4. QR code, stored inline first
    png = qrcodes.make_qr_png(qrcodes.reservation_qr_payload(reservation_no, account_id))
    qr_url = qrcodes.to_data_url(png)
    try:
        sb.table("reservation").update({"qr_code": qr_url}).eq(
            "reservation_no", reservation_no).execute()
    except APIError as e:
        log.warning("[%s] inline QR update failed: %s", reservation_no, e.message)

    # 5. Upload to storage and point the rows at the public URL
    fname = f"{reservation_no}_{int(time.time() * 1000)}.png"
    try:
        bucket = sb.storage.from_(QR_BUCKET)
        bucket.upload(path=fname, file=png, file_options={
            "content-type": "image/png", "cache-control": "3600", "upsert": "false"})
        public_url = bucket.get_public_url(fname)
        sb.table("reservation").update({"qr_code": public_url}).eq(
            "reservation_no", reservation_no).execute()
        qr_url = public_url
        log.info("[%s] QR uploaded as %s", reservation_no, fname)
    except Exception as e:
        log.warning("[%s] QR upload failed, keeping inline QR: %s", reservation_no, e)

    amount_paid = total if payment_type == "full" else half
    return {
        "reservation_no": reservation_no,
        "rows": ins.data or rows,
        "total": total,
        "amount_paid": amount_paid,
        "remaining": total - amount_paid,
        "payment_status": rows[0]["payment_status"],
        "qr_png": png,
        "qr_url": qr_url,
    }

# ═══════════════════════════════════════════════════
#  RESERVATIONS: CUSTOMER ACTIONS
# ═══════════════════════════════════════════════════
def cancel_reservation(reservation, account_id):
    ok, msg = can_cancel(reservation)
    if not ok:
        return False, msg
    sb = get_supabase()
    sb.table("reservation").update({"status": "cancelled"}).eq("id", reservation["id"]).execute()
    log_action(account_id, f"Cancelled reservation {reservation.get('reservation_no', '')}")
    return True, "Your reservation has been cancelled."

def reschedule_reservation(reservation, table, new_date, start_time, hours, account_id):
    """Move a booking once. The new slot is re-checked against fresh data."""
    ok, msg = can_reschedule(reservation)
    if not ok:
        return False, msg
    if (table.get("info") or {}).get("status") != "Available":
        return False, "This table is not available."
    slots = available_slots(table["table_id"], new_date, exclude_id=reservation["id"])
    slot = next((s for s in slots if s["db_time"] == start_time), None)
    if not slot or not slot["available"]:
        return False, "That time is no longer available. Pick another slot."
    longest = longest_duration(table["table_id"], new_date, start_time,
                               exclude_id=reservation["id"])
    if float(hours) > longest:
        return False, f"Only up to {longest:g} hour(s) are available from that time."
    sb = get_supabase()
    sb.table("reservation").update({
        "table_id": table["table_id"],
        "billiard_type": table["info"].get("billiard_type"),
        "reservation_date": str(new_date),
        "start_time": start_time,
        "time_end": add_hours(start_time, hours),
        "duration": float(hours),
        "status": "rescheduled",
    }).eq("id", reservation["id"]).execute()
    log_action(account_id, f"Rescheduled reservation {reservation.get('reservation_no', '')}")
    return True, "Reservation rescheduled."

# ═══════════════════════════════════════════════════
#  FRONT DESK: QR CHECK-IN
# ═══════════════════════════════════════════════════
def check_in(rows, gcash_ref="", actor_id=None):
    """Check in every row of one reservation number. → (ok, message)."""
    if not rows:
        return False, "Reservation does not exist."
    live = [r for r in rows if r.get("status") not in RELEASED]
    if not live:
        return False, f"Reservation is already {rows[0].get('status')}."
    sb = get_supabase()
    # one counter reference for the whole reservation
    updates, msg = checkin_updates(live[0], gcash_ref, now=now_pht())
    if updates is None:
        return False, msg
    for row in live:
        sb.table("reservation").update(updates).eq("id", row["id"]).execute()
    log_action(actor_id, f"Checked in reservation {rows[0].get('reservation_no', '')}")
    return True, msg

# ═══════════════════════════════════════════════════
#  FINALIZE PAYMENT: approved → ongoing → completed
# ═══════════════════════════════════════════════════
def get_session_bookings():
    """Checked-in, ongoing and completed rows with email and customer name attached."""
    sb = get_supabase()
    res = (sb.table("reservation").select("*").in_("status", ["approved", "ongoing", "completed"])
           .order("reservation_date", desc=True).order("start_time").execute()).data or []
    return _attach_customers(res)

def start_session(reservation, actor_id=None):
    updates, msg = start_session_updates(reservation)
    if updates is None:
        return False, msg
    sb = get_supabase()
    sb.table("reservation").update(updates).eq("id", reservation["id"]).execute()
    log_action(actor_id, f"Started session {reservation.get('reservation_no', '')}")
    return True, msg

def extend_session(reservation, hours, pay_now=False, actor_id=None):
    """Add extension hours billed at the table's hourly price.
    The table must be free until the new end time."""
    table = next((t for t in get_tables_with_info()
                  if t["table_id"] == reservation.get("table_id")), None)
    price = (table or {}).get("info", {}).get("price")
    if not price:
        return False, "This table has no hourly price set."
    schedule = active_schedule(reservation["reservation_date"], get_time_dates())
    others = get_table_reservations(reservation["table_id"], reservation["reservation_date"])
    ok, msg = can_extend(schedule, others, reservation, hours)
    if not ok:
        return False, msg
    updates, charge = extension_updates(reservation, hours, price, pay_now)
    sb = get_supabase()
    sb.table("reservation").update(updates).eq("id", reservation["id"]).execute()
    log.info("[%s] extended by %sh (%s)", reservation.get("reservation_no"), hours, charge)
    log_action(actor_id, f"Extended session {reservation.get('reservation_no', '')} by {hours}h")
    paid = "paid" if pay_now else "added to the bill"
    return True, f"Extension of {float(hours):g} hour(s) ({peso(charge)}) {paid}."

def complete_session(reservation, method="Cash", reference="", actor_id=None):
    """Collect the balance, close the session and record it in `payment` once."""
    updates, balance = complete_session_updates(reservation)
    if updates is None:
        return False, balance
    sb = get_supabase()
    existing = (sb.table("payment").select("payment_id")
                .eq("reservation_id", reservation["id"]).limit(1).execute())
    sb.table("reservation").update(updates).eq("id", reservation["id"]).execute()
    ref = (reference or "").strip() or generate_reference_no(now_pht())
    if not existing.data:
        total = reservation.get("total_bill") or 0
        sb.table("payment").insert({
            "reservation_id": reservation["id"],
            "account_id": reservation.get("account_id"),
            "amount": total,
            "total_bill": total,
            "method": method,
            "reference_no": ref,
            "payment_type": reservation.get("payment_type"),
            "status": "completed",
            "table_id": reservation.get("table_id"),
            "billiard_type": reservation.get("billiard_type"),
            "created_at": now_pht().isoformat(),
        }).execute()
    log_action(actor_id, f"Completed session {reservation.get('reservation_no', '')}")
    if balance:
        return True, f"Remaining balance of {peso(balance)} collected. Reference: {ref}"
    return True, f"Session completed. Reference: {ref}"

# ═══════════════════════════════════════════════════
#  CANCELLATION MANAGER
# ═══════════════════════════════════════════════════
def get_cancelled_bookings():
    """Cancelled reservations with account email and customer name attached."""
    sb = get_supabase()
    res = (sb.table("reservation").select("*").eq("status", "cancelled")
           .order("reservation_date", desc=True).order("start_time").execute()).data or []
    return _attach_customers(res)

def _attach_customers(res):
    sb = get_supabase()
    accts = sb.table("accounts").select("account_id, email").execute().data or []
    custs = (sb.table("customer")
             .select("customer_id, account_id, first_name, last_name, middle_name")
             .execute()).data or []
    acct_map = {a["account_id"]: a for a in accts}
    cust_map = {c["account_id"]: c for c in custs}
    out = []
    for r in res:
        row = dict(r)
        row["email"] = acct_map.get(r.get("account_id"), {}).get("email", "")
        cust = cust_map.get(r.get("account_id"))
        row["customer_name"] = _full_name(cust, "N/A") if cust else "N/A"
        out.append(row)
    return out

def delete_reservation(reservation_id, actor_id=None):
    sb = get_supabase()
    sb.table("reservation").delete().eq("id", reservation_id).execute()
    log_action(actor_id, f"Deleted reservation row {reservation_id}")

def update_cancelled_payment(booking, payment_type, amount):
    updates, msg = cancel_payment_updates(booking, payment_type, amount)
    if updates is None:
        return False, msg
    sb = get_supabase()
    sb.table("reservation").update(updates).eq("id", booking["id"]).execute()
    return True, "Payment details have been successfully updated."

def get_synced_payment_ids():
    sb = get_supabase()
    r = sb.table("payment").select("reservation_id").execute()
    return {p["reservation_id"] for p in (r.data or [])}

def sync_payment(booking, reference_no="", actor_id=None):
    """Record a cancelled booking's retained payment in `payment`, once."""
    sb = get_supabase()
    r = sb.table("payment").select("payment_id").eq("reservation_id", booking["id"]).limit(1).execute()
    if r.data:
        return False, "This booking's payment has already been synced."
    amount = booking.get("cancelled_amount") or recorded_amount(booking) or 0
    sb.table("payment").insert({
        "reservation_id": booking["id"],
        "account_id": booking.get("account_id"),
        "amount": amount,
        "method": booking.get("payment_method"),
        "reference_no": (reference_no or "").strip() or booking.get("reference_no"),
        "payment_type": booking.get("payment_type"),
        "status": "cancelled",
        "created_at": now_pht().isoformat(),
    }).execute()
    log_action(actor_id, f"Synced payment for reservation row {booking['id']}")
    return True, "Payment synced."

# ═══════════════════════════════════════════════════
#  NOTIFICATIONS
# ═══════════════════════════════════════════════════
def get_notifications(account_id):
    sb = get_supabase()
    r = (sb.table("notification").select("*").eq("account_id", account_id)
         .order("created_at", desc=True).execute())
    return r.data or []

def mark_notification_read(notification_id):
    sb = get_supabase()
    sb.table("notification").update({"is_read": True}).eq("id", notification_id).execute()

def mark_all_read(account_id):
    sb = get_supabase()
    sb.table("notification").update({"is_read": True}).eq(
        "account_id", account_id).eq("is_read", False).execute()

# ═══════════════════════════════════════════════════
#  USER MANAGEMENT
# ═══════════════════════════════════════════════════
def get_users():
    """Every account with its profile, display name and open deactivation."""
    sb = get_supabase()
    accts = sb.table("accounts").select("*").order("created_at", desc=True).execute().data or []
    deacts = (sb.table("deact_user").select("*").eq("status", "deactivated")
              .execute()).data or []
    deact_map = {d["account_id"]: d for d in deacts}
    profiles = {}
    for table in {t for t, _ in ROLE_TABLES.values()}:
        for p in sb.table(table).select("*").execute().data or []:
            profiles[p.get("account_id")] = p
    out = []
    for a in accts:
        prof = profiles.get(a["account_id"], {})
        deact = deact_map.get(a["account_id"])
        out.append({
            "account_id": a["account_id"], "email": a["email"], "role": a.get("role"),
            "status": a.get("status", "active"), "full_name": _full_name(prof, a["email"]),
            "profile": prof,
            "deactivated_until": deact.get("deactivated_until") if deact else None,
        })
    return out

def create_staff_account(first_name, middle_name, last_name, email, mobile, password, role,
                         actor_id=None):
    """Caller validates the form first."""
    if role not in MANAGED_ROLES:
        return False, "Choose a role."
    em = email.strip().lower()
    if get_account_by_email(em):
        return False, "Email is already registered."
    account_id = _create_account(em, hash_pw(password), role,
                                 _new_profile(first_name, middle_name, last_name, em, mobile))
    log.info("staff account %s created as %s", account_id, role)
    log_action(actor_id, f"Created {role} account {em}")
    return True, f"Account created for {em}."

def reset_password(account_id, new, confirm, actor_id=None):
    ok, msg = validate_new_password(new, confirm)
    if not ok:
        return False, msg
    sb = get_supabase()
    sb.table("accounts").update({"password": hash_pw(new)}).eq("account_id", account_id).execute()
    log_action(actor_id, f"Reset password of account {account_id}")
    return True, "Password reset."

def deactivate_user(account_id, days, actor_id=None):
    if account_id == actor_id:
        return False, "You cannot deactivate your own account."
    if not days or int(days) <= 0:
        return False, "Choose a deactivation period."
    days = int(days)
    sb = get_supabase()
    now = now_pht()
    row = {"deactivated_until": (now + timedelta(days=days)).isoformat(),
           "duration_days": days, "deactivation_date": now.isoformat(),
           "status": "deactivated"}
    existing = (sb.table("deact_user").select("deact_id")
                .eq("account_id", account_id).limit(1).execute())
    if existing.data:
        sb.table("deact_user").update(row).eq("deact_id", existing.data[0]["deact_id"]).execute()
    else:
        sb.table("deact_user").insert(dict(row, account_id=account_id)).execute()
    sb.table("accounts").update({"status": "deactivated"}).eq("account_id", account_id).execute()
    log_action(actor_id, f"Deactivated account {account_id} for {days} day(s)")
    return True, f"Account deactivated for {days} day{'s' if days > 1 else ''}."

def reactivate_user(account_id, actor_id=None):
    sb = get_supabase()
    sb.table("deact_user").update({"status": "reactivated"}).eq(
        "account_id", account_id).eq("status", "deactivated").execute()
    sb.table("accounts").update({"status": "active"}).eq("account_id", account_id).execute()
    log_action(actor_id, f"Reactivated account {account_id}")
    return True, "Account reactivated."

def archive_user(user, reason="", actor_id=None):
    """Copy the profile (and password hash) into archived_users, then remove
    the role row and the account."""
    label = archive_role_label(user.get("role"))
    if not label:
        return False, f"A {user.get('role')} account cannot be archived."
    if user["account_id"] == actor_id:
        return False, "You cannot archive your own account."
    acct = get_account(user["account_id"])
    if not acct:
        return False, "Account no longer exists."
    sb = get_supabase()
    table, _ = ROLE_TABLES[acct["role"]]
    r = sb.table(table).select("*").eq("account_id", acct["account_id"]).limit(1).execute()
    profile = r.data[0] if r.data else {}
    sb.table("archived_users").insert({
        "account_id": acct["account_id"], "role": label,
        "name": _full_name(profile, acct["email"]), "email": acct["email"],
        "reason": (reason or "").strip() or "No reason provided",
        "user_data": dict(profile, password=acct.get("password")),
        "deleted_date": now_pht().isoformat(),
    }).execute()
    sb.table(table).delete().eq("account_id", acct["account_id"]).execute()
    sb.table("accounts").delete().eq("account_id", acct["account_id"]).execute()
    log_action(actor_id, f"Archived {acct['email']}")
    return True, f"{acct['email']} has been archived."

# ═══════════════════════════════════════════════════
#  ARCHIVED USERS
# ═══════════════════════════════════════════════════
def get_archived_users():
    sb = get_supabase()
    r = sb.table("archived_users").select("*").order("deleted_date", desc=True).execute()
    return r.data or []

def restore_archived_user(archive, actor_id=None):
    """Re-create the account and its role profile, then drop the archive row."""
    role = ARCHIVE_ROLE_MAP.get(archive.get("role"))
    if not role:
        return False, f"Unknown role '{archive.get('role')}'."
    if get_account_by_email(archive["email"]):
        return False, f"{archive['email']} already has an active account."
    sb = get_supabase()
    data = dict(archive.get("user_data") or {})
    password = data.pop("password", None) or hash_pw("default123")
    _, pk = ROLE_TABLES[role]
    data.pop(pk, None)
    data.pop("account_id", None)
    _create_account(archive["email"].lower(), password, role, data)
    sb.table("archived_users").delete().eq("archive_id", archive["archive_id"]).execute()
    log_action(actor_id, f"Restored archived user {archive['email']}")
    return True, f"{archive.get('name', archive['email'])} has been restored successfully."

def delete_archived_user(archive_id, actor_id=None):
    sb = get_supabase()
    sb.table("archived_users").delete().eq("archive_id", archive_id).execute()
    log_action(actor_id, f"Permanently deleted archive {archive_id}")

# ═══════════════════════════════════════════════════
#  AUDIT TRAIL
# ═══════════════════════════════════════════════════
def get_system_log(limit=500):
    sb = get_supabase()
    r = sb.table("system_log").select("*").order("created_at", desc=True).limit(limit).execute()
    return r.data or []

# ═══════════════════════════════════════════════════
#  STATUS CONSTANTS
# ═══════════════════════════════════════════════════
STATUS_LABELS = {
    "pending":     "⏳ Pending",
    "approved":    "✅ Approved",
    "ongoing":     "🎱 Ongoing",
    "rescheduled": "🔁 Rescheduled",
    "completed":   "🏁 Completed",
    "cancelled":   "🚫 Cancelled",
}

TABLE_STATUS_COLORS = {"Available": "#22c55e", "Occupied": "#ef4444", "Reserved": "#f59e0b"}

ROLES = ["frontdesk", "manager", "admin", "superadmin"]
ROLE_LABELS = {"customer": "Customer", "frontdesk": "Front Desk", "manager": "Manager",
               "admin": "Admin", "superadmin": "Super Admin"}
ROLE_ICONS = {"customer": "🎱", "frontdesk": "🛎️", "manager": "👔",
              "admin": "🛡️", "superadmin": "⭐"}
