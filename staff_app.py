"""
═══════════════════════════════════════════════════════════
 CueBook — Staff Console V1.0.0 (Protected)
 Front desk · managers · admins
═══════════════════════════════════════════════════════════
"""

import streamlit as st
import time
from streamlit_autorefresh import st_autorefresh
from db import (
    VER, now_pht, today_pht,
    authenticate, allowed_pages, get_profile, update_profile, change_password,
    get_tables, get_tables_with_info, get_types, get_statuses,
    get_durations, get_extensions, get_time_dates, get_roles, get_qr_codes,
    add_table, update_table, delete_table, save_table_info,
    add_type, update_type, delete_type,
    add_duration, update_duration, delete_duration,
    add_extension, update_extension, delete_extension,
    add_qr_code, update_qr_code, delete_qr_code,
    save_schedule, save_close_day, toggle_schedule, delete_time_date,
    add_role, update_role, delete_role, load_permission_matrix, save_role_permissions,
    find_reservation, check_in,
    get_session_bookings, start_session, extend_session, complete_session,
    get_cancelled_bookings, update_cancelled_payment, delete_reservation,
    get_synced_payment_ids, sync_payment,
    get_users, create_staff_account, reset_password, deactivate_user, reactivate_user,
    archive_user,
    get_archived_users, restore_archived_user, delete_archived_user,
    get_system_log,
    STATUS_LABELS, ROLES, ROLE_LABELS, ROLE_ICONS,
)
from booking import (
    CANCEL_PAYMENT_COLUMNS, DAY_NAMES, DEACTIVATION_PERIODS, MANAGED_ROLES, PAGES,
    PAYMENT_METHODS, SESSION_TABS, STAFF_KEEP_ON_LOGOUT, STAFF_PAGES,
    balance_due, filter_by_tab, finish_checkin, format_hours, format_time_12h,
    group_schedules, paginate, peso, recorded_amount, reset_session_state, search_rows,
    sort_rows, staff_session_defaults, toggle_permission,
    validate_close_day, validate_duration, validate_extension, validate_profile,
    validate_qr_code, validate_schedule, validate_staff_account, validate_table_info,
)
from logging_setup import setup_logging
import qrcodes

setup_logging()

st.set_page_config(page_title="CueBook Staff", page_icon="🔐", layout="centered")

st.markdown("""<style>
.cb-header{background:linear-gradient(135deg,#0b3d2e,#14714f);color:#fff!important;padding:18px 22px;border-radius:12px;margin-bottom:16px}
.cb-header h2{margin:0;font-size:22px;color:#fff!important}
.cb-header p{margin:4px 0 0;opacity:.75;font-size:13px;color:#fff!important}
.cb-card{background:var(--secondary-background-color,#fff);color:var(--text-color,#1a1a2e);border-radius:10px;padding:16px;margin-bottom:12px;border:1px solid rgba(128,128,128,.15)}
.cb-card strong,.cb-card b{color:var(--text-color,#1a1a2e)}
.cb-alert{border-radius:8px;padding:12px 16px;margin-bottom:12px;font-weight:600;text-align:center}
.cb-alert-red{background:rgba(220,53,69,.15);color:#ef4444;border:1px solid rgba(220,53,69,.3)}
.cb-alert-green{background:rgba(15,157,88,.12);color:#22c55e;border:1px solid rgba(15,157,88,.25)}
.cb-alert strong,.cb-alert b{color:inherit}
.stButton>button{border-radius:8px;font-weight:700}
</style>""", unsafe_allow_html=True)

# ── Session state ──
for k, v in staff_session_defaults().items():
    if k not in st.session_state:
        st.session_state[k] = v

def reset_session():
    reset_session_state(st.session_state, staff_session_defaults(), keep=STAFF_KEEP_ON_LOGOUT)

def show_image(src, **kw):
    if not src:
        return
    _, content = qrcodes.from_data_url(src)
    st.image(content if content is not None else src, **kw)

def read_upload(f):
    ok, msg = qrcodes.validate_image(f.type, f.size)
    if not ok:
        st.error(msg)
        return None
    return qrcodes.to_data_url(f.getvalue(), f.type)

def pager(key, page, total_pages, prefix=None):
    if total_pages <= 1:
        return
    wk = prefix or key
    p1, p2, p3 = st.columns([1, 2, 1])
    with p1:
        if st.button("◀", key=f"{wk}_pv", disabled=page <= 1):
            st.session_state[key] = page - 1
            st.rerun()
    with p2:
        st.caption(f"Page {page} of {total_pages}")
    with p3:
        if st.button("▶", key=f"{wk}_nx", disabled=page >= total_pages):
            st.session_state[key] = page + 1
            st.rerun()

def confirm_delete(key, label="🗑️"):
    """Two-click delete. True only on the confirming click."""
    if st.session_state.get("del_armed") == key:
        c1, c2 = st.columns(2)
        with c1:
            if st.button("⚠️ Confirm", key=f"{key}_yes", type="primary"):
                st.session_state.del_armed = None
                return True
        with c2:
            if st.button("Keep", key=f"{key}_no"):
                st.session_state.del_armed = None
                st.rerun()
        return False
    if st.button(label, key=key):
        st.session_state.del_armed = key
        st.rerun()
    return False

now = now_pht()

# ═══════════════════════════════════════════════════
#  LOGIN
# ═══════════════════════════════════════════════════
if not st.session_state.auth_user:
    st.markdown("""<div class="cb-header" style="text-align:center;">
        <h2>🔐 Staff Portal</h2>
        <p>CueBook · Authorized Personnel Only</p>
    </div>""", unsafe_allow_html=True)

    locked = time.time() < st.session_state.lock_until
    if locked:
        remaining = int(st.session_state.lock_until - time.time())
        st.error(f"🔒 Locked. Wait {remaining}s.")

    with st.form("login"):
        email = st.text_input("Email")
        password = st.text_input("Password", type="password")
        if st.form_submit_button("Login", type="primary", use_container_width=True, disabled=locked):
            u, msg = authenticate(email, password, allowed_roles=ROLES)
            if u:
                st.session_state.auth_user = u
                st.session_state.fail_count = 0
                st.session_state.session_start = time.time()
                st.rerun()
            else:
                st.session_state.fail_count += 1
                left = 3 - st.session_state.fail_count
                if left <= 0:
                    st.session_state.lock_until = time.time() + 300
                    st.session_state.fail_count = 0
                    st.error("❌ Locked for 5 minutes.")
                else:
                    st.error(f"❌ {msg} {left} attempts left.")
    st.stop()

# ── Max 8h session from login; auto-refresh would defeat an idle timer ──
if not st.session_state.session_start:
    st.session_state.session_start = time.time()
if (time.time() - st.session_state.session_start) / 3600 > 8:
    reset_session()
    st.warning("Session expired (8-hour limit). Please login again.")
    st.rerun()

user = st.session_state.auth_user
role = user["role"]
actor = user["account_id"]
can_edit_permissions = role in ("admin", "superadmin")
pages = [p for p in STAFF_PAGES if p in allowed_pages(role)]

# ═══════════════════════════════════════════════════
#  HEADER + NAV
# ═══════════════════════════════════════════════════
st.markdown(f"""<div class="cb-header">
    <div style="display:flex;justify-content:space-between;align-items:center;">
        <div><h2>Staff Console</h2>
            <p>{ROLE_ICONS.get(role, '👤')} {user['full_name']} · {ROLE_LABELS.get(role, role)}</p></div>
        <div style="text-align:right;font-size:12px;opacity:.8;">
            {now.strftime('%I:%M %p')} PHT<br/>{today_pht().isoformat()}</div>
    </div></div>""", unsafe_allow_html=True)

NAV_LABELS = {"QR Check-In": "📷 Check-In", "Finalize Payment": "💰 Sessions",
              "CancelBookings": "🚫 Cancelled", "Reference": "🗂️ Reference",
              "User Management": "👥 Users", "Archived Users": "🗄️ Archive",
              "Audit Trail": "📜 Audit", "Profile": "👤 Profile"}
nav = [(NAV_LABELS[p], p) for p in pages] + [("🚪 Logout", "logout")]
cols = st.columns(len(nav))
for i, (lbl, key) in enumerate(nav):
    with cols[i]:
        if key == "logout":
            if st.button(lbl, use_container_width=True):
                reset_session()
                st.rerun()
        else:
            bt = "primary" if st.session_state.staff_tab == key else "secondary"
            if st.button(lbl, use_container_width=True, type=bt):
                st.session_state.staff_tab = key
                st.rerun()

if not pages:
    st.warning("No pages are assigned to your role. Ask an administrator.")
    st.stop()
tab = st.session_state.staff_tab if st.session_state.staff_tab in pages else pages[0]

# ═══════════════════════════════════════════════════
#  QR CHECK-IN
# ═══════════════════════════════════════════════════
if tab == "QR Check-In":
    st.subheader("📷 QR Check-In")
    if st.session_state.checkin_msg:
        st.success(st.session_state.checkin_msg)
        st.session_state.checkin_msg = ""
    # a new nonce gives the scanner widgets fresh, empty state
    nonce = st.session_state.scan_nonce
    src = st.radio("Scan with", ["Camera", "Upload image", "Type number"], horizontal=True)
    scanned = None
    if src == "Camera":
        shot = st.camera_input("Point the camera at the customer's QR code",
                               key=f"scan_cam_{nonce}")
        if shot is not None:
            scanned = qrcodes.decode_qr(shot.getvalue())
            if scanned is None:
                st.warning("No QR code found. Try again closer to the code.")
    elif src == "Upload image":
        f = st.file_uploader("QR image", type=["png", "jpg", "jpeg", "webp"],
                             key=f"scan_file_{nonce}")
        if f is not None:
            scanned = qrcodes.decode_qr(f.getvalue())
            if scanned is None:
                st.warning("No QR code found in that image.")
    else:
        typed = st.text_input("Reservation number", key=f"scan_typed_{nonce}")
        if typed.strip():
            scanned = typed
    if scanned:
        st.session_state.scan_no = qrcodes.parse_scanned(scanned)

    res_no = st.session_state.scan_no
    if res_no:
        rows = find_reservation(res_no)
        if not rows:
            st.markdown(f'<div class="cb-alert cb-alert-red">❌ Reservation does not exist: {res_no}</div>',
                        unsafe_allow_html=True)
        else:
            tables = {t["table_id"]: t for t in get_tables()}
            first = rows[0]
            st.markdown(f"""<div class="cb-card"><b>{res_no}</b> ·
                {STATUS_LABELS.get(first['status'], first['status'])}<br/>
                <b>Payment:</b> {first.get('payment_method', '')} · {first.get('payment_type', '')}
                · {first.get('payment_status', '')}</div>""", unsafe_allow_html=True)
            for r in rows:
                st.caption(f"🎱 {tables.get(r['table_id'], {}).get('table_name', r['table_id'])} · "
                           f"{r['reservation_date']} · {format_time_12h(r['start_time'])} – "
                           f"{format_time_12h(r['time_end'])} · {peso(r.get('total_bill'))}")
            if first.get("proof_of_payment"):
                with st.expander("🧾 Proof of payment"):
                    show_image(first["proof_of_payment"], width=260)
            ref = ""
            if first.get("payment_method") == "GCash":
                ref = st.text_input("GCash Reference Number",
                                    value=str(first.get("reference_no") or ""), key=f"scan_ref_{nonce}")
            if st.button("✅ Check In", type="primary", use_container_width=True):
                ok, msg = check_in(rows, ref, actor_id=actor)
                if ok:
                    finish_checkin(st.session_state, res_no, msg)
                    st.rerun()
                st.error(f"❌ {msg}")

# ═══════════════════════════════════════════════════
#  FINALIZE PAYMENT: start · extend · complete
# ═══════════════════════════════════════════════════
elif tab == "Finalize Payment":
    st_autorefresh(interval=30_000, limit=None, key="fin_ar")
    st.subheader("💰 Finalize Payment")
    bookings = get_session_bookings()
    tables = {t["table_id"]: t for t in get_tables()}
    extensions = get_extensions()
    q = st.text_input("🔍 Search", placeholder="Reservation no., name, email", key="fin_q")

    tab_names = list(SESSION_TABS)
    ftabs = st.tabs([f"{n.capitalize()} ({len(filter_by_tab(bookings, n, SESSION_TABS))})"
                     for n in tab_names])
    for tname, ftab in zip(tab_names, ftabs):
        with ftab:
            rows = search_rows(filter_by_tab(bookings, tname, SESSION_TABS), q,
                               ("reservation_no", "customer_name", "email"))
            shown, pg, total_pages = paginate(rows, st.session_state.fin_page)
            if not rows:
                st.caption("Nothing here.")
            for b in shown:
                tbl = tables.get(b["table_id"], {}).get("table_name", b["table_id"])
                due = balance_due(b)
                with st.expander(f"{b['reservation_no']} · {b['customer_name']} · {tbl} · "
                                 f"{b['reservation_date']} {format_time_12h(b['start_time'])}"):
                    st.markdown(f"""**Time:** {format_time_12h(b['start_time'])} – {format_time_12h(b['time_end'])}
                        ({format_hours(b.get('duration') or 0)})<br/>
                        **Payment:** {b.get('payment_method') or '-'} · {b.get('payment_type') or '-'}
                        · {b.get('payment_status') or '-'}<br/>
                        **Total bill:** {peso(b.get('total_bill'))} · **Paid:** {peso(recorded_amount(b))}
                        · **Balance:** {peso(due)}""", unsafe_allow_html=True)
                    if b.get("extension"):
                        st.caption(f"➕ Extended {format_hours(b['extension'])} "
                                   f"({peso(b.get('amount_extension'))})")

                    if b["status"] == "approved":
                        if st.button("▶️ Start Session", key=f"ss_{b['id']}", type="primary"):
                            ok, msg = start_session(b, actor_id=actor)
                            if ok:
                                st.success(msg)
                                st.rerun()
                            st.error(msg)

                    elif b["status"] == "ongoing":
                        if extensions:
                            with st.form(f"ext_{b['id']}"):
                                ext_h = st.selectbox("Extension", [float(e["extension_hours"])
                                                                   for e in extensions],
                                                     format_func=format_hours, key=f"eh_{b['id']}")
                                pay_now = st.checkbox("Paid now (cash)", key=f"ep_{b['id']}")
                                if st.form_submit_button("➕ Add Extension"):
                                    ok, msg = extend_session(b, ext_h, pay_now, actor_id=actor)
                                    if ok:
                                        st.success(msg)
                                        st.rerun()
                                    st.error(msg)
                        with st.form(f"end_{b['id']}"):
                            if due:
                                st.warning(f"Collect the remaining balance of {peso(due)}.")
                            method = st.radio("Method", PAYMENT_METHODS, horizontal=True,
                                              index=PAYMENT_METHODS.index("Cash"), key=f"em_{b['id']}")
                            ref = st.text_input("Reference no. (blank to generate)", key=f"er_{b['id']}")
                            if st.form_submit_button("🏁 End Session", type="primary"):
                                ok, msg = complete_session(b, method, ref, actor_id=actor)
                                if ok:
                                    st.success(msg)
                                    st.rerun()
                                st.error(msg)
            pager("fin_page", pg, total_pages, prefix=f"fin_{tname}")

# ═══════════════════════════════════════════════════
#  CANCELLED BOOKINGS
# ═══════════════════════════════════════════════════
elif tab == "CancelBookings":
    st_autorefresh(interval=30_000, limit=None, key="cb_ar")
    st.subheader("🚫 Cancelled Bookings")
    bookings = get_cancelled_bookings()
    synced = get_synced_payment_ids()
    tables = {t["table_id"]: t for t in get_tables()}

    c1, c2 = st.columns([3, 2])
    with c1:
        q = st.text_input("🔍 Search", placeholder="Reservation no., name, email")
    with c2:
        sort_key = st.selectbox("Sort by", ["reservation_date", "reservation_no", "customer_name",
                                            "total_bill"])
    desc = st.checkbox("Descending", value=True)
    rows = sort_rows(search_rows(bookings, q, ("reservation_no", "customer_name", "email",
                                               "payment_method")), sort_key, desc)
    shown, pg, total_pages = paginate(rows, st.session_state.cb_page)
    st.caption(f"{len(rows)} cancelled booking(s)")

    for b in shown:
        is_synced = b["id"] in synced
        tag = "✅ synced" if is_synced else "⏳ not synced"
        with st.expander(f"{b['reservation_no']} · {b['customer_name']} · {b['reservation_date']} · {tag}"):
            st.markdown(f"""**Email:** {b['email']}<br/>
                **Table:** {tables.get(b['table_id'], {}).get('table_name', b['table_id'])}
                · {format_time_12h(b['start_time'])} – {format_time_12h(b['time_end'])}<br/>
                **Total bill:** {peso(b.get('total_bill'))} ·
                **Recorded:** {b.get('payment_type') or '-'} {peso(recorded_amount(b))}<br/>
                **Method:** {b.get('payment_method') or '-'} · **Ref:** {b.get('reference_no') or '-'}""",
                        unsafe_allow_html=True)
            if b.get("proof_of_payment"):
                show_image(b["proof_of_payment"], width=200)

            with st.form(f"cbp_{b['id']}"):
                types = list(CANCEL_PAYMENT_COLUMNS)
                cur = types.index(b["payment_type"]) if b.get("payment_type") in types else 0
                ptype = st.selectbox("Payment type", types, index=cur)
                amt = st.number_input("Amount (₱)", min_value=0, step=1,
                                      value=int(recorded_amount(b) or 0))
                if st.form_submit_button("💾 Save Payment", type="primary"):
                    ok, msg = update_cancelled_payment(b, ptype, amt)
                    if ok:
                        st.success(msg)
                        st.rerun()
                    st.error(msg)

            a1, a2 = st.columns(2)
            with a1:
                if st.button("🔄 Sync to Payments", key=f"sy_{b['id']}", disabled=is_synced):
                    ok, msg = sync_payment(b, actor_id=actor)
                    (st.success if ok else st.warning)(msg)
                    st.rerun()
            with a2:
                confirm = st.checkbox("Confirm delete", key=f"dc_{b['id']}")
                if st.button("🗑️ Delete", key=f"dl_{b['id']}", disabled=not confirm):
                    delete_reservation(b["id"], actor_id=actor)
                    st.success("Booking deleted.")
                    st.rerun()
    pager("cb_page", pg, total_pages)

# ═══════════════════════════════════════════════════
#  REFERENCE DATA
# ═══════════════════════════════════════════════════
elif tab == "Reference":
    names = ["🎱 Tables", "📋 Table Info", "🏷️ Types", "⏱️ Durations", "➕ Extensions",
             "📱 GCash QR", "🕐 Schedules", "👥 Roles"]
    if can_edit_permissions:
        names.append("🔐 Permissions")
    rtabs = st.tabs(names)

    # ══════════ TABLES ══════════
    with rtabs[0]:
        tq = st.text_input("🔍 Search tables", key="tbl_q")
        for t in search_rows(get_tables(), tq, ("table_name", "previous_table_name")):
            with st.expander(f"🎱 {t['table_name']}"
                             + (f" (was {t['previous_table_name']})" if t.get("previous_table_name") else "")):
                show_image(t.get("table_image"), width=200)
                with st.form(f"tbl_{t['table_id']}"):
                    tn = st.text_input("Table name", value=t["table_name"])
                    img = st.file_uploader("Replace image", type=["png", "jpg", "jpeg", "webp"])
                    if st.form_submit_button("💾 Save", type="primary"):
                        data_url = read_upload(img) if img is not None else None
                        if not tn.strip():
                            st.error("Table name required.")
                        elif img is None or data_url:
                            update_table(t, tn, data_url)
                            st.success("✅ Saved")
                            st.rerun()
                if confirm_delete(f"dt_{t['table_id']}", "🗑️ Delete Table"):
                    delete_table(t["table_id"])
                    st.rerun()
        st.markdown("**➕ Add Table**")
        with st.form("add_table"):
            tn = st.text_input("Table name *")
            img = st.file_uploader("Image", type=["png", "jpg", "jpeg", "webp"])
            if st.form_submit_button("➕ Add", type="primary"):
                data_url = read_upload(img) if img is not None else None
                if not tn.strip():
                    st.error("Table name required.")
                elif img is None or data_url:
                    add_table(tn, data_url)
                    st.success(f"✅ Added {tn.strip()}")
                    st.rerun()

    # ══════════ TABLE INFO ══════════
    with rtabs[1]:
        statuses = [s["status"] for s in get_statuses()] or ["Available"]
        type_names = [t["billiard_type"] for t in get_types()]
        for t in get_tables_with_info():
            info = t["info"]
            with st.expander(f"{t['table_name']} · {info.get('status', 'no info')} · "
                             f"{peso(info.get('price')) if info else '-'}"):
                with st.form(f"ti_{t['table_id']}"):
                    s_idx = statuses.index(info["status"]) if info.get("status") in statuses else 0
                    stt = st.selectbox("Status", statuses, index=s_idx)
                    price = st.number_input("Price per hour (₱)", min_value=0.0, step=10.0,
                                            value=float(info.get("price") or 0))
                    opts = type_names or [info.get("billiard_type") or ""]
                    bt_idx = opts.index(info["billiard_type"]) if info.get("billiard_type") in opts else 0
                    btype = st.selectbox("Billiard type", opts, index=bt_idx)
                    if st.form_submit_button("💾 Save", type="primary"):
                        errs = validate_table_info(stt, price, btype)
                        if errs:
                            for e in errs:
                                st.error(e)
                        else:
                            save_table_info(t["table_id"], stt, price, btype)
                            st.success("✅ Saved")
                            st.rerun()

    # ══════════ TYPES ══════════
    with rtabs[2]:
        for bt in get_types():
            c1, c2, c3 = st.columns([4, 1, 1])
            with c1:
                nm = st.text_input(f"`{bt.get('billiard_type_code', '')}`", value=bt["billiard_type"],
                                   key=f"btn_{bt['id']}")
            with c2:
                if st.button("💾", key=f"bts_{bt['id']}") and nm.strip():
                    update_type(bt["id"], nm)
                    st.rerun()
            with c3:
                if confirm_delete(f"btd_{bt['id']}", "🗑️"):
                    delete_type(bt["id"])
                    st.rerun()
        with st.form("add_type"):
            nm = st.text_input("New billiard type *", placeholder="e.g., 9-Ball")
            if st.form_submit_button("➕ Add", type="primary"):
                if not nm.strip():
                    st.error("Billiard type is required.")
                elif any(t["billiard_type"].lower() == nm.strip().lower() for t in get_types()):
                    st.error("This billiard type already exists.")
                else:
                    code = add_type(nm)
                    st.success(f"✅ Added {nm.strip()} ({code})")
                    st.rerun()

    # ══════════ DURATIONS ══════════
    with rtabs[3]:
        durations = get_durations()
        for d in durations:
            c1, c2, c3 = st.columns([4, 1, 1])
            with c1:
                h = st.number_input(format_hours(d["hours"]), value=float(d["hours"]), step=0.5,
                                    key=f"du_{d['id']}")
            with c2:
                if st.button("💾", key=f"dus_{d['id']}"):
                    ok, msg = validate_duration(h, durations, exclude_id=d["id"])
                    if ok:
                        update_duration(d["id"], h)
                        st.rerun()
                    st.error(msg)
            with c3:
                if confirm_delete(f"dud_{d['id']}", "🗑️"):
                    delete_duration(d["id"])
                    st.rerun()
        with st.form("add_duration"):
            h = st.number_input("Hours", min_value=0.0, step=0.5, value=1.0)
            if st.form_submit_button("➕ Add", type="primary"):
                ok, msg = validate_duration(h, durations)
                if ok:
                    add_duration(h)
                    st.rerun()
                st.error(msg)

    # ══════════ EXTENSIONS ══════════
    with rtabs[4]:
        extensions = get_extensions()
        for e in extensions:
            c1, c2, c3 = st.columns([4, 1, 1])
            with c1:
                h = st.number_input(format_hours(e["extension_hours"]), value=float(e["extension_hours"]),
                                    step=0.5, key=f"ex_{e['id']}")
            with c2:
                if st.button("💾", key=f"exs_{e['id']}"):
                    ok, msg = validate_extension(h, extensions, exclude_id=e["id"])
                    if ok:
                        update_extension(e["id"], h)
                        st.rerun()
                    st.error(msg)
            with c3:
                if confirm_delete(f"exd_{e['id']}", "🗑️"):
                    delete_extension(e["id"])
                    st.rerun()
        with st.form("add_extension"):
            h = st.number_input("Extension hours", min_value=0.0, step=0.5, value=0.5)
            if st.form_submit_button("➕ Add", type="primary"):
                ok, msg = validate_extension(h, extensions)
                if ok:
                    add_extension(h)
                    st.rerun()
                st.error(msg)

    # ══════════ GCASH QR CODES ══════════
    with rtabs[5]:
        qrs = get_qr_codes()
        for q in qrs:
            dot = "🟢" if q.get("status") else "🔴 Inactive"
            with st.expander(f"📱 {q['full_name']} · {q['cellphone_number']} · {dot}"):
                show_image(q.get("qr_image"), width=200)
                with st.form(f"qr_{q['qr_id']}"):
                    fn = st.text_input("Account name", value=q["full_name"])
                    cp = st.text_input("Mobile number", value=q["cellphone_number"])
                    act = st.checkbox("Active", value=bool(q.get("status")))
                    img = st.file_uploader("Replace QR image", type=["png", "jpg", "jpeg", "webp"])
                    if st.form_submit_button("💾 Save", type="primary"):
                        data_url = read_upload(img) if img is not None else q.get("qr_image")
                        errs = validate_qr_code(fn, cp, bool(data_url), qrs, exclude_id=q["qr_id"])
                        if errs:
                            for e in errs:
                                st.error(e)
                        else:
                            update_qr_code(q["qr_id"], full_name=fn.strip(),
                                           cellphone_number=cp.strip(), status=act,
                                           qr_image=data_url)
                            st.success("✅ Saved")
                            st.rerun()
                if confirm_delete(f"qrd_{q['qr_id']}", "🗑️ Delete"):
                    delete_qr_code(q["qr_id"])
                    st.rerun()
        st.markdown("**➕ Add GCash QR**")
        with st.form("add_qr"):
            fn = st.text_input("Account name *")
            cp = st.text_input("Mobile number *", placeholder="09XXXXXXXXX")
            img = st.file_uploader("QR image *", type=["png", "jpg", "jpeg", "webp"])
            if st.form_submit_button("➕ Add", type="primary"):
                data_url = read_upload(img) if img is not None else None
                errs = validate_qr_code(fn, cp, bool(data_url), qrs)
                if errs:
                    for e in errs:
                        st.error(e)
                else:
                    add_qr_code(fn, cp, data_url)
                    st.success("✅ Added")
                    st.rerun()

    # ══════════ SCHEDULES + CLOSE DAYS ══════════
    with rtabs[6]:
        time_dates = get_time_dates()
        grouped, closes = group_schedules(time_dates)
        for day, scheds in grouped.items():
            st.markdown(f"**{day}**")
            for s in scheds:
                c1, c2, c3 = st.columns([4, 1, 1])
                with c1:
                    dot = "🟢" if s.get("Actions") == "Active" else "⚪"
                    st.markdown(f"{dot} {format_time_12h(s['OpenTime'])} – {format_time_12h(s['CloseTime'])}")
                with c2:
                    lbl = "Deactivate" if s.get("Actions") == "Active" else "Activate"
                    if st.button(lbl, key=f"tg_{s['id']}"):
                        toggle_schedule(s)
                        st.rerun()
                with c3:
                    if confirm_delete(f"tdd_{s['id']}", "🗑️"):
                        delete_time_date(s["id"])
                        st.rerun()
        with st.form("add_schedule"):
            st.markdown("**➕ Add Opening Hours**")
            c1, c2, c3 = st.columns(3)
            with c1:
                day = st.selectbox("Day", DAY_NAMES)
            with c2:
                ot = st.text_input("Opens", placeholder="10:00 AM")
            with c3:
                ct = st.text_input("Closes", placeholder="11:00 PM")
            active = st.checkbox("Active", value=True)
            if st.form_submit_button("➕ Add", type="primary"):
                ok, msg, o_db, c_db = validate_schedule(day, ot, ct)
                if ok:
                    save_schedule(day, o_db, c_db, "Active" if active else "Inactive")
                    st.rerun()
                st.error(msg)

        st.markdown("**🚫 Close Days**")
        for cd in closes:
            c1, c2 = st.columns([5, 1])
            with c1:
                st.markdown(f"📅 {cd['CloseDay']}")
            with c2:
                if confirm_delete(f"cdd_{cd['id']}", "🗑️"):
                    delete_time_date(cd["id"])
                    st.rerun()
        with st.form("add_close_day"):
            cd = st.date_input("Close date", min_value=today_pht())
            if st.form_submit_button("➕ Add Close Day", type="primary"):
                ok, msg = validate_close_day(cd.isoformat(), time_dates)
                if ok:
                    save_close_day(cd.isoformat())
                    st.rerun()
                st.error(msg)

    # ══════════ ROLES ══════════
    with rtabs[7]:
        for r in get_roles():
            c1, c2, c3 = st.columns([4, 1, 1])
            with c1:
                nm = st.text_input("Role", value=r["role"], key=f"rl_{r['role_id']}",
                                   label_visibility="collapsed")
            with c2:
                if st.button("💾", key=f"rls_{r['role_id']}") and nm.strip():
                    update_role(r["role_id"], nm)
                    st.rerun()
            with c3:
                if confirm_delete(f"rld_{r['role_id']}", "🗑️"):
                    delete_role(r["role_id"])
                    st.session_state.perm_matrix = None
                    st.rerun()
        with st.form("add_role"):
            nm = st.text_input("New role *")
            if st.form_submit_button("➕ Add", type="primary"):
                if not nm.strip():
                    st.error("Role name required.")
                elif any(x["role"].lower() == nm.strip().lower() for x in get_roles()):
                    st.error("This role already exists.")
                else:
                    add_role(nm)
                    st.rerun()

    # ══════════ PERMISSIONS (admin / superadmin) ══════════
    if can_edit_permissions:
        with rtabs[8]:
            roles = get_roles()
            if st.session_state.perm_matrix is None:
                st.session_state.perm_matrix = load_permission_matrix()
            if not roles:
                st.info("Add a role first.")
            else:
                role_ids = [r["role_id"] for r in roles]
                names_by_id = {r["role_id"]: r["role"] for r in roles}
                rid = st.selectbox("Role", role_ids, format_func=names_by_id.get)
                flags = st.session_state.perm_matrix.get(rid, {})
                st.caption("Click a page to grant or revoke it. Nothing is stored until you save.")
                for p in PAGES:
                    on = flags.get(p, False)
                    if st.button(f"{'✅' if on else '⬜'} {p}", key=f"pm_{rid}_{p}",
                                 use_container_width=True):
                        st.session_state.perm_matrix = toggle_permission(
                            st.session_state.perm_matrix, rid, p)
                        st.rerun()
                c1, c2 = st.columns(2)
                with c1:
                    if st.button("💾 Save Permissions", type="primary", use_container_width=True):
                        save_role_permissions(rid, st.session_state.perm_matrix.get(rid, {}),
                                              actor_id=actor)
                        st.success(f"✅ Permissions saved for {names_by_id[rid]}")
                with c2:
                    if st.button("↩️ Discard Changes", use_container_width=True):
                        st.session_state.perm_matrix = None
                        st.rerun()

# ═══════════════════════════════════════════════════
#  USER MANAGEMENT
# ═══════════════════════════════════════════════════
elif tab == "User Management":
    st.subheader("👥 User Management")
    with st.expander("➕ Create Staff Account"):
        with st.form("add_user"):
            c1, c2 = st.columns(2)
            with c1:
                fn = st.text_input("First Name *")
                ln = st.text_input("Last Name *")
                mobile = st.text_input("Mobile Number *", placeholder="09XX XXX XXXX")
            with c2:
                mn = st.text_input("Middle Name")
                em = st.text_input("Email *")
                new_role = st.selectbox("Role", MANAGED_ROLES, format_func=ROLE_LABELS.get)
            p1 = st.text_input("Password *", type="password")
            p2 = st.text_input("Confirm Password *", type="password")
            if st.form_submit_button("➕ Create", type="primary"):
                errs = validate_staff_account(fn, ln, em, mobile, p1, p2, new_role)
                if errs:
                    for e in errs:
                        st.error(e)
                else:
                    ok, msg = create_staff_account(fn, mn, ln, em, mobile, p1, new_role,
                                                   actor_id=actor)
                    if ok:
                        st.success(f"✅ {msg}")
                        st.rerun()
                    st.error(msg)

    users = get_users()
    c1, c2 = st.columns([3, 2])
    with c1:
        q = st.text_input("🔍 Search", placeholder="Name, email", key="usr_q")
    with c2:
        rf = st.selectbox("Role", ["All"] + list(ROLE_LABELS), format_func=lambda r: ROLE_LABELS.get(r, r))
    rows = search_rows(users, q, ("full_name", "email"))
    if rf != "All":
        rows = [u for u in rows if u["role"] == rf]
    n_off = len([u for u in users if u["status"] == "deactivated"])
    st.caption(f"{len(users)} account(s) · {n_off} deactivated")
    shown, pg, total_pages = paginate(rows, st.session_state.user_page, per_page=8)

    for u in shown:
        uid = u["account_id"]
        dot = "🔴 Deactivated" if u["status"] == "deactivated" else "🟢 Active"
        with st.expander(f"{ROLE_ICONS.get(u['role'], '👤')} {u['full_name']} · {u['email']} · "
                         f"{ROLE_LABELS.get(u['role'], u['role'])} · {dot}"):
            prof = u["profile"]
            with st.form(f"usr_{uid}"):
                c1, c2 = st.columns(2)
                with c1:
                    efn = st.text_input("First Name", value=prof.get("first_name", "") or "", key=f"ufn_{uid}")
                    eln = st.text_input("Last Name", value=prof.get("last_name", "") or "", key=f"uln_{uid}")
                    emob = st.text_input("Mobile Number", value=prof.get("contact_number", "") or "",
                                         key=f"umo_{uid}")
                with c2:
                    emn = st.text_input("Middle Name", value=prof.get("middle_name", "") or "", key=f"umn_{uid}")
                    eem = st.text_input("Email", value=u["email"], key=f"uem_{uid}")
                if st.form_submit_button("💾 Save", type="primary"):
                    errs = validate_profile(efn, eln, eem, emob)
                    if errs:
                        for e in errs:
                            st.error(e)
                    else:
                        ok, msg = update_profile(u, efn, emn, eln, eem, emob)
                        if ok:
                            st.success(msg)
                            st.rerun()
                        st.error(msg)

            with st.form(f"pwr_{uid}"):
                st.markdown("**🔑 Reset Password**")
                np1 = st.text_input("New Password", type="password", key=f"up1_{uid}")
                np2 = st.text_input("Confirm", type="password", key=f"up2_{uid}")
                if st.form_submit_button("Reset"):
                    ok, msg = reset_password(uid, np1, np2, actor_id=actor)
                    (st.success if ok else st.error)(msg)

            a1, a2 = st.columns(2)
            with a1:
                if u["status"] == "deactivated":
                    if u.get("deactivated_until"):
                        st.caption(f"Until {str(u['deactivated_until'])[:10]}")
                    if st.button("✅ Reactivate", key=f"ura_{uid}"):
                        ok, msg = reactivate_user(uid, actor_id=actor)
                        st.success(msg)
                        st.rerun()
                else:
                    period = st.selectbox("Deactivate for", list(DEACTIVATION_PERIODS),
                                          key=f"udp_{uid}")
                    if st.button("⛔ Deactivate", key=f"udx_{uid}"):
                        ok, msg = deactivate_user(uid, DEACTIVATION_PERIODS[period], actor_id=actor)
                        if ok:
                            st.success(msg)
                            st.rerun()
                        st.error(msg)
            with a2:
                reason = st.text_input("Archive reason", key=f"uar_{uid}")
                sure = st.checkbox("Confirm archive", key=f"uac_{uid}")
                if st.button("🗄️ Archive", key=f"uax_{uid}", disabled=not sure):
                    ok, msg = archive_user(u, reason, actor_id=actor)
                    if ok:
                        st.success(msg)
                        st.rerun()
                    st.error(msg)
    pager("user_page", pg, total_pages)

# ═══════════════════════════════════════════════════
#  ARCHIVED USERS
# ═══════════════════════════════════════════════════
elif tab == "Archived Users":
    st.subheader("🗄️ Archived Users")
    archives = get_archived_users()
    q = st.text_input("🔍 Search", placeholder="Name, email, role")
    rows = search_rows(archives, q, ("name", "email", "role"))
    if not rows:
        st.caption("No archived users.")
    shown, pg, total_pages = paginate(rows, st.session_state.arch_page)
    for a in shown:
        with st.expander(f"{a.get('name', '')} · {a['email']} · {a.get('role', '')} · "
                         f"archived {str(a.get('deleted_date', ''))[:10]}"):
            if a.get("reason"):
                st.caption(f"Reason: {a['reason']}")
            c1, c2 = st.columns(2)
            with c1:
                if st.button("♻️ Restore", key=f"ar_{a['archive_id']}", type="primary"):
                    ok, msg = restore_archived_user(a, actor_id=actor)
                    if ok:
                        st.success(msg)
                        st.rerun()
                    st.error(msg)
            with c2:
                confirm = st.checkbox("Confirm permanent delete", key=f"adc_{a['archive_id']}")
                if st.button("🗑️ Delete Forever", key=f"ad_{a['archive_id']}", disabled=not confirm):
                    delete_archived_user(a["archive_id"], actor_id=actor)
                    st.rerun()
    pager("arch_page", pg, total_pages)

# ═══════════════════════════════════════════════════
#  AUDIT TRAIL
# ═══════════════════════════════════════════════════
elif tab == "Audit Trail":
    st.subheader("📜 Audit Trail")
    logs = get_system_log()
    q = st.text_input("🔍 Search", placeholder="Action or account")
    rows = search_rows(logs, q, ("action", "account_id"))
    shown, pg, total_pages = paginate(rows, st.session_state.log_page, per_page=25)
    st.dataframe([{"When": str(r.get("created_at", ""))[:19].replace("T", " "),
                   "Account": r.get("account_id"), "Action": r.get("action")} for r in shown],
                 use_container_width=True, hide_index=True)
    pager("log_page", pg, total_pages)

# ═══════════════════════════════════════════════════
#  PROFILE + PASSWORD
# ═══════════════════════════════════════════════════
elif tab == "Profile":
    st.subheader("👤 My Profile")
    _, prof, acct = get_profile(user)
    with st.form("profile"):
        c1, c2 = st.columns(2)
        with c1:
            fn = st.text_input("First Name", value=prof.get("first_name", ""))
            ln = st.text_input("Last Name", value=prof.get("last_name", ""))
            mobile = st.text_input("Mobile Number", value=prof.get("contact_number", "") or "")
        with c2:
            mn = st.text_input("Middle Name", value=prof.get("middle_name", "") or "")
            em = st.text_input("Email", value=acct.get("email", user["email"]))
        if st.form_submit_button("💾 Save", type="primary"):
            errs = validate_profile(fn, ln, em, mobile)
            if errs:
                for e in errs:
                    st.error(e)
            else:
                ok, msg = update_profile(user, fn, mn, ln, em, mobile)
                (st.success if ok else st.error)(msg)

    st.markdown("**🔑 Change Password**")
    with st.form("pw_form"):
        cur = st.text_input("Current Password", type="password")
        np1 = st.text_input("New Password", type="password")
        np2 = st.text_input("Confirm", type="password")
        if st.form_submit_button("Save", type="primary"):
            ok, msg = change_password(actor, cur, np1, np2)
            (st.success if ok else st.error)(("✅ " if ok else "") + msg)

# ═══════════════════════════════════════════════════
#  FOOTER
# ═══════════════════════════════════════════════════
st.markdown("---")
st.markdown(f"""<div style="text-align:center;font-size:10px;opacity:.3;padding:8px;">
    CueBook Staff Console {VER}
</div>""", unsafe_allow_html=True)
