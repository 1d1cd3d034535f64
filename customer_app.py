"""
═══════════════════════════════════════════════════════════
 CueBook — Customer Portal V1.0.0
 Browse tables · reserve slots · pay by GCash or cash
═══════════════════════════════════════════════════════════
"""

import streamlit as st
from streamlit_autorefresh import st_autorefresh
from db import (
    VER, now_pht, today_pht,
    get_tables_with_info, get_types, get_time_dates, get_durations, get_active_qr_codes,
    authenticate, register_customer, allowed_pages,
    available_slots, longest_duration, submit_reservation, ReservationError,
    get_account_reservations, cancel_reservation, reschedule_reservation,
    get_notifications, mark_notification_read, mark_all_read,
    get_profile, update_profile, change_password,
    STATUS_LABELS, TABLE_STATUS_COLORS,
)
from booking import (
    CUSTOMER_PAGES, PAYMENT_METHODS, PAYMENT_TYPE_LABELS, RES_TABS,
    active_schedule, add_hours, bookable_tables, calculate_bill, can_cancel,
    can_reschedule, customer_session_defaults, day_name, filter_by_tab, format_hours,
    format_time_12h, is_date_closed, line_total, paginate, peso, reset_session_state,
    search_rows,
    validate_profile, validate_registration,
)
from logging_setup import setup_logging
import qrcodes

setup_logging()

st.set_page_config(page_title="CueBook", page_icon="🎱", layout="centered")

st.markdown("""<style>
.cb-header{background:linear-gradient(135deg,#0b3d2e,#14714f);color:#fff!important;padding:18px 22px;border-radius:12px;margin-bottom:16px}
.cb-header h2{margin:0;font-size:22px;color:#fff!important}
.cb-header p{margin:4px 0 0;opacity:.75;font-size:13px;color:#fff!important}
.cb-card{background:var(--secondary-background-color,#fff);color:var(--text-color,#1a1a2e);border-radius:10px;padding:16px;margin-bottom:12px;border:1px solid rgba(128,128,128,.15)}
.cb-card strong,.cb-card b{color:var(--text-color,#1a1a2e)}
.cb-alert{border-radius:8px;padding:12px 16px;margin-bottom:12px;font-weight:600;text-align:center}
.cb-alert-red{background:rgba(220,53,69,.15);color:#ef4444;border:1px solid rgba(220,53,69,.3)}
.cb-alert-green{background:rgba(15,157,88,.12);color:#22c55e;border:1px solid rgba(15,157,88,.25)}
.cb-alert-yellow{background:rgba(217,119,6,.12);color:#f59e0b;border:1px solid rgba(217,119,6,.25)}
.cb-resno{font-family:monospace;font-size:26px;font-weight:900;color:#14714f;text-align:center}
.cb-unread{border-left:4px solid #14714f}
.stButton>button{border-radius:8px;font-weight:700}
</style>""", unsafe_allow_html=True)

# ── Session state ──
for k, v in customer_session_defaults().items():
    if k not in st.session_state:
        st.session_state[k] = v

def logout():
    reset_session_state(st.session_state, customer_session_defaults())
    st.rerun()

def go(page):
    st.session_state.page = page
    st.rerun()

def show_image(src, **kw):
    """Render a stored image: inline data URL or public URL."""
    if not src:
        return
    _, content = qrcodes.from_data_url(src)
    st.image(content if content is not None else src, **kw)

def read_upload(f):
    """Uploaded image → data URL. Shows the error and returns None when invalid."""
    ok, msg = qrcodes.validate_image(f.type, f.size)
    if not ok:
        st.error(msg)
        return None
    return qrcodes.to_data_url(f.getvalue(), f.type)

now = now_pht()

# ═══════════════════════════════════════════════════
#  LOGIN / REGISTER
# ═══════════════════════════════════════════════════
if not st.session_state.user:
    st.markdown(f"""<div class="cb-header" style="text-align:center;">
        <h2>🎱 CueBook</h2><p>Billiard table reservations · {VER}</p></div>""",
                unsafe_allow_html=True)
    t_login, t_reg = st.tabs(["🔑 Login", "📝 Register"])
    with t_login:
        with st.form("login"):
            email = st.text_input("Email")
            password = st.text_input("Password", type="password")
            if st.form_submit_button("Login", type="primary", use_container_width=True):
                acct, msg = authenticate(email, password, allowed_roles=("customer",))
                if acct:
                    st.session_state.user = acct
                    st.rerun()
                else:
                    st.error(f"❌ {msg}")
    with t_reg:
        with st.form("register"):
            c1, c2 = st.columns(2)
            with c1:
                fn = st.text_input("First Name *")
                ln = st.text_input("Last Name *")
                mobile = st.text_input("Mobile Number *", placeholder="09XX XXX XXXX")
            with c2:
                mn = st.text_input("Middle Name")
                em = st.text_input("Email *")
            p1 = st.text_input("Password *", type="password")
            p2 = st.text_input("Confirm Password *", type="password")
            if st.form_submit_button("Create Account", type="primary", use_container_width=True):
                errs = validate_registration(fn, ln, em, mobile, p1, p2)
                if errs:
                    for e in errs:
                        st.error(e)
                else:
                    ok, msg = register_customer(fn, mn, ln, em, mobile, p1)
                    (st.success if ok else st.error)(msg)
    st.stop()

user = st.session_state.user
pages = [p for p in CUSTOMER_PAGES if p in allowed_pages(user["role"])]

# ═══════════════════════════════════════════════════
#  HEADER + NAV
# ═══════════════════════════════════════════════════
st.markdown(f"""<div class="cb-header">
    <div style="display:flex;justify-content:space-between;align-items:center;">
        <div><h2>🎱 CueBook</h2><p>{user['full_name']} · {VER}</p></div>
        <div style="text-align:right;font-size:13px;opacity:.8;">
            {now.strftime('%A, %b %d, %Y')}<br/>{now.strftime('%I:%M %p')} PHT</div>
    </div></div>""", unsafe_allow_html=True)

if not pages:
    st.warning("Your account has no pages assigned yet. Please contact the front desk.")
    if st.button("🚪 Logout"):
        logout()
    st.stop()

NAV_ICONS = {"Reservation (Customer)": "📅 Reserve", "History": "📜 History",
             "Notifications": "🔔 Alerts", "Profile": "👤 Profile"}
unread_n = len([n for n in get_notifications(user["account_id"]) if not n.get("is_read")]) \
    if "Notifications" in pages else 0
if unread_n:
    NAV_ICONS["Notifications"] = f"🔔 Alerts ({unread_n})"
nav = [(NAV_ICONS[p], p) for p in pages] + [("🚪 Logout", "logout")]
cols = st.columns(len(nav))
for i, (lbl, key) in enumerate(nav):
    with cols[i]:
        if key == "logout":
            if st.button(lbl, use_container_width=True):
                logout()
        else:
            bt = "primary" if st.session_state.page == key else "secondary"
            if st.button(lbl, use_container_width=True, type=bt):
                go(key)

page = st.session_state.page if st.session_state.page in pages else pages[0]

# ═══════════════════════════════════════════════════
#  RESERVATION
# ═══════════════════════════════════════════════════
if page == "Reservation (Customer)":
    tables = get_tables_with_info()
    tables_by_id = {t["table_id"]: t for t in tables}
    cart = st.session_state.cart

    # ── Receipt ──
    if st.session_state.receipt:
        rc = st.session_state.receipt
        st.markdown(f"""<div class="cb-alert cb-alert-green"><strong>✅ Reservation submitted!</strong>
            <br/>Status: pending approval</div>
            <div class="cb-resno">{rc['reservation_no']}</div>""", unsafe_allow_html=True)
        st.image(rc["qr_png"], width=220, caption="Show this QR code at the front desk")
        st.download_button("⬇️ Download QR", rc["qr_png"],
                           file_name=f"{rc['reservation_no']}.png", mime="image/png")
        st.markdown(f"""<div class="cb-card">
            <b>Total:</b> {peso(rc['total'])}<br/>
            <b>Paid:</b> {peso(rc['amount_paid'])}<br/>
            <b>Balance at the counter:</b> {peso(rc['remaining'])}</div>""", unsafe_allow_html=True)
        for r in rc["rows"]:
            t = tables_by_id.get(r["table_id"], {})
            st.caption(f"🎱 {t.get('table_name', r['table_id'])} · {r['reservation_date']} · "
                       f"{format_time_12h(r['start_time'])} – {format_time_12h(r['time_end'])}")
        if st.button("📅 Book Again", type="primary"):
            st.session_state.receipt = None
            st.rerun()
        st.stop()

    # ── Checkout ──
    if st.session_state.checkout and cart:
        if st.button("← Back to Tables"):
            st.session_state.checkout = False
            st.rerun()
        st.subheader("💳 Payment")
        total, half = calculate_bill(cart)
        for it in cart:
            st.markdown(f"- **{it['table_name']}** · {it['date']} · "
                        f"{format_time_12h(it['start_time'])} · {format_hours(it['hours'])} · "
                        f"{peso(line_total(it['price'], it['hours']))}")
        st.markdown(f"**Total: {peso(total)}**")

        method = st.radio("Payment Method", PAYMENT_METHODS, horizontal=True)
        if method == "Cash":
            ptype = "full"
            st.info("💵 Cash is paid in full at the counter when you check in.")
        else:
            ptype = st.radio("Payment Type", list(PAYMENT_TYPE_LABELS),
                             format_func=PAYMENT_TYPE_LABELS.get, horizontal=True)
        due = total if ptype == "full" else half
        amount = st.number_input("Amount Paid (₱)", value=float(due), min_value=0.0, step=1.0)

        proof, reference = None, ""
        if method == "GCash":
            qrs = get_active_qr_codes()
            if not qrs:
                st.warning("No GCash account is available right now. Please pay in cash.")
            for q in qrs:
                st.markdown(f"**{q['full_name']}** · {q['cellphone_number']}")
                show_image(q.get("qr_image"), width=220)
            f = st.file_uploader("Proof of payment (screenshot)", type=["png", "jpg", "jpeg", "webp"])
            if f is not None:
                proof = read_upload(f)
            reference = st.text_input("GCash Reference Number")

        if st.button("✅ Submit Reservation", type="primary", use_container_width=True):
            items = [{"table": tables_by_id[it["table_id"]], "date": it["date"],
                      "start_time": it["start_time"], "hours": it["hours"]}
                     for it in cart if it["table_id"] in tables_by_id]
            try:
                receipt = submit_reservation(user["account_id"], items, method, ptype,
                                             amount, proof=proof, reference=reference)
            except ReservationError as e:
                st.error(f"❌ {e}")
            else:
                st.session_state.cart = []
                st.session_state.checkout = False
                st.session_state.sel_table = None
                st.session_state.receipt = receipt
                st.rerun()
        st.stop()

    # ── Cart ──
    if cart:
        total, _ = calculate_bill(cart)
        with st.expander(f"🛒 Cart ({len(cart)}) · {peso(total)}", expanded=True):
            for i, it in enumerate(cart):
                c1, c2 = st.columns([5, 1])
                with c1:
                    st.markdown(f"**{it['table_name']}** · {it['date']} · "
                                f"{format_time_12h(it['start_time'])} – "
                                f"{format_time_12h(add_hours(it['start_time'], it['hours']))}")
                with c2:
                    if st.button("✕", key=f"rm_{i}"):
                        cart.pop(i)
                        st.rerun()
            if st.button("💳 Proceed to Payment", type="primary", use_container_width=True):
                st.session_state.checkout = True
                st.rerun()

    # ── Table list ──
    sel = tables_by_id.get(st.session_state.sel_table)
    if not sel:
        st.subheader("🎱 Choose a Table")
        type_names = [t["billiard_type"] for t in get_types()]
        ftype = st.selectbox("Billiard type", ["All"] + type_names)
        shown = bookable_tables(tables, None if ftype == "All" else ftype)
        if not shown:
            st.info("No tables are available right now.")
        for t in shown:
            info = t["info"]
            with st.container(border=True):
                c1, c2 = st.columns([2, 3])
                with c1:
                    show_image(t.get("table_image"), use_container_width=True)
                with c2:
                    color = TABLE_STATUS_COLORS.get(info.get("status"), "#888")
                    st.markdown(f"""**{t['table_name']}**<br/>
                        <span style="color:{color};font-weight:700;">● {info.get('status')}</span>
                        · {info.get('billiard_type', '')}<br/>
                        {peso(info.get('price'))} / hour""", unsafe_allow_html=True)
                    if st.button("Select", key=f"sel_{t['table_id']}", use_container_width=True):
                        st.session_state.sel_table = t["table_id"]
                        st.rerun()
        st.stop()

    # ── Date, slot and duration for the selected table ──
    if st.button("← All Tables"):
        st.session_state.sel_table = None
        st.rerun()
    info = sel["info"]
    st.subheader(f"🎱 {sel['table_name']}")
    st.caption(f"{info.get('billiard_type', '')} · {peso(info.get('price'))} / hour")

    d = st.date_input("Date", value=today_pht(), min_value=today_pht())
    d_iso = d.isoformat()
    time_dates = get_time_dates()
    schedule = active_schedule(d_iso, time_dates)
    if is_date_closed(d_iso, time_dates):
        st.markdown('<div class="cb-alert cb-alert-red">🚫 The hall is closed on this date.</div>',
                    unsafe_allow_html=True)
        st.stop()
    if not schedule:
        st.markdown(f'<div class="cb-alert cb-alert-yellow">No opening hours set for {day_name(d_iso)}.</div>',
                    unsafe_allow_html=True)
        st.stop()
    st.caption(f"🕐 {day_name(d_iso)}: {format_time_12h(schedule['OpenTime'])} – "
               f"{format_time_12h(schedule['CloseTime'])}")

    held = [{"start_time": it["start_time"], "time_end": add_hours(it["start_time"], it["hours"]),
             "status": "pending"}
            for it in cart if it["table_id"] == sel["table_id"] and it["date"] == d_iso]
    slots = available_slots(sel["table_id"], d_iso, held=held)
    open_slots = [s for s in slots if s["available"]]
    if not open_slots:
        st.info("No start times left on this date. Try another day.")
        st.stop()
    start = st.selectbox("Start time", [s["db_time"] for s in open_slots],
                         format_func=format_time_12h)
    longest = longest_duration(sel["table_id"], d_iso, start, held=held)
    choices = [float(x["hours"]) for x in get_durations() if float(x["hours"]) <= longest]
    hours = st.selectbox("Duration", choices, format_func=format_hours)
    st.markdown(f"**Subtotal: {peso(line_total(info.get('price'), hours))}** · ends "
                f"{format_time_12h(add_hours(start, hours))}")
    if st.button("🛒 Add to Cart", type="primary", use_container_width=True):
        cart.append({"table_id": sel["table_id"], "table_name": sel["table_name"],
                     "price": info.get("price"), "date": d_iso,
                     "start_time": start, "hours": hours})
        st.session_state.sel_table = None
        st.rerun()

# ═══════════════════════════════════════════════════
#  HISTORY: My Reservations
# ═══════════════════════════════════════════════════
elif page == "History":
    st_autorefresh(interval=30_000, limit=None, key="hist_ar")
    st.subheader("📜 My Reservations")
    tables = {t["table_id"]: t for t in get_tables_with_info()}
    mine = get_account_reservations(user["account_id"])
    q = st.text_input("🔍 Search", placeholder="Reservation no., date, status")

    tab_names = list(RES_TABS)
    ttabs = st.tabs([f"{n.capitalize()} ({len(filter_by_tab(mine, n))})" for n in tab_names])
    for tname, ttab in zip(tab_names, ttabs):
        with ttab:
            rows = search_rows(filter_by_tab(mine, tname), q,
                               ("reservation_no", "reservation_date", "status", "payment_method"))
            shown, pg, total_pages = paginate(rows, st.session_state.hist_page)
            if not rows:
                st.caption("Nothing here.")
            for r in shown:
                tname_disp = tables.get(r["table_id"], {}).get("table_name", r["table_id"])
                label = (f"{STATUS_LABELS.get(r['status'], r['status'])} · {r['reservation_no']} · "
                         f"{tname_disp} · {r['reservation_date']} {format_time_12h(r['start_time'])}")
                with st.expander(label):
                    c1, c2 = st.columns([3, 2])
                    with c1:
                        st.markdown(f"""**Table:** {tname_disp}<br/>
                            **Time:** {format_time_12h(r['start_time'])} – {format_time_12h(r['time_end'])}
                            ({format_hours(r.get('duration') or 0)})<br/>
                            **Payment:** {r.get('payment_method', '')} · {r.get('payment_type', '')}
                            · {r.get('payment_status', '')}<br/>
                            **Total:** {peso(r.get('total_bill'))}""", unsafe_allow_html=True)
                    with c2:
                        show_image(r.get("qr_code"), width=160)

                    b1, b2 = st.columns(2)
                    with b1:
                        ok_c, _ = can_cancel(r)
                        if ok_c:
                            sure = st.checkbox("Payments are non-refundable. Cancel anyway?",
                                               key=f"cxc_{tname}_{r['id']}")
                            if st.button("🚫 Cancel", key=f"cx_{tname}_{r['id']}", disabled=not sure):
                                ok, msg = cancel_reservation(r, user["account_id"])
                                (st.success if ok else st.error)(msg)
                                st.rerun()
                    with b2:
                        ok_r, why = can_reschedule(r)
                        if r["status"] in ("pending", "approved", "rescheduled"):
                            if st.button("🔁 Reschedule", key=f"rs_{tname}_{r['id']}", disabled=not ok_r,
                                         help=why or None):
                                st.session_state.resched_id = r["id"]
                                st.rerun()

                    if st.session_state.resched_id == r["id"] and ok_r:
                        bookable = bookable_tables(list(tables.values()))
                        if not bookable:
                            st.info("No tables are available right now.")
                            continue
                        ids = [t["table_id"] for t in bookable]
                        cur = ids.index(r["table_id"]) if r["table_id"] in ids else 0
                        nt = st.selectbox("Table", ids, index=cur,
                                          format_func=lambda i: tables[i]["table_name"],
                                          key=f"rt_{r['id']}")
                        nd = st.date_input("New date", min_value=today_pht(), key=f"rd_{r['id']}")
                        nslots = [s for s in available_slots(nt, nd.isoformat(), exclude_id=r["id"])
                                  if s["available"]]
                        if not nslots:
                            st.info("No start times left on this date.")
                            continue
                        ns = st.selectbox("New start", [s["db_time"] for s in nslots],
                                          format_func=format_time_12h, key=f"rst_{r['id']}")
                        nh = st.number_input("Hours", min_value=1.0, step=0.5,
                                             value=float(r.get("duration") or 1),
                                             key=f"rh_{r['id']}")
                        if st.button("✅ Confirm Reschedule", type="primary", key=f"rc_{r['id']}"):
                            ok, msg = reschedule_reservation(r, tables[nt], nd.isoformat(), ns, nh,
                                                             user["account_id"])
                            if ok:
                                st.session_state.resched_id = None
                                st.success(msg)
                                st.rerun()
                            st.error(msg)
            if total_pages > 1:
                p1, p2, p3 = st.columns([1, 2, 1])
                with p1:
                    if st.button("◀", key=f"pv_{tname}", disabled=pg <= 1):
                        st.session_state.hist_page = pg - 1
                        st.rerun()
                with p2:
                    st.caption(f"Page {pg} of {total_pages}")
                with p3:
                    if st.button("▶", key=f"nx_{tname}", disabled=pg >= total_pages):
                        st.session_state.hist_page = pg + 1
                        st.rerun()

# ═══════════════════════════════════════════════════
#  NOTIFICATIONS
# ═══════════════════════════════════════════════════
elif page == "Notifications":
    st_autorefresh(interval=30_000, limit=None, key="notif_ar")
    notifs = get_notifications(user["account_id"])
    unread = [n for n in notifs if not n.get("is_read")]
    c1, c2 = st.columns([3, 1])
    with c1:
        st.subheader(f"🔔 Notifications ({len(unread)} unread)")
    with c2:
        if unread and st.button("Mark all read"):
            mark_all_read(user["account_id"])
            st.rerun()
    if not notifs:
        st.caption("No notifications yet.")
    for n in notifs:
        cls = "cb-card" if n.get("is_read") else "cb-card cb-unread"
        st.markdown(f"""<div class="{cls}">{n.get('message', '')}<br/>
            <span style="font-size:11px;opacity:.6;">{str(n.get('created_at', ''))[:16].replace('T', ' ')}</span>
            </div>""", unsafe_allow_html=True)
        if not n.get("is_read"):
            if st.button("✓ Mark read", key=f"nr_{n['id']}"):
                mark_notification_read(n["id"])
                st.rerun()

# ═══════════════════════════════════════════════════
#  PROFILE
# ═══════════════════════════════════════════════════
elif page == "Profile":
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
                if ok:
                    user["email"] = em.strip().lower()
                    user["full_name"] = " ".join(x.strip() for x in (fn, mn, ln) if x and x.strip())
                (st.success if ok else st.error)(msg)

    st.markdown("**🔑 Change Password**")
    with st.form("pw_form"):
        cur = st.text_input("Current Password", type="password")
        np1 = st.text_input("New Password", type="password")
        np2 = st.text_input("Confirm", type="password")
        if st.form_submit_button("Save", type="primary"):
            ok, msg = change_password(user["account_id"], cur, np1, np2)
            (st.success if ok else st.error)(("✅ " if ok else "") + msg)
