"""
Streamlit web app for work-hour tracking.
Calendar view with per-day editing, sidebar statistics, settings,
OCR import, export and sync controls.
"""

import logging
from datetime import date, datetime
from typing import List, Optional

import streamlit as st

# Import our modules
import calc
import db
import ocr_import
from holiday_oracle import DEFAULT_API_BASE, HolidayOracle, create_holiday_oracle
from models import DayRecord, Settings, Snapshot

db.configure_logging()
logger = logging.getLogger(__name__)

WEEKDAY_ABBR = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]

STATUS_LABELS = {
    'completed': 'Done',
    'partial': 'Partial',
    'empty': 'Open',
    'leave': 'Leave',
    'weekend': 'Rest',
    'not-created': ''
}


@st.cache_resource
def get_oracle() -> HolidayOracle:
    """Process-wide holiday oracle shared by all sessions."""
    return create_holiday_oracle(
        source=db.get_secret('HOLIDAY_SOURCE', 'api'),
        country=db.get_secret('HOLIDAY_COUNTRY', 'CN'),
        api_base=db.get_secret('HOLIDAY_API_BASE', DEFAULT_API_BASE),
        cache_file=db.get_secret('HOLIDAY_CACHE_FILE')
    )


@st.cache_resource
def get_snapshot_store() -> Optional[db.SnapshotStore]:
    if not db.sync_configured():
        return None
    try:
        return db.SnapshotStore(db.get_supabase_client())
    except Exception as e:
        logger.warning("Supabase unavailable, sync disabled: %s", e)
        return None


def get_local_store() -> db.LocalStore:
    return db.LocalStore()


def init_session() -> None:
    """Load local state and run the one-time inbound sync."""
    if 'settings' not in st.session_state:
        local = get_local_store().load()
        st.session_state.settings = local.settings
        st.session_state.records = local.day_records
        today = date.today()
        st.session_state.current_year = today.year
        st.session_state.current_month = today.month
        st.session_state.selected_date = None

    if 'sync' not in st.session_state:
        st.session_state.sync = db.SyncSession(get_snapshot_store(), st.session_state.settings.sync_space)

    sync: db.SyncSession = st.session_state.sync
    if not sync.pull_attempted:
        local = Snapshot(st.session_state.settings, st.session_state.records)
        with st.spinner("Loading synced data..."):
            adopted = sync.pull(local)
        if adopted is not local:
            st.session_state.settings = adopted.settings
            st.session_state.records = adopted.day_records
            st.session_state.pop('generated_month', None)
            get_local_store().save(adopted)
    if sync.enabled and not sync.has_synced:
        st.warning(f"Sync unavailable this session, working locally: {sync.last_error}")


def commit(settings: Settings, records: List[DayRecord]) -> None:
    """Store new state in the session, on disk, and push it if allowed."""
    st.session_state.settings = settings
    st.session_state.records = records
    snapshot = Snapshot(settings, records)
    get_local_store().save(snapshot)
    sync: db.SyncSession = st.session_state.sync
    sync.notify_change(snapshot)
    if sync.last_error:
        st.toast(f"Sync failed: {sync.last_error}")


def load_month_data(oracle: HolidayOracle) -> List[DayRecord]:
    """Make sure the visible month has up-to-date records."""
    year = st.session_state.current_year
    month = st.session_state.current_month

    if not oracle.is_loaded(year):
        with st.spinner(f"Loading {year} holidays..."):
            oracle.get_holidays(year)
        if not oracle.is_loaded(year):
            st.caption("Holiday calendar unavailable, treating every day as ordinary.")

    settings: Settings = st.session_state.settings
    records = st.session_state.records
    if st.session_state.get('generated_month') != (year, month, settings):
        updated = calc.regenerate_month(year, month, settings, records, oracle)
        st.session_state.generated_month = (year, month, settings)
        st.session_state.holidays_applied = oracle.is_loaded(year)
    elif oracle.is_loaded(year) and not st.session_state.get('holidays_applied'):
        # holidays arrived after the month was generated
        updated = calc.recompute_month(records, year, month, settings, oracle)
        st.session_state.holidays_applied = True
    else:
        return records

    if updated != records:
        commit(settings, updated)
    return updated


def change_month(delta: int) -> None:
    year, month = calc.shift_month(st.session_state.current_year, st.session_state.current_month, delta)
    st.session_state.current_year = year
    st.session_state.current_month = month
    st.session_state.selected_date = None


def render_header() -> None:
    col1, col2, col3, col4 = st.columns([1, 4, 1, 1])
    with col1:
        if st.button("◀", key="prev_month"):
            change_month(-1)
            st.rerun()
    with col2:
        month_name = calc.get_month_name(st.session_state.current_month)
        st.markdown(f"<h2 style='text-align: center'>{month_name} {st.session_state.current_year}</h2>",
                    unsafe_allow_html=True)
    with col3:
        if st.button("▶", key="next_month"):
            change_month(1)
            st.rerun()
    with col4:
        if st.button("Today", key="this_month"):
            today = date.today()
            st.session_state.current_year = today.year
            st.session_state.current_month = today.month
            st.session_state.selected_date = None
            st.rerun()


def render_calendar(records: List[DayRecord], oracle: HolidayOracle) -> None:
    """Render the month grid."""
    by_date = {record.date: record for record in records}
    grid = calc.month_grid(st.session_state.current_year, st.session_state.current_month)

    cols = st.columns(7)
    for i, weekday in enumerate(WEEKDAY_ABBR):
        with cols[i]:
            st.markdown(f"<div class='weekday-label'>{weekday}</div>", unsafe_allow_html=True)

    for week in grid:
        cols = st.columns(7)
        for i, day_date in enumerate(week):
            with cols[i]:
                if day_date is None:
                    st.markdown("<div style='height: 80px;'></div>", unsafe_allow_html=True)
                else:
                    render_day_cell(day_date, by_date.get(day_date), oracle)


def render_day_cell(day_date: date, record: Optional[DayRecord], oracle: HolidayOracle) -> None:
    """Render one calendar cell with its edit button."""
    status = calc.day_status(record)
    today_class = " today" if day_date == date.today() else ""

    detail = ""
    if record is not None and status != 'leave':
        if record.required_hours > 0:
            detail = f"{record.actual_hours:g} / {record.required_hours:g}h"
        elif record.actual_hours > 0:
            detail = f"{record.actual_hours:g}h"
    small_week = '<div class="badge small-week">small week</div>' if record and record.is_small_week else ''

    holiday_badge = ""
    holiday_name = oracle.holiday_name(day_date)
    if holiday_name:
        holiday_badge = f'<div class="holiday-badge">{holiday_name[:10]}</div>'

    st.markdown(f"""
    <div class="day-cell status-{status}{today_class}">
        <div class="day-number">{day_date.day}</div>
        <div class="day-status">{STATUS_LABELS.get(status, '')}</div>
        <div class="day-hours">{detail}</div>
        {small_week}
        {holiday_badge}
    </div>
    """, unsafe_allow_html=True)

    if st.button("Edit", key=f"edit_{day_date.isoformat()}", use_container_width=True):
        st.session_state.selected_date = day_date
        st.rerun()


def render_day_editor(records: List[DayRecord], oracle: HolidayOracle) -> None:
    """Editing panel for the selected day."""
    selected: Optional[date] = st.session_state.get('selected_date')
    if selected is None:
        return
    record = calc.find_record(records, selected)
    if record is None:
        st.session_state.selected_date = None
        return

    settings: Settings = st.session_state.settings
    kind = calc.classify_day(selected, settings, oracle)

    st.markdown("---")
    st.subheader(f"{selected.strftime('%A, %Y-%m-%d')}")
    st.caption(f"{kind.value.replace('_', ' ').title()} · required {record.required_hours:g}h"
               + (" · on leave" if record.is_leave else ""))

    with st.form(f"hours_{selected.isoformat()}"):
        hours_text = st.text_input("Hours worked", value=f"{record.actual_hours:g}", disabled=record.is_leave)
        notes = st.text_input("Notes", value=record.notes or "")
        if st.form_submit_button("Save"):
            result = calc.update_record(records, selected, notes=notes or None)
            if not record.is_leave:
                result = calc.set_hours(result.records, selected, hours_text)
            commit(settings, result.records)
            st.session_state.selected_date = None
            st.rerun()

    col1, col2, col3 = st.columns(3)
    with col1:
        label = "Cancel leave" if record.is_leave else "Mark leave"
        if st.button(label, key="toggle_leave"):
            result = calc.toggle_leave(records, selected)
            commit(settings, result.records)
            st.rerun()
    with col2:
        if selected.weekday() == calc.SATURDAY:
            label = "Unset small week" if record.is_small_week else "Set small week"
            if st.button(label, key="toggle_small_week"):
                new_settings, result = calc.toggle_small_week(records, settings, selected, oracle)
                commit(new_settings, result.records)
                st.rerun()
    with col3:
        if st.button("Close", key="close_editor"):
            st.session_state.selected_date = None
            st.rerun()


def render_sidebar(stats: dict, oracle: HolidayOracle) -> None:
    """Render the sidebar with summary and projection."""
    st.sidebar.header("📊 Summary")

    col1, col2 = st.sidebar.columns(2)
    col1.metric("Worked days", stats['worked_days'])
    col2.metric("Avg hours", f"{stats['average_hours']:.1f}")
    col1.metric("Actual", f"{stats['total_hours']:.1f}h")
    col2.metric("Required", f"{stats['total_required']:.1f}h")

    compliance = stats['compliance_rate']
    st.sidebar.progress(min(compliance / 100, 1.0))
    st.sidebar.markdown(f"**Completion:** {compliance:.1f}%")

    st.sidebar.markdown("---")
    st.sidebar.markdown("**Breakdown:**")
    st.sidebar.markdown(f"• Standard days (excl. today): {stats['normal_week_days']}")
    st.sidebar.markdown(f"• Small-week Saturdays: {stats['small_week_days']}")
    st.sidebar.markdown(f"• Leave on standard days: {stats['normal_week_leave_days']}")
    st.sidebar.markdown(f"• Leave on small weeks: {stats['small_week_leave_days']}")

    outlook = calc.projection_outlook(stats)
    st.sidebar.markdown("---")
    st.sidebar.header("🔭 Outlook")
    st.sidebar.markdown(f"Remaining hours: **{stats['remaining_hours']:.1f}h**")
    st.sidebar.markdown(f"Workdays after today: **{stats['future_work_days']}** "
                        f"({stats['future_small_week_days']} small week)")
    st.sidebar.markdown(f"Capacity: **{outlook['capacity']:.1f}h**")
    gap_text = f"{outlook['gap']:+.1f}h"
    if outlook['today_estimated']:
        gap_text += f" (incl. today est. +{outlook['today_fix']:.1f}h)"
    if outlook['gap'] >= 0:
        st.sidebar.success(f"Difference: {gap_text}")
    else:
        st.sidebar.error(f"Difference: {gap_text}")

    settings: Settings = st.session_state.settings
    payday = calc.payday_date(st.session_state.current_year, st.session_state.current_month, settings, oracle)
    st.sidebar.caption(f"Payday this month: {payday.isoformat()}")


def render_settings() -> None:
    """Settings form: hours, payday, sync space."""
    settings: Settings = st.session_state.settings
    st.sidebar.markdown("---")
    st.sidebar.header("⚙️ Settings")

    with st.sidebar.form("settings"):
        normal_hours = st.text_input("Standard workday hours", value=f"{settings.normal_hours:g}")
        small_week_hours = st.text_input("Small-week Saturday hours", value=f"{settings.small_week_hours:g}")
        payday_day = st.number_input("Payday (day of month)", min_value=1, max_value=28,
                                     value=int(settings.payday_day), step=1)
        sync_space = st.text_input("Sync space code", value=settings.sync_space or "")
        submitted = st.form_submit_button("Save settings")

    if submitted:
        new_settings = calc.normalize_settings(
            settings,
            normal_hours=normal_hours,
            small_week_hours=small_week_hours,
            payday_day=payday_day,
            sync_space=sync_space
        )
        if new_settings.sync_space != settings.sync_space:
            switch_space(new_settings)
        else:
            records = calc.regenerate_month(st.session_state.current_year, st.session_state.current_month,
                                            new_settings, st.session_state.records, get_oracle())
            commit(new_settings, records)
        st.rerun()

    if st.sidebar.button("Generate new space code"):
        switch_space(settings.with_changes(sync_space=db.generate_space_code()))
        st.rerun()

    with st.sidebar.expander("Weeks this month"):
        weeks = calc.weeks_in_month(st.session_state.current_year, st.session_state.current_month,
                                    settings.work_weeks)
        for week in weeks:
            marker = "small week" if week.is_small_week else "normal"
            st.markdown(f"{week.week_start:%m-%d} to {week.week_end:%m-%d}: {marker}")


def switch_space(settings: Settings) -> None:
    """Bind to another sync space; the next run pulls from it."""
    st.session_state.settings = settings
    get_local_store().save_settings(settings)
    st.session_state.sync = db.SyncSession(get_snapshot_store(), settings.sync_space)


def render_ocr_import(oracle: HolidayOracle) -> None:
    """Screenshot upload and import of hours into the visible month."""
    st.sidebar.markdown("---")
    st.sidebar.header("📷 OCR import")
    lang = st.sidebar.selectbox("Language", options=list(ocr_import.OCR_LANGUAGES),
                                format_func=lambda x: ocr_import.OCR_LANGUAGES[x])
    overwrite = st.sidebar.checkbox("Overwrite existing hours", value=False)
    uploaded_file = st.sidebar.file_uploader("Screenshot", type=['png', 'jpg', 'jpeg'])

    if uploaded_file is not None and st.sidebar.button("Import"):
        try:
            with st.spinner("Recognizing..."):
                text = ocr_import.recognize_image(uploaded_file.getvalue(), lang)
        except Exception as e:
            logger.warning("OCR failed: %s", e)
            st.sidebar.error(f"Recognition failed: {e}")
            return

        items = ocr_import.parse_ocr_text(text)
        year = st.session_state.current_year
        month = st.session_state.current_month
        settings: Settings = st.session_state.settings

        sync: db.SyncSession = st.session_state.sync
        with sync.bulk_update():
            result = ocr_import.apply_ocr_import(st.session_state.records, items, year, month,
                                                 overwrite, settings, oracle)
            commit(settings, result.records)
            saturdays = ocr_import.infer_small_weeks(result.written, year, month, settings.small_week_hours)
            if saturdays:
                settings = ocr_import.apply_small_weeks(settings, saturdays)
                records = calc.regenerate_month(year, month, settings, result.records, oracle)
                commit(settings, records)

        message = f"Parsed {len(items)} line(s), imported {result.imported}"
        if saturdays:
            message += f", {len(saturdays)} small week(s) detected"
        st.session_state.flash = message
        st.rerun()


def render_export_clear() -> None:
    """Export JSON and clear data controls."""
    st.sidebar.markdown("---")
    st.sidebar.header("📁 Data")
    snapshot = Snapshot(st.session_state.settings, st.session_state.records)
    st.sidebar.download_button(
        label="Export JSON",
        data=calc.serialize_snapshot(snapshot),
        file_name=f"work_hours_{datetime.now():%Y%m%d}.json",
        mime="application/json"
    )

    backup = st.sidebar.file_uploader("Import JSON", type=['json'], key="import_json")
    if backup is not None and st.sidebar.button("Replace data with backup"):
        try:
            imported = calc.deserialize_snapshot(backup.getvalue().decode('utf-8'))
        except (UnicodeDecodeError, ValueError) as e:
            st.sidebar.error(f"Import failed: {e}")
        else:
            # keep the device's space binding, the file never carries one
            settings = imported.settings.with_changes(sync_space=st.session_state.settings.sync_space)
            commit(settings, imported.day_records)
            st.session_state.pop('generated_month', None)
            st.session_state.flash = f"Imported {len(imported.day_records)} record(s)"
            st.rerun()

    clear_remote = st.sidebar.checkbox("Also delete synced copy", value=False)
    if st.sidebar.button("Clear all data"):
        sync: db.SyncSession = st.session_state.sync
        if clear_remote and not sync.clear_remote():
            st.sidebar.error(f"Could not clear synced data: {sync.last_error or 'sync disabled'}")
        get_local_store().clear()
        for key in ('settings', 'records', 'sync', 'selected_date', 'generated_month'):
            st.session_state.pop(key, None)
        st.rerun()


def main():
    """Main application function."""
    st.set_page_config(
        page_title="Work Hours",
        page_icon="⏱️",
        layout="wide",
        initial_sidebar_state="expanded"
    )
    st.markdown("""
    <style>
    .day-cell {
        border: 1px solid #eee;
        border-radius: 0.5rem;
        padding: 1.25rem 0.5rem 0.5rem;
        min-height: 96px;
        position: relative;
        text-align: center;
    }
    .day-number { position: absolute; top: 0.35rem; left: 0.5rem; font-weight: 600; font-size: 14px; }
    .day-status { font-size: 11px; opacity: 0.7; }
    .day-hours { font-size: 14px; font-weight: 600; margin-top: 4px; }
    .today { border: 2px solid #2563eb; }
    .status-completed { background: #e6f4ea; }
    .status-partial { background: #fff7cc; }
    .status-empty { background: #ffffff; }
    .status-leave { background: #fde2e2; }
    .status-weekend, .status-not-created { background: #fafafa; opacity: 0.6; }
    .badge.small-week { font-size: 9px; color: #7c3aed; }
    .holiday-badge { font-size: 9px; color: red; position: absolute; bottom: 5px; left: 5px; right: 5px; }
    .weekday-label { text-align: center; font-weight: bold; padding: 6px; }
    </style>
    """, unsafe_allow_html=True)

    st.title("⏱️ Work Hours")

    init_session()
    oracle = get_oracle()
    oracle.prefetch(date.today().year)

    flash = st.session_state.pop('flash', None)
    if flash:
        st.success(flash)

    records = load_month_data(oracle)
    year = st.session_state.current_year
    month = st.session_state.current_month
    stats = calc.compute_stats(calc.stats_scope(records, year, month), date.today())

    render_sidebar(stats, oracle)
    render_settings()
    render_ocr_import(oracle)
    render_export_clear()

    render_header()
    render_calendar(records, oracle)
    render_day_editor(records, oracle)

    st.markdown("---")
    st.markdown("""
    **Instructions:**
    - Click **Edit** on a day to enter hours, mark leave, or toggle a small week (Saturdays)
    - Marking leave or changing the small-week status resets that day's hours
    - Holidays and adjusted workdays are loaded automatically
    - Statistics cover days with a requirement in the visible month
    """)


if __name__ == "__main__":
    main()
