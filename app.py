import logging
import time
from datetime import date, datetime

import streamlit as st

import utils
from auth import AuthError, FirebaseEmailLinkAuth, SessionStore
from insights import entries_to_csv, goal_history, project_trend, trend_chart, trend_frame
from models import GOAL_SLOTS
from repositories import FirestoreEntryRepository, FirestoreGoalRepository, RemoteStoreError
from stores import (
    EntryStore,
    GoalStore,
    NotAuthenticatedError,
    ReflectionForm,
    ValidationError,
    load_user_data,
)

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

SESSION_CHECK_INTERVAL = 300  # seconds between ID token checks

QUESTIONS = {
    "q1": "What progress or momentum did you notice this week?",
    "q3": "What feedback did you receive indicating how you might be tracking toward your goals?",
    "highlights": "Highlights from my week were...",
    "challenges": "Challenges this week included...",
    "experiment": "One small experiment I want to try next week is...",
}

st.set_page_config(layout="centered", page_title="Weekly Reflection Tracker")

# --- 1. Global Configuration and Firebase ---

try:
    config = utils.load_app_config(st.secrets)
except Exception as e:
    st.error(f"Failed to load configuration: {e}")
    st.stop()

try:
    db = utils.initialize_firebase(config["firebase"])
except Exception as e:
    st.error(f"Failed to initialize Firebase: {e}")
    st.stop()

PROJECT_ID = config["firebase"]["project_id"]


# --- 2. Per-Session State ---

def handle_session_change(session):
    """Any session transition drops the loaded data; it is fetched again for a new session."""
    st.session_state.user_data_loaded = False
    st.session_state.goal_store.clear()
    st.session_state.entry_store.clear()
    st.session_state.reflection_form.reset()


def init_session_state():
    if 'goal_store' not in st.session_state:
        st.session_state.goal_store = GoalStore(
            FirestoreGoalRepository(utils.get_goals_collection_ref(db, PROJECT_ID))
        )
    if 'entry_store' not in st.session_state:
        st.session_state.entry_store = EntryStore(
            FirestoreEntryRepository(utils.get_entries_collection_ref(db, PROJECT_ID))
        )
    if 'reflection_form' not in st.session_state:
        st.session_state.reflection_form = ReflectionForm()
    if 'user_data_loaded' not in st.session_state:
        st.session_state.user_data_loaded = False
    if 'session_store' not in st.session_state:
        store = SessionStore(FirebaseEmailLinkAuth(config["web_api_key"]), config["app_url"])
        store.on_change(handle_session_change)
        st.session_state.session_store = store
        st.session_state.session_checked_at = 0.0


def current_identity():
    return st.session_state.session_store.identity


def current_owner_id():
    identity = current_identity()
    return identity.id if identity else None


def current_session():
    """The session, re-validated against Firebase every few minutes."""
    store = st.session_state.session_store
    now = time.monotonic()
    if now - st.session_state.session_checked_at < SESSION_CHECK_INTERVAL:
        return store.session
    st.session_state.session_checked_at = now
    return store.get_current_session()


def complete_sign_in_from_link():
    """Finishes an email-link sign-in when the app is opened from the emailed link."""
    if "oobCode" not in st.query_params:
        return
    try:
        with st.spinner("Signing you in..."):
            st.session_state.session_store.complete_sign_in(st.query_params)
        st.session_state.session_checked_at = time.monotonic()
    except AuthError as e:
        st.error(f"Sign-in failed ({e}). Please request a new link.")
    finally:
        st.query_params.clear()


# --- 3. Streamlit Callback Wrappers ---

def sync_goal_widgets():
    goal_store = st.session_state.goal_store
    for position in GOAL_SLOTS:
        st.session_state[f"goal_title_{position}"] = goal_store.titles[position - 1]


def sync_form_widgets():
    form = st.session_state.reflection_form
    st.session_state.form_date = date.fromisoformat(form.date)
    for name in ReflectionForm.TEXT_FIELDS:
        st.session_state[f"form_{name}"] = getattr(form, name)


def handle_goal_title_change(position):
    st.session_state.goal_store.set_title(position, st.session_state[f"goal_title_{position}"])


def handle_confirm_goal_click(position):
    try:
        title = st.session_state.get(f"goal_title_{position}", "")
        if not st.session_state.goal_store.confirm_goal(current_owner_id(), position, title):
            st.info(f"Enter Goal {position} before confirming it.")
    except NotAuthenticatedError as e:
        st.warning(str(e))
    except RemoteStoreError:
        st.error("Error saving goal. Please try again.")


def handle_request_unlock_click(position):
    st.session_state.goal_store.request_unlock(position)


def handle_confirm_unlock_click():
    try:
        st.session_state.goal_store.confirm_unlock(current_owner_id())
    except NotAuthenticatedError as e:
        st.warning(str(e))
    except RemoteStoreError:
        st.error("Error updating goal. Please try again.")


def handle_cancel_unlock_click():
    st.session_state.goal_store.cancel_unlock()


def handle_save_click():
    """Copies the widget values into the form and saves it."""
    form = st.session_state.reflection_form
    form.date = st.session_state.form_date.isoformat()
    form.score = st.session_state.form_score
    form.selected_goal = st.session_state.selected_goal
    for name in ReflectionForm.TEXT_FIELDS:
        setattr(form, name, st.session_state[f"form_{name}"])

    try:
        form.submit(st.session_state.entry_store, current_identity())
    except ValidationError as e:
        st.error(str(e))
        return
    except NotAuthenticatedError as e:
        st.warning(str(e))
        return
    except RemoteStoreError:
        st.error("Error saving entry. Your answers are still in the form; please try again.")
        return

    sync_form_widgets()
    st.session_state.form_score = None
    st.success("Saved!")


def handle_sign_out_click():
    st.session_state.session_store.sign_out()
    st.query_params.clear()
    st.info("You have been signed out.")


def handle_reload_click():
    st.session_state.user_data_loaded = False


# --- 4. UI Components ---

def display_auth_page():
    """Displays the email-link sign-in form."""
    st.title("BrightChirp Reflection Tracker")
    st.caption("Sign in with your email to begin.")

    email = st.text_input("Email", placeholder="you@company.com").strip()
    if st.button("Send magic link", type="primary", disabled=not email):
        try:
            with st.spinner("Sending…"):
                st.session_state.session_store.sign_in_with_email(email)
            st.success("Magic link sent! Check your email.")
        except AuthError as e:
            st.error(f"Could not send the sign-in link: {e}")


def display_goal_panel():
    goal_store = st.session_state.goal_store

    st.header("Development Goals")
    st.caption("Locked goals feed the tracker.")

    for position in GOAL_SLOTS:
        locked = goal_store.locked[position - 1]
        col_input, col_button = st.columns([4, 1], vertical_alignment="bottom")
        with col_input:
            st.text_input(
                f"Goal {position}",
                key=f"goal_title_{position}",
                disabled=locked,
                placeholder=f"Enter development goal {position}",
                on_change=handle_goal_title_change,
                args=(position,),
            )
        with col_button:
            if not locked:
                st.button(
                    "Confirm",
                    key=f"confirm_goal_{position}",
                    type="primary",
                    on_click=handle_confirm_goal_click,
                    args=(position,),
                    use_container_width=True,
                )
            else:
                st.button(
                    "Edit",
                    key=f"edit_goal_{position}",
                    type="secondary",
                    on_click=handle_request_unlock_click,
                    args=(position,),
                    use_container_width=True,
                )

        if goal_store.pending_unlock == position:
            st.warning(f"Edit Goal {position}? It will stop feeding the tracker until you confirm it again.")
            col_yes, col_no = st.columns(2)
            with col_yes:
                st.button("Yes, edit goal", key=f"unlock_yes_{position}", on_click=handle_confirm_unlock_click)
            with col_no:
                st.button("No, keep it", key=f"unlock_no_{position}", on_click=handle_cancel_unlock_click)


def display_reflection_form():
    goal_store = st.session_state.goal_store

    st.header("Weekly Reflection")
    if "form_date" not in st.session_state:
        sync_form_widgets()

    options = goal_store.confirmed_goal_options()
    labels = dict((value, label) for label, value in options)
    values = list(labels) or ["Goal 1"]
    if st.session_state.get("selected_goal") not in values:
        st.session_state.selected_goal = values[0]

    col_date, col_goal, col_score = st.columns(3)
    with col_date:
        st.date_input("Date", key="form_date")
    with col_goal:
        st.selectbox(
            "Progress Tracking",
            values,
            key="selected_goal",
            format_func=lambda value: labels.get(value, value),
            disabled=not options,
            help="Choose which goal this reflection is about.",
        )
    with col_score:
        st.number_input(
            "Progress Score (1–10)",
            min_value=1,
            max_value=10,
            step=1,
            value=None,
            key="form_score",
            placeholder="1–10",
        )

    col_q1, col_q3 = st.columns(2)
    with col_q1:
        st.text_area(QUESTIONS["q1"], key="form_q1", height=100)
    with col_q3:
        st.text_area(QUESTIONS["q3"], key="form_q3", height=100)

    col_hi, col_ch, col_exp = st.columns(3)
    with col_hi:
        st.text_area(QUESTIONS["highlights"], key="form_highlights", height=80)
    with col_ch:
        st.text_area(QUESTIONS["challenges"], key="form_challenges", height=80)
    with col_exp:
        st.text_area(QUESTIONS["experiment"], key="form_experiment", height=80)

    st.button("Save Reflection", type="primary", on_click=handle_save_click)


def display_trend():
    selected_goal = st.session_state.selected_goal
    entries = st.session_state.entry_store.entries

    st.header(f"{selected_goal} Progress Trend")
    points = project_trend(entries, selected_goal)
    if points:
        st.altair_chart(trend_chart(trend_frame(points)), use_container_width=True)
    else:
        st.info("No reflections for this goal yet. Save one above to start your trend.")

    history = goal_history(entries, selected_goal)
    if history:
        st.subheader("Reflection History")
        for entry in history:
            score = entry.progress_score if entry.progress_score is not None else "–"
            with st.expander(f"**{entry.date}** | Score: {score}"):
                for name, question in QUESTIONS.items():
                    answer = getattr(entry, name)
                    if answer:
                        st.markdown(f"*{question}*")
                        st.markdown(answer)


def display_main_app(session):
    """Displays the tracker for a signed-in user."""
    identity = session.user

    if not st.session_state.user_data_loaded:
        with st.spinner("Loading your goals and reflections..."):
            try:
                load_user_data(identity.id, st.session_state.goal_store, st.session_state.entry_store)
            except RemoteStoreError:
                st.error("Error loading your data. Use 'Reload data' in the sidebar to try again.")
        sync_goal_widgets()
        st.session_state.user_data_loaded = True

    st.title("Weekly Reflection")
    st.caption(f"Signed in as {identity.email or identity.id}")

    with st.sidebar:
        st.header("Account & Data")
        st.button("Sign out", type="secondary", on_click=handle_sign_out_click)
        st.button("Reload data", on_click=handle_reload_click)

        st.divider()
        st.subheader("Data Management")
        st.download_button(
            label="Download Reflections (CSV)",
            data=entries_to_csv(st.session_state.entry_store.entries),
            file_name=f"reflections_{datetime.now().strftime('%Y%m%d')}.csv",
            mime="text/csv",
            help="Downloads all your saved reflections.",
        )

    display_goal_panel()
    st.divider()
    display_reflection_form()
    st.divider()
    display_trend()


# --- Main Application Logic ---

if __name__ == '__main__':
    init_session_state()
    complete_sign_in_from_link()
    session = current_session()
    if session:
        display_main_app(session)
    else:
        display_auth_page()
