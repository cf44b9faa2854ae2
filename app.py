"""
Principal CRM — Interactive Dashboard

Run with:  streamlit run app.py
"""

import pandas as pd
import plotly.express as px
import plotly.graph_objects as go
import streamlit as st

from principal_crm.config import (
    ACTIVITY_STATUS_CONFIG,
    ACTIVITY_STATUSES,
    CONTRACT_STATUS_COLORS,
    INTERACTION_TYPES,
    OPPORTUNITY_STAGES,
    ORGANIZATION_STATUSES,
    PRINCIPAL_SORT_FIELDS,
    PRODUCT_CATEGORIES,
    RAG_HEX,
    TIMELINE_ACTIVITY_TYPES,
    load_settings,
)
from principal_crm.dashboard import (
    build_interaction_payload,
    build_opportunity_payload,
    get_distributor_table,
    get_follow_up_queue,
    get_principal_detail,
    get_principal_overview,
    get_principals_requiring_follow_up,
    get_product_table,
    get_selector_options,
    get_timeline_view,
    load_dataset_from_api,
    visible_errors,
)
from principal_crm.filters import (
    PrincipalFilters,
    SelectionState,
    SortState,
    active_filter_count,
    drop_invalid_filters,
    filter_summary,
    get_selection_items,
    validate_filter_form,
)
from principal_crm.formatting import activity_icon, color_hex, format_activity_date, format_number
from principal_crm.kpis import status_color
from principal_crm.loaders import PrincipalActivityApi
from principal_crm.loaders.utils import utc_now
from principal_crm.reports import export_timeline_csv, export_timeline_json
from principal_crm.simulator import generate_dataset
from principal_crm.timeline import TimelineFilter, activity_type_distribution

# ---------------------------------------------------------------------------
# Page config
# ---------------------------------------------------------------------------
st.set_page_config(
    page_title="Principal CRM Dashboard",
    page_icon="🤝",
    layout="wide",
    initial_sidebar_state="expanded",
)


# ---------------------------------------------------------------------------
# Data loading (cached)
# ---------------------------------------------------------------------------
@st.cache_data(ttl=300)
def load_all_data():
    settings = load_settings()
    now = utc_now()
    if not settings.use_api:
        return generate_dataset(now), {}, now
    api = PrincipalActivityApi.from_settings(settings)
    try:
        dataset, errors = load_dataset_from_api(api, now)
    finally:
        api.close()
    return dataset, errors, now


def error_banner(errors: dict[str, str]) -> None:
    """Show failed views with retry and dismiss buttons; dismissed messages stay hidden."""
    dismissed = st.session_state.setdefault("dismissed_errors", set())
    visible = visible_errors(errors, dismissed)
    if not visible:
        return
    for view, message in visible.items():
        st.error(f"Failed to load {view}: {message}")
    col1, col2, _ = st.columns([1, 1, 6])
    with col1:
        if st.button("Try again"):
            dismissed.clear()
            load_all_data.clear()
            st.rerun()
    with col2:
        if st.button("Dismiss"):
            dismissed.update(visible.items())
            st.rerun()


def submit_write(action) -> None:
    """Run one API write, then reload on success or show the error."""
    api = PrincipalActivityApi.from_settings(SETTINGS)
    try:
        resp = action(api)
    finally:
        api.close()
    if resp.success:
        load_all_data.clear()
        st.rerun()
    st.error(resp.error)


data, load_errors, NOW = load_all_data()
SETTINGS = load_settings()
summaries = data["summaries"]

if "sort" not in st.session_state:
    st.session_state.sort = SortState()
if "selection" not in st.session_state:
    st.session_state.selection = SelectionState(multi_select=True, max_selections=5)

# ---------------------------------------------------------------------------
# Sidebar
# ---------------------------------------------------------------------------
st.sidebar.title("Principal CRM")
st.sidebar.markdown("Principal activity & engagement")
st.sidebar.divider()

page = st.sidebar.radio(
    "Navigate",
    ["Overview", "Principals", "Principal Detail", "Timeline", "Follow-ups"],
)

st.sidebar.divider()
st.sidebar.caption(f"Data as of {NOW:%Y-%m-%d %H:%M} UTC")
if SETTINGS.use_api and st.sidebar.button("Refresh summary"):
    submit_write(lambda api: api.refresh_activity_summary())


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def kpi_card(label: str, value, color: str, subtitle: str = ""):
    hex_color = color_hex(color)
    st.markdown(
        f"""
        <div style="background: linear-gradient(135deg, {hex_color}22, {hex_color}11);
                    border-left: 4px solid {hex_color};
                    border-radius: 8px; padding: 16px; margin-bottom: 8px;">
            <div style="font-size: 13px; color: #888; font-weight: 600; text-transform: uppercase;">{label}</div>
            <div style="font-size: 28px; font-weight: 700; color: #222; margin: 4px 0;">{value}</div>
            <div style="font-size: 13px; color: #666;">{subtitle}</div>
        </div>
        """,
        unsafe_allow_html=True,
    )


def status_badge(status: str) -> str:
    color = color_hex(status_color(status))
    label = ACTIVITY_STATUS_CONFIG.get(status, {}).get("label", status)
    return (
        f"<span style='background:{color}22; color:{color}; border-radius:4px; "
        f"padding:2px 8px; font-weight:600;'>{label}</span>"
    )


error_banner(load_errors)


# ===========================================================================
# PAGE: Overview
# ===========================================================================
if page == "Overview":
    st.title("Principal Overview")

    overview = get_principal_overview(summaries)
    if overview["kpis"]["total_principals"] == 0:
        st.info("No principals to show.")
    else:
        cols = st.columns(len(overview["cards"]))
        for col, card in zip(cols, overview["cards"]):
            with col:
                kpi_card(card["label"], card["value"], card["color"])

        st.divider()
        col1, col2 = st.columns(2)

        with col1:
            st.subheader("Engagement Breakdown")
            breakdown = overview["engagement_breakdown"]
            labels = ["High (80+)", "Medium (40-79)", "Low (<40)", "Inactive"]
            fig = go.Figure(go.Bar(
                x=labels,
                y=list(breakdown.values()),
                marker_color=[RAG_HEX["green"], RAG_HEX["amber"], RAG_HEX["red"], RAG_HEX["grey"]],
                text=list(breakdown.values()),
                textposition="outside",
            ))
            fig.update_layout(height=350, plot_bgcolor="rgba(0,0,0,0)", margin=dict(l=10, r=10, t=10, b=40))
            st.plotly_chart(fig, use_container_width=True)

        with col2:
            st.subheader("Activity Status")
            distribution = overview["kpis"]["activity_status_distribution"]
            fig = go.Figure(go.Pie(
                labels=[ACTIVITY_STATUS_CONFIG[s]["label"] for s in distribution],
                values=list(distribution.values()),
                marker_colors=[color_hex(ACTIVITY_STATUS_CONFIG[s]["color"]) for s in distribution],
                hole=0.45,
            ))
            fig.update_layout(height=350, margin=dict(l=10, r=10, t=10, b=10))
            st.plotly_chart(fig, use_container_width=True)

        st.subheader("Conversion Funnel")
        funnel = pd.DataFrame(overview["funnel"])
        fig = go.Figure(go.Funnel(
            y=funnel["stage"],
            x=funnel["count"],
            textinfo="value+percent previous",
            marker_color=RAG_HEX["blue"],
        ))
        fig.update_layout(height=300, margin=dict(l=10, r=10, t=10, b=10))
        st.plotly_chart(fig, use_container_width=True)

        st.subheader("Top Performers")
        top = pd.DataFrame(overview["kpis"]["top_performers"])
        if not top.empty:
            st.dataframe(top.drop(columns="principal_id"), use_container_width=True, hide_index=True)


# ===========================================================================
# PAGE: Principals
# ===========================================================================
elif page == "Principals":
    st.title("Principals")

    with st.expander("Filters", expanded=False):
        col1, col2, col3 = st.columns(3)
        with col1:
            search = st.text_input("Search", placeholder="Name, organization or industry")
            statuses = st.multiselect("Activity status", ACTIVITY_STATUSES)
        with col2:
            org_statuses = st.multiselect("Organization status", ORGANIZATION_STATUSES)
            categories = st.multiselect("Product category", PRODUCT_CATEGORIES)
        with col3:
            score_range = st.slider("Engagement score", 0, 100, (0, 100))
            has_opps = st.selectbox("Has opportunities", ["Any", "Yes", "No"])

    filters = PrincipalFilters(
        search=search,
        activity_status=statuses,
        organization_status=org_statuses,
        product_categories=categories,
        engagement_min=score_range[0] if score_range != (0, 100) else None,
        engagement_max=score_range[1] if score_range != (0, 100) else None,
        has_opportunities={"Any": None, "Yes": True, "No": False}[has_opps],
    )

    problems = validate_filter_form(filters)
    for message in problems.values():
        st.warning(message)

    sort: SortState = st.session_state.sort
    col1, col2 = st.columns([3, 1])
    with col1:
        st.caption(f"{active_filter_count(filters)} active filters: {filter_summary(filters)}")
    with col2:
        sort_field = st.selectbox(
            "Sort by", PRINCIPAL_SORT_FIELDS, index=PRINCIPAL_SORT_FIELDS.index(sort.field)
        )
        if st.button(f"Sort: {sort.field} ({sort.order})"):
            sort.toggle(sort_field)
            st.rerun()

    options = get_selector_options(summaries, drop_invalid_filters(filters, problems), sort, NOW)
    if options.empty:
        st.info("No principals match the current filters.")
    else:
        display = options.copy()
        display["engagement_score"] = display["engagement_score"].map(lambda v: f"{v:.0f}")
        display["recommended"] = display["is_recommended"].map(lambda v: "★" if v else "")

        def color_status(val):
            return f"color: {color_hex(status_color(val))}; font-weight: 600"

        styled = display[[
            "principal_name", "organization", "activity_status", "engagement_score",
            "engagement_level", "contact_count", "total_opportunities", "last_activity", "recommended",
        ]].style.map(color_status, subset=["activity_status"])
        st.dataframe(styled, use_container_width=True, hide_index=True)

        selection: SelectionState = st.session_state.selection
        picked = st.multiselect(
            "Compare principals",
            options["principal_id"].tolist(),
            default=[p for p in selection.selected if p in set(options["principal_id"])],
            format_func=lambda pid: options.set_index("principal_id").loc[pid, "principal_name"],
            max_selections=selection.max_selections,
        )
        selection.select(picked)
        items = get_selection_items(summaries, selection)
        if items:
            st.dataframe(pd.DataFrame(items), use_container_width=True, hide_index=True)


# ===========================================================================
# PAGE: Principal Detail
# ===========================================================================
elif page == "Principal Detail":
    st.title("Principal Detail")

    if summaries.empty:
        st.info("No principals to show.")
    else:
        names = summaries.set_index("principal_id")["principal_name"].to_dict()
        principal_id = st.selectbox("Principal", list(names), format_func=names.get)
        detail = get_principal_detail(principal_id, data, NOW)

        s = detail["summary"]
        st.markdown(
            f"### {s['principal_name']} &nbsp; {status_badge(s['activity_status'])}",
            unsafe_allow_html=True,
        )
        st.caption(f"{s['industry'] or ''} · {s['country'] or ''} · last activity {s['last_activity']}")

        metrics = detail["kpi_metrics"]
        cols = st.columns(4)
        with cols[0]:
            kpi_card("Engagement", f"{s['engagement_score']:.0f}", s["engagement_color"])
        with cols[1]:
            kpi_card("Interactions", metrics["interaction_count"], "blue",
                     f"{metrics['follow_ups']['overdue_count']} overdue follow-ups")
        with cols[2]:
            kpi_card("Opportunities", metrics["opportunity_count"], "purple",
                     f"Win rate {format_number(metrics['win_rate'], 'percentage')}")
        with cols[3]:
            kpi_card("Pipeline", format_number(metrics["pipeline_value"], "currency"), "orange",
                     f"Weighted {format_number(metrics['weighted_pipeline_value'], 'currency')}")

        tab1, tab2, tab3 = st.tabs(["Timeline", "Distributors", "Products"])

        with tab1:
            if not detail["timeline"]:
                st.info("No activity recorded.")
            for group in detail["timeline"]:
                st.markdown(f"**{group['label']}** · {group['count']} activities")
                for _, entry in group["entries"].iterrows():
                    st.markdown(
                        f"- `{activity_icon(entry['activity_type'])}` {entry['activity_subject']} "
                        f"<span style='color:#888'>({entry['activity_type']})</span>",
                        unsafe_allow_html=True,
                    )

        with tab2:
            table = get_distributor_table(
                data["relationships"][data["relationships"]["principal_id"] == principal_id]
                if not data["relationships"].empty else data["relationships"],
                expanded=None,
                now=NOW,
            )
            if table.empty:
                st.info("No distributor relationships.")
            else:
                table["name"] = table.apply(
                    lambda r: r["principal_name"] if r["depth"] == 0 else f"↳ {r['distributor_name']}", axis=1
                )
                st.dataframe(
                    table[["name", "relationship_type", "status", "last_contact_label"]],
                    use_container_width=True,
                    hide_index=True,
                )

        with tab3:
            products = detail["products"]
            if products.empty:
                st.info("No products.")
            else:
                def color_contract(val):
                    return f"color: {color_hex(CONTRACT_STATUS_COLORS.get(val, 'grey'))}; font-weight: 600"

                st.dataframe(
                    products[[
                        "product_name", "product_category", "total_opportunities", "won_opportunities",
                        "win_rate", "performance_score", "contract_status",
                    ]].style.map(color_contract, subset=["contract_status"]),
                    use_container_width=True,
                    hide_index=True,
                )

        if SETTINGS.use_api:
            st.divider()
            col1, col2 = st.columns(2)

            with col1:
                with st.form("log_interaction", clear_on_submit=True):
                    st.subheader("Log interaction")
                    interaction_type = st.selectbox("Type", INTERACTION_TYPES)
                    subject = st.text_input("Subject")
                    interaction_date = st.date_input("Date", value=NOW.date())
                    notes = st.text_area("Notes")
                    needs_follow_up = st.checkbox("Follow-up needed")
                    follow_up = st.date_input("Follow-up date", value=(NOW + pd.Timedelta(days=7)).date())
                    if st.form_submit_button("Log interaction"):
                        payload, form_errors = build_interaction_payload(
                            principal_id,
                            interaction_type,
                            subject,
                            interaction_date,
                            notes,
                            follow_up if needs_follow_up else None,
                        )
                        for message in form_errors.values():
                            st.error(message)
                        if not form_errors:
                            submit_write(lambda api: api.log_interaction(payload))

            with col2:
                with st.form("new_opportunity", clear_on_submit=True):
                    st.subheader("New opportunity")
                    product_names = (
                        {} if detail["products"].empty
                        else detail["products"].set_index("product_id")["product_name"].to_dict()
                    )
                    product_id = st.selectbox(
                        "Product", [None, *product_names],
                        format_func=lambda pid: "No product" if pid is None else product_names[pid],
                    )
                    stage = st.selectbox("Stage", OPPORTUNITY_STAGES)
                    estimated_value = st.number_input("Estimated value", min_value=0.0, step=1000.0)
                    probability = st.slider("Probability (%)", 0, 100, 10)
                    if st.form_submit_button("Create opportunity"):
                        payload, form_errors = build_opportunity_payload(
                            principal_id,
                            s["principal_name"],
                            stage,
                            product_id,
                            product_names.get(product_id),
                            estimated_value,
                            probability,
                        )
                        for message in form_errors.values():
                            st.error(message)
                        if not form_errors:
                            submit_write(lambda api: api.create_opportunity(payload))


# ===========================================================================
# PAGE: Timeline
# ===========================================================================
elif page == "Timeline":
    st.title("Activity Timeline")

    timeline = data["timeline"]
    col1, col2, col3 = st.columns(3)
    with col1:
        types = st.multiselect("Activity type", TIMELINE_ACTIVITY_TYPES)
    with col2:
        search = st.text_input("Search activity")
    with col3:
        overdue_only = st.checkbox("Overdue follow-ups only")

    filt = TimelineFilter(activity_types=types, search=search, overdue_only=overdue_only)
    view = get_timeline_view(timeline, filt, page=1, limit=50, now=NOW)
    summary = view["summary"]

    cols = st.columns(4)
    with cols[0]:
        kpi_card("Entries", summary["total_entries"], "blue")
    with cols[1]:
        kpi_card("Principals", summary["unique_principals"], "purple")
    with cols[2]:
        trend_color = {"increasing": "green", "stable": "amber", "decreasing": "red"}[summary["activity_trend"]]
        kpi_card("Trend", summary["activity_trend"].title(), trend_color, "last 7 days vs previous 7")
    with cols[3]:
        kpi_card("Overdue", summary["overdue_follow_ups"], "red" if summary["overdue_follow_ups"] else "green")

    distribution = activity_type_distribution(timeline)
    dist_df = pd.DataFrame([{"activity_type": t, **d} for t, d in distribution.items()])
    fig = px.bar(
        dist_df,
        x="activity_type",
        y="count",
        color="activity_type",
        color_discrete_map={t: color_hex(d["color"]) for t, d in distribution.items()},
    )
    fig.update_layout(height=300, showlegend=False, plot_bgcolor="rgba(0,0,0,0)")
    st.plotly_chart(fig, use_container_width=True)

    for group in view["groups"]:
        with st.expander(f"{group['label']} · {group['count']} activities", expanded=False):
            st.dataframe(
                group["entries"][["principal_name", "activity_type", "activity_subject", "activity_status"]],
                use_container_width=True,
                hide_index=True,
            )

    col1, col2 = st.columns(2)
    with col1:
        st.download_button("Export CSV", export_timeline_csv(timeline, filt), "timeline.csv", "text/csv")
    with col2:
        st.download_button(
            "Export JSON", export_timeline_json(timeline, filt, NOW), "timeline.json", "application/json"
        )


# ===========================================================================
# PAGE: Follow-ups
# ===========================================================================
elif page == "Follow-ups":
    st.title("Follow-ups")

    queue = get_follow_up_queue(data["interactions"], summaries, NOW)
    if queue.empty:
        st.success("No follow-ups pending.")
    else:
        def color_priority(val):
            return f"color: {RAG_HEX.get({'High': 'red', 'Medium': 'amber'}.get(val, 'green'))}; font-weight: 600"

        st.dataframe(
            queue[["principal_name", "interaction_type", "subject", "due", "priority"]]
            .style.map(color_priority, subset=["priority"]),
            use_container_width=True,
            hide_index=True,
        )

    st.subheader("Principals requiring attention")
    attention = get_principals_requiring_follow_up(summaries)
    if attention.empty:
        st.info("No principals need attention.")
    else:
        attention = attention.assign(
            next_follow_up=attention["next_follow_up_date"].map(lambda d: format_activity_date(d)),
        )
        st.dataframe(
            attention[["principal_name", "activity_status", "engagement_score", "follow_ups_required", "next_follow_up"]],
            use_container_width=True,
            hide_index=True,
        )
