"""
Principal CRM — activity analytics and dashboard layer

Turns principal activity views (REST or file exports) into engagement
scores, timelines, distributor hierarchies and product tables ready for
rendering.

To switch from mock data to the live backend:
    Set CRM_DATA_SOURCE=api with CRM_API_URL and CRM_API_KEY. The loaders
    in principal_crm.loaders return raw records; the normalisers in
    transforms.py give them the same schemas the simulator produces.

To connect to Streamlit:
    Call dashboard.get_principal_overview(summaries) for the KPI cards and
    dashboard.get_principal_detail(principal_id, dataset) for the detail page.

To add an activity status:
    Add an entry to config.ACTIVITY_STATUS_CONFIG with its label, color and
    threshold_days, and map any upstream spelling in ACTIVITY_STATUS_ALIASES.
"""
