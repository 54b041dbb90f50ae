"""
backend.analytics: Pure aggregation over recorded viewer activity.

Nothing in this package opens a database session; callers pass in rows
(ORM objects or anything with the same attributes) and get plain values
back.

Import surface::

    from backend.analytics.clicks     import click_analytics, grid_points
    from backend.analytics.scroll     import scroll_depth_analytics
    from backend.analytics.engagement import engagement_metrics, section_attention
    from backend.analytics.predictive import build_snapshot, score_engagement
    from backend.analytics.views      import proposal_view_summary
"""
