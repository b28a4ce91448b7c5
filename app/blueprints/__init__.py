"""
Action Plan Tracker
Blueprint registry.

    action_plan_bp   /api/v1/action-plans
    settings_bp      /api/v1/action-plans/settings
    health_bp        /api/v1/health
"""
