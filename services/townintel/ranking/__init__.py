"""
Route ranking subsystem: ranked three-stop micro-routes per day-part window.

Public API:
    from services.townintel.ranking.routes import rank_window, adjust_routes_for_goal
    from services.townintel.ranking.service import MicroRouteService
    from services.townintel.ranking.daily import DailyTownContent
    from services.townintel.ranking.season import detect_season_state
"""
