from portal.routers import assessments, health

__all__ = [
    "assessments",
    "health",
]
