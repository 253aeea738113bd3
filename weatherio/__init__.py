"""
weatherio backend package.

FastAPI service providing user registration/login and a versioned,
soft-deletable store of per-user weather overrides keyed by location and date.
"""
