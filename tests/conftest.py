import os

# main builds its module-level app from the environment on import.
os.environ.setdefault("BUDGET_DATABASE_URL", "sqlite://")
os.environ.setdefault("BUDGET_LOG_LEVEL", "WARNING")
