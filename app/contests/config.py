"""
Contest System Configuration
Database, token and contest-window settings
"""

import os

# MongoDB
MONGO_URL = os.getenv("MONGO_URL", "mongodb://localhost:27017")
MONGO_DB_NAME = os.getenv("MONGO_DB_NAME", "contest_arena")

# Bearer tokens (issued by the identity service, verified here)
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "contest-arena-dev-secret")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# Creator payouts
MIN_WITHDRAWAL_BALANCE = float(os.getenv("MIN_WITHDRAWAL_BALANCE", "300"))

# Proctoring
VIOLATION_WARNING_SECONDS = int(os.getenv("VIOLATION_WARNING_SECONDS", "5"))
# The automatic submission fires this many seconds before endTime, since the
# server accepts nothing after it
AUTO_SUBMIT_LEAD_SECONDS = int(os.getenv("AUTO_SUBMIT_LEAD_SECONDS", "1"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
