# API routes
from stockroom.api.routes import health
from stockroom.api.routes import auth
from stockroom.api.routes import billing
from stockroom.api.routes import account
from stockroom.api.routes import workspace

__all__ = ["health", "auth", "billing", "account", "workspace"]
