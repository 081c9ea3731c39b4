# API routes
from schoolhub.api.routes import health
from schoolhub.api.routes import users

__all__ = ["health", "users"]
