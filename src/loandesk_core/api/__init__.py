"""FastAPI surface for the case desk."""

from loandesk_core.api.router import create_app, create_router

__all__ = ["create_app", "create_router"]
