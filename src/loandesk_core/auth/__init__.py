"""Caller identity from gateway headers."""

from loandesk_core.auth.request_context import RequestContext, get_actor, get_request_context

__all__ = ["RequestContext", "get_actor", "get_request_context"]
