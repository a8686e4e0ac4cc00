"""
services/ — Business logic for the follow-up engine.

Routers and scheduler jobs call into these modules; nothing in here
knows about HTTP.
"""
