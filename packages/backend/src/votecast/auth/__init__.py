"""WebSocket authentication.

Learn: the broadcast server has no access to the HTTP session store.
Clients prove who they are with a short-lived signed token that the
request-handling side issued them; verifying it needs only the shared
secret and a clock.
"""
