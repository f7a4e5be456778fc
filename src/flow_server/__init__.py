"""flow_server — FastAPI host for the flow execution engine.

Keeps live flow sessions in memory, exposes the engine's host API over
HTTP, buffers engine events for polling clients, and talks to the
external transform job runner over HTTP.
"""
