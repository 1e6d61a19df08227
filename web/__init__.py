"""
Web package for the chess move gateway.

Provides the FastAPI app that relays move requests to the external engine,
its environment-driven configuration, and the request statistics tracker.
Deployable to Render.com via Procfile.
"""
