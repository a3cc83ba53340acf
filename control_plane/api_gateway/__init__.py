"""
API Gateway Module

FastAPI application, startup sequence and service wiring.
The app itself lives in ``control_plane.api_gateway.main``.
"""
