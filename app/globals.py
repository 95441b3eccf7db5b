"""
Global service instances
Initialised in app/__init__.py (create_app)
"""

model_service = None
capture_service = None
event_broadcaster = None
