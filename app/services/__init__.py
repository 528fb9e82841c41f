"""
app/services package marker.

Modules are imported directly (``app.services.batch_executor`` etc.); the
validators depend on ``reference_data`` so nothing is re-exported here.
"""
