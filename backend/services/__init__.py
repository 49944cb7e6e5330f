"""
Services package - Business logic layer.

This package contains all business logic services that operate on Django models
but are decoupled from the HTTP/WebSocket layer.

Modules:
    - delivery_management: State machine and delivery lifecycle operations
    - matching: Candidate ranking, offer dispatch and offer expiry
    - tracking: GPS fixes, critical-event log and live location publishing
"""
