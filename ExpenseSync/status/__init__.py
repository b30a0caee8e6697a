"""Status package: enums and exceptions for handling sync outcomes and errors.

This package defines:
    - Status: a StrEnum of sync outcomes and failure classes
    - STATUS_MESSAGE: default user-facing messages per status
    - get_message: helper to retrieve messages for statuses
    - BaseStatusException: base exception for status-driven error handling
    - classify_error: boundary classification of raw service failures
"""
