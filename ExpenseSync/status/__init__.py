"""Status package: error kinds, messages and exceptions.

This package defines:
    - ErrorKind: the closed taxonomy of sync failures reported in result values
    - Status: a StrEnum of configuration and local state problems
    - get_message / get_error_message: user-facing messages for both
    - BaseStatusException: base exception for status-driven error handling
    - RemoteError: raised inside the GitHub client and converted to result values
"""
