"""
API server package: HTTP/REST interface over the presence service.

Validates request payloads at the boundary, delegates to PresenceService, and
maps engine errors to consistent JSON responses and status codes.
"""
