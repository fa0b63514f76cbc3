"""
Core utilities: shared error taxonomy and cross-cutting concerns.
"""
