"""catalog/ -- Versioned movie records with optimistic concurrency control.

Layer rule: catalog/ imports only core/, stdlib and third-party libraries.
"""
