"""Dayflow workspace core and client helpers.

Submodules are imported on demand so the client can be used without the
server stack being loaded.
"""

__all__ = ["client", "workspace"]
