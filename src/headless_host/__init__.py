"""
Headless Host - run an IDE plugin outside its IDE.

This package provides:
- A host capability shim emulating the editor services a plugin touches
- An extension host owning plugin activation, deactivation and fault isolation
- A two-channel message bridge with correlated request/response
- An event-driven extension service for terminal clients
"""

__version__ = "0.1.0"
