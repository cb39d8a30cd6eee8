"""
Domain layer containing core business logic and domain services.

Submodules:
- live: Live streaming domain logic (streams, hosts, egress, recordings).
- utils: Domain-specific utilities (e.g., ID generation).
"""
