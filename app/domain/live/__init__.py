"""
Live streaming domain logic.

Includes:
- stream: Stream lifecycle, host membership and invites, egress control
  and recording ingestion behind the StreamService facade.
"""
