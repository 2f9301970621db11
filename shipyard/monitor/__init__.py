"""Terminal views over the Environment Registry and Audit Log.

Read-only: rendering never mutates pipeline state.
"""

from shipyard.monitor.renderer import StatusRenderer

__all__ = ["StatusRenderer"]
