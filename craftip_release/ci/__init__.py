"""CI matrix module.

This module handles:
- The artifact dataflow between matrix producers and the join job
- Rendering the hosted CI workflow
"""
