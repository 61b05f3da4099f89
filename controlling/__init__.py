"""
Delivery Controlling Engine

Hierarchy aggregation for the controlling dashboard: company, brand, address
and channel rollups with period-over-period deltas.
"""

__version__ = "1.0.0"
