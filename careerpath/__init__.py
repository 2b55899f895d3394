"""
Career Path Router
A milestone-graph engine that plans routes toward a career goal and
recalculates them when real-world progress drifts from the plan.
"""

__version__ = "0.1.0"
