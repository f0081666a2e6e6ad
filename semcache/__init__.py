"""
semcache - materialized pre-aggregation cache for a semantic-layer gateway.
"""

__version__ = '0.1.0'
