"""
campaign-sync: multi-tenant campaign data sync and rollup pipeline.

Ingests campaign-performance data from a bulk-file drop, a marketing
automation API and a call-center API into a normalized PostgreSQL store
and serves client -> campaign -> record rollups.
"""

__version__ = "0.1.0"
