"""Business logic services.

Services hold the read path (cached statistics) and the ingestion path
(rate-limited source clients writing into the main store). They accept their
dependencies explicitly; the composition root in chessstats.core wires them.
"""
