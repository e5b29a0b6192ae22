"""
Carrier service package for the Carrier Access Layer.

The service fronts the dashboard's calls to the upstream carrier API:
- Authentication: per-key bearer tokens, refreshed transparently
- Resilience: one retry on token rejection, structured failure results
- Caching: per-key client reuse, short-lived list caches, analytics cache
- Analytics: concurrent page fetch and shipment classification

Structure:
- app.main: FastAPI app, routes, and dependency wiring.
- app.auth: Token lifecycle for the upstream API.
- app.adapters: HTTP client, client registry, result and query helpers.
- app.caching: In-memory TTL stores with in-flight de-duplication.
- app.domain: Upstream schemas and shipment entity operations.
- app.analytics: Classification tables and the aggregation pipeline.
"""
