# Middleware package init
"""
AI Gateway — Middleware Package
================================

Middleware Chain (request direction):
    Request → [Request ID] → [Logging] → [GZip] → [CORS] → Route Handler

    Request ID runs first so the access line and every error body carry the
    correlation ID. There is no in-process rate limiter: quotas are enforced
    per user by GatewayService against the database, which keeps replicas
    stateless.
"""
