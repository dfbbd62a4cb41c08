# Services package init
"""
AI Gateway — Services Layer
============================

Service Inventory (leaves first):
    - UsageStore:       per-user daily counters, atomic upsert increment
    - LimitResolver:    default / per-account override / unlimited class
    - ResponseCache:    content-addressed chat completion cache
    - ModelProvider:    abstract upstream contract
    - OpenAIProvider:   chat + transcription over HTTP with bounded retry
    - AuditRecorder:    append-only, failure-tolerant audit trail
    - IdentityProvider: bearer token → Identity (collaborator)
    - ObjectStorage:    stored audio reader (collaborator)
    - GatewayService:   sequences all of the above for one request

Each store opens its own short session per operation, so independent writes
never share a transaction.
"""
