# Routes package init
"""
AI Gateway — API Routes Package
================================

Route Inventory:
    - generate.py:  POST /api/ai-generate   (chat completion or transcription)
    - usage.py:     GET  /api/usage         (today's usage meter)
    - health.py:    GET  /health            (service health check)

Routes are thin: they pull the token, body and client info off the request
and delegate to GatewayService. Business rules live in services.
"""
