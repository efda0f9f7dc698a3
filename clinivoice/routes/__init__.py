# Routes package init
"""
Clinivoice Backend: API Routes Package
=======================================

Route Inventory:
    - notes.py:         POST /api/generate-note     (gated note generation)
                        GET  /api/sessions          (caller's encounter sessions)
    - subscription.py:  GET  /api/subscription-status
    - health.py:        GET  /health

Routes stay thin: resolve the user, call a service, shape the response.
"""
