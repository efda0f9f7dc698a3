# Services package init
"""
Clinivoice Backend: Services Layer
===================================

Service Inventory:
    - generation_service: NoteGenerationPipeline (provider plan + offline fallback)
    - llm_base:           NoteProvider interface, ProviderSuccess / ProviderExhausted
    - gemini_service:     GeminiProvider (SDK round, then REST round)
    - openai_service:     OpenAIProvider (chat completions, JSON mode)
    - circuit_breaker:    per-provider CircuitBreaker
    - prompts, response_parser, note_schema, offline_fallback: pure helpers
    - entitlement_service: EntitlementGate (subscription, whitelist, usage)
    - session_service:    encounter session persistence
"""
