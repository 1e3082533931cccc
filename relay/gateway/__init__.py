"""Multi-backend dispatch layer.

Provides async infrastructure for answering a prompt through an ordered
catalog of hosted text-generation models with:
  - Per-client Rate Limiter (fixed window quota)
  - Backend Catalog (ordered descriptors: parameters, prompt/extraction rules)
  - Prompt Formatter (backend-specific templates)
  - Backend Client (Hugging Face Inference API, outcome classification)
  - Dispatch Engine (retry with exponential backoff, failover, failure accounting)
  - Recovery Probe (single-flight background health sweep)
  - Response Normalizer (payload coercion, artifact stripping, fallback tokens)
"""
