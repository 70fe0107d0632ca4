"""
Ingestion layer — Pure API access and trade classification.

Submodules:
  retry        — rate-limited retry executor wrapped around every API call
  pure_client  — product options / product details / activity endpoints
  activity     — activity events → classified transaction candidates
  event_type   — buy/sell/unknown heuristic

Credential placement (.env, gitignored):
  PURE_API_KEY               — value for the ``x-api-key`` header
  PURE_INGEST_API_BASE_URL   — optional base URL override
"""
