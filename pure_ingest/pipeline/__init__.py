"""
Sync and backfill stages.

  base             — SyncStage ABC: run() bookkeeping into sync_runs
  reconcile        — per-record upsert loop with an accumulating BatchReport
  product_sync     — Pure catalog → products
  transaction_sync — per-variant activity → transactions
  backfill         — event-type re-derivation and image URL backfill
"""
