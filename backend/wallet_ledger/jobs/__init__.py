from wallet_ledger.jobs.outbox_worker import OutboxWorker, drain_outbox

__all__ = ["OutboxWorker", "drain_outbox"]
