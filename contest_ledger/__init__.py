"""Token ledger and contest-entry engine."""
