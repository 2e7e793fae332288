"""Application layer for contest-ledger.

Entry submission, reward redemption and the compensation machinery that
keeps ledger balances consistent with persisted records.
"""
