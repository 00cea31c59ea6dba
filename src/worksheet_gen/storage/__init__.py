"""SQLite reference implementations of the quota ledger and worksheet store."""
