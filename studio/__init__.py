"""
Marketing Studio core package.

Modules
───────
models        Pydantic data models (InvocationOutcome, ActivitySnapshot, HistoryItem, ...)
errors        Error taxonomy (TransportError, RemoteFailure, EmptyResponse, ...)
agent_client  httpx client for the remote agents: invoke() → InvocationOutcome
activity      Activity feed polling and the per-session tracker
storage       Named storage slots (SQLite, in-memory)
history       Newest-first history store persisted in one slot
tasks         Content and graphics screens tying the above together
samples       Demo data for sample mode (read-time overlay)
"""
