"""
Per-session turn serialization.

- Every inbound message becomes an InboundJob in its session's mailbox
- One worker per (bot_id, sender_id) drains the mailbox in order
- Different sessions are processed concurrently
"""
