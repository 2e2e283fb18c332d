"""Durable task queue: claim, heartbeat, completion and event log.

Why no broker?
~~~~~~~~~~~~~~
The store coordinates any number of independent worker processes through one
relational database. There is no broker and no in-process lock: every
cross-process guarantee comes from a conditional ``UPDATE ... WHERE status = ?``
inside a transaction, so exactly one caller wins each state transition and the
losers observe ``None`` (claim) or ``TaskConflictError`` (heartbeat, completion).

Liveness is timestamp based. Workers renew ``last_heartbeat_at`` while they run;
a supervisor periodically force-fails ``processing`` tasks whose heartbeat is
older than a timeout. Clock skew or a long pause can make a healthy task look
stale; the conditional update still guarantees only one of the worker and the
supervisor finalizes it.
"""
