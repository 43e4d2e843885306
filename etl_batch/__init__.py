"""
etl_batch -- Chunk-oriented batch engine.

Reads items from a source, buffers them into fixed-size chunks, and writes
each chunk to a sink in its own transaction.  Job and step executions are
recorded in the database so a failed or stopped job resumes after the last
committed chunk.

Architecture:
    etl_batch/ is a top-level package built on etl_kernel.  Application
    packages (etl_people) wire readers, writers and steps into jobs; nothing
    in etl_kernel imports from etl_batch except ``create_tables()``.

Invariants:
    Transaction per chunk (sink writes and step bookkeeping commit together)
    Restart from the last committed chunk, never re-writing committed items
    Strictly sequential steps; a failed step stops the job
    One running execution per job instance; a completed instance never reruns
    Clock injection (no datetime.now() calls)
"""
