"""
Engine bridge package.

Runs an external UCI chess engine (Fairy-Stockfish in production) as a
subprocess, one process per move request, and turns its output into a move or
a typed error.

Modules:
    constants: Protocol tokens, search defaults, timeouts, and limits
    errors:    Exception taxonomy shared with the web layer
    session:   EngineSession: one subprocess conversation, resolved once
    runner:    EngineRunner: input validation, depth defaults, concurrency cap
"""
