"""
Interface package: communication protocols spoken with the chess engine.

Modules:
    uci: Client-side Universal Chess Interface (UCI) helpers.
         Builds the command lines the gateway writes to the engine and
         classifies the lines the engine writes back.
"""
