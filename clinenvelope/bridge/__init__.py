"""Bridge layer between the envelope engine and the outside world.

Modules
-------
transport
    Local FIFO queue (in-memory or SQLite) that carries serialized
    envelopes between a sending side and a polling side.
"""
