"""Real-time signaling components.

Everything in this package lives in process memory: connection maps, call rooms
and queued incoming-call events are rebuilt from nothing on restart, and are not
shared between server instances.
"""
