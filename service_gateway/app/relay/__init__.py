"""
AIS WebSocket relay: one upstream aisstream.io connection fanned out to
local subscribers on ``/ws``.
"""
