"""
TicketMesh dashboard service.

Serves the web dashboard's JSON API and owns the outbound Discord
protection layer: a shared Redis cache, a rate-limit gate and a cached
fetch executor beneath a typed Discord client.
"""
