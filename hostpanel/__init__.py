"""
Hosting Panel Service - lifecycle control for game servers

Responsibilities:
- Server registry (one record per game server)
- Start, stop, restart, kill and delete against the compute provider
- DNS record publishing and cleanup
- World storage cleanup on delete
- Stuck-server sweep
- Lifecycle events over Redis
"""
