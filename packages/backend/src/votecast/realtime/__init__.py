"""Real-time infrastructure — event queue + WebSocket broadcast.

Learn: Events flow through two hops:
1. Request handlers → EventBroadcaster → EventQueue (file or Redis)
2. BroadcastServer drains the queue → Room lookup → WebSocket clients

Producers never touch sockets, and the server never touches the
database. The queue is the only thing the two sides share.
"""
