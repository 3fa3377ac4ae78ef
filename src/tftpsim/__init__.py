"""TFTP file transfer over UDP, with a fault-injecting relay.

The package is split the way the protocol is layered:
- packet framing and the opcode/block arithmetic (packet.py)
- one UDP socket per endpoint, no retry policy (net.py)
- the stop-and-wait engine shared by requester and responder (session.py)
- the server, the client, and a relay that misbehaves on purpose

Every transfer either completes or ends with a TransferError on its result.
"""

__all__ = []
