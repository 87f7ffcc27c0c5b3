"""
Chain Watcher

Confirmation-gated contract event pipeline:
- Polls an EVM node for logs of a fixed set of contracts
- Records each log once in the event store
- Hands confirmed events to the host application's handler in chain order
"""

__version__ = "0.1.0"
