"""pulsekeeper - heartbeat daemon with a resource ledger.

Modules:
    - economy: Token/currency ledger and survival tiers
    - heartbeat: Tick scheduler, pluggable tasks, wake dispatch
    - decisions: Append-only log of what the agent did when woken
    - runtime: Host capabilities (inbox, wake trigger, notifier, probes)
    - service: Wiring for a standalone daemon
    - web / cli: HTTP and command-line surfaces
"""

__version__ = "0.1.0"
