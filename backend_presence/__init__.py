"""
Backend Presence: environmental-signal consensus engine for co-location checks.

Verifies that claimant devices are physically next to an anchor device by comparing
Wi-Fi signal fingerprints, running timed liveness challenges, and auditing peers for
colluding devices. Modular architecture with clear separation between the consensus
core, injected collaborators, persistence sink, and API server.
"""

__version__ = "0.1.0"
