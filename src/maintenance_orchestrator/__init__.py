"""
maintenance-orchestrator: gated, time-bounded host maintenance campaigns.

Runs disk-integrity, image-repair and file-integrity tools one at a time,
gates each on host state, bounds it with a deadline, classifies its output
into a four-value result code, and escalates per-step codes into a campaign
exit status.

Importing the package has no side effects (no config loading, no logging init).
"""

__version__ = "0.3.0"

__all__ = ["__version__"]
