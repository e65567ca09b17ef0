"""
Operational concerns: health probes and the structured audit log.
"""
