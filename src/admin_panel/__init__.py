"""
Admin Panel Module

Operational tooling for the digest pipeline:
- services/: job status inspection and queue repair
"""
