"""Bounded content loading.

Key components:
- reference: ``[owner/repo:]path[@version]`` parsing
- cache: TTL content cache in front of the remote API
- budget: multi-dimensional resource budget for one run
- loader: progressive, budget-aware loading of files and directories
- github: GitHub contents API client
"""
