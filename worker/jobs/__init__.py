"""
Generation job orchestration.

This package provides the in-process job system:
- Per-kind job tables behind a single store and kind router
- Registry-based handlers delegating to generation collaborators
- A bounded processor with sliding-window health
- Categorized failures with capped retries
"""
