"""
Core package for portfolio analysis orchestration, result objects and flags.

The orchestrator lives in `core.portfolio_analysis`; import it from there.
It is not re-exported here so that `core.result_objects` can be imported
without pulling in every engine module.
"""
