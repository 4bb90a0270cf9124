"""Turn orchestration and relay metrics.

Import from the submodules directly (``chatrelay.core.service.turn``,
``chatrelay.core.service.metrics``); the adapter depends on ``metrics``,
so this package does not import ``turn`` eagerly.
"""
