"""Domain layer package.

This package contains the pure policy of a pipeline run (no I/O):
- change_gate: Should a test class run for this event and change set
- path_filters: Named glob groups matched against changed paths
- lifecycle: Pipeline controller state machine
- concurrency: Concurrency keys and the cancel-in-progress policy
- actor_policy: Triggering actor permission policy
- pipeline_definition, pipeline_loader: gantry.yaml model and loader
"""
