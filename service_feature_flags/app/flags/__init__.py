"""
Flags package.

Defines the flag data model and the evaluation engine. The evaluator
dispatches over a closed set of rollout strategies and returns an
allow/deny decision with a machine-checkable reason.

Modules of interest:
- models: Flag definitions, user context and evaluation results.
- registry: The closed, versioned set of known flags and their defaults.
- validation: Definition checks and dependency cycle detection.
- evaluator: Strategy dispatch and the stable user hash.
"""
