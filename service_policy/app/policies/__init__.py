"""
Policy package.

Modules of interest:
- models: Principal, Action, Resource, RequestContext, Policy and results.
- defaults: Read-only table of built-in policies.
- classifier: Maps (action, resource) to a decision category.
- engine: Decision rules and tenant policy-set management.
"""
