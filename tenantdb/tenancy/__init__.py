"""
Tenant pipeline: registry -> provisioner -> migration runner -> connection binder.

Import the pieces from their modules; `runtime.build_tenancy` wires them together.
"""
