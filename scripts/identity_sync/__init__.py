"""Workload identity sync controller.

Keeps the client and principal ids of Crossplane UserAssignedIdentity
resources mirrored onto the ServiceAccounts and RoleAssignments that depend
on them, restarting Deployments whose ServiceAccount binding changed.
"""
