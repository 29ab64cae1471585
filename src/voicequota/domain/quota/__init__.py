"""Quota domain: usage ledger, admission policy and the usage endpoint."""

from . import controllers, deps, gate, policy, schemas, services, urls

__all__ = ("controllers", "deps", "gate", "policy", "schemas", "services", "urls")
