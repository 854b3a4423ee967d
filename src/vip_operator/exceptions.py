"""Errors raised by the allocation and reconciliation layers."""

from __future__ import annotations


class OperatorError(Exception):
    """Base class for every error raised by :mod:`vip_operator`."""


class InvalidPoolSpec(OperatorError, ValueError):
    """The address pool specification could not be parsed.

    Fatal at load time: the operator has to fix the configuration, retrying
    the same text cannot succeed.
    """


class NoCapacity(OperatorError):
    """No pool address has all of the requested ports free."""


class NoIdentifiers(OperatorError):
    """The redundancy identifier namespace is exhausted."""


class ExternalUnavailable(OperatorError):
    """A collaborator (appliance, durable store, status sink) failed transiently."""


class NoEndpoints(ExternalUnavailable):
    """The service has no ready backends yet."""


class RecordNotFound(OperatorError, KeyError):
    """The durable record store holds no value for the requested key."""
