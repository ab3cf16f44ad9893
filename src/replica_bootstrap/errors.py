"""
Errors raised while bootstrapping a MongoDB node.

Validation and exhaustion errors abort the whole run. ExecutionError is the only
transient one: poll predicates turn it into a "still pending" outcome.
"""


class BootstrapError(RuntimeError):
    pass


class ValidationError(BootstrapError):
    """Bad input combination, detected before anything is mutated."""


class ConfigurationError(BootstrapError):
    """The configuration file could not be updated (e.g. no line to substitute)."""


class ConnectivityError(BootstrapError):
    """A node could not be reached with the given credentials."""


class ExecutionError(BootstrapError):
    """
    A shell command could not be delivered or was rejected by the shell.

    :param result: the captured CommandResult, when the shell produced one.
    """

    def __init__(self, message, result=None):
        super().__init__(message)
        self.result = result

    @property
    def output(self):
        if self.result is None:
            return ""
        return self.result.rendered


class RetryExhausted(BootstrapError):
    """A bounded poll ran out of attempts."""


class PrimaryUnreachable(RetryExhausted):
    def __init__(self, primary_host):
        super().__init__(f"Unable to validate {primary_host} as primary node in the replica set scenario")
        self.primary_host = primary_host


class ReplicaSetJoinTimeout(RetryExhausted):
    def __init__(self, node, command, message=None):
        super().__init__(message or f"Primary node did not accept {command} for {node} in time")
        self.node = node
        self.command = command


class MembershipNotConfirmed(ReplicaSetJoinTimeout):
    """The add was accepted but the node never showed up in the member list."""

    def __init__(self, node):
        super().__init__(node, None, f"Unable to confirm that {node} has been added to the replica set")


class FilePermissionError(BootstrapError):
    """The key file or a working directory could not be written."""


class UserAdminError(BootstrapError):
    """A database user could not be created."""
