"""
Entry-point guards for ledger contracts.

``transactional`` runs a method as one ledger transaction so a failure anywhere in the
call (including nested calls into other contracts) leaves no trace. ``nonreentrant``
rejects a call into a guarded method while another guarded method of the same contract
is still executing, e.g. a recipient contract calling back into ``buy`` from its
value-received hook. The guard is released on every exit path.
"""
import functools

from mcp_bonding_curve.errors import ReentrancyError


def transactional(method):
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self.ledger.transaction():
            return method(self, *args, **kwargs)

    return wrapper


def nonreentrant(method):
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        if getattr(self, "_entered", False):
            raise ReentrancyError(f"Reentrant call to {type(self).__name__}.{method.__name__} rejected")
        self._entered = True
        try:
            with self.ledger.transaction():
                return method(self, *args, **kwargs)
        finally:
            self._entered = False

    return wrapper
