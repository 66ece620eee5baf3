#!/usr/bin/env python

# =============================================================================
# MODULE DOCSTRING
# =============================================================================

"""
Test MPI utility functions in mpi.py.

"""

# =============================================================================
# GLOBAL IMPORTS
# =============================================================================

import os
import signal

import pytest

from stmd.mpi import *
from stmd.mpi import _simulated_mpi_environment
from stmd.histogram import SamplingRangeError


# =============================================================================
# GLOBAL VARIABLES
# =============================================================================

NODE_RANK = 0  # The node rank passed to rank or send_results_to.


# =============================================================================
# TEST CASES
# =============================================================================

def multiply(a, b):
    return a * b


def fail(message):
    raise SamplingRangeError(message)


@on_single_node(rank=NODE_RANK, broadcast_result=False)
def multiply_decorated_nobroadcast(a, b):
    return multiply(a, b)


class RecordingBroadcast(object):
    """Broadcast that stores what the root sends and returns a fixed object on other nodes."""

    def __init__(self, received=None):
        self.received = received
        self.sent = []

    def __call__(self, obj):
        self.sent.append(obj)
        if self.received is not None:
            return self.received
        return obj


# =============================================================================
# TEST FUNCTIONS
# =============================================================================

def test_run_single_node():
    """Only the selected node executes the task."""
    assert run_single_node(NODE_RANK, multiply, 3, 4) == 12
    assert run_single_node(NODE_RANK, multiply, a=5, b=4, broadcast_result=True) == 20
    assert multiply_decorated_nobroadcast(3, 5) == 15

    executed = []
    def task():
        executed.append(True)
        return 1

    with _simulated_mpi_environment(rank=1, size=4):
        assert get_mpicomm().rank == 1
        assert run_single_node(0, task) is None
        assert executed == []
        assert run_single_node(1, task) == 1
        assert executed == [True]
        assert multiply_decorated_nobroadcast(3, 5) is None


def test_make_broadcast():
    broadcast = make_broadcast(None)
    obj = object()
    assert broadcast(obj) is obj


def test_broadcast_from_root():
    """The result of the root is returned on every node."""
    broadcast = RecordingBroadcast()
    assert broadcast_from_root(multiply, 2, b=3, broadcast=broadcast) == 6
    assert broadcast.sent == [(6, None)]

    broadcast = RecordingBroadcast(received=(6, None))
    assert broadcast_from_root(multiply, 2, 3, is_root=False, broadcast=broadcast) == 6
    assert broadcast.sent == [(None, None)]


def test_broadcast_exception():
    """An exception raised on the root is raised with the same type on every node."""
    broadcast = RecordingBroadcast()
    with pytest.raises(SamplingRangeError, match='Walker 0: energy too high'):
        broadcast_from_root(fail, 'energy too high', broadcast=broadcast, node_name='Walker 0')
    _, error = broadcast.sent[0]
    assert 'energy too high' in error.traceback_str

    broadcast = RecordingBroadcast(received=(None, error))
    with pytest.raises(SamplingRangeError, match='Received an exception from the root'):
        broadcast_from_root(fail, 'energy too high', is_root=False, broadcast=broadcast)

    # Without communication the original exception is raised.
    with pytest.raises(SamplingRangeError, match='^energy too high$'):
        broadcast_from_root(fail, 'energy too high')


def test_run_single_node_propagate_exceptions():
    with pytest.raises(SamplingRangeError):
        run_single_node(0, fail, 'out of range', propagate_exceptions=True)
    assert run_single_node(0, multiply, 2, 2, propagate_exceptions=True) == 4


def test_delay_termination():
    """Termination signals received in the block are handled at its end."""
    received = []
    def handler(signum, frame):
        received.append(signum)

    old_handler = signal.signal(signal.SIGTERM, handler)
    try:
        with delay_termination():
            os.kill(os.getpid(), signal.SIGTERM)
            assert received == []
        assert received == [signal.SIGTERM]
        assert signal.getsignal(signal.SIGTERM) is handler
    finally:
        signal.signal(signal.SIGTERM, old_handler)


def test_delayed_termination():
    @delayed_termination
    def add(a, b):
        return a + b
    assert add(1, 2) == 3
