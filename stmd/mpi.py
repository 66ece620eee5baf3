#!/usr/bin/env python

# ==============================================================================
# MODULE DOCSTRING
# ==============================================================================

"""
MPI
===

Utilities to run on MPI.

A walker is a group of processes sharing a communicator. Only the root of
the group owns the estimator state; the other processes receive what they
need through a broadcast. The functions in this module make sure that when
the root fails, every process of the group raises the same exception so
that no collective operation is left hanging.

Global variables
----------------
disable_mpi : bool
    Set this to True to force running serially.

Routines
--------
:func:`get_mpicomm`
    Automatically detect and configure MPI execution and return an
    MPI communicator.
:func:`make_broadcast`
    Build the broadcast callable used to share per-step results.
:func:`broadcast_from_root`
    Run a task on the root and broadcast its result or its exception.
:func:`run_single_node`
    Run a task on a single node.
:func:`on_single_node`
    Decorator version of :func:`run_single_node`.
:func:`delay_termination`
    A context manager to delay the response to termination signals.
:func:`delayed_termination`
    A decorator version of :func:`delay_termination`.

"""


# ==============================================================================
# GLOBAL IMPORTS
# ==============================================================================

import functools
import logging
import os
import sys
import signal
from contextlib import contextmanager
from traceback import format_exception

logger = logging.getLogger(__name__)

# ==============================================================================
# GLOBAL VARIABLES
# ==============================================================================

# Force serial execution even in MPI environment.
disable_mpi = False

# A dummy MPI communicator used to simulate an MPI environment in tests.
_simulated_mpicomm = None


# ==============================================================================
# MAIN FUNCTIONS
# ==============================================================================

def get_mpicomm():
    """Retrieve the MPI communicator for this execution.

    The function automatically detects if the program runs on MPI by checking
    specific environment variables set by various MPI implementations. On
    first execution, it modifies sys.excepthook and register a handler for
    SIGINT, SIGTERM, SIGABRT to call MPI's ``Abort()`` to correctly terminate all
    processes.

    Returns
    -------
    mpicomm : mpi4py communicator or None
        The communicator for this node, None if the program doesn't run
        with MPI.

    """
    # If MPI execution is forcefully disabled, return None.
    if disable_mpi:
        return None

    # If MPI is simulated, return the Dummy implementation.
    if _simulated_mpicomm is not None:
        return _simulated_mpicomm

    # If we have already initialized MPI, return the cached MPI communicator.
    if get_mpicomm._is_initialized:
        return get_mpicomm._mpicomm

    # Check for environment variables set by mpirun.
    variables = ['PMI_RANK', 'OMPI_COMM_WORLD_RANK', 'OMPI_MCA_ns_nds_vpid',
                 'PMI_ID', 'SLURM_PROCID', 'LAMRANK', 'MPI_RANKID',
                 'MP_CHILD', 'MP_RANK', 'MPIRUN_RANK',
                 'ALPS_APP_PE',  # Cray aprun
                ]

    use_mpi = False
    for var in variables:
        if var in os.environ:
            use_mpi = True
            break

    # Return None if we are not running on MPI.
    if not use_mpi:
        logger.debug('Cannot find MPI environment. MPI disabled.')
        get_mpicomm._mpicomm = None
        get_mpicomm._is_initialized = True
        return get_mpicomm._mpicomm

    # Initialize MPI
    from mpi4py import MPI
    mpicomm = MPI.COMM_WORLD

    # Override sys.excepthook to abort MPI on exception.
    def mpi_excepthook(type, value, traceback):
        sys.__excepthook__(type, value, traceback)
        node_name = '{}/{}'.format(MPI.COMM_WORLD.rank+1, MPI.COMM_WORLD.size)
        logger.critical('MPI node {} raised an exception and called Abort()! The '
                        'exception traceback follows'.format(node_name), exc_info=value)
        # Flush everything.
        sys.stdout.flush()
        sys.stderr.flush()
        for logger_handler in logger.handlers:
            logger_handler.flush()
        # Abort MPI execution.
        if MPI.COMM_WORLD.size > 1:
            MPI.COMM_WORLD.Abort(1)
    sys.excepthook = mpi_excepthook

    # Catch sigterm signals
    def handle_signal(signal, frame):
        if mpicomm.size > 1:
            mpicomm.Abort(1)
    for sig in [signal.SIGINT, signal.SIGTERM, signal.SIGABRT]:
        signal.signal(sig, handle_signal)

    # Cache and return the MPI communicator.
    get_mpicomm._is_initialized = True
    get_mpicomm._mpicomm = mpicomm

    logger.debug("MPI initialized on node {}/{}".format(mpicomm.rank+1, mpicomm.size))

    return mpicomm

get_mpicomm._is_initialized = False  # Static variable


def _identity_broadcast(obj):
    return obj


def make_broadcast(mpicomm, root=0):
    """Return a callable broadcasting an object from ``root`` to all nodes.

    Parameters
    ----------
    mpicomm : mpi4py communicator or None
        The communicator shared by the processes of a walker. If None, the
        returned callable simply returns its argument.
    root : int, optional
        The rank sending the object (default is 0).

    Returns
    -------
    broadcast : callable
        ``broadcast(obj)`` returns the object sent by ``root`` on every node.

    Examples
    --------
    >>> broadcast = make_broadcast(None)
    >>> broadcast(3.5)
    3.5

    """
    if mpicomm is None:
        return _identity_broadcast
    return functools.partial(mpicomm.bcast, root=root)


def _annotate_exception(error, node_name):
    """Copy an exception adding the node name and a string traceback."""
    annotated = type(error)('{}: {}'.format(node_name, str(error)))
    annotated.with_traceback(error.__traceback__)
    # When sending the error over the network, the traceback is lost,
    # so we keep a string version of it.
    annotated.traceback_str = ''.join(format_exception(type(error), error,
                                                       error.__traceback__))
    return annotated


def broadcast_from_root(task, *args, is_root=True, broadcast=None,
                        node_name='Root node', **kwargs):
    """Run task on the root and share its result or its exception.

    Only the root node executes the task. Its return value, or the exception
    it raised, is then sent to every node through ``broadcast``. Nodes that
    receive an exception raise it, so that failures are uniform across the
    communicator.

    Parameters
    ----------
    task : callable
        The task to run on the root node.
    is_root : bool, optional
        True if this node must execute the task (default is True).
    broadcast : callable, optional
        A function sending its argument from the root node to every node
        and returning the received object. If None, no communication
        happens (default is None).
    node_name : str, optional
        Used to annotate exceptions received from the root.

    Other Parameters
    ----------------
    args
        The ordered arguments to pass to task.
    kwargs
        The keyword arguments to pass to task.

    Returns
    -------
    result
        The return value of the task on the root node.

    Raises
    ------
    Exception
        The exception raised by the task on the root node, with the same
        type on every node.

    """
    if broadcast is None:
        broadcast = _identity_broadcast

    result = None
    error = None
    if is_root:
        try:
            result = task(*args, **kwargs)
        except Exception as e:
            error = e

    # Send the exception with a string traceback.
    if error is not None and broadcast is not _identity_broadcast:
        error = _annotate_exception(error, node_name)

    result, error = broadcast((result, error))

    if error is not None:
        if is_root:
            raise error
        traceback_str = '\n    '.join(getattr(error, 'traceback_str', '').split('\n'))
        err_msg = ('Received an exception from the root process. Original'
                   ' stack trace follow:\n{}').format(traceback_str)
        external_error = type(error)(err_msg)
        raise external_error
    return result


def run_single_node(rank, task, *args, **kwargs):
    """Run task on a single node.

    If MPI is not activated, this simply runs locally.

    Parameters
    ----------
    task : callable
        The task to run on node rank.
    rank : int
        The rank of the MPI communicator that must execute the task.
    broadcast_result : bool, optional
        If True, the result is broadcasted to all nodes. If False,
        only the node executing the task will receive the return
        value of the task, and all other nodes will receive None
        (default is False).
    sync_nodes : bool, optional
        If True, the nodes will be synchronized at the end of the
        execution (i.e. the task will be blocking) even if the
        result is not broadcasted  (default is False).
    propagate_exceptions : bool, optional
        If True, an exception raised on node rank is raised on all the
        nodes. This implies ``broadcast_result`` (default is False).

    Other Parameters
    ----------------
    args
        The ordered arguments to pass to task.
    kwargs
        The keyword arguments to pass to task.

    Returns
    -------
    result
        The return value of the task. This will be None on all nodes
        that is not the rank unless ``broadcast_result`` is set to True.

    Examples
    --------
    >>> def add(a, b):
    ...     return a + b
    >>> # Run 3+4 on node 0.
    >>> run_single_node(0, task=add, a=3, b=4, broadcast_result=True)
    7

    """
    broadcast_result = kwargs.pop('broadcast_result', False)
    sync_nodes = kwargs.pop('sync_nodes', False)
    propagate_exceptions = kwargs.pop('propagate_exceptions', False)
    result = None
    mpicomm = get_mpicomm()

    if mpicomm is not None:
        node_name = 'Node {}/{}'.format(mpicomm.rank+1, mpicomm.size)
    else:
        node_name = 'Single node'

    if propagate_exceptions:
        logger.debug('{}: executing {} with exception propagation'.format(node_name, task))
        is_root = mpicomm is None or mpicomm.rank == rank
        return broadcast_from_root(task, *args, is_root=is_root,
                                   broadcast=make_broadcast(mpicomm, root=rank),
                                   node_name=node_name, **kwargs)

    # Execute the task only on the specified node.
    if mpicomm is None or mpicomm.rank == rank:
        logger.debug('{}: executing {}'.format(node_name, task))
        result = task(*args, **kwargs)

    # Broadcast the result if required.
    if mpicomm is not None:
        if broadcast_result is True:
            logger.debug('{}: waiting for broadcast of {}'.format(node_name, task))
            result = mpicomm.bcast(result, root=rank)
        elif sync_nodes is True:
            logger.debug('{}: waiting for barrier after {}'.format(node_name, task))
            mpicomm.barrier()

    return result


def on_single_node(rank, broadcast_result=False, sync_nodes=False, propagate_exceptions=False):
    """A decorator version of run_single_node.

    Decorates a function to be always executed with :func:`run_single_node`.

    See Also
    --------
    run_single_node

    Examples
    --------
    >>> @on_single_node(rank=0, broadcast_result=True)
    ... def add(a, b):
    ...     return a + b
    >>> add(3, 4)
    7

    """
    def _on_single_node(task):
        @functools.wraps(task)
        def _wrapper(*args, **kwargs):
            kwargs['broadcast_result'] = broadcast_result
            kwargs['sync_nodes'] = sync_nodes
            kwargs['propagate_exceptions'] = propagate_exceptions
            return run_single_node(rank, task, *args, **kwargs)
        return _wrapper
    return _on_single_node


@contextmanager
def delay_termination():
    """Context manager to delay handling of termination signals.

    This allows to avoid interrupting tasks such as writing a checkpoint,
    which could result in the corruption of the file.

    """
    signals_to_catch = [signal.SIGINT, signal.SIGTERM, signal.SIGABRT]
    old_handlers = {signum: signal.getsignal(signum) for signum in signals_to_catch}
    signals_received = {signum: None for signum in signals_to_catch}

    def delay_handler(signum, frame):
        signals_received[signum] = (signum, frame)

    # Set handlers fot delay
    for signum in signals_to_catch:
        signal.signal(signum, delay_handler)

    try:
        yield  # Resume program
    finally:
        # Restore old handlers
        for signum, handler in old_handlers.items():
            signal.signal(signum, handler)

    # Fire delayed signals
    for signum, s in signals_received.items():
        if s is not None and callable(old_handlers[signum]):
            old_handlers[signum](*s)


def delayed_termination(func):
    """Decorator that runs the function with :func:`delay_termination`."""
    @functools.wraps(func)
    def _delayed_termination(*args, **kwargs):
        with delay_termination():
            return func(*args, **kwargs)
    return _delayed_termination


# ==============================================================================
# MPI TEST CLASSES
# ==============================================================================

class _DummyMPIComm():
    """A Dummy MPI Communicator."""

    def __init__(self, rank=0, size=4):
        self.rank = rank
        self.size = size


@contextmanager
def _simulated_mpi_environment(**kwargs):
    """Context manager to temporarily set a simulated MPI environment.

    Parameters
    ----------
    **kwargs : dict
        The parameters to pass to _DummyMPIComm constructor.

    """
    global _simulated_mpicomm
    old_simulated_mpicomm = _simulated_mpicomm
    _simulated_mpicomm = _DummyMPIComm(**kwargs)
    try:
        yield
    finally:
        _simulated_mpicomm = old_simulated_mpicomm


# ==============================================================================
# MAIN AND TESTS
# ==============================================================================

if __name__ == "__main__":
    import doctest
    doctest.testmod()
