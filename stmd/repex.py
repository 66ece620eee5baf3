#!/usr/local/bin/env python

# ==============================================================================
# MODULE DOCSTRING
# ==============================================================================

"""
Replica exchange
================

Replica exchange statistical temperature molecular dynamics (RESTMD).

Several walkers, each with its own STMD estimator, are assigned to the slots
of a temperature ladder. Periodically the coordinator proposes swaps between
walkers on neighboring slots, alternating between even pairs ``(0,1), (2,3),
...`` and odd pairs ``(1,2), (3,4), ...``. A swap between the walkers on
slots i and j with potential energies E_i, E_j and statistical temperatures
T_i, T_j is accepted with probability::

    min(1, exp(-(1/T_i - 1/T_j) * (E_j - E_i) / ST))

where ST is the kinetic temperature shared by all the walkers. Accepted
swaps exchange the slots of the two walkers, never their estimator state.

The swap direction and the acceptance are drawn from two random streams
that every coordinator seeds and advances identically. When the walkers
run on different MPI processes, the only messages are the energy and the
temperature exchanged by the two partners, the gather of the new slot
assignment, and the broadcast inside each walker.

"""


# ==============================================================================
# GLOBAL IMPORTS
# ==============================================================================

import math
import logging
import collections.abc

import numpy as np

from . import mpi, options
from .stages import DIG
from .utils import ConfigurationError

logger = logging.getLogger(__name__)


# ==============================================================================
# EXCHANGE CRITERION
# ==============================================================================

def log_acceptance(energy_i, energy_j, temperature_i, temperature_j, reference_temperature):
    """Logarithm of the Metropolis ratio of swapping the walkers i and j.

    Parameters
    ----------
    energy_i, energy_j : float
        Potential energies of the walkers.
    temperature_i, temperature_j : float
        Dimensionless statistical temperatures of the walkers.
    reference_temperature : float
        The common kinetic temperature.

    """
    return -(1.0/temperature_i - 1.0/temperature_j) * (energy_j - energy_i) / reference_temperature


def acceptance_probability(energy_i, energy_j, temperature_i, temperature_j, reference_temperature):
    """Probability of accepting the swap of the walkers i and j.

    Examples
    --------
    >>> round(acceptance_probability(-100.0, -90.0, 1.0, 2.0, 10.0), 6)
    0.606531
    >>> acceptance_probability(-90.0, -100.0, 1.0, 2.0, 10.0)
    1.0

    """
    log_p = log_acceptance(energy_i, energy_j, temperature_i, temperature_j, reference_temperature)
    if log_p >= 0.0:
        return 1.0
    return math.exp(log_p)


def swap_pairs(n_slots, direction):
    """The pairs of slots proposed in a trial.

    Examples
    --------
    >>> swap_pairs(5, 0)
    [(0, 1), (2, 3)]
    >>> swap_pairs(5, 1)
    [(1, 2), (3, 4)]

    """
    return [(slot, slot+1) for slot in range(direction, n_slots-1, 2)]


# ==============================================================================
# REPLICA EXCHANGE COORDINATOR
# ==============================================================================

class ReplicaExchangeCoordinator(object):
    """Coordinate the exchange of temperature slots between STMD walkers.

    The coordinator works in two modes. If ``mpicomm`` is None and
    ``is_walker_root`` is True, all the walkers live in this process and
    ``fixes`` has one entry per walker. Otherwise, every process handles a
    single walker: ``mpicomm`` connects the roots of all the walkers (its
    rank is the walker index), while the other processes of a walker pass
    ``is_walker_root=False`` together with ``n_walkers`` and
    ``walker_index`` and receive the outcome of each trial through
    ``broadcast``.

    Parameters
    ----------
    fixes : list
        One entry per local walker. Each entry is either an
        :class:`~stmd.stmd.STMD` walker or a mapping from fix identifiers to
        walkers, in which case ``fix_id`` selects the walker.
    exchange_interval : int
        Number of steps between two exchange trials.
    n_trials : int
        Total number of exchange trials.
    swap_seed : int
        Seed of the swap direction stream. If 0, the direction alternates
        deterministically between even and odd pairs.
    boltzmann_seed : int
        Seed of the acceptance stream. Must be positive.
    fix_id : str, optional
        Identifier of the STMD fix in the ``fixes`` mappings.
    exchange_during_dig : bool, optional
        If False (default), pairs involving a walker in the Dig stage are
        not proposed.
    set_temperatures : list of float, optional
        The kinetic temperature of each slot. All must be equal, and equal
        to the reference temperature of the walkers. By default, the
        reference temperature of the walkers.
    mpicomm : mpi4py communicator, optional
        Communicator of the walker roots.
    broadcast : callable, optional
        Broadcast from the root of a walker to its processes.
    is_walker_root : bool, optional
        False on the non-root processes of a walker.
    n_walkers, walker_index : int, optional
        Required on the non-root processes of a walker.
    on_swap : callable, optional
        Called as ``on_swap(walker_index, slot, set_temperature)`` for every
        local walker whose slot changed.

    Attributes
    ----------
    walker_to_slot : list of int
        ``walker_to_slot[walker]`` is the slot of the walker.
    exchange_log : list of tuple
        One ``(step, attempted, accepted)`` record per trial.

    """

    def __init__(self, fixes, exchange_interval, n_trials, swap_seed, boltzmann_seed,
                 fix_id='stmd', exchange_during_dig=False, set_temperatures=None,
                 mpicomm=None, broadcast=None, is_walker_root=True, n_walkers=None,
                 walker_index=None, on_swap=None):
        opts = options.validate_replica_exchange_options(dict(
            exchange_interval=exchange_interval, n_trials=n_trials, swap_seed=swap_seed,
            boltzmann_seed=boltzmann_seed, fix_id=fix_id, exchange_during_dig=exchange_during_dig,
            set_temperatures=set_temperatures))
        self.exchange_interval = opts['exchange_interval']
        self.n_trials = opts['n_trials']
        self.swap_seed = opts['swap_seed']
        self.boltzmann_seed = opts['boltzmann_seed']
        self.fix_id = opts['fix_id']
        self.exchange_during_dig = opts['exchange_during_dig']
        self.on_swap = on_swap

        self.mpicomm = mpicomm
        self.is_walker_root = is_walker_root
        if broadcast is None:
            if not is_walker_root:
                raise ConfigurationError('The processes that are not the root of a walker need a '
                                         'broadcast to receive the outcome of the exchanges')
            broadcast = mpi.make_broadcast(None)
        self._broadcast = broadcast
        self.is_distributed = mpicomm is not None or not is_walker_root

        # Resolve walkers.
        self.walkers = [self._resolve_fix(fix) for fix in fixes] if is_walker_root else []

        if not self.is_distributed:
            self.n_walkers = len(self.walkers)
            self.local_walker_indices = list(range(self.n_walkers))
        else:
            if mpicomm is not None:
                n_walkers = mpicomm.size
                walker_index = mpicomm.rank
            if n_walkers is None or walker_index is None:
                raise ConfigurationError('n_walkers and walker_index are required on the '
                                         'processes without the root communicator')
            if is_walker_root and len(self.walkers) != 1:
                raise ConfigurationError('Distributed replica exchange requires exactly one '
                                         'walker per root process, got {}'.format(len(self.walkers)))
            self.n_walkers = n_walkers
            self.local_walker_indices = [walker_index]

        if self.n_walkers < 2:
            raise ConfigurationError('Replica exchange must have more than one walker, '
                                     'got {}'.format(self.n_walkers))

        self.set_temperatures = self._check_set_temperatures(opts['set_temperatures'])

        # Initial slots.
        self.walker_to_slot = list(range(self.n_walkers))
        self.n_attempted_trials = 0
        self.n_attempted_swaps = 0
        self.n_accepted_swaps = 0
        self.exchange_log = []
        self._warned_dig = False

        # Random streams.
        if self.swap_seed == 0:
            self._swap_random = None
        else:
            self._swap_random = np.random.RandomState(self.swap_seed)
        self._boltzmann_random = np.random.RandomState(self.boltzmann_seed)

        self._warn_if_digging()
        logger.debug('Replica exchange between {} walkers, {} trials every {} steps'.format(
            self.n_walkers, self.n_trials, self.exchange_interval))

    @classmethod
    def from_options(cls, fixes, replica_exchange_options, **kwargs):
        """Create the coordinator from the ``replica_exchange`` section of a script."""
        all_kwargs = dict(replica_exchange_options)
        all_kwargs.update(kwargs)
        return cls(fixes, **all_kwargs)

    def _resolve_fix(self, fix):
        if isinstance(fix, collections.abc.Mapping):
            try:
                return fix[self.fix_id]
            except KeyError:
                raise ConfigurationError("Tempering fix ID '{}' is not defined".format(self.fix_id))
        return fix

    def _check_set_temperatures(self, set_temperatures):
        """Check that all walkers share the same kinetic temperature control."""
        local_temperatures = [walker.reference_temperature for walker in self.walkers]
        if self.mpicomm is not None:
            reference_temperatures = [t for ts in self.mpicomm.allgather(local_temperatures)
                                      for t in ts]
        elif self.is_walker_root:
            reference_temperatures = local_temperatures
        else:
            reference_temperatures = []

        if set_temperatures is None:
            if len(reference_temperatures) == 0:
                return None
            set_temperatures = [reference_temperatures[0]] * self.n_walkers
        elif len(set_temperatures) != self.n_walkers:
            raise ConfigurationError('Expected {} set temperatures, got {}'.format(
                self.n_walkers, len(set_temperatures)))

        if len(set(set_temperatures) | set(reference_temperatures)) > 1:
            raise ConfigurationError('Kinetic temperatures are not the same: set temperatures {}, '
                                     'walker reference temperatures {}. Replica exchange requires '
                                     'homogeneous kinetic temperature control'.format(
                                         set_temperatures, reference_temperatures))
        return list(set_temperatures)

    def _warn_if_digging(self):
        if not self.exchange_during_dig or self._warned_dig:
            return
        if any(walker.stage == DIG for walker in self.walkers):
            logger.warning('RESTMD walkers still in the dig stage: exchanges are enabled '
                           'before the low energy floor is established')
            self._warned_dig = True

    @property
    def slot_to_walker(self):
        slot_to_walker = [None] * self.n_walkers
        for walker, slot in enumerate(self.walker_to_slot):
            slot_to_walker[slot] = walker
        return slot_to_walker

    @property
    def is_completed(self):
        return self.n_attempted_trials >= self.n_trials

    @property
    def acceptance_rate(self):
        if self.n_attempted_swaps == 0:
            return 0.0
        return self.n_accepted_swaps / self.n_attempted_swaps

    # -------------------------------------------------------------------------
    # Exchange
    # -------------------------------------------------------------------------

    def _draw(self, trial):
        """Advance both random streams for this trial."""
        if self._swap_random is None:
            direction = trial % 2
        else:
            direction = 0 if self._swap_random.uniform() < 0.5 else 1
        uniforms = self._boltzmann_random.random_sample(self.n_walkers - 1)
        return direction, uniforms

    def _decide(self, lower, upper, uniform, reference_temperature):
        """Accept or reject the swap given the ``(energy, temperature, stage)`` of the
        walkers on the lower and the upper slot.

        Returns
        -------
        attempted : bool
        accepted : bool

        """
        if not self.exchange_during_dig and (lower[2] == DIG or upper[2] == DIG):
            return False, False
        log_p = log_acceptance(lower[0], upper[0], lower[1], upper[1], reference_temperature)
        accepted = log_p >= 0.0 or uniform < math.exp(log_p)
        return True, accepted

    def maybe_exchange(self, step, potential_energies):
        """Attempt an exchange if ``step`` is on the exchange period.

        Returns
        -------
        n_accepted : int or None
            The number of accepted swaps, or None if no trial was attempted.

        """
        if step == 0 or step % self.exchange_interval != 0 or self.is_completed:
            return None
        return self.attempt_exchange(step, potential_energies)

    def attempt_exchange(self, step, potential_energies):
        """Run one exchange trial.

        Parameters
        ----------
        step : int
            The host step index.
        potential_energies : list of float or float
            The potential energy of every local walker. In distributed
            mode, the energy of this walker (ignored on non-root processes).

        Returns
        -------
        n_accepted : int
            The number of accepted swaps in this trial.

        """
        trial = self.n_attempted_trials
        direction, uniforms = self._draw(trial)
        self.n_attempted_trials += 1
        self._warn_if_digging()

        old_walker_to_slot = list(self.walker_to_slot)
        if not self.is_distributed:
            attempted, accepted = self._exchange_local(direction, uniforms, potential_energies)
        else:
            attempted, accepted = self._exchange_distributed(direction, uniforms, potential_energies)

        self.n_attempted_swaps += attempted
        self.n_accepted_swaps += accepted
        self.exchange_log.append((step, attempted, accepted))
        logger.info('Step {}: accepted {} / {} attempted swaps'.format(step, accepted, attempted))
        logger.debug('Step {}: walker to slot {}'.format(step, self.walker_to_slot))

        if self.on_swap is not None:
            for walker_index in self.local_walker_indices:
                slot = self.walker_to_slot[walker_index]
                if slot != old_walker_to_slot[walker_index]:
                    set_temperature = None if self.set_temperatures is None else self.set_temperatures[slot]
                    self.on_swap(walker_index, slot, set_temperature)
        return accepted

    def _walker_info(self, walker, energy):
        return (float(energy), walker.reduced_temperature, walker.stage)

    def _exchange_local(self, direction, uniforms, potential_energies):
        if len(potential_energies) != self.n_walkers:
            raise ValueError('Expected {} potential energies, got {}'.format(
                self.n_walkers, len(potential_energies)))
        slot_to_walker = self.slot_to_walker
        attempted = accepted = 0
        for lower_slot, upper_slot in swap_pairs(self.n_walkers, direction):
            i = slot_to_walker[lower_slot]
            j = slot_to_walker[upper_slot]
            lower = self._walker_info(self.walkers[i], potential_energies[i])
            upper = self._walker_info(self.walkers[j], potential_energies[j])
            is_attempted, is_accepted = self._decide(lower, upper, uniforms[lower_slot],
                                                     self.walkers[i].reference_temperature)
            attempted += is_attempted
            if is_accepted:
                accepted += 1
                self.walker_to_slot[i] = upper_slot
                self.walker_to_slot[j] = lower_slot
        return attempted, accepted

    def _partner_slot(self, slot, direction):
        if (slot - direction) % 2 == 0:
            partner = slot + 1
        else:
            partner = slot - 1
        if 0 <= partner < self.n_walkers:
            return partner
        return None

    def _exchange_distributed(self, direction, uniforms, potential_energy):
        walker_index = self.local_walker_indices[0]
        outcome = None
        if self.is_walker_root:
            outcome = self._exchange_roots(walker_index, direction, uniforms, potential_energy)
        walker_to_slot, attempted, accepted = self._broadcast(outcome)
        self.walker_to_slot = list(walker_to_slot)
        return attempted, accepted

    def _exchange_roots(self, walker_index, direction, uniforms, potential_energy):
        walker = self.walkers[0]
        my_slot = self.walker_to_slot[walker_index]
        partner_slot = self._partner_slot(my_slot, direction)
        attempted = accepted = False

        if partner_slot is not None:
            partner_index = self.slot_to_walker[partner_slot]
            mine = self._walker_info(walker, potential_energy)
            theirs = self.mpicomm.sendrecv(mine, dest=partner_index, source=partner_index)
            if my_slot < partner_slot:
                lower, upper, lower_slot = mine, tuple(theirs), my_slot
            else:
                lower, upper, lower_slot = tuple(theirs), mine, partner_slot
            attempted, accepted = self._decide(lower, upper, uniforms[lower_slot],
                                               walker.reference_temperature)
            if accepted:
                my_slot = partner_slot

        # Only the walker on the lower slot of a pair counts the pair.
        is_lower = partner_slot is not None and self.walker_to_slot[walker_index] < partner_slot
        gathered = self.mpicomm.allgather((my_slot, is_lower and attempted, is_lower and accepted))
        walker_to_slot = [slot for slot, _, _ in gathered]
        n_attempted = sum(1 for _, a, _ in gathered if a)
        n_accepted = sum(1 for _, _, a in gathered if a)
        return walker_to_slot, n_attempted, n_accepted
