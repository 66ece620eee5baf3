import logging

import cerberus

from .. import stages
from ..utils import nearest_integer

logger = logging.getLogger(__name__)


# ==============================================================================
# STMD CUSTOM VALIDATOR CLASS FOR CERBERUS
# ==============================================================================

class STMDCerberusValidator(cerberus.Validator):
    """
    Custom cerberus.Validator class for STMD extending the Validator with the
    coercers and the cross-field checks of the walker configuration.
    """

    # ====================================================
    # DATA COERCION
    # ====================================================

    def _normalize_coerce_yes_no_to_bool(self, value):
        """Convert the strings 'yes' and 'no' to booleans."""
        if isinstance(value, str) and value.lower() in ('yes', 'no'):
            return value.lower() == 'yes'
        return value

    def _normalize_coerce_int_to_float(self, value):
        """Integers are accepted wherever a float is expected."""
        if isinstance(value, int) and not isinstance(value, bool):
            return float(value)
        return value

    # ====================================================
    # DATA VALIDATORS
    # ====================================================

    def _check_with_is_reduction_policy(self, field, value):
        """Ensure the reduction policy exists."""
        policies = stages.available_policies()
        if value not in policies:
            self._error(field, "Unknown reduction policy '{}'. Supported values are "
                               "{}.".format(value, sorted(policies)))

    def _check_with_is_positive(self, field, value):
        if not value > 0:
            self._error(field, '{} must be positive'.format(value))

    def _check_with_greater_than_low_temperature(self, field, value):
        """The document is expected to have a 'low_temperature' field."""
        low_temperature = self.document.get('low_temperature')
        if low_temperature is not None and not value > low_temperature:
            self._error(field, 'must be greater than low_temperature ({})'.format(low_temperature))

    def _check_with_greater_than_energy_min(self, field, value):
        """The document is expected to have an 'energy_min' field."""
        energy_min = self.document.get('energy_min')
        if energy_min is not None and not value > energy_min:
            self._error(field, 'must be greater than energy_min ({})'.format(energy_min))

    def _check_with_at_least_three_bins(self, field, bin_width):
        """The energy range must contain a sampled bin and its two neighbors."""
        energy_min = self.document.get('energy_min')
        energy_max = self.document.get('energy_max')
        if energy_min is None or energy_max is None or not bin_width > 0:
            return
        n_bins = nearest_integer(energy_max / bin_width) - nearest_integer(energy_min / bin_width) + 1
        if n_bins < 3:
            self._error(field, 'the energy range [{}, {}] contains only {} bins of width {}, '
                               'at least 3 are needed'.format(energy_min, energy_max, n_bins, bin_width))

    def _check_with_positive_float_list(self, field, value):
        # cerberus runs check_with also on nullable fields set to None.
        if value is None:
            return
        for temperature in value:
            if not isinstance(temperature, (int, float)) or not temperature > 0:
                self._error(field, "{} must be a positive number!".format(temperature))
