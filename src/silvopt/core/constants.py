"""Constants shared by the simulation and search layers."""

NO_HARVEST_PERIOD = 0
DEFAULT_SOLUTION_POOL_SIZE = 4
DEFAULT_PERIOD_LENGTH_YEARS = 5
DBH_HEIGHT_M = 1.37
HEIGHT_STRATA = 40
HEIGHT_STRATUM_M = 2.0
MINIMUM_MERCHANTABLE_DBH_CM = 12.7
DEFECT_AND_BREAKAGE_REDUCTION = 0.955
# 1/e^10 accepts roughly one move in 22,000; larger exponents are treated as rejection.
MAXIMUM_ACCEPTANCE_EXPONENT = 10.0
EXCHANGE_RETRY_LIMIT = 64
