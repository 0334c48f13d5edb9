"""Global configuration & default names.

全局默认配置：变量名、坐标名、数值容差等。
Functions take these as keyword defaults; override them per call rather than
editing this module.
"""

from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[2]

DATA_DIR = PROJECT_ROOT / "data"

# Default variable names (CMIP6 conventions)
TEMPERATURE_VAR_NAME = "tas"   # near-surface air temperature (K)
PRECIP_VAR_NAME = "pr"         # precipitation flux (kg m-2 s-1)

# Default coordinate names in netCDF inputs
LAT_NAME = "lat"
LON_NAME = "lon"
TIME_NAME = "time"

# Temperature/precipitation files are paired by swapping this token in the
# temperature file name, e.g. tas_annual_esm_rcp85.nc -> pr_annual_esm_rcp85.nc
TEMPERATURE_FILE_TOKEN = "tas"
PRECIP_FILE_TOKEN = "pr"
NETCDF_GLOB = "*.nc"

# Precipitation values are floored here before taking logs (kg m-2 s-1)
PR_FLOOR = 1e-12

# Default transform applied to each variable before analysis
DEFAULT_TRANSFORMS = {
    TEMPERATURE_VAR_NAME: "identity",
    PRECIP_VAR_NAME: "log",
}

# Empirical distributions need at least this many distinct values per cell
MIN_DISTINCT_VALUES = 3

# Cells where more than this fraction of samples are tied trigger a warning
TIE_WARNING_FRACTION = 0.5

# Weight grid cells by area before the EOF decomposition
DEFAULT_AREA_WEIGHTED_EOF = False

# Relative tolerance used when validating orthonormality of a supplied basis
ORTHONORMAL_TOL = 1e-8

# Number of parallel FFT workers (None = scipy default, single threaded)
FFT_WORKERS = None
