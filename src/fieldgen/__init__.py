"""
fieldgen: 地球系统模式场仿真器
Earth System Model Field Emulator

本工具包从少量地球系统模式 (ESM) 输出中训练统计仿真器，快速生成大量
具有与训练数据相同时空统计特征的温度与降水场。
This toolkit trains a statistical emulator on a small number of ESM runs and
then generates many new temperature (and optionally precipitation) fields that
share the training data's spatial, temporal and cross-variable statistics.

方法 / Method:
--------------
1. 格点线性响应 / Pattern scaling
   - 每个格点对全球平均温度的线性回归
   - Per-cell linear regression on global mean temperature

2. 经验分布变换 / Empirical distribution transform
   - 残差映射到标准正态分布，保持秩相关
   - Residuals mapped to standard normal scores, preserving rank correlation

3. 联合 EOF 分解 / Joint EOF decomposition
   - 温度与降水联合的正交模态
   - Orthogonal modes shared by temperature and precipitation

4. 频谱模型 / Spectral model
   - 保留振幅谱，随机化相位，保持 EOF 间相位关系
   - Keeps magnitude spectra, draws new phases, preserves cross-EOF phase offsets

使用示例 / Usage Examples:
--------------------------
>>> from fieldgen import (
...     generate_synthetic_esm_data, VariableSeries, train,
...     generate_residuals, generate_fields,
... )
>>>
>>> # 合成训练数据 / Synthetic training data
>>> data = generate_synthetic_esm_data(n_time=100, n_lat=4, n_lon=6)
>>> tas = VariableSeries.from_native("tas", data["tas"])
>>> pr = VariableSeries.from_native("pr", data["pr"])
>>>
>>> # 训练与生成 / Train and generate
>>> emu = train([tas, pr], data["grid"])
>>> fields = generate_fields(emu, generate_residuals(emu, 10, seed=0))
>>> print(fields[0]["pr"].shape)
(100, 24)

包结构 / Package Structure:
---------------------------
fieldgen/
├── __init__.py           # 本文件 / This file
├── config.py             # 默认配置 / Defaults
├── errors.py             # 异常类型 / Exceptions
├── transforms.py         # 变量变换 / Variable transforms
├── grid.py               # 网格与变量 / Grid and variables
├── pattern_scaling.py    # 格点线性响应 / Pattern scaling
├── empirical_dist.py     # 经验分布 / Empirical CDFs
├── eof.py                # EOF 分解 / EOF decomposition
├── spectral.py           # 频谱模型 / Spectral model
├── reconstruct.py        # 场重建 / Field reconstruction
├── emulator.py           # 训练与生成 / Training and generation
├── persistence.py        # 保存与读取 / Save and load
├── io_utils.py           # NetCDF 读取 (可选) / NetCDF input (optional)
└── utils.py              # 工具函数 / Utilities

依赖项 / Dependencies:
---------------------
- numpy, scipy, pandas, scikit-learn
- xarray + netCDF4 (可选 / optional, for io_utils)
"""

# ============================================================================
# 版本信息 / Version Information
# ============================================================================

__version__ = "0.1.0"
__author__ = "fieldgen Development Team"
__license__ = "MIT"

# ============================================================================
# 模块导入 / Module Imports
# ============================================================================

from .errors import (
    FieldGenError,
    InputShapeError,
    DegenerateFitError,
    InvertibilityError,
    SpectralLengthError,
)

from .transforms import (
    VariableTransform,
    register_transform,
    get_transform,
    available_transforms,
)

from .grid import Grid, VariableSeries, global_mean

# 训练组件 / Training components
from .pattern_scaling import PatternScale, fit_pattern_scaling, apply_pattern_scaling
from .empirical_dist import (
    EmpiricalCDF,
    EmpiricalDist,
    characterize,
    normalize,
    unnormalize,
    spearman_matrix,
)
from .eof import EOFBasis, decompose, project, stack_variables, split_variables
from .spectral import (
    PhaseConstraints,
    SpectralModel,
    analyze,
    synthesize,
    derive_phase_constraints,
    magnitude_spectrum,
)
from .reconstruct import FieldReconstructor

# 仿真器 / Emulator
from .emulator import (
    Emulator,
    EmulatorMetadata,
    assemble_emulator,
    train,
    generate_residuals,
    generate_fields,
    emulator_reconstruction,
)
from .persistence import save_emulator, load_emulator

# 工具函数 / Utility functions
from .utils import generate_synthetic_esm_data, summary_statistics, eof_power_table

__all__ = [
    # 异常 / Errors
    "FieldGenError",
    "InputShapeError",
    "DegenerateFitError",
    "InvertibilityError",
    "SpectralLengthError",

    # 变换与网格 / Transforms and grid
    "VariableTransform",
    "register_transform",
    "get_transform",
    "available_transforms",
    "Grid",
    "VariableSeries",
    "global_mean",

    # 训练组件 / Training components
    "PatternScale",
    "fit_pattern_scaling",
    "apply_pattern_scaling",
    "EmpiricalCDF",
    "EmpiricalDist",
    "characterize",
    "normalize",
    "unnormalize",
    "spearman_matrix",
    "EOFBasis",
    "decompose",
    "project",
    "stack_variables",
    "split_variables",
    "PhaseConstraints",
    "SpectralModel",
    "analyze",
    "synthesize",
    "derive_phase_constraints",
    "magnitude_spectrum",
    "FieldReconstructor",

    # 仿真器 / Emulator
    "Emulator",
    "EmulatorMetadata",
    "assemble_emulator",
    "train",
    "generate_residuals",
    "generate_fields",
    "emulator_reconstruction",
    "save_emulator",
    "load_emulator",

    # 工具函数 / Utilities
    "generate_synthetic_esm_data",
    "summary_statistics",
    "eof_power_table",
]
