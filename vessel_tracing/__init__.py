from .volume import ScalarVolume, CostVolume, VolumeGeometry
from .data_structures import TraceConfig, CenterlineResult, TubularMask
from .errors import (ErrorCode, CenterlineError, InvalidInputError, InvalidParametersError,
                     NoPathFoundError, SearchLimitExceededError, InternalError)
from .cost_map import build_cost_map
from .shortest_path import find_path, NEIGHBOR_OFFSETS
from .smoothing import smooth_path, path_length
from .radius_estimation import estimate_local_radius
from .mask_rasterizer import rasterize_tube
from .tracer import trace_centerline, generate_mask, physical_to_index
from .logging_config import setup_logging

__all__ = [
    'ScalarVolume', 'CostVolume', 'VolumeGeometry',
    'TraceConfig', 'CenterlineResult', 'TubularMask',
    'ErrorCode', 'CenterlineError', 'InvalidInputError', 'InvalidParametersError',
    'NoPathFoundError', 'SearchLimitExceededError', 'InternalError',
    'build_cost_map', 'find_path', 'NEIGHBOR_OFFSETS', 'smooth_path', 'path_length',
    'estimate_local_radius', 'rasterize_tube',
    'trace_centerline', 'generate_mask', 'physical_to_index', 'setup_logging',
]
